"""Entry and exit policies plugged into the position lifecycle manager.

The baseline policies trade purely on the funding APR. The signal-gated
policies consult a SignalGate (and optionally a DeclinePredictor) before
admitting an entry and may close a position early on a deteriorating outlook.

CRITICAL: All monetary values use Decimal. Never use float for rates or prices.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.funding import FUNDING_INTERVAL_HOURS, annualize_rate
from fundsim.signals.models import (
    EntryRecommendation,
    ExitRecommendation,
    TrendDirection,
)

if TYPE_CHECKING:
    from fundsim.backtest.models import MarketSnapshot, OpenPosition
    from fundsim.signals.gate import DeclinePredictor, SignalGate
    from fundsim.signals.models import DeclinePrediction, PredictiveSignals

_SIGNAL_EXIT_SOON_APR = Decimal("2")
_SIGNAL_NEGATIVE_APR = Decimal("-1")
_PREDICTOR_VETO_CONFIDENCE = Decimal("0.6")


@dataclass(frozen=True)
class ExitDecision:
    """An open position the exit policy wants closed at this tick."""

    symbol: str
    reason: str
    funding_rate: Decimal
    funding_apr: Decimal
    exit_signals: PredictiveSignals | None = None


@dataclass(frozen=True)
class EntryCandidate:
    """A symbol admitted for entry, pending ranking and sizing."""

    symbol: str
    funding_rate: Decimal
    funding_apr: Decimal
    spot_price: Decimal
    perp_price: Decimal
    signals: PredictiveSignals | None = None
    ml_prediction: DeclinePrediction | None = None


def current_funding(snapshot: MarketSnapshot, symbol: str) -> tuple[Decimal, Decimal]:
    """(rate, APR%) for a symbol at the snapshot; 0 when unresolved.

    The APR uses the interval of the resolved rate record, 8h when unknown.
    """
    rate = snapshot.funding_rates.get(symbol, Decimal("0"))
    interval_hours = snapshot.funding_intervals.get(symbol, FUNDING_INTERVAL_HOURS)
    return rate, annualize_rate(rate, interval_hours)


class ExitPolicy(ABC):
    """Decides whether an open position closes at the current tick."""

    @abstractmethod
    def evaluate(
        self, position: OpenPosition, snapshot: MarketSnapshot
    ) -> ExitDecision | None:
        """Return an ExitDecision, or None to keep holding."""


class EntryPolicy(ABC):
    """Decides whether an APR-eligible symbol may be entered."""

    @abstractmethod
    def admit(
        self,
        symbol: str,
        funding_rate: Decimal,
        funding_apr: Decimal,
        snapshot: MarketSnapshot,
    ) -> EntryCandidate | None:
        """Return an EntryCandidate, or None to reject the symbol."""


class BaselineExitPolicy(ExitPolicy):
    """Exit as soon as funding turns negative."""

    def evaluate(
        self, position: OpenPosition, snapshot: MarketSnapshot
    ) -> ExitDecision | None:
        rate, apr = current_funding(snapshot, position.symbol)
        if apr < 0:
            return ExitDecision(
                symbol=position.symbol,
                reason=f"Funding turned negative: {apr:.1f}% APR",
                funding_rate=rate,
                funding_apr=apr,
            )
        return None


class SignalExitPolicy(ExitPolicy):
    """Exit on the signal gate's recommendation or on negative funding.

    Rules, first match wins:
        exit_now recommendation
        exit_soon recommendation while APR < 2%
        APR < -1%
    """

    def __init__(self, gate: SignalGate) -> None:
        self._gate = gate

    def evaluate(
        self, position: OpenPosition, snapshot: MarketSnapshot
    ) -> ExitDecision | None:
        rate, apr = current_funding(snapshot, position.symbol)
        signals = self._gate.signals(position.symbol, snapshot.timestamp_ms, apr)

        reason = ""
        if signals.exit_recommendation == ExitRecommendation.EXIT_NOW:
            risk_pct = signals.risk_score * Decimal("100")
            reason = (
                f"ML Signal: Exit now (risk: {risk_pct:.1f}%, "
                f"momentum: {signals.funding_momentum.trend.value})"
            )
        elif (
            signals.exit_recommendation == ExitRecommendation.EXIT_SOON
            and apr < _SIGNAL_EXIT_SOON_APR
        ):
            reason = f"ML Signal: Exit soon + Low APR ({apr:.1f}%)"
        elif apr < _SIGNAL_NEGATIVE_APR:
            reason = f"Negative funding: {apr:.1f}% APR"

        if not reason:
            return None
        return ExitDecision(
            symbol=position.symbol,
            reason=reason,
            funding_rate=rate,
            funding_apr=apr,
            exit_signals=signals,
        )


class BaselineEntryPolicy(EntryPolicy):
    """Admit every symbol that cleared the APR threshold."""

    def admit(
        self,
        symbol: str,
        funding_rate: Decimal,
        funding_apr: Decimal,
        snapshot: MarketSnapshot,
    ) -> EntryCandidate | None:
        return EntryCandidate(
            symbol=symbol,
            funding_rate=funding_rate,
            funding_apr=funding_apr,
            spot_price=snapshot.spot_prices[symbol],
            perp_price=snapshot.perp_prices[symbol],
        )


class SignalEntryPolicy(EntryPolicy):
    """Admit only symbols the signal gate recommends entering.

    Args:
        gate: Signal source.
        risk_threshold: Maximum accepted risk score.
        volatility_filter: Require a low-volatility regime.
        momentum_filter: Reject declining funding momentum.
        predictor: Optional decline predictor; a confident decline
            prediction vetoes the entry.
    """

    def __init__(
        self,
        gate: SignalGate,
        risk_threshold: Decimal,
        volatility_filter: bool = False,
        momentum_filter: bool = False,
        predictor: DeclinePredictor | None = None,
    ) -> None:
        self._gate = gate
        self._risk_threshold = risk_threshold
        self._volatility_filter = volatility_filter
        self._momentum_filter = momentum_filter
        self._predictor = predictor

    def admit(
        self,
        symbol: str,
        funding_rate: Decimal,
        funding_apr: Decimal,
        snapshot: MarketSnapshot,
    ) -> EntryCandidate | None:
        signals = self._gate.signals(symbol, snapshot.timestamp_ms, funding_apr)
        prediction = (
            self._predictor.predict(symbol, snapshot.timestamp_ms)
            if self._predictor is not None
            else None
        )

        if signals.entry_recommendation != EntryRecommendation.ENTER:
            return None
        if signals.risk_score > self._risk_threshold:
            return None
        if self._volatility_filter and not signals.volatility.is_low_vol:
            return None
        if (
            self._momentum_filter
            and signals.funding_momentum.trend == TrendDirection.DECLINING
        ):
            return None
        if (
            prediction is not None
            and prediction.will_decline
            and prediction.confidence > _PREDICTOR_VETO_CONFIDENCE
        ):
            return None

        return EntryCandidate(
            symbol=symbol,
            funding_rate=funding_rate,
            funding_apr=funding_apr,
            spot_price=snapshot.spot_prices[symbol],
            perp_price=snapshot.perp_prices[symbol],
            signals=signals,
            ml_prediction=prediction,
        )
