"""Predictive signal gate consulted by the signal-gated strategy.

The backtest engine depends only on the SignalGate and DeclinePredictor
interfaces. PredictiveSignalGate is the default heuristic implementation: it
combines funding momentum, spot volatility regime, and APR level into a risk
score plus entry/exit recommendations.

Every lookup is restricted to observations at or before the evaluation
timestamp, and results are pure functions of the read-only HistoricalData,
so calling signals() twice for the same inputs returns identical values.

CRITICAL: All computations use Decimal. Never use float for signal scores.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from bisect import bisect_right
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.funding import annualize_rate
from fundsim.logging import get_logger
from fundsim.signals.models import (
    DeclinePrediction,
    EntryRecommendation,
    ExitRecommendation,
    FundingMomentum,
    PredictiveSignals,
    TrendDirection,
    VolatilityMetrics,
)
from fundsim.signals.momentum import MOMENTUM_LOOKBACK, classify_momentum
from fundsim.signals.volatility import rolling_volatilities, volatility_metrics

if TYPE_CHECKING:
    from fundsim.data.models import HistoricalData

logger = get_logger(__name__)

# Risk score weights
_DECLINE_RISK_WEIGHT = Decimal("0.5")
_VOL_RISK_WEIGHT = Decimal("0.3")
_HIGH_APR_RISK = Decimal("0.2")
_HIGH_APR = Decimal("15")

# Recommendation thresholds
_ENTER_MAX_RISK = Decimal("0.3")
_ENTER_MIN_APR = Decimal("5")
_EXIT_NOW_STRENGTH = Decimal("0.5")
_EXIT_SOON_RISK = Decimal("0.6")
_EXIT_SOON_APR = Decimal("2")


class SignalGate(ABC):
    """Source of predictive signals for one symbol at one funding tick."""

    @abstractmethod
    def signals(
        self, symbol: str, timestamp_ms: int, current_apr: Decimal
    ) -> PredictiveSignals:
        """Compute signals using only data at or before timestamp_ms."""


class DeclinePredictor(ABC):
    """Optional model predicting an imminent funding rate decline."""

    @abstractmethod
    def predict(self, symbol: str, timestamp_ms: int) -> DeclinePrediction | None:
        """Return a prediction, or None when there is not enough history."""


@dataclass
class SymbolHistory:
    """Per-symbol arrays for bisect lookups, built once from HistoricalData.

    Attributes:
        rate_timestamps: Funding timestamps, ascending.
        aprs: Annualized funding APR (%) for each funding timestamp.
        spot_timestamps: Spot candle timestamps, ascending.
        closes: Spot candle closes for each spot timestamp.
    """

    rate_timestamps: list[int]
    aprs: list[Decimal]
    spot_timestamps: list[int]
    closes: list[Decimal]

    def aprs_until(self, timestamp_ms: int, count: int) -> list[Decimal]:
        """Last ``count`` APR values at or before timestamp_ms, oldest-first."""
        idx = bisect_right(self.rate_timestamps, timestamp_ms)
        return self.aprs[max(0, idx - count):idx]

    def closes_until(self, timestamp_ms: int) -> list[Decimal]:
        """Every spot close at or before timestamp_ms, oldest-first."""
        idx = bisect_right(self.spot_timestamps, timestamp_ms)
        return self.closes[:idx]


def build_histories(data: HistoricalData) -> dict[str, SymbolHistory]:
    """Index funding rates and positive spot closes per symbol."""
    histories: dict[str, SymbolHistory] = {}
    for symbol in data.symbols:
        rates = data.funding_rates.get(symbol, [])
        # Returns divide by the previous close
        candles = [
            c
            for c in data.spot_candles.get(symbol, [])
            if c.close.is_finite() and c.close > 0
        ]
        histories[symbol] = SymbolHistory(
            rate_timestamps=[r.timestamp_ms for r in rates],
            aprs=[annualize_rate(r.funding_rate, r.interval_hours) for r in rates],
            spot_timestamps=[c.timestamp_ms for c in candles],
            closes=[c.close for c in candles],
        )
    return histories


def compute_risk_score(
    momentum: FundingMomentum,
    volatility: VolatilityMetrics,
    current_apr: Decimal,
) -> Decimal:
    """Combine the three risk sources into a 0-1 score (higher = riskier)."""
    risk = Decimal("0")
    if momentum.trend == TrendDirection.DECLINING:
        risk += momentum.strength * _DECLINE_RISK_WEIGHT
    if not volatility.is_low_vol:
        risk += volatility.vol_percentile / Decimal("100") * _VOL_RISK_WEIGHT
    # Extreme APR tends to mean-revert
    if current_apr > _HIGH_APR:
        risk += _HIGH_APR_RISK
    return min(risk, Decimal("1"))


def recommend_entry(
    risk_score: Decimal,
    volatility: VolatilityMetrics,
    current_apr: Decimal,
) -> EntryRecommendation:
    if (
        risk_score < _ENTER_MAX_RISK
        and volatility.is_low_vol
        and current_apr > _ENTER_MIN_APR
    ):
        return EntryRecommendation.ENTER
    return EntryRecommendation.SKIP


def recommend_exit(
    momentum: FundingMomentum,
    risk_score: Decimal,
    current_apr: Decimal,
) -> ExitRecommendation:
    if (
        momentum.trend == TrendDirection.DECLINING
        and momentum.strength > _EXIT_NOW_STRENGTH
    ):
        return ExitRecommendation.EXIT_NOW
    if risk_score > _EXIT_SOON_RISK or current_apr < _EXIT_SOON_APR:
        return ExitRecommendation.EXIT_SOON
    return ExitRecommendation.HOLD


class PredictiveSignalGate(SignalGate):
    """Heuristic signal gate over in-memory historical data.

    Args:
        data: The run's HistoricalData (never mutated).
    """

    def __init__(self, data: HistoricalData) -> None:
        self._histories = build_histories(data)
        self._rolling: dict[str, list[Decimal]] = {}
        self._volatility_cache: dict[tuple[str, int], VolatilityMetrics] = {}

    def funding_momentum(self, symbol: str, timestamp_ms: int) -> FundingMomentum:
        history = self._histories.get(symbol)
        aprs = history.aprs_until(timestamp_ms, MOMENTUM_LOOKBACK) if history else []
        return classify_momentum(aprs)

    def volatility(self, symbol: str, timestamp_ms: int) -> VolatilityMetrics:
        key = (symbol, timestamp_ms)
        cached = self._volatility_cache.get(key)
        if cached is not None:
            return cached

        history = self._histories.get(symbol)
        closes = history.closes_until(timestamp_ms) if history else []
        metrics = volatility_metrics(closes, self._rolling_for(symbol))
        self._volatility_cache[key] = metrics
        return metrics

    def signals(
        self, symbol: str, timestamp_ms: int, current_apr: Decimal
    ) -> PredictiveSignals:
        momentum = self.funding_momentum(symbol, timestamp_ms)
        volatility = self.volatility(symbol, timestamp_ms)
        risk_score = compute_risk_score(momentum, volatility, current_apr)

        signals = PredictiveSignals(
            funding_momentum=momentum,
            volatility=volatility,
            risk_score=risk_score,
            entry_recommendation=recommend_entry(risk_score, volatility, current_apr),
            exit_recommendation=recommend_exit(momentum, risk_score, current_apr),
        )
        logger.debug(
            "predictive_signals",
            symbol=symbol,
            timestamp_ms=timestamp_ms,
            current_apr=str(current_apr),
            trend=momentum.trend.value,
            risk_score=str(risk_score),
            is_low_vol=volatility.is_low_vol,
            entry=signals.entry_recommendation.value,
            exit=signals.exit_recommendation.value,
        )
        return signals

    def _rolling_for(self, symbol: str) -> list[Decimal]:
        rolling = self._rolling.get(symbol)
        if rolling is None:
            history = self._histories.get(symbol)
            rolling = rolling_volatilities(history.closes) if history else []
            self._rolling[symbol] = rolling
        return rolling
