"""Position lifecycle state machine for the backtest tick loop.

Each symbol is either closed or open; a symbol is never opened twice. At
every processed tick the manager runs, in strict order:

1. settle funding for every open position at the tick's rate and perp price
2. evaluate exits for all open symbols against the same snapshot
3. apply exits with full P&L attribution
4. evaluate entries among symbols above the APR threshold
5. rank and size admitted candidates into the free slots
6. apply entries, charging the spot notional to cash

The perp leg carries no capital charge. Fees are charged on the spot
notional on each side of the trade.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.backtest.models import ClosedPosition, OpenPosition
from fundsim.backtest.policies import current_funding
from fundsim.funding import funding_payment
from fundsim.logging import get_logger

if TYPE_CHECKING:
    from fundsim.backtest.models import MarketSnapshot
    from fundsim.backtest.policies import (
        EntryCandidate,
        EntryPolicy,
        ExitDecision,
        ExitPolicy,
    )
    from fundsim.backtest.ranking import SizingPolicy
    from fundsim.signals.models import PredictiveSignals

logger = get_logger(__name__)

BACKTEST_ENDED = "Backtest ended"
_MS_PER_HOUR = Decimal(3600 * 1000)
_OUTCOME_RISK_CUTOFF = Decimal("0.5")


class PositionLifecycleManager:
    """Owns cash, the open-position set, and the closed-position log of a run.

    Args:
        initial_capital: Starting cash.
        max_positions: Concurrency cap on open positions.
        min_apr: Entry threshold in annualized percent (strictly greater).
        entry_policy: Admits APR-eligible symbols.
        exit_policy: Decides exits for open positions.
        sizing_policy: Ranks admitted candidates and sizes them.
        fee_rate: Fee fraction of spot notional per side.
    """

    def __init__(
        self,
        initial_capital: Decimal,
        max_positions: int,
        min_apr: Decimal,
        entry_policy: EntryPolicy,
        exit_policy: ExitPolicy,
        sizing_policy: SizingPolicy,
        fee_rate: Decimal = Decimal("0.001"),
    ) -> None:
        self.cash = initial_capital
        self.open_positions: dict[str, OpenPosition] = {}
        self.closed_positions: list[ClosedPosition] = []

        self._max_positions = max_positions
        self._min_apr = min_apr
        self._entry_policy = entry_policy
        self._exit_policy = exit_policy
        self._sizing_policy = sizing_policy
        self._fee_rate = fee_rate

    # ──────────────────────────────────────────────
    # Tick steps
    # ──────────────────────────────────────────────

    def settle_funding(self, snapshot: MarketSnapshot) -> Decimal:
        """Credit one funding payment to every open position that can settle.

        A position settles only when both its rate and perp price resolve.

        Returns:
            Net funding credited to cash at this tick.
        """
        total = Decimal("0")
        for symbol in sorted(self.open_positions):
            rate = snapshot.funding_rates.get(symbol)
            perp_price = snapshot.perp_prices.get(symbol)
            if rate is None or perp_price is None:
                continue

            position = self.open_positions[symbol]
            payment = funding_payment(position.quantity, perp_price, rate)
            position.funding_payments.append(payment)
            position.periods_held += 1
            self.cash += payment
            total += payment
        return total

    def evaluate_exits(self, snapshot: MarketSnapshot) -> list[ExitDecision]:
        """Collect exit decisions for all open symbols before applying any."""
        decisions: list[ExitDecision] = []
        for symbol in sorted(self.open_positions):
            decision = self._exit_policy.evaluate(self.open_positions[symbol], snapshot)
            if decision is not None:
                decisions.append(decision)
        return decisions

    def apply_exits(
        self, decisions: list[ExitDecision], snapshot: MarketSnapshot
    ) -> list[ClosedPosition]:
        closed: list[ClosedPosition] = []
        for decision in decisions:
            position = self.open_positions[decision.symbol]
            closed.append(
                self.close_position(
                    position,
                    exit_time_ms=snapshot.timestamp_ms,
                    exit_spot_price=snapshot.spot_prices.get(
                        decision.symbol, position.entry_spot_price
                    ),
                    exit_perp_price=snapshot.perp_prices.get(
                        decision.symbol, position.entry_perp_price
                    ),
                    exit_funding_rate=decision.funding_rate,
                    exit_funding_apr=decision.funding_apr,
                    exit_reason=decision.reason,
                    exit_signals=decision.exit_signals,
                )
            )
        return closed

    def evaluate_entries(self, snapshot: MarketSnapshot) -> list[EntryCandidate]:
        """Symbols above the APR threshold, priced, not open, and admitted."""
        candidates: list[EntryCandidate] = []
        for symbol in sorted(snapshot.funding_rates):
            if symbol in self.open_positions or not snapshot.has_prices(symbol):
                continue
            rate, apr = current_funding(snapshot, symbol)
            if apr <= self._min_apr:
                continue
            candidate = self._entry_policy.admit(symbol, rate, apr, snapshot)
            if candidate is not None:
                candidates.append(candidate)
        return candidates

    def apply_entries(
        self, candidates: list[EntryCandidate], snapshot: MarketSnapshot
    ) -> list[OpenPosition]:
        """Rank, size, and open candidates into the free slots."""
        available_slots = self._max_positions - len(self.open_positions)
        if available_slots <= 0 or not candidates:
            return []

        opened: list[OpenPosition] = []
        for candidate in self._sizing_policy.rank(candidates)[:available_slots]:
            size = self._sizing_policy.size(
                candidate, self.cash, available_slots, self._max_positions
            )
            if size <= 0:
                logger.debug(
                    "entry_skipped_non_positive_size",
                    symbol=candidate.symbol,
                    timestamp_ms=snapshot.timestamp_ms,
                    size=str(size),
                )
                continue

            quantity = size / candidate.spot_price
            self.cash -= quantity * candidate.spot_price
            position = OpenPosition(
                symbol=candidate.symbol,
                entry_time_ms=snapshot.timestamp_ms,
                entry_spot_price=candidate.spot_price,
                entry_perp_price=candidate.perp_price,
                quantity=quantity,
                entry_funding_rate=candidate.funding_rate,
                entry_funding_apr=candidate.funding_apr,
                concurrent_positions=len(self.open_positions) + 1,
                entry_signals=candidate.signals,
                ml_prediction=candidate.ml_prediction,
            )
            self.open_positions[candidate.symbol] = position
            opened.append(position)
            logger.debug(
                "position_opened",
                symbol=candidate.symbol,
                timestamp_ms=snapshot.timestamp_ms,
                quantity=str(quantity),
                size=str(size),
                funding_apr=str(candidate.funding_apr),
                cash=str(self.cash),
            )
        return opened

    def process_tick(self, snapshot: MarketSnapshot) -> None:
        """Run settle, exit, and entry steps for one valid snapshot."""
        self.settle_funding(snapshot)
        self.apply_exits(self.evaluate_exits(snapshot), snapshot)
        self.apply_entries(self.evaluate_entries(snapshot), snapshot)

    def force_close_all(self, snapshot: MarketSnapshot) -> list[ClosedPosition]:
        """Close every open position at the end of the horizon.

        Unresolved prices fall back to entry prices and an unresolved rate
        to 0, so this always empties the open set.
        """
        closed: list[ClosedPosition] = []
        for symbol in sorted(self.open_positions):
            position = self.open_positions[symbol]
            rate, apr = current_funding(snapshot, symbol)
            closed.append(
                self.close_position(
                    position,
                    exit_time_ms=snapshot.timestamp_ms,
                    exit_spot_price=snapshot.spot_prices.get(
                        symbol, position.entry_spot_price
                    ),
                    exit_perp_price=snapshot.perp_prices.get(
                        symbol, position.entry_perp_price
                    ),
                    exit_funding_rate=rate,
                    exit_funding_apr=apr,
                    exit_reason=BACKTEST_ENDED,
                )
            )
        return closed

    # ──────────────────────────────────────────────
    # P&L
    # ──────────────────────────────────────────────

    def close_position(
        self,
        position: OpenPosition,
        exit_time_ms: int,
        exit_spot_price: Decimal,
        exit_perp_price: Decimal,
        exit_funding_rate: Decimal,
        exit_funding_apr: Decimal,
        exit_reason: str,
        exit_signals: PredictiveSignals | None = None,
    ) -> ClosedPosition:
        """Realize P&L, return the spot notional to cash, record the trade."""
        qty = position.quantity
        spot_pnl = (exit_spot_price - position.entry_spot_price) * qty
        perp_pnl = (position.entry_perp_price - exit_perp_price) * qty
        total_funding = position.total_funding
        entry_fees = qty * position.entry_spot_price * self._fee_rate
        exit_fees = qty * exit_spot_price * self._fee_rate
        total_pnl = spot_pnl + perp_pnl + total_funding - entry_fees - exit_fees

        predicted_outcome, confidence = predict_outcome(position)

        closed = ClosedPosition(
            symbol=position.symbol,
            entry_time_ms=position.entry_time_ms,
            exit_time_ms=exit_time_ms,
            entry_spot_price=position.entry_spot_price,
            entry_perp_price=position.entry_perp_price,
            exit_spot_price=exit_spot_price,
            exit_perp_price=exit_perp_price,
            quantity=qty,
            entry_funding_rate=position.entry_funding_rate,
            entry_funding_apr=position.entry_funding_apr,
            exit_funding_rate=exit_funding_rate,
            exit_funding_apr=exit_funding_apr,
            exit_reason=exit_reason,
            holding_period_hours=Decimal(exit_time_ms - position.entry_time_ms) / _MS_PER_HOUR,
            concurrent_positions=position.concurrent_positions,
            funding_payments=tuple(position.funding_payments),
            funding_periods_held=position.periods_held,
            spot_pnl=spot_pnl,
            perp_pnl=perp_pnl,
            total_funding=total_funding,
            entry_fees=entry_fees,
            exit_fees=exit_fees,
            total_pnl=total_pnl,
            entry_signals=position.entry_signals,
            exit_signals=exit_signals,
            ml_prediction=position.ml_prediction,
            predicted_outcome=predicted_outcome,
            confidence=confidence,
        )

        self.cash += qty * exit_spot_price
        del self.open_positions[position.symbol]
        self.closed_positions.append(closed)

        logger.debug(
            "position_closed",
            symbol=position.symbol,
            timestamp_ms=exit_time_ms,
            reason=exit_reason,
            total_pnl=str(total_pnl),
            total_funding=str(total_funding),
            periods_held=position.periods_held,
            cash=str(self.cash),
        )
        return closed


def predict_outcome(position: OpenPosition) -> tuple[str, Decimal | None]:
    """Entry-time outcome prediction for a position and its confidence.

    A decline prediction means "loss" at the predictor's confidence.
    Otherwise the entry risk score decides: risk < 0.5 means "win" with
    confidence 1 - risk, else "loss" with confidence risk. Positions opened
    without signals are "unknown".
    """
    if position.ml_prediction is not None:
        outcome = "loss" if position.ml_prediction.will_decline else "win"
        return outcome, position.ml_prediction.confidence
    if position.entry_signals is not None:
        risk = position.entry_signals.risk_score
        if risk < _OUTCOME_RISK_CUTOFF:
            return "win", Decimal("1") - risk
        return "loss", risk
    return "unknown", None
