"""Pure reductions over closed positions and the equity curve.

Produces monthly and per-symbol statistics for every run, plus signal
prediction accuracy and a simple feature-importance readout for
signal-gated runs. Percentages are 0-100 except FeatureImportance, which
reports fractions.

CRITICAL: All monetary values use Decimal. Never use float.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timezone
from decimal import Decimal

from fundsim.backtest.models import (
    ClosedPosition,
    EquityPoint,
    FeatureImportance,
    MonthlyStats,
    SignalAccuracy,
    SymbolStats,
)
from fundsim.signals.models import TrendDirection

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_HIGH_RISK = Decimal("0.5")


def month_key(timestamp_ms: int) -> str:
    """UTC calendar month of a timestamp as "YYYY-MM"."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m")


def _mean(values: list[Decimal]) -> Decimal:
    if not values:
        return _ZERO
    return sum(values, _ZERO) / Decimal(len(values))


def _win_rate(positions: list[ClosedPosition]) -> Decimal:
    if not positions:
        return _ZERO
    wins = sum(1 for p in positions if p.is_win)
    return Decimal(wins) / Decimal(len(positions)) * _HUNDRED


def monthly_stats(
    positions: list[ClosedPosition],
    equity_curve: list[EquityPoint],
    initial_capital: Decimal,
) -> list[MonthlyStats]:
    """Group trades by UTC exit month.

    A month's return runs from its first to its last equity point. A month
    with trades but no equity point starts from the previous month's end
    value (initial capital for the first month) and shows 0% return.
    """
    by_month: dict[str, list[ClosedPosition]] = defaultdict(list)
    for position in positions:
        by_month[month_key(position.exit_time_ms)].append(position)

    bounds: dict[str, tuple[Decimal, Decimal]] = {}
    for point in equity_curve:
        key = month_key(point.timestamp_ms)
        if key not in by_month:
            continue
        start = bounds[key][0] if key in bounds else point.portfolio_value
        bounds[key] = (start, point.portfolio_value)

    stats: list[MonthlyStats] = []
    prev_value = initial_capital
    for month in sorted(by_month):
        trades = by_month[month]
        start_value, end_value = bounds.get(month, (prev_value, prev_value))
        return_pct = (
            (end_value - start_value) / start_value * _HUNDRED
            if start_value > 0
            else _ZERO
        )
        stats.append(
            MonthlyStats(
                month=month,
                trades=len(trades),
                profit=sum((t.total_pnl for t in trades), _ZERO),
                return_pct=return_pct,
                win_rate=_win_rate(trades),
                avg_pnl=_mean([t.total_pnl for t in trades]),
                total_funding=sum((t.total_funding for t in trades), _ZERO),
                avg_holding_hours=_mean([t.holding_period_hours for t in trades]),
            )
        )
        prev_value = end_value
    return stats


def symbol_stats(positions: list[ClosedPosition]) -> list[SymbolStats]:
    """Per-symbol trade statistics, sorted by symbol."""
    by_symbol: dict[str, list[ClosedPosition]] = defaultdict(list)
    for position in positions:
        by_symbol[position.symbol].append(position)

    stats: list[SymbolStats] = []
    for symbol in sorted(by_symbol):
        trades = by_symbol[symbol]
        total_pnl = sum((t.total_pnl for t in trades), _ZERO)
        stats.append(
            SymbolStats(
                symbol=symbol,
                trades=len(trades),
                total_pnl=total_pnl,
                avg_pnl=total_pnl / Decimal(len(trades)),
                win_rate=_win_rate(trades),
                avg_funding_apr=_mean([t.entry_funding_apr for t in trades]),
                avg_holding_hours=_mean([t.holding_period_hours for t in trades]),
                total_funding=sum((t.total_funding for t in trades), _ZERO),
            )
        )
    return stats


def signal_accuracy(positions: list[ClosedPosition]) -> SignalAccuracy:
    """Share of trades whose entry-time predicted outcome was right.

    Trades without a prediction ("unknown") are not counted.
    """
    predicted = [p for p in positions if p.predicted_outcome != "unknown"]
    if not predicted:
        return SignalAccuracy(
            total_predictions=0,
            correct_predictions=0,
            accuracy=_ZERO,
            avg_confidence=_ZERO,
        )

    correct = sum(
        1
        for p in predicted
        if p.predicted_outcome == ("win" if p.is_win else "loss")
    )
    total = Decimal(len(predicted))
    confidence_sum = sum((p.confidence or _ZERO for p in predicted), _ZERO)
    return SignalAccuracy(
        total_predictions=len(predicted),
        correct_predictions=correct,
        accuracy=Decimal(correct) / total * _HUNDRED,
        avg_confidence=confidence_sum / total * _HUNDRED,
    )


def feature_importance(positions: list[ClosedPosition]) -> FeatureImportance:
    """How often each entry signal's warning agreed with the trade result.

    A feature is right on a trade when its warning (declining momentum, high
    volatility, risk > 0.5) coincides with a losing trade, or its absence
    with a winning one. Trades opened without signals are ignored.
    """
    with_signals = [p for p in positions if p.entry_signals is not None]
    if not with_signals:
        return FeatureImportance(
            funding_momentum=_ZERO,
            volatility_filter=_ZERO,
            risk_score=_ZERO,
        )

    momentum_hits = volatility_hits = risk_hits = 0
    for p in with_signals:
        signals = p.entry_signals
        lost = not p.is_win
        if (signals.funding_momentum.trend == TrendDirection.DECLINING) == lost:
            momentum_hits += 1
        if (not signals.volatility.is_low_vol) == lost:
            volatility_hits += 1
        if (signals.risk_score > _HIGH_RISK) == lost:
            risk_hits += 1

    n = Decimal(len(with_signals))
    return FeatureImportance(
        funding_momentum=Decimal(momentum_hits) / n,
        volatility_filter=Decimal(volatility_hits) / n,
        risk_score=Decimal(risk_hits) / n,
    )
