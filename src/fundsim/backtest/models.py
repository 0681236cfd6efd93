"""Data models for the backtest engine.

Defines the run configuration, the per-tick market snapshot, open and closed
position records, the equity curve, the run summary, and the aggregated
statistics and sweep results built from them.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.exceptions import InvalidConfigError

if TYPE_CHECKING:
    from fundsim.config import BacktestSettings
    from fundsim.signals.models import DeclinePrediction, PredictiveSignals

STRATEGY_BASELINE = "baseline"
STRATEGY_SIGNAL = "signal"
STRATEGY_MODES = (STRATEGY_BASELINE, STRATEGY_SIGNAL)

DEFAULT_MIN_APR = {
    STRATEGY_BASELINE: Decimal("8"),
    STRATEGY_SIGNAL: Decimal("3"),
}


def _opt_str(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


@dataclass
class BacktestConfig:
    """Configuration for a single backtest run.

    Holds the window, strategy mode, capital, and entry filters. A min_apr of
    None means the strategy mode's default (8% baseline, 3% signal-gated).
    """

    # Required fields
    start_ms: int  # start timestamp in milliseconds
    end_ms: int  # end timestamp in milliseconds

    # Strategy selection
    strategy_mode: str = STRATEGY_BASELINE  # "baseline" or "signal"
    initial_capital: Decimal = Decimal("10000")
    max_positions: int = 5

    # Entry threshold, annualized percent
    min_apr: Decimal | None = None

    # Signal-gated params
    risk_threshold: Decimal = Decimal("0.6")
    volatility_filter: bool = False
    momentum_filter: bool = False
    use_predictor: bool = False

    @classmethod
    def from_settings(
        cls,
        settings: BacktestSettings,
        start_ms: int,
        end_ms: int,
        **kwargs: object,
    ) -> BacktestConfig:
        """Build a config whose unspecified fields come from BacktestSettings."""
        strategy_mode = kwargs.pop("strategy_mode", STRATEGY_BASELINE)
        mode_min_apr = (
            settings.signal_min_apr
            if strategy_mode == STRATEGY_SIGNAL
            else settings.baseline_min_apr
        )
        values: dict[str, object] = {
            "initial_capital": settings.default_initial_capital,
            "max_positions": settings.max_concurrent_positions,
            "min_apr": mode_min_apr,
            "risk_threshold": settings.risk_threshold,
        }
        values.update(kwargs)
        return cls(
            start_ms=start_ms,
            end_ms=end_ms,
            strategy_mode=strategy_mode,
            **values,
        )

    @property
    def is_signal_gated(self) -> bool:
        return self.strategy_mode == STRATEGY_SIGNAL

    def resolved_min_apr(self) -> Decimal:
        """Entry APR threshold with the mode default applied."""
        if self.min_apr is not None:
            return self.min_apr
        return DEFAULT_MIN_APR.get(self.strategy_mode, DEFAULT_MIN_APR[STRATEGY_BASELINE])

    def validate(self) -> None:
        """Reject configurations that cannot produce a meaningful run.

        Raises:
            InvalidConfigError: On unknown strategy mode, non-positive capital,
                max_positions < 1, or a risk threshold outside [0, 1].
        """
        if self.strategy_mode not in STRATEGY_MODES:
            raise InvalidConfigError(
                f"Unknown strategy_mode '{self.strategy_mode}', "
                f"expected one of {', '.join(STRATEGY_MODES)}"
            )
        if self.initial_capital <= 0:
            raise InvalidConfigError(
                f"initial_capital must be positive, got {self.initial_capital}"
            )
        if self.max_positions < 1:
            raise InvalidConfigError(
                f"max_positions must be at least 1, got {self.max_positions}"
            )
        if not Decimal("0") <= self.risk_threshold <= Decimal("1"):
            raise InvalidConfigError(
                f"risk_threshold must be within [0, 1], got {self.risk_threshold}"
            )

    def with_overrides(self, **kwargs: object) -> BacktestConfig:
        """Return a new BacktestConfig with specified fields overridden.

        Args:
            **kwargs: Fields to override.

        Returns:
            New BacktestConfig with overridden values.
        """
        return replace(self, **kwargs)

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output.

        Converts all Decimal values to str for JSON compatibility.

        Returns:
            Dict with all fields, Decimals as strings.
        """
        return {
            "start_ms": self.start_ms,
            "end_ms": self.end_ms,
            "strategy_mode": self.strategy_mode,
            "initial_capital": str(self.initial_capital),
            "max_positions": self.max_positions,
            "min_apr": str(self.resolved_min_apr()),
            "risk_threshold": str(self.risk_threshold),
            "volatility_filter": self.volatility_filter,
            "momentum_filter": self.momentum_filter,
            "use_predictor": self.use_predictor,
        }


@dataclass(frozen=True)
class MarketSnapshot:
    """Last-known funding rate and prices per symbol at one funding tick.

    Symbols without an observation at or before the tick are absent from the
    corresponding map.

    funding_intervals holds the settlement interval, in hours, of the rate
    record each funding rate came from.
    """

    timestamp_ms: int
    funding_rates: dict[str, Decimal]
    spot_prices: dict[str, Decimal]
    perp_prices: dict[str, Decimal]
    funding_intervals: dict[str, int] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        """True when at least one rate and one fully priced symbol resolve."""
        return bool(self.funding_rates) and bool(self.priced_symbols())

    def priced_symbols(self) -> list[str]:
        """Symbols with both a spot and a perp price, sorted."""
        return sorted(set(self.spot_prices) & set(self.perp_prices))

    def has_prices(self, symbol: str) -> bool:
        return symbol in self.spot_prices and symbol in self.perp_prices


@dataclass
class OpenPosition:
    """A live spot-long / perp-short position.

    Mutated in place by funding settlement only; quantity is fixed at entry.
    """

    symbol: str
    entry_time_ms: int
    entry_spot_price: Decimal
    entry_perp_price: Decimal
    quantity: Decimal
    entry_funding_rate: Decimal
    entry_funding_apr: Decimal
    concurrent_positions: int
    funding_payments: list[Decimal] = field(default_factory=list)
    periods_held: int = 0
    entry_signals: PredictiveSignals | None = None
    ml_prediction: DeclinePrediction | None = None

    @property
    def total_funding(self) -> Decimal:
        return sum(self.funding_payments, Decimal("0"))


@dataclass(frozen=True)
class ClosedPosition:
    """Immutable record of a completed round trip with full P&L attribution.

    Invariant: total_pnl == spot_pnl + perp_pnl + total_funding
    - entry_fees - exit_fees.
    """

    symbol: str
    entry_time_ms: int
    exit_time_ms: int
    entry_spot_price: Decimal
    entry_perp_price: Decimal
    exit_spot_price: Decimal
    exit_perp_price: Decimal
    quantity: Decimal
    entry_funding_rate: Decimal
    entry_funding_apr: Decimal
    exit_funding_rate: Decimal
    exit_funding_apr: Decimal
    exit_reason: str
    holding_period_hours: Decimal
    concurrent_positions: int
    funding_payments: tuple[Decimal, ...]
    funding_periods_held: int
    spot_pnl: Decimal
    perp_pnl: Decimal
    total_funding: Decimal
    entry_fees: Decimal
    exit_fees: Decimal
    total_pnl: Decimal
    entry_signals: PredictiveSignals | None = None
    exit_signals: PredictiveSignals | None = None
    ml_prediction: DeclinePrediction | None = None
    predicted_outcome: str = "unknown"  # "win", "loss" or "unknown"
    confidence: Decimal | None = None

    @property
    def is_win(self) -> bool:
        return self.total_pnl > 0

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output.

        Returns:
            Dict with all fields; Decimal values as strings.
        """
        return {
            "symbol": self.symbol,
            "entry_time_ms": self.entry_time_ms,
            "exit_time_ms": self.exit_time_ms,
            "entry_spot_price": str(self.entry_spot_price),
            "entry_perp_price": str(self.entry_perp_price),
            "exit_spot_price": str(self.exit_spot_price),
            "exit_perp_price": str(self.exit_perp_price),
            "quantity": str(self.quantity),
            "entry_funding_rate": str(self.entry_funding_rate),
            "entry_funding_apr": str(self.entry_funding_apr),
            "exit_funding_rate": str(self.exit_funding_rate),
            "exit_funding_apr": str(self.exit_funding_apr),
            "exit_reason": self.exit_reason,
            "holding_period_hours": str(self.holding_period_hours),
            "concurrent_positions": self.concurrent_positions,
            "funding_payments": [str(p) for p in self.funding_payments],
            "funding_periods_held": self.funding_periods_held,
            "spot_pnl": str(self.spot_pnl),
            "perp_pnl": str(self.perp_pnl),
            "total_funding": str(self.total_funding),
            "entry_fees": str(self.entry_fees),
            "exit_fees": str(self.exit_fees),
            "total_pnl": str(self.total_pnl),
            "entry_signals": self.entry_signals.to_dict() if self.entry_signals else None,
            "exit_signals": self.exit_signals.to_dict() if self.exit_signals else None,
            "ml_prediction": self.ml_prediction.to_dict() if self.ml_prediction else None,
            "predicted_outcome": self.predicted_outcome,
            "confidence": _opt_str(self.confidence),
        }


@dataclass(frozen=True)
class EquityPoint:
    """A single point on the equity curve.

    Attributes:
        timestamp_ms: Funding tick in milliseconds.
        portfolio_value: Cash plus open spot legs marked to market.
    """

    timestamp_ms: int
    portfolio_value: Decimal


@dataclass(frozen=True)
class RunSummary:
    """Headline figures for a completed run. Percentages are 0-100."""

    initial_capital: Decimal
    final_capital: Decimal
    total_return_pct: Decimal
    total_return_dollars: Decimal
    number_of_trades: int
    winning_trades: int
    win_rate: Decimal
    max_drawdown: Decimal
    total_days: int

    def to_dict(self) -> dict:
        return {
            "initial_capital": str(self.initial_capital),
            "final_capital": str(self.final_capital),
            "total_return_pct": str(self.total_return_pct),
            "total_return_dollars": str(self.total_return_dollars),
            "number_of_trades": self.number_of_trades,
            "winning_trades": self.winning_trades,
            "win_rate": str(self.win_rate),
            "max_drawdown": str(self.max_drawdown),
            "total_days": self.total_days,
        }


@dataclass(frozen=True)
class MonthlyStats:
    """Closed-trade statistics for one UTC calendar month ("YYYY-MM")."""

    month: str
    trades: int
    profit: Decimal
    return_pct: Decimal
    win_rate: Decimal
    avg_pnl: Decimal
    total_funding: Decimal
    avg_holding_hours: Decimal

    def to_dict(self) -> dict:
        return {
            "month": self.month,
            "trades": self.trades,
            "profit": str(self.profit),
            "return_pct": str(self.return_pct),
            "win_rate": str(self.win_rate),
            "avg_pnl": str(self.avg_pnl),
            "total_funding": str(self.total_funding),
            "avg_holding_hours": str(self.avg_holding_hours),
        }


@dataclass(frozen=True)
class SymbolStats:
    """Closed-trade statistics for one symbol."""

    symbol: str
    trades: int
    total_pnl: Decimal
    avg_pnl: Decimal
    win_rate: Decimal
    avg_funding_apr: Decimal
    avg_holding_hours: Decimal
    total_funding: Decimal

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "trades": self.trades,
            "total_pnl": str(self.total_pnl),
            "avg_pnl": str(self.avg_pnl),
            "win_rate": str(self.win_rate),
            "avg_funding_apr": str(self.avg_funding_apr),
            "avg_holding_hours": str(self.avg_holding_hours),
            "total_funding": str(self.total_funding),
        }


@dataclass(frozen=True)
class SignalAccuracy:
    """How often the entry-time outcome prediction matched the trade result.

    accuracy and avg_confidence are percentages (0-100).
    """

    total_predictions: int
    correct_predictions: int
    accuracy: Decimal
    avg_confidence: Decimal

    def to_dict(self) -> dict:
        return {
            "total_predictions": self.total_predictions,
            "correct_predictions": self.correct_predictions,
            "accuracy": str(self.accuracy),
            "avg_confidence": str(self.avg_confidence),
        }


@dataclass(frozen=True)
class FeatureImportance:
    """Fraction of trades (0-1) where a feature's warning matched the outcome."""

    funding_momentum: Decimal
    volatility_filter: Decimal
    risk_score: Decimal

    def to_dict(self) -> dict:
        return {
            "funding_momentum": str(self.funding_momentum),
            "volatility_filter": str(self.volatility_filter),
            "risk_score": str(self.risk_score),
        }


@dataclass
class BacktestResult:
    """Complete result of a single backtest run.

    signal_accuracy and feature_importance are only set for signal-gated runs.
    """

    config: BacktestConfig
    summary: RunSummary
    equity_curve: list[EquityPoint] = field(default_factory=list)
    closed_positions: list[ClosedPosition] = field(default_factory=list)
    monthly_stats: list[MonthlyStats] = field(default_factory=list)
    symbol_stats: list[SymbolStats] = field(default_factory=list)
    signal_accuracy: SignalAccuracy | None = None
    feature_importance: FeatureImportance | None = None

    def compact(self) -> BacktestResult:
        """Copy without the equity curve and closed positions."""
        return replace(self, equity_curve=[], closed_positions=[])

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output.

        Returns:
            Dict with config, summary, equity_curve, closed_positions and
            aggregate sub-dicts.
        """
        return {
            "config": self.config.to_dict(),
            "summary": self.summary.to_dict(),
            "equity_curve": [
                {"timestamp_ms": ep.timestamp_ms, "portfolio_value": str(ep.portfolio_value)}
                for ep in self.equity_curve
            ],
            "closed_positions": [p.to_dict() for p in self.closed_positions],
            "monthly_stats": [m.to_dict() for m in self.monthly_stats],
            "symbol_stats": [s.to_dict() for s in self.symbol_stats],
            "signal_accuracy": self.signal_accuracy.to_dict() if self.signal_accuracy else None,
            "feature_importance": self.feature_importance.to_dict() if self.feature_importance else None,
        }


@dataclass
class SweepResult:
    """Result of a parameter sweep across multiple backtest configurations.

    Attributes:
        param_grid: The parameter grid that was swept (param_name -> list of values).
        results: (param_combination_dict, BacktestResult, score) triples,
            best score first.
    """

    param_grid: dict[str, list]
    results: list[tuple[dict, BacktestResult, Decimal]]

    @property
    def best(self) -> tuple[dict, BacktestResult, Decimal] | None:
        return self.results[0] if self.results else None

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output.

        Returns:
            Dict with param_grid and results list.
        """
        return {
            "param_grid": {
                k: [str(v) if isinstance(v, Decimal) else v for v in vals]
                for k, vals in self.param_grid.items()
            },
            "results": [
                {
                    "params": {
                        k: str(v) if isinstance(v, Decimal) else v
                        for k, v in params.items()
                    },
                    "score": str(score),
                    "result": result.to_dict(),
                }
                for params, result, score in self.results
            ],
        }
