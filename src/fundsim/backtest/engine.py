"""Core backtest engine: deterministic replay over funding settlement ticks.

Walks the 8-hour funding grid between the configured start and end, resolves
a step-function MarketSnapshot at every tick, and feeds valid snapshots
through the position lifecycle manager (settle -> exit -> enter), marking
equity after each processed tick. Ticks whose snapshot does not resolve are
skipped without an equity point. Positions still open after the last tick
are force-closed at the end of the horizon.

run() is synchronous and performs no I/O: HistoricalData is loaded by the
caller (see runner.py) and treated as read-only, so repeated runs with the
same inputs produce identical results.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
CRITICAL: Never use time.time() -- always use simulated timestamps.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.backtest.aggregator import (
    feature_importance,
    monthly_stats,
    signal_accuracy,
    symbol_stats,
)
from fundsim.backtest.equity import EquityTracker
from fundsim.backtest.lifecycle import PositionLifecycleManager
from fundsim.backtest.models import (
    BacktestConfig,
    BacktestResult,
    ClosedPosition,
    RunSummary,
)
from fundsim.backtest.policies import (
    BaselineEntryPolicy,
    BaselineExitPolicy,
    SignalEntryPolicy,
    SignalExitPolicy,
)
from fundsim.backtest.ranking import ConfidenceWeightedSizing, EqualWeightSizing
from fundsim.backtest.snapshot import MarketSnapshotResolver
from fundsim.backtest.timestamps import generate_funding_timestamps
from fundsim.config import FeeSettings
from fundsim.exceptions import NoDataAvailableError
from fundsim.logging import get_logger, run_context
from fundsim.signals.gate import PredictiveSignalGate
from fundsim.signals.predictor import HeuristicDeclinePredictor

if TYPE_CHECKING:
    from fundsim.data.models import HistoricalData
    from fundsim.signals.gate import DeclinePredictor, SignalGate

logger = get_logger(__name__)

_MS_PER_DAY = 24 * 3600 * 1000


class BacktestEngine:
    """Historical replay engine for multi-symbol funding rate arbitrage.

    Baseline mode trades on APR alone with equal-weight sizing. Signal mode
    gates entries and exits through a SignalGate and sizes by confidence;
    when no gate is supplied the heuristic PredictiveSignalGate is built
    from the data, and with use_predictor the HeuristicDeclinePredictor.

    Args:
        config: Backtest configuration (window, strategy, thresholds).
        data: Historical data for the window; None means nothing was found.
        signal_gate: Signal source for signal mode.
        predictor: Optional decline predictor for signal mode.
        fee_settings: Fee rates. Defaults to FeeSettings().

    Raises:
        InvalidConfigError: If the configuration is unusable.
        NoDataAvailableError: If data is None or empty.
    """

    def __init__(
        self,
        config: BacktestConfig,
        data: HistoricalData | None,
        signal_gate: SignalGate | None = None,
        predictor: DeclinePredictor | None = None,
        fee_settings: FeeSettings | None = None,
    ) -> None:
        config.validate()
        if data is None or data.is_empty():
            raise NoDataAvailableError(
                f"No historical data available between {config.start_ms} and {config.end_ms}"
            )

        self._config = config
        self._data = data
        self._fee_settings = fee_settings or FeeSettings()

        self._signal_gate: SignalGate | None = None
        self._predictor: DeclinePredictor | None = None
        if config.is_signal_gated:
            self._signal_gate = signal_gate or PredictiveSignalGate(data)
            if predictor is not None:
                self._predictor = predictor
            elif config.use_predictor:
                self._predictor = HeuristicDeclinePredictor(data)

    def _build_manager(self) -> PositionLifecycleManager:
        config = self._config
        if self._signal_gate is not None:
            entry_policy = SignalEntryPolicy(
                gate=self._signal_gate,
                risk_threshold=config.risk_threshold,
                volatility_filter=config.volatility_filter,
                momentum_filter=config.momentum_filter,
                predictor=self._predictor,
            )
            exit_policy = SignalExitPolicy(self._signal_gate)
            sizing_policy = ConfidenceWeightedSizing()
        else:
            entry_policy = BaselineEntryPolicy()
            exit_policy = BaselineExitPolicy()
            sizing_policy = EqualWeightSizing()

        return PositionLifecycleManager(
            initial_capital=config.initial_capital,
            max_positions=config.max_positions,
            min_apr=config.resolved_min_apr(),
            entry_policy=entry_policy,
            exit_policy=exit_policy,
            sizing_policy=sizing_policy,
            fee_rate=self._fee_settings.spot_taker,
        )

    def run(self) -> BacktestResult:
        """Execute the replay and return the full result.

        Every call starts from fresh cash, an empty open set, and an empty
        equity curve.
        """
        config = self._config
        with run_context(
            strategy_mode=config.strategy_mode,
            start_ms=config.start_ms,
            end_ms=config.end_ms,
        ):
            return self._replay()

    def _replay(self) -> BacktestResult:
        config = self._config
        ticks = generate_funding_timestamps(config.start_ms, config.end_ms)
        resolver = MarketSnapshotResolver(self._data)
        manager = self._build_manager()
        tracker = EquityTracker(config.initial_capital)

        logger.info(
            "backtest_starting",
            ticks=len(ticks),
            symbols=len(self._data.symbols),
            min_apr=config.resolved_min_apr(),
        )

        skipped = 0
        for ts in ticks:
            snapshot = resolver.snapshot_at(ts)
            if snapshot is None:
                skipped += 1
                logger.debug("tick_skipped", timestamp_ms=ts)
                continue

            manager.process_tick(snapshot)
            tracker.mark(ts, manager.cash, manager.open_positions.values(), snapshot)

        if manager.open_positions:
            manager.force_close_all(resolver.resolve(config.end_ms))

        positions = manager.closed_positions
        summary = self._summarize(manager.cash, positions, tracker.max_drawdown)

        result = BacktestResult(
            config=config,
            summary=summary,
            equity_curve=tracker.curve,
            closed_positions=positions,
            monthly_stats=monthly_stats(positions, tracker.curve, config.initial_capital),
            symbol_stats=symbol_stats(positions),
        )
        if config.is_signal_gated:
            result.signal_accuracy = signal_accuracy(positions)
            result.feature_importance = feature_importance(positions)

        logger.info(
            "backtest_complete",
            ticks_processed=len(ticks) - skipped,
            ticks_skipped=skipped,
            total_trades=summary.number_of_trades,
            final_capital=summary.final_capital,
            total_return_pct=summary.total_return_pct,
            max_drawdown=summary.max_drawdown,
        )
        return result

    def _summarize(
        self,
        final_capital: Decimal,
        positions: list[ClosedPosition],
        max_drawdown: Decimal,
    ) -> RunSummary:
        initial = self._config.initial_capital
        trades = len(positions)
        winners = sum(1 for p in positions if p.is_win)
        span_ms = max(0, self._config.end_ms - self._config.start_ms)

        return RunSummary(
            initial_capital=initial,
            final_capital=final_capital,
            total_return_pct=(final_capital - initial) / initial * Decimal("100"),
            total_return_dollars=final_capital - initial,
            number_of_trades=trades,
            winning_trades=winners,
            win_rate=(
                Decimal(winners) / Decimal(trades) * Decimal("100")
                if trades
                else Decimal("0")
            ),
            max_drawdown=max_drawdown,
            total_days=-(-span_ms // _MS_PER_DAY),
        )
