"""Backtest engine package.

Deterministic replay of a delta-neutral funding rate arbitrage strategy over
8-hour funding ticks, with baseline and signal-gated variants sharing one
position lifecycle manager. Includes parameter sweep for grid search
optimization.
"""

from fundsim.backtest.engine import BacktestEngine
from fundsim.backtest.lifecycle import PositionLifecycleManager
from fundsim.backtest.models import (
    BacktestConfig,
    BacktestResult,
    ClosedPosition,
    EquityPoint,
    MarketSnapshot,
    OpenPosition,
    RunSummary,
    SweepResult,
)
from fundsim.backtest.runner import run_backtest, run_backtest_cli, run_comparison
from fundsim.backtest.scoring import score_run
from fundsim.backtest.snapshot import MarketSnapshotResolver, SeriesCursor
from fundsim.backtest.sweep import ParameterSweep, format_sweep_summary, run_sweep
from fundsim.backtest.timestamps import generate_funding_timestamps

__all__ = [
    "BacktestConfig",
    "BacktestEngine",
    "BacktestResult",
    "ClosedPosition",
    "EquityPoint",
    "MarketSnapshot",
    "MarketSnapshotResolver",
    "OpenPosition",
    "ParameterSweep",
    "PositionLifecycleManager",
    "RunSummary",
    "SeriesCursor",
    "SweepResult",
    "format_sweep_summary",
    "generate_funding_timestamps",
    "run_backtest",
    "run_backtest_cli",
    "run_comparison",
    "run_sweep",
    "score_run",
]
