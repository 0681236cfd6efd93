"""High-level entry points for running backtests.

Provides run_backtest() for a single run, run_comparison() for baseline vs
signal-gated side by side over the same data, and run_backtest_cli() for
convenient usage with date strings.

This module is the I/O boundary: historical data is loaded once from SQLite
(async, aiosqlite) before any tick is processed, then the synchronous engine
replays it. A window without data raises NoDataAvailableError.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from decimal import Decimal

from fundsim.backtest.engine import BacktestEngine
from fundsim.backtest.models import (
    STRATEGY_BASELINE,
    STRATEGY_SIGNAL,
    BacktestConfig,
    BacktestResult,
)
from fundsim.config import AppSettings
from fundsim.data.database import HistoricalDatabase
from fundsim.data.models import HistoricalData
from fundsim.data.store import HistoricalDataStore
from fundsim.exceptions import NoDataAvailableError
from fundsim.logging import get_logger

logger = get_logger(__name__)

_MS_PER_HOUR = 3600 * 1000


async def load_historical_data(
    start_ms: int,
    end_ms: int,
    db_path: str,
    warmup_hours: int = 0,
) -> HistoricalData:
    """Load one window of historical data from the SQLite store.

    Raises:
        NoDataAvailableError: If the file is missing or has no rates or
            candles for the window.
    """
    async with HistoricalDatabase(db_path, read_only=True) as database:
        store = HistoricalDataStore(database)
        data = await store.load(start_ms, end_ms, warmup_ms=warmup_hours * _MS_PER_HOUR)

    if data is None:
        raise NoDataAvailableError(
            f"No historical data available between {start_ms} and {end_ms} in {db_path}"
        )
    return data


async def run_backtest(
    config: BacktestConfig,
    db_path: str | None = None,
    settings: AppSettings | None = None,
) -> BacktestResult:
    """Run a single backtest with the given configuration.

    Args:
        config: Backtest configuration (window, strategy, thresholds).
        db_path: Path to the SQLite historical database. Defaults to
            settings.historical.db_path.
        settings: Application settings. Defaults to AppSettings().

    Returns:
        BacktestResult with summary, equity curve, and closed positions.

    Raises:
        InvalidConfigError: If the configuration is unusable.
        NoDataAvailableError: If the window has no historical data.
    """
    if settings is None:
        settings = AppSettings()
    if db_path is None:
        db_path = settings.historical.db_path

    config.validate()
    start_time = time.monotonic()

    logger.info(
        "run_backtest_starting",
        strategy_mode=config.strategy_mode,
        start_ms=config.start_ms,
        end_ms=config.end_ms,
        db_path=db_path,
    )

    data = await load_historical_data(
        config.start_ms,
        config.end_ms,
        db_path,
        warmup_hours=settings.historical.warmup_hours,
    )
    engine = BacktestEngine(config=config, data=data, fee_settings=settings.fees)
    result = engine.run()

    elapsed = time.monotonic() - start_time

    logger.info(
        "run_backtest_complete",
        strategy_mode=config.strategy_mode,
        total_trades=result.summary.number_of_trades,
        total_return_pct=str(result.summary.total_return_pct),
        equity_points=len(result.equity_curve),
        elapsed_seconds=round(elapsed, 2),
    )

    return result


async def run_comparison(
    config_baseline: BacktestConfig,
    config_signal: BacktestConfig,
    db_path: str | None = None,
    settings: AppSettings | None = None,
) -> tuple[BacktestResult, BacktestResult]:
    """Run baseline and signal-gated backtests side by side.

    Data is loaded once over the union of both windows and shared read-only
    by the two runs.

    Args:
        config_baseline: Config with strategy_mode="baseline".
        config_signal: Config with strategy_mode="signal".
        db_path: Path to the SQLite historical database.
        settings: Application settings. Defaults to AppSettings().

    Returns:
        Tuple of (baseline_result, signal_result).
    """
    if settings is None:
        settings = AppSettings()
    if db_path is None:
        db_path = settings.historical.db_path

    if config_baseline.strategy_mode != STRATEGY_BASELINE:
        logger.warning(
            "comparison_config_mismatch",
            expected=STRATEGY_BASELINE,
            got=config_baseline.strategy_mode,
        )
    if config_signal.strategy_mode != STRATEGY_SIGNAL:
        logger.warning(
            "comparison_config_mismatch",
            expected=STRATEGY_SIGNAL,
            got=config_signal.strategy_mode,
        )
    if (
        config_baseline.start_ms != config_signal.start_ms
        or config_baseline.end_ms != config_signal.end_ms
    ):
        logger.warning(
            "comparison_date_range_mismatch",
            baseline_range=f"{config_baseline.start_ms}-{config_baseline.end_ms}",
            signal_range=f"{config_signal.start_ms}-{config_signal.end_ms}",
        )

    start_time = time.monotonic()
    data = await load_historical_data(
        min(config_baseline.start_ms, config_signal.start_ms),
        max(config_baseline.end_ms, config_signal.end_ms),
        db_path,
        warmup_hours=settings.historical.warmup_hours,
    )

    baseline_result = BacktestEngine(
        config=config_baseline, data=data, fee_settings=settings.fees
    ).run()
    signal_result = BacktestEngine(
        config=config_signal, data=data, fee_settings=settings.fees
    ).run()

    elapsed = time.monotonic() - start_time

    logger.info(
        "run_comparison_complete",
        baseline_trades=baseline_result.summary.number_of_trades,
        baseline_return_pct=str(baseline_result.summary.total_return_pct),
        signal_trades=signal_result.summary.number_of_trades,
        signal_return_pct=str(signal_result.summary.total_return_pct),
        elapsed_seconds=round(elapsed, 2),
    )

    return baseline_result, signal_result


def parse_date_ms(value: str) -> int:
    """Convert a "YYYY-MM-DD" UTC date to epoch milliseconds.

    Raises:
        ValueError: If the string is not a valid date.
    """
    try:
        dt = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError as e:
        raise ValueError(
            f"Invalid date format. Expected YYYY-MM-DD. Error: {e}"
        ) from e
    return int(dt.timestamp() * 1000)


async def run_backtest_cli(
    start_date: str,
    end_date: str,
    strategy_mode: str = STRATEGY_BASELINE,
    initial_capital: Decimal | None = None,
    db_path: str | None = None,
    settings: AppSettings | None = None,
    **kwargs: object,
) -> BacktestResult:
    """Convenience entry point with date strings.

    Converts human-readable date strings to millisecond timestamps, builds a
    BacktestConfig from the settings defaults, runs the backtest, and logs a
    summary.

    Args:
        start_date: Start date as "YYYY-MM-DD" string.
        end_date: End date as "YYYY-MM-DD" string.
        strategy_mode: "baseline" or "signal".
        initial_capital: Starting capital. Defaults to the settings value.
        db_path: Path to the SQLite historical database.
        settings: Application settings. Defaults to AppSettings().
        **kwargs: Additional BacktestConfig fields to override; unknown
            names are ignored.

    Returns:
        BacktestResult for the window.

    Raises:
        ValueError: If date strings are invalid or end_date is before
            start_date. Equal dates replay the single midnight tick.
    """
    if settings is None:
        settings = AppSettings()

    start_ms = parse_date_ms(start_date)
    end_ms = parse_date_ms(end_date)
    if end_ms < start_ms:
        raise ValueError(
            f"End date ({end_date}) must not be before start date ({start_date})"
        )

    overrides = {
        key: value
        for key, value in kwargs.items()
        if key in BacktestConfig.__dataclass_fields__
        and key not in ("start_ms", "end_ms", "strategy_mode")
    }
    if initial_capital is not None:
        overrides["initial_capital"] = initial_capital

    config = BacktestConfig.from_settings(
        settings.backtest,
        start_ms,
        end_ms,
        strategy_mode=strategy_mode,
        **overrides,
    )

    result = await run_backtest(config, db_path=db_path, settings=settings)

    s = result.summary
    logger.info(
        "backtest_cli_summary",
        strategy_mode=strategy_mode,
        date_range=f"{start_date} to {end_date}",
        initial_capital=str(s.initial_capital),
        final_capital=str(s.final_capital),
        total_return_pct=str(s.total_return_pct),
        total_trades=s.number_of_trades,
        winning_trades=s.winning_trades,
        win_rate=str(s.win_rate),
        max_drawdown=str(s.max_drawdown),
        total_days=s.total_days,
    )

    return result
