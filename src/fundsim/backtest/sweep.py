"""Parameter sweep engine for grid search over backtest configurations.

Generates all combinations of parameter values via itertools.product, runs
an independent backtest for each over the same read-only HistoricalData,
scores every run with score_run(), and returns a SweepResult sorted
best-first.

Runs share no mutable state, so with max_workers > 1 they are distributed
over a ProcessPoolExecutor. Each worker receives the data once through the
pool initializer.

Memory management: Only the best-scoring result retains its full equity
curve and closed positions. All other results keep their summary and
aggregate statistics only.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or fees.
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import fields
from decimal import Decimal
from itertools import product

from fundsim.backtest.engine import BacktestEngine
from fundsim.backtest.models import (
    STRATEGY_SIGNAL,
    BacktestConfig,
    BacktestResult,
    SweepResult,
)
from fundsim.backtest.runner import load_historical_data
from fundsim.backtest.scoring import score_run
from fundsim.config import AppSettings, FeeSettings
from fundsim.data.models import HistoricalData
from fundsim.exceptions import InvalidConfigError
from fundsim.logging import get_logger, run_context, setup_logging

logger = get_logger(__name__)

_DECIMAL_FIELDS = frozenset(
    f.name for f in fields(BacktestConfig) if "Decimal" in str(f.type)
)

# Per-process state, only ever set inside pool worker processes
_WORKER_DATA: HistoricalData | None = None
_WORKER_FEES: FeeSettings | None = None


def _worker_init(data: HistoricalData, fee_settings: FeeSettings, log_level: str) -> None:
    global _WORKER_DATA, _WORKER_FEES
    setup_logging(log_level)
    _WORKER_DATA = data
    _WORKER_FEES = fee_settings


def _replay(
    index: int, config: BacktestConfig, data: HistoricalData, fee_settings: FeeSettings
) -> BacktestResult:
    with run_context(sweep_index=index):
        return BacktestEngine(config=config, data=data, fee_settings=fee_settings).run()


def _run_in_worker(index: int, config: BacktestConfig) -> BacktestResult:
    """Run one combination against the pool worker's data."""
    if _WORKER_DATA is None or _WORKER_FEES is None:
        raise RuntimeError("Sweep worker context not initialized")
    return _replay(index, config, _WORKER_DATA, _WORKER_FEES)


def _convert_params(params: dict) -> dict[str, object]:
    """Coerce grid values to Decimal for Decimal-typed config fields."""
    converted: dict[str, object] = {}
    for key, value in params.items():
        if (
            key in _DECIMAL_FIELDS
            and value is not None
            and not isinstance(value, (Decimal, bool))
        ):
            converted[key] = Decimal(str(value))
        else:
            converted[key] = value
    return converted


class ParameterSweep:
    """Grid search engine for parameter optimization.

    Args:
        data: Historical data shared read-only by every run.
        fee_settings: Fee rates. Defaults to FeeSettings().
        max_workers: Worker processes; 1 runs every combination in-process.
        worker_log_level: Log level configured in each pool worker.
    """

    def __init__(
        self,
        data: HistoricalData,
        fee_settings: FeeSettings | None = None,
        max_workers: int = 1,
        worker_log_level: str = "WARNING",
    ) -> None:
        self._data = data
        self._fee_settings = fee_settings or FeeSettings()
        self._max_workers = max(1, max_workers)
        self._worker_log_level = worker_log_level

    def run(
        self,
        base_config: BacktestConfig,
        param_grid: dict[str, list],
        progress_callback: Callable | None = None,
    ) -> SweepResult:
        """Run backtests for all parameter combinations in the grid.

        Args:
            base_config: Base configuration to override with each combination.
            param_grid: Dict mapping parameter names to lists of values.
            progress_callback: Optional callback(completed, total, params, result).

        Returns:
            SweepResult with (params, result, score) triples, best score first.

        Raises:
            InvalidConfigError: If a param_grid key is not a BacktestConfig
                field or a combination yields an invalid config.
        """
        valid_keys = {f.name for f in fields(BacktestConfig)}
        for key in param_grid:
            if key not in valid_keys:
                raise InvalidConfigError(
                    f"Invalid parameter '{key}': not a BacktestConfig field"
                )

        keys = list(param_grid.keys())
        combinations = [dict(zip(keys, combo)) for combo in product(*param_grid.values())]
        configs = [
            base_config.with_overrides(**_convert_params(params))
            for params in combinations
        ]
        for config in configs:
            config.validate()
        total = len(configs)

        logger.info(
            "sweep_starting",
            parameters=keys,
            total_combinations=total,
            max_workers=self._max_workers,
        )

        results: list[BacktestResult | None] = [None] * total
        completed = 0

        def _record(idx: int, result: BacktestResult) -> None:
            nonlocal completed
            results[idx] = result
            completed += 1
            if progress_callback is not None:
                progress_callback(completed, total, combinations[idx], result)
            logger.debug(
                "sweep_run_complete",
                index=completed,
                total=total,
                params={k: str(v) for k, v in combinations[idx].items()},
                total_return_pct=str(result.summary.total_return_pct),
            )

        if self._max_workers == 1 or total <= 1:
            for idx, config in enumerate(configs):
                _record(idx, _replay(idx, config, self._data, self._fee_settings))
        else:
            with ProcessPoolExecutor(
                max_workers=self._max_workers,
                initializer=_worker_init,
                initargs=(self._data, self._fee_settings, self._worker_log_level),
            ) as executor:
                futures = {
                    executor.submit(_run_in_worker, idx, config): idx
                    for idx, config in enumerate(configs)
                }
                for future in as_completed(futures):
                    _record(futures[future], future.result())

        scored = [
            (params, result, score_run(result.summary, result.signal_accuracy))
            for params, result in zip(combinations, results)
        ]
        # Stable sort keeps grid order among equal scores
        scored.sort(key=lambda item: item[2], reverse=True)
        ranked = [
            (params, result if rank == 0 else result.compact(), score)
            for rank, (params, result, score) in enumerate(scored)
        ]

        logger.info(
            "sweep_complete",
            total_combinations=total,
            best_score=str(ranked[0][2]) if ranked else None,
            best_params={k: str(v) for k, v in ranked[0][0].items()} if ranked else None,
        )

        return SweepResult(param_grid=param_grid, results=ranked)

    @staticmethod
    def generate_default_grid(strategy_mode: str = STRATEGY_SIGNAL) -> dict[str, list]:
        """Generate a default parameter grid for the given strategy mode.

        For "signal" mode: risk_threshold 0.2-0.8, min_apr 3-10, and both
        filter flags on/off.
        For "baseline" mode: min_apr and max_positions.

        Args:
            strategy_mode: "baseline" or "signal".

        Returns:
            Dict mapping parameter names to lists of values.
        """
        if strategy_mode == STRATEGY_SIGNAL:
            return {
                "risk_threshold": [Decimal(r) / Decimal(10) for r in range(2, 9)],
                "min_apr": [Decimal(a) for a in range(3, 11)],
                "volatility_filter": [True, False],
                "momentum_filter": [True, False],
            }
        return {
            "min_apr": [
                Decimal("3"),
                Decimal("5"),
                Decimal("8"),
                Decimal("10"),
                Decimal("15"),
            ],
            "max_positions": [3, 5, 8],
        }


async def run_sweep(
    base_config: BacktestConfig,
    param_grid: dict[str, list] | None = None,
    db_path: str | None = None,
    settings: AppSettings | None = None,
    progress_callback: Callable | None = None,
) -> SweepResult:
    """Load the base window once and sweep the grid over it.

    Args:
        base_config: Base configuration; its window selects the data.
        param_grid: Grid to sweep. Defaults to generate_default_grid() for
            the base config's strategy mode.
        db_path: Path to the SQLite historical database.
        settings: Application settings. Defaults to AppSettings().
        progress_callback: Forwarded to ParameterSweep.run().

    Raises:
        NoDataAvailableError: If the window has no historical data.
    """
    if settings is None:
        settings = AppSettings()
    if db_path is None:
        db_path = settings.historical.db_path
    if param_grid is None:
        param_grid = ParameterSweep.generate_default_grid(base_config.strategy_mode)

    data = await load_historical_data(
        base_config.start_ms,
        base_config.end_ms,
        db_path,
        warmup_hours=settings.historical.warmup_hours,
    )
    sweep = ParameterSweep(
        data,
        fee_settings=settings.fees,
        max_workers=settings.backtest.sweep_max_workers,
    )
    return sweep.run(base_config, param_grid, progress_callback)


def format_sweep_summary(sweep_result: SweepResult) -> str:
    """Format a text summary table of sweep results.

    Results are already sorted by score; the best one is highlighted.

    Args:
        sweep_result: The completed sweep result.

    Returns:
        Formatted string suitable for console output.
    """
    if not sweep_result.results:
        return "No sweep results to display."

    param_names = list(sweep_result.param_grid.keys())

    lines: list[str] = []
    lines.append("=" * 80)
    lines.append("PARAMETER SWEEP RESULTS")
    lines.append("=" * 80)
    lines.append(f"Total combinations: {len(sweep_result.results)}")
    lines.append("")

    header_parts = [f"{name:>17s}" for name in param_names]
    header_parts.append(f"{'Score':>7s}")
    header_parts.append(f"{'Return':>9s}")
    header_parts.append(f"{'Max DD':>8s}")
    header_parts.append(f"{'Win Rate':>9s}")
    header_parts.append(f"{'Trades':>7s}")
    header = " | ".join(header_parts)
    lines.append(header)
    lines.append("-" * len(header))

    for rank, (params, result, score) in enumerate(sweep_result.results):
        s = result.summary
        row_parts = [f"{str(params.get(name, '')):>17s}" for name in param_names]
        row_parts.append(f"{score:>7.4f}")
        row_parts.append(f"{s.total_return_pct:>8.2f}%")
        row_parts.append(f"{s.max_drawdown:>7.2f}%")
        row_parts.append(f"{s.win_rate:>8.1f}%")
        row_parts.append(f"{s.number_of_trades:>7d}")
        row = " | ".join(row_parts)
        if rank == 0:
            row = row + "  <-- BEST"
        lines.append(row)

    lines.append("")
    lines.append("=" * 80)

    best_params, best_result, best_score = sweep_result.results[0]
    bs = best_result.summary
    lines.append("BEST PARAMETERS:")
    for name in param_names:
        lines.append(f"  {name}: {best_params.get(name, 'N/A')}")
    lines.append(f"  Score: {best_score:.4f}")
    lines.append(f"  Total Return: {bs.total_return_pct:.2f}%")
    lines.append(f"  Max Drawdown: {bs.max_drawdown:.2f}%")
    lines.append(f"  Win Rate: {bs.win_rate:.1f}%")
    lines.append(f"  Total Trades: {bs.number_of_trades}")
    lines.append("=" * 80)

    return "\n".join(lines)
