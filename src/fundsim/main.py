"""Command line entry point.

    fundsim backtest --start 2024-01-01 --end 2024-03-01 --mode signal
    fundsim compare  --start 2024-01-01 --end 2024-03-01
    fundsim sweep    --start 2024-01-01 --end 2024-03-01 --workers 4

Settings come from AppSettings (.env and environment); flags override them
for a single invocation. Results are printed to stdout, logs go to stderr.
"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal

from fundsim import __version__
from fundsim.backtest.models import (
    STRATEGY_BASELINE,
    STRATEGY_MODES,
    STRATEGY_SIGNAL,
    BacktestConfig,
)
from fundsim.backtest.runner import parse_date_ms, run_backtest, run_comparison
from fundsim.backtest.sweep import format_sweep_summary, run_sweep
from fundsim.config import AppSettings
from fundsim.exceptions import FundsimError
from fundsim.logging import LOG_FORMATS, get_logger, setup_logging

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fundsim",
        description="Replay delta-neutral funding rate arbitrage over historical data.",
    )
    parser.add_argument("--version", action="version", version=f"fundsim {__version__}")
    parser.add_argument("--log-level", default=None, help="Overrides LOG_LEVEL.")
    parser.add_argument("--log-format", choices=LOG_FORMATS, default=None)
    parser.add_argument("--db", dest="db_path", default=None, help="Historical SQLite file.")

    window = argparse.ArgumentParser(add_help=False)
    window.add_argument("--start", required=True, help="UTC start date, YYYY-MM-DD.")
    window.add_argument("--end", required=True, help="UTC end date, YYYY-MM-DD.")
    window.add_argument("--capital", type=Decimal, default=None)
    window.add_argument("--max-positions", type=int, default=None)
    window.add_argument("--min-apr", type=Decimal, default=None)

    sub = parser.add_subparsers(dest="command", required=True)

    p_backtest = sub.add_parser("backtest", parents=[window], help="Run a single backtest")
    p_backtest.add_argument("--mode", choices=STRATEGY_MODES, default=STRATEGY_BASELINE)
    p_backtest.add_argument("--predictor", action="store_true", help="Enable the decline predictor.")
    p_backtest.add_argument("--positions", action="store_true", help="Include closed positions.")

    sub.add_parser("compare", parents=[window], help="Baseline vs signal-gated on the same data")

    p_sweep = sub.add_parser("sweep", parents=[window], help="Grid search with the default grid")
    p_sweep.add_argument("--mode", choices=STRATEGY_MODES, default=STRATEGY_SIGNAL)
    p_sweep.add_argument("--workers", type=int, default=None)

    return parser


def _config_from_args(
    args: argparse.Namespace, settings: AppSettings, strategy_mode: str
) -> BacktestConfig:
    start_ms = parse_date_ms(args.start)
    end_ms = parse_date_ms(args.end)
    if end_ms < start_ms:
        raise ValueError(f"End date ({args.end}) must not be before start date ({args.start})")

    overrides: dict[str, object] = {}
    if args.capital is not None:
        overrides["initial_capital"] = args.capital
    if args.max_positions is not None:
        overrides["max_positions"] = args.max_positions
    if args.min_apr is not None:
        overrides["min_apr"] = args.min_apr
    if getattr(args, "predictor", False):
        overrides["use_predictor"] = True

    return BacktestConfig.from_settings(
        settings.backtest, start_ms, end_ms, strategy_mode=strategy_mode, **overrides
    )


async def run(args: argparse.Namespace, settings: AppSettings) -> dict | str:
    """Execute the selected command and return what should be printed."""
    if args.command == "backtest":
        result = await run_backtest(
            _config_from_args(args, settings, args.mode), db_path=args.db_path, settings=settings
        )
        output = result.to_dict()
        if not args.positions:
            output.pop("closed_positions", None)
        output.pop("equity_curve", None)
        return output

    if args.command == "compare":
        baseline, signal = await run_comparison(
            _config_from_args(args, settings, STRATEGY_BASELINE),
            _config_from_args(args, settings, STRATEGY_SIGNAL),
            db_path=args.db_path,
            settings=settings,
        )
        return {
            STRATEGY_BASELINE: baseline.summary.to_dict(),
            STRATEGY_SIGNAL: signal.summary.to_dict(),
        }

    if args.workers is not None:
        backtest = settings.backtest.model_copy(update={"sweep_max_workers": args.workers})
        settings = settings.model_copy(update={"backtest": backtest})
    sweep_result = await run_sweep(
        _config_from_args(args, settings, args.mode), db_path=args.db_path, settings=settings
    )
    return format_sweep_summary(sweep_result)


def main(argv: list[str] | None = None) -> int:
    """Synchronous entry point; returns the process exit code."""
    args = build_parser().parse_args(argv)
    settings = AppSettings()
    setup_logging(args.log_level or settings.log_level, args.log_format)

    try:
        output = asyncio.run(run(args, settings))
    except (FundsimError, ValueError) as e:
        logger.error("command_failed", command=args.command, error=str(e))
        return 1

    if isinstance(output, str):
        print(output)
    else:
        print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
