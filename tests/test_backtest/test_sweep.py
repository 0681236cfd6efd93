"""Tests for ParameterSweep grid search.

Tests verify:
- Grid keys are validated against BacktestConfig fields
- Numeric grid values become Decimal on Decimal-typed fields
- Results are sorted by score, best first, ties in grid order
- Only the best result keeps its equity curve and closed positions
- Process pool execution matches in-process execution
- A sweep started mid-run over other data does not affect the outer sweep
"""

from decimal import Decimal

import pytest
from conftest import BASE_MS, TICK_MS, make_data

from fundsim.backtest.models import (
    STRATEGY_BASELINE,
    STRATEGY_SIGNAL,
    BacktestConfig,
    SweepResult,
)
from fundsim.backtest.sweep import ParameterSweep, _convert_params, format_sweep_summary
from fundsim.data.models import HistoricalData
from fundsim.exceptions import InvalidConfigError


def _base_config() -> BacktestConfig:
    return BacktestConfig(
        start_ms=BASE_MS,
        end_ms=BASE_MS + 2 * TICK_MS,
        strategy_mode=STRATEGY_BASELINE,
    )


class TestGridValidation:
    def test_unknown_key_raises(self, three_tick_data: HistoricalData) -> None:
        sweep = ParameterSweep(three_tick_data)
        with pytest.raises(InvalidConfigError, match="leverage"):
            sweep.run(_base_config(), {"leverage": [1, 2]})

    def test_invalid_value_raises(self, three_tick_data: HistoricalData) -> None:
        sweep = ParameterSweep(three_tick_data)
        with pytest.raises(InvalidConfigError, match="max_positions"):
            sweep.run(_base_config(), {"max_positions": [3, 0]})

    def test_convert_params(self) -> None:
        converted = _convert_params(
            {"min_apr": 5, "risk_threshold": 0.5, "max_positions": 3, "momentum_filter": True}
        )
        assert converted["min_apr"] == Decimal("5")
        assert isinstance(converted["min_apr"], Decimal)
        assert converted["risk_threshold"] == Decimal("0.5")
        assert converted["max_positions"] == 3
        assert converted["momentum_filter"] is True


class TestSweepRun:
    def test_sorted_best_first(self, three_tick_data: HistoricalData) -> None:
        sweep = ParameterSweep(three_tick_data)
        result = sweep.run(_base_config(), {"min_apr": [60, 5]})

        assert [params["min_apr"] for params, _, _ in result.results] == [5, 60]
        scores = [score for _, _, score in result.results]
        assert scores == sorted(scores, reverse=True)
        assert result.best is not None
        assert result.best[1].summary.number_of_trades == 1

    def test_only_best_keeps_detail(self, three_tick_data: HistoricalData) -> None:
        sweep = ParameterSweep(three_tick_data)
        result = sweep.run(_base_config(), {"min_apr": [5, 6, 60]})

        best = result.results[0][1]
        assert best.equity_curve
        assert best.closed_positions
        for _, other, _ in result.results[1:]:
            assert other.equity_curve == []
            assert other.closed_positions == []
            assert other.summary.number_of_trades in (0, 1)

    def test_equal_scores_keep_grid_order(self, three_tick_data: HistoricalData) -> None:
        sweep = ParameterSweep(three_tick_data)
        result = sweep.run(_base_config(), {"max_positions": [5, 3, 1]})
        # max_positions does not change this single-symbol run
        assert [params["max_positions"] for params, _, _ in result.results] == [5, 3, 1]

    def test_progress_callback(self, three_tick_data: HistoricalData) -> None:
        calls: list[tuple[int, int]] = []
        sweep = ParameterSweep(three_tick_data)
        sweep.run(
            _base_config(),
            {"min_apr": [5, 60]},
            progress_callback=lambda done, total, params, result: calls.append((done, total)),
        )
        assert calls == [(1, 2), (2, 2)]

    def test_runs_are_independent(self, three_tick_data: HistoricalData) -> None:
        sweep = ParameterSweep(three_tick_data)
        result = sweep.run(_base_config(), {"min_apr": [5, 5]})
        first, second = result.results
        assert first[2] == second[2]
        assert first[1].summary == second[1].summary

    def test_nested_sweep_does_not_leak_data(self, three_tick_data: HistoricalData) -> None:
        ticks = [BASE_MS, BASE_MS + TICK_MS, BASE_MS + 2 * TICK_MS]
        # Negative funding throughout: nothing is ever entered
        other_data = make_data(
            rates={"ETH/USDT": [(ts, "-0.0003") for ts in ticks]},
            spot={"ETH/USDT": [(ts, "2000") for ts in ticks]},
            perp={"ETH/USDT": [(ts, "2001") for ts in ticks]},
        )
        inner_trades: list[int] = []

        def _on_progress(completed: int, total: int, params: dict, result: object) -> None:
            if completed == 1:
                inner = ParameterSweep(other_data).run(_base_config(), {"max_positions": [5]})
                inner_trades.append(inner.results[0][1].summary.number_of_trades)

        outer = ParameterSweep(three_tick_data).run(
            _base_config(), {"max_positions": [5, 4]}, progress_callback=_on_progress
        )

        trades = {p["max_positions"]: r.summary.number_of_trades for p, r, _ in outer.results}
        assert inner_trades == [0]
        assert trades == {5: 1, 4: 1}

    def test_process_pool_matches_in_process(self, three_tick_data: HistoricalData) -> None:
        grid = {"min_apr": [5, 60], "max_positions": [1, 2]}
        serial = ParameterSweep(three_tick_data).run(_base_config(), grid)
        parallel = ParameterSweep(three_tick_data, max_workers=2).run(_base_config(), grid)

        assert [(p, s) for p, _, s in serial.results] == [(p, s) for p, _, s in parallel.results]
        assert serial.results[0][1].to_dict() == parallel.results[0][1].to_dict()


class TestDefaultGrid:
    def test_signal_grid(self) -> None:
        grid = ParameterSweep.generate_default_grid(STRATEGY_SIGNAL)
        assert set(grid) == {"risk_threshold", "min_apr", "volatility_filter", "momentum_filter"}
        assert grid["risk_threshold"][0] == Decimal("0.2")
        assert grid["risk_threshold"][-1] == Decimal("0.8")
        assert grid["min_apr"] == [Decimal(a) for a in range(3, 11)]

    def test_baseline_grid(self) -> None:
        grid = ParameterSweep.generate_default_grid(STRATEGY_BASELINE)
        assert set(grid) == {"min_apr", "max_positions"}


class TestFormatSweepSummary:
    def test_empty(self) -> None:
        assert format_sweep_summary(SweepResult(param_grid={}, results=[])) == (
            "No sweep results to display."
        )

    def test_highlights_best(self, three_tick_data: HistoricalData) -> None:
        result = ParameterSweep(three_tick_data).run(_base_config(), {"min_apr": [60, 5]})
        text = format_sweep_summary(result)
        assert "PARAMETER SWEEP RESULTS" in text
        assert "<-- BEST" in text
        assert "  min_apr: 5" in text
