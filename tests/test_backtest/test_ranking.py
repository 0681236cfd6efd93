"""Tests for opportunity ranking and position sizing."""

from decimal import Decimal

from conftest import make_signals

from fundsim.backtest.policies import EntryCandidate
from fundsim.backtest.ranking import (
    ConfidenceWeightedSizing,
    EqualWeightSizing,
    candidate_confidence,
    optimal_position_size,
    rank_by_apr,
    rank_by_confidence,
)
from fundsim.signals.models import DeclinePrediction, PredictiveSignals, TrendDirection


def _make_candidate(
    symbol: str,
    apr: str,
    signals: PredictiveSignals | None = None,
    prediction: DeclinePrediction | None = None,
) -> EntryCandidate:
    return EntryCandidate(
        symbol=symbol,
        funding_rate=Decimal("0.0001"),
        funding_apr=Decimal(apr),
        spot_price=Decimal("100"),
        perp_price=Decimal("100"),
        signals=signals,
        ml_prediction=prediction,
    )


class TestRankByApr:
    def test_descending_apr(self) -> None:
        ranked = rank_by_apr(
            [
                _make_candidate("AAA", "10"),
                _make_candidate("BBB", "30"),
                _make_candidate("CCC", "20"),
            ]
        )
        assert [c.symbol for c in ranked] == ["BBB", "CCC", "AAA"]

    def test_ties_broken_by_symbol(self) -> None:
        ranked = rank_by_apr(
            [_make_candidate("ZZZ", "20"), _make_candidate("AAA", "20")]
        )
        assert [c.symbol for c in ranked] == ["AAA", "ZZZ"]


class TestRankByConfidence:
    def test_confidence_gap_beats_apr(self) -> None:
        ranked = rank_by_confidence(
            [
                _make_candidate("AAA", "50", signals=make_signals(risk_score="0.5")),
                _make_candidate("BBB", "10", signals=make_signals(risk_score="0.1")),
            ]
        )
        assert [c.symbol for c in ranked] == ["BBB", "AAA"]

    def test_close_confidence_falls_back_to_apr(self) -> None:
        ranked = rank_by_confidence(
            [
                _make_candidate("AAA", "10", signals=make_signals(risk_score="0.10")),
                _make_candidate("BBB", "40", signals=make_signals(risk_score="0.15")),
            ]
        )
        assert [c.symbol for c in ranked] == ["BBB", "AAA"]

    def test_independent_of_input_order(self) -> None:
        candidates = [
            _make_candidate("AAA", "20", signals=make_signals(risk_score="0.05")),
            _make_candidate("BBB", "25", signals=make_signals(risk_score="0.12")),
            _make_candidate("CCC", "30", signals=make_signals(risk_score="0.20")),
            _make_candidate("DDD", "20", signals=make_signals(risk_score="0.05")),
        ]
        expected = [c.symbol for c in rank_by_confidence(candidates)]
        assert [c.symbol for c in rank_by_confidence(list(reversed(candidates)))] == expected
        assert [c.symbol for c in rank_by_confidence(candidates[1:] + candidates[:1])] == expected


class TestCandidateConfidence:
    def test_uses_inverse_risk(self) -> None:
        candidate = _make_candidate("AAA", "10", signals=make_signals(risk_score="0.25"))
        assert candidate_confidence(candidate) == Decimal("0.75")

    def test_prediction_confidence_preferred(self) -> None:
        candidate = _make_candidate(
            "AAA",
            "10",
            signals=make_signals(risk_score="0.25"),
            prediction=DeclinePrediction(will_decline=False, confidence=Decimal("0.6")),
        )
        assert candidate_confidence(candidate) == Decimal("0.6")

    def test_decline_prediction_forces_low_confidence(self) -> None:
        candidate = _make_candidate(
            "AAA",
            "10",
            prediction=DeclinePrediction(will_decline=True, confidence=Decimal("0.6")),
        )
        assert candidate_confidence(candidate) == Decimal("0.1")

    def test_no_signals_is_zero(self) -> None:
        assert candidate_confidence(_make_candidate("AAA", "10")) == Decimal("0")


class TestEqualWeightSizing:
    def test_capped_at_twenty_percent(self) -> None:
        sizing = EqualWeightSizing()
        size = sizing.size(_make_candidate("AAA", "10"), Decimal("10000"), 5, 5)
        assert size == Decimal("2000")

    def test_split_across_fewer_slots(self) -> None:
        sizing = EqualWeightSizing()
        size = sizing.size(_make_candidate("AAA", "10"), Decimal("10000"), 10, 10)
        assert size == Decimal("1000")


class TestOptimalPositionSize:
    def test_low_risk_rising_low_vol(self) -> None:
        signals = make_signals(
            risk_score="0.2", trend=TrendDirection.RISING, is_low_vol=True
        )
        # 10000 / 10 * 0.8 * 1.2 * 1.1 = 1056
        size = optimal_position_size(Decimal("10000"), signals, 10)
        assert size == Decimal("1056")

    def test_high_vol_declining(self) -> None:
        signals = make_signals(
            risk_score="0.5", trend=TrendDirection.DECLINING, is_low_vol=False
        )
        # 10000 / 5 * 0.5 * 0.8 * 0.7 = 560
        size = optimal_position_size(Decimal("10000"), signals, 5)
        assert size == Decimal("560")

    def test_capped_at_twenty_five_percent(self) -> None:
        signals = make_signals(
            risk_score="0", trend=TrendDirection.RISING, is_low_vol=True
        )
        size = optimal_position_size(Decimal("10000"), signals, 1)
        assert size == Decimal("2500")

    def test_full_risk_is_zero(self) -> None:
        signals = make_signals(risk_score="1")
        assert optimal_position_size(Decimal("10000"), signals, 5) == Decimal("0")


class TestConfidenceWeightedSizing:
    def test_uses_signals(self) -> None:
        sizing = ConfidenceWeightedSizing()
        candidate = _make_candidate("AAA", "10", signals=make_signals(risk_score="0.5"))
        # 10000 / 5 * 0.5 * 1.2 * 1.0 = 1200
        assert sizing.size(candidate, Decimal("10000"), 5, 5) == Decimal("1200")

    def test_without_signals_splits_evenly(self) -> None:
        sizing = ConfidenceWeightedSizing()
        size = sizing.size(_make_candidate("AAA", "10"), Decimal("10000"), 5, 5)
        assert size == Decimal("2000")
