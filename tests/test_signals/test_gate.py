"""Tests for the predictive signal gate.

Tests verify:
- Risk score composition and cap
- Entry / exit recommendation thresholds
- Lookups never see data after the evaluation timestamp
- Zero closes are left out of the volatility history
- Symbols without history degrade to neutral signals
- Repeated queries return identical signals
"""

from decimal import Decimal

from conftest import BASE_MS, HOUR_MS, TICK_MS, make_data

from fundsim.data.models import HistoricalData
from fundsim.signals.gate import (
    PredictiveSignalGate,
    SymbolHistory,
    build_histories,
    compute_risk_score,
    recommend_entry,
    recommend_exit,
)
from fundsim.signals.models import (
    EntryRecommendation,
    ExitRecommendation,
    FundingMomentum,
    TrendDirection,
    VolatilityMetrics,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _momentum(trend: TrendDirection = TrendDirection.FLAT, strength: str = "0.1") -> FundingMomentum:
    return FundingMomentum(trend=trend, strength=Decimal(strength), avg_decline=Decimal("0"))


def _volatility(is_low_vol: bool = True, percentile: str = "40") -> VolatilityMetrics:
    return VolatilityMetrics(
        current_vol=Decimal("1"),
        avg_vol=Decimal("1"),
        vol_percentile=Decimal(percentile),
        is_low_vol=is_low_vol,
    )


def _declining_data() -> HistoricalData:
    """BTC funding falling 5.475 APR points per period over five periods,
    with 60 hours of flat hourly spot candles."""
    rates = ["0.0004", "0.00035", "0.0003", "0.00025", "0.0002"]
    candle_start = BASE_MS - 24 * HOUR_MS
    candles = [(candle_start + i * HOUR_MS, "100") for i in range(60)]
    return make_data(
        rates={"BTC": [(BASE_MS + i * TICK_MS, r) for i, r in enumerate(rates)]},
        spot={"BTC": candles},
        perp={"BTC": candles},
    )


# ---------------------------------------------------------------------------
# Pure scoring functions
# ---------------------------------------------------------------------------


class TestComputeRiskScore:
    def test_all_components(self) -> None:
        risk = compute_risk_score(
            _momentum(TrendDirection.DECLINING, "0.6"),
            _volatility(is_low_vol=False, percentile="80"),
            Decimal("20"),
        )
        # 0.6 * 0.5 + 0.8 * 0.3 + 0.2
        assert risk == Decimal("0.74")

    def test_calm_market_is_riskless(self) -> None:
        assert compute_risk_score(_momentum(), _volatility(), Decimal("10")) == Decimal("0")

    def test_capped_at_one(self) -> None:
        risk = compute_risk_score(
            _momentum(TrendDirection.DECLINING, "1"),
            _volatility(is_low_vol=False, percentile="100"),
            Decimal("50"),
        )
        assert risk == Decimal("1")

    def test_rising_momentum_adds_nothing(self) -> None:
        risk = compute_risk_score(
            _momentum(TrendDirection.RISING, "1"), _volatility(), Decimal("10")
        )
        assert risk == Decimal("0")


class TestRecommendations:
    def test_enter(self) -> None:
        assert recommend_entry(Decimal("0.2"), _volatility(), Decimal("6")) == EntryRecommendation.ENTER

    def test_skip_on_risk(self) -> None:
        assert recommend_entry(Decimal("0.3"), _volatility(), Decimal("20")) == EntryRecommendation.SKIP

    def test_skip_on_high_vol(self) -> None:
        rec = recommend_entry(Decimal("0"), _volatility(is_low_vol=False), Decimal("20"))
        assert rec == EntryRecommendation.SKIP

    def test_skip_on_low_apr(self) -> None:
        assert recommend_entry(Decimal("0"), _volatility(), Decimal("5")) == EntryRecommendation.SKIP

    def test_exit_now_on_strong_decline(self) -> None:
        rec = recommend_exit(_momentum(TrendDirection.DECLINING, "0.6"), Decimal("0.1"), Decimal("20"))
        assert rec == ExitRecommendation.EXIT_NOW

    def test_exit_soon_on_risk(self) -> None:
        rec = recommend_exit(_momentum(), Decimal("0.61"), Decimal("20"))
        assert rec == ExitRecommendation.EXIT_SOON

    def test_exit_soon_on_low_apr(self) -> None:
        rec = recommend_exit(_momentum(), Decimal("0"), Decimal("1.9"))
        assert rec == ExitRecommendation.EXIT_SOON

    def test_hold(self) -> None:
        rec = recommend_exit(_momentum(TrendDirection.DECLINING, "0.5"), Decimal("0.6"), Decimal("2"))
        assert rec == ExitRecommendation.HOLD


# ---------------------------------------------------------------------------
# SymbolHistory
# ---------------------------------------------------------------------------


class TestSymbolHistory:
    def test_lookups_stop_at_timestamp(self) -> None:
        history = SymbolHistory(
            rate_timestamps=[10, 20, 30, 40],
            aprs=[Decimal(v) for v in (1, 2, 3, 4)],
            spot_timestamps=[5, 15, 25],
            closes=[Decimal(v) for v in (100, 101, 102)],
        )
        assert history.aprs_until(30, 2) == [Decimal("2"), Decimal("3")]
        assert history.aprs_until(35, 10) == [Decimal("1"), Decimal("2"), Decimal("3")]
        assert history.aprs_until(5, 3) == []
        assert history.closes_until(15) == [Decimal("100"), Decimal("101")]

    def test_non_positive_closes_left_out(self) -> None:
        data = make_data(
            rates={"BTC": [(BASE_MS, "0.0001")]},
            spot={
                "BTC": [
                    (BASE_MS, "100"),
                    (BASE_MS + HOUR_MS, "0"),
                    (BASE_MS + 2 * HOUR_MS, "101"),
                ]
            },
            perp={"BTC": [(BASE_MS, "100")]},
        )
        history = build_histories(data)["BTC"]

        assert history.spot_timestamps == [BASE_MS, BASE_MS + 2 * HOUR_MS]
        assert history.closes == [Decimal("100"), Decimal("101")]


# ---------------------------------------------------------------------------
# PredictiveSignalGate
# ---------------------------------------------------------------------------


class TestPredictiveSignalGate:
    def test_declining_funding_exits_now(self) -> None:
        gate = PredictiveSignalGate(_declining_data())
        signals = gate.signals("BTC", BASE_MS + 4 * TICK_MS, Decimal("21.9"))

        assert signals.funding_momentum.trend == TrendDirection.DECLINING
        assert signals.funding_momentum.strength == Decimal("1")
        assert signals.risk_score >= Decimal("0.7")
        assert signals.entry_recommendation == EntryRecommendation.SKIP
        assert signals.exit_recommendation == ExitRecommendation.EXIT_NOW

    def test_no_look_ahead(self) -> None:
        gate = PredictiveSignalGate(_declining_data())
        # Only three observations are visible at the third funding tick
        momentum = gate.funding_momentum("BTC", BASE_MS + 2 * TICK_MS)
        assert len(momentum.recent_aprs) == 3
        assert momentum.trend == TrendDirection.FLAT

    def test_flat_prices_are_low_vol(self) -> None:
        gate = PredictiveSignalGate(_declining_data())
        volatility = gate.volatility("BTC", BASE_MS + 4 * TICK_MS)
        assert volatility.current_vol == Decimal("0")
        assert volatility.is_low_vol

    def test_unknown_symbol_degrades(self) -> None:
        gate = PredictiveSignalGate(_declining_data())
        signals = gate.signals("DOGE", BASE_MS, Decimal("10"))
        assert signals.funding_momentum.trend == TrendDirection.FLAT
        assert not signals.volatility.is_low_vol
        assert signals.entry_recommendation == EntryRecommendation.SKIP

    def test_repeated_queries_identical(self) -> None:
        gate = PredictiveSignalGate(_declining_data())
        first = gate.signals("BTC", BASE_MS + 3 * TICK_MS, Decimal("27.375"))
        second = gate.signals("BTC", BASE_MS + 3 * TICK_MS, Decimal("27.375"))
        assert first == second
        fresh = PredictiveSignalGate(_declining_data())
        assert fresh.signals("BTC", BASE_MS + 3 * TICK_MS, Decimal("27.375")) == first
