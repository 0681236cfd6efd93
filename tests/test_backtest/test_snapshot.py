"""Tests for SeriesCursor and MarketSnapshotResolver.

Tests verify:
- Last-known value at or before the query, never interpolated
- No look-ahead past the query timestamp
- Backwards queries re-seek correctly
- Non-finite values and non-positive prices are dropped
- Snapshot validity (needs a rate and a fully priced symbol)
- Funding interval comes from the same record as the resolved rate
"""

from decimal import Decimal

from conftest import BASE_MS, HOUR_MS, TICK_MS, make_data

from fundsim.backtest.models import MarketSnapshot
from fundsim.backtest.snapshot import MarketSnapshotResolver, SeriesCursor
from fundsim.data.models import HistoricalFundingRate


# ---------------------------------------------------------------------------
# SeriesCursor
# ---------------------------------------------------------------------------


class TestSeriesCursor:
    def _cursor(self) -> SeriesCursor:
        return SeriesCursor(
            [
                (100, Decimal("1")),
                (200, Decimal("2")),
                (300, Decimal("3")),
            ]
        )

    def test_before_first_observation_is_none(self) -> None:
        assert self._cursor().value_at(99) is None

    def test_exact_timestamp_matches(self) -> None:
        assert self._cursor().value_at(200) == Decimal("2")

    def test_between_observations_holds_previous(self) -> None:
        assert self._cursor().value_at(299) == Decimal("2")

    def test_after_last_observation_holds_last(self) -> None:
        assert self._cursor().value_at(10_000) == Decimal("3")

    def test_forward_walk(self) -> None:
        cursor = self._cursor()
        assert [cursor.value_at(ts) for ts in (50, 150, 250, 350)] == [
            None,
            Decimal("1"),
            Decimal("2"),
            Decimal("3"),
        ]

    def test_backwards_query_reseeks(self) -> None:
        cursor = self._cursor()
        assert cursor.value_at(300) == Decimal("3")
        assert cursor.value_at(150) == Decimal("1")
        assert cursor.value_at(50) is None
        assert cursor.value_at(250) == Decimal("2")

    def test_non_finite_values_dropped(self) -> None:
        cursor = SeriesCursor(
            [
                (100, Decimal("1")),
                (200, Decimal("NaN")),
                (300, Decimal("Infinity")),
            ]
        )
        assert len(cursor) == 1
        assert cursor.dropped == 2
        assert cursor.value_at(300) == Decimal("1")

    def test_positive_only_drops_non_positive(self) -> None:
        cursor = SeriesCursor(
            [(100, Decimal("5")), (200, Decimal("0")), (300, Decimal("-1"))],
            positive_only=True,
        )
        assert cursor.dropped == 2
        assert cursor.value_at(300) == Decimal("5")

    def test_negative_rates_kept_without_positive_only(self) -> None:
        cursor = SeriesCursor([(100, Decimal("-0.0002"))])
        assert cursor.value_at(100) == Decimal("-0.0002")


# ---------------------------------------------------------------------------
# MarketSnapshotResolver
# ---------------------------------------------------------------------------


class TestMarketSnapshotResolver:
    def test_resolves_last_known_values(self) -> None:
        data = make_data(
            rates={"BTC": [(BASE_MS, "0.0001"), (BASE_MS + TICK_MS, "0.0002")]},
            spot={"BTC": [(BASE_MS, "100"), (BASE_MS + HOUR_MS, "101")]},
            perp={"BTC": [(BASE_MS, "100.5")]},
        )
        resolver = MarketSnapshotResolver(data)

        snapshot = resolver.resolve(BASE_MS + 2 * HOUR_MS)

        assert snapshot.timestamp_ms == BASE_MS + 2 * HOUR_MS
        assert snapshot.funding_rates == {"BTC": Decimal("0.0001")}
        assert snapshot.spot_prices == {"BTC": Decimal("101")}
        assert snapshot.perp_prices == {"BTC": Decimal("100.5")}

    def test_never_looks_ahead(self) -> None:
        data = make_data(
            rates={"BTC": [(BASE_MS + TICK_MS, "0.0001")]},
            spot={"BTC": [(BASE_MS + TICK_MS, "100")]},
            perp={"BTC": [(BASE_MS + TICK_MS, "100")]},
        )
        snapshot = MarketSnapshotResolver(data).resolve(BASE_MS)
        assert snapshot.funding_rates == {}
        assert snapshot.spot_prices == {}
        assert not snapshot.is_valid

    def test_snapshot_at_returns_none_without_prices(self) -> None:
        data = make_data(
            rates={"BTC": [(BASE_MS, "0.0001")]},
            spot={"BTC": [(BASE_MS, "100")]},
            perp={"ETH": [(BASE_MS, "2000")]},
        )
        assert MarketSnapshotResolver(data).snapshot_at(BASE_MS) is None

    def test_snapshot_at_returns_valid_snapshot(self) -> None:
        data = make_data(
            rates={"BTC": [(BASE_MS, "0.0001")]},
            spot={"BTC": [(BASE_MS, "100")]},
            perp={"BTC": [(BASE_MS, "100")]},
        )
        snapshot = MarketSnapshotResolver(data).snapshot_at(BASE_MS)
        assert snapshot is not None
        assert snapshot.priced_symbols() == ["BTC"]

    def test_zero_price_candle_is_skipped(self) -> None:
        data = make_data(
            rates={"BTC": [(BASE_MS, "0.0001")]},
            spot={"BTC": [(BASE_MS, "100"), (BASE_MS + HOUR_MS, "0")]},
            perp={"BTC": [(BASE_MS, "100")]},
        )
        snapshot = MarketSnapshotResolver(data).resolve(BASE_MS + TICK_MS)
        assert snapshot.spot_prices == {"BTC": Decimal("100")}

    def test_funding_interval_follows_rate_record(self) -> None:
        data = make_data(
            rates={},
            spot={"BTC": [(BASE_MS, "100")]},
            perp={"BTC": [(BASE_MS, "100")]},
        )
        data.funding_rates = {
            "BTC": [
                HistoricalFundingRate("BTC", BASE_MS, Decimal("0.0001"), 8),
                HistoricalFundingRate("BTC", BASE_MS + HOUR_MS, Decimal("NaN"), 1),
                HistoricalFundingRate("BTC", BASE_MS + TICK_MS, Decimal("0.0002"), 4),
            ]
        }
        resolver = MarketSnapshotResolver(data)

        assert resolver.resolve(BASE_MS + 2 * HOUR_MS).funding_intervals == {"BTC": 8}
        assert resolver.resolve(BASE_MS + TICK_MS).funding_intervals == {"BTC": 4}


class TestMarketSnapshot:
    def test_priced_symbols_requires_both_legs(self) -> None:
        snapshot = MarketSnapshot(
            timestamp_ms=BASE_MS,
            funding_rates={"BTC": Decimal("0.0001"), "ETH": Decimal("0.0001")},
            spot_prices={"BTC": Decimal("100"), "ETH": Decimal("2000")},
            perp_prices={"ETH": Decimal("2001"), "SOL": Decimal("50")},
        )
        assert snapshot.priced_symbols() == ["ETH"]
        assert snapshot.has_prices("ETH")
        assert not snapshot.has_prices("BTC")
        assert snapshot.is_valid

    def test_no_rates_is_invalid(self) -> None:
        snapshot = MarketSnapshot(
            timestamp_ms=BASE_MS,
            funding_rates={},
            spot_prices={"BTC": Decimal("100")},
            perp_prices={"BTC": Decimal("100")},
        )
        assert not snapshot.is_valid
