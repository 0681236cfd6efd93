"""Step-function market snapshots for the tick loop.

Each series resolves to its latest observation at or before the query time,
never interpolating and never looking ahead. Queries from the engine are
monotonically increasing, so each SeriesCursor walks forward from where the
previous query stopped; an out-of-order query re-seeks with bisect.

Malformed observations (non-finite values, non-positive prices) are dropped
when a cursor is built, so they can never reach the engine.
"""

from __future__ import annotations

from bisect import bisect_right
from collections.abc import Iterable
from decimal import Decimal
from typing import TYPE_CHECKING

from fundsim.backtest.models import MarketSnapshot
from fundsim.logging import get_logger

if TYPE_CHECKING:
    from fundsim.data.models import HistoricalData

logger = get_logger(__name__)


class SeriesCursor:
    """Last-known-value lookup over one (timestamp_ms, value) series.

    Args:
        observations: (timestamp_ms, value) pairs, ascending by timestamp.
        positive_only: Also drop values <= 0 (used for prices).
    """

    def __init__(
        self,
        observations: Iterable[tuple[int, Decimal]],
        positive_only: bool = False,
    ) -> None:
        self._timestamps: list[int] = []
        self._values: list[Decimal] = []
        dropped = 0
        for ts, value in observations:
            if not isinstance(value, Decimal) or not value.is_finite():
                dropped += 1
                continue
            if positive_only and value <= 0:
                dropped += 1
                continue
            self._timestamps.append(ts)
            self._values.append(value)
        self.dropped = dropped

        # Index of the next observation not yet passed
        self._next = 0
        self._last_query: int | None = None

    def __len__(self) -> int:
        return len(self._timestamps)

    def value_at(self, timestamp_ms: int) -> Decimal | None:
        """Latest value with timestamp <= timestamp_ms, or None."""
        if self._last_query is not None and timestamp_ms < self._last_query:
            self._next = bisect_right(self._timestamps, timestamp_ms)
        else:
            n = len(self._timestamps)
            while self._next < n and self._timestamps[self._next] <= timestamp_ms:
                self._next += 1
        self._last_query = timestamp_ms

        if self._next == 0:
            return None
        return self._values[self._next - 1]


class MarketSnapshotResolver:
    """Builds a MarketSnapshot per tick from the run's HistoricalData.

    One SeriesCursor is kept per (series kind, symbol).
    """

    def __init__(self, data: HistoricalData) -> None:
        self._rates: dict[str, SeriesCursor] = {}
        self._intervals: dict[str, SeriesCursor] = {}
        for symbol, rates in data.funding_rates.items():
            self._rates[symbol] = SeriesCursor((r.timestamp_ms, r.funding_rate) for r in rates)
            # Follows the records the rate cursor keeps; a non-positive
            # interval falls back to the previous record's
            self._intervals[symbol] = SeriesCursor(
                (
                    (r.timestamp_ms, Decimal(r.interval_hours))
                    for r in rates
                    if isinstance(r.funding_rate, Decimal) and r.funding_rate.is_finite()
                ),
                positive_only=True,
            )
        self._spot = {
            symbol: SeriesCursor(
                ((c.timestamp_ms, c.close) for c in candles), positive_only=True
            )
            for symbol, candles in data.spot_candles.items()
        }
        self._perp = {
            symbol: SeriesCursor(
                ((c.timestamp_ms, c.close) for c in candles), positive_only=True
            )
            for symbol, candles in data.perp_candles.items()
        }

        dropped = sum(
            cursor.dropped
            for cursors in (self._rates, self._spot, self._perp)
            for cursor in cursors.values()
        )
        if dropped:
            logger.warning("malformed_observations_dropped", count=dropped)

    @staticmethod
    def _resolve(cursors: dict[str, SeriesCursor], timestamp_ms: int) -> dict[str, Decimal]:
        resolved: dict[str, Decimal] = {}
        for symbol in sorted(cursors):
            value = cursors[symbol].value_at(timestamp_ms)
            if value is not None:
                resolved[symbol] = value
        return resolved

    def resolve(self, timestamp_ms: int) -> MarketSnapshot:
        """Snapshot at timestamp_ms, valid or not."""
        return MarketSnapshot(
            timestamp_ms=timestamp_ms,
            funding_rates=self._resolve(self._rates, timestamp_ms),
            spot_prices=self._resolve(self._spot, timestamp_ms),
            perp_prices=self._resolve(self._perp, timestamp_ms),
            funding_intervals={
                symbol: int(hours)
                for symbol, hours in self._resolve(self._intervals, timestamp_ms).items()
            },
        )

    def snapshot_at(self, timestamp_ms: int) -> MarketSnapshot | None:
        """Snapshot at timestamp_ms, or None when the tick must be skipped."""
        snapshot = self.resolve(timestamp_ms)
        if not snapshot.is_valid:
            return None
        return snapshot
