"""Typed SQLite read/write abstraction for historical data.

Provides HistoricalDataStore with typed methods for inserting and querying
funding rates and spot/perp OHLCV candles, plus the load() entry point the
backtest runner uses to pull a whole window into memory before replay.
All SQL is isolated behind this interface.

CRITICAL: All monetary/rate values stored as TEXT in SQLite, restored as Decimal on read.
Rows whose rate or close is NULL, unparseable or non-finite are skipped on
read and counted in a malformed_rows_skipped warning. A NULL open, high, low
or volume is kept as None.
"""

from collections import defaultdict
from collections.abc import Callable, Sequence
from decimal import Decimal, InvalidOperation
from typing import Literal, TypeVar

from fundsim.data.database import HistoricalDatabase
from fundsim.data.models import (
    DataMetadata,
    HistoricalData,
    HistoricalFundingRate,
    OHLCVCandle,
)
from fundsim.logging import get_logger

logger = get_logger(__name__)

Market = Literal["spot", "perp"]
T = TypeVar("T")


class HistoricalDataStore:
    """Async SQLite store for historical funding rates and OHLCV candles.

    Wraps HistoricalDatabase with typed read/write methods. All SQL access
    goes through self._database.db (the aiosqlite Connection).

    Usage:
        async with HistoricalDatabase("data/historical.db") as database:
            store = HistoricalDataStore(database)
            data = await store.load(start_ms, end_ms)
    """

    def __init__(self, database: HistoricalDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def insert_funding_rates(self, records: list[HistoricalFundingRate]) -> int:
        """Insert funding rate records, ignoring duplicates via INSERT OR IGNORE.

        Returns the number of actually inserted rows (excludes ignored duplicates).
        """
        if not records:
            return 0

        data = [
            (r.symbol, r.timestamp_ms, str(r.funding_rate), r.interval_hours)
            for r in records
        ]

        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO funding_rate_history "
            "(symbol, timestamp_ms, funding_rate, interval_hours) "
            "VALUES (?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug(
            "inserted_funding_rates",
            total=len(records),
            inserted=inserted,
        )
        return inserted

    async def insert_candles(self, market: Market, candles: list[OHLCVCandle]) -> int:
        """Insert spot or perp OHLCV candles, ignoring duplicates.

        Returns the number of actually inserted rows.
        """
        if not candles:
            return 0

        data = [
            (
                c.symbol,
                market,
                c.timestamp_ms,
                _text(c.open),
                _text(c.high),
                _text(c.low),
                str(c.close),
                _text(c.volume),
            )
            for c in candles
        ]

        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO ohlcv_candles "
            "(symbol, market, timestamp_ms, open, high, low, close, volume) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug(
            "inserted_ohlcv_candles",
            market=market,
            total=len(candles),
            inserted=inserted,
        )
        return inserted

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_funding_rates(
        self,
        symbol: str | None = None,
        since_ms: int | None = None,
        until_ms: int | None = None,
    ) -> list[HistoricalFundingRate]:
        """Funding rates ordered by (symbol, timestamp_ms), bounds inclusive."""
        where, params = _range_filter([], [], symbol, since_ms, until_ms)
        cursor = await self._database.db.execute(
            f"SELECT symbol, timestamp_ms, funding_rate, interval_hours "
            f"FROM funding_rate_history {where} "
            f"ORDER BY symbol, timestamp_ms",
            params,
        )
        return _parse_rows(await cursor.fetchall(), _rate_from_row, "funding_rate_history")

    async def get_candles(
        self,
        market: Market,
        symbol: str | None = None,
        since_ms: int | None = None,
        until_ms: int | None = None,
    ) -> list[OHLCVCandle]:
        """Candles of one market ordered by (symbol, timestamp_ms), bounds inclusive."""
        where, params = _range_filter(["market = ?"], [market], symbol, since_ms, until_ms)
        cursor = await self._database.db.execute(
            f"SELECT symbol, timestamp_ms, open, high, low, close, volume "
            f"FROM ohlcv_candles {where} "
            f"ORDER BY symbol, timestamp_ms",
            params,
        )
        return _parse_rows(await cursor.fetchall(), _candle_from_row, "ohlcv_candles")

    async def get_symbols(self) -> list[str]:
        """Return every symbol with at least one funding rate record."""
        cursor = await self._database.db.execute(
            "SELECT DISTINCT symbol FROM funding_rate_history ORDER BY symbol ASC"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def load(
        self,
        start_ms: int,
        end_ms: int,
        warmup_ms: int = 0,
    ) -> HistoricalData | None:
        """Load every series needed to replay [start_ms, end_ms].

        Records from ``warmup_ms`` before the window are included so that the
        last-known rate and price at the first tick, and the lookback windows
        of the signal gate, resolve. Metadata still reports the requested
        window.

        Returns:
            HistoricalData, or None when the window has no funding rates or no
            spot/perp candles at all.
        """
        since_ms = start_ms - warmup_ms

        rates = await self.get_funding_rates(since_ms=since_ms, until_ms=end_ms)
        spot = await self.get_candles("spot", since_ms=since_ms, until_ms=end_ms)
        perp = await self.get_candles("perp", since_ms=since_ms, until_ms=end_ms)

        funding_rates = _group_by_symbol(rates)
        data = HistoricalData(
            funding_rates=funding_rates,
            spot_candles=_group_by_symbol(spot),
            perp_candles=_group_by_symbol(perp),
            metadata=DataMetadata(
                start_ms=start_ms,
                end_ms=end_ms,
                symbols=sorted(funding_rates),
            ),
        )
        if data.is_empty():
            logger.warning(
                "historical_data_missing",
                start_ms=start_ms,
                end_ms=end_ms,
                funding_rate_count=len(rates),
                spot_candle_count=len(spot),
                perp_candle_count=len(perp),
            )
            return None

        logger.info(
            "historical_data_loaded",
            start_ms=start_ms,
            end_ms=end_ms,
            symbols=len(data.funding_rates),
            funding_rate_count=len(rates),
            spot_candle_count=len(spot),
            perp_candle_count=len(perp),
        )
        return data


def _group_by_symbol(records: list) -> dict[str, list]:
    """Group symbol-ordered records into a symbol -> list map."""
    grouped: dict[str, list] = defaultdict(list)
    for record in records:
        grouped[record.symbol].append(record)
    return dict(grouped)


def _range_filter(
    conditions: list[str],
    params: list,
    symbol: str | None,
    since_ms: int | None,
    until_ms: int | None,
) -> tuple[str, list]:
    """Extend ``conditions`` with the optional symbol and time bounds."""
    if symbol is not None:
        conditions.append("symbol = ?")
        params.append(symbol)
    if since_ms is not None:
        conditions.append("timestamp_ms >= ?")
        params.append(since_ms)
    if until_ms is not None:
        conditions.append("timestamp_ms <= ?")
        params.append(until_ms)
    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return where, params


def _text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _parse_decimal(text: str | None) -> Decimal | None:
    """Decimal from stored TEXT, or None for NULL, garbage and NaN/Infinity."""
    if text is None:
        return None
    try:
        value = Decimal(text)
    except (InvalidOperation, TypeError):
        return None
    return value if value.is_finite() else None


def _parse_rows(
    rows: Sequence[tuple], parse: Callable[[tuple], T | None], table: str
) -> list[T]:
    parsed = [parse(row) for row in rows]
    records = [record for record in parsed if record is not None]
    skipped = len(parsed) - len(records)
    if skipped:
        logger.warning("malformed_rows_skipped", table=table, count=skipped)
    return records


def _rate_from_row(row: tuple) -> HistoricalFundingRate | None:
    symbol, timestamp_ms, rate, interval_hours = row
    funding_rate = _parse_decimal(rate)
    if funding_rate is None:
        return None
    return HistoricalFundingRate(
        symbol=symbol,
        timestamp_ms=timestamp_ms,
        funding_rate=funding_rate,
        interval_hours=interval_hours,
    )


def _candle_from_row(row: tuple) -> OHLCVCandle | None:
    symbol, timestamp_ms, *prices = row
    open_, high, low, close, volume = (_parse_decimal(v) for v in prices)
    if close is None:
        return None
    return OHLCVCandle(
        symbol=symbol,
        timestamp_ms=timestamp_ms,
        open=open_,
        high=high,
        low=low,
        close=close,
        volume=volume,
    )
