"""SQLite schema and connection lifecycle for the historical store.

The schema is applied as an ordered list of migrations; schema_version
records the highest one applied, so an older file is brought forward on
connect. Backtest loaders open the file read-only and never migrate it.
"""

import os
from typing import Self

import aiosqlite

from fundsim.exceptions import NoDataAvailableError
from fundsim.logging import get_logger

logger = get_logger(__name__)

# (version, script); append only
_MIGRATIONS: list[tuple[int, str]] = [
    (
        1,
        """
        CREATE TABLE IF NOT EXISTS funding_rate_history (
            symbol TEXT NOT NULL,
            timestamp_ms INTEGER NOT NULL,
            funding_rate TEXT NOT NULL,
            interval_hours INTEGER NOT NULL DEFAULT 8,
            PRIMARY KEY (symbol, timestamp_ms)
        );

        CREATE TABLE IF NOT EXISTS ohlcv_candles (
            symbol TEXT NOT NULL,
            market TEXT NOT NULL CHECK (market IN ('spot', 'perp')),
            timestamp_ms INTEGER NOT NULL,
            open TEXT,
            high TEXT,
            low TEXT,
            close TEXT,
            volume TEXT,
            PRIMARY KEY (symbol, market, timestamp_ms)
        );
        """,
    ),
    (
        2,
        """
        CREATE INDEX IF NOT EXISTS idx_funding_ts
            ON funding_rate_history(timestamp_ms);

        CREATE INDEX IF NOT EXISTS idx_ohlcv_market_ts
            ON ohlcv_candles(market, timestamp_ms);
        """,
    ),
]

SCHEMA_VERSION = _MIGRATIONS[-1][0]


class HistoricalDatabase:
    """Async SQLite connection holding funding rates and candles.

    Usage:
        async with HistoricalDatabase("data/historical.db") as database:
            store = HistoricalDataStore(database)

    Args:
        db_path: File path, or ":memory:".
        read_only: Open an existing file without creating or migrating it.
    """

    def __init__(self, db_path: str = "data/historical.db", read_only: bool = False) -> None:
        self._db_path = db_path
        self._read_only = read_only
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """The open aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the file and bring its schema up to SCHEMA_VERSION.

        Raises:
            NoDataAvailableError: If read_only is set and the file does not
                exist.
        """
        if self._read_only:
            if not os.path.exists(self._db_path):
                raise NoDataAvailableError(f"Historical database not found: {self._db_path}")
            self._connection = await aiosqlite.connect(self._db_path)
            await self._connection.execute("PRAGMA query_only=ON")
            logger.debug("historical_db_opened", db_path=self._db_path, read_only=True)
            return

        in_memory = self._db_path == ":memory:"
        if not in_memory:
            db_dir = os.path.dirname(self._db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        if not in_memory:
            await self._connection.execute("PRAGMA journal_mode=WAL")
            await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._migrate()
        logger.info("historical_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.debug("historical_db_closed", db_path=self._db_path)

    async def schema_version(self) -> int:
        """Highest migration applied, 0 for a file without the table."""
        cursor = await self.db.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
        )
        if await cursor.fetchone() is None:
            return 0
        cursor = await self.db.execute("SELECT MAX(version) FROM schema_version")
        row = await cursor.fetchone()
        return row[0] or 0

    async def _migrate(self) -> None:
        await self.db.execute(
            "CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)"
        )
        current = await self.schema_version()
        for version, script in _MIGRATIONS:
            if version <= current:
                continue
            await self.db.executescript(script)
            await self.db.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
            logger.info("schema_migrated", version=version)
        await self.db.commit()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
