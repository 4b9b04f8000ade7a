"""Async SQLite database manager for strategy state and the trade log.

Uses aiosqlite for non-blocking database operations with WAL mode.
"""

import os
from typing import Self

import aiosqlite

from hlfunding.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS strategy_states (
    instrument TEXT PRIMARY KEY,
    mode TEXT NOT NULL,
    capital_usd TEXT NOT NULL,
    perp_size TEXT NOT NULL,
    spot_size TEXT NOT NULL,
    entry_mark_price TEXT NOT NULL,
    entry_time_ms INTEGER NOT NULL,
    exit_pnl_percent_target TEXT NOT NULL,
    min_funding_rate TEXT NOT NULL,
    is_open INTEGER NOT NULL,
    source TEXT NOT NULL,
    estimated_funding_pnl_usd TEXT,
    owner_ref TEXT,
    updated_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS trade_records (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    trade_id TEXT NOT NULL UNIQUE,
    instrument TEXT NOT NULL,
    direction TEXT NOT NULL,
    spot_order_id TEXT,
    perp_order_id TEXT,
    spot_qty TEXT NOT NULL,
    perp_qty TEXT NOT NULL,
    notional_usd TEXT NOT NULL,
    leverage TEXT NOT NULL,
    hedge_factor TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    extra TEXT NOT NULL DEFAULT '{}'
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_trade_records_instrument
    ON trade_records(instrument, created_at);
"""


class StrategyDatabase:
    """Async SQLite connection manager.

    Usage:
        async with StrategyDatabase("data/strategy.db") as database:
            store = StrategyStateStore(database)
            state = await store.load("BTC")
    """

    def __init__(self, db_path: str = "data/strategy.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas and create the schema."""
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)
        self._connection.row_factory = aiosqlite.Row

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.commit()
        await self._ensure_schema_version()

        logger.info("strategy_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("strategy_db_closed", db_path=self._db_path)

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is not None:
            if row["version"] != SCHEMA_VERSION:
                logger.warning(
                    "strategy_db_schema_mismatch",
                    found=row["version"],
                    expected=SCHEMA_VERSION,
                )
            return
        await self._connection.execute(
            "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
        )
        await self._connection.commit()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
