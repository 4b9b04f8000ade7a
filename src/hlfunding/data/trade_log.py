"""Append-only audit log of opened trades.

Records are written once and never updated. The table is pruned to the
newest ``max_records`` entries on every append.
"""

import json
from decimal import Decimal

import aiosqlite

from hlfunding.data.database import StrategyDatabase
from hlfunding.exceptions import PersistenceError
from hlfunding.logging import get_logger
from hlfunding.models import FundingDirection, TradeRecord

logger = get_logger(__name__)

_COLUMNS = (
    "trade_id, instrument, direction, spot_order_id, perp_order_id, spot_qty, "
    "perp_qty, notional_usd, leverage, hedge_factor, created_at, extra"
)


def _row_to_record(row: aiosqlite.Row) -> TradeRecord:
    return TradeRecord(
        trade_id=row["trade_id"],
        instrument=row["instrument"],
        direction=FundingDirection(row["direction"]),
        spot_order_id=row["spot_order_id"],
        perp_order_id=row["perp_order_id"],
        spot_qty=Decimal(row["spot_qty"]),
        perp_qty=Decimal(row["perp_qty"]),
        notional_usd=Decimal(row["notional_usd"]),
        leverage=Decimal(row["leverage"]),
        hedge_factor=Decimal(row["hedge_factor"]),
        created_at=row["created_at"],
        extra=json.loads(row["extra"] or "{}"),
    )


class TradeLog:
    """Async SQLite trade log.

    Args:
        database: Connected StrategyDatabase.
        max_records: Number of most recent records to keep.
    """

    def __init__(self, database: StrategyDatabase, max_records: int = 100) -> None:
        self._database = database
        self._max_records = max_records

    async def append(self, record: TradeRecord) -> None:
        try:
            await self._database.db.execute(
                f"INSERT INTO trade_records ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.trade_id,
                    record.instrument,
                    record.direction.value,
                    record.spot_order_id,
                    record.perp_order_id,
                    str(record.spot_qty),
                    str(record.perp_qty),
                    str(record.notional_usd),
                    str(record.leverage),
                    str(record.hedge_factor),
                    record.created_at,
                    json.dumps(record.extra, default=str),
                ),
            )
            await self._database.db.execute(
                "DELETE FROM trade_records WHERE seq NOT IN "
                "(SELECT seq FROM trade_records ORDER BY seq DESC LIMIT ?)",
                (self._max_records,),
            )
            await self._database.db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                f"Failed to append trade {record.trade_id}: {exc}",
                trade_id=record.trade_id,
                instrument=record.instrument,
            ) from exc

        logger.info(
            "trade_recorded",
            trade_id=record.trade_id,
            instrument=record.instrument,
            direction=record.direction.value,
        )

    async def list(self, limit: int | None = None) -> list[TradeRecord]:
        """Return records most-recent-first, optionally capped at ``limit``."""
        sql = f"SELECT {_COLUMNS} FROM trade_records ORDER BY seq DESC"
        params: tuple = ()
        if limit is not None and limit > 0:
            sql += " LIMIT ?"
            params = (limit,)
        try:
            cursor = await self._database.db.execute(sql, params)
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to list trades: {exc}") from exc
        return [_row_to_record(row) for row in rows]
