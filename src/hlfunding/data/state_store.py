"""Strategy state persistence, one row per instrument.

Writes are full overwrites keyed by the uppercased instrument symbol and
stamp ``updated_at``. There is no version check on write: the last writer
wins, so a manual open racing the scheduled watcher on the same
instrument can overwrite the other's result.

CRITICAL: Decimal values are stored as TEXT and restored as Decimal on read.
"""

from dataclasses import replace
from decimal import Decimal

import aiosqlite

from hlfunding.data.database import StrategyDatabase
from hlfunding.exceptions import InvalidParameterError, PersistenceError
from hlfunding.logging import get_logger
from hlfunding.models import (
    StrategyMode,
    StrategySource,
    StrategyState,
    normalize_instrument,
    now_ms,
)

logger = get_logger(__name__)

_COLUMNS = (
    "instrument, mode, capital_usd, perp_size, spot_size, entry_mark_price, "
    "entry_time_ms, exit_pnl_percent_target, min_funding_rate, is_open, source, "
    "estimated_funding_pnl_usd, owner_ref, updated_at"
)


def _row_to_state(row: aiosqlite.Row) -> StrategyState:
    funding_pnl = row["estimated_funding_pnl_usd"]
    return StrategyState(
        instrument=row["instrument"],
        mode=StrategyMode(row["mode"]),
        capital_usd=Decimal(row["capital_usd"]),
        perp_size=Decimal(row["perp_size"]),
        spot_size=Decimal(row["spot_size"]),
        entry_mark_price=Decimal(row["entry_mark_price"]),
        entry_time_ms=row["entry_time_ms"],
        exit_pnl_percent_target=Decimal(row["exit_pnl_percent_target"]),
        min_funding_rate=Decimal(row["min_funding_rate"]),
        is_open=bool(row["is_open"]),
        source=StrategySource(row["source"]),
        estimated_funding_pnl_usd=Decimal(funding_pnl) if funding_pnl is not None else None,
        owner_ref=row["owner_ref"],
        updated_at=row["updated_at"],
    )


def _key(instrument: str) -> str:
    normalized = normalize_instrument(instrument or "")
    if not normalized:
        raise InvalidParameterError("instrument is required for the state store")
    return normalized


class StrategyStateStore:
    """Async SQLite store for StrategyState records.

    Args:
        database: Connected StrategyDatabase.
    """

    def __init__(self, database: StrategyDatabase) -> None:
        self._database = database

    async def load(self, instrument: str) -> StrategyState | None:
        """Return the state for ``instrument`` or None if never saved."""
        key = _key(instrument)
        try:
            cursor = await self._database.db.execute(
                f"SELECT {_COLUMNS} FROM strategy_states WHERE instrument = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                f"Failed to load state for {key}: {exc}", instrument=key
            ) from exc
        return _row_to_state(row) if row is not None else None

    async def save(self, state: StrategyState) -> StrategyState:
        """Overwrite the state for its instrument and return the stored copy."""
        key = _key(state.instrument)
        stored = replace(state, instrument=key, updated_at=now_ms())
        try:
            await self._database.db.execute(
                f"INSERT OR REPLACE INTO strategy_states ({_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    stored.instrument,
                    stored.mode.value,
                    str(stored.capital_usd),
                    str(stored.perp_size),
                    str(stored.spot_size),
                    str(stored.entry_mark_price),
                    stored.entry_time_ms,
                    str(stored.exit_pnl_percent_target),
                    str(stored.min_funding_rate),
                    int(stored.is_open),
                    stored.source.value,
                    (
                        str(stored.estimated_funding_pnl_usd)
                        if stored.estimated_funding_pnl_usd is not None
                        else None
                    ),
                    stored.owner_ref,
                    stored.updated_at,
                ),
            )
            await self._database.db.commit()
        except aiosqlite.Error as exc:
            raise PersistenceError(
                f"Failed to save state for {key}: {exc}", instrument=key
            ) from exc

        logger.info(
            "strategy_state_saved",
            instrument=key,
            mode=stored.mode.value,
            is_open=stored.is_open,
            source=stored.source.value,
        )
        return stored

    async def list_all(self) -> dict[str, StrategyState]:
        """Return every stored state keyed by instrument."""
        try:
            cursor = await self._database.db.execute(
                f"SELECT {_COLUMNS} FROM strategy_states ORDER BY instrument"
            )
            rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise PersistenceError(f"Failed to list states: {exc}") from exc
        return {row["instrument"]: _row_to_state(row) for row in rows}
