"""Persistence layer -- SQLite-backed strategy state and trade log."""

from hlfunding.data.database import StrategyDatabase
from hlfunding.data.state_store import StrategyStateStore
from hlfunding.data.trade_log import TradeLog

__all__ = ["StrategyDatabase", "StrategyStateStore", "TradeLog"]
