"""Strategy layer -- automatic entry/exit engine and the manual entry flow."""

from hlfunding.strategy.engine import (
    StrategyEngine,
    compute_approx_pnl_percent,
    select_direction,
)
from hlfunding.strategy.manual_entry import (
    ManualEntryFlow,
    ManualEntryRequest,
    ManualEntryResult,
)

__all__ = [
    "ManualEntryFlow",
    "ManualEntryRequest",
    "ManualEntryResult",
    "StrategyEngine",
    "compute_approx_pnl_percent",
    "select_direction",
]
