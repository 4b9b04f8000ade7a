"""Paper order gateway with simulated fills.

Every order fills instantly and completely at its limit price. The most
recent submitted intents are kept for inspection (dry runs, tests).
"""

from collections import deque
from decimal import Decimal
from uuid import uuid4

from hlfunding.execution.gateway import OrderGateway, leverage_to_int
from hlfunding.logging import get_logger
from hlfunding.models import OrderIntent, OrderStatus, SpotMarketLookup

logger = get_logger(__name__)


class PaperOrderGateway(OrderGateway):
    """Simulated order gateway for paper trading.

    Args:
        spot_available: Whether to pretend the venue lists spot markets.
        max_history: Number of submitted intents retained; older ones are
            discarded.
    """

    def __init__(self, spot_available: bool = True, max_history: int = 1000) -> None:
        self._spot_available = spot_available
        self._submitted: deque[OrderIntent] = deque(maxlen=max_history)
        self._leverage: dict[str, int] = {}

    @property
    def submitted_orders(self) -> list[OrderIntent]:
        return list(self._submitted)

    def get_leverage(self, instrument: str) -> int | None:
        return self._leverage.get(instrument)

    async def submit_orders(self, orders: list[OrderIntent]) -> list[OrderStatus]:
        statuses = []
        for intent in orders:
            order_id = f"paper_{uuid4().hex[:12]}"
            self._submitted.append(intent)
            logger.info(
                "paper_order_filled",
                order_id=order_id,
                instrument=intent.instrument,
                market=intent.market.value,
                side=intent.side.value,
                size=str(intent.size),
                price=str(intent.price),
                tif=intent.time_in_force.value,
                reduce_only=intent.reduce_only,
            )
            statuses.append(
                OrderStatus(
                    filled_id=order_id,
                    filled_size=intent.size,
                    average_price=intent.price,
                )
            )
        return statuses

    async def ensure_leverage(self, instrument: str, leverage: Decimal) -> None:
        self._leverage[instrument] = leverage_to_int(leverage)

    def resolve_spot_market(self, instrument: str) -> SpotMarketLookup:
        if not self._spot_available:
            return SpotMarketLookup(available=False, reason="Spot disabled in paper mode")
        return SpotMarketLookup(available=True, symbol=f"{instrument}/USDC")
