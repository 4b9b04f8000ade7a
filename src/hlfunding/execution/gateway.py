"""Abstract order gateway interface.

Both PaperOrderGateway and LiveOrderGateway implement this ABC, so the
strategy engine and manual entry flow are identical regardless of
trading mode.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from hlfunding.models import OrderIntent, OrderStatus, SpotMarketLookup


class OrderGateway(ABC):
    """Abstract base class for order submission."""

    @abstractmethod
    async def submit_orders(self, orders: list[OrderIntent]) -> list[OrderStatus]:
        """Submit a batch of orders.

        Returns one status per order, in order. Venue rejections are
        reported as ``OrderStatus(error=...)`` rather than raised.
        """
        ...

    @abstractmethod
    async def ensure_leverage(self, instrument: str, leverage: Decimal) -> None:
        """Set cross leverage (floored to an integer >= 1) for a perp.

        Raises:
            VenueRejectedError: If the venue refuses the change.
        """
        ...

    @abstractmethod
    def resolve_spot_market(self, instrument: str) -> SpotMarketLookup:
        """Report whether a spot market exists for ``instrument``."""
        ...


def leverage_to_int(leverage: Decimal) -> int:
    """Venue leverage is an integer >= 1."""
    return max(1, int(leverage))
