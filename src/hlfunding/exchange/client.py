"""Abstract exchange client interface.

Defines the contract for venue implementations. Market data and order
gateways depend only on this interface, keeping Hyperliquid/ccxt details
isolated in the concrete implementation.
"""

from abc import ABC, abstractmethod
from typing import Any


class ExchangeClient(ABC):
    """Abstract base class for exchange API clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Initialize connection and load markets."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Clean up resources (CRITICAL for ccxt async)."""
        ...

    @abstractmethod
    async def load_markets(self) -> dict:
        """Load and cache market data from the exchange."""
        ...

    @abstractmethod
    def get_markets(self) -> dict:
        """Return the cached markets dict from load_markets()."""
        ...

    @abstractmethod
    async def post_info(self, body: dict[str, Any]) -> Any:
        """POST a raw request to the venue's public info endpoint.

        Used for ``metaAndAssetCtxs`` (funding, premium, impact prices,
        size decimals) and ``allMids`` (mid prices keyed by coin).
        """
        ...

    @abstractmethod
    async def create_orders(self, orders: list[dict[str, Any]]) -> list[dict]:
        """Submit a batch of ccxt-style order dicts in a single request.

        Each dict has keys: symbol, type, side, amount, price, params.
        Returns one ccxt order structure per submitted order.
        """
        ...

    @abstractmethod
    async def set_leverage(self, leverage: int, symbol: str, cross: bool = True) -> dict:
        """Set leverage and margin mode for a perpetual symbol."""
        ...

    @abstractmethod
    def perp_symbol(self, coin: str) -> str:
        """Return the unified perpetual symbol for a coin (e.g. BTC/USDC:USDC)."""
        ...

    @abstractmethod
    def spot_symbol(self, coin: str) -> str | None:
        """Return the unified spot symbol for a coin, or None if not listed."""
        ...
