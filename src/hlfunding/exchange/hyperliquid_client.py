"""Hyperliquid exchange client implementation via ccxt async.

Wraps ccxt.async_support.hyperliquid with wallet configuration, testnet
switching, market loading, raw info-endpoint access and async cleanup.
"""

from typing import Any

import ccxt.async_support as ccxt_async

from hlfunding.config import ExchangeSettings
from hlfunding.exchange.client import ExchangeClient
from hlfunding.logging import get_logger

logger = get_logger(__name__)


class HyperliquidClient(ExchangeClient):
    """Concrete Hyperliquid client using ccxt async."""

    def __init__(self, settings: ExchangeSettings) -> None:
        self._settings = settings

        config: dict = {
            "walletAddress": settings.wallet_address,
            "privateKey": settings.private_key.get_secret_value(),
            "enableRateLimit": True,
            "options": {
                "defaultType": "swap",
            },
        }

        self._exchange = ccxt_async.hyperliquid(config)
        if settings.testnet:
            self._exchange.set_sandbox_mode(True)
        self._markets: dict = {}

    @property
    def exchange(self) -> ccxt_async.hyperliquid:
        """Access the underlying ccxt exchange instance."""
        return self._exchange

    async def connect(self) -> None:
        """Initialize connection by loading perp and spot markets."""
        logger.info("connecting_to_hyperliquid", testnet=self._settings.testnet)
        self._markets = await self._exchange.load_markets()
        logger.info(
            "hyperliquid_connected",
            market_count=len(self._markets),
            testnet=self._settings.testnet,
        )

    async def close(self) -> None:
        """Clean up ccxt async resources. CRITICAL: must be called to avoid resource leaks."""
        logger.info("closing_hyperliquid_connection")
        await self._exchange.close()
        logger.info("hyperliquid_connection_closed")

    async def load_markets(self) -> dict:
        """Load and cache market data."""
        self._markets = await self._exchange.load_markets()
        return self._markets

    def get_markets(self) -> dict:
        """Return cached markets dict loaded at connect() time."""
        return self._markets

    async def post_info(self, body: dict[str, Any]) -> Any:
        """POST to /info through ccxt's implicit public API (rate limited)."""
        return await self._exchange.public_post_info(body)

    async def create_orders(self, orders: list[dict[str, Any]]) -> list[dict]:
        """Submit a batch of orders in one signed exchange action."""
        logger.info(
            "creating_orders",
            count=len(orders),
            symbols=[o["symbol"] for o in orders],
        )
        return await self._exchange.create_orders(orders)

    async def set_leverage(self, leverage: int, symbol: str, cross: bool = True) -> dict:
        """Set leverage for a perp symbol (cross or isolated margin)."""
        logger.info("setting_leverage", symbol=symbol, leverage=leverage, cross=cross)
        return await self._exchange.set_leverage(
            leverage, symbol, params={"marginMode": "cross" if cross else "isolated"}
        )

    def perp_symbol(self, coin: str) -> str:
        quote = self._settings.quote_currency
        return f"{coin}/{quote}:{quote}"

    def spot_symbol(self, coin: str) -> str | None:
        quote = self._settings.quote_currency
        for symbol, market in self._markets.items():
            if (
                market.get("spot")
                and str(market.get("base", "")).upper() == coin
                and market.get("quote") == quote
            ):
                return symbol
        return None
