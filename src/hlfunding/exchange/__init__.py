"""Exchange client layer -- Hyperliquid API integration via ccxt."""

from hlfunding.exchange.client import ExchangeClient
from hlfunding.exchange.hyperliquid_client import HyperliquidClient

__all__ = ["ExchangeClient", "HyperliquidClient"]
