"""Market data layer -- funding signals and mid prices."""

from hlfunding.market_data.signal_source import MarketSignalSource, direction_for_rate

__all__ = ["MarketSignalSource", "direction_for_rate"]
