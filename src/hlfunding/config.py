"""Configuration system using pydantic-settings with environment variable loading."""

from decimal import Decimal
from typing import Literal

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

WATCHED_INSTRUMENTS = [
    "BTC",
    "ETH",
    "SOL",
    "BNB",
    "POL",
    "PEPE",
    "AVAX",
    "ATOM",
    "APT",
    "ARB",
]


class ExchangeSettings(BaseSettings):
    """Hyperliquid connection settings."""

    model_config = SettingsConfigDict(env_prefix="HL_")

    wallet_address: str = ""
    private_key: SecretStr = SecretStr("")
    testnet: bool = True
    quote_currency: str = "USDC"


class TradingSettings(BaseSettings):
    """Execution mode and order handling."""

    model_config = SettingsConfigDict(env_prefix="TRADING_")

    mode: Literal["paper", "live"] = "paper"
    order_timeout_seconds: float = 10.0


class StrategySettings(BaseSettings):
    """Venue capabilities and thresholds consumed by StrategyEngine.

    Injected rather than compiled in so the same engine can run against
    several venues or instrument sets (tests build their own instances).
    """

    model_config = SettingsConfigDict(env_prefix="STRATEGY_")

    positive_threshold: Decimal = Decimal("0.00005")  # 0.005%/period
    negative_threshold: Decimal = Decimal("-0.00005")
    capital_usd: Decimal = Decimal("100")
    leverage: Decimal = Decimal("3")
    spot_share: Decimal = Decimal("0.5")
    exit_pnl_percent_target: Decimal = Decimal("1")  # percent
    enable_spot_leg: bool = False
    close_price_buffer: Decimal = Decimal("0.01")  # 1% through mark for IOC


class ManualEntrySettings(BaseSettings):
    """User-triggered entry parameters."""

    model_config = SettingsConfigDict(env_prefix="MANUAL_")

    funding_threshold: Decimal = Decimal("0.0001")  # 0.01%/period
    leverage: Decimal = Decimal("1")
    exit_pnl_percent_target: Decimal = Decimal("1")
    access_token: SecretStr = SecretStr("")  # empty disables the header check


class WatcherSettings(BaseSettings):
    """Scheduled exit watcher."""

    model_config = SettingsConfigDict(env_prefix="WATCHER_")

    enabled: bool = True
    instruments: list[str] = list(WATCHED_INSTRUMENTS)
    interval_seconds: int = 300  # every 5 minutes


class StoreSettings(BaseSettings):
    """Strategy state and trade log persistence."""

    model_config = SettingsConfigDict(env_prefix="STORE_")

    db_path: str = "data/strategy.db"
    trade_log_limit: int = 100


class ApiSettings(BaseSettings):
    """HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    trading: TradingSettings = TradingSettings()
    strategy: StrategySettings = StrategySettings()
    manual: ManualEntrySettings = ManualEntrySettings()
    watcher: WatcherSettings = WatcherSettings()
    store: StoreSettings = StoreSettings()
    api: ApiSettings = ApiSettings()
