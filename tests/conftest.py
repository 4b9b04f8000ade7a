"""Shared test fixtures for the Hyperliquid funding strategy."""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from hlfunding.config import ManualEntrySettings, StrategySettings, WatcherSettings
from hlfunding.data.database import StrategyDatabase
from hlfunding.data.state_store import StrategyStateStore
from hlfunding.data.trade_log import TradeLog
from hlfunding.exchange.client import ExchangeClient
from hlfunding.models import (
    FundingContext,
    FundingSignal,
    StrategyMode,
    StrategySource,
    StrategyState,
)
from hlfunding.market_data.signal_source import direction_for_rate

# ---------------------------------------------------------------------------
# Sample info-endpoint payloads (shape of Hyperliquid metaAndAssetCtxs/allMids)
# ---------------------------------------------------------------------------

META_AND_ASSET_CTXS = [
    {
        "universe": [
            {"name": "BTC", "szDecimals": 5, "maxLeverage": 50},
            {"name": "ETH", "szDecimals": 4, "maxLeverage": 50},
            {"name": "PEPE", "maxLeverage": 10},
        ]
    },
    [
        {
            "funding": "0.00006",
            "premium": "0.0003",
            "markPx": "60010.0",
            "impactPxs": ["59990.0", "60020.0"],
        },
        {
            "funding": "-0.00002",
            "premium": "-0.0001",
            "markPx": "3000.1",
            "impactPxs": ["2999.5", "3000.5"],
        },
        {
            "funding": "0.0000125",
            "premium": "0.0",
            "markPx": "0.00001234",
        },
    ],
]

ALL_MIDS = {"BTC": "60000.0", "ETH": "3000.0", "PEPE": "0.00001234"}


def make_exchange_client(
    meta: list | None = None, mids: dict | None = None
) -> MagicMock:
    """ExchangeClient mock whose info endpoint serves the sample payloads."""
    meta = META_AND_ASSET_CTXS if meta is None else meta
    mids = ALL_MIDS if mids is None else mids

    async def post_info(body: dict) -> object:
        if body["type"] == "metaAndAssetCtxs":
            return meta
        if body["type"] == "allMids":
            return mids
        raise AssertionError(f"unexpected info request {body}")

    client = MagicMock(spec=ExchangeClient)
    client.post_info = AsyncMock(side_effect=post_info)
    return client


def make_context(
    instrument: str = "BTC",
    funding_rate: str = "0.00006",
    mark_price: str = "60000",
    size_precision: int = 5,
    impact_bid: str | None = None,
    impact_ask: str | None = None,
) -> FundingContext:
    rate = Decimal(funding_rate)
    return FundingContext(
        signal=FundingSignal(
            instrument=instrument,
            funding_rate=rate,
            premium=Decimal("0"),
            direction=direction_for_rate(rate),
            size_precision=size_precision,
            impact_bid=Decimal(impact_bid) if impact_bid is not None else None,
            impact_ask=Decimal(impact_ask) if impact_ask is not None else None,
        ),
        mark_price=Decimal(mark_price),
        now_ms=1_700_000_000_000,
    )


def make_state(**overrides: object) -> StrategyState:
    """Open BTC DOUBLE_SHORT_FUNDING state, overridable per field."""
    fields: dict = {
        "instrument": "BTC",
        "mode": StrategyMode.DOUBLE_SHORT_FUNDING,
        "capital_usd": Decimal("100"),
        "perp_size": Decimal("0.0025"),
        "spot_size": Decimal("0.00083"),
        "entry_mark_price": Decimal("60000"),
        "entry_time_ms": 1_700_000_000_000,
        "exit_pnl_percent_target": Decimal("1"),
        "min_funding_rate": Decimal("0.00005"),
        "is_open": True,
        "source": StrategySource.AUTO,
    }
    fields.update(overrides)
    return StrategyState(**fields)


@pytest.fixture
def strategy_settings() -> StrategySettings:
    """Engine settings with the spot leg enabled (capital 100, 3x, half spot)."""
    return StrategySettings(
        positive_threshold=Decimal("0.00005"),
        negative_threshold=Decimal("-0.00005"),
        capital_usd=Decimal("100"),
        leverage=Decimal("3"),
        spot_share=Decimal("0.5"),
        exit_pnl_percent_target=Decimal("1"),
        enable_spot_leg=True,
        close_price_buffer=Decimal("0.01"),
    )


@pytest.fixture
def manual_settings() -> ManualEntrySettings:
    return ManualEntrySettings(
        funding_threshold=Decimal("0.0001"),
        leverage=Decimal("1"),
        exit_pnl_percent_target=Decimal("1"),
    )


@pytest.fixture
def watcher_settings() -> WatcherSettings:
    return WatcherSettings(instruments=["BTC", "ETH", "SOL"], interval_seconds=1)


@pytest_asyncio.fixture
async def database():
    """Connected in-memory StrategyDatabase."""
    db = StrategyDatabase(":memory:")
    await db.connect()
    yield db
    await db.close()


@pytest.fixture
def state_store(database: StrategyDatabase) -> StrategyStateStore:
    return StrategyStateStore(database)


@pytest.fixture
def trade_log(database: StrategyDatabase) -> TradeLog:
    return TradeLog(database, max_records=100)


@pytest.fixture
def context_factory():
    return make_context


@pytest.fixture
def state_factory():
    return make_state


@pytest.fixture
def exchange_client() -> MagicMock:
    return make_exchange_client()


@pytest.fixture
def exchange_client_factory():
    """Build an ExchangeClient mock with custom meta/mids payloads."""
    return make_exchange_client


@pytest.fixture
def meta_and_asset_ctxs() -> list:
    return META_AND_ASSET_CTXS
