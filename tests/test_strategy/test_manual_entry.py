"""Tests for ManualEntryFlow.

Verifies:
- Threshold re-check (>= for short, <= -threshold for long)
- Impact-price GTC orders with the tick of the mid
- State persisted as MANUAL and one trade record appended
- Leverage "decrease" refusals are tolerated, other refusals are not
- Save or trade-log failures after submission surface as PersistenceError
- An open position blocks a second manual open
"""

from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from hlfunding.config import ManualEntrySettings
from hlfunding.data.state_store import StrategyStateStore
from hlfunding.data.trade_log import TradeLog
from hlfunding.exceptions import (
    InsufficientFundingSignalError,
    InvalidParameterError,
    PersistenceError,
    VenueRejectedError,
)
from hlfunding.execution.paper_gateway import PaperOrderGateway
from hlfunding.market_data.signal_source import MarketSignalSource, direction_for_rate
from hlfunding.models import (
    FundingDirection,
    FundingSignal,
    MarketType,
    OrderSide,
    StrategyMode,
    StrategySource,
    TimeInForce,
)
from hlfunding.strategy.manual_entry import ManualEntryFlow, ManualEntryRequest


def _signal_source(
    funding_rate: str,
    mid: str,
    instrument: str = "BTC",
    size_precision: int = 5,
    impact_bid: str | None = None,
    impact_ask: str | None = None,
) -> MagicMock:
    rate = Decimal(funding_rate)
    source = MagicMock(spec=MarketSignalSource)
    source.get_funding_signal = AsyncMock(
        return_value=FundingSignal(
            instrument=instrument,
            funding_rate=rate,
            premium=Decimal("0.0003"),
            direction=direction_for_rate(rate),
            size_precision=size_precision,
            impact_bid=Decimal(impact_bid) if impact_bid else None,
            impact_ask=Decimal(impact_ask) if impact_ask else None,
        )
    )
    source.get_mid = AsyncMock(return_value=Decimal(mid))
    return source


@pytest.fixture
def gateway() -> PaperOrderGateway:
    return PaperOrderGateway(spot_available=True)


def _flow(
    signal_source: MagicMock,
    gateway,
    state_store: StrategyStateStore,
    trade_log: TradeLog,
    settings: ManualEntrySettings,
) -> ManualEntryFlow:
    return ManualEntryFlow(
        signal_source=signal_source,
        gateway=gateway,
        state_store=state_store,
        trade_log=trade_log,
        settings=settings,
    )


class TestManualCollectShort:
    """Positive funding: spot buy at impact ask, perp sell at impact bid."""

    @pytest.mark.asyncio
    async def test_opens_hedged_pair_at_impact_prices(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        source = _signal_source("0.0002", "60000", impact_bid="59990.4", impact_ask="60020.2")
        flow = _flow(source, gateway, state_store, trade_log, manual_settings)

        result = await flow.open(
            ManualEntryRequest(instrument=" btc ", notional_usd=Decimal("100"), owner_ref="user-1")
        )

        spot, perp = gateway.submitted_orders
        assert spot.market == MarketType.SPOT
        assert spot.side == OrderSide.BUY
        assert spot.price == Decimal("60021")
        assert spot.size == Decimal("0.00166")
        assert spot.time_in_force == TimeInForce.GTC
        assert perp.side == OrderSide.SELL
        assert perp.price == Decimal("59990")
        assert perp.size == Decimal("0.00166")
        assert perp.reduce_only is False
        assert gateway.get_leverage("BTC") == 1

        assert result.direction == FundingDirection.COLLECT_SHORT
        assert result.spot_order_id is not None
        assert result.perp_order_id is not None

        stored = await state_store.load("BTC")
        assert stored.mode == StrategyMode.DOUBLE_SHORT_FUNDING
        assert stored.source == StrategySource.MANUAL
        assert stored.is_open is True
        assert stored.capital_usd == Decimal("100")
        assert stored.entry_mark_price == Decimal("60000")
        assert stored.min_funding_rate == Decimal("0.0001")
        assert stored.owner_ref == "user-1"

        (record,) = await trade_log.list()
        assert record.trade_id == result.trade_id
        assert record.instrument == "BTC"
        assert record.perp_order_id == result.perp_order_id
        assert record.hedge_factor == Decimal("1")
        assert record.extra["include_spot_leg"] is True
        assert record.extra["spot_price"] == "60000"
        assert record.extra["price_tick"] == "1"

    @pytest.mark.asyncio
    async def test_rate_equal_to_threshold_is_accepted(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        flow = _flow(_signal_source("0.0001", "60000"), gateway, state_store, trade_log, manual_settings)
        result = await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))
        assert result.direction == FundingDirection.COLLECT_SHORT

    @pytest.mark.asyncio
    async def test_hedge_factor_scales_perp_leg(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        flow = _flow(_signal_source("0.0002", "100", size_precision=2), gateway, state_store, trade_log, manual_settings)
        await flow.open(
            ManualEntryRequest(instrument="SOL", notional_usd=Decimal("100"), hedge_factor=Decimal("0.5"))
        )

        spot, perp = gateway.submitted_orders
        assert spot.size == Decimal("1")
        assert perp.size == Decimal("0.5")

    @pytest.mark.asyncio
    async def test_missing_spot_market_opens_perp_only(
        self,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        gateway = PaperOrderGateway(spot_available=False)
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)

        result = await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))

        assert [o.market for o in gateway.submitted_orders] == [MarketType.PERP]
        assert result.spot_order_id is None
        assert result.state.spot_size == Decimal("0")
        (record,) = await trade_log.list()
        assert record.extra["include_spot_leg"] is False


class TestManualCollectLong:
    """Negative funding: perp-only buy on notional * manual leverage."""

    @pytest.mark.asyncio
    async def test_opens_perp_long_falling_back_to_mid(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        flow = _flow(
            _signal_source("-0.0002", "3000", instrument="ETH", size_precision=4),
            gateway,
            state_store,
            trade_log,
            manual_settings,
        )

        result = await flow.open(ManualEntryRequest(instrument="ETH", notional_usd=Decimal("100")))

        (perp,) = gateway.submitted_orders
        assert perp.side == OrderSide.BUY
        assert perp.size == Decimal("0.0333")
        assert perp.price == Decimal("3000.0")
        assert result.direction == FundingDirection.COLLECT_LONG
        assert result.state.mode == StrategyMode.SIMPLE_LONG_FUNDING
        assert result.state.min_funding_rate == Decimal("-0.0001")
        assert result.state.spot_size == Decimal("0")


class TestManualRejections:
    """Nothing is submitted for bad input or insufficient funding."""

    @pytest.mark.asyncio
    async def test_insufficient_funding_raises(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        flow = _flow(_signal_source("0.00005", "60000"), gateway, state_store, trade_log, manual_settings)

        with pytest.raises(InsufficientFundingSignalError) as exc_info:
            await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))

        assert exc_info.value.context["instrument"] == "BTC"
        assert gateway.submitted_orders == []
        assert await state_store.load("BTC") is None

    @pytest.mark.asyncio
    async def test_custom_threshold_overrides_default(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        flow = _flow(_signal_source("0.00005", "60000"), gateway, state_store, trade_log, manual_settings)
        result = await flow.open(
            ManualEntryRequest(
                instrument="BTC", notional_usd=Decimal("100"), min_funding_rate=Decimal("0.00004")
            )
        )
        assert result.state.min_funding_rate == Decimal("0.00004")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "request_kwargs",
        [
            {"instrument": "  ", "notional_usd": Decimal("100")},
            {"instrument": "BTC", "notional_usd": Decimal("0")},
            {"instrument": "BTC", "notional_usd": Decimal("100"), "hedge_factor": Decimal("-1")},
            {"instrument": "BTC", "notional_usd": Decimal("100"), "min_funding_rate": Decimal("0")},
            {"instrument": "BTC", "notional_usd": Decimal("100"), "owner_ref": "x" * 201},
        ],
    )
    async def test_invalid_request_raises_before_fetching(
        self,
        request_kwargs: dict,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        source = _signal_source("0.0002", "60000")
        flow = _flow(source, gateway, state_store, trade_log, manual_settings)

        with pytest.raises(InvalidParameterError):
            await flow.open(ManualEntryRequest(**request_kwargs))

        source.get_funding_signal.assert_not_called()
        assert gateway.submitted_orders == []


class TestManualVenueAndPersistence:
    """Leverage refusals, leg rejections and save failures."""

    @pytest.mark.asyncio
    async def test_leverage_decrease_refusal_is_tolerated(
        self,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        gateway = PaperOrderGateway()
        gateway.ensure_leverage = AsyncMock(
            side_effect=VenueRejectedError("Leverage update rejected for BTC: Cannot decrease leverage with open position")
        )
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)

        result = await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))

        assert result.state.is_open is True
        assert len(gateway.submitted_orders) == 2

    @pytest.mark.asyncio
    async def test_other_leverage_refusal_propagates(
        self,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        gateway = PaperOrderGateway()
        gateway.ensure_leverage = AsyncMock(side_effect=VenueRejectedError("Asset is delisted"))
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)

        with pytest.raises(VenueRejectedError):
            await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))
        assert gateway.submitted_orders == []

    @pytest.mark.asyncio
    async def test_save_failure_after_orders_raises_persistence_error(
        self,
        gateway: PaperOrderGateway,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        state_store = MagicMock(spec=StrategyStateStore)
        state_store.load = AsyncMock(return_value=None)
        state_store.save = AsyncMock(side_effect=PersistenceError("database is locked"))
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)

        with pytest.raises(PersistenceError) as exc_info:
            await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))

        assert "Orders sent" in exc_info.value.message
        assert "perp_order_id" in exc_info.value.context
        assert len(gateway.submitted_orders) == 2
        assert await trade_log.list() == []

    @pytest.mark.asyncio
    async def test_trade_log_failure_after_orders_reports_order_ids(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        manual_settings: ManualEntrySettings,
    ) -> None:
        trade_log = MagicMock(spec=TradeLog)
        trade_log.append = AsyncMock(side_effect=PersistenceError("disk I/O error"))
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)

        with pytest.raises(PersistenceError) as exc_info:
            await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))

        assert "Orders sent and state saved" in exc_info.value.message
        assert "perp_order_id" in exc_info.value.context
        assert "spot_order_id" in exc_info.value.context
        assert "trade_id" in exc_info.value.context
        assert (await state_store.load("BTC")).is_open is True


class TestManualOpenPositionGuard:
    """A second manual open must not replace a position that is still open."""

    @pytest.mark.asyncio
    async def test_second_open_on_open_position_is_rejected(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
    ) -> None:
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)
        await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))
        first = await state_store.load("BTC")

        with pytest.raises(InvalidParameterError) as exc_info:
            await flow.open(ManualEntryRequest(instrument="btc", notional_usd=Decimal("300")))

        assert exc_info.value.context["instrument"] == "BTC"
        assert len(gateway.submitted_orders) == 2
        stored = await state_store.load("BTC")
        assert stored.perp_size == first.perp_size == Decimal("0.00166")
        assert len(await trade_log.list()) == 1

    @pytest.mark.asyncio
    async def test_rejects_before_fetching_market_data(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
        state_factory,
    ) -> None:
        await state_store.save(state_factory())
        source = _signal_source("0.0002", "60000")
        flow = _flow(source, gateway, state_store, trade_log, manual_settings)

        with pytest.raises(InvalidParameterError):
            await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("100")))

        source.get_funding_signal.assert_not_called()
        assert gateway.submitted_orders == []

    @pytest.mark.asyncio
    async def test_closed_state_allows_new_open(
        self,
        gateway: PaperOrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        manual_settings: ManualEntrySettings,
        state_factory,
    ) -> None:
        await state_store.save(state_factory(is_open=False))
        flow = _flow(_signal_source("0.0002", "60000"), gateway, state_store, trade_log, manual_settings)

        result = await flow.open(ManualEntryRequest(instrument="BTC", notional_usd=Decimal("300")))

        assert result.state.is_open is True
        assert (await state_store.load("BTC")).perp_size == Decimal("0.00500")
