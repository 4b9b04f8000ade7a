"""Tests for LiveOrderGateway and venue status parsing.

All tests use a mocked ExchangeClient; nothing reaches Hyperliquid.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import ccxt
import pytest

from hlfunding.exceptions import VenueRejectedError
from hlfunding.exchange.client import ExchangeClient
from hlfunding.execution.live_gateway import LiveOrderGateway, parse_order_status
from hlfunding.models import MarketType, OrderIntent, OrderSide, TimeInForce


def _intent(
    market: MarketType = MarketType.PERP,
    side: OrderSide = OrderSide.SELL,
    reduce_only: bool = False,
) -> OrderIntent:
    return OrderIntent(
        instrument="BTC",
        market=market,
        side=side,
        size=Decimal("0.0025"),
        price=Decimal("59400"),
        time_in_force=TimeInForce.IOC,
        reduce_only=reduce_only,
    )


@pytest.fixture
def client() -> MagicMock:
    client = MagicMock(spec=ExchangeClient)
    client.perp_symbol.side_effect = lambda coin: f"{coin}/USDC:USDC"
    client.spot_symbol.side_effect = lambda coin: f"{coin}/USDC" if coin == "BTC" else None
    client.create_orders = AsyncMock()
    client.set_leverage = AsyncMock(return_value={})
    return client


class TestParseOrderStatus:
    """Hyperliquid status shapes inside ccxt order info."""

    def test_filled(self) -> None:
        status = parse_order_status(
            {"id": "1", "info": {"filled": {"oid": 123, "totalSz": "0.0025", "avgPx": "59410.5"}}}
        )
        assert status.filled_id == "123"
        assert status.filled_size == Decimal("0.0025")
        assert status.average_price == Decimal("59410.5")

    def test_resting(self) -> None:
        status = parse_order_status({"id": "77", "info": {"resting": {"oid": 77}}})
        assert status.resting_id == "77"
        assert status.order_id == "77"
        assert status.is_error is False

    def test_error(self) -> None:
        status = parse_order_status({"info": {"error": "Order could not immediately match"}})
        assert status.is_error is True
        assert "immediately match" in status.error

    def test_no_id_is_error(self) -> None:
        assert parse_order_status({"info": {}}).is_error is True


class TestSubmitOrders:
    @pytest.mark.asyncio
    async def test_builds_ccxt_limit_orders(self, client: MagicMock) -> None:
        client.create_orders.return_value = [
            {"id": "1", "info": {"filled": {"oid": 1, "totalSz": "0.0025", "avgPx": "60010"}}},
            {"id": "2", "info": {"resting": {"oid": 2}}},
        ]
        gateway = LiveOrderGateway(client)

        statuses = await gateway.submit_orders(
            [_intent(MarketType.SPOT, OrderSide.BUY), _intent(reduce_only=True)]
        )

        (payload,), _ = client.create_orders.call_args
        assert payload[0]["symbol"] == "BTC/USDC"
        assert payload[0]["side"] == "buy"
        assert payload[0]["type"] == "limit"
        assert payload[1]["symbol"] == "BTC/USDC:USDC"
        assert payload[1]["params"] == {"timeInForce": "IOC", "reduceOnly": True}
        assert [s.order_id for s in statuses] == ["1", "2"]

    @pytest.mark.asyncio
    async def test_missing_spot_market_rejects_batch_without_submitting(
        self, client: MagicMock
    ) -> None:
        intent = OrderIntent(
            instrument="PEPE",
            market=MarketType.SPOT,
            side=OrderSide.BUY,
            size=Decimal("1000"),
            price=Decimal("0.00001"),
            time_in_force=TimeInForce.GTC,
        )
        statuses = await LiveOrderGateway(client).submit_orders([intent])

        assert statuses[0].is_error
        client.create_orders.assert_not_called()

    @pytest.mark.asyncio
    async def test_exchange_error_becomes_error_statuses(self, client: MagicMock) -> None:
        client.create_orders.side_effect = ccxt.InsufficientFunds("margin")
        statuses = await LiveOrderGateway(client).submit_orders([_intent(), _intent()])

        assert len(statuses) == 2
        assert all(s.is_error for s in statuses)

    @pytest.mark.asyncio
    async def test_timeout_reports_unknown_state(self, client: MagicMock) -> None:
        async def slow(_orders: list) -> list:
            await asyncio.sleep(1)
            return []

        client.create_orders.side_effect = slow
        (status,) = await LiveOrderGateway(client, timeout_seconds=0.01).submit_orders([_intent()])

        assert status.is_error
        assert "unknown" in status.error

    @pytest.mark.asyncio
    async def test_short_response_is_padded(self, client: MagicMock) -> None:
        client.create_orders.return_value = [{"id": "1", "info": {"resting": {"oid": 1}}}]
        statuses = await LiveOrderGateway(client).submit_orders([_intent(), _intent()])

        assert statuses[0].is_error is False
        assert statuses[1].is_error is True


class TestLeverageAndSpot:
    @pytest.mark.asyncio
    async def test_ensure_leverage_sets_cross_integer(self, client: MagicMock) -> None:
        await LiveOrderGateway(client).ensure_leverage("BTC", Decimal("3"))
        client.set_leverage.assert_awaited_once_with(3, "BTC/USDC:USDC", cross=True)

    @pytest.mark.asyncio
    async def test_ensure_leverage_rejection_raises(self, client: MagicMock) -> None:
        client.set_leverage.side_effect = ccxt.ExchangeError("Cannot decrease leverage")
        with pytest.raises(VenueRejectedError) as exc_info:
            await LiveOrderGateway(client).ensure_leverage("BTC", Decimal("1"))
        assert "decrease leverage" in exc_info.value.message

    def test_resolve_spot_market(self, client: MagicMock) -> None:
        gateway = LiveOrderGateway(client)
        assert gateway.resolve_spot_market("BTC").symbol == "BTC/USDC"
        assert gateway.resolve_spot_market("PEPE").available is False
