"""Live order gateway via exchange client.

Translates OrderIntents into ccxt order dicts (limit orders with explicit
time in force and reduceOnly) and parses Hyperliquid's per-order statuses
({"resting": {"oid"}}, {"filled": {"oid", "totalSz", "avgPx"}} or
{"error": "..."}) back into OrderStatus values.
"""

import asyncio
from decimal import Decimal, InvalidOperation

import ccxt

from hlfunding.exceptions import VenueRejectedError
from hlfunding.exchange.client import ExchangeClient
from hlfunding.execution.gateway import OrderGateway, leverage_to_int
from hlfunding.logging import get_logger
from hlfunding.models import MarketType, OrderIntent, OrderStatus, SpotMarketLookup

logger = get_logger(__name__)


def _decimal_or_none(value: object) -> Decimal | None:
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_order_status(order: dict) -> OrderStatus:
    """Parse one ccxt order structure (with raw venue info) into an OrderStatus."""
    info = order.get("info") or {}

    if info.get("error"):
        return OrderStatus(error=str(info["error"]))

    filled = info.get("filled")
    if isinstance(filled, dict):
        return OrderStatus(
            filled_id=str(filled.get("oid")) if filled.get("oid") is not None else None,
            filled_size=_decimal_or_none(filled.get("totalSz")),
            average_price=_decimal_or_none(filled.get("avgPx")),
        )

    resting = info.get("resting")
    if isinstance(resting, dict) and resting.get("oid") is not None:
        return OrderStatus(resting_id=str(resting["oid"]))

    order_id = order.get("id")
    if order_id is None:
        return OrderStatus(error="Venue returned no order id")
    if order.get("status") == "closed":
        return OrderStatus(
            filled_id=str(order_id),
            filled_size=_decimal_or_none(order.get("filled")),
            average_price=_decimal_or_none(order.get("average")),
        )
    return OrderStatus(resting_id=str(order_id))


class LiveOrderGateway(OrderGateway):
    """Real order gateway that delegates to an exchange client.

    Args:
        exchange_client: The exchange client to place real orders through.
        timeout_seconds: Upper bound for one batch submission round trip.
    """

    def __init__(
        self, exchange_client: ExchangeClient, timeout_seconds: float = 10.0
    ) -> None:
        self._exchange_client = exchange_client
        self._timeout_seconds = timeout_seconds

    def _symbol_for(self, intent: OrderIntent) -> str | None:
        if intent.market == MarketType.SPOT:
            return self._exchange_client.spot_symbol(intent.instrument)
        return self._exchange_client.perp_symbol(intent.instrument)

    async def submit_orders(self, orders: list[OrderIntent]) -> list[OrderStatus]:
        """Submit all intents in one batch; one status per intent."""
        if not orders:
            return []

        payload = []
        for intent in orders:
            symbol = self._symbol_for(intent)
            if symbol is None:
                return [
                    OrderStatus(error=f"No {intent.market.value} market for {intent.instrument}")
                    for _ in orders
                ]
            payload.append(
                {
                    "symbol": symbol,
                    "type": "limit",
                    "side": intent.side.value,
                    "amount": float(intent.size),
                    "price": float(intent.price),
                    "params": {
                        "timeInForce": intent.time_in_force.value,
                        "reduceOnly": intent.reduce_only,
                    },
                }
            )

        try:
            results = await asyncio.wait_for(
                self._exchange_client.create_orders(payload),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "live_orders_timeout",
                instruments=[o.instrument for o in orders],
                timeout=self._timeout_seconds,
            )
            return [
                OrderStatus(error=f"Submission timed out after {self._timeout_seconds}s; order state unknown")
                for _ in orders
            ]
        except ccxt.BaseError as exc:
            logger.error(
                "live_orders_rejected",
                instruments=[o.instrument for o in orders],
                error=str(exc),
            )
            return [OrderStatus(error=str(exc)) for _ in orders]

        statuses = [parse_order_status(result) for result in results]
        if len(statuses) < len(orders):
            statuses.extend(
                OrderStatus(error="Venue returned no status for this order")
                for _ in range(len(orders) - len(statuses))
            )

        for intent, status in zip(orders, statuses):
            logger.info(
                "live_order_submitted",
                instrument=intent.instrument,
                market=intent.market.value,
                side=intent.side.value,
                size=str(intent.size),
                price=str(intent.price),
                tif=intent.time_in_force.value,
                reduce_only=intent.reduce_only,
                order_id=status.order_id,
                error=status.error,
            )
        return statuses

    async def ensure_leverage(self, instrument: str, leverage: Decimal) -> None:
        symbol = self._exchange_client.perp_symbol(instrument)
        try:
            await self._exchange_client.set_leverage(leverage_to_int(leverage), symbol, cross=True)
        except ccxt.BaseError as exc:
            raise VenueRejectedError(
                f"Leverage update rejected for {instrument}: {exc}",
                instrument=instrument,
                leverage=leverage,
            ) from exc

    def resolve_spot_market(self, instrument: str) -> SpotMarketLookup:
        symbol = self._exchange_client.spot_symbol(instrument)
        if symbol is None:
            return SpotMarketLookup(
                available=False,
                reason=f"Hyperliquid lists no spot market for {instrument}",
            )
        return SpotMarketLookup(available=True, symbol=symbol)
