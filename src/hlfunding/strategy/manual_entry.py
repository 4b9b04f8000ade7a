"""User-triggered position entry priced at the venue's impact prices.

Differs from the automatic entry in StrategyEngine:
- prices come from impact ask (buys) / impact bid (sells), falling back
  to the mid, with the tick derived from the mid;
- orders rest as GTC limits instead of crossing as IOC;
- the caller's threshold is re-checked at submission time, since funding
  can move between the user seeing it and clicking open.

Access control (who may open) is the caller's concern.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import uuid4

from hlfunding.config import ManualEntrySettings
from hlfunding.data.state_store import StrategyStateStore
from hlfunding.data.trade_log import TradeLog
from hlfunding.exceptions import (
    InsufficientFundingSignalError,
    InvalidParameterError,
    PersistenceError,
    VenueRejectedError,
)
from hlfunding.execution.gateway import OrderGateway
from hlfunding.logging import get_logger
from hlfunding.market_data.signal_source import MarketSignalSource
from hlfunding.models import (
    FundingDirection,
    FundingSignal,
    MarketType,
    OrderIntent,
    OrderSide,
    PriceTickMeta,
    StrategyMode,
    StrategySource,
    StrategyState,
    TimeInForce,
    TradeRecord,
    normalize_instrument,
    now_ms,
)
from hlfunding.position.hedge_sizer import compute_hedge_sizes
from hlfunding.position.quantization import (
    derive_price_tick,
    quantize_price,
    quantize_size,
    rounding_for_side,
)
from hlfunding.strategy.engine import raise_for_rejections

logger = get_logger(__name__)

# Venue refuses to lower leverage while a position is open; the orders can
# still go through at the current leverage.
_LEVERAGE_DECREASE_ERROR = "decrease leverage"

MAX_OWNER_REF_LENGTH = 200


def _is_positive(value: Decimal | None) -> bool:
    return isinstance(value, Decimal) and value.is_finite() and value > 0


@dataclass(frozen=True)
class ManualEntryRequest:
    """Parameters of a user-initiated open."""

    instrument: str
    notional_usd: Decimal
    hedge_factor: Decimal = Decimal("1")
    min_funding_rate: Decimal | None = None
    owner_ref: str | None = None


@dataclass
class ManualEntryResult:
    """Outcome of a successful manual open."""

    trade_id: str
    direction: FundingDirection
    signal: FundingSignal
    state: StrategyState
    spot_order_id: str | None = None
    perp_order_id: str | None = None
    orders: list[OrderIntent] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "trade_id": self.trade_id,
            "direction": self.direction.value,
            "spot_order_id": self.spot_order_id,
            "perp_order_id": self.perp_order_id,
            "funding_rate": str(self.signal.funding_rate),
            "premium": str(self.signal.premium),
            "state": self.state.to_dict(),
        }


def _validate(request: ManualEntryRequest) -> str:
    instrument = normalize_instrument(request.instrument or "")
    if not instrument:
        raise InvalidParameterError("instrument is required for a manual entry")
    if not _is_positive(request.notional_usd):
        raise InvalidParameterError(
            "notional_usd must be positive",
            instrument=instrument,
            notional_usd=request.notional_usd,
        )
    if not _is_positive(request.hedge_factor):
        raise InvalidParameterError(
            "hedge_factor must be positive",
            instrument=instrument,
            hedge_factor=request.hedge_factor,
        )
    if request.min_funding_rate is not None and not _is_positive(request.min_funding_rate):
        raise InvalidParameterError(
            "min_funding_rate must be positive",
            instrument=instrument,
            min_funding_rate=request.min_funding_rate,
        )
    if request.owner_ref is not None and len(request.owner_ref) > MAX_OWNER_REF_LENGTH:
        raise InvalidParameterError(
            f"owner_ref must be at most {MAX_OWNER_REF_LENGTH} characters",
            instrument=instrument,
        )
    return instrument


def _impact_price(side: OrderSide, signal: FundingSignal, fallback: Decimal) -> Decimal:
    candidate = signal.impact_ask if side == OrderSide.BUY else signal.impact_bid
    if _is_positive(candidate):
        return candidate
    return fallback


class ManualEntryFlow:
    """Opens a position on a user's request and records it.

    Args:
        signal_source: Market data for the funding signal and mid price.
        gateway: Order gateway (paper or live).
        state_store: Where the resulting Manual state is persisted.
        trade_log: Audit log receiving one record per opened trade.
        settings: Default threshold, leverage and exit target.
    """

    def __init__(
        self,
        signal_source: MarketSignalSource,
        gateway: OrderGateway,
        state_store: StrategyStateStore,
        trade_log: TradeLog,
        settings: ManualEntrySettings,
    ) -> None:
        self._signal_source = signal_source
        self._gateway = gateway
        self._state_store = state_store
        self._trade_log = trade_log
        self._settings = settings

    def _gtc_order(
        self,
        instrument: str,
        market: MarketType,
        side: OrderSide,
        size: Decimal,
        signal: FundingSignal,
        mid: Decimal,
        tick: PriceTickMeta,
    ) -> OrderIntent:
        price = quantize_price(_impact_price(side, signal, mid), tick, rounding_for_side(side))
        return OrderIntent(
            instrument=instrument,
            market=market,
            side=side,
            size=size,
            price=price,
            time_in_force=TimeInForce.GTC,
            reduce_only=False,
        )

    async def _ensure_leverage(self, instrument: str) -> None:
        try:
            await self._gateway.ensure_leverage(instrument, self._settings.leverage)
        except VenueRejectedError as exc:
            if _LEVERAGE_DECREASE_ERROR not in exc.message.lower():
                raise
            logger.warning(
                "leverage_decrease_refused_keeping_current",
                instrument=instrument,
                error=exc.message,
            )

    async def open(self, request: ManualEntryRequest) -> ManualEntryResult:
        """Validate, re-check funding, submit both legs and record the trade.

        Raises:
            InvalidParameterError: Bad request values or a position is already
                open for the instrument; nothing submitted.
            InsufficientFundingSignalError: Funding no longer clears the
                threshold; nothing submitted.
            InvalidQuantityError / InvalidPriceError: Sizes or prices cannot
                be quantized; nothing submitted.
            VenueRejectedError: A leg was rejected. Accepted legs are
                reported in the error context and are not unwound.
            PersistenceError: Orders were sent but the state could not be
                saved.
        """
        instrument = _validate(request)
        current = await self._state_store.load(instrument)
        if current is not None and current.is_open:
            raise InvalidParameterError(
                f"A position is already open for {instrument}; close it before "
                f"opening another",
                instrument=instrument,
                mode=current.mode.value,
                perp_size=current.perp_size,
            )
        threshold = request.min_funding_rate or self._settings.funding_threshold
        leverage = self._settings.leverage

        signal = await self._signal_source.get_funding_signal(instrument)
        if signal.funding_rate >= threshold:
            direction = FundingDirection.COLLECT_SHORT
        elif signal.funding_rate <= -threshold:
            direction = FundingDirection.COLLECT_LONG
        else:
            raise InsufficientFundingSignalError(
                f"Funding rate {signal.funding_rate} for {instrument} does not clear "
                f"+/-{threshold}",
                instrument=instrument,
                funding_rate=signal.funding_rate,
                threshold=threshold,
            )

        mid = await self._signal_source.get_mid(instrument)
        tick = derive_price_tick(mid)
        precision = signal.size_precision

        spot_order: OrderIntent | None = None
        if direction == FundingDirection.COLLECT_SHORT:
            sizing = compute_hedge_sizes(request.notional_usd, mid, request.hedge_factor)
            spot_qty, perp_qty = sizing.spot_qty, sizing.perp_qty
            lookup = self._gateway.resolve_spot_market(instrument)
            if lookup.available:
                spot_order = self._gtc_order(
                    instrument,
                    MarketType.SPOT,
                    OrderSide.BUY,
                    quantize_size(spot_qty, precision),
                    signal,
                    mid,
                    tick,
                )
            else:
                spot_qty = Decimal("0")
                logger.warning(
                    "spot_leg_unavailable_perp_only",
                    instrument=instrument,
                    reason=lookup.reason,
                )
            perp_side = OrderSide.SELL
            mode = StrategyMode.DOUBLE_SHORT_FUNDING
            min_funding_rate = threshold
        else:
            spot_qty = Decimal("0")
            perp_qty = request.notional_usd * leverage / mid
            perp_side = OrderSide.BUY
            mode = StrategyMode.SIMPLE_LONG_FUNDING
            min_funding_rate = -threshold

        perp_order = self._gtc_order(
            instrument,
            MarketType.PERP,
            perp_side,
            quantize_size(perp_qty, precision),
            signal,
            mid,
            tick,
        )
        orders = [o for o in (spot_order, perp_order) if o is not None]

        await self._ensure_leverage(instrument)
        statuses = await self._gateway.submit_orders(orders)
        raise_for_rejections(instrument, orders, statuses, "manual open")

        perp_order_id = statuses[-1].order_id
        spot_order_id = statuses[0].order_id if spot_order is not None else None
        entry_time_ms = now_ms()

        state = StrategyState(
            instrument=instrument,
            mode=mode,
            capital_usd=request.notional_usd,
            perp_size=perp_order.size,
            spot_size=spot_order.size if spot_order is not None else Decimal("0"),
            entry_mark_price=mid,
            entry_time_ms=entry_time_ms,
            exit_pnl_percent_target=self._settings.exit_pnl_percent_target,
            min_funding_rate=min_funding_rate,
            is_open=True,
            source=StrategySource.MANUAL,
            owner_ref=request.owner_ref,
        )
        try:
            state = await self._state_store.save(state)
        except PersistenceError as exc:
            logger.error(
                "manual_state_save_failed_after_orders",
                instrument=instrument,
                perp_order_id=perp_order_id,
                spot_order_id=spot_order_id,
                error=exc.message,
            )
            raise PersistenceError(
                f"Orders sent for {instrument} but the strategy state could not be "
                f"saved: {exc.message}",
                instrument=instrument,
                perp_order_id=perp_order_id,
                spot_order_id=spot_order_id,
            ) from exc

        record = TradeRecord(
            trade_id=str(uuid4()),
            instrument=instrument,
            direction=direction,
            spot_order_id=spot_order_id,
            perp_order_id=perp_order_id,
            spot_qty=spot_qty,
            perp_qty=perp_qty,
            notional_usd=request.notional_usd,
            leverage=leverage,
            hedge_factor=request.hedge_factor,
            created_at=entry_time_ms,
            extra={
                "funding_rate": str(signal.funding_rate),
                "premium": str(signal.premium),
                "spot_price": str(mid),
                "price_tick": str(tick.tick),
                "include_spot_leg": spot_order is not None,
            },
        )
        try:
            await self._trade_log.append(record)
        except PersistenceError as exc:
            logger.error(
                "manual_trade_record_failed_after_orders",
                instrument=instrument,
                trade_id=record.trade_id,
                perp_order_id=perp_order_id,
                spot_order_id=spot_order_id,
                error=exc.message,
            )
            raise PersistenceError(
                f"Orders sent and state saved for {instrument} but the trade "
                f"record could not be written: {exc.message}",
                instrument=instrument,
                trade_id=record.trade_id,
                perp_order_id=perp_order_id,
                spot_order_id=spot_order_id,
            ) from exc

        logger.info(
            "manual_position_opened",
            instrument=instrument,
            trade_id=record.trade_id,
            mode=mode.value,
            funding_rate=str(signal.funding_rate),
            perp_size=str(state.perp_size),
            spot_size=str(state.spot_size),
            owner_ref=request.owner_ref,
        )
        return ManualEntryResult(
            trade_id=record.trade_id,
            direction=direction,
            signal=signal,
            state=state,
            spot_order_id=spot_order_id,
            perp_order_id=perp_order_id,
            orders=orders,
        )
