"""Funding strategy state machine: entry, exit and approximate PnL.

States: IDLE -> {DOUBLE_SHORT_FUNDING, SIMPLE_LONG_FUNDING} -> IDLE.
A position must be fully closed before a new one opens for the same
instrument.

Entry (state absent or closed):
- rate > positive_threshold: DOUBLE_SHORT_FUNDING. Capital is split into a
  spot share (0 when the spot leg is disabled or unavailable) and a perp
  share; perp notional = perp share * leverage; perp is shorted, spot bought.
- rate < negative_threshold: SIMPLE_LONG_FUNDING. Perp-only long on
  capital * leverage.
- otherwise: no action.

Exit (state open): exit when the approximate PnL percent is at or below
the state's target, or when the funding sign no longer matches the sign
recorded at entry. Close orders are IOC, priced through the mark by a
fixed buffer; the perp close is reduce-only. Closing keeps sizing fields
for audit.

The engine submits orders but never persists; callers own the StateStore.
"""

from dataclasses import dataclass, replace
from decimal import Decimal

from hlfunding.config import StrategySettings
from hlfunding.exceptions import InvalidParameterError, VenueRejectedError
from hlfunding.execution.gateway import OrderGateway
from hlfunding.logging import get_logger
from hlfunding.models import (
    ExitDecision,
    FundingContext,
    FundingDirection,
    MarketType,
    OrderIntent,
    OrderSide,
    OrderStatus,
    StrategyMode,
    StrategySource,
    StrategyState,
    TimeInForce,
)
from hlfunding.position.hedge_sizer import compute_hedge_sizes
from hlfunding.position.quantization import (
    derive_price_tick,
    quantize_price,
    quantize_size,
    rounding_for_side,
)

logger = get_logger(__name__)

_HUNDRED = Decimal("100")


def _sign(value: Decimal) -> int:
    if value > 0:
        return 1
    if value < 0:
        return -1
    return 0


def select_direction(
    funding_rate: Decimal,
    positive_threshold: Decimal,
    negative_threshold: Decimal,
) -> FundingDirection | None:
    """Pure direction selection; None means no trade."""
    if funding_rate > positive_threshold:
        return FundingDirection.COLLECT_SHORT
    if funding_rate < negative_threshold:
        return FundingDirection.COLLECT_LONG
    return None


def compute_approx_pnl_percent(state: StrategyState, mark_price: Decimal) -> Decimal:
    """Approximate total PnL as a percent of committed capital.

    perp: (mark - entry) * perp_size, +1 for a long perp, -1 for a short perp
    spot: (mark - entry) * spot_size (DOUBLE_SHORT_FUNDING only)
    funding: the stored estimate, if any
    """
    if not state.is_open:
        return Decimal("0")
    if state.capital_usd <= 0:
        raise InvalidParameterError(
            "capital_usd must be positive to compute PnL",
            instrument=state.instrument,
            capital_usd=state.capital_usd,
        )

    price_delta = mark_price - state.entry_mark_price
    direction = 1 if state.mode == StrategyMode.SIMPLE_LONG_FUNDING else -1
    perp_pnl = price_delta * state.perp_size * direction

    spot_pnl = (
        price_delta * state.spot_size
        if state.mode == StrategyMode.DOUBLE_SHORT_FUNDING
        else Decimal("0")
    )
    funding_pnl = state.estimated_funding_pnl_usd or Decimal("0")

    return (perp_pnl + spot_pnl + funding_pnl) / state.capital_usd * _HUNDRED


@dataclass(frozen=True)
class EntryPlan:
    """Orders and resulting state fields for an entry, before submission."""

    mode: StrategyMode
    capital_usd: Decimal
    min_funding_rate: Decimal
    perp_order: OrderIntent
    spot_order: OrderIntent | None = None

    @property
    def orders(self) -> list[OrderIntent]:
        return [o for o in (self.spot_order, self.perp_order) if o is not None]


def raise_for_rejections(
    instrument: str,
    orders: list[OrderIntent],
    statuses: list[OrderStatus],
    action: str,
) -> None:
    """Raise VenueRejectedError if any leg came back with an error status.

    Legs that did go through are listed in the error context; they are not
    unwound automatically.
    """
    rejected = [
        (intent, status) for intent, status in zip(orders, statuses) if status.is_error
    ]
    if not rejected:
        return

    accepted_ids = {
        f"{intent.market.value}_order_id": status.order_id
        for intent, status in zip(orders, statuses)
        if not status.is_error
    }
    errors = "; ".join(f"{i.market.value}: {s.error}" for i, s in rejected)
    logger.error(
        "order_leg_rejected",
        instrument=instrument,
        action=action,
        errors=errors,
        **accepted_ids,
    )
    raise VenueRejectedError(
        f"{action} rejected for {instrument}: {errors}",
        instrument=instrument,
        **accepted_ids,
    )


class StrategyEngine:
    """Decides entries and exits and submits the corresponding orders.

    Args:
        gateway: Order gateway (paper or live).
        settings: Thresholds, capital, leverage and venue capability flags.
    """

    def __init__(self, gateway: OrderGateway, settings: StrategySettings) -> None:
        self._gateway = gateway
        self._settings = settings

    @property
    def settings(self) -> StrategySettings:
        return self._settings

    def _ioc_order(
        self,
        instrument: str,
        market: MarketType,
        side: OrderSide,
        size: Decimal,
        mark_price: Decimal,
        reduce_only: bool,
    ) -> OrderIntent:
        """Marketable IOC limit: mark nudged by the buffer in the unfavorable direction."""
        buffer = self._settings.close_price_buffer
        raw_price = (
            mark_price * (Decimal("1") + buffer)
            if side == OrderSide.BUY
            else mark_price * (Decimal("1") - buffer)
        )
        price = quantize_price(raw_price, derive_price_tick(raw_price), rounding_for_side(side))
        return OrderIntent(
            instrument=instrument,
            market=market,
            side=side,
            size=size,
            price=price,
            time_in_force=TimeInForce.IOC,
            reduce_only=reduce_only,
        )

    def _spot_leg_enabled(self, instrument: str) -> bool:
        if not self._settings.enable_spot_leg:
            return False
        lookup = self._gateway.resolve_spot_market(instrument)
        if not lookup.available:
            logger.warning(
                "spot_leg_unavailable_perp_only",
                instrument=instrument,
                reason=lookup.reason,
            )
        return lookup.available

    def plan_entry(self, ctx: FundingContext) -> EntryPlan | None:
        """Build entry orders for ``ctx`` without submitting them.

        Raises:
            InvalidQuantityError / InvalidPriceError: If sizes or prices
                cannot be quantized; nothing has been submitted.
        """
        direction = select_direction(
            ctx.funding_rate,
            self._settings.positive_threshold,
            self._settings.negative_threshold,
        )
        if direction is None:
            return None

        capital = self._settings.capital_usd
        leverage = self._settings.leverage
        precision = ctx.signal.size_precision
        mark = ctx.mark_price

        if direction == FundingDirection.COLLECT_SHORT:
            include_spot = self._spot_leg_enabled(ctx.instrument)
            capital_spot = capital * self._settings.spot_share if include_spot else Decimal("0")
            capital_perp = capital - capital_spot

            perp_size = quantize_size(capital_perp * leverage / mark, precision)
            spot_order = None
            if capital_spot > 0:
                spot_size = quantize_size(
                    compute_hedge_sizes(capital_spot, mark).spot_qty, precision
                )
                spot_order = self._ioc_order(
                    ctx.instrument, MarketType.SPOT, OrderSide.BUY, spot_size, mark, False
                )

            return EntryPlan(
                mode=StrategyMode.DOUBLE_SHORT_FUNDING,
                capital_usd=capital,
                min_funding_rate=self._settings.positive_threshold,
                perp_order=self._ioc_order(
                    ctx.instrument, MarketType.PERP, OrderSide.SELL, perp_size, mark, False
                ),
                spot_order=spot_order,
            )

        perp_size = quantize_size(capital * leverage / mark, precision)
        return EntryPlan(
            mode=StrategyMode.SIMPLE_LONG_FUNDING,
            capital_usd=capital,
            min_funding_rate=self._settings.negative_threshold,
            perp_order=self._ioc_order(
                ctx.instrument, MarketType.PERP, OrderSide.BUY, perp_size, mark, False
            ),
        )

    async def maybe_open(
        self, state: StrategyState | None, ctx: FundingContext
    ) -> StrategyState | None:
        """Open a position if idle and the funding rate clears a threshold.

        Returns the input state unchanged when already open or when the
        rate sits between the thresholds.

        Raises:
            VenueRejectedError: If any leg is rejected (filled legs are
                reported, not unwound).
        """
        if state is not None and state.is_open:
            return state

        plan = self.plan_entry(ctx)
        if plan is None:
            logger.debug(
                "funding_below_entry_thresholds",
                instrument=ctx.instrument,
                funding_rate=str(ctx.funding_rate),
            )
            return state

        await self._gateway.ensure_leverage(ctx.instrument, self._settings.leverage)
        orders = plan.orders
        statuses = await self._gateway.submit_orders(orders)
        raise_for_rejections(ctx.instrument, orders, statuses, "open")

        status_by_market = {
            intent.market: status for intent, status in zip(orders, statuses)
        }
        perp_status = status_by_market[MarketType.PERP]
        perp_size = perp_status.filled_size or plan.perp_order.size
        spot_size = Decimal("0")
        if plan.spot_order is not None:
            spot_size = status_by_market[MarketType.SPOT].filled_size or plan.spot_order.size

        new_state = StrategyState(
            instrument=ctx.instrument,
            mode=plan.mode,
            capital_usd=plan.capital_usd,
            perp_size=perp_size,
            spot_size=spot_size,
            entry_mark_price=ctx.mark_price,
            entry_time_ms=ctx.now_ms,
            exit_pnl_percent_target=self._settings.exit_pnl_percent_target,
            min_funding_rate=plan.min_funding_rate,
            is_open=True,
            source=StrategySource.AUTO,
        )
        logger.info(
            "position_opened",
            instrument=ctx.instrument,
            mode=plan.mode.value,
            funding_rate=str(ctx.funding_rate),
            perp_size=str(perp_size),
            spot_size=str(spot_size),
            entry_mark_price=str(ctx.mark_price),
            perp_order_id=perp_status.order_id,
        )
        return new_state

    def evaluate_exit(self, state: StrategyState, ctx: FundingContext) -> ExitDecision:
        """Decide whether an open state should close at ``ctx``."""
        pnl_percent = compute_approx_pnl_percent(state, ctx.mark_price)
        sign_changed = _sign(ctx.funding_rate) != _sign(state.min_funding_rate)
        return ExitDecision(
            should_exit=pnl_percent <= state.exit_pnl_percent_target or sign_changed,
            pnl_percent=pnl_percent,
            funding_sign_changed=sign_changed,
        )

    def build_exit_orders(self, state: StrategyState, mark_price: Decimal) -> list[OrderIntent]:
        """Reduce-only perp close plus a spot sell when a spot leg is held."""
        perp_close_side = (
            OrderSide.SELL if state.mode == StrategyMode.SIMPLE_LONG_FUNDING else OrderSide.BUY
        )
        orders = [
            self._ioc_order(
                state.instrument, MarketType.PERP, perp_close_side, state.perp_size, mark_price, True
            )
        ]
        if state.mode == StrategyMode.DOUBLE_SHORT_FUNDING and state.spot_size > 0:
            orders.append(
                self._ioc_order(
                    state.instrument, MarketType.SPOT, OrderSide.SELL, state.spot_size, mark_price, False
                )
            )
        return orders

    async def maybe_close(
        self, state: StrategyState | None, ctx: FundingContext
    ) -> StrategyState | None:
        """Close an open position when exit conditions hold.

        Returns the very same object when nothing changes (absent, closed,
        or holding), so callers can detect a change by identity.

        Raises:
            VenueRejectedError: If a close leg is rejected; the state is
                left open for the caller to retry or remediate.
        """
        if state is None or not state.is_open:
            return state

        decision = self.evaluate_exit(state, ctx)
        if not decision.should_exit:
            logger.debug(
                "position_holding",
                instrument=state.instrument,
                pnl_percent=str(decision.pnl_percent),
                funding_rate=str(ctx.funding_rate),
            )
            return state

        orders = self.build_exit_orders(state, ctx.mark_price)
        statuses = await self._gateway.submit_orders(orders)
        raise_for_rejections(state.instrument, orders, statuses, "close")

        logger.info(
            "position_closed",
            instrument=state.instrument,
            mode=state.mode.value,
            pnl_percent=str(decision.pnl_percent),
            funding_rate=str(ctx.funding_rate),
            funding_sign_changed=decision.funding_sign_changed,
        )
        return replace(state, is_open=False)
