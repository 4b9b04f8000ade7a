"""Spot/perp hedge sizing from a target notional.

hedge_factor = 1 is delta-neutral; < 1 under-hedges (net long bias),
> 1 over-hedges (net short bias).
"""

from decimal import Decimal

from hlfunding.exceptions import InvalidParameterError
from hlfunding.models import HedgeSizing


def _require_positive(name: str, value: Decimal) -> None:
    if not isinstance(value, Decimal) or not value.is_finite() or value <= 0:
        raise InvalidParameterError(
            f"{name} must be a positive finite number, got {value}",
            **{name: value},
        )


def compute_hedge_sizes(
    notional_usd: Decimal,
    spot_price: Decimal,
    hedge_factor: Decimal = Decimal("1"),
) -> HedgeSizing:
    """Compute raw (unquantized) spot and perp quantities.

    spot_qty = notional_usd / spot_price
    perp_qty = spot_qty * hedge_factor

    Raises:
        InvalidParameterError: If any input is not a positive finite Decimal.
    """
    _require_positive("notional_usd", notional_usd)
    _require_positive("spot_price", spot_price)
    _require_positive("hedge_factor", hedge_factor)

    spot_qty = notional_usd / spot_price
    return HedgeSizing(spot_qty=spot_qty, perp_qty=spot_qty * hedge_factor)
