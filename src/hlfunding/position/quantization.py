"""Price tick and size lot quantization for Hyperliquid orders.

All values are Decimal with an explicit scale, so quantizing an already
quantized value returns it unchanged (no float-to-string drift).

Hyperliquid conventions:
- Size: at most ``szDecimals`` decimal digits per asset (0..8). Sizes are
  always truncated, never rounded up, so we never exceed the intended notional.
- Price: roughly five significant digits. The tick is derived from the
  magnitude of a reference price: 10^(floor(log10(price)) - 4), clamped
  to [1e-8, 1e8].
"""

from decimal import ROUND_CEILING, ROUND_DOWN, ROUND_FLOOR, Decimal, InvalidOperation

from hlfunding.exceptions import InvalidPriceError, InvalidQuantityError
from hlfunding.models import OrderSide, PriceTickMeta, RoundDirection

MAX_DECIMALS = 8
_SIGNIFICANT_DIGITS = 5
_MIN_TICK_EXPONENT = -8
_MAX_TICK_EXPONENT = 8


def _as_decimal(value: Decimal | int | str) -> Decimal:
    try:
        return value if isinstance(value, Decimal) else Decimal(str(value))
    except InvalidOperation:
        return Decimal("NaN")


def clamp_precision(precision: int) -> int:
    """Clamp a size precision to the venue's [0, 8] range."""
    return max(0, min(MAX_DECIMALS, int(precision)))


def quantize_size(raw_size: Decimal, size_precision: int) -> Decimal:
    """Truncate ``raw_size`` to ``size_precision`` decimal digits.

    Args:
        raw_size: Desired quantity in base units.
        size_precision: Decimal digits allowed by the venue.

    Returns:
        The truncated size, never greater than the input.

    Raises:
        InvalidQuantityError: If the input is not a positive finite number
            or truncates to zero.
    """
    size = _as_decimal(raw_size)
    if not size.is_finite() or size <= 0:
        raise InvalidQuantityError(
            f"Size must be a positive finite number, got {raw_size}",
            size=raw_size,
        )

    precision = clamp_precision(size_precision)
    quantized = size.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_DOWN)
    if quantized <= 0:
        raise InvalidQuantityError(
            f"Size {raw_size} is too small for {precision} decimals",
            size=raw_size,
            precision=precision,
        )
    return quantized


def derive_price_tick(reference_price: Decimal) -> PriceTickMeta:
    """Derive the venue tick for prices of the same magnitude as ``reference_price``.

    A $60,000 asset gets a tick of 1, a $0.00001 asset a tick of 1e-9
    clamped to 1e-8.
    """
    price = _as_decimal(reference_price)
    if not price.is_finite() or price <= 0:
        raise InvalidPriceError(
            f"Reference price must be a positive finite number, got {reference_price}",
            price=reference_price,
        )

    # adjusted() == floor(log10(price)) for any positive Decimal
    exponent = price.adjusted() - (_SIGNIFICANT_DIGITS - 1)
    exponent = max(_MIN_TICK_EXPONENT, min(exponent, _MAX_TICK_EXPONENT))
    decimals = min(MAX_DECIMALS, -exponent) if exponent < 0 else 0
    return PriceTickMeta(tick=Decimal(1).scaleb(exponent), decimals=decimals)


def quantize_price(
    raw_price: Decimal,
    tick_meta: PriceTickMeta,
    round_direction: RoundDirection,
) -> Decimal:
    """Snap ``raw_price`` onto the tick grid.

    UP uses ceil and DOWN uses floor. The result is at least one tick and
    carries exactly ``tick_meta.decimals`` decimal places.

    Raises:
        InvalidPriceError: If the price or tick is not positive and finite.
    """
    price = _as_decimal(raw_price)
    if not price.is_finite() or price <= 0:
        raise InvalidPriceError(
            f"Price must be a positive finite number, got {raw_price}",
            price=raw_price,
        )
    if not tick_meta.tick.is_finite() or tick_meta.tick <= 0:
        raise InvalidPriceError(
            f"Tick must be a positive finite number, got {tick_meta.tick}",
            tick=tick_meta.tick,
        )

    rounding = ROUND_CEILING if round_direction == RoundDirection.UP else ROUND_FLOOR
    steps = (price / tick_meta.tick).to_integral_value(rounding=rounding)
    if steps <= 0:
        steps = Decimal(1)

    return (steps * tick_meta.tick).quantize(Decimal(1).scaleb(-tick_meta.decimals))


def rounding_for_side(side: OrderSide) -> RoundDirection:
    """Aggressive rounding for IOC/impact fills: buys round up, sells round down."""
    return RoundDirection.UP if side == OrderSide.BUY else RoundDirection.DOWN
