"""Order sizing: hedge sizes and venue quantization."""

from hlfunding.position.hedge_sizer import compute_hedge_sizes
from hlfunding.position.quantization import (
    derive_price_tick,
    quantize_price,
    quantize_size,
    rounding_for_side,
)

__all__ = [
    "compute_hedge_sizes",
    "derive_price_tick",
    "quantize_price",
    "quantize_size",
    "rounding_for_side",
]
