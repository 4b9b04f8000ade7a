"""Shared data models for the funding strategy engine.

All monetary values use Decimal. Never use float for prices, quantities,
funding rates or PnL.
"""

import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Current Unix time in milliseconds."""
    return int(time.time() * 1000)


def normalize_instrument(instrument: str) -> str:
    """Canonical instrument key: trimmed and uppercased."""
    return instrument.strip().upper()


class FundingDirection(str, Enum):
    """Which side collects funding.

    COLLECT_SHORT: rate > 0, longs pay shorts, we want to be short perp.
    COLLECT_LONG: rate <= 0, shorts pay longs, we want to be long perp.
    """

    COLLECT_SHORT = "collect_short"
    COLLECT_LONG = "collect_long"


class StrategyMode(str, Enum):
    """Strategy state machine position."""

    IDLE = "IDLE"
    DOUBLE_SHORT_FUNDING = "DOUBLE_SHORT_FUNDING"
    SIMPLE_LONG_FUNDING = "SIMPLE_LONG_FUNDING"


class StrategySource(str, Enum):
    """Who opened the position."""

    AUTO = "auto"
    MANUAL = "manual"


class OrderSide(str, Enum):
    """Order direction."""

    BUY = "buy"
    SELL = "sell"


class RoundDirection(str, Enum):
    """Rounding direction for price quantization."""

    UP = "up"
    DOWN = "down"


class TimeInForce(str, Enum):
    """Order time in force."""

    IOC = "IOC"
    GTC = "GTC"


class MarketType(str, Enum):
    """Which market of an instrument an order targets."""

    PERP = "perp"
    SPOT = "spot"


class WatchAction(str, Enum):
    """Per-instrument outcome of a watcher tick."""

    IDLE = "idle"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class FundingSignal:
    """Funding snapshot for one perpetual. Derived on every evaluation, never stored."""

    instrument: str
    funding_rate: Decimal
    premium: Decimal
    direction: FundingDirection
    size_precision: int
    impact_bid: Decimal | None = None
    impact_ask: Decimal | None = None


@dataclass(frozen=True)
class FundingContext:
    """Everything the engine needs to evaluate one instrument at one instant."""

    signal: FundingSignal
    mark_price: Decimal
    now_ms: int

    @property
    def instrument(self) -> str:
        return self.signal.instrument

    @property
    def funding_rate(self) -> Decimal:
        return self.signal.funding_rate


@dataclass(frozen=True)
class MarketSnapshot:
    """One row of a multi-instrument market overview."""

    instrument: str
    mark_price: Decimal
    funding_rate: Decimal
    premium: Decimal
    direction: FundingDirection


@dataclass(frozen=True)
class HedgeSizing:
    """Spot and perp quantities for a target notional."""

    spot_qty: Decimal
    perp_qty: Decimal


@dataclass(frozen=True)
class PriceTickMeta:
    """Venue tick for a price magnitude."""

    tick: Decimal
    decimals: int


@dataclass(frozen=True)
class SpotMarketLookup:
    """Whether the venue lists a spot market for an instrument.

    A tagged value rather than an exception: a missing spot market is an
    expected condition and the engine falls back to a perp-only position.
    """

    available: bool
    symbol: str | None = None
    reason: str = ""


@dataclass(frozen=True)
class OrderIntent:
    """An order the engine wants the gateway to submit."""

    instrument: str
    market: MarketType
    side: OrderSide
    size: Decimal
    price: Decimal
    time_in_force: TimeInForce
    reduce_only: bool = False


@dataclass(frozen=True)
class OrderStatus:
    """Venue response for a single submitted order.

    Exactly one of resting_id, filled_id or error is expected to be set.
    """

    resting_id: str | None = None
    filled_id: str | None = None
    error: str | None = None
    filled_size: Decimal | None = None
    average_price: Decimal | None = None

    @property
    def order_id(self) -> str | None:
        return self.filled_id or self.resting_id

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass
class StrategyState:
    """At most one open (or idle) position per instrument.

    Closing flips is_open and keeps the sizing fields for audit.
    """

    instrument: str
    mode: StrategyMode
    capital_usd: Decimal
    perp_size: Decimal
    spot_size: Decimal
    entry_mark_price: Decimal
    entry_time_ms: int
    exit_pnl_percent_target: Decimal
    min_funding_rate: Decimal  # threshold (and sign) active at entry
    is_open: bool
    source: StrategySource = StrategySource.AUTO
    estimated_funding_pnl_usd: Decimal | None = None
    owner_ref: str | None = None
    updated_at: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation (Decimals as strings)."""
        return {
            "instrument": self.instrument,
            "mode": self.mode.value,
            "capital_usd": str(self.capital_usd),
            "perp_size": str(self.perp_size),
            "spot_size": str(self.spot_size),
            "entry_mark_price": str(self.entry_mark_price),
            "entry_time_ms": self.entry_time_ms,
            "exit_pnl_percent_target": str(self.exit_pnl_percent_target),
            "min_funding_rate": str(self.min_funding_rate),
            "is_open": self.is_open,
            "source": self.source.value,
            "estimated_funding_pnl_usd": (
                str(self.estimated_funding_pnl_usd)
                if self.estimated_funding_pnl_usd is not None
                else None
            ),
            "owner_ref": self.owner_ref,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class ExitDecision:
    """Outcome of exit evaluation for an open state."""

    should_exit: bool
    pnl_percent: Decimal
    funding_sign_changed: bool


@dataclass
class TradeRecord:
    """Append-only audit entry for an opened trade."""

    trade_id: str
    instrument: str
    direction: FundingDirection
    spot_qty: Decimal
    perp_qty: Decimal
    notional_usd: Decimal
    leverage: Decimal
    hedge_factor: Decimal
    created_at: int
    spot_order_id: str | None = None
    perp_order_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["direction"] = self.direction.value
        for key in ("spot_qty", "perp_qty", "notional_usd", "leverage", "hedge_factor"):
            data[key] = str(data[key])
        return data


@dataclass
class WatchResult:
    """Per-instrument result of one watcher tick."""

    instrument: str
    action: WatchAction
    funding_rate: Decimal | None = None
    state: StrategyState | None = None
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "instrument": self.instrument,
            "action": self.action.value,
            "funding_rate": str(self.funding_rate) if self.funding_rate is not None else None,
            "state": self.state.to_dict() if self.state is not None else None,
            "error": self.error,
        }
