"""Custom exceptions for the funding strategy engine.

All exceptions live here to avoid circular imports between modules.
Strategy errors are structured (kind + message + identifiers) so callers
such as the watcher and the HTTP API can branch on ``kind``.
"""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Machine-readable category of a strategy error."""

    INVALID_PARAMETER = "invalid_parameter"
    INVALID_PRICE = "invalid_price"
    INVALID_QUANTITY = "invalid_quantity"
    INSUFFICIENT_FUNDING_SIGNAL = "insufficient_funding_signal"
    VENUE_REJECTED = "venue_rejected"
    PERSISTENCE_FAILURE = "persistence_failure"
    SIGNAL_UNAVAILABLE = "signal_unavailable"


class BotError(Exception):
    """Base exception for all errors raised by this package."""


class StrategyError(BotError):
    """Base exception carrying a kind and the identifiers involved."""

    kind: ErrorKind = ErrorKind.INVALID_PARAMETER

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and watcher results."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "context": {k: str(v) for k, v in self.context.items()},
        }


class InvalidParameterError(StrategyError):
    """Raised for bad caller input (non-positive notional, empty instrument...)."""

    kind = ErrorKind.INVALID_PARAMETER


class InvalidPriceError(StrategyError):
    """Raised when a price cannot be turned into a tradeable tick."""

    kind = ErrorKind.INVALID_PRICE


class InvalidQuantityError(StrategyError):
    """Raised when a size rounds to zero or is not a positive finite number."""

    kind = ErrorKind.INVALID_QUANTITY


class InsufficientFundingSignalError(StrategyError):
    """Raised when the funding rate no longer clears the caller's threshold."""

    kind = ErrorKind.INSUFFICIENT_FUNDING_SIGNAL


class VenueRejectedError(StrategyError):
    """Raised when the order gateway reports an error status for a leg."""

    kind = ErrorKind.VENUE_REJECTED


class PersistenceError(StrategyError):
    """Raised when the state store or trade log cannot be read or written."""

    kind = ErrorKind.PERSISTENCE_FAILURE


class SignalUnavailableError(StrategyError):
    """Raised when market data for an instrument cannot be fetched."""

    kind = ErrorKind.SIGNAL_UNAVAILABLE
