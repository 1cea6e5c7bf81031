from typing import Any, Optional

from mcp.types import INTERNAL_ERROR


class PriceCheckError(Exception):
    """Base class for all errors raised by the price-check service."""


class ItineraryValidationError(PriceCheckError):
    """The caller's itinerary is malformed or has an unsupported shape.

    Terminal for the request: never retried, the message goes to the caller as-is.
    """


class BackendError(PriceCheckError):
    """The remote price-discovery backend failed or answered with an error payload."""


class ProtocolError(PriceCheckError):
    """A JSON-RPC level failure, carried back to the caller as an error object."""

    def __init__(self, code: int = INTERNAL_ERROR, message: str = "Internal error", data: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data
