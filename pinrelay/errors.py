"""
Error taxonomy for the relay.

Each class maps to one failure class of the inbound endpoint:
validation (400), transient gateway (503), permanent gateway (502)
and persistence (500).
"""

from typing import Optional


class RelayError(Exception):
    """Base class for all relay errors."""


class EventValidationError(RelayError):
    """Malformed or unroutable inbound payload. Raised before dispatch."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class RouteConfigError(RelayError):
    """The static route table is malformed."""


class GatewayError(RelayError):
    """A call to the messaging platform failed."""

    def __init__(
        self,
        method: str,
        description: str,
        code: Optional[int] = None,
    ):
        super().__init__(f"{method} failed ({code}): {description}")
        self.method = method
        self.code = code
        self.description = description


class TransientGatewayError(GatewayError):
    """Timeout or retryable remote failure, raised once retries are exhausted."""


class PermanentGatewayError(GatewayError):
    """Non-retryable remote failure such as an authorization error."""


class PersistenceError(RelayError):
    """Reading or writing stream state failed."""
