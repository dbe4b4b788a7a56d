"""
Error taxonomy for the link service.

- InvalidInput:       rejected before any network call; no state change
- SessionExpired:     operator must sign in again; aborts the operation
                      without consuming a reconnect attempt
- GatewayError:       the messaging gateway answered with a failure
- GatewayUnavailable: the gateway could not be reached at all
- PermissionDenied:   operator may not manage this store's link

Gateway errors are treated as "disconnected" by the state machine; only
the log text differs.
"""

from __future__ import annotations


class LinkError(Exception):
    """Base class for all link service errors."""


class InvalidInput(LinkError):
    """User input failed validation."""


class SessionExpired(LinkError):
    """Operator session is missing, invalid or expired."""

    def __init__(self, message: str = "Session expired. Please sign in again.") -> None:
        super().__init__(message)


class PermissionDenied(LinkError):
    """Operator is not allowed to manage this store's WhatsApp link."""


class GatewayError(LinkError):
    """Messaging gateway returned an error response."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayUnavailable(GatewayError):
    """Messaging gateway could not be reached (network, timeout)."""
