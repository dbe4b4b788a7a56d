"""
Authoritative link state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
- The connection log lives on the store link, not here.
"""
from __future__ import annotations

from dataclasses import dataclass

from link.enums.operation import Operation
from link.enums.state import ConnectionState
from link.retry import RetryAttempt


@dataclass(frozen=True)
class LinkState:
    """Immutable snapshot of a single store's connection-manager state."""

    store_id: str

    # ------------------------------------------------------------------
    # Control state
    # ------------------------------------------------------------------
    phase: ConnectionState = ConnectionState.UNPAIRED

    # ------------------------------------------------------------------
    # Gateway instance
    # ------------------------------------------------------------------
    instance_id: str | None = None
    phone_number: str = ""

    # Base64 data URL of the QR image; "" whenever none is on screen
    pairing_code: str = ""

    # Last status string returned by the gateway (for display only)
    raw_status: str | None = None

    # Bumped every time instance_id is set or cleared. Timer ticks and
    # gateway results carry the generation that issued them and are
    # ignored once it is stale.
    generation: int = 0

    # ------------------------------------------------------------------
    # Reconnection supervisor
    # ------------------------------------------------------------------
    reconnect_attempt: RetryAttempt = RetryAttempt(attempt=0)
    reconnecting: bool = False
    auto_reconnect: bool = True

    # ------------------------------------------------------------------
    # Pairing watch (fast status polling while a code is shown)
    # ------------------------------------------------------------------
    pairing_watch_active: bool = False

    # ------------------------------------------------------------------
    # Gating
    # ------------------------------------------------------------------
    # At least one observer has the panel in the foreground
    visible: bool = False

    # Operator session expired; all gateway polling is suspended
    session_expired: bool = False

    # User-initiated create/remove currently running
    pending_operation: Operation | None = None

    # Link torn down; every further event is ignored
    closed: bool = False

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------
    last_error: str | None = None
