"""
Serializable view of a LinkState for observers and HTTP responses.
"""

from __future__ import annotations

from typing import Any

from link.classify import classify_for_display
from link.enums.state import ConnectionState
from link.state_dataclass import LinkState
from policy import MAX_RECONNECT_ATTEMPTS


def state_snapshot(state: LinkState) -> dict[str, Any]:
    connected = state.phase is ConnectionState.CONNECTED
    return {
        "store_id": state.store_id,
        "state": state.phase.value,
        "connected": connected,
        "display_status": classify_for_display(state.raw_status).value
        if state.raw_status
        else ("connected" if connected else "disconnected"),
        "instance_id": state.instance_id,
        "phone_number": state.phone_number,
        "pairing_code": state.pairing_code or None,
        "raw_status": state.raw_status,
        "reconnecting": state.reconnecting,
        "reconnect_attempt": state.reconnect_attempt.attempt,
        "max_reconnect_attempts": MAX_RECONNECT_ATTEMPTS,
        "auto_reconnect": state.auto_reconnect,
        "pairing_watch_active": state.pairing_watch_active,
        "pending_operation": state.pending_operation.value if state.pending_operation else None,
        "session_expired": state.session_expired,
        "last_error": state.last_error,
    }
