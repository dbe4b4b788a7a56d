"""
Authoritative connection state enumeration.

Rules:
- This enum defines ONLY the control-plane phases of a store link.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """
    High-level phase of a single store's WhatsApp link.

    UNPAIRED:
        No instance, or an instance was loaded and is not yet verified.
    PAIRING_IN_PROGRESS:
        A pairing code is on screen, waiting for the phone to scan it.
    CONNECTED:
        Gateway reports the instance as open/connected.
    DISCONNECTED:
        Gateway reported a drop and no reconnection is running.
    RECONNECTING:
        Reconnection supervisor has a backoff retry pending.
    EXHAUSTED:
        Reconnect attempts ran out; a fresh pairing code was requested.
    """

    UNPAIRED = "UNPAIRED"
    PAIRING_IN_PROGRESS = "PAIRING_IN_PROGRESS"
    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    RECONNECTING = "RECONNECTING"
    EXHAUSTED = "EXHAUSTED"
