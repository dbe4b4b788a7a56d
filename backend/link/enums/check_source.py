"""
Origin of a gateway status check.

Rules:
- Identifies which loop asked for a status check.
- Reducer uses it only to pick log text and reconnect bookkeeping.
"""

from __future__ import annotations

from enum import Enum


class CheckSource(str, Enum):
    """Which loop or user action triggered a status check."""

    LOAD = "LOAD"
    HEALTH = "HEALTH"
    PAIRING_WATCH = "PAIRING_WATCH"
    RECONNECT = "RECONNECT"
    MANUAL = "MANUAL"
