"""
Gateway status classification.

Two views of the same raw status string:

is_connected_status():
    Strict allow-list used for every state transition. Only "open" and
    "connected" (case-insensitive, trimmed) count as connected; empty,
    missing and unknown statuses are disconnected.

classify_for_display():
    Three-valued token classification used by the status summary. It may
    report CONNECTING, which the state machine still folds into
    "not connected".
"""

from __future__ import annotations

import re
from enum import Enum

from policy import (
    CONNECTED_STATUSES,
    SUMMARY_CONNECTED_TOKENS,
    SUMMARY_CONNECTING_TOKENS,
    SUMMARY_DISCONNECTED_TOKENS,
)


class DisplayStatus(str, Enum):
    """Status as shown to lightweight consumers (badges, sidebars)."""

    CONNECTED = "connected"
    CONNECTING = "connecting"
    DISCONNECTED = "disconnected"
    NO_PERMISSION = "no-permission"


_NON_TOKEN_CHARS = re.compile(r"[^a-z_ ]")


def is_connected_status(status: str | None) -> bool:
    if not status:
        return False
    return str(status).strip().lower() in CONNECTED_STATUSES


def classify_for_display(status: str | None) -> DisplayStatus:
    """
    Classify a raw gateway status for display.

    Disconnected tokens win over connected ones ("not_connected" must
    never read as connected); anything unrecognized is disconnected.
    """
    if not status:
        return DisplayStatus.DISCONNECTED

    tokens = set(_NON_TOKEN_CHARS.sub(" ", str(status).lower()).split())

    if tokens & SUMMARY_DISCONNECTED_TOKENS:
        return DisplayStatus.DISCONNECTED
    if tokens & SUMMARY_CONNECTED_TOKENS:
        return DisplayStatus.CONNECTED
    if tokens & SUMMARY_CONNECTING_TOKENS:
        return DisplayStatus.CONNECTING
    return DisplayStatus.DISCONNECTED
