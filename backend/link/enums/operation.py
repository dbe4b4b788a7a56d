"""
Gateway-facing operations a link can have in flight.

Used to tag failures (e.g. session expiry) with the operation they aborted.
"""

from __future__ import annotations

from enum import Enum


class Operation(str, Enum):
    """Operations executed by the runtime on behalf of the reducer."""

    LOOKUP = "LOOKUP"
    CREATE = "CREATE"
    REFRESH_CODE = "REFRESH_CODE"
    CHECK_STATUS = "CHECK_STATUS"
    REMOVE = "REMOVE"
