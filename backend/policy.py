"""
POLICY-AS-CONSTANTS
-------------------
Single source of truth for all behavioral constants of the link service.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final

# =============================================================================
# Gateway instance naming
# =============================================================================

# Derived from the stable store id, never from the (editable) store name.
INSTANCE_NAME_PREFIX: Final[str] = "store_"
INSTANCE_NAME_STORE_ID_CHARS: Final[int] = 8

# =============================================================================
# QR Pairing Loop
# =============================================================================

PAIRING_REFRESH_INTERVAL_MS: Final[int] = 10_000

# Fast status polling while a code is on screen
PAIRING_WATCH_INTERVAL_MS: Final[int] = 5_000
PAIRING_WATCH_WINDOW_MS: Final[int] = 300_000

# =============================================================================
# Health Monitor
# =============================================================================

HEALTH_CHECK_INTERVAL_MS: Final[int] = 60_000

# Only these gateway statuses count as connected. Everything else,
# including unknown or future statuses, is disconnected.
CONNECTED_STATUSES: Final[frozenset[str]] = frozenset({"open", "connected"})

# =============================================================================
# Reconnection Supervisor
# =============================================================================

RECONNECT_BASE_DELAY_MS: Final[int] = 5_000
RECONNECT_MAX_DELAY_MS: Final[int] = 60_000
MAX_RECONNECT_ATTEMPTS: Final[int] = 10

# =============================================================================
# Status summary (display classification + cache)
# =============================================================================

STATUS_SUMMARY_CACHE_TTL_S: Final[float] = 60.0

SUMMARY_CONNECTED_TOKENS: Final[frozenset[str]] = frozenset({
    "open", "connected", "authenticated", "online", "ready",
})
SUMMARY_CONNECTING_TOKENS: Final[frozenset[str]] = frozenset({
    "connecting", "qr", "pairing", "loading", "starting",
})
SUMMARY_DISCONNECTED_TOKENS: Final[frozenset[str]] = frozenset({
    "disconnected", "closed", "close", "offline", "logout",
    "not_connected", "notconnected",
})

# =============================================================================
# Phone numbers
# =============================================================================

PHONE_MIN_DIGITS: Final[int] = 10
PHONE_MAX_DIGITS: Final[int] = 13
STORE_PHONE_COUNTRY_PREFIX: Final[str] = "55"

# =============================================================================
# Gateway transport
# =============================================================================

GATEWAY_TIMEOUT_S_DEFAULT: Final[float] = 25.0
EVOLUTION_INTEGRATION: Final[str] = "WHATSAPP-BAILEYS"
EVOLUTION_FUNCTION_NAME: Final[str] = "evolution-whatsapp"

# Evolution reports "name already taken" with one of these codes
EVOLUTION_NAME_IN_USE_STATUS_CODES: Final[frozenset[int]] = frozenset({403, 409})

# =============================================================================
# Panel lifecycle
# =============================================================================

LINK_RETAIN_AFTER_LAST_OBSERVER_S_DEFAULT: Final[float] = 300.0
OBSERVER_QUEUE_MAX_MESSAGES: Final[int] = 500


# =============================================================================
# Helper Functions
# =============================================================================

def reconnect_delay_ms(attempt: int) -> int:
    """
    Backoff before reconnect attempt N (1-based).

    delay(n) = min(5000 * 2^(n-1), 60000)

    Defensive behavior:
    - Non-positive input is treated as the first attempt.
    """
    n = max(attempt, 1)
    return min(RECONNECT_BASE_DELAY_MS * 2 ** (n - 1), RECONNECT_MAX_DELAY_MS)
