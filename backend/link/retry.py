"""
Reconnect retry policy helpers.

Purpose:
- Centralize the reconnection backoff rules
- Keep reducer pure
- Allow runtime to make deterministic scheduling decisions

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from policy import MAX_RECONNECT_ATTEMPTS, reconnect_delay_ms


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable reconnect attempt counter.

    Semantics:
    - attempt == 0 means no reconnection is running.
    - attempt >= 1 is the Nth scheduled reconnect attempt.
    - Bounded to 0..MAX_RECONNECT_ATTEMPTS; reaching the bound means
      the link is exhausted.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """
    Advance to the next reconnect attempt.

    Returns a new RetryAttempt with attempt incremented by 1, clamped
    to MAX_RECONNECT_ATTEMPTS.
    """
    return RetryAttempt(attempt=min(current.attempt + 1, MAX_RECONNECT_ATTEMPTS))


def reset_attempt() -> RetryAttempt:
    """Returns a fresh reconnect attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def is_exhausted(attempt: RetryAttempt) -> bool:
    """True once the attempt counter has reached the configured maximum."""
    return attempt.attempt >= MAX_RECONNECT_ATTEMPTS


def get_retry_delay_ms(attempt: RetryAttempt) -> int:
    """
    Returns delay before reconnect attempt N.

    Exponential backoff starting at 5s, doubling, capped at 60s:
    1 -> 5000, 2 -> 10000, 3 -> 20000, 4 -> 40000, 5+ -> 60000
    """
    return reconnect_delay_ms(attempt.attempt)
