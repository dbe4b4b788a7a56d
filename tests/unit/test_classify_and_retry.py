# pylint: disable=missing-module-docstring,missing-function-docstring
import pytest

from link.classify import DisplayStatus, classify_for_display, is_connected_status
from link.retry import (
    RetryAttempt,
    get_retry_delay_ms,
    is_exhausted,
    next_attempt,
    reset_attempt,
)


# ---------------------------------------------------------------------
# 1. Connected classification is a strict allow-list
# ---------------------------------------------------------------------

@pytest.mark.parametrize("status", ["open", "connected", "OPEN", " connected "])
def test_allow_listed_statuses_are_connected(status: str):
    assert is_connected_status(status) is True


@pytest.mark.parametrize(
    "status",
    ["close", "connecting", "disconnected", "qr", "refused", "", None, "not_connected", "opening"],
)
def test_everything_else_is_disconnected(status: str | None):
    assert is_connected_status(status) is False


# ---------------------------------------------------------------------
# 2. Display classification (status summary)
# ---------------------------------------------------------------------

def test_display_classification_is_three_valued():
    assert classify_for_display("open") is DisplayStatus.CONNECTED
    assert classify_for_display("connecting") is DisplayStatus.CONNECTING
    assert classify_for_display("close") is DisplayStatus.DISCONNECTED
    assert classify_for_display(None) is DisplayStatus.DISCONNECTED


def test_display_disconnected_tokens_win():
    assert classify_for_display("not_connected") is DisplayStatus.DISCONNECTED
    assert classify_for_display("something-new") is DisplayStatus.DISCONNECTED


# ---------------------------------------------------------------------
# 3. Backoff
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    ("attempt", "expected_ms"),
    [(1, 5_000), (2, 10_000), (3, 20_000), (4, 40_000), (5, 60_000), (9, 60_000)],
)
def test_delay_formula(attempt: int, expected_ms: int):
    assert get_retry_delay_ms(RetryAttempt(attempt=attempt)) == expected_ms


def test_attempt_counter_is_clamped_and_exhausts_at_ten():
    attempt = reset_attempt()
    seen = []
    while not is_exhausted(attempt):
        attempt = next_attempt(attempt)
        seen.append(attempt.attempt)

    assert seen == list(range(1, 11))
    assert next_attempt(attempt).attempt == 10
