# pylint: disable=missing-module-docstring,missing-function-docstring

import json
from typing import Any

import pytest

from observability import logger
from observability.connection_log import ConnectionLog, ConnectionLogEntry, Severity
from observability.metrics import timed


@pytest.fixture(name="captured")
def fixture_captured(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    lines: list[str] = []

    # Patch the explicit output sink used by logger
    monkeypatch.setattr(logger, "_print", lines.append)
    monkeypatch.setattr(logger, "_min_level", logger._LEVELS["info"])  # pylint: disable=protected-access
    monkeypatch.setattr(logger, "_json_lines", True)
    return lines


def test_log_event_emits_valid_jsonl(captured: list[str]) -> None:
    """
    Contract:
    - log_event emits exactly one JSONL line
    - payload is serialized as-is
    - output sink is patchable
    """
    payload: dict[str, Any] = {
        "event_type": "TEST",
        "value": 123,
    }

    logger.log_event(payload)

    # Exactly one line emitted
    assert len(captured) == 1

    # Must be valid JSON
    decoded = json.loads(captured[0])

    # Payload must be preserved exactly
    assert decoded == payload


def test_events_below_minimum_level_are_dropped(captured: list[str]) -> None:
    logger.configure(level="warning")
    try:
        logger.log_event({"event_type": "QUIET", "level": "info"})
        logger.log_event({"event_type": "LOUD", "level": "error"})
    finally:
        logger.configure(level="info")

    assert [json.loads(line)["event_type"] for line in captured] == ["LOUD"]


def test_unserializable_event_never_raises(captured: list[str]) -> None:
    logger.log_event({"event_type": "BAD", "value": object()})

    decoded = json.loads(captured[0])
    assert decoded["event_type"] == "LOGGER_SERIALIZATION_ERROR"


def test_timed_emits_metric_with_outcome(captured: list[str]) -> None:
    logger.configure(level="debug")
    try:
        with pytest.raises(RuntimeError):
            with timed("gateway_check_status", store_id="s1", details={"instance_name": "store_s1"}) as extra:
                extra["status"] = "open"
                raise RuntimeError("boom")
    finally:
        logger.configure(level="info")

    metric = json.loads(captured[0])
    assert metric["event_type"] == "METRIC_TIMER"
    assert metric["metric"] == "gateway_check_status"
    assert metric["outcome"] == "RuntimeError"
    assert metric["details"] == {"instance_name": "store_s1", "status": "open"}


def test_connection_log_is_append_only_and_clearable() -> None:
    log = ConnectionLog()
    log.append(ConnectionLogEntry(ts_ms=1, message="Creating WhatsApp instance", severity=Severity.INFO))
    log.append(ConnectionLogEntry(ts_ms=2, message="WhatsApp connected", severity=Severity.SUCCESS))

    assert [e.message for e in log] == ["Creating WhatsApp instance", "WhatsApp connected"]
    assert [e.severity for e in log] == [Severity.INFO, Severity.SUCCESS]
    assert list(log)[1].to_dict() == {"ts_ms": 2, "message": "WhatsApp connected", "severity": "success"}

    log.clear()
    assert len(log) == 0
