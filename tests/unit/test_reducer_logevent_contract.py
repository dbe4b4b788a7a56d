# pylint: disable=missing-module-docstring,missing-function-docstring

from link.commands import LogEvent
from link.enums.state import ConnectionState
from link.events import EventType, PanelOpened
from link.reducer import reduce
from link.state_dataclass import LinkState

from fakes import status_observed


def test_reducer_emits_logevent_with_required_fields():
    state = LinkState(store_id="s1")

    event = PanelOpened(
        event_type=EventType.PANEL_OPENED,
        ts_ms=123,
    )

    _, commands = reduce(state, event)

    log_events = [c for c in commands if isinstance(c, LogEvent)]
    assert log_events, "Reducer must emit at least one LogEvent"

    payload = log_events[0].event

    assert payload["ts_ms"] == 123
    assert payload["store_id"] == "s1"
    assert payload["event_type"] == "PANEL_OPENED"
    assert "phase" in payload
    assert "generation" in payload
    assert "decision" in payload
    assert "reconnect_attempt" in payload
    assert "details" in payload


def test_state_change_is_logged_last():
    state = LinkState(
        store_id="s1",
        instance_id="store_s1",
        generation=1,
        phase=ConnectionState.PAIRING_IN_PROGRESS,
        visible=True,
    )

    _, commands = reduce(state, status_observed(1, "open"))

    last = commands[-1]
    assert isinstance(last, LogEvent)
    assert last.event["decision"] == "state_changed"
    assert last.event["details"]["to_state"] == "CONNECTED"
