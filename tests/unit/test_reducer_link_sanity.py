# pylint: disable=missing-module-docstring,missing-function-docstring
from link.reducer import (
    ALL_TIMER_IDS,
    TIMER_HEALTH_CHECK,
    TIMER_PAIRING_REFRESH,
    TIMER_PAIRING_WATCH,
    TIMER_PAIRING_WATCH_EXPIRY,
    TIMER_RECONNECT,
    reduce,
)
from link.state_dataclass import LinkState
from link.retry import RetryAttempt
from link.enums.state import ConnectionState
from link.enums.operation import Operation
from link.enums.check_source import CheckSource

from link.events import (
    AutoReconnectChanged,
    EventType,
    InstanceCreated,
    InstanceLoaded,
    PairingCodeRefreshed,
    PairingRequested,
    PairingTick,
    PanelClosed,
    PanelOpened,
    RemovalRequested,
    SessionExpiredObserved,
    SessionRenewed,
    VisibilityChanged,
)

from link.commands import (
    AppendLog,
    CancelTimer,
    CheckStatus,
    ClearLog,
    Command,
    CreateInstance,
    LogEvent,
    LookupInstance,
    Notify,
    RefreshPairingCode,
    RemoveInstance,
    StartInterval,
    StartTimer,
    ToastVariant,
)
from observability.connection_log import Severity

from fakes import status_observed


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

def panel_opened() -> PanelOpened:
    return PanelOpened(event_type=EventType.PANEL_OPENED, ts_ms=0)


def visibility(visible: bool) -> VisibilityChanged:
    return VisibilityChanged(event_type=EventType.VISIBILITY_CHANGED, ts_ms=0, visible=visible)


def instance_loaded(instance_id: str = "store_abc12345", status: str | None = None) -> InstanceLoaded:
    return InstanceLoaded(
        event_type=EventType.INSTANCE_LOADED,
        ts_ms=0,
        instance_id=instance_id,
        phone_number="38999999999",
        status=status,
    )


def pairing_requested(phone: str) -> PairingRequested:
    return PairingRequested(event_type=EventType.PAIRING_REQUESTED, ts_ms=0, phone_number=phone)


def instance_created(instance_id: str = "store_abc12345") -> InstanceCreated:
    return InstanceCreated(
        event_type=EventType.INSTANCE_CREATED,
        ts_ms=0,
        instance_id=instance_id,
        pairing_code="data:image/png;base64,QR",
    )


def session_expired(generation: int) -> SessionExpiredObserved:
    return SessionExpiredObserved(
        event_type=EventType.SESSION_EXPIRED,
        ts_ms=0,
        operation=Operation.CHECK_STATUS,
        generation=generation,
        source=CheckSource.RECONNECT,
    )


def connected_state(**overrides) -> LinkState:
    base = {
        "store_id": "abc12345-store",
        "phase": ConnectionState.CONNECTED,
        "instance_id": "store_abc12345",
        "generation": 1,
        "visible": True,
    }
    base.update(overrides)
    return LinkState(**base)


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

def decisions(commands: tuple[Command, ...]) -> list[str]:
    """Extract decision strings from LogEvent commands."""
    return [
        c.event["decision"]
        for c in commands
        if isinstance(c, LogEvent)
    ]


def started(commands: tuple[Command, ...]) -> set[str]:
    return {c.timer_id for c in commands if isinstance(c, (StartInterval, StartTimer))}


def cancelled(commands: tuple[Command, ...]) -> set[str]:
    return {c.timer_id for c in commands if isinstance(c, CancelTimer)}


# ---------------------------------------------------------------------
# 1. Reducer shape & purity
# ---------------------------------------------------------------------

def test_reducer_returns_state_and_tuple():
    state = LinkState(store_id="s1")

    new_state, commands = reduce(state, panel_opened())

    assert isinstance(commands, tuple)
    assert isinstance(new_state, LinkState)


def test_reducer_does_not_mutate_input_state():
    state = LinkState(store_id="s1")

    reduce(state, panel_opened())

    assert state.pending_operation is None
    assert state.phase is ConnectionState.UNPAIRED


def test_logs_come_after_side_effects():
    state = LinkState(store_id="s1")

    _, commands = reduce(state, panel_opened())

    kinds = [type(c) for c in commands]
    assert kinds.index(LookupInstance) < kinds.index(LogEvent)


# ---------------------------------------------------------------------
# 2. Instance lookup
# ---------------------------------------------------------------------

def test_panel_open_looks_up_instance():
    state = LinkState(store_id="s1")

    new_state, commands = reduce(state, panel_opened())

    assert new_state.pending_operation is Operation.LOOKUP
    assert LookupInstance(store_id="s1") in commands


def test_loaded_instance_starts_health_monitor_when_visible():
    state = LinkState(store_id="s1", visible=True, pending_operation=Operation.LOOKUP)

    new_state, commands = reduce(state, instance_loaded())

    assert new_state.instance_id == "store_abc12345"
    assert new_state.generation == 1
    assert new_state.phase is ConnectionState.UNPAIRED

    health = [c for c in commands if isinstance(c, StartInterval) and c.timer_id == TIMER_HEALTH_CHECK]
    assert len(health) == 1
    assert health[0].immediate is True
    assert health[0].generation == 1
    # The immediate health tick covers the initial check
    assert not any(isinstance(c, CheckStatus) for c in commands)


def test_loaded_instance_checks_once_when_hidden():
    state = LinkState(store_id="s1", visible=False, pending_operation=Operation.LOOKUP)

    new_state, commands = reduce(state, instance_loaded())

    assert started(commands) == set()
    checks = [c for c in commands if isinstance(c, CheckStatus)]
    assert len(checks) == 1
    assert checks[0].source is CheckSource.LOAD
    assert checks[0].generation == new_state.generation


def test_recovered_instance_reporting_open_is_connected_immediately():
    state = LinkState(store_id="s1", visible=True, pending_operation=Operation.LOOKUP)

    new_state, commands = reduce(state, instance_loaded(status="open"))

    assert new_state.phase is ConnectionState.CONNECTED
    assert any(isinstance(c, AppendLog) and c.severity is Severity.SUCCESS for c in commands)


def test_loaded_without_pending_lookup_is_ignored():
    state = LinkState(store_id="s1")

    new_state, commands = reduce(state, instance_loaded())

    assert new_state == state
    assert "ignore" in decisions(commands)


# ---------------------------------------------------------------------
# 3. Pairing requests
# ---------------------------------------------------------------------

def test_invalid_phone_is_rejected_without_state_change():
    state = LinkState(store_id="s1", visible=True)

    new_state, commands = reduce(state, pairing_requested("123"))

    assert new_state == state
    toasts = [c for c in commands if isinstance(c, Notify)]
    assert len(toasts) == 1
    assert toasts[0].variant is ToastVariant.DESTRUCTIVE
    assert not any(isinstance(c, CreateInstance) for c in commands)


def test_valid_phone_creates_instance():
    state = LinkState(store_id="s1", visible=True)

    new_state, commands = reduce(state, pairing_requested("(38) 99999-9999"))

    assert new_state.pending_operation is Operation.CREATE
    assert new_state.phone_number == "38999999999"
    assert CreateInstance(store_id="s1", phone_number="38999999999") in commands


def test_pairing_request_ignored_while_connected():
    state = connected_state()

    new_state, commands = reduce(state, pairing_requested("38999999999"))

    assert new_state == state
    assert "ignore" in decisions(commands)


def test_instance_created_starts_pairing_loop_and_watch():
    state = LinkState(store_id="s1", visible=True, pending_operation=Operation.CREATE, phone_number="38999999999")

    new_state, commands = reduce(state, instance_created())

    assert new_state.phase is ConnectionState.PAIRING_IN_PROGRESS
    assert new_state.pairing_code.startswith("data:image/png")
    assert new_state.pairing_watch_active is True
    assert started(commands) == {
        TIMER_PAIRING_REFRESH,
        TIMER_PAIRING_WATCH,
        TIMER_PAIRING_WATCH_EXPIRY,
        TIMER_HEALTH_CHECK,
    }


def pairing_state(**overrides) -> LinkState:
    base = {
        "store_id": "abc12345-store",
        "phase": ConnectionState.PAIRING_IN_PROGRESS,
        "instance_id": "store_abc12345",
        "phone_number": "38999999999",
        "pairing_code": "OLD",
        "generation": 1,
        "visible": True,
    }
    base.update(overrides)
    return LinkState(**base)


def pairing_tick(generation: int = 1) -> PairingTick:
    return PairingTick(event_type=EventType.PAIRING_TICK, ts_ms=0, generation=generation)


def test_pairing_tick_refreshes_code_and_new_code_replaces_old():
    state = pairing_state()

    after_tick, commands = reduce(state, pairing_tick())

    assert after_tick == state
    refreshes = [c for c in commands if isinstance(c, RefreshPairingCode)]
    assert refreshes == [
        RefreshPairingCode(generation=1, instance_id="store_abc12345", phone_number="38999999999")
    ]

    refreshed, _ = reduce(
        after_tick,
        PairingCodeRefreshed(
            event_type=EventType.PAIRING_CODE_REFRESHED,
            ts_ms=0,
            generation=1,
            pairing_code="NEW",
        ),
    )

    assert refreshed.phase is ConnectionState.PAIRING_IN_PROGRESS
    assert refreshed.pairing_code == "NEW"


def test_hidden_panel_does_not_refresh_pairing_code():
    state = pairing_state(visible=False)

    new_state, commands = reduce(state, pairing_tick())

    assert new_state == state
    assert not any(isinstance(c, RefreshPairingCode) for c in commands)
    assert "ignore" in decisions(commands)


# ---------------------------------------------------------------------
# 4. Generation gating
# ---------------------------------------------------------------------

def test_stale_generation_event_is_ignored():
    state = connected_state(generation=3)

    new_state, commands = reduce(state, status_observed(2, "close"))

    assert new_state == state
    assert "ignore" in decisions(commands)


# ---------------------------------------------------------------------
# 5. Connected resets the counter
# ---------------------------------------------------------------------

def test_connected_resets_attempt_counter():
    state = connected_state(
        phase=ConnectionState.RECONNECTING,
        reconnecting=True,
        reconnect_attempt=RetryAttempt(attempt=4),
    )

    new_state, commands = reduce(state, status_observed(1, "open", source=CheckSource.RECONNECT, attempt=4))

    assert new_state.phase is ConnectionState.CONNECTED
    assert new_state.reconnect_attempt.attempt == 0
    assert new_state.reconnecting is False
    assert new_state.pairing_code == ""
    assert TIMER_RECONNECT in cancelled(commands)
    assert any(isinstance(c, Notify) and c.title == "WhatsApp reconnected" for c in commands)


def test_manual_check_connected_also_resets_counter():
    state = connected_state(
        phase=ConnectionState.RECONNECTING,
        reconnecting=True,
        reconnect_attempt=RetryAttempt(attempt=7),
    )

    new_state, _ = reduce(state, status_observed(1, "connected", source=CheckSource.MANUAL))

    assert new_state.reconnect_attempt.attempt == 0


# ---------------------------------------------------------------------
# 6. Removal
# ---------------------------------------------------------------------

def test_removal_cancels_every_timer_and_clears_state():
    state = connected_state(raw_status="open")

    new_state, commands = reduce(state, RemovalRequested(event_type=EventType.REMOVAL_REQUESTED, ts_ms=0))

    assert cancelled(commands) == set(ALL_TIMER_IDS)
    assert started(commands) == set()
    assert new_state.instance_id is None
    assert new_state.phase is ConnectionState.UNPAIRED
    assert new_state.generation == state.generation + 1
    assert new_state.pending_operation is Operation.REMOVE
    assert any(isinstance(c, ClearLog) for c in commands)
    assert RemoveInstance(store_id=state.store_id, instance_id="store_abc12345") in commands


def test_tick_from_before_removal_is_ignored():
    state = connected_state(phase=ConnectionState.PAIRING_IN_PROGRESS)
    removed, _ = reduce(state, RemovalRequested(event_type=EventType.REMOVAL_REQUESTED, ts_ms=0))

    late_tick = PairingTick(event_type=EventType.PAIRING_TICK, ts_ms=0, generation=state.generation)
    new_state, commands = reduce(removed, late_tick)

    assert new_state == removed
    assert "ignore" in decisions(commands)


# ---------------------------------------------------------------------
# 7. Visibility gating
# ---------------------------------------------------------------------

def test_hidden_panel_stops_polling_and_visible_restarts_it():
    state = connected_state()

    hidden, commands = reduce(state, visibility(False))
    assert TIMER_HEALTH_CHECK in cancelled(commands)

    shown, commands = reduce(hidden, visibility(True))
    assert TIMER_HEALTH_CHECK in started(commands)
    assert shown.visible is True


# ---------------------------------------------------------------------
# 8. Session expiry
# ---------------------------------------------------------------------

def test_session_expiry_suspends_reconnect_without_consuming_attempt():
    state = connected_state(
        phase=ConnectionState.RECONNECTING,
        reconnecting=True,
        reconnect_attempt=RetryAttempt(attempt=3),
    )

    new_state, commands = reduce(state, session_expired(1))

    assert new_state.session_expired is True
    assert new_state.reconnecting is False
    assert new_state.reconnect_attempt.attempt == 3
    assert {TIMER_RECONNECT, TIMER_HEALTH_CHECK} <= cancelled(commands)
    assert any(isinstance(c, Notify) and c.title == "Session expired" for c in commands)


def test_session_renewal_resumes_polling():
    state = connected_state(session_expired=True)

    new_state, commands = reduce(state, SessionRenewed(event_type=EventType.SESSION_RENEWED, ts_ms=0))

    assert new_state.session_expired is False
    assert TIMER_HEALTH_CHECK in started(commands)


# ---------------------------------------------------------------------
# 9. Auto-reconnect toggle
# ---------------------------------------------------------------------

def test_disabling_auto_reconnect_stops_health_monitor():
    state = connected_state()

    new_state, commands = reduce(
        state,
        AutoReconnectChanged(event_type=EventType.AUTO_RECONNECT_CHANGED, ts_ms=0, enabled=False),
    )

    assert new_state.auto_reconnect is False
    assert TIMER_HEALTH_CHECK in cancelled(commands)


def test_failed_check_without_auto_reconnect_is_disconnected():
    state = connected_state(auto_reconnect=False)

    new_state, commands = reduce(state, status_observed(1, "close", source=CheckSource.MANUAL))

    assert new_state.phase is ConnectionState.DISCONNECTED
    assert new_state.reconnecting is False
    assert any(isinstance(c, AppendLog) and c.severity is Severity.ERROR for c in commands)


# ---------------------------------------------------------------------
# 10. Closed links
# ---------------------------------------------------------------------

def test_closing_cancels_everything_and_drops_later_events():
    state = connected_state()

    closed, commands = reduce(state, PanelClosed(event_type=EventType.PANEL_CLOSED, ts_ms=0))
    assert cancelled(commands) == set(ALL_TIMER_IDS)

    new_state, commands = reduce(closed, status_observed(1, "open"))
    assert new_state == closed
    assert "ignore" in decisions(commands)
