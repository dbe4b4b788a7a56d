"""
Pure link reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

# Reducer owns timer semantics; runtime must not cancel timers implicitly.
# Repeating timers are derived from state by _desired_intervals() and
# reconciled after every transition by _sync_timers().

from __future__ import annotations

from dataclasses import replace
from typing import Any

from instances.naming import is_valid_phone, phone_digits
from link.classify import is_connected_status
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
    ScheduleReconnect,
    StartInterval,
    StartTimer,
    ToastVariant,
)
from link.enums.check_source import CheckSource
from link.enums.operation import Operation
from link.enums.state import ConnectionState
from link.events import (
    AutoReconnectChanged,
    CheckRequested,
    Event,
    EventType,
    GenerationEvent,
    HealthTick,
    InstanceCreated,
    InstanceCreateFailed,
    InstanceLoaded,
    InstanceNotFound,
    InstanceRemoved,
    InstanceRemoveFailed,
    LogClearRequested,
    LookupFailed,
    PairingCodeRefreshed,
    PairingRefreshFailed,
    PairingRequested,
    PairingTick,
    PairingWatchExpired,
    PairingWatchTick,
    PanelClosed,
    PanelOpened,
    ReconnectReady,
    RemovalRequested,
    SessionExpiredObserved,
    SessionRenewed,
    StatusObserved,
    VisibilityChanged,
)
from link.retry import (
    RetryAttempt,
    get_retry_delay_ms,
    is_exhausted,
    next_attempt,
    reset_attempt,
)
from link.state_dataclass import LinkState
from observability.connection_log import Severity
from policy import (
    HEALTH_CHECK_INTERVAL_MS,
    MAX_RECONNECT_ATTEMPTS,
    PAIRING_REFRESH_INTERVAL_MS,
    PAIRING_WATCH_INTERVAL_MS,
    PAIRING_WATCH_WINDOW_MS,
    PHONE_MAX_DIGITS,
    PHONE_MIN_DIGITS,
)


# =============================================================================
# Timer IDs
# =============================================================================

TIMER_PAIRING_REFRESH = "pairing_refresh"
TIMER_PAIRING_WATCH = "pairing_watch"
TIMER_PAIRING_WATCH_EXPIRY = "pairing_watch_expiry"
TIMER_HEALTH_CHECK = "health_check"
TIMER_RECONNECT = "reconnect"

ALL_TIMER_IDS: tuple[str, ...] = (
    TIMER_PAIRING_REFRESH,
    TIMER_PAIRING_WATCH,
    TIMER_PAIRING_WATCH_EXPIRY,
    TIMER_HEALTH_CHECK,
    TIMER_RECONNECT,
)

# Phases in which a pairing code is being (re)issued
_PAIRING_PHASES = frozenset({
    ConnectionState.PAIRING_IN_PROGRESS,
    ConnectionState.EXHAUSTED,
})

Transition = tuple[LinkState, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: LinkState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
    *,
    level: str = "info",
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "level": level,
            "store_id": state.store_id,
            "phase": state.phase.value,
            "generation": state.generation,
            "event_type": event.event_type.value,
            "decision": decision,
            "reconnect_attempt": state.reconnect_attempt.attempt,
            "reconnecting": state.reconnecting,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(state: LinkState, event: Event, reason: str, *, level: str = "debug") -> Transition:
    return state, (_log(state, event, "ignore", {"reason": reason}, level=level),)


def _desired_intervals(state: LinkState) -> dict[str, StartInterval]:
    """
    Repeating timers that should be running for this state.

    Nothing polls without an instance, while hidden, after the session
    expired, or once the link is closed.
    """
    if (
        state.closed
        or state.session_expired
        or not state.visible
        or not state.instance_id
    ):
        return {}

    desired: dict[str, StartInterval] = {}

    if state.phase in _PAIRING_PHASES:
        desired[TIMER_PAIRING_REFRESH] = StartInterval(
            timer_id=TIMER_PAIRING_REFRESH,
            interval_ms=PAIRING_REFRESH_INTERVAL_MS,
            tick_event_type=EventType.PAIRING_TICK,
            generation=state.generation,
        )
        if state.pairing_watch_active and state.phase is ConnectionState.PAIRING_IN_PROGRESS:
            desired[TIMER_PAIRING_WATCH] = StartInterval(
                timer_id=TIMER_PAIRING_WATCH,
                interval_ms=PAIRING_WATCH_INTERVAL_MS,
                tick_event_type=EventType.PAIRING_WATCH_TICK,
                generation=state.generation,
            )

    if state.auto_reconnect:
        desired[TIMER_HEALTH_CHECK] = StartInterval(
            timer_id=TIMER_HEALTH_CHECK,
            interval_ms=HEALTH_CHECK_INTERVAL_MS,
            tick_event_type=EventType.HEALTH_TICK,
            generation=state.generation,
            immediate=True,
        )

    return desired


def _sync_timers(prev: LinkState, new: LinkState) -> tuple[Command, ...]:
    """
    Reconcile repeating timers between two states.

    A generation change (instance set, replaced or cleared) or closing the
    link cancels every timer, one-shot timers included, before the new
    set is started.
    """
    cmds: list[Command] = []
    before = _desired_intervals(prev)
    after = _desired_intervals(new)

    if prev.generation != new.generation or (new.closed and not prev.closed):
        cmds.extend(CancelTimer(timer_id=t) for t in ALL_TIMER_IDS)
        before = {}

    for timer_id in before:
        if timer_id not in after:
            cmds.append(CancelTimer(timer_id=timer_id))

    for timer_id, start in after.items():
        if timer_id not in before:
            cmds.append(start)

    return tuple(cmds)


def _transition(
    prev: LinkState,
    new: LinkState,
    event: Event,
    commands: tuple[Command, ...] = (),
    *,
    source: str,
) -> Transition:
    """
    Finish a transition: timer reconciliation first, then the caller's
    commands, then logs (state_changed last).
    """
    cmds: tuple[Command, ...] = _sync_timers(prev, new) + commands
    if prev.phase is not new.phase:
        cmds += (
            _log(
                new,
                event,
                "state_changed",
                {
                    "from_state": prev.phase.value,
                    "to_state": new.phase.value,
                    "source": source,
                },
            ),
        )
    return new, _logs_last(cmds)


def _watch_commands(state: LinkState) -> tuple[Command, ...]:
    return (
        StartTimer(
            timer_id=TIMER_PAIRING_WATCH_EXPIRY,
            duration_ms=PAIRING_WATCH_WINDOW_MS,
            timeout_event_type=EventType.PAIRING_WATCH_EXPIRED,
            generation=state.generation,
        ),
    )


def _refresh(state: LinkState) -> RefreshPairingCode:
    assert state.instance_id is not None
    return RefreshPairingCode(
        generation=state.generation,
        instance_id=state.instance_id,
        phone_number=state.phone_number,
    )


def _session_expired_toast() -> Notify:
    return Notify(
        title="Session expired",
        description="Please sign in again.",
        variant=ToastVariant.DESTRUCTIVE,
    )


def _not_connected_message(event: StatusObserved) -> str:
    if event.error:
        return f"Status check failed: {event.error}"
    return f"WhatsApp not connected (status: {event.status or 'unknown'})"


# =============================================================================
# Status branches
# =============================================================================

def _enter_connected(state: LinkState, event: StatusObserved) -> Transition:
    """
    Connected branch shared by every status source.

    Resets the attempt counter, clears reconnecting and any pairing code.
    """
    assert state.instance_id, "connected requires an instance"

    new_state = replace(
        state,
        phase=ConnectionState.CONNECTED,
        pairing_code="",
        raw_status=event.status,
        reconnect_attempt=reset_attempt(),
        reconnecting=False,
        pairing_watch_active=False,
        last_error=None,
    )

    cmds: list[Command] = []
    if state.reconnecting:
        cmds.append(CancelTimer(timer_id=TIMER_RECONNECT))
    if state.pairing_watch_active:
        cmds.append(CancelTimer(timer_id=TIMER_PAIRING_WATCH_EXPIRY))

    if state.phase is ConnectionState.CONNECTED:
        cmds.append(AppendLog(message="Health check: WhatsApp connected", severity=Severity.SUCCESS))
    else:
        cmds.append(AppendLog(message="WhatsApp connected", severity=Severity.SUCCESS))

    if state.reconnecting:
        cmds.append(
            Notify(
                title="WhatsApp reconnected",
                description="The connection was restored automatically.",
            )
        )
    elif state.phase in _PAIRING_PHASES:
        cmds.append(
            Notify(
                title="WhatsApp connected!",
                description="Your account was connected successfully.",
            )
        )
    elif state.phase is ConnectionState.DISCONNECTED:
        cmds.append(
            Notify(
                title="WhatsApp connected",
                description="The WhatsApp connection was restored.",
            )
        )

    cmds.append(
        _log(
            new_state,
            event,
            "connected",
            {"source": event.source.value, "status": event.status},
        )
    )
    return _transition(state, new_state, event, tuple(cmds), source="status_connected")


def _begin_reconnect(
    prev: LinkState,
    base: LinkState,
    event: Event,
    attempt: RetryAttempt,
) -> Transition:
    """
    Schedule reconnect attempt N after delay(N).

    prev is the state before the event; base carries the fields already
    updated from the observation.
    """
    delay_ms = get_retry_delay_ms(attempt)
    new_state = replace(
        base,
        phase=ConnectionState.RECONNECTING,
        reconnecting=True,
        reconnect_attempt=attempt,
    )
    return _transition(
        prev,
        new_state,
        event,
        (
            ScheduleReconnect(
                generation=new_state.generation,
                attempt=attempt.attempt,
                delay_ms=delay_ms,
            ),
            AppendLog(
                message=(
                    f"Reconnecting in {delay_ms // 1000}s "
                    f"(attempt {attempt.attempt}/{MAX_RECONNECT_ATTEMPTS})"
                ),
            ),
            _log(
                new_state,
                event,
                "schedule_reconnect",
                {"attempt": attempt.attempt, "delay_ms": delay_ms},
            ),
        ),
        source="begin_reconnect",
    )


def _enter_exhausted(state: LinkState, event: Event) -> Transition:
    """
    Reconnect attempts ran out: mark disconnected, tell the user, and
    proactively issue a fresh pairing code.
    """
    new_state = replace(
        state,
        phase=ConnectionState.EXHAUSTED,
        reconnecting=False,
        reconnect_attempt=reset_attempt(),
        pairing_code="",
    )
    return _transition(
        state,
        new_state,
        event,
        (
            _refresh(new_state),
            AppendLog(
                message=(
                    f"Could not reconnect after {MAX_RECONNECT_ATTEMPTS} attempts; "
                    "generating a new QR code"
                ),
                severity=Severity.ERROR,
            ),
            Notify(
                title="WhatsApp reconnection failed",
                description=(
                    f"The connection could not be restored after {MAX_RECONNECT_ATTEMPTS} "
                    "attempts. Scan the new QR code to reconnect."
                ),
                variant=ToastVariant.DESTRUCTIVE,
            ),
            _log(new_state, event, "reconnect_exhausted", level="warning"),
        ),
        source="reconnect_exhausted",
    )


def _observe_not_connected(state: LinkState, event: StatusObserved) -> Transition:
    message = _not_connected_message(event)
    raw_status = "error" if event.error else event.status
    observed = replace(state, raw_status=raw_status, last_error=event.error or state.last_error)

    # Instance loaded but never paired on this gateway session
    if state.phase is ConnectionState.UNPAIRED:
        new_state = replace(
            observed,
            phase=ConnectionState.PAIRING_IN_PROGRESS,
            pairing_watch_active=True,
        )
        return _transition(
            state,
            new_state,
            event,
            (
                _refresh(new_state),
                *_watch_commands(new_state),
                AppendLog(message=f"{message}; requesting a QR code"),
                _log(new_state, event, "enter_pairing", {"source": event.source.value}),
            ),
            source="instance_not_connected",
        )

    # Waiting for the phone to scan the code is the expected condition here
    if state.phase is ConnectionState.PAIRING_IN_PROGRESS:
        cmds: tuple[Command, ...] = (
            _log(observed, event, "waiting_for_scan", {"status": raw_status}, level="debug"),
        )
        if event.source is not CheckSource.PAIRING_WATCH:
            cmds = (AppendLog(message=f"Waiting for QR code scan ({message})"),) + cmds
        return _transition(state, observed, event, cmds, source="waiting_for_scan")

    if state.phase is ConnectionState.EXHAUSTED:
        return _transition(
            state,
            observed,
            event,
            (
                _refresh(observed),
                AppendLog(message=message, severity=Severity.ERROR),
                _log(observed, event, "exhausted_request_code"),
            ),
            source="exhausted_request_code",
        )

    if state.phase is ConnectionState.RECONNECTING:
        if event.source is CheckSource.RECONNECT:
            nxt = next_attempt(state.reconnect_attempt)
            if is_exhausted(nxt):
                new_state, cmds = _enter_exhausted(observed, event)
            else:
                new_state, cmds = _begin_reconnect(state, observed, event, nxt)
            return new_state, _logs_last((AppendLog(message=message, severity=Severity.ERROR),) + cmds)

        # Health/manual checks while a retry is pending: log only
        return _transition(
            state,
            observed,
            event,
            (
                AppendLog(message=message, severity=Severity.ERROR),
                _log(observed, event, "already_reconnecting"),
            ),
            source="already_reconnecting",
        )

    # CONNECTED or DISCONNECTED
    if state.auto_reconnect and not state.reconnecting:
        # Resume from a retained count (session expiry consumed none)
        attempt = RetryAttempt(attempt=max(state.reconnect_attempt.attempt, 1))
        new_state, cmds = _begin_reconnect(state, observed, event, attempt)
        return new_state, _logs_last((AppendLog(message=message, severity=Severity.ERROR),) + cmds)

    dropped = replace(observed, phase=ConnectionState.DISCONNECTED)
    return _transition(
        state,
        dropped,
        event,
        (
            AppendLog(message=message, severity=Severity.ERROR),
            _log(dropped, event, "disconnected", {"auto_reconnect": state.auto_reconnect}),
        ),
        source="status_not_connected",
    )


def _observe_status(state: LinkState, event: StatusObserved) -> Transition:
    connected = event.error is None and is_connected_status(event.status)

    if event.source is CheckSource.RECONNECT:
        current = state.reconnect_attempt.attempt
        if not state.reconnecting or event.attempt != current:
            # The gateway status is still the truth when it says connected;
            # a stale "not connected" must not advance the counter twice.
            if not connected:
                return _ignore(state, event, "stale_reconnect_attempt")

    if connected:
        return _enter_connected(state, event)
    return _observe_not_connected(state, event)


# =============================================================================
# Reducer
# =============================================================================

def reduce(state: LinkState, event: Event) -> Transition:
    """
    Pure reducer for a single store's WhatsApp link.

    Arguments:
        state: current immutable link state
        event: incoming event

    Returns:
        (new_state, commands)
    """
    if state.closed:
        return _ignore(state, event, "link_closed")

    if isinstance(event, GenerationEvent) and event.generation != state.generation:
        return _ignore(
            state,
            event,
            "stale_generation",
        )

    # ------------------------------------------------------------------
    # Panel lifecycle
    # ------------------------------------------------------------------

    if isinstance(event, PanelOpened):
        if state.instance_id or state.pending_operation is not None:
            return _ignore(state, event, "already_loaded", level="info")
        new_state = replace(state, pending_operation=Operation.LOOKUP)
        return _transition(
            state,
            new_state,
            event,
            (
                LookupInstance(store_id=state.store_id),
                _log(new_state, event, "lookup_instance"),
            ),
            source="panel_opened",
        )

    if isinstance(event, PanelClosed):
        new_state = replace(state, closed=True, pending_operation=None)
        return _transition(
            state,
            new_state,
            event,
            (_log(new_state, event, "panel_closed"),),
            source="panel_closed",
        )

    if isinstance(event, VisibilityChanged):
        if event.visible == state.visible:
            return _ignore(state, event, "visibility_unchanged")
        new_state = replace(state, visible=event.visible)
        return _transition(
            state,
            new_state,
            event,
            (_log(new_state, event, "visibility_changed", {"visible": event.visible}),),
            source="visibility_changed",
        )

    if isinstance(event, SessionExpiredObserved):
        new_state = replace(
            state,
            session_expired=True,
            pending_operation=None,
            last_error="session_expired",
        )
        cmds: list[Command] = []

        # Suspend the supervisor without consuming an attempt
        if state.reconnecting:
            new_state = replace(
                new_state,
                phase=ConnectionState.DISCONNECTED,
                reconnecting=False,
            )
            cmds.append(CancelTimer(timer_id=TIMER_RECONNECT))

        if not state.session_expired:
            cmds.append(AppendLog(message="Session expired; sign in again to resume", severity=Severity.ERROR))
            cmds.append(_session_expired_toast())

        cmds.append(
            _log(
                new_state,
                event,
                "session_expired",
                {
                    "operation": event.operation.value,
                    "source": event.source.value if event.source else None,
                },
                level="warning",
            )
        )
        return _transition(state, new_state, event, tuple(cmds), source="session_expired")

    if isinstance(event, SessionRenewed):
        if not state.session_expired:
            return _ignore(state, event, "session_not_expired")
        new_state = replace(state, session_expired=False, last_error=None)
        cmds = [AppendLog(message="Session renewed")]

        # An aborted lookup left the link without an instance
        if not state.instance_id and state.pending_operation is None:
            new_state = replace(new_state, pending_operation=Operation.LOOKUP)
            cmds.append(LookupInstance(store_id=state.store_id))

        cmds.append(_log(new_state, event, "session_renewed"))
        return _transition(state, new_state, event, tuple(cmds), source="session_renewed")

    # ------------------------------------------------------------------
    # Instance registrar
    # ------------------------------------------------------------------

    if isinstance(event, InstanceLoaded):
        if state.pending_operation is not Operation.LOOKUP:
            return _ignore(state, event, "lookup_not_pending", level="info")

        new_state = replace(
            state,
            pending_operation=None,
            instance_id=event.instance_id,
            phone_number=event.phone_number or state.phone_number,
            generation=state.generation + 1,
            phase=ConnectionState.UNPAIRED,
            pairing_code="",
            raw_status=None,
            last_error=None,
        )
        loaded_cmds: tuple[Command, ...] = (
            AppendLog(message=f"Instance found: {event.instance_id}"),
            _log(new_state, event, "instance_loaded", {"instance_id": event.instance_id}),
        )
        state_after_load, cmds_after_load = _transition(
            state, new_state, event, loaded_cmds, source="instance_loaded"
        )

        # Recovered by probe: the probe already reported the status
        if event.status is not None:
            observed = StatusObserved(
                event_type=EventType.STATUS_OBSERVED,
                ts_ms=event.ts_ms,
                generation=state_after_load.generation,
                source=CheckSource.LOAD,
                status=event.status,
            )
            final_state, status_cmds = _observe_status(state_after_load, observed)
            return final_state, _logs_last(cmds_after_load + status_cmds)

        # The health loop checks immediately when it starts; otherwise
        # verify the persisted instance once.
        if TIMER_HEALTH_CHECK not in _desired_intervals(state_after_load):
            cmds_after_load = _logs_last(
                cmds_after_load
                + (
                    CheckStatus(
                        generation=state_after_load.generation,
                        instance_id=event.instance_id,
                        source=CheckSource.LOAD,
                    ),
                )
            )
        return state_after_load, cmds_after_load

    if isinstance(event, InstanceNotFound):
        if state.pending_operation is not Operation.LOOKUP:
            return _ignore(state, event, "lookup_not_pending", level="info")
        new_state = replace(state, pending_operation=None)
        return _transition(
            state,
            new_state,
            event,
            (
                AppendLog(message="No WhatsApp instance for this store yet"),
                _log(new_state, event, "instance_not_found"),
            ),
            source="instance_not_found",
        )

    if isinstance(event, LookupFailed):
        if state.pending_operation is not Operation.LOOKUP:
            return _ignore(state, event, "lookup_not_pending", level="info")
        new_state = replace(state, pending_operation=None, last_error=event.reason)
        return _transition(
            state,
            new_state,
            event,
            (
                AppendLog(message=f"Failed to load instance: {event.reason}", severity=Severity.ERROR),
                _log(new_state, event, "lookup_failed", {"reason": event.reason}, level="warning"),
            ),
            source="lookup_failed",
        )

    if isinstance(event, PairingRequested):
        if state.pending_operation is not None:
            return _ignore(state, event, "operation_pending", level="info")
        if state.phase is ConnectionState.CONNECTED:
            return _ignore(state, event, "already_connected", level="info")

        digits = phone_digits(event.phone_number)
        if not is_valid_phone(digits):
            return state, (
                Notify(
                    title="Phone number required",
                    description=(
                        f"Enter the WhatsApp number with area code "
                        f"({PHONE_MIN_DIGITS} to {PHONE_MAX_DIGITS} digits)."
                    ),
                    variant=ToastVariant.DESTRUCTIVE,
                ),
                _log(state, event, "invalid_input", {"digits": len(digits)}),
            )

        new_state = replace(
            state,
            pending_operation=Operation.CREATE,
            phone_number=digits,
            last_error=None,
        )
        return _transition(
            state,
            new_state,
            event,
            (
                CreateInstance(store_id=state.store_id, phone_number=digits),
                AppendLog(message="Creating WhatsApp instance"),
                _log(new_state, event, "create_instance"),
            ),
            source="pairing_requested",
        )

    if isinstance(event, InstanceCreated):
        if state.pending_operation is not Operation.CREATE:
            return _ignore(state, event, "create_not_pending", level="info")

        new_state = replace(
            state,
            pending_operation=None,
            instance_id=event.instance_id,
            generation=state.generation + 1,
            phase=ConnectionState.PAIRING_IN_PROGRESS,
            pairing_code=event.pairing_code,
            raw_status=None,
            reconnect_attempt=reset_attempt(),
            reconnecting=False,
            pairing_watch_active=True,
            last_error=None,
        )
        return _transition(
            state,
            new_state,
            event,
            (
                *_watch_commands(new_state),
                AppendLog(message=f"Instance {event.instance_id} ready; scan the QR code", severity=Severity.SUCCESS),
                Notify(
                    title="Instance created!",
                    description="Scan the QR code with WhatsApp to connect.",
                ),
                _log(new_state, event, "instance_created", {"instance_id": event.instance_id}),
            ),
            source="instance_created",
        )

    if isinstance(event, InstanceCreateFailed):
        if state.pending_operation is not Operation.CREATE:
            return _ignore(state, event, "create_not_pending", level="info")
        new_state = replace(state, pending_operation=None, last_error=event.reason)
        return _transition(
            state,
            new_state,
            event,
            (
                AppendLog(message=f"Failed to create instance: {event.reason}", severity=Severity.ERROR),
                Notify(
                    title="Could not create instance",
                    description=event.reason or "Try again later.",
                    variant=ToastVariant.DESTRUCTIVE,
                ),
                _log(new_state, event, "create_failed", {"reason": event.reason}, level="warning"),
            ),
            source="create_failed",
        )

    if isinstance(event, RemovalRequested):
        if state.pending_operation in (Operation.CREATE, Operation.REMOVE):
            return _ignore(state, event, "operation_pending", level="info")

        # Local state is discarded immediately; the generation bump
        # cancels every timer and invalidates in-flight results.
        new_state = LinkState(
            store_id=state.store_id,
            generation=state.generation + 1,
            auto_reconnect=state.auto_reconnect,
            visible=state.visible,
            session_expired=state.session_expired,
            pending_operation=Operation.REMOVE,
        )
        return _transition(
            state,
            new_state,
            event,
            (
                ClearLog(),
                RemoveInstance(store_id=state.store_id, instance_id=state.instance_id),
                _log(new_state, event, "remove_instance", {"instance_id": state.instance_id}),
            ),
            source="removal_requested",
        )

    if isinstance(event, InstanceRemoved):
        if state.pending_operation is not Operation.REMOVE:
            return _ignore(state, event, "remove_not_pending", level="info")
        new_state = replace(state, pending_operation=None)
        return _transition(
            state,
            new_state,
            event,
            (
                Notify(title="Disconnected", description="WhatsApp disconnected successfully."),
                _log(new_state, event, "instance_removed"),
            ),
            source="instance_removed",
        )

    if isinstance(event, InstanceRemoveFailed):
        if state.pending_operation is not Operation.REMOVE:
            return _ignore(state, event, "remove_not_pending", level="info")

        # The mapping may still exist; reload it so the panel matches
        new_state = replace(state, pending_operation=Operation.LOOKUP, last_error=event.reason)
        return _transition(
            state,
            new_state,
            event,
            (
                AppendLog(message=f"Failed to disconnect: {event.reason}", severity=Severity.ERROR),
                Notify(
                    title="Could not disconnect",
                    description=event.reason,
                    variant=ToastVariant.DESTRUCTIVE,
                ),
                LookupInstance(store_id=state.store_id),
                _log(new_state, event, "remove_failed", {"reason": event.reason}, level="warning"),
            ),
            source="remove_failed",
        )

    # ------------------------------------------------------------------
    # Pairing loop
    # ------------------------------------------------------------------

    if isinstance(event, PairingTick):
        if TIMER_PAIRING_REFRESH not in _desired_intervals(state):
            return _ignore(state, event, "pairing_loop_inactive")
        assert state.instance_id is not None
        return state, (
            _refresh(state),
            _log(state, event, "refresh_pairing_code", level="debug"),
        )

    if isinstance(event, PairingCodeRefreshed):
        if state.phase not in _PAIRING_PHASES:
            return _ignore(state, event, "not_pairing", level="info")

        new_state = replace(
            state,
            phase=ConnectionState.PAIRING_IN_PROGRESS,
            pairing_code=event.pairing_code,
            last_error=None,
        )
        cmds = []
        if state.phase is ConnectionState.EXHAUSTED:
            new_state = replace(new_state, pairing_watch_active=True)
            cmds.extend(_watch_commands(new_state))
            cmds.append(AppendLog(message="New QR code ready; scan it to reconnect"))
        cmds.append(_log(new_state, event, "pairing_code_refreshed", level="debug"))
        return _transition(state, new_state, event, tuple(cmds), source="pairing_code_refreshed")

    if isinstance(event, PairingRefreshFailed):
        new_state = replace(state, last_error=event.reason)
        return _transition(
            state,
            new_state,
            event,
            (
                AppendLog(message=f"Failed to refresh QR code: {event.reason}", severity=Severity.ERROR),
                _log(new_state, event, "pairing_refresh_failed", {"reason": event.reason}, level="warning"),
            ),
            source="pairing_refresh_failed",
        )

    if isinstance(event, PairingWatchTick):
        if TIMER_PAIRING_WATCH not in _desired_intervals(state):
            return _ignore(state, event, "pairing_watch_inactive")
        assert state.instance_id is not None
        return state, (
            CheckStatus(
                generation=state.generation,
                instance_id=state.instance_id,
                source=CheckSource.PAIRING_WATCH,
            ),
            _log(state, event, "pairing_watch_check", level="debug"),
        )

    if isinstance(event, PairingWatchExpired):
        if not state.pairing_watch_active:
            return _ignore(state, event, "pairing_watch_inactive")
        new_state = replace(state, pairing_watch_active=False)
        return _transition(
            state,
            new_state,
            event,
            (_log(new_state, event, "pairing_watch_expired"),),
            source="pairing_watch_expired",
        )

    # ------------------------------------------------------------------
    # Health monitor / reconnection supervisor
    # ------------------------------------------------------------------

    if isinstance(event, HealthTick):
        # A tick can land after hiding or disabling; only poll while wanted
        if TIMER_HEALTH_CHECK not in _desired_intervals(state):
            return _ignore(state, event, "health_monitor_inactive")
        assert state.instance_id is not None
        return state, (
            CheckStatus(
                generation=state.generation,
                instance_id=state.instance_id,
                source=CheckSource.HEALTH,
            ),
            _log(state, event, "health_check", level="debug"),
        )

    if isinstance(event, ReconnectReady):
        if not state.reconnecting or event.attempt != state.reconnect_attempt.attempt:
            return _ignore(state, event, "stale_reconnect_attempt", level="info")
        assert state.instance_id is not None
        return state, _logs_last((
            CheckStatus(
                generation=state.generation,
                instance_id=state.instance_id,
                source=CheckSource.RECONNECT,
                attempt=event.attempt,
            ),
            AppendLog(message=f"Reconnect attempt {event.attempt}/{MAX_RECONNECT_ATTEMPTS}"),
            _log(state, event, "reconnect_check", {"attempt": event.attempt}),
        ))

    if isinstance(event, StatusObserved):
        if not state.instance_id:
            return _ignore(state, event, "no_instance", level="info")
        return _observe_status(state, event)

    if isinstance(event, CheckRequested):
        if not state.instance_id:
            return state, (
                AppendLog(message="No instance to check; request a QR code first"),
                _log(state, event, "check_without_instance"),
            )
        return state, _logs_last((
            CheckStatus(
                generation=state.generation,
                instance_id=state.instance_id,
                source=CheckSource.MANUAL,
            ),
            AppendLog(message="Checking connection status"),
            _log(state, event, "manual_check"),
        ))

    if isinstance(event, AutoReconnectChanged):
        if event.enabled == state.auto_reconnect:
            return _ignore(state, event, "auto_reconnect_unchanged", level="info")

        new_state = replace(state, auto_reconnect=event.enabled)
        cmds = [
            AppendLog(
                message="Automatic reconnection enabled"
                if event.enabled
                else "Automatic reconnection disabled"
            )
        ]
        if not event.enabled and state.reconnecting:
            new_state = replace(
                new_state,
                phase=ConnectionState.DISCONNECTED,
                reconnecting=False,
                reconnect_attempt=reset_attempt(),
            )
            cmds.append(CancelTimer(timer_id=TIMER_RECONNECT))
        cmds.append(_log(new_state, event, "auto_reconnect_changed", {"enabled": event.enabled}))
        return _transition(state, new_state, event, tuple(cmds), source="auto_reconnect_changed")

    # ------------------------------------------------------------------
    # Operator log
    # ------------------------------------------------------------------

    if isinstance(event, LogClearRequested):
        return state, (ClearLog(), _log(state, event, "log_cleared"))

    return _ignore(state, event, "unhandled_event", level="warning")
