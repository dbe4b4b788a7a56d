"""
Runtime execution shell for a single store link.

Responsibilities:
- Own link state
- Call pure reducer
- Execute commands with side effects (registrar calls, timers, log, toasts)
- Schedule and cancel timers
- Convert timer expiry and call results into events
"""

from __future__ import annotations

import asyncio
import time
from typing import TYPE_CHECKING, Awaitable, Callable

from errors import LinkError, SessionExpired
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
)
from link.enums.check_source import CheckSource
from link.enums.operation import Operation
from link.events import (
    Event,
    EventType,
    HealthTick,
    InstanceCreated,
    InstanceCreateFailed,
    InstanceLoaded,
    InstanceNotFound,
    InstanceRemoved,
    InstanceRemoveFailed,
    LookupFailed,
    PairingCodeRefreshed,
    PairingRefreshFailed,
    PairingTick,
    PairingWatchExpired,
    PairingWatchTick,
    ReconnectReady,
    SessionExpiredObserved,
    StatusObserved,
)
from link.reducer import TIMER_RECONNECT, reduce
from link.snapshot import state_snapshot
from link.state_dataclass import LinkState
from observability.connection_log import ConnectionLogEntry
from observability.logger import log_event

if TYPE_CHECKING:
    from link.runtime_context import RuntimeExecutionContext


Sleep = Callable[[float], Awaitable[None]]


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class LinkRuntime:
    """
    Runtime execution boundary for a single store link.

    Responsibilities:
    - Own the authoritative link state
    - Act as the universal event sink for the link
      (panel requests, registrar results, timer events)
    - Invoke the pure reducer deterministically
    - Execute emitted commands with side effects
    - Schedule and cancel timers
    - Convert timer expiry into events

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - State is swapped before any await, so transitions are serialized
      by the event loop without a lock
    - All side effects occur *after* state has been updated
    - Registrar calls run as tracked tasks; their results re-enter
      handle_event (single entry point)
    """

    def __init__(
        self,
        *,
        initial_state: LinkState,
        context: RuntimeExecutionContext,
        sleep: Sleep = asyncio.sleep,
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self._state = initial_state
        self._ctx = context
        self._sleep = sleep
        self._clock_ms = clock_ms
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._calls: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> LinkState:
        """
        Return the current immutable link state.

        State is only mutated internally via the reducer; consumers must
        treat it as read-only.
        """
        return self._state

    @property
    def active_timers(self) -> frozenset[str]:
        return frozenset(
            timer_id for timer_id, task in self._timers.items() if not task.done()
        )

    @property
    def calls_in_flight(self) -> int:
        return sum(1 for task in self._calls if not task.done())

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the link pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Atomically swap in the new state
        3. Publish a STATE snapshot if anything changed
        4. Execute all emitted commands sequentially
        """
        prev_state = self._state
        new_state, commands = reduce(self._state, event)
        self._state = new_state

        if new_state != prev_state:
            self._ctx.publish({"type": "STATE", "data": state_snapshot(new_state)})

        for cmd in commands:
            await self._execute_command(cmd)

    async def drain(self) -> None:
        """
        Wait until no registrar call is in flight.

        Results may spawn further calls, so keep waiting until quiet.
        """
        while True:
            pending = [task for task in self._calls if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """
        Clean shutdown of runtime.

        Cancels all timers and in-flight calls and waits for the tasks
        to finish.
        """
        tasks = list(self._timers.values()) + list(self._calls)
        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)
        for task in list(self._calls):
            if task is not asyncio.current_task() and not task.done():
                task.cancel()
        self._calls.clear()

        others = [t for t in tasks if t is not asyncio.current_task()]
        if others:
            await asyncio.gather(*others, return_exceptions=True)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "component": "link_runtime",
            })

        elif isinstance(cmd, AppendLog):
            entry = ConnectionLogEntry(
                ts_ms=self._clock_ms(),
                message=cmd.message,
                severity=cmd.severity,
            )
            self._ctx.connection_log.append(entry)
            self._ctx.publish({"type": "LOG", "data": entry.to_dict()})

        elif isinstance(cmd, ClearLog):
            self._ctx.connection_log.clear()
            self._ctx.publish({"type": "LOG_CLEARED", "data": {}})

        elif isinstance(cmd, Notify):
            self._ctx.publish({
                "type": "TOAST",
                "data": {
                    "title": cmd.title,
                    "description": cmd.description,
                    "variant": cmd.variant.value,
                },
            })

        elif isinstance(cmd, StartInterval):
            self._start_interval(cmd)

        elif isinstance(cmd, StartTimer):
            self._start_timer(cmd)

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        elif isinstance(cmd, ScheduleReconnect):
            self._schedule_reconnect(cmd)

        elif isinstance(cmd, LookupInstance):
            self._spawn(self._run_lookup(cmd))

        elif isinstance(cmd, CreateInstance):
            self._spawn(self._run_create(cmd))

        elif isinstance(cmd, RefreshPairingCode):
            self._spawn(self._run_refresh(cmd))

        elif isinstance(cmd, CheckStatus):
            self._spawn(self._run_check(cmd))

        elif isinstance(cmd, RemoveInstance):
            self._spawn(self._run_remove(cmd))

        else:
            log_event({
                "ts_ms": self._clock_ms(),
                "level": "warning",
                "event_type": "COMMAND_NOT_HANDLED",
                "store_id": self._ctx.store_id,
                "command_type": type(cmd).__name__,
            })

    # ------------------------------------------------------------------
    # Registrar calls
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[None]) -> None:
        task: asyncio.Task[None] = asyncio.ensure_future(coro)
        self._calls.add(task)
        task.add_done_callback(self._calls.discard)

    def _session_expired(
        self,
        operation: Operation,
        generation: int,
        source: CheckSource | None = None,
    ) -> SessionExpiredObserved:
        return SessionExpiredObserved(
            event_type=EventType.SESSION_EXPIRED,
            ts_ms=self._clock_ms(),
            operation=operation,
            generation=generation,
            source=source,
        )

    def _log_call_failure(self, operation: Operation, exc: BaseException) -> None:
        log_event({
            "ts_ms": self._clock_ms(),
            "level": "warning" if isinstance(exc, LinkError) else "error",
            "event_type": "REGISTRAR_CALL_FAILED",
            "store_id": self._ctx.store_id,
            "operation": operation.value,
            "error_type": type(exc).__name__,
            "error": str(exc),
        })

    async def _run_lookup(self, cmd: LookupInstance) -> None:
        generation = self._state.generation
        event: Event
        try:
            record = await self._ctx.registrar.lookup(cmd.store_id)
        except SessionExpired:
            event = self._session_expired(Operation.LOOKUP, generation)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_call_failure(Operation.LOOKUP, exc)
            event = LookupFailed(
                event_type=EventType.LOOKUP_FAILED,
                ts_ms=self._clock_ms(),
                reason=str(exc) or type(exc).__name__,
            )
        else:
            if record is None:
                event = InstanceNotFound(
                    event_type=EventType.INSTANCE_NOT_FOUND,
                    ts_ms=self._clock_ms(),
                )
            else:
                event = InstanceLoaded(
                    event_type=EventType.INSTANCE_LOADED,
                    ts_ms=self._clock_ms(),
                    instance_id=record.instance_id,
                    phone_number=record.phone_number,
                    status=record.status,
                )
        await self.handle_event(event)

    async def _run_create(self, cmd: CreateInstance) -> None:
        generation = self._state.generation
        event: Event
        try:
            instance_id, code = await self._ctx.registrar.create(cmd.store_id, cmd.phone_number)
        except SessionExpired:
            event = self._session_expired(Operation.CREATE, generation)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_call_failure(Operation.CREATE, exc)
            event = InstanceCreateFailed(
                event_type=EventType.INSTANCE_CREATE_FAILED,
                ts_ms=self._clock_ms(),
                reason=str(exc) or type(exc).__name__,
            )
        else:
            event = InstanceCreated(
                event_type=EventType.INSTANCE_CREATED,
                ts_ms=self._clock_ms(),
                instance_id=instance_id,
                pairing_code=code.base64,
            )
        await self.handle_event(event)

    async def _run_refresh(self, cmd: RefreshPairingCode) -> None:
        event: Event
        try:
            code = await self._ctx.registrar.refresh_pairing_code(
                self._ctx.store_id,
                cmd.instance_id,
                cmd.phone_number,
            )
        except SessionExpired:
            event = self._session_expired(Operation.REFRESH_CODE, cmd.generation)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_call_failure(Operation.REFRESH_CODE, exc)
            event = PairingRefreshFailed(
                event_type=EventType.PAIRING_REFRESH_FAILED,
                ts_ms=self._clock_ms(),
                generation=cmd.generation,
                reason=str(exc) or type(exc).__name__,
            )
        else:
            event = PairingCodeRefreshed(
                event_type=EventType.PAIRING_CODE_REFRESHED,
                ts_ms=self._clock_ms(),
                generation=cmd.generation,
                pairing_code=code.base64,
            )
        await self.handle_event(event)

    async def _run_check(self, cmd: CheckStatus) -> None:
        status: str | None = None
        error: str | None = None
        try:
            status = await self._ctx.registrar.check_status(self._ctx.store_id, cmd.instance_id)
        except SessionExpired:
            await self.handle_event(
                self._session_expired(Operation.CHECK_STATUS, cmd.generation, cmd.source)
            )
            return
        except Exception as exc:  # pylint: disable=broad-exception-caught
            # Call failures are observations of "not connected"
            self._log_call_failure(Operation.CHECK_STATUS, exc)
            error = str(exc) or type(exc).__name__

        await self.handle_event(
            StatusObserved(
                event_type=EventType.STATUS_OBSERVED,
                ts_ms=self._clock_ms(),
                generation=cmd.generation,
                source=cmd.source,
                status=status,
                error=error,
                attempt=cmd.attempt,
            )
        )

    async def _run_remove(self, cmd: RemoveInstance) -> None:
        generation = self._state.generation
        event: Event
        try:
            await self._ctx.registrar.remove(cmd.store_id, cmd.instance_id)
        except SessionExpired:
            event = self._session_expired(Operation.REMOVE, generation)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            self._log_call_failure(Operation.REMOVE, exc)
            event = InstanceRemoveFailed(
                event_type=EventType.INSTANCE_REMOVE_FAILED,
                ts_ms=self._clock_ms(),
                reason=str(exc) or type(exc).__name__,
            )
        else:
            event = InstanceRemoved(
                event_type=EventType.INSTANCE_REMOVED,
                ts_ms=self._clock_ms(),
            )
        await self.handle_event(event)

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_interval(self, cmd: StartInterval) -> None:
        """
        Start or replace a repeating timer.

        Each tick re-enters handle_event(). The loop stops as soon as it
        is no longer the registered task for its timer id. An immediate
        first tick runs as a tracked call so drain() waits for it.
        """
        self._cancel_timer(cmd.timer_id)

        if cmd.immediate:
            self._spawn(self.handle_event(self._construct_tick_event(cmd.tick_event_type, cmd.generation)))

        async def _interval_task() -> None:
            me = asyncio.current_task()
            try:
                while self._timers.get(cmd.timer_id) is me:
                    await self._sleep(cmd.interval_ms / 1000.0)
                    if self._timers.get(cmd.timer_id) is not me:
                        return
                    await self.handle_event(self._construct_tick_event(cmd.tick_event_type, cmd.generation))
            except asyncio.CancelledError:
                # Timer was cancelled - this is normal
                return

        self._timers[cmd.timer_id] = asyncio.ensure_future(_interval_task())

    def _start_timer(self, cmd: StartTimer) -> None:
        """Start or replace a one-shot timer that emits a timeout event."""
        self._cancel_timer(cmd.timer_id)

        async def _timer_task() -> None:
            try:
                await self._sleep(cmd.duration_ms / 1000.0)
                await self.handle_event(self._construct_tick_event(cmd.timeout_event_type, cmd.generation))
            except asyncio.CancelledError:
                return

        self._timers[cmd.timer_id] = asyncio.ensure_future(_timer_task())

    def _schedule_reconnect(self, cmd: ScheduleReconnect) -> None:
        """
        Schedule a reconnect attempt.

        Semantic sugar over a one-shot timer that emits ReconnectReady
        carrying the attempt number it belongs to.
        """
        self._cancel_timer(TIMER_RECONNECT)

        async def _reconnect_task() -> None:
            try:
                await self._sleep(cmd.delay_ms / 1000.0)
                await self.handle_event(
                    ReconnectReady(
                        event_type=EventType.RECONNECT_READY,
                        ts_ms=self._clock_ms(),
                        generation=cmd.generation,
                        attempt=cmd.attempt,
                    )
                )
            except asyncio.CancelledError:
                return

        self._timers[TIMER_RECONNECT] = asyncio.ensure_future(_reconnect_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent. A timer never cancels itself from inside its own
        callback; unregistering it is enough to stop the loop.
        """
        task = self._timers.pop(timer_id, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _construct_tick_event(self, event_type: EventType, generation: int) -> Event:
        """
        Construct a timer event stamped with the generation that
        scheduled it.
        """
        ts = self._clock_ms()
        if event_type is EventType.PAIRING_TICK:
            return PairingTick(event_type=event_type, ts_ms=ts, generation=generation)
        if event_type is EventType.PAIRING_WATCH_TICK:
            return PairingWatchTick(event_type=event_type, ts_ms=ts, generation=generation)
        if event_type is EventType.PAIRING_WATCH_EXPIRED:
            return PairingWatchExpired(event_type=event_type, ts_ms=ts, generation=generation)
        if event_type is EventType.HEALTH_TICK:
            return HealthTick(event_type=event_type, ts_ms=ts, generation=generation)
        raise ValueError(f"Unsupported timer event type: {event_type}")
