"""
Side-effect command definitions for the link reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from link.enums.check_source import CheckSource
from link.events import EventType
from observability.connection_log import Severity

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging and runtime dispatch.
    """

    # Instance registrar
    LOOKUP_INSTANCE = "LOOKUP_INSTANCE"
    CREATE_INSTANCE = "CREATE_INSTANCE"
    REMOVE_INSTANCE = "REMOVE_INSTANCE"

    # Gateway
    REFRESH_PAIRING_CODE = "REFRESH_PAIRING_CODE"
    CHECK_STATUS = "CHECK_STATUS"

    # Timers
    START_INTERVAL = "START_INTERVAL"
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"
    SCHEDULE_RECONNECT = "SCHEDULE_RECONNECT"

    # Operator feedback
    APPEND_LOG = "APPEND_LOG"
    CLEAR_LOG = "CLEAR_LOG"
    NOTIFY = "NOTIFY"

    # Observability
    LOG_EVENT = "LOG_EVENT"


class ToastVariant(str, Enum):
    DEFAULT = "default"
    DESTRUCTIVE = "destructive"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Instance Registrar Commands
# =============================================================================

@dataclass(frozen=True)
class LookupInstance(Command):
    """Find the store's instance (persisted mapping, then gateway probe)."""
    store_id: str
    command_type: CommandType = CommandType.LOOKUP_INSTANCE


@dataclass(frozen=True)
class CreateInstance(Command):
    """
    Create (or reuse) the gateway instance and persist the mapping.

    The runtime must emit exactly one of InstanceCreated,
    InstanceCreateFailed or SessionExpiredObserved in response.
    """
    store_id: str
    phone_number: str
    command_type: CommandType = CommandType.CREATE_INSTANCE


@dataclass(frozen=True)
class RemoveInstance(Command):
    """Disconnect on the gateway and delete the persisted mapping."""
    store_id: str
    instance_id: str | None
    command_type: CommandType = CommandType.REMOVE_INSTANCE


# =============================================================================
# Gateway Commands
# =============================================================================

@dataclass(frozen=True)
class RefreshPairingCode(Command):
    """Request a fresh pairing code for the current instance."""
    generation: int
    instance_id: str
    phone_number: str
    command_type: CommandType = CommandType.REFRESH_PAIRING_CODE


@dataclass(frozen=True)
class CheckStatus(Command):
    """
    Poll the gateway connection status once.

    The runtime answers with StatusObserved carrying the same generation,
    source and attempt; a failed call is reported through StatusObserved.error.
    """
    generation: int
    instance_id: str
    source: CheckSource
    attempt: int = 0
    command_type: CommandType = CommandType.CHECK_STATUS


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartInterval(Command):
    """
    Request a repeating timer.

    Every interval_ms the runtime injects tick_event_type stamped with
    generation. immediate=True injects one tick right away.
    """
    timer_id: str
    interval_ms: int
    tick_event_type: EventType
    generation: int
    immediate: bool = False
    command_type: CommandType = CommandType.START_INTERVAL


@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named one-shot timer.

    On expiration, the runtime must inject the specified timeout event.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    generation: int
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer or interval."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


@dataclass(frozen=True)
class ScheduleReconnect(Command):
    """
    Request that runtime schedule a reconnect attempt after delay_ms.

    Runtime responsibilities:
    - wait delay_ms
    - emit ReconnectReady(generation=..., attempt=...)

    Reducer remains pure: it decides *that* a reconnect should happen,
    runtime performs the waiting.
    """
    generation: int
    attempt: int
    delay_ms: int
    command_type: CommandType = CommandType.SCHEDULE_RECONNECT


# =============================================================================
# Operator Feedback Commands
# =============================================================================

@dataclass(frozen=True)
class AppendLog(Command):
    """Append an entry to the operator-facing connection log."""
    message: str
    severity: Severity = Severity.INFO
    command_type: CommandType = CommandType.APPEND_LOG


@dataclass(frozen=True)
class ClearLog(Command):
    """Discard every connection log entry."""
    command_type: CommandType = CommandType.CLEAR_LOG


@dataclass(frozen=True)
class Notify(Command):
    """Show a toast to every observer of the link."""
    title: str
    description: str = ""
    variant: ToastVariant = ToastVariant.DEFAULT
    command_type: CommandType = CommandType.NOTIFY


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
