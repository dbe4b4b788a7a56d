"""
Unified event definitions for the link reducer.

Rules:
- Events describe facts that have occurred.
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Timer ticks and gateway results are GenerationEvents: they carry the
generation that was current when they were scheduled, so the reducer can
drop anything issued for a previous (or removed) instance.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from link.enums.check_source import CheckSource
from link.enums.operation import Operation


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (phase, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Panel lifecycle
    # ------------------------------------------------------------------
    PANEL_OPENED = "PANEL_OPENED"
    PANEL_CLOSED = "PANEL_CLOSED"
    VISIBILITY_CHANGED = "VISIBILITY_CHANGED"
    SESSION_RENEWED = "SESSION_RENEWED"
    SESSION_EXPIRED = "SESSION_EXPIRED"

    # ------------------------------------------------------------------
    # Instance registrar
    # ------------------------------------------------------------------
    INSTANCE_LOADED = "INSTANCE_LOADED"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    LOOKUP_FAILED = "LOOKUP_FAILED"
    PAIRING_REQUESTED = "PAIRING_REQUESTED"
    INSTANCE_CREATED = "INSTANCE_CREATED"
    INSTANCE_CREATE_FAILED = "INSTANCE_CREATE_FAILED"
    REMOVAL_REQUESTED = "REMOVAL_REQUESTED"
    INSTANCE_REMOVED = "INSTANCE_REMOVED"
    INSTANCE_REMOVE_FAILED = "INSTANCE_REMOVE_FAILED"

    # ------------------------------------------------------------------
    # Pairing loop
    # ------------------------------------------------------------------
    PAIRING_TICK = "PAIRING_TICK"
    PAIRING_CODE_REFRESHED = "PAIRING_CODE_REFRESHED"
    PAIRING_REFRESH_FAILED = "PAIRING_REFRESH_FAILED"
    PAIRING_WATCH_TICK = "PAIRING_WATCH_TICK"
    PAIRING_WATCH_EXPIRED = "PAIRING_WATCH_EXPIRED"

    # ------------------------------------------------------------------
    # Health monitor / reconnection
    # ------------------------------------------------------------------
    HEALTH_TICK = "HEALTH_TICK"
    RECONNECT_READY = "RECONNECT_READY"
    STATUS_OBSERVED = "STATUS_OBSERVED"
    CHECK_REQUESTED = "CHECK_REQUESTED"
    AUTO_RECONNECT_CHANGED = "AUTO_RECONNECT_CHANGED"

    # ------------------------------------------------------------------
    # Operator log
    # ------------------------------------------------------------------
    LOG_CLEAR_REQUESTED = "LOG_CLEAR_REQUESTED"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class GenerationEvent(Event):
    """
    Base class for events scoped to one instance generation.

    The reducer MUST ignore events whose generation does not match the
    current generation of the link.
    """

    generation: int


# =============================================================================
# Panel Lifecycle Events
# =============================================================================

@dataclass(frozen=True)
class PanelOpened(Event):
    """Link created for a store; instance lookup should start."""


@dataclass(frozen=True)
class PanelClosed(Event):
    """Link torn down (last observer gone and retention elapsed, or shutdown)."""


@dataclass(frozen=True)
class VisibilityChanged(Event):
    """Whether any observer currently has the panel in the foreground."""
    visible: bool


@dataclass(frozen=True)
class SessionRenewed(Event):
    """A fresh operator session was attached after an expiry."""


@dataclass(frozen=True)
class SessionExpiredObserved(Event):
    """
    A gateway or backend call was aborted because the operator session
    expired. Never consumes a reconnect attempt.
    """
    operation: Operation
    generation: int
    source: CheckSource | None = None


# =============================================================================
# Instance Registrar Events
# =============================================================================

@dataclass(frozen=True)
class InstanceLoaded(Event):
    """
    Lookup found an instance for the store.

    status is set when the instance was recovered by probing the gateway
    (the probe already knows the status); None for a persisted mapping.
    """
    instance_id: str
    phone_number: str = ""
    status: str | None = None


@dataclass(frozen=True)
class InstanceNotFound(Event):
    """Lookup found no persisted or recoverable instance."""


@dataclass(frozen=True)
class LookupFailed(Event):
    """Lookup could not reach the backend."""
    reason: str


@dataclass(frozen=True)
class PairingRequested(Event):
    """User supplied a phone number and asked for a pairing code."""
    phone_number: str


@dataclass(frozen=True)
class InstanceCreated(Event):
    """Gateway instance exists, mapping persisted, first code received."""
    instance_id: str
    pairing_code: str


@dataclass(frozen=True)
class InstanceCreateFailed(Event):
    """Gateway refused or could not be reached while creating."""
    reason: str


@dataclass(frozen=True)
class RemovalRequested(Event):
    """User asked to disconnect and forget the instance."""


@dataclass(frozen=True)
class InstanceRemoved(Event):
    """Gateway disconnect requested and mapping deleted."""


@dataclass(frozen=True)
class InstanceRemoveFailed(Event):
    """Persisted mapping could not be deleted."""
    reason: str


# =============================================================================
# Pairing Loop Events
# =============================================================================

@dataclass(frozen=True)
class PairingTick(GenerationEvent):
    """Pairing refresh interval elapsed."""


@dataclass(frozen=True)
class PairingCodeRefreshed(GenerationEvent):
    """Gateway issued a fresh pairing code."""
    pairing_code: str


@dataclass(frozen=True)
class PairingRefreshFailed(GenerationEvent):
    """Fresh pairing code could not be obtained."""
    reason: str


@dataclass(frozen=True)
class PairingWatchTick(GenerationEvent):
    """Fast status poll interval elapsed while a code is on screen."""


@dataclass(frozen=True)
class PairingWatchExpired(GenerationEvent):
    """Fast status polling window is over."""


# =============================================================================
# Health / Reconnection Events
# =============================================================================

@dataclass(frozen=True)
class HealthTick(GenerationEvent):
    """Health check interval elapsed (or loop just started)."""


@dataclass(frozen=True)
class ReconnectReady(GenerationEvent):
    """Backoff delay for reconnect attempt `attempt` elapsed."""
    attempt: int


@dataclass(frozen=True)
class StatusObserved(GenerationEvent):
    """
    Result of one gateway status call.

    error is set when the call itself failed; it is then treated exactly
    like a disconnected status. attempt is set for RECONNECT checks.
    """
    source: CheckSource
    status: str | None = None
    error: str | None = None
    attempt: int = 0


@dataclass(frozen=True)
class CheckRequested(Event):
    """User pressed "check status"."""


@dataclass(frozen=True)
class AutoReconnectChanged(Event):
    """User toggled automatic reconnection."""
    enabled: bool


# =============================================================================
# Operator Log Events
# =============================================================================

@dataclass(frozen=True)
class LogClearRequested(Event):
    """User cleared the connection log."""
