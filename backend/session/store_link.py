"""
Store link container.

- Owns the link runtime (which owns the immutable link state)
- Owns the connection log and the current operator session
- Owns the observer set and fans messages out to their queues
- Owned and mutated by LinkPanel
- NOT a state machine
- Contains no orchestration logic
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from auth.session import OperatorSession
from link.runtime import LinkRuntime
from link.snapshot import state_snapshot
from observability.connection_log import ConnectionLog
from observability.logger import log_event
from policy import OBSERVER_QUEUE_MAX_MESSAGES


def _new_observer_id() -> str:
    return f"obs_{uuid4().hex[:12]}"


# ---------------------------------------------------------------------
# LinkObserver
# ---------------------------------------------------------------------

@dataclass
class LinkObserver:
    """One attached dashboard client (usually a WebSocket)."""

    observer_id: str = field(default_factory=_new_observer_id)
    visible: bool = False
    queue: asyncio.Queue[dict[str, Any]] = field(
        default_factory=lambda: asyncio.Queue(maxsize=OBSERVER_QUEUE_MAX_MESSAGES)
    )
    dropped: int = 0

    def offer(self, message: dict[str, Any]) -> None:
        """Enqueue without blocking; the oldest message goes when full."""
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(message)


# ---------------------------------------------------------------------
# StoreLink
# ---------------------------------------------------------------------

@dataclass
class StoreLink:
    """Mutable runtime container for a single store's WhatsApp link."""

    # ------------------------------------------------------------------
    # Identity / lifecycle
    # ------------------------------------------------------------------

    store_id: str

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    registrar: Any = None  # Type: RegistrarProtocol in practice
    runtime: LinkRuntime | None = None
    operator_session: OperatorSession | None = None

    # ------------------------------------------------------------------
    # Operator-facing state
    # ------------------------------------------------------------------

    connection_log: ConnectionLog = field(default_factory=ConnectionLog)
    observers: dict[str, LinkObserver] = field(default_factory=dict)

    # ------------------------------------------------------------------
    # Wiring helpers (called by LinkPanel)
    # ------------------------------------------------------------------

    def attach_registrar(self, registrar: Any) -> None:
        self.registrar = registrar

    def attach_runtime(self, runtime: LinkRuntime) -> None:
        """Must be called after the registrar is attached."""
        self.runtime = runtime

    def attach_operator_session(self, session: OperatorSession) -> None:
        """Newest verified session wins; gateway calls forward its token."""
        if (
            self.operator_session is None
            or session.expires_at >= self.operator_session.expires_at
        ):
            self.operator_session = session

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, *, visible: bool) -> LinkObserver:
        observer = LinkObserver(visible=visible)
        self.observers[observer.observer_id] = observer
        return observer

    def remove_observer(self, observer_id: str) -> LinkObserver | None:
        return self.observers.pop(observer_id, None)

    def any_visible(self) -> bool:
        return any(o.visible for o in self.observers.values())

    def broadcast(self, message: dict[str, Any]) -> None:
        for observer in list(self.observers.values()):
            observer.offer(message)

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def log_context(self) -> dict[str, Any]:
        return {
            "store_id": self.store_id,
            "observers": len(self.observers),
            "visible": self.any_visible(),
        }

    def snapshot(self) -> dict[str, Any]:
        """Full panel view: link state plus the connection log."""
        assert self.runtime is not None, "Runtime must exist before snapshot"
        data = state_snapshot(self.runtime.state)
        data["log"] = [entry.to_dict() for entry in self.connection_log]
        return data

    def report_dropped(self) -> None:
        for observer in self.observers.values():
            if observer.dropped:
                log_event({
                    "level": "warning",
                    "event_type": "OBSERVER_MESSAGES_DROPPED",
                    **self.log_context(),
                    "observer_id": observer.observer_id,
                    "dropped": observer.dropped,
                })
                observer.dropped = 0
