"""
Link panel boundary.

One panel == one store link, shared by every dashboard client that
observes that store.

Responsibilities:
- Owns StoreLink lifecycle (open / close)
- Tracks observers and their visibility; folds them into one
  VISIBILITY_CHANGED signal for the reducer (reference counting)
- Routes inbound JSON control messages -> link events
- Forwards operator sessions (login renewals) into the link
- Validates user input before any event is dispatched

NOT responsible for:
- Any state machine logic
- Executing commands (LinkRuntime does)
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Callable

from auth.session import OperatorSession
from errors import InvalidInput
from instances.naming import parse_phone
from link.events import (
    AutoReconnectChanged,
    CheckRequested,
    Event,
    EventType,
    LogClearRequested,
    PairingRequested,
    PanelClosed,
    PanelOpened,
    RemovalRequested,
    SessionRenewed,
    VisibilityChanged,
)
from link.runtime import LinkRuntime, Sleep
from link.runtime_context import RegistrarProtocol, RuntimeExecutionContext
from link.state_dataclass import LinkState
from observability.logger import log_event
from session.store_link import LinkObserver, StoreLink

RegistrarFactory = Callable[[StoreLink], RegistrarProtocol]


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------

def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _toast(title: str, description: str, variant: str = "destructive") -> dict[str, Any]:
    return {
        "type": "TOAST",
        "data": {"title": title, "description": description, "variant": variant},
    }


# ------------------------------------------------------------------
# Panel result
# ------------------------------------------------------------------

@dataclass(frozen=True)
class PanelResult:
    """
    Return value for panel boundary methods.

    outbound_json:
        Messages for the calling client only. Messages for every
        observer travel through the observer queues instead.
    """
    outbound_json: tuple[dict[str, Any], ...] = ()


# ------------------------------------------------------------------
# LinkPanel
# ------------------------------------------------------------------

class LinkPanel:
    """Boundary between transports (HTTP / WebSocket) and one store link."""

    def __init__(
        self,
        *,
        store_id: str,
        registrar_factory: RegistrarFactory,
        sleep: Sleep | None = None,
    ) -> None:
        self.link = StoreLink(store_id=store_id)
        self._registrar_factory = registrar_factory
        self._sleep = sleep
        self._opened = False

    @property
    def store_id(self) -> str:
        return self.link.store_id

    @property
    def runtime(self) -> LinkRuntime:
        assert self.link.runtime is not None, "Panel not opened"
        return self.link.runtime

    @property
    def state(self) -> LinkState:
        return self.runtime.state

    @property
    def observer_count(self) -> int:
        return len(self.link.observers)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, session: OperatorSession) -> None:
        """Build the runtime and start the instance lookup."""
        if self._opened:
            return
        self._opened = True

        self.link.attach_operator_session(session)
        self.link.attach_registrar(self._registrar_factory(self.link))

        kwargs: dict[str, Any] = {}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        runtime = LinkRuntime(
            initial_state=LinkState(store_id=self.store_id),
            context=RuntimeExecutionContext(self.link),
            **kwargs,
        )
        self.link.attach_runtime(runtime)

        log_event({"event_type": "LINK_OPENED", **self.link.log_context()})
        await self._dispatch(PanelOpened(event_type=EventType.PANEL_OPENED, ts_ms=_now_ms()))

    async def close(self, reason: str | None = None) -> None:
        """Tear the link down; every timer and in-flight call is cancelled."""
        if self.link.runtime is None:
            return
        await self._dispatch(PanelClosed(event_type=EventType.PANEL_CLOSED, ts_ms=_now_ms()))
        await self.runtime.shutdown()
        log_event({"event_type": "LINK_CLOSED", "reason": reason, **self.link.log_context()})

    async def settle(self) -> None:
        """Wait until no registrar call is in flight."""
        await self.runtime.drain()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def attach_session(self, session: OperatorSession) -> None:
        """
        Attach a freshly verified operator session.

        Resumes polling when the link was suspended by a session expiry.
        """
        self.link.attach_operator_session(session)
        if self.state.session_expired and not session.is_expired():
            await self._dispatch(SessionRenewed(event_type=EventType.SESSION_RENEWED, ts_ms=_now_ms()))

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    async def attach_observer(self, *, visible: bool = True) -> LinkObserver:
        observer = self.link.add_observer(visible=visible)
        observer.offer({"type": "STATE", "data": self.link.snapshot()})
        await self._sync_visibility()
        return observer

    async def detach_observer(self, observer_id: str) -> None:
        self.link.report_dropped()
        if self.link.remove_observer(observer_id) is not None:
            await self._sync_visibility()

    async def set_observer_visibility(self, observer_id: str, visible: bool) -> None:
        observer = self.link.observers.get(observer_id)
        if observer is None:
            return
        observer.visible = visible
        await self._sync_visibility()

    async def _sync_visibility(self) -> None:
        visible = self.link.any_visible()
        if visible != self.state.visible:
            await self._dispatch(
                VisibilityChanged(event_type=EventType.VISIBILITY_CHANGED, ts_ms=_now_ms(), visible=visible)
            )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def request_pairing(self, phone_number: str | None) -> None:
        """Raises InvalidInput before anything is dispatched."""
        digits = parse_phone(phone_number)
        await self._dispatch(
            PairingRequested(event_type=EventType.PAIRING_REQUESTED, ts_ms=_now_ms(), phone_number=digits)
        )

    async def check_status(self) -> None:
        await self._dispatch(CheckRequested(event_type=EventType.CHECK_REQUESTED, ts_ms=_now_ms()))

    async def set_auto_reconnect(self, enabled: bool) -> None:
        await self._dispatch(
            AutoReconnectChanged(event_type=EventType.AUTO_RECONNECT_CHANGED, ts_ms=_now_ms(), enabled=enabled)
        )

    async def remove(self) -> None:
        await self._dispatch(RemovalRequested(event_type=EventType.REMOVAL_REQUESTED, ts_ms=_now_ms()))

    async def clear_log(self) -> None:
        await self._dispatch(LogClearRequested(event_type=EventType.LOG_CLEAR_REQUESTED, ts_ms=_now_ms()))

    def snapshot(self) -> dict[str, Any]:
        return self.link.snapshot()

    def log_entries(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self.link.connection_log]

    # ------------------------------------------------------------------
    # Inbound JSON (WebSocket)
    # ------------------------------------------------------------------

    async def on_json_message(self, observer_id: str, payload: str) -> PanelResult:
        """Route inbound JSON from one observer to link events."""
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            log_event({
                "ts_ms": _now_ms(),
                "level": "warning",
                "event_type": "JSON_DECODE_ERROR",
                "store_id": self.store_id,
                "observer_id": observer_id,
                "error": str(e),
                "payload_preview": payload[:100],
            })
            return PanelResult()

        if not isinstance(data, dict):
            return PanelResult()

        msg_type = data.get("type")

        try:
            if msg_type == "VISIBILITY":
                await self.set_observer_visibility(observer_id, bool(data.get("visible")))
            elif msg_type == "PAIR":
                await self.request_pairing(data.get("phone_number"))
            elif msg_type == "CHECK":
                await self.check_status()
            elif msg_type == "REMOVE":
                await self.remove()
            elif msg_type == "AUTO_RECONNECT":
                await self.set_auto_reconnect(bool(data.get("enabled")))
            elif msg_type == "CLEAR_LOG":
                await self.clear_log()
            else:
                log_event({
                    "ts_ms": _now_ms(),
                    "level": "warning",
                    "event_type": "UNKNOWN_MESSAGE_TYPE",
                    "msg_type": msg_type,
                    "store_id": self.store_id,
                    "observer_id": observer_id,
                })
        except InvalidInput as exc:
            return PanelResult(outbound_json=(_toast("Invalid input", str(exc)),))

        return PanelResult()

    # ------------------------------------------------------------------
    # Reducer dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, event: Event) -> None:
        runtime = self.link.runtime
        if runtime is None:
            log_event({
                "ts_ms": _now_ms(),
                "level": "warning",
                "event_type": "DISPATCH_WITHOUT_RUNTIME",
                "store_id": self.store_id,
                "dropped_event": event.event_type.value,
            })
            return
        await runtime.handle_event(event)
