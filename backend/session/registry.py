"""
Panel registry.

One LinkPanel per store, process-wide. Every HTTP request and WebSocket
for a store shares the same panel (and therefore the same link state,
timers and connection log).

A panel with no observers is closed after a retention delay; a new
observer or request inside that window keeps it alive.
"""

from __future__ import annotations

import asyncio

from auth.session import OperatorSession
from link.runtime import Sleep
from observability.logger import log_event
from policy import LINK_RETAIN_AFTER_LAST_OBSERVER_S_DEFAULT
from session.panel import LinkPanel, RegistrarFactory
from session.store_link import LinkObserver


class PanelRegistry:
    def __init__(
        self,
        *,
        registrar_factory: RegistrarFactory,
        retain_s: float = LINK_RETAIN_AFTER_LAST_OBSERVER_S_DEFAULT,
        sleep: Sleep = asyncio.sleep,
        runtime_sleep: Sleep | None = None,
    ) -> None:
        self._registrar_factory = registrar_factory
        self._retain_s = retain_s
        self._sleep = sleep
        self._runtime_sleep = runtime_sleep
        self._panels: dict[str, LinkPanel] = {}
        self._teardowns: dict[str, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._panels)

    def get(self, store_id: str) -> LinkPanel | None:
        return self._panels.get(store_id)

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    async def get_or_open(self, store_id: str, session: OperatorSession) -> LinkPanel:
        """Existing panel (with the session attached) or a freshly opened one."""
        panel = self._panels.get(store_id)
        if panel is None:
            panel = LinkPanel(
                store_id=store_id,
                registrar_factory=self._registrar_factory,
                sleep=self._runtime_sleep,
            )
            self._panels[store_id] = panel
            await panel.open(session)
        else:
            await panel.attach_session(session)

        if panel.observer_count == 0:
            self._schedule_teardown(store_id)
        return panel

    async def observe(
        self,
        store_id: str,
        session: OperatorSession,
        *,
        visible: bool = True,
    ) -> tuple[LinkPanel, LinkObserver]:
        panel = await self.get_or_open(store_id, session)
        self._cancel_teardown(store_id)
        observer = await panel.attach_observer(visible=visible)
        return panel, observer

    async def release(self, store_id: str, observer_id: str) -> None:
        panel = self._panels.get(store_id)
        if panel is None:
            return
        await panel.detach_observer(observer_id)
        if panel.observer_count == 0:
            self._schedule_teardown(store_id)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def close(self, store_id: str, reason: str) -> None:
        self._cancel_teardown(store_id)
        panel = self._panels.pop(store_id, None)
        if panel is not None:
            await panel.close(reason=reason)

    async def shutdown_all(self) -> None:
        for store_id in list(self._panels):
            await self.close(store_id, reason="shutdown")

    def _schedule_teardown(self, store_id: str) -> None:
        self._cancel_teardown(store_id)

        async def _teardown() -> None:
            await self._sleep(self._retain_s)
            panel = self._panels.get(store_id)
            if panel is None or panel.observer_count:
                return
            # Detach first so close() does not cancel this task
            self._teardowns.pop(store_id, None)
            log_event({
                "event_type": "LINK_IDLE_TEARDOWN",
                "store_id": store_id,
                "retain_s": self._retain_s,
            })
            await self.close(store_id, reason="idle")

        self._teardowns[store_id] = asyncio.create_task(_teardown())

    def _cancel_teardown(self, store_id: str) -> None:
        task = self._teardowns.pop(store_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

