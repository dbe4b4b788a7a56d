"""
Status summary cache.

Lightweight, read-only status for badges and sidebars. Does not touch
any link state: it reads the persisted mapping and asks the gateway
directly, caching the answer per store for STATUS_SUMMARY_CACHE_TTL_S.

Concurrent requests for the same store share one in-flight lookup.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from adapters.gateway.base import MessagingGateway
from adapters.gateway.invoker import GatewayInvoker
from auth.session import OperatorSession
from errors import GatewayError
from instances.repository import StoreRepository
from link.classify import DisplayStatus, classify_for_display
from observability.logger import log_event
from policy import STATUS_SUMMARY_CACHE_TTL_S


@dataclass(frozen=True)
class StatusSummary:
    store_id: str
    status: DisplayStatus
    raw_status: str | None
    checked_at: float

    def to_dict(self) -> dict[str, object]:
        return {
            "store_id": self.store_id,
            "status": self.status.value,
            "raw_status": self.raw_status,
            "checked_at": self.checked_at,
        }


class StatusSummaryCache:
    def __init__(
        self,
        *,
        repository: StoreRepository,
        gateway: MessagingGateway,
        ttl_s: float = STATUS_SUMMARY_CACHE_TTL_S,
        clock_s: Callable[[], float] = time.time,
    ) -> None:
        self._repo = repository
        self._gateway = gateway
        self._ttl_s = ttl_s
        self._clock_s = clock_s
        self._entries: dict[str, StatusSummary] = {}
        self._in_flight: dict[str, asyncio.Task[StatusSummary]] = {}

    def invalidate(self, store_id: str) -> None:
        self._entries.pop(store_id, None)

    def cached(self, store_id: str) -> StatusSummary | None:
        entry = self._entries.get(store_id)
        if entry is None:
            return None
        if self._clock_s() - entry.checked_at >= self._ttl_s:
            return None
        return entry

    async def get(
        self,
        store_id: str,
        session: OperatorSession,
        *,
        force: bool = False,
    ) -> StatusSummary:
        """
        Cached summary for a store.

        SessionExpired propagates; gateway failures are folded into the
        summary (403 -> no-permission, anything else -> disconnected).
        """
        if not force:
            entry = self.cached(store_id)
            if entry is not None:
                return entry

        task = self._in_flight.get(store_id)
        if task is None:
            task = asyncio.create_task(self._fetch(store_id, session))
            self._in_flight[store_id] = task
            task.add_done_callback(lambda _t: self._in_flight.pop(store_id, None))

        # Shielded so one cancelled caller does not cancel the shared lookup
        summary = await asyncio.shield(task)
        self._entries[store_id] = summary
        return summary

    async def _fetch(self, store_id: str, session: OperatorSession) -> StatusSummary:
        instance_id = await self._repo.get_instance_id(store_id)
        if not instance_id:
            return self._summary(store_id, DisplayStatus.DISCONNECTED, None)

        invoker = GatewayInvoker(self._gateway, session_provider=lambda: session, clock_s=self._clock_s)
        try:
            raw = await invoker.check_status(store_id=store_id, instance_name=instance_id)
        except GatewayError as exc:
            log_event({
                "level": "warning",
                "event_type": "STATUS_SUMMARY_FAILED",
                "store_id": store_id,
                "instance_name": instance_id,
                "status_code": exc.status_code,
                "error": str(exc),
            })
            if exc.status_code == 403:
                return self._summary(store_id, DisplayStatus.NO_PERMISSION, None)
            return self._summary(store_id, DisplayStatus.DISCONNECTED, None)

        return self._summary(store_id, classify_for_display(raw), raw)

    def _summary(self, store_id: str, status: DisplayStatus, raw: str | None) -> StatusSummary:
        return StatusSummary(store_id=store_id, status=status, raw_status=raw, checked_at=self._clock_s())
