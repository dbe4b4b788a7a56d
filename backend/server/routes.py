"""
Route registration for the WhatsApp link API.

Responsibilities:
- Define HTTP and WebSocket endpoints
- Authenticate the operator and check the WhatsApp permission
- Wire panels to requests and WebSocket lifecycles
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any

from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from auth.permissions import can_manage_whatsapp, require_whatsapp_permission
from auth.session import OperatorSession, bearer_token, verify_access_token
from errors import PermissionDenied, SessionExpired
from link.classify import DisplayStatus
from observability.logger import log_event
from session.panel import LinkPanel, PanelResult
from session.registry import PanelRegistry
from session.status_cache import StatusSummaryCache
from session.store_link import LinkObserver

# Application-defined WebSocket close codes
WS_CLOSE_SESSION_EXPIRED = 4401
WS_CLOSE_PERMISSION_DENIED = 4403


class PairingBody(BaseModel):
    phone_number: str | None = None


class AutoReconnectBody(BaseModel):
    enabled: bool


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def _registry() -> PanelRegistry:
        return app.state.registry

    def _authenticate(authorization: str | None) -> OperatorSession:
        return verify_access_token(
            bearer_token(authorization),
            secret=app.state.config.supabase_jwt_secret,
        )

    async def _panel(request: Request, store_id: str) -> LinkPanel:
        session = _authenticate(request.headers.get("authorization"))
        await require_whatsapp_permission(app.state.repository, store_id, session.user_id)
        panel = await _registry().get_or_open(store_id, session)
        # Operations act on a loaded link, not on an in-flight lookup
        await panel.settle()
        return panel

    async def _settled_snapshot(panel: LinkPanel) -> dict[str, Any]:
        await panel.settle()
        return panel.snapshot()

    @app.get("/health")
    async def health() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok", "links": len(_registry())}

    # ------------------------------------------------------------------
    # Link state / operations
    # ------------------------------------------------------------------

    @app.get("/stores/{store_id}/whatsapp")
    async def get_link(store_id: str, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        return await _settled_snapshot(panel)

    @app.post("/stores/{store_id}/whatsapp/pairing")
    async def request_pairing(store_id: str, body: PairingBody, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        await panel.request_pairing(body.phone_number)
        app.state.status_cache.invalidate(store_id)
        return await _settled_snapshot(panel)

    @app.post("/stores/{store_id}/whatsapp/status-check")
    async def status_check(store_id: str, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        await panel.check_status()
        app.state.status_cache.invalidate(store_id)
        return await _settled_snapshot(panel)

    @app.put("/stores/{store_id}/whatsapp/auto-reconnect")
    async def auto_reconnect(store_id: str, body: AutoReconnectBody, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        await panel.set_auto_reconnect(body.enabled)
        return panel.snapshot()

    @app.delete("/stores/{store_id}/whatsapp")
    async def remove_link(store_id: str, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        await panel.remove()
        app.state.status_cache.invalidate(store_id)
        return await _settled_snapshot(panel)

    # ------------------------------------------------------------------
    # Connection log
    # ------------------------------------------------------------------

    @app.get("/stores/{store_id}/whatsapp/logs")
    async def get_logs(store_id: str, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        return {"store_id": store_id, "entries": panel.log_entries()}

    @app.delete("/stores/{store_id}/whatsapp/logs")
    async def clear_logs(store_id: str, request: Request) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        panel = await _panel(request, store_id)
        await panel.clear_log()
        return {"store_id": store_id, "entries": panel.log_entries()}

    # ------------------------------------------------------------------
    # Status summary (badges / sidebars)
    # ------------------------------------------------------------------

    @app.get("/stores/{store_id}/whatsapp/summary")
    async def summary(store_id: str, request: Request, force: bool = False) -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _authenticate(request.headers.get("authorization"))
        if not await can_manage_whatsapp(app.state.repository, store_id, session.user_id):
            return {
                "store_id": store_id,
                "status": DisplayStatus.NO_PERMISSION.value,
                "raw_status": None,
                "checked_at": None,
            }
        cache: StatusSummaryCache = app.state.status_cache
        result = await cache.get(store_id, session, force=force)
        return result.to_dict()

    # ------------------------------------------------------------------
    # Observer WebSocket
    # ------------------------------------------------------------------

    @app.websocket("/stores/{store_id}/whatsapp/ws")
    async def websocket_endpoint(ws: WebSocket, store_id: str) -> None: # pyright: ignore[reportUnusedFunction]
        await ws.accept()

        try:
            session = _authenticate(f"Bearer {ws.query_params.get('token', '')}")
            await require_whatsapp_permission(app.state.repository, store_id, session.user_id)
        except SessionExpired as exc:
            await ws.close(code=WS_CLOSE_SESSION_EXPIRED, reason=str(exc))
            return
        except PermissionDenied as exc:
            await ws.close(code=WS_CLOSE_PERMISSION_DENIED, reason=str(exc))
            return

        visible = ws.query_params.get("visible", "true").lower() != "false"
        panel, observer = await _registry().observe(store_id, session, visible=visible)
        sender = asyncio.create_task(_pump_observer(ws, observer))

        try:
            while True:
                text = await ws.receive_text()
                result = await panel.on_json_message(observer.observer_id, text)
                await _flush_panel_result(ws, result)

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "error",
                "event_type": "WS_FATAL_ERROR",
                "store_id": store_id,
                "observer_id": observer.observer_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            await _stop_sender(sender)
            await _registry().release(store_id, observer.observer_id)


async def _pump_observer(ws: WebSocket, observer: LinkObserver) -> None:
    """Forward broadcast messages for one observer until cancelled."""
    while True:
        message = await observer.queue.get()
        await ws.send_text(json.dumps(message))


async def _flush_panel_result(
    ws: WebSocket,
    result: PanelResult,
) -> None:
    for msg in result.outbound_json:
        await ws.send_text(json.dumps(msg))


async def _stop_sender(sender: asyncio.Task[None]) -> None:
    """Cancel the pump and collect its outcome (a failed send ends it early)."""
    sender.cancel()
    with contextlib.suppress(Exception, asyncio.CancelledError):
        await sender
