"""
WhatsApp panel permission check.

An operator may manage a store's WhatsApp link iff they
- own the store, or
- hold the "admin" role, or
- are an active employee of the store with permissions.whatsapp.view.
"""

from __future__ import annotations

import asyncio
from typing import Any

from errors import PermissionDenied
from instances.repository import StoreRepository
from observability.logger import log_event


def _employee_can_view(permissions: dict[str, Any] | None) -> bool:
    if not permissions:
        return False
    whatsapp = permissions.get("whatsapp")
    return isinstance(whatsapp, dict) and whatsapp.get("view") is True


async def can_manage_whatsapp(repo: StoreRepository, store_id: str, user_id: str) -> bool:
    is_owner, is_admin, employee = await asyncio.gather(
        repo.is_store_owner(store_id, user_id),
        repo.is_admin(user_id),
        repo.employee_permissions(store_id, user_id),
    )
    return bool(is_owner or is_admin or _employee_can_view(employee))


async def require_whatsapp_permission(repo: StoreRepository, store_id: str, user_id: str) -> None:
    """Raise PermissionDenied unless the operator may manage the link."""
    if await can_manage_whatsapp(repo, store_id, user_id):
        return
    log_event({
        "level": "warning",
        "event_type": "PERMISSION_DENIED",
        "store_id": store_id,
        "user_id": user_id,
    })
    raise PermissionDenied("You do not have permission to manage WhatsApp for this store")
