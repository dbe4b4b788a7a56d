"""
Backend persistence for store/instance data (Supabase).

Tables read or written:
- store_instances(store_id, evolution_instance_id)   read/upsert/delete
- stores(id, phone, owner_id)                         read
- user_roles(user_id, role)                           read
- store_employees(user_id, store_id, permissions, is_active)  read

The supabase-py client is synchronous; every query runs in a worker
thread so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol

from supabase import Client, create_client


class StoreRepository(Protocol):
    async def get_instance_id(self, store_id: str) -> str | None: ...
    async def save_instance(self, store_id: str, instance_id: str) -> None: ...
    async def delete_instance(self, store_id: str) -> None: ...
    async def get_store_phone(self, store_id: str) -> str | None: ...
    async def is_store_owner(self, store_id: str, user_id: str) -> bool: ...
    async def is_admin(self, user_id: str) -> bool: ...
    async def employee_permissions(self, store_id: str, user_id: str) -> dict[str, Any] | None: ...


def _first(rows: Any) -> dict[str, Any] | None:
    if isinstance(rows, list) and rows:
        row = rows[0]
        return row if isinstance(row, dict) else None
    return None


class SupabaseStoreRepository:
    """StoreRepository backed by the managed Supabase backend."""

    def __init__(self, client: Client) -> None:
        self._client = client

    @classmethod
    def from_credentials(cls, url: str, key: str) -> SupabaseStoreRepository:
        return cls(create_client(url, key))

    # ------------------------------------------------------------------
    # store_instances
    # ------------------------------------------------------------------

    async def get_instance_id(self, store_id: str) -> str | None:
        def _query() -> Any:
            return (
                self._client.table("store_instances")
                .select("evolution_instance_id")
                .eq("store_id", store_id)
                .limit(1)
                .execute()
            )

        row = _first((await asyncio.to_thread(_query)).data)
        instance_id = row.get("evolution_instance_id") if row else None
        return instance_id or None

    async def save_instance(self, store_id: str, instance_id: str) -> None:
        def _query() -> Any:
            return (
                self._client.table("store_instances")
                .upsert({"store_id": store_id, "evolution_instance_id": instance_id})
                .execute()
            )

        await asyncio.to_thread(_query)

    async def delete_instance(self, store_id: str) -> None:
        def _query() -> Any:
            return (
                self._client.table("store_instances")
                .delete()
                .eq("store_id", store_id)
                .execute()
            )

        await asyncio.to_thread(_query)

    # ------------------------------------------------------------------
    # stores
    # ------------------------------------------------------------------

    async def get_store_phone(self, store_id: str) -> str | None:
        def _query() -> Any:
            return (
                self._client.table("stores")
                .select("phone")
                .eq("id", store_id)
                .limit(1)
                .execute()
            )

        row = _first((await asyncio.to_thread(_query)).data)
        return row.get("phone") if row else None

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    async def is_store_owner(self, store_id: str, user_id: str) -> bool:
        def _query() -> Any:
            return (
                self._client.table("stores")
                .select("id")
                .eq("id", store_id)
                .eq("owner_id", user_id)
                .limit(1)
                .execute()
            )

        return _first((await asyncio.to_thread(_query)).data) is not None

    async def is_admin(self, user_id: str) -> bool:
        def _query() -> Any:
            return (
                self._client.table("user_roles")
                .select("role")
                .eq("user_id", user_id)
                .eq("role", "admin")
                .limit(1)
                .execute()
            )

        return _first((await asyncio.to_thread(_query)).data) is not None

    async def employee_permissions(self, store_id: str, user_id: str) -> dict[str, Any] | None:
        def _query() -> Any:
            return (
                self._client.table("store_employees")
                .select("permissions, is_active")
                .eq("user_id", user_id)
                .eq("store_id", store_id)
                .eq("is_active", True)
                .limit(1)
                .execute()
            )

        row = _first((await asyncio.to_thread(_query)).data)
        if row is None:
            return None
        permissions = row.get("permissions")
        return permissions if isinstance(permissions, dict) else {}
