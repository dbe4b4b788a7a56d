"""
Instance Registrar.

Creates, looks up and removes the gateway instance for a store and keeps
the store -> instance mapping persisted.

- lookup():  persisted mapping first; otherwise probe the deterministic
             name on the gateway and, if it is connected, persist it.
- create():  gateway create (reusing an existing name), persist, return
             the first pairing code. Failures raise GatewayUnavailable;
             nothing is retried here.
- remove():  gateway disconnect (best effort), delete the mapping.
             Removing an absent mapping is not an error.
"""

from __future__ import annotations

from dataclasses import dataclass

from adapters.gateway.base import PairingCode
from adapters.gateway.invoker import GatewayInvoker
from errors import GatewayError, GatewayUnavailable, SessionExpired
from instances.naming import instance_name_for, local_phone
from instances.repository import StoreRepository
from link.classify import is_connected_status
from observability.logger import log_event


@dataclass(frozen=True)
class InstanceRecord:
    """Result of a successful lookup."""
    instance_id: str
    phone_number: str = ""
    # Set only when recovered by probing (the probe already saw it)
    status: str | None = None


class InstanceRegistrar:
    """Registrar for a single operator context (one invoker)."""

    def __init__(self, repository: StoreRepository, invoker: GatewayInvoker) -> None:
        self._repo = repository
        self._invoker = invoker

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def lookup(self, store_id: str) -> InstanceRecord | None:
        instance_id = await self._repo.get_instance_id(store_id)
        phone = await self.store_phone(store_id)

        if instance_id:
            return InstanceRecord(instance_id=instance_id, phone_number=phone)

        candidate = instance_name_for(store_id)
        try:
            status = await self._invoker.check_status(store_id=store_id, instance_name=candidate)
        except SessionExpired:
            raise
        except GatewayError as exc:
            # A missing record is not an error
            log_event({
                "level": "debug",
                "event_type": "INSTANCE_PROBE_FAILED",
                "store_id": store_id,
                "instance_name": candidate,
                "error": str(exc),
            })
            return None

        if not is_connected_status(status):
            return None

        await self._repo.save_instance(store_id, candidate)
        log_event({
            "event_type": "INSTANCE_RECOVERED",
            "store_id": store_id,
            "instance_name": candidate,
            "status": status,
        })
        return InstanceRecord(instance_id=candidate, phone_number=phone, status=status)

    async def store_phone(self, store_id: str) -> str:
        """
        Store phone without formatting or country prefix.

        Only a prefill: "" when there is none or it cannot be read.
        """
        try:
            raw = await self._repo.get_store_phone(store_id)
        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "level": "warning",
                "event_type": "STORE_PHONE_READ_FAILED",
                "store_id": store_id,
                "error_type": type(exc).__name__,
                "error": str(exc),
            })
            return ""
        return local_phone(raw)

    # ------------------------------------------------------------------
    # Create / refresh
    # ------------------------------------------------------------------

    async def create(self, store_id: str, phone_number: str) -> tuple[str, PairingCode]:
        instance_name = instance_name_for(store_id)
        code = await self._request_code(store_id, instance_name, phone_number)
        await self._repo.save_instance(store_id, instance_name)
        log_event({
            "event_type": "INSTANCE_CREATED",
            "store_id": store_id,
            "instance_name": instance_name,
            "reused": code.reused,
        })
        return instance_name, code

    async def refresh_pairing_code(
        self,
        store_id: str,
        instance_id: str,
        phone_number: str,
    ) -> PairingCode:
        """Fresh code for an existing instance (create reuses the name)."""
        return await self._request_code(store_id, instance_id, phone_number)

    async def _request_code(self, store_id: str, instance_name: str, phone_number: str) -> PairingCode:
        try:
            return await self._invoker.create_instance(
                store_id=store_id,
                instance_name=instance_name,
                phone_number=phone_number,
            )
        except (SessionExpired, GatewayUnavailable):
            raise
        except GatewayError as exc:
            raise GatewayUnavailable(str(exc), status_code=exc.status_code) from exc

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def check_status(self, store_id: str, instance_id: str) -> str:
        return await self._invoker.check_status(store_id=store_id, instance_name=instance_id)

    # ------------------------------------------------------------------
    # Remove
    # ------------------------------------------------------------------

    async def remove(self, store_id: str, instance_id: str | None) -> None:
        instance_name = instance_id or await self._repo.get_instance_id(store_id)

        if instance_name:
            try:
                await self._invoker.disconnect(store_id=store_id, instance_name=instance_name)
            except SessionExpired:
                raise
            except GatewayError as exc:
                log_event({
                    "level": "warning",
                    "event_type": "GATEWAY_DISCONNECT_FAILED",
                    "store_id": store_id,
                    "instance_name": instance_name,
                    "error": str(exc),
                })

        await self._repo.delete_instance(store_id)
