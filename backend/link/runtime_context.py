"""
Runtime execution context.

Provides LinkRuntime with live access to link-owned imperative resources
needed for command execution (registrar, connection log, observers).

This module contains:
- Narrow Protocols (capabilities, not implementations)
- Zero orchestration logic
- Zero state mutation
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from adapters.gateway.base import PairingCode
    from instances.registrar import InstanceRecord
    from observability.connection_log import ConnectionLog
    from session.store_link import StoreLink


# ---------------------------------------------------------------------
# Registrar Protocol
# ---------------------------------------------------------------------

@runtime_checkable
class RegistrarProtocol(Protocol):
    """
    Instance registrar and gateway status capability.

    Contract:
    - SessionExpired propagates unchanged from every method
    - gateway failures raise GatewayError (or a subclass)
    - remove() is idempotent
    """

    async def lookup(self, store_id: str) -> InstanceRecord | None: ...

    async def create(self, store_id: str, phone_number: str) -> tuple[str, PairingCode]: ...

    async def refresh_pairing_code(
        self,
        store_id: str,
        instance_id: str,
        phone_number: str,
    ) -> PairingCode: ...

    async def check_status(self, store_id: str, instance_id: str) -> str: ...

    async def remove(self, store_id: str, instance_id: str | None) -> None: ...


# ---------------------------------------------------------------------
# Runtime Execution Context
# ---------------------------------------------------------------------

class RuntimeExecutionContext:
    """
    Imperative execution context for LinkRuntime.

    This object provides *live views* into link-owned resources
    so the runtime does not need to synchronize or cache anything.

    Runtime is allowed to:
    - Call the registrar
    - Append to / clear the connection log
    - Publish messages to observers

    Runtime is NOT allowed to:
    - Mutate link state directly
    - Perform orchestration decisions
    """

    def __init__(self, link: StoreLink) -> None:
        self.link = link

    # ----------------------------
    # Link metadata
    # ----------------------------

    @property
    def store_id(self) -> str:
        return self.link.store_id

    # ----------------------------
    # Collaborators
    # ----------------------------

    @property
    def registrar(self) -> RegistrarProtocol:
        return self.link.registrar

    @property
    def connection_log(self) -> ConnectionLog:
        return self.link.connection_log

    # ----------------------------
    # Observers
    # ----------------------------

    def publish(self, message: dict[str, Any]) -> None:
        self.link.broadcast(message)
