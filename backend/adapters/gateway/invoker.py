"""
Session-aware gateway invocation wrapper.

Every gateway call goes through here so that:
- the caller's current operator session is checked first
  (missing or expired -> SessionExpired, no network call)
- the session's access token is attached
- the call is timed and logged as a metric
"""

from __future__ import annotations

import time
from typing import Callable

from adapters.gateway.base import MessagingGateway, PairingCode
from auth.session import OperatorSession
from errors import SessionExpired
from observability.metrics import timed

SessionProvider = Callable[[], "OperatorSession | None"]


class GatewayInvoker:
    """Binds a MessagingGateway to an operator session."""

    def __init__(
        self,
        gateway: MessagingGateway,
        *,
        session_provider: SessionProvider,
        clock_s: Callable[[], float] = time.time,
    ) -> None:
        self._gateway = gateway
        self._session_provider = session_provider
        self._clock_s = clock_s

    def _access_token(self) -> str:
        session = self._session_provider()
        if session is None or session.is_expired(self._clock_s()):
            raise SessionExpired()
        return session.access_token

    async def create_instance(self, *, store_id: str, instance_name: str, phone_number: str) -> PairingCode:
        token = self._access_token()
        with timed(
            "gateway_create_instance",
            store_id=store_id,
            details={"instance_name": instance_name},
        ) as extra:
            code = await self._gateway.create_instance(
                store_id=store_id,
                instance_name=instance_name,
                phone_number=phone_number,
                access_token=token,
            )
            extra["reused"] = code.reused
            return code

    async def check_status(self, *, store_id: str, instance_name: str) -> str:
        token = self._access_token()
        with timed(
            "gateway_check_status",
            store_id=store_id,
            details={"instance_name": instance_name},
        ) as extra:
            status = await self._gateway.check_status(
                store_id=store_id,
                instance_name=instance_name,
                access_token=token,
            )
            extra["status"] = status
            return status

    async def disconnect(self, *, store_id: str, instance_name: str) -> None:
        token = self._access_token()
        with timed(
            "gateway_disconnect",
            store_id=store_id,
            details={"instance_name": instance_name},
        ):
            await self._gateway.disconnect(
                store_id=store_id,
                instance_name=instance_name,
                access_token=token,
            )
