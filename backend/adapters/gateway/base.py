"""
Messaging gateway contract.

Three logical operations consumed by the registrar:
- create_instance(store_id, instance_name, phone_number) -> PairingCode
- check_status(store_id, instance_name) -> raw status string
- disconnect(store_id, instance_name) -> None

Implementations raise:
- SessionExpired when the caller's session is rejected
- GatewayUnavailable when the gateway cannot be reached
- GatewayError for any other failed call
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class PairingCode:
    """
    Pairing material returned by the gateway.

    base64: image data URL of the QR code (what the panel renders)
    code:   textual pairing code, when the gateway supplies one
    reused: the instance name already existed and was reused
    """
    base64: str
    code: str | None = None
    reused: bool = False


@runtime_checkable
class MessagingGateway(Protocol):
    async def create_instance(
        self,
        *,
        store_id: str,
        instance_name: str,
        phone_number: str,
        access_token: str | None = None,
    ) -> PairingCode: ...

    async def check_status(
        self,
        *,
        store_id: str,
        instance_name: str,
        access_token: str | None = None,
    ) -> str: ...

    async def disconnect(
        self,
        *,
        store_id: str,
        instance_name: str,
        access_token: str | None = None,
    ) -> None: ...

    async def aclose(self) -> None: ...


def extract_qr_base64(payload: Any) -> str | None:
    """
    Pull the QR image out of the shapes the gateway is known to return.

    Accepts {"base64": ...}, {"qrcode": {"base64": ...}} and
    {"qrcode": "<data url>"}.
    """
    if not isinstance(payload, dict):
        return None
    direct = payload.get("base64")
    if isinstance(direct, str) and direct:
        return direct
    qrcode = payload.get("qrcode")
    if isinstance(qrcode, dict):
        nested = qrcode.get("base64")
        if isinstance(nested, str) and nested:
            return nested
    if isinstance(qrcode, str) and qrcode:
        return qrcode
    return None


def extract_status(payload: Any, default: str = "disconnected") -> str:
    """
    First non-empty state among the known response shapes:
    state, instance.state, connection.state, result.state, data.state.
    A plain top-level "status" (function RPC responses) is also accepted.
    """
    if not isinstance(payload, dict):
        return default

    candidates: list[Any] = [payload.get("state")]
    for key in ("instance", "connection", "result", "data"):
        nested = payload.get(key)
        if isinstance(nested, dict):
            candidates.append(nested.get("state"))
    candidates.append(payload.get("status"))

    for value in candidates:
        if isinstance(value, str) and value.strip():
            return value
    return default
