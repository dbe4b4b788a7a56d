"""
Direct Evolution API client.

Talks to the gateway's REST API with the server-side API key:

    POST   /instance/create                 create (qrcode=true)
    GET    /instance/connect/{name}         QR code for an existing instance
    GET    /instance/connectionState/{name} connection state
    DELETE /instance/logout/{name}          logout (must succeed)
    DELETE /instance/delete/{name}          delete (best effort)

Name-in-use responses on create reuse the existing instance.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from adapters.gateway.base import PairingCode, extract_qr_base64, extract_status
from errors import GatewayError, GatewayUnavailable
from observability.logger import log_event
from policy import (
    EVOLUTION_INTEGRATION,
    EVOLUTION_NAME_IN_USE_STATUS_CODES,
    GATEWAY_TIMEOUT_S_DEFAULT,
)

_NAME_IN_USE_MARKER = "already in use"


class EvolutionGateway:
    """
    MessagingGateway implementation over the Evolution REST API.

    access_token is accepted for interface compatibility and ignored;
    this transport authenticates with the API key.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout_s: float = GATEWAY_TIMEOUT_S_DEFAULT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not base_url:
            raise ValueError("EVOLUTION_API_URL is required for the direct gateway")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"apikey": api_key},
            timeout=timeout_s,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create_instance(
        self,
        *,
        store_id: str,
        instance_name: str,
        phone_number: str,
        access_token: str | None = None,
    ) -> PairingCode:
        response = await self._request(
            "POST",
            "/instance/create",
            json={
                "instanceName": instance_name,
                "qrcode": True,
                "integration": EVOLUTION_INTEGRATION,
            },
        )

        reused = False
        if not response.is_success:
            if not self._name_in_use(response):
                raise GatewayError(
                    f"Failed to create instance: {self._error_text(response)}",
                    status_code=response.status_code,
                )
            reused = True
            log_event({
                "event_type": "GATEWAY_INSTANCE_REUSED",
                "store_id": store_id,
                "instance_name": instance_name,
                "status_code": response.status_code,
            })

        connect = await self._request("GET", f"/instance/connect/{instance_name}")
        if not connect.is_success:
            raise GatewayError(
                f"Failed to connect instance: {self._error_text(connect)}",
                status_code=connect.status_code,
            )

        data = self._json(connect)
        base64 = extract_qr_base64(data)
        if not base64:
            raise GatewayError("Invalid gateway response: QR code not received")

        code = data.get("pairingCode") or data.get("code")
        return PairingCode(base64=base64, code=code, reused=reused)

    async def check_status(
        self,
        *,
        store_id: str,
        instance_name: str,
        access_token: str | None = None,
    ) -> str:
        response = await self._request("GET", f"/instance/connectionState/{instance_name}")
        if not response.is_success:
            raise GatewayError(
                f"Failed to check status: {self._error_text(response)}",
                status_code=response.status_code,
            )
        return extract_status(self._json(response))

    async def disconnect(
        self,
        *,
        store_id: str,
        instance_name: str,
        access_token: str | None = None,
    ) -> None:
        logout = await self._request("DELETE", f"/instance/logout/{instance_name}")
        if not logout.is_success:
            raise GatewayError(
                f"Failed to disconnect: {self._error_text(logout)}",
                status_code=logout.status_code,
            )

        delete = await self._request("DELETE", f"/instance/delete/{instance_name}")
        if not delete.is_success:
            log_event({
                "level": "warning",
                "event_type": "GATEWAY_DELETE_FAILED",
                "store_id": store_id,
                "instance_name": instance_name,
                "status_code": delete.status_code,
            })

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise GatewayUnavailable(f"Gateway timeout on {method} {path}") from exc
        except httpx.RequestError as exc:
            raise GatewayUnavailable(f"Gateway unreachable: {exc}") from exc

    @staticmethod
    def _name_in_use(response: httpx.Response) -> bool:
        if response.status_code in EVOLUTION_NAME_IN_USE_STATUS_CODES:
            return True
        return _NAME_IN_USE_MARKER in response.text.lower()

    @staticmethod
    def _error_text(response: httpx.Response) -> str:
        text = response.text.strip()
        return text[:500] if text else f"HTTP {response.status_code}"

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except json.JSONDecodeError as exc:
            raise GatewayError(
                "Gateway returned a non-JSON response",
                status_code=response.status_code,
            ) from exc
