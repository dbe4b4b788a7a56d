"""
Hosted-function gateway client.

Every operation is one POST to the evolution-whatsapp function:

    body:    {"action", "storeId", "instanceName", "phoneNumber"}
    headers: Authorization: Bearer <operator access token>

Responses look like {"success": true, "qrcode": {...}, "status": "..."};
failures come back as {"success": false, "error": "..."} or non-2xx.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from adapters.gateway.base import PairingCode, extract_qr_base64, extract_status
from errors import GatewayError, GatewayUnavailable, SessionExpired
from policy import GATEWAY_TIMEOUT_S_DEFAULT

ACTION_CREATE_INSTANCE = "create_instance"
ACTION_CHECK_STATUS = "check_status"
ACTION_DISCONNECT = "disconnect"


class FunctionGateway:
    """MessagingGateway implementation over the generic function RPC wrapper."""

    def __init__(
        self,
        *,
        function_url: str,
        api_key: str = "",
        timeout_s: float = GATEWAY_TIMEOUT_S_DEFAULT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not function_url:
            raise ValueError("SUPABASE_URL or SUPABASE_FUNCTIONS_URL is required for the function gateway")
        self._url = function_url
        headers = {"apikey": api_key} if api_key else {}
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def create_instance(
        self,
        *,
        store_id: str,
        instance_name: str,
        phone_number: str,
        access_token: str | None = None,
    ) -> PairingCode:
        data = await self._invoke(
            ACTION_CREATE_INSTANCE,
            store_id=store_id,
            instance_name=instance_name,
            phone_number=phone_number,
            access_token=access_token,
        )
        base64 = extract_qr_base64(data)
        if not base64:
            raise GatewayError("Invalid gateway response: QR code not received")

        instance = data.get("instance")
        reused = bool(instance.get("reused")) if isinstance(instance, dict) else False
        qrcode = data.get("qrcode")
        code = qrcode.get("pairingCode") if isinstance(qrcode, dict) else None
        return PairingCode(base64=base64, code=code, reused=reused)

    async def check_status(
        self,
        *,
        store_id: str,
        instance_name: str,
        access_token: str | None = None,
    ) -> str:
        data = await self._invoke(
            ACTION_CHECK_STATUS,
            store_id=store_id,
            instance_name=instance_name,
            access_token=access_token,
        )
        return extract_status(data)

    async def disconnect(
        self,
        *,
        store_id: str,
        instance_name: str,
        access_token: str | None = None,
    ) -> None:
        await self._invoke(
            ACTION_DISCONNECT,
            store_id=store_id,
            instance_name=instance_name,
            access_token=access_token,
        )

    # ------------------------------------------------------------------
    # RPC
    # ------------------------------------------------------------------

    async def _invoke(
        self,
        action: str,
        *,
        store_id: str,
        instance_name: str,
        phone_number: str | None = None,
        access_token: str | None = None,
    ) -> dict[str, Any]:
        if not access_token:
            raise SessionExpired()

        payload: dict[str, Any] = {
            "action": action,
            "storeId": store_id,
            "instanceName": instance_name,
        }
        if phone_number is not None:
            payload["phoneNumber"] = phone_number

        try:
            response = await self._client.post(
                self._url,
                json=payload,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.TimeoutException as exc:
            raise GatewayUnavailable(f"Gateway timeout on {action}") from exc
        except httpx.RequestError as exc:
            raise GatewayUnavailable(f"Gateway unreachable: {exc}") from exc

        if response.status_code == 401:
            raise SessionExpired()

        try:
            data = response.json()
        except json.JSONDecodeError as exc:
            raise GatewayError(
                f"Gateway returned a non-JSON response to {action}",
                status_code=response.status_code,
            ) from exc

        if not isinstance(data, dict):
            raise GatewayError(f"Unexpected gateway response to {action}", status_code=response.status_code)

        if not response.is_success or data.get("success") is False or data.get("error"):
            message = data.get("error") or f"HTTP {response.status_code}"
            raise GatewayError(str(message), status_code=response.status_code)

        return data
