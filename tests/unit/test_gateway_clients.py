# pylint: disable=missing-module-docstring,missing-function-docstring
import json

import httpx
import pytest

from adapters.gateway.base import extract_qr_base64, extract_status
from adapters.gateway.evolution import EvolutionGateway
from adapters.gateway.function_rpc import FunctionGateway
from errors import GatewayError, GatewayUnavailable, SessionExpired


QR = "data:image/png;base64,iVBORw0KGgo"


def evolution(handler) -> EvolutionGateway:
    return EvolutionGateway(
        base_url="https://evo.example.com/",
        api_key="evo-key",
        transport=httpx.MockTransport(handler),
    )


def function(handler) -> FunctionGateway:
    return FunctionGateway(
        function_url="https://proj.supabase.co/functions/v1/evolution-whatsapp",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )


# ---------------------------------------------------------------------
# Response shape helpers
# ---------------------------------------------------------------------

@pytest.mark.parametrize(
    ("payload", "expected"),
    [
        ({"state": "open"}, "open"),
        ({"instance": {"state": "connecting"}}, "connecting"),
        ({"connection": {"state": "close"}}, "close"),
        ({"result": {"state": "open"}}, "open"),
        ({"data": {"state": "open"}}, "open"),
        ({"status": "connected"}, "connected"),
        ({"state": "", "instance": {"state": "open"}}, "open"),
        ({}, "disconnected"),
        ([], "disconnected"),
    ],
)
def test_extract_status_shapes(payload, expected):
    assert extract_status(payload) == expected


def test_extract_qr_shapes():
    assert extract_qr_base64({"base64": QR}) == QR
    assert extract_qr_base64({"qrcode": {"base64": QR}}) == QR
    assert extract_qr_base64({"qrcode": QR}) == QR
    assert extract_qr_base64({"qrcode": {}}) is None


# ---------------------------------------------------------------------
# Evolution (direct)
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_evolution_create_then_connect():
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        assert request.headers["apikey"] == "evo-key"
        if request.url.path == "/instance/create":
            body = json.loads(request.content)
            assert body["instanceName"] == "store_abc12345"
            assert body["qrcode"] is True
            return httpx.Response(201, json={"instance": {"instanceName": "store_abc12345"}})
        return httpx.Response(200, json={"base64": QR, "pairingCode": "ABCD-1234"})

    gateway = evolution(handler)
    code = await gateway.create_instance(
        store_id="abc12345-x", instance_name="store_abc12345", phone_number="5538999999999"
    )
    await gateway.aclose()

    assert code.base64 == QR
    assert code.code == "ABCD-1234"
    assert code.reused is False
    assert seen == [("POST", "/instance/create"), ("GET", "/instance/connect/store_abc12345")]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "create_response",
    [
        httpx.Response(403, json={"response": {"message": ["This name is already in use."]}}),
        httpx.Response(409, text="conflict"),
        httpx.Response(400, text='{"message": "name already in use"}'),
    ],
)
async def test_evolution_create_reuses_existing_name(create_response):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/instance/create":
            return create_response
        return httpx.Response(200, json={"qrcode": {"base64": QR}})

    gateway = evolution(handler)
    code = await gateway.create_instance(store_id="s", instance_name="store_s", phone_number="5538999999999")

    assert code.reused is True
    assert code.base64 == QR


@pytest.mark.asyncio
async def test_evolution_create_without_qr_is_an_error():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/instance/create":
            return httpx.Response(201, json={})
        return httpx.Response(200, json={"count": 0})

    gateway = evolution(handler)
    with pytest.raises(GatewayError):
        await gateway.create_instance(store_id="s", instance_name="store_s", phone_number="5538999999999")


@pytest.mark.asyncio
async def test_evolution_check_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/instance/connectionState/store_s"
        return httpx.Response(200, json={"instance": {"instanceName": "store_s", "state": "open"}})

    gateway = evolution(handler)
    assert await gateway.check_status(store_id="s", instance_name="store_s") == "open"


@pytest.mark.asyncio
async def test_evolution_error_status_raises_with_code():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="not found")

    gateway = evolution(handler)
    with pytest.raises(GatewayError) as exc_info:
        await gateway.check_status(store_id="s", instance_name="store_s")
    assert exc_info.value.status_code == 404


@pytest.mark.asyncio
async def test_evolution_network_failure_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    gateway = evolution(handler)
    with pytest.raises(GatewayUnavailable):
        await gateway.check_status(store_id="s", instance_name="store_s")


@pytest.mark.asyncio
async def test_evolution_disconnect_logs_out_then_deletes():
    seen: list[tuple[str, str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        if request.url.path.startswith("/instance/delete"):
            return httpx.Response(500, text="boom")
        return httpx.Response(200, json={"status": "SUCCESS"})

    gateway = evolution(handler)
    # A failed delete after a successful logout is not an error
    await gateway.disconnect(store_id="s", instance_name="store_s")

    assert seen == [("DELETE", "/instance/logout/store_s"), ("DELETE", "/instance/delete/store_s")]


# ---------------------------------------------------------------------
# Hosted function (RPC)
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_function_create_sends_action_and_bearer_token():
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["authorization"] == "Bearer op-token"
        assert request.headers["apikey"] == "anon-key"
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"success": True, "qrcode": {"base64": QR}, "instance": {"reused": True}})

    gateway = function(handler)
    code = await gateway.create_instance(
        store_id="s1",
        instance_name="store_s1",
        phone_number="5538999999999",
        access_token="op-token",
    )

    assert code.base64 == QR
    assert code.reused is True
    assert bodies == [{
        "action": "create_instance",
        "storeId": "s1",
        "instanceName": "store_s1",
        "phoneNumber": "5538999999999",
    }]


@pytest.mark.asyncio
async def test_function_check_status_reads_status_field():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": True, "status": "open"})

    gateway = function(handler)
    status = await gateway.check_status(store_id="s1", instance_name="store_s1", access_token="op-token")

    assert status == "open"


@pytest.mark.asyncio
async def test_function_without_token_raises_session_expired():
    def handler(_request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    gateway = function(handler)
    with pytest.raises(SessionExpired):
        await gateway.check_status(store_id="s1", instance_name="store_s1", access_token=None)


@pytest.mark.asyncio
async def test_function_401_raises_session_expired():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid JWT"})

    gateway = function(handler)
    with pytest.raises(SessionExpired):
        await gateway.disconnect(store_id="s1", instance_name="store_s1", access_token="old")


@pytest.mark.asyncio
async def test_function_reported_failure_raises_gateway_error():
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "error": "Evolution API unreachable"})

    gateway = function(handler)
    with pytest.raises(GatewayError, match="Evolution API unreachable"):
        await gateway.check_status(store_id="s1", instance_name="store_s1", access_token="t")
