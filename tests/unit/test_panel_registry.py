# pylint: disable=missing-module-docstring,missing-function-docstring
import asyncio
import json
from typing import Any

import pytest

from errors import InvalidInput
from instances.registrar import InstanceRecord
from link.enums.operation import Operation
from link.enums.state import ConnectionState
from link.events import EventType, SessionExpiredObserved
from link.reducer import TIMER_HEALTH_CHECK
from session.panel import LinkPanel
from session.registry import PanelRegistry
from session.store_link import LinkObserver, StoreLink

from fakes import FakeRegistrar, RecordingSleep, operator_session


def registrar_factory(registrar: FakeRegistrar):
    def _factory(_link: StoreLink) -> FakeRegistrar:
        return registrar
    return _factory


def drain_queue(observer: LinkObserver) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    while not observer.queue.empty():
        out.append(observer.queue.get_nowait())
    return out


async def opened_panel(registrar: FakeRegistrar) -> LinkPanel:
    panel = LinkPanel(store_id="s1", registrar_factory=registrar_factory(registrar), sleep=RecordingSleep())
    await panel.open(operator_session())
    await panel.settle()
    return panel


# ---------------------------------------------------------------------
# Panel
# ---------------------------------------------------------------------

@pytest.mark.asyncio
async def test_panel_stays_hidden_until_an_observer_is_visible():
    registrar = FakeRegistrar(
        record=InstanceRecord(instance_id="store_s1", status="open"),
        statuses=["open"],
    )
    panel = await opened_panel(registrar)

    assert panel.state.phase is ConnectionState.CONNECTED
    assert panel.state.visible is False
    assert panel.runtime.active_timers == frozenset()

    observer = await panel.attach_observer(visible=True)
    await panel.settle()

    assert panel.state.visible is True
    assert TIMER_HEALTH_CHECK in panel.runtime.active_timers
    first = drain_queue(observer)[0]
    assert first["type"] == "STATE"
    assert first["data"]["state"] == "CONNECTED"

    await panel.set_observer_visibility(observer.observer_id, False)
    assert panel.state.visible is False
    assert panel.runtime.active_timers == frozenset()

    await panel.close(reason="test")


@pytest.mark.asyncio
async def test_visibility_is_reference_counted():
    panel = await opened_panel(FakeRegistrar())

    a = await panel.attach_observer(visible=True)
    b = await panel.attach_observer(visible=True)
    await panel.set_observer_visibility(a.observer_id, False)
    assert panel.state.visible is True

    await panel.detach_observer(b.observer_id)
    assert panel.state.visible is False

    await panel.close(reason="test")


@pytest.mark.asyncio
async def test_request_pairing_rejects_missing_phone_before_dispatch():
    registrar = FakeRegistrar()
    panel = await opened_panel(registrar)

    with pytest.raises(InvalidInput):
        await panel.request_pairing("")

    assert registrar.count("create") == 0
    await panel.close(reason="test")


@pytest.mark.asyncio
async def test_json_pair_message_creates_instance():
    registrar = FakeRegistrar(statuses=["connecting"])
    panel = await opened_panel(registrar)
    observer = await panel.attach_observer(visible=True)

    result = await panel.on_json_message(
        observer.observer_id,
        json.dumps({"type": "PAIR", "phone_number": "+55 38 99999-9999"}),
    )
    await panel.settle()

    assert result.outbound_json == ()
    assert registrar.calls[1] == ("create", ("s1", "5538999999999"))
    assert panel.state.phase is ConnectionState.PAIRING_IN_PROGRESS
    assert panel.snapshot()["pairing_code"]

    await panel.close(reason="test")


@pytest.mark.asyncio
async def test_json_invalid_phone_answers_only_the_sender():
    panel = await opened_panel(FakeRegistrar())
    observer = await panel.attach_observer(visible=True)
    drain_queue(observer)

    result = await panel.on_json_message(observer.observer_id, json.dumps({"type": "PAIR", "phone_number": "12"}))

    assert len(result.outbound_json) == 1
    assert result.outbound_json[0]["type"] == "TOAST"
    assert result.outbound_json[0]["data"]["variant"] == "destructive"
    assert drain_queue(observer) == []

    await panel.close(reason="test")


@pytest.mark.asyncio
async def test_malformed_json_is_ignored():
    panel = await opened_panel(FakeRegistrar())

    result = await panel.on_json_message("obs_x", "{not json")

    assert result.outbound_json == ()
    await panel.close(reason="test")


@pytest.mark.asyncio
async def test_expired_session_is_resumed_by_a_new_one():
    registrar = FakeRegistrar()
    panel = LinkPanel(store_id="s1", registrar_factory=registrar_factory(registrar), sleep=RecordingSleep())
    await panel.open(operator_session(expires_at=1))
    await panel.settle()

    await panel.runtime.handle_event(
        SessionExpiredObserved(
            event_type=EventType.SESSION_EXPIRED,
            ts_ms=0,
            operation=Operation.LOOKUP,
            generation=panel.state.generation,
        )
    )
    assert panel.state.session_expired is True

    await panel.attach_session(operator_session(token="fresh"))
    await panel.settle()

    assert panel.state.session_expired is False
    assert panel.link.operator_session is not None
    assert panel.link.operator_session.access_token == "fresh"
    assert registrar.count("lookup") == 2

    await panel.close(reason="test")


# ---------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------

class IdleSleep:
    """Teardown sleep the test controls."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await self.gate.wait()


@pytest.mark.asyncio
async def test_registry_shares_one_panel_per_store():
    registrar = FakeRegistrar()
    registry = PanelRegistry(
        registrar_factory=registrar_factory(registrar),
        retain_s=30.0,
        sleep=IdleSleep(),
        runtime_sleep=RecordingSleep(),
    )

    p1, o1 = await registry.observe("s1", operator_session())
    p2, o2 = await registry.observe("s1", operator_session(user_id="user-2"))
    await p1.settle()

    assert p1 is p2
    assert o1.observer_id != o2.observer_id
    assert len(registry) == 1
    assert registrar.count("lookup") == 1

    await registry.shutdown_all()
    assert len(registry) == 0


@pytest.mark.asyncio
async def test_registry_tears_down_idle_panels():
    idle = IdleSleep()
    registry = PanelRegistry(
        registrar_factory=registrar_factory(FakeRegistrar()),
        retain_s=30.0,
        sleep=idle,
        runtime_sleep=RecordingSleep(),
    )

    panel, observer = await registry.observe("s1", operator_session())
    await registry.release("s1", observer.observer_id)
    await asyncio.sleep(0)
    assert idle.calls == [30.0]
    assert registry.get("s1") is panel

    idle.gate.set()
    for _ in range(50):
        if registry.get("s1") is None:
            break
        await asyncio.sleep(0)

    assert registry.get("s1") is None
    assert panel.state.closed is True


@pytest.mark.asyncio
async def test_new_observer_cancels_pending_teardown():
    idle = IdleSleep()
    registry = PanelRegistry(
        registrar_factory=registrar_factory(FakeRegistrar()),
        retain_s=30.0,
        sleep=idle,
        runtime_sleep=RecordingSleep(),
    )

    panel, observer = await registry.observe("s1", operator_session())
    await registry.release("s1", observer.observer_id)
    await registry.observe("s1", operator_session())

    idle.gate.set()
    for _ in range(10):
        await asyncio.sleep(0)

    assert idle.calls == []
    assert registry.get("s1") is panel
    await registry.shutdown_all()
