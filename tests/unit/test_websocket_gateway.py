import asyncio
import json

import httpx
import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketState

from homepi.core.bus import EventBus
from homepi.core.contracts import DeviceStateChanged, ModuleConfig
from homepi.modules.dashboard.websocket_gateway import WebsocketGateway


class FakeObserver:
    def __init__(
        self,
        *,
        open_: bool = True,
        fail: bool = False,
        first_send_delay: float = 0.0,
        expected: int = 1,
    ) -> None:
        state = WebSocketState.CONNECTED if open_ else WebSocketState.DISCONNECTED
        self.client_state = state
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.first_send_delay = first_send_delay
        self.expected = expected
        self.messages: list[str] = []
        self.received = asyncio.Event()

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise RuntimeError("socket closed mid-send")
        if not self.messages and self.first_send_delay:
            await asyncio.sleep(self.first_send_delay)
        self.messages.append(data)
        if len(self.messages) >= self.expected:
            self.received.set()

    def states(self) -> list[str]:
        return [json.loads(message)["state"]["state"] for message in self.messages]


async def _started_gateway(bus: EventBus, options: dict | None = None) -> WebsocketGateway:
    module = WebsocketGateway()
    module.set_bus(bus)
    await module.configure(ModuleConfig(options={"serve_http": False, **(options or {})}))
    await module.start()
    return module


@pytest.mark.asyncio
async def test_state_changes_reach_every_open_observer() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)

    first, second = FakeObserver(), FakeObserver()
    module.attach(first)
    module.attach(second)

    await bus.publish(
        "devices.state.changed",
        DeviceStateChanged(device_id="lamp1", state={"id": "lamp1", "state": "ON"}),
    )
    await asyncio.wait_for(first.received.wait(), timeout=0.2)
    await asyncio.wait_for(second.received.wait(), timeout=0.2)

    await module.stop()
    await bus.stop()

    message = json.loads(first.messages[0])
    assert message == {"deviceId": "lamp1", "state": {"id": "lamp1", "state": "ON"}}
    assert second.messages == first.messages


@pytest.mark.asyncio
async def test_slow_observer_keeps_per_device_order() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)

    observers = [FakeObserver(first_send_delay=0.05, expected=2) for _ in range(2)]
    for observer in observers:
        module.attach(observer)

    for state in ("ON", "OFF"):
        await bus.publish(
            "devices.state.changed",
            DeviceStateChanged(device_id="lamp1", state={"id": "lamp1", "state": state}),
        )
    for observer in observers:
        await asyncio.wait_for(observer.received.wait(), timeout=0.5)

    await module.stop()
    await bus.stop()

    assert [observer.states() for observer in observers] == [["ON", "OFF"], ["ON", "OFF"]]


@pytest.mark.asyncio
async def test_slow_observer_does_not_delay_others() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)

    slow = FakeObserver(first_send_delay=0.3)
    fast = FakeObserver()
    module.attach(slow)
    module.attach(fast)

    await bus.publish(
        "devices.state.changed",
        DeviceStateChanged(device_id="lamp1", state={"id": "lamp1", "state": "ON"}),
    )
    await asyncio.wait_for(fast.received.wait(), timeout=0.1)
    slow_pending = slow.messages == []

    await module.stop()
    await bus.stop()

    assert slow_pending
    assert fast.states() == ["ON"]


@pytest.mark.asyncio
async def test_observer_too_far_behind_is_dropped() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus, {"max_pending": 1})

    stuck = FakeObserver(first_send_delay=5.0)
    module.attach(stuck)

    accepted = [module.broadcast(f'{{"n": {n}}}') for n in range(2)]
    health = await module.health()

    await module.stop()
    await bus.stop()

    assert accepted == [1, 0]
    assert health.details["observers"] == 0
    assert health.details["skipped_total"] == 1


@pytest.mark.asyncio
async def test_closed_and_failing_observers_are_dropped() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)

    healthy = FakeObserver()
    closed = FakeObserver(open_=False)
    failing = FakeObserver(fail=True)
    for observer in (healthy, closed, failing):
        module.attach(observer)

    queued = module.broadcast('{"deviceId": "lamp1", "state": {}}')
    await asyncio.wait_for(healthy.received.wait(), timeout=0.2)
    await asyncio.sleep(0.02)
    health = await module.health()

    await module.stop()
    await bus.stop()

    assert queued == 2
    assert healthy.messages == ['{"deviceId": "lamp1", "state": {}}']
    assert closed.messages == []
    assert health.details["observers"] == 1
    assert health.details["delivered_total"] == 1
    assert health.details["skipped_total"] == 2


@pytest.mark.asyncio
async def test_late_observer_gets_no_replay() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)

    early = FakeObserver()
    module.attach(early)
    await bus.publish("devices.state.changed", DeviceStateChanged(device_id="lamp1"))
    await asyncio.wait_for(early.received.wait(), timeout=0.2)

    late = FakeObserver()
    module.attach(late)
    await asyncio.sleep(0.02)
    module.detach(early)
    remaining = module.observer_count

    await module.stop()
    await bus.stop()

    assert late.messages == []
    assert remaining == 1
    assert module.observer_count == 0


@pytest.mark.asyncio
async def test_health_endpoint_reports_observers() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)
    module.attach(FakeObserver())

    transport = httpx.ASGITransport(app=module.app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    await module.stop()
    await bus.stop()

    assert response.json() == {"status": "ok", "observers": 1}


@pytest.mark.asyncio
async def test_binary_frames_are_ignored_and_disconnect_detaches() -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_gateway(bus)

    with TestClient(module.app) as client:
        with client.websocket_connect("/ws") as websocket:
            websocket.send_bytes(b"\x00\x01")
            websocket.send_text("ping")
    remaining = module.observer_count

    await module.stop()
    await bus.stop()

    assert remaining == 0
