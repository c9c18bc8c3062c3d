import asyncio

import httpx
import pytest

from homepi.core.bus import EventBus
from homepi.core.contracts import DeviceStateChanged, ModuleConfig, OutboundMessage
from homepi.devices.registry import DeviceRegistry
from homepi.modules.dashboard.control_api import ControlApi


async def _started_api(bus: EventBus, registry: DeviceRegistry) -> ControlApi:
    module = ControlApi(registry=registry)
    module.set_bus(bus)
    await module.configure(ModuleConfig(options={"serve_api": False}))
    await module.start()
    return module


def _client(module: ControlApi) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=module.app), base_url="http://test")


@pytest.mark.asyncio
async def test_queries_read_the_registry(registry: DeviceRegistry) -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_api(bus, registry)

    async with _client(module) as client:
        health = await client.get("/health")
        listing = await client.get("/devices")
        lamp = await client.get("/devices/lamp1")
        missing = await client.get("/devices/ghost")

    await module.stop()
    await bus.stop()

    assert health.json() == {"status": "ok", "devices": 4}
    assert {device["id"] for device in listing.json()} == {
        "lamp1",
        "kitchen_light",
        "hallway_climate",
        "front_door",
    }
    assert lamp.status_code == 200
    assert lamp.json()["name"] == "Lamp1"
    assert lamp.json()["brightness"] == 254
    assert missing.status_code == 404
    assert missing.json()["detail"] == "Device not found"


@pytest.mark.asyncio
async def test_command_is_translated_and_published(registry: DeviceRegistry) -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_api(bus, registry)

    outbound: list[OutboundMessage] = []
    sent = asyncio.Event()

    async def handler(topic: str, payload: OutboundMessage) -> None:
        outbound.append(payload)
        sent.set()

    bus.subscribe("mqtt.outbound", handler)

    async with _client(module) as client:
        response = await client.post(
            "/devices/lamp1/command",
            json={"state": "ON", "brightness": 50, "color": {"r": 255, "g": 0, "b": 0}},
        )
        await asyncio.wait_for(sent.wait(), timeout=0.2)
        unknown = await client.post("/devices/ghost/command", json={"state": "ON"})
        invalid = await client.post("/devices/lamp1/command", json={"brightness": 150})

    await module.stop()
    await bus.stop()

    expected = {"state": "ON", "brightness": 127, "color": {"x": 0.7006, "y": 0.2993}}
    assert response.status_code == 202
    assert response.json() == {"status": "sent", "command": expected}
    assert outbound[0].topic == "zigbee2mqtt/lamp1/set"
    assert outbound[0].payload == expected
    assert unknown.status_code == 404
    assert invalid.status_code == 422
    assert len(outbound) == 1
    # Commands are not applied locally; only a state report changes the record.
    assert registry.require("lamp1").attributes.state == "OFF"


@pytest.mark.asyncio
async def test_rename_updates_registry_and_notifies(registry: DeviceRegistry) -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = await _started_api(bus, registry)

    outbound: list[OutboundMessage] = []
    changes: list[DeviceStateChanged] = []
    done = asyncio.Event()

    async def on_outbound(topic: str, payload: OutboundMessage) -> None:
        outbound.append(payload)

    async def on_change(topic: str, payload: DeviceStateChanged) -> None:
        changes.append(payload)
        done.set()

    bus.subscribe("mqtt.outbound", on_outbound)
    bus.subscribe("devices.state.changed", on_change)

    async with _client(module) as client:
        response = await client.post(
            "/devices/kitchen_light/rename", json={"name": "Pantry Light"}
        )
        await asyncio.wait_for(done.wait(), timeout=0.2)
        blank = await client.post("/devices/lamp1/rename", json={"name": "  "})
        missing_name = await client.post("/devices/lamp1/rename", json={})
        taken = await client.post("/devices/pantry_light/rename", json={"name": "Lamp1"})
        unknown = await client.post("/devices/ghost/rename", json={"name": "X"})
        slashed = await client.post("/devices/lamp1/rename", json={"name": "Living/Room"})
        renamed = await client.get("/devices/pantry_light")

    await module.stop()
    await bus.stop()

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "sent"
    assert body["new_id"] == "pantry_light"
    assert body["device"]["name"] == "Pantry Light"
    assert outbound[0].topic == "zigbee2mqtt/bridge/request/device/rename"
    assert outbound[0].payload == {"from": "kitchen_light", "to": "pantry_light"}
    assert changes[0].device_id == "pantry_light"
    assert changes[0].previous_id == "kitchen_light"
    assert blank.status_code == 400
    assert blank.json()["detail"] == "Name required"
    assert missing_name.status_code == 400
    assert taken.status_code == 400
    assert slashed.status_code == 400
    assert unknown.status_code == 404
    assert renamed.json()["name"] == "Pantry Light"
    assert "kitchen_light" not in registry


@pytest.mark.asyncio
async def test_remove_and_pairing_requests(registry: DeviceRegistry) -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()
    module = ControlApi(registry=registry)
    module.set_bus(bus)
    await module.configure(
        ModuleConfig(options={"serve_api": False, "base_topic": "z2m", "pairing_seconds": 60})
    )
    await module.start()

    outbound: list[OutboundMessage] = []

    async def handler(topic: str, payload: OutboundMessage) -> None:
        outbound.append(payload)

    bus.subscribe("mqtt.outbound", handler)

    async with _client(module) as client:
        removed = await client.delete("/devices/front_door")
        removed_again = await client.delete("/devices/front_door")
        start = await client.post("/pairing/start")
        stop = await client.post("/pairing/stop")
    await asyncio.sleep(0.05)

    await module.stop()
    await bus.stop()

    assert removed.status_code == 202
    assert removed.json() == {"status": "sent"}
    assert removed_again.status_code == 404
    assert "front_door" not in registry
    assert start.status_code == 202
    assert start.json() == {"status": "sent", "duration": 60}
    assert stop.json() == {"status": "sent"}
    assert [(m.topic, m.payload) for m in outbound] == [
        ("z2m/bridge/request/device/remove", {"id": "front_door", "force": False}),
        ("z2m/bridge/request/permit_join", {"value": True, "time": 60}),
        ("z2m/bridge/request/permit_join", {"value": False}),
    ]


@pytest.mark.asyncio
async def test_control_api_serves_via_uvicorn_factory(registry: DeviceRegistry) -> None:
    bus = EventBus(telemetry_enabled=False)
    await bus.start()

    created: dict = {}

    class FakeServer:
        def __init__(self, config) -> None:
            self.config = config
            self.should_exit = False

        async def serve(self) -> None:
            while not self.should_exit:
                await asyncio.sleep(0.01)

    def config_factory(**kwargs):
        created.update(kwargs)
        return kwargs

    module = ControlApi(registry=registry, config_factory=config_factory, server_factory=FakeServer)
    module.set_bus(bus)
    await module.configure(ModuleConfig(options={"host": "0.0.0.0", "port": 3100}))
    await module.start()
    await module.stop()
    await bus.stop()

    assert created["host"] == "0.0.0.0"
    assert created["port"] == 3100
    assert created["app"] is module.app


@pytest.mark.asyncio
async def test_tls_requires_cert_and_key() -> None:
    module = ControlApi()
    with pytest.raises(ValueError):
        await module.configure(ModuleConfig(options={"tls_enabled": True}))
