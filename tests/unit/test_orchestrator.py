import asyncio

import pytest

from homepi.core.bus import EventBus
from homepi.core.contracts import BaseModule, HealthStatus, HealthSummary, ModuleConfig
from homepi.core.orchestrator import Orchestrator


class RecordingModule(BaseModule):
    def __init__(self, name: str, log: list[str], status: str = "healthy") -> None:
        super().__init__()
        self.name = name
        self._log = log
        self._status = status

    async def start(self) -> None:
        self._log.append(f"start:{self.name}")

    async def stop(self) -> None:
        self._log.append(f"stop:{self.name}")

    async def health(self) -> HealthStatus:
        return HealthStatus(status=self._status)


@pytest.mark.asyncio
async def test_modules_start_in_order_and_stop_in_reverse() -> None:
    log: list[str] = []
    orchestrator = Orchestrator(
        bus=EventBus(telemetry_enabled=False), publish_health=False
    )
    await orchestrator.add_module(RecordingModule("a", log))
    await orchestrator.add_module(RecordingModule("b", log), ModuleConfig(options={"x": 1}))

    await orchestrator.start()
    assert orchestrator.bus.running
    await orchestrator.stop()

    assert log == ["start:a", "start:b", "stop:b", "stop:a"]
    assert not orchestrator.bus.running


@pytest.mark.asyncio
async def test_health_summary_reports_worst_status() -> None:
    log: list[str] = []
    orchestrator = Orchestrator(bus=EventBus(telemetry_enabled=False), health_interval=0.01)
    await orchestrator.add_module(RecordingModule("ok", log))
    await orchestrator.add_module(RecordingModule("slow", log, status="degraded"))

    summaries: list[HealthSummary] = []
    received = asyncio.Event()

    async def handler(topic: str, payload: HealthSummary) -> None:
        summaries.append(payload)
        received.set()

    orchestrator.bus.subscribe("status.health.summary", handler)
    await orchestrator.start()
    await asyncio.wait_for(received.wait(), timeout=0.5)
    await orchestrator.stop()

    assert summaries[0].status == "degraded"
    assert set(summaries[0].modules) == {"ok", "slow"}
