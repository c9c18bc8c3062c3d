from pathlib import Path

import pytest

from homepi.core.config import ConfigService
from homepi.modules import ControlApi, EventIngestion
from homepi.orchestrator_entrypoint import (
    DEFAULT_MODULES,
    build_module_sequence,
    build_orchestrator,
    main,
)


def test_build_module_sequence_respects_skip_and_extras() -> None:
    modules = build_module_sequence(
        extra_modules=["ws", "modules.bridge.mqtt"],
        skip_modules=["prom", "modules.dashboard.control_api"],
    )

    assert "modules.status.prometheus_exporter" not in modules
    assert "modules.dashboard.control_api" not in modules
    assert modules.count("modules.dashboard.websocket_gateway") == 1
    assert modules.count("modules.bridge.mqtt") == 1
    assert modules[-1] == "modules.bridge.mqtt"


def test_build_module_sequence_unknown_module_raises() -> None:
    with pytest.raises(ValueError):
        build_module_sequence(extra_modules=["nonexistent"], skip_modules=None)


@pytest.mark.asyncio
async def test_build_orchestrator_shares_one_registry(sample_config_dir: Path) -> None:
    snapshot = ConfigService(config_dir=sample_config_dir).snapshot

    orchestrator = await build_orchestrator(snapshot, DEFAULT_MODULES)

    names = [module.name for module in orchestrator.modules]
    # Prometheus is disabled in the sample configuration.
    assert "modules.status.prometheus_exporter" not in names
    ingestion = next(m for m in orchestrator.modules if isinstance(m, EventIngestion))
    api = next(m for m in orchestrator.modules if isinstance(m, ControlApi))
    assert ingestion.registry is api.registry


def test_main_returns_error_code_for_missing_config(tmp_path: Path) -> None:
    assert main(["--config-dir", str(tmp_path / "missing")]) == 2


def test_main_returns_error_code_for_unknown_module() -> None:
    assert main(["--module", "nonexistent"]) == 2
