from __future__ import annotations

import json
import textwrap
from pathlib import Path
from typing import Any

import pytest

from homepi.devices.descriptors import DeviceDescriptor
from homepi.devices.registry import DeviceRegistry


def _write_yaml(path: Path, content: str) -> None:
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def _light(name: str) -> dict[str, Any]:
    return {
        "friendly_name": name,
        "type": "Router",
        "ieee_address": f"0x{name.encode().hex()}",
        "manufacturer": "IKEA of Sweden",
        "model_id": "TRADFRI bulb E27 CWS 806lm",
        "definition": {
            "model": "LED1924G9",
            "vendor": "IKEA",
            "exposes": [
                {
                    "type": "light",
                    "features": [
                        {"type": "binary", "name": "state"},
                        {"type": "numeric", "name": "brightness"},
                        {"type": "composite", "name": "color_xy"},
                    ],
                }
            ],
        },
    }


SNAPSHOT_ENTRIES: list[dict[str, Any]] = [
    {"friendly_name": "Coordinator", "type": "Coordinator", "ieee_address": "0x00"},
    _light("lamp1"),
    _light("kitchen_light"),
    {
        "friendly_name": "hallway_climate",
        "type": "EndDevice",
        "manufacturer": "LUMI",
        "model_id": "lumi.weather",
        "definition": {
            "model": "WSDCGQ11LM",
            "vendor": "Aqara",
            "exposes": [
                {"type": "numeric", "name": "temperature"},
                {"type": "numeric", "name": "humidity"},
                {"type": "numeric", "name": "linkquality"},
            ],
        },
    },
    {
        "friendly_name": "front_door",
        "type": "EndDevice",
        "definition": {
            "model": "MCCGQ11LM",
            "vendor": "Aqara",
            "exposes": [{"type": "binary", "name": "contact"}],
        },
    },
]


@pytest.fixture
def snapshot_payload() -> bytes:
    return json.dumps(SNAPSHOT_ENTRIES).encode("utf-8")


@pytest.fixture
def descriptors() -> list[DeviceDescriptor]:
    return [DeviceDescriptor.model_validate(entry) for entry in SNAPSHOT_ENTRIES]


@pytest.fixture
def registry(descriptors: list[DeviceDescriptor]) -> DeviceRegistry:
    registry = DeviceRegistry()
    registry.replace_from_snapshot(descriptors)
    return registry


@pytest.fixture
def sample_config_dir(tmp_path: Path) -> Path:
    """
    Provide a temporary configuration directory for tests.
    """

    config_dir = tmp_path / "config"
    config_dir.mkdir()
    log_file = tmp_path / "logs" / "homepi.log"
    _write_yaml(
        config_dir / "config.yaml",
        f"""
        mqtt:
          host: "broker.test"
          port: 1884
          base_topic: "/z2m/"
          reconnect_delay_seconds: 0.5

        ingestion:
          prune_missing: true

        control_api:
          host: "0.0.0.0"
          port: 3100
          serve_api: false
          pairing_seconds: 60

        websocket_gateway:
          port: 3101
          serve_http: false

        prometheus:
          enabled: false
          port: 9999

        bus:
          queue_size: 32
          telemetry_interval: 0.5
          health_interval: 1.0

        logging:
          file: "{log_file.as_posix()}"
          max_mb: 1
          backup_count: 1
        """,
    )
    _write_yaml(
        config_dir / "secrets.yaml",
        """
        mqtt:
          username: "bridge"
          password: "hunter2"
        """,
    )
    return config_dir
