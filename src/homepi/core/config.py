"""
Dynaconf-powered configuration loader with Pydantic validation.

Settings are read from ``config.yaml`` and ``secrets.yaml`` in a config
directory, overridable through ``HOMEPI_*`` environment variables, validated
into a ``ConfigSnapshot`` and turned into per-module ``ModuleConfig`` objects.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .contracts import BaseModule, ModuleConfig


def _section(raw: dict[str, Any], key: str) -> dict[str, Any]:
    """Case-insensitive dictionary lookup helper."""
    value = raw.get(key) or raw.get(key.upper()) or raw.get(key.lower())
    if isinstance(value, dict):
        return value
    return {}


CONFIG_FILENAMES = ("config.yaml", "secrets.yaml")
_REPO_ROOT = Path(__file__).resolve().parents[3]
DEFAULT_CONFIG_DIR = _REPO_ROOT / "config"


class ConfigError(RuntimeError):
    """Raised when configuration files are missing or invalid."""


class TlsSettings(BaseModel):
    """Reusable TLS configuration for HTTP surfaces."""

    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=False)
    certfile: str | None = Field(default=None)
    keyfile: str | None = Field(default=None)


class MqttSettings(BaseModel):
    """Broker connection and Zigbee2MQTT topic layout."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="localhost")
    port: int = Field(default=1883, ge=1, le=65535)
    username: str | None = Field(default=None)
    password: str | None = Field(default=None)
    client_id: str | None = Field(default=None)
    base_topic: str = Field(default="zigbee2mqtt")
    reconnect_delay_seconds: float = Field(default=5.0)
    inbound_topic: str = Field(default="mqtt.inbound")
    outbound_topic: str = Field(default="mqtt.outbound")

    @field_validator("base_topic")
    @classmethod
    def _strip_slashes(cls, value: str) -> str:
        value = value.strip("/")
        if not value or "/" in value:
            raise ValueError("base_topic must be a single non-empty topic segment")
        return value

    @field_validator("reconnect_delay_seconds")
    @classmethod
    def _positive_delay(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("reconnect_delay_seconds must be positive")
        return value


class IngestionSettings(BaseModel):
    """Routing of bus messages into the device registry."""

    model_config = ConfigDict(extra="ignore")

    prune_missing: bool = Field(
        default=False,
        description="Drop devices that a later snapshot no longer lists.",
    )
    state_topic: str = Field(default="devices.state.changed")
    failure_topic: str = Field(default="status.ingestion.failure")
    stats_topic: str = Field(default="status.registry")


class ControlApiSettings(BaseModel):
    """Control API (FastAPI) configuration."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3000)
    serve_api: bool = Field(default=True)
    pairing_seconds: int = Field(default=120, gt=0)
    tls: TlsSettings = Field(default_factory=TlsSettings)


class WebsocketGatewaySettings(BaseModel):
    """Realtime observer surface configuration."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="127.0.0.1")
    port: int = Field(default=3001)
    serve_http: bool = Field(default=True)
    max_pending: int = Field(
        default=16,
        gt=0,
        description="Messages an observer may lag behind before it is dropped.",
    )
    tls: TlsSettings = Field(default_factory=TlsSettings)


class PrometheusSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    enabled: bool = Field(default=True)
    addr: str = Field(default="127.0.0.1")
    port: int = Field(default=9093)


class BusSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    queue_size: int = Field(default=256, gt=0)
    telemetry_interval: float = Field(default=5.0, gt=0.0)
    health_interval: float = Field(default=10.0, gt=0.0)


class LoggingSettings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    file: Path | None = Field(default_factory=lambda: _REPO_ROOT / "logs" / "homepi.log")
    max_mb: int = Field(default=10, gt=0)
    backup_count: int = Field(default=3, ge=0)


class ConfigSnapshot(BaseModel):
    """
    Validated, strongly typed view of the merged configuration.

    Provides helpers to derive per-module configuration dictionaries.
    """

    model_config = ConfigDict(extra="ignore")

    mqtt: MqttSettings = Field(default_factory=MqttSettings)
    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)
    control_api: ControlApiSettings = Field(default_factory=ControlApiSettings)
    websocket_gateway: WebsocketGatewaySettings = Field(default_factory=WebsocketGatewaySettings)
    prometheus: PrometheusSettings = Field(default_factory=PrometheusSettings)
    bus: BusSettings = Field(default_factory=BusSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def module_config(self, module_name: str) -> ModuleConfig:
        """Produce a ModuleConfig tailored for the requested module."""

        mqtt = self.mqtt
        ingestion = self.ingestion

        def _mqtt_bridge_config() -> ModuleConfig:
            return ModuleConfig(
                options={
                    "host": mqtt.host,
                    "port": mqtt.port,
                    "username": mqtt.username,
                    "password": mqtt.password,
                    "client_id": mqtt.client_id,
                    "base_topic": mqtt.base_topic,
                    "reconnect_delay_seconds": mqtt.reconnect_delay_seconds,
                    "inbound_topic": mqtt.inbound_topic,
                    "outbound_topic": mqtt.outbound_topic,
                }
            )

        def _event_ingestion_config() -> ModuleConfig:
            return ModuleConfig(
                options={
                    "base_topic": mqtt.base_topic,
                    "input_topic": mqtt.inbound_topic,
                    "state_topic": ingestion.state_topic,
                    "failure_topic": ingestion.failure_topic,
                    "stats_topic": ingestion.stats_topic,
                    "prune_missing": ingestion.prune_missing,
                }
            )

        def _control_api_config() -> ModuleConfig:
            api = self.control_api
            return ModuleConfig(
                options={
                    "host": api.host,
                    "port": api.port,
                    "serve_api": api.serve_api,
                    "base_topic": mqtt.base_topic,
                    "outbound_topic": mqtt.outbound_topic,
                    "state_topic": ingestion.state_topic,
                    "pairing_seconds": api.pairing_seconds,
                    "tls_enabled": api.tls.enabled,
                    "tls_certfile": api.tls.certfile,
                    "tls_keyfile": api.tls.keyfile,
                }
            )

        def _websocket_gateway_config() -> ModuleConfig:
            ws = self.websocket_gateway
            return ModuleConfig(
                options={
                    "host": ws.host,
                    "port": ws.port,
                    "serve_http": ws.serve_http,
                    "max_pending": ws.max_pending,
                    "state_topic": ingestion.state_topic,
                    "tls_enabled": ws.tls.enabled,
                    "tls_certfile": ws.tls.certfile,
                    "tls_keyfile": ws.tls.keyfile,
                }
            )

        def _prometheus_exporter_config() -> ModuleConfig:
            prom = self.prometheus
            return ModuleConfig(
                enabled=prom.enabled,
                options={
                    "addr": prom.addr,
                    "port": prom.port,
                    "failure_topic": ingestion.failure_topic,
                    "stats_topic": ingestion.stats_topic,
                },
            )

        builders: dict[str, Callable[[], ModuleConfig]] = {
            "modules.bridge.mqtt": _mqtt_bridge_config,
            "modules.process.event_ingestion": _event_ingestion_config,
            "modules.dashboard.control_api": _control_api_config,
            "modules.dashboard.websocket_gateway": _websocket_gateway_config,
            "modules.status.prometheus_exporter": _prometheus_exporter_config,
        }

        try:
            builder = builders[module_name]
        except KeyError as exc:
            raise KeyError(f"No module configuration defined for {module_name}") from exc
        return builder()


class ConfigService:
    """
    Runtime facade for loading, validating, and distributing configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        if settings is None and not existing_files:
            raise ConfigError(
                f"No configuration files found in {self._config_dir}. "
                "Expected at least config.yaml."
            )

        self._settings = settings or Dynaconf(
            envvar_prefix="HOMEPI",
            settings_files=existing_files,
            load_dotenv=True,
            environments=False,
            # secrets.yaml only adds credentials to sections config.yaml declares.
            merge_enabled=True,
        )
        self._snapshot = self._build_snapshot()

    @property
    def snapshot(self) -> ConfigSnapshot:
        """Latest validated configuration snapshot."""
        return self._snapshot

    def refresh(self) -> ConfigSnapshot:
        """Reload configuration files and rebuild the snapshot."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def module_config_for(self, module: str | type[BaseModule] | BaseModule) -> ModuleConfig:
        """Accepts module names, classes, or instances."""
        if isinstance(module, str):
            module_name = module
        else:
            module_name = module.name
        return self._snapshot.module_config(module_name)

    def _build_snapshot(self) -> ConfigSnapshot:
        raw = self._settings.as_dict()
        data = {
            key: _section(raw, key)
            for key in (
                "mqtt",
                "ingestion",
                "control_api",
                "websocket_gateway",
                "prometheus",
                "bus",
                "logging",
            )
        }
        try:
            return ConfigSnapshot.model_validate(data)
        except ValidationError as exc:
            raise ConfigError("Configuration validation failed") from exc


__all__ = [
    "BusSettings",
    "ConfigError",
    "ConfigService",
    "ConfigSnapshot",
    "ControlApiSettings",
    "IngestionSettings",
    "LoggingSettings",
    "MqttSettings",
    "PrometheusSettings",
    "TlsSettings",
    "WebsocketGatewaySettings",
]
