"""
CLI entrypoint that boots the HomePi bridge.

Loads the Dynaconf configuration, creates the shared device registry, wires
the MQTT bridge, ingestion pipeline, HTTP/WebSocket surfaces and Prometheus
exporter onto one event bus and runs until interrupted.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import logging.handlers
import signal
from collections import OrderedDict
from collections.abc import Callable, Iterable, Sequence
from pathlib import Path

from .core.bus import EventBus
from .core.config import ConfigError, ConfigService, ConfigSnapshot
from .core.contracts import BaseModule
from .core.orchestrator import Orchestrator
from .devices.registry import DeviceRegistry
from .modules import ControlApi, EventIngestion, MqttBridge, PrometheusExporter, WebsocketGateway

LOGGER = logging.getLogger(__name__)
LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

ModuleFactory = Callable[[DeviceRegistry], BaseModule]


def _ensure_rotating_file_handler(
    log_file: Path,
    *,
    max_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """Attach a rotating file handler pointed at ``log_file`` if missing."""

    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        LOGGER.warning("Unable to create log directory %s: %s", log_file.parent, exc)
        return

    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.handlers.RotatingFileHandler):
            existing = getattr(handler, "baseFilename", None)
            if existing and Path(existing) == log_file.resolve():
                return

    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=max_mb * 1024 * 1024,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)


MODULE_REGISTRY: dict[str, ModuleFactory] = {
    "modules.bridge.mqtt": lambda _registry: MqttBridge(),
    "modules.process.event_ingestion": lambda registry: EventIngestion(registry=registry),
    "modules.dashboard.control_api": lambda registry: ControlApi(registry=registry),
    "modules.dashboard.websocket_gateway": lambda _registry: WebsocketGateway(),
    "modules.status.prometheus_exporter": lambda _registry: PrometheusExporter(),
}


MODULE_ALIASES: dict[str, str] = {
    "mqtt": "modules.bridge.mqtt",
    "ingestion": "modules.process.event_ingestion",
    "api": "modules.dashboard.control_api",
    "control-api": "modules.dashboard.control_api",
    "websocket": "modules.dashboard.websocket_gateway",
    "ws": "modules.dashboard.websocket_gateway",
    "prom": "modules.status.prometheus_exporter",
}

# Consumers first so nothing published by the broker connection is missed.
DEFAULT_MODULES: list[str] = [
    "modules.status.prometheus_exporter",
    "modules.dashboard.websocket_gateway",
    "modules.process.event_ingestion",
    "modules.dashboard.control_api",
    "modules.bridge.mqtt",
]


def resolve_module_name(label: str) -> str:
    """Return the fully qualified module identifier for CLI-friendly aliases."""

    normalised = label.strip().lower()
    return MODULE_ALIASES.get(normalised, label)


def build_module_sequence(
    extra_modules: Sequence[str] | None,
    skip_modules: Iterable[str] | None,
) -> list[str]:
    """
    Build the ordered, de-duplicated list of module identifiers to run.
    """

    resolved_extras = [resolve_module_name(name) for name in (extra_modules or [])]
    resolved_skip = {resolve_module_name(name) for name in (skip_modules or [])}
    unique: OrderedDict[str, None] = OrderedDict()
    for name in [*DEFAULT_MODULES, *resolved_extras]:
        if name in resolved_skip:
            continue
        if name not in MODULE_REGISTRY:
            raise ValueError(f"Unknown module '{name}'. Available: {sorted(MODULE_REGISTRY)}")
        unique.setdefault(name, None)
    return list(unique.keys())


async def build_orchestrator(
    snapshot: ConfigSnapshot,
    module_names: Sequence[str],
    *,
    registry: DeviceRegistry | None = None,
) -> Orchestrator:
    """Instantiate the requested modules around one shared registry."""

    registry = registry or DeviceRegistry()
    bus = EventBus(
        queue_size=snapshot.bus.queue_size,
        telemetry_interval=snapshot.bus.telemetry_interval,
    )
    orchestrator = Orchestrator(bus=bus, health_interval=snapshot.bus.health_interval)
    for name in module_names:
        module_config = snapshot.module_config(name)
        if not module_config.enabled:
            LOGGER.info("Config disabled for %s; skipping", name)
            continue
        await orchestrator.add_module(MODULE_REGISTRY[name](registry), module_config)
    if not orchestrator.modules:
        raise RuntimeError("No modules were registered; nothing to run.")
    return orchestrator


async def run_bridge(*, config_dir: Path | None, module_names: Sequence[str]) -> None:
    """Run the bridge until SIGINT/SIGTERM."""

    snapshot = ConfigService(config_dir=config_dir).snapshot
    if snapshot.logging.file is not None:
        _ensure_rotating_file_handler(
            snapshot.logging.file,
            max_mb=snapshot.logging.max_mb,
            backup_count=snapshot.logging.backup_count,
        )
    orchestrator = await build_orchestrator(snapshot, module_names)

    if snapshot.control_api.serve_api and not _is_loopback(snapshot.control_api.host):
        LOGGER.warning(
            "HomePi API is bound to %s and has no authentication; expose it only on trusted networks.",
            snapshot.control_api.host,
        )

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    await orchestrator.start()
    LOGGER.info("HomePi bridge running with %d modules. Press Ctrl+C to stop.", len(orchestrator.modules))
    try:
        await stop_event.wait()
    finally:
        await orchestrator.stop()


def _is_loopback(host: str) -> bool:
    return (host or "").strip() in ("127.0.0.1", "localhost", "::1")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _request_shutdown(sig_name: str) -> None:
        if not stop_event.is_set():
            LOGGER.info("Received %s, beginning graceful shutdown.", sig_name)
            stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_shutdown, sig.name)
        except NotImplementedError:  # Windows Proactor loop
            signal.signal(  # type: ignore[arg-type]
                sig,
                lambda signum, _frame, sig_name=sig.name: loop.call_soon_threadsafe(
                    _request_shutdown, sig_name or str(signum)
                ),
            )


def configure_logging(level: str) -> None:
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format=LOG_FORMAT)


def parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="HomePi Zigbee2MQTT bridge.")
    parser.add_argument(
        "--config-dir",
        type=Path,
        default=None,
        help="Directory that contains config.yaml/secrets.yaml (default: repo config/).",
    )
    parser.add_argument(
        "--module",
        dest="extra_modules",
        action="append",
        default=[],
        metavar="MODULE",
        help="Additional module to run (alias like 'ws' or full name).",
    )
    parser.add_argument(
        "--skip-module",
        dest="skip_modules",
        action="append",
        default=[],
        metavar="MODULE",
        help="Module to leave out (alias or full name).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO).",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)
    try:
        module_names = build_module_sequence(args.extra_modules, args.skip_modules)
        asyncio.run(run_bridge(config_dir=args.config_dir, module_names=module_names))
    except KeyboardInterrupt:
        LOGGER.info("Interrupted by user.")
        return 0
    except ConfigError as exc:
        LOGGER.error("Configuration failed: %s", exc)
        return 2
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 2
    except Exception:  # pragma: no cover - surfaced to operator
        LOGGER.exception("HomePi bridge crashed.")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())


__all__ = ["build_module_sequence", "build_orchestrator", "main", "run_bridge"]
