"""Device registry synchronization engine."""

from .classifier import DeviceCategory, classify
from .color import NEUTRAL_WHITE, Chromaticity, rgb_to_xy
from .commands import CommandTranslator, DeviceCommand, RgbColor, translate_command
from .descriptors import DeviceDescriptor, parse_snapshot
from .errors import DeviceNotFoundError, InvalidArgumentError, ParseFailure, RegistryError
from .naming import to_display_name, to_identifier
from .records import DeviceAttributes, DeviceRecord, ParsedState, parse_state
from .registry import DeviceRegistry, SnapshotResult
from .topics import BridgeTopics

__all__ = [
    "NEUTRAL_WHITE",
    "BridgeTopics",
    "Chromaticity",
    "CommandTranslator",
    "DeviceAttributes",
    "DeviceCategory",
    "DeviceCommand",
    "DeviceDescriptor",
    "DeviceNotFoundError",
    "DeviceRecord",
    "DeviceRegistry",
    "InvalidArgumentError",
    "ParseFailure",
    "ParsedState",
    "RegistryError",
    "RgbColor",
    "SnapshotResult",
    "classify",
    "parse_snapshot",
    "parse_state",
    "rgb_to_xy",
    "to_display_name",
    "to_identifier",
]
