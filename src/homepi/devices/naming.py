"""
Conversions between Zigbee2MQTT friendly names and display names.

``to_display_name`` and ``to_identifier`` are not inverses: case and
punctuation are lost on the way to an identifier.
"""

from __future__ import annotations

import re

_WORD_START = re.compile(r"(^|\s)(\S)")
_WHITESPACE_RUN = re.compile(r"\s+")


def to_display_name(device_id: str) -> str:
    """``"living_room_bulb_1"`` -> ``"Living Room Bulb 1"``."""
    spaced = device_id.replace("_", " ")
    return _WORD_START.sub(lambda match: match.group(1) + match.group(2).upper(), spaced)


def to_identifier(name: str) -> str:
    """``"Pantry Light"`` -> ``"pantry_light"``."""
    return _WHITESPACE_RUN.sub("_", name.lower())


__all__ = ["to_display_name", "to_identifier"]
