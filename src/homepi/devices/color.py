"""
RGB to CIE 1931 xy conversion for color-capable lights.

Uses the sRGB gamma expansion followed by the wide-gamut D65 matrix that
Hue-compatible bulbs expect.
"""

from __future__ import annotations

from typing import NamedTuple

from .errors import InvalidArgumentError


class Chromaticity(NamedTuple):
    x: float
    y: float

    def as_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y}


NEUTRAL_WHITE = Chromaticity(0.3127, 0.3290)

_GAMMA_THRESHOLD = 0.04045

# Rows produce X, Y, Z from linear r, g, b.
_RGB_TO_XYZ = (
    (0.664511, 0.154324, 0.162028),
    (0.283881, 0.668433, 0.047685),
    (0.000088, 0.072310, 0.986039),
)


def _expand_gamma(channel: float) -> float:
    if channel > _GAMMA_THRESHOLD:
        return ((channel + 0.055) / 1.055) ** 2.4
    return channel / 12.92


def rgb_to_xy(red: int, green: int, blue: int) -> Chromaticity:
    """Convert an 8-bit RGB triplet to xy, rounded to 4 decimals.

    Pure black has no chromaticity; it maps to ``NEUTRAL_WHITE``.
    """
    for channel in (red, green, blue):
        if not 0 <= channel <= 255:
            raise InvalidArgumentError(f"RGB channel out of range 0-255: {channel}")
    linear = [_expand_gamma(channel / 255) for channel in (red, green, blue)]
    x_, y_, z_ = (sum(weight * value for weight, value in zip(row, linear)) for row in _RGB_TO_XYZ)
    total = x_ + y_ + z_
    if total == 0:
        return NEUTRAL_WHITE
    return Chromaticity(round(x_ / total, 4), round(y_ / total, 4))


__all__ = ["NEUTRAL_WHITE", "Chromaticity", "rgb_to_xy"]
