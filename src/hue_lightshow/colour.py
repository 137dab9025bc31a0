"""Conversion from RGB to the CIE xy chromaticity used by the bridge.

Reference: https://gist.github.com/popcorn245/30afa0f98eea1c2fd34d
"""

from __future__ import annotations

from typing import Tuple

_GAMMA_THRESHOLD = 0.04045

# Wide gamut D65 conversion matrix, rows produce X, Y and Z.
_WIDE_RGB_D65_TO_XYZ: Tuple[Tuple[float, float, float], ...] = (
    (0.649926, 0.103455, 0.197109),
    (0.234327, 0.743075, 0.022598),
    (0.000000, 0.053077, 1.035763),
)


def gamma_correction(value: float) -> float:
    """Apply sRGB companding to a normalised channel value."""

    if value > _GAMMA_THRESHOLD:
        return ((value + 0.055) / 1.055) ** 2.4
    return value / 12.92


def _ensure_byte(value: int, description: str) -> int:
    try:
        integer = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"{description} must be an integer") from exc
    if not 0 <= integer <= 0xFF:
        raise ValueError(f"{description} must fit in a single byte (0-255).")
    return integer


def rgb_to_cie(red: int, green: int, blue: int) -> Tuple[float, float]:
    """Return the CIE 1931 ``(x, y)`` chromaticity for an RGB colour.

    Pure black has no chromaticity; ``(0.0, 0.0)`` is returned for it.
    """

    corrected = [
        gamma_correction(_ensure_byte(channel, name) / 255.0)
        for channel, name in ((red, "red"), (green, "green"), (blue, "blue"))
    ]
    x_val, y_val, z_val = (
        sum(weight * channel for weight, channel in zip(row, corrected))
        for row in _WIDE_RGB_D65_TO_XYZ
    )
    total = x_val + y_val + z_val
    if total == 0:
        return 0.0, 0.0
    return x_val / total, y_val / total


__all__ = ["gamma_correction", "rgb_to_cie"]
