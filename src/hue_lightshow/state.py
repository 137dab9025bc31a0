"""Light state value type and linear interpolation between states."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Sequence, Tuple

from .colour import _ensure_byte, rgb_to_cie

_RECORD_PREFIX = b"\x00\x00"
_FIXED_POINT_SCALE = 0xFFFF
_VALUES = struct.Struct(">HHH")


class ColourInterpolation(str, Enum):
    """How colour channels are interpolated by :meth:`State.steps_to`."""

    #: Integer per-step delta truncated toward zero. Low step counts produce
    #: visibly chunky colour steps and intermediate colours may stop short of
    #: the target until the final state.
    STEPPED = "stepped"
    #: Each intermediate channel is rounded from the exact linear position.
    SMOOTH = "smooth"


def _truncating_div(numerator: int, denominator: int) -> int:
    quotient = abs(numerator) // abs(denominator)
    if (numerator < 0) != (denominator < 0):
        return -quotient
    return quotient


def _fixed_point(value: float) -> int:
    return int(value * _FIXED_POINT_SCALE)


@dataclass(frozen=True)
class State:
    """Commanded appearance of a light: an RGB colour and a brightness."""

    colour: Tuple[int, int, int] = (0, 0, 0)
    brightness: float = 0.0

    def __post_init__(self) -> None:
        if len(self.colour) != 3:
            raise ValueError("A colour requires exactly three values (red, green, blue).")
        colour = tuple(
            _ensure_byte(value, "colour channel") for value in self.colour
        )
        object.__setattr__(self, "colour", colour)
        brightness = float(self.brightness)
        if not 0.0 <= brightness <= 1.0:
            raise ValueError("brightness must be within 0-1.")
        object.__setattr__(self, "brightness", brightness)

    @property
    def on(self) -> bool:
        """Return ``True`` when the light should be lit.

        A black colour is reported as off even with a positive brightness.
        """

        return self.brightness > 0 and self.colour != (0, 0, 0)

    def cie(self) -> Tuple[float, float]:
        return rgb_to_cie(*self.colour)

    def encode(self, lights: Iterable[int]) -> bytes:
        """Return the stream records commanding *lights* to this state.

        Each light yields nine bytes: two reserved zero bytes, the light id,
        then x, y and brightness as big-endian 16-bit fixed point values.
        """

        x_val, y_val = self.cie()
        values = _VALUES.pack(
            _fixed_point(x_val), _fixed_point(y_val), _fixed_point(self.brightness)
        )
        records = bytearray()
        for light in lights:
            records += _RECORD_PREFIX
            records.append(_ensure_byte(light, "light id"))
            records += values
        return bytes(records)

    def steps_to(
        self,
        steps: int,
        target: "State",
        interpolation: ColourInterpolation = ColourInterpolation.STEPPED,
    ) -> List["State"]:
        """Return ``steps + 1`` states moving linearly from this state to *target*.

        The first entry is this state and the last is *target*. With zero steps
        only *target* is returned.
        """

        if steps < 0:
            raise ValueError("steps cannot be negative.")
        if steps == 0:
            return [target]

        states = [self]
        states.extend(self._intermediate(steps, target, ColourInterpolation(interpolation)))
        states.append(target)
        return states

    def _intermediate(
        self, steps: int, target: "State", interpolation: ColourInterpolation
    ) -> Iterator["State"]:
        brightness_delta = -((self.brightness - target.brightness) / steps)
        start, end = self.colour, target.colour
        colour_deltas = [-_truncating_div(a - b, steps) for a, b in zip(start, end)]

        for index in range(1, steps):
            if interpolation is ColourInterpolation.SMOOTH:
                colour = _lerp_colour(start, end, index / steps)
            else:
                colour = tuple(a + delta * index for a, delta in zip(start, colour_deltas))
            yield State(
                colour=colour,
                brightness=self.brightness + brightness_delta * index,
            )


def _lerp_colour(
    start: Sequence[int], end: Sequence[int], fraction: float
) -> Tuple[int, int, int]:
    red, green, blue = (
        int(round(a + (b - a) * fraction)) for a, b in zip(start, end)
    )
    return red, green, blue


STATE_OFF = State(colour=(0, 0, 0), brightness=0.0)
"""Disabled state with no colour or brightness."""


__all__ = ["ColourInterpolation", "State", "STATE_OFF"]
