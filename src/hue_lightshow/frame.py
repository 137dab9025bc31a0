"""Wire framing for the HueStream entertainment protocol."""

from __future__ import annotations

import struct
from typing import Iterable, List, Sequence, Tuple

from .state import State

PROTOCOL_NAME = b"HueStream"

COLOUR_MODE_XY = 0x01

STREAM_HEADER = PROTOCOL_NAME + bytes(
    (
        0x01, 0x00,  # version 1.0
        0x00,  # sequence number, ignored by the bridge
        0x00, 0x00,  # reserved
        COLOUR_MODE_XY,
        0x00,  # reserved
    )
)

RECORD_LENGTH = 9
_RECORD = struct.Struct(">2xBHHH")


def encode_frame(state: State, lights: Iterable[int]) -> bytes:
    """Return a complete frame commanding every light in *lights* to *state*."""

    return STREAM_HEADER + state.encode(lights)


def encode_states(groups: Iterable[Tuple[State, Sequence[int]]]) -> bytes:
    """Return a single frame carrying several ``(state, lights)`` groups."""

    return STREAM_HEADER + b"".join(state.encode(lights) for state, lights in groups)


def decode_frame(frame: bytes) -> List[Tuple[int, int, int, int]]:
    """Split *frame* into ``(light, x, y, brightness)`` raw 16-bit tuples."""

    if not frame.startswith(PROTOCOL_NAME):
        raise ValueError("Frame does not start with the HueStream protocol name.")
    if len(frame) < len(STREAM_HEADER):
        raise ValueError("Frame is shorter than the stream header.")
    if frame[len(PROTOCOL_NAME) + 5] != COLOUR_MODE_XY:
        raise ValueError("Only XY + brightness frames can be decoded.")

    body = frame[len(STREAM_HEADER) :]
    if len(body) % RECORD_LENGTH:
        raise ValueError("Frame body contains a truncated light record.")
    return [tuple(values) for values in _RECORD.iter_unpack(body)]


__all__ = [
    "COLOUR_MODE_XY",
    "PROTOCOL_NAME",
    "RECORD_LENGTH",
    "STREAM_HEADER",
    "decode_frame",
    "encode_frame",
    "encode_states",
]
