"""Timed light shows streamed to a Hue bridge over the entertainment protocol.

A :class:`~hue_lightshow.show.ShowMap` describes colour and brightness
transitions for a set of lights. :class:`~hue_lightshow.player.ShowPlayer`
dispatches its events at their start offsets and streams interpolated frames
through a :class:`~hue_lightshow.gateway.StreamGateway`::

    from hue_lightshow import ShowPlayer, StreamGateway, DatagramSink, load_map

    show = load_map("show.json")
    with StreamGateway(DatagramSink("127.0.0.1")) as gateway:
        player = ShowPlayer(gateway)
        player.run(show)
        player.join()

The secure transport to the bridge is not part of this package; any object
with a ``write(bytes)`` method can act as the sink.
"""

from __future__ import annotations

from .colour import gamma_correction, rgb_to_cie
from .frame import PROTOCOL_NAME, STREAM_HEADER, decode_frame, encode_frame, encode_states
from .gateway import DatagramSink, FileSink, SinkConfig, StreamGateway, StreamWriteError, open_sink
from .player import (
    DEFAULT_TICK_INTERVAL,
    AmbientStreamer,
    PlaybackResult,
    ShowPlayer,
    bind_lights,
    step_count,
)
from .show import Event, EventType, MapError, MapErrorReason, ShowMap, load_map, parse_map, validate
from .state import STATE_OFF, ColourInterpolation, State

__all__ = [
    "AmbientStreamer",
    "ColourInterpolation",
    "DEFAULT_TICK_INTERVAL",
    "DatagramSink",
    "Event",
    "EventType",
    "FileSink",
    "MapError",
    "MapErrorReason",
    "PROTOCOL_NAME",
    "PlaybackResult",
    "STATE_OFF",
    "STREAM_HEADER",
    "ShowMap",
    "ShowPlayer",
    "SinkConfig",
    "State",
    "StreamGateway",
    "StreamWriteError",
    "bind_lights",
    "decode_frame",
    "encode_frame",
    "encode_states",
    "gamma_correction",
    "load_map",
    "open_sink",
    "parse_map",
    "rgb_to_cie",
    "step_count",
    "validate",
]

__version__ = "0.1.0"
