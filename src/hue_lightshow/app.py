"""Command line application for validating and streaming light show maps."""

from __future__ import annotations

import argparse
import json
import logging
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from .frame import decode_frame
from .gateway import (
    DEFAULT_STREAM_PORT,
    SinkConfig,
    StreamGateway,
    StreamWriteError,
    open_sink,
)
from .player import (
    DEFAULT_TICK_INTERVAL,
    AmbientStreamer,
    PlaybackResult,
    ShowPlayer,
    bind_lights,
)
from .show import MapError, load_map
from .state import ColourInterpolation, State

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppConfig:
    sink: SinkConfig = field(default_factory=SinkConfig)
    tick_interval: float = DEFAULT_TICK_INTERVAL
    interpolation: ColourInterpolation = ColourInterpolation.STEPPED
    light_binding: Mapping[int, int] = field(default_factory=dict)
    ambient_lights: Tuple[int, ...] = ()


class _LoggingSink:
    """Sink that decodes frames into the log instead of sending them."""

    def __init__(self) -> None:
        self.frames = 0

    def write(self, data: bytes) -> int:
        self.frames += 1
        for light, x_val, y_val, brightness in decode_frame(data):
            LOGGER.info(
                "frame %d light %d x=%.4f y=%.4f brightness=%.4f",
                self.frames,
                light,
                x_val / 0xFFFF,
                y_val / 0xFFFF,
                brightness / 0xFFFF,
            )
        return len(data)


def _load_config(path: Path) -> AppConfig:
    contents = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(contents, dict):
        raise ValueError("Configuration file must contain a JSON object")

    sink = _parse_sink(contents.get("sink", {}), base_path=path.parent)

    tick_interval = contents.get("tick_interval", DEFAULT_TICK_INTERVAL)
    if isinstance(tick_interval, bool) or not isinstance(tick_interval, (int, float)):
        raise ValueError("'tick_interval' must be a number of seconds")
    if tick_interval <= 0:
        raise ValueError("'tick_interval' must be positive")

    try:
        interpolation = ColourInterpolation(contents.get("interpolation", "stepped"))
    except ValueError:
        raise ValueError("'interpolation' must be 'stepped' or 'smooth'") from None

    return AppConfig(
        sink=sink,
        tick_interval=float(tick_interval),
        interpolation=interpolation,
        light_binding=_parse_light_binding(contents.get("light_binding", {})),
        ambient_lights=_parse_lights(contents.get("ambient_lights", []), "ambient_lights"),
    )


def _parse_sink(raw: Any, *, base_path: Path) -> SinkConfig:
    if not isinstance(raw, dict):
        raise ValueError("'sink' entry in configuration must be a mapping")
    kind = raw.get("type", "file")
    if kind == "udp":
        host = raw.get("host")
        if not isinstance(host, str) or not host:
            raise ValueError("UDP sink requires a 'host'")
        port = raw.get("port", DEFAULT_STREAM_PORT)
        if isinstance(port, bool) or not isinstance(port, int):
            raise ValueError("UDP sink 'port' must be an integer")
        return SinkConfig(kind="udp", target=host, port=port)
    if kind == "file":
        target = raw.get("path", "-")
        if not isinstance(target, str) or not target:
            raise ValueError("File sink 'path' must be a string")
        if target != "-":
            target = str(_resolve_path(base_path, target))
        return SinkConfig(kind="file", target=target)
    raise ValueError(f"Unknown sink type {kind!r}; expected 'udp' or 'file'")


def _parse_light_binding(raw: Any) -> Dict[int, int]:
    if not isinstance(raw, dict):
        raise ValueError("'light_binding' must map light ids to stream channels")
    binding: Dict[int, int] = {}
    for key, value in raw.items():
        try:
            light = int(key)
        except (TypeError, ValueError):
            raise ValueError(f"light_binding key {key!r} is not an integer") from None
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFF:
            raise ValueError(f"light_binding channel for light {light} must be within 0-255")
        binding[light] = value
    return binding


def _parse_lights(raw: Any, name: str) -> Tuple[int, ...]:
    if not isinstance(raw, list):
        raise ValueError(f"'{name}' must be a list of light ids")
    lights: List[int] = []
    for value in raw:
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= 0xFF:
            raise ValueError(f"'{name}' entries must be integers within 0-255")
        lights.append(value)
    return tuple(lights)


def _resolve_path(base: Path, value: str) -> Path:
    candidate = Path(value)
    if not candidate.is_absolute():
        candidate = base / candidate
    return candidate


def _parse_udp_target(value: str) -> SinkConfig:
    """Parse ``HOST``, ``HOST:PORT``, ``[IPV6]`` or ``[IPV6]:PORT``.

    A bare IPv6 address without brackets is taken as a host with no port.
    """

    error = argparse.ArgumentTypeError(f"invalid UDP target {value!r}; expected HOST:PORT or [HOST]:PORT")
    if value.startswith("["):
        host, bracket, rest = value[1:].partition("]")
        if not bracket or not host or (rest and not rest.startswith(":")):
            raise error
        port = rest[1:] if rest else None
    elif value.count(":") == 1:
        host, _, port = value.partition(":")
    else:
        host, port = value, None
    if not host:
        raise error
    if port is None:
        return SinkConfig(kind="udp", target=host)
    try:
        return SinkConfig(kind="udp", target=host, port=int(port))
    except ValueError:
        raise error from None


def _resolve_config(args: argparse.Namespace) -> AppConfig:
    config = _load_config(args.config) if args.config else AppConfig()
    if getattr(args, "tick_interval", None) is not None:
        if args.tick_interval <= 0:
            raise ValueError("--tick-interval must be positive")
        config = replace(config, tick_interval=args.tick_interval)
    if getattr(args, "output", None):
        config = replace(config, sink=SinkConfig(kind="file", target=args.output))
    if getattr(args, "udp", None) is not None:
        config = replace(config, sink=args.udp)
    return config


def _open_gateway(args: argparse.Namespace, config: AppConfig) -> StreamGateway:
    if getattr(args, "dry_run", False):
        return StreamGateway(_LoggingSink())
    return StreamGateway(open_sink(config.sink))


def _validate_command(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    show = load_map(args.map)
    bind_lights(show, config.light_binding or None)
    print(f"Map {show.name!r} is valid ({len(show.events)} events, {show.end_time:.2f}s)")
    return 0


def _play_command(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    show = load_map(args.map)
    cancel = threading.Event()

    with _open_gateway(args, config) as gateway:
        player = ShowPlayer(
            gateway,
            tick_interval=config.tick_interval,
            interpolation=config.interpolation,
        )
        try:
            result = player.run(show, config.light_binding or None, cancel)
            player.join()
        except KeyboardInterrupt:
            LOGGER.info("Stopping map playback")
            player.stop()
            result = PlaybackResult.CANCELLED
        LOGGER.info("Map %r %s after %d frames", show.name, result.value, gateway.frames_written)
    return 0


def _ambient_command(args: argparse.Namespace) -> int:
    config = _resolve_config(args)
    lights = tuple(args.lights) if args.lights else config.ambient_lights
    if not lights:
        raise ValueError("No lights given; pass --lights or set 'ambient_lights'")
    state = State(colour=(args.red, args.green, args.blue), brightness=args.brightness)

    with _open_gateway(args, config) as gateway:
        streamer = AmbientStreamer(gateway, lights, tick_interval=config.tick_interval, state=state)
        with streamer:
            LOGGER.info("Streaming ambient state to lights %s", ", ".join(map(str, lights)))
            try:
                streamer.wait(args.duration)
            except KeyboardInterrupt:
                LOGGER.info("Stopping ambient stream")
    return 0


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--log-level",
        default="INFO",
        help="Logging verbosity (DEBUG, INFO, WARNING, ERROR)",
    )

    output = argparse.ArgumentParser(add_help=False)
    output.add_argument("--config", type=Path, help="Path to the JSON configuration file")
    output.add_argument("--tick-interval", type=float, help="Seconds between frames")
    target = output.add_mutually_exclusive_group()
    target.add_argument("--output", help="Append frames to this file ('-' for stdout)")
    target.add_argument("--udp", type=_parse_udp_target, help="Send frames to HOST:PORT over UDP")
    target.add_argument(
        "--dry-run",
        action="store_true",
        help="Log decoded frames instead of sending them",
    )

    parser = argparse.ArgumentParser(description=__doc__)
    commands = parser.add_subparsers(dest="command", required=True)

    validate = commands.add_parser("validate", parents=[common], help="Validate a map file")
    validate.add_argument("map", type=Path, help="Path to a JSON map file")
    validate.add_argument(
        "--config", type=Path, help="Check light ids against this configuration's binding"
    )
    validate.set_defaults(handler=_validate_command)

    play = commands.add_parser("play", parents=[common, output], help="Stream a map file")
    play.add_argument("map", type=Path, help="Path to a JSON map file")
    play.set_defaults(handler=_play_command)

    ambient = commands.add_parser(
        "ambient", parents=[common, output], help="Stream one state until interrupted"
    )
    ambient.add_argument("red", type=int)
    ambient.add_argument("green", type=int)
    ambient.add_argument("blue", type=int)
    ambient.add_argument("brightness", type=float)
    ambient.add_argument("--lights", type=int, nargs="+", help="Stream channel ids")
    ambient.add_argument("--duration", type=float, help="Stop after this many seconds")
    ambient.set_defaults(handler=_ambient_command)

    return parser


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(None if argv is None else list(argv))

    log_level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        status = args.handler(args)
    except (MapError, StreamWriteError, ValueError, OSError) as exc:
        LOGGER.error("%s", exc)
        raise SystemExit(1) from exc
    if status:
        raise SystemExit(status)


__all__ = ["AppConfig", "main"]
