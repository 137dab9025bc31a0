"""Output sinks and the serialised frame gateway used for streaming."""

from __future__ import annotations

import logging
import socket
import sys
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import IO, Protocol

LOGGER = logging.getLogger(__name__)

DEFAULT_STREAM_PORT = 2100


class StreamWriteError(RuntimeError):
    """Raised when a frame cannot be written to the output sink."""

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class FrameSink(Protocol):
    """Append-only byte sink preserving message boundaries between writes."""

    def write(self, data: bytes) -> object:  # pragma: no cover - protocol
        ...


class DatagramSink:
    """Send each frame as a single UDP datagram.

    The bridge itself expects DTLS; this sink targets a local DTLS proxy or
    a bridge emulator that accepts plain datagrams.
    """

    def __init__(self, host: str, port: int = DEFAULT_STREAM_PORT, *, timeout: float | None = 5.0) -> None:
        self.address = (host, port)
        family, kind, proto, _, sockaddr = socket.getaddrinfo(host, port, type=socket.SOCK_DGRAM)[0]
        self._socket = socket.socket(family, kind, proto)
        self._socket.settimeout(timeout)
        self._socket.connect(sockaddr)
        LOGGER.debug("Opened datagram sink to %s:%s", host, port)

    def write(self, data: bytes) -> int:
        return self._socket.send(data)

    def close(self) -> None:
        self._socket.close()

    def __enter__(self) -> "DatagramSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class FileSink:
    """Append frames to a binary file, or standard output for ``-``."""

    def __init__(self, path: str | Path) -> None:
        self.path = str(path)
        self._owns_stream = self.path != "-"
        self._stream: IO[bytes]
        if self._owns_stream:
            self._stream = open(self.path, "ab")
        else:
            self._stream = sys.stdout.buffer

    def write(self, data: bytes) -> int:
        written = self._stream.write(data)
        self._stream.flush()
        return written

    def close(self) -> None:
        if self._owns_stream:
            self._stream.close()

    def __enter__(self) -> "FileSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


@dataclass(frozen=True)
class SinkConfig:
    """Where frames are sent: ``udp`` to ``host:port`` or ``file`` to a path."""

    kind: str = "file"
    target: str = "-"
    port: int = DEFAULT_STREAM_PORT

    def __post_init__(self) -> None:
        if self.kind not in ("udp", "file"):
            raise ValueError(f"Unknown sink type {self.kind!r}; expected 'udp' or 'file'.")
        if not 0 < self.port < 0x10000:
            raise ValueError("sink port must be within 1-65535.")


def open_sink(config: SinkConfig) -> DatagramSink | FileSink:
    if config.kind == "udp":
        return DatagramSink(config.target, config.port)
    return FileSink(config.target)


class StreamGateway:
    """Serialise frame writes from concurrent playback tasks onto one sink."""

    def __init__(self, sink: FrameSink) -> None:
        self._sink = sink
        self._lock = Lock()
        self._frames_written = 0

    @property
    def frames_written(self) -> int:
        with self._lock:
            return self._frames_written

    def write_frame(self, frame: bytes) -> None:
        """Write one complete frame, holding the sink for the whole write."""

        with self._lock:
            if LOGGER.isEnabledFor(logging.DEBUG):
                LOGGER.debug("Sending frame: %s", frame.hex(" "))
            try:
                self._sink.write(frame)
            except (OSError, ValueError) as exc:
                raise StreamWriteError(
                    f"Failed to write {len(frame)} byte frame to the stream sink: {exc}",
                    cause=exc,
                ) from exc
            self._frames_written += 1

    def close(self) -> None:
        """Close the sink when it exposes a ``close`` method."""

        close = getattr(self._sink, "close", None)
        if callable(close):
            close()

    def __enter__(self) -> "StreamGateway":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = [
    "DEFAULT_STREAM_PORT",
    "DatagramSink",
    "FileSink",
    "FrameSink",
    "SinkConfig",
    "StreamGateway",
    "StreamWriteError",
    "open_sink",
]
