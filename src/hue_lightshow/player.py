"""Runtime helpers for streaming light show maps to the bridge."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple

from .frame import encode_frame, encode_states
from .gateway import StreamGateway, StreamWriteError
from .show import Event, MapError, MapErrorReason, ShowMap
from .state import STATE_OFF, ColourInterpolation, State

LOGGER = logging.getLogger(__name__)

#: Seconds between interpolation frames; the bridge recommends 12.5 Hz.
DEFAULT_TICK_INTERVAL = 0.08

_MICROSECONDS = 1_000_000


class PlaybackResult(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def step_count(duration: float, tick_interval: float) -> int:
    """Return how many whole ticks fit into *duration* seconds."""

    tick = int(round(tick_interval * _MICROSECONDS))
    if tick <= 0:
        raise ValueError("tick_interval must be positive.")
    return max(int(round(duration * _MICROSECONDS)), 0) // tick


def _wait_until(cancel: threading.Event, when: float) -> bool:
    """Block until the monotonic clock reaches *when*.

    Returns ``False`` as soon as *cancel* is set.
    """

    while True:
        remaining = when - time.monotonic()
        if remaining <= 0:
            return not cancel.is_set()
        if cancel.wait(remaining):
            return False


class _FailureLatch:
    """Keep the first fatal write error and trip the cancellation signal."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._failure: Optional[StreamWriteError] = None

    def record(self, exc: StreamWriteError, cancel: threading.Event) -> None:
        first = False
        with self._lock:
            if self._failure is None:
                self._failure = exc
                first = True
        if first:
            LOGGER.error("Stream write failed; stopping playback: %s", exc.cause or exc)
            LOGGER.debug("Fatal stream write details", exc_info=exc)
        cancel.set()

    def pending(self) -> Optional[StreamWriteError]:
        with self._lock:
            return self._failure

    def raise_pending(self) -> None:
        failure = self.pending()
        if failure is not None:
            raise failure

    def reset(self) -> None:
        with self._lock:
            self._failure = None


class _EventPlayback:
    """Background worker that streams the interpolation of a single event."""

    def __init__(
        self,
        *,
        gateway: StreamGateway,
        event: Event,
        lights: Sequence[int],
        states: Sequence[State],
        tick_interval: float,
        cancel: threading.Event,
        failures: _FailureLatch,
        name: str,
    ) -> None:
        self._gateway = gateway
        self.event = event
        self._lights = tuple(lights)
        self._states = list(states)
        self._tick_interval = tick_interval
        self._cancel = cancel
        self._failures = failures
        self.frames_sent = 0
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        started = time.monotonic()
        for index, state in enumerate(self._states):
            if index and not _wait_until(self._cancel, started + index * self._tick_interval):
                LOGGER.debug(
                    "%s cancelled after %d of %d frames",
                    self._thread.name,
                    self.frames_sent,
                    len(self._states),
                )
                return
            try:
                self._gateway.write_frame(encode_frame(state, self._lights))
            except StreamWriteError as exc:
                self._failures.record(exc, self._cancel)
                return
            self.frames_sent += 1
        LOGGER.debug(
            "Elapsed for %s: %.3fs (%d frames)",
            self._thread.name,
            time.monotonic() - started,
            self.frames_sent,
        )


class ShowPlayer:
    """Dispatch the events of a map at their start offsets.

    Each event is streamed by its own daemon thread. :meth:`run` returns once
    the final event has been dispatched, not once it has finished; call
    :meth:`join` to wait for in-flight events.
    """

    def __init__(
        self,
        gateway: StreamGateway,
        *,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        interpolation: ColourInterpolation = ColourInterpolation.STEPPED,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive.")
        self._gateway = gateway
        self.tick_interval = tick_interval
        self.interpolation = ColourInterpolation(interpolation)
        self._cancel = threading.Event()
        self._failures = _FailureLatch()
        self._playbacks: List[_EventPlayback] = []

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    def states_for(self, event: Event) -> List[State]:
        """Return the states streamed for *event*, one per tick."""

        steps = step_count(event.duration, self.tick_interval)
        return event.start_state.steps_to(steps, event.end_state, self.interpolation)

    def run(
        self,
        show: ShowMap,
        light_binding: Optional[Mapping[int, int]] = None,
        cancel: Optional[threading.Event] = None,
    ) -> PlaybackResult:
        """Stream *show*, returning once its last event has been dispatched.

        *light_binding* maps the light ids used by the map to stream channel
        ids; without it map ids are sent unchanged. A stream write failure sets
        *cancel* and is raised as :class:`StreamWriteError`.

        Without *cancel* the player's own :attr:`cancel_event` is used, so a
        :meth:`stop` issued before the run cancels it and the player stays
        cancelled until a fresh *cancel* event is passed. A player cannot start a
        new run while events from the previous one are still streaming.
        """

        if self.active_events():
            raise RuntimeError("Previous playback is still running; call join() or stop() first.")

        ordered, channels = bind_lights(show, light_binding)

        if cancel is not None:
            self._cancel = cancel
        self._failures.reset()
        self._playbacks = []

        LOGGER.info(
            "Starting map %r: %d events over %.2fs",
            ordered.name,
            len(ordered.events),
            ordered.end_time,
        )
        started = time.monotonic()
        for index, (event, lights) in enumerate(zip(ordered.events, channels)):
            if not _wait_until(self._cancel, started + event.start_time):
                self._failures.raise_pending()
                LOGGER.info(
                    "Map %r cancelled with %d of %d events dispatched",
                    ordered.name,
                    index,
                    len(ordered.events),
                )
                return PlaybackResult.CANCELLED

            playback = _EventPlayback(
                gateway=self._gateway,
                event=event,
                lights=lights,
                states=self.states_for(event),
                tick_interval=self.tick_interval,
                cancel=self._cancel,
                failures=self._failures,
                name=f"EventPlayback[{index}]",
            )
            self._playbacks.append(playback)
            playback.start()
            LOGGER.debug("Triggered event %d after %.3fs", index, time.monotonic() - started)

        self._failures.raise_pending()
        LOGGER.info("Dispatched all %d events of map %r", len(ordered.events), ordered.name)
        return PlaybackResult.COMPLETED

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for in-flight events; re-raise a recorded write failure.

        Returns ``True`` when every playback thread has finished.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        finished = True
        for playback in list(self._playbacks):
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            finished = playback.join(remaining) and finished
        self._failures.raise_pending()
        return finished

    def stop(self) -> None:
        """Cancel dispatch and stop in-flight events at their next tick."""

        self._cancel.set()
        for playback in list(self._playbacks):
            playback.join()

    def active_events(self) -> Tuple[Event, ...]:
        return tuple(playback.event for playback in self._playbacks if playback.is_alive())


def bind_lights(
    show: ShowMap, light_binding: Optional[Mapping[int, int]] = None
) -> Tuple[ShowMap, List[Tuple[int, ...]]]:
    """Validate *show* and resolve the stream channels of each event.

    Returns the map sorted by start time and, per sorted event, the channel
    ids its frames address. Raises :class:`MapError` before anything is sent.
    """

    show.validate()
    ordered = show.sort_events()
    return ordered, [_bind_lights(event, light_binding) for event in ordered.events]


def _bind_lights(event: Event, binding: Optional[Mapping[int, int]]) -> Tuple[int, ...]:
    if binding is None:
        channels = event.lights
    else:
        try:
            channels = tuple(binding[light] for light in event.lights)
        except KeyError as exc:
            raise MapError(
                MapErrorReason.UNBOUND_LIGHT, f"light {exc.args[0]}", events=(event,)
            ) from None
    for channel in channels:
        if not 0 <= channel <= 0xFF:
            raise MapError(MapErrorReason.LIGHT_OUT_OF_RANGE, f"light {channel}", events=(event,))
    return channels


class AmbientStreamer:
    """Continuously stream an externally updated state at a fixed cadence."""

    def __init__(
        self,
        gateway: StreamGateway,
        lights: Iterable[int],
        *,
        tick_interval: float = DEFAULT_TICK_INTERVAL,
        state: State = STATE_OFF,
    ) -> None:
        if tick_interval <= 0:
            raise ValueError("tick_interval must be positive.")
        self._gateway = gateway
        self._lights = tuple(lights)
        if not self._lights:
            raise ValueError("Ambient streaming requires at least one light.")
        self.tick_interval = tick_interval
        self._frame_lock = threading.Lock()
        self._frame = encode_frame(state, self._lights)
        self._stop_event = threading.Event()
        self._failures = _FailureLatch()
        self._thread: Optional[threading.Thread] = None

    @property
    def current_frame(self) -> bytes:
        with self._frame_lock:
            return self._frame

    def set_current_state(self, state: State, lights: Optional[Iterable[int]] = None) -> None:
        """Replace the streamed state; takes effect from the next tick."""

        frame = encode_frame(state, self._lights if lights is None else tuple(lights))
        with self._frame_lock:
            self._frame = frame

    def set_current_states(self, groups: Iterable[Tuple[State, Sequence[int]]]) -> None:
        """Replace the streamed frame with per-light-group states."""

        frame = encode_states(groups)
        with self._frame_lock:
            self._frame = frame

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._failures.reset()
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="AmbientStreamer", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop transmitting; re-raise a write failure that ended the stream."""

        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join()
        self._thread = None
        self._failures.raise_pending()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the stream is stopped; returns ``False`` on timeout."""

        return self._stop_event.wait(timeout)

    def __enter__(self) -> "AmbientStreamer":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _run(self) -> None:
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self._gateway.write_frame(self.current_frame)
            except StreamWriteError as exc:
                self._failures.record(exc, self._stop_event)
                return
            next_tick += self.tick_interval
            if not _wait_until(self._stop_event, next_tick):
                return


__all__ = [
    "AmbientStreamer",
    "DEFAULT_TICK_INTERVAL",
    "PlaybackResult",
    "ShowPlayer",
    "bind_lights",
    "step_count",
]
