"""Helpers for loading, validating and ordering light show maps."""

from __future__ import annotations

import json
import math
import logging
from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence, Tuple

from .state import STATE_OFF, State

LOGGER = logging.getLogger(__name__)


class MapErrorReason(str, Enum):
    NO_EVENTS = "no events"
    NO_STATES = "start and end states are both off"
    NON_FINITE_TIME = "time is not a finite number"
    START_AFTER_END = "starts after it ends"
    NO_LIGHTS = "impacts no lights"
    EVENT_COLLIDES = "event collides with another event"
    UNBOUND_LIGHT = "light has no stream channel binding"
    LIGHT_OUT_OF_RANGE = "light id does not fit in a single byte"
    MALFORMED = "malformed map document"


class MapError(RuntimeError):
    """Raised when a map is malformed or fails validation."""

    def __init__(
        self,
        reason: MapErrorReason,
        detail: str | None = None,
        *,
        events: Sequence["Event"] = (),
    ) -> None:
        message = f"map is invalid: {reason.value}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
        self.reason = reason
        self.events = tuple(events)


class EventType(IntEnum):
    """Kind of transition performed by an :class:`Event`."""

    FADE = 0


@dataclass(frozen=True)
class Event:
    """Transition of a set of lights from one state to another over time."""

    start_time: float
    end_time: float
    lights: Tuple[int, ...]
    start_state: State = STATE_OFF
    end_state: State = STATE_OFF
    type: EventType = EventType.FADE

    def __post_init__(self) -> None:
        object.__setattr__(self, "lights", tuple(int(light) for light in self.lights))
        object.__setattr__(self, "start_time", float(self.start_time))
        object.__setattr__(self, "end_time", float(self.end_time))

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def validate(self) -> None:
        """Raise :class:`MapError` when the event cannot produce a visible effect."""

        if not (math.isfinite(self.start_time) and math.isfinite(self.end_time)):
            raise MapError(
                MapErrorReason.NON_FINITE_TIME,
                f"{self.start_time}s to {self.end_time}s",
                events=(self,),
            )
        if self.start_state == STATE_OFF and self.end_state == STATE_OFF:
            raise MapError(MapErrorReason.NO_STATES, events=(self,))
        if self.start_time > self.end_time:
            raise MapError(
                MapErrorReason.START_AFTER_END,
                f"{self.start_time}s > {self.end_time}s",
                events=(self,),
            )
        if not self.lights:
            raise MapError(MapErrorReason.NO_LIGHTS, events=(self,))

    def collides_with(self, other: "Event") -> bool:
        """Return ``True`` when both events drive a shared light at the same time.

        Intervals are half-open, so an event ending exactly when the other
        starts does not collide with it.
        """

        if other.start_time >= self.end_time or self.start_time >= other.end_time:
            return False
        return not set(self.lights).isdisjoint(other.lights)


@dataclass(frozen=True)
class ShowMap:
    """Named collection of events describing a complete light show."""

    name: str
    events: Tuple[Event, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "events", tuple(self.events))

    def sort_events(self) -> "ShowMap":
        """Return a copy with events in ascending start order.

        The sort is stable, so events sharing a start time keep their order.
        """

        return replace(self, events=tuple(sorted(self.events, key=lambda event: event.start_time)))

    def validate(self) -> None:
        """Raise :class:`MapError` describing the first problem found."""

        if not self.events:
            raise MapError(MapErrorReason.NO_EVENTS)

        for index, event in enumerate(self.events):
            event.validate()
            for other_index, other in enumerate(self.events):
                if index == other_index:
                    continue
                if event.collides_with(other):
                    raise MapError(
                        MapErrorReason.EVENT_COLLIDES,
                        f"events {index} and {other_index}",
                        events=(event, other),
                    )

    def lights(self) -> Tuple[int, ...]:
        """Return every light id referenced by the map, in first-use order."""

        seen: dict[int, None] = {}
        for event in self.events:
            for light in event.lights:
                seen.setdefault(light, None)
        return tuple(seen)

    @property
    def end_time(self) -> float:
        return max((event.end_time for event in self.events), default=0.0)


def validate(show: ShowMap) -> Optional[MapError]:
    """Return the first validation error for *show*, or ``None`` when valid."""

    try:
        show.validate()
    except MapError as exc:
        return exc
    return None


def load_map(path: str | Path) -> ShowMap:
    """Load *path* and return a parsed :class:`ShowMap`."""

    file_path = Path(path)
    try:
        document = json.loads(file_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise MapError(MapErrorReason.MALFORMED, f"{file_path}: {exc}") from exc
    show = parse_map(document)
    LOGGER.debug("Loaded map %r with %d events from %s", show.name, len(show.events), file_path)
    return show


def parse_map(document: Any) -> ShowMap:
    """Build a :class:`ShowMap` from a decoded JSON map document."""

    if not isinstance(document, Mapping):
        raise MapError(MapErrorReason.MALFORMED, "map document must be an object")
    name = document.get("name", "")
    if not isinstance(name, str):
        raise MapError(MapErrorReason.MALFORMED, "'name' must be a string")
    raw_events = document.get("events", [])
    if not isinstance(raw_events, list):
        raise MapError(MapErrorReason.MALFORMED, "'events' must be a list")
    events = tuple(_parse_event(raw, index) for index, raw in enumerate(raw_events))
    return ShowMap(name=name, events=events)


def _parse_event(raw: Any, index: int) -> Event:
    if not isinstance(raw, Mapping):
        raise MapError(MapErrorReason.MALFORMED, f"event {index} must be an object")
    try:
        event_type = EventType(int(raw.get("type", EventType.FADE)))
    except (TypeError, ValueError):
        raise MapError(
            MapErrorReason.MALFORMED, f"event {index} has unknown type {raw.get('type')!r}"
        ) from None

    try:
        start_time = _parse_number(raw.get("startTime", 0))
        end_time = _parse_number(raw.get("endTime", 0))
    except (TypeError, ValueError) as exc:
        raise MapError(MapErrorReason.MALFORMED, f"event {index}: {exc}") from exc

    lights = raw.get("lights", [])
    if not isinstance(lights, list) or not all(_is_int(light) for light in lights):
        raise MapError(MapErrorReason.MALFORMED, f"event {index} 'lights' must be a list of integers")

    return Event(
        type=event_type,
        start_state=_parse_state(raw.get("startState"), index, "startState"),
        end_state=_parse_state(raw.get("endState"), index, "endState"),
        start_time=start_time,
        end_time=end_time,
        lights=tuple(lights),
    )


def _parse_state(raw: Any, index: int, field: str) -> State:
    if raw is None:
        return STATE_OFF
    if not isinstance(raw, Mapping):
        raise MapError(MapErrorReason.MALFORMED, f"event {index} {field!r} must be an object")
    colour = raw.get("colour", [0, 0, 0])
    if not isinstance(colour, list) or not all(_is_int(value) for value in colour):
        raise MapError(
            MapErrorReason.MALFORMED, f"event {index} {field!r} colour must be three integers"
        )
    try:
        return State(colour=tuple(colour), brightness=_parse_number(raw.get("brightness", 0)))
    except (TypeError, ValueError) as exc:
        raise MapError(MapErrorReason.MALFORMED, f"event {index} {field!r}: {exc}") from exc


def _parse_number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {value!r}")
    try:
        number = float(value)
    except OverflowError:
        number = math.inf
    if not math.isfinite(number):
        raise ValueError(f"expected a finite number, got {value!r}")
    return number


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


__all__ = [
    "Event",
    "EventType",
    "MapError",
    "MapErrorReason",
    "ShowMap",
    "load_map",
    "parse_map",
    "validate",
]
