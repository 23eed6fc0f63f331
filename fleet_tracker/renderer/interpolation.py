"""
Marker interpolation for smooth movement between discrete fixes.

Animation is purely visual: it never feeds back into driver state.
"""

import math
from dataclasses import dataclass
from typing import Callable, Optional

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True)
class Position:
    latitude: float
    longitude: float


def lerp(start: float, end: float, t: float) -> float:
    return start + (end - start) * t


def ease_out_cubic(t: float) -> float:
    """Fast start, gentle settle."""
    return 1 - (1 - t) ** 3


def interpolate_position(
    start: Position,
    end: Position,
    progress: float,
    easing: Callable[[float], float] = ease_out_cubic,
) -> Position:
    t = easing(min(1.0, max(0.0, progress)))
    return Position(
        latitude=lerp(start.latitude, end.latitude, t),
        longitude=lerp(start.longitude, end.longitude, t),
    )


def haversine_distance(start: Position, end: Position) -> float:
    """Great-circle distance in meters."""
    d_lat = math.radians(end.latitude - start.latitude)
    d_lng = math.radians(end.longitude - start.longitude)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(start.latitude))
        * math.cos(math.radians(end.latitude))
        * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_glitchy_jump(start: Position, end: Position, elapsed: float, max_speed: float = 50.0) -> bool:
    """
    True when the jump is implausibly far for the time between fixes.

    Allows twice `max_speed` (m/s) for GPS variance.
    """
    if elapsed <= 0:
        return False
    return haversine_distance(start, end) > max_speed * elapsed * 2


class MarkerAnimation:
    """
    One marker transition from `start` to `end`.

    Times are monotonic seconds. Without a start position the marker snaps.
    Once the duration has elapsed the position is exactly `end`.
    """

    def __init__(self, start: Optional[Position], end: Position, started_at: float, duration: float = 1.0):
        self.start = start
        self.end = end
        self.started_at = started_at
        self.duration = duration

    def progress(self, now: float) -> float:
        if self.start is None or self.duration <= 0:
            return 1.0
        return min(1.0, max(0.0, (now - self.started_at) / self.duration))

    def position_at(self, now: float) -> Position:
        progress = self.progress(now)
        if progress >= 1.0:
            return self.end
        return interpolate_position(self.start, self.end, progress)

    def finished(self, now: float) -> bool:
        return self.progress(now) >= 1.0
