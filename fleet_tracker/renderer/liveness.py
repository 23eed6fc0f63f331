"""
Driver liveness classification for the live map.

State is derived from the newer of the driver heartbeat (last_seen_at) and
the last location write (location updated_at):

    offline  explicit offline/disconnected, never seen, or silent >= 15 min
    idle     silent 5-15 min
    stale    heartbeats continue but the location is older than the stale window
    active   otherwise
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from fleet_tracker.app.models.enums import DriverStatus
from fleet_tracker.renderer.config import RendererConfig


class LivenessState(str, enum.Enum):
    ACTIVE = "active"
    IDLE = "idle"
    STALE = "stale"
    OFFLINE = "offline"


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def last_activity(
    last_seen_at: Optional[datetime], location_updated_at: Optional[datetime]
) -> Optional[datetime]:
    seen = [t for t in (_naive_utc(last_seen_at), _naive_utc(location_updated_at)) if t is not None]
    return max(seen) if seen else None


def has_location(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """False for unset or (0, 0) coordinates: connected, no location yet."""
    if latitude is None or longitude is None:
        return False
    return not (latitude == 0 and longitude == 0)


def classify(
    status: Optional[DriverStatus],
    last_seen_at: Optional[datetime],
    location_updated_at: Optional[datetime],
    now: datetime,
    config: Optional[RendererConfig] = None,
) -> LivenessState:
    config = config or RendererConfig()

    if status in (DriverStatus.OFFLINE, DriverStatus.DISCONNECTED):
        return LivenessState.OFFLINE

    activity = last_activity(last_seen_at, location_updated_at)
    if activity is None:
        return LivenessState.OFFLINE

    now = _naive_utc(now)
    silence = (now - activity).total_seconds()
    if silence >= config.offline_after:
        return LivenessState.OFFLINE
    if silence >= config.active_window:
        return LivenessState.IDLE

    location_updated_at = _naive_utc(location_updated_at)
    if location_updated_at is not None:
        if (now - location_updated_at).total_seconds() > config.stale_after:
            return LivenessState.STALE

    return LivenessState.ACTIVE
