"""
Adaptive polling cadence.

The gateway suggests when the mobile client should report next. The hint is
advisory: nothing is enforced server-side.
"""

from typing import Optional

from fleet_tracker.app.core.config import settings


def next_update_interval_ms(battery_level: Optional[float], speed: Optional[float]) -> int:
    """
    Pick the next reporting interval.

    Low battery wins over movement: a moving driver on 15% battery still
    gets the long interval.
    """
    if battery_level is not None and battery_level < settings.low_battery_threshold:
        return settings.low_battery_interval_ms
    if speed is not None and speed > settings.moving_speed_threshold_kmh:
        return settings.moving_interval_ms
    return settings.stationary_interval_ms
