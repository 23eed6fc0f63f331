"""
Lifecycle enumerations for drivers and fleet devices.
"""

import enum


class DriverStatus(str, enum.Enum):
    """
    Driver lifecycle status.

    Statuses:
        ACTIVE: Heartbeat or location received recently
        OFFLINE: Driver disconnected explicitly (or marked by staleness jobs)
        DISCONNECTED: Driver app reported losing its connection
    """
    ACTIVE = "active"
    OFFLINE = "offline"
    DISCONNECTED = "disconnected"


class DeviceStatus(str, enum.Enum):
    """Fleet device connection status."""
    ACTIVE = "active"
    OFFLINE = "offline"
