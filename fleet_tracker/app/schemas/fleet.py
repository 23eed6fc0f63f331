"""
Dispatcher-facing schemas: fleet devices, live snapshot and history trail.
"""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from fleet_tracker.app.models.enums import DeviceStatus, DriverStatus
from fleet_tracker.app.schemas.base import CamelModel


class FleetDeviceCreate(CamelModel):
    """Schema for registering a new driver seat."""
    name: str = Field(..., min_length=1, max_length=100, description="Seat label, e.g. vehicle or route name")


class FleetDeviceResponse(CamelModel):
    id: int
    owner_id: int
    name: str
    connection_code: str
    connected_driver_id: Optional[str]
    connected_at: Optional[datetime]
    status: DeviceStatus
    created_at: datetime


class FleetDeviceListResponse(CamelModel):
    devices: List[FleetDeviceResponse]
    total: int


class LiveDriverResponse(CamelModel):
    """
    One driver as the live map sees it.

    latitude/longitude are None until the first valid fix arrives.
    """
    driver_id: str
    driver_name: str
    fleet_code: str
    status: DriverStatus
    last_seen_at: Optional[datetime]
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    location_updated_at: Optional[datetime] = None
    battery_level: Optional[float] = None
    is_background: Optional[bool] = None


class LiveFleetResponse(CamelModel):
    drivers: List[LiveDriverResponse]
    total: int
    server_time: datetime


class HistoryPointResponse(CamelModel):
    id: int
    latitude: float
    longitude: float
    speed: Optional[float]
    accuracy: float
    heading: Optional[float]
    recorded_at: datetime


class DriverHistoryResponse(CamelModel):
    driver_id: str
    points: List[HistoryPointResponse]
    total: int


class LocationFeedEvent(CamelModel):
    """Change feed message for a CurrentLocation upsert."""
    type: Literal["location"] = "location"
    driver_id: str
    fleet_code: str
    latitude: float
    longitude: float
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    recorded_at: Optional[datetime] = None
    updated_at: datetime


class DriverFeedEvent(CamelModel):
    """Change feed message for a Driver status or heartbeat change."""
    type: Literal["driver"] = "driver"
    driver_id: str
    driver_name: str
    fleet_code: str
    status: DriverStatus
    last_seen_at: Optional[datetime] = None
    battery_level: Optional[float] = None
    is_background: Optional[bool] = None
