"""
Location report schemas.

A location report is decoded into exactly one of:
- SingleFixReport: one fix (or a heartbeat without coordinates)
- BatchFixReport: fixes collected while offline or background-throttled
- VendorFixReport: the background-geolocation plugin's nested
  `location.coords` envelope, translated into a SingleFixReport

The ingestion service only ever sees the first two.
"""

from datetime import datetime
from typing import Annotated, Any, List, Optional, Union

from pydantic import Discriminator, Field, Tag, TypeAdapter, field_validator

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.schemas.base import CamelModel, to_naive_utc
from fleet_tracker.app.schemas.identity import DriverRequest


class FixPayload(CamelModel):
    """
    A single GPS sample plus device metadata.

    Every field is optional: a fix without coordinates is a heartbeat.
    Ranges are checked by the ingestion service, not here, because
    out-of-range coordinates are a warning while out-of-range speed or
    battery is an error.
    """
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[float] = Field(None, description="km/h")
    accuracy: Optional[float] = Field(None, description="meters")
    heading: Optional[float] = None
    battery_level: Optional[float] = Field(None, description="percent, 0-100")
    is_background: Optional[bool] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_naive_utc(value)


class SingleFixReport(DriverRequest, FixPayload):
    """One fix from the mobile client."""

    def canonical(self) -> "SingleFixReport":
        return self


class BatchFixReport(DriverRequest):
    """Fixes buffered on the device and flushed together."""
    locations: List[FixPayload] = Field(..., min_length=1)

    @field_validator("locations")
    @classmethod
    def _limit_batch(cls, value: List[FixPayload]) -> List[FixPayload]:
        if len(value) > settings.max_batch_size:
            raise ValueError(f"A batch may contain at most {settings.max_batch_size} locations")
        return value

    def canonical(self) -> "BatchFixReport":
        return self


class VendorCoords(CamelModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    speed: Optional[float] = Field(None, description="m/s, negative when unknown")
    accuracy: Optional[float] = None
    heading: Optional[float] = Field(None, description="degrees, negative when unknown")


class VendorBattery(CamelModel):
    level: Optional[float] = Field(None, description="fraction 0-1, negative when unknown")
    is_charging: Optional[bool] = None


class VendorLocation(CamelModel):
    coords: VendorCoords
    timestamp: Optional[datetime] = None
    battery: Optional[VendorBattery] = None
    is_moving: Optional[bool] = None


class VendorFixReport(DriverRequest):
    """Background-geolocation plugin payload posted as-is by the mobile app."""
    location: VendorLocation
    is_background: Optional[bool] = None

    def canonical(self) -> SingleFixReport:
        coords = self.location.coords
        speed = coords.speed * 3.6 if coords.speed is not None and coords.speed >= 0 else None
        heading = coords.heading if coords.heading is not None and coords.heading >= 0 else None

        battery_level = None
        battery = self.location.battery
        if battery is not None and battery.level is not None and battery.level >= 0:
            battery_level = round(battery.level * 100)

        return SingleFixReport(
            identity=self.identity,
            fleet_code=self.fleet_code,
            latitude=coords.latitude,
            longitude=coords.longitude,
            speed=speed,
            accuracy=coords.accuracy,
            heading=heading,
            battery_level=battery_level,
            is_background=self.is_background,
            timestamp=self.location.timestamp,
        )


def _report_kind(value: Any) -> str:
    if isinstance(value, dict):
        if "locations" in value:
            return "batch"
        if isinstance(value.get("location"), dict):
            return "vendor"
        return "single"
    if isinstance(value, BatchFixReport):
        return "batch"
    if isinstance(value, VendorFixReport):
        return "vendor"
    return "single"


LocationReport = Annotated[
    Union[
        Annotated[SingleFixReport, Tag("single")],
        Annotated[BatchFixReport, Tag("batch")],
        Annotated[VendorFixReport, Tag("vendor")],
    ],
    Discriminator(_report_kind),
]

_location_report_adapter = TypeAdapter(LocationReport)


def decode_location_report(body: Any) -> Union[SingleFixReport, BatchFixReport]:
    """
    Decode a raw request body into a canonical report.

    Raises:
        pydantic.ValidationError: body does not match any known shape
    """
    return _location_report_adapter.validate_python(body).canonical()


class LocationReportResponse(CamelModel):
    """Response after a location report. None-valued fields are omitted."""
    success: bool = True
    stored: bool
    warning: Optional[str] = None
    accurate: Optional[bool] = None
    server_time: datetime
    next_update_interval_ms: Optional[int] = None
    # Batch only
    received: Optional[int] = None
    history_stored: Optional[int] = None
    discarded: Optional[int] = None
