"""
Identity registry schemas.

Request and response models for connect, disconnect, connection state and
driver self-service updates.
"""

import re
from datetime import datetime
from typing import Optional

from pydantic import Field, field_validator

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.models.enums import DriverStatus
from fleet_tracker.app.schemas.base import CamelModel


def normalize_fleet_code(value: str) -> str:
    """Trim, upper-case and check the fixed-length alphanumeric format."""
    code = value.strip().upper()
    if not re.fullmatch(rf"[A-Z0-9]{{{settings.fleet_code_length}}}", code):
        raise ValueError(
            f"Connection code must be {settings.fleet_code_length} letters or digits"
        )
    return code


def normalize_display_name(value: str) -> str:
    name = value.strip()
    if not name:
        raise ValueError("Driver name is required")
    if len(name) > settings.display_name_max_length:
        raise ValueError(
            f"Driver name must be at most {settings.display_name_max_length} characters"
        )
    return name


class DriverRequest(CamelModel):
    """Fields every gated driver request carries."""
    identity: str = Field(..., min_length=1, max_length=64, description="Driver identity from connect")
    fleet_code: str = Field(..., description="Fleet connection code the identity is bound to")

    @field_validator("fleet_code")
    @classmethod
    def _check_fleet_code(cls, value: str) -> str:
        return normalize_fleet_code(value)


class ConnectRequest(CamelModel):
    """Schema for joining a fleet with a connection code."""
    fleet_code: str = Field(..., description="Connection code shown in the admin dashboard")
    display_name: str = Field(..., description="Driver name shown to dispatchers")
    existing_identity: Optional[str] = Field(None, max_length=64, description="Identity cached by the app, if any")

    @field_validator("fleet_code")
    @classmethod
    def _check_fleet_code(cls, value: str) -> str:
        return normalize_fleet_code(value)

    @field_validator("display_name")
    @classmethod
    def _check_display_name(cls, value: str) -> str:
        return normalize_display_name(value)


class FleetDeviceDescriptor(CamelModel):
    """The fleet device a driver is seated on."""
    id: int
    name: str


class ConnectResponse(CamelModel):
    success: bool = True
    identity: str
    fleet_device: FleetDeviceDescriptor
    reconnected: bool = False
    existing_driver_name: Optional[str] = None
    server_time: datetime


class DisconnectRequest(CamelModel):
    identity: str = Field(..., min_length=1, max_length=64)


class SuccessResponse(CamelModel):
    success: bool = True


class ConnectionStateResponse(CamelModel):
    connected: bool
    fleet_device: Optional[FleetDeviceDescriptor] = None
    driver_name: Optional[str] = None


class StatusUpdateRequest(DriverRequest):
    """Driver-reported lifecycle status."""
    status: DriverStatus = DriverStatus.ACTIVE


class NameUpdateRequest(DriverRequest):
    name: str

    @field_validator("name")
    @classmethod
    def _check_name(cls, value: str) -> str:
        return normalize_display_name(value)
