"""
Fleet device management and dispatcher read models.

Admins register driver seats and read back the live snapshot and history
trail of the drivers bound to their codes. Ownership is enforced by scoping
every query to the admin's own connection codes.
"""

import logging
import secrets
import string
from datetime import datetime
from typing import List

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.exceptions import ResourceNotFoundError, StoreUnavailableError
from fleet_tracker.app.db.session import commit_or_raise
from fleet_tracker.app.models.current_location import CurrentLocation
from fleet_tracker.app.models.driver import Driver
from fleet_tracker.app.models.enums import DeviceStatus
from fleet_tracker.app.models.fleet_device import FleetDevice
from fleet_tracker.app.models.location_history import LocationHistoryPoint
from fleet_tracker.app.schemas.fleet import (
    DriverHistoryResponse,
    HistoryPointResponse,
    LiveDriverResponse,
    LiveFleetResponse,
)
from fleet_tracker.app.services.audit import AuditAction, log_event

logger = logging.getLogger("fleet_tracker.fleet")

CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5


def generate_connection_code(length: int = None) -> str:
    length = length or settings.fleet_code_length
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def _owned_codes(owner_id: int):
    return select(FleetDevice.connection_code).where(FleetDevice.owner_id == owner_id)


class FleetDeviceService:

    @staticmethod
    async def register_device(db: AsyncSession, owner_id: int, name: str) -> FleetDevice:
        """
        Create a fleet device with a fresh connection code.

        Codes are random; a collision with an existing code is caught by the
        unique constraint and retried with a new code.

        Raises:
            StoreUnavailableError: no free code after several attempts, or store failure
        """
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            device = FleetDevice(
                owner_id=owner_id,
                name=name.strip(),
                connection_code=generate_connection_code(),
                status=DeviceStatus.OFFLINE,
            )
            db.add(device)
            try:
                await db.flush()
            except IntegrityError:
                await db.rollback()
                logger.warning("Connection code collision (attempt %d), regenerating", attempt)
                continue

            await log_event(
                db,
                action=AuditAction.FLEET_DEVICE_CREATED,
                actor_id=str(owner_id),
                actor_name=None,
                fleet_code=device.connection_code,
                metadata={"device_id": device.id, "name": device.name},
            )
            await commit_or_raise(db, "register_device")
            await db.refresh(device)
            logger.info("Fleet device %s registered for owner %s", device.id, owner_id)
            return device

        raise StoreUnavailableError("register_device")

    @staticmethod
    async def list_devices(db: AsyncSession, owner_id: int) -> List[FleetDevice]:
        result = await db.execute(
            select(FleetDevice)
            .where(FleetDevice.owner_id == owner_id)
            .order_by(FleetDevice.created_at.desc(), FleetDevice.id.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def live_snapshot(db: AsyncSession, owner_id: int) -> LiveFleetResponse:
        """
        Every driver bound to one of the owner's codes with its current marker.

        This is the renderer's fallback poll, so it is a single query.
        """
        result = await db.execute(
            select(Driver, CurrentLocation)
            .outerjoin(CurrentLocation, CurrentLocation.driver_id == Driver.driver_id)
            .where(Driver.fleet_code.in_(_owned_codes(owner_id)))
            .order_by(Driver.driver_name)
        )

        drivers = []
        for driver, location in result.all():
            info = driver.device_info or {}
            entry = LiveDriverResponse(
                driver_id=driver.driver_id,
                driver_name=driver.driver_name,
                fleet_code=driver.fleet_code,
                status=driver.status,
                last_seen_at=driver.last_seen_at,
                battery_level=info.get("batteryLevel"),
                is_background=info.get("isBackground"),
            )
            if location is not None:
                entry.latitude = location.latitude
                entry.longitude = location.longitude
                entry.speed = location.speed
                entry.accuracy = location.accuracy
                entry.heading = location.heading
                entry.location_updated_at = location.updated_at
            drivers.append(entry)

        return LiveFleetResponse(drivers=drivers, total=len(drivers), server_time=datetime.utcnow())

    @staticmethod
    async def driver_history(
        db: AsyncSession, owner_id: int, driver_id: str, limit: int = 100
    ) -> DriverHistoryResponse:
        """
        Most recent history points first.

        Raises:
            ResourceNotFoundError: driver unknown or not bound to one of the owner's codes
        """
        result = await db.execute(
            select(Driver).where(
                Driver.driver_id == driver_id,
                Driver.fleet_code.in_(_owned_codes(owner_id)),
            )
        )
        if result.scalar_one_or_none() is None:
            raise ResourceNotFoundError("Driver", driver_id)

        total = await db.scalar(
            select(func.count(LocationHistoryPoint.id)).where(LocationHistoryPoint.driver_id == driver_id)
        )
        points = await db.execute(
            select(LocationHistoryPoint)
            .where(LocationHistoryPoint.driver_id == driver_id)
            .order_by(LocationHistoryPoint.recorded_at.desc(), LocationHistoryPoint.id.desc())
            .limit(limit)
        )
        return DriverHistoryResponse(
            driver_id=driver_id,
            points=[HistoryPointResponse.model_validate(p) for p in points.scalars().all()],
            total=total or 0,
        )
