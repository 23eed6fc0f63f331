"""
Identity Registry.

Binds opaque driver identities to fleet devices through connection codes and
answers "is this identity really seated on this code?" for every gated driver
operation.

Connect outcomes for a code:
1. nobody bound: a new identity is created (admin notified)
2. caller's cached identity is the bound one: idempotent reconnect
3. another identity is bound: takeover, the caller continues as that identity

The unique constraint on drivers.fleet_code backs the check-then-insert in
outcome 1: a concurrent first connect that loses the race is resolved as a
takeover of the winner instead of creating a second identity.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.exceptions import (
    FleetCodeConflictError,
    IdentityRejectedError,
    ResourceNotFoundError,
    StoreUnavailableError,
)
from fleet_tracker.app.db.session import commit_or_raise
from fleet_tracker.app.models.current_location import CurrentLocation
from fleet_tracker.app.models.driver import Driver
from fleet_tracker.app.models.enums import DeviceStatus, DriverStatus
from fleet_tracker.app.models.fleet_device import FleetDevice
from fleet_tracker.app.services.audit import AuditAction, log_event
from fleet_tracker.app.services.live_feed import LiveFeedPublisher
from fleet_tracker.app.services.notification_service import NotificationService

logger = logging.getLogger("fleet_tracker.identity")


@dataclass
class ConnectResult:
    """Plain values; the session may be rolled back by the notification step."""
    identity: str
    driver_name: str
    device_id: int
    device_name: str
    created: bool
    reconnected: bool
    existing_driver_name: Optional[str] = None


@dataclass
class ConnectionState:
    connected: bool
    device: Optional[FleetDevice] = None
    driver_name: Optional[str] = None


async def _load_device(db: AsyncSession, code: str) -> Optional[FleetDevice]:
    # Row lock on PostgreSQL serialises connects per code; SQLite ignores it
    result = await db.execute(
        select(FleetDevice).where(FleetDevice.connection_code == code).with_for_update()
    )
    return result.scalar_one_or_none()


async def _load_bound_driver(db: AsyncSession, code: str) -> Optional[Driver]:
    result = await db.execute(select(Driver).where(Driver.fleet_code == code))
    return result.scalar_one_or_none()


async def _create_driver(db: AsyncSession, code: str, name: str, now: datetime) -> Optional[Driver]:
    """Insert a new identity with an empty live marker. None if the code was taken meanwhile."""
    driver = Driver(
        driver_id=str(uuid.uuid4()),
        driver_name=name,
        fleet_code=code,
        status=DriverStatus.ACTIVE,
        connected_at=now,
        last_seen_at=now,
        device_info={},
    )
    db.add(driver)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.warning("Concurrent first connect on code %s, resolving against existing driver", code)
        return None
    db.add(CurrentLocation(driver_id=driver.driver_id, fleet_code=code))
    return driver


class IdentityRegistry:

    @staticmethod
    async def connect(
        db: AsyncSession,
        code: str,
        display_name: str,
        existing_identity: Optional[str] = None,
        feed: Optional[LiveFeedPublisher] = None,
    ) -> ConnectResult:
        """
        Seat a driver on the fleet device owning `code`.

        Args:
            code: Normalised connection code
            display_name: Trimmed driver name
            existing_identity: Identity the app cached from an earlier connect

        Raises:
            ResourceNotFoundError: no device has this code
            FleetCodeConflictError: code held by another identity and takeover disabled
            StoreUnavailableError: the store rejected the write
        """
        now = datetime.utcnow()

        device = await _load_device(db, code)
        if device is None:
            raise ResourceNotFoundError("FleetDevice", message="Invalid connection code")

        driver = await _load_bound_driver(db, code)
        created = False
        if driver is None:
            driver = await _create_driver(db, code, display_name, now)
            if driver is None:
                device = await _load_device(db, code)
                driver = await _load_bound_driver(db, code)
                if device is None or driver is None:
                    raise StoreUnavailableError("connect")
            else:
                created = True

        reconnected = False
        existing_driver_name = None
        if created:
            action = AuditAction.DRIVER_CONNECTED
            metadata = {"device_id": device.id}
        elif existing_identity and existing_identity == driver.driver_id:
            action = AuditAction.DRIVER_RECONNECTED
            metadata = {"device_id": device.id}
            driver.driver_name = display_name
            reconnected = True
        else:
            if not settings.fleet_code_takeover_enabled:
                raise FleetCodeConflictError()
            logger.warning(
                "Fleet code %s taken over: continuing as driver %s (requested identity %s)",
                code, driver.driver_id, existing_identity,
            )
            action = AuditAction.FLEET_CODE_TAKEOVER
            metadata = {
                "device_id": device.id,
                "requested_identity": existing_identity,
                "requested_name": display_name,
            }
            reconnected = True
            existing_driver_name = driver.driver_name

        driver.status = DriverStatus.ACTIVE
        driver.last_seen_at = now
        driver.connected_at = now

        device.connected_driver_id = driver.driver_id
        device.connected_at = now
        device.status = DeviceStatus.ACTIVE

        await log_event(
            db,
            action=action,
            actor_id=driver.driver_id,
            actor_name=driver.driver_name,
            fleet_code=code,
            metadata=metadata,
        )
        await commit_or_raise(db, "connect")
        logger.info("Driver %s connected to device %s (%s)", driver.driver_id, device.id, action)

        if feed is not None:
            await feed.publish_driver(driver)

        outcome = ConnectResult(
            identity=driver.driver_id,
            driver_name=driver.driver_name,
            device_id=device.id,
            device_name=device.name,
            created=created,
            reconnected=reconnected,
            existing_driver_name=existing_driver_name,
        )

        if created:
            await NotificationService.driver_joined(
                db,
                recipient_id=device.owner_id,
                driver_id=outcome.identity,
                driver_name=outcome.driver_name,
                device_name=outcome.device_name,
            )

        return outcome

    @staticmethod
    async def disconnect(
        db: AsyncSession, identity: str, feed: Optional[LiveFeedPublisher] = None
    ) -> Optional[Driver]:
        """
        Mark the driver offline and free any device pointing at it.

        Idempotent: unknown or already-offline identities are not errors.
        Returns the driver if it exists.
        """
        now = datetime.utcnow()
        result = await db.execute(select(Driver).where(Driver.driver_id == identity))
        driver = result.scalar_one_or_none()

        released = await db.execute(
            update(FleetDevice)
            .where(FleetDevice.connected_driver_id == identity)
            .values(connected_driver_id=None, connected_at=None, status=DeviceStatus.OFFLINE)
        )

        if driver is not None:
            was_offline = driver.status == DriverStatus.OFFLINE
            driver.status = DriverStatus.OFFLINE
            driver.last_seen_at = now
            if not was_offline:
                await log_event(
                    db,
                    action=AuditAction.DRIVER_DISCONNECTED,
                    actor_id=driver.driver_id,
                    actor_name=driver.driver_name,
                    fleet_code=driver.fleet_code,
                    metadata={"devices_released": released.rowcount},
                )

        await commit_or_raise(db, "disconnect")
        if driver is not None and feed is not None:
            await feed.publish_driver(driver)
        return driver

    @staticmethod
    async def get_connection_state(db: AsyncSession, identity: Optional[str]) -> ConnectionState:
        """Read-only; unknown or offline identities are simply not connected."""
        if not identity:
            return ConnectionState(connected=False)

        result = await db.execute(select(Driver).where(Driver.driver_id == identity))
        driver = result.scalar_one_or_none()
        if driver is None or driver.status != DriverStatus.ACTIVE:
            return ConnectionState(connected=False)

        device_result = await db.execute(
            select(FleetDevice).where(FleetDevice.connection_code == driver.fleet_code)
        )
        return ConnectionState(
            connected=True,
            device=device_result.scalar_one_or_none(),
            driver_name=driver.driver_name,
        )

    @staticmethod
    async def validate_identity(db: AsyncSession, identity: str, code: str) -> Driver:
        """
        Return the driver only if `identity` is bound to exactly `code`.

        Raises:
            IdentityRejectedError: unknown identity or different code, indistinguishably
        """
        result = await db.execute(select(Driver).where(Driver.driver_id == identity))
        driver = result.scalar_one_or_none()
        if driver is None or driver.fleet_code != code:
            logger.info("Rejected identity %s for code %s", identity, code)
            raise IdentityRejectedError()
        return driver

    @staticmethod
    async def update_status(
        db: AsyncSession,
        identity: str,
        code: str,
        status: DriverStatus,
        feed: Optional[LiveFeedPublisher] = None,
    ) -> Driver:
        """Driver-reported status change; also counts as a heartbeat."""
        driver = await IdentityRegistry.validate_identity(db, identity, code)
        previous = driver.status
        driver.status = status
        driver.last_seen_at = datetime.utcnow()
        if previous != status:
            await log_event(
                db,
                action=AuditAction.DRIVER_STATUS_CHANGED,
                actor_id=driver.driver_id,
                actor_name=driver.driver_name,
                fleet_code=code,
                metadata={"from": previous.value, "to": status.value},
            )
        await commit_or_raise(db, "update_status")
        if feed is not None:
            await feed.publish_driver(driver)
        return driver

    @staticmethod
    async def update_name(
        db: AsyncSession,
        identity: str,
        code: str,
        name: str,
        feed: Optional[LiveFeedPublisher] = None,
    ) -> Driver:
        driver = await IdentityRegistry.validate_identity(db, identity, code)
        if driver.driver_name != name:
            await log_event(
                db,
                action=AuditAction.DRIVER_RENAMED,
                actor_id=driver.driver_id,
                actor_name=name,
                fleet_code=code,
                metadata={"previous_name": driver.driver_name},
            )
            driver.driver_name = name
        await commit_or_raise(db, "update_name")
        if feed is not None:
            await feed.publish_driver(driver)
        return driver
