"""
Location Ingestion Service.

Turns a decoded location report into live state:
- CurrentLocation: one row per driver, last-arrived wins for single fixes,
  newest-by-fix-time for batches
- LocationHistoryPoint: only fixes within the accuracy threshold
- Driver heartbeat: status, last_seen_at and device metadata, refreshed on
  every report including ones without coordinates

Nothing is written before the whole report has been validated. All writes of
one report share a single commit; the change feed is notified afterwards.
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.exceptions import InputValidationError, StoreUnavailableError
from fleet_tracker.app.db.session import commit_or_raise
from fleet_tracker.app.models.current_location import CurrentLocation
from fleet_tracker.app.models.driver import Driver
from fleet_tracker.app.models.enums import DriverStatus
from fleet_tracker.app.models.location_history import LocationHistoryPoint
from fleet_tracker.app.schemas.location import (
    BatchFixReport,
    FixPayload,
    LocationReportResponse,
    SingleFixReport,
)
from fleet_tracker.app.services.cadence import next_update_interval_ms
from fleet_tracker.app.services.identity_registry import IdentityRegistry
from fleet_tracker.app.services.live_feed import LiveFeedPublisher

logger = logging.getLogger("fleet_tracker.ingest")

HEARTBEAT_ONLY_WARNING = "Location unavailable, heartbeat recorded"


def valid_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """Both present, finite and inside WGS84 bounds."""
    if latitude is None or longitude is None:
        return False
    if not (math.isfinite(latitude) and math.isfinite(longitude)):
        return False
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def is_accurate(accuracy: Optional[float]) -> bool:
    # An unknown accuracy is never trusted for the history trail
    return accuracy is not None and accuracy <= settings.history_accuracy_threshold_m


def _speed_in_range(speed: Optional[float]) -> bool:
    return speed is None or 0 <= speed <= settings.max_speed_kmh


def _battery_in_range(battery_level: Optional[float]) -> bool:
    return battery_level is None or 0 <= battery_level <= 100


def _check_battery(battery_level: Optional[float]) -> None:
    if not _battery_in_range(battery_level):
        raise InputValidationError("Battery level must be between 0 and 100", field="batteryLevel")


def _check_speed(speed: Optional[float]) -> None:
    if not _speed_in_range(speed):
        raise InputValidationError(
            f"Speed must be between 0 and {settings.max_speed_kmh:g} km/h", field="speed"
        )


def _merge_device_info(driver: Driver, fix: FixPayload, now: datetime) -> None:
    """Refresh the heartbeat and fold reported metadata into device_info."""
    info = dict(driver.device_info or {})
    if fix.battery_level is not None and _battery_in_range(fix.battery_level):
        info["batteryLevel"] = fix.battery_level
    if fix.heading is not None:
        info["heading"] = fix.heading
    if fix.is_background is not None:
        info["isBackground"] = fix.is_background
    info["lastUpdate"] = now.isoformat()

    # Reassign so the JSON column is flagged dirty
    driver.device_info = info
    driver.status = DriverStatus.ACTIVE
    driver.last_seen_at = now


def _location_values(driver: Driver, fix: FixPayload, now: datetime) -> Dict[str, Any]:
    return {
        "driver_id": driver.driver_id,
        "fleet_code": driver.fleet_code,
        "latitude": fix.latitude,
        "longitude": fix.longitude,
        "speed": fix.speed,
        "accuracy": fix.accuracy,
        "heading": fix.heading,
        "recorded_at": fix.timestamp or now,
        "updated_at": now,
    }


def _history_point(driver: Driver, fix: FixPayload, now: datetime) -> LocationHistoryPoint:
    return LocationHistoryPoint(
        driver_id=driver.driver_id,
        fleet_code=driver.fleet_code,
        latitude=fix.latitude,
        longitude=fix.longitude,
        speed=fix.speed,
        accuracy=fix.accuracy,
        heading=fix.heading,
        recorded_at=fix.timestamp or now,
    )


async def _upsert_current_location(db: AsyncSession, values: Dict[str, Any], newer_only: bool) -> bool:
    """
    Atomic INSERT ... ON CONFLICT DO UPDATE keyed on driver_id.

    With `newer_only` the stored row is kept when its recorded_at is later
    than the incoming fix. Returns True when a row was written.
    """
    if db.get_bind().dialect.name == "postgresql":
        stmt = pg_insert(CurrentLocation).values(**values)
    else:
        stmt = sqlite_insert(CurrentLocation).values(**values)

    where = None
    if newer_only:
        where = or_(
            CurrentLocation.recorded_at.is_(None),
            CurrentLocation.recorded_at <= stmt.excluded.recorded_at,
        )

    stmt = stmt.on_conflict_do_update(
        index_elements=[CurrentLocation.driver_id],
        set_={key: stmt.excluded[key] for key in values if key != "driver_id"},
        where=where,
    )
    result = await db.execute(stmt)
    return result.rowcount > 0


def select_current_fix(fixes: List[FixPayload]) -> Tuple[Optional[FixPayload], bool]:
    """
    Pick the fix that becomes CurrentLocation for a batch.

    Accurate fixes win; the latest timestamp wins among them, with missing
    timestamps ranking oldest and ties going to the later array position.
    With no accurate fix the newest valid one is used so the driver still
    shows on the map. Returns (fix, accurate).
    """
    def rank(item: Tuple[int, FixPayload]):
        index, fix = item
        return (fix.timestamp is not None, fix.timestamp or datetime.min, index)

    candidates = list(enumerate(fixes))
    accurate = [item for item in candidates if is_accurate(item[1].accuracy)]
    if accurate:
        return max(accurate, key=rank)[1], True
    if candidates:
        return max(candidates, key=rank)[1], False
    return None, False


class LocationIngestService:

    @staticmethod
    async def report(
        db: AsyncSession,
        report,
        feed: Optional[LiveFeedPublisher] = None,
    ) -> LocationReportResponse:
        """
        Ingest a canonical report (single fix or batch).

        Raises:
            IdentityRejectedError: identity not bound to the claimed fleet code
            InputValidationError: out-of-range speed or battery
            StoreUnavailableError: the store rejected the write
        """
        try:
            driver = await IdentityRegistry.validate_identity(db, report.identity, report.fleet_code)
            if isinstance(report, BatchFixReport):
                return await LocationIngestService.report_batch(db, driver, report.locations, feed)
            return await LocationIngestService.report_single(db, driver, report, feed)
        except SQLAlchemyError as exc:
            # Reads and the upsert fail here; commit failures are already mapped
            await db.rollback()
            logger.error("Store unavailable while ingesting for %s: %s", report.identity, exc)
            raise StoreUnavailableError("report_location") from exc

    @staticmethod
    async def report_single(
        db: AsyncSession,
        driver: Driver,
        fix: SingleFixReport,
        feed: Optional[LiveFeedPublisher] = None,
    ) -> LocationReportResponse:
        now = datetime.utcnow()

        if not valid_coordinates(fix.latitude, fix.longitude):
            # Heartbeats are never rejected; out-of-range metadata is dropped
            battery = fix.battery_level if _battery_in_range(fix.battery_level) else None
            speed = fix.speed if _speed_in_range(fix.speed) else None
            interval = next_update_interval_ms(battery, speed)
            _merge_device_info(driver, fix, now)
            await commit_or_raise(db, "heartbeat")
            logger.info("Heartbeat without location from driver %s", driver.driver_id)
            if feed is not None:
                await feed.publish_driver(driver)
            return LocationReportResponse(
                stored=False,
                warning=HEARTBEAT_ONLY_WARNING,
                server_time=now,
                next_update_interval_ms=interval,
            )

        _check_battery(fix.battery_level)
        _check_speed(fix.speed)
        interval = next_update_interval_ms(fix.battery_level, fix.speed)

        values = _location_values(driver, fix, now)
        await _upsert_current_location(db, values, newer_only=False)

        accurate = is_accurate(fix.accuracy)
        if accurate:
            db.add(_history_point(driver, fix, now))

        _merge_device_info(driver, fix, now)
        await commit_or_raise(db, "report_location")

        if feed is not None:
            await feed.publish_location(values)
            await feed.publish_driver(driver)

        return LocationReportResponse(
            stored=True,
            accurate=accurate,
            server_time=now,
            next_update_interval_ms=interval,
        )

    @staticmethod
    async def report_batch(
        db: AsyncSession,
        driver: Driver,
        fixes: List[FixPayload],
        feed: Optional[LiveFeedPublisher] = None,
    ) -> LocationReportResponse:
        """
        Ingest fixes buffered on the device.

        Fixes with invalid coordinates or implausible speed are discarded one
        by one; the rest of the batch still counts.
        """
        now = datetime.utcnow()

        usable = [
            fix for fix in fixes
            if valid_coordinates(fix.latitude, fix.longitude) and _speed_in_range(fix.speed)
        ]
        discarded = len(fixes) - len(usable)

        current, accurate = select_current_fix(usable)

        values = None
        written = False
        if current is not None:
            values = _location_values(driver, current, now)
            written = await _upsert_current_location(db, values, newer_only=True)

        trail = [fix for fix in usable if is_accurate(fix.accuracy)]
        trail.sort(key=lambda fix: fix.timestamp or datetime.min, reverse=True)
        trail = trail[:settings.max_history_rows_per_batch]
        for fix in trail:
            db.add(_history_point(driver, fix, now))

        last = fixes[-1]
        _merge_device_info(driver, last, now)
        await commit_or_raise(db, "report_batch")

        logger.info(
            "Batch from driver %s: %d received, %d to history, %d discarded, current %s",
            driver.driver_id, len(fixes), len(trail), discarded,
            "updated" if written else "kept",
        )

        if feed is not None:
            if written:
                await feed.publish_location(values)
            await feed.publish_driver(driver)

        battery = last.battery_level if _battery_in_range(last.battery_level) else None
        return LocationReportResponse(
            stored=written,
            warning=None if current is not None else HEARTBEAT_ONLY_WARNING,
            accurate=accurate if current is not None else None,
            server_time=now,
            next_update_interval_ms=next_update_interval_ms(battery, last.speed),
            received=len(fixes),
            history_stored=len(trail),
            discarded=discarded,
        )
