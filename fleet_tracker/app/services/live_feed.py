"""
Live change feed publisher.

Committed location upserts and driver changes are published on per-fleet-code
Redis channels:
    {prefix}:{fleet_code}:locations
    {prefix}:{fleet_code}:drivers

Delivery is best-effort. Subscribers fall back to polling the live snapshot,
so publish failures are logged and never fail the request.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import Depends

from fleet_tracker.app.core.config import settings
from fleet_tracker.app.core.redis_client import get_redis
from fleet_tracker.app.core.reliability import CircuitBreaker, CircuitOpenError
from fleet_tracker.app.models.driver import Driver
from fleet_tracker.app.schemas.fleet import DriverFeedEvent, LocationFeedEvent

logger = logging.getLogger("fleet_tracker.feed")

feed_circuit_breaker = CircuitBreaker(
    failure_threshold=settings.feed_failure_threshold,
    reset_timeout=settings.feed_reset_timeout,
)


def location_channel(fleet_code: str) -> str:
    return f"{settings.feed_channel_prefix}:{fleet_code}:locations"


def driver_channel(fleet_code: str) -> str:
    return f"{settings.feed_channel_prefix}:{fleet_code}:drivers"


class LiveFeedPublisher:
    def __init__(self, redis, breaker: Optional[CircuitBreaker] = None):
        self._redis = redis
        self._breaker = breaker or feed_circuit_breaker

    async def publish_location(self, values: Dict[str, Any]) -> bool:
        """Publish a CurrentLocation row (as written) to its fleet channel."""
        event = LocationFeedEvent.model_validate(values)
        return await self._publish(location_channel(event.fleet_code), event.model_dump_json(by_alias=True))

    async def publish_driver(self, driver: Driver) -> bool:
        info = driver.device_info or {}
        event = DriverFeedEvent(
            driver_id=driver.driver_id,
            driver_name=driver.driver_name,
            fleet_code=driver.fleet_code,
            status=driver.status,
            last_seen_at=driver.last_seen_at,
            battery_level=info.get("batteryLevel"),
            is_background=info.get("isBackground"),
        )
        return await self._publish(driver_channel(driver.fleet_code), event.model_dump_json(by_alias=True))

    async def _publish(self, channel: str, message: str) -> bool:
        try:
            await self._breaker.call(self._redis.publish, channel, message)
        except CircuitOpenError:
            logger.debug("Feed circuit open, skipping publish to %s", channel)
            return False
        except Exception:
            logger.warning("Feed publish to %s failed", channel, exc_info=True)
            return False
        return True


async def get_live_feed(redis=Depends(get_redis)) -> LiveFeedPublisher:
    """FastAPI dependency."""
    return LiveFeedPublisher(redis)
