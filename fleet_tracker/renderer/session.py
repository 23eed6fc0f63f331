"""
Live map session.

One LiveMapSession per open map view. It owns every marker, the animation
state and the background tasks feeding it; nothing is shared between views.

Inputs:
- change feed messages (location upserts, driver changes), best-effort
- periodic snapshot polls, which also repair anything the feed missed

Output: `frame()` returns what to draw right now, with liveness already
classified and moving markers interpolated.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set

import httpx
from pydantic import ValidationError

from fleet_tracker.app.models.enums import DriverStatus
from fleet_tracker.app.schemas.fleet import DriverFeedEvent, LiveFleetResponse, LocationFeedEvent
from fleet_tracker.renderer.config import RendererConfig
from fleet_tracker.renderer.feed import RedisChangeFeed, SnapshotPoller
from fleet_tracker.renderer.interpolation import MarkerAnimation, Position, is_glitchy_jump
from fleet_tracker.renderer.liveness import LivenessState, classify, has_location

logger = logging.getLogger("fleet_tracker.renderer")


@dataclass
class DriverMarker:
    """Last known state of one driver. `position` is the stored fix, never an animated one."""
    driver_id: str
    driver_name: str
    fleet_code: str
    status: DriverStatus
    last_seen_at: Optional[datetime] = None
    location_updated_at: Optional[datetime] = None
    recorded_at: Optional[datetime] = None
    position: Optional[Position] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    heading: Optional[float] = None
    battery_level: Optional[float] = None
    is_background: Optional[bool] = None
    animation: Optional[MarkerAnimation] = None


@dataclass
class MarkerFrame:
    driver_id: str
    driver_name: str
    state: LivenessState
    has_location: bool
    position: Optional[Position]
    animating: bool
    heading: Optional[float] = None
    battery_level: Optional[float] = None
    is_background: Optional[bool] = None


class LiveMapSession:
    """
    Per-view reconciler between update sources and the drawn map.

    Markers for drivers that are hidden, removed by a snapshot or unknown are
    not updated; their events are dropped rather than queued.
    """

    def __init__(
        self,
        config: Optional[RendererConfig] = None,
        feed: Optional[RedisChangeFeed] = None,
        poller: Optional[SnapshotPoller] = None,
        on_frame: Optional[Callable[[List[MarkerFrame]], Any]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or RendererConfig()
        self.markers: Dict[str, DriverMarker] = {}
        self.hidden: Set[str] = set()
        self._feed = feed
        self._poller = poller
        self._on_frame = on_frame
        self._clock = clock
        self._tasks: List[asyncio.Task] = []
        self._closed = False

    # Selection

    def deselect(self, driver_id: str) -> None:
        """Take a driver off screen. Its running animation is dropped."""
        self.hidden.add(driver_id)
        marker = self.markers.get(driver_id)
        if marker is not None:
            marker.animation = None

    def select(self, driver_id: str) -> None:
        self.hidden.discard(driver_id)

    def _on_screen(self, driver_id: str) -> Optional[DriverMarker]:
        if self._closed or driver_id in self.hidden:
            return None
        return self.markers.get(driver_id)

    # State updates

    def _displayed_position(self, marker: DriverMarker, now: float) -> Optional[Position]:
        if marker.animation is not None:
            return marker.animation.position_at(now)
        return marker.position

    def _move_marker(self, marker: DriverMarker, target: Position, recorded_at: Optional[datetime]) -> None:
        if marker.position == target:
            # Already there or already heading there
            return

        now = self._clock()
        start = self._displayed_position(marker, now)

        if start is not None and marker.recorded_at is not None and recorded_at is not None:
            elapsed = (recorded_at - marker.recorded_at).total_seconds()
            if is_glitchy_jump(start, target, elapsed, self.config.max_plausible_speed):
                logger.debug("Implausible jump for driver %s, snapping", marker.driver_id)
                start = None

        if start is None or start == target:
            marker.animation = None
        else:
            marker.animation = MarkerAnimation(start, target, now, self.config.animation_duration)
        marker.position = target

    def apply_location(
        self,
        driver_id: str,
        latitude: Optional[float],
        longitude: Optional[float],
        updated_at: Optional[datetime],
        recorded_at: Optional[datetime] = None,
        speed: Optional[float] = None,
        accuracy: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> bool:
        """
        Record a location write for an on-screen driver.

        Older writes than the one already shown are ignored, and a missing
        coordinate pair never replaces a known position. Returns True when
        the marker changed.
        """
        marker = self._on_screen(driver_id)
        if marker is None:
            return False
        if (
            updated_at is not None
            and marker.location_updated_at is not None
            and updated_at < marker.location_updated_at
        ):
            return False
        if not has_location(latitude, longitude):
            return False

        self._move_marker(marker, Position(latitude, longitude), recorded_at)
        marker.location_updated_at = updated_at
        if recorded_at is not None:
            marker.recorded_at = recorded_at
        marker.speed = speed
        marker.accuracy = accuracy
        marker.heading = heading
        return True

    def apply_location_event(self, event: LocationFeedEvent) -> bool:
        return self.apply_location(
            event.driver_id,
            event.latitude,
            event.longitude,
            updated_at=event.updated_at,
            recorded_at=event.recorded_at,
            speed=event.speed,
            accuracy=event.accuracy,
            heading=event.heading,
        )

    def apply_driver_event(self, event: DriverFeedEvent) -> bool:
        """Driver changes may introduce a driver the map has not seen yet."""
        if self._closed or event.driver_id in self.hidden:
            return False

        marker = self.markers.get(event.driver_id)
        if marker is None:
            marker = DriverMarker(
                driver_id=event.driver_id,
                driver_name=event.driver_name,
                fleet_code=event.fleet_code,
                status=event.status,
            )
            self.markers[event.driver_id] = marker

        marker.driver_name = event.driver_name
        marker.status = event.status
        if event.last_seen_at is not None:
            marker.last_seen_at = event.last_seen_at
        if event.battery_level is not None:
            marker.battery_level = event.battery_level
        if event.is_background is not None:
            marker.is_background = event.is_background
        return True

    def apply_snapshot(self, snapshot: LiveFleetResponse) -> None:
        """Reconcile with a full snapshot; drivers absent from it are removed."""
        if self._closed:
            return

        seen = set()
        for entry in snapshot.drivers:
            seen.add(entry.driver_id)
            if entry.driver_id in self.hidden:
                continue
            self.apply_driver_event(
                DriverFeedEvent(
                    driver_id=entry.driver_id,
                    driver_name=entry.driver_name,
                    fleet_code=entry.fleet_code,
                    status=entry.status,
                    last_seen_at=entry.last_seen_at,
                    battery_level=entry.battery_level,
                    is_background=entry.is_background,
                )
            )
            self.apply_location(
                entry.driver_id,
                entry.latitude,
                entry.longitude,
                updated_at=entry.location_updated_at,
                speed=entry.speed,
                accuracy=entry.accuracy,
                heading=entry.heading,
            )

        for driver_id in list(self.markers):
            if driver_id not in seen:
                del self.markers[driver_id]

    async def handle_feed_message(self, channel: str, payload: Dict[str, Any]) -> None:
        try:
            if payload.get("type") == "location":
                self.apply_location_event(LocationFeedEvent.model_validate(payload))
            elif payload.get("type") == "driver":
                self.apply_driver_event(DriverFeedEvent.model_validate(payload))
        except ValidationError:
            logger.warning("Malformed feed message on %s", channel)

    # Rendering

    def frame(self, now: Optional[datetime] = None) -> List[MarkerFrame]:
        """What to draw now. Finished animations are cleared here."""
        wall_now = now or datetime.utcnow()
        tick = self._clock()

        frames = []
        for marker in self.markers.values():
            if marker.driver_id in self.hidden:
                continue

            animating = False
            position = marker.position
            if marker.animation is not None:
                if marker.animation.finished(tick):
                    marker.animation = None
                else:
                    position = marker.animation.position_at(tick)
                    animating = True

            frames.append(
                MarkerFrame(
                    driver_id=marker.driver_id,
                    driver_name=marker.driver_name,
                    state=classify(
                        marker.status,
                        marker.last_seen_at,
                        marker.location_updated_at,
                        wall_now,
                        self.config,
                    ),
                    has_location=position is not None,
                    position=position,
                    animating=animating,
                    heading=marker.heading,
                    battery_level=marker.battery_level,
                    is_background=marker.is_background,
                )
            )
        return frames

    # Background tasks

    async def refresh(self) -> bool:
        """Poll the snapshot once. Failures are logged; the map keeps its state."""
        if self._poller is None:
            return False
        try:
            snapshot = await self._poller.fetch()
        except (httpx.HTTPError, ValueError) as exc:
            # ValueError covers non-JSON bodies and schema mismatches
            logger.warning("Live snapshot poll failed: %s", exc)
            return False
        self.apply_snapshot(snapshot)
        return True

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.poll_interval)
            await self.refresh()

    async def _frame_loop(self) -> None:
        while True:
            frames = self.frame()
            if self._on_frame is not None:
                result = self._on_frame(frames)
                if asyncio.iscoroutine(result):
                    await result
            await asyncio.sleep(self.config.frame_interval)

    async def start(self) -> None:
        """Load the first snapshot and start the frame, feed and poll tasks."""
        if self._tasks or self._closed:
            return

        await self.refresh()
        self._tasks.append(asyncio.create_task(self._frame_loop()))
        if self._feed is not None:
            self._tasks.append(asyncio.create_task(self._feed.listen(self.handle_feed_message)))
        if self._poller is not None:
            self._tasks.append(asyncio.create_task(self._poll_loop()))

    async def run(self) -> None:
        """Run until the session is closed. A failing task closes the whole session."""
        await self.start()
        try:
            await asyncio.gather(*self._tasks)
        except asyncio.CancelledError:
            if not self._closed:
                raise
        except Exception:
            logger.exception("Live map task failed, closing session")
            raise
        finally:
            if not self._closed:
                await self.close()

    async def close(self) -> None:
        """Cancel every task; later updates are dropped."""
        self._closed = True
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        if self._feed is not None:
            await self._feed.close()
        if self._poller is not None:
            await self._poller.close()
        for marker in self.markers.values():
            marker.animation = None
