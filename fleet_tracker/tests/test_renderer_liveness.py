"""
Unit tests for live map liveness classification and marker interpolation.
"""

from datetime import datetime, timedelta, timezone

import pytest

from fleet_tracker.app.models.enums import DriverStatus
from fleet_tracker.renderer.config import RendererConfig
from fleet_tracker.renderer.interpolation import (
    MarkerAnimation,
    Position,
    ease_out_cubic,
    haversine_distance,
    interpolate_position,
    is_glitchy_jump,
    lerp,
)
from fleet_tracker.renderer.liveness import LivenessState, classify, has_location, last_activity

NOW = datetime(2026, 1, 1, 12, 0, 0)


def ago(minutes: float) -> datetime:
    return NOW - timedelta(minutes=minutes)


# Liveness
@pytest.mark.parametrize("minutes, expected", [
    (0, LivenessState.ACTIVE),
    (4, LivenessState.ACTIVE),
    (5, LivenessState.IDLE),
    (10, LivenessState.IDLE),
    (15, LivenessState.OFFLINE),
    (20, LivenessState.OFFLINE),
])
def test_classify_by_silence(minutes, expected):
    assert classify(DriverStatus.ACTIVE, ago(minutes), None, NOW) == expected


def test_explicit_offline_wins_over_fresh_heartbeat():
    assert classify(DriverStatus.OFFLINE, ago(0), ago(0), NOW) == LivenessState.OFFLINE
    assert classify(DriverStatus.DISCONNECTED, ago(1), None, NOW) == LivenessState.OFFLINE


def test_offline_after_twenty_minutes_with_offline_status():
    assert classify(DriverStatus.OFFLINE, ago(20), ago(20), NOW) == LivenessState.OFFLINE


def test_never_seen_is_offline():
    assert classify(DriverStatus.ACTIVE, None, None, NOW) == LivenessState.OFFLINE


def test_location_write_counts_as_activity():
    assert classify(DriverStatus.ACTIVE, ago(12), ago(2), NOW) == LivenessState.ACTIVE
    assert last_activity(ago(12), ago(2)) == ago(2)


def test_stale_location_with_live_heartbeat():
    assert classify(DriverStatus.ACTIVE, ago(1), ago(45), NOW) == LivenessState.STALE


def test_custom_windows():
    config = RendererConfig(active_window=60, offline_after=120)
    assert classify(DriverStatus.ACTIVE, ago(1.5), None, NOW, config) == LivenessState.IDLE


def test_aware_timestamps_are_compared_in_utc():
    seen = (NOW - timedelta(minutes=2)).replace(tzinfo=timezone.utc)
    assert classify(DriverStatus.ACTIVE, seen, None, NOW) == LivenessState.ACTIVE


@pytest.mark.parametrize("lat, lng, expected", [
    (None, None, False),
    (19.0, None, False),
    (0.0, 0.0, False),
    (0.0, 72.0, True),
    (19.0, 72.0, True),
])
def test_has_location(lat, lng, expected):
    assert has_location(lat, lng) is expected


# Interpolation
def test_easing_endpoints():
    assert lerp(10, 20, 0.5) == 15
    assert ease_out_cubic(0) == 0
    assert ease_out_cubic(1) == 1
    assert ease_out_cubic(0.5) == pytest.approx(0.875)


def test_interpolate_position_clamps_progress():
    start, end = Position(0.0, 0.0), Position(1.0, 2.0)
    assert interpolate_position(start, end, -1) == start
    assert interpolate_position(start, end, 5) == end


def test_haversine_distance():
    # One degree of latitude
    assert haversine_distance(Position(0, 0), Position(1, 0)) == pytest.approx(111195, rel=1e-3)


def test_marker_settles_exactly_on_second_fix():
    first = Position(19.0760, 72.8777)
    second = Position(19.0760 + 50 / 111195, 72.8777)
    assert haversine_distance(first, second) == pytest.approx(50, abs=0.5)

    animation = MarkerAnimation(first, second, started_at=100.0, duration=1.0)
    samples = [animation.position_at(100.0 + t) for t in (0.25, 0.5, 0.75)]

    latitudes = [p.latitude for p in samples]
    assert first.latitude < latitudes[0] < latitudes[1] < latitudes[2] < second.latitude
    assert not animation.finished(100.75)

    assert animation.position_at(101.0) == second
    assert animation.position_at(105.0) == second
    assert animation.finished(101.0)


def test_marker_without_start_snaps():
    target = Position(19.0, 72.0)
    animation = MarkerAnimation(None, target, started_at=0.0)
    assert animation.position_at(0.0) == target
    assert animation.finished(0.0)


def test_glitchy_jump():
    start = Position(19.0, 72.0)
    assert is_glitchy_jump(start, Position(19.5, 72.0), elapsed=10)
    assert not is_glitchy_jump(start, Position(19.0 + 50 / 111195, 72.0), elapsed=1)
    assert not is_glitchy_jump(start, Position(19.5, 72.0), elapsed=0)
