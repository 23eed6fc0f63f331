"""
Integration tests for location ingestion.

Single fixes, heartbeats without coordinates, batches, the vendor envelope,
cadence hints and the failure taxonomy.
"""

import json

import pytest
from sqlalchemy import Insert, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.models.current_location import CurrentLocation
from fleet_tracker.app.models.driver import Driver
from fleet_tracker.app.models.enums import DriverStatus
from fleet_tracker.app.models.fleet_device import FleetDevice
from fleet_tracker.app.models.location_history import LocationHistoryPoint


async def _current(session_factory, driver_id):
    async with session_factory() as session:
        return await session.get(CurrentLocation, driver_id)


async def _history(session_factory, driver_id):
    async with session_factory() as session:
        result = await session.execute(
            select(LocationHistoryPoint)
            .where(LocationHistoryPoint.driver_id == driver_id)
            .order_by(LocationHistoryPoint.recorded_at)
        )
        return list(result.scalars().all())


async def _driver(session_factory, driver_id):
    async with session_factory() as session:
        return await session.get(Driver, driver_id)


# TEST 1: Single fixes
@pytest.mark.asyncio
async def test_accurate_fix_updates_current_and_history(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "latitude": 19.076,
        "longitude": 72.8777,
        "speed": 0,
        "accuracy": 12,
        "heading": 90,
        "batteryLevel": 80,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["stored"] is True
    assert data["accurate"] is True
    assert data["nextUpdateIntervalMs"] == 60000
    assert "warning" not in data

    identity = connected_driver["identity"]
    current = await _current(session_factory, identity)
    assert (current.latitude, current.longitude) == (19.076, 72.8777)
    assert current.updated_at is not None
    assert len(await _history(session_factory, identity)) == 1

    driver = await _driver(session_factory, identity)
    assert driver.device_info["batteryLevel"] == 80
    assert driver.device_info["heading"] == 90


@pytest.mark.asyncio
async def test_inaccurate_fix_updates_current_only(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "latitude": 19.1,
        "longitude": 72.9,
        "accuracy": 45,
    })

    assert response.status_code == 200
    assert response.json()["accurate"] is False

    identity = connected_driver["identity"]
    current = await _current(session_factory, identity)
    assert (current.latitude, current.longitude) == (19.1, 72.9)
    assert await _history(session_factory, identity) == []


@pytest.mark.asyncio
async def test_fix_without_accuracy_is_not_history(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "latitude": 19.1,
        "longitude": 72.9,
    })

    assert response.status_code == 200
    assert response.json()["stored"] is True
    assert await _history(session_factory, connected_driver["identity"]) == []


@pytest.mark.asyncio
async def test_last_arrived_fix_wins(client, connected_driver, session_factory):
    for lat, lng in [(19.0, 72.0), (19.5, 72.5)]:
        await client.post("/v1/driver/location", json={
            **connected_driver, "latitude": lat, "longitude": lng, "accuracy": 100,
        })

    current = await _current(session_factory, connected_driver["identity"])
    assert (current.latitude, current.longitude) == (19.5, 72.5)


# TEST 2: Heartbeat-only reports
@pytest.mark.asyncio
async def test_null_coordinates_keep_location_and_refresh_heartbeat(client, connected_driver, session_factory):
    identity = connected_driver["identity"]
    await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": 19.076, "longitude": 72.8777, "accuracy": 10,
    })
    await client.post("/v1/driver/status", json={**connected_driver, "status": "disconnected"})
    before = await _driver(session_factory, identity)

    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "latitude": None,
        "longitude": None,
        "batteryLevel": 42,
        "isBackground": True,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["stored"] is False
    assert data["warning"]
    assert "accurate" not in data

    current = await _current(session_factory, identity)
    assert (current.latitude, current.longitude) == (19.076, 72.8777)

    driver = await _driver(session_factory, identity)
    assert driver.status == DriverStatus.ACTIVE
    assert driver.last_seen_at >= before.last_seen_at
    assert driver.device_info["batteryLevel"] == 42
    assert driver.device_info["isBackground"] is True


@pytest.mark.asyncio
@pytest.mark.parametrize("lat, lng", [(95.0, 10.0), (10.0, -181.0)])
async def test_out_of_range_coordinates_are_heartbeats(client, connected_driver, session_factory, lat, lng):
    response = await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": lat, "longitude": lng, "accuracy": 5,
    })

    assert response.status_code == 200
    assert response.json()["stored"] is False
    current = await _current(session_factory, connected_driver["identity"])
    assert current.latitude is None


# TEST 3: Input validation
@pytest.mark.asyncio
@pytest.mark.parametrize("extra, field", [
    ({"speed": 600}, "speed"),
    ({"speed": -1}, "speed"),
    ({"batteryLevel": 120}, "batteryLevel"),
    ({"batteryLevel": -5}, "batteryLevel"),
])
async def test_out_of_range_values_are_rejected(client, connected_driver, session_factory, extra, field):
    response = await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": 19.0, "longitude": 72.0, "accuracy": 5, **extra,
    })

    assert response.status_code == 400
    assert response.json()["details"]["field"] == field
    assert await _history(session_factory, connected_driver["identity"]) == []
    assert (await _current(session_factory, connected_driver["identity"])).latitude is None


@pytest.mark.asyncio
async def test_heartbeat_with_out_of_range_battery_is_recorded(client, connected_driver, session_factory):
    identity = connected_driver["identity"]
    before = await _driver(session_factory, identity)

    response = await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": None, "longitude": None, "batteryLevel": 101,
    })

    assert response.status_code == 200
    assert response.json()["stored"] is False

    driver = await _driver(session_factory, identity)
    assert driver.last_seen_at > before.last_seen_at
    assert "batteryLevel" not in (driver.device_info or {})


@pytest.mark.asyncio
async def test_missing_identity_is_validation_error(client, connected_driver):
    response = await client.post("/v1/driver/location", json={
        "fleetCode": "ABCD1234", "latitude": 19.0, "longitude": 72.0,
    })
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_identity_requires_reauthentication(client, connected_driver):
    response = await client.post("/v1/driver/location", json={
        "identity": "stale-identity",
        "fleetCode": "ABCD1234",
        "latitude": 19.0,
        "longitude": 72.0,
    })

    assert response.status_code == 401
    data = response.json()
    assert data["requiresReauthentication"] is True
    assert "stale-identity" not in data["error"]


@pytest.mark.asyncio
async def test_identity_bound_to_other_code_is_rejected(client, connected_driver, db_session):
    db_session.add(FleetDevice(owner_id=99, name="Other", connection_code="WXYZ5678"))
    await db_session.commit()

    response = await client.post("/v1/driver/location", json={
        "identity": connected_driver["identity"],
        "fleetCode": "WXYZ5678",
        "latitude": 19.0,
        "longitude": 72.0,
    })

    assert response.status_code == 401
    assert response.json()["requiresReauthentication"] is True


# TEST 4: Cadence hint
@pytest.mark.asyncio
@pytest.mark.parametrize("battery, speed, expected", [
    (15, 0, 120000),
    (15, 60, 120000),
    (80, 30, 15000),
    (80, 2, 60000),
    (None, None, 60000),
])
async def test_next_update_interval(client, connected_driver, battery, speed, expected):
    body = {**connected_driver, "latitude": 19.0, "longitude": 72.0}
    if battery is not None:
        body["batteryLevel"] = battery
    if speed is not None:
        body["speed"] = speed

    response = await client.post("/v1/driver/location", json=body)

    assert response.json()["nextUpdateIntervalMs"] == expected


# TEST 5: Batches
@pytest.mark.asyncio
async def test_batch_selects_latest_accurate_fix(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "locations": [
            {"latitude": 19.10, "longitude": 72.10, "accuracy": 50, "timestamp": "2026-01-01T10:00:10Z"},
            {"latitude": 19.20, "longitude": 72.20, "accuracy": 10, "timestamp": "2026-01-01T10:00:20Z"},
            {"latitude": 19.05, "longitude": 72.05, "accuracy": 5, "timestamp": "2026-01-01T10:00:05Z"},
        ],
    })

    assert response.status_code == 200
    data = response.json()
    assert data["stored"] is True
    assert data["accurate"] is True
    assert data["received"] == 3
    assert data["historyStored"] == 2
    assert data["discarded"] == 0

    identity = connected_driver["identity"]
    current = await _current(session_factory, identity)
    assert (current.latitude, current.longitude) == (19.20, 72.20)
    assert [p.accuracy for p in await _history(session_factory, identity)] == [5, 10]


@pytest.mark.asyncio
async def test_batch_without_accurate_fix_uses_newest(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "locations": [
            {"latitude": 19.30, "longitude": 72.30, "accuracy": 80, "timestamp": "2026-01-01T10:00:30Z"},
            {"latitude": 19.10, "longitude": 72.10, "accuracy": 90, "timestamp": "2026-01-01T10:00:10Z"},
        ],
    })

    data = response.json()
    assert data["stored"] is True
    assert data["accurate"] is False
    assert data["historyStored"] == 0

    current = await _current(session_factory, connected_driver["identity"])
    assert (current.latitude, current.longitude) == (19.30, 72.30)


@pytest.mark.asyncio
async def test_batch_does_not_overwrite_newer_fix(client, connected_driver, session_factory):
    await client.post("/v1/driver/location", json={
        **connected_driver,
        "latitude": 19.9,
        "longitude": 72.9,
        "accuracy": 5,
        "timestamp": "2026-01-01T11:00:00Z",
    })

    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "locations": [
            {"latitude": 19.1, "longitude": 72.1, "accuracy": 5, "timestamp": "2026-01-01T10:00:00Z"},
        ],
    })

    data = response.json()
    assert data["stored"] is False
    assert data["historyStored"] == 1

    current = await _current(session_factory, connected_driver["identity"])
    assert (current.latitude, current.longitude) == (19.9, 72.9)


@pytest.mark.asyncio
async def test_batch_discards_implausible_fixes(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "locations": [
            {"latitude": 19.1, "longitude": 72.1, "accuracy": 5, "speed": 900, "timestamp": "2026-01-01T10:00:30Z"},
            {"latitude": None, "longitude": None, "timestamp": "2026-01-01T10:00:20Z"},
            {"latitude": 19.2, "longitude": 72.2, "accuracy": 5, "speed": 40, "timestamp": "2026-01-01T10:00:10Z"},
        ],
    })

    assert response.status_code == 200
    data = response.json()
    assert data["discarded"] == 2
    assert data["historyStored"] == 1

    current = await _current(session_factory, connected_driver["identity"])
    assert (current.latitude, current.longitude) == (19.2, 72.2)


@pytest.mark.asyncio
async def test_batch_metadata_comes_from_last_fix(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "locations": [
            {"latitude": 19.1, "longitude": 72.1, "speed": 50, "batteryLevel": 90},
            {"latitude": 19.2, "longitude": 72.2, "speed": 0, "batteryLevel": 12, "isBackground": True},
        ],
    })

    assert response.json()["nextUpdateIntervalMs"] == 120000
    driver = await _driver(session_factory, connected_driver["identity"])
    assert driver.device_info["batteryLevel"] == 12
    assert driver.device_info["isBackground"] is True


@pytest.mark.asyncio
async def test_batch_history_is_capped(client, connected_driver, session_factory):
    fixes = [
        {"latitude": 19.0 + i / 1000, "longitude": 72.0, "accuracy": 5, "timestamp": f"2026-01-01T10:{i:02d}:00Z"}
        for i in range(60)
    ]

    response = await client.post("/v1/driver/location", json={**connected_driver, "locations": fixes})

    assert response.json()["historyStored"] == 50
    history = await _history(session_factory, connected_driver["identity"])
    assert len(history) == 50
    # Most recent fixes are kept
    assert history[0].recorded_at.minute == 10


@pytest.mark.asyncio
async def test_batch_size_limit(client, connected_driver):
    fixes = [{"latitude": 19.0, "longitude": 72.0}] * 101
    response = await client.post("/v1/driver/location", json={**connected_driver, "locations": fixes})
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_empty_batch_rejected(client, connected_driver):
    response = await client.post("/v1/driver/location", json={**connected_driver, "locations": []})
    assert response.status_code == 422


# TEST 6: Vendor envelope
@pytest.mark.asyncio
async def test_vendor_payload_is_translated(client, connected_driver, session_factory):
    response = await client.post("/v1/driver/location", json={
        **connected_driver,
        "location": {
            "coords": {
                "latitude": 19.076,
                "longitude": 72.8777,
                "speed": 10,
                "accuracy": 8,
                "heading": -1,
            },
            "timestamp": "2026-01-01T10:00:00.000Z",
            "battery": {"level": 0.15, "isCharging": False},
        },
        "isBackground": True,
    })

    assert response.status_code == 200
    data = response.json()
    assert data["stored"] is True
    assert data["nextUpdateIntervalMs"] == 120000

    current = await _current(session_factory, connected_driver["identity"])
    assert current.speed == pytest.approx(36.0)
    assert current.heading is None
    assert len(await _history(session_factory, connected_driver["identity"])) == 1

    driver = await _driver(session_factory, connected_driver["identity"])
    assert driver.device_info["batteryLevel"] == 15


# TEST 7: Change feed and store failures
@pytest.mark.asyncio
async def test_location_is_published(client, connected_driver, redis_client):
    await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": 19.076, "longitude": 72.8777, "accuracy": 10,
    })

    messages = redis_client.messages("fleet:ABCD1234:locations")
    assert len(messages) == 1
    event = json.loads(messages[0])
    assert event["type"] == "location"
    assert event["driverId"] == connected_driver["identity"]
    assert event["latitude"] == 19.076


@pytest.mark.asyncio
async def test_feed_outage_does_not_fail_report(client, connected_driver, redis_client):
    redis_client.fail_publish = True

    response = await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": 19.0, "longitude": 72.0,
    })

    assert response.status_code == 200
    assert response.json()["stored"] is True


@pytest.mark.asyncio
async def test_store_failure_on_upsert_is_retryable(client, connected_driver, session_factory, monkeypatch):
    real_execute = AsyncSession.execute

    async def lost_connection(self, statement, *args, **kwargs):
        if isinstance(statement, Insert):
            raise OperationalError("INSERT", {}, Exception("connection lost"))
        return await real_execute(self, statement, *args, **kwargs)

    monkeypatch.setattr(AsyncSession, "execute", lost_connection)

    response = await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": 19.0, "longitude": 72.0, "accuracy": 5,
    })

    assert response.status_code == 503
    data = response.json()
    assert data["retryable"] is True
    assert data["error_code"] == "ERR_STORE_001"
    assert await _history(session_factory, connected_driver["identity"]) == []


@pytest.mark.asyncio
async def test_store_failure_on_commit_is_retryable(client, connected_driver, mocker):
    mocker.patch.object(
        AsyncSession,
        "commit",
        side_effect=OperationalError("COMMIT", {}, Exception("database is locked")),
    )

    response = await client.post("/v1/driver/location", json={
        **connected_driver, "latitude": 19.0, "longitude": 72.0,
    })

    assert response.status_code == 503
    assert response.json()["retryable"] is True


@pytest.mark.asyncio
async def test_store_failure_on_lookup_is_retryable(client, fleet_device, mocker):
    mocker.patch.object(
        AsyncSession,
        "execute",
        side_effect=OperationalError("SELECT", {}, Exception("connection lost")),
    )

    response = await client.post("/v1/driver/connect", json={"fleetCode": "ABCD1234", "displayName": "Asha"})

    assert response.status_code == 503
    data = response.json()
    assert data["retryable"] is True
    assert data["error_code"] == "ERR_STORE_001"
