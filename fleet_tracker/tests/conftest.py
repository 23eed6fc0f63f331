"""
Centralized Test Configuration.
"""

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import Pool, StaticPool

from fleet_tracker.app.main import app
from fleet_tracker.app.db.session import get_db, Base
from fleet_tracker.app.core.jwt import create_access_token
from fleet_tracker.app.core.redis_client import get_redis
from fleet_tracker.app.core.reliability import CircuitBreaker
from fleet_tracker.app.models.fleet_device import FleetDevice
import fleet_tracker.app.services.live_feed as live_feed_module

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@event.listens_for(Pool, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key constraints for SQLite."""
    if 'sqlite' in str(type(dbapi_conn)).lower():
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


engine = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.published = []
        self._closed = False
        self.fail_publish = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def publish(self, channel, message):
        if self.fail_publish:
            raise ConnectionError("Redis unavailable")
        self.published.append((channel, message))
        return 1

    def messages(self, channel_suffix):
        return [m for c, m in self.published if c.endswith(channel_suffix)]

    async def aclose(self):
        self._closed = True


@pytest.fixture
def redis_client():
    return MockRedis()


@pytest.fixture(autouse=True)
def apply_overrides(redis_client, monkeypatch):
    """Route the app to the in-memory database and mock Redis."""

    async def override_get_db():
        async with TestingSessionLocal() as session:
            yield session

    async def override_get_redis():
        return redis_client

    # Fresh breaker per test so failure counts do not leak between tests
    monkeypatch.setattr(
        live_feed_module,
        "feed_circuit_breaker",
        CircuitBreaker(failure_threshold=3, reset_timeout=30),
    )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    yield
    app.dependency_overrides = {}


@pytest.fixture(autouse=True)
async def setup_database():
    """Create tables before each test function and drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def client():
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Shared session for fixture data creation
@pytest.fixture
async def db_session():
    async with TestingSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory():
    return TestingSessionLocal


ADMIN_ID = 7
OTHER_ADMIN_ID = 8


def _admin_headers(user_id: int) -> dict:
    token = create_access_token(data={"sub": f"admin{user_id}", "user_id": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _admin_headers(ADMIN_ID)


@pytest.fixture
def other_auth_headers():
    return _admin_headers(OTHER_ADMIN_ID)


@pytest.fixture
async def fleet_device(db_session):
    """A device with a known code owned by ADMIN_ID."""
    device = FleetDevice(owner_id=ADMIN_ID, name="Van 1", connection_code="ABCD1234")
    db_session.add(device)
    await db_session.commit()
    await db_session.refresh(device)
    return device


@pytest.fixture
async def connected_driver(client, fleet_device):
    """Identity and code of a driver seated on `fleet_device`."""
    response = await client.post("/v1/driver/connect", json={
        "fleetCode": "ABCD1234",
        "displayName": "Asha",
    })
    assert response.status_code == 200
    return {"identity": response.json()["identity"], "fleetCode": "ABCD1234"}
