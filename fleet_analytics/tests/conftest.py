"""
Centralized Test Configuration.
"""

import json

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

from fleet_analytics.app.main import app
from fleet_analytics.app.db.session import Base, build_engine, build_session_factory, get_db, get_session_factory
from fleet_analytics.app.core.config import settings
from fleet_analytics.app.core.dependencies import get_vehicle_registry
from fleet_analytics.app.core.redis_client import get_redis
from fleet_analytics.app.core.reliability import CircuitBreaker
from fleet_analytics.app.services.event_dispatcher import EventDispatcher
from fleet_analytics.app.services.analytics_reports import ReportCompiler
from fleet_analytics.app.services.vehicle_registry import VehicleRegistryClient
import fleet_analytics.app.core.redis_client as redis_client_module

REGISTRY_URL = "http://registry.test/api"


# Mock Redis for reliability in CI/CD
class MockRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self._closed = False

    async def ping(self):
        if self._closed:
            return False
        return True

    async def get(self, key):
        if self._closed:
            return None
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self._closed:
            return False
        self.store[key] = value
        return True

    async def setex(self, key, ttl, value):
        if self._closed:
            return False
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, key):
        if self._closed:
            return 0
        if key in self.store:
            del self.store[key]
            return 1
        return 0

    async def flushdb(self):
        if not self._closed:
            self.store = {}

    async def aclose(self):
        self._closed = True
        self.store = {}


class FakeRegistry:
    """
    In-process stand-in for the vehicle service, served through
    httpx.MockTransport. Set `down = True` to answer every call with 503,
    or set `garbage` to a body the registry should answer 200 with.
    """

    def __init__(self):
        self.vehicles = {
            "V1": {"id": "V1", "type": "truck", "status": "active", "make": "Volvo"},
            "V2": {"id": "V2", "type": "van", "status": "active", "make": "Ford"},
        }
        self.counts = {
            "countByType": {"truck": 3, "van": 2},
            "countByStatus": {"active": 4, "maintenance": 1},
        }
        self.down = False
        self.garbage = None
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.url.path)
        if self.down:
            return httpx.Response(503, json={"error": "unavailable"})
        if self.garbage is not None:
            return httpx.Response(200, content=self.garbage)

        path = request.url.path.replace("/api", "", 1)
        if path == "/vehicles/stats":
            return httpx.Response(200, json={"data": self.counts})

        vehicle_id = path.rsplit("/", 1)[-1]
        vehicle = self.vehicles.get(vehicle_id)
        if vehicle is None:
            return httpx.Response(404, json={"error": "not found"})
        return httpx.Response(200, content=json.dumps({"data": vehicle}))


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite file database per test."""
    test_engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'analytics.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


# Shared session for fixture data creation
@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def fake_registry():
    return FakeRegistry()


@pytest.fixture
async def registry(fake_registry, mock_redis):
    client = VehicleRegistryClient(
        base_url=REGISTRY_URL,
        redis=mock_redis,
        cache_ttl=60,
        breaker=CircuitBreaker(failure_threshold=3, reset_timeout=30, name="registry-test"),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_registry)),
    )
    yield client
    await client.aclose()


@pytest.fixture
def dispatcher(session_factory):
    return EventDispatcher(session_factory, settings)


@pytest.fixture
def compiler(session_factory, registry):
    return ReportCompiler(session_factory, registry, settings)


@pytest.fixture
async def client(session_factory, mock_redis, registry, monkeypatch):
    """Async client for testing."""
    # Patch the global redis client used by the health check
    monkeypatch.setattr(redis_client_module, "redis_client", mock_redis)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_session_factory():
        return session_factory

    async def override_get_redis():
        return mock_redis

    async def override_get_vehicle_registry():
        return registry

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_vehicle_registry] = override_get_vehicle_registry

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides = {}
