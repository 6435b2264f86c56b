"""
Service dependencies for FastAPI.

Wires the dispatcher, the report compiler and the registry client to the
shared session factory and Redis client. Tests override these.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from fleet_analytics.app.core.config import settings
from fleet_analytics.app.core.redis_client import get_redis
from fleet_analytics.app.core.reliability import CircuitBreaker
from fleet_analytics.app.db.session import get_session_factory
from fleet_analytics.app.services.analytics_reports import ReportCompiler
from fleet_analytics.app.services.event_dispatcher import EventDispatcher
from fleet_analytics.app.services.vehicle_registry import VehicleRegistryClient, REGISTRY

# One breaker per process so failures are counted across requests
registry_breaker = CircuitBreaker(
    failure_threshold=settings.registry_failure_threshold,
    reset_timeout=settings.registry_reset_timeout_seconds,
    name=REGISTRY,
)


async def get_vehicle_registry(redis=Depends(get_redis)):
    """Yields a registry client and closes its HTTP connection pool afterwards."""
    client = VehicleRegistryClient(redis=redis, breaker=registry_breaker)
    try:
        yield client
    finally:
        await client.aclose()


async def get_event_dispatcher(
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> EventDispatcher:
    return EventDispatcher(session_factory, settings)


async def get_report_compiler(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    registry: VehicleRegistryClient = Depends(get_vehicle_registry)
) -> ReportCompiler:
    return ReportCompiler(session_factory, registry, settings)
