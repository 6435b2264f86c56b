"""
FastAPI Application Entry Point.

This is the main application file for the Fleet Analytics Service.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fleet_analytics.app.core.config import settings
from fleet_analytics.app.api.v1.router import router as api_v1_router
from fleet_analytics.app.core.observability import ObservabilityMiddleware, configure_logging
from fleet_analytics.app.core.redis_client import ping_redis
from fleet_analytics.app.db.session import engine, Base
from fleet_analytics.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from fleet_analytics.app.models.usage_stats_bucket import UsageStatsBucket
from fleet_analytics.app.models.metric_observation import MetricObservation
from fleet_analytics.app.models.analytics_report import AnalyticsReport
from fleet_analytics.app.models.vehicle_sequence_cursor import VehicleSequenceCursor
from fleet_analytics.app.models.dlq import DeadLetterQueue
from fleet_analytics.app.models.audit_log import AuditLog

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Creates database tables on startup.
    2. Disposes the engine's connection pool on shutdown.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()

# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Aggregates fleet telemetry into usage statistics, performance metrics and reports",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.

    Returns:
        dict: Status, application information and Redis reachability
    """
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "redis": "up" if await ping_redis() else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint.

    Returns:
        dict: Welcome message and API documentation links
    """
    return {
        "message": "Welcome to Fleet Analytics Service API",
        "docs": "/docs",
        "health": "/health",
    }
