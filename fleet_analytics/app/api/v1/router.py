"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleet_analytics.app.api.v1.endpoints import analytics, events, admin_ops

router = APIRouter()

# Reports and aggregate queries
router.include_router(analytics.router)

# Event ingestion over HTTP
router.include_router(events.router)

# Dead letter queue operations
router.include_router(admin_ops.router)
