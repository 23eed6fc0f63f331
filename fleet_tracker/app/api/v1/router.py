"""
API v1 Router.

Aggregates all v1 API endpoints.
"""

from fastapi import APIRouter
from fleet_tracker.app.api.v1.endpoints import (
    driver_connection, location_ingest, fleet_dashboard
)

router = APIRouter()

# Mobile driver endpoints
router.include_router(driver_connection.router)
router.include_router(location_ingest.router)

# Dispatcher endpoints
router.include_router(fleet_dashboard.router)
