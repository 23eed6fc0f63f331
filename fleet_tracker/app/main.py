"""
FastAPI Application Entry Point.

This is the main application file for the Fleet Tracker Backend.
"""

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException
from fastapi.exceptions import RequestValidationError
from sqlalchemy.exc import SQLAlchemyError
from fleet_tracker.app.core.config import settings
from fleet_tracker.app.api.v1.router import router as api_v1_router
from fleet_tracker.app.core.observability import ObservabilityMiddleware, configure_logging
from fleet_tracker.app.core.redis_client import close_redis, get_redis, ping_redis
from fleet_tracker.app.db.session import engine, Base
from fleet_tracker.app.core.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    validation_exception_handler,
    store_exception_handler,
    generic_exception_handler
)

# Import models to ensure they are registered with Base
from fleet_tracker.app.models.driver import Driver
from fleet_tracker.app.models.fleet_device import FleetDevice
from fleet_tracker.app.models.current_location import CurrentLocation
from fleet_tracker.app.models.location_history import LocationHistoryPoint
from fleet_tracker.app.models.notification import Notification
from fleet_tracker.app.models.audit_log import AuditLog

logger = logging.getLogger("fleet_tracker.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for application startup/shutdown.

    1. Configures logging and creates database tables on startup.
    2. Releases the Redis pool on shutdown.
    """
    configure_logging(settings.log_level)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("%s %s started", settings.app_name, settings.api_version)
    yield
    await close_redis()
    await engine.dispose()


# Initialize FastAPI application
app = FastAPI(
    title=settings.app_name,
    version=settings.api_version,
    debug=settings.debug,
    description="Location ingestion and live fleet state for mobile drivers",
    lifespan=lifespan,
)

app.add_middleware(ObservabilityMiddleware)

# Register global exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(SQLAlchemyError, store_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)


@app.get("/health", tags=["Health"])
async def health_check(redis=Depends(get_redis)):
    """
    Health check endpoint.

    The change feed is best-effort, so an unreachable Redis degrades the
    report but does not fail it.
    """
    feed_ok = await ping_redis(redis)
    return {
        "status": "healthy" if feed_ok else "degraded",
        "app_name": settings.app_name,
        "version": settings.api_version,
        "change_feed": "up" if feed_ok else "down",
    }


# Include API v1 router
app.include_router(api_v1_router, prefix=f"/{settings.api_version}")


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": "Welcome to Fleet Tracker Backend API",
        "docs": "/docs",
        "health": "/health",
    }
