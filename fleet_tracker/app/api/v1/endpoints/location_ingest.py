"""
Driver Location API Endpoint.

One endpoint accepts every report shape the mobile app sends: a single fix,
a buffered batch, or the background-geolocation plugin's envelope.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.db.session import get_db
from fleet_tracker.app.schemas.location import LocationReportResponse, decode_location_report
from fleet_tracker.app.services.live_feed import LiveFeedPublisher, get_live_feed
from fleet_tracker.app.services.location_ingest import LocationIngestService

router = APIRouter(prefix="/driver", tags=["Driver - Location"])


@router.post("/location", response_model=LocationReportResponse, response_model_exclude_none=True)
async def report_location(
    body: Dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
    feed: LiveFeedPublisher = Depends(get_live_feed),
):
    """
    Record a location report.

    A report without usable coordinates is still a heartbeat: it answers
    `stored: false` with a warning rather than an error.
    """
    try:
        report = decode_location_report(body)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors())

    return await LocationIngestService.report(db, report, feed=feed)
