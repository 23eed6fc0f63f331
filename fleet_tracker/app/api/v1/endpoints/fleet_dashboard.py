"""
Fleet Dashboard API Endpoints.

Dispatcher (admin) side: register driver seats, list them, and read the live
map snapshot and per-driver history. Requires the admin bearer token.
"""

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.core.dependencies import get_current_admin
from fleet_tracker.app.db.session import get_db
from fleet_tracker.app.schemas.fleet import (
    DriverHistoryResponse,
    FleetDeviceCreate,
    FleetDeviceListResponse,
    FleetDeviceResponse,
    LiveFleetResponse,
)
from fleet_tracker.app.services.fleet_devices import FleetDeviceService

router = APIRouter(prefix="/fleet", tags=["Fleet - Dashboard"])


@router.post("/devices", response_model=FleetDeviceResponse, status_code=status.HTTP_201_CREATED)
async def register_fleet_device(
    payload: FleetDeviceCreate,
    current_admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Register a driver seat.

    A fresh connection code is generated; share it with the driver.
    """
    device = await FleetDeviceService.register_device(db, current_admin["user_id"], payload.name)
    return FleetDeviceResponse.model_validate(device)


@router.get("/devices", response_model=FleetDeviceListResponse)
async def list_fleet_devices(
    current_admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    devices = await FleetDeviceService.list_devices(db, current_admin["user_id"])
    return FleetDeviceListResponse(
        devices=[FleetDeviceResponse.model_validate(d) for d in devices],
        total=len(devices),
    )


@router.get("/live", response_model=LiveFleetResponse)
async def get_live_fleet(
    current_admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    """Snapshot of every driver on the admin's codes. Polled by the live map."""
    return await FleetDeviceService.live_snapshot(db, current_admin["user_id"])


@router.get("/drivers/{driver_id}/history", response_model=DriverHistoryResponse)
async def get_driver_history(
    driver_id: str = Path(..., description="Driver identity"),
    limit: int = Query(100, ge=1, le=1000, description="Most recent points to return"),
    current_admin: dict = Depends(get_current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await FleetDeviceService.driver_history(db, current_admin["user_id"], driver_id, limit)
