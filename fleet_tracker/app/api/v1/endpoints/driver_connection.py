"""
Driver Connection API Endpoints.

Mobile drivers join an admin's fleet with a connection code, leave it, and
update their own status and name. No bearer token: a driver is authenticated
by its identity plus the fleet code it is bound to.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.db.session import get_db
from fleet_tracker.app.schemas.identity import (
    ConnectionStateResponse,
    ConnectRequest,
    ConnectResponse,
    DisconnectRequest,
    FleetDeviceDescriptor,
    NameUpdateRequest,
    StatusUpdateRequest,
    SuccessResponse,
)
from fleet_tracker.app.services.identity_registry import IdentityRegistry
from fleet_tracker.app.services.live_feed import LiveFeedPublisher, get_live_feed

router = APIRouter(prefix="/driver", tags=["Driver - Connection"])


@router.post("/connect", response_model=ConnectResponse)
async def connect_driver(
    payload: ConnectRequest,
    db: AsyncSession = Depends(get_db),
    feed: LiveFeedPublisher = Depends(get_live_feed),
):
    """
    Join a fleet with a connection code.

    Outcomes:
    - first driver on the code: new identity
    - same cached identity: reconnect
    - code held by another identity: continue as that identity (takeover)
    """
    result = await IdentityRegistry.connect(
        db,
        code=payload.fleet_code,
        display_name=payload.display_name,
        existing_identity=payload.existing_identity,
        feed=feed,
    )
    return ConnectResponse(
        identity=result.identity,
        fleet_device=FleetDeviceDescriptor(id=result.device_id, name=result.device_name),
        reconnected=result.reconnected,
        existing_driver_name=result.existing_driver_name,
        server_time=datetime.utcnow(),
    )


@router.post("/disconnect", response_model=SuccessResponse)
async def disconnect_driver(
    payload: DisconnectRequest,
    db: AsyncSession = Depends(get_db),
    feed: LiveFeedPublisher = Depends(get_live_feed),
):
    """Leave the fleet. Unknown identities succeed as well."""
    await IdentityRegistry.disconnect(db, payload.identity, feed=feed)
    return SuccessResponse()


@router.get("/connection", response_model=ConnectionStateResponse, response_model_exclude_none=True)
async def get_connection(
    identity: Optional[str] = Query(None, max_length=64, description="Identity cached by the app"),
    db: AsyncSession = Depends(get_db),
):
    state = await IdentityRegistry.get_connection_state(db, identity)
    device = None
    if state.device is not None:
        device = FleetDeviceDescriptor(id=state.device.id, name=state.device.name)
    return ConnectionStateResponse(
        connected=state.connected,
        fleet_device=device,
        driver_name=state.driver_name,
    )


@router.post("/status", response_model=SuccessResponse)
async def update_driver_status(
    payload: StatusUpdateRequest,
    db: AsyncSession = Depends(get_db),
    feed: LiveFeedPublisher = Depends(get_live_feed),
):
    await IdentityRegistry.update_status(
        db, payload.identity, payload.fleet_code, payload.status, feed=feed
    )
    return SuccessResponse()


@router.post("/name", response_model=SuccessResponse)
async def update_driver_name(
    payload: NameUpdateRequest,
    db: AsyncSession = Depends(get_db),
    feed: LiveFeedPublisher = Depends(get_live_feed),
):
    await IdentityRegistry.update_name(
        db, payload.identity, payload.fleet_code, payload.name, feed=feed
    )
    return SuccessResponse()
