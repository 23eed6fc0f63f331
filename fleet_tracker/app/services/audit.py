"""
Audit logging for driver seat changes.

Entries are added to the caller's session so they commit atomically with the
change they describe.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from fleet_tracker.app.models.audit_log import AuditLog


class AuditAction:
    """Standardized audit action constants."""
    DRIVER_CONNECTED = "DRIVER_CONNECTED"
    DRIVER_RECONNECTED = "DRIVER_RECONNECTED"
    FLEET_CODE_TAKEOVER = "FLEET_CODE_TAKEOVER"
    DRIVER_DISCONNECTED = "DRIVER_DISCONNECTED"
    DRIVER_STATUS_CHANGED = "DRIVER_STATUS_CHANGED"
    DRIVER_RENAMED = "DRIVER_RENAMED"
    FLEET_DEVICE_CREATED = "FLEET_DEVICE_CREATED"


async def log_event(
    db: AsyncSession,
    action: str,
    actor_id: Optional[str] = None,
    actor_name: Optional[str] = None,
    fleet_code: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """
    Record an audit event. Caller commits.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        actor_id: Driver identity involved
        actor_name: Driver name at the time of the event
        fleet_code: Connection code involved
        metadata: Additional context as JSON
    """
    audit_log = AuditLog(
        actor_id=actor_id,
        actor_name=actor_name,
        action=action,
        fleet_code=fleet_code,
        meta_data=metadata,
    )
    db.add(audit_log)
    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    fleet_code: Optional[str] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, most recent first.
    """
    query = select(AuditLog).order_by(desc(AuditLog.timestamp), desc(AuditLog.id))

    if fleet_code:
        query = query.where(AuditLog.fleet_code == fleet_code)

    if action:
        query = query.where(AuditLog.action == action)

    result = await db.execute(query.limit(limit))
    return result.scalars().all()
