"""
Notification dispatcher.

Fire-and-forget: the identity registry calls `notify` after its own commit and
never fails because a notification could not be stored.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fleet_tracker.app.models.notification import Notification, NotificationType

logger = logging.getLogger("fleet_tracker.notifications")


class NotificationService:

    @staticmethod
    async def notify(
        db: AsyncSession,
        event: NotificationType,
        recipient_id: int,
        title: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[Notification]:
        """Store an in-app notification for `recipient_id`. Returns None on failure."""
        notif = Notification(
            user_id=recipient_id,
            type=event,
            title=title,
            message=message,
            metadata_payload=metadata
        )
        try:
            db.add(notif)
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            logger.exception("Dropping %s notification for admin %s", event.value, recipient_id)
            return None
        return notif

    @staticmethod
    async def driver_joined(
        db: AsyncSession,
        recipient_id: int,
        driver_id: str,
        driver_name: str,
        device_name: str,
    ) -> Optional[Notification]:
        """A new driver identity took a seat on one of the admin's devices."""
        return await NotificationService.notify(
            db,
            NotificationType.DRIVER_JOINED,
            recipient_id,
            title="New driver connected",
            message=f"{driver_name} connected to {device_name}",
            metadata={"driver_id": driver_id, "device_name": device_name},
        )
