"""
Notification database model.

In-app notifications addressed to fleet admins.
"""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, JSON, Enum
from sqlalchemy.sql import func
from fleet_tracker.app.db.session import Base
import enum


class NotificationType(str, enum.Enum):
    INFO = "INFO"
    DRIVER_JOINED = "DRIVER_JOINED"
    TASK_COMPLETED = "TASK_COMPLETED"


class Notification(Base):
    """
    In-App Notification.
    Stores messages for admins.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Recipient (external admin account id)
    user_id = Column(Integer, nullable=False, index=True)

    type = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    metadata_payload = Column(JSON, nullable=True)

    is_read = Column(Boolean, default=False, nullable=False, index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user={self.user_id}, title='{self.title}')>"
