"""
Audit Log Database Model.

Trail of driver seat changes: connects, reconnects, fleet code takeovers,
disconnects and driver-reported status changes.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from fleet_tracker.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model.

    Events logged:
    - DRIVER_CONNECTED / DRIVER_RECONNECTED
    - FLEET_CODE_TAKEOVER (who held the seat before and who asked for it)
    - DRIVER_DISCONNECTED
    - DRIVER_STATUS_CHANGED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Driver identity that triggered the event
    actor_id = Column(String(36), index=True, nullable=True)
    actor_name = Column(String(100), nullable=True)

    action = Column(String(100), nullable=False, index=True)

    fleet_code = Column(String(16), index=True, nullable=True)

    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor_id}, code={self.fleet_code})>"
