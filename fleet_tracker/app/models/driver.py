"""
Driver database model.

One row per driver identity. The unique fleet_code column is the store-level
backstop that keeps one driver seat per connection code.
"""

from sqlalchemy import Column, String, DateTime, Enum, JSON
from sqlalchemy.sql import func
from fleet_tracker.app.db.session import Base
from fleet_tracker.app.models.enums import DriverStatus


class Driver(Base):
    """
    Driver model.

    `device_info` holds the latest device metadata reported with heartbeats:
    batteryLevel, heading, isBackground, lastUpdate.
    """
    __tablename__ = "drivers"

    driver_id = Column(String(36), primary_key=True)
    driver_name = Column(String(100), nullable=False)

    # Bound fleet code; at most one driver identity per code
    fleet_code = Column(String(16), unique=True, nullable=False, index=True)

    status = Column(Enum(DriverStatus), default=DriverStatus.ACTIVE, nullable=False, index=True)
    connected_at = Column(DateTime(timezone=True), nullable=True)
    last_seen_at = Column(DateTime(timezone=True), nullable=True)

    device_info = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Driver(id='{self.driver_id}', name='{self.driver_name}', code='{self.fleet_code}', status='{self.status.value}')>"
