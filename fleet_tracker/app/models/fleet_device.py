"""
Fleet Device database model.

A fleet device is an admin's driver seat, joined by mobile agents through
its short connection code.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.sql import func
from fleet_tracker.app.db.session import Base
from fleet_tracker.app.models.enums import DeviceStatus


class FleetDevice(Base):
    """
    Fleet Device model (fleet binding).

    `connection_code` is unique across all admins. `connected_driver_id`
    points at the driver identity currently using the seat.
    """
    __tablename__ = "fleet_devices"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Ownership - external admin account id
    owner_id = Column(Integer, nullable=False, index=True)
    name = Column(String(100), nullable=False)

    connection_code = Column(String(16), unique=True, nullable=False, index=True)

    # Device pointer
    connected_driver_id = Column(String(36), nullable=True, index=True)
    connected_at = Column(DateTime(timezone=True), nullable=True)
    status = Column(Enum(DeviceStatus), default=DeviceStatus.OFFLINE, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<FleetDevice(id={self.id}, code='{self.connection_code}', driver={self.connected_driver_id})>"
