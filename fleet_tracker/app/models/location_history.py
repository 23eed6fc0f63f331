"""
Location History database model.

Clean trail of accurate fixes for analytics, geofencing and SOS readers.
"""

from sqlalchemy import Column, Integer, String, Float, ForeignKey, DateTime, Index
from sqlalchemy.sql import func
from fleet_tracker.app.db.session import Base


class LocationHistoryPoint(Base):
    """
    Location History point.

    Append-only. Rows exist only for fixes within the accuracy threshold.
    """
    __tablename__ = "location_history"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    driver_id = Column(String(36), ForeignKey("drivers.driver_id"), nullable=False)
    fleet_code = Column(String(16), nullable=False, index=True)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=False)
    heading = Column(Float, nullable=True)

    recorded_at = Column(DateTime(timezone=True), nullable=False)  # When GPS was recorded
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)  # When inserted to DB

    __table_args__ = (
        Index("ix_location_history_driver_recorded", "driver_id", "recorded_at"),
    )

    def __repr__(self):
        return f"<LocationHistoryPoint(driver_id='{self.driver_id}', lat={self.latitude}, lng={self.longitude})>"
