"""
Current Location database model.

Best-effort live marker: one row per driver, overwritten on every valid fix.
"""

from sqlalchemy import Column, String, Float, ForeignKey, DateTime
from fleet_tracker.app.db.session import Base


class CurrentLocation(Base):
    """
    Current Location model.

    Created without coordinates when the driver first connects. Coordinates
    are only ever replaced by another valid pair.
    """
    __tablename__ = "current_locations"

    driver_id = Column(String(36), ForeignKey("drivers.driver_id"), primary_key=True)
    fleet_code = Column(String(16), nullable=False, index=True)

    # GPS fix
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)  # km/h
    accuracy = Column(Float, nullable=True)  # meters
    heading = Column(Float, nullable=True)

    # Timing
    recorded_at = Column(DateTime(timezone=True), nullable=True)  # When the fix was taken
    updated_at = Column(DateTime(timezone=True), nullable=True)  # Server write time

    def __repr__(self):
        return f"<CurrentLocation(driver_id='{self.driver_id}', lat={self.latitude}, lng={self.longitude})>"
