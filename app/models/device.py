from sqlalchemy import Column, String, DateTime, Boolean, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.database import Base


class Device(Base):
    __tablename__ = "devices"

    # Device ids are assigned by the devices themselves (e.g. "sim-light-001")
    device_id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    model_id = Column(String, nullable=False, default="unknown")
    online = Column(Boolean, default=False)
    last_seen = Column(DateTime, nullable=True)
    description = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# The relationship with DeviceHistory needs to be defined after both classes
# Import DeviceHistory here to avoid circular imports
from app.models.device_history import DeviceHistory

# Now attach the relationship to the Device class
Device.histories = relationship(
    "DeviceHistory", back_populates="device", cascade="all, delete-orphan"
)
