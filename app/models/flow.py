import uuid

from sqlalchemy import Boolean, Column, String, DateTime, JSON
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.database import Base


class Flow(Base):
    __tablename__ = "flows"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False, index=True)
    description = Column(String, nullable=True)
    # Flows are created disabled and only join the router once enabled
    enabled = Column(Boolean, nullable=False, default=False, index=True)
    graph = Column(JSON, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    runs = relationship(
        "FlowRun",
        back_populates="flow",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
