from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from app.db.database import Base
from app.models.enums import FlowRunStatus


class FlowRun(Base):
    __tablename__ = "flow_runs"

    id = Column(String, primary_key=True, index=True)
    flow_id = Column(
        String, ForeignKey("flows.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status = Column(String, nullable=False, default=FlowRunStatus.RUNNING.value)
    trigger_device_id = Column(String, nullable=True)
    trigger_event_name = Column(String, nullable=True)
    input_data = Column(JSON, nullable=True)  # Payload of the triggering event
    logs = Column(JSON, nullable=False, default=list)
    error_details = Column(Text, nullable=True)
    started_at = Column(DateTime, default=datetime.utcnow, index=True)
    ended_at = Column(DateTime, nullable=True)
    execution_time = Column(Integer, nullable=True)  # in milliseconds

    # Relationship
    flow = relationship("Flow", back_populates="runs")
