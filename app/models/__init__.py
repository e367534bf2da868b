"""
Import all models to ensure they're registered with SQLAlchemy
"""

from app.models.device import Device
from app.models.device_history import DeviceHistory
from app.models.flow import Flow
from app.models.flow_run import FlowRun

__all__ = ["Device", "DeviceHistory", "Flow", "FlowRun"]
