"""
Shared FastAPI dependencies.
"""

from fastapi import Request

from app.services.flow_processor.event_router import FlowRouter
from app.services.integrations.mqtt_client import MqttGateway


def get_flow_router(request: Request) -> FlowRouter:
    """Return the flow router created at application startup."""
    return request.app.state.flow_router


def get_mqtt_gateway(request: Request) -> MqttGateway:
    """Return the MQTT gateway created at application startup."""
    return request.app.state.mqtt_gateway
