"""
Integration utilities for MQTT communication with devices.
"""

from app.services.integrations.mqtt_client import MqttGateway

__all__ = ["MqttGateway"]
