"""
MQTT gateway between the orchestrator and devices.
Subscribes to device presence, description, state, event and response
topics, feeds device events to registered handlers, and sends commands that
are correlated with their responses by request ID.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

import paho.mqtt.client as mqtt
from pydantic import ValidationError

from app.core.config import settings
from app.crud.device import (
    record_device_history,
    update_device_description,
    update_device_presence,
)
from app.db.database import SessionLocal
from app.models.enums import DeviceHistoryEvent
from app.schemas.device import (
    DeviceCommand,
    DeviceDescription,
    DeviceEvent,
    DevicePresence,
    DeviceResponse,
)
from app.services.flow_processor.errors import ActionDispatchError
from app.services.integrations import topics

logger = logging.getLogger(__name__)


class MqttGateway:
    def __init__(
        self,
        host: str = settings.MQTT_HOST,
        port: int = settings.MQTT_PORT,
        username: Optional[str] = settings.MQTT_USERNAME,
        password: Optional[str] = settings.MQTT_PASSWORD,
        command_timeout: float = settings.COMMAND_TIMEOUT_SECONDS,
        session_factory=SessionLocal,
        redis_client: Optional[Any] = None,
        client: Optional[Any] = None,
    ):
        """
        Args:
            host: MQTT broker host
            port: MQTT broker port
            username: Optional username for authentication
            password: Optional password for authentication
            command_timeout: Seconds to wait for a device response
            session_factory: Factory for database sessions used to record device data
            redis_client: Optional RedisClient for device presence keys
            client: Pre-built MQTT client, mainly for tests
        """
        self.host = host
        self.port = port
        self._username = username
        self._password = password
        self._command_timeout = command_timeout
        self._session_factory = session_factory
        self._redis = redis_client

        self._pending: Dict[str, asyncio.Future] = {}
        self._event_handlers: List[Callable[[DeviceEvent], Any]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.connected = False

        if client is None:
            client_id = f"{settings.MQTT_CLIENT_ID_PREFIX}-{uuid.uuid4()}"
            client = mqtt.Client(
                mqtt.CallbackAPIVersion.VERSION2,
                client_id=client_id,
                clean_session=True,
            )
        self._client = client
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def add_event_handler(self, handler: Callable[[DeviceEvent], Any]) -> None:
        """Register a callable invoked on the event loop for every device event."""
        self._event_handlers.append(handler)

    def start(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

        if self._username and self._password:
            self._client.username_pw_set(self._username, self._password)

        logger.info(f"Connecting to MQTT broker {self.host}:{self.port}")
        self._client.reconnect_delay_set(min_delay=1, max_delay=5)
        self._client.connect_async(self.host, self.port, keepalive=settings.MQTT_KEEPALIVE)
        self._client.loop_start()

    def stop(self) -> None:
        try:
            self._client.loop_stop()
            self._client.disconnect()
        finally:
            self.connected = False
            for request_id, future in list(self._pending.items()):
                if not future.done():
                    future.set_exception(ActionDispatchError("MQTT gateway stopped"))
            self._pending.clear()
            logger.info("Disconnected from MQTT broker")

    # Paho callbacks run on the network thread. Device bookkeeping stays there;
    # event handlers and command futures are only touched on the event loop.

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.error(f"Failed to connect to MQTT broker: {reason_code}")
            return

        self.connected = True
        logger.info(f"Connected to MQTT broker {self.host}:{self.port}")
        for topic in topics.SUBSCRIPTIONS:
            client.subscribe(topic, qos=1)
            logger.info(f"Subscribed to {topic}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        self.connected = False
        logger.warning(f"Disconnected from MQTT broker: {reason_code}")

    def _on_message(self, client, userdata, msg):
        self.handle_message(msg.topic, msg.payload)

    def _call_on_loop(self, callback, *args) -> bool:
        if self._loop is None or self._loop.is_closed():
            logger.warning("Event loop not available, dropping message")
            return False
        self._loop.call_soon_threadsafe(callback, *args)
        return True

    def handle_message(self, topic: str, payload: bytes) -> None:
        """
        Handle one inbound message. Runs on the MQTT network thread, so the
        database and Redis writes it makes never block the event loop.
        """
        try:
            parsed = topics.parse_topic(topic)
            if parsed is None:
                return

            data = json.loads(payload.decode("utf-8")) if payload else None

            if parsed.kind == topics.PRESENCE:
                self._handle_presence(parsed.device_id, data)
            elif parsed.kind == topics.DESC:
                self._handle_description(parsed.device_id, data)
            elif parsed.kind == topics.STATE and parsed.sub_path:
                self._handle_state(parsed.device_id, parsed.sub_path, data)
            elif parsed.kind == topics.EVENT and parsed.sub_path:
                self._handle_event(parsed.device_id, parsed.sub_path, data)
            elif parsed.kind == topics.RESP and parsed.sub_path:
                self._handle_response(parsed.sub_path, data)
        except (ValueError, ValidationError) as e:
            logger.error(f"Malformed message on {topic}: {str(e)}")
        except Exception as e:
            logger.exception(f"Error handling message on {topic}: {str(e)}")

    def _handle_presence(self, device_id: str, data: Dict[str, Any]) -> None:
        presence = DevicePresence.model_validate(data)
        logger.info(
            f"Device {device_id} presence: {'online' if presence.online else 'offline'}"
        )

        if self._redis is not None:
            if presence.online:
                self._redis.set_device_online(
                    device_id, settings.DEVICE_PRESENCE_TTL_SECONDS
                )
            else:
                self._redis.set_device_offline(device_id)

        with self._session_factory() as db:
            update_device_presence(db, device_id, presence)

    def _handle_description(self, device_id: str, data: Dict[str, Any]) -> None:
        description = DeviceDescription.model_validate(data)
        logger.info(f"Device {device_id} description received")
        with self._session_factory() as db:
            update_device_description(db, device_id, description)

    def _handle_state(self, device_id: str, key: str, value: Any) -> None:
        with self._session_factory() as db:
            record_device_history(
                db, device_id, DeviceHistoryEvent.STATE, name=key, data={"value": value}
            )

    def _handle_event(self, device_id: str, event_name: str, payload: Any) -> None:
        logger.info(f"Device {device_id} event: {event_name}")
        event = DeviceEvent(
            deviceId=device_id,
            eventName=event_name,
            payload=payload if payload is not None else {},
        )

        try:
            with self._session_factory() as db:
                record_device_history(
                    db,
                    device_id,
                    DeviceHistoryEvent.EVENT,
                    name=event_name,
                    data={"payload": event.payload, "ts": event.ts},
                )
        except Exception as e:
            # Flows still run when the history write fails
            logger.exception(f"Failed to record event for {device_id}: {str(e)}")

        self._call_on_loop(self._dispatch_event, event)

    def _dispatch_event(self, event: DeviceEvent) -> None:
        for handler in self._event_handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception(
                    f"Event handler failed for {event.deviceId}/{event.eventName}: {str(e)}"
                )

    def _handle_response(self, request_id: str, data: Dict[str, Any]) -> None:
        response = DeviceResponse.model_validate(data)
        self._call_on_loop(self._resolve_response, request_id, response)

    def _resolve_response(self, request_id: str, response: DeviceResponse) -> None:
        future = self._pending.get(request_id)
        if future is None or future.done():
            logger.debug(f"Ignoring response for unknown request {request_id}")
            return

        if response.ok:
            future.set_result(response.result)
        else:
            future.set_exception(ActionDispatchError(response.error or "Command failed"))

    async def send_command(
        self, device_id: str, action_name: str, params: Dict[str, Any]
    ) -> Any:
        """
        Publish a command to a device and wait for its response.

        Args:
            device_id: Target device ID
            action_name: Action to invoke on the device
            params: Action parameters

        Returns:
            The result reported by the device

        Raises:
            ActionDispatchError: If publishing fails, the device reports an
                error, or no response arrives within the command timeout
        """
        request_id = str(uuid.uuid4())
        command = DeviceCommand(requestId=request_id, actionName=action_name, params=params)
        topic = topics.cmd_topic(device_id, action_name)

        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            logger.info(f"Publishing command {action_name} to {device_id} ({request_id})")
            info = self._client.publish(topic, command.model_dump_json(), qos=1)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise ActionDispatchError(
                    f"Failed to publish command: {mqtt.error_string(info.rc)}"
                )
            return await asyncio.wait_for(future, timeout=self._command_timeout)
        except asyncio.TimeoutError:
            raise ActionDispatchError(
                f"Command timeout after {self._command_timeout}s"
            ) from None
        finally:
            self._pending.pop(request_id, None)
