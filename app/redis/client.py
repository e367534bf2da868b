import redis
import json
import logging
from typing import Any, Dict

from app.core.config import settings

logger = logging.getLogger(__name__)

FLOW_EVENTS_CHANNEL = "orchestrator:flows"


class RedisClient:
    _instance = None

    @classmethod
    def get_instance(cls) -> "RedisClient":
        """Get singleton instance of RedisClient"""
        if cls._instance is None:
            cls._instance = RedisClient()
        return cls._instance

    def __init__(self):
        """Initialize Redis connection"""
        try:
            # Configure Redis client
            self.redis = redis.Redis(
                host=settings.REDIS_HOST,
                port=settings.REDIS_PORT,
                db=settings.REDIS_DB,
                password=settings.REDIS_PASSWORD,
                decode_responses=True,
            )
            logger.info(f"Connected to Redis at {settings.REDIS_HOST}")
        except Exception as e:
            logger.error(f"Failed to connect to Redis: {str(e)}")
            self.redis = None

    def ping(self) -> bool:
        if not self.redis:
            return False
        try:
            return bool(self.redis.ping())
        except redis.RedisError as e:
            logger.warning(f"Redis ping failed: {str(e)}")
            return False

    def set_device_online(self, device_id: str, ttl_seconds: int = 300) -> bool:
        """Set a device as online with an expiry time"""
        if not self.redis:
            logger.error("Redis client not available")
            return False

        try:
            key = f"device:status:{device_id}"
            self.redis.set(key, "online", ex=ttl_seconds)
            return True
        except Exception as e:
            logger.error(f"Failed to set device online status: {str(e)}")
            return False

    def set_device_offline(self, device_id: str) -> bool:
        if not self.redis:
            logger.error("Redis client not available")
            return False

        try:
            self.redis.delete(f"device:status:{device_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to clear device online status: {str(e)}")
            return False

    def publish_flow_event(self, event_type: str, data: Dict[str, Any]) -> bool:
        """Publish a flow run notification (flow:started, flow:completed, flow:failed)"""
        if not self.redis:
            return False

        try:
            message = json.dumps({"type": event_type, "data": data})
            self.redis.publish(FLOW_EVENTS_CHANNEL, message)
            return True
        except Exception as e:
            logger.error(f"Failed to publish {event_type}: {str(e)}")
            return False
