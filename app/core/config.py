import os
from typing import Optional
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "IoT Flow Orchestrator"

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./orchestrator.db")

    # Server settings
    API_HOST: str = os.getenv("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.getenv("API_PORT", "8000"))
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_PASSWORD: Optional[str] = os.getenv("REDIS_PASSWORD", None)

    # MQTT broker settings
    MQTT_ENABLED: bool = os.getenv("MQTT_ENABLED", "True").lower() == "true"
    MQTT_HOST: str = os.getenv("MQTT_HOST", "localhost")
    MQTT_PORT: int = int(os.getenv("MQTT_PORT", "1883"))
    MQTT_USERNAME: Optional[str] = os.getenv("MQTT_USERNAME", None)
    MQTT_PASSWORD: Optional[str] = os.getenv("MQTT_PASSWORD", None)
    MQTT_CLIENT_ID_PREFIX: str = "iot-flow-orchestrator"
    MQTT_KEEPALIVE: int = 60

    # Orchestrator settings
    COMMAND_TIMEOUT_SECONDS: float = 5.0
    DEVICE_PRESENCE_TTL_SECONDS: int = 300
    RUN_HISTORY_LIMIT: int = 50

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # This allows extra fields without validation errors


settings = Settings()
