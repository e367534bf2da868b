"""
Main application entry point.
Initializes FastAPI app and configures middleware, routes, and startup/shutdown events.
"""

import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.api.api import api_router
from app.core.config import settings
from app.crud.flow import SqlFlowStore
from app.db.database import Base, engine
from app.redis.client import RedisClient
from app.services.flow_processor import FlowRouter, RunRecorder
from app.services.integrations import MqttGateway

# Import all models to ensure they're registered with SQLAlchemy
from app.models import *  # noqa

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Middleware to log request details"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()

        # Process the request
        response = await call_next(request)

        # Calculate processing time
        process_time = time.time() - start_time
        process_time_ms = int(process_time * 1000)

        # Log request details
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} {process_time_ms}ms"
        )

        # Add custom header with processing time
        response.headers["X-Process-Time"] = str(process_time_ms)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.
    Wires persistence, the flow router and the MQTT gateway together.
    """
    # Startup
    Base.metadata.create_all(bind=engine)

    logger.info("Initializing Redis connection")
    redis_client = RedisClient.get_instance()
    if redis_client.ping():
        logger.info("Redis connection successful")
    else:
        logger.warning("Redis connection failed, continuing without notifications")

    store = SqlFlowStore()
    gateway = MqttGateway(redis_client=redis_client)
    flow_router = FlowRouter(store, gateway, RunRecorder(store, notifier=redis_client))
    flow_router.reload()
    gateway.add_event_handler(flow_router.on_event)

    if settings.MQTT_ENABLED:
        gateway.start()
    else:
        logger.warning("MQTT disabled, device commands will time out")

    app.state.flow_router = flow_router
    app.state.mqtt_gateway = gateway

    logger.info("Orchestrator initialized")

    yield

    # Shutdown
    logger.info("Application shutting down")
    await flow_router.close()
    if settings.MQTT_ENABLED:
        gateway.stop()


# Create FastAPI application
app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)

# Add API router
app.include_router(api_router, prefix=settings.API_V1_STR)


# Root endpoint for quick status check
@app.get("/", tags=["status"])
def root():
    """
    Root endpoint for quick status check.
    """
    return {
        "service": "iot-flow-orchestrator",
        "status": "running",
        "version": "1.0.0",
    }


if __name__ == "__main__":
    """
    Run the application locally using uvicorn.
    This is used for development, not production.
    """
    uvicorn.run(
        "app.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=settings.DEBUG,
    )
