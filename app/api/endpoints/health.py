"""
Health check endpoints for service status monitoring.
"""

from datetime import datetime
from typing import Dict, Any

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from sqlalchemy import text

from app.db.database import get_db
from app.redis.client import RedisClient

router = APIRouter()

SERVICE_NAME = "iot-flow-orchestrator"


@router.get("/", summary="Health check endpoint")
def health_check() -> Dict[str, Any]:
    """
    Basic health check that returns service status.
    Used by Kubernetes to check if the service is alive.
    """
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/readiness", summary="Readiness check endpoint")
def readiness_check(
    request: Request,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """
    Readiness check that verifies database, Redis and MQTT connections.
    Used by Kubernetes to check if the service is ready to receive requests.
    """
    # Check DB connection
    db_status = "ok"
    db_error = None
    try:
        # Simple query to verify database connection
        db.execute(text("SELECT 1")).fetchall()
    except Exception as e:
        db_status = "error"
        db_error = str(e)

    # Check Redis connection
    redis_status = "ok"
    redis_error = None
    if not RedisClient.get_instance().ping():
        redis_status = "error"
        redis_error = "Redis connection failed"

    # Check MQTT connection
    mqtt_status = "ok"
    mqtt_error = None
    gateway = getattr(request.app.state, "mqtt_gateway", None)
    if gateway is None or not gateway.connected:
        mqtt_status = "error"
        mqtt_error = "MQTT broker not connected"

    flow_router = getattr(request.app.state, "flow_router", None)

    # Overall status; Redis only carries notifications so it does not gate readiness
    overall_status = "ready" if db_status == "ok" and mqtt_status == "ok" else "not_ready"

    return {
        "status": overall_status,
        "service": SERVICE_NAME,
        "timestamp": datetime.utcnow().isoformat(),
        "enabled_flows": len(flow_router.flows) if flow_router else 0,
        "runs_in_flight": flow_router.in_flight if flow_router else 0,
        "checks": {
            "database": {
                "status": db_status,
                "error": db_error,
            },
            "redis": {
                "status": redis_status,
                "error": redis_error,
            },
            "mqtt": {
                "status": mqtt_status,
                "error": mqtt_error,
            },
        },
    }
