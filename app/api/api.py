"""
API router configuration.
Defines the main API routes and includes all endpoint routers.
"""

from fastapi import APIRouter

from app.api.endpoints import devices, events, flows, health

# Create main API router
api_router = APIRouter()

# Include all endpoint routers with their prefixes
api_router.include_router(flows.router, prefix="/flows", tags=["flows"])
api_router.include_router(devices.router, prefix="/devices", tags=["devices"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
