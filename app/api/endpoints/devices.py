"""
Device endpoints.
List devices and their recent history, and send a command to a device by hand.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_mqtt_gateway
from app.crud import device as crud_device
from app.db.database import get_db
from app.models.device import Device
from app.models.enums import DeviceHistoryEvent
from app.schemas.device import (
    DeviceDetailOut,
    DeviceHistoryOut,
    DeviceOut,
    ExecuteAction,
)
from app.services.flow_processor.errors import ActionDispatchError
from app.services.integrations.mqtt_client import MqttGateway

router = APIRouter()

logger = logging.getLogger(__name__)


def _get_device_or_404(db: Session, device_id: str) -> Device:
    device = crud_device.get_device(db, device_id)
    if not device:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Device {device_id} not found"
        )
    return device


@router.get("", response_model=List[DeviceOut])
def list_devices(db: Session = Depends(get_db)) -> Any:
    return crud_device.get_devices(db)


@router.get("/{device_id}", response_model=DeviceDetailOut)
def get_device(
    device_id: str,
    limit: int = Query(default=20, ge=1, le=500),
    db: Session = Depends(get_db),
) -> Any:
    """
    Device details with its most recent history entries.
    """
    device = _get_device_or_404(db, device_id)
    history = crud_device.get_device_history(db, device_id, limit=limit)
    return DeviceDetailOut(
        **DeviceOut.model_validate(device).model_dump(),
        history=[DeviceHistoryOut.model_validate(entry) for entry in history],
    )


@router.get("/{device_id}/history", response_model=List[DeviceHistoryOut])
def get_device_history(
    device_id: str,
    event: Optional[DeviceHistoryEvent] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> Any:
    """
    History of a device, most recent first.

    Query Parameters:
        event: Only return presence, description, state or event entries
        limit: Maximum number of entries
    """
    _get_device_or_404(db, device_id)
    return crud_device.get_device_history(db, device_id, event=event, limit=limit)


@router.post("/{device_id}/actions/{action_name}")
async def execute_action(
    device_id: str,
    action_name: str,
    action: Optional[ExecuteAction] = Body(default=None),
    db: Session = Depends(get_db),
    gateway: MqttGateway = Depends(get_mqtt_gateway),
) -> Dict[str, Any]:
    """
    Send a command to a device and wait for its response.

    Raises:
        HTTPException: 404 for an unknown device, 409 when it is offline,
            502 when the command fails or times out
    """
    device = await run_in_threadpool(_get_device_or_404, db, device_id)
    if not device.online:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail=f"Device {device_id} is offline"
        )

    params = action.params if action is not None else {}
    try:
        result = await gateway.send_command(device_id, action_name, params)
    except ActionDispatchError as e:
        logger.error(f"Action {action_name} on {device_id} failed: {str(e)}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))

    logger.info(f"Action {action_name} executed on {device_id}")
    return {"ok": True, "result": result}
