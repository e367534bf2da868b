"""
Ingestion endpoint for device events delivered over HTTP.
Events posted here go through the same router as events received over MQTT.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_flow_router
from app.crud.device import record_device_history
from app.db.database import get_db
from app.models.enums import DeviceHistoryEvent
from app.schemas.device import DeviceEvent
from app.services.flow_processor.event_router import FlowRouter

router = APIRouter()

logger = logging.getLogger(__name__)


def _record_event(db: Session, event: DeviceEvent) -> None:
    try:
        record_device_history(
            db,
            event.deviceId,
            DeviceHistoryEvent.EVENT,
            name=event.eventName,
            data={"payload": event.payload, "ts": event.ts},
        )
    except Exception as e:
        db.rollback()
        logger.exception(f"Failed to record event for {event.deviceId}: {str(e)}")


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def ingest_device_event(
    *,
    db: Session = Depends(get_db),
    flow_router: FlowRouter = Depends(get_flow_router),
    event: DeviceEvent = Body(...),
    wait: bool = Query(False, description="Wait for triggered runs to finish"),
) -> Dict[str, Any]:
    """
    Receive a device event and start every enabled flow it triggers.

    Query Parameters:
        wait: When true the response lists the finished runs
    """
    logger.info(f"Received event {event.eventName} from device {event.deviceId}")

    await run_in_threadpool(_record_event, db, event)

    tasks = flow_router.on_event(event)

    response: Dict[str, Any] = {
        "success": True,
        "deviceId": event.deviceId,
        "eventName": event.eventName,
        "flows_triggered": len(tasks),
        "received_at": datetime.utcnow().isoformat(),
    }

    if wait and tasks:
        runs = await asyncio.gather(*tasks)
        response["runs"] = [
            {"id": run.id, "flowId": run.flow_id, "status": run.status.value}
            for run in runs
            if run is not None
        ]

    return response
