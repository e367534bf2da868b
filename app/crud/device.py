"""
CRUD operations for device management.
Provides functions to retrieve devices and record presence, description,
state and event history reported over MQTT.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.models.device import Device
from app.models.device_history import DeviceHistory
from app.models.enums import DeviceHistoryEvent
from app.schemas.device import DeviceDescription, DevicePresence
from datetime import datetime


def get_device(db: Session, device_id: str) -> Optional[Device]:
    """
    Get a device by ID.

    Args:
        db: Database session
        device_id: Device ID to look up

    Returns:
        Device object or None if not found
    """
    return db.query(Device).filter(Device.device_id == device_id).first()


def get_devices(db: Session) -> List[Device]:
    """Devices seen most recently first; devices never seen come last."""
    return (
        db.query(Device)
        .order_by(Device.last_seen.is_(None), Device.last_seen.desc(), Device.device_id)
        .all()
    )


def get_device_history(
    db: Session,
    device_id: str,
    event: Optional[DeviceHistoryEvent] = None,
    limit: int = 50,
) -> List[DeviceHistory]:
    """
    Get the history of a device, most recent first.

    Args:
        db: Database session
        device_id: Device ID
        event: Only return entries of this kind when given
        limit: Maximum number of entries to return

    Returns:
        List of DeviceHistory objects
    """
    query = db.query(DeviceHistory).filter(DeviceHistory.device_id == device_id)
    if event is not None:
        query = query.filter(DeviceHistory.event == event.value)
    return (
        query.order_by(DeviceHistory.timestamp.desc(), DeviceHistory.id.desc())
        .limit(limit)
        .all()
    )


def get_or_create_device(db: Session, device_id: str) -> Device:
    device = get_device(db, device_id)
    if device is None:
        device = Device(device_id=device_id, name=device_id, model_id="unknown")
        db.add(device)
        db.flush()
    return device


def update_device_presence(
    db: Session, device_id: str, presence: DevicePresence
) -> Device:
    """
    Record a presence message for a device.

    A history entry is only written when the online status actually changes.

    Args:
        db: Database session
        device_id: Device ID
        presence: Presence message from the device

    Returns:
        Updated device object
    """
    device = get_or_create_device(db, device_id)
    previous_online = device.online

    device.online = presence.online
    device.last_seen = datetime.utcfromtimestamp(presence.ts / 1000)

    if previous_online != presence.online:
        status = "online" if presence.online else "offline"
        db.add(
            DeviceHistory(
                device_id=device_id,
                event=DeviceHistoryEvent.PRESENCE.value,
                data={
                    "online": presence.online,
                    "previous_online": previous_online,
                    "msg": "Device status changed to " + status,
                    "ip": presence.ip,
                },
            )
        )

    db.commit()
    db.refresh(device)
    return device


def update_device_description(
    db: Session, device_id: str, description: DeviceDescription
) -> Device:
    device = get_or_create_device(db, device_id)
    device.name = description.name or device.name
    device.model_id = description.modelId
    device.description = description.model_dump(mode="json")
    db.commit()
    db.refresh(device)
    return device


def record_device_history(
    db: Session,
    device_id: str,
    event: DeviceHistoryEvent,
    name: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> DeviceHistory:
    """
    Append a state or event entry to a device's history.
    Unknown devices are registered on first sight.
    """
    get_or_create_device(db, device_id)
    db_history = DeviceHistory(
        device_id=device_id,
        event=event.value,
        name=name,
        data=data,
        timestamp=datetime.utcnow(),
    )
    db.add(db_history)
    db.commit()
    db.refresh(db_history)
    return db_history
