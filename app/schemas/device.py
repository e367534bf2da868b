"""
Schema definitions for messages exchanged with devices over MQTT.
"""

import time
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


def _now_ms() -> int:
    return int(time.time() * 1000)


class DeviceEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    deviceId: str
    eventName: str
    payload: Any = Field(default_factory=dict)
    ts: int = Field(default_factory=_now_ms)


class DevicePresence(BaseModel):
    online: bool
    ts: int = Field(default_factory=_now_ms)
    ip: Optional[str] = None
    descTopic: Optional[str] = None


class DeviceDescription(BaseModel):
    model_config = ConfigDict(extra="allow")

    deviceId: Optional[str] = None
    modelId: str = "unknown"
    name: Optional[str] = None


class DeviceCommand(BaseModel):
    requestId: str
    actionName: str
    params: Dict[str, Any] = Field(default_factory=dict)
    ts: int = Field(default_factory=_now_ms)


class DeviceResponse(BaseModel):
    requestId: Optional[str] = None
    ok: bool
    result: Optional[Any] = None
    error: Optional[str] = None
    ts: Optional[int] = None


class ExecuteAction(BaseModel):
    params: Dict[str, Any] = Field(default_factory=dict)


class DeviceHistoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event: str
    name: Optional[str] = None
    data: Optional[Any] = None
    timestamp: Optional[datetime] = None


class DeviceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    deviceId: str = Field(validation_alias=AliasChoices("deviceId", "device_id"))
    name: str
    modelId: str = Field(validation_alias=AliasChoices("modelId", "model_id"))
    online: bool = False
    lastSeen: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("lastSeen", "last_seen")
    )
    description: Optional[Dict[str, Any]] = None


class DeviceDetailOut(DeviceOut):
    history: List[DeviceHistoryOut] = Field(default_factory=list)
