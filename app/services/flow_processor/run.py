"""
In-memory record of a single flow run.
Owned by the engine while the run executes and frozen once it is terminal.
"""

import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from app.models.enums import FlowRunStatus, LogLevel
from app.schemas.device import DeviceEvent
from app.schemas.flow import LogEntry


class FlowRunRecord:
    def __init__(self, flow_id: str, event: DeviceEvent, run_id: Optional[str] = None):
        self.id = run_id or str(uuid.uuid4())
        self.flow_id = flow_id
        self.event = event
        self.status = FlowRunStatus.RUNNING
        self.started_at = datetime.utcnow()
        self.ended_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self._logs: List[LogEntry] = []
        self._started = time.monotonic()
        self._execution_time_ms: Optional[int] = None

    @property
    def logs(self) -> Tuple[LogEntry, ...]:
        return tuple(self._logs)

    @property
    def is_terminal(self) -> bool:
        return self.status != FlowRunStatus.RUNNING

    @property
    def execution_time_ms(self) -> Optional[int]:
        return self._execution_time_ms

    def log(
        self,
        node_id: str,
        message: str,
        level: LogLevel = LogLevel.INFO,
        data: Any = None,
    ) -> LogEntry:
        if self.is_terminal:
            raise RuntimeError(f"Run {self.id} is {self.status.value}, its log is closed")
        entry = LogEntry(
            timestamp=time.time(),
            nodeId=node_id,
            level=level,
            message=message,
            data=data,
        )
        self._logs.append(entry)
        return entry

    def finish(self, status: FlowRunStatus, error: Optional[str] = None):
        if self.is_terminal:
            raise RuntimeError(f"Run {self.id} already ended as {self.status.value}")
        if status == FlowRunStatus.RUNNING:
            raise ValueError("A run can only finish as completed or failed")
        self.status = status
        self.error = error
        self.ended_at = datetime.utcnow()
        self._execution_time_ms = int((time.monotonic() - self._started) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "flowId": self.flow_id,
            "status": self.status.value,
            "trigger": {
                "deviceId": self.event.deviceId,
                "eventName": self.event.eventName,
                "payload": self.event.payload,
            },
            "logs": [entry.model_dump(mode="json") for entry in self._logs],
            "error": self.error,
            "startedAt": self.started_at.isoformat(),
            "endedAt": self.ended_at.isoformat() if self.ended_at else None,
            "executionTime": self._execution_time_ms,
        }
