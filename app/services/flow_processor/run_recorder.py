"""
Run recorder module.
Hands flow runs to persistence when they start and when they end, and
publishes a notification for each transition. Storage and Redis calls block,
so they run in the default executor; only the recorded run waits for them.
Storage problems are logged and never interrupt the run or the router.
"""

import asyncio
import logging
from typing import Any, Optional

from app.models.enums import FlowRunStatus
from app.services.flow_processor.run import FlowRunRecord

logger = logging.getLogger(__name__)


class RunRecorder:
    def __init__(self, store: Any, notifier: Optional[Any] = None):
        """
        Args:
            store: Object with save_run(run), e.g. SqlFlowStore
            notifier: Optional object with publish_flow_event(event_type, data)
        """
        self._store = store
        self._notifier = notifier

    async def run_started(self, run: FlowRunRecord) -> None:
        await self._in_executor(self._record, run, "flow:started")

    async def run_finished(self, run: FlowRunRecord) -> None:
        if run.status == FlowRunStatus.FAILED:
            await self._in_executor(self._record, run, "flow:failed", run.error)
        else:
            await self._in_executor(self._record, run, "flow:completed")

    async def _in_executor(self, func, *args) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, func, *args)

    def _record(
        self, run: FlowRunRecord, event_type: str, error: Optional[str] = None
    ) -> None:
        self._persist(run)
        if error is not None:
            self._notify(event_type, run, error=error)
        else:
            self._notify(event_type, run)

    def _persist(self, run: FlowRunRecord) -> None:
        try:
            self._store.save_run(run)
        except Exception as e:
            logger.exception(
                f"Failed to persist run {run.id} of flow {run.flow_id}: {str(e)}"
            )

    def _notify(self, event_type: str, run: FlowRunRecord, **extra) -> None:
        if self._notifier is None:
            return
        data = {"flowId": run.flow_id, "flowRunId": run.id, "status": run.status.value}
        data.update(extra)
        try:
            self._notifier.publish_flow_event(event_type, data)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type} for run {run.id}: {str(e)}")
