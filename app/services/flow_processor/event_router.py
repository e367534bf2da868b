"""
Event router module for device-triggered flow execution.
Keeps the snapshot of enabled flows and starts one run per flow whose
trigger nodes match an incoming device event.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Set, Tuple

from pydantic import ValidationError

from app.schemas.device import DeviceEvent
from app.schemas.flow import FlowGraph
from app.services.flow_processor.flow_engine import (
    execute_flow,
    find_matching_triggers,
)
from app.services.flow_processor.run import FlowRunRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnabledFlow:
    id: str
    name: str
    graph: FlowGraph


class FlowRouter:
    """
    Dispatches device events to enabled flows.

    The enabled-flow snapshot is an immutable tuple that reload() replaces in
    a single assignment, so on_event always reads one consistent set. Runs
    already started keep the graph they were started with.
    """

    def __init__(self, store: Any, dispatcher: Any, recorder: Optional[Any] = None):
        """
        Args:
            store: Object with list_enabled_flows()
            dispatcher: Device command dispatcher passed to the engine
            recorder: Optional RunRecorder passed to the engine
        """
        self._store = store
        self._dispatcher = dispatcher
        self._recorder = recorder
        self._flows: Tuple[EnabledFlow, ...] = ()
        self._tasks: Set[asyncio.Task] = set()

    @property
    def flows(self) -> Tuple[EnabledFlow, ...]:
        return self._flows

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def reload(self) -> int:
        """
        Re-fetch enabled flows and swap in a new snapshot.

        Flows whose stored graph no longer parses are skipped. If the store
        itself fails the previous snapshot is kept and the error propagates.

        Returns:
            Number of flows in the new snapshot
        """
        snapshot = []
        for flow in self._store.list_enabled_flows():
            try:
                graph = (
                    flow.graph
                    if isinstance(flow.graph, FlowGraph)
                    else FlowGraph.model_validate(flow.graph)
                )
            except ValidationError as e:
                logger.error(f"Skipping flow {flow.id} ({flow.name}): invalid graph: {e}")
                continue
            snapshot.append(EnabledFlow(id=str(flow.id), name=flow.name, graph=graph))

        self._flows = tuple(snapshot)
        logger.info(f"Loaded {len(snapshot)} enabled flows")
        return len(snapshot)

    def matching_flows(self, event: DeviceEvent) -> List[EnabledFlow]:
        return [
            flow for flow in self._flows if find_matching_triggers(flow.graph, event)
        ]

    def on_event(self, event: DeviceEvent) -> List[asyncio.Task]:
        """
        Start one run per enabled flow with a matching trigger.
        Must be called from the event loop thread.

        Returns:
            The tasks of the runs that were started
        """
        logger.info(f"Handling device event: {event.deviceId}/{event.eventName}")

        flows = self._flows
        tasks = []
        for flow in flows:
            try:
                if not find_matching_triggers(flow.graph, event):
                    continue
                logger.info(f"Flow {flow.id} ({flow.name}) triggered by event {event.eventName}")
                tasks.append(self._start_run(flow, event))
            except Exception as e:
                logger.exception(f"Failed to dispatch event to flow {flow.id}: {str(e)}")

        return tasks

    def _start_run(self, flow: EnabledFlow, event: DeviceEvent) -> asyncio.Task:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(flow, event), name=f"flow-run-{flow.id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, flow: EnabledFlow, event: DeviceEvent) -> Optional[FlowRunRecord]:
        try:
            return await execute_flow(
                flow.id, flow.graph, event, self._dispatcher, self._recorder
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Run of flow {flow.id} crashed: {str(e)}")
            return None

    async def wait_idle(self) -> None:
        """Wait until every run started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self, timeout: float = 10.0) -> None:
        """Give in-flight runs time to finish, then cancel the rest."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        if pending:
            logger.warning(f"Cancelling {len(pending)} flow runs still in flight")
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
