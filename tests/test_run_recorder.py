"""Tests for run persistence and notifications."""

import asyncio
import time

from app.crud import flow as crud_flow
from app.crud.flow import SqlFlowStore
from app.models.enums import FlowRunStatus
from app.schemas.flow import FlowCreate
from app.services.flow_processor.errors import ActionDispatchError
from app.services.flow_processor.flow_engine import execute_flow
from app.services.flow_processor.run import FlowRunRecord
from app.services.flow_processor.run_recorder import RunRecorder

from flow_builders import (
    FailingStore,
    FakeDispatcher,
    InMemoryFlowStore,
    SlowStore,
    make_event,
    occupancy_graph,
    temperature_graph,
)


class FakeNotifier:
    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    def publish_flow_event(self, event_type, data):
        if self.fail:
            raise ConnectionError("redis down")
        self.published.append((event_type, data))
        return True


def make_run(flow_id="f1"):
    return FlowRunRecord(flow_id, make_event("d1", "e", {"value": 1}))


class TestRunRecorder:
    def test_persists_on_start_and_finish(self):
        store = InMemoryFlowStore()
        recorder = RunRecorder(store)
        run = make_run()

        async def scenario():
            await recorder.run_started(run)
            run.log("t1", "Executing trigger node")
            run.finish(FlowRunStatus.COMPLETED)
            await recorder.run_finished(run)

        asyncio.run(scenario())
        assert store.saved == [
            (run.id, FlowRunStatus.RUNNING, 0),
            (run.id, FlowRunStatus.COMPLETED, 1),
        ]

    def test_publishes_transitions(self):
        notifier = FakeNotifier()
        recorder = RunRecorder(InMemoryFlowStore(), notifier)
        run = make_run()

        async def scenario():
            await recorder.run_started(run)
            run.finish(FlowRunStatus.FAILED, error="boom")
            await recorder.run_finished(run)

        asyncio.run(scenario())
        assert [event for event, _ in notifier.published] == [
            "flow:started",
            "flow:failed",
        ]
        assert notifier.published[1][1] == {
            "flowId": "f1",
            "flowRunId": run.id,
            "status": "failed",
            "error": "boom",
        }

    def test_completed_run_publishes_completed(self):
        notifier = FakeNotifier()
        recorder = RunRecorder(InMemoryFlowStore(), notifier)
        run = make_run()
        run.finish(FlowRunStatus.COMPLETED)
        asyncio.run(recorder.run_finished(run))
        assert notifier.published[0][0] == "flow:completed"

    def test_slow_store_does_not_block_the_loop(self):
        recorder = RunRecorder(SlowStore(0.2))
        run = make_run()

        async def scenario():
            ticks = []

            async def heartbeat():
                while True:
                    ticks.append(time.monotonic())
                    await asyncio.sleep(0.01)

            beat = asyncio.ensure_future(heartbeat())
            await recorder.run_started(run)
            beat.cancel()
            return ticks

        ticks = asyncio.run(scenario())
        # The loop kept running while the store was busy
        assert len(ticks) >= 5

    def test_storage_failure_does_not_affect_the_run(self):
        recorder = RunRecorder(FailingStore(), FakeNotifier(fail=True))
        run = asyncio.run(
            execute_flow(
                "f1",
                temperature_graph(),
                make_event("sim-sensor-temp-001", "temperature", {"temperature": 35}),
                FakeDispatcher(),
                recorder,
            )
        )
        assert run.status == FlowRunStatus.COMPLETED


class TestSqlFlowStore:
    def _create_flow(self, session_factory, enabled=True):
        with session_factory() as db:
            flow = crud_flow.create_flow(
                db,
                FlowCreate(name="Occupancy", enabled=enabled, graph=occupancy_graph()),
            )
            return flow.id

    def test_lists_enabled_flows(self, session_factory):
        enabled_id = self._create_flow(session_factory)
        self._create_flow(session_factory, enabled=False)
        store = SqlFlowStore(session_factory)
        assert [flow.id for flow in store.list_enabled_flows()] == [enabled_id]

    def test_save_run_upserts(self, session_factory):
        flow_id = self._create_flow(session_factory)
        store = SqlFlowStore(session_factory)
        run = FlowRunRecord(flow_id, make_event("sim-occupancy-001", "occupied"))

        store.save_run(run)
        run.log("t1", "Executing trigger node")
        run.finish(FlowRunStatus.FAILED, error="device offline")
        store.save_run(run)

        with session_factory() as db:
            runs = crud_flow.get_flow_runs(db, flow_id)
            assert len(runs) == 1
            assert runs[0].status == "failed"
            assert runs[0].error_details == "device offline"
            assert runs[0].logs[0]["nodeId"] == "t1"
            assert runs[0].trigger_device_id == "sim-occupancy-001"
            assert runs[0].execution_time is not None

    def test_end_to_end_run_is_stored(self, session_factory):
        flow_id = self._create_flow(session_factory)
        store = SqlFlowStore(session_factory)
        dispatcher = FakeDispatcher(
            failures={("sim-light-001", "turnOn"): ActionDispatchError("timeout")}
        )
        asyncio.run(
            execute_flow(
                flow_id,
                occupancy_graph(),
                make_event("sim-occupancy-001", "occupied", {"occupied": True}),
                dispatcher,
                RunRecorder(store),
            )
        )
        with session_factory() as db:
            stored = crud_flow.get_flow_runs(db, flow_id)[0]
            assert stored.status == "failed"
            assert stored.input_data == {"occupied": True}
            assert stored.logs[-1]["nodeId"] == "system"
