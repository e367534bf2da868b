"""Tests for routing device events to enabled flows."""

import asyncio
import time

import pytest

from app.models.enums import FlowRunStatus
from app.services.flow_processor.errors import ActionDispatchError
from app.services.flow_processor.event_router import FlowRouter
from app.services.flow_processor.run_recorder import RunRecorder

from flow_builders import (
    FakeDispatcher,
    InMemoryFlowStore,
    SlowStore,
    action,
    edge,
    make_event,
    make_graph,
    occupancy_graph,
    temperature_graph,
    trigger,
)


def dispatch(router, event):
    """Deliver an event on a fresh loop and wait for the runs it started."""

    async def scenario():
        tasks = router.on_event(event)
        return await asyncio.gather(*tasks)

    return asyncio.run(scenario())


class TestReload:
    def test_loads_only_enabled_flows(self, store, dispatcher):
        store.add_flow("f1", occupancy_graph())
        store.add_flow("f2", temperature_graph(), enabled=False)
        router = FlowRouter(store, dispatcher)
        assert router.reload() == 1
        assert [flow.id for flow in router.flows] == ["f1"]

    def test_accepts_stored_json_graphs(self, store, dispatcher):
        store.add_flow("f1", occupancy_graph().model_dump(mode="json"))
        router = FlowRouter(store, dispatcher)
        router.reload()
        assert router.flows[0].graph.get_node("c1") is not None

    def test_skips_graphs_that_do_not_parse(self, store, dispatcher):
        store.add_flow("broken", {"nodes": [{"id": "x", "type": "delay"}], "edges": []})
        store.add_flow("f1", occupancy_graph())
        router = FlowRouter(store, dispatcher)
        assert router.reload() == 1
        assert router.flows[0].id == "f1"

    def test_reload_is_idempotent(self, store, dispatcher):
        store.add_flow("f1", occupancy_graph())
        router = FlowRouter(store, dispatcher)
        router.reload()
        first = [(flow.id, flow.graph) for flow in router.flows]
        router.reload()
        assert [(flow.id, flow.graph) for flow in router.flows] == first

    def test_store_failure_keeps_previous_snapshot(self, dispatcher):
        store = InMemoryFlowStore()
        store.add_flow("f1", occupancy_graph())
        router = FlowRouter(store, dispatcher)
        router.reload()

        def broken():
            raise RuntimeError("database unavailable")

        store.list_enabled_flows = broken
        with pytest.raises(RuntimeError):
            router.reload()
        assert [flow.id for flow in router.flows] == ["f1"]


class TestOnEvent:
    def test_starts_one_run_per_matching_flow(self, store, dispatcher):
        store.add_flow("occupancy", occupancy_graph())
        store.add_flow("temperature", temperature_graph())
        router = FlowRouter(store, dispatcher)
        router.reload()

        runs = dispatch(
            router, make_event("sim-occupancy-001", "occupied", {"occupied": True})
        )
        assert [run.flow_id for run in runs] == ["occupancy"]
        assert dispatcher.calls == [("sim-light-001", "turnOn", {})]

    def test_flow_with_two_matching_triggers_runs_once(self, store, dispatcher):
        graph = make_graph(
            [
                trigger("t1", device_id="d1"),
                trigger("t2", event_name="pressed"),
                action("a1", "lamp", "on"),
            ],
            [edge("t1", "a1"), edge("t2", "a1")],
        )
        store.add_flow("f1", graph)
        router = FlowRouter(store, dispatcher)
        router.reload()

        runs = dispatch(router, make_event("d1", "pressed"))
        assert len(runs) == 1
        # Both triggers lead to the action within the single run
        assert dispatcher.calls == [("lamp", "on", {}), ("lamp", "on", {})]

    def test_matching_flows(self, store, dispatcher):
        store.add_flow("occupancy", occupancy_graph())
        store.add_flow("temperature", temperature_graph())
        router = FlowRouter(store, dispatcher)
        router.reload()
        event = make_event("sim-sensor-temp-001", "temperature", {"temperature": 30})
        assert [flow.id for flow in router.matching_flows(event)] == ["temperature"]

    def test_no_match_starts_nothing(self, store, dispatcher):
        store.add_flow("f1", occupancy_graph())
        router = FlowRouter(store, dispatcher)
        router.reload()
        assert dispatch(router, make_event("unknown", "noise")) == []

    def test_disabled_flow_is_ignored_after_reload(self, store, dispatcher):
        store.add_flow("f1", occupancy_graph())
        router = FlowRouter(store, dispatcher)
        router.reload()
        store.flows["f1"].enabled = False
        router.reload()
        event = make_event("sim-occupancy-001", "occupied", {"occupied": True})
        assert dispatch(router, event) == []

    def test_failing_flow_does_not_affect_others(self, store):
        dispatcher = FakeDispatcher(
            failures={("lamp-a", "on"): ActionDispatchError("device offline")}
        )
        for flow_id, device_id in (("fa", "lamp-a"), ("fb", "lamp-b")):
            store.add_flow(
                flow_id,
                make_graph(
                    [trigger("t1", event_name="pressed"), action("a1", device_id, "on")],
                    [edge("t1", "a1")],
                ),
            )
        router = FlowRouter(store, dispatcher)
        router.reload()

        runs = dispatch(router, make_event("button", "pressed"))
        statuses = {run.flow_id: run.status for run in runs}
        assert statuses == {"fa": FlowRunStatus.FAILED, "fb": FlowRunStatus.COMPLETED}

    def test_runs_are_concurrent(self, store):
        dispatcher = FakeDispatcher()
        for flow_id in ("f1", "f2"):
            store.add_flow(
                flow_id,
                make_graph(
                    [trigger("t1"), action("a1", flow_id, "on")], [edge("t1", "a1")]
                ),
            )
        router = FlowRouter(store, dispatcher)
        router.reload()

        async def scenario():
            gate = dispatcher.gate = asyncio.Event()
            tasks = router.on_event(make_event("d1", "e"))
            while len(dispatcher.calls) < 2:
                await asyncio.sleep(0)
            # Both runs reached their action before either was released
            assert router.in_flight == 2
            gate.set()
            await router.wait_idle()
            return [task.result() for task in tasks]

        runs = asyncio.run(scenario())
        assert all(run.status == FlowRunStatus.COMPLETED for run in runs)
        assert router.in_flight == 0

    def test_in_flight_run_keeps_its_graph_after_reload(self, store):
        dispatcher = FakeDispatcher()
        store.add_flow(
            "f1",
            make_graph(
                [trigger("t1"), action("a1", "lamp", "on"), action("a2", "lamp", "off")],
                [edge("t1", "a1"), edge("a1", "a2")],
            ),
        )
        router = FlowRouter(store, dispatcher)
        router.reload()

        async def scenario():
            gate = dispatcher.gate = asyncio.Event()
            tasks = router.on_event(make_event("d1", "e"))
            while not dispatcher.calls:
                await asyncio.sleep(0)
            store.flows["f1"].enabled = False
            router.reload()
            gate.set()
            return await asyncio.gather(*tasks)

        runs = asyncio.run(scenario())
        assert runs[0].status == FlowRunStatus.COMPLETED
        assert [call[1] for call in dispatcher.calls] == ["on", "off"]
        assert router.flows == ()


class TestSlowPersistence:
    def test_runs_overlap_while_store_is_slow(self, dispatcher):
        store = InMemoryFlowStore()
        for flow_id in ("f1", "f2", "f3"):
            store.add_flow(
                flow_id,
                make_graph(
                    [trigger("t1"), action("a1", flow_id, "on")], [edge("t1", "a1")]
                ),
            )
        router = FlowRouter(store, dispatcher, RunRecorder(SlowStore(0.2)))
        router.reload()

        async def scenario():
            gaps = []

            async def heartbeat():
                last = time.monotonic()
                while True:
                    await asyncio.sleep(0.01)
                    now = time.monotonic()
                    gaps.append(now - last)
                    last = now

            beat = asyncio.ensure_future(heartbeat())
            started = time.monotonic()
            runs = await asyncio.gather(*router.on_event(make_event("d1", "e")))
            elapsed = time.monotonic() - started
            beat.cancel()
            return runs, elapsed, max(gaps)

        runs, elapsed, longest_gap = asyncio.run(scenario())
        assert [run.status for run in runs] == [FlowRunStatus.COMPLETED] * 3
        # Six 0.2s writes one after another would take 1.2s
        assert elapsed < 1.0
        assert longest_gap < 0.15


class TestShutdown:
    def test_close_cancels_stuck_runs(self, store):
        dispatcher = FakeDispatcher()
        store.add_flow(
            "f1", make_graph([trigger("t1"), action("a1", "d", "x")], [edge("t1", "a1")])
        )
        recorder_store = InMemoryFlowStore()
        router = FlowRouter(store, dispatcher, RunRecorder(recorder_store))
        router.reload()

        async def scenario():
            dispatcher.gate = asyncio.Event()
            router.on_event(make_event("d1", "e"))
            while not dispatcher.calls:
                await asyncio.sleep(0)
            await router.close(timeout=0.01)

        asyncio.run(scenario())
        assert router.in_flight == 0
        assert recorder_store.saved[-1][1] == FlowRunStatus.FAILED

    def test_close_without_runs(self, store, dispatcher):
        router = FlowRouter(store, dispatcher)
        asyncio.run(router.close())
