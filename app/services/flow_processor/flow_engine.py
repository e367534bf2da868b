"""
Flow engine module for executing flows triggered by device events.
Walks the flow graph depth-first from every matching trigger node, evaluates
conditions, dispatches device actions and records every step in the run log.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.models.enums import (
    FALSE_BRANCH_LABELS,
    TRUE_BRANCH_LABELS,
    FlowRunStatus,
    LogLevel,
    NodeKind,
)
from app.schemas.device import DeviceEvent
from app.schemas.flow import (
    ActionNode,
    ConditionNode,
    FlowEdge,
    FlowGraph,
    FlowNode,
    TriggerConfig,
    TriggerNode,
)
from app.services.flow_processor.condition_evaluator import evaluate_predicate
from app.services.flow_processor.errors import (
    ActionDispatchError,
    FlowExecutionError,
    InvalidActionConfig,
    InvalidPredicate,
    UnknownNodeKind,
)
from app.services.flow_processor.run import FlowRunRecord

logger = logging.getLogger(__name__)

SYSTEM_NODE_ID = "system"


@dataclass
class ExecutionContext:
    """State of one run. Never shared between runs."""

    flow_id: str
    run: FlowRunRecord
    event: DeviceEvent
    variables: Dict[str, Any]
    dispatcher: Any


def matches_trigger(trigger: TriggerConfig, event: DeviceEvent) -> bool:
    """
    Check whether a trigger config matches a device event.
    Only deviceId and eventName take part; an unset field matches anything.
    """
    if trigger.deviceId and trigger.deviceId != event.deviceId:
        return False
    if trigger.eventName and trigger.eventName != event.eventName:
        return False
    return True


def find_matching_triggers(graph: FlowGraph, event: DeviceEvent) -> List[TriggerNode]:
    return [
        node
        for node in graph.nodes_of_kind(NodeKind.TRIGGER)
        if matches_trigger(node.data, event)
    ]


def build_variables(event: DeviceEvent) -> Dict[str, Any]:
    return {
        "trigger": {
            "deviceId": event.deviceId,
            "eventName": event.eventName,
            "payload": event.payload,
        }
    }


def select_branch(edges: List[FlowEdge], result: bool) -> Optional[FlowEdge]:
    """Pick the first edge whose label matches the condition result."""
    labels = TRUE_BRANCH_LABELS if result else FALSE_BRANCH_LABELS
    for edge in edges:
        if edge.branch_label in labels:
            return edge
    return None


async def process_condition_node(
    node: ConditionNode, graph: FlowGraph, context: ExecutionContext
) -> None:
    predicate = node.data.predicate
    try:
        result = evaluate_predicate(predicate, context.variables)
    except InvalidPredicate as e:
        context.run.log(
            node.id, f"Condition evaluation error: {str(e)}", LogLevel.ERROR
        )
        raise

    context.run.log(
        node.id,
        f"Condition evaluated to {'true' if result else 'false'}",
        data={"predicate": predicate, "result": result},
    )

    next_edge = select_branch(graph.outgoing_edges(node.id), result)
    if next_edge is None:
        # No edge for this outcome, the branch simply ends here
        logger.debug(f"Condition {node.id} has no edge for result {result}")
        return

    next_node = graph.get_node(next_edge.target)
    if next_node is not None:
        await process_node(next_node, graph, context)


async def process_action_node(node: ActionNode, context: ExecutionContext) -> Any:
    config = node.data
    if not config.deviceId or not config.actionName:
        raise InvalidActionConfig(
            f"Action node {node.id} missing deviceId or actionName"
        )

    params = dict(config.params or {})
    command = {
        "deviceId": config.deviceId,
        "actionName": config.actionName,
        "params": params,
    }

    try:
        result = await context.dispatcher.send_command(
            config.deviceId, config.actionName, params
        )
    except Exception as e:
        context.run.log(
            node.id,
            f"Action execution failed: {str(e)}",
            LogLevel.ERROR,
            data=command,
        )
        if isinstance(e, ActionDispatchError):
            raise
        raise ActionDispatchError(str(e)) from e

    context.run.log(
        node.id,
        f"Action {config.actionName} executed successfully",
        data={**command, "result": result},
    )
    return result


async def process_node(
    node: FlowNode, graph: FlowGraph, context: ExecutionContext
) -> None:
    """
    Process a node and everything reachable from it, depth-first.

    Trigger and action nodes continue down every outgoing edge in order;
    condition nodes choose at most one edge. Nodes reachable through two
    paths run once per path.
    """
    node_type = getattr(node, "type", None)
    context.run.log(
        node.id,
        f"Executing {node_type} node",
        data=node.data.model_dump(mode="json") if hasattr(node, "data") else None,
    )

    if node_type == NodeKind.TRIGGER:
        pass
    elif node_type == NodeKind.CONDITION:
        await process_condition_node(node, graph, context)
        return
    elif node_type == NodeKind.ACTION:
        await process_action_node(node, context)
    else:
        raise UnknownNodeKind(f"Unknown node type: {node_type}")

    for edge in graph.outgoing_edges(node.id):
        next_node = graph.get_node(edge.target)
        if next_node is not None:
            await process_node(next_node, graph, context)


async def execute_flow(
    flow_id: str,
    graph: FlowGraph,
    event: DeviceEvent,
    dispatcher: Any,
    recorder: Any = None,
) -> FlowRunRecord:
    """
    Execute a flow for a device event and return the finished run.

    Args:
        flow_id: ID of the flow being executed
        graph: The flow graph, treated as read-only
        event: The device event that triggered the run
        dispatcher: Object with an awaitable send_command(device_id, action_name, params)
        recorder: Optional object whose awaitable run_started(run) and
            run_finished(run) are called when the run starts and ends

    Returns:
        The run record, with status completed or failed
    """
    run = FlowRunRecord(flow_id, event)
    context = ExecutionContext(
        flow_id=flow_id,
        run=run,
        event=event,
        variables=build_variables(event),
        dispatcher=dispatcher,
    )

    if recorder is not None:
        await recorder.run_started(run)

    logger.info(
        f"Flow {flow_id} run {run.id} started by {event.deviceId}/{event.eventName}"
    )

    try:
        trigger_nodes = find_matching_triggers(graph, event)
        if not trigger_nodes:
            run.log(
                SYSTEM_NODE_ID,
                "No trigger node matched the event",
                LogLevel.WARN,
                data={"deviceId": event.deviceId, "eventName": event.eventName},
            )

        for trigger_node in trigger_nodes:
            await process_node(trigger_node, graph, context)

    except asyncio.CancelledError:
        run.log(SYSTEM_NODE_ID, "Flow execution cancelled", LogLevel.ERROR)
        run.finish(FlowRunStatus.FAILED, error="cancelled")
        if recorder is not None:
            await recorder.run_finished(run)
        raise

    except Exception as e:
        if not isinstance(e, FlowExecutionError):
            logger.exception(f"Unexpected error in flow {flow_id} run {run.id}")
        run.log(
            SYSTEM_NODE_ID,
            f"Flow execution failed: {str(e)}",
            LogLevel.ERROR,
            data={"error": type(e).__name__},
        )
        run.finish(FlowRunStatus.FAILED, error=str(e))
        logger.error(f"Flow {flow_id} run {run.id} failed: {str(e)}")

    else:
        run.finish(FlowRunStatus.COMPLETED)
        logger.info(
            f"Flow {flow_id} run {run.id} completed in {run.execution_time_ms}ms"
        )

    if recorder is not None:
        await recorder.run_finished(run)

    return run
