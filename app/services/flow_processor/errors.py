"""
Exceptions raised by the flow processor.

Validation errors are raised synchronously to the caller that creates or
updates a flow. Execution errors end the run they occur in; the engine
records them in the run log and never lets them escape to the router.
"""

from typing import List, Optional


class FlowGraphValidationError(Exception):
    """Base class for static flow graph validation failures."""

    code = "invalid_graph"

    def __init__(self, message: str, node_ids: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.node_ids = node_ids or []

    def to_dict(self):
        detail = {"code": self.code, "message": self.message}
        if self.node_ids:
            detail["nodeIds"] = self.node_ids
        return detail


class EmptyGraph(FlowGraphValidationError):
    code = "empty_graph"

    def __init__(self):
        super().__init__("Flow must have at least one node")


class NoTrigger(FlowGraphValidationError):
    code = "no_trigger"

    def __init__(self):
        super().__init__("Flow must have at least one trigger node")


class NoAction(FlowGraphValidationError):
    code = "no_action"

    def __init__(self):
        super().__init__("Flow must have at least one action node")


class CycleDetected(FlowGraphValidationError):
    code = "cycle_detected"

    def __init__(self, node_id: str):
        super().__init__(f"Flow contains a cycle through node {node_id}", [node_id])


class UnreachableNodes(FlowGraphValidationError):
    code = "unreachable_nodes"

    def __init__(self, node_ids: List[str]):
        super().__init__(
            f"Nodes unreachable from trigger: {', '.join(node_ids)}", list(node_ids)
        )


class FlowExecutionError(Exception):
    """Base class for errors that fail a single flow run."""


class InvalidPredicate(FlowExecutionError):
    pass


class InvalidActionConfig(FlowExecutionError):
    pass


class ActionDispatchError(FlowExecutionError):
    pass


class UnknownNodeKind(FlowExecutionError):
    pass
