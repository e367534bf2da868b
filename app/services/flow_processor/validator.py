"""
Static validation of flow graphs.
Runs when a flow is created or updated, before it is persisted. Trigger
matching at runtime assumes the graph already passed these checks.
"""

import logging
from typing import Dict, List, Set

from app.models.enums import NodeKind
from app.schemas.flow import FlowGraph
from app.services.flow_processor.errors import (
    CycleDetected,
    EmptyGraph,
    NoAction,
    NoTrigger,
    UnreachableNodes,
)

logger = logging.getLogger(__name__)


def _adjacency(graph: FlowGraph) -> Dict[str, List[str]]:
    adjacency: Dict[str, List[str]] = {node.id: [] for node in graph.nodes}
    for edge in graph.edges:
        adjacency.setdefault(edge.source, []).append(edge.target)
    return adjacency


def find_cycle(graph: FlowGraph):
    """
    Return the id of a node that closes a directed cycle, or None.

    Depth-first search from every node with an explicit stack, keeping the
    nodes of the current path; reaching a node still on the path means a
    back edge.
    """
    adjacency = _adjacency(graph)
    visited: Set[str] = set()
    on_path: Set[str] = set()

    for node in graph.nodes:
        if node.id in visited:
            continue

        visited.add(node.id)
        on_path.add(node.id)
        stack = [(node.id, iter(adjacency.get(node.id, [])))]

        while stack:
            node_id, targets = stack[-1]
            target = next(targets, None)
            if target is None:
                on_path.discard(node_id)
                stack.pop()
            elif target in on_path:
                return target
            elif target not in visited:
                visited.add(target)
                on_path.add(target)
                stack.append((target, iter(adjacency.get(target, []))))

    return None


def find_unreachable_nodes(graph: FlowGraph) -> List[str]:
    """Node ids that cannot be reached by forward edges from any trigger."""
    adjacency = _adjacency(graph)
    reachable: Set[str] = set()
    pending = [node.id for node in graph.nodes_of_kind(NodeKind.TRIGGER)]

    while pending:
        node_id = pending.pop()
        if node_id in reachable:
            continue
        reachable.add(node_id)
        pending.extend(adjacency.get(node_id, []))

    return [node.id for node in graph.nodes if node.id not in reachable]


def validate_flow_graph(graph: FlowGraph) -> bool:
    """
    Validate a flow graph.

    Rules are checked in order and the first failure is raised:
    at least one node, at least one trigger, at least one action,
    no directed cycle, every node reachable from a trigger.

    Args:
        graph: The flow graph to check

    Returns:
        True when the graph is valid

    Raises:
        FlowGraphValidationError: The subclass naming the failed rule
    """
    if not graph.nodes:
        raise EmptyGraph()

    if not graph.nodes_of_kind(NodeKind.TRIGGER):
        raise NoTrigger()

    if not graph.nodes_of_kind(NodeKind.ACTION):
        raise NoAction()

    cycle_node = find_cycle(graph)
    if cycle_node is not None:
        raise CycleDetected(cycle_node)

    unreachable = find_unreachable_nodes(graph)
    if unreachable:
        raise UnreachableNodes(unreachable)

    logger.debug(
        f"Flow graph is valid: {len(graph.nodes)} nodes, {len(graph.edges)} edges"
    )
    return True
