"""
Schema definitions for flows, flow graphs and flow runs.

A flow graph is a set of trigger, condition and action nodes joined by
directed edges. Nodes are a tagged union on ``type`` so every node carries a
config of the right shape for its kind.
"""

from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

from app.models.enums import FlowRunStatus, LogLevel, NodeKind

# Upper bound on nodes per flow; execution walks the graph recursively
MAX_GRAPH_NODES = 200


class TriggerConfig(BaseModel):
    # An unset deviceId or eventName matches any value
    model_config = ConfigDict(extra="allow", frozen=True)

    deviceId: Optional[str] = None
    eventName: Optional[str] = None


class ConditionConfig(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    predicate: Optional[Any] = Field(
        default=None,
        validation_alias=AliasChoices("predicate", "rule", "condition"),
    )


class ActionConfig(BaseModel):
    # Ids are optional here so a half-configured action can still be saved
    # from the editor; the engine rejects it when the node runs.
    model_config = ConfigDict(extra="allow", frozen=True)

    deviceId: Optional[str] = None
    actionName: Optional[str] = None
    params: Optional[Dict[str, Any]] = None


class _NodeBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    position: Optional[Dict[str, float]] = None


class TriggerNode(_NodeBase):
    type: Literal["trigger"]
    data: TriggerConfig = Field(default_factory=TriggerConfig)


class ConditionNode(_NodeBase):
    type: Literal["condition"]
    data: ConditionConfig = Field(default_factory=ConditionConfig)


class ActionNode(_NodeBase):
    type: Literal["action"]
    data: ActionConfig = Field(default_factory=ActionConfig)


FlowNode = Annotated[
    Union[TriggerNode, ConditionNode, ActionNode], Field(discriminator="type")
]


class FlowEdge(BaseModel):
    model_config = ConfigDict(extra="allow", frozen=True)

    id: str
    source: str
    target: str
    label: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    @property
    def branch_label(self) -> Optional[str]:
        """Label used for branch selection, falling back to ``data.label``."""
        if self.label:
            return self.label
        if self.data:
            return self.data.get("label")
        return None


class FlowGraph(BaseModel):
    model_config = ConfigDict(frozen=True)

    nodes: List[FlowNode] = Field(default_factory=list)
    edges: List[FlowEdge] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_references(self) -> "FlowGraph":
        if len(self.nodes) > MAX_GRAPH_NODES:
            raise ValueError(
                f"Flow has {len(self.nodes)} nodes, at most {MAX_GRAPH_NODES} are allowed"
            )

        node_ids = set()
        duplicates = []
        for node in self.nodes:
            if node.id in node_ids:
                duplicates.append(node.id)
            node_ids.add(node.id)
        if duplicates:
            raise ValueError(f"Duplicate node ids: {', '.join(duplicates)}")

        for edge in self.edges:
            if edge.source not in node_ids or edge.target not in node_ids:
                raise ValueError(
                    f"Edge {edge.id} references an unknown node "
                    f"({edge.source} -> {edge.target})"
                )
        return self

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def nodes_of_kind(self, kind: NodeKind) -> List[FlowNode]:
        return [node for node in self.nodes if node.type == kind]

    def outgoing_edges(self, node_id: str) -> List[FlowEdge]:
        return [edge for edge in self.edges if edge.source == node_id]


class FlowCreate(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    enabled: bool = False
    graph: FlowGraph


class FlowUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    enabled: Optional[bool] = None
    graph: Optional[FlowGraph] = None


class FlowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    enabled: bool
    graph: Dict[str, Any]
    createdAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("createdAt", "created_at")
    )
    updatedAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("updatedAt", "updated_at")
    )


class LogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: float
    nodeId: str
    level: LogLevel
    message: str
    data: Optional[Any] = None


class FlowRunOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    flowId: str = Field(validation_alias=AliasChoices("flowId", "flow_id"))
    status: FlowRunStatus
    logs: List[LogEntry] = Field(default_factory=list)
    triggerDeviceId: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("triggerDeviceId", "trigger_device_id"),
    )
    triggerEventName: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("triggerEventName", "trigger_event_name"),
    )
    errorDetails: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("errorDetails", "error_details")
    )
    startedAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("startedAt", "started_at")
    )
    endedAt: Optional[datetime] = Field(
        default=None, validation_alias=AliasChoices("endedAt", "ended_at")
    )
    executionTime: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("executionTime", "execution_time"),
    )
