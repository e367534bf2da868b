"""
CRUD operations for flow management.
Provides functions to create, update, enable and look up flows and their runs.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from app.db.database import SessionLocal
from app.models.flow import Flow
from app.models.flow_run import FlowRun
from app.schemas.flow import FlowCreate, FlowGraph, FlowUpdate
from app.services.flow_processor.run import FlowRunRecord
from app.services.flow_processor.validator import validate_flow_graph


def _graph_to_json(graph: FlowGraph) -> dict:
    return graph.model_dump(mode="json")


def get_flows(db: Session) -> List[Flow]:
    return db.query(Flow).order_by(Flow.updated_at.desc()).all()


def get_flow(db: Session, flow_id: str) -> Optional[Flow]:
    """
    Get a flow by ID.

    Args:
        db: Database session
        flow_id: Flow ID to look up

    Returns:
        Flow object or None if not found
    """
    return db.query(Flow).filter(Flow.id == flow_id).first()


def get_enabled_flows(db: Session) -> List[Flow]:
    return db.query(Flow).filter(Flow.enabled == True).all()  # noqa: E712


def create_flow(db: Session, flow_in: FlowCreate) -> Flow:
    """
    Validate and store a new flow.

    Raises:
        FlowGraphValidationError: If the graph fails validation; nothing is stored
    """
    validate_flow_graph(flow_in.graph)

    flow = Flow(
        name=flow_in.name,
        description=flow_in.description,
        enabled=flow_in.enabled,
        graph=_graph_to_json(flow_in.graph),
    )
    db.add(flow)
    db.commit()
    db.refresh(flow)
    return flow


def update_flow(db: Session, flow: Flow, flow_in: FlowUpdate) -> Flow:
    """
    Apply a partial update to a flow. A new graph replaces the old one
    only after it passes validation.
    """
    if flow_in.graph is not None:
        validate_flow_graph(flow_in.graph)
        flow.graph = _graph_to_json(flow_in.graph)

    if flow_in.name is not None:
        flow.name = flow_in.name
    if flow_in.description is not None:
        flow.description = flow_in.description
    if flow_in.enabled is not None:
        flow.enabled = flow_in.enabled

    db.commit()
    db.refresh(flow)
    return flow


def set_flow_enabled(db: Session, flow: Flow, enabled: bool) -> Flow:
    flow.enabled = enabled
    db.commit()
    db.refresh(flow)
    return flow


def delete_flow(db: Session, flow: Flow) -> None:
    db.delete(flow)
    db.commit()


def get_flow_runs(db: Session, flow_id: str, limit: int = 50) -> List[FlowRun]:
    """
    Get the run history of a flow, most recent first.

    Args:
        db: Database session
        flow_id: Flow ID
        limit: Maximum number of runs to return

    Returns:
        List of FlowRun objects
    """
    return (
        db.query(FlowRun)
        .filter(FlowRun.flow_id == flow_id)
        .order_by(FlowRun.started_at.desc())
        .limit(limit)
        .all()
    )


def save_flow_run(db: Session, run: FlowRunRecord) -> FlowRun:
    """Insert or update the stored copy of a run, including its full log."""
    db_run = FlowRun(
        id=run.id,
        flow_id=run.flow_id,
        status=run.status.value,
        trigger_device_id=run.event.deviceId,
        trigger_event_name=run.event.eventName,
        input_data=run.event.payload,
        logs=[entry.model_dump(mode="json") for entry in run.logs],
        error_details=run.error,
        started_at=run.started_at,
        ended_at=run.ended_at,
        execution_time=run.execution_time_ms,
    )
    db_run = db.merge(db_run)
    db.commit()
    return db_run


class SqlFlowStore:
    """
    Flow persistence used by the router and the run recorder.
    Opens a short-lived session per call so it can be used outside requests.
    """

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def list_enabled_flows(self) -> List[Flow]:
        with self._session_factory() as db:
            return get_enabled_flows(db)

    def get_flow(self, flow_id: str) -> Optional[Flow]:
        with self._session_factory() as db:
            return get_flow(db, flow_id)

    def save_run(self, run: FlowRunRecord) -> None:
        with self._session_factory() as db:
            save_flow_run(db, run)
