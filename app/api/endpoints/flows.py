"""
Flow management endpoints.
Create, update, enable, disable and delete flows, validate graphs and read
run history. Every change that affects the enabled set reloads the router.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_flow_router
from app.core.config import settings
from app.crud import flow as crud_flow
from app.db.database import get_db
from app.models.flow import Flow
from app.schemas.flow import FlowCreate, FlowGraph, FlowOut, FlowRunOut, FlowUpdate
from app.services.flow_processor.errors import FlowGraphValidationError
from app.services.flow_processor.event_router import FlowRouter
from app.services.flow_processor.validator import validate_flow_graph

router = APIRouter()

logger = logging.getLogger(__name__)


def _get_flow_or_404(db: Session, flow_id: str) -> Flow:
    flow = crud_flow.get_flow(db, flow_id)
    if not flow:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"Flow {flow_id} not found"
        )
    return flow


def _reload(flow_router: FlowRouter) -> None:
    try:
        flow_router.reload()
    except Exception as e:
        # The change is stored; the next successful reload picks it up
        logger.exception(f"Failed to reload enabled flows: {str(e)}")


@router.get("", response_model=List[FlowOut])
def list_flows(db: Session = Depends(get_db)) -> Any:
    return crud_flow.get_flows(db)


@router.post("/validate")
def validate_graph(graph: FlowGraph = Body(...)) -> Dict[str, Any]:
    """
    Validate a flow graph without storing it.
    """
    try:
        validate_flow_graph(graph)
    except FlowGraphValidationError as e:
        return {"valid": False, "error": e.to_dict()}
    return {"valid": True, "error": None}


@router.post("", response_model=FlowOut, status_code=status.HTTP_201_CREATED)
def create_flow(
    flow_in: FlowCreate,
    db: Session = Depends(get_db),
    flow_router: FlowRouter = Depends(get_flow_router),
) -> Any:
    try:
        flow = crud_flow.create_flow(db, flow_in)
    except FlowGraphValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())

    logger.info(f"Created flow {flow.id} ({flow.name}), enabled={flow.enabled}")
    if flow.enabled:
        _reload(flow_router)
    return flow


@router.get("/{flow_id}", response_model=FlowOut)
def get_flow(flow_id: str, db: Session = Depends(get_db)) -> Any:
    return _get_flow_or_404(db, flow_id)


@router.put("/{flow_id}", response_model=FlowOut)
def update_flow(
    flow_id: str,
    flow_in: FlowUpdate,
    db: Session = Depends(get_db),
    flow_router: FlowRouter = Depends(get_flow_router),
) -> Any:
    flow = _get_flow_or_404(db, flow_id)
    try:
        flow = crud_flow.update_flow(db, flow, flow_in)
    except FlowGraphValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.to_dict())

    logger.info(f"Updated flow {flow.id} ({flow.name})")
    _reload(flow_router)
    return flow


@router.post("/{flow_id}/enable", response_model=FlowOut)
def enable_flow(
    flow_id: str,
    db: Session = Depends(get_db),
    flow_router: FlowRouter = Depends(get_flow_router),
) -> Any:
    flow = crud_flow.set_flow_enabled(db, _get_flow_or_404(db, flow_id), True)
    _reload(flow_router)
    return flow


@router.post("/{flow_id}/disable", response_model=FlowOut)
def disable_flow(
    flow_id: str,
    db: Session = Depends(get_db),
    flow_router: FlowRouter = Depends(get_flow_router),
) -> Any:
    flow = crud_flow.set_flow_enabled(db, _get_flow_or_404(db, flow_id), False)
    _reload(flow_router)
    return flow


@router.delete("/{flow_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_flow(
    flow_id: str,
    db: Session = Depends(get_db),
    flow_router: FlowRouter = Depends(get_flow_router),
) -> None:
    """
    Delete a flow and its run history. Runs already in flight finish
    with the graph they started with.
    """
    crud_flow.delete_flow(db, _get_flow_or_404(db, flow_id))
    logger.info(f"Deleted flow {flow_id}")
    _reload(flow_router)


@router.get("/{flow_id}/runs", response_model=List[FlowRunOut])
def get_flow_runs(
    flow_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    db: Session = Depends(get_db),
) -> Any:
    """
    Run history of a flow, most recent first.
    """
    _get_flow_or_404(db, flow_id)
    return crud_flow.get_flow_runs(db, flow_id, limit or settings.RUN_HISTORY_LIMIT)
