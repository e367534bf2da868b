"""
Flow processor package for device-triggered automation flows.
This package handles flow graph validation, condition evaluation, flow
execution, event routing and run recording.
"""

from app.services.flow_processor.condition_evaluator import evaluate_predicate
from app.services.flow_processor.event_router import FlowRouter
from app.services.flow_processor.flow_engine import execute_flow, matches_trigger
from app.services.flow_processor.run_recorder import RunRecorder
from app.services.flow_processor.validator import validate_flow_graph

# Export main public API functions
__all__ = [
    "FlowRouter",
    "RunRecorder",
    "evaluate_predicate",
    "execute_flow",
    "matches_trigger",
    "validate_flow_graph",
]
