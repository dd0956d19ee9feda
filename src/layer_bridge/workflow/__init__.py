"""Workflow DAG model, validation and execution."""

from layer_bridge.workflow.graph import plan_phases, topological_order, validate_definition
from layer_bridge.workflow.models import (
    ResourceEstimate,
    StepRef,
    StepStatus,
    WorkflowDefinition,
    WorkflowMetadata,
    WorkflowPlan,
    WorkflowResult,
    WorkflowStep,
)
from layer_bridge.workflow.orchestrator import WorkflowOrchestrator
from layer_bridge.workflow.planning import estimate_resources

__all__ = [
    "ResourceEstimate",
    "StepRef",
    "StepStatus",
    "WorkflowDefinition",
    "WorkflowMetadata",
    "WorkflowOrchestrator",
    "WorkflowPlan",
    "WorkflowResult",
    "WorkflowStep",
    "estimate_resources",
    "plan_phases",
    "topological_order",
    "validate_definition",
]
