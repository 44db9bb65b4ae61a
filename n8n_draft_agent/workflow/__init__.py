"""Workflow graph validation and canvas layout."""

from n8n_draft_agent.workflow.positioner import LayoutPlan, plan_layout, position_nodes
from n8n_draft_agent.workflow.validator import (
    ValidationResult,
    WorkflowValidationError,
    validate_workflow,
    validate_workflow_or_raise,
)

__all__ = [
    "LayoutPlan",
    "ValidationResult",
    "WorkflowValidationError",
    "plan_layout",
    "position_nodes",
    "validate_workflow",
    "validate_workflow_or_raise",
]
