"""Workflow generation from natural language."""

from n8n_draft_agent.generation.errors import GenerationError
from n8n_draft_agent.generation.matcher import format_workflow_options, match_workflow
from n8n_draft_agent.generation.pipeline import (
    DraftIntentResult,
    GenerationPipeline,
    classify_draft_intent,
    extract_keywords,
    generate_workflow,
    modify_workflow,
    parse_workflow_response,
)
from n8n_draft_agent.generation.schemas import WorkflowCandidate, WorkflowMatch

__all__ = [
    "DraftIntentResult",
    "GenerationError",
    "GenerationPipeline",
    "WorkflowCandidate",
    "WorkflowMatch",
    "classify_draft_intent",
    "extract_keywords",
    "format_workflow_options",
    "generate_workflow",
    "match_workflow",
    "modify_workflow",
    "parse_workflow_response",
]
