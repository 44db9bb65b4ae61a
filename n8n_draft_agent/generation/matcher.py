"""Identify which existing workflow a user is talking about.

The user may name a workflow by ID, by its exact name, or loosely ("the Stripe
one"). IDs and exact names resolve locally; anything else goes to the model.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from n8n_draft_agent.generation.prompts import WORKFLOW_MATCHING_PROMPT
from n8n_draft_agent.generation.schemas import (
    WORKFLOW_MATCHING_SCHEMA,
    WorkflowCandidate,
    WorkflowMatch,
)
from n8n_draft_agent.reasoning import ModelCaller

logger = logging.getLogger("n8n_draft_agent.generation.matcher")


def _exact_match(text: str, workflows: list[dict[str, Any]]) -> WorkflowMatch | None:
    needle = text.strip()
    if not needle:
        return None
    for wf in workflows:
        if str(wf.get("id", "")) == needle:
            return _single(wf, "Matched by workflow ID")
    lowered = needle.casefold()
    named = [wf for wf in workflows if str(wf.get("name", "")).casefold() == lowered]
    if len(named) == 1:
        return _single(named[0], "Matched by exact workflow name")
    return None


def _single(wf: dict[str, Any], reason: str) -> WorkflowMatch:
    wf_id = str(wf.get("id", ""))
    return WorkflowMatch(
        matchedWorkflowId=wf_id,
        confidence="high",
        matches=[WorkflowCandidate(id=wf_id, name=str(wf.get("name", "")), score=100)],
        reason=reason,
    )


def _workflow_list(workflows: list[dict[str, Any]]) -> str:
    return "\n".join(
        f'{i}. "{wf.get("name", "")}" (ID: {wf.get("id", "")}, '
        f'Status: {"ACTIVE" if wf.get("active") else "INACTIVE"})'
        for i, wf in enumerate(workflows, 1)
    )


async def match_workflow(
    model: ModelCaller | None, text: str, workflows: list[dict[str, Any]]
) -> WorkflowMatch:
    """Return the best match for text among workflows.

    With model=None only IDs and exact names can match.

    Never raises. A model failure, an invalid reply or an ID the model made up
    all come back as confidence "none" with the reason filled in.
    """
    if not workflows:
        return WorkflowMatch(reason="No workflows available")

    exact = _exact_match(text, workflows)
    if exact is not None:
        return exact
    if model is None:
        return WorkflowMatch(reason="No reasoning model configured for descriptive lookups")

    prompt = f"{WORKFLOW_MATCHING_PROMPT}\n\n{text}\n\nAvailable workflows:\n{_workflow_list(workflows)}"
    try:
        raw = await model.call(prompt, schema=WORKFLOW_MATCHING_SCHEMA)
        match = WorkflowMatch.model_validate(raw)
    except ValidationError as e:
        logger.warning("Invalid workflow match from model: %s", e)
        return WorkflowMatch(reason="Could not interpret the workflow match")
    except Exception as e:
        logger.error("Workflow matching failed: %s", e)
        return WorkflowMatch(reason=f"Workflow matching unavailable: {e}")

    known = {str(wf.get("id", "")) for wf in workflows}
    match.matches = [m for m in match.matches if m.id in known]
    if match.matchedWorkflowId not in known:
        if match.matchedWorkflowId:
            logger.warning("Model matched unknown workflow id %r", match.matchedWorkflowId)
        match.matchedWorkflowId = None
        match.confidence = "none"
    elif match.confidence == "none":
        match.matchedWorkflowId = None

    logger.debug("Workflow match: %s (confidence: %s)", match.matchedWorkflowId or "none", match.confidence)
    return match


def format_workflow_options(match: WorkflowMatch, workflows: list[dict[str, Any]]) -> str:
    """Fallback listing shown when no workflow could be identified.

    Uses the model's candidates when it offered any, else every workflow.
    """
    if match.matches:
        options = [(m.name, m.id) for m in match.matches]
    else:
        options = [(str(wf.get("name", "")), str(wf.get("id", ""))) for wf in workflows]
    return "\n".join(f"- {name} (ID: {wf_id})" for name, wf_id in options)
