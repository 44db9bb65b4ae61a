"""Generation pipeline: prompt → keywords → catalog → LLM graph → validate → layout.

Stages:
  extract_keywords()        structured model call, validated by KeywordExtraction
  NodeCatalog.search()      local keyword scoring, no model involved
  generate_workflow()       text model call embedding the matched node definitions
  parse_workflow_response() fence stripping + JSON decode + shape check
  validate_workflow()       structural errors are fatal, warnings logged
  position_nodes()          deterministic canvas layout
  catalog checks            required-but-unset parameters become clarification questions

Every failure surfaces as GenerationError with a kind; nothing is retried.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from n8n_draft_agent.catalog import DEFAULT_SEARCH_LIMIT, NodeCatalog
from n8n_draft_agent.generation.errors import GenerationError
from n8n_draft_agent.generation.prompts import (
    DRAFT_INTENT_PROMPT,
    KEYWORD_EXTRACTION_PROMPT,
    WORKFLOW_GENERATION_PROMPT,
)
from n8n_draft_agent.generation.schemas import (
    DRAFT_INTENT_SCHEMA,
    KEYWORD_EXTRACTION_SCHEMA,
    DraftIntent,
    KeywordExtraction,
)
from n8n_draft_agent.reasoning import ModelCaller, ModelResponseError, strip_code_fences
from n8n_draft_agent.workflow.graph import META_KEY, get_meta, strip_meta
from n8n_draft_agent.workflow.positioner import position_nodes
from n8n_draft_agent.workflow.validator import validate_workflow

logger = logging.getLogger("n8n_draft_agent.generation")

MAX_KEYWORDS = 5
_DEFAULT_NAME_PROMPT_CHARS = 50


# ---------------------------------------------------------------------------
# Keyword extraction
# ---------------------------------------------------------------------------


async def extract_keywords(model: ModelCaller, prompt: str) -> list[str]:
    """Return 1-5 trimmed, non-empty search keywords for prompt."""
    try:
        raw = await model.call(
            f"{KEYWORD_EXTRACTION_PROMPT}\n\nUser request: {prompt}",
            schema=KEYWORD_EXTRACTION_SCHEMA,
        )
    except ModelResponseError as e:
        raise GenerationError("keywords_invalid", f"Invalid keyword extraction response: {e}", raw=e.raw) from e

    try:
        parsed = KeywordExtraction.model_validate(raw)
    except ValidationError as e:
        raise GenerationError(
            "keywords_invalid",
            "Invalid keyword extraction response: missing or invalid keywords array",
            raw=json.dumps(raw, default=str),
        ) from e

    keywords = [kw.strip() for kw in parsed.keywords[:MAX_KEYWORDS]]
    return [kw for kw in keywords if kw]


# ---------------------------------------------------------------------------
# Graph generation
# ---------------------------------------------------------------------------


def parse_workflow_response(response: str) -> dict[str, Any]:
    """Decode a model reply into a workflow dict with nodes and connections.

    Raises GenerationError(graph_parse) with the raw reply attached.
    """
    cleaned = strip_code_fences(response or "")
    try:
        workflow = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise GenerationError(
            "graph_parse",
            f"Failed to parse workflow JSON: {e}\n\nRaw response: {response}",
            raw=response,
        ) from e

    if not isinstance(workflow, dict):
        raise GenerationError("graph_parse", "Invalid workflow: expected a JSON object", raw=response)
    if not isinstance(workflow.get("nodes"), list):
        raise GenerationError("graph_parse", "Invalid workflow: missing or invalid nodes array", raw=response)
    if not isinstance(workflow.get("connections"), dict):
        raise GenerationError(
            "graph_parse", "Invalid workflow: missing or invalid connections object", raw=response
        )
    return workflow


async def generate_workflow(
    model: ModelCaller, prompt: str, node_defs: list[dict[str, Any]]
) -> dict[str, Any]:
    full_prompt = (
        f"{WORKFLOW_GENERATION_PROMPT}\n\n"
        "## Relevant Nodes Available\n\n"
        f"{json.dumps(node_defs, indent=2)}\n\n"
        "Use these node definitions to generate the workflow. "
        'Each node\'s "properties" field defines the available parameters.\n\n'
        "## User Request\n\n"
        f"{prompt}\n\n"
        "Generate a valid n8n workflow JSON that fulfills this request."
    )
    response = await model.call(full_prompt, temperature=0.0)
    workflow = parse_workflow_response(response)

    if not workflow.get("name"):
        workflow["name"] = f"Workflow - {prompt[:_DEFAULT_NAME_PROMPT_CHARS].strip()}"
    return workflow


async def modify_workflow(
    model: ModelCaller,
    graph: dict[str, Any],
    modification_request: str,
    node_defs: list[dict[str, Any]],
) -> dict[str, Any]:
    """Ask the model for the complete updated graph. _meta is never sent back."""
    full_prompt = (
        f"{WORKFLOW_GENERATION_PROMPT}\n\n"
        "## Relevant Nodes Available\n\n"
        f"{json.dumps(node_defs, indent=2)}\n\n"
        "## Existing Workflow (modify this)\n\n"
        f"{json.dumps(strip_meta(graph), indent=2)}\n\n"
        "## Modification Request\n\n"
        f"{modification_request}\n\n"
        "Return the COMPLETE modified workflow JSON. Keep all unchanged nodes and "
        "connections intact. Only add, remove, or change what the user asked for."
    )
    response = await model.call(full_prompt, temperature=0.0)
    return parse_workflow_response(response)


# ---------------------------------------------------------------------------
# Draft intent
# ---------------------------------------------------------------------------


@dataclass
class DraftIntentResult:
    intent: str  # confirm | cancel | modify | new | show_preview
    reason: str = ""
    modification_request: str | None = None


async def classify_draft_intent(model: ModelCaller, message: str, draft: Any) -> DraftIntentResult:
    """Classify a user message against a pending draft.

    draft needs .graph and .original_prompt. Never raises: model failures and
    unknown intents fall back to show_preview.
    """
    graph = draft.graph
    node_list = ", ".join(f"{n.get('name')} ({n.get('type')})" for n in graph.get("nodes") or [])
    summary = (
        f'Workflow: "{graph.get("name", "")}"\n'
        f"Nodes: {node_list}\n"
        f'Original prompt: "{draft.original_prompt}"'
    )
    prompt = f"{DRAFT_INTENT_PROMPT}\n\n## Current Draft\n\n{summary}\n\n## User Message\n\n{message}"

    try:
        raw = await model.call(prompt, schema=DRAFT_INTENT_SCHEMA)
    except Exception as e:
        logger.error("classify_draft_intent failed: %s", e)
        return DraftIntentResult("show_preview", reason=f"Intent classification failed ({e}), re-showing preview")

    try:
        parsed = DraftIntent.model_validate(raw)
    except ValidationError:
        logger.warning("Invalid intent from model: %r, re-showing preview", raw)
        return DraftIntentResult("show_preview", reason="Could not classify intent, re-showing preview")

    logger.debug("Draft intent: %s (%s)", parsed.intent, parsed.reason)
    return DraftIntentResult(
        intent=parsed.intent,
        reason=parsed.reason or "",
        modification_request=parsed.modificationRequest or None,
    )


# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------


class GenerationPipeline:
    """Produces draft-ready graphs: validated, positioned, clarification-checked."""

    def __init__(
        self,
        model: ModelCaller,
        catalog: NodeCatalog,
        search_limit: int = DEFAULT_SEARCH_LIMIT,
        check_required_params: bool = True,
    ) -> None:
        self._model = model
        self._catalog = catalog
        self._search_limit = search_limit
        self._check_required_params = check_required_params

    async def generate_draft_graph(self, prompt: str) -> dict[str, Any]:
        keywords = await extract_keywords(self._model, prompt)
        logger.debug("Extracted keywords: %s", keywords)

        results = self._catalog.search(keywords, self._search_limit)
        if not results:
            raise GenerationError(
                "no_catalog_match",
                f"No n8n nodes matched the keywords: {', '.join(keywords) or '(none)'}. "
                "Try naming the services involved, e.g. Gmail, Slack or Google Sheets.",
            )
        logger.debug("Catalog matches: %s", [r.node.get("name") for r in results])

        graph = await generate_workflow(self._model, prompt, [r.node for r in results])
        return self._finalize(graph)

    async def modify_draft_graph(self, graph: dict[str, Any], modification_request: str) -> dict[str, Any]:
        node_defs = self.collect_existing_node_definitions(graph)
        known = {d.get("name") for d in node_defs}

        try:
            keywords = await extract_keywords(self._model, modification_request)
        except GenerationError as e:
            logger.warning("Keyword extraction for modification failed, using existing nodes only: %s", e)
            keywords = []
        for result in self._catalog.search(keywords, self._search_limit):
            if result.node.get("name") not in known:
                node_defs.append(result.node)
                known.add(result.node.get("name"))

        modified = await modify_workflow(self._model, graph, modification_request, node_defs)
        if not modified.get("name") and graph.get("name"):
            modified["name"] = graph["name"]
        return self._finalize(modified)

    def collect_existing_node_definitions(self, graph: dict[str, Any]) -> list[dict[str, Any]]:
        defs: list[dict[str, Any]] = []
        seen: set[str] = set()
        for node in graph.get("nodes") or []:
            node_type = node.get("type")
            if not node_type or node_type in seen:
                continue
            seen.add(node_type)
            definition = self._catalog.get_node_definition(node_type)
            if definition is not None:
                defs.append(definition)
            else:
                logger.warning("No catalog definition for node type %r", node_type)
        return defs

    # -- internals -----------------------------------------------------------

    def _finalize(self, graph: dict[str, Any]) -> dict[str, Any]:
        result = validate_workflow(graph)
        if not result.valid:
            raise GenerationError("graph_invalid", f"Generated workflow is invalid: {result.errors[0]}")
        for warning in result.warnings:
            logger.warning("Workflow validation: %s", warning)

        # BFS layout runs on the graph as generated, not on the validator fix.
        positioned = position_nodes(graph)
        if self._check_required_params:
            self._add_parameter_clarifications(positioned)
        return positioned

    def _add_parameter_clarifications(self, graph: dict[str, Any]) -> None:
        """Append questions for catalog-required parameters the model left unset."""
        questions: list[str] = []
        for node in graph.get("nodes") or []:
            params = node.get("parameters")
            params = params if isinstance(params, dict) else {}
            for prop in self._catalog.required_parameters(node.get("type", "")):
                value = params.get(prop["name"])
                if value is None or value == "":
                    label = prop.get("displayName") or prop["name"]
                    questions.append(f'What should "{label}" be for the "{node.get("name")}" node?')

        if not questions:
            return

        meta = dict(get_meta(graph))
        existing = list(meta.get("requiresClarification") or [])
        for question in questions:
            if question not in existing:
                existing.append(question)
        meta["requiresClarification"] = existing
        graph[META_KEY] = meta
