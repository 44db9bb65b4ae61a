"""DraftLifecycle — the per-user draft state machine.

One draft slot per user lives in an external Cache under "draft:{user_id}".

States:
    absent                  no slot, or the slot is older than the TTL
    pending_preview         slot present, no open clarification questions
    pending_clarification   slot present, _meta.requiresClarification non-empty

Each user turn:
    absent   → generate a draft, store it, show the preview
    present  → classify intent (confirm / cancel / modify / new / show_preview)

    confirm  → deploy via WorkflowService, clear the slot
               (forced to modify while clarification questions are open)
    cancel   → clear the slot
    modify   → regenerate from the current graph + instruction, reset the TTL
    new      → clear, generate fresh; on failure restore the previous draft

Reading the slot and writing it back are two separate cache calls. Two
concurrent turns for the same user can interleave; serialize_per_user=True
guards against that within one process only.
"""

from __future__ import annotations

import asyncio
import logging
import time
import weakref
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Callable

from n8n_draft_agent.drafts.cache import Cache
from n8n_draft_agent.generation.errors import GenerationError
from n8n_draft_agent.generation.pipeline import (
    DraftIntentResult,
    GenerationPipeline,
    classify_draft_intent,
)
from n8n_draft_agent.reasoning import ModelCaller
from n8n_draft_agent.workflow.graph import clarification_questions, get_meta

if TYPE_CHECKING:
    from n8n_draft_agent.service import DeployResult, WorkflowService

logger = logging.getLogger("n8n_draft_agent.drafts")

DRAFT_TTL_SECONDS = 30 * 60

_NEEDS_DESCRIPTION = "Please provide a description of the workflow you want to create."


def draft_key(user_id: str) -> str:
    return f"draft:{user_id}"


@dataclass
class Draft:
    graph: dict[str, Any]
    original_prompt: str
    user_id: str
    created_at: float  # epoch seconds

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Draft:
        return cls(
            graph=data["graph"],
            original_prompt=data.get("original_prompt", ""),
            user_id=data["user_id"],
            created_at=float(data["created_at"]),
        )

    @property
    def needs_clarification(self) -> bool:
        return bool(clarification_questions(self.graph))


@dataclass
class DraftTurnResult:
    """Outcome of one conversational turn.

    action is one of: preview, clarification, show_preview, modified,
    modify_failed, deployed, deploy_blocked, deploy_failed, cancelled,
    new_restored, needs_description, generation_failed.
    """

    action: str
    text: str
    draft: Draft | None = None
    deploy: DeployResult | None = None
    success: bool = True


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def _credential_types(graph: dict[str, Any]) -> list[str]:
    seen: dict[str, None] = {}
    for node in graph.get("nodes") or []:
        for cred_type in (node.get("credentials") or {}):
            seen.setdefault(cred_type, None)
    return list(seen)


def format_preview(draft: Draft, heading: str = "Generated Workflow") -> str:
    """Markdown preview of a draft, with open questions when there are any."""
    graph = draft.graph
    nodes = graph.get("nodes") or []
    meta = get_meta(graph)

    lines = ["## Workflow Preview", "", f"**{heading}:** {graph.get('name', 'Untitled')}", ""]
    lines.append(f"**Nodes ({len(nodes)}):**")
    for i, node in enumerate(nodes, 1):
        node_type = str(node.get("type", "")).split(".")[-1]
        lines.append(f"{i}. {node.get('name')} ({node_type})")

    cred_types = _credential_types(graph)
    if cred_types:
        lines += ["", f"**Credentials:** {', '.join(cred_types)}"]

    for label, key in (("Assumptions", "assumptions"), ("Suggestions", "suggestions")):
        entries = meta.get(key) or []
        if entries:
            lines += ["", f"**{label}:**"] + [f"- {e}" for e in entries]

    questions = clarification_questions(graph)
    if questions:
        lines += ["", "I need more information before this workflow can be deployed:"]
        lines += [f"- {q}" for q in questions]
        lines += ["", "Answer the questions above and I will update the draft."]
    else:
        lines += ["", 'Reply "yes" to confirm and deploy, describe any changes, or say "cancel".']
    return "\n".join(lines)


def format_draft_summary(draft: Draft) -> str:
    """One-line context describing a pending draft."""
    node_names = " → ".join(str(n.get("name")) for n in draft.graph.get("nodes") or [])
    return f'A workflow draft "{draft.graph.get("name", "")}" is pending. Nodes: {node_names}'


def format_deploy_result(deploy: DeployResult) -> str:
    lines = [
        f'Workflow "{deploy.name}" deployed successfully.',
        "",
        f"ID: {deploy.id}",
        f"Nodes: {deploy.node_count}",
        f"Status: {'active' if deploy.active else 'inactive'}",
    ]
    lines += _format_missing(deploy)
    return "\n".join(lines)


def _format_missing(deploy: DeployResult) -> list[str]:
    if not deploy.missing_connections:
        return []
    lines = ["", "Missing credentials (connect these in n8n before activating):"]
    for missing in deploy.missing_connections:
        label = missing.display_name or missing.cred_type
        entry = f"- {label} ({missing.cred_type})"
        if missing.auth_url:
            entry += f": authorize at {missing.auth_url}"
        lines.append(entry)
    return lines


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class DraftLifecycle:
    def __init__(
        self,
        cache: Cache,
        pipeline: GenerationPipeline,
        service: WorkflowService,
        model: ModelCaller,
        ttl_seconds: float = DRAFT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        serialize_per_user: bool = False,
    ) -> None:
        self._cache = cache
        self._pipeline = pipeline
        self._service = service
        self._model = model
        self._ttl = ttl_seconds
        self._clock = clock
        self._serialize = serialize_per_user
        # Entries vanish once no turn for the user holds or awaits the lock.
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    # -- public --------------------------------------------------------------

    async def handle_message(self, user_id: str, text: str) -> DraftTurnResult:
        if not self._serialize:
            return await self._handle(user_id, text)
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        async with lock:
            return await self._handle(user_id, text)

    async def get_pending_draft(self, user_id: str) -> Draft | None:
        """The user's draft, or None when absent or expired (expired slots are cleared)."""
        return await self._load(user_id)

    async def discard_draft(self, user_id: str) -> bool:
        draft = await self._load(user_id)
        if draft is None:
            return False
        await self._cache.delete(draft_key(user_id))
        return True

    # -- turn handling -------------------------------------------------------

    async def _handle(self, user_id: str, text: str) -> DraftTurnResult:
        text = (text or "").strip()
        draft = await self._load(user_id)

        if draft is None:
            if not text:
                return DraftTurnResult("needs_description", _NEEDS_DESCRIPTION, success=False)
            return await self._create(user_id, text)

        intent = await classify_draft_intent(self._model, text, draft)
        if intent.intent == "confirm" and draft.needs_clarification:
            logger.info("Draft for %s has open questions, treating confirm as modify", user_id)
            intent = DraftIntentResult("modify", reason="open clarification questions", modification_request=text)

        logger.info("Draft intent for %s: %s", user_id, intent.intent)
        if intent.intent == "confirm":
            return await self._confirm(user_id, draft)
        if intent.intent == "cancel":
            await self._cache.delete(draft_key(user_id))
            return DraftTurnResult("cancelled", "Workflow draft cancelled.")
        if intent.intent == "modify":
            return await self._modify(user_id, draft, intent.modification_request or text)
        if intent.intent == "new":
            return await self._replace(user_id, draft, text)
        return DraftTurnResult("show_preview", format_preview(draft), draft=draft)

    async def _create(self, user_id: str, text: str) -> DraftTurnResult:
        try:
            graph = await self._pipeline.generate_draft_graph(text)
        except Exception as e:
            logger.warning("Draft generation failed for %s: %s", user_id, e)
            return DraftTurnResult(
                "generation_failed",
                f"Failed to create workflow: {_cause(e)}\n\n"
                "Please try rephrasing your request or being more specific about "
                "the integrations you want to use.",
                success=False,
            )
        draft = await self._store(user_id, graph, text)
        action = "clarification" if draft.needs_clarification else "preview"
        return DraftTurnResult(action, format_preview(draft), draft=draft)

    async def _confirm(self, user_id: str, draft: Draft) -> DraftTurnResult:
        try:
            deploy = await self._service.deploy_workflow(draft.graph, user_id)
        except Exception as e:
            logger.error("Deploy failed for %s: %s", user_id, e)
            return DraftTurnResult(
                "deploy_failed",
                f"Failed to deploy workflow: {_cause(e)}\n\nYour draft is still saved, say \"yes\" to retry.",
                draft=draft,
                success=False,
            )

        if not deploy.id:
            text = "\n".join(
                [f'Workflow "{deploy.name}" was not deployed.'] + _format_missing(deploy)
            )
            return DraftTurnResult("deploy_blocked", text, draft=draft, deploy=deploy, success=False)

        await self._cache.delete(draft_key(user_id))
        logger.info("Deployed workflow %s for %s", deploy.id, user_id)
        return DraftTurnResult("deployed", format_deploy_result(deploy), deploy=deploy)

    async def _modify(self, user_id: str, draft: Draft, request: str) -> DraftTurnResult:
        try:
            graph = await self._pipeline.modify_draft_graph(draft.graph, request)
        except Exception as e:
            logger.warning("Draft modification failed for %s: %s", user_id, e)
            return DraftTurnResult(
                "modify_failed",
                f"Could not modify the workflow: {_cause(e)}\n\n{format_preview(draft)}",
                draft=draft,
                success=False,
            )
        updated = await self._store(user_id, graph, draft.original_prompt)
        return DraftTurnResult("modified", format_preview(updated, heading="Modified Workflow"), draft=updated)

    async def _replace(self, user_id: str, draft: Draft, text: str) -> DraftTurnResult:
        key = draft_key(user_id)
        await self._cache.delete(key)
        if not text:
            return DraftTurnResult("needs_description", _NEEDS_DESCRIPTION, success=False)

        try:
            graph = await self._pipeline.generate_draft_graph(text)
        except Exception as e:
            logger.info("New request from %s not usable, restoring previous draft: %s", user_id, e)
            await self._cache.set(key, draft.to_dict())
            return DraftTurnResult(
                "new_restored",
                f"I couldn't understand the new request ({_cause(e)}). "
                f"Here is your current draft:\n\n{format_preview(draft)}",
                draft=draft,
            )
        new_draft = await self._store(user_id, graph, text)
        action = "clarification" if new_draft.needs_clarification else "preview"
        return DraftTurnResult(action, format_preview(new_draft), draft=new_draft)

    # -- slot access ---------------------------------------------------------

    async def _load(self, user_id: str) -> Draft | None:
        key = draft_key(user_id)
        raw = await self._cache.get(key)
        if raw is None:
            return None
        try:
            draft = Draft.from_dict(raw)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Discarding unreadable draft for %s: %s", user_id, e)
            await self._cache.delete(key)
            return None

        if self._clock() - draft.created_at > self._ttl:
            logger.info("Draft for %s expired", user_id)
            await self._cache.delete(key)
            return None
        return draft

    async def _store(self, user_id: str, graph: dict[str, Any], prompt: str) -> Draft:
        draft = Draft(graph=graph, original_prompt=prompt, user_id=user_id, created_at=self._clock())
        await self._cache.set(draft_key(user_id), draft.to_dict())
        return draft


def _cause(e: Exception) -> str:
    if isinstance(e, GenerationError):
        return e.message
    return str(e) or type(e).__name__
