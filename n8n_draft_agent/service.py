"""WorkflowService — deploys draft graphs to n8n and manages a user's workflows.

Deploy sequence:
  1. validate_workflow_or_raise()   structural gate, same checks as generation
  2. resolve_credentials()          store → config → provider, IDs injected
  3. N8nClient.create_workflow()    only the fields the public API accepts
  4. tag "user:{user_id}"           best effort; a tagging failure is logged

Ownership is expressed purely through that tag: list_workflows(user_id)
filters on it and nothing else.

find_workflow() turns what the user called a workflow (ID, name or a loose
description) into an ID among their workflows.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from n8n_draft_agent.client import N8nApiError, N8nClient, Settings
from n8n_draft_agent.credentials.provider import CredentialProvider
from n8n_draft_agent.credentials.resolver import (
    MissingConnection,
    describe_missing,
    resolve_credentials,
)
from n8n_draft_agent.credentials.store import CredentialStore
from n8n_draft_agent.generation.matcher import format_workflow_options, match_workflow
from n8n_draft_agent.generation.schemas import WorkflowMatch
from n8n_draft_agent.reasoning import ModelCaller
from n8n_draft_agent.workflow.validator import validate_workflow_or_raise

logger = logging.getLogger("n8n_draft_agent.service")

# Top-level keys n8n's POST /workflows accepts.
_API_WORKFLOW_FIELDS = ("name", "nodes", "connections", "settings", "staticData")

_MAX_PAGES = 20


@dataclass
class DeployResult:
    id: str
    name: str
    active: bool
    node_count: int
    missing_connections: list[MissingConnection] = field(default_factory=list)

    @property
    def deployed(self) -> bool:
        return bool(self.id)

    @property
    def missing_credentials(self) -> list[str]:
        return [m.cred_type for m in self.missing_connections]


@dataclass
class WorkflowLookup:
    match: WorkflowMatch
    workflows: list[dict[str, Any]]

    @property
    def workflow_id(self) -> str | None:
        return self.match.matchedWorkflowId

    @property
    def options(self) -> str:
        return format_workflow_options(self.match, self.workflows)


def user_tag_name(user_id: str) -> str:
    return f"user:{user_id}"


def to_api_payload(graph: dict[str, Any]) -> dict[str, Any]:
    """Strip _meta and read-only fields; n8n rejects unknown properties."""
    payload = {k: graph[k] for k in _API_WORKFLOW_FIELDS if k in graph}
    payload.setdefault("settings", {})
    return payload


class WorkflowService:
    def __init__(
        self,
        client: N8nClient,
        settings: Settings,
        cred_store: CredentialStore | None = None,
        cred_provider: CredentialProvider | None = None,
        model: ModelCaller | None = None,
    ) -> None:
        self._client = client
        self._settings = settings
        self._cred_store = cred_store
        self._cred_provider = cred_provider
        self._model = model

    # ------------------------------------------------------------------
    # Deploy
    # ------------------------------------------------------------------

    async def deploy_workflow(
        self, graph: dict[str, Any], user_id: str, block_on_missing: bool = False
    ) -> DeployResult:
        """Resolve credentials and create the workflow in n8n.

        With block_on_missing=True nothing is created when any credential is
        unresolved; the result then has id == "".
        """
        graph = validate_workflow_or_raise(graph)
        resolution = await resolve_credentials(
            graph, user_id, self._settings, self._cred_store, self._cred_provider
        )
        missing = [describe_missing(m) for m in resolution.missing_connections]
        name = resolution.graph.get("name", "")
        node_count = len(resolution.graph.get("nodes") or [])

        if block_on_missing and missing:
            logger.info(
                "Deploy of %r blocked for %s: missing %s",
                name, user_id, ", ".join(m.cred_type for m in missing),
            )
            return DeployResult(id="", name=name, active=False, node_count=node_count, missing_connections=missing)

        created = await self._client.create_workflow(to_api_payload(resolution.graph))
        workflow_id = str(created.get("id", ""))
        await self._tag_for_user(workflow_id, user_id)

        logger.info("Workflow created: %s (%s) for %s", workflow_id, name, user_id)
        return DeployResult(
            id=workflow_id,
            name=created.get("name", name),
            active=bool(created.get("active", False)),
            node_count=len(created.get("nodes") or []) or node_count,
            missing_connections=missing,
        )

    async def _tag_for_user(self, workflow_id: str, user_id: str) -> None:
        try:
            tag = await self._client.get_or_create_tag(user_tag_name(user_id))
            await self._client.update_workflow_tags(workflow_id, [tag["id"]])
        except N8nApiError as e:
            logger.warning("Failed to tag workflow %s for %s: %s", workflow_id, user_id, e)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------

    async def list_workflows(self, user_id: str | None = None) -> list[dict[str, Any]]:
        """All workflows, or only those tagged for user_id."""
        if user_id is None:
            return await self._collect(self._client.list_workflows)

        tag_name = user_tag_name(user_id)
        tags = await self._client.list_tags() or {}
        if not any(t.get("name") == tag_name for t in tags.get("data", [])):
            return []
        return await self._collect(self._client.list_workflows, tags=[tag_name])

    async def find_workflow(self, reference: str, user_id: str | None = None) -> WorkflowLookup:
        """Identify the workflow reference points at among the user's workflows.

        IDs and exact names resolve without a model call. Without a model,
        anything else comes back unmatched.
        """
        workflows = await self.list_workflows(user_id)
        match = await match_workflow(self._model, reference, workflows)
        logger.info("Workflow lookup %r -> %s (%s)", reference[:80], match.matchedWorkflowId, match.confidence)
        return WorkflowLookup(match=match, workflows=workflows)

    async def activate_workflow(self, workflow_id: str) -> dict[str, Any]:
        return await self._client.activate_workflow(workflow_id)

    async def deactivate_workflow(self, workflow_id: str) -> dict[str, Any]:
        return await self._client.deactivate_workflow(workflow_id)

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._client.delete_workflow(workflow_id)

    async def get_workflow_executions(self, workflow_id: str, limit: int = 20) -> list[dict[str, Any]]:
        listing = await self._client.list_executions(workflow_id=workflow_id, limit=limit) or {}
        return listing.get("data", [])

    async def get_execution(self, execution_id: str) -> dict[str, Any]:
        return await self._client.get_execution(execution_id)

    async def list_credentials(self, credential_type: str | None = None) -> list[dict[str, Any]]:
        listing = await self._client.list_credentials(credential_type) or {}
        return listing.get("data", [])

    async def _collect(self, fetch, **kwargs) -> list[dict[str, Any]]:
        """Follow nextCursor pagination."""
        items: list[dict[str, Any]] = []
        cursor = None
        for _ in range(_MAX_PAGES):
            page = await fetch(cursor=cursor, **kwargs) or {}
            items.extend(page.get("data", []))
            cursor = page.get("nextCursor")
            if not cursor:
                break
        return items
