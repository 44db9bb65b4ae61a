"""Wiring: build a DraftLifecycle and its collaborators from settings."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from n8n_draft_agent.catalog import NodeCatalog
from n8n_draft_agent.client import N8nClient, Settings
from n8n_draft_agent.credentials.provider import CredentialProvider
from n8n_draft_agent.credentials.store import CredentialStore, InMemoryCredentialStore
from n8n_draft_agent.drafts import DRAFT_TTL_SECONDS, Cache, DraftLifecycle, InMemoryCache
from n8n_draft_agent.generation import GenerationPipeline
from n8n_draft_agent.reasoning import ModelCaller, ReasoningSettings, create_engine
from n8n_draft_agent.service import WorkflowService

logger = logging.getLogger("n8n_draft_agent.agent")


@dataclass
class Agent:
    lifecycle: DraftLifecycle
    service: WorkflowService
    client: N8nClient

    async def close(self) -> None:
        await self.client.close()


def draft_ttl_from_env() -> float:
    raw = os.getenv("DRAFT_TTL_SECONDS")
    if not raw:
        return DRAFT_TTL_SECONDS
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"DRAFT_TTL_SECONDS must be a number, got {raw!r}") from e


def create_agent(
    settings: Settings,
    reasoning_settings: ReasoningSettings,
    cache: Cache | None = None,
    cred_store: CredentialStore | None = None,
    cred_provider: CredentialProvider | None = None,
    catalog: NodeCatalog | None = None,
    ttl_seconds: float | None = None,
    serialize_per_user: bool = True,
) -> Agent:
    """Create the full agent from settings objects.

    The client is part of the returned Agent so it can be closed on shutdown:

        agent = create_agent(Settings.from_env(), ReasoningSettings.from_env())
        try:
            result = await agent.lifecycle.handle_message("user-1", "Email me daily")
        finally:
            await agent.close()
    """
    model = ModelCaller(create_engine(reasoning_settings))
    client = N8nClient(settings)
    service = WorkflowService(
        client,
        settings,
        cred_store=cred_store if cred_store is not None else InMemoryCredentialStore(),
        cred_provider=cred_provider,
        model=model,
    )
    pipeline = GenerationPipeline(model, catalog or NodeCatalog.load())
    lifecycle = DraftLifecycle(
        cache if cache is not None else InMemoryCache(),
        pipeline,
        service,
        model,
        ttl_seconds=ttl_seconds if ttl_seconds is not None else draft_ttl_from_env(),
        serialize_per_user=serialize_per_user,
    )
    logger.info("Agent ready | n8n: %s | model: %s", settings.host, model.model_id)
    return Agent(lifecycle=lifecycle, service=service, client=client)
