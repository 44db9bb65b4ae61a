"""FastAPI service for the n8n draft agent.

One conversational flow plus workflow management:

  POST /messages                 one turn of the draft conversation
                                 (generate → preview → confirm/modify/cancel/new)
  GET/DELETE /drafts/{user_id}   inspect or discard the pending draft

  GET    /workflows?user_id=     workflows tagged for a user
  POST   /workflows/{id}/activate | /deactivate
  DELETE /workflows/{id}
  GET    /workflows/{id}/executions
  GET    /credentials
  POST   /workflows/lookup[/{action}]  find a workflow by ID, name or description,
                                 optionally acting on it

Auth is optional: set AGENT_API_KEY to require 'Authorization: Bearer <key>'.
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from n8n_draft_agent.client import N8nApiError
from n8n_draft_agent.drafts import format_draft_summary

logger = logging.getLogger("n8n_draft_agent.api")

# ---------------------------------------------------------------------------
# API key authentication (optional — enabled when AGENT_API_KEY is set)
# ---------------------------------------------------------------------------

_bearer = HTTPBearer(auto_error=False)


def _verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> None:
    """Verify Bearer token matches AGENT_API_KEY env var.

    If AGENT_API_KEY is not set, all requests are allowed (open dev mode).
    """
    api_key = os.getenv("AGENT_API_KEY")
    if not api_key:
        return
    if not credentials or credentials.credentials != api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")


# ---------------------------------------------------------------------------
# Lifespan: build the agent once at startup, close the client on shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    from dotenv import load_dotenv

    from n8n_draft_agent.agent import create_agent
    from n8n_draft_agent.client import Settings
    from n8n_draft_agent.credentials import PostgresCredentialStore
    from n8n_draft_agent.reasoning import ReasoningSettings

    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level)

    cred_store = None
    postgres_dsn = os.getenv("POSTGRES_DSN")
    if postgres_dsn:
        cred_store = await PostgresCredentialStore.open(postgres_dsn)

    agent = create_agent(settings, ReasoningSettings.from_env(), cred_store=cred_store)
    app.state.lifecycle = agent.lifecycle
    app.state.service = agent.service
    logger.info(
        "Starting n8n draft agent | n8n: %s | credential store: %s",
        settings.host, "postgres" if cred_store else "memory",
    )

    yield

    await agent.close()
    if cred_store is not None:
        await cred_store.close()
    logger.info("Shutting down n8n draft agent")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

_rate_limit = os.getenv("RATE_LIMIT_MESSAGES_PER_MIN", "30")
limiter = Limiter(key_func=get_remote_address, default_limits=[f"{_rate_limit}/minute"])

app = FastAPI(
    title="n8n Draft Agent API",
    description=(
        "Turns natural-language requests into n8n workflows. Drafts are previewed "
        "and refined conversationally before they are deployed to n8n."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class MessageRequest(BaseModel):
    """Request body for POST /messages."""

    user_id: str = Field(..., min_length=1, description="Stable identifier of the chatting user.")
    text: str = Field(
        "",
        description="The user's message: a workflow description, or a reply to a pending draft.",
        examples=["Send me Stripe payment summaries via Gmail every Monday", "yes, deploy it"],
    )


class MissingConnectionModel(BaseModel):
    cred_type: str
    auth_url: str | None = None
    display_name: str | None = None
    provider: str | None = None


class DeployModel(BaseModel):
    id: str
    name: str
    active: bool
    node_count: int
    missing_connections: list[MissingConnectionModel] = []


class DraftModel(BaseModel):
    user_id: str
    original_prompt: str
    created_at: float
    needs_clarification: bool
    summary: str
    workflow: dict[str, Any]


class MessageResponse(BaseModel):
    action: str = Field(..., description="What the turn did, e.g. 'preview', 'deployed', 'cancelled'.")
    text: str = Field(..., description="Markdown reply to show the user.")
    success: bool
    draft: DraftModel | None = None
    deploy: DeployModel | None = None


class WorkflowReferenceRequest(BaseModel):
    """Request body for the /workflows/lookup endpoints."""

    text: str = Field(
        ...,
        min_length=1,
        description="A workflow ID, its name, or a description of it.",
        examples=["wf-123", "Stripe Summary", "the one that emails me on Mondays"],
    )
    user_id: str | None = Field(None, description="Only consider workflows tagged for this user.")


class WorkflowCandidateModel(BaseModel):
    id: str
    name: str
    score: float


class WorkflowLookupResponse(BaseModel):
    workflow_id: str | None
    confidence: str
    reason: str
    matches: list[WorkflowCandidateModel] = []
    options: str = Field("", description="Markdown list of workflows to choose from when nothing matched.")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _draft_model(draft) -> DraftModel:
    return DraftModel(
        user_id=draft.user_id,
        original_prompt=draft.original_prompt,
        created_at=draft.created_at,
        needs_clarification=draft.needs_clarification,
        summary=format_draft_summary(draft),
        workflow=draft.graph,
    )


def _deploy_model(deploy) -> DeployModel:
    return DeployModel(
        id=deploy.id,
        name=deploy.name,
        active=deploy.active,
        node_count=deploy.node_count,
        missing_connections=[
            MissingConnectionModel(
                cred_type=m.cred_type,
                auth_url=m.auth_url,
                display_name=m.display_name,
                provider=m.provider,
            )
            for m in deploy.missing_connections
        ],
    )


def _upstream_error(e: N8nApiError) -> HTTPException:
    status = e.status_code if e.status_code in (400, 404, 409) else 502
    return HTTPException(status_code=status, detail=f"n8n error: {e}")


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@app.get("/health", tags=["system"])
async def health() -> dict:
    return {"api": "ok"}


@app.post("/messages", response_model=MessageResponse, tags=["drafts"], dependencies=[Depends(_verify_api_key)])
@limiter.limit(f"{_rate_limit}/minute")
async def post_message(request: Request, body: MessageRequest) -> MessageResponse:
    """Run one conversational turn for the user."""
    lifecycle = request.app.state.lifecycle
    logger.info("Message from %s: %r", body.user_id, body.text[:80])
    result = await lifecycle.handle_message(body.user_id, body.text)
    return MessageResponse(
        action=result.action,
        text=result.text,
        success=result.success,
        draft=_draft_model(result.draft) if result.draft else None,
        deploy=_deploy_model(result.deploy) if result.deploy else None,
    )


@app.get("/drafts/{user_id}", response_model=DraftModel, tags=["drafts"], dependencies=[Depends(_verify_api_key)])
async def get_draft(user_id: str, request: Request) -> DraftModel:
    draft = await request.app.state.lifecycle.get_pending_draft(user_id)
    if draft is None:
        raise HTTPException(status_code=404, detail=f"No pending draft for user '{user_id}'.")
    return _draft_model(draft)


@app.delete("/drafts/{user_id}", tags=["drafts"], dependencies=[Depends(_verify_api_key)])
async def delete_draft(user_id: str, request: Request) -> dict:
    if not await request.app.state.lifecycle.discard_draft(user_id):
        raise HTTPException(status_code=404, detail=f"No pending draft for user '{user_id}'.")
    return {"deleted": True, "user_id": user_id}


# ---------------------------------------------------------------------------
# Workflow management
# ---------------------------------------------------------------------------


_LOOKUP_ACTIONS = ("activate", "deactivate", "delete", "executions")


async def _lookup(request: Request, body: WorkflowReferenceRequest):
    try:
        return await request.app.state.service.find_workflow(body.text, body.user_id)
    except N8nApiError as e:
        raise _upstream_error(e)


@app.post(
    "/workflows/lookup",
    response_model=WorkflowLookupResponse,
    tags=["workflows"],
    dependencies=[Depends(_verify_api_key)],
)
async def lookup_workflow(body: WorkflowReferenceRequest, request: Request) -> WorkflowLookupResponse:
    """Identify a workflow from an ID, a name or a description."""
    lookup = await _lookup(request, body)
    return WorkflowLookupResponse(
        workflow_id=lookup.workflow_id,
        confidence=lookup.match.confidence,
        reason=lookup.match.reason,
        matches=[WorkflowCandidateModel(**m.model_dump()) for m in lookup.match.matches],
        options="" if lookup.workflow_id else lookup.options,
    )


@app.post("/workflows/lookup/{action}", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def act_on_workflow(action: str, body: WorkflowReferenceRequest, request: Request) -> dict:
    """Identify the workflow, then activate, deactivate, delete it or list its executions."""
    if action not in _LOOKUP_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown workflow action '{action}'.")

    lookup = await _lookup(request, body)
    if not lookup.workflow_id:
        if not lookup.workflows:
            detail = "No workflows available."
        else:
            detail = f"Could not identify which workflow to {action}. Available workflows:\n{lookup.options}"
        raise HTTPException(status_code=404, detail=detail)

    service = request.app.state.service
    workflow_id = lookup.workflow_id
    try:
        if action == "activate":
            result: Any = await service.activate_workflow(workflow_id)
        elif action == "deactivate":
            result = await service.deactivate_workflow(workflow_id)
        elif action == "delete":
            await service.delete_workflow(workflow_id)
            result = {"deleted": True, "workflow_id": workflow_id}
        else:
            result = await service.get_workflow_executions(workflow_id)
    except N8nApiError as e:
        raise _upstream_error(e)

    logger.info("%s workflow %s (%s confidence)", action, workflow_id, lookup.match.confidence)
    return {"workflow_id": workflow_id, "confidence": lookup.match.confidence, "result": result}


@app.get("/workflows", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def list_workflows(request: Request, user_id: str | None = None) -> list[dict]:
    try:
        return await request.app.state.service.list_workflows(user_id)
    except N8nApiError as e:
        raise _upstream_error(e)


@app.post("/workflows/{workflow_id}/activate", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def activate_workflow(workflow_id: str, request: Request) -> dict:
    try:
        return await request.app.state.service.activate_workflow(workflow_id)
    except N8nApiError as e:
        raise _upstream_error(e)


@app.post("/workflows/{workflow_id}/deactivate", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def deactivate_workflow(workflow_id: str, request: Request) -> dict:
    try:
        return await request.app.state.service.deactivate_workflow(workflow_id)
    except N8nApiError as e:
        raise _upstream_error(e)


@app.delete("/workflows/{workflow_id}", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def delete_workflow(workflow_id: str, request: Request) -> dict:
    try:
        await request.app.state.service.delete_workflow(workflow_id)
    except N8nApiError as e:
        raise _upstream_error(e)
    return {"deleted": True, "workflow_id": workflow_id}


@app.get("/workflows/{workflow_id}/executions", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def list_executions(workflow_id: str, request: Request, limit: int = 20) -> list[dict]:
    try:
        return await request.app.state.service.get_workflow_executions(workflow_id, limit=limit)
    except N8nApiError as e:
        raise _upstream_error(e)


@app.get("/credentials", tags=["workflows"], dependencies=[Depends(_verify_api_key)])
async def list_credentials(request: Request, credential_type: str | None = None) -> list[dict]:
    try:
        return await request.app.state.service.list_credentials(credential_type)
    except N8nApiError as e:
        raise _upstream_error(e)


# ---------------------------------------------------------------------------
# Entry point (for uvicorn programmatic launch)
# ---------------------------------------------------------------------------


def serve(host: str = "0.0.0.0", port: int = 8000, reload: bool = False) -> None:
    """Launch the FastAPI server via uvicorn."""
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run("n8n_draft_agent.api:app", host=host, port=port, reload=reload, log_level="info")


if __name__ == "__main__":
    serve()
