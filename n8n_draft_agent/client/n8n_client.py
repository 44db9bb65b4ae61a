"""Async n8n public REST API client using httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from n8n_draft_agent.client.config import Settings

logger = logging.getLogger("n8n_draft_agent.client")


class N8nApiError(Exception):
    """Raised for any failed n8n API call.

    status_code: HTTP status, or None for transport failures.
    detail:      response body (parsed JSON when possible) or the transport error text.
    """

    def __init__(self, message: str, status_code: int | None = None, detail: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class N8nClient:
    """Thin async wrapper around the n8n public API (workflows, credentials, executions, tags)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers=settings.headers,
            timeout=httpx.Timeout(settings.timeout, connect=10.0),
        )

    async def close(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict | None = None,
        params: dict | None = None,
    ) -> Any:
        try:
            r = await self._client.request(method, path, json=payload, params=params)
            r.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error("%s %s -> %s", method, path, status)
            detail = _response_detail(e.response)
            message = detail.get("message") if isinstance(detail, dict) else None
            raise N8nApiError(
                message or f"n8n API error: HTTP {status}",
                status_code=status,
                detail=detail,
            ) from e
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise N8nApiError(f"Failed to call n8n API: {e}", detail=str(e)) from e

        if r.status_code == 204 or not r.text.strip():
            return None
        return r.json()

    async def _get(self, path: str, params: dict | None = None) -> Any:
        return await self._request("GET", path, params=params)

    async def _post(self, path: str, payload: dict | None = None) -> Any:
        return await self._request("POST", path, payload=payload)

    async def _put(self, path: str, payload: Any = None) -> Any:
        return await self._request("PUT", path, payload=payload)

    async def _delete(self, path: str) -> Any:
        return await self._request("DELETE", path)

    # ==================================================================
    # WORKFLOWS
    # ==================================================================

    async def create_workflow(self, workflow: dict[str, Any]) -> dict[str, Any]:
        return await self._post("/workflows", workflow)

    async def list_workflows(
        self,
        active: bool | None = None,
        tags: list[str] | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if active is not None:
            params["active"] = str(active).lower()
        if tags:
            params["tags"] = ",".join(tags)
        if limit:
            params["limit"] = limit
        if cursor:
            params["cursor"] = cursor
        return await self._get("/workflows", params=params or None)

    async def get_workflow(self, workflow_id: str) -> dict[str, Any]:
        return await self._get(f"/workflows/{workflow_id}")

    async def update_workflow(self, workflow_id: str, workflow: dict[str, Any]) -> dict[str, Any]:
        return await self._put(f"/workflows/{workflow_id}", workflow)

    async def delete_workflow(self, workflow_id: str) -> None:
        await self._delete(f"/workflows/{workflow_id}")

    async def activate_workflow(self, workflow_id: str) -> dict[str, Any]:
        return await self._post(f"/workflows/{workflow_id}/activate")

    async def deactivate_workflow(self, workflow_id: str) -> dict[str, Any]:
        return await self._post(f"/workflows/{workflow_id}/deactivate")

    async def update_workflow_tags(self, workflow_id: str, tag_ids: list[str]) -> Any:
        return await self._put(
            f"/workflows/{workflow_id}/tags", [{"id": tag_id} for tag_id in tag_ids]
        )

    # ==================================================================
    # CREDENTIALS
    # ==================================================================

    async def create_credential(
        self, name: str, credential_type: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._post(
            "/credentials", {"name": name, "type": credential_type, "data": data}
        )

    async def list_credentials(self, credential_type: str | None = None) -> dict[str, Any]:
        params = {"type": credential_type} if credential_type else None
        return await self._get("/credentials", params=params)

    async def get_credential_schema(self, credential_type: str) -> dict[str, Any]:
        return await self._get(f"/credentials/schema/{credential_type}")

    async def delete_credential(self, credential_id: str) -> None:
        await self._delete(f"/credentials/{credential_id}")

    # ==================================================================
    # EXECUTIONS
    # ==================================================================

    async def list_executions(
        self,
        workflow_id: str | None = None,
        status: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if workflow_id:
            params["workflowId"] = workflow_id
        if status:
            params["status"] = status
        if limit:
            params["limit"] = limit
        if cursor:
            params["cursor"] = cursor
        return await self._get("/executions", params=params or None)

    async def get_execution(self, execution_id: str) -> dict[str, Any]:
        return await self._get(f"/executions/{execution_id}")

    async def delete_execution(self, execution_id: str) -> None:
        await self._delete(f"/executions/{execution_id}")

    # ==================================================================
    # TAGS
    # ==================================================================

    async def list_tags(self) -> dict[str, Any]:
        return await self._get("/tags")

    async def create_tag(self, name: str) -> dict[str, Any]:
        return await self._post("/tags", {"name": name})

    async def get_or_create_tag(self, name: str) -> dict[str, Any]:
        """Return the tag with this name (case-insensitive), creating it if absent."""
        listing = await self.list_tags() or {}
        for tag in listing.get("data", []):
            if str(tag.get("name", "")).lower() == name.lower():
                return tag
        return await self.create_tag(name)


def _response_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
