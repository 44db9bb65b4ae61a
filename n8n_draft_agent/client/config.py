"""Configuration for the n8n HTTP client and credential defaults."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field

logger = logging.getLogger("n8n_draft_agent.client.config")


@dataclass(frozen=True)
class Settings:
    """Immutable settings loaded from environment variables.

    credentials: static credType → n8n credential ID map, consulted by the
    credential resolver after the per-user store.
    """

    api_key: str = field(repr=False)
    host: str = "http://localhost:5678"
    timeout: int = 60
    log_level: str = "WARNING"
    credentials: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> Settings:
        api_key = os.getenv("N8N_API_KEY", "")
        host = os.getenv("N8N_HOST", "http://localhost:5678").rstrip("/")
        timeout = int(os.getenv("N8N_TIMEOUT", "60"))
        log_level = os.getenv("N8N_AGENT_LOG_LEVEL", "WARNING").upper()
        return cls(
            api_key=api_key,
            host=host,
            timeout=timeout,
            log_level=log_level,
            credentials=_parse_credentials(os.getenv("N8N_CREDENTIALS", "")),
        )

    @property
    def base_url(self) -> str:
        return f"{self.host}/api/v1"

    @property
    def headers(self) -> dict[str, str]:
        h: dict[str, str] = {"Content-Type": "application/json"}
        if self.api_key:
            h["X-N8N-API-KEY"] = self.api_key
        return h


def _parse_credentials(raw: str) -> dict[str, str]:
    """Parse N8N_CREDENTIALS (JSON object of credType → id). Empty on absence."""
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"N8N_CREDENTIALS must be a JSON object: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("N8N_CREDENTIALS must be a JSON object of credType -> id")
    return {str(k): str(v) for k, v in parsed.items() if v}
