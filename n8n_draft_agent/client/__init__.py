"""n8n HTTP client."""

from n8n_draft_agent.client.config import Settings
from n8n_draft_agent.client.n8n_client import N8nApiError, N8nClient

__all__ = ["N8nApiError", "N8nClient", "Settings"]
