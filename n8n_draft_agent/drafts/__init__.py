"""Per-user workflow drafts: cache slot, intent handling, previews."""

from n8n_draft_agent.drafts.cache import Cache, InMemoryCache
from n8n_draft_agent.drafts.lifecycle import (
    DRAFT_TTL_SECONDS,
    Draft,
    DraftLifecycle,
    DraftTurnResult,
    draft_key,
    format_draft_summary,
    format_preview,
)
from n8n_draft_agent.generation.pipeline import DraftIntentResult

__all__ = [
    "Cache",
    "DRAFT_TTL_SECONDS",
    "Draft",
    "DraftIntentResult",
    "DraftLifecycle",
    "DraftTurnResult",
    "InMemoryCache",
    "draft_key",
    "format_draft_summary",
    "format_preview",
]
