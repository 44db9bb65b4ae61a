"""Response models for structured model calls.

The pydantic models validate what comes back; the *_SCHEMA dicts are the JSON
schemas sent with the request so the model knows the expected shape.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, StrictStr


class KeywordExtraction(BaseModel):
    keywords: list[StrictStr] = Field(..., description="Up to 5 relevant keywords or phrases")


class DraftIntent(BaseModel):
    intent: Literal["confirm", "cancel", "modify", "new"]
    modificationRequest: str | None = Field(
        None, description="What the user wants changed (only for modify intent)"
    )
    reason: str | None = Field(None, description="Brief explanation of the classification")


KEYWORD_EXTRACTION_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "keywords": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Up to 5 relevant keywords or phrases",
        },
    },
    "required": ["keywords"],
}

DRAFT_INTENT_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "intent": {"type": "string", "enum": ["confirm", "cancel", "modify", "new"]},
        "modificationRequest": {
            "type": "string",
            "description": "What the user wants changed (only for modify intent)",
        },
        "reason": {"type": "string", "description": "Brief explanation of the classification"},
    },
    "required": ["intent", "reason"],
}


class WorkflowCandidate(BaseModel):
    id: str
    name: str
    score: float = Field(0, ge=0, le=100)


class WorkflowMatch(BaseModel):
    matchedWorkflowId: str | None = None
    confidence: Literal["high", "medium", "low", "none"] = "none"
    matches: list[WorkflowCandidate] = Field(default_factory=list)
    reason: str = ""


WORKFLOW_MATCHING_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "matchedWorkflowId": {"type": ["string", "null"]},
        "confidence": {"type": "string", "enum": ["high", "medium", "low", "none"]},
        "matches": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "score": {"type": "number"},
                },
                "required": ["id", "name", "score"],
            },
        },
        "reason": {"type": "string"},
    },
    "required": ["matchedWorkflowId", "confidence", "matches", "reason"],
}
