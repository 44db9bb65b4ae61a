"""LLM abstraction layer — model-agnostic reasoning engine.

Two layers live here:

  ReasoningEngine  — provider-specific chat completion (Claude, OpenAI).
  ModelCaller      — the single call contract the rest of the package uses:

        await model.call(prompt)                 -> str
        await model.call(prompt, schema=schema)  -> decoded JSON value

When a schema is given the engine is asked for a bare JSON object matching it
and the reply is decoded here. Shape checking of the decoded value is left to
the caller, which validates it against its own pydantic model.

Also owns ReasoningSettings (engine config, read from env / .env).
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("n8n_draft_agent.reasoning")

_FENCE_OPEN_RE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE_RE = re.compile(r"```\s*$")


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------


@dataclass
class Message:
    """A single conversation turn. role is "user" or "assistant"."""

    role: str
    content: str


@dataclass
class EngineResponse:
    """Text reply from the reasoning engine."""

    content: str
    stop_reason: str = "end_turn"  # "end_turn" | "max_tokens"


class ModelResponseError(Exception):
    """Raised when a structured model reply cannot be decoded as JSON.

    raw: the untouched model reply, kept for diagnosis.
    """

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence (```json ... ```) if present."""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN_RE.sub("", cleaned)
    cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    return cleaned.strip()


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------


class ReasoningEngine(ABC):
    """Abstract base class for any LLM provider."""

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.2,
        json_mode: bool = False,
    ) -> EngineResponse:
        """Send a conversation to the LLM and return its text reply.

        Args:
            messages:    Conversation history.
            system:      Optional system prompt.
            temperature: Sampling temperature (0.0–1.0).
            json_mode:   Ask the provider for a bare JSON object when it
                         supports a native switch for it.
        """
        ...

    @property
    @abstractmethod
    def model_id(self) -> str:
        """Provider/model string for logging, e.g. 'anthropic/claude-sonnet-4-6'."""
        ...


# ---------------------------------------------------------------------------
# Claude (Anthropic) implementation
# ---------------------------------------------------------------------------


class ClaudeEngine(ReasoningEngine):
    """Reasoning engine backed by Anthropic's Claude API.

    Requires: pip install 'n8n-draft-agent[claude]'
    """

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-6") -> None:
        try:
            import anthropic as _anthropic
            self._anthropic = _anthropic
        except ImportError:
            raise ImportError(
                "The 'anthropic' package is required for ClaudeEngine. "
                "Install it with: pip install 'n8n-draft-agent[claude]'"
            )
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY is required for ClaudeEngine. "
                "Set it in your environment or .env file."
            )
        self._client = self._anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        logger.info("ClaudeEngine initialized: %s", model)

    @property
    def model_id(self) -> str:
        return f"anthropic/{self._model}"

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.2,
        json_mode: bool = False,
    ) -> EngineResponse:
        """json_mode is accepted for interface parity and ignored.

        The Messages API has no JSON response switch; structured calls get
        their schema through the system prompt (see ModelCaller.call).
        """
        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": m.role, "content": m.content} for m in messages],
            "max_tokens": 8192,
            "temperature": temperature,
        }
        if system:
            kwargs["system"] = system

        logger.debug("ClaudeEngine.complete: %d messages", len(messages))
        response = await self._client.messages.create(**kwargs)

        content_text = "".join(
            block.text for block in response.content if block.type == "text"
        )
        return EngineResponse(
            content=content_text,
            stop_reason=response.stop_reason or "end_turn",
        )


# ---------------------------------------------------------------------------
# OpenAI implementation
# ---------------------------------------------------------------------------


class OpenAIEngine(ReasoningEngine):
    """Reasoning engine backed by the OpenAI API (GPT-4o, etc.).

    Requires: pip install 'n8n-draft-agent[openai]'
    """

    def __init__(self, api_key: str, model: str = "gpt-4o") -> None:
        try:
            import openai as _openai
            self._openai = _openai
        except ImportError:
            raise ImportError(
                "The 'openai' package is required for OpenAIEngine. "
                "Install it with: pip install 'n8n-draft-agent[openai]'"
            )
        if not api_key:
            raise ValueError(
                "OPENAI_API_KEY is required for OpenAIEngine. "
                "Set it in your environment or .env file."
            )
        self._client = self._openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        logger.info("OpenAIEngine initialized: %s", model)

    @property
    def model_id(self) -> str:
        return f"openai/{self._model}"

    async def complete(
        self,
        messages: list[Message],
        system: str | None = None,
        temperature: float = 0.2,
        json_mode: bool = False,
    ) -> EngineResponse:
        oai_messages: list[dict[str, Any]] = []
        if system:
            oai_messages.append({"role": "system", "content": system})
        oai_messages.extend({"role": m.role, "content": m.content} for m in messages)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": oai_messages,
            "temperature": temperature,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        logger.debug("OpenAIEngine.complete: %d messages", len(messages))
        response = await self._client.chat.completions.create(**kwargs)
        choice = response.choices[0]
        return EngineResponse(
            content=choice.message.content or "",
            stop_reason="max_tokens" if choice.finish_reason == "length" else "end_turn",
        )


# ---------------------------------------------------------------------------
# Single-call adapter
# ---------------------------------------------------------------------------


class ModelCaller:
    """One-shot prompt → reply adapter over a ReasoningEngine.

    This is the only model surface the generation pipeline and the draft
    lifecycle depend on, so tests replace it with an AsyncMock.
    """

    def __init__(self, engine: ReasoningEngine) -> None:
        self._engine = engine

    @property
    def model_id(self) -> str:
        return self._engine.model_id

    async def call(
        self,
        prompt: str,
        schema: dict[str, Any] | None = None,
        temperature: float = 0.0,
    ) -> Any:
        """Send a single prompt. Returns text, or decoded JSON when schema is given.

        Raises ModelResponseError when a structured reply is not valid JSON.
        """
        system = None
        if schema is not None:
            system = (
                "Respond with a single JSON object that matches this JSON Schema. "
                "Do not wrap it in Markdown and do not add commentary.\n\n"
                + json.dumps(schema, indent=2)
            )

        response = await self._engine.complete(
            [Message(role="user", content=prompt)],
            system=system,
            temperature=temperature,
            json_mode=schema is not None,
        )
        text = response.content or ""
        if schema is None:
            return text

        try:
            return json.loads(strip_code_fences(text))
        except json.JSONDecodeError as e:
            raise ModelResponseError(
                f"Model returned invalid JSON for a structured call: {e}", raw=text
            ) from e


# ---------------------------------------------------------------------------
# Reasoning engine settings
# ---------------------------------------------------------------------------


class ReasoningSettings(BaseSettings):
    """Settings for the swappable reasoning engine.

    Environment variables:
      REASONING_ENGINE      — "claude" | "openai" (default: "claude")
      REASONING_MODEL       — model name override; unset for provider default
      ANTHROPIC_API_KEY     — required when provider is "claude"
      OPENAI_API_KEY        — required when provider is "openai"
      REASONING_TEMPERATURE — 0.0–1.0 (default: 0.2)
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    provider: str = Field(default="claude", validation_alias="REASONING_ENGINE")
    model: str | None = Field(default=None, validation_alias="REASONING_MODEL")
    anthropic_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="ANTHROPIC_API_KEY",
        repr=False,
    )
    openai_api_key: SecretStr = Field(
        default=SecretStr(""),
        validation_alias="OPENAI_API_KEY",
        repr=False,
    )
    temperature: float = Field(default=0.2, validation_alias="REASONING_TEMPERATURE")

    @field_validator("provider", mode="before")
    @classmethod
    def lowercase_provider(cls, v: object) -> str:
        return str(v).lower()

    @field_validator("model", mode="before")
    @classmethod
    def empty_str_to_none(cls, v: object) -> str | None:
        """Treat empty string REASONING_MODEL as unset (use provider default)."""
        if not v:
            return None
        return str(v)

    @field_validator("temperature")
    @classmethod
    def clamp_temperature(cls, v: float) -> float:
        return max(0.0, min(1.0, v))

    @classmethod
    def from_env(cls) -> ReasoningSettings:
        return cls()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_engine(settings: ReasoningSettings) -> ReasoningEngine:
    """Instantiate the configured reasoning engine from ReasoningSettings."""
    match settings.provider:
        case "claude" | "anthropic":
            return ClaudeEngine(
                api_key=settings.anthropic_api_key.get_secret_value(),
                model=settings.model or "claude-sonnet-4-6",
            )
        case "openai" | "gpt":
            return OpenAIEngine(
                api_key=settings.openai_api_key.get_secret_value(),
                model=settings.model or "gpt-4o",
            )
        case _:
            raise ValueError(
                f"Unknown reasoning engine provider: {settings.provider!r}. "
                f"Valid options: 'claude', 'openai'"
            )
