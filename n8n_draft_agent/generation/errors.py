"""Typed generation failures."""

from __future__ import annotations

from typing import Literal

GenerationErrorKind = Literal["keywords_invalid", "no_catalog_match", "graph_parse", "graph_invalid"]


class GenerationError(Exception):
    """Raised when a draft graph cannot be produced.

    kind:  which stage failed; callers branch on this, never on the message.
    raw:   the model response that could not be used, when there was one.
    """

    def __init__(self, kind: GenerationErrorKind, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.raw = raw

    def __repr__(self) -> str:
        return f"GenerationError(kind={self.kind!r}, message={self.message!r})"
