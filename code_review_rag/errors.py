"""
Exception hierarchy shared by every pipeline stage.

Recoverable failures (a single unparseable file, a single embedding) are
collected into result objects by the callers; the exceptions here are
raised only when an operation as a whole cannot proceed.
"""

from __future__ import annotations

from typing import Any


class RagError(Exception):
    """Base exception for the retrieval pipeline."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ParseFailure(RagError):
    """A syntax-aware strategy could not parse its input."""

    pass


class UnsupportedLanguageError(ParseFailure):
    """A strategy was asked to parse a language it does not handle."""

    def __init__(self, language: str, strategy: str):
        super().__init__(
            f"Strategy {strategy} does not support language {language}",
            {"language": language, "strategy": strategy},
        )
        self.language = language
        self.strategy = strategy


class ChunkingError(RagError):
    """No usable chunking strategy could handle a file."""

    pass


class EmbeddingFailure(RagError):
    """Embedding generation failed for a whole batch."""

    def __init__(self, message: str, kind: str = "provider", details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.kind = kind


class StoreFailure(RagError):
    """A vector-store call failed after exhausting its retries."""

    def __init__(
        self,
        message: str,
        operation: str,
        attempts: int = 1,
        kind: str = "error",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.operation = operation
        self.attempts = attempts
        self.kind = kind


class ValidationFailure(RagError):
    """Input rejected before any external call was made."""

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None):
        super().__init__(message, {"errors": errors or []})
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, subject: str, exc: Any) -> "ValidationFailure":
        """Build from a pydantic ValidationError, keeping per-field locations."""
        errors = [
            {"loc": ".".join(str(p) for p in err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        fields = ", ".join(e["loc"] or "<root>" for e in errors)
        return cls(f"Invalid {subject}: {fields}", errors)


class TokenBudgetError(RagError):
    """A token budget allocation is internally inconsistent."""

    pass


class Aborted(RagError):
    """Operation was cancelled cooperatively. Must not be retried automatically."""

    def __init__(self, message: str = "Operation aborted", details: dict[str, Any] | None = None):
        super().__init__(message, details)


class IndexingInProgress(RagError):
    """An indexing run is already active on this indexer."""

    pass


class GenerationFailure(RagError):
    """The language model call failed after its retries."""

    def __init__(self, message: str, status: int | None = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.status = status
