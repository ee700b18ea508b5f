"""
Versioned payload schemas for the vector-store collections.

Everything written to or read from a collection passes through one of
these models. Unknown keys are rejected, so a payload written by a newer
schema (or by hand) is caught at the boundary instead of leaking loosely
typed dicts into retrieval.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..chunking.models import ChunkType, CodeChunk
from ..errors import ValidationFailure

SCHEMA_VERSION = 1

InsightCategory = Literal[
    "security", "performance", "style", "bug", "complexity", "documentation", "maintainability"
]
InsightSeverity = Literal["low", "medium", "high", "critical"]


class CodeChunkPayload(BaseModel):
    """Payload stored with every point in the code chunk collection."""

    model_config = ConfigDict(extra="forbid")

    schemaVersion: Literal[1] = SCHEMA_VERSION
    chunkId: str = Field(min_length=1)
    file: str = Field(min_length=1)
    language: str = Field(min_length=1)
    startLine: int = Field(ge=1)
    endLine: int = Field(ge=1)
    chunkType: ChunkType
    content: str
    complexityScore: int = Field(default=1, ge=1)
    dependencies: List[str] = Field(default_factory=list)
    imports: List[str] = Field(default_factory=list)
    sha256: str = Field(pattern=r"^[a-f0-9]{64}$")
    createdAt: datetime
    name: Optional[str] = None
    parent: Optional[str] = None
    strategy: Optional[str] = None
    commit: Optional[str] = None
    branch: Optional[str] = None
    author: Optional[str] = None
    repository: Optional[str] = None

    @model_validator(mode="after")
    def _check_range(self) -> "CodeChunkPayload":
        if self.endLine < self.startLine:
            raise ValueError("endLine must be greater than or equal to startLine")
        return self


class ReviewInsightPayload(BaseModel):
    """A finding from an earlier review, anchored to a file line."""

    model_config = ConfigDict(extra="forbid")

    schemaVersion: Literal[1] = SCHEMA_VERSION
    id: str = Field(min_length=1)
    file: str = Field(min_length=1)
    line: int = Field(ge=1)
    endLine: Optional[int] = Field(default=None, ge=1)
    category: InsightCategory
    severity: InsightSeverity
    summary: str = Field(min_length=1)
    suggestion: Optional[str] = None
    source: Literal["local", "cloud", "manual"] = "local"
    reviewId: Optional[str] = None
    createdAt: datetime
    rule: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    tags: List[str] = Field(default_factory=list)


M = TypeVar("M", bound=BaseModel)


def validate_payload(model: Type[M], payload: dict[str, Any]) -> M:
    """
    Validate a raw payload against a schema.

    Raises:
        ValidationFailure: with one ``{"loc", "msg"}`` entry per bad field
    """
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ValidationFailure.from_pydantic(model.__name__, exc) from exc


def payload_from_chunk(
    chunk: CodeChunk,
    sha256: str,
    commit: Optional[str] = None,
    branch: Optional[str] = None,
    author: Optional[str] = None,
    repository: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> CodeChunkPayload:
    """Build the stored payload for a chunk."""
    meta = chunk.metadata
    return CodeChunkPayload(
        chunkId=chunk.id,
        file=chunk.file_path,
        language=chunk.language,
        startLine=chunk.start_line,
        endLine=chunk.end_line,
        chunkType=chunk.chunk_type,
        content=chunk.content,
        complexityScore=max(1, chunk.complexity_score),
        dependencies=list(chunk.dependencies),
        imports=list(chunk.imports),
        sha256=sha256,
        createdAt=created_at or datetime.now(timezone.utc),
        name=meta.get("name"),
        parent=meta.get("parent"),
        strategy=meta.get("strategy"),
        commit=commit,
        branch=branch,
        author=author,
        repository=repository,
    )
