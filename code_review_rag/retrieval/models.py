"""
Retrieval query and result models.

Queries are pydantic models so malformed input is rejected with
field-level errors before any embedding or search call is made. Results
are plain dataclasses, built internally and never re-validated.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..chunking.models import ChunkType, CodeChunk
from ..errors import ValidationFailure

DEFAULT_COLLECTION = "code_chunks"
TOKEN_ESTIMATION_BUFFER = 1.1


class CommitRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    start: str = Field(min_length=1)
    end: str = Field(min_length=1)


class RetrievalFilter(BaseModel):
    """Declarative predicate over indexed chunks. Unset fields do not filter."""

    model_config = ConfigDict(extra="forbid")

    files: List[str] = Field(default_factory=list)
    file_patterns: List[str] = Field(default_factory=list)
    exclude_files: List[str] = Field(default_factory=list)
    exclude_patterns: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    exclude_languages: List[str] = Field(default_factory=list)
    chunk_types: List[ChunkType] = Field(default_factory=list)
    exclude_chunk_types: List[ChunkType] = Field(default_factory=list)
    commit: Optional[str] = None
    commit_range: Optional[CommitRange] = None
    branch: Optional[str] = None
    author: Optional[str] = None
    created_after: Optional[datetime] = None
    created_before: Optional[datetime] = None
    has_dependencies: Optional[bool] = None
    has_imports: Optional[bool] = None
    min_complexity: Optional[int] = Field(default=None, ge=0)
    max_complexity: Optional[int] = Field(default=None, ge=0)
    custom: Dict[str, Any] = Field(default_factory=dict)

    def is_empty(self) -> bool:
        for name in type(self).model_fields:
            value = getattr(self, name)
            if value is not None and value != [] and value != {}:
                return False
        return True

    def merged(self, **overrides: Any) -> "RetrievalFilter":
        """Copy with ``overrides`` set, keeping every other constraint."""
        return self.model_copy(update=overrides)


class ScoringOverrides(BaseModel):
    """Per-query weight overrides; unset weights keep the scorer's defaults."""

    model_config = ConfigDict(extra="forbid")

    semantic_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    recency_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    file_importance_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    code_quality_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    relevance_weight: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    custom_weights: Dict[str, float] = Field(default_factory=dict)


class RetrievalQuery(BaseModel):
    """
    A retrieval request. Exactly one of ``text`` or ``query_vector`` must be
    given. Unset limits are filled from ``RetrievalSettings`` by the
    service; ``max_results`` defaults to twice ``top_k``.
    """

    model_config = ConfigDict(extra="forbid")

    text: Optional[str] = None
    query_vector: Optional[List[float]] = None
    top_k: Optional[int] = Field(default=None, ge=1, le=100)
    min_score: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    max_results: Optional[int] = Field(default=None, ge=1, le=1000)
    filter: Optional[RetrievalFilter] = None
    scoring: Optional[ScoringOverrides] = None
    collection: Optional[str] = None
    include_insights: Optional[bool] = None
    include_content: bool = True

    @field_validator("text")
    @classmethod
    def _strip_text(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not value.strip():
            raise ValueError("text must not be blank")
        return value

    @field_validator("query_vector")
    @classmethod
    def _check_vector(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        if value is not None:
            if not value:
                raise ValueError("query_vector must not be empty")
            if not all(math.isfinite(v) for v in value):
                raise ValueError("query_vector must contain finite numbers")
        return value

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "RetrievalQuery":
        if (self.text is None) == (self.query_vector is None):
            raise ValueError("exactly one of text or query_vector must be provided")
        return self


def parse_query(raw: Any) -> RetrievalQuery:
    """
    Accept a ``RetrievalQuery`` or a plain dict.

    Raises:
        ValidationFailure: with per-field errors
    """
    if isinstance(raw, RetrievalQuery):
        return raw
    try:
        return RetrievalQuery.model_validate(raw)
    except ValidationError as exc:
        raise ValidationFailure.from_pydantic("retrieval query", exc) from exc


@dataclass
class ReviewInsight:
    """A prior review finding attached to a chunk."""

    category: str
    severity: str
    summary: str
    suggestion: Optional[str] = None
    file: str = ""
    line: int = 0
    end_line: Optional[int] = None

    def overlaps(self, start_line: int, end_line: int) -> bool:
        return self.line <= end_line and (self.end_line or self.line) >= start_line

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "category": self.category,
            "severity": self.severity,
            "summary": self.summary,
            "file": self.file,
            "line": self.line,
        }
        if self.suggestion:
            data["suggestion"] = self.suggestion
        if self.end_line is not None:
            data["end_line"] = self.end_line
        return data


@dataclass
class RetrievedChunk(CodeChunk):
    """A chunk returned by search, with its scores and attached insights."""

    score: float = 0.0
    semantic_score: float = 0.0
    hybrid_score: float = 0.0
    commit: Optional[str] = None
    author: Optional[str] = None
    created_at: Optional[str] = None
    insights: List[ReviewInsight] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "score": self.score,
                "semantic_score": self.semantic_score,
                "hybrid_score": self.hybrid_score,
                "commit": self.commit,
                "author": self.author,
                "created_at": self.created_at,
                "insights": [i.to_dict() for i in self.insights],
            }
        )
        return data


@dataclass
class FileInsightSummary:
    file: str
    total_insights: int
    categories: Dict[str, int] = field(default_factory=dict)
    severities: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "total_insights": self.total_insights,
            "categories": self.categories,
            "severities": self.severities,
        }


def estimate_result_tokens(chunks: List[CodeChunk]) -> int:
    """``ceil(chars / 4 × 1.1)`` over chunk contents."""
    chars = sum(len(c.content) for c in chunks)
    return math.ceil(chars / 4 * TOKEN_ESTIMATION_BUFFER)


@dataclass
class RetrievalResult:
    query: RetrievalQuery
    chunks: List[RetrievedChunk] = field(default_factory=list)
    processing_time_ms: int = 0
    estimated_tokens: int = 0
    applied_filters: List[str] = field(default_factory=list)
    filter_warnings: List[str] = field(default_factory=list)
    selectivity: Optional[Dict[str, Any]] = None
    insights: List[FileInsightSummary] = field(default_factory=list)

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def files(self) -> List[str]:
        seen: Dict[str, None] = {}
        for chunk in self.chunks:
            seen.setdefault(chunk.file_path, None)
        return list(seen)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query.model_dump(mode="json", exclude={"query_vector"}),
            "chunks": [c.to_dict() for c in self.chunks],
            "total_chunks": self.total_chunks,
            "processing_time_ms": self.processing_time_ms,
            "estimated_tokens": self.estimated_tokens,
            "applied_filters": self.applied_filters,
            "filter_warnings": self.filter_warnings,
            "selectivity": self.selectivity,
            "insights": [i.to_dict() for i in self.insights],
        }
