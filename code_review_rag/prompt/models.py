from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import PromptSettings
from ..retrieval.models import CommitRange

ResponseFormat = Literal["json", "markdown", "text"]


class TokenAllocations(BaseModel):
    """Fraction of the token budget given to each section."""

    model_config = ConfigDict(extra="forbid")

    preamble: float = Field(default=0.10, ge=0.0, le=1.0)
    context: float = Field(default=0.60, ge=0.0, le=1.0)
    diffs: float = Field(default=0.20, ge=0.0, le=1.0)
    insights: float = Field(default=0.10, ge=0.0, le=1.0)
    instructions: float = Field(default=0.10, ge=0.0, le=1.0)


class RepositoryInfo(BaseModel):
    name: str
    branch: str = "main"
    language: str = ""


class DiffEntry(BaseModel):
    """One changed file, supplied by the caller's diff parser."""

    model_config = ConfigDict(extra="forbid")

    file: str = Field(min_length=1)
    change_type: Literal["added", "modified", "deleted", "renamed"] = "modified"
    patch: str = ""
    additions: int = Field(default=0, ge=0)
    deletions: int = Field(default=0, ge=0)


class PromptOptions(BaseModel):
    model_config = ConfigDict(extra="forbid")

    token_budget: int = Field(default=8000, ge=100, le=200_000)
    token_allocations: TokenAllocations = Field(default_factory=TokenAllocations)
    system_prompt: Optional[str] = None
    guidelines: Optional[str] = None
    repository_info: Optional[RepositoryInfo] = None
    custom_context: Dict[str, Any] = Field(default_factory=dict)
    commit_range: Optional[CommitRange] = None
    diffs: List[DiffEntry] = Field(default_factory=list)
    include_diffs: bool = True
    include_insights: bool = True
    response_format: ResponseFormat = "markdown"
    json_schema: Optional[Dict[str, Any]] = None
    max_issues: int = Field(default=20, ge=1, le=100)

    @classmethod
    def from_settings(cls, settings: PromptSettings, **overrides: Any) -> "PromptOptions":
        values: Dict[str, Any] = {
            "token_budget": settings.token_budget,
            "token_allocations": TokenAllocations(
                preamble=settings.preamble_fraction,
                context=settings.context_fraction,
                diffs=settings.diffs_fraction,
                insights=settings.insights_fraction,
                instructions=settings.instructions_fraction,
            ),
            "response_format": settings.response_format,
        }
        values.update(overrides)
        return cls.model_validate(values)


@dataclass
class PromptSections:
    preamble: str = ""
    context: str = ""
    diffs: str = ""
    insights: str = ""
    instructions: str = ""

    def items(self) -> List[tuple[str, str]]:
        return [
            ("preamble", self.preamble),
            ("context", self.context),
            ("diffs", self.diffs),
            ("insights", self.insights),
            ("instructions", self.instructions),
        ]

    def to_dict(self) -> Dict[str, str]:
        return dict(self.items())


@dataclass
class PromptMetadata:
    truncated: bool
    budget_used: int
    budget_remaining: int
    original_token_count: Optional[int] = None
    truncated_sections: List[str] = field(default_factory=list)
    allocations: Dict[str, int] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "truncated": self.truncated,
            "budget_used": self.budget_used,
            "budget_remaining": self.budget_remaining,
            "original_token_count": self.original_token_count,
            "truncated_sections": self.truncated_sections,
            "allocations": self.allocations,
            "timestamp": self.timestamp,
        }


@dataclass
class ComposedPrompt:
    text: str
    token_count: int
    sections: PromptSections
    metadata: PromptMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "token_count": self.token_count,
            "sections": self.sections.to_dict(),
            "metadata": self.metadata.to_dict(),
        }


ErrorType = Literal["invalid_input", "token_budget_exceeded", "composition_failed"]
WarningType = Literal["truncated_content", "missing_context", "low_budget"]


@dataclass
class CompositionIssue:
    type: str
    message: str
    details: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.type, "message": self.message}
        if self.details is not None:
            data["details"] = self.details
        return data


@dataclass
class PromptCompositionResult:
    success: bool
    prompt: Optional[ComposedPrompt] = None
    errors: List[CompositionIssue] = field(default_factory=list)
    warnings: List[CompositionIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "prompt": self.prompt.to_dict() if self.prompt else None,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }


@dataclass
class PromptPreview:
    estimated_token_count: int
    sections_breakdown: Dict[str, int]
    budget_utilization: float  # percent of token_budget
    warnings: List[str] = field(default_factory=list)
