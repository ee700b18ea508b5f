"""
Data models for code chunks.

A chunk id is derived only from the normalized file path and the line
range, so re-chunking identical content always reproduces the same ids.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import PurePath
from typing import Any, Optional


class ChunkType(str, Enum):
    """Kinds of code chunk."""

    FUNCTION = "function"
    CLASS = "class"
    METHOD = "method"
    BLOCK = "block"
    FILE = "file"
    MODULE = "module"
    STATEMENT = "statement"
    EXPRESSION = "expression"
    ENUM = "enum"
    TYPEDEF = "typedef"


EXTENSION_LANGUAGES: dict[str, str] = {
    ".dart": "dart",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".py": "python",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".swift": "swift",
    ".rb": "ruby",
    ".php": "php",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".scala": "scala",
}


def normalize_path(file_path: str) -> str:
    return str(file_path).replace("\\", "/")


def calculate_chunk_id(file_path: str, start_line: int, end_line: int) -> str:
    """Deterministic chunk id: ``<normalized path>:<start>-<end>``."""
    return f"{normalize_path(file_path)}:{start_line}-{end_line}"


def detect_language(file_path: str) -> str:
    """Map a file extension to a language name, ``text`` when unknown."""
    suffix = PurePath(normalize_path(file_path)).suffix.lower()
    return EXTENSION_LANGUAGES.get(suffix, "text")


@dataclass
class CodeChunk:
    """A contiguous, semantically bounded slice of a source file."""

    id: str
    content: str
    language: str
    start_line: int
    end_line: int
    chunk_type: ChunkType
    file_path: str
    complexity_score: int = 1
    dependencies: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    embedding: Optional[list[float]] = None

    def __post_init__(self) -> None:
        if self.start_line < 1 or self.end_line < self.start_line:
            raise ValueError(
                f"Invalid line range {self.start_line}-{self.end_line} for {self.file_path}"
            )
        if not isinstance(self.chunk_type, ChunkType):
            self.chunk_type = ChunkType(self.chunk_type)

    @classmethod
    def create(
        cls,
        file_path: str,
        content: str,
        language: str,
        start_line: int,
        end_line: int,
        chunk_type: ChunkType,
        complexity_score: int = 1,
        dependencies: Optional[list[str]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> "CodeChunk":
        """Build a chunk with its id derived from path and line range."""
        return cls(
            id=calculate_chunk_id(file_path, start_line, end_line),
            content=content,
            language=language,
            start_line=start_line,
            end_line=end_line,
            chunk_type=chunk_type,
            file_path=normalize_path(file_path),
            complexity_score=complexity_score,
            dependencies=list(dependencies or []),
            metadata=dict(metadata or {}),
        )

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1

    @property
    def imports(self) -> list[str]:
        return list(self.metadata.get("imports", []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "language": self.language,
            "start_line": self.start_line,
            "end_line": self.end_line,
            "chunk_type": self.chunk_type.value,
            "file_path": self.file_path,
            "complexity_score": self.complexity_score,
            "dependencies": self.dependencies,
            "metadata": self.metadata,
        }


@dataclass
class ChunkingOptions:
    """Per-call overrides. ``None`` means use the strategy's default."""

    max_chunk_size: Optional[int] = None
    overlap_lines: Optional[int] = None
    min_chunk_lines: Optional[int] = None
    respect_boundaries: Optional[bool] = None
    ast_max_depth: Optional[int] = None


@dataclass
class ChunkingIssue:
    """A file that could not be chunked."""

    file_path: str
    message: str
    strategy: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {"file_path": self.file_path, "message": self.message, "strategy": self.strategy}


@dataclass
class ChunkingResult:
    """Outcome of chunking one or more files."""

    chunks: list[CodeChunk] = field(default_factory=list)
    total_lines: int = 0
    processing_time_ms: int = 0
    strategy: str = ""
    language: str = ""
    errors: list[ChunkingIssue] = field(default_factory=list)

    @property
    def total_chunks(self) -> int:
        return len(self.chunks)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "total_lines": self.total_lines,
            "processing_time_ms": self.processing_time_ms,
            "strategy": self.strategy,
            "language": self.language,
            "errors": [e.to_dict() for e in self.errors],
        }
