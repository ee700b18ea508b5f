"""
Language-aware code chunking.

Strategies:
- python-ast: Python via the built-in ast module
- dart-ast-based: brace outline parser
- typescript-ast / javascript-ast: tree-sitter syntax trees
- pattern-based: regex declarations for Go, Rust, Java, Kotlin, ...
- *-line-based: sliding line windows, the fallback for everything
"""

from .models import (
    ChunkingIssue,
    ChunkingOptions,
    ChunkingResult,
    ChunkType,
    CodeChunk,
    calculate_chunk_id,
    detect_language,
)
from .service import ChunkingService, SourceText
from .strategy import ChunkingStrategy

__all__ = [
    "ChunkType",
    "ChunkingIssue",
    "ChunkingOptions",
    "ChunkingResult",
    "ChunkingService",
    "ChunkingStrategy",
    "CodeChunk",
    "SourceText",
    "calculate_chunk_id",
    "detect_language",
]
