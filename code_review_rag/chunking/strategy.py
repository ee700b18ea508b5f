"""
Chunking strategy interface.

Every strategy exposes the same capability set: a strategy name, the
languages it supports, and ``chunk()``. Selection between strategies is
table-driven in ``ChunkingService``; strategies never delegate to each
other except for the line-based supplement of sparse syntax results.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..config.settings import ChunkingSettings
from .models import ChunkingOptions, CodeChunk


@dataclass(frozen=True)
class ResolvedOptions:
    """Effective options after merging call overrides, settings and defaults."""

    chunk_size: int
    overlap: int
    min_lines: int
    respect_boundaries: bool
    max_depth: int


class ChunkingStrategy(ABC):
    """Splits one file's text into code chunks."""

    strategy_name: str = ""
    supported_languages: frozenset[str] = frozenset()
    default_chunk_size: int = 100
    default_overlap: int = 5
    default_respect_boundaries: bool = True

    def __init__(self, settings: Optional[ChunkingSettings] = None):
        self.settings = settings or ChunkingSettings()

    def supports(self, language: str) -> bool:
        return language in self.supported_languages

    def resolve(self, options: Optional[ChunkingOptions] = None) -> ResolvedOptions:
        options = options or ChunkingOptions()
        settings = self.settings

        def pick(override, configured, default):
            if override is not None:
                return override
            if configured is not None:
                return configured
            return default

        chunk_size = max(1, pick(options.max_chunk_size, settings.max_chunk_size, self.default_chunk_size))
        overlap = pick(options.overlap_lines, settings.overlap_lines, self.default_overlap)
        respect = options.respect_boundaries
        if respect is None:
            respect = settings.respect_boundaries and self.default_respect_boundaries
        return ResolvedOptions(
            chunk_size=chunk_size,
            overlap=max(0, min(overlap, chunk_size - 1)),
            min_lines=max(1, pick(options.min_chunk_lines, None, settings.min_chunk_lines)),
            respect_boundaries=respect,
            max_depth=max(1, pick(options.ast_max_depth, None, settings.ast_max_depth)),
        )

    @abstractmethod
    def chunk(
        self,
        content: str,
        file_path: str,
        options: Optional[ChunkingOptions] = None,
    ) -> list[CodeChunk]:
        """
        Split ``content`` into chunks.

        Raises:
            ParseFailure: if a syntax-aware strategy cannot parse the input
        """
        ...

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.strategy_name!r})"
