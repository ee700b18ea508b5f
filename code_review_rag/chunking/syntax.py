"""Shared behaviour of the syntax-aware strategies."""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import Optional

from .line_based import LineChunker, split_lines
from .models import ChunkingOptions, CodeChunk
from .strategy import ChunkingStrategy, ResolvedOptions

LOG = logging.getLogger("code_review_rag.chunking.syntax")


class SyntaxChunker(ChunkingStrategy):
    """
    Base for strategies that understand declarations.

    Subclasses implement ``extract``; this class adds the leading module
    chunk handling and the line-based supplement for files where the
    syntax pass found too little.
    """

    def __init__(self, line_chunker: LineChunker, settings=None):
        super().__init__(settings)
        self.line_chunker = line_chunker

    def chunk(
        self,
        content: str,
        file_path: str,
        options: Optional[ChunkingOptions] = None,
    ) -> list[CodeChunk]:
        if not content.strip():
            return []
        resolved = self.resolve(options)
        lines = split_lines(content)
        chunks = self.extract(content, lines, file_path, resolved)
        if not chunks:
            return []
        return self.supplement(chunks, content, lines, file_path, options, resolved)

    @abstractmethod
    def extract(
        self,
        content: str,
        lines: list[str],
        file_path: str,
        resolved: ResolvedOptions,
    ) -> list[CodeChunk]:
        """Declaration chunks found in the file, possibly empty."""
        ...

    def supplement(
        self,
        chunks: list[CodeChunk],
        content: str,
        lines: list[str],
        file_path: str,
        options: Optional[ChunkingOptions],
        resolved: ResolvedOptions,
    ) -> list[CodeChunk]:
        """Add line windows not already covered when extraction was sparse."""
        unique: dict[str, CodeChunk] = {}
        for chunk in chunks:
            unique.setdefault(chunk.id, chunk)

        if len(unique) < 2 and len(lines) > resolved.chunk_size:
            covered = [(c.start_line, c.end_line) for c in unique.values()]
            language = next(iter(unique.values())).language
            added = 0
            for extra in self.line_chunker.chunk(content, file_path, options, language=language):
                if extra.id in unique:
                    continue
                if any(s <= extra.start_line and extra.end_line <= e for s, e in covered):
                    continue
                extra.metadata["supplemental"] = True
                unique[extra.id] = extra
                added += 1
            LOG.debug("Supplemented %s with %d line chunks", file_path, added)

        return sorted(unique.values(), key=lambda c: (c.start_line, -c.end_line))
