"""
Line-window chunking.

``LineChunker`` slides a window of ``chunk_size`` lines over the file,
overlapping consecutive windows by ``overlap`` lines. With boundary
respect enabled, each window end is pulled back to a clean statement
boundary. The generic variant accepts any language and is the last link
of every fallback chain.
"""

from __future__ import annotations

import logging
from typing import Optional

from .heuristics import (
    complexity_score,
    extract_dependencies,
    extract_imports,
    find_boundary,
    has_comments,
    infer_chunk_type,
)
from .models import ChunkingOptions, ChunkType, CodeChunk, detect_language
from .outline import mask_source, profile_for
from .strategy import ChunkingStrategy

LOG = logging.getLogger("code_review_rag.chunking.line_based")


def split_lines(content: str) -> list[str]:
    lines = content.split("\n")
    if lines and lines[-1] == "" and len(lines) > 1:
        lines.pop()  # trailing newline does not start a new line
    return lines


class LineChunker(ChunkingStrategy):
    """Fixed-size sliding window with optional boundary respect."""

    fixed_chunk_type: Optional[ChunkType] = None

    def __init__(
        self,
        strategy_name: str,
        languages: frozenset[str],
        chunk_size: int,
        overlap: int,
        respect_boundaries: bool = True,
        settings=None,
    ):
        super().__init__(settings)
        self.strategy_name = strategy_name
        self.supported_languages = languages
        self.default_chunk_size = chunk_size
        self.default_overlap = overlap
        self.default_respect_boundaries = respect_boundaries

    def chunk(
        self,
        content: str,
        file_path: str,
        options: Optional[ChunkingOptions] = None,
        language: Optional[str] = None,
    ) -> list[CodeChunk]:
        if not content:
            return []
        language = language or detect_language(file_path)
        resolved = self.resolve(options)
        lines = split_lines(content)
        windows = self.windows(lines, resolved.chunk_size, resolved.overlap, resolved.respect_boundaries)

        profile = profile_for(language)
        file_imports = extract_imports(content, language)
        chunks: list[CodeChunk] = []
        for start, end in windows:
            window = lines[start:end]
            text = "\n".join(window)
            if not text.strip():
                continue
            masked = mask_source(text, profile)
            chunk_type = self.fixed_chunk_type or infer_chunk_type(window)
            chunks.append(
                CodeChunk.create(
                    file_path=file_path,
                    content=text,
                    language=language,
                    start_line=start + 1,
                    end_line=end,
                    chunk_type=chunk_type,
                    complexity_score=complexity_score(masked, language),
                    dependencies=extract_dependencies(text, masked, language),
                    metadata={
                        "strategy": self.strategy_name,
                        "imports": file_imports,
                        "has_comments": has_comments(text),
                    },
                )
            )

        LOG.debug("%s produced %d chunks for %s", self.strategy_name, len(chunks), file_path)
        return chunks

    @staticmethod
    def windows(lines: list[str], chunk_size: int, overlap: int, respect_boundaries: bool) -> list[tuple[int, int]]:
        """
        Compute ``[start, end)`` line windows.

        Overlap applies only from the second window on. Every window ends
        strictly after the previous one, so the loop always terminates.
        """
        total = len(lines)
        chunk_size = max(1, chunk_size)
        overlap = max(0, min(overlap, chunk_size - 1))
        spans: list[tuple[int, int]] = []
        position = 0  # exclusive end of the previous window
        while position < total:
            start = max(0, position - overlap) if spans else 0
            end = min(start + chunk_size, total)
            if respect_boundaries and end < total:
                floor = max(position + 1, start + max(1, chunk_size // 2))
                end = find_boundary(lines, end, floor)
            spans.append((start, end))
            position = end
        return spans


class GenericChunker(LineChunker):
    """Pure line-based chunking for any language."""

    fixed_chunk_type = ChunkType.STATEMENT

    def __init__(self, settings=None):
        super().__init__(
            strategy_name="generic-line-based",
            languages=frozenset(),
            chunk_size=50,
            overlap=5,
            respect_boundaries=False,
            settings=settings,
        )

    def supports(self, language: str) -> bool:
        return True


def build_line_chunkers(settings=None) -> dict[str, LineChunker]:
    """Language-tuned line chunkers keyed by strategy name."""
    chunkers = [
        LineChunker("dart-line-based", frozenset({"dart"}), 80, 3, settings=settings),
        LineChunker("python-line-based", frozenset({"python"}), 120, 6, settings=settings),
        LineChunker("typescript-line-based", frozenset({"typescript", "javascript"}), 100, 5, settings=settings),
    ]
    return {c.strategy_name: c for c in chunkers}
