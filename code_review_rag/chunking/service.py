"""
Chunking service: strategy selection and the fallback chain.

Language → preferred strategy is a lookup table. When the preferred
strategy raises or produces nothing, the language's line-based variant
is tried, then the generic line chunker. A file is never dropped
silently: if every strategy fails the whole file becomes one chunk, and
only a disabled fallback turns a parse failure into an error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

from ..config.settings import ChunkingSettings
from ..errors import ChunkingError, RagError
from .brace_ast import build_brace_chunkers
from .line_based import GenericChunker, build_line_chunkers, split_lines
from .models import ChunkingIssue, ChunkingOptions, ChunkingResult, ChunkType, CodeChunk, detect_language
from .pattern import PatternChunker
from .python_ast import PythonAstChunker
from .strategy import ChunkingStrategy
from .tree_sitter_ast import build_tree_sitter_chunkers

LOG = logging.getLogger("code_review_rag.chunking.service")

PREFERRED_STRATEGIES: dict[str, str] = {
    "dart": "dart-ast-based",
    "typescript": "typescript-ast",
    "javascript": "javascript-ast",
    "python": "python-ast",
    "go": "pattern-based",
    "rust": "pattern-based",
    "java": "pattern-based",
    "kotlin": "pattern-based",
    "swift": "pattern-based",
    "scala": "pattern-based",
    "php": "pattern-based",
    "ruby": "pattern-based",
    "c": "pattern-based",
    "cpp": "pattern-based",
    "csharp": "pattern-based",
}

LINE_FALLBACKS: dict[str, str] = {
    "dart": "dart-line-based",
    "python": "python-line-based",
    "typescript": "typescript-line-based",
    "javascript": "typescript-line-based",
}

GENERIC_STRATEGY = "generic-line-based"


@dataclass
class SourceText:
    """A file handed to batch chunking."""

    path: str
    content: str


class ChunkingService:
    """Chooses a strategy per file and applies the fallback chain."""

    def __init__(self, settings: Optional[ChunkingSettings] = None, logger: Optional[logging.Logger] = None):
        self.settings = settings or ChunkingSettings()
        self.log = logger or LOG

        line_chunkers = build_line_chunkers(self.settings)
        generic = GenericChunker(self.settings)
        strategies: list[ChunkingStrategy] = [
            *build_brace_chunkers(line_chunkers, self.settings),
            *build_tree_sitter_chunkers(line_chunkers, self.settings),
            PythonAstChunker(line_chunkers["python-line-based"], self.settings),
            PatternChunker(generic, self.settings),
            *line_chunkers.values(),
            generic,
        ]
        self._strategies: dict[str, ChunkingStrategy] = {s.strategy_name: s for s in strategies}

    # ─── Strategy table ───────────────────────────────────────────────────

    def get_available_strategies(self) -> list[str]:
        return sorted(self._strategies)

    def get_strategy(self, name: str) -> ChunkingStrategy:
        try:
            return self._strategies[name]
        except KeyError:
            raise ChunkingError(f"Unknown chunking strategy: {name}", {"strategy": name}) from None

    def strategy_chain(self, language: str) -> list[str]:
        """Strategies tried for ``language``, most specific first."""
        chain = []
        preferred = PREFERRED_STRATEGIES.get(language)
        if preferred:
            chain.append(preferred)
        if self.settings.enable_fallback or not chain:
            line_variant = LINE_FALLBACKS.get(language)
            if line_variant:
                chain.append(line_variant)
            chain.append(GENERIC_STRATEGY)
        return chain

    # ─── Chunking ─────────────────────────────────────────────────────────

    def chunk(
        self,
        content: str,
        file_path: str,
        options: Optional[ChunkingOptions] = None,
    ) -> list[CodeChunk]:
        """
        Chunk one file.

        Returns:
            Chunks sorted by start line; empty only for empty content

        Raises:
            ChunkingError: when fallback is disabled and the preferred
                strategy fails
        """
        chunks, _ = self._chunk_with_strategy(content, file_path, options)
        return chunks

    def _chunk_with_strategy(
        self,
        content: str,
        file_path: str,
        options: Optional[ChunkingOptions],
    ) -> tuple[list[CodeChunk], str]:
        if not content:
            return [], ""

        language = detect_language(file_path)
        chain = self.strategy_chain(language)
        last_error: Optional[Exception] = None

        for name in chain:
            strategy = self._strategies[name]
            try:
                chunks = strategy.chunk(content, file_path, options)
            except (RagError, ValueError, RecursionError) as exc:
                last_error = exc
                self.log.warning("Strategy %s failed on %s: %s", name, file_path, exc)
                continue
            if chunks:
                if name != chain[0]:
                    self.log.info("Chunked %s with fallback strategy %s", file_path, name)
                return chunks, name
            self.log.debug("Strategy %s found nothing in %s", name, file_path)

        if not self.settings.enable_fallback and last_error is not None:
            raise ChunkingError(
                f"Chunking failed for {file_path} and fallback is disabled: {last_error}",
                {"file": file_path, "strategy": chain[0]},
            ) from last_error

        return [self._whole_file_chunk(content, file_path, language)], "whole-file"

    @staticmethod
    def _whole_file_chunk(content: str, file_path: str, language: str) -> CodeChunk:
        total = max(1, len(split_lines(content)))
        return CodeChunk.create(
            file_path=file_path,
            content=content,
            language=language,
            start_line=1,
            end_line=total,
            chunk_type=ChunkType.FILE,
            metadata={"strategy": "whole-file"},
        )

    def chunk_file(
        self,
        file_path: str,
        content: str,
        options: Optional[ChunkingOptions] = None,
    ) -> ChunkingResult:
        """Chunk one file into a result object; failures become issues."""
        started = time.monotonic()
        language = detect_language(file_path)
        result = ChunkingResult(language=language, total_lines=len(split_lines(content)) if content else 0)
        try:
            result.chunks, result.strategy = self._chunk_with_strategy(content, file_path, options)
        except ChunkingError as exc:
            result.errors.append(ChunkingIssue(file_path, exc.message, exc.details.get("strategy")))
        result.processing_time_ms = int((time.monotonic() - started) * 1000)
        return result

    async def chunk_files(
        self,
        files: list[SourceText],
        options: Optional[ChunkingOptions] = None,
        batch_size: int = 10,
    ) -> ChunkingResult:
        """
        Chunk many files, ``batch_size`` at a time on worker threads.

        Per-file failures are collected in ``errors``; the call itself only
        raises on cancellation.
        """
        started = time.monotonic()
        combined = ChunkingResult(strategy="mixed", language="mixed")
        batch_size = max(1, batch_size)

        for offset in range(0, len(files), batch_size):
            batch = files[offset : offset + batch_size]
            results = await asyncio.gather(
                *(asyncio.to_thread(self.chunk_file, f.path, f.content, options) for f in batch)
            )
            for result in results:
                combined.chunks.extend(result.chunks)
                combined.total_lines += result.total_lines
                combined.errors.extend(result.errors)

        combined.processing_time_ms = int((time.monotonic() - started) * 1000)
        self.log.info(
            "Chunked %d files into %d chunks (%d errors)",
            len(files),
            combined.total_chunks,
            len(combined.errors),
        )
        return combined
