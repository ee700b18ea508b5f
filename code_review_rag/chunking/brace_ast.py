"""
Declaration chunking for Dart with an outline grammar.

The source is masked, matched into an outline tree, and every class,
enum, typedef, function and method node of sufficient size becomes a chunk.
"""

from __future__ import annotations

import logging
from typing import Optional

from ..errors import UnsupportedLanguageError
from .heuristics import (
    complexity_score,
    extract_dependencies,
    extract_imports,
    has_comments,
    is_import_line,
)
from .line_based import LineChunker
from .models import ChunkType, CodeChunk, detect_language
from .outline import OutlineNode, annotate, build_outline, mask_source, profile_for
from .strategy import ResolvedOptions
from .syntax import SyntaxChunker

LOG = logging.getLogger("code_review_rag.chunking.brace_ast")

_CONTAINERS = (ChunkType.CLASS, ChunkType.ENUM, ChunkType.MODULE)


class BraceAstChunker(SyntaxChunker):
    """Outline-driven declaration extraction for one language family."""

    def __init__(
        self,
        strategy_name: str,
        languages: frozenset[str],
        line_chunker: LineChunker,
        chunk_size: int = 100,
        overlap: int = 5,
        settings=None,
    ):
        super().__init__(line_chunker, settings)
        self.strategy_name = strategy_name
        self.supported_languages = languages
        self.default_chunk_size = chunk_size
        self.default_overlap = overlap

    def extract(
        self,
        content: str,
        lines: list[str],
        file_path: str,
        resolved: ResolvedOptions,
    ) -> list[CodeChunk]:
        language = detect_language(file_path)
        if language not in self.supported_languages:
            raise UnsupportedLanguageError(language, self.strategy_name)

        masked = mask_source(content, profile_for(language))
        roots = build_outline(masked)
        annotate(roots)

        masked_lines = masked.split("\n")
        imports = extract_imports(content, language)
        chunks: list[CodeChunk] = []

        header = self._import_block(lines, masked_lines)
        if header is not None and header[1] - header[0] + 1 >= resolved.min_lines:
            start, end = header
            chunks.append(
                CodeChunk.create(
                    file_path=file_path,
                    content="\n".join(lines[start - 1 : end]),
                    language=language,
                    start_line=start,
                    end_line=end,
                    chunk_type=ChunkType.MODULE,
                    dependencies=imports,
                    metadata={"strategy": self.strategy_name, "imports": imports},
                )
            )

        def walk(nodes: list[OutlineNode], depth: int, parent: Optional[str]) -> None:
            if depth >= resolved.max_depth:
                return
            for node in nodes:
                if node.kind is not None and node.line_count >= resolved.min_lines:
                    chunks.append(self._node_chunk(node, lines, masked_lines, file_path, language, imports, parent))
                if node.kind in (ChunkType.FUNCTION, ChunkType.METHOD):
                    continue
                child_parent = node.name if node.kind in _CONTAINERS else parent
                walk(node.children, depth + 1, child_parent)

        walk(roots, 0, None)
        LOG.debug("%s extracted %d declarations from %s", self.strategy_name, len(chunks), file_path)
        return chunks

    def _node_chunk(
        self,
        node: OutlineNode,
        lines: list[str],
        masked_lines: list[str],
        file_path: str,
        language: str,
        imports: list[str],
        parent: Optional[str],
    ) -> CodeChunk:
        text = "\n".join(lines[node.start_line - 1 : node.end_line])
        masked = "\n".join(masked_lines[node.start_line - 1 : node.end_line])
        metadata = {
            "strategy": self.strategy_name,
            "name": node.name,
            "imports": imports,
            "has_comments": has_comments(text),
            "depth": node.depth,
        }
        if parent:
            metadata["parent"] = parent
        return CodeChunk.create(
            file_path=file_path,
            content=text,
            language=language,
            start_line=node.start_line,
            end_line=node.end_line,
            chunk_type=node.kind or ChunkType.BLOCK,
            complexity_score=complexity_score(masked, language),
            dependencies=extract_dependencies(text, masked, language, exclude=[node.name]),
            metadata=metadata,
        )

    @staticmethod
    def _import_block(lines: list[str], masked_lines: list[str]) -> Optional[tuple[int, int]]:
        """1-based span of the leading import/export statements."""
        start = end = None
        open_statement = False
        for number, (line, masked) in enumerate(zip(lines, masked_lines), start=1):
            significant = masked.strip()
            if not significant:
                continue
            if open_statement or is_import_line(line.strip()):
                if start is None:
                    start = number
                end = number
                complete = significant.endswith(";") or line.rstrip().endswith(("'", '"'))
                open_statement = not complete
                continue
            break
        if start is None or end is None:
            return None
        return start, end


def build_brace_chunkers(line_chunkers: dict[str, LineChunker], settings=None) -> list[BraceAstChunker]:
    return [
        BraceAstChunker(
            "dart-ast-based", frozenset({"dart"}), line_chunkers["dart-line-based"], 80, 3, settings
        ),
    ]
