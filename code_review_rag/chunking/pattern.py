"""
Regex-driven declaration chunking for languages without an outline grammar.

Declarations are found by line-anchored patterns on masked source. The
extent of each declaration is the brace block that follows it (or the
matching ``end`` line for Ruby). Functions inside a class extent are
reported as methods.
"""

from __future__ import annotations

import re
from typing import Optional

from ..errors import UnsupportedLanguageError
from .heuristics import complexity_score, extract_dependencies, extract_imports, has_comments
from .models import ChunkType, CodeChunk, detect_language
from .outline import CONTROL_WORDS, mask_source, profile_for
from .strategy import ResolvedOptions
from .syntax import SyntaxChunker

_MODS = (
    r"(?:(?:public|private|protected|internal|static|final|abstract|override|open|virtual|async|"
    r"inline|suspend|extern|unsafe|const|export|default|sealed|synchronized|native|operator|infix|"
    r"tailrec|mutating|fileprivate|partial|readonly|data|implicit|lazy|pub(?:\([\w:]+\))?)\s+)*"
)
_ANNOT = r"(?:@[\w.]+(?:\([^)]*\))?\s*)*"
_CLASS_KEYWORDS = r"(?:class|interface|struct|object|trait|protocol|record|union)"

_TYPED_FUNCTION = re.compile(r"^\s*" + _ANNOT + _MODS + r"(?:[\w<>\[\],.?*&:]+\s+)+[*&]?(~?\w+)\s*\(")
_CLASS = re.compile(r"^\s*" + _ANNOT + _MODS + _CLASS_KEYWORDS + r"\s+(\w+)")
_ENUM = re.compile(r"^\s*" + _ANNOT + _MODS + r"enum\s+(?:class\s+)?(\w+)")
_NAMESPACE = re.compile(r"^\s*(?:namespace|package)\s+([\w.:]+)\s*\{?\s*$")

LANGUAGE_PATTERNS: dict[str, list[tuple[re.Pattern, ChunkType]]] = {
    "go": [
        (re.compile(r"^func\s+\([^)]*\)\s*(\w+)"), ChunkType.METHOD),
        (re.compile(r"^func\s+(\w+)"), ChunkType.FUNCTION),
        (re.compile(r"^type\s+(\w+)\s+(?:struct|interface)\b"), ChunkType.CLASS),
    ],
    "rust": [
        (re.compile(r"^\s*(?:pub(?:\([\w:]+\))?\s+)?(?:async\s+)?(?:const\s+)?(?:unsafe\s+)?"
                    r"(?:extern\s+\"\w+\"\s+)?fn\s+(\w+)"), ChunkType.FUNCTION),
        (re.compile(r"^\s*(?:pub(?:\([\w:]+\))?\s+)?(?:struct|trait|union)\s+(\w+)"), ChunkType.CLASS),
        (re.compile(r"^\s*(?:pub(?:\([\w:]+\))?\s+)?enum\s+(\w+)"), ChunkType.ENUM),
        (re.compile(r"^\s*(?:unsafe\s+)?impl\b(?:<[^>]*>)?\s+(?:[\w:<>]+\s+for\s+)?([\w:]+)"), ChunkType.CLASS),
        (re.compile(r"^\s*(?:pub(?:\([\w:]+\))?\s+)?mod\s+(\w+)\s*\{"), ChunkType.MODULE),
    ],
    "kotlin": [
        (_ENUM, ChunkType.ENUM),
        (_CLASS, ChunkType.CLASS),
        (re.compile(r"^\s*" + _ANNOT + _MODS + r"fun\s+(?:<[^>]*>\s*)?(?:[\w.]+\.)?(\w+)\s*\("), ChunkType.FUNCTION),
    ],
    "swift": [
        (_ENUM, ChunkType.ENUM),
        (re.compile(r"^\s*" + _ANNOT + _MODS + r"(?:class|struct|protocol|extension|actor)\s+(\w+)"), ChunkType.CLASS),
        (re.compile(r"^\s*" + _ANNOT + _MODS + r"(?:func\s+(\w+)|(init)\??\s*\()"), ChunkType.FUNCTION),
    ],
    "scala": [
        (_CLASS, ChunkType.CLASS),
        (re.compile(r"^\s*" + _ANNOT + _MODS + r"def\s+(\w+)"), ChunkType.FUNCTION),
    ],
    "php": [
        (_CLASS, ChunkType.CLASS),
        (_ENUM, ChunkType.ENUM),
        (re.compile(r"^\s*" + _MODS + r"function\s+&?(\w+)\s*\("), ChunkType.FUNCTION),
    ],
    "ruby": [
        (re.compile(r"^\s*class\s+([\w:]+)"), ChunkType.CLASS),
        (re.compile(r"^\s*module\s+([\w:]+)"), ChunkType.MODULE),
        (re.compile(r"^\s*def\s+(?:self\.)?(\w+[?!=]?)"), ChunkType.FUNCTION),
    ],
}
for _lang in ("java", "csharp", "c", "cpp"):
    LANGUAGE_PATTERNS[_lang] = [
        (_NAMESPACE, ChunkType.MODULE),
        (_ENUM, ChunkType.ENUM),
        (_CLASS, ChunkType.CLASS),
        (_TYPED_FUNCTION, ChunkType.FUNCTION),
    ]

_BODY_SEARCH_LINES = 8
_RUBY_OPENERS = re.compile(r"^\s*(?:def|class|module|if|unless|while|until|case|begin|for)\b|\bdo(?:\s*\|[^|]*\|)?\s*$")


class PatternChunker(SyntaxChunker):
    """Declaration detection by per-language regular expressions."""

    strategy_name = "pattern-based"
    supported_languages = frozenset(LANGUAGE_PATTERNS)
    default_chunk_size = 100
    default_overlap = 5

    def extract(
        self,
        content: str,
        lines: list[str],
        file_path: str,
        resolved: ResolvedOptions,
    ) -> list[CodeChunk]:
        language = detect_language(file_path)
        patterns = LANGUAGE_PATTERNS.get(language)
        if patterns is None:
            raise UnsupportedLanguageError(language, self.strategy_name)

        masked = mask_source(content, profile_for(language))
        masked_lines = masked.split("\n")[: len(lines)]
        imports = extract_imports(content, language)

        spans: list[tuple[int, int, ChunkType, str]] = []
        for index, line in enumerate(masked_lines):
            match = self._match(line, patterns)
            if match is None:
                continue
            kind, name = match
            if language == "ruby":
                end = self._ruby_end(masked_lines, index)
            else:
                end = self._brace_end(masked_lines, index)
            if end is None:
                continue
            spans.append((index, end, kind, name))

        class_spans = [(s, e, n) for s, e, k, n in spans if k == ChunkType.CLASS]
        chunks: list[CodeChunk] = []
        for start, end, kind, name in spans:
            if end - start + 1 < resolved.min_lines:
                continue
            parent = self._enclosing(class_spans, start, end)
            if kind == ChunkType.FUNCTION and parent is not None:
                kind = ChunkType.METHOD
            text = "\n".join(lines[start : end + 1])
            masked_text = "\n".join(masked_lines[start : end + 1])
            metadata = {
                "strategy": self.strategy_name,
                "name": name,
                "imports": imports,
                "has_comments": has_comments(text),
            }
            if parent:
                metadata["parent"] = parent
            chunks.append(
                CodeChunk.create(
                    file_path=file_path,
                    content=text,
                    language=language,
                    start_line=start + 1,
                    end_line=end + 1,
                    chunk_type=kind,
                    complexity_score=complexity_score(masked_text, language),
                    dependencies=extract_dependencies(text, masked_text, language, exclude=[name]),
                    metadata=metadata,
                )
            )
        return chunks

    @staticmethod
    def _match(line: str, patterns: list[tuple[re.Pattern, ChunkType]]) -> Optional[tuple[ChunkType, str]]:
        if line.rstrip().endswith(";"):
            return None  # declaration without a body
        for pattern, kind in patterns:
            match = pattern.match(line)
            if not match:
                continue
            name = next((g for g in match.groups() if g), "")
            first_word = line.split()[0] if line.split() else ""
            if name in CONTROL_WORDS or first_word in CONTROL_WORDS:
                return None
            return kind, name
        return None

    @staticmethod
    def _brace_end(masked_lines: list[str], start: int) -> Optional[int]:
        """Index of the line closing the block opened at or after ``start``."""
        depth = 0
        opened = False
        for index in range(start, len(masked_lines)):
            for ch in masked_lines[index]:
                if ch == "{":
                    depth += 1
                    opened = True
                elif ch == "}":
                    depth -= 1
                    if opened and depth == 0:
                        return index
                elif ch == ";" and not opened and depth == 0:
                    return None
            if not opened and index - start >= _BODY_SEARCH_LINES:
                return None
        return len(masked_lines) - 1 if opened else None

    @staticmethod
    def _ruby_end(masked_lines: list[str], start: int) -> Optional[int]:
        depth = 0
        for index in range(start, len(masked_lines)):
            stripped = masked_lines[index].strip()
            if _RUBY_OPENERS.search(masked_lines[index]):
                depth += 1
            if stripped == "end" or stripped.startswith("end ") or stripped.startswith("end."):
                depth -= 1
                if depth == 0:
                    return index
        return None

    @staticmethod
    def _enclosing(class_spans: list[tuple[int, int, str]], start: int, end: int) -> Optional[str]:
        best: Optional[tuple[int, int, str]] = None
        for c_start, c_end, c_name in class_spans:
            if c_start < start and end <= c_end:
                if best is None or c_start > best[0]:
                    best = (c_start, c_end, c_name)
        return best[2] if best else None
