"""
Brace-structured outline parser.

Builds a lightweight syntax outline for C-family languages (Dart,
TypeScript, JavaScript, Java, Go, Rust, ...). Comments and string
literals are blanked out first, as are regex literals in TypeScript and
JavaScript, so that braces, keywords and call sites are only ever read
from real code; the remaining braces are matched into a tree of
``OutlineNode`` objects whose headers are then classified into
declarations.

The scanner is deliberately tolerant of what it does not understand,
but unbalanced braces after masking mean the outline would be wrong, so
they raise ``ParseFailure`` and the caller falls back to line chunking.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from ..errors import ParseFailure
from .models import ChunkType


@dataclass(frozen=True)
class SyntaxProfile:
    """Lexical conventions needed to mask comments and strings."""

    line_comments: tuple[str, ...] = ("//",)
    block_comment: Optional[tuple[str, str]] = ("/*", "*/")
    nested_block_comments: bool = False
    quotes: str = "\"'"
    triple_quotes: bool = False
    # Quote characters whose strings may contain ${...} interpolation
    interpolating_quotes: str = ""
    # Quote characters that may span lines
    multiline_quotes: str = ""
    raw_string_prefix: bool = False
    # ' starts a char literal only when it closes right away (Rust lifetimes)
    strict_char_literals: bool = False
    # /.../ is a regex literal where an operand may start
    regex_literals: bool = False


C_PROFILE = SyntaxProfile()

PROFILES: dict[str, SyntaxProfile] = {
    "dart": SyntaxProfile(
        nested_block_comments=True,
        triple_quotes=True,
        interpolating_quotes="\"'",
        raw_string_prefix=True,
    ),
    "typescript": SyntaxProfile(
        quotes="\"'`", interpolating_quotes="`", multiline_quotes="`", regex_literals=True
    ),
    "javascript": SyntaxProfile(
        quotes="\"'`", interpolating_quotes="`", multiline_quotes="`", regex_literals=True
    ),
    "java": C_PROFILE,
    "c": C_PROFILE,
    "cpp": C_PROFILE,
    "csharp": C_PROFILE,
    "go": SyntaxProfile(quotes="\"'`", multiline_quotes="`"),
    "rust": SyntaxProfile(nested_block_comments=True, quotes="\"'", strict_char_literals=True),
    "kotlin": SyntaxProfile(nested_block_comments=True, triple_quotes=True, interpolating_quotes="\""),
    "swift": SyntaxProfile(nested_block_comments=True, triple_quotes=True),
    "scala": SyntaxProfile(nested_block_comments=True, triple_quotes=True),
    "php": SyntaxProfile(line_comments=("//", "#")),
    "python": SyntaxProfile(line_comments=("#",), block_comment=None, triple_quotes=True),
    "ruby": SyntaxProfile(line_comments=("#",), block_comment=None),
}

_CHAR_LITERAL = re.compile(r"'(?:\\.|\\u\{[0-9a-fA-F]+\}|[^\\'\n])'")


def profile_for(language: str) -> SyntaxProfile:
    return PROFILES.get(language, C_PROFILE)


def mask_source(source: str, profile: SyntaxProfile) -> str:
    """
    Blank comments and string contents, preserving offsets and newlines.

    Quote delimiters are kept so that the shape of the code survives;
    everything between them, including interpolated expressions, becomes
    spaces.
    """
    out = list(source)
    n = len(source)
    i = 0

    def blank(start: int, end: int) -> None:
        for k in range(start, min(end, n)):
            if out[k] != "\n":
                out[k] = " "

    while i < n:
        ch = source[i]

        comment = next((c for c in profile.line_comments if source.startswith(c, i)), None)
        if comment is not None:
            end = source.find("\n", i)
            end = n if end == -1 else end
            blank(i, end)
            i = end
            continue

        if profile.block_comment and source.startswith(profile.block_comment[0], i):
            end = _block_comment_end(source, i, profile)
            blank(i, end)
            i = end
            continue

        if ch in profile.quotes:
            if ch == "'" and profile.strict_char_literals:
                match = _CHAR_LITERAL.match(source, i)
                if match is None:
                    i += 1  # lifetime or label
                    continue
                blank(i + 1, match.end() - 1)
                i = match.end()
                continue
            raw = profile.raw_string_prefix and i > 0 and source[i - 1] == "r" and (
                i < 2 or not (source[i - 2].isalnum() or source[i - 2] == "_")
            )
            end = _string_end(source, i, profile, raw)
            delimiter = 3 if profile.triple_quotes and source.startswith(ch * 3, i) else 1
            blank(i + delimiter, end - delimiter)
            i = end
            continue

        if ch == "/" and profile.regex_literals and _regex_allowed(out, i):
            close = _regex_end(source, i)
            if close is not None:
                blank(i + 1, close)
                i = close + 1
                continue

        i += 1

    return "".join(out)


_REGEX_PRECEDERS = frozenset("(,=:[!&|?{};+-*%<>~^")
_REGEX_KEYWORDS = frozenset(
    {"return", "typeof", "case", "do", "else", "in", "of", "new", "delete", "void", "throw", "yield", "await"}
)


def _regex_allowed(masked: list[str], i: int) -> bool:
    """Whether a ``/`` at ``i`` starts an operand rather than dividing."""
    j = i - 1
    while j >= 0 and masked[j].isspace():
        j -= 1
    if j < 0:
        return True
    prev = masked[j]
    if prev in "+-" and j > 0 and masked[j - 1] == prev:
        return False  # a++ / b
    if prev in _REGEX_PRECEDERS:
        return True
    if prev.isalnum() or prev in "_$":
        start = j
        while start > 0 and (masked[start - 1].isalnum() or masked[start - 1] in "_$"):
            start -= 1
        return "".join(masked[start : j + 1]) in _REGEX_KEYWORDS
    return False


def _regex_end(source: str, start: int) -> Optional[int]:
    """Index of the closing slash, or None when the line ends first."""
    in_class = False
    j = start + 1
    n = len(source)
    while j < n:
        c = source[j]
        if c == "\n":
            return None
        if c == "\\":
            j += 2
            continue
        if in_class:
            if c == "]":
                in_class = False
        elif c == "[":
            in_class = True
        elif c == "/":
            return j
        j += 1
    return None


def _block_comment_end(source: str, start: int, profile: SyntaxProfile) -> int:
    opener, closer = profile.block_comment  # type: ignore[misc]
    depth = 0
    i = start
    n = len(source)
    while i < n:
        if source.startswith(opener, i):
            depth += 1
            i += len(opener)
            if not profile.nested_block_comments and depth > 1:
                depth = 1
            continue
        if source.startswith(closer, i):
            depth -= 1
            i += len(closer)
            if depth == 0:
                return i
            continue
        i += 1
    return n


def _string_end(source: str, start: int, profile: SyntaxProfile, raw: bool) -> int:
    """Offset just past the string literal opening at ``start``."""
    n = len(source)
    quote = source[start]
    triple = profile.triple_quotes and source.startswith(quote * 3, start)
    closer = quote * 3 if triple else quote
    interpolating = quote in profile.interpolating_quotes and not raw
    multiline = triple or quote in profile.multiline_quotes
    i = start + len(closer)

    while i < n:
        ch = source[i]
        if ch == "\\" and not raw:
            i += 2
            continue
        if source.startswith(closer, i):
            return i + len(closer)
        if ch == "\n" and not multiline:
            return i  # unterminated single-line string
        if interpolating and source.startswith("${", i):
            i = _interpolation_end(source, i + 2, profile)
            continue
        i += 1
    return n


def _interpolation_end(source: str, start: int, profile: SyntaxProfile) -> int:
    depth = 0
    i = start
    n = len(source)
    while i < n:
        ch = source[i]
        if ch in profile.quotes:
            i = _string_end(source, i, profile, raw=False)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            if depth == 0:
                return i + 1
            depth -= 1
        i += 1
    return n


# ─── Outline tree ───────────────────────────────────────────────────────────


@dataclass
class OutlineNode:
    """One brace-delimited region and the code that introduces it."""

    header: str
    start_line: int
    end_line: int
    depth: int
    kind: Optional[ChunkType] = None
    name: str = ""
    children: list["OutlineNode"] = field(default_factory=list)

    @property
    def line_count(self) -> int:
        return self.end_line - self.start_line + 1


def build_outline(masked: str) -> list[OutlineNode]:
    """
    Match braces in masked source into a forest of outline nodes.

    A node's header is the code between the previous statement boundary
    (``;``, ``{`` or ``}``) and its opening brace, so annotations and
    multi-line signatures are part of the header.

    Raises:
        ParseFailure: on a closing brace without an opener or an opener
            that is never closed
    """
    line_starts = [0]
    for idx, ch in enumerate(masked):
        if ch == "\n":
            line_starts.append(idx + 1)

    def line_of(offset: int) -> int:
        lo, hi = 0, len(line_starts) - 1
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if line_starts[mid] <= offset:
                lo = mid
            else:
                hi = mid - 1
        return lo + 1

    roots: list[OutlineNode] = []
    # Inline braces (named parameters, literal arguments) are pushed as None
    stack: list[tuple[Optional[OutlineNode], int]] = []
    depth = 0
    paren_depth = 0
    segment_start = 0

    def enclosing() -> Optional[OutlineNode]:
        for node, _ in reversed(stack):
            if node is not None:
                return node
        return None

    for idx, ch in enumerate(masked):
        if ch == "(":
            paren_depth += 1
        elif ch == ")":
            paren_depth = max(0, paren_depth - 1)
        elif ch == ";":
            segment_start = idx + 1
        elif ch == "{":
            back = idx - 1
            while back >= 0 and masked[back].isspace():
                back -= 1
            previous = masked[back] if back >= 0 else ""
            if paren_depth > 0 and previous in ("(", ",", "[", ":", "=", "?", "{"):
                stack.append((None, idx))
                continue
            raw_header = masked[segment_start:idx]
            stripped = raw_header.lstrip()
            header_offset = segment_start + (len(raw_header) - len(stripped))
            node = OutlineNode(
                header=" ".join(stripped.split()),
                start_line=line_of(header_offset if stripped else idx),
                end_line=0,
                depth=depth,
            )
            stack.append((node, idx))
            depth += 1
            segment_start = idx + 1
        elif ch == "}":
            if not stack:
                raise ParseFailure(
                    f"Unbalanced closing brace at line {line_of(idx)}",
                    {"line": line_of(idx)},
                )
            closed, _ = stack.pop()
            if closed is None:
                continue
            depth -= 1
            closed.end_line = line_of(idx)
            parent = enclosing()
            if parent is not None:
                parent.children.append(closed)
            else:
                roots.append(closed)
            segment_start = idx + 1

    if stack:
        _, open_offset = stack[-1]
        raise ParseFailure(
            f"Unclosed brace opened at line {line_of(open_offset)}",
            {"line": line_of(open_offset)},
        )
    return roots


# ─── Header classification ──────────────────────────────────────────────────

CONTROL_WORDS = frozenset(
    {
        "if", "else", "for", "foreach", "while", "do", "switch", "try", "catch",
        "finally", "with", "synchronized", "return", "using", "lock", "when",
        "unsafe", "defer", "go", "select", "loop", "match", "new", "await",
        "throw", "yield", "case", "default", "in", "of", "typeof", "sizeof",
    }
)

_ANNOTATIONS = re.compile(r"^(?:(?:@[\w.$]+(?:\s*\((?:[^()]|\([^()]*\))*\))?|#!?\[[^\]]*\])\s*)+")
_ENUM = re.compile(r"\benum\s+(?:class\s+|struct\s+)?(\w+)")
_CLASS = re.compile(r"\b(?:class|interface|mixin|extension|struct|trait|protocol|object|record)\s+(\w+)")
_GO_TYPE = re.compile(r"^type\s+(\w+)\s+(?:struct|interface)\b")
_IMPL = re.compile(r"\bimpl\b(?:\s*<[^>]*>)?\s+([\w:]+)(?:<[^>]*>)?(?:\s+for\s+([\w:]+))?")
_MODULE = re.compile(r"\b(?:namespace|module|mod|declare\s+module)\s+([\w.'\"]+)")
_TYPEDEF = re.compile(r"\b(?:type|typedef)\s+(\w+)[^=]*=\s*$")
_FUNCTION_KEYWORD = re.compile(r"\bfunction\b\s*\*?\s*([\w$]*)")
_DECL_KEYWORD = re.compile(r"\b(?:func|fn|fun|def)\s+(?:\([^)]*\)\s*)?([\w$]+)")
_ARROW = re.compile(
    r"([\w$]+)\s*[:=]\s*(?:async\s*)?(?:\([^()]*\)|[\w$]+)\s*(?::\s*[^=]+)?=>\s*$"
)
_GETTER = re.compile(r"\b(?:get|set)\s+([\w$]+)\s*(?:\([^()]*\))?\s*$")
_CALLABLE_NAME = re.compile(r"([\w$]+(?:\.[\w$]+)?)\s*(?:<[^()]*>)?\s*$")


def _balanced_parens(text: str) -> bool:
    depth = 0
    for ch in text:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0


def classify_header(header: str, parent_kind: Optional[ChunkType]) -> tuple[Optional[ChunkType], str]:
    """
    Decide what declaration, if any, a brace header introduces.

    Returns:
        (chunk type, name); the type is None for plain blocks such as
        control flow, object literals and callbacks.
    """
    header = _ANNOTATIONS.sub("", header)
    if not header:
        return None, ""

    words = header.split()
    if words and words[0] in CONTROL_WORDS:
        return None, ""

    prefix = header.split("(", 1)[0]

    match = _ENUM.search(prefix)
    if match:
        return ChunkType.ENUM, match.group(1)

    match = _GO_TYPE.search(prefix)
    if match:
        return ChunkType.CLASS, match.group(1)

    match = _IMPL.search(prefix)
    if match:
        name = match.group(2) or match.group(1)
        return ChunkType.CLASS, name

    match = _CLASS.search(prefix)
    if match and "=" not in prefix[: match.start()]:
        return ChunkType.CLASS, match.group(1)

    match = _MODULE.search(prefix)
    if match and prefix.strip().split()[0] in ("namespace", "module", "mod", "declare", "pub", "export"):
        return ChunkType.MODULE, match.group(1).strip("'\"")

    match = _TYPEDEF.search(header)
    if match:
        return ChunkType.TYPEDEF, match.group(1)

    function_type = ChunkType.METHOD if parent_kind in (ChunkType.CLASS, ChunkType.ENUM) else ChunkType.FUNCTION

    match = _ARROW.search(header)
    if match:
        return function_type, match.group(1)

    if not _balanced_parens(header):
        return None, ""  # call with a callback argument

    match = _FUNCTION_KEYWORD.search(header)
    if match and "=" not in header[: match.start()].replace("=>", ""):
        return function_type, match.group(1) or "<anonymous>"

    match = _DECL_KEYWORD.search(header)
    if match:
        return function_type, match.group(1)

    match = _GETTER.search(header)
    if match and parent_kind is not None:
        return function_type, match.group(1)

    if "(" in header:
        before = header.split("(", 1)[0]
        if "=" in before or before.rstrip().endswith((".", "?", ":")):
            return None, ""
        match = _CALLABLE_NAME.search(before)
        if match:
            name = match.group(1)
            if name.split(".")[0] not in CONTROL_WORDS:
                return function_type, name

    return None, ""


def annotate(nodes: list[OutlineNode], parent_kind: Optional[ChunkType] = None) -> None:
    """Classify every node in place, passing container kinds down."""
    for node in nodes:
        node.kind, node.name = classify_header(node.header, parent_kind)
        container = node.kind if node.kind in (ChunkType.CLASS, ChunkType.ENUM, ChunkType.MODULE) else parent_kind
        annotate(node.children, container)
