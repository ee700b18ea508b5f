"""
Text heuristics shared by the chunking strategies.

Complexity and call-site extraction operate on masked source (see
``outline.mask_source``) so keywords inside strings and comments are
never counted. Import extraction reads the raw text because module
specifiers live inside string literals.
"""

from __future__ import annotations

import re
from typing import Iterable

from .models import ChunkType
from .outline import CONTROL_WORDS

_C_DECISIONS = re.compile(r"\b(?:if|for|foreach|while|do|switch|catch|except|case|guard|unless|until|rescue|elif)\b")
_TERNARY = re.compile(r"\s\?\s")
_LOGICAL = re.compile(r"&&|\|\|")
_WORD_LOGICAL = re.compile(r"\b(?:and|or)\b")

_WORD_LOGICAL_LANGUAGES = frozenset({"python", "ruby", "php"})


def complexity_score(masked: str, language: str = "") -> int:
    """Decision-point count starting from a base of 1."""
    score = 1
    score += len(_C_DECISIONS.findall(masked))
    score += len(_TERNARY.findall(masked))
    score += len(_LOGICAL.findall(masked))
    if language in _WORD_LOGICAL_LANGUAGES:
        score += len(_WORD_LOGICAL.findall(masked))
    return score


_IMPORT_PATTERNS: dict[str, list[re.Pattern]] = {
    "javascript": [
        re.compile(r"^\s*(?:import|export)\b[^'\"]*?from\s*['\"]([^'\"]+)['\"]", re.M),
        re.compile(r"^\s*import\s*['\"]([^'\"]+)['\"]", re.M),
        re.compile(r"\brequire\s*\(\s*['\"]([^'\"]+)['\"]\s*\)"),
        re.compile(r"\bimport\s*\(\s*['\"]([^'\"]+)['\"]\s*\)"),
    ],
    "dart": [re.compile(r"^\s*(?:import|export|part)\s+['\"]([^'\"]+)['\"]", re.M)],
    "python": [
        re.compile(r"^\s*import\s+([\w.]+)", re.M),
        re.compile(r"^\s*from\s+([\w.]+)\s+import\b", re.M),
    ],
    "go": [
        re.compile(r"^\s*import\s+(?:\w+\s+)?\"([^\"]+)\"", re.M),
        re.compile(r"^\s+(?:\w+\s+)?\"([^\"]+)\"\s*$", re.M),
    ],
    "rust": [re.compile(r"^\s*(?:pub\s+)?use\s+([\w:]+)", re.M)],
    "java": [re.compile(r"^\s*import\s+(?:static\s+)?([\w.*]+)\s*;", re.M)],
    "kotlin": [re.compile(r"^\s*import\s+([\w.*]+)", re.M)],
    "scala": [re.compile(r"^\s*import\s+([\w.*{}, ]+)", re.M)],
    "swift": [re.compile(r"^\s*import\s+(\w+)", re.M)],
    "csharp": [re.compile(r"^\s*using\s+(?:static\s+)?([\w.]+)\s*;", re.M)],
    "c": [re.compile(r"^\s*#\s*include\s*[<\"]([^>\"]+)[>\"]", re.M)],
    "php": [
        re.compile(r"^\s*use\s+([\w\\]+)", re.M),
        re.compile(r"\b(?:require|include)(?:_once)?\s*\(?\s*['\"]([^'\"]+)['\"]"),
    ],
    "ruby": [re.compile(r"^\s*require(?:_relative)?\s+['\"]([^'\"]+)['\"]", re.M)],
}
_IMPORT_PATTERNS["typescript"] = _IMPORT_PATTERNS["javascript"]
_IMPORT_PATTERNS["cpp"] = _IMPORT_PATTERNS["c"]

_GO_IMPORT_BLOCK = re.compile(r"^\s*import\s*\(([^)]*)\)", re.M)
_GO_BLOCK_ENTRY = re.compile(r"\"([^\"]+)\"")

_CALL = re.compile(r"(?<![\w$])([A-Za-z_$][\w$]*)\s*(?:<[\w\s,<>?]*>)?\s*\(")

_NOT_CALLS = CONTROL_WORDS | frozenset(
    {
        "function", "func", "fn", "fun", "def", "class", "super", "this", "self",
        "print", "assert", "not", "and", "or", "elif", "except", "lambda", "import",
        "require", "void", "int", "double", "bool", "String", "var", "final", "const",
    }
)

MAX_CALL_TARGETS = 25


def _unique(items: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            result.append(item)
    return result


def extract_imports(text: str, language: str) -> list[str]:
    """Module specifiers referenced by import/require statements."""
    found: list[str] = []
    for pattern in _IMPORT_PATTERNS.get(language, ()):
        if language == "go" and pattern.pattern.startswith(r"^\s+"):
            for block in _GO_IMPORT_BLOCK.findall(text):
                found.extend(_GO_BLOCK_ENTRY.findall(block))
            continue
        found.extend(m.strip() for m in pattern.findall(text))
    return _unique(found)


def extract_call_targets(masked: str, exclude: Iterable[str] = ()) -> list[str]:
    """Names that appear in call position, in first-seen order."""
    skip = set(_NOT_CALLS) | set(exclude)
    targets = (name for name in _CALL.findall(masked) if name not in skip)
    return _unique(targets)[:MAX_CALL_TARGETS]


def extract_dependencies(text: str, masked: str, language: str, exclude: Iterable[str] = ()) -> list[str]:
    return _unique(extract_imports(text, language) + extract_call_targets(masked, exclude))


# ─── Line boundary rules ────────────────────────────────────────────────────

_CLOSERS = frozenset({"}", "};", "});", "})", "},", "]", "];", ")", ");", "end"})
_IMPORT_LINE = re.compile(
    r"^(?:import|export|from|package|library|part|use|using|require|#\s*include)\b"
)
_TOP_LEVEL_DECL = re.compile(
    r"^(?:@\w+\s*)?(?:(?:abstract|sealed|base|final|export|default|public|private|protected|"
    r"internal|pub|static|async|declare|data|open)\s+)*"
    r"(?:class|enum|typedef|mixin|extension|interface|struct|trait|impl|def|fn|func|fun|"
    r"function|type|namespace|module|mod)\b"
)
_IMPORT_STATEMENT = re.compile(
    r"^(?:import\b|export\s*(?:\*|\{|['\"])|library\b|part\b|package\b|require\b|from\s+\S+\s+import\b|"
    r"(?:const|let|var)\s+\w+\s*=\s*require\()"
)
_BARE_DECLARATION = re.compile(r"^(?:const|var|final|late|let)\s+[\w<>?,\s]+;?$")
_TYPED_SIGNATURE = re.compile(
    r"^[A-Za-z_][\w<>?,\[\] ]*\s+[A-Za-z_]\w*\s*\([^;]*\)\s*(?:async\*?|sync\*)?\s*\{?\s*$"
)
_OPEN_CONDITION = re.compile(r"^(?:if|for|while|do|switch|elif|else\s+if)\b\s*\(?")
_DANGLING_ENDINGS = ("&&", "||", "??", "=", "+", "-", "*", ",", "(", "[", "=>", ".", " and", " or", "\\")
_CONTINUATION_STARTS = ("&&", "||", "??", "?.", ".", ":", "?", "+", "-")


def is_import_line(stripped: str) -> bool:
    return bool(_IMPORT_STATEMENT.match(stripped))


def is_good_boundary(line: str) -> bool:
    """A line after which a chunk may end cleanly."""
    stripped = line.strip()
    if not stripped:
        return True
    if stripped in _CLOSERS:
        return True
    if _IMPORT_LINE.match(stripped):
        return True
    if line[:1].isspace():
        return False
    if _TOP_LEVEL_DECL.match(stripped):
        return True
    if _BARE_DECLARATION.match(stripped) and "=" not in stripped:
        return True
    return bool(_TYPED_SIGNATURE.match(stripped))


def is_bad_cut(line: str) -> bool:
    """A line that leaves a statement or expression unfinished."""
    stripped = line.strip()
    if not stripped:
        return False
    if "(" in stripped and ")" not in stripped and not stripped.endswith(";"):
        return True
    if stripped.endswith(_DANGLING_ENDINGS) or stripped.startswith(_CONTINUATION_STARTS):
        return True
    if "?." in stripped or "??" in stripped:
        return True
    if (stripped.count('"""') % 2 == 1) or (stripped.count("'''") % 2 == 1):
        return True
    if _OPEN_CONDITION.match(stripped) and ")" not in stripped and "{" not in stripped and ":" not in stripped:
        return True
    return False


def find_boundary(lines: list[str], window_end: int, floor: int) -> int:
    """
    Pick an exclusive end index for a chunk ending at or before ``window_end``.

    Scans backward from the window end for a good boundary; failing that,
    ends the chunk just before the last line that leaves a statement
    open. Never returns less than ``floor``.
    """
    for i in range(window_end - 1, floor - 2, -1):
        if i < 0:
            break
        if is_good_boundary(lines[i]) and i + 1 >= floor:
            return i + 1

    for i in range(window_end - 1, floor - 1, -1):
        if is_bad_cut(lines[i]):
            return i
    return window_end


# ─── Line-window classification ─────────────────────────────────────────────

_CLASS_LINE = re.compile(r"^\s*(?:@\w+\s*)?(?:(?:abstract|sealed|export|public|pub|data|open)\s+)*(?:class|interface|struct|trait|mixin)\s+\w+")
_ENUM_LINE = re.compile(r"^\s*(?:(?:export|public|pub)\s+)*enum\s+\w+")
_TYPEDEF_LINE = re.compile(r"^\s*(?:export\s+)?(?:typedef|type)\s+\w+.*=")
_FUNCTION_LINE = re.compile(
    r"^\s*(?:(?:export|async|public|private|protected|static|pub|override)\s+)*"
    r"(?:function\b|def\s+\w+|fn\s+\w+|func\s+|fun\s+\w+|[A-Za-z_][\w<>?,\[\] ]*\s+\w+\s*\([^;]*\)\s*(?:async)?\s*\{)"
)


def infer_chunk_type(lines: list[str]) -> ChunkType:
    """Best-effort type for a line window, from its first significant line."""
    significant = [ln for ln in lines if ln.strip()]
    if not significant:
        return ChunkType.BLOCK
    if all(is_import_line(ln.strip()) for ln in significant):
        return ChunkType.MODULE
    for line in significant[:5]:
        if _CLASS_LINE.match(line):
            return ChunkType.CLASS
        if _ENUM_LINE.match(line):
            return ChunkType.ENUM
        if _TYPEDEF_LINE.match(line):
            return ChunkType.TYPEDEF
        if _FUNCTION_LINE.match(line):
            words = line.strip().split("(", 1)[0].split()
            name = words[-1] if words else ""
            if name not in CONTROL_WORDS:
                return ChunkType.METHOD if line[:1].isspace() else ChunkType.FUNCTION
    return ChunkType.BLOCK


_COMMENT_LINE = re.compile(r"(?m)^\s*(?://|#(?!\s*include)|/\*|\*|<!--)")


def has_comments(text: str) -> bool:
    return bool(_COMMENT_LINE.search(text))
