"""
Translate a ``RetrievalFilter`` into a backend-neutral filter.

Inclusion lists become ``match any`` clauses under ``must``, exclusions
the same under ``must_not``, globs become anchored regex ``pattern``
clauses, numeric and date bounds become ``range`` clauses, and the
presence flags become ``is_empty`` predicates. Contradictions are
reported as warnings and left in place.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import RetrievalFilter

LOG = logging.getLogger("code_review_rag.retrieval.query_builder")


@dataclass
class FilterBuildResult:
    filter: Dict[str, Any] = field(default_factory=dict)
    applied_filters: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"filter": self.filter, "applied_filters": self.applied_filters, "warnings": self.warnings}


@dataclass
class Selectivity:
    score: int
    selectivity: str  # low | medium | high
    estimated_results: str  # few | moderate | many
    reasoning: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "selectivity": self.selectivity,
            "estimated_results": self.estimated_results,
            "reasoning": self.reasoning,
        }


_GLOB_SPECIAL = set(".^$+()|[]\\")


def glob_to_pattern(glob: str) -> str:
    """
    Compile a path glob to an anchored regex.

    ``**/`` matches zero or more directories, ``**`` anything, ``*`` and
    ``?`` stay within one path segment, and ``{a,b}`` is an alternation.
    """
    out = ["^"]
    index = 0
    in_group = False
    while index < len(glob):
        ch = glob[index]
        if glob.startswith("**/", index):
            out.append("(?:.*/)?")
            index += 3
            continue
        if glob.startswith("**", index):
            out.append(".*")
            index += 2
            continue
        if ch == "*":
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        elif ch == "{":
            out.append("(?:")
            in_group = True
        elif ch == "}" and in_group:
            out.append(")")
            in_group = False
        elif ch == "," and in_group:
            out.append("|")
        elif ch in _GLOB_SPECIAL or ch in "{}":
            out.append("\\" + ch)
        else:
            out.append(ch)
        index += 1
    out.append("$")
    return "".join(out)


def _any(key: str, values: List[Any]) -> Dict[str, Any]:
    return {"key": key, "match": {"any": list(values)}}


def _value(key: str, value: Any) -> Dict[str, Any]:
    return {"key": key, "match": {"value": value}}


def _clause_key(clause: Dict[str, Any]) -> Optional[str]:
    if "is_empty" in clause:
        return clause["is_empty"]["key"]
    return clause.get("key")


class QueryBuilder:
    """Builds vector-store filters from retrieval filters."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.log = logger or LOG

    def build_filter(self, retrieval_filter: Optional[RetrievalFilter]) -> FilterBuildResult:
        if retrieval_filter is None or retrieval_filter.is_empty():
            return FilterBuildResult(filter={}, warnings=["No filters specified"])

        f = retrieval_filter
        must: List[Dict[str, Any]] = []
        must_not: List[Dict[str, Any]] = []
        applied: List[str] = []
        warnings: List[str] = []

        if f.files:
            must.append(_value("file", f.files[0]) if len(f.files) == 1 else _any("file", f.files))
            applied.append(f"files: {len(f.files)} specified")
        for glob in f.file_patterns:
            must.append({"key": "file", "match": {"pattern": glob_to_pattern(glob)}})
        if f.file_patterns:
            applied.append(f"file_patterns: {len(f.file_patterns)} patterns")
        if f.exclude_files:
            must_not.append(_any("file", f.exclude_files))
            applied.append(f"exclude_files: {len(f.exclude_files)} excluded")
        for glob in f.exclude_patterns:
            must_not.append({"key": "file", "match": {"pattern": glob_to_pattern(glob)}})
        if f.exclude_patterns:
            applied.append(f"exclude_patterns: {len(f.exclude_patterns)} patterns")

        if f.languages:
            must.append(_any("language", f.languages))
            applied.append(f"languages: {', '.join(f.languages)}")
        if f.exclude_languages:
            must_not.append(_any("language", f.exclude_languages))
            applied.append(f"exclude_languages: {', '.join(f.exclude_languages)}")

        if f.chunk_types:
            types = [t.value for t in f.chunk_types]
            must.append(_any("chunkType", types))
            applied.append(f"chunk_types: {', '.join(types)}")
        if f.exclude_chunk_types:
            types = [t.value for t in f.exclude_chunk_types]
            must_not.append(_any("chunkType", types))
            applied.append(f"exclude_chunk_types: {', '.join(types)}")

        if f.created_after or f.created_before:
            bounds: Dict[str, str] = {}
            if f.created_after:
                bounds["gte"] = f.created_after.isoformat()
                applied.append(f"created_after: {bounds['gte']}")
            if f.created_before:
                bounds["lte"] = f.created_before.isoformat()
                applied.append(f"created_before: {bounds['lte']}")
            must.append({"key": "createdAt", "range": bounds})
            if f.created_after and f.created_before and f.created_after > f.created_before:
                warnings.append("created_after is later than created_before; no chunk can match")

        for key in ("commit", "branch", "author"):
            value = getattr(f, key)
            if value:
                must.append(_value(key, value))
                applied.append(f"{key}: {value}")

        if f.commit_range:
            warnings.append("Commit range filtering requires resolved commit ids; range not applied")
            applied.append(f"commit_range: {f.commit_range.start}..{f.commit_range.end}")

        if f.min_complexity is not None or f.max_complexity is not None:
            bounds_c: Dict[str, int] = {}
            if f.min_complexity is not None:
                bounds_c["gte"] = f.min_complexity
                applied.append(f"min_complexity: {f.min_complexity}")
            if f.max_complexity is not None:
                bounds_c["lte"] = f.max_complexity
                applied.append(f"max_complexity: {f.max_complexity}")
            must.append({"key": "complexityScore", "range": bounds_c})
            if f.min_complexity is not None and f.max_complexity is not None and f.min_complexity > f.max_complexity:
                warnings.append("min_complexity exceeds max_complexity; no chunk can match")

        for flag, key in (("has_dependencies", "dependencies"), ("has_imports", "imports")):
            value = getattr(f, flag)
            if value is None:
                continue
            (must_not if value else must).append({"is_empty": {"key": key}})
            applied.append(f"{flag}: {str(value).lower()}")

        for key, value in f.custom.items():
            if isinstance(value, dict):
                must.append({"key": key, **value})
            else:
                must.append(_value(key, value))
            applied.append(f"custom.{key}: {json.dumps(value, default=str)}")

        warnings.extend(self._conflicts(must, must_not))

        result: Dict[str, Any] = {}
        if must:
            result["must"] = must
        if must_not:
            result["must_not"] = must_not

        self.log.debug("Built filter: %d clauses applied, %d warnings", len(applied), len(warnings))
        return FilterBuildResult(filter=result, applied_filters=applied, warnings=warnings)

    @staticmethod
    def _conflicts(must: List[Dict[str, Any]], must_not: List[Dict[str, Any]]) -> List[str]:
        must_keys = {_clause_key(c) for c in must}
        warnings = []
        for key in sorted({_clause_key(c) for c in must_not} & must_keys - {None}):
            warnings.append(f"Conflicting filters on field: {key}")
        return warnings

    # ─── Convenience builders ─────────────────────────────────────────────

    def build_file_filter(self, file_path: str, extra: Optional[RetrievalFilter] = None) -> FilterBuildResult:
        return self.build_filter((extra or RetrievalFilter()).merged(files=[file_path]))

    def build_language_filter(self, language: str, extra: Optional[RetrievalFilter] = None) -> FilterBuildResult:
        return self.build_filter((extra or RetrievalFilter()).merged(languages=[language]))

    def build_commit_filter(self, commit: str, extra: Optional[RetrievalFilter] = None) -> FilterBuildResult:
        return self.build_filter((extra or RetrievalFilter()).merged(commit=commit))

    def build_directory_filter(self, directory: str, extra: Optional[RetrievalFilter] = None) -> FilterBuildResult:
        return self.build_filter((extra or RetrievalFilter()).merged(file_patterns=[directory_glob(directory)]))

    # ─── Diagnostics ──────────────────────────────────────────────────────

    @staticmethod
    def estimate_selectivity(filter: Dict[str, Any]) -> Selectivity:
        """
        Heuristic 0-100 breadth score of a built filter. Diagnostic only:
        it never changes what a query returns.
        """
        score = 0
        reasoning: List[str] = []
        for clause in filter.get("must", []):
            key = clause.get("key")
            match = clause.get("match", {})
            if key == "file" and "any" in match:
                score += 10 * len(match["any"])
                reasoning.append(f"Specific files: {len(match['any'])}")
            elif key == "file" and "value" in match:
                score += 5
                reasoning.append("Single file specified")
            elif key == "language":
                score += 20
                reasoning.append("Language filter applied")
            elif key == "commit":
                score += 15
                reasoning.append("Commit filter applied")
            elif key == "createdAt" and "range" in clause:
                score += 25
                reasoning.append("Date range filter applied")
        exclusions = len(filter.get("must_not", []))
        if exclusions:
            score += 5 * exclusions
            reasoning.append(f"{exclusions} exclusion filters")

        score = min(score, 100)
        if score <= 20:
            return Selectivity(score, "low", "few", reasoning)
        if score <= 50:
            return Selectivity(score, "medium", "moderate", reasoning)
        return Selectivity(score, "high", "many", reasoning)


def directory_glob(directory: str) -> str:
    return directory.rstrip("/") + "/**"
