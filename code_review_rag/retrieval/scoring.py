"""
Hybrid scoring: semantic similarity blended with heuristic signals.

``total = Σ factor × weight`` over semantic similarity, recency, file
importance, code quality and textual relevance, plus any per-query custom
factors, clamped to [0, 1]. Weights are used as given; callers that
override them are responsible for keeping the sum at 1.

The recency decay and the file keyword tables are tunable defaults, not
calibrated constants.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from ..chunking.models import ChunkType
from .models import RetrievalQuery, RetrievedChunk, ScoringOverrides

LOG = logging.getLogger("code_review_rag.retrieval.scoring")

FILE_NAME_IMPORTANCE: List[tuple[tuple[str, ...], float]] = [
    (("component", "comp"), 1.0),
    (("service", "svc"), 0.95),
    (("util", "helper", "lib"), 0.9),
    (("model", "entity", "dto"), 0.9),
    (("config", "conf"), 0.7),
    (("test", "spec"), 0.6),
]
DIRECTORY_IMPORTANCE: List[tuple[tuple[str, ...], float]] = [
    (("component", "ui", "view"), 0.9),
    (("service", "business"), 0.85),
    (("util", "common"), 0.8),
    (("model", "entity"), 0.8),
    (("config",), 0.6),
]
ENTRY_POINT_NAMES = {"index.ts", "main.ts", "app.ts", "main.dart", "main.py", "__main__.py", "app.py", "main.go"}
ENTRY_POINT_IMPORTANCE = 0.95
DEFAULT_IMPORTANCE = 0.5

CHUNK_TYPE_QUALITY: Dict[ChunkType, float] = {
    ChunkType.CLASS: 0.15,
    ChunkType.FUNCTION: 0.1,
    ChunkType.METHOD: 0.05,
    ChunkType.MODULE: 0.1,
    ChunkType.STATEMENT: 0.02,
}
NAMED_TYPES = {ChunkType.FUNCTION, ChunkType.CLASS, ChunkType.METHOD}

UNKNOWN_RECENCY = 0.5


@dataclass
class ScoringWeights:
    semantic: float = 0.7
    recency: float = 0.2
    file_importance: float = 0.1
    code_quality: float = 0.0
    relevance: float = 0.0
    custom: Dict[str, float] = field(default_factory=dict)

    def apply(self, overrides: Optional[ScoringOverrides]) -> "ScoringWeights":
        """Return a copy with the set fields of ``overrides`` applied."""
        if overrides is None:
            return replace(self, custom=dict(self.custom))
        return ScoringWeights(
            semantic=_pick(overrides.semantic_weight, self.semantic),
            recency=_pick(overrides.recency_weight, self.recency),
            file_importance=_pick(overrides.file_importance_weight, self.file_importance),
            code_quality=_pick(overrides.code_quality_weight, self.code_quality),
            relevance=_pick(overrides.relevance_weight, self.relevance),
            custom={**self.custom, **overrides.custom_weights},
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "semantic": self.semantic,
            "recency": self.recency,
            "file_importance": self.file_importance,
            "code_quality": self.code_quality,
            "relevance": self.relevance,
            "custom": dict(self.custom),
        }


def _pick(value: Optional[float], default: float) -> float:
    return default if value is None else value


@dataclass
class ScoringFactors:
    semantic: float
    recency: float
    file_importance: float
    code_quality: float
    relevance: float
    custom: Dict[str, float] = field(default_factory=dict)


@dataclass
class HybridScore:
    total_score: float
    factors: ScoringFactors
    weights: ScoringWeights
    breakdown: Dict[str, float] = field(default_factory=dict)


@dataclass
class ScoringConfig:
    weights: ScoringWeights = field(default_factory=ScoringWeights)
    recency_decay: float = 0.9
    complexity_bonus: float = 0.1


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _terms(text: str) -> List[str]:
    return [t for t in re.split(r"\s+", text.lower()) if t]


class HybridScorer:
    """Scores and ranks retrieved chunks."""

    def __init__(
        self,
        config: Optional[ScoringConfig] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or ScoringConfig()
        self._clock = clock
        self.log = logger or LOG

    # ─── Factors ──────────────────────────────────────────────────────────

    def recency(self, created_at: Optional[str]) -> float:
        """``decay ^ (days / 30)``; 0.5 when the date is missing or unparseable."""
        if not created_at:
            return UNKNOWN_RECENCY
        try:
            created = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        except ValueError:
            self.log.warning("Unparseable creation date %r; using neutral recency", created_at)
            return UNKNOWN_RECENCY
        if created.tzinfo is None:
            created = created.replace(tzinfo=timezone.utc)
        days = max(0.0, (self._clock() - created).total_seconds() / 86400)
        return _clamp(self.config.recency_decay ** (days / 30))

    @staticmethod
    def file_importance(file_path: str) -> float:
        parts = file_path.replace("\\", "/").lower().split("/")
        name = parts[-1]
        directory = parts[-2] if len(parts) > 1 else ""

        score = DEFAULT_IMPORTANCE
        for keywords, value in FILE_NAME_IMPORTANCE:
            if any(k in name for k in keywords):
                score = max(score, value)
                break
        for keywords, value in DIRECTORY_IMPORTANCE:
            if any(k in directory for k in keywords):
                score = max(score, value)
                break
        if name in ENTRY_POINT_NAMES:
            score = max(score, ENTRY_POINT_IMPORTANCE)
        return _clamp(score)

    def code_quality(self, chunk: RetrievedChunk) -> float:
        score = 0.5
        if 0 < chunk.complexity_score < 10:
            score += self.config.complexity_bonus * 0.5
        elif 10 <= chunk.complexity_score < 20:
            score += self.config.complexity_bonus * 0.2
        if chunk.dependencies:
            score += 0.1
        if chunk.imports:
            score += 0.1
        score += CHUNK_TYPE_QUALITY.get(chunk.chunk_type, 0.0)
        return _clamp(score)

    @staticmethod
    def relevance(chunk: RetrievedChunk, text: Optional[str]) -> float:
        if not text:
            return 0.5
        terms = _terms(text)
        if not terms:
            return 0.5
        content = chunk.content.lower()
        matched = sum(1 for t in terms if t in content)
        if matched == len(terms):
            score = 0.9
        else:
            score = matched / len(terms) * 0.7
        file_name = chunk.file_path.lower()
        if any(t in file_name for t in terms):
            score += 0.1
        if chunk.chunk_type in NAMED_TYPES:
            score += 0.05
        return _clamp(score)

    @staticmethod
    def custom_factors(chunk: RetrievedChunk, query: RetrievalQuery) -> Dict[str, float]:
        factors: Dict[str, float] = {}
        if query.text:
            terms = _terms(query.text)
            content = chunk.content.lower()
            factors["query_term_match"] = sum(1 for t in terms if t in content) / len(terms) if terms else 0.0
        if query.filter and query.filter.languages:
            language = chunk.language.lower()
            factors["language_match"] = 1.0 if any(l.lower() in language for l in query.filter.languages) else 0.0
        if query.filter and query.filter.files:
            factors["file_match"] = 1.0 if any(f in chunk.file_path for f in query.filter.files) else 0.0
        return factors

    # ─── Scoring ──────────────────────────────────────────────────────────

    def factors(self, chunk: RetrievedChunk, semantic_score: float, query: RetrievalQuery) -> ScoringFactors:
        return ScoringFactors(
            semantic=semantic_score,
            recency=self.recency(chunk.created_at),
            file_importance=self.file_importance(chunk.file_path),
            code_quality=self.code_quality(chunk),
            relevance=self.relevance(chunk, query.text),
            custom=self.custom_factors(chunk, query),
        )

    def score(self, chunk: RetrievedChunk, semantic_score: float, query: RetrievalQuery) -> HybridScore:
        factors = self.factors(chunk, semantic_score, query)
        weights = self.config.weights.apply(query.scoring)

        breakdown = {
            "semantic": factors.semantic * weights.semantic,
            "recency": factors.recency * weights.recency,
            "file_importance": factors.file_importance * weights.file_importance,
            "code_quality": factors.code_quality * weights.code_quality,
            "relevance": factors.relevance * weights.relevance,
        }
        for name, value in factors.custom.items():
            breakdown[name] = value * weights.custom.get(name, 0.0)

        return HybridScore(
            total_score=_clamp(sum(breakdown.values())),
            factors=factors,
            weights=weights,
            breakdown=breakdown,
        )

    def score_chunks(
        self,
        chunks: Sequence[RetrievedChunk],
        semantic_scores: Sequence[float],
        query: RetrievalQuery,
    ) -> List[RetrievedChunk]:
        """
        Copies of ``chunks`` carrying their hybrid score, in input order.

        Raises:
            ValueError: if the two sequences differ in length
        """
        if len(chunks) != len(semantic_scores):
            raise ValueError(
                f"Chunks and semantic scores must have the same length ({len(chunks)} != {len(semantic_scores)})"
            )
        scored = []
        for chunk, semantic in zip(chunks, semantic_scores):
            semantic = semantic or 0.0
            total = self.score(chunk, semantic, query).total_score
            scored.append(replace(chunk, score=total, semantic_score=semantic, hybrid_score=total))
        return scored

    def sort_by_score(self, scored: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
        """Descending by score; ties keep their input order."""
        ranked = sorted(scored, key=lambda c: c.score, reverse=True)
        if ranked:
            self.log.debug(
                "Ranked %d chunks; top score %.3f, mean %.3f",
                len(ranked), ranked[0].score, sum(c.score for c in ranked) / len(ranked),
            )
        return ranked

    def rank_chunks(
        self,
        chunks: Sequence[RetrievedChunk],
        semantic_scores: Sequence[float],
        query: RetrievalQuery,
    ) -> List[RetrievedChunk]:
        """Score every chunk and sort descending by total score."""
        return self.sort_by_score(self.score_chunks(chunks, semantic_scores, query))

    def explain_scoring(self, chunk: RetrievedChunk, semantic_score: float, query: RetrievalQuery) -> List[str]:
        """One line per factor: value and the weight applied to it."""
        result = self.score(chunk, semantic_score, query)
        f, w = result.factors, result.weights
        lines = [
            f"Total Score: {result.total_score:.3f}",
            f"Semantic Similarity: {f.semantic:.3f} (weight: {w.semantic})",
            f"Recency: {f.recency:.3f} (weight: {w.recency})",
            f"File Importance: {f.file_importance:.3f} (weight: {w.file_importance})",
            f"Code Quality: {f.code_quality:.3f} (weight: {w.code_quality})",
            f"Relevance: {f.relevance:.3f} (weight: {w.relevance})",
        ]
        for name, value in f.custom.items():
            lines.append(f"{name}: {value:.3f} (weight: {w.custom.get(name, 0.0)})")
        return lines
