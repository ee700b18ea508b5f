"""
Retrieval orchestrator.

One ``retrieve`` call walks a fixed sequence of stages::

    VALIDATING → EMBEDDING → FILTERING → SEARCHING → SCORING → RANKING
        → ENRICHING_INSIGHTS (optional) → DONE

and ends in FAILED if any stage raises. Calls share no mutable state
beyond the store, the embedding cache and the running statistics, so
independent queries may run concurrently.
"""

from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from ..config.settings import RetrievalSettings, VectorStoreSettings
from ..embeddings.service import EmbeddingService
from ..errors import StoreFailure, ValidationFailure
from ..store.retry import with_retry
from ..store.schemas import CodeChunkPayload, validate_payload
from ..store.vector_store import SearchHit, VectorStore
from .insights import DEFAULT_INSIGHTS_PER_FILE, InsightsIndex
from .models import (
    FileInsightSummary,
    RetrievalFilter,
    RetrievalQuery,
    RetrievalResult,
    RetrievedChunk,
    estimate_result_tokens,
    parse_query,
)
from .query_builder import FilterBuildResult, QueryBuilder, directory_glob
from .scoring import HybridScorer

LOG = logging.getLogger("code_review_rag.retrieval.service")

FILE_QUERY_TOP_K = 50


class RetrievalStage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    EMBEDDING = "embedding"
    FILTERING = "filtering"
    SEARCHING = "searching"
    SCORING = "scoring"
    RANKING = "ranking"
    ENRICHING_INSIGHTS = "enriching_insights"
    DONE = "done"
    FAILED = "failed"


@dataclass
class RetrievalStats:
    total_queries: int = 0
    failed_queries: int = 0
    total_time_ms: int = 0
    total_results: int = 0
    filter_usage: Counter = field(default_factory=Counter)
    collection_usage: Counter = field(default_factory=Counter)

    @property
    def average_processing_time_ms(self) -> float:
        return self.total_time_ms / self.total_queries if self.total_queries else 0.0

    @property
    def average_results(self) -> float:
        succeeded = self.total_queries - self.failed_queries
        return self.total_results / succeeded if succeeded else 0.0

    @property
    def error_rate(self) -> float:
        return self.failed_queries / self.total_queries if self.total_queries else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_queries": self.total_queries,
            "failed_queries": self.failed_queries,
            "average_processing_time_ms": self.average_processing_time_ms,
            "average_results": self.average_results,
            "error_rate": self.error_rate,
            "filter_usage": dict(self.filter_usage),
            "collection_usage": dict(self.collection_usage),
        }


StageListener = Callable[[RetrievalStage], None]
QueryInput = Union[RetrievalQuery, Dict[str, Any]]


class RetrievalService:
    """Embeds a query, searches the chunk collection, then scores and ranks."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Optional[EmbeddingService] = None,
        insights: Optional[InsightsIndex] = None,
        scorer: Optional[HybridScorer] = None,
        query_builder: Optional[QueryBuilder] = None,
        settings: Optional[RetrievalSettings] = None,
        store_settings: Optional[VectorStoreSettings] = None,
        on_stage: Optional[StageListener] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.insights = insights
        self.scorer = scorer or HybridScorer()
        self.query_builder = query_builder or QueryBuilder()
        self.settings = settings or RetrievalSettings()
        self.store_settings = store_settings or VectorStoreSettings()
        self.on_stage = on_stage
        self.log = logger or LOG
        self.stats = RetrievalStats()

    def _enter(self, stage: RetrievalStage) -> RetrievalStage:
        self.log.debug("Retrieval stage: %s", stage.value)
        if self.on_stage is not None:
            self.on_stage(stage)
        return stage

    def normalize(self, query: QueryInput) -> RetrievalQuery:
        """Validate and fill defaults: top_k, min_score, max_results = 2×top_k, collection."""
        parsed = parse_query(query)
        top_k = parsed.top_k or self.settings.top_k
        return parsed.model_copy(
            update={
                "top_k": top_k,
                "min_score": self.settings.min_score if parsed.min_score is None else parsed.min_score,
                "max_results": parsed.max_results or top_k * 2,
                "collection": parsed.collection or self.store_settings.chunks_collection,
                "include_insights": (
                    self.settings.include_insights if parsed.include_insights is None else parsed.include_insights
                ),
            }
        )

    async def retrieve(self, query: QueryInput) -> RetrievalResult:
        """
        Run one retrieval.

        Returns an empty result, not an error, when nothing matches.

        Raises:
            ValidationFailure: malformed query
            EmbeddingFailure: the query text could not be embedded
            StoreFailure: search failed after retries
        """
        started = time.monotonic()
        self.stats.total_queries += 1
        stage = RetrievalStage.IDLE
        try:
            stage = self._enter(RetrievalStage.VALIDATING)
            q = self.normalize(query)

            stage = self._enter(RetrievalStage.EMBEDDING)
            vector = await self._query_vector(q)

            stage = self._enter(RetrievalStage.FILTERING)
            built = self.query_builder.build_filter(q.filter)
            selectivity = self.query_builder.estimate_selectivity(built.filter)
            for warning in built.warnings:
                self.log.debug("Filter warning: %s", warning)

            stage = self._enter(RetrievalStage.SEARCHING)
            hits = await self._search(q, vector, built)
            result = RetrievalResult(
                query=q,
                applied_filters=built.applied_filters,
                filter_warnings=built.warnings,
                selectivity=selectivity.to_dict(),
            )

            if hits:
                stage = self._enter(RetrievalStage.SCORING)
                chunks = self._to_chunks(hits)
                scored = self.scorer.score_chunks(chunks, [c.semantic_score for c in chunks], q)

                stage = self._enter(RetrievalStage.RANKING)
                ranked = self.scorer.sort_by_score(scored)[: q.top_k]
                if not q.include_content:
                    ranked = [replace(c, content="") for c in ranked]
                result.chunks = ranked

                if q.include_insights and self.insights is not None and result.chunks:
                    stage = self._enter(RetrievalStage.ENRICHING_INSIGHTS)
                    result.insights = await self._enrich(result.chunks)

            result.estimated_tokens = estimate_result_tokens(result.chunks)
            result.processing_time_ms = int((time.monotonic() - started) * 1000)
            self._enter(RetrievalStage.DONE)
        except Exception:
            self._fail(stage, started)
            raise

        self.stats.total_time_ms += result.processing_time_ms
        self.stats.total_results += result.total_chunks
        self.stats.collection_usage[q.collection] += 1
        for applied in result.applied_filters:
            self.stats.filter_usage[applied.split(":", 1)[0]] += 1
        self.log.info(
            "Retrieved %d chunks (~%d tokens) in %dms",
            result.total_chunks, result.estimated_tokens, result.processing_time_ms,
        )
        return result

    def _fail(self, stage: RetrievalStage, started: float) -> None:
        self.stats.failed_queries += 1
        self.stats.total_time_ms += int((time.monotonic() - started) * 1000)
        self._enter(RetrievalStage.FAILED)
        self.log.error("Retrieval failed during %s", stage.value)

    async def _query_vector(self, q: RetrievalQuery) -> List[float]:
        if q.query_vector is not None:
            return q.query_vector
        if self.embedder is None:
            raise ValidationFailure(
                "Text queries need an embedding service; pass query_vector instead",
                [{"loc": "text", "msg": "no embedder configured"}],
            )
        return await self.embedder.embed_query(q.text or "")

    async def _search(self, q: RetrievalQuery, vector: List[float], built: FilterBuildResult) -> List[SearchHit]:
        collection = q.collection or self.store_settings.chunks_collection
        if not await self.store.collection_exists(collection):
            self.log.warning("Collection %s does not exist; returning no results", collection)
            return []
        return await with_retry(
            "search",
            lambda: self.store.search(
                collection,
                vector,
                limit=q.max_results or (q.top_k or self.settings.top_k) * 2,
                filter=built.filter or None,
                score_threshold=q.min_score,
                with_payload=True,
            ),
            attempts=self.store_settings.retry_attempts,
            base_delay=self.store_settings.retry_base_delay,
            timeout=self.settings.search_timeout_seconds,
            logger=self.log,
        )

    def _to_chunks(self, hits: List[SearchHit]) -> List[RetrievedChunk]:
        chunks = []
        for hit in hits:
            try:
                payload = validate_payload(CodeChunkPayload, hit.payload)
            except ValidationFailure as exc:
                self.log.warning("Dropping hit %s with invalid payload: %s", hit.id, exc.message)
                continue
            chunks.append(chunk_from_payload(payload, hit.score))
        return chunks

    async def _enrich(self, chunks: List[RetrievedChunk]) -> List[FileInsightSummary]:
        summaries = []
        for file_path in dict.fromkeys(c.file_path for c in chunks):
            try:
                found = await with_retry(
                    "insights",
                    lambda: self.insights.search(file_path, DEFAULT_INSIGHTS_PER_FILE),
                    attempts=1,
                    timeout=self.settings.search_timeout_seconds,
                    logger=self.log,
                )
            except StoreFailure as exc:
                self.log.warning("Insights lookup failed for %s: %s", file_path, exc.message)
                continue
            if not found:
                continue
            summaries.append(
                FileInsightSummary(
                    file=file_path,
                    total_insights=len(found),
                    categories=dict(Counter(i.category for i in found)),
                    severities=dict(Counter(i.severity for i in found)),
                )
            )
            for chunk in chunks:
                if chunk.file_path == file_path:
                    chunk.insights = [i for i in found if i.overlaps(chunk.start_line, chunk.end_line)]
        return summaries

    # ─── Convenience variants ─────────────────────────────────────────────

    def _constrained(self, query: QueryInput, **constraint: Any) -> RetrievalQuery:
        parsed = parse_query(query)
        base = parsed.filter or RetrievalFilter()
        return parsed.model_copy(update={"filter": base.merged(**constraint)})

    async def retrieve_file_chunks(self, file_path: str, query: QueryInput) -> RetrievalResult:
        constrained = self._constrained(query, files=[file_path])
        if constrained.top_k is None:
            constrained = constrained.model_copy(update={"top_k": FILE_QUERY_TOP_K})
        return await self.retrieve(constrained)

    async def retrieve_language_chunks(self, language: str, query: QueryInput) -> RetrievalResult:
        return await self.retrieve(self._constrained(query, languages=[language]))

    async def retrieve_commit_chunks(self, commit: str, query: QueryInput) -> RetrievalResult:
        return await self.retrieve(self._constrained(query, commit=commit))

    async def retrieve_directory_chunks(self, directory: str, query: QueryInput) -> RetrievalResult:
        return await self.retrieve(self._constrained(query, file_patterns=[directory_glob(directory)]))

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.to_dict()


def chunk_from_payload(payload: CodeChunkPayload, score: float) -> RetrievedChunk:
    metadata: Dict[str, Any] = {"imports": list(payload.imports)}
    for key in ("name", "parent", "strategy", "branch", "repository"):
        value = getattr(payload, key)
        if value is not None:
            metadata[key] = value
    return RetrievedChunk(
        id=payload.chunkId,
        content=payload.content,
        language=payload.language,
        start_line=payload.startLine,
        end_line=payload.endLine,
        chunk_type=payload.chunkType,
        file_path=payload.file,
        complexity_score=payload.complexityScore,
        dependencies=list(payload.dependencies),
        metadata=metadata,
        score=score,
        semantic_score=score,
        commit=payload.commit,
        author=payload.author,
        created_at=payload.createdAt.isoformat(),
    )
