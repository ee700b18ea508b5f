"""
Prior-review insights index.

Insights are findings from earlier reviews, anchored to a file and line.
Retrieval asks the index for a file's insights and attaches the ones
whose line range overlaps each returned chunk.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from ..embeddings.service import EmbeddingRequest, EmbeddingService
from ..errors import ValidationFailure
from ..store.schemas import ReviewInsightPayload, validate_payload
from ..store.vector_store import CollectionSchema, VectorPoint, VectorStore
from .models import ReviewInsight

LOG = logging.getLogger("code_review_rag.retrieval.insights")

DEFAULT_INSIGHTS_PER_FILE = 20


def to_insight(payload: ReviewInsightPayload) -> ReviewInsight:
    return ReviewInsight(
        category=payload.category,
        severity=payload.severity,
        summary=payload.summary,
        suggestion=payload.suggestion,
        file=payload.file,
        line=payload.line,
        end_line=payload.endLine,
    )


class InsightsIndex(ABC):
    """Source of prior review findings, queried by file."""

    @abstractmethod
    async def search(self, file_path: str, limit: int = DEFAULT_INSIGHTS_PER_FILE) -> List[ReviewInsight]:
        ...

    @abstractmethod
    async def add(self, insights: Iterable[ReviewInsightPayload]) -> int:
        """Store insights; returns how many were written."""


class InMemoryInsightsIndex(InsightsIndex):
    def __init__(self, insights: Optional[Iterable[ReviewInsightPayload]] = None):
        self._insights: List[ReviewInsightPayload] = list(insights or [])

    async def search(self, file_path: str, limit: int = DEFAULT_INSIGHTS_PER_FILE) -> List[ReviewInsight]:
        return [to_insight(p) for p in self._insights if p.file == file_path][:limit]

    async def add(self, insights: Iterable[ReviewInsightPayload]) -> int:
        before = len(self._insights)
        self._insights.extend(insights)
        return len(self._insights) - before


class VectorStoreInsightsIndex(InsightsIndex):
    """
    Insights kept in their own vector-store collection. Each insight is
    embedded by its summary so the collection can also be searched
    semantically; lookups by file use ``scroll``.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingService,
        collection: str = "review_insights",
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.collection = collection
        self.log = logger or LOG

    async def search(self, file_path: str, limit: int = DEFAULT_INSIGHTS_PER_FILE) -> List[ReviewInsight]:
        if not await self.store.collection_exists(self.collection):
            return []
        hits = await self.store.scroll(
            self.collection,
            {"must": [{"key": "file", "match": {"value": file_path}}]},
            limit=limit,
        )
        insights = []
        for hit in hits:
            try:
                payload = validate_payload(ReviewInsightPayload, hit.payload)
            except ValidationFailure as exc:
                self.log.warning("Dropping insight %s with invalid payload: %s", hit.id, exc.message)
                continue
            insights.append(to_insight(payload))
        return insights

    async def add(self, insights: Iterable[ReviewInsightPayload]) -> int:
        payloads = list(insights)
        if not payloads:
            return 0
        await self.store.ensure_collection(
            CollectionSchema(
                name=self.collection,
                vector_size=self.embedder.dimension(),
                payload_indexes={"file": "keyword", "category": "keyword", "severity": "keyword"},
            )
        )
        batch = await self.embedder.embed_batch(
            [EmbeddingRequest(p.id, f"{p.category} {p.severity}: {p.summary}") for p in payloads]
        )
        vectors = batch.vectors_by_id()
        points = [
            VectorPoint(id=p.id, vector=vectors[p.id], payload=p.model_dump(mode="json"))
            for p in payloads
            if p.id in vectors
        ]
        await self.store.upsert(self.collection, points)
        self.log.info("Stored %d/%d insights in %s", len(points), len(payloads), self.collection)
        return len(points)
