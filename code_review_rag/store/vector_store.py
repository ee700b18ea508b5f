"""
Abstract vector store interface with an in-memory backend.

The interface is async so remote backends can be awaited under a
timeout. ``InMemoryVectorStore`` keeps points in numpy arrays and ranks
by cosine similarity; it backs the tests and small local indexes. The
Qdrant backend lives in ``qdrant_store`` and is imported lazily by the
factory.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np

from ..config.settings import VectorStoreSettings
from .filters import matches_filter

LOG = logging.getLogger("code_review_rag.store.vector_store")

DISTANCES = ("cosine", "dot", "euclid")


@dataclass
class CollectionSchema:
    """What a collection stores: vector shape plus indexed payload keys."""

    name: str
    vector_size: int
    distance: str = "cosine"
    payload_indexes: Dict[str, str] = field(default_factory=dict)  # key -> keyword|integer|datetime|text

    def __post_init__(self) -> None:
        if self.vector_size < 1:
            raise ValueError(f"vector_size must be positive, got {self.vector_size}")
        if self.distance not in DISTANCES:
            raise ValueError(f"Unknown distance {self.distance!r}. Supported: {', '.join(DISTANCES)}")


@dataclass
class VectorPoint:
    """A point to upsert. Upserting an existing id replaces it."""

    id: str
    vector: List[float]
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SearchHit:
    """A single search or scroll result."""

    id: str
    score: float
    payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CollectionInfo:
    name: str
    points_count: int
    vector_size: int
    distance: str
    status: str = "green"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "points_count": self.points_count,
            "vector_size": self.vector_size,
            "distance": self.distance,
            "status": self.status,
        }


class VectorStore(ABC):
    """
    Abstract interface for vector storage and similarity search.

    Filters are backend-neutral dicts (see ``store.filters``).
    """

    @abstractmethod
    async def create_collection(self, schema: CollectionSchema) -> None:
        """Create a collection. No-op if it already exists."""

    @abstractmethod
    async def delete_collection(self, name: str) -> None:
        ...

    @abstractmethod
    async def collection_exists(self, name: str) -> bool:
        ...

    @abstractmethod
    async def upsert(self, collection: str, points: List[VectorPoint]) -> None:
        """Insert or replace points by id."""

    @abstractmethod
    async def search(
        self,
        collection: str,
        vector: List[float],
        limit: int = 10,
        filter: Optional[Dict[str, Any]] = None,
        score_threshold: Optional[float] = None,
        with_payload: bool = True,
    ) -> List[SearchHit]:
        """Nearest neighbours of ``vector``, best first."""

    @abstractmethod
    async def get_collection_info(self, name: str) -> CollectionInfo:
        ...

    @abstractmethod
    async def scroll(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: int = 100,
    ) -> List[SearchHit]:
        """Points matching ``filter`` without ranking (score 0)."""

    @abstractmethod
    async def delete_points(self, collection: str, filter: Dict[str, Any]) -> None:
        """Delete every point matching ``filter``."""

    async def ensure_collection(self, schema: CollectionSchema) -> None:
        if not await self.collection_exists(schema.name):
            await self.create_collection(schema)

    async def close(self) -> None:
        """Release resources. Override if needed."""
        pass


@dataclass
class _Collection:
    schema: CollectionSchema
    ids: List[str] = field(default_factory=list)
    vectors: List[np.ndarray] = field(default_factory=list)
    payloads: List[Dict[str, Any]] = field(default_factory=list)
    positions: Dict[str, int] = field(default_factory=dict)


class InMemoryVectorStore(VectorStore):
    """Process-local store; filters are evaluated in Python."""

    def __init__(self) -> None:
        self._collections: Dict[str, _Collection] = {}

    def _get(self, name: str) -> _Collection:
        try:
            return self._collections[name]
        except KeyError:
            raise ValueError(f"Collection not found: {name}") from None

    async def create_collection(self, schema: CollectionSchema) -> None:
        if schema.name in self._collections:
            return
        self._collections[schema.name] = _Collection(schema=schema)
        LOG.info("Created in-memory collection %s (dim=%d)", schema.name, schema.vector_size)

    async def delete_collection(self, name: str) -> None:
        self._collections.pop(name, None)

    async def collection_exists(self, name: str) -> bool:
        return name in self._collections

    async def upsert(self, collection: str, points: List[VectorPoint]) -> None:
        col = self._get(collection)
        for point in points:
            vector = np.asarray(point.vector, dtype=np.float64)
            if vector.shape != (col.schema.vector_size,):
                raise ValueError(
                    f"Vector for {point.id} has dimension {vector.size}, "
                    f"collection {collection} expects {col.schema.vector_size}"
                )
            payload = copy.deepcopy(point.payload)
            if point.id in col.positions:
                index = col.positions[point.id]
                col.vectors[index] = vector
                col.payloads[index] = payload
            else:
                col.positions[point.id] = len(col.ids)
                col.ids.append(point.id)
                col.vectors.append(vector)
                col.payloads.append(payload)

    def _scores(self, col: _Collection, query: np.ndarray, rows: List[int]) -> np.ndarray:
        matrix = np.vstack([col.vectors[i] for i in rows])
        if col.schema.distance == "dot":
            return matrix @ query
        if col.schema.distance == "euclid":
            return -np.linalg.norm(matrix - query, axis=1)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = np.where(norms > 0, (matrix @ query) / norms, 0.0)
        return scores

    async def search(
        self,
        collection: str,
        vector: List[float],
        limit: int = 10,
        filter: Optional[Dict[str, Any]] = None,
        score_threshold: Optional[float] = None,
        with_payload: bool = True,
    ) -> List[SearchHit]:
        col = self._get(collection)
        query = np.asarray(vector, dtype=np.float64)
        if query.shape != (col.schema.vector_size,):
            raise ValueError(
                f"Query vector has dimension {query.size}, collection {collection} expects {col.schema.vector_size}"
            )
        rows = [i for i, payload in enumerate(col.payloads) if matches_filter(payload, filter)]
        if not rows or limit <= 0:
            return []

        scores = self._scores(col, query, rows)
        order = np.argsort(-scores, kind="stable")
        hits: List[SearchHit] = []
        for position in order:
            score = float(scores[position])
            if score_threshold is not None and score < score_threshold:
                break
            row = rows[position]
            payload = copy.deepcopy(col.payloads[row]) if with_payload else {}
            hits.append(SearchHit(id=col.ids[row], score=score, payload=payload))
            if len(hits) >= limit:
                break
        return hits

    async def get_collection_info(self, name: str) -> CollectionInfo:
        col = self._get(name)
        return CollectionInfo(
            name=name,
            points_count=len(col.ids),
            vector_size=col.schema.vector_size,
            distance=col.schema.distance,
        )

    async def scroll(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: int = 100,
    ) -> List[SearchHit]:
        col = self._get(collection)
        hits = []
        for point_id, payload in zip(col.ids, col.payloads):
            if matches_filter(payload, filter):
                hits.append(SearchHit(id=point_id, score=0.0, payload=copy.deepcopy(payload)))
                if len(hits) >= limit:
                    break
        return hits

    async def delete_points(self, collection: str, filter: Dict[str, Any]) -> None:
        col = self._get(collection)
        keep = [i for i, payload in enumerate(col.payloads) if not matches_filter(payload, filter)]
        removed = len(col.ids) - len(keep)
        col.ids = [col.ids[i] for i in keep]
        col.vectors = [col.vectors[i] for i in keep]
        col.payloads = [col.payloads[i] for i in keep]
        col.positions = {point_id: i for i, point_id in enumerate(col.ids)}
        LOG.debug("Deleted %d points from %s", removed, collection)


def build_vector_store(settings: Optional[VectorStoreSettings] = None) -> VectorStore:
    """
    Factory: create a VectorStore of the requested type.

    Raises:
        ValueError: Unknown backend
    """
    settings = settings or VectorStoreSettings()
    if settings.backend == "memory":
        return InMemoryVectorStore()
    if settings.backend == "qdrant":
        from .qdrant_store import QdrantVectorStore

        return QdrantVectorStore(url=settings.url, api_key=settings.api_key or None, timeout=settings.timeout_seconds)
    raise ValueError(f"Unknown vector store backend: {settings.backend!r}. Supported: 'qdrant', 'memory'")
