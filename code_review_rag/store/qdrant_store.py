"""
Qdrant backend (qdrant-client async API).

Qdrant point ids must be unsigned integers or UUIDs, so string ids are
mapped to a deterministic UUIDv5; callers keep their own id in the
payload (``chunkId`` / ``id``). Regex ``pattern`` clauses have no server
equivalent: they are sent as a ``MatchText`` on their literal prefix
where that narrows the result safely, and every such filter is
re-checked client-side.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from qdrant_client import AsyncQdrantClient, models

from .filters import GROUPS, matches_filter
from .vector_store import CollectionInfo, CollectionSchema, SearchHit, VectorPoint, VectorStore

LOG = logging.getLogger("code_review_rag.store.qdrant")

_DISTANCE = {
    "cosine": models.Distance.COSINE,
    "dot": models.Distance.DOT,
    "euclid": models.Distance.EUCLID,
}
_INDEX_TYPES = {
    "keyword": models.PayloadSchemaType.KEYWORD,
    "integer": models.PayloadSchemaType.INTEGER,
    "float": models.PayloadSchemaType.FLOAT,
    "datetime": models.PayloadSchemaType.DATETIME,
    "text": models.PayloadSchemaType.TEXT,
    "bool": models.PayloadSchemaType.BOOL,
}
_REGEX_META = set(".^$*+?{}[]\\|()")

# Over-fetch factor when a filter must be finished client-side.
POST_FILTER_FACTOR = 4


def point_id(key: str) -> str:
    """Deterministic Qdrant point id for an arbitrary string key."""
    try:
        return str(uuid.UUID(key))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


def literal_prefix(pattern: str) -> str:
    """Longest literal run at the start of an anchored regex."""
    body = pattern[1:] if pattern.startswith("^") else pattern
    out = []
    index = 0
    while index < len(body):
        ch = body[index]
        if ch == "\\" and index + 1 < len(body) and not body[index + 1].isalnum():
            out.append(body[index + 1])
            index += 2
            continue
        if ch in _REGEX_META:
            break
        out.append(ch)
        index += 1
    # a quantifier binds to the preceding character
    if index < len(body) and body[index] in "*?{" and out:
        out.pop()
    return "".join(out)


def _condition(clause: Dict[str, Any], negated: bool) -> Tuple[Optional[Any], bool]:
    """Convert one clause. Returns (condition or None, needs_post_filter)."""
    if any(group in clause for group in GROUPS):
        nested, post = to_qdrant_filter(clause)
        if negated and post:
            return None, True
        return nested, post
    if "is_empty" in clause:
        return models.IsEmptyCondition(is_empty=models.PayloadField(key=clause["is_empty"]["key"])), False

    key = clause["key"]
    if "range" in clause:
        bounds = {k: v for k, v in clause["range"].items() if v is not None}
        if any(isinstance(v, str) for v in bounds.values()):
            return models.FieldCondition(key=key, range=models.DatetimeRange(**bounds)), False
        return models.FieldCondition(key=key, range=models.Range(**bounds)), False

    match = clause["match"]
    if "value" in match:
        return models.FieldCondition(key=key, match=models.MatchValue(value=match["value"])), False
    if "any" in match:
        return models.FieldCondition(key=key, match=models.MatchAny(any=list(match["any"]))), False
    if "text" in match:
        return models.FieldCondition(key=key, match=models.MatchText(text=match["text"])), False
    if "pattern" in match:
        prefix = literal_prefix(match["pattern"])
        if negated or not prefix:
            return None, True
        return models.FieldCondition(key=key, match=models.MatchText(text=prefix)), True
    raise ValueError(f"Unsupported match clause: {match}")


def to_qdrant_filter(filter: Optional[Dict[str, Any]]) -> Tuple[Optional[models.Filter], bool]:
    """
    Translate a neutral filter into a ``models.Filter``.

    The server filter is never narrower than the neutral one; the second
    element says whether results must be re-checked with
    ``matches_filter``.
    """
    if not filter:
        return None, False
    post = False
    groups: Dict[str, List[Any]] = {}
    for group in GROUPS:
        converted = []
        dropped = False
        for clause in filter.get(group, []):
            condition, needs_post = _condition(clause, negated=group == "must_not")
            post = post or needs_post
            if condition is None:
                dropped = True
            else:
                converted.append(condition)
        if group == "should" and dropped:
            # any dropped alternative could be the one that matches
            converted = []
        if converted:
            groups[group] = converted
    if not groups:
        return None, post
    return models.Filter(**groups), post


class QdrantVectorStore(VectorStore):
    """Vector store backed by a Qdrant server."""

    def __init__(
        self,
        url: str = "http://localhost:6333",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        client: Optional[AsyncQdrantClient] = None,
    ) -> None:
        self._client = client or AsyncQdrantClient(url=url, api_key=api_key, timeout=int(timeout))
        LOG.info("Qdrant: connected to %s", url)

    async def create_collection(self, schema: CollectionSchema) -> None:
        if await self._client.collection_exists(schema.name):
            return
        await self._client.create_collection(
            collection_name=schema.name,
            vectors_config=models.VectorParams(size=schema.vector_size, distance=_DISTANCE[schema.distance]),
        )
        for key, kind in schema.payload_indexes.items():
            await self._client.create_payload_index(
                collection_name=schema.name,
                field_name=key,
                field_schema=_INDEX_TYPES[kind],
            )
        LOG.info("Created Qdrant collection %s (dim=%d)", schema.name, schema.vector_size)

    async def delete_collection(self, name: str) -> None:
        await self._client.delete_collection(collection_name=name)

    async def collection_exists(self, name: str) -> bool:
        return await self._client.collection_exists(name)

    async def upsert(self, collection: str, points: List[VectorPoint]) -> None:
        if not points:
            return
        await self._client.upsert(
            collection_name=collection,
            points=[models.PointStruct(id=point_id(p.id), vector=p.vector, payload=p.payload) for p in points],
            wait=True,
        )

    async def search(
        self,
        collection: str,
        vector: List[float],
        limit: int = 10,
        filter: Optional[Dict[str, Any]] = None,
        score_threshold: Optional[float] = None,
        with_payload: bool = True,
    ) -> List[SearchHit]:
        server_filter, post = to_qdrant_filter(filter)
        response = await self._client.query_points(
            collection_name=collection,
            query=vector,
            query_filter=server_filter,
            limit=limit * POST_FILTER_FACTOR if post else limit,
            score_threshold=score_threshold,
            with_payload=with_payload or post,
        )
        hits = []
        for point in response.points:
            payload = dict(point.payload or {})
            if post and not matches_filter(payload, filter):
                continue
            hits.append(SearchHit(id=str(point.id), score=float(point.score), payload=payload if with_payload else {}))
            if len(hits) >= limit:
                break
        return hits

    async def get_collection_info(self, name: str) -> CollectionInfo:
        info = await self._client.get_collection(collection_name=name)
        params = info.config.params.vectors
        distance = {v: k for k, v in _DISTANCE.items()}.get(params.distance, str(params.distance))
        return CollectionInfo(
            name=name,
            points_count=info.points_count or 0,
            vector_size=params.size,
            distance=distance,
            status=str(getattr(info.status, "value", info.status)),
        )

    async def scroll(
        self,
        collection: str,
        filter: Optional[Dict[str, Any]] = None,
        limit: int = 100,
    ) -> List[SearchHit]:
        server_filter, post = to_qdrant_filter(filter)
        hits: List[SearchHit] = []
        offset = None
        while len(hits) < limit:
            records, offset = await self._client.scroll(
                collection_name=collection,
                scroll_filter=server_filter,
                limit=min(256, limit * POST_FILTER_FACTOR if post else limit),
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            for record in records:
                payload = dict(record.payload or {})
                if post and not matches_filter(payload, filter):
                    continue
                hits.append(SearchHit(id=str(record.id), score=0.0, payload=payload))
                if len(hits) >= limit:
                    break
            if offset is None:
                break
        return hits

    async def delete_points(self, collection: str, filter: Dict[str, Any]) -> None:
        server_filter, post = to_qdrant_filter(filter)
        if post or server_filter is None:
            # resolve the exact ids client-side rather than over-deleting
            matching = await self.scroll(collection, filter, limit=1_000_000)
            if matching:
                await self._client.delete(
                    collection_name=collection,
                    points_selector=models.PointIdsList(points=[h.id for h in matching]),
                    wait=True,
                )
            return
        await self._client.delete(
            collection_name=collection,
            points_selector=models.FilterSelector(filter=server_filter),
            wait=True,
        )

    async def close(self) -> None:
        await self._client.close()
