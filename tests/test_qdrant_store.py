"""
Tests for the Qdrant backend.

Filter translation and the local in-process client run everywhere;
the server round trip needs a Qdrant instance (``pytest -m qdrant``).
"""

import os
import uuid

import pytest

qdrant_client = pytest.importorskip("qdrant_client")
from qdrant_client import AsyncQdrantClient, models  # noqa: E402

from code_review_rag.store.qdrant_store import (  # noqa: E402
    QdrantVectorStore,
    literal_prefix,
    point_id,
    to_qdrant_filter,
)
from code_review_rag.store.vector_store import CollectionSchema, VectorPoint  # noqa: E402

QDRANT_URL = os.environ.get("QDRANT_URL", "http://localhost:6333")


class TestPointIds:
    def test_deterministic_uuid(self):
        assert point_id("lib/a.dart:1-10") == point_id("lib/a.dart:1-10")
        assert point_id("lib/a.dart:1-10") != point_id("lib/a.dart:1-11")
        uuid.UUID(point_id("lib/a.dart:1-10"))

    def test_uuid_passes_through(self):
        key = str(uuid.uuid4())
        assert point_id(key) == key


class TestLiteralPrefix:
    @pytest.mark.parametrize(
        "pattern,prefix",
        [
            (r"^lib/.*\.dart$", "lib/"),
            (r"^lib/services/[^/]*$", "lib/services/"),
            (r"^src\.main/x", "src.main/x"),
            (r"^abc*", "ab"),
            (r".*\.py$", ""),
        ],
    )
    def test_prefix(self, pattern, prefix):
        assert literal_prefix(pattern) == prefix


class TestFilterTranslation:
    def test_empty(self):
        assert to_qdrant_filter(None) == (None, False)

    def test_exact_clauses_need_no_post_filter(self):
        server, post = to_qdrant_filter(
            {
                "must": [
                    {"key": "language", "match": {"value": "dart"}},
                    {"key": "chunkType", "match": {"any": ["function", "class"]}},
                    {"key": "complexityScore", "range": {"gte": 3}},
                ],
                "must_not": [{"key": "branch", "match": {"value": "legacy"}}],
            }
        )
        assert not post
        assert len(server.must) == 3
        assert isinstance(server.must[1].match, models.MatchAny)
        assert isinstance(server.must[2].range, models.Range)
        assert len(server.must_not) == 1

    def test_datetime_range(self):
        server, _ = to_qdrant_filter({"must": [{"key": "createdAt", "range": {"gte": "2024-01-01T00:00:00Z"}}]})
        assert isinstance(server.must[0].range, models.DatetimeRange)

    def test_pattern_becomes_prefix_text_with_post_filter(self):
        server, post = to_qdrant_filter({"must": [{"key": "file", "match": {"pattern": r"^lib/.*\.dart$"}}]})
        assert post
        assert server.must[0].match == models.MatchText(text="lib/")

    def test_negated_pattern_is_left_to_post_filter(self):
        server, post = to_qdrant_filter({"must_not": [{"key": "file", "match": {"pattern": r"^test/"}}]})
        assert post
        assert server is None

    def test_should_with_untranslatable_alternative_is_dropped(self):
        server, post = to_qdrant_filter(
            {
                "should": [
                    {"key": "file", "match": {"pattern": r".*_test\.dart$"}},
                    {"key": "language", "match": {"value": "go"}},
                ]
            }
        )
        assert post
        assert server is None


async def _exercise(store: QdrantVectorStore, name: str) -> None:
    schema = CollectionSchema(name, vector_size=3, payload_indexes={"file": "keyword"})
    await store.ensure_collection(schema)
    await store.upsert(
        name,
        [
            VectorPoint("lib/a.dart:1-5", [1.0, 0.0, 0.0], {"chunkId": "lib/a.dart:1-5", "file": "lib/a.dart"}),
            VectorPoint("lib/b.dart:1-5", [0.9, 0.1, 0.0], {"chunkId": "lib/b.dart:1-5", "file": "lib/b.dart"}),
            VectorPoint("test/c.dart:1-5", [0.0, 1.0, 0.0], {"chunkId": "test/c.dart:1-5", "file": "test/c.dart"}),
        ],
    )

    hits = await store.search(name, [1.0, 0.0, 0.0], limit=2)
    assert [h.payload["chunkId"] for h in hits] == ["lib/a.dart:1-5", "lib/b.dart:1-5"]

    hits = await store.search(name, [1.0, 0.0, 0.0], filter={"must": [{"key": "file", "match": {"pattern": r"^test/"}}]})
    assert [h.payload["chunkId"] for h in hits] == ["test/c.dart:1-5"]

    await store.delete_points(name, {"must": [{"key": "file", "match": {"value": "lib/a.dart"}}]})
    remaining = await store.scroll(name)
    assert sorted(h.payload["file"] for h in remaining) == ["lib/b.dart", "test/c.dart"]

    info = await store.get_collection_info(name)
    assert info.points_count == 2
    assert info.vector_size == 3
    assert info.distance == "cosine"


class TestLocalClient:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        store = QdrantVectorStore(client=AsyncQdrantClient(location=":memory:"))
        try:
            await _exercise(store, "chunks")
        finally:
            await store.close()


@pytest.mark.qdrant
class TestServer:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        store = QdrantVectorStore(url=QDRANT_URL)
        name = f"test_{uuid.uuid4().hex[:8]}"
        try:
            await _exercise(store, name)
        finally:
            await store.delete_collection(name)
            await store.close()
