"""Tests for the in-memory vector store, neutral filters, retry and payload schemas."""

import asyncio
from datetime import datetime, timezone

import pytest

from code_review_rag.chunking.models import ChunkType, CodeChunk
from code_review_rag.config.settings import VectorStoreSettings
from code_review_rag.errors import StoreFailure, ValidationFailure
from code_review_rag.store.filters import clause_keys, matches_filter
from code_review_rag.store.retry import backoff_delay, with_retry
from code_review_rag.store.schemas import (
    CodeChunkPayload,
    ReviewInsightPayload,
    payload_from_chunk,
    validate_payload,
)
from code_review_rag.store.vector_store import (
    CollectionSchema,
    InMemoryVectorStore,
    VectorPoint,
    build_vector_store,
)

SHA = "a" * 64


async def seeded_store() -> InMemoryVectorStore:
    store = InMemoryVectorStore()
    await store.create_collection(CollectionSchema("chunks", vector_size=3))
    await store.upsert(
        "chunks",
        [
            VectorPoint("a", [1.0, 0.0, 0.0], {"file": "lib/a.dart", "language": "dart", "complexityScore": 2}),
            VectorPoint("b", [0.8, 0.6, 0.0], {"file": "lib/b.dart", "language": "dart", "complexityScore": 7}),
            VectorPoint("c", [0.0, 0.0, 1.0], {"file": "src/c.ts", "language": "typescript", "complexityScore": 4}),
        ],
    )
    return store


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_search_ranks_by_cosine(self):
        store = await seeded_store()
        hits = await store.search("chunks", [1.0, 0.0, 0.0], limit=2)
        assert [h.id for h in hits] == ["a", "b"]
        assert hits[0].score == pytest.approx(1.0)
        assert hits[1].score == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_search_applies_filter_and_threshold(self):
        store = await seeded_store()
        hits = await store.search(
            "chunks", [1.0, 0.0, 0.0], filter={"must": [{"key": "language", "match": {"value": "dart"}}]},
            score_threshold=0.9,
        )
        assert [h.id for h in hits] == ["a"]

    @pytest.mark.asyncio
    async def test_upsert_replaces_by_id(self):
        store = await seeded_store()
        await store.upsert("chunks", [VectorPoint("a", [0.0, 1.0, 0.0], {"file": "lib/a.dart"})])

        info = await store.get_collection_info("chunks")
        assert info.points_count == 3
        hits = await store.search("chunks", [0.0, 1.0, 0.0], limit=1)
        assert hits[0].id == "a"

    @pytest.mark.asyncio
    async def test_dimension_mismatch(self):
        store = await seeded_store()
        with pytest.raises(ValueError):
            await store.upsert("chunks", [VectorPoint("x", [1.0, 0.0])])
        with pytest.raises(ValueError):
            await store.search("chunks", [1.0])

    @pytest.mark.asyncio
    async def test_delete_points_by_filter(self):
        store = await seeded_store()
        await store.delete_points("chunks", {"must": [{"key": "file", "match": {"value": "lib/a.dart"}}]})

        remaining = await store.scroll("chunks")
        assert sorted(h.id for h in remaining) == ["b", "c"]
        hits = await store.search("chunks", [1.0, 0.0, 0.0], limit=1)
        assert hits[0].id == "b"

    @pytest.mark.asyncio
    async def test_payloads_are_copies(self):
        store = await seeded_store()
        hits = await store.scroll("chunks", limit=1)
        hits[0].payload["file"] = "mutated"
        again = await store.scroll("chunks", limit=1)
        assert again[0].payload["file"] != "mutated"

    @pytest.mark.asyncio
    async def test_missing_collection(self):
        store = InMemoryVectorStore()
        assert not await store.collection_exists("nope")
        with pytest.raises(ValueError):
            await store.search("nope", [1.0])

    @pytest.mark.asyncio
    async def test_ensure_collection_is_idempotent(self):
        store = InMemoryVectorStore()
        schema = CollectionSchema("chunks", vector_size=3)
        await store.ensure_collection(schema)
        await store.ensure_collection(schema)
        assert (await store.get_collection_info("chunks")).vector_size == 3

    def test_schema_validation(self):
        with pytest.raises(ValueError):
            CollectionSchema("bad", vector_size=0)
        with pytest.raises(ValueError):
            CollectionSchema("bad", vector_size=3, distance="manhattan")

    def test_factory(self):
        assert isinstance(build_vector_store(VectorStoreSettings(backend="memory")), InMemoryVectorStore)
        with pytest.raises(ValueError):
            build_vector_store(VectorStoreSettings(backend="sqlite"))


class TestFilters:
    payload = {
        "file": "lib/services/auth_service.dart",
        "language": "dart",
        "chunkType": "function",
        "complexityScore": 6,
        "createdAt": "2024-03-01T00:00:00+00:00",
        "dependencies": ["http", "crypto"],
        "author": None,
    }

    @pytest.mark.parametrize(
        "filter,expected",
        [
            (None, True),
            ({"must": [{"key": "language", "match": {"value": "dart"}}]}, True),
            ({"must": [{"key": "language", "match": {"any": ["go", "rust"]}}]}, False),
            ({"must": [{"key": "file", "match": {"pattern": r"^lib/.*\.dart$"}}]}, True),
            ({"must": [{"key": "file", "match": {"text": "auth"}}]}, True),
            ({"must": [{"key": "complexityScore", "range": {"gte": 5, "lte": 10}}]}, True),
            ({"must": [{"key": "complexityScore", "range": {"gt": 6}}]}, False),
            ({"must": [{"key": "createdAt", "range": {"gte": "2024-01-01T00:00:00Z"}}]}, True),
            ({"must": [{"key": "createdAt", "range": {"lt": "2024-01-01T00:00:00Z"}}]}, False),
            ({"must": [{"key": "dependencies", "match": {"value": "crypto"}}]}, True),
            ({"must_not": [{"key": "chunkType", "match": {"value": "function"}}]}, False),
            ({"should": [{"key": "language", "match": {"value": "go"}}, {"key": "chunkType", "match": {"value": "function"}}]}, True),
            ({"must": [{"is_empty": {"key": "author"}}]}, True),
            ({"must": [{"key": "author", "match": {"value": "ana"}}]}, False),
            ({"must": [{"should": [{"key": "language", "match": {"value": "go"}}]}]}, False),
        ],
    )
    def test_matches_filter(self, filter, expected):
        assert matches_filter(self.payload, filter) is expected

    def test_unsupported_clause(self):
        with pytest.raises(ValueError):
            matches_filter(self.payload, {"must": [{"key": "file", "match": {"glob": "*"}}]})

    def test_clause_keys(self):
        filter = {
            "must": [{"key": "file", "match": {"value": "a"}}, {"should": [{"key": "language", "match": {"value": "go"}}]}],
            "must_not": [{"is_empty": {"key": "commit"}}],
        }
        assert clause_keys(filter) == {"file", "language", "commit"}


class TestRetry:
    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        delays = []
        calls = {"n": 0}

        async def flaky():
            calls["n"] += 1
            if calls["n"] < 3:
                raise ConnectionError("down")
            return "ok"

        async def sleep(delay):
            delays.append(delay)

        assert await with_retry("search", flaky, attempts=3, base_delay=0.5, sleep=sleep) == "ok"
        assert delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_with_store_failure(self):
        async def broken():
            raise ConnectionError("down")

        async def sleep(delay):
            pass

        with pytest.raises(StoreFailure) as info:
            await with_retry("upsert", broken, attempts=2, sleep=sleep)
        assert info.value.operation == "upsert"
        assert info.value.attempts == 2
        assert info.value.kind == "error"

    @pytest.mark.asyncio
    async def test_validation_is_not_retried(self):
        calls = {"n": 0}

        async def invalid():
            calls["n"] += 1
            raise ValidationFailure("bad payload")

        with pytest.raises(ValidationFailure):
            await with_retry("upsert", invalid, attempts=3)
        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_value_error_fails_fast(self):
        async def invalid():
            raise ValueError("Collection not found: x")

        with pytest.raises(StoreFailure) as info:
            await with_retry("search", invalid, attempts=3)
        assert info.value.attempts == 1

    @pytest.mark.asyncio
    async def test_timeout_kind(self):
        async def hang():
            await asyncio.sleep(1)

        async def sleep(delay):
            pass

        with pytest.raises(StoreFailure) as info:
            await with_retry("search", hang, attempts=2, timeout=0.01, sleep=sleep)
        assert info.value.kind == "timeout"

    def test_backoff_delay(self):
        assert [backoff_delay(a, 1.0) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]


class TestSchemas:
    def test_payload_from_chunk(self):
        chunk = CodeChunk.create(
            "lib/a.dart", "void a() {}", "dart", 3, 9, ChunkType.FUNCTION,
            complexity_score=2, dependencies=["helper"], metadata={"name": "a", "imports": ["dart:io"]},
        )
        payload = payload_from_chunk(chunk, SHA, commit="abc123", branch="main")

        assert payload.chunkId == "lib/a.dart:3-9"
        assert payload.name == "a"
        assert payload.imports == ["dart:io"]
        dumped = payload.model_dump(mode="json")
        assert dumped["chunkType"] == "function"
        assert dumped["schemaVersion"] == 1

    def test_unknown_field_rejected(self):
        raw = payload_from_chunk(
            CodeChunk.create("a.py", "x = 1", "python", 1, 1, ChunkType.STATEMENT), SHA
        ).model_dump(mode="json")
        raw["surprise"] = True
        with pytest.raises(ValidationFailure) as info:
            validate_payload(CodeChunkPayload, raw)
        assert any(e["loc"] == "surprise" for e in info.value.errors)

    def test_line_range_checked(self):
        with pytest.raises(ValidationFailure):
            validate_payload(
                CodeChunkPayload,
                {
                    "chunkId": "a.py:5-2", "file": "a.py", "language": "python", "startLine": 5,
                    "endLine": 2, "chunkType": "block", "content": "", "sha256": SHA,
                    "createdAt": "2024-01-01T00:00:00Z",
                },
            )

    def test_insight_payload(self):
        insight = validate_payload(
            ReviewInsightPayload,
            {
                "id": "r1", "file": "lib/a.dart", "line": 4, "category": "security",
                "severity": "high", "summary": "Token logged in plain text",
                "createdAt": datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat(),
            },
        )
        assert insight.source == "local"
        with pytest.raises(ValidationFailure):
            validate_payload(ReviewInsightPayload, {**insight.model_dump(mode="json"), "severity": "blocker"})
