"""Tests for batch embedding: caching, partial failures and providers."""

import math
import time

import pytest

from code_review_rag.chunking.models import ChunkType, CodeChunk
from code_review_rag.config.settings import EmbeddingSettings
from code_review_rag.embeddings.cache import CacheEntry, EmbeddingCache
from code_review_rag.embeddings.provider import MockEmbeddingProvider, build_embedding_provider
from code_review_rag.embeddings.service import (
    EmbeddingRequest,
    EmbeddingService,
    content_hash,
    prepare_chunk_text,
)
from code_review_rag.errors import EmbeddingFailure


class SlowProvider(MockEmbeddingProvider):
    def embed(self, texts):
        time.sleep(0.5)
        return super().embed(texts)


def requests(*texts):
    return [EmbeddingRequest(f"item-{i}", text) for i, text in enumerate(texts)]


class TestMockProvider:
    def test_deterministic_and_normalized(self, provider):
        first, second = provider.embed(["validate user token", "validate user token"])
        assert first == second
        assert len(first) == 64
        assert math.isclose(sum(v * v for v in first), 1.0, rel_tol=1e-9)

    def test_shared_vocabulary_is_closer(self, provider):
        base, related, unrelated = provider.embed(
            ["authService.login(user)", "login user with authService", "render widget tree colors"]
        )

        def cosine(a, b):
            return sum(x * y for x, y in zip(a, b))

        assert cosine(base, related) > cosine(base, unrelated)

    def test_factory(self):
        assert isinstance(build_embedding_provider(EmbeddingSettings(provider="mock")), MockEmbeddingProvider)
        with pytest.raises(ValueError):
            build_embedding_provider(EmbeddingSettings(provider="nope"))


class TestEmbedBatch:
    @pytest.mark.asyncio
    async def test_results_follow_request_order(self, embedder):
        batch = await embedder.embed_batch(requests("alpha", "beta", "gamma"))
        assert [r.id for r in batch.results] == ["item-0", "item-1", "item-2"]
        assert all(r.ok for r in batch.results)
        assert batch.errors == []

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, embedder, provider):
        await embedder.embed_batch(requests("alpha", "beta"))
        calls = provider.calls

        batch = await embedder.embed_batch(requests("alpha", "beta"))
        assert batch.cache_hits == 2
        assert provider.calls == calls

    @pytest.mark.asyncio
    async def test_cache_entry_for_other_model_is_ignored(self, provider):
        cache = EmbeddingCache()
        digest = content_hash("alpha")
        cache.set(digest, CacheEntry(digest, [1.0, 0.0], "other-model"))
        service = EmbeddingService(provider, cache)

        batch = await service.embed_batch(requests("alpha"))
        assert batch.cache_hits == 0
        assert len(batch.results[0].vector) == 64

    @pytest.mark.asyncio
    async def test_failing_item_only_fails_itself(self):
        provider = MockEmbeddingProvider(fail_on=["BOOM"])
        service = EmbeddingService(provider, EmbeddingCache())

        batch = await service.embed_batch(requests("fine one", "BOOM here", "fine two"))
        assert len(batch.successful) == 2
        assert [e.id for e in batch.errors] == ["item-1"]
        assert batch.results[1].vector is None

    @pytest.mark.asyncio
    async def test_sub_batches(self):
        provider = MockEmbeddingProvider()
        service = EmbeddingService(provider, settings=EmbeddingSettings(batch_size=2))
        await service.embed_batch(requests("a", "b", "c", "d", "e"))
        assert provider.calls == 3

    @pytest.mark.asyncio
    async def test_all_failing_raises(self):
        service = EmbeddingService(MockEmbeddingProvider(fail_on=["x"]))
        with pytest.raises(EmbeddingFailure) as info:
            await service.embed_batch(requests("x1", "x2"))
        assert info.value.kind == "provider"
        assert len(info.value.details["errors"]) == 2

    @pytest.mark.asyncio
    async def test_timeout_is_reported(self):
        service = EmbeddingService(SlowProvider(), settings=EmbeddingSettings(timeout_seconds=0.05))
        with pytest.raises(EmbeddingFailure) as info:
            await service.embed_batch(requests("slow"))
        assert info.value.kind == "timeout"

    @pytest.mark.asyncio
    async def test_empty_batch(self, embedder):
        batch = await embedder.embed_batch([])
        assert batch.results == []


class TestQueriesAndChunks:
    @pytest.mark.asyncio
    async def test_embed_query(self, embedder):
        vector = await embedder.embed_query("where is the login flow")
        assert len(vector) == embedder.dimension()

    @pytest.mark.asyncio
    async def test_embed_query_failure(self):
        service = EmbeddingService(MockEmbeddingProvider(fail_on=["bad"]))
        with pytest.raises(EmbeddingFailure):
            await service.embed_query("bad query")

    @pytest.mark.asyncio
    async def test_embed_chunks_attaches_vectors(self, embedder):
        chunks = [
            CodeChunk.create("lib/a.dart", "void a() {}", "dart", 1, 1, ChunkType.FUNCTION),
            CodeChunk.create("lib/b.dart", "void b() {}", "dart", 1, 1, ChunkType.FUNCTION),
        ]
        batch = await embedder.embed_chunks(chunks)
        assert len(batch.successful) == 2
        assert all(c.embedding is not None and len(c.embedding) == 64 for c in chunks)

    def test_chunk_text_has_locating_header(self):
        chunk = CodeChunk.create(
            "lib/a.dart", "void a() {}", "dart", 3, 7, ChunkType.FUNCTION,
            dependencies=["helper"], metadata={"name": "a"},
        )
        text = prepare_chunk_text(chunk)
        assert text.startswith("File: lib/a.dart\nLanguage: dart\nLines: 3-7\nType: function")
        assert "Name: a" in text
        assert "Dependencies: helper" in text
        assert text.endswith("void a() {}")
