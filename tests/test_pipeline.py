"""End-to-end tests: index → retrieve → compose → generate."""

from datetime import datetime, timezone

import pytest

from code_review_rag.config.settings import (
    AppSettings,
    EmbeddingSettings,
    LLMSettings,
    VectorStoreSettings,
)
from code_review_rag.embeddings.provider import MockEmbeddingProvider
from code_review_rag.indexing.source import MemorySource
from code_review_rag.llm.client import MockLLMClient
from code_review_rag.pipeline import ReviewPipeline
from code_review_rag.store.schemas import ReviewInsightPayload
from code_review_rag.store.vector_store import InMemoryVectorStore

from conftest import SAMPLE_FILES

AUTH = "lib/services/auth_service.dart"


def make_pipeline(store, embedder, llm=None) -> ReviewPipeline:
    settings = AppSettings(store=VectorStoreSettings(backend="memory", retry_attempts=1))
    return ReviewPipeline(store, embedder, llm=llm, settings=settings)


async def indexed_pipeline(store, embedder, llm=None) -> ReviewPipeline:
    pipeline = make_pipeline(store, embedder, llm)
    result = await pipeline.index(MemorySource(SAMPLE_FILES))
    assert result.success
    return pipeline


class TestReviewPipeline:
    @pytest.mark.asyncio
    async def test_review_end_to_end(self, store, embedder):
        llm = MockLLMClient(["## Summary\n\nLogin does not rate-limit attempts."])
        pipeline = await indexed_pipeline(store, embedder, llm)
        await pipeline.retrieval.insights.add(
            [
                ReviewInsightPayload(
                    id="ins-1", file=AUTH, line=11, category="security", severity="high",
                    summary="Empty credentials are not logged", createdAt=datetime(2024, 1, 1, tzinfo=timezone.utc),
                )
            ]
        )

        outcome = await pipeline.review(
            {"text": "login user password client post", "filter": {"files": [AUTH]}},
            {"token_budget": 4000, "diffs": [{"file": AUTH, "patch": "+    if (user.isEmpty) {}"}]},
        )

        assert outcome.success
        assert outcome.response == "## Summary\n\nLogin does not rate-limit attempts."
        assert llm.prompts == [outcome.composition.prompt.text]
        assert outcome.retrieval.files == [AUTH]
        assert [s.file for s in outcome.retrieval.insights] == [AUTH]

        prompt = outcome.composition.prompt
        assert "## Code Context" in prompt.text
        assert "## Response Instructions" in prompt.text
        assert "### MODIFIED: lib/services/auth_service.dart" in prompt.text
        assert "Empty credentials are not logged" in prompt.text
        assert prompt.token_count <= 4000
        assert outcome.to_dict()["response"] == outcome.response

    @pytest.mark.asyncio
    async def test_build_prompt_without_llm(self, store, embedder):
        pipeline = await indexed_pipeline(store, embedder)
        built = await pipeline.build_prompt({"text": "slugify text", "top_k": 3})
        assert built.composition.success
        assert built.retrieval.total_chunks <= 3
        assert built.text == built.composition.prompt.text

    @pytest.mark.asyncio
    async def test_review_needs_llm(self, store, embedder):
        pipeline = make_pipeline(store, embedder)
        with pytest.raises(ValueError):
            await pipeline.review({"text": "login"})

    @pytest.mark.asyncio
    async def test_failed_composition_skips_llm(self, store, embedder):
        llm = MockLLMClient()
        pipeline = await indexed_pipeline(store, embedder, llm)
        outcome = await pipeline.review({"text": "login"}, {"token_budget": 10})

        assert not outcome.success
        assert outcome.response is None
        assert outcome.composition.errors[0].type == "invalid_input"
        assert llm.call_count == 0

    @pytest.mark.asyncio
    async def test_empty_index_still_composes(self, embedder):
        pipeline = make_pipeline(InMemoryVectorStore(), embedder, MockLLMClient())
        outcome = await pipeline.review({"text": "anything"})
        assert outcome.success
        assert outcome.retrieval.chunks == []
        assert "missing_context" in [w.type for w in outcome.composition.warnings]

    @pytest.mark.asyncio
    async def test_close(self, store, embedder):
        pipeline = make_pipeline(store, embedder, MockLLMClient())
        await pipeline.close()


class TestFromSettings:
    @pytest.mark.asyncio
    async def test_builds_components(self):
        settings = AppSettings(
            store=VectorStoreSettings(backend="memory"),
            embedding=EmbeddingSettings(provider="mock"),
            llm=LLMSettings(provider="mock"),
        )
        pipeline = ReviewPipeline.from_settings(settings)
        try:
            assert isinstance(pipeline.store, InMemoryVectorStore)
            assert isinstance(pipeline.embedder.provider, MockEmbeddingProvider)
            assert isinstance(pipeline.llm, MockLLMClient)
            assert pipeline.indexer.store is pipeline.store
        finally:
            await pipeline.close()
