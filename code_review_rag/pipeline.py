"""
Review pipeline: retrieve → compose → generate.

Wires the components together from ``AppSettings``. Every component
can be passed in explicitly instead, which is how tests run the whole
pipeline on the in-memory store and the mock embedder.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .chunking.service import ChunkingService
from .config.settings import AppSettings
from .embeddings.cache import EmbeddingCache
from .embeddings.provider import build_embedding_provider
from .embeddings.service import EmbeddingService
from .indexing.indexer import CancellationToken, IndexOptions, IndexResult, RepositoryIndexer
from .indexing.source import FileSource
from .llm.client import LLMClient, build_llm_client
from .prompt.composer import OptionsInput, PromptComposer
from .prompt.models import PromptCompositionResult
from .retrieval.insights import VectorStoreInsightsIndex
from .retrieval.models import RetrievalResult
from .retrieval.service import QueryInput, RetrievalService
from .store.vector_store import VectorStore, build_vector_store

LOG = logging.getLogger("code_review_rag.pipeline")


@dataclass
class PromptBuild:
    retrieval: RetrievalResult
    composition: PromptCompositionResult

    @property
    def text(self) -> Optional[str]:
        return self.composition.prompt.text if self.composition.prompt else None


@dataclass
class ReviewOutcome:
    retrieval: RetrievalResult
    composition: PromptCompositionResult
    response: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.composition.success and self.response is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "retrieval": self.retrieval.to_dict(),
            "composition": self.composition.to_dict(),
            "response": self.response,
        }


class ReviewPipeline:
    """Indexes repositories and produces review prompts and reviews."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingService,
        retrieval: Optional[RetrievalService] = None,
        composer: Optional[PromptComposer] = None,
        indexer: Optional[RepositoryIndexer] = None,
        llm: Optional[LLMClient] = None,
        settings: Optional[AppSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or AppSettings()
        self.log = logger or LOG
        self.store = store
        self.embedder = embedder
        self.retrieval = retrieval or RetrievalService(
            store,
            embedder,
            insights=VectorStoreInsightsIndex(store, embedder, self.settings.store.insights_collection),
            settings=self.settings.retrieval,
            store_settings=self.settings.store,
        )
        self.composer = composer or PromptComposer(self.settings.prompt)
        self.indexer = indexer or RepositoryIndexer(
            store,
            embedder,
            ChunkingService(self.settings.chunking),
            settings=self.settings.indexing,
            store_settings=self.settings.store,
        )
        self.llm = llm

    @classmethod
    def from_settings(cls, settings: Optional[AppSettings] = None) -> "ReviewPipeline":
        """Build every component from configuration."""
        settings = settings or AppSettings.from_env()
        cache = EmbeddingCache(settings.cache)
        cache.start_cleanup()
        embedder = EmbeddingService(build_embedding_provider(settings.embedding), cache, settings.embedding)
        return cls(
            store=build_vector_store(settings.store),
            embedder=embedder,
            llm=build_llm_client(settings.llm),
            settings=settings,
        )

    async def index(
        self,
        root: Union[str, Path, FileSource],
        options: Optional[IndexOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> IndexResult:
        return await self.indexer.index_repository(root, options, token)

    async def build_prompt(self, query: QueryInput, options: OptionsInput = None) -> PromptBuild:
        """
        Retrieve context for ``query`` and compose a prompt from it.

        Raises:
            ValidationFailure, EmbeddingFailure, StoreFailure: from retrieval;
                composition problems are reported in the result instead
        """
        result = await self.retrieval.retrieve(query)
        composition = self.composer.compose(result, options)
        if not composition.success:
            self.log.warning(
                "Prompt composition failed: %s", "; ".join(e.message for e in composition.errors)
            )
        return PromptBuild(retrieval=result, composition=composition)

    async def review(self, query: QueryInput, options: OptionsInput = None) -> ReviewOutcome:
        """
        Build a prompt and send it to the LLM. The LLM is not called when
        composition fails.

        Raises:
            ValueError: no LLM client configured
            GenerationFailure: the LLM call failed
        """
        if self.llm is None:
            raise ValueError("No LLM client configured for this pipeline")
        built = await self.build_prompt(query, options)
        outcome = ReviewOutcome(retrieval=built.retrieval, composition=built.composition)
        if built.text is None:
            return outcome
        outcome.response = await self.llm.generate(built.text)
        self.log.info("Review generated: %d characters", len(outcome.response))
        return outcome

    async def close(self) -> None:
        if self.llm is not None:
            await self.llm.close()
        await self.store.close()
        if self.embedder.cache is not None:
            self.embedder.cache.shutdown()
