"""
Batch embedding with caching and partial-failure isolation.

Texts are looked up in the embedding cache by content hash; misses are
sent to the provider in sub-batches on a worker thread, each call under
a timeout. A failing sub-batch is retried item by item so one bad input
only fails itself. If every item fails, the batch as a whole raises
``EmbeddingFailure``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional

from ..chunking.models import CodeChunk
from ..config.settings import EmbeddingSettings
from ..errors import EmbeddingFailure
from .cache import CacheEntry, EmbeddingCache
from .provider import EmbeddingProvider

LOG = logging.getLogger("code_review_rag.embeddings.service")


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def prepare_chunk_text(chunk: CodeChunk) -> str:
    """Text sent to the embedder: a short locating header plus the code."""
    parts = [
        f"File: {chunk.file_path}",
        f"Language: {chunk.language}",
        f"Lines: {chunk.start_line}-{chunk.end_line}",
        f"Type: {chunk.chunk_type.value}",
    ]
    name = chunk.metadata.get("name")
    if name:
        parts.append(f"Name: {name}")
    if chunk.dependencies:
        parts.append("Dependencies: " + ", ".join(chunk.dependencies[:10]))
    parts.append("")
    parts.append(chunk.content)
    return "\n".join(parts)


@dataclass
class EmbeddingRequest:
    id: str
    text: str


@dataclass
class EmbeddingResult:
    id: str
    vector: Optional[list[float]]
    content_hash: str
    model: str
    cached: bool = False
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.vector is not None and self.error is None


@dataclass
class EmbeddingItemError:
    id: str
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "error": self.error}


@dataclass
class EmbeddingBatchResult:
    """Per-item outcomes in request order."""

    results: list[EmbeddingResult] = field(default_factory=list)
    errors: list[EmbeddingItemError] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def successful(self) -> list[EmbeddingResult]:
        return [r for r in self.results if r.ok]

    @property
    def cache_hits(self) -> int:
        return sum(1 for r in self.results if r.cached)

    def vectors_by_id(self) -> dict[str, list[float]]:
        return {r.id: r.vector for r in self.results if r.ok and r.vector is not None}


class EmbeddingService:
    """Embeds texts and chunks through a provider and an optional cache."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        cache: Optional[EmbeddingCache] = None,
        settings: Optional[EmbeddingSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.settings = settings or EmbeddingSettings()
        self.log = logger or LOG

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    def dimension(self) -> int:
        return self.provider.dimension()

    async def embed_batch(self, items: list[EmbeddingRequest]) -> EmbeddingBatchResult:
        """
        Embed many texts, tolerating individual failures.

        Raises:
            EmbeddingFailure: when no item could be embedded
        """
        started = time.monotonic()
        model = self.provider.model_name
        outcome: dict[str, EmbeddingResult] = {}
        pending: list[tuple[EmbeddingRequest, str]] = []

        for item in items:
            digest = content_hash(item.text)
            entry = self.cache.get(digest) if self.cache is not None else None
            if entry is not None and entry.model == model:
                outcome[item.id] = EmbeddingResult(item.id, entry.vector, digest, model, cached=True)
            else:
                pending.append((item, digest))

        batch_size = max(1, self.settings.batch_size)
        for offset in range(0, len(pending), batch_size):
            group = pending[offset : offset + batch_size]
            for result in await self._embed_group(group, model):
                outcome[result.id] = result

        batch = EmbeddingBatchResult()
        for item in items:
            result = outcome[item.id]
            batch.results.append(result)
            if result.error is not None:
                batch.errors.append(EmbeddingItemError(item.id, result.error))

        batch.duration_ms = int((time.monotonic() - started) * 1000)

        if items and not batch.successful:
            timed_out = all("timed out" in e.error for e in batch.errors)
            raise EmbeddingFailure(
                f"All {len(items)} embeddings failed",
                kind="timeout" if timed_out else "provider",
                details={"errors": [e.to_dict() for e in batch.errors[:10]]},
            )
        if batch.errors:
            self.log.warning("Embedded %d/%d items; %d failed", len(batch.successful), len(items), len(batch.errors))
        self.log.debug("Embedding batch: %d items, %d cache hits", len(items), batch.cache_hits)
        return batch

    async def _embed_group(self, group: list[tuple[EmbeddingRequest, str]], model: str) -> list[EmbeddingResult]:
        texts = [item.text for item, _ in group]
        try:
            vectors = await self._call_provider(texts)
            if len(vectors) != len(texts):
                raise EmbeddingFailure(f"Provider returned {len(vectors)} vectors for {len(texts)} texts")
        except Exception as exc:
            if len(group) == 1:
                item, digest = group[0]
                self.log.debug("Embedding failed for %s: %s", item.id, exc)
                return [EmbeddingResult(item.id, None, digest, model, error=str(exc) or type(exc).__name__)]
            self.log.info("Sub-batch of %d failed (%s); retrying items individually", len(group), exc)
            results = []
            for single in group:
                results.extend(await self._embed_group([single], model))
            return results

        results = []
        for (item, digest), vector in zip(group, vectors):
            if self.cache is not None:
                self.cache.set(digest, CacheEntry(content_hash=digest, vector=vector, model=model))
            results.append(EmbeddingResult(item.id, vector, digest, model))
        return results

    async def _call_provider(self, texts: list[str]) -> list[list[float]]:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.provider.embed, texts),
                timeout=self.settings.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise EmbeddingFailure(
                f"Embedding call timed out after {self.settings.timeout_seconds}s",
                kind="timeout",
            ) from exc

    async def embed_query(self, text: str) -> list[float]:
        """
        Embed one query string.

        Raises:
            EmbeddingFailure: if the text cannot be embedded
        """
        batch = await self.embed_batch([EmbeddingRequest("query", text)])
        vector = batch.results[0].vector
        if vector is None:
            raise EmbeddingFailure(batch.results[0].error or "Query embedding failed")
        return vector

    async def embed_chunks(self, chunks: list[CodeChunk]) -> EmbeddingBatchResult:
        """Embed chunks and attach vectors to the ones that succeeded."""
        if not chunks:
            return EmbeddingBatchResult()
        batch = await self.embed_batch([EmbeddingRequest(c.id, prepare_chunk_text(c)) for c in chunks])
        vectors = batch.vectors_by_id()
        for chunk in chunks:
            if chunk.id in vectors:
                chunk.embedding = vectors[chunk.id]
        return batch
