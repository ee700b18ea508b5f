"""
Embedding providers: text → vector backends.

LocalEmbeddingProvider runs sentence-transformers in process;
OllamaEmbeddingProvider calls an Ollama server over HTTP;
MockEmbeddingProvider hashes tokens into a fixed-size vector so tests
get deterministic, similarity-preserving embeddings without a model.
"""

from __future__ import annotations

import hashlib
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Iterable, Optional

import httpx

from ..config.settings import EmbeddingSettings

LOG = logging.getLogger("code_review_rag.embeddings.provider")


class EmbeddingProvider(ABC):
    """Abstract interface for text → embedding vector conversion."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        ...

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """
        Convert a batch of texts into embedding vectors.

        Returns one vector per input text, in input order.
        """
        ...

    @abstractmethod
    def dimension(self) -> int:
        """Return the embedding dimensionality."""
        ...

    def close(self) -> None:
        """Release any held resources."""


class LocalEmbeddingProvider(EmbeddingProvider):
    """
    Local embedding via sentence-transformers.

    Default model: all-MiniLM-L6-v2 (384 dimensions). Vectors are
    L2-normalised so cosine and dot-product rankings agree.
    """

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", batch_size: int = 32) -> None:
        from sentence_transformers import SentenceTransformer

        self._model_name = model_name
        self._batch_size = batch_size
        LOG.info("Loading embedding model: %s", model_name)
        self._model = SentenceTransformer(model_name)
        self._dim = self._model.get_sentence_embedding_dimension()

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        vectors = self._model.encode(
            texts,
            batch_size=self._batch_size,
            show_progress_bar=False,
            normalize_embeddings=True,
        )
        return [v.tolist() for v in vectors]

    def dimension(self) -> int:
        return self._dim


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Embeddings from an Ollama server (``/api/embeddings``)."""

    def __init__(
        self,
        model_name: str = "nomic-embed-text",
        base_url: str = "http://localhost:11434",
        timeout: float = 30.0,
        dimension: Optional[int] = None,
    ) -> None:
        self._model_name = model_name
        self._client = httpx.Client(base_url=base_url, timeout=timeout)
        self._dim = dimension

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, texts: list[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            response = self._client.post("/api/embeddings", json={"model": self._model_name, "prompt": text})
            response.raise_for_status()
            vector = response.json().get("embedding")
            if not vector:
                raise ValueError(f"Ollama returned no embedding for model {self._model_name}")
            if self._dim is None:
                self._dim = len(vector)
            vectors.append([float(v) for v in vector])
        return vectors

    def dimension(self) -> int:
        if self._dim is None:
            self._dim = len(self.embed(["dimension check"])[0])
        return self._dim

    def close(self) -> None:
        self._client.close()


_TOKEN = re.compile(r"[A-Za-z_][A-Za-z0-9_]*|\d+")


def _tokens(text: str) -> Iterable[str]:
    for token in _TOKEN.findall(text):
        yield token.lower()
        # split camelCase and snake_case so related identifiers overlap
        for part in re.findall(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+", token):
            if part.lower() != token.lower():
                yield part.lower()


class MockEmbeddingProvider(EmbeddingProvider):
    """
    Deterministic hashing embedder for tests.

    Each token is hashed into a bucket with a signed weight, then the
    vector is normalised. Texts sharing vocabulary get high cosine
    similarity; identical texts get identical vectors. Texts listed in
    ``fail_on`` raise, to exercise partial-failure handling.
    """

    def __init__(self, dim: int = 64, fail_on: Optional[Iterable[str]] = None, model_name: str = "mock-hash") -> None:
        self._dim = dim
        self._fail_on = set(fail_on or ())
        self._model_name = model_name
        self.calls = 0

    @property
    def model_name(self) -> str:
        return self._model_name

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        vectors = []
        for text in texts:
            if any(marker in text for marker in self._fail_on):
                raise RuntimeError("mock embedding failure")
            vectors.append(self._vector(text))
        return vectors

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self._dim
        for token in _tokens(text):
            digest = hashlib.sha256(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "big") % self._dim
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[bucket] += sign
        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            vector[0] = 1.0
            return vector
        return [v / norm for v in vector]

    def dimension(self) -> int:
        return self._dim


def build_embedding_provider(settings: Optional[EmbeddingSettings] = None) -> EmbeddingProvider:
    """
    Factory for embedding providers.

    Raises:
        ValueError: if the provider name is unknown
    """
    settings = settings or EmbeddingSettings()
    if settings.provider == "local":
        return LocalEmbeddingProvider(settings.model, batch_size=max(settings.batch_size, 1))
    if settings.provider == "ollama":
        return OllamaEmbeddingProvider(settings.model, settings.ollama_url, settings.timeout_seconds)
    if settings.provider == "mock":
        return MockEmbeddingProvider()
    raise ValueError(f"Unknown embedding provider: {settings.provider!r}. Supported: local, ollama, mock")
