from .cache import CacheEntry, CacheStats, EmbeddingCache
from .provider import (
    EmbeddingProvider,
    LocalEmbeddingProvider,
    MockEmbeddingProvider,
    OllamaEmbeddingProvider,
    build_embedding_provider,
)
from .service import (
    EmbeddingBatchResult,
    EmbeddingRequest,
    EmbeddingResult,
    EmbeddingService,
    content_hash,
    prepare_chunk_text,
)

__all__ = [
    "CacheEntry",
    "CacheStats",
    "EmbeddingBatchResult",
    "EmbeddingCache",
    "EmbeddingProvider",
    "EmbeddingRequest",
    "EmbeddingResult",
    "EmbeddingService",
    "LocalEmbeddingProvider",
    "MockEmbeddingProvider",
    "OllamaEmbeddingProvider",
    "build_embedding_provider",
    "content_hash",
    "prepare_chunk_text",
]
