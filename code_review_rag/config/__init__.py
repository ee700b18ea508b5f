from .settings import (
    AppSettings,
    CacheSettings,
    ChunkingSettings,
    EmbeddingSettings,
    IndexingSettings,
    LLMSettings,
    PromptSettings,
    RetrievalSettings,
    VectorStoreSettings,
    configure_logging,
)

__all__ = [
    "AppSettings",
    "CacheSettings",
    "ChunkingSettings",
    "EmbeddingSettings",
    "IndexingSettings",
    "LLMSettings",
    "PromptSettings",
    "RetrievalSettings",
    "VectorStoreSettings",
    "configure_logging",
]
