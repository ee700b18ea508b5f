"""Configuration management for the review retrieval pipeline.

Loads settings from ``CODE_REVIEW_RAG_*`` environment variables with
sensible defaults. Every component also accepts these dataclasses
directly, so tests construct them without touching the environment.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Optional

_PREFIX = "CODE_REVIEW_RAG_"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _env(name: str, default: str) -> str:
    return os.getenv(_PREFIX + name, default)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(_PREFIX + name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(_PREFIX + name)
    if raw is None:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_int_or_none(name: str) -> Optional[int]:
    raw = os.getenv(_PREFIX + name, "")
    return int(raw) if raw.strip() else None


@dataclass
class ChunkingSettings:
    """Chunker tunables."""
    max_chunk_size: Optional[int] = None  # None = per-strategy default
    overlap_lines: Optional[int] = None
    ast_max_depth: int = 10
    min_chunk_lines: int = 3
    enable_fallback: bool = True
    respect_boundaries: bool = True

    @classmethod
    def from_env(cls) -> "ChunkingSettings":
        return cls(
            max_chunk_size=_env_int_or_none("CHUNK_SIZE"),
            overlap_lines=_env_int_or_none("CHUNK_OVERLAP"),
            ast_max_depth=int(_env("AST_MAX_DEPTH", "10")),
            min_chunk_lines=int(_env("MIN_CHUNK_LINES", "3")),
            enable_fallback=_env_bool("ENABLE_FALLBACK", True),
            respect_boundaries=_env_bool("RESPECT_BOUNDARIES", True),
        )


@dataclass
class CacheSettings:
    """Embedding cache bounds."""
    max_size: int = 10_000
    max_size_bytes: int = 100 * 1024 * 1024
    ttl_seconds: float = 7 * 24 * 3600
    cleanup_interval_seconds: float = 3600
    persistence_path: Optional[str] = None
    persist_on_mutation: bool = False

    @classmethod
    def from_env(cls) -> "CacheSettings":
        return cls(
            max_size=int(_env("CACHE_MAX_SIZE", "10000")),
            max_size_bytes=int(_env("CACHE_MAX_BYTES", str(100 * 1024 * 1024))),
            ttl_seconds=float(_env("CACHE_TTL_SECONDS", str(7 * 24 * 3600))),
            cleanup_interval_seconds=float(_env("CACHE_CLEANUP_INTERVAL", "3600")),
            persistence_path=_env("CACHE_PATH", "") or None,
            persist_on_mutation=_env_bool("CACHE_PERSIST_ON_MUTATION", False),
        )


@dataclass
class EmbeddingSettings:
    """Embedding provider selection."""
    provider: str = "local"  # "local", "ollama", "mock"
    model: str = "all-MiniLM-L6-v2"
    ollama_url: str = "http://localhost:11434"
    batch_size: int = 10
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "EmbeddingSettings":
        return cls(
            provider=_env("EMBEDDING_PROVIDER", "local"),
            model=_env("EMBEDDING_MODEL", "all-MiniLM-L6-v2"),
            ollama_url=_env("OLLAMA_URL", "http://localhost:11434"),
            batch_size=int(_env("EMBEDDING_BATCH_SIZE", "10")),
            timeout_seconds=float(_env("EMBEDDING_TIMEOUT", "30")),
        )


@dataclass
class VectorStoreSettings:
    """Vector store connection and collection names."""
    backend: str = "qdrant"  # "qdrant", "memory"
    url: str = "http://localhost:6333"
    api_key: str = ""
    chunks_collection: str = "code_chunks"
    insights_collection: str = "review_insights"
    timeout_seconds: float = 30.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0

    @classmethod
    def from_env(cls) -> "VectorStoreSettings":
        return cls(
            backend=_env("VECTOR_STORE_BACKEND", "qdrant"),
            url=_env("QDRANT_URL", "http://localhost:6333"),
            api_key=_env("QDRANT_API_KEY", ""),
            chunks_collection=_env("CHUNKS_COLLECTION", "code_chunks"),
            insights_collection=_env("INSIGHTS_COLLECTION", "review_insights"),
            timeout_seconds=float(_env("STORE_TIMEOUT", "30")),
            retry_attempts=int(_env("STORE_RETRY_ATTEMPTS", "3")),
            retry_base_delay=float(_env("STORE_RETRY_DELAY", "1.0")),
        )


@dataclass
class RetrievalSettings:
    """Retrieval defaults applied to queries that omit them."""
    top_k: int = 10
    min_score: float = 0.0
    include_insights: bool = True
    search_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "RetrievalSettings":
        return cls(
            top_k=int(_env("TOP_K", "10")),
            min_score=float(_env("MIN_SCORE", "0.0")),
            include_insights=_env_bool("INCLUDE_INSIGHTS", True),
            search_timeout_seconds=float(_env("SEARCH_TIMEOUT", "30")),
        )


@dataclass
class PromptSettings:
    """Prompt budget defaults."""
    token_budget: int = 8000
    preamble_fraction: float = 0.1
    context_fraction: float = 0.6
    diffs_fraction: float = 0.2
    insights_fraction: float = 0.1
    instructions_fraction: float = 0.1
    response_format: str = "markdown"

    @classmethod
    def from_env(cls) -> "PromptSettings":
        return cls(
            token_budget=int(_env("TOKEN_BUDGET", "8000")),
            preamble_fraction=float(_env("PREAMBLE_FRACTION", "0.1")),
            context_fraction=float(_env("CONTEXT_FRACTION", "0.6")),
            diffs_fraction=float(_env("DIFFS_FRACTION", "0.2")),
            insights_fraction=float(_env("INSIGHTS_FRACTION", "0.1")),
            instructions_fraction=float(_env("INSTRUCTIONS_FRACTION", "0.1")),
            response_format=_env("RESPONSE_FORMAT", "markdown"),
        )


@dataclass
class IndexingSettings:
    """Repository indexing behaviour."""
    batch_size: int = 10
    max_file_size_bytes: int = 1024 * 1024
    include_patterns: list[str] = field(default_factory=lambda: ["**/*"])
    exclude_patterns: list[str] = field(
        default_factory=lambda: ["**/.git/**", "**/node_modules/**", "**/build/**", "**/.dart_tool/**"]
    )
    skip_errors: bool = True
    state_path: Optional[str] = None  # file hash snapshot for incremental runs

    @classmethod
    def from_env(cls) -> "IndexingSettings":
        defaults = cls()
        return cls(
            batch_size=int(_env("BATCH_SIZE", "10")),
            max_file_size_bytes=int(_env("MAX_FILE_SIZE", str(1024 * 1024))),
            include_patterns=_env_list("INCLUDE", defaults.include_patterns),
            exclude_patterns=_env_list("EXCLUDE", defaults.exclude_patterns),
            skip_errors=_env_bool("SKIP_ERRORS", True),
            state_path=_env("STATE_PATH", "") or None,
        )


@dataclass
class LLMSettings:
    """Review generation backend."""
    provider: str = "mock"  # "anthropic", "openai", "ollama", "mock"
    model: str = "claude-sonnet-4-5-20250929"
    api_key: str = ""
    base_url: str = ""
    ollama_url: str = "http://localhost:11434"
    max_tokens: int = 4000
    temperature: float = 0.2
    max_retries: int = 3
    timeout_seconds: float = 120.0

    @classmethod
    def from_env(cls) -> "LLMSettings":
        return cls(
            provider=_env("LLM_PROVIDER", "mock"),
            model=_env("LLM_MODEL", "claude-sonnet-4-5-20250929"),
            api_key=_env("LLM_API_KEY", ""),
            base_url=_env("LLM_BASE_URL", ""),
            ollama_url=_env("OLLAMA_URL", "http://localhost:11434"),
            max_tokens=int(_env("LLM_MAX_TOKENS", "4000")),
            temperature=float(_env("LLM_TEMPERATURE", "0.2")),
            max_retries=int(_env("LLM_MAX_RETRIES", "3")),
            timeout_seconds=float(_env("LLM_TIMEOUT", "120")),
        )


@dataclass
class AppSettings:
    """Top-level application configuration."""
    chunking: ChunkingSettings = field(default_factory=ChunkingSettings)
    cache: CacheSettings = field(default_factory=CacheSettings)
    embedding: EmbeddingSettings = field(default_factory=EmbeddingSettings)
    store: VectorStoreSettings = field(default_factory=VectorStoreSettings)
    retrieval: RetrievalSettings = field(default_factory=RetrievalSettings)
    prompt: PromptSettings = field(default_factory=PromptSettings)
    indexing: IndexingSettings = field(default_factory=IndexingSettings)
    llm: LLMSettings = field(default_factory=LLMSettings)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AppSettings":
        return cls(
            chunking=ChunkingSettings.from_env(),
            cache=CacheSettings.from_env(),
            embedding=EmbeddingSettings.from_env(),
            store=VectorStoreSettings.from_env(),
            retrieval=RetrievalSettings.from_env(),
            prompt=PromptSettings.from_env(),
            indexing=IndexingSettings.from_env(),
            llm=LLMSettings.from_env(),
            log_level=_env("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler. Call once from the embedding application."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
