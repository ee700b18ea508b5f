"""
Shared test fixtures and pytest configuration.

Markers:
    @pytest.mark.integration : Requires real external services (Qdrant, model downloads)
    @pytest.mark.qdrant      : Requires a Qdrant server reachable at QDRANT_URL
    @pytest.mark.embedding   : Requires sentence-transformers model downloadable

Run stringent tests:
    pytest -m integration             # all integration tests
    pytest -m qdrant                  # only Qdrant tests
    pytest -m embedding               # only embedding model tests
    pytest -m "not integration"       # skip all integration tests (fast CI)
"""

import os
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest

from code_review_rag.chunking.models import ChunkType
from code_review_rag.config.settings import VectorStoreSettings
from code_review_rag.embeddings.cache import EmbeddingCache
from code_review_rag.embeddings.provider import MockEmbeddingProvider
from code_review_rag.embeddings.service import EmbeddingService
from code_review_rag.indexing.indexer import IndexOptions, RepositoryIndexer
from code_review_rag.indexing.source import MemorySource
from code_review_rag.retrieval.models import RetrievedChunk
from code_review_rag.store.vector_store import InMemoryVectorStore

QDRANT_URL = os.environ.get("QDRANT_URL", "http://localhost:6333")


def _qdrant_available() -> bool:
    """Check if a Qdrant server answers on QDRANT_URL."""
    try:
        return httpx.get(f"{QDRANT_URL}/collections", timeout=3).status_code == 200
    except httpx.HTTPError:
        return False


def _embedding_model_available() -> bool:
    """Check if all-MiniLM-L6-v2 can be loaded (already cached or downloadable)."""
    try:
        from sentence_transformers import SentenceTransformer

        model = SentenceTransformer("all-MiniLM-L6-v2")
        return model.encode(["test"]).shape[1] == 384
    except Exception:
        return False


# Cache the checks at module level so they run once per session
_QDRANT_OK: Optional[bool] = None
_EMBEDDING_OK: Optional[bool] = None


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: requires external services (Qdrant, model downloads)")
    config.addinivalue_line("markers", "qdrant: requires a Qdrant server at QDRANT_URL")
    config.addinivalue_line("markers", "embedding: requires sentence-transformers model available")


def pytest_collection_modifyitems(config, items):
    """Auto-skip tests whose infrastructure requirements are not met."""
    global _QDRANT_OK, _EMBEDDING_OK

    needs_qdrant = any("qdrant" in i.keywords or "integration" in i.keywords for i in items)
    needs_model = any("embedding" in i.keywords or "integration" in i.keywords for i in items)
    if _QDRANT_OK is None and needs_qdrant:
        _QDRANT_OK = _qdrant_available()
    if _EMBEDDING_OK is None and needs_model:
        _EMBEDDING_OK = _embedding_model_available()

    skip_qdrant = pytest.mark.skip(reason=f"Qdrant not reachable at {QDRANT_URL}")
    skip_embedding = pytest.mark.skip(reason="Embedding model not available (all-MiniLM-L6-v2)")

    for item in items:
        if "qdrant" in item.keywords and not _QDRANT_OK:
            item.add_marker(skip_qdrant)
        if "embedding" in item.keywords and not _EMBEDDING_OK:
            item.add_marker(skip_embedding)
        # integration implies both
        if "integration" in item.keywords:
            if not _QDRANT_OK:
                item.add_marker(skip_qdrant)
            if not _EMBEDDING_OK:
                item.add_marker(skip_embedding)


# ─── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def store():
    return InMemoryVectorStore()


@pytest.fixture
def provider():
    return MockEmbeddingProvider(dim=64)


@pytest.fixture
def embedder(provider):
    return EmbeddingService(provider, EmbeddingCache())


def make_chunk(
    file_path: str = "lib/services/auth_service.dart",
    start: int = 1,
    end: int = 10,
    chunk_type: ChunkType = ChunkType.FUNCTION,
    content: str = "Future<void> login() async {\n  await api.post();\n}",
    score: float = 0.5,
    **kwargs,
) -> RetrievedChunk:
    """Build a RetrievedChunk with sensible defaults."""
    kwargs.setdefault("created_at", datetime(2024, 1, 1, tzinfo=timezone.utc).isoformat())
    return RetrievedChunk(
        id=f"{file_path}:{start}-{end}",
        content=content,
        language=kwargs.pop("language", "dart"),
        start_line=start,
        end_line=end,
        chunk_type=chunk_type,
        file_path=file_path,
        score=score,
        semantic_score=score,
        **kwargs,
    )


@pytest.fixture
def chunk_factory():
    return make_chunk


# ─── Sample repository ───────────────────────────────────────────────────────

AUTH_SERVICE_DART = """import 'package:http/http.dart';
import 'dart:convert';
import 'token_store.dart';

class AuthService {
  final Client client;

  AuthService(this.client);

  Future<bool> login(String user, String password) async {
    if (user.isEmpty || password.isEmpty) {
      return false;
    }
    final response = await client.post(Uri.parse('/login'));
    return response.statusCode == 200;
  }

  Future<void> logout() async {
    await client.post(Uri.parse('/logout'));
    TokenStore.clear();
  }
}
"""

CONFIG_UTILS_PY = '''import json
import os
import re


def parse_config(path):
    with open(path) as handle:
        data = json.load(handle)
    if not data:
        return {}
    return data


def slugify(text):
    text = text.lower()
    return re.sub(r"[^a-z0-9]+", "-", text).strip("-")
'''

SAMPLE_FILES = {
    "lib/services/auth_service.dart": AUTH_SERVICE_DART,
    "tools/config_utils.py": CONFIG_UTILS_PY,
}


async def index_sample(store, embedder, files=None, collection="code_chunks"):
    """Index ``files`` (default: the sample repository) into ``store``."""
    indexer = RepositoryIndexer(store, embedder, store_settings=VectorStoreSettings(retry_attempts=1))
    return await indexer.index_repository(MemorySource(files or SAMPLE_FILES), IndexOptions(collection=collection))
