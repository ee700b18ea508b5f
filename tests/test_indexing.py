"""Tests for repository indexing and file sources."""

import asyncio

import pytest

from code_review_rag.config.settings import IndexingSettings, VectorStoreSettings
from code_review_rag.embeddings.cache import EmbeddingCache
from code_review_rag.embeddings.provider import MockEmbeddingProvider
from code_review_rag.embeddings.service import EmbeddingService
from code_review_rag.errors import Aborted, EmbeddingFailure, IndexingInProgress, StoreFailure
from code_review_rag.indexing.indexer import CancellationToken, IndexOptions, RepositoryIndexer
from code_review_rag.indexing.source import FileSystemSource, MemorySource
from code_review_rag.store.vector_store import InMemoryVectorStore

from conftest import SAMPLE_FILES

AUTH = "lib/services/auth_service.dart"
UTILS = "tools/config_utils.py"


def indexer_for(store, embedder, **kwargs) -> RepositoryIndexer:
    kwargs.setdefault("store_settings", VectorStoreSettings(retry_attempts=1))
    return RepositoryIndexer(store, embedder, **kwargs)


class CancelAfter(CancellationToken):
    """Lets ``checks`` batches start, then cancels."""

    def __init__(self, checks: int):
        super().__init__()
        self.checks = checks

    def raise_if_cancelled(self) -> None:
        self.checks -= 1
        if self.checks < 0:
            self.cancel()
        super().raise_if_cancelled()


class GatedStore(InMemoryVectorStore):
    """Holds ``ensure_collection`` until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def ensure_collection(self, schema):
        await self.gate.wait()
        await super().ensure_collection(schema)


class BrokenUpsertStore(InMemoryVectorStore):
    async def upsert(self, collection, points):
        raise ConnectionError("connection reset")


class TestIndexRepository:
    @pytest.mark.asyncio
    async def test_indexes_every_file(self, store, embedder):
        result = await indexer_for(store, embedder).index_repository(
            MemorySource(SAMPLE_FILES), IndexOptions(commit="abc123", branch="main", repository="app")
        )

        assert result.success
        assert result.files_processed == 2
        assert result.chunks_generated > 2
        assert result.embeddings_generated == result.chunks_generated
        assert result.points_stored == result.chunks_generated
        assert result.errors == []

        info = await store.get_collection_info("code_chunks")
        assert info.points_count == result.points_stored
        assert info.vector_size == 64

        hits = await store.scroll("code_chunks")
        assert {h.payload["file"] for h in hits} == {AUTH, UTILS}
        assert all(h.payload["commit"] == "abc123" for h in hits)
        assert all(h.payload["repository"] == "app" for h in hits)
        assert all(len(h.payload["sha256"]) == 64 for h in hits)

    @pytest.mark.asyncio
    async def test_reindex_replaces_points(self, store, embedder):
        indexer = indexer_for(store, embedder)
        first = await indexer.index_repository(MemorySource(SAMPLE_FILES))
        await indexer.index_repository(MemorySource(SAMPLE_FILES))
        assert (await store.get_collection_info("code_chunks")).points_count == first.points_stored

    @pytest.mark.asyncio
    async def test_custom_collection(self, store, embedder):
        await indexer_for(store, embedder).index_repository(MemorySource(SAMPLE_FILES), IndexOptions(collection="alt"))
        assert await store.collection_exists("alt")
        assert not await store.collection_exists("code_chunks")

    @pytest.mark.asyncio
    async def test_binary_and_empty_files_are_skipped(self, store, embedder):
        files = dict(SAMPLE_FILES, **{"assets/logo.png": "\0PNG\0", "notes/empty.md": "   \n"})
        result = await indexer_for(store, embedder).index_repository(MemorySource(files))
        assert sorted(result.skipped_files) == ["assets/logo.png", "notes/empty.md"]
        assert result.files_processed == 2
        assert result.success

    @pytest.mark.asyncio
    async def test_oversized_files_are_skipped(self, store, embedder):
        files = {"big.py": "x = 1\n" * 100, "small.py": "y = 2\n"}
        result = await indexer_for(store, embedder).index_repository(MemorySource(files, max_file_size_bytes=50))
        assert result.skipped_files == ["big.py"]
        assert result.files_processed == 1

    @pytest.mark.asyncio
    async def test_small_batches(self, store, embedder):
        files = {f"src/m{i}.py": f"def f{i}():\n    return {i}\n" for i in range(5)}
        result = await indexer_for(store, embedder).index_repository(MemorySource(files), IndexOptions(batch_size=2))
        assert result.files_processed == 5
        assert result.points_stored == result.chunks_generated

    @pytest.mark.asyncio
    async def test_indexes_directory(self, tmp_path, store, embedder):
        (tmp_path / "lib").mkdir()
        (tmp_path / "lib" / "auth_service.dart").write_text(SAMPLE_FILES[AUTH])
        result = await indexer_for(store, embedder).index_repository(tmp_path)
        assert result.files_processed == 1
        hits = await store.scroll("code_chunks")
        assert {h.payload["file"] for h in hits} == {"lib/auth_service.dart"}


class TestFailures:
    @pytest.mark.asyncio
    async def test_embedding_errors_are_collected(self, store):
        embedder = EmbeddingService(MockEmbeddingProvider(dim=64, fail_on=["slugify"]), EmbeddingCache())
        result = await indexer_for(store, embedder).index_repository(MemorySource(SAMPLE_FILES))

        assert not result.success
        assert result.errors
        assert all(e.file == UTILS and e.stage == "embed" for e in result.errors)
        assert result.points_stored == result.chunks_generated - len(result.errors)
        assert result.points_stored > 0

    @pytest.mark.asyncio
    async def test_embedding_errors_stop_run_without_skip(self, store):
        embedder = EmbeddingService(MockEmbeddingProvider(dim=64, fail_on=["slugify"]), EmbeddingCache())
        with pytest.raises(EmbeddingFailure):
            await indexer_for(store, embedder).index_repository(
                MemorySource(SAMPLE_FILES), IndexOptions(skip_errors=False)
            )

    @pytest.mark.asyncio
    async def test_store_errors_are_collected(self, embedder):
        result = await indexer_for(BrokenUpsertStore(), embedder).index_repository(MemorySource(SAMPLE_FILES))
        assert not result.success
        assert result.points_stored == 0
        assert {e.file for e in result.errors} == {AUTH, UTILS}
        assert {e.stage for e in result.errors} == {"store"}

    @pytest.mark.asyncio
    async def test_store_errors_stop_run_without_skip(self, embedder):
        indexer = indexer_for(BrokenUpsertStore(), embedder, settings=IndexingSettings(skip_errors=False))
        with pytest.raises(StoreFailure):
            await indexer.index_repository(MemorySource(SAMPLE_FILES))
        assert not indexer.is_indexing


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_abort_between_batches(self, store, embedder):
        indexer = indexer_for(store, embedder)
        with pytest.raises(Aborted) as info:
            await indexer.index_repository(MemorySource(SAMPLE_FILES), IndexOptions(batch_size=1), CancelAfter(1))

        partial = info.value.details["result"]
        assert partial["aborted"] is True
        assert partial["files_processed"] == 1
        assert not indexer.is_indexing

    @pytest.mark.asyncio
    async def test_second_run_is_rejected(self, embedder):
        store = GatedStore()
        indexer = indexer_for(store, embedder)
        assert indexer.abort() is False

        task = asyncio.create_task(indexer.index_repository(MemorySource(SAMPLE_FILES)))
        while not indexer.is_indexing:
            await asyncio.sleep(0.01)

        with pytest.raises(IndexingInProgress):
            await indexer.index_repository(MemorySource(SAMPLE_FILES))

        assert indexer.abort() is True
        store.gate.set()
        with pytest.raises(Aborted):
            await task
        assert not indexer.is_indexing


class TestDeleteFile:
    @pytest.mark.asyncio
    async def test_removes_only_that_file(self, store, embedder):
        indexer = indexer_for(store, embedder)
        await indexer.index_repository(MemorySource(SAMPLE_FILES))
        await indexer.delete_file(AUTH)

        hits = await store.scroll("code_chunks")
        assert hits
        assert {h.payload["file"] for h in hits} == {UTILS}

    @pytest.mark.asyncio
    async def test_missing_collection_is_a_no_op(self, store, embedder):
        await indexer_for(store, embedder).delete_file(AUTH)
        assert not await store.collection_exists("code_chunks")


class TestFileSystemSource:
    @pytest.fixture
    def repo(self, tmp_path):
        for rel, content in {
            "lib/main.dart": "void main() {}\n",
            "lib/src/util.dart": "int one() => 1;\n",
            "build/out.dart": "// generated\n",
            "node_modules/pkg/index.js": "module.exports = {};\n",
            ".git/config": "[core]\n",
            "README.md": "# app\n",
        }.items():
            path = tmp_path / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)
        (tmp_path / "lib" / "icon.bin").write_bytes(b"\x89PNG\0\0\x01")
        return tmp_path

    def test_lists_selected_files(self, repo):
        files = FileSystemSource(repo).list_files()
        assert files == ["README.md", "lib/icon.bin", "lib/main.dart", "lib/src/util.dart"]

    def test_include_patterns(self, repo):
        source = FileSystemSource(repo, IndexingSettings(include_patterns=["**/*.dart"]))
        assert source.list_files() == ["lib/main.dart", "lib/src/util.dart"]

    def test_exclude_patterns(self, repo):
        source = FileSystemSource(repo, IndexingSettings(exclude_patterns=["lib/src/**", "**/*.md"]))
        assert "lib/src/util.dart" not in source.list_files()
        assert "README.md" not in source.list_files()

    def test_read_text(self, repo):
        source = FileSystemSource(repo, IndexingSettings(max_file_size_bytes=15))
        assert source.read_text("lib/main.dart") == "void main() {}\n"
        assert source.read_text("lib/icon.bin") is None
        assert source.read_text("lib/src/util.dart") is None
        assert source.read_text("missing.dart") is None

    def test_root_must_be_directory(self, tmp_path):
        with pytest.raises(ValueError):
            FileSystemSource(tmp_path / "nope").list_files()
