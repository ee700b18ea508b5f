"""
Repository indexer.

Files are processed in fixed-size batches: read → chunk → embed →
upsert. Chunking inside a batch runs concurrently on worker threads,
bounded by the batch size. An abort request is honoured between
batches. Per-file and per-batch failures are collected in the
``IndexResult``; with ``skip_errors`` disabled the first failure stops
the run instead.

One indexing run at a time per indexer instance.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..chunking.models import ChunkingOptions, CodeChunk
from ..chunking.service import ChunkingService, SourceText
from ..config.settings import IndexingSettings, VectorStoreSettings
from ..embeddings.service import EmbeddingService, content_hash
from ..errors import Aborted, ChunkingError, EmbeddingFailure, IndexingInProgress, RagError, StoreFailure
from ..store.retry import with_retry
from ..store.schemas import payload_from_chunk
from ..store.vector_store import CollectionSchema, VectorPoint, VectorStore
from .source import FileSource, FileSystemSource

LOG = logging.getLogger("code_review_rag.indexing.indexer")

CHUNK_PAYLOAD_INDEXES = {
    "file": "keyword",
    "language": "keyword",
    "chunkType": "keyword",
    "commit": "keyword",
    "branch": "keyword",
    "author": "keyword",
    "createdAt": "datetime",
    "complexityScore": "integer",
}


def _files(chunks: List[CodeChunk]) -> List[str]:
    return list(dict.fromkeys(c.file_path for c in chunks))


class CancellationToken:
    """Cooperative cancellation flag, checked between batches."""

    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Aborted("Indexing aborted")


@dataclass
class IndexOptions:
    """Per-run settings; metadata fields are copied onto every stored chunk."""

    collection: Optional[str] = None
    commit: Optional[str] = None
    branch: Optional[str] = None
    author: Optional[str] = None
    repository: Optional[str] = None
    batch_size: Optional[int] = None
    skip_errors: Optional[bool] = None
    chunking: Optional[ChunkingOptions] = None


@dataclass
class IndexIssue:
    file: Optional[str]
    stage: str  # chunk | embed | store
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"file": self.file, "stage": self.stage, "message": self.message}


@dataclass
class IndexResult:
    success: bool = True
    files_processed: int = 0
    chunks_generated: int = 0
    embeddings_generated: int = 0
    points_stored: int = 0
    skipped_files: List[str] = field(default_factory=list)
    errors: List[IndexIssue] = field(default_factory=list)
    duration_ms: int = 0
    aborted: bool = False

    def merge(self, other: "IndexResult") -> None:
        self.files_processed += other.files_processed
        self.chunks_generated += other.chunks_generated
        self.embeddings_generated += other.embeddings_generated
        self.points_stored += other.points_stored
        self.skipped_files.extend(other.skipped_files)
        self.errors.extend(other.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "files_processed": self.files_processed,
            "chunks_generated": self.chunks_generated,
            "embeddings_generated": self.embeddings_generated,
            "points_stored": self.points_stored,
            "skipped_files": self.skipped_files,
            "errors": [e.to_dict() for e in self.errors],
            "duration_ms": self.duration_ms,
            "aborted": self.aborted,
        }


class RepositoryIndexer:
    """Chunks, embeds and stores a repository's files."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingService,
        chunker: Optional[ChunkingService] = None,
        settings: Optional[IndexingSettings] = None,
        store_settings: Optional[VectorStoreSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.embedder = embedder
        self.chunker = chunker or ChunkingService()
        self.settings = settings or IndexingSettings()
        self.store_settings = store_settings or VectorStoreSettings()
        self.log = logger or LOG
        self._lock = asyncio.Lock()
        self._token: Optional[CancellationToken] = None

    @property
    def is_indexing(self) -> bool:
        return self._lock.locked()

    def abort(self) -> bool:
        """Request cancellation of the running index; returns False if none is running."""
        if self._token is None:
            return False
        self.log.info("Abort requested")
        self._token.cancel()
        return True

    async def ensure_collection(self, collection: str) -> None:
        await with_retry(
            "create_collection",
            lambda: self.store.ensure_collection(
                CollectionSchema(
                    name=collection,
                    vector_size=self.embedder.dimension(),
                    payload_indexes=dict(CHUNK_PAYLOAD_INDEXES),
                )
            ),
            attempts=self.store_settings.retry_attempts,
            base_delay=self.store_settings.retry_base_delay,
            timeout=self.store_settings.timeout_seconds,
            logger=self.log,
        )

    async def index_repository(
        self,
        root: Union[str, Path, FileSource],
        options: Optional[IndexOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> IndexResult:
        """
        Index every selected file under ``root``.

        Raises:
            IndexingInProgress: another run is active on this indexer
            Aborted: cancelled between batches; ``details`` holds the
                partial result
            RagError: first failure, when ``skip_errors`` is disabled
        """
        source = root if isinstance(root, FileSource) else FileSystemSource(root, self.settings, self.log)
        paths = await asyncio.to_thread(source.list_files)
        return await self.index_files(source, paths, options, token)

    async def index_files(
        self,
        source: FileSource,
        paths: List[str],
        options: Optional[IndexOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> IndexResult:
        """Index the given files of ``source``. Same contract as ``index_repository``."""
        if self._lock.locked():
            raise IndexingInProgress("An indexing run is already in progress")

        async with self._lock:
            self._token = token or CancellationToken()
            try:
                return await self._run(source, paths, options or IndexOptions(), self._token)
            finally:
                self._token = None

    async def _run(
        self,
        source: FileSource,
        paths: List[str],
        options: IndexOptions,
        token: CancellationToken,
    ) -> IndexResult:
        started = time.monotonic()
        result = IndexResult()
        collection = options.collection or self.store_settings.chunks_collection
        batch_size = max(1, options.batch_size or self.settings.batch_size)
        skip_errors = self.settings.skip_errors if options.skip_errors is None else options.skip_errors

        self.log.info("Indexing %d files into %s (batch size %d)", len(paths), collection, batch_size)
        try:
            await self.ensure_collection(collection)
            for offset in range(0, len(paths), batch_size):
                token.raise_if_cancelled()
                batch = paths[offset : offset + batch_size]
                result.merge(await self._index_batch(source, batch, collection, options, skip_errors))
                self.log.info(
                    "Indexed batch %d/%d: %d points stored so far",
                    offset // batch_size + 1, (len(paths) + batch_size - 1) // batch_size, result.points_stored,
                )
        except Aborted as exc:
            result.aborted = True
            result.success = False
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.log.warning("Indexing aborted after %d files", result.files_processed)
            raise Aborted(exc.message, {"result": result.to_dict()}) from exc
        except RagError:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self.log.error("Indexing stopped after %d files", result.files_processed)
            raise

        result.success = not result.errors
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.log.info(
            "Indexing finished: %d files, %d chunks, %d points, %d errors in %dms",
            result.files_processed, result.chunks_generated, result.points_stored,
            len(result.errors), result.duration_ms,
        )
        return result

    async def _read(self, source: FileSource, batch: List[str], result: IndexResult) -> List[SourceText]:
        contents = await asyncio.gather(*(asyncio.to_thread(source.read_text, p) for p in batch))
        texts = []
        for path, content in zip(batch, contents):
            if content is None or not content.strip():
                result.skipped_files.append(path)
                continue
            texts.append(SourceText(path, content))
        return texts

    async def _index_batch(
        self,
        source: FileSource,
        batch: List[str],
        collection: str,
        options: IndexOptions,
        skip_errors: bool,
    ) -> IndexResult:
        result = IndexResult()
        texts = await self._read(source, batch, result)
        if not texts:
            return result

        chunked = await self.chunker.chunk_files(texts, options.chunking, batch_size=len(texts))
        for issue in chunked.errors:
            result.errors.append(IndexIssue(issue.file_path, "chunk", issue.message))
        if chunked.errors and not skip_errors:
            raise ChunkingError(f"Chunking failed for {chunked.errors[0].file_path}: {chunked.errors[0].message}")
        result.files_processed = len(texts) - len({e.file_path for e in chunked.errors})
        result.chunks_generated = chunked.total_chunks
        if not chunked.chunks:
            return result

        try:
            embedded = await self.embedder.embed_chunks(chunked.chunks)
        except EmbeddingFailure as exc:
            if not skip_errors:
                raise
            self.log.warning("Embedding failed for batch starting at %s: %s", batch[0], exc.message)
            result.errors.extend(IndexIssue(p, "embed", exc.message) for p in _files(chunked.chunks))
            return result
        by_id = {c.id: c for c in chunked.chunks}
        for item in embedded.errors:
            chunk = by_id.get(item.id)
            result.errors.append(IndexIssue(chunk.file_path if chunk else None, "embed", item.error))
        if embedded.errors and not skip_errors:
            raise EmbeddingFailure(f"{len(embedded.errors)} chunk embeddings failed")

        points = [self._point(c, options) for c in chunked.chunks if c.embedding is not None]
        result.embeddings_generated = len(points)
        if not points:
            return result
        try:
            await with_retry(
                "upsert",
                lambda: self.store.upsert(collection, points),
                attempts=self.store_settings.retry_attempts,
                base_delay=self.store_settings.retry_base_delay,
                timeout=self.store_settings.timeout_seconds,
                logger=self.log,
            )
        except StoreFailure as exc:
            if not skip_errors:
                raise
            result.errors.extend(IndexIssue(p, "store", exc.message) for p in _files(chunked.chunks))
            return result
        result.points_stored = len(points)
        return result

    @staticmethod
    def _point(chunk: CodeChunk, options: IndexOptions) -> VectorPoint:
        payload = payload_from_chunk(
            chunk,
            sha256=content_hash(chunk.content),
            commit=options.commit,
            branch=options.branch,
            author=options.author,
            repository=options.repository,
        )
        return VectorPoint(id=chunk.id, vector=list(chunk.embedding or []), payload=payload.model_dump(mode="json"))

    async def delete_file(self, file_path: str, collection: Optional[str] = None) -> None:
        """Remove every stored chunk of ``file_path``."""
        name = collection or self.store_settings.chunks_collection
        if not await self.store.collection_exists(name):
            return
        await with_retry(
            "delete",
            lambda: self.store.delete_points(name, {"must": [{"key": "file", "match": {"value": file_path}}]}),
            attempts=self.store_settings.retry_attempts,
            base_delay=self.store_settings.retry_base_delay,
            timeout=self.store_settings.timeout_seconds,
            logger=self.log,
        )
        self.log.debug("Deleted chunks of %s from %s", file_path, name)
