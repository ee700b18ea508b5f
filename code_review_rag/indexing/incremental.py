"""
Incremental re-indexing.

Detects which files changed since the last run and re-indexes only
those. SHA-256 hashes of file contents are kept in a JSON state file;
comparing them with the current tree yields a ``ChangeSet``. Chunks of
removed and modified files are deleted by file filter before the changed
files are indexed again.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Union

from .indexer import CancellationToken, IndexOptions, IndexResult, RepositoryIndexer
from .source import FileSource, FileSystemSource

LOG = logging.getLogger("code_review_rag.indexing.incremental")

STATE_VERSION = 1


@dataclass
class ChangeSet:
    """Files that changed since the last run."""

    added: list[str] = field(default_factory=list)
    modified: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    @property
    def total_changed(self) -> int:
        return len(self.added) + len(self.modified) + len(self.removed)

    def to_dict(self) -> dict:
        return {
            "added": self.added,
            "modified": self.modified,
            "removed": self.removed,
            "total_changed": self.total_changed,
        }


@dataclass
class UpdateResult:
    """Result of an incremental update."""

    change_set: ChangeSet
    total_files_scanned: int = 0
    files_deleted: int = 0
    index: Optional[IndexResult] = None
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "change_set": self.change_set.to_dict(),
            "total_files_scanned": self.total_files_scanned,
            "files_deleted": self.files_deleted,
            "index": self.index.to_dict() if self.index else None,
            "duration_ms": self.duration_ms,
        }


def compute_file_hashes(source: FileSource) -> dict[str, str]:
    """
    SHA-256 of every indexable file in ``source``.

    Files the source refuses to read (binary, oversized) are left out, so
    they count as removed if they were indexed before.
    """
    hashes: dict[str, str] = {}
    for path in source.list_files():
        content = source.read_text(path)
        if content is None:
            continue
        hashes[path] = hashlib.sha256(content.encode("utf-8")).hexdigest()
    return hashes


def detect_changes(current: dict[str, str], stored: dict[str, str]) -> ChangeSet:
    current_files = set(current)
    stored_files = set(stored)
    return ChangeSet(
        added=sorted(current_files - stored_files),
        modified=sorted(f for f in current_files & stored_files if current[f] != stored[f]),
        removed=sorted(stored_files - current_files),
    )


class HashState:
    """File-hash snapshot persisted as JSON."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            LOG.warning("Ignoring unreadable hash state %s: %s", self.path, exc)
            return {}
        if data.get("version") != STATE_VERSION:
            LOG.warning("Ignoring hash state %s with version %r", self.path, data.get("version"))
            return {}
        return dict(data.get("files", {}))

    def save(self, hashes: dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(json.dumps({"version": STATE_VERSION, "files": hashes}, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self.path)


class IncrementalIndexer:
    """
    Re-indexes only what changed.

    Workflow:
    1. Hash every indexable file
    2. Compare with the stored hashes → ChangeSet
    3. Delete chunks of removed and modified files
    4. Index added and modified files
    5. Store the new hashes; files that failed keep their old hash so
       the next run retries them
    """

    def __init__(
        self,
        indexer: RepositoryIndexer,
        state_path: Optional[Union[str, Path]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        path = state_path or indexer.settings.state_path
        if path is None:
            raise ValueError("Incremental indexing needs a state path")
        self.indexer = indexer
        self.state = HashState(path)
        self.log = logger or LOG

    async def update(
        self,
        root: Union[str, Path, FileSource],
        options: Optional[IndexOptions] = None,
        token: Optional[CancellationToken] = None,
    ) -> UpdateResult:
        started = time.monotonic()
        options = options or IndexOptions()
        source = (
            root if isinstance(root, FileSource) else FileSystemSource(root, self.indexer.settings, self.log)
        )

        current = await asyncio.to_thread(compute_file_hashes, source)
        stored = self.state.load()
        changes = detect_changes(current, stored)
        result = UpdateResult(change_set=changes, total_files_scanned=len(current))
        self.log.info(
            "Change detection: %d added, %d modified, %d removed",
            len(changes.added), len(changes.modified), len(changes.removed),
        )
        if not changes.has_changes:
            result.duration_ms = int((time.monotonic() - started) * 1000)
            return result

        for path in changes.removed + changes.modified:
            await self.indexer.delete_file(path, options.collection)
            result.files_deleted += 1

        to_index = changes.added + changes.modified
        if to_index:
            result.index = await self.indexer.index_files(source, to_index, options, token)

        self.state.save(self._next_state(current, stored, result.index))
        result.duration_ms = int((time.monotonic() - started) * 1000)
        self.log.info("Incremental update finished in %dms", result.duration_ms)
        return result

    @staticmethod
    def _next_state(
        current: Dict[str, str],
        stored: Dict[str, str],
        index: Optional[IndexResult],
    ) -> Dict[str, str]:
        hashes = dict(current)
        if index is None:
            return hashes
        for failed in {e.file for e in index.errors if e.file}:
            if failed in stored:
                hashes[failed] = stored[failed]
            else:
                hashes.pop(failed, None)
        return hashes
