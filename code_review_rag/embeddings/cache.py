"""
Embedding cache with count, byte and age bounds.

Entries are keyed by content hash. Recency order is kept in an
OrderedDict (least recently used first) so LRU eviction is O(1); a
min-heap on ``generated_at`` with lazy deletion makes TTL expiry
O(log n). All operations take one re-entrant lock, so the cache can be
shared between indexing workers. Callers combining ``has`` and ``set``
must not assume the pair is atomic.

Optional persistence writes the whole cache as a JSON list of entries.
"""

from __future__ import annotations

import heapq
import json
import logging
import os
import tempfile
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from ..config.settings import CacheSettings

LOG = logging.getLogger("code_review_rag.embeddings.cache")

BYTES_PER_COMPONENT = 8


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


@dataclass
class CacheEntry:
    """A cached vector and its bookkeeping."""

    content_hash: str
    vector: list[float]
    model: str
    generated_at: float = field(default_factory=time.time)
    access_count: int = 0
    last_accessed: float = field(default_factory=time.time)

    @property
    def size_bytes(self) -> int:
        """Vector storage plus the serialized identifying metadata."""
        metadata = json.dumps(
            {"content_hash": self.content_hash, "model": self.model, "generated_at": self.generated_at}
        )
        return len(self.vector) * BYTES_PER_COMPONENT + len(metadata)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_hash": self.content_hash,
            "vector": self.vector,
            "model": self.model,
            "generated_at": self.generated_at,
            "access_count": self.access_count,
            "last_accessed": self.last_accessed,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(
            content_hash=data["content_hash"],
            vector=[float(v) for v in data["vector"]],
            model=data.get("model", ""),
            generated_at=float(data["generated_at"]),
            access_count=int(data.get("access_count", 0)),
            last_accessed=float(data.get("last_accessed", data["generated_at"])),
        )


@dataclass
class CacheStats:
    """Snapshot of cache usage."""

    total_entries: int = 0
    size_bytes: int = 0
    total_access_count: int = 0
    total_requests: int = 0
    total_hits: int = 0
    evicted_lru: int = 0
    evicted_bytes: int = 0
    expired: int = 0
    rejected: int = 0
    oldest_entry: Optional[str] = None
    newest_entry: Optional[str] = None

    @property
    def hit_rate(self) -> float:
        return self.total_hits / self.total_requests if self.total_requests else 0.0

    @property
    def average_access_count(self) -> float:
        return self.total_access_count / self.total_entries if self.total_entries else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "size_bytes": self.size_bytes,
            "total_access_count": self.total_access_count,
            "average_access_count": self.average_access_count,
            "total_requests": self.total_requests,
            "total_hits": self.total_hits,
            "hit_rate": self.hit_rate,
            "evicted_lru": self.evicted_lru,
            "evicted_bytes": self.evicted_bytes,
            "expired": self.expired,
            "rejected": self.rejected,
            "oldest_entry": self.oldest_entry,
            "newest_entry": self.newest_entry,
        }


class EmbeddingCache:
    """
    Bounded content-hash → vector cache.

    Bounds are applied on ``set`` in this order: expired entries are
    purged, the least recently used entry is evicted if the count limit
    is reached, then least recently used entries are evicted until the
    new entry fits the byte budget. An entry larger than the whole
    budget is rejected.
    """

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        clock: Callable[[], float] = time.time,
        logger: Optional[logging.Logger] = None,
    ):
        self.settings = settings or CacheSettings()
        self._clock = clock
        self.log = logger or LOG
        self._lock = threading.RLock()
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._ages: list[tuple[float, str]] = []
        self._total_bytes = 0
        self._stats = CacheStats()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

        if self.settings.persistence_path:
            self.load()

    # ─── Core operations ──────────────────────────────────────────────────

    def get(self, content_hash: str) -> Optional[CacheEntry]:
        """Return a copy of the entry, or None on a miss or expiry."""
        with self._lock:
            self._stats.total_requests += 1
            entry = self._entries.get(content_hash)
            if entry is None:
                return None
            now = self._clock()
            if self._is_expired(entry, now):
                self._remove(content_hash)
                self._stats.expired += 1
                return None
            entry.access_count += 1
            entry.last_accessed = now
            self._entries.move_to_end(content_hash)
            self._stats.total_hits += 1
            return replace(entry, vector=list(entry.vector))

    def set(self, content_hash: str, entry: CacheEntry) -> bool:
        """
        Insert or replace an entry.

        Returns:
            False when the entry alone exceeds the byte budget
        """
        with self._lock:
            now = self._clock()
            stored = replace(
                entry,
                content_hash=content_hash,
                vector=list(entry.vector),
                access_count=max(entry.access_count, 1),
                last_accessed=now,
            )
            size = stored.size_bytes
            if size > self.settings.max_size_bytes:
                self._stats.rejected += 1
                self.log.warning("Embedding %s (%d bytes) exceeds cache byte budget", content_hash[:12], size)
                return False

            if self.settings.max_size <= 0:
                self._stats.rejected += 1
                return False

            if content_hash in self._entries:
                self._remove(content_hash)

            self._purge_expired(now)

            while len(self._entries) >= self.settings.max_size and self._entries:
                self._evict_lru()
                self._stats.evicted_lru += 1

            while self._total_bytes + size > self.settings.max_size_bytes and self._entries:
                self._evict_lru()
                self._stats.evicted_bytes += 1

            self._entries[content_hash] = stored
            self._total_bytes += size
            heapq.heappush(self._ages, (stored.generated_at, content_hash))

        self._after_mutation()
        return True

    def has(self, content_hash: str) -> bool:
        """Presence check without touching recency or statistics."""
        with self._lock:
            entry = self._entries.get(content_hash)
            if entry is None:
                return False
            if self._is_expired(entry, self._clock()):
                self._remove(content_hash)
                self._stats.expired += 1
                return False
            return True

    def delete(self, content_hash: str) -> bool:
        with self._lock:
            removed = self._remove(content_hash) is not None
        if removed:
            self._after_mutation()
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._ages.clear()
            self._total_bytes = 0
            self._stats = CacheStats()
        self._after_mutation()

    def stats(self) -> CacheStats:
        with self._lock:
            snapshot = replace(self._stats)
            snapshot.total_entries = len(self._entries)
            snapshot.size_bytes = self._total_bytes
            snapshot.total_access_count = sum(e.access_count for e in self._entries.values())
            if self._entries:
                ages = [e.generated_at for e in self._entries.values()]
                snapshot.oldest_entry = _iso(min(ages))
                snapshot.newest_entry = _iso(max(ages))
            return snapshot

    def cleanup(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        with self._lock:
            removed = self._purge_expired(self._clock())
        if removed:
            self.log.debug("Expired %d cache entries", removed)
            self._after_mutation()
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, content_hash: str) -> bool:
        return self.has(content_hash)

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    # ─── Internals (lock held) ────────────────────────────────────────────

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.generated_at > self.settings.ttl_seconds

    def _remove(self, content_hash: str) -> Optional[CacheEntry]:
        entry = self._entries.pop(content_hash, None)
        if entry is not None:
            self._total_bytes -= entry.size_bytes
        return entry

    def _evict_lru(self) -> None:
        content_hash, entry = self._entries.popitem(last=False)
        self._total_bytes -= entry.size_bytes
        self.log.debug("Evicted %s from embedding cache", content_hash[:12])

    def _purge_expired(self, now: float) -> int:
        removed = 0
        cutoff = now - self.settings.ttl_seconds
        while self._ages and self._ages[0][0] < cutoff:
            generated_at, content_hash = heapq.heappop(self._ages)
            entry = self._entries.get(content_hash)
            # Heap items for replaced entries are stale
            if entry is not None and entry.generated_at == generated_at and self._is_expired(entry, now):
                self._remove(content_hash)
                self._stats.expired += 1
                removed += 1
        if len(self._ages) > 2 * len(self._entries) + 64:
            self._ages = [(e.generated_at, h) for h, e in self._entries.items()]
            heapq.heapify(self._ages)
        return removed

    # ─── Persistence ──────────────────────────────────────────────────────

    def _after_mutation(self) -> None:
        if self.settings.persistence_path and self.settings.persist_on_mutation:
            self.save()

    def save(self, path: Optional[str] = None) -> None:
        """Write every entry as JSON, atomically replacing the snapshot."""
        target = Path(path or self.settings.persistence_path or "")
        if not str(target):
            raise ValueError("No persistence path configured for embedding cache")
        with self._lock:
            payload = [e.to_dict() for e in self._entries.values()]
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".cache-", suffix=".json", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(payload, handle)
            os.replace(tmp_name, target)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        self.log.debug("Saved %d cache entries to %s", len(payload), target)

    def load(self, path: Optional[str] = None) -> int:
        """
        Load a snapshot, skipping expired and malformed entries.

        Returns:
            Number of entries loaded
        """
        source = Path(path or self.settings.persistence_path or "")
        if not str(source) or not source.exists():
            return 0
        try:
            raw = json.loads(source.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            self.log.warning("Ignoring unreadable cache snapshot %s: %s", source, exc)
            return 0

        now = self._clock()
        loaded = 0
        with self._lock:
            # Oldest access first so the LRU order survives the round trip
            entries = []
            for item in raw if isinstance(raw, list) else []:
                try:
                    entries.append(CacheEntry.from_dict(item))
                except (KeyError, TypeError, ValueError) as exc:
                    self.log.debug("Skipping malformed cache entry: %s", exc)
            entries.sort(key=lambda e: e.last_accessed)
            for entry in entries:
                if self._is_expired(entry, now):
                    continue
                if self._insert_loaded(entry):
                    loaded += 1
        self.log.info("Loaded %d cache entries from %s", loaded, source)
        return loaded

    def _insert_loaded(self, entry: CacheEntry) -> bool:
        size = entry.size_bytes
        if size > self.settings.max_size_bytes or self.settings.max_size <= 0:
            return False
        self._remove(entry.content_hash)
        while len(self._entries) >= self.settings.max_size:
            self._evict_lru()
        while self._total_bytes + size > self.settings.max_size_bytes and self._entries:
            self._evict_lru()
        self._entries[entry.content_hash] = entry
        self._total_bytes += size
        heapq.heappush(self._ages, (entry.generated_at, entry.content_hash))
        return True

    # ─── Periodic sweep ───────────────────────────────────────────────────

    def start_cleanup(self) -> None:
        """Start the background TTL sweep thread."""
        if self._sweeper is not None and self._sweeper.is_alive():
            return
        self._stop.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="embedding-cache-sweep", daemon=True)
        self._sweeper.start()

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.settings.cleanup_interval_seconds):
            self.cleanup()

    def shutdown(self) -> None:
        """Stop the sweep thread and persist if configured."""
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        if self.settings.persistence_path:
            self.save()
