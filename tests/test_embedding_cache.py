"""Tests for the bounded embedding cache."""

import json
import time

import pytest

from code_review_rag.config.settings import CacheSettings
from code_review_rag.embeddings.cache import CacheEntry, EmbeddingCache


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def entry(content_hash: str, clock: FakeClock, dim: int = 4, model: str = "mock-hash") -> CacheEntry:
    return CacheEntry(
        content_hash=content_hash,
        vector=[0.1] * dim,
        model=model,
        generated_at=clock.now,
        last_accessed=clock.now,
    )


@pytest.fixture
def clock():
    return FakeClock()


class TestCountBound:
    def test_evicts_least_recently_accessed(self, clock):
        cache = EmbeddingCache(CacheSettings(max_size=2), clock=clock)
        cache.set("a", entry("a", clock))
        clock.advance(1)
        cache.set("b", entry("b", clock))
        clock.advance(1)
        assert cache.get("a") is not None  # b is now least recently used
        clock.advance(1)
        cache.set("c", entry("c", clock))

        assert len(cache) == 2
        assert cache.get("b") is None
        assert cache.get("a") is not None
        assert cache.get("c") is not None
        assert cache.stats().evicted_lru == 1

    def test_replacing_a_key_does_not_evict(self, clock):
        cache = EmbeddingCache(CacheSettings(max_size=2), clock=clock)
        cache.set("a", entry("a", clock))
        cache.set("b", entry("b", clock))
        cache.set("a", entry("a", clock, dim=8))

        assert len(cache) == 2
        assert len(cache.get("a").vector) == 8

    def test_zero_size_rejects(self, clock):
        cache = EmbeddingCache(CacheSettings(max_size=0), clock=clock)
        assert cache.set("a", entry("a", clock)) is False
        assert len(cache) == 0


class TestByteBound:
    def test_total_bytes_stay_within_budget(self, clock):
        size = entry("h1", clock, dim=10).size_bytes
        cache = EmbeddingCache(CacheSettings(max_size=100, max_size_bytes=2 * size + 10), clock=clock)
        for key in ("h1", "h2", "h3"):
            assert cache.set(key, entry(key, clock, dim=10))

        assert len(cache) == 2
        assert cache.total_bytes <= 2 * size + 10
        assert not cache.has("h1")
        assert cache.stats().evicted_bytes == 1

    def test_oversized_entry_is_rejected(self, clock):
        cache = EmbeddingCache(CacheSettings(max_size_bytes=100), clock=clock)
        cache.set("small", entry("small", clock, dim=2))

        assert cache.set("big", entry("big", clock, dim=100)) is False
        assert cache.has("small")
        assert cache.stats().rejected == 1

    def test_size_accounts_vector_and_metadata(self, clock):
        e = entry("abc", clock, dim=10)
        assert e.size_bytes > 10 * 8


class TestExpiry:
    def test_expired_entry_is_a_miss(self, clock):
        cache = EmbeddingCache(CacheSettings(ttl_seconds=60), clock=clock)
        cache.set("a", entry("a", clock))
        clock.advance(61)

        assert cache.get("a") is None
        assert len(cache) == 0
        assert cache.stats().expired == 1

    def test_entry_within_ttl_is_a_hit(self, clock):
        cache = EmbeddingCache(CacheSettings(ttl_seconds=60), clock=clock)
        cache.set("a", entry("a", clock))
        clock.advance(59)
        assert cache.get("a") is not None

    def test_cleanup_removes_only_expired(self, clock):
        cache = EmbeddingCache(CacheSettings(ttl_seconds=60), clock=clock)
        cache.set("old", entry("old", clock))
        clock.advance(50)
        cache.set("new", entry("new", clock))
        clock.advance(20)

        assert cache.cleanup() == 1
        assert not cache.has("old")
        assert cache.has("new")

    def test_set_purges_expired_before_evicting(self, clock):
        cache = EmbeddingCache(CacheSettings(max_size=2, ttl_seconds=60), clock=clock)
        cache.set("old", entry("old", clock))
        clock.advance(30)
        cache.set("mid", entry("mid", clock))
        clock.advance(40)
        cache.set("new", entry("new", clock))

        assert cache.has("mid")
        assert cache.has("new")
        assert cache.stats().evicted_lru == 0


class TestSweep:
    def test_background_sweep_expires_entries(self, clock):
        cache = EmbeddingCache(CacheSettings(ttl_seconds=60, cleanup_interval_seconds=0.01), clock=clock)
        cache.set("old", entry("old", clock))
        clock.advance(30)
        cache.set("fresh", entry("fresh", clock))
        clock.advance(40)

        cache.start_cleanup()
        cache.start_cleanup()  # already running
        try:
            deadline = time.monotonic() + 5
            while len(cache) > 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        finally:
            cache.shutdown()

        assert len(cache) == 1
        assert cache.has("fresh")
        assert cache.stats().expired == 1

    def test_shutdown_stops_sweeping(self, clock):
        cache = EmbeddingCache(CacheSettings(ttl_seconds=60, cleanup_interval_seconds=0.01), clock=clock)
        cache.set("a", entry("a", clock))
        cache.start_cleanup()
        cache.shutdown()

        clock.advance(120)
        time.sleep(0.05)
        assert len(cache) == 1
        assert cache.stats().expired == 0


class TestStatistics:
    def test_hit_rate(self, clock):
        cache = EmbeddingCache(clock=clock)
        cache.set("a", entry("a", clock))
        cache.get("a")
        cache.get("missing")

        stats = cache.stats()
        assert stats.total_requests == 2
        assert stats.total_hits == 1
        assert stats.hit_rate == pytest.approx(0.5)
        assert stats.total_entries == 1
        assert stats.oldest_entry == stats.newest_entry

    def test_get_returns_a_copy(self, clock):
        cache = EmbeddingCache(clock=clock)
        cache.set("a", entry("a", clock))
        cache.get("a").vector.append(99.0)
        assert len(cache.get("a").vector) == 4

    def test_has_does_not_count_requests(self, clock):
        cache = EmbeddingCache(clock=clock)
        cache.set("a", entry("a", clock))
        assert "a" in cache
        assert cache.stats().total_requests == 0

    def test_clear(self, clock):
        cache = EmbeddingCache(clock=clock)
        cache.set("a", entry("a", clock))
        cache.clear()
        assert len(cache) == 0
        assert cache.total_bytes == 0


class TestPersistence:
    def test_snapshot_round_trip(self, tmp_path, clock):
        path = tmp_path / "cache" / "embeddings.json"
        settings = CacheSettings(persistence_path=str(path))
        cache = EmbeddingCache(settings, clock=clock)
        cache.set("a", CacheEntry("a", [0.25, 0.5], "mock-hash", generated_at=clock.now))
        cache.save()

        restored = EmbeddingCache(settings, clock=clock)
        hit = restored.get("a")
        assert hit is not None
        assert hit.vector == [0.25, 0.5]
        assert hit.model == "mock-hash"

    def test_load_skips_expired_and_malformed(self, tmp_path, clock):
        path = tmp_path / "embeddings.json"
        path.write_text(
            json.dumps(
                [
                    {"content_hash": "fresh", "vector": [1.0], "model": "m", "generated_at": clock.now},
                    {"content_hash": "stale", "vector": [1.0], "model": "m", "generated_at": clock.now - 10_000},
                    {"vector": [1.0]},
                ]
            )
        )
        cache = EmbeddingCache(CacheSettings(ttl_seconds=60), clock=clock)
        assert cache.load(str(path)) == 1
        assert cache.has("fresh")
        assert not cache.has("stale")

    def test_load_keeps_recency_order(self, tmp_path, clock):
        path = tmp_path / "embeddings.json"
        cache = EmbeddingCache(CacheSettings(max_size=2), clock=clock)
        cache.set("a", entry("a", clock))
        clock.advance(1)
        cache.set("b", entry("b", clock))
        clock.advance(1)
        cache.get("a")
        cache.save(str(path))

        restored = EmbeddingCache(CacheSettings(max_size=2), clock=clock)
        restored.load(str(path))
        clock.advance(1)
        restored.set("c", entry("c", clock))
        assert not restored.has("b")
        assert restored.has("a")

    def test_unreadable_snapshot_is_ignored(self, tmp_path, clock):
        path = tmp_path / "embeddings.json"
        path.write_text("{not json")
        cache = EmbeddingCache(CacheSettings(persistence_path=str(path)), clock=clock)
        assert len(cache) == 0

    def test_save_without_path(self, clock):
        with pytest.raises(ValueError):
            EmbeddingCache(clock=clock).save()

    def test_persist_on_mutation(self, tmp_path, clock):
        path = tmp_path / "embeddings.json"
        cache = EmbeddingCache(CacheSettings(persistence_path=str(path), persist_on_mutation=True), clock=clock)
        cache.set("a", entry("a", clock))
        assert path.exists()
        assert json.loads(path.read_text())[0]["content_hash"] == "a"
