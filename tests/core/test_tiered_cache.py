"""
Tests for sheetspine.core.tiered_cache.

Covers:
- L1 hits, L2 hits with L1 backfill, misses
- Lazy TTL expiry on both levels
- Creation-order FIFO eviction
- L2 compression threshold and write failures
- get_or_set: single loader call per miss, error propagation, cacheable filter
- delete / prefix clear
"""

from __future__ import annotations

import json
from datetime import date
from unittest.mock import MagicMock

import pytest

from sheetspine.core.backends import InMemoryBackend
from sheetspine.core.errors import MissReason
from sheetspine.core.tiered_cache import CacheEntry, TieredCache


@pytest.fixture
def cache(backend, clock) -> TieredCache:
    return TieredCache(backend, max_entries=3, compression_threshold=200, clock=clock)


class TestGetSet:
    def test_basic_get_set(self, cache):
        """Cache should store and retrieve values."""
        assert cache.set("summary", {"total": 42, "as_of": date(2025, 6, 30)}, ttl=60)
        assert cache.get("summary") == {"total": 42, "as_of": date(2025, 6, 30)}
        assert cache.stats.l1_hits == 1

    def test_get_missing_key(self, cache):
        assert cache.get("missing") is None
        assert cache.lookup("missing").error.reason is MissReason.ABSENT
        assert cache.stats.misses == 2

    def test_none_is_not_cached(self, cache):
        assert cache.set("k", None) is False
        assert cache.get("k") is None

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, cache, ttl):
        with pytest.raises(ValueError):
            cache.set("k", 1, ttl=ttl)

    def test_default_ttl_used_when_omitted(self, backend, clock):
        cache = TieredCache(backend, default_ttl=30.0, clock=clock)
        cache.set("k", "v")
        clock.advance(29)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_l2_hit_backfills_l1(self, backend, clock):
        """A fresh cache (new process) reads L2 and repopulates L1."""
        TieredCache(backend, clock=clock).set("k", [1, 2, 3], ttl=60)

        fresh = TieredCache(backend, clock=clock)
        assert fresh.get("k") == [1, 2, 3]
        assert fresh.stats.l2_hits == 1
        assert fresh.l1_keys() == ["k"]

        assert fresh.get("k") == [1, 2, 3]
        assert fresh.stats.l1_hits == 1

    def test_backfill_keeps_original_expiry(self, backend, clock):
        TieredCache(backend, clock=clock).set("k", "v", ttl=60)
        clock.advance(50)

        fresh = TieredCache(backend, clock=clock)
        assert fresh.get("k") == "v"
        clock.advance(10)
        assert fresh.get("k") is None

    def test_mutating_a_hit_leaves_cache_intact(self, cache):
        rows = [["r0c0", "r0c1"], ["r1c0", "r1c1"]]
        cache.set("rows", rows, ttl=60)
        rows.append(["late"])

        hit = cache.get("rows")
        hit[0][0] = "changed"
        hit.pop()

        assert cache.get("rows") == [["r0c0", "r0c1"], ["r1c0", "r1c1"]]

    def test_mutating_an_l2_hit_leaves_backfill_intact(self, backend, clock):
        TieredCache(backend, clock=clock).set("k", {"rows": [1, 2]}, ttl=60)

        fresh = TieredCache(backend, clock=clock)
        fresh.get("k")["rows"].append(3)

        assert fresh.get("k") == {"rows": [1, 2]}
        assert fresh.stats.l1_hits == 1


class TestExpiry:
    def test_ttl_expiry(self, cache, clock):
        """An entry past expires_at is deleted and reported as a miss."""
        cache.set("temp", "value", ttl=10)
        clock.advance(9)
        assert cache.get("temp") == "value"

        clock.advance(1)
        result = cache.lookup("temp")
        assert result.is_err()
        assert result.error.reason is MissReason.EXPIRED
        assert "temp" not in cache.l1_keys()
        assert cache.stats.expirations >= 1

    def test_entry_invariant(self):
        with pytest.raises(ValueError):
            CacheEntry("k", 1, created_at=10.0, expires_at=10.0, compressed=False, size_bytes=1)

    def test_ttl_below_clock_resolution(self, cache, clock):
        """now + ttl == now still yields an entry that expires after now."""
        assert clock.now + 1e-14 == clock.now

        assert cache.set("k", "v", ttl=1e-14)
        assert cache.get("k") == "v"
        clock.advance(1)
        assert cache.get("k") is None

    def test_no_ttl_never_expires(self, backend, clock):
        cache = TieredCache(backend, default_ttl=None, clock=clock)
        cache.set("k", "v")
        clock.advance(10 ** 9)
        assert cache.get("k") == "v"


class TestEviction:
    def test_fifo_eviction(self, clock):
        """Oldest-created entry is evicted first, even if recently read."""
        cache = TieredCache(None, max_entries=3, clock=clock)
        for key in ["a", "b", "c"]:
            cache.set(key, key)
            clock.advance(1)

        cache.get("a")
        cache.set("d", "d")

        assert cache.l1_keys() == ["b", "c", "d"]
        assert cache.get("a") is None
        assert cache.stats.evictions == 1

    def test_reset_moves_entry_to_newest(self, clock):
        cache = TieredCache(None, max_entries=2, clock=clock)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        cache.set("c", 4)

        assert cache.l1_keys() == ["a", "c"]
        assert cache.get("a") == 3

    def test_evicted_entry_still_served_from_l2(self, cache):
        for key in ["a", "b", "c", "d"]:
            cache.set(key, key, ttl=60)

        assert "a" not in cache.l1_keys()
        assert cache.get("a") == "a"
        assert cache.stats.l2_hits == 1

    def test_l1_bytes_tracked(self, clock):
        cache = TieredCache(None, max_entries=10, clock=clock)
        cache.set("a", "xxxx")
        assert cache.stats.l1_bytes == len(b'"xxxx"')
        cache.delete("a")
        assert cache.stats.l1_bytes == 0


class TestCompression:
    def test_small_payload_stored_plain(self, cache, backend):
        cache.set("small", {"a": 1}, ttl=60)
        envelope = json.loads(backend.get("small"))
        assert envelope["c"] is False

    def test_large_payload_compressed(self, cache, backend, clock):
        value = [{"AWARD": f"X{i}", "AMOUNT": i} for i in range(200)]
        cache.set("large", value, ttl=60)

        envelope = json.loads(backend.get("large"))
        assert envelope["c"] is True
        assert TieredCache(backend, clock=clock).get("large") == value

    def test_l2_write_failure_keeps_l1(self, clock):
        backend = InMemoryBackend(max_value_size=50, clock=clock)
        cache = TieredCache(backend, compression_threshold=10_000, clock=clock)

        assert cache.set("k", "x" * 100, ttl=60) is False
        assert cache.get("k") == "x" * 100
        assert cache.stats.l2_write_failures == 1

    def test_corrupt_l2_entry_is_a_miss(self, backend, clock):
        backend.set("k", "not an envelope")
        cache = TieredCache(backend, clock=clock)

        assert cache.lookup("k").error.reason is MissReason.CORRUPT
        assert backend.get("k") is None

    def test_l2_read_failure_is_a_miss(self, clock):
        backend = MagicMock()
        backend.get.side_effect = ConnectionError("down")
        cache = TieredCache(backend, clock=clock)

        assert cache.lookup("k").error.reason is MissReason.BACKEND_ERROR


class TestGetOrSet:
    def test_loader_called_once_per_miss(self, cache):
        loader = MagicMock(return_value=[1, 2, 3])

        assert cache.get_or_set("k", loader, ttl=60) == [1, 2, 3]
        assert cache.get_or_set("k", loader, ttl=60) == [1, 2, 3]
        loader.assert_called_once()

    def test_loader_called_again_after_expiry(self, cache, clock):
        loader = MagicMock(return_value="v")
        cache.get_or_set("k", loader, ttl=10)
        clock.advance(10)
        cache.get_or_set("k", loader, ttl=10)
        assert loader.call_count == 2

    def test_loader_error_propagates(self, cache):
        def loader():
            raise PermissionError("Permission denied")

        with pytest.raises(PermissionError):
            cache.get_or_set("k", loader)
        assert cache.get("k") is None

    def test_none_result_not_cached(self, cache):
        loader = MagicMock(return_value=None)
        cache.get_or_set("k", loader)
        cache.get_or_set("k", loader)
        assert loader.call_count == 2

    def test_cacheable_predicate_filters(self, cache):
        loader = MagicMock(return_value={"partial": True})
        cache.get_or_set("k", loader, cacheable=lambda v: not v["partial"])
        assert cache.get("k") is None


class TestInvalidation:
    def test_delete_both_levels(self, cache, backend):
        cache.set("k", "v", ttl=60)
        cache.delete("k")
        assert cache.get("k") is None
        assert backend.get("k") is None

    def test_delete_absent_is_noop(self, cache):
        cache.delete("never")

    def test_clear_prefix(self, cache, backend):
        cache.set("sheet_a", 1, ttl=60)
        cache.set("sheet_b", 2, ttl=60)
        cache.set("summary", 3, ttl=60)

        assert cache.clear(prefix="sheet_") == 2
        assert cache.get("sheet_a") is None
        assert backend.get("sheet_b") is None
        assert cache.get("summary") == 3

    def test_clear_all(self, cache, backend):
        cache.set("a", 1, ttl=60)
        cache.set("b", 2, ttl=60)
        cache.clear()
        assert backend.size() == 0
        assert cache.l1_keys() == []


class TestStats:
    def test_hit_rate(self, cache):
        cache.set("k", 1)
        cache.get("k")
        cache.get("k")
        cache.get("missing")
        assert cache.stats.hit_rate == pytest.approx(200 / 3)
        assert cache.stats.to_dict()["hit_rate"] == pytest.approx(66.67)
