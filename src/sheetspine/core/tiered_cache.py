"""
Two-level cache: bounded in-process map in front of a persistent backend.

Level 1 answers repeat reads inside one process invocation without any I/O.
Level 2 survives across invocations but is slower and size-limited per entry,
so larger entries are gzip-compressed before they are written.

Manifesto:
    The cache must make the dashboard faster and never make it wrong.

    - **Lazy expiry:** TTL is checked on every read; an expired entry is
      deleted and reported as a miss, never returned
    - **FIFO eviction:** when L1 is full the oldest inserted entry goes
      first (simpler and more predictable than LRU for short-lived hosts)
    - **Backfill:** an L2 hit repopulates L1 with the original expiry
    - **Cache-aside:** ``get_or_set`` runs the loader exactly once per miss
      and lets its errors propagate untouched
    - **Soft L2:** backend failures are logged and counted, never raised

Architecture:
    ::

        get(key)
          │
          ├── L1 hit (not expired) ─────────────────────────▶ value
          ├── L1 expired → delete, fall through
          ├── L2 hit (not expired) → backfill L1 ───────────▶ value
          └── miss ─────────────────────────────────────────▶ None

        set(key, value, ttl)
          ├── L1: insert (evict oldest when at max_entries)
          └── L2: envelope {c, t, e, p}; p compressed when
                  serialized size > compression_threshold

Examples:
    >>> cache = TieredCache(InMemoryBackend(), max_entries=500)
    >>> cache.set("summary", {"total": 42}, ttl=300)
    True
    >>> cache.get("summary")
    {'total': 42}
    >>> cache.get_or_set("rows", load_rows, ttl=60)

Performance:
    - L1: O(1) get/set, O(n) for prefix clear
    - L2: one backend round-trip per get/set
    - Size accounting: serialized size computed once per set

Tags:
    cache, tiered, ttl, eviction, cache-aside, sheetspine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import copy
import json
import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from sheetspine.core import values
from sheetspine.core.backends import KeyValueBackend
from sheetspine.core.codec import compress_text, decompress_text
from sheetspine.core.errors import CacheMiss, MissReason, UnsupportedValueError
from sheetspine.core.logging import get_logger
from sheetspine.core.result import Err, Ok, Result

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ENTRIES = 500
DEFAULT_COMPRESSION_THRESHOLD = 8_192


def _detached(value: Any) -> Any:
    """Deep copy of list/dict payloads so callers never alias an L1 entry."""
    if isinstance(value, (list, dict)):
        return copy.deepcopy(value)
    return value


@dataclass(frozen=True)
class CacheEntry:
    """One cached value.

    Invariant: ``expires_at`` is ``None`` (never expires) or strictly
    greater than ``created_at``.
    """

    key: str
    payload: Any
    created_at: float
    expires_at: float | None
    compressed: bool
    size_bytes: int

    def __post_init__(self) -> None:
        if self.expires_at is not None and self.expires_at <= self.created_at:
            raise ValueError(
                f"expires_at ({self.expires_at}) must be after created_at ({self.created_at})"
            )

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass
class CacheStats:
    """Counters for both cache levels."""

    l1_hits: int = 0
    l2_hits: int = 0
    misses: int = 0
    sets: int = 0
    l2_writes: int = 0
    l2_write_failures: int = 0
    evictions: int = 0
    expirations: int = 0
    l1_bytes: int = 0
    l1_entries: int = 0

    @property
    def hits(self) -> int:
        return self.l1_hits + self.l2_hits

    @property
    def hit_rate(self) -> float:
        """Hit rate as percentage."""
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100

    def to_dict(self) -> dict[str, Any]:
        return {
            "l1_hits": self.l1_hits,
            "l2_hits": self.l2_hits,
            "misses": self.misses,
            "sets": self.sets,
            "l2_writes": self.l2_writes,
            "l2_write_failures": self.l2_write_failures,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "l1_bytes": self.l1_bytes,
            "l1_entries": self.l1_entries,
            "hit_rate": round(self.hit_rate, 2),
        }


class TieredCache:
    """L1 in-process map + L2 persistent backend.

    Attributes:
        max_entries: L1 capacity before FIFO eviction.
        compression_threshold: L2 payloads above this many bytes are compressed.
        default_ttl: TTL in seconds when ``set`` is called without one
            (``None`` → never expires).
    """

    def __init__(
        self,
        backend: KeyValueBackend | None = None,
        *,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        default_ttl: float | None = 300.0,
        clock: Callable[[], float] = time.time,
    ):
        self._backend = backend
        self.max_entries = max_entries
        self.compression_threshold = compression_threshold
        self.default_ttl = default_ttl
        self._clock = clock
        self._l1: dict[str, CacheEntry] = {}
        self._l2_keys: set[str] = set()
        self._lock = threading.RLock()
        self.stats = CacheStats()

    # ── Reads ────────────────────────────────────────────────────────

    def lookup(self, key: str) -> Result[Any]:
        """Read through both levels.

        Returns:
            ``Ok(value)`` on a hit, ``Err(CacheMiss)`` otherwise. List and
            dict values are copies; mutating them leaves the cache intact.
        """
        now = self._clock()
        reason = MissReason.ABSENT

        with self._lock:
            entry = self._l1.get(key)
            if entry is not None:
                if not entry.is_expired(now):
                    self.stats.l1_hits += 1
                    return Ok(_detached(entry.payload))
                self._drop_l1(key)
                self.stats.expirations += 1
                reason = MissReason.EXPIRED

            l2 = self._read_l2(key, now)
            match l2:
                case Ok(l2_entry):
                    self._insert_l1(l2_entry)
                    self.stats.l2_hits += 1
                    logger.debug("tiered_cache.l2_hit", key=key)
                    return Ok(_detached(l2_entry.payload))
                case Err(miss):
                    if miss.reason is not MissReason.ABSENT:
                        reason = miss.reason

            self.stats.misses += 1
            return Err(CacheMiss(key, reason))

    def get(self, key: str) -> Any | None:
        """Return the cached value or ``None`` on a miss."""
        return self.lookup(key).unwrap_or(None)

    def _read_l2(self, key: str, now: float) -> Result[CacheEntry]:
        if self._backend is None:
            return Err(CacheMiss(key, MissReason.ABSENT))
        try:
            raw = self._backend.get(key)
        except Exception as e:
            logger.warning("tiered_cache.l2_read_failed", key=key, error=str(e))
            return Err(CacheMiss(key, MissReason.BACKEND_ERROR, str(e)))
        if raw is None:
            return Err(CacheMiss(key, MissReason.ABSENT))

        try:
            envelope = json.loads(raw)
            expires_at = envelope["e"]
            if expires_at is not None and now >= expires_at:
                self._delete_l2(key)
                self.stats.expirations += 1
                return Err(CacheMiss(key, MissReason.EXPIRED))

            text = envelope["p"]
            serialized = decompress_text(text) if envelope["c"] else text.encode("utf-8")
            entry = CacheEntry(
                key=key,
                payload=values.loads(serialized),
                created_at=envelope["t"],
                expires_at=expires_at,
                compressed=bool(envelope["c"]),
                size_bytes=len(serialized),
            )
        except Exception as e:
            logger.warning("tiered_cache.l2_corrupt", key=key, error=str(e))
            self._delete_l2(key)
            return Err(CacheMiss(key, MissReason.CORRUPT, str(e)))
        return Ok(entry)

    # ── Writes ───────────────────────────────────────────────────────

    def set(
        self,
        key: str,
        value: Any,
        ttl: float | None = None,
        *,
        persist: bool = True,
    ) -> bool:
        """Store a value in both levels.

        Args:
            key: Cache key.
            value: Value to cache; ``None`` is not cacheable.
            ttl: Seconds until expiry; ``None`` → ``default_ttl``.
            persist: False keeps the value in L1 only (used for values the
                chunk store already persists).

        Returns:
            ``True`` if the value is held by every configured level.
            ``False`` if the value is ``None`` or the L2 write failed
            (the L1 copy is still kept).

        Raises:
            ValueError: If ``ttl`` is not positive.
        """
        if value is None:
            return False
        ttl = self.default_ttl if ttl is None else ttl
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")

        now = self._clock()
        expires_at = None
        if ttl is not None:
            # Sub-resolution TTLs still expire strictly after now
            expires_at = max(now + ttl, math.nextafter(now, math.inf))

        try:
            serialized = values.dumps(value)
        except UnsupportedValueError as e:
            serialized = None
            logger.warning("tiered_cache.unserializable", key=key, error=str(e))

        entry = CacheEntry(
            key=key,
            payload=_detached(value),
            created_at=now,
            expires_at=expires_at,
            compressed=False,
            size_bytes=len(serialized) if serialized is not None else 0,
        )

        with self._lock:
            self._insert_l1(entry)
            self.stats.sets += 1

        if self._backend is None or not persist:
            return True
        if serialized is None:
            return False
        return self._write_l2(entry, serialized, ttl)

    def _write_l2(self, entry: CacheEntry, serialized: bytes, ttl: float | None) -> bool:
        compressed = len(serialized) > self.compression_threshold
        text = compress_text(serialized) if compressed else serialized.decode("utf-8")
        envelope = json.dumps(
            {"c": compressed, "t": entry.created_at, "e": entry.expires_at, "p": text},
            separators=(",", ":"),
        )
        try:
            self._backend.set(entry.key, envelope, ttl)
        except Exception as e:
            self.stats.l2_write_failures += 1
            logger.warning(
                "tiered_cache.l2_write_failed",
                key=entry.key,
                size=len(envelope),
                compressed=compressed,
                error=str(e),
            )
            return False

        with self._lock:
            self._l2_keys.add(entry.key)
            self.stats.l2_writes += 1
        return True

    def _insert_l1(self, entry: CacheEntry) -> None:
        """Insert (or replace) an L1 entry, evicting oldest-first when full."""
        if entry.key in self._l1:
            self._drop_l1(entry.key)
        while len(self._l1) >= self.max_entries:
            oldest = next(iter(self._l1))
            self._drop_l1(oldest)
            self.stats.evictions += 1
            logger.debug("tiered_cache.evicted", key=oldest)
        self._l1[entry.key] = entry
        self.stats.l1_bytes += entry.size_bytes
        self.stats.l1_entries = len(self._l1)

    def _drop_l1(self, key: str) -> None:
        entry = self._l1.pop(key, None)
        if entry is not None:
            self.stats.l1_bytes -= entry.size_bytes
        self.stats.l1_entries = len(self._l1)

    def _delete_l2(self, key: str) -> None:
        if self._backend is None:
            return
        try:
            self._backend.delete(key)
        except Exception as e:
            logger.warning("tiered_cache.l2_delete_failed", key=key, error=str(e))
        self._l2_keys.discard(key)

    # ── Invalidation ─────────────────────────────────────────────────

    def delete(self, key: str) -> None:
        """Remove a key from both levels. No-op if absent."""
        with self._lock:
            self._drop_l1(key)
            self._delete_l2(key)

    def clear(self, prefix: str | None = None) -> int:
        """Remove every key (or every key starting with ``prefix``).

        L2 keys are deleted one by one from the set of keys this cache wrote,
        since the backend contract has no prefix delete.

        Returns:
            Number of distinct keys removed.
        """
        with self._lock:
            l1_keys = [k for k in self._l1 if prefix is None or k.startswith(prefix)]
            l2_keys = [k for k in self._l2_keys if prefix is None or k.startswith(prefix)]
            for key in l1_keys:
                self._drop_l1(key)
            for key in l2_keys:
                self._delete_l2(key)

        removed = len(set(l1_keys) | set(l2_keys))
        logger.info("tiered_cache.cleared", prefix=prefix, removed=removed)
        return removed

    # ── Cache-aside ──────────────────────────────────────────────────

    def get_or_set(
        self,
        key: str,
        loader: Callable[[], T],
        ttl: float | None = None,
        cacheable: Callable[[T], bool] | None = None,
    ) -> T:
        """Return the cached value, or load, store and return it.

        ``loader`` runs at most once per call and only on a miss. Its
        exceptions propagate unchanged. Non-``None`` results are stored
        unless ``cacheable`` rejects them.
        """
        match self.lookup(key):
            case Ok(value):
                return value
            case Err(miss):
                logger.debug("tiered_cache.miss", key=key, reason=miss.reason.value)

        value = loader()
        if value is not None and (cacheable is None or cacheable(value)):
            self.set(key, value, ttl)
        return value

    # ── Inspection ───────────────────────────────────────────────────

    def l1_keys(self) -> list[str]:
        """L1 keys in eviction order (oldest first)."""
        with self._lock:
            return list(self._l1)

    def __contains__(self, key: str) -> bool:
        return self.lookup(key).is_ok()


__all__ = [
    "CacheEntry",
    "CacheStats",
    "TieredCache",
    "DEFAULT_MAX_ENTRIES",
    "DEFAULT_COMPRESSION_THRESHOLD",
]
