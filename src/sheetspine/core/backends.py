"""
Persistent key/value backends for the level-2 cache and the chunk store.

The persistent tier is deliberately modest: string values, a per-key TTL,
single-key atomicity, a hard per-entry size ceiling and no prefix delete.
Anything that satisfies ``KeyValueBackend`` can be plugged in.

Manifesto:
    Hosted script caches (and Redis deployments with ``proto-max-bulk-len``
    tuned down) cap how much a single key may hold. Code that ignores the cap
    fails only in production, on the one day the dataset grows. Making the
    ceiling part of the backend contract lets the chunk store size its chunks
    and lets tests reproduce the limit exactly.

    - **Protocol-based:** KeyValueBackend defines the contract
    - **Size-bounded:** ``max_value_size`` is enforced on every ``set``
    - **TTL support:** Time-based expiration for all backends
    - **Zero config:** InMemoryBackend works out of the box

Architecture:
    ::

        KeyValueBackend (Protocol)
        ├── InMemoryBackend  : single process, injectable clock (tests, dev)
        └── RedisBackend     : shared across process invocations

        API: get(key) → str | None
             set(key, value, ttl_seconds)      raises ValueTooLargeError
             delete(key)                       no-op when absent
             max_value_size                    bytes per entry

Guardrails:
    ❌ DON'T: Rely on prefix deletes; the contract has none
    ✅ DO: Track the keys you write and delete them one by one

    ❌ DON'T: Write a value without checking it fits
    ✅ DO: Catch ValueTooLargeError and operate without cache

Tags:
    cache, backend, redis, in-memory, ttl, size-limit, sheetspine

Doc-Types:
    - API Reference
    - Infrastructure Guide
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from sheetspine.core.errors import ValueTooLargeError

DEFAULT_MAX_VALUE_SIZE = 100_000


def value_size(value: str) -> int:
    """Size of a stored value in bytes (UTF-8)."""
    return len(value.encode("utf-8"))


@runtime_checkable
class KeyValueBackend(Protocol):
    """Protocol for persistent backends.

    Implementations:
        - :class:`InMemoryBackend`: single-process, bounded by entry size
        - :class:`RedisBackend`: distributed, Redis-backed
    """

    max_value_size: int

    def get(self, key: str) -> str | None:
        """Return the stored string, or ``None`` if absent or expired."""
        ...

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        """Store a string value.

        Raises:
            ValueTooLargeError: If the value exceeds ``max_value_size``.
        """
        ...

    def delete(self, key: str) -> None:
        """Remove a key. No-op if the key does not exist."""
        ...


# ------------------------------------------------------------------ #
# In-Memory Backend
# ------------------------------------------------------------------ #


class InMemoryBackend:
    """Dict-backed backend with TTL and a per-entry size ceiling.

    Stands in for a hosted script cache in tests and single-process
    deployments. Expiry is lazy (checked on ``get``).

    Example:
        backend = InMemoryBackend(max_value_size=100_000)
        backend.set("contracts_meta", '{"chunk_count": 3}', ttl_seconds=3600)
        backend.get("contracts_meta")
    """

    def __init__(
        self,
        *,
        max_value_size: int = DEFAULT_MAX_VALUE_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.max_value_size = max_value_size
        self._clock = clock
        self._store: dict[str, tuple[str, float | None]] = {}

    def get(self, key: str) -> str | None:
        entry = self._store.get(key)
        if entry is None:
            return None

        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._store.pop(key, None)
            return None
        return value

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        size = value_size(value)
        if size > self.max_value_size:
            raise ValueTooLargeError(key, size, self.max_value_size)

        expires_at = (self._clock() + ttl_seconds) if ttl_seconds else None
        self._store[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self) -> list[str]:
        """Keys currently held (including not-yet-collected expired ones)."""
        return list(self._store)

    def size(self) -> int:
        """Return current number of stored keys."""
        return len(self._store)


# ------------------------------------------------------------------ #
# Redis Backend (optional)
# ------------------------------------------------------------------ #


class RedisBackend:
    """Redis-backed persistent backend.

    Requires the ``redis`` package (``pip install sheetspine[redis]``).
    Values are stored as UTF-8 strings; TTLs are rounded up to whole
    milliseconds.

    Example:
        backend = RedisBackend("redis://localhost:6379/0", key_prefix="dash:")
        backend.set("contracts_meta", "...", ttl_seconds=600)

    Raises:
        ImportError: If ``redis`` package is not installed.
    """

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        key_prefix: str = "",
        max_value_size: int = DEFAULT_MAX_VALUE_SIZE,
    ):
        try:
            import redis
        except ImportError as exc:
            msg = (
                "Redis backend requires 'redis' package. "
                "Install with: pip install sheetspine[redis]"
            )
            raise ImportError(msg) from exc

        self._client = redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix
        self.max_value_size = max_value_size

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> str | None:
        return self._client.get(self._k(key))

    def set(self, key: str, value: str, ttl_seconds: float | None = None) -> None:
        size = value_size(value)
        if size > self.max_value_size:
            raise ValueTooLargeError(key, size, self.max_value_size)

        if ttl_seconds:
            self._client.set(self._k(key), value, px=max(1, math.ceil(ttl_seconds * 1000)))
        else:
            self._client.set(self._k(key), value)

    def delete(self, key: str) -> None:
        self._client.delete(self._k(key))


__all__ = [
    "DEFAULT_MAX_VALUE_SIZE",
    "KeyValueBackend",
    "InMemoryBackend",
    "RedisBackend",
    "value_size",
]
