"""
Compressed, chunked persistence for result sets larger than one cache entry.

A full extract of a reporting sheet is easily several hundred kilobytes of
JSON, while the persistent backend accepts ~100KB per key. The chunk store
serializes the value, gzip-compresses it, base64-encodes it, and spreads the
text across as many ``<base_key>_chunk_<i>`` entries as needed, with a
``<base_key>_meta`` record describing the set.

Manifesto:
    A partially written or partially expired chunk set must never be read
    back as data. The only outcomes of a read are the exact value that was
    written or a miss.

    - **All-or-nothing reads:** one missing chunk ⇒ miss
    - **Length check:** concatenated text must match ``compressed_size``
    - **Soft failures:** ``put`` returns False, ``get`` returns None;
      neither ever raises into the caller's load path
    - **Bounded invalidation:** no prefix delete in the backend contract

Architecture:
    ::

        put("contracts", rows, ttl=3600)
          │
          ├── encode_value(rows)          tagged JSON → gzip → base64
          ├── delete contracts_meta       (old set becomes unreadable first)
          ├── set contracts_chunk_0 .. contracts_chunk_{n-1}
          └── set contracts_meta          {chunk_count, sizes, item_count}

        lookup("contracts")
          │
          ├── contracts_meta absent        → Err(CacheMiss(ABSENT))
          ├── any chunk absent             → Err(CacheMiss(MISSING_CHUNK))
          ├── len(text) != compressed_size → Err(CacheMiss(SIZE_MISMATCH))
          ├── decode fails                 → Err(CacheMiss(CORRUPT))
          └── Ok(rows)

Examples:
    >>> store = CompressedChunkStore(InMemoryBackend(), max_chunk_size=90_000)
    >>> store.put("contracts", rows, ttl=3600)
    True
    >>> store.get("contracts") == rows
    True

Guardrails:
    ❌ DON'T: Treat ``put() -> False`` as fatal
    ✅ DO: Carry on without the cache; the loader result is still valid

    ❌ DON'T: Set max_chunk_size at the backend ceiling
    ✅ DO: Leave headroom (90,000 of 100,000)

Tags:
    cache, compression, chunking, gzip, sheetspine

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import json
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from typing import Any

from sheetspine.core.backends import KeyValueBackend
from sheetspine.core.codec import decode_value, encode_value
from sheetspine.core.errors import CacheMiss, ConfigError, MissReason, UnsupportedValueError
from sheetspine.core.logging import get_logger
from sheetspine.core.result import Err, Ok, Result

logger = get_logger(__name__)

DEFAULT_MAX_CHUNK_SIZE = 90_000
DEFAULT_MAX_INVALIDATE_CHUNKS = 100


def chunk_key(base_key: str, index: int) -> str:
    return f"{base_key}_chunk_{index}"


def meta_key(base_key: str) -> str:
    return f"{base_key}_meta"


@dataclass(frozen=True)
class ChunkedPayload:
    """Metadata record stored under ``<base_key>_meta``."""

    base_key: str
    chunk_count: int
    original_size: int
    compressed_size: int
    item_count: int
    created_at: float
    ttl: float | None = None

    @property
    def expires_at(self) -> float | None:
        return self.created_at + self.ttl if self.ttl is not None else None

    def to_json(self) -> str:
        return json.dumps(asdict(self), separators=(",", ":"))

    @classmethod
    def from_json(cls, raw: str) -> ChunkedPayload:
        data = json.loads(raw)
        ttl = data.get("ttl")
        payload = cls(
            base_key=str(data["base_key"]),
            chunk_count=int(data["chunk_count"]),
            original_size=int(data["original_size"]),
            compressed_size=int(data["compressed_size"]),
            item_count=int(data["item_count"]),
            created_at=float(data["created_at"]),
            ttl=float(ttl) if ttl is not None else None,
        )
        if payload.chunk_count < 1 or payload.compressed_size < 0:
            raise ValueError(f"Invalid chunk metadata: {raw!r}")
        return payload


@dataclass
class ChunkStoreStats:
    """Counters for monitoring the chunk store."""

    puts: int = 0
    put_failures: int = 0
    chunks_written: int = 0
    hits: int = 0
    misses: Counter = field(default_factory=Counter)
    invalidations: int = 0

    @property
    def total_misses(self) -> int:
        return sum(self.misses.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "puts": self.puts,
            "put_failures": self.put_failures,
            "chunks_written": self.chunks_written,
            "hits": self.hits,
            "misses": dict(self.misses),
            "invalidations": self.invalidations,
        }


class CompressedChunkStore:
    """Chunked, compressed value store on top of a size-limited backend.

    Attributes:
        max_chunk_size: Largest chunk written (characters of base64 text).
        max_invalidate_chunks: Upper bound on chunk keys deleted by invalidate.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
        max_invalidate_chunks: int = DEFAULT_MAX_INVALIDATE_CHUNKS,
        clock: Callable[[], float] = time.time,
    ):
        if max_chunk_size <= 0:
            raise ConfigError(f"max_chunk_size must be positive, got {max_chunk_size}")
        if max_chunk_size > backend.max_value_size:
            raise ConfigError(
                f"max_chunk_size ({max_chunk_size}) exceeds the backend's "
                f"per-entry limit ({backend.max_value_size})"
            )
        self._backend = backend
        self.max_chunk_size = max_chunk_size
        self.max_invalidate_chunks = max_invalidate_chunks
        self._clock = clock
        self.stats = ChunkStoreStats()

    # ── Writing ──────────────────────────────────────────────────────

    def put(self, base_key: str, value: Any, ttl: float | None = None) -> bool:
        """Store ``value`` under ``base_key``.

        Returns:
            ``True`` when every chunk and the metadata record were written.
            ``False`` if the value cannot be encoded or any write failed;
            callers should then operate without cache.
        """
        try:
            encoded = encode_value(value)
        except (UnsupportedValueError, TypeError, ValueError, RecursionError) as e:
            self.stats.put_failures += 1
            logger.warning("chunk_store.encode_failed", key=base_key, error=str(e))
            return False

        text = encoded.text
        chunks = [
            text[i : i + self.max_chunk_size]
            for i in range(0, len(text), self.max_chunk_size)
        ] or [""]
        payload = ChunkedPayload(
            base_key=base_key,
            chunk_count=len(chunks),
            original_size=encoded.original_size,
            compressed_size=len(text),
            item_count=encoded.item_count,
            created_at=self._clock(),
            ttl=ttl,
        )

        try:
            self._backend.delete(meta_key(base_key))
            for index, chunk in enumerate(chunks):
                self._backend.set(chunk_key(base_key, index), chunk, ttl)
                self.stats.chunks_written += 1
            self._backend.set(meta_key(base_key), payload.to_json(), ttl)
        except Exception as e:
            self.stats.put_failures += 1
            logger.warning(
                "chunk_store.write_failed",
                key=base_key,
                chunks=len(chunks),
                error=str(e),
            )
            return False

        self.stats.puts += 1
        logger.info(
            "chunk_store.put",
            key=base_key,
            chunks=payload.chunk_count,
            original_size=payload.original_size,
            compressed_size=payload.compressed_size,
            items=payload.item_count,
        )
        return True

    # ── Reading ──────────────────────────────────────────────────────

    def metadata(self, base_key: str) -> ChunkedPayload | None:
        """Read the metadata record, or ``None`` if absent or unreadable."""
        match self._read_meta(base_key):
            case Ok(payload):
                return payload
            case _:
                return None

    def _read_meta(self, base_key: str) -> Result[ChunkedPayload]:
        try:
            raw = self._backend.get(meta_key(base_key))
        except Exception as e:
            return Err(CacheMiss(base_key, MissReason.BACKEND_ERROR, str(e)))
        if raw is None:
            return Err(CacheMiss(base_key, MissReason.ABSENT))
        try:
            return Ok(ChunkedPayload.from_json(raw))
        except (ValueError, KeyError, TypeError) as e:
            return Err(CacheMiss(base_key, MissReason.CORRUPT, f"bad metadata: {e}"))

    def lookup(self, base_key: str) -> Result[Any]:
        """Read a value back.

        Returns:
            ``Ok(value)`` on a complete, decodable chunk set, otherwise
            ``Err(CacheMiss)`` naming the reason. Never raises.
        """
        match self._read_meta(base_key):
            case Err(miss):
                return self._miss(miss)
            case Ok(payload):
                pass

        parts: list[str] = []
        for index in range(payload.chunk_count):
            try:
                part = self._backend.get(chunk_key(base_key, index))
            except Exception as e:
                return self._miss(CacheMiss(base_key, MissReason.BACKEND_ERROR, str(e)))
            if part is None:
                return self._miss(
                    CacheMiss(
                        base_key,
                        MissReason.MISSING_CHUNK,
                        f"chunk {index} of {payload.chunk_count}",
                    )
                )
            parts.append(part)

        text = "".join(parts)
        if len(text) != payload.compressed_size:
            return self._miss(
                CacheMiss(
                    base_key,
                    MissReason.SIZE_MISMATCH,
                    f"expected {payload.compressed_size}, got {len(text)}",
                )
            )

        try:
            value = decode_value(text)
        except Exception as e:
            return self._miss(CacheMiss(base_key, MissReason.CORRUPT, str(e)))

        self.stats.hits += 1
        logger.debug("chunk_store.hit", key=base_key, chunks=payload.chunk_count)
        return Ok(value)

    def get(self, base_key: str) -> Any | None:
        """Convenience form of :meth:`lookup`: the value, or ``None`` on miss."""
        return self.lookup(base_key).unwrap_or(None)

    def _miss(self, miss: CacheMiss) -> Err:
        self.stats.misses[miss.reason.value] += 1
        if miss.reason is MissReason.ABSENT:
            logger.debug("chunk_store.miss", key=miss.key, reason=miss.reason.value)
        else:
            logger.warning(
                "chunk_store.miss",
                key=miss.key,
                reason=miss.reason.value,
                detail=miss.detail,
            )
        return Err(miss)

    # ── Invalidation ─────────────────────────────────────────────────

    def invalidate(self, base_key: str) -> None:
        """Delete the metadata record and up to ``max_invalidate_chunks`` chunks.

        When the metadata is readable only its chunks are deleted; otherwise
        chunk keys are deleted blindly up to the bound. Deleting keys that do
        not exist is a no-op.
        """
        payload = self.metadata(base_key)
        count = self.max_invalidate_chunks
        if payload is not None:
            count = min(payload.chunk_count, self.max_invalidate_chunks)

        for key in [meta_key(base_key)] + [chunk_key(base_key, i) for i in range(count)]:
            try:
                self._backend.delete(key)
            except Exception as e:
                logger.warning("chunk_store.delete_failed", key=key, error=str(e))

        self.stats.invalidations += 1
        logger.info("chunk_store.invalidated", key=base_key, chunks=count)


__all__ = [
    "DEFAULT_MAX_CHUNK_SIZE",
    "DEFAULT_MAX_INVALIDATE_CHUNKS",
    "ChunkedPayload",
    "ChunkStoreStats",
    "CompressedChunkStore",
    "chunk_key",
    "meta_key",
]
