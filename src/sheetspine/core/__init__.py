"""Sheetspine Core -- caching primitives for execution-bounded hosts.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (SheetSpineError, CacheMiss)
        result.py          Result[T] envelope (Ok / Err / try_result)
        values.py          Tagged value model for serialized payloads

    Layer 2 -- Encoding & Storage
        codec.py           gzip + base64 text codec
        backends.py        KeyValueBackend protocol (InMemory, Redis)
        chunk_store.py     CompressedChunkStore for oversized results
        tiered_cache.py    TieredCache (L1 map + L2 backend)

    Layer 3 -- Change Detection
        hashing.py         Deterministic hashing for fingerprints
        fingerprint.py     FingerprintService (extent + boundary cells)

    Cross-cutting
        logging.py         structlog configuration
        settings.py        SheetSpineSettings (pydantic-settings)
"""

from sheetspine.core.backends import InMemoryBackend, KeyValueBackend, RedisBackend
from sheetspine.core.chunk_store import ChunkedPayload, CompressedChunkStore
from sheetspine.core.errors import (
    AuthError,
    BadRequestError,
    CacheError,
    CacheMiss,
    CircuitOpenError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    MissReason,
    NotFoundError,
    OperationTimeoutError,
    PermanentError,
    RateLimitError,
    RetryExhaustedError,
    SheetSpineError,
    TransientError,
    UnsupportedValueError,
    ValueTooLargeError,
)
from sheetspine.core.fingerprint import FingerprintService
from sheetspine.core.result import Err, Ok, Result, try_result
from sheetspine.core.tiered_cache import CacheEntry, CacheStats, TieredCache

__all__ = [
    # Storage
    "KeyValueBackend",
    "InMemoryBackend",
    "RedisBackend",
    "ChunkedPayload",
    "CompressedChunkStore",
    "CacheEntry",
    "CacheStats",
    "TieredCache",
    "FingerprintService",
    # Result
    "Ok",
    "Err",
    "Result",
    "try_result",
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "SheetSpineError",
    "TransientError",
    "RateLimitError",
    "OperationTimeoutError",
    "PermanentError",
    "AuthError",
    "NotFoundError",
    "BadRequestError",
    "CircuitOpenError",
    "RetryExhaustedError",
    "CacheError",
    "ValueTooLargeError",
    "UnsupportedValueError",
    "ConfigError",
    "MissReason",
    "CacheMiss",
]
