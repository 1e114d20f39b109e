"""
Structured error types for the sheetspine caching and resilience layer.

Every failure that crosses a sheetspine boundary carries a category and an
explicit retry decision, so the retry orchestrator, the batch scheduler and
the health surface can all reason about it the same way.

Manifesto:
    Remote spreadsheet calls fail in a handful of recognisable ways: the
    service is briefly unavailable, the quota is spent, or the request is
    simply wrong. The first two are worth waiting for; the last never is.

    - **Typed hierarchy:** TransientError, RateLimitError, PermanentError
    - **Explicit retry semantics:** ``retryable`` on every error
    - **Rich context:** ErrorContext for structured logging
    - **Error chaining:** ``cause`` preserved as ``__cause__``

Architecture:
    ::

        SheetSpineError  (category, retryable, retry_after, context, cause)
        ├── TransientError         (retryable)
        │   ├── RateLimitError     (quota exceeded, long fixed delay)
        │   └── OperationTimeoutError
        ├── PermanentError         (never retried)
        │   ├── AuthError
        │   ├── NotFoundError
        │   └── BadRequestError
        ├── CircuitOpenError       (fail fast, no attempt made)
        ├── RetryExhaustedError    (wraps the last underlying failure)
        ├── CacheError             (bookkeeping only, never surfaced to loaders)
        │   ├── ValueTooLargeError
        │   └── UnsupportedValueError
        └── ConfigError

        CacheMiss  (Err payload for cache lookups, not raised by get())

Tags:
    error-handling, exception-hierarchy, retry-logic, sheetspine

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    NETWORK = "NETWORK"           # Connection resets, 5xx
    TIMEOUT = "TIMEOUT"           # Operation exceeded its deadline
    QUOTA = "QUOTA"               # Rate limit / quota exceeded
    AUTH = "AUTH"                 # Permission denied, bad credentials
    SOURCE = "SOURCE"             # Not found, bad request
    CIRCUIT = "CIRCUIT"           # Circuit breaker rejected the call
    CACHE = "CACHE"               # Cache bookkeeping
    CONFIG = "CONFIG"             # Invalid settings
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        operation_id: Circuit-breaker / retry operation identifier
        cache_key: Cache key being read or written
        source_id: Identifier of the remote data source
        attempt: Attempt number (1-based) when the error happened
        metadata: Additional key-value pairs
    """

    operation_id: str | None = None
    cache_key: str | None = None
    source_id: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["operation_id", "cache_key", "source_id", "attempt"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class SheetSpineError(Exception):
    """
    Base exception for all sheetspine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so callers
    rarely need to pass them explicitly.

    Examples:
        >>> error = SheetSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        >>> error = TransientError("Service unavailable").with_context(
        ...     operation_id="load_sheet"
        ... )
        >>> error.context.operation_id
        'load_sheet'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SheetSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise NotFoundError("Sheet missing").with_context(source_id="AL_Extract")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# TRANSIENT ERRORS (Retried with backoff)
# =============================================================================


class TransientError(SheetSpineError):
    """Temporary failure that may succeed on retry (5xx, resets, timeouts)."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class RateLimitError(TransientError):
    """
    Remote quota or rate limit exceeded.

    Retried after a fixed, longer delay rather than the exponential schedule.
    """

    default_category = ErrorCategory.QUOTA


class OperationTimeoutError(TransientError):
    """
    An operation ran past its per-attempt timeout.

    Attributes:
        timeout: The timeout value that was exceeded
        elapsed: How long the operation ran before the caller gave up
        operation: Name/description of the operation
    """

    default_category = ErrorCategory.TIMEOUT

    def __init__(
        self,
        timeout: float,
        elapsed: float | None = None,
        operation: str = "operation",
    ):
        self.timeout = timeout
        self.elapsed = elapsed
        self.operation = operation

        msg = f"Operation '{operation}' timed out after {timeout}s"
        if elapsed is not None:
            msg += f" (ran for {elapsed:.2f}s)"

        super().__init__(msg)


# =============================================================================
# PERMANENT ERRORS (Never retried)
# =============================================================================


class PermanentError(SheetSpineError):
    """A failure that retrying cannot fix."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class AuthError(PermanentError):
    """Permission denied or invalid credentials."""

    default_category = ErrorCategory.AUTH


class NotFoundError(PermanentError):
    """Requested spreadsheet, sheet or range does not exist."""


class BadRequestError(PermanentError):
    """Malformed request (bad range notation, invalid arguments)."""


# =============================================================================
# RESILIENCE ERRORS
# =============================================================================


class CircuitOpenError(SheetSpineError):
    """Raised when a circuit is open and rejecting calls."""

    default_category = ErrorCategory.CIRCUIT

    def __init__(self, operation_id: str, retry_after: float | None = None):
        self.operation_id = operation_id
        super().__init__(
            f"Circuit breaker is open for operation: {operation_id}",
            retry_after=retry_after,
            context=ErrorContext(operation_id=operation_id),
        )


class RetryExhaustedError(SheetSpineError):
    """
    All attempts failed.

    The message always names the attempt count and the last failure's
    message; the last failure itself is chained as ``cause``.
    """

    default_category = ErrorCategory.NETWORK

    def __init__(self, operation_id: str, attempts: int, last_error: Exception):
        self.operation_id = operation_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Operation '{operation_id}' failed after {attempts} attempts: {last_error}",
            context=ErrorContext(operation_id=operation_id, attempt=attempts),
            cause=last_error,
        )


# =============================================================================
# CACHE ERRORS (Bookkeeping only)
# =============================================================================


class CacheError(SheetSpineError):
    """Cache bookkeeping failure. Logged, never allowed to mask a load."""

    default_category = ErrorCategory.CACHE


class ValueTooLargeError(CacheError):
    """A value exceeds the backend's per-entry size ceiling."""

    def __init__(self, key: str, size: int, limit: int):
        self.key = key
        self.size = size
        self.limit = limit
        super().__init__(
            f"Value for '{key}' is {size} bytes, limit is {limit}",
            context=ErrorContext(cache_key=key),
        )


class UnsupportedValueError(CacheError):
    """A value cannot be represented by the tagged value model."""


class ConfigError(SheetSpineError):
    """Invalid configuration."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# CACHE MISS (Err payload)
# =============================================================================


class MissReason(str, Enum):
    """Why a cache lookup did not produce a value."""

    ABSENT = "absent"
    EXPIRED = "expired"
    MISSING_CHUNK = "missing_chunk"
    SIZE_MISMATCH = "size_mismatch"
    CORRUPT = "corrupt"
    BACKEND_ERROR = "backend_error"


class CacheMiss(Exception):
    """
    A cache lookup that produced no value.

    Returned inside ``Err`` by ``lookup()`` methods so callers can tell a
    stored empty value apart from a failed retrieval. Never raised by the
    ``get()`` convenience methods.
    """

    def __init__(self, key: str, reason: MissReason, detail: str | None = None):
        self.key = key
        self.reason = reason
        self.detail = detail
        msg = f"Cache miss for '{key}': {reason.value}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


__all__ = [
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
