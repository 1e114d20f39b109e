"""
Result envelope for explicit hit/miss handling.

Cache lookups in sheetspine deliberately never raise: a corrupt chunk, an
expired entry and an absent key all mean "go to the loader". Returning
``None`` for all of them hides *why* the miss happened and makes a stored
empty value indistinguishable from a failed read. ``lookup()`` methods
therefore return ``Ok(value)`` or ``Err(CacheMiss(...))``.

Architecture:
    ::

        Result[T] = Ok[T] | Err[T]

        Ok[T]   value        is_ok() / unwrap() / unwrap_or() / map()
        Err[T]  error        is_err() / unwrap_or() / map_err()

Examples:
    >>> from sheetspine.core.result import Ok, Err
    >>> match cache.lookup("contracts"):
    ...     case Ok(value):
    ...         render(value)
    ...     case Err(miss):
    ...         logger.info("cache.miss", reason=miss.reason.value)

Tags:
    result-pattern, cache-miss, sheetspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value (which may itself be empty)."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or default (always returns value for Ok)."""
        return self.value

    def unwrap_or_else(self, f: Callable[[Exception], T]) -> T:
        return self.value

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """Transform the value if Ok."""
        return Ok(f(self.value))

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        return self

    def to_dict(self) -> dict[str, Any]:
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error (a ``CacheMiss`` for lookups)."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        return default

    def unwrap_or_else(self, f: Callable[[Exception], T]) -> T:
        return f(self.error)

    def map(self, f: Callable[[T], U]) -> Result[U]:
        """No-op for Err."""
        return Err(self.error)

    def map_err(self, f: Callable[[Exception], Exception]) -> Result[T]:
        """Transform the error."""
        return Err(f(self.error))

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


def try_result(f: Callable[[], T]) -> Result[T]:
    """
    Run ``f`` and capture its outcome as a Result.

    Example:
        >>> try_result(lambda: int("42"))
        Ok(42)
        >>> try_result(lambda: int("x")).is_err()
        True
    """
    try:
        return Ok(f())
    except Exception as e:
        return Err(e)


__all__ = ["Ok", "Err", "Result", "try_result"]
