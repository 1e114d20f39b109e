"""Load strategies keyed by expected result size.

Small results are cheap to reload and change rarely enough to cache for a
long time. Large extracts are expensive, more likely to be mid-edit, and
more likely to hit quota limits, so they get shorter TTLs, smaller batches
and more patient retries, and they are persisted through the chunk store.

    ==========  ===========  ======  =====  =======  ===========
    name        size hint    ttl(s)  batch  retries  chunk store
    ==========  ===========  ======  =====  =======  ===========
    small       < 100        1800    500    2        no
    medium      < 1000       900     200    3        no
    large       >= 1000      300     100    5        yes
    ==========  ===========  ======  =====  =======  ===========

No size hint means medium.
"""

from __future__ import annotations

from dataclasses import dataclass

from sheetspine.execution.retry import RetryPolicy

SMALL_LIMIT = 100
LARGE_LIMIT = 1_000


@dataclass(frozen=True)
class LoadStrategy:
    name: str
    ttl: float
    batch_size: int
    max_retries: int
    use_chunk_store: bool = False

    def retry_policy(self, base: RetryPolicy | None = None) -> RetryPolicy:
        """``base`` (or the default policy) with this strategy's retry count."""
        return (base or RetryPolicy()).with_max_retries(self.max_retries)


SMALL = LoadStrategy(name="small", ttl=1_800.0, batch_size=500, max_retries=2)
MEDIUM = LoadStrategy(name="medium", ttl=900.0, batch_size=200, max_retries=3)
LARGE = LoadStrategy(
    name="large", ttl=300.0, batch_size=100, max_retries=5, use_chunk_store=True
)


def select_strategy(expected_size: int | None) -> LoadStrategy:
    if expected_size is None:
        return MEDIUM
    if expected_size < SMALL_LIMIT:
        return SMALL
    if expected_size < LARGE_LIMIT:
        return MEDIUM
    return LARGE


@dataclass(frozen=True)
class LoadOptions:
    """Per-call options for the coordinator's load methods.

    Attributes:
        expected_size: Size hint used to pick the strategy
        ttl: Overrides the strategy TTL (seconds)
        policy: Overrides the retry policy (its max_retries is kept)
        operation_id: Circuit breaker key; defaults to the cache key
        batch_size: Overrides adaptive batch sizing
        force_refresh: Skip cache reads (results are still stored)
    """

    expected_size: int | None = None
    ttl: float | None = None
    policy: RetryPolicy | None = None
    operation_id: str | None = None
    batch_size: int | None = None
    force_refresh: bool = False

    @property
    def strategy(self) -> LoadStrategy:
        return select_strategy(self.expected_size)

    def effective_ttl(self) -> float:
        return self.ttl if self.ttl is not None else self.strategy.ttl

    def effective_policy(self) -> RetryPolicy:
        if self.policy is not None:
            return self.policy
        return self.strategy.retry_policy()


__all__ = [
    "LoadStrategy",
    "LoadOptions",
    "SMALL",
    "MEDIUM",
    "LARGE",
    "select_strategy",
]
