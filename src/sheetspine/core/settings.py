"""Settings for the sheetspine caching and resilience layer.

Every ceiling the layer enforces (chunk size, per-entry backend limit, L1
capacity, execution budget, breaker thresholds) is a field here, read from
``SHEETSPINE_*`` environment variables or a ``.env`` file.

Examples:
    >>> from sheetspine.core.settings import SheetSpineSettings
    >>> settings = SheetSpineSettings(budget_hard_limit=300.0)
    >>> coordinator = OptimizationCoordinator.from_settings(settings, backend)

Tags:
    settings, configuration, pydantic, environment, sheetspine
"""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from sheetspine.core.errors import ConfigError


class SheetSpineSettings(BaseSettings):
    """Runtime configuration for cache, retry and budget components.

    Fields
    ──────
    max_chunk_size          : Largest chunk written by CompressedChunkStore
    backend_max_value_size  : Per-entry ceiling of the persistent backend
    max_invalidate_chunks   : Chunk keys deleted blindly on invalidate
    l1_max_entries          : In-process cache capacity (FIFO eviction)
    compression_threshold   : L2 entries above this many bytes are compressed
    default_ttl             : Seconds; used when a caller gives no TTL
    circuit_*               : Breaker trip threshold and cooldown
    budget_*                : Host wall-clock ceiling and safety margin
    inter_batch_delay       : Pause between batches (remote rate limits)
    min/max_batch_size      : Bounds for adaptive batch sizing
    """

    model_config = SettingsConfigDict(
        env_prefix="SHEETSPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Chunked persistence ──────────────────────────────────────
    max_chunk_size: int = Field(default=90_000, gt=0)
    backend_max_value_size: int = Field(default=100_000, gt=0)
    max_invalidate_chunks: int = Field(default=100, gt=0)

    # ── Tiered cache ─────────────────────────────────────────────
    l1_max_entries: int = Field(default=500, gt=0)
    compression_threshold: int = Field(default=8_192, ge=0)
    default_ttl: float = Field(default=300.0, gt=0)

    # ── Circuit breaker ──────────────────────────────────────────
    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_recovery_timeout: float = Field(default=60.0, gt=0)

    # ── Execution budget ─────────────────────────────────────────
    budget_hard_limit: float = Field(default=330.0, gt=0)
    budget_safety_margin: float = Field(default=30.0, ge=0)
    inter_batch_delay: float = Field(default=0.1, ge=0)
    min_batch_size: int = Field(default=10, gt=0)
    max_batch_size: int = Field(default=1_000, gt=0)

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @model_validator(mode="after")
    def _check_ceilings(self) -> SheetSpineSettings:
        if self.max_chunk_size >= self.backend_max_value_size:
            raise ConfigError(
                f"max_chunk_size ({self.max_chunk_size}) must be below "
                f"backend_max_value_size ({self.backend_max_value_size})"
            )
        if self.budget_safety_margin >= self.budget_hard_limit:
            raise ConfigError(
                f"budget_safety_margin ({self.budget_safety_margin}) must be below "
                f"budget_hard_limit ({self.budget_hard_limit})"
            )
        if self.min_batch_size > self.max_batch_size:
            raise ConfigError("min_batch_size must not exceed max_batch_size")
        return self
