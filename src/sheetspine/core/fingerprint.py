"""
Cheap change detection for remote, mutable datasets.

Reading a whole reporting sheet to find out whether it changed costs as much
as just loading it. A fingerprint reads only the extent and the first and
last data cells and hashes them; most edits to an append-mostly sheet move
one of those.

Manifesto:
    A fingerprint is a heuristic. An edit in the middle of the sheet that
    leaves extent and boundary cells alone goes unnoticed; that trade-off is
    accepted (pair it with a TTL). What is not accepted is a fingerprint
    that claims "unchanged" when the source could not be read at all.

    - **Two cells + extent:** constant cost regardless of sheet size
    - **Fail soft:** unreadable boundary cell → extent-only fingerprint
    - **Never falsely fresh:** unreachable source → a value no stored
      fingerprint can equal

Examples:
    >>> service = FingerprintService()
    >>> before = service.fingerprint(source)
    >>> source.set_cell(last_row, last_col, "edited")
    >>> service.is_stale(source, before)
    True

Tags:
    fingerprint, change-detection, hashing, sheetspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from sheetspine.core.hashing import compute_hash
from sheetspine.core.logging import get_logger
from sheetspine.core.values import stable_repr

if TYPE_CHECKING:
    from sheetspine.sources import DataSource

logger = get_logger(__name__)

UNAVAILABLE_PREFIX = "unavailable"


class FingerprintService:
    """Computes dataset fingerprints.

    Attributes:
        header_rows: Leading rows that hold column headers, not data.
    """

    def __init__(self, header_rows: int = 1):
        if header_rows < 0:
            raise ValueError(f"header_rows must be non-negative, got {header_rows}")
        self.header_rows = header_rows

    def fingerprint(self, source: DataSource) -> str:
        """Return a 32-hex-char fingerprint for ``source``. Never raises."""
        try:
            rows, cols = source.extent()
        except Exception as e:
            logger.warning(
                "fingerprint.source_unavailable",
                source_id=getattr(source, "source_id", None),
                error=str(e),
            )
            return f"{UNAVAILABLE_PREFIX}:{time.time_ns()}:{uuid.uuid4().hex}"

        source_id = source.source_id
        if rows <= self.header_rows or cols <= 0:
            return compute_hash(source_id, rows, cols, "empty")

        try:
            first = source.read_cell(self.header_rows, 0)
            last = source.read_cell(rows - 1, cols - 1)
        except Exception as e:
            logger.warning(
                "fingerprint.cell_unreadable",
                source_id=source_id,
                rows=rows,
                cols=cols,
                error=str(e),
            )
            return compute_hash(source_id, rows, cols, "extent-only")

        fingerprint = compute_hash(source_id, rows, cols, stable_repr(first), stable_repr(last))
        logger.debug("fingerprint.computed", source_id=source_id, rows=rows, cols=cols)
        return fingerprint

    def is_stale(self, source: DataSource, cached: str | None) -> bool:
        """True if ``cached`` is missing or no longer matches the source."""
        if cached is None:
            return True
        return self.fingerprint(source) != cached


def is_unavailable(fingerprint: str) -> bool:
    """True for the fallback value produced when the source could not be read."""
    return fingerprint.startswith(f"{UNAVAILABLE_PREFIX}:")


__all__ = ["FingerprintService", "is_unavailable", "UNAVAILABLE_PREFIX"]
