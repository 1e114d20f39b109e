"""
Remote tabular data sources.

Anything with a stable id, a cheap extent lookup and cell/row reads can be
fingerprinted and loaded through the coordinator. Row and column indices are
0-based and ``read_rows`` is half-open, like a Python slice.

Examples:
    >>> grid = GridSource("AL_Extract", [["AWARD", "AMOUNT"], ["X1", 10], ["X2", 20]])
    >>> grid.extent()
    (3, 2)
    >>> grid.read_cell(2, 1)
    20
    >>> grid.read_rows(1, 3)
    [['X1', 10], ['X2', 20]]
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class DataSource(Protocol):
    """Contract for a remote, mutable table."""

    source_id: str

    def extent(self) -> tuple[int, int]:
        """Return ``(row_count, column_count)``, header rows included."""
        ...

    def read_cell(self, row: int, col: int) -> Any:
        """Read one cell."""
        ...

    def read_rows(self, start_row: int, end_row: int) -> list[list[Any]]:
        """Read rows ``start_row`` (inclusive) to ``end_row`` (exclusive)."""
        ...


class GridSource:
    """In-memory ``DataSource`` over a 2-D list.

    Counts calls so callers can verify how many remote round-trips a load
    would have cost.
    """

    def __init__(self, source_id: str, grid: list[list[Any]] | None = None):
        self.source_id = source_id
        self._grid: list[list[Any]] = [list(row) for row in (grid or [])]
        self.extent_calls = 0
        self.cell_reads = 0
        self.row_reads = 0

    def extent(self) -> tuple[int, int]:
        self.extent_calls += 1
        cols = max((len(row) for row in self._grid), default=0)
        return len(self._grid), cols

    def read_cell(self, row: int, col: int) -> Any:
        self.cell_reads += 1
        if row < 0 or row >= len(self._grid):
            raise IndexError(f"Row {row} out of range for '{self.source_id}'")
        cells = self._grid[row]
        return cells[col] if 0 <= col < len(cells) else None

    def read_rows(self, start_row: int, end_row: int) -> list[list[Any]]:
        self.row_reads += 1
        return [list(row) for row in self._grid[start_row:end_row]]

    # Mutation helpers (simulate edits to the remote sheet)

    def set_cell(self, row: int, col: int, value: Any) -> None:
        cells = self._grid[row]
        if col >= len(cells):
            cells.extend([None] * (col + 1 - len(cells)))
        cells[col] = value

    def append_row(self, row: list[Any]) -> None:
        self._grid.append(list(row))


__all__ = ["DataSource", "GridSource"]
