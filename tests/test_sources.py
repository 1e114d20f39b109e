"""Tests for sheetspine.sources."""

import pytest

from sheetspine.sources import DataSource, GridSource


@pytest.fixture
def grid() -> GridSource:
    return GridSource("AL_Extract", [["AWARD", "AMOUNT"], ["X1", 10], ["X2", 20, "note"]])


class TestGridSource:
    def test_satisfies_protocol(self, grid):
        assert isinstance(grid, DataSource)

    def test_extent_uses_widest_row(self, grid):
        assert grid.extent() == (3, 3)

    def test_read_cell(self, grid):
        assert grid.read_cell(2, 1) == 20
        assert grid.read_cell(1, 2) is None
        with pytest.raises(IndexError):
            grid.read_cell(5, 0)

    def test_read_rows_half_open(self, grid):
        assert grid.read_rows(1, 3) == [["X1", 10], ["X2", 20, "note"]]
        assert grid.read_rows(3, 10) == []

    def test_rows_are_copies(self, grid):
        rows = grid.read_rows(1, 2)
        rows[0][0] = "changed"
        assert grid.read_cell(1, 0) == "X1"

    def test_counters(self, grid):
        grid.extent()
        grid.read_cell(1, 0)
        grid.read_rows(0, 1)
        assert (grid.extent_calls, grid.cell_reads, grid.row_reads) == (1, 1, 1)

    def test_mutation_helpers(self, grid):
        grid.set_cell(1, 4, "x")
        grid.append_row(["X3", 30])
        assert grid.extent() == (4, 5)
        assert grid.read_cell(1, 4) == "x"

    def test_empty(self):
        assert GridSource("empty").extent() == (0, 0)
