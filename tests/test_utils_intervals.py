"""Tests for interval utilities.

Tests cover:
- Interval geometry
- Overlap length
- Interval merging
- Coverage islands from aligned blocks
"""

from spliceforge.utils.intervals import (
    Interval,
    coverage_islands,
    merge_intervals,
    overlap_length,
)


class TestInterval:
    """Tests for Interval."""

    def test_length(self):
        """Length is inclusive."""
        assert Interval(10, 19).length == 10

    def test_overlaps(self):
        """Touching at one base counts as overlap."""
        assert Interval(1, 10).overlaps(Interval(10, 20))
        assert not Interval(1, 10).overlaps(Interval(11, 20))

    def test_contains(self):
        """Position containment is inclusive."""
        iv = Interval(5, 8)
        assert iv.contains(5)
        assert iv.contains(8)
        assert not iv.contains(9)


class TestOverlapLength:
    """Tests for overlap_length."""

    def test_partial(self):
        """Partial overlap."""
        assert overlap_length(Interval(1, 10), Interval(6, 20)) == 5

    def test_none(self):
        """Disjoint intervals."""
        assert overlap_length(Interval(1, 10), Interval(11, 20)) == 0


class TestMergeIntervals:
    """Tests for merge_intervals."""

    def test_empty(self):
        """Nothing to merge."""
        assert merge_intervals([]) == []

    def test_overlapping_and_unsorted(self):
        """Overlapping intervals are merged after sorting."""
        merged = merge_intervals([Interval(50, 60), Interval(1, 10), Interval(5, 20)])
        assert merged == [Interval(1, 20), Interval(50, 60)]

    def test_adjacent(self):
        """Adjacent intervals merge only when requested."""
        ivs = [Interval(1, 10), Interval(11, 20)]
        assert merge_intervals(ivs) == [Interval(1, 20)]
        assert merge_intervals(ivs, adjacent=False) == ivs


class TestCoverageIslands:
    """Tests for coverage_islands."""

    def test_no_blocks(self):
        """No blocks, no islands."""
        assert coverage_islands([]) == []

    def test_disjoint_blocks(self):
        """Separate blocks give separate islands."""
        islands = coverage_islands([Interval(1, 10), Interval(20, 30)])
        assert islands == [Interval(1, 10), Interval(20, 30)]

    def test_overlapping_blocks_joined(self):
        """Overlapping and adjacent blocks form one island."""
        islands = coverage_islands([Interval(1, 10), Interval(5, 15), Interval(16, 20)])
        assert islands == [Interval(1, 20)]

    def test_min_coverage(self):
        """Only bases at the required depth are kept."""
        islands = coverage_islands(
            [Interval(1, 10), Interval(5, 15), Interval(8, 20)], min_coverage=2
        )
        assert islands == [Interval(5, 15)]
