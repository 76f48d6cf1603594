"""Genomic interval operations.

This module provides small interval utilities used by the predictor and
the graph builder. All intervals are 1-based and inclusive.

- Overlap detection
- Interval merging
- Coverage islands from aligned blocks (numpy sweep, no per-base arrays)

Example:
    >>> from spliceforge.utils.intervals import Interval, coverage_islands
    >>> coverage_islands([Interval(1, 10), Interval(5, 20)], min_coverage=1)
    [Interval(start=1, end=20)]
"""

from __future__ import annotations

from typing import Iterable, NamedTuple

import numpy as np

# =============================================================================
# Data Structures
# =============================================================================


class Interval(NamedTuple):
    """A simple interval on one sequence.

    Attributes:
        start: First base (1-based).
        end: Last base (1-based, inclusive).
    """

    start: int
    end: int

    @property
    def length(self) -> int:
        """Get interval length."""
        return self.end - self.start + 1

    def overlaps(self, other: Interval) -> bool:
        """Check if this interval overlaps another."""
        return self.start <= other.end and other.start <= self.end

    def contains(self, position: int) -> bool:
        """Check if this interval contains a position."""
        return self.start <= position <= self.end


# =============================================================================
# Overlap Operations
# =============================================================================


def overlap_length(a: Interval, b: Interval) -> int:
    """Calculate overlap length between two intervals.

    Args:
        a: First interval.
        b: Second interval.

    Returns:
        Overlap length (0 if no overlap).
    """
    if not a.overlaps(b):
        return 0
    return min(a.end, b.end) - max(a.start, b.start) + 1


# =============================================================================
# Merge Operations
# =============================================================================


def merge_intervals(intervals: Iterable[Interval], adjacent: bool = True) -> list[Interval]:
    """Merge overlapping intervals.

    Args:
        intervals: Intervals to merge.
        adjacent: Also merge intervals that touch without overlapping.

    Returns:
        List of merged intervals, sorted by start.
    """
    sorted_intervals = sorted(intervals)
    if not sorted_intervals:
        return []

    gap = 1 if adjacent else 0
    merged = [sorted_intervals[0]]
    for current in sorted_intervals[1:]:
        last = merged[-1]
        if current.start <= last.end + gap:
            merged[-1] = Interval(last.start, max(last.end, current.end))
        else:
            merged.append(current)

    return merged


# =============================================================================
# Coverage Operations
# =============================================================================


def coverage_islands(blocks: Iterable[Interval], min_coverage: int = 1) -> list[Interval]:
    """Find maximal runs with depth at least ``min_coverage``.

    Depth is computed by a sweep over block boundaries: each block adds
    +1 at its start and -1 after its end. Only boundary positions are
    materialised, so memory scales with the number of blocks rather than
    the length of the sequence.

    Args:
        blocks: Aligned blocks (1-based inclusive).
        min_coverage: Minimum depth for a base to be covered.

    Returns:
        Sorted, non-overlapping covered intervals. Adjacent runs are joined.
    """
    block_list = list(blocks)
    if not block_list:
        return []

    starts = np.fromiter((b.start for b in block_list), dtype=np.int64, count=len(block_list))
    ends = np.fromiter((b.end + 1 for b in block_list), dtype=np.int64, count=len(block_list))

    positions = np.concatenate([starts, ends])
    deltas = np.concatenate(
        [np.ones(len(starts), dtype=np.int64), -np.ones(len(ends), dtype=np.int64)]
    )

    # Sum deltas at identical positions, then accumulate depth
    unique_pos, inverse = np.unique(positions, return_inverse=True)
    summed = np.zeros(len(unique_pos), dtype=np.int64)
    np.add.at(summed, inverse, deltas)
    depth = np.cumsum(summed)

    islands: list[Interval] = []
    run_start: int | None = None
    for i, pos in enumerate(unique_pos):
        covered = depth[i] >= min_coverage
        if covered and run_start is None:
            run_start = int(pos)
        elif not covered and run_start is not None:
            islands.append(Interval(run_start, int(pos) - 1))
            run_start = None

    return merge_intervals(islands)
