"""Utility functions for SpliceForge.

- Interval operations (overlap, merge, coverage islands)
- Logging configuration
- Genomic region parsing

Example:
    >>> from spliceforge.utils.regions import parse_region
    >>> region = parse_region("chr1:1000-2000")
"""

from spliceforge.utils.intervals import Interval, coverage_islands, merge_intervals
from spliceforge.utils.regions import GenomicRegion, parse_region

__all__ = [
    "GenomicRegion",
    "Interval",
    "coverage_islands",
    "merge_intervals",
    "parse_region",
]
