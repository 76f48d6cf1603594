"""Genomic region parsing for CLI arguments and read retrieval.

Regions are always 1-based inclusive, matching feature coordinates.
pysam's 0-based half-open convention is handled only inside
``spliceforge.io.bam``.

Example:
    >>> from spliceforge.utils.regions import parse_region
    >>> region = parse_region("chr1:1000-2000")
    >>> region.seqid, region.start, region.end
    ('chr1', 1000, 2000)
    >>> parse_region("chrM").start is None
    True
"""

from __future__ import annotations

import re
from typing import NamedTuple


class GenomicRegion(NamedTuple):
    """A query region, 1-based inclusive.

    ``start``/``end`` of None mean the whole sequence.

    Attributes:
        seqid: Scaffold/chromosome name.
        start: First base, or None.
        end: Last base, or None.
    """

    seqid: str
    start: int | None = None
    end: int | None = None

    def __str__(self) -> str:
        if self.start is None or self.end is None:
            return self.seqid
        return f"{self.seqid}:{self.start}-{self.end}"

    @property
    def length(self) -> int | None:
        """Region length in base pairs, None for whole sequences."""
        if self.start is None or self.end is None:
            return None
        return self.end - self.start + 1

    def contains(self, seqid: str, position: int) -> bool:
        """Check if a 1-based position lies in this region."""
        if seqid != self.seqid:
            return False
        if self.start is None or self.end is None:
            return True
        return self.start <= position <= self.end


# Handles: chr1:1000-2000, chr1:1000..2000, chr1:1,000-2,000
_REGION_PATTERN = re.compile(r"^(.+):([\d,]+)(?:-|\.\.)([\d,]+)$")


def parse_region(region_str: str) -> GenomicRegion:
    """Parse region string into GenomicRegion.

    Supported formats:
        chr1:1000-2000      (1-based, inclusive)
        chr1:1000..2000     (GFF style)
        chr1                (whole sequence)

    Args:
        region_str: Region string.

    Returns:
        GenomicRegion with 1-based inclusive coordinates.

    Raises:
        ValueError: If format is invalid or coordinates are invalid.
    """
    region_str = region_str.strip()
    if not region_str:
        raise ValueError("Empty region string")

    match = _REGION_PATTERN.match(region_str)
    if not match:
        if ":" in region_str:
            raise ValueError(
                f"Invalid region format: '{region_str}'. "
                "Expected format: seqid:start-end (e.g., chr1:1000-2000)"
            )
        return GenomicRegion(region_str)

    seqid = match.group(1)
    start = int(match.group(2).replace(",", ""))
    end = int(match.group(3).replace(",", ""))

    if start < 1:
        raise ValueError(f"Start position must be >= 1, got {start}")
    if end < start:
        raise ValueError(f"End must be >= start: {start}-{end}")

    return GenomicRegion(seqid, start, end)
