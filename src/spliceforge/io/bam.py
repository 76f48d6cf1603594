"""BAM file handling for RNA-seq alignments.

This module wraps pysam so the rest of SpliceForge sees reads as plain
gapped alignments in 1-based inclusive coordinates.

Features:
    - CIGAR parsing into aligned blocks and junction gaps
    - Splice-strand from the XS tag, or from read orientation for
      stranded libraries
    - Filtering of unmapped, secondary, supplementary and low-MAPQ records
    - Guaranteed release of file handles (context manager)

Example:
    >>> from spliceforge.io.bam import AlignmentReader
    >>> with AlignmentReader("sample1.bam", min_mapq=10) as reader:
    ...     for read in reader.fetch_reads("chr1", 1000, 50000):
    ...         print(read.name, read.junctions)
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator

import attrs
import pysam

from spliceforge.errors import ResourceError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# CIGAR operations
CIGAR_M = 0  # Match or mismatch
CIGAR_I = 1  # Insertion
CIGAR_D = 2  # Deletion
CIGAR_N = 3  # Skipped region (intron)
CIGAR_S = 4  # Soft clip
CIGAR_H = 5  # Hard clip
CIGAR_P = 6  # Padding
CIGAR_EQ = 7  # Sequence match
CIGAR_X = 8  # Sequence mismatch

# Operations that consume reference inside an aligned block
_BLOCK_OPS = frozenset({CIGAR_M, CIGAR_D, CIGAR_EQ, CIGAR_X})

STRAND_TAG = "XS"

# Library types: how read orientation maps to transcript strand
STRANDNESS = ("unstranded", "forward", "reverse")


# =============================================================================
# Data Structures
# =============================================================================


@attrs.frozen
class AlignedRead:
    """A gapped alignment in 1-based inclusive coordinates.

    Blocks are separated only by skipped-reference (N) operations;
    deletions are treated as part of the surrounding block.

    Attributes:
        name: Query (fragment) name; mates share it.
        seqid: Reference sequence name.
        blocks: Aligned blocks as (start, end) pairs, sorted.
        strand: Transcript strand ("+", "-", "*").
        has_strand_tag: Whether strand came from an explicit XS tag.
        is_paired: Whether the read is part of a pair.
        is_read1: Whether this is the first mate (or single-end).
        mapping_quality: MAPQ of the record.
    """

    name: str
    seqid: str
    blocks: tuple[tuple[int, int], ...] = attrs.field(converter=lambda b: tuple(map(tuple, b)))
    strand: str = "*"
    has_strand_tag: bool = False
    is_paired: bool = False
    is_read1: bool = True
    mapping_quality: int = 255

    @property
    def start(self) -> int:
        """First aligned base."""
        return self.blocks[0][0]

    @property
    def end(self) -> int:
        """Last aligned base."""
        return self.blocks[-1][1]

    @property
    def is_spliced(self) -> bool:
        """Whether the alignment contains at least one junction gap."""
        return len(self.blocks) > 1

    @property
    def junctions(self) -> list[tuple[int, int]]:
        """Intron spans (first, last intronic base) between blocks."""
        return [
            (left[1] + 1, right[0] - 1)
            for left, right in zip(self.blocks, self.blocks[1:])
        ]

    @property
    def anchors(self) -> list[tuple[int, int]]:
        """Aligned lengths of the blocks flanking each junction."""
        return [
            (left[1] - left[0] + 1, right[1] - right[0] + 1)
            for left, right in zip(self.blocks, self.blocks[1:])
        ]


# =============================================================================
# CIGAR Parsing
# =============================================================================


def parse_cigar_blocks(
    reference_start: int,
    cigartuples: list[tuple[int, int]] | None,
) -> list[tuple[int, int]]:
    """Split an alignment into aligned blocks.

    Args:
        reference_start: 0-based leftmost aligned position (pysam convention).
        cigartuples: pysam CIGAR tuples (operation, length).

    Returns:
        List of (start, end) blocks, 1-based inclusive.
    """
    blocks: list[tuple[int, int]] = []
    ref_pos = reference_start
    block_start: int | None = None

    for op, length in cigartuples or []:
        if op in _BLOCK_OPS:
            if block_start is None:
                block_start = ref_pos
            ref_pos += length
        elif op == CIGAR_N:
            if block_start is not None:
                blocks.append((block_start + 1, ref_pos))
                block_start = None
            ref_pos += length
        # I, S, H, P do not consume reference

    if block_start is not None:
        blocks.append((block_start + 1, ref_pos))

    return blocks


def infer_strand(segment: pysam.AlignedSegment, strandness: str) -> tuple[str, bool]:
    """Determine the transcript strand of a record.

    Args:
        segment: pysam record.
        strandness: Library type ("unstranded", "forward", "reverse").

    Returns:
        Tuple of (strand, from_tag).
    """
    try:
        tag = segment.get_tag(STRAND_TAG)
    except KeyError:
        tag = None

    if tag in ("+", "-"):
        return tag, True

    if strandness == "unstranded":
        return "*", False

    # Second mates map to the opposite strand of first mates
    same_as_transcript = not segment.is_paired or segment.is_read1
    if strandness == "reverse":
        same_as_transcript = not same_as_transcript

    if same_as_transcript:
        return ("-" if segment.is_reverse else "+"), False
    return ("+" if segment.is_reverse else "-"), False


def read_from_segment(
    segment: pysam.AlignedSegment,
    strandness: str = "unstranded",
    seqid: str | None = None,
) -> AlignedRead | None:
    """Convert a pysam record into an AlignedRead.

    Args:
        segment: pysam record.
        strandness: Library type used when the record has no XS tag.
        seqid: Reference name, when already known by the caller.

    Returns:
        AlignedRead, or None if the record has no aligned blocks.
    """
    blocks = parse_cigar_blocks(segment.reference_start, segment.cigartuples)
    if not blocks:
        return None

    strand, from_tag = infer_strand(segment, strandness)
    return AlignedRead(
        name=segment.query_name,
        seqid=seqid if seqid is not None else segment.reference_name,
        blocks=blocks,
        strand=strand,
        has_strand_tag=from_tag,
        is_paired=bool(segment.is_paired),
        is_read1=bool(segment.is_read1) if segment.is_paired else True,
        mapping_quality=segment.mapping_quality,
    )


# =============================================================================
# Alignment Reader
# =============================================================================


class AlignmentReader:
    """Read-only access to an indexed BAM file.

    The file handle is opened on construction and released by ``close``;
    use the reader as a context manager so the handle is released whether
    or not the enclosing work succeeds.

    Attributes:
        path: Path to the BAM file.
        min_mapq: Minimum mapping quality of returned reads.
        strandness: Library type for strand inference.
        sample_name: Sample label used in error messages.

    Example:
        >>> with AlignmentReader("rnaseq.bam") as reader:
        ...     reads = list(reader.fetch_reads("chr1", 1, 10000))
    """

    def __init__(
        self,
        bam_path: Path | str,
        min_mapq: int = 0,
        strandness: str = "unstranded",
        sample_name: str | None = None,
    ) -> None:
        """Open the alignment file.

        Args:
            bam_path: Path to indexed BAM file.
            min_mapq: Minimum mapping quality.
            strandness: Library type ("unstranded", "forward", "reverse").
            sample_name: Sample label for error reporting.

        Raises:
            ResourceError: If the file or its index is missing or unreadable.
        """
        self.path = Path(bam_path)
        self.min_mapq = min_mapq
        self.strandness = strandness
        self.sample_name = sample_name

        if not self.path.exists():
            raise ResourceError(
                f"BAM file not found: {self.path}",
                path=str(self.path),
                sample_name=sample_name,
            )

        index_paths = [
            Path(str(self.path) + ".bai"),
            Path(str(self.path) + ".csi"),
            self.path.with_suffix(".bai"),
        ]
        if not any(p.exists() for p in index_paths):
            raise ResourceError(
                f"BAM index not found. Please run: samtools index {self.path}",
                path=str(self.path),
                sample_name=sample_name,
            )

        self._bam: pysam.AlignmentFile | None = None
        self._open()

    def _open(self) -> None:
        try:
            self._bam = pysam.AlignmentFile(str(self.path), "rb")
        except (OSError, ValueError) as e:
            raise ResourceError(
                f"Cannot open BAM file {self.path}: {e}",
                path=str(self.path),
                sample_name=self.sample_name,
            ) from e
        logger.debug(f"Opened BAM file: {self.path.name}")

    def __enter__(self) -> AlignmentReader:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the BAM file."""
        if self._bam is not None:
            self._bam.close()
            self._bam = None

    def _require_open(self) -> pysam.AlignmentFile:
        if self._bam is None:
            raise ResourceError(
                f"BAM file not open: {self.path}",
                path=str(self.path),
                sample_name=self.sample_name,
            )
        return self._bam

    @property
    def references(self) -> list[str]:
        """List of reference sequences in BAM."""
        return list(self._require_open().references)

    @property
    def reference_lengths(self) -> dict[str, int]:
        """Dictionary of reference lengths."""
        bam = self._require_open()
        return dict(zip(bam.references, bam.lengths))

    def fetch_reads(
        self,
        seqid: str,
        start: int | None = None,
        end: int | None = None,
    ) -> Iterator[AlignedRead]:
        """Yield primary, mapped reads overlapping a region.

        Args:
            seqid: Reference sequence name.
            start: First base of the region (1-based), None for sequence start.
            end: Last base of the region (1-based inclusive), None for sequence end.

        Yields:
            AlignedRead objects in file order.

        Raises:
            ResourceError: If the region cannot be read.
        """
        bam = self._require_open()
        fetch_start = start - 1 if start is not None else None

        n_skipped = 0
        try:
            for segment in bam.fetch(seqid, fetch_start, end):
                if segment.is_unmapped or segment.is_secondary or segment.is_supplementary:
                    continue
                if segment.mapping_quality < self.min_mapq:
                    n_skipped += 1
                    continue
                read = read_from_segment(segment, self.strandness, seqid=seqid)
                if read is not None:
                    yield read
        except (OSError, ValueError) as e:
            raise ResourceError(
                f"Failed reading {self.path.name} at {seqid}: {e}",
                path=str(self.path),
                sample_name=self.sample_name,
            ) from e

        if n_skipped:
            logger.debug(f"Skipped {n_skipped} reads below MAPQ {self.min_mapq} on {seqid}")
