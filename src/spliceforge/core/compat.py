"""Structural compatibility of reads with splice graph features.

Rules (all coordinates 1-based inclusive):

- Junction: the read has a gap with exactly the junction's intron
  coordinates.
- Exon bin: the read overlaps the bin with a single block and no gap
  overlaps the bin. Extending unspliced across a bin boundary is allowed
  only if that boundary is not a mandatory splice (``spliced5p``/
  ``spliced3p``); leaving the bin through a gap that starts exactly at
  the boundary is always allowed.
- Donor/acceptor site: one block covers the site base and at least one
  base of the adjacent intron, i.e. the read shows the exon/intron
  boundary is not spliced there.

Reads with a known strand must match the feature strand. A fragment (all
mates sharing a query name) is compatible when at least one mate is
compatible and no overlapping mate contradicts the feature; for
junctions and sites one compatible mate suffices.

Example:
    >>> from spliceforge.core.compat import is_compatible
    >>> is_compatible(read, exon_bin)
    True
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

from spliceforge.core.features import Feature, FeatureType
from spliceforge.io.bam import AlignedRead


class Compatibility(Enum):
    """Outcome of checking one read against one feature."""

    COMPATIBLE = "compatible"
    INCOMPATIBLE = "incompatible"
    NO_OVERLAP = "no_overlap"


def _strand_ok(read: AlignedRead, feature: Feature) -> bool:
    return read.strand == "*" or feature.strand == "*" or read.strand == feature.strand


def junction_compatibility(read: AlignedRead, junction: Feature) -> Compatibility:
    """Compatibility of a read with a junction."""
    if read.seqid != junction.seqid or not read.is_spliced:
        return Compatibility.NO_OVERLAP
    if (junction.start, junction.end) not in read.junctions:
        return Compatibility.NO_OVERLAP
    if not _strand_ok(read, junction):
        return Compatibility.INCOMPATIBLE
    return Compatibility.COMPATIBLE


def exon_bin_compatibility(read: AlignedRead, exon: Feature) -> Compatibility:
    """Compatibility of a read with an exon bin (or any exon feature)."""
    if read.seqid != exon.seqid:
        return Compatibility.NO_OVERLAP

    overlapping = [b for b in read.blocks if b[0] <= exon.end and exon.start <= b[1]]
    if not overlapping:
        return Compatibility.NO_OVERLAP
    if not _strand_ok(read, exon):
        return Compatibility.INCOMPATIBLE

    # A gap inside the bin means the read splices within it
    for gap_start, gap_end in read.junctions:
        if gap_start <= exon.end and exon.start <= gap_end:
            return Compatibility.INCOMPATIBLE

    block_start, block_end = overlapping[0]
    if block_start < exon.start and exon.spliced_left:
        return Compatibility.INCOMPATIBLE
    if block_end > exon.end and exon.spliced_right:
        return Compatibility.INCOMPATIBLE
    return Compatibility.COMPATIBLE


def site_compatibility(read: AlignedRead, site: Feature) -> Compatibility:
    """Compatibility of a read with a donor or acceptor site."""
    if read.seqid != site.seqid:
        return Compatibility.NO_OVERLAP

    position = site.start
    # Donor on plus and acceptor on minus have the intron to the right
    intron_right = (site.type == FeatureType.D) != (site.strand == "-")
    neighbour = position + 1 if intron_right else position - 1
    low, high = min(position, neighbour), max(position, neighbour)

    if not any(b[0] <= position <= b[1] for b in read.blocks):
        return Compatibility.NO_OVERLAP
    if not _strand_ok(read, site):
        return Compatibility.INCOMPATIBLE
    if any(b[0] <= low and high <= b[1] for b in read.blocks):
        return Compatibility.COMPATIBLE
    return Compatibility.NO_OVERLAP


def read_compatibility(read: AlignedRead, feature: Feature) -> Compatibility:
    """Dispatch on feature type."""
    if feature.type == FeatureType.J:
        return junction_compatibility(read, feature)
    if feature.type.is_site:
        return site_compatibility(read, feature)
    return exon_bin_compatibility(read, feature)


def is_compatible(read: AlignedRead, feature: Feature) -> bool:
    """Whether a single read is compatible with a feature."""
    return read_compatibility(read, feature) == Compatibility.COMPATIBLE


def fragment_compatible(mates: Sequence[AlignedRead], feature: Feature) -> bool:
    """Whether a fragment (all mates of one query name) supports a feature.

    For exon bins every overlapping mate must be compatible; for
    junctions and sites one compatible mate is enough.
    """
    outcomes = [read_compatibility(mate, feature) for mate in mates]
    if Compatibility.COMPATIBLE not in outcomes:
        return False
    if feature.is_exon:
        return Compatibility.INCOMPATIBLE not in outcomes
    return True
