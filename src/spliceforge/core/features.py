"""Typed genomic features for splice graph analysis.

This module defines the interval and feature records shared by every
stage of the pipeline. A single tagged record type is used for all
feature kinds; the ``type`` tag decides which fields are meaningful.

Features:
    - Immutable 1-based inclusive genomic intervals with strand
    - Tagged feature records (junctions, transcript exons, exon bins, sites)
    - Deterministic ordering by position and type
    - Sorted, immutable feature collections

Coordinate conventions:
    - All coordinates are 1-based and inclusive.
    - Junctions carry intron coordinates (first to last intronic base).
    - ``spliced5p``/``spliced3p`` follow transcript orientation, so on the
      minus strand the 5' boundary is the genomic end.

Example:
    >>> from spliceforge.core.features import Feature, FeatureType
    >>> exon = Feature("chr1", 100, 200, "+", FeatureType.I)
    >>> exon.spliced5p, exon.spliced3p
    (True, True)
    >>> exon.width
    101
"""

from __future__ import annotations

import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Iterable, Iterator

import attrs

from spliceforge.errors import InputValidationError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

STRANDS = ("+", "-", "*")


# =============================================================================
# Enums
# =============================================================================


class FeatureType(Enum):
    """Feature kinds. Declaration order is the tie-break order."""

    J = "J"  # Junction
    I = "I"  # Internal exon  # noqa: E741
    F = "F"  # First exon
    L = "L"  # Last exon
    U = "U"  # Unspliced exon
    E = "E"  # Exon bin
    D = "D"  # Donor site
    A = "A"  # Acceptor site

    @property
    def rank(self) -> int:
        """Position of this type in the tie-break order."""
        return _TYPE_RANK[self]

    @property
    def is_exon(self) -> bool:
        """Whether features of this type cover exonic sequence."""
        return self in EXON_TYPES

    @property
    def is_site(self) -> bool:
        """Whether features of this type are single-base splice sites."""
        return self in SITE_TYPES


_TYPE_RANK = {t: i for i, t in enumerate(FeatureType)}

TRANSCRIPT_TYPES = frozenset(
    {FeatureType.J, FeatureType.I, FeatureType.F, FeatureType.L, FeatureType.U}
)
EXON_TYPES = frozenset(
    {FeatureType.I, FeatureType.F, FeatureType.L, FeatureType.U, FeatureType.E}
)
SITE_TYPES = frozenset({FeatureType.D, FeatureType.A})
TERMINAL_TYPES = frozenset({FeatureType.F, FeatureType.L})

# Spliced (5', 3') boundaries implied by transcript exon types
_IMPLIED_SPLICING = {
    FeatureType.I: (True, True),
    FeatureType.F: (False, True),
    FeatureType.L: (True, False),
    FeatureType.U: (False, False),
}


# =============================================================================
# Validators
# =============================================================================


def _check_strand(instance: Any, attribute: attrs.Attribute, value: str) -> None:
    if value not in STRANDS:
        raise InputValidationError(
            f"Invalid strand {value!r} for {attribute.name}; expected one of {STRANDS}"
        )


def _to_names(value: Iterable[str] | None) -> frozenset[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset([value])
    return frozenset(value)


def _check_coordinates(seqid: str, start: int, end: int) -> None:
    if not seqid:
        raise InputValidationError("Empty sequence name")
    if start < 1:
        raise InputValidationError(f"Start must be >= 1, got {seqid}:{start}")
    if end < start:
        raise InputValidationError(f"End must be >= start: {seqid}:{start}-{end}")


# =============================================================================
# Data Structures
# =============================================================================


@attrs.frozen(order=True)
class GenomicInterval:
    """An immutable stranded interval, 1-based inclusive.

    Ordered by seqid, then start, then end, then strand.

    Attributes:
        seqid: Chromosome/contig name.
        start: First base (1-based).
        end: Last base (1-based, inclusive).
        strand: "+", "-" or "*" (unknown).
    """

    seqid: str
    start: int
    end: int
    strand: str = attrs.field(default="*", validator=_check_strand)

    def __attrs_post_init__(self) -> None:
        _check_coordinates(self.seqid, self.start, self.end)

    def __str__(self) -> str:
        return f"{self.seqid}:{self.start}-{self.end}:{self.strand}"

    @property
    def width(self) -> int:
        """Number of bases covered."""
        return self.end - self.start + 1

    @property
    def five_prime(self) -> int:
        """Position of the 5' end in transcript orientation."""
        return self.end if self.strand == "-" else self.start

    @property
    def three_prime(self) -> int:
        """Position of the 3' end in transcript orientation."""
        return self.start if self.strand == "-" else self.end

    def overlaps(self, other: GenomicInterval) -> bool:
        """Check whether two intervals share at least one base.

        Strand is compared only when both strands are known.
        """
        if self.seqid != other.seqid:
            return False
        if "*" not in (self.strand, other.strand) and self.strand != other.strand:
            return False
        return self.start <= other.end and other.start <= self.end

    def contains(self, other: GenomicInterval) -> bool:
        """Check whether ``other`` lies entirely inside this interval."""
        return (
            self.seqid == other.seqid
            and self.start <= other.start
            and other.end <= self.end
        )


@attrs.frozen
class Feature:
    """A typed genomic feature.

    Junctions carry intron coordinates; exon-like features carry exon
    coordinates; donor and acceptor sites are single bases (last exonic
    base of the donor exon, first exonic base of the acceptor exon).

    For transcript exon types (I/F/L/U) the spliced flags are implied by
    the type and filled in automatically when not given.

    Attributes:
        seqid: Chromosome/contig name.
        start: First base (1-based).
        end: Last base (1-based, inclusive).
        strand: "+", "-" or "*".
        type: Feature kind.
        transcript_names: Originating transcripts (empty if unannotated).
        gene_names: Originating genes.
        feature_id: Identifier unique within a splice graph.
        gene_id: Connected component (locus) identifier.
        spliced5p: Whether the 5' boundary is a splice site (exons only).
        spliced3p: Whether the 3' boundary is a splice site (exons only).
        starts5p: A transcript starts at the 5' boundary (exon bins only).
        ends3p: A transcript ends at the 3' boundary (exon bins only).
    """

    seqid: str
    start: int
    end: int
    strand: str = attrs.field(validator=_check_strand)
    type: FeatureType = attrs.field(converter=FeatureType)
    transcript_names: frozenset[str] = attrs.field(
        factory=frozenset, converter=_to_names
    )
    gene_names: frozenset[str] = attrs.field(factory=frozenset, converter=_to_names)
    feature_id: int | None = None
    gene_id: int | None = None
    spliced5p: bool | None = None
    spliced3p: bool | None = None
    starts5p: bool = False
    ends3p: bool = False

    def __attrs_post_init__(self) -> None:
        _check_coordinates(self.seqid, self.start, self.end)

        if (self.starts5p or self.ends3p) and self.type != FeatureType.E:
            raise InputValidationError(
                f"Transcript start/end flags are only defined for exon bins: {self.label}"
            )

        if self.type in SITE_TYPES and self.start != self.end:
            raise InputValidationError(
                f"Splice site features must be a single base: {self.label}"
            )

        if self.type in _IMPLIED_SPLICING:
            implied5p, implied3p = _IMPLIED_SPLICING[self.type]
            if self.spliced5p is None:
                object.__setattr__(self, "spliced5p", implied5p)
            if self.spliced3p is None:
                object.__setattr__(self, "spliced3p", implied3p)
        elif self.type == FeatureType.E:
            if self.spliced5p is None:
                object.__setattr__(self, "spliced5p", False)
            if self.spliced3p is None:
                object.__setattr__(self, "spliced3p", False)
        elif self.spliced5p is not None or self.spliced3p is not None:
            raise InputValidationError(
                f"Spliced flags are only defined for exon features: {self.label}"
            )

    # -------------------------------------------------------------------------
    # Derived attributes
    # -------------------------------------------------------------------------

    @property
    def key(self) -> tuple[str, int, int, str, FeatureType]:
        """Merge identity: coordinates, strand and type."""
        return (self.seqid, self.start, self.end, self.strand, self.type)

    @property
    def interval(self) -> GenomicInterval:
        """The underlying genomic interval."""
        return GenomicInterval(self.seqid, self.start, self.end, self.strand)

    @property
    def width(self) -> int:
        """Number of bases covered."""
        return self.end - self.start + 1

    @property
    def is_exon(self) -> bool:
        """Whether the feature covers exonic sequence."""
        return self.type in EXON_TYPES

    @property
    def is_junction(self) -> bool:
        """Whether the feature is a junction."""
        return self.type == FeatureType.J

    @property
    def minus(self) -> bool:
        return self.strand == "-"

    @property
    def spliced_left(self) -> bool:
        """Spliced flag of the genomic left (lower) boundary."""
        return bool(self.spliced3p if self.minus else self.spliced5p)

    @property
    def spliced_right(self) -> bool:
        """Spliced flag of the genomic right (upper) boundary."""
        return bool(self.spliced5p if self.minus else self.spliced3p)

    @property
    def open_left(self) -> bool:
        """A transcript starts or ends at the genomic left boundary."""
        return self.ends3p if self.minus else self.starts5p

    @property
    def open_right(self) -> bool:
        """A transcript starts or ends at the genomic right boundary."""
        return self.starts5p if self.minus else self.ends3p

    @property
    def label(self) -> str:
        """Human-readable label, e.g. ``E:chr1:100-200:+``."""
        return f"{self.type.value}:{self.seqid}:{self.start}-{self.end}:{self.strand}"

    def sort_key(self) -> tuple:
        """Deterministic ordering key (position, strand, type, names)."""
        return (
            self.seqid,
            self.start,
            self.end,
            self.strand,
            self.type.rank,
            tuple(sorted(self.transcript_names)),
            tuple(sorted(self.gene_names)),
        )

    def evolve(self, **changes: Any) -> Feature:
        """Return a copy with the given fields replaced."""
        return attrs.evolve(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "seqid": self.seqid,
            "start": self.start,
            "end": self.end,
            "strand": self.strand,
            "type": self.type.value,
            "transcript_names": sorted(self.transcript_names),
            "gene_names": sorted(self.gene_names),
            "feature_id": self.feature_id,
            "gene_id": self.gene_id,
            "spliced5p": self.spliced5p,
            "spliced3p": self.spliced3p,
            "starts5p": self.starts5p,
            "ends3p": self.ends3p,
        }


def with_genomic_splicing(
    feature: Feature, spliced_left: bool, spliced_right: bool
) -> Feature:
    """Copy an exon feature, setting spliced flags in genomic orientation."""
    if feature.minus:
        return feature.evolve(spliced5p=spliced_right, spliced3p=spliced_left)
    return feature.evolve(spliced5p=spliced_left, spliced3p=spliced_right)


def _sorted_features(features: Iterable[Feature]) -> tuple[Feature, ...]:
    return tuple(sorted(features, key=Feature.sort_key))


@attrs.frozen
class FeatureSet:
    """An immutable, position-sorted collection of features.

    Two sets compare equal when they hold the same features, regardless
    of the order the features were supplied in.

    Example:
        >>> fs = FeatureSet([exon_b, exon_a])
        >>> [f.start for f in fs]
        [100, 500]
    """

    features: tuple[Feature, ...] = attrs.field(
        factory=tuple, converter=_sorted_features
    )

    def __iter__(self) -> Iterator[Feature]:
        return iter(self.features)

    def __len__(self) -> int:
        return len(self.features)

    def __getitem__(self, index: int) -> Feature:
        return self.features[index]

    def __bool__(self) -> bool:
        return bool(self.features)

    def by_type(self, *types: FeatureType | str) -> list[Feature]:
        """Features of the given type(s), in sorted order."""
        wanted = {FeatureType(t) for t in types}
        return [f for f in self.features if f.type in wanted]

    def filter(self, predicate: Callable[[Feature], bool]) -> FeatureSet:
        """Return the subset of features satisfying ``predicate``."""
        return FeatureSet(f for f in self.features if predicate(f))

    def loci(self) -> dict[int | None, list[Feature]]:
        """Group features by gene ID, preserving sorted order."""
        groups: dict[int | None, list[Feature]] = defaultdict(list)
        for feature in self.features:
            groups[feature.gene_id].append(feature)
        return dict(groups)

    @property
    def seqids(self) -> list[str]:
        """Sequence names present, sorted."""
        return sorted({f.seqid for f in self.features})

    def keys(self) -> set[tuple]:
        """Merge identities of all features."""
        return {f.key for f in self.features}
