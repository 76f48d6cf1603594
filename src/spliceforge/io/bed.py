"""BED export and import of splice graph features.

Records are BED6: 0-based half-open coordinates, name
``"<type>:<feature_id>"`` and a score (count capped at 1000, or 0 when no
counts are given). Unknown strand is written as ".".

Exon bins whose boundaries are transcript starts or ends append those
flags to the name: ``"E:4:S"`` (start at the 5' boundary), ``"E:9:E"``
(end at the 3' boundary) or ``"E:2:SE"``. Without them a graph rebuilt
from the file would lose starts and ends inside exonic sequence.

Example:
    >>> from spliceforge.io.bed import to_interval_records, write_bed
    >>> records = to_interval_records(graph.features, counts={1: 25})
    >>> write_bed(records, "features.bed")
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import Iterable

import attrs

from spliceforge.core.features import (
    Feature,
    FeatureSet,
    FeatureType,
    with_genomic_splicing,
)
from spliceforge.core.merge import assign_gene_ids
from spliceforge.errors import InputValidationError, ResourceError

logger = logging.getLogger(__name__)

MAX_SCORE = 1000


@attrs.frozen
class IntervalRecord:
    """One BED6 line.

    Attributes:
        seqid: Chromosome/contig name.
        start: 0-based start.
        end: 0-based exclusive end.
        strand: "+", "-" or "*".
        name: ``"<type>:<feature_id>"``, plus ``":<flags>"`` for exon bins
            with transcript start/end boundaries.
        score: Integer score in [0, 1000].
    """

    seqid: str
    start: int
    end: int
    strand: str
    name: str
    score: int = 0

    def to_line(self) -> str:
        strand = "." if self.strand == "*" else self.strand
        return f"{self.seqid}\t{self.start}\t{self.end}\t{self.name}\t{self.score}\t{strand}"


def _score(count: float | None) -> int:
    if count is None or math.isnan(count):
        return 0
    return min(MAX_SCORE, max(0, int(round(count))))


def _record_name(feature: Feature) -> str:
    feature_id = "" if feature.feature_id is None else feature.feature_id
    name = f"{feature.type.value}:{feature_id}"
    flags = ("S" if feature.starts5p else "") + ("E" if feature.ends3p else "")
    return f"{name}:{flags}" if flags else name


def to_interval_records(
    features: Iterable[Feature],
    counts: dict[int, float] | None = None,
) -> list[IntervalRecord]:
    """Convert features to BED records.

    Args:
        features: Features to export.
        counts: Optional feature ID -> count used for the score column.

    Returns:
        One record per feature, in input order.
    """
    records = []
    for feature in features:
        score = _score(counts.get(feature.feature_id)) if counts else 0
        records.append(
            IntervalRecord(
                seqid=feature.seqid,
                start=feature.start - 1,
                end=feature.end,
                strand=feature.strand,
                name=_record_name(feature),
                score=score,
            )
        )
    return records


def write_bed(records: Iterable[IntervalRecord], path: Path | str) -> int:
    """Write records as BED6.

    Returns:
        Number of records written.
    """
    n = 0
    with open(path, "w") as f:
        for record in records:
            f.write(record.to_line() + "\n")
            n += 1
    logger.debug(f"Wrote {n} BED records to {path}")
    return n


def read_bed(path: Path | str) -> list[IntervalRecord]:
    """Read BED6 records; header, track and comment lines are skipped.

    Raises:
        ResourceError: If the file does not exist.
        InputValidationError: On a line with fewer than 6 columns or
            non-integer coordinates.
    """
    path = Path(path)
    if not path.exists():
        raise ResourceError(f"BED file not found: {path}", path=str(path))

    records = []
    with open(path) as f:
        for line_no, line in enumerate(f, start=1):
            line = line.rstrip("\n\r")
            if not line.strip() or line.startswith(("#", "track", "browser")):
                continue
            parts = line.split("\t")
            if len(parts) < 6:
                raise InputValidationError(f"{path.name}:{line_no}: expected 6 BED columns")
            try:
                start, end, score = int(parts[1]), int(parts[2]), int(float(parts[4]))
            except ValueError as e:
                raise InputValidationError(f"{path.name}:{line_no}: {e}") from e
            strand = "*" if parts[5] == "." else parts[5]
            records.append(IntervalRecord(parts[0], start, end, strand, parts[3], score))
    return records


def _parse_name(name: str) -> tuple[FeatureType, int | None, str]:
    type_code, _, rest = name.partition(":")
    feature_id, _, flags = rest.partition(":")
    try:
        feature_type = FeatureType(type_code)
    except ValueError as e:
        raise InputValidationError(f"Unknown feature type in BED name: {name!r}") from e
    if flags and (feature_type != FeatureType.E or set(flags) - {"S", "E"}):
        raise InputValidationError(f"Invalid boundary flags in BED name: {name!r}")
    return feature_type, int(feature_id) if feature_id.isdigit() else None, flags


def from_interval_records(records: Iterable[IntervalRecord]) -> FeatureSet:
    """Rebuild features from BED records.

    Exon bin boundaries are marked spliced where a junction flanks them
    and no adjacent exon bin continues across; transcript start/end
    flags are restored from the name. Gene IDs are recomputed.

    Raises:
        InputValidationError: If a record name does not encode a feature type.
    """
    features = []
    for record in records:
        feature_type, feature_id, flags = _parse_name(record.name)
        features.append(
            Feature(
                seqid=record.seqid,
                start=record.start + 1,
                end=record.end,
                strand=record.strand,
                type=feature_type,
                feature_id=feature_id,
                starts5p="S" in flags,
                ends3p="E" in flags,
            )
        )

    junction_ends = {(f.seqid, f.strand, f.end) for f in features if f.type == FeatureType.J}
    junction_starts = {(f.seqid, f.strand, f.start) for f in features if f.type == FeatureType.J}
    bin_ends = {(f.seqid, f.strand, f.end) for f in features if f.type == FeatureType.E}
    bin_starts = {(f.seqid, f.strand, f.start) for f in features if f.type == FeatureType.E}

    restored = []
    for f in features:
        if f.type == FeatureType.E:
            left = (f.seqid, f.strand, f.start - 1)
            right = (f.seqid, f.strand, f.end + 1)
            spliced_left = left in junction_ends and left not in bin_ends
            spliced_right = right in junction_starts and right not in bin_starts
            f = with_genomic_splicing(f, spliced_left, spliced_right)
        restored.append(f)

    return assign_gene_ids(restored)
