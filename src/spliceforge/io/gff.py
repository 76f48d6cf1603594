"""GFF3 annotation import.

Reads gene -> mRNA/transcript -> exon hierarchies and converts every
transcript into transcript features: junctions (J) between consecutive
exons, internal exons (I), first/last exons (F/L) and single-exon
transcripts (U). Identical features from different transcripts are
merged, keeping the union of transcript and gene names.

Coordinates stay 1-based inclusive as in the file.

Example:
    >>> from spliceforge.io.gff import import_transcripts
    >>> features = import_transcripts("annotation.gff3", region="chr1:1-50000")
    >>> len(features.by_type("J"))
    412
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterator, Sequence

import attrs

from spliceforge.core.features import Feature, FeatureSet, FeatureType
from spliceforge.core.merge import merge_features
from spliceforge.errors import InputValidationError, ResourceError
from spliceforge.utils.regions import GenomicRegion, parse_region

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

# GFF3 column indices
COL_SEQID = 0
COL_SOURCE = 1
COL_TYPE = 2
COL_START = 3
COL_END = 4
COL_SCORE = 5
COL_STRAND = 6
COL_PHASE = 7
COL_ATTRIBUTES = 8

FEATURE_TYPES_GENE = {"gene", "pseudogene", "ncRNA_gene"}
FEATURE_TYPES_TRANSCRIPT = {"mRNA", "transcript", "ncRNA", "lnc_RNA", "lncRNA"}
FEATURE_TYPES_EXON = {"exon"}


# =============================================================================
# Data Models
# =============================================================================


@attrs.define(slots=True)
class TranscriptRecord:
    """A transcript assembled from GFF3 lines.

    Attributes:
        transcript_id: Transcript identifier (ID attribute).
        gene_id: Parent gene identifier, if any.
        gene_name: Gene name used for feature annotation.
        seqid: Scaffold/chromosome name.
        strand: "+" or "-".
        exons: (start, end) pairs, 1-based inclusive.
    """

    transcript_id: str
    gene_id: str
    gene_name: str
    seqid: str
    strand: str
    exons: list[tuple[int, int]] = attrs.Factory(list)

    @property
    def start(self) -> int:
        return min(s for s, _ in self.exons)

    @property
    def end(self) -> int:
        return max(e for _, e in self.exons)

    @property
    def introns(self) -> list[tuple[int, int]]:
        """Intron coordinates between consecutive exons."""
        exons = sorted(self.exons)
        return [(a[1] + 1, b[0] - 1) for a, b in zip(exons, exons[1:])]


# =============================================================================
# Line Parsing
# =============================================================================


def parse_attributes(attr_string: str) -> dict[str, str]:
    """Parse GFF3 attribute string into dictionary.

    Args:
        attr_string: Semicolon-separated key=value pairs.

    Returns:
        Dictionary of attribute key-value pairs (values URL-decoded).
    """
    attributes: dict[str, str] = {}
    if not attr_string or attr_string == ".":
        return attributes

    for item in attr_string.split(";"):
        item = item.strip()
        if not item or "=" not in item:
            continue
        key, value = item.split("=", 1)
        value = value.replace("%3B", ";").replace("%3D", "=").replace("%26", "&")
        value = value.replace("%2C", ",")
        attributes[key.strip()] = value

    return attributes


def parse_line(line: str, line_no: int = 0) -> dict[str, Any] | None:
    """Parse a single GFF3 line.

    Args:
        line: Raw GFF3 line.
        line_no: Line number for log messages.

    Returns:
        Parsed record, or None for comments, blank and malformed lines.
    """
    line = line.rstrip("\n\r")
    if not line.strip() or line.startswith("#"):
        return None

    parts = line.split("\t")
    if len(parts) < 9:
        logger.warning(f"Line {line_no}: expected 9 columns, skipping: {line[:50]}")
        return None

    try:
        start = int(parts[COL_START])
        end = int(parts[COL_END])
    except ValueError:
        logger.warning(f"Line {line_no}: invalid coordinates, skipping")
        return None

    if start < 1 or end < start:
        logger.warning(f"Line {line_no}: invalid interval {start}-{end}, skipping")
        return None

    return {
        "seqid": parts[COL_SEQID],
        "type": parts[COL_TYPE],
        "start": start,
        "end": end,
        "strand": parts[COL_STRAND],
        "attributes": parse_attributes(parts[COL_ATTRIBUTES]),
    }


def _parents(record: dict[str, Any]) -> list[str]:
    parent = record["attributes"].get("Parent", "")
    return [p for p in parent.split(",") if p]


# =============================================================================
# Transcript Assembly
# =============================================================================


def read_transcripts(path: Path | str) -> list[TranscriptRecord]:
    """Read transcripts and their exons from a GFF3 file.

    Transcripts without exons, with an unknown strand, or with
    overlapping exons are logged and skipped.

    Args:
        path: GFF3 path.

    Returns:
        Transcripts in file order.

    Raises:
        ResourceError: If the file cannot be read.
    """
    path = Path(path)
    if not path.exists():
        raise ResourceError(f"Annotation file not found: {path}", path=str(path))

    gene_names: dict[str, str] = {}
    transcripts: dict[str, TranscriptRecord] = {}
    exons: list[tuple[list[str], tuple[int, int]]] = []

    try:
        with open(path) as f:
            for line_no, line in enumerate(f, start=1):
                record = parse_line(line, line_no)
                if record is None:
                    continue

                ftype = record["type"]
                attributes = record["attributes"]

                if ftype in FEATURE_TYPES_GENE:
                    gene_id = attributes.get("ID", f"gene_{len(gene_names)}")
                    gene_names[gene_id] = attributes.get("Name", gene_id)

                elif ftype in FEATURE_TYPES_TRANSCRIPT:
                    tx_id = attributes.get("ID")
                    if tx_id is None:
                        logger.warning(f"Line {line_no}: transcript without ID, skipping")
                        continue
                    parents = _parents(record)
                    gene_id = parents[0] if parents else attributes.get("gene_id", "")
                    transcripts[tx_id] = TranscriptRecord(
                        transcript_id=tx_id,
                        gene_id=gene_id,
                        gene_name="",
                        seqid=record["seqid"],
                        strand=record["strand"],
                    )

                elif ftype in FEATURE_TYPES_EXON:
                    exons.append((_parents(record), (record["start"], record["end"])))
    except OSError as e:
        raise ResourceError(f"Cannot read annotation file: {e}", path=str(path)) from e

    for parents, exon in exons:
        for parent in parents:
            if parent in transcripts:
                transcripts[parent].exons.append(exon)

    result = []
    for tx in transcripts.values():
        if not tx.exons:
            logger.warning(f"Transcript {tx.transcript_id} has no exons, skipping")
            continue
        if tx.strand not in ("+", "-"):
            logger.warning(f"Transcript {tx.transcript_id} has unknown strand, skipping")
            continue
        tx.exons.sort()
        if any(b[0] <= a[1] + 1 for a, b in zip(tx.exons, tx.exons[1:])):
            logger.warning(f"Transcript {tx.transcript_id} has overlapping exons, skipping")
            continue
        tx.gene_name = gene_names.get(tx.gene_id, tx.gene_id)
        result.append(tx)

    logger.info(f"Read {len(result)} transcripts from {path.name}")
    return result


def transcript_features(tx: TranscriptRecord) -> Iterator[Feature]:
    """Convert one transcript into J/I/F/L/U features."""
    names = {"transcript_names": {tx.transcript_id}, "gene_names": {tx.gene_name} if tx.gene_name else set()}

    if len(tx.exons) == 1:
        start, end = tx.exons[0]
        yield Feature(tx.seqid, start, end, tx.strand, FeatureType.U, **names)
        return

    # Leftmost exon is first on plus and last on minus
    left_type, right_type = (
        (FeatureType.F, FeatureType.L) if tx.strand == "+" else (FeatureType.L, FeatureType.F)
    )
    last = len(tx.exons) - 1
    for i, (start, end) in enumerate(tx.exons):
        if i == 0:
            exon_type = left_type
        elif i == last:
            exon_type = right_type
        else:
            exon_type = FeatureType.I
        yield Feature(tx.seqid, start, end, tx.strand, exon_type, **names)

    for start, end in tx.introns:
        yield Feature(tx.seqid, start, end, tx.strand, FeatureType.J, **names)


def _in_region(tx: TranscriptRecord, region: GenomicRegion) -> bool:
    if tx.seqid != region.seqid:
        return False
    if region.start is None or region.end is None:
        return True
    return tx.start <= region.end and region.start <= tx.end


def import_transcripts(
    path: Path | str,
    region: GenomicRegion | str | Sequence[GenomicRegion | str] | None = None,
) -> FeatureSet:
    """Import transcript features from a GFF3 annotation.

    Args:
        path: GFF3 path.
        region: Optional region or list of regions; only transcripts
            overlapping at least one of them are kept.

    Returns:
        Merged FeatureSet of J/I/F/L/U features with gene IDs assigned.

    Raises:
        ResourceError: If the file cannot be read.
    """
    if region is None:
        regions = None
    elif isinstance(region, (str, GenomicRegion)):
        regions = [region]
    else:
        regions = list(region)
    if regions is not None:
        regions = [parse_region(r) if isinstance(r, str) else r for r in regions]

    features: list[Feature] = []
    n_transcripts = 0
    for tx in read_transcripts(path):
        if regions is not None and not any(_in_region(tx, r) for r in regions):
            continue
        try:
            tx_features = list(transcript_features(tx))
        except InputValidationError as e:
            logger.warning(f"Transcript {tx.transcript_id}: {e}, skipping")
            continue
        features.extend(tx_features)
        n_transcripts += 1

    merged = merge_features(features)
    logger.info(f"Imported {len(merged)} features from {n_transcripts} transcripts")
    return merged
