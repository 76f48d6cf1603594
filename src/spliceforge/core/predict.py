"""Per-sample prediction of junctions and exons from aligned reads.

Junctions are clustered by exact intron coordinates and strand; exons
are inferred from coverage islands bounded by the flanks of retained
junctions. Terminal exons reach to the island edge and remain
provisional until terminal-exon processing in ``spliceforge.core.merge``.

Features:
    - Fragment-level junction counting (mates counted once)
    - Anchor length, mapping quality and strand-tag filters
    - Coverage islands from a sweep over aligned blocks
    - Internal and provisional terminal exon inference

Example:
    >>> from spliceforge.config import PredictionConfig
    >>> from spliceforge.core.predict import predict_features
    >>> features = predict_features(reads, PredictionConfig(min_junction_count=2))
    >>> len(features.by_type("J"))
    3
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from typing import Iterable

import attrs

from spliceforge.config import PredictionConfig
from spliceforge.core.features import Feature, FeatureSet, FeatureType
from spliceforge.io.bam import AlignedRead, AlignmentReader
from spliceforge.io.samples import SampleInfo
from spliceforge.utils.intervals import Interval, coverage_islands
from spliceforge.utils.regions import GenomicRegion

logger = logging.getLogger(__name__)

JunctionKey = tuple[str, int, int, str]


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True)
class ReadEvidence:
    """Junction and coverage evidence collected from one pass over reads.

    Attributes:
        fragments: Fragment names per (seqid, start, end, strand) junction.
        blocks: Aligned blocks per seqid.
        n_reads: Reads inspected.
        n_discounted: Spliced reads ignored for strand reasons.
    """

    fragments: dict[JunctionKey, set[str]] = attrs.Factory(lambda: defaultdict(set))
    blocks: dict[str, list[Interval]] = attrs.Factory(lambda: defaultdict(list))
    n_reads: int = 0
    n_discounted: int = 0

    def junction_counts(self) -> dict[JunctionKey, int]:
        """Number of distinct fragments per junction."""
        return {key: len(names) for key, names in self.fragments.items()}


# =============================================================================
# Evidence Collection
# =============================================================================


def collect_evidence(
    reads: Iterable[AlignedRead],
    config: PredictionConfig,
    evidence: ReadEvidence | None = None,
) -> ReadEvidence:
    """Collect junction fragments and coverage blocks from reads.

    Spliced reads without a known strand are discounted; when
    ``require_strand_tag`` is set, so are spliced reads whose strand was
    not taken from an explicit tag. Their blocks still count towards
    coverage.

    Args:
        reads: Aligned reads of one sample.
        config: Prediction thresholds.
        evidence: Existing evidence to extend.

    Returns:
        The (possibly extended) evidence.
    """
    evidence = evidence if evidence is not None else ReadEvidence()

    for read in reads:
        if read.mapping_quality < config.min_mapq:
            continue
        evidence.n_reads += 1
        evidence.blocks[read.seqid].extend(Interval(s, e) for s, e in read.blocks)

        if not read.is_spliced:
            continue
        if read.strand == "*" or (config.require_strand_tag and not read.has_strand_tag):
            evidence.n_discounted += 1
            continue

        for (start, end), (left, right) in zip(read.junctions, read.anchors):
            if left < config.min_anchor or right < config.min_anchor:
                continue
            evidence.fragments[(read.seqid, start, end, read.strand)].add(read.name)

    return evidence


def junction_fpkm(count: int, sample: SampleInfo | None) -> float | None:
    """FPKM of a junction, or None without library statistics."""
    if sample is None or not sample.lib_size or not sample.effective_length:
        return None
    effective = sample.effective_length - 1
    if effective <= 0:
        return None
    return count * 1e9 / (sample.lib_size * effective)


def retained_junctions(
    evidence: ReadEvidence,
    config: PredictionConfig,
    sample: SampleInfo | None = None,
) -> dict[JunctionKey, int]:
    """Junctions passing the count (and optional FPKM) thresholds."""
    retained = {}
    for key, count in evidence.junction_counts().items():
        if count < config.min_junction_count:
            continue
        if config.min_junction_fpkm is not None:
            fpkm = junction_fpkm(count, sample)
            if fpkm is not None and fpkm < config.min_junction_fpkm:
                continue
        retained[key] = count
    return retained


# =============================================================================
# Exon Inference
# =============================================================================


def _island_index(islands: list[Interval], starts: list[int], position: int) -> int | None:
    i = bisect.bisect_right(starts, position) - 1
    if i >= 0 and islands[i].contains(position):
        return i
    return None


def infer_exons(
    seqid: str,
    junctions: Iterable[JunctionKey],
    islands: list[Interval],
) -> list[Feature]:
    """Infer exons on one sequence from junction flanks and coverage islands.

    Within each island and strand, every junction's downstream flank
    (intron end + 1) opens an exon and every upstream flank (intron
    start - 1) closes one. Each opening/closing pair gives an internal
    exon; each opening reaching the island end, and each closing reached
    from the island start, gives a terminal exon.

    Args:
        seqid: Sequence name.
        junctions: Retained junction keys on this sequence.
        islands: Sorted coverage islands on this sequence.

    Returns:
        Exon features (types I, F, L).
    """
    starts = [island.start for island in islands]

    # (island index, strand) -> flank positions
    lefts: dict[tuple[int, str], set[int]] = defaultdict(set)
    rights: dict[tuple[int, str], set[int]] = defaultdict(set)

    for _, start, end, strand in junctions:
        left = end + 1
        right = start - 1
        i = _island_index(islands, starts, left)
        if i is not None:
            lefts[(i, strand)].add(left)
        if right >= 1:
            i = _island_index(islands, starts, right)
            if i is not None:
                rights[(i, strand)].add(right)

    exons: list[Feature] = []
    for i, strand in sorted(set(lefts) | set(rights)):
        island = islands[i]
        exon_lefts = sorted(lefts.get((i, strand), ()))
        exon_rights = sorted(rights.get((i, strand), ()))

        for left in exon_lefts:
            for right in exon_rights:
                if left <= right:
                    exons.append(Feature(seqid, left, right, strand, FeatureType.I))

        # A spliced left boundary is the 5' end on plus, the 3' end on minus
        open_type = FeatureType.F if strand == "-" else FeatureType.L
        close_type = FeatureType.L if strand == "-" else FeatureType.F
        for left in exon_lefts:
            exons.append(Feature(seqid, left, island.end, strand, open_type))
        for right in exon_rights:
            exons.append(Feature(seqid, island.start, right, strand, close_type))

    return exons


# =============================================================================
# Prediction
# =============================================================================


def predict_from_evidence(
    evidence: ReadEvidence,
    config: PredictionConfig,
    sample: SampleInfo | None = None,
) -> FeatureSet:
    """Turn collected evidence into candidate junctions and exons."""
    retained = retained_junctions(evidence, config, sample)

    by_seqid: dict[str, list[JunctionKey]] = defaultdict(list)
    for key in retained:
        by_seqid[key[0]].append(key)

    features: list[Feature] = []
    for seqid, keys in sorted(by_seqid.items()):
        islands = coverage_islands(evidence.blocks.get(seqid, []), config.min_coverage)
        features.extend(
            Feature(s, start, end, strand, FeatureType.J) for s, start, end, strand in keys
        )
        features.extend(infer_exons(seqid, keys, islands))

    return FeatureSet(features)


def predict_features(
    reads: Iterable[AlignedRead],
    config: PredictionConfig | None = None,
    sample: SampleInfo | None = None,
) -> FeatureSet:
    """Predict candidate features from one sample's reads.

    A sample without qualifying junctions yields an empty set.

    Args:
        reads: Aligned reads (any number of sequences).
        config: Prediction thresholds.
        sample: Library statistics, used only by the FPKM filter.

    Returns:
        Candidate junctions and exons.
    """
    config = config or PredictionConfig()
    evidence = collect_evidence(reads, config)
    features = predict_from_evidence(evidence, config, sample)

    if evidence.n_discounted:
        logger.debug(f"Discounted {evidence.n_discounted} spliced reads without strand")
    if not features:
        logger.info("No qualifying junctions; returning empty feature set")
    return features


def predict_sample(
    sample: SampleInfo,
    config: PredictionConfig | None = None,
    regions: list[GenomicRegion] | None = None,
) -> FeatureSet:
    """Predict features for one sample directly from its BAM file.

    Args:
        sample: Sample with its BAM path.
        config: Prediction thresholds.
        regions: Regions to scan; all reference sequences if None.

    Returns:
        Candidate junctions and exons for the sample.

    Raises:
        ResourceError: If the BAM file cannot be read.
    """
    config = config or PredictionConfig()

    with AlignmentReader(
        sample.file_bam,
        min_mapq=config.min_mapq,
        strandness=config.strandness,
        sample_name=sample.sample_name,
    ) as reader:
        if regions is None:
            regions = [GenomicRegion(seqid) for seqid in reader.references]
        known = set(reader.references)

        evidence = ReadEvidence()
        for region in regions:
            if region.seqid not in known:
                logger.debug(f"{sample.sample_name}: {region.seqid} not in BAM header")
                continue
            reads = reader.fetch_reads(region.seqid, region.start, region.end)
            collect_evidence(reads, config, evidence)

    features = predict_from_evidence(evidence, config, sample)
    logger.info(
        f"{sample.sample_name}: {len(features.by_type('J'))} junctions, "
        f"{len(features) - len(features.by_type('J'))} exons "
        f"from {evidence.n_reads} reads"
    )
    return features
