"""Compatible-read counting and abundance estimates.

Feature counts are computed per sample (an independent map step) and
assembled into an immutable ``CountMatrix``. Variant counts are derived
from the feature counts of each variant's 5'/3' anchors, so counting
stays local to the event boundaries.

Layers:
    Features: ``counts`` (fragments) and ``fpkm``.
    Variants: ``counts5p``/``counts3p`` (anchor counts), ``event5p``/
    ``event3p`` (sums over the event), ``counts`` and ``usage``.

Usage of a variant is (x5 + x3) / (N5 + N3), summed over the sides on
which every variant of the event has its own anchor. It is missing
(NaN) when no side is usable or the denominator is zero; usages of one
event then sum to 1.

A locus without any compatible fragment in a sample is reported as
missing (NaN) for that sample, not as zero.

Example:
    >>> from spliceforge.core.quantify import count_features, count_variants
    >>> features = count_features(splice_graph, samples)
    >>> variants = count_variants(event_set, features.matrix)
    >>> variants.matrix.layer("usage")
"""

from __future__ import annotations

import bisect
import csv
import logging
import math
from collections import defaultdict
from pathlib import Path
from typing import Any, Iterable, Sequence

import attrs
import numpy as np

from spliceforge.config import CountConfig
from spliceforge.core.compat import fragment_compatible
from spliceforge.core.events import EventSet
from spliceforge.core.features import Feature, FeatureType
from spliceforge.core.graph import SpliceGraph
from spliceforge.io.bam import AlignedRead, AlignmentReader
from spliceforge.io.samples import SampleInfo
from spliceforge.parallel.executor import ParallelExecutor

logger = logging.getLogger(__name__)

FEATURE_LAYERS = ("counts", "fpkm")
VARIANT_LAYERS = ("counts5p", "counts3p", "event5p", "event3p", "counts", "usage")


# =============================================================================
# Count Matrix
# =============================================================================


def _freeze_layers(layers: dict[str, Any]) -> dict[str, np.ndarray]:
    frozen = {}
    for name, values in layers.items():
        array = np.array(values, dtype=np.float64, copy=True)
        array.setflags(write=False)
        frozen[name] = array
    return frozen


@attrs.frozen
class CountMatrix:
    """Immutable rows x samples matrices sharing row and column labels.

    Attributes:
        row_ids: Feature or variant IDs, one per row.
        samples: Sample names, one per column.
        layers: Named read-only arrays of shape (rows, samples).
    """

    row_ids: tuple[int, ...] = attrs.field(converter=tuple)
    samples: tuple[str, ...] = attrs.field(converter=tuple)
    layers: dict[str, np.ndarray] = attrs.field(converter=_freeze_layers, eq=False)

    def __attrs_post_init__(self) -> None:
        shape = (len(self.row_ids), len(self.samples))
        for name, array in self.layers.items():
            if array.shape != shape:
                raise ValueError(f"Layer {name!r} has shape {array.shape}, expected {shape}")

    @property
    def shape(self) -> tuple[int, int]:
        return (len(self.row_ids), len(self.samples))

    @property
    def counts(self) -> np.ndarray:
        """The raw count layer."""
        return self.layers["counts"]

    def layer(self, name: str) -> np.ndarray:
        """Return a layer by name."""
        if name not in self.layers:
            raise KeyError(f"No layer {name!r}; available: {sorted(self.layers)}")
        return self.layers[name]

    def row_index(self, row_id: int) -> int:
        return self.row_ids.index(row_id)

    def get(self, row_id: int, sample: str, layer: str = "counts") -> float:
        """Value for one row and sample."""
        return float(self.layer(layer)[self.row_index(row_id), self.samples.index(sample)])

    def to_records(self) -> list[dict[str, Any]]:
        """Long-format records: one per (row, sample)."""
        records = []
        for i, row_id in enumerate(self.row_ids):
            for j, sample in enumerate(self.samples):
                record: dict[str, Any] = {"id": row_id, "sample": sample}
                for name, array in self.layers.items():
                    value = float(array[i, j])
                    record[name] = None if math.isnan(value) else value
                records.append(record)
        return records

    def write_tsv(
        self,
        path: Path | str,
        layer: str = "counts",
        row_info: dict[int, dict[str, Any]] | None = None,
    ) -> None:
        """Write one layer as a wide table (rows x samples).

        Args:
            path: Output path.
            layer: Layer to write.
            row_info: Extra leading columns per row ID.
        """
        values = self.layer(layer)
        info_columns: list[str] = []
        if row_info:
            info_columns = list(next(iter(row_info.values())).keys())

        with open(path, "w", newline="") as f:
            writer = csv.writer(f, delimiter="\t", lineterminator="\n")
            writer.writerow(["id", *info_columns, *self.samples])
            for i, row_id in enumerate(self.row_ids):
                extra = [row_info[row_id].get(c, "") for c in info_columns] if row_info else []
                cells = ["NA" if math.isnan(v) else f"{v:g}" for v in values[i]]
                writer.writerow([row_id, *extra, *cells])


@attrs.frozen
class QuantificationResult:
    """A count matrix plus per-sample failures.

    Attributes:
        matrix: Counts for the samples that succeeded.
        failures: Sample name -> error message for samples that failed.
    """

    matrix: CountMatrix
    failures: dict[str, str] = attrs.Factory(dict)


# =============================================================================
# Per-Sample Counting
# =============================================================================


def effective_length(feature: Feature, fragment_length: float | None) -> float | None:
    """Number of fragment positions overlapping a feature compatibly.

    Exon bins: width + L - 1. Junctions and sites: L - 1.
    """
    if not fragment_length:
        return None
    if feature.type == FeatureType.E:
        return feature.width + fragment_length - 1
    return fragment_length - 1


def fpkm(count: float, feature: Feature, sample: SampleInfo) -> float:
    """count * 1e9 / (library size * effective length), NaN if unknown."""
    length = effective_length(feature, sample.effective_length)
    if math.isnan(count) or not sample.lib_size or not length or length <= 0:
        return math.nan
    return count * 1e9 / (sample.lib_size * length)


def group_fragments(reads: Iterable[AlignedRead]) -> dict[str, list[AlignedRead]]:
    """Group reads by query name so mates are counted once."""
    fragments: dict[str, list[AlignedRead]] = defaultdict(list)
    for read in reads:
        fragments[read.name].append(read)
    return fragments


def count_locus_fragments(
    features: Sequence[Feature],
    fragments: dict[str, list[AlignedRead]],
) -> dict[int, float]:
    """Count compatible fragments for the features of one locus.

    Returns:
        Feature ID -> count, or NaN for every feature when no fragment is
        compatible with any of them.
    """
    ordered = sorted(features, key=lambda f: f.start)
    starts = [f.start for f in ordered]
    counts: dict[int, float] = {f.feature_id: 0.0 for f in ordered}

    informative = False
    for mates in fragments.values():
        span_start = min(m.start for m in mates)
        span_end = max(m.end for m in mates)
        upper = bisect.bisect_right(starts, span_end + 1)
        for feature in ordered[:upper]:
            if feature.end < span_start - 1:
                continue
            if fragment_compatible(mates, feature):
                counts[feature.feature_id] += 1
                informative = True

    if not informative:
        return {feature_id: math.nan for feature_id in counts}
    return counts


def count_sample(
    sample: SampleInfo,
    loci: list[list[Feature]],
    config: CountConfig | None = None,
) -> dict[int, float]:
    """Count compatible fragments for all loci in one sample.

    Args:
        sample: Sample with its BAM path.
        loci: Features grouped by locus.
        config: Counting settings.

    Returns:
        Feature ID -> fragment count (NaN for uninformative loci).

    Raises:
        ResourceError: If the BAM file cannot be read.
    """
    config = config or CountConfig()
    counts: dict[int, float] = {}

    with AlignmentReader(
        sample.file_bam,
        min_mapq=config.min_mapq,
        strandness=config.strandness,
        sample_name=sample.sample_name,
    ) as reader:
        known = set(reader.references)
        for features in loci:
            seqid = features[0].seqid
            if seqid not in known:
                counts.update({f.feature_id: math.nan for f in features})
                continue
            start = max(1, min(f.start for f in features) - 1)
            end = max(f.end for f in features) + 1
            fragments = group_fragments(reader.fetch_reads(seqid, start, end))
            counts.update(count_locus_fragments(features, fragments))

    logger.debug(f"{sample.sample_name}: counted {len(counts)} features")
    return counts


def _count_sample_task(args: tuple[SampleInfo, list[list[Feature]], CountConfig]) -> dict[int, float]:
    sample, loci, config = args
    return count_sample(sample, loci, config)


# =============================================================================
# Feature Matrix
# =============================================================================


def feature_matrix(
    features: Sequence[Feature],
    samples: Sequence[SampleInfo],
    per_sample: Sequence[dict[int, float]],
) -> CountMatrix:
    """Assemble per-sample feature counts into a CountMatrix with FPKM."""
    row_ids = [f.feature_id for f in features]
    counts = np.full((len(row_ids), len(samples)), np.nan)
    fpkms = np.full((len(row_ids), len(samples)), np.nan)

    for j, (sample, sample_counts) in enumerate(zip(samples, per_sample)):
        for i, feature in enumerate(features):
            value = sample_counts.get(feature.feature_id, math.nan)
            counts[i, j] = value
            fpkms[i, j] = fpkm(value, feature, sample)

    return CountMatrix(
        row_ids=row_ids,
        samples=[s.sample_name for s in samples],
        layers={"counts": counts, "fpkm": fpkms},
    )


def count_features(
    splice_graph: SpliceGraph,
    samples: Sequence[SampleInfo],
    config: CountConfig | None = None,
    executor: ParallelExecutor | None = None,
) -> QuantificationResult:
    """Count compatible fragments for every feature in every sample.

    Samples are processed independently; a sample whose BAM cannot be
    read is recorded in ``failures`` and left out of the matrix.

    Args:
        splice_graph: Graph whose features are counted.
        samples: Samples to count.
        config: Counting settings.
        executor: Optional parallel executor (serial if None).

    Returns:
        QuantificationResult with ``counts`` and ``fpkm`` layers.
    """
    config = config or CountConfig()
    executor = executor or ParallelExecutor(n_workers=1)

    loci = [splice_graph.locus_features(g) for g in splice_graph.gene_ids]
    loci = [features for features in loci if features]
    tasks = [(sample, loci, config) for sample in samples]

    results, _ = executor.map_items(
        _count_sample_task,
        tasks,
        desc="Counting samples",
        task_ids=[s.sample_name for s in samples],
    )

    ok_samples: list[SampleInfo] = []
    per_sample: list[dict[int, float]] = []
    failures: dict[str, str] = {}
    for sample, result in zip(samples, results):
        if result.success:
            ok_samples.append(sample)
            per_sample.append(result.result)
        else:
            failures[sample.sample_name] = result.error or "unknown error"
            logger.error(f"{sample.sample_name}: counting failed: {result.error}")

    matrix = feature_matrix(splice_graph.features, ok_samples, per_sample)
    logger.info(
        f"Counted {matrix.shape[0]} features in {len(ok_samples)} samples "
        f"({len(failures)} failed)"
    )
    return QuantificationResult(matrix=matrix, failures=failures)


# =============================================================================
# Variant Matrix
# =============================================================================


def _anchor_values(anchor: int | None, counts: CountMatrix, index: dict[int, int]) -> np.ndarray:
    n_samples = len(counts.samples)
    if anchor is None or anchor not in index:
        return np.full(n_samples, np.nan)
    return counts.counts[index[anchor]]


def count_variants(event_set: EventSet, feature_counts: CountMatrix) -> QuantificationResult:
    """Derive variant counts and relative usage from feature counts.

    Args:
        event_set: Events and variants.
        feature_counts: Feature count matrix from ``count_features``.

    Returns:
        QuantificationResult with variant layers (no sample failures).
    """
    index = {row_id: i for i, row_id in enumerate(feature_counts.row_ids)}
    n_variants = len(event_set.variants)
    n_samples = len(feature_counts.samples)

    layers = {name: np.full((n_variants, n_samples), np.nan) for name in VARIANT_LAYERS}

    for event in event_set.events:
        variants = event_set.variants_for(event.event_id)
        rows = [v.variant_id - 1 for v in variants]

        x5 = np.array([_anchor_values(v.feature_id5p, feature_counts, index) for v in variants])
        x3 = np.array([_anchor_values(v.feature_id3p, feature_counts, index) for v in variants])
        x5 = x5.reshape(len(variants), n_samples)
        x3 = x3.reshape(len(variants), n_samples)

        # A side is usable only if every variant has its own anchor there
        anchors5 = [v.feature_id5p for v in variants]
        anchors3 = [v.feature_id3p for v in variants]
        use5 = None not in anchors5 and len(set(anchors5)) == len(anchors5)
        use3 = None not in anchors3 and len(set(anchors3)) == len(anchors3)

        with np.errstate(invalid="ignore", divide="ignore"):
            n5 = x5.sum(axis=0)
            n3 = x3.sum(axis=0)

            numerator = np.zeros((len(variants), n_samples))
            denominator = np.zeros(n_samples)
            if use5:
                numerator = numerator + x5
                denominator = denominator + n5
            if use3:
                numerator = numerator + x3
                denominator = denominator + n3

            if use5 or use3:
                usage = np.where(denominator > 0, numerator / denominator, np.nan)
                total = numerator
            else:
                usage = np.full((len(variants), n_samples), np.nan)
                total = np.full((len(variants), n_samples), np.nan)

        layers["counts5p"][rows] = x5
        layers["counts3p"][rows] = x3
        layers["event5p"][rows] = np.broadcast_to(n5, x5.shape) if use5 else np.nan
        layers["event3p"][rows] = np.broadcast_to(n3, x3.shape) if use3 else np.nan
        layers["counts"][rows] = total
        layers["usage"][rows] = usage

    matrix = CountMatrix(
        row_ids=[v.variant_id for v in event_set.variants],
        samples=feature_counts.samples,
        layers=layers,
    )
    return QuantificationResult(matrix=matrix)
