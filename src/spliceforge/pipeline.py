"""End-to-end analysis: prediction, graph, events and counts.

Every stage is a map over independent partitions followed by a
reduction:

1. Per-sample feature prediction (map), merged and terminal-exon
   processed once (reduce).
2. Splice graph construction.
3. Per-sample feature counting (map) assembled into a CountMatrix.
4. Per-locus event decomposition (map) with deterministic IDs.
5. Variant counts derived from the feature counts.

Per-sample and per-locus failures are collected next to the partial
results; configuration errors abort before any per-sample work.

Example:
    >>> from spliceforge.config import Config
    >>> from spliceforge.io.samples import load_sample_info
    >>> from spliceforge.pipeline import run_pipeline
    >>> result = run_pipeline(load_sample_info("samples.tsv"), Config())
    >>> result.variant_counts.matrix.layer("usage")
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import attrs

from spliceforge.config import Config, ParallelConfig
from spliceforge.core import predict
from spliceforge.core.events import EventSet, find_events
from spliceforge.core.features import FeatureSet
from spliceforge.core.graph import SpliceGraph, build_splice_graph
from spliceforge.core.merge import merge_and_process
from spliceforge.core.quantify import (
    CountMatrix,
    QuantificationResult,
    count_features,
    count_variants,
)
from spliceforge.io.samples import SampleInfo
from spliceforge.parallel.executor import ParallelExecutor
from spliceforge.utils.logging import Timer
from spliceforge.utils.regions import GenomicRegion

logger = logging.getLogger(__name__)


# =============================================================================
# Results
# =============================================================================


@attrs.frozen
class PredictionResult:
    """Merged features plus samples whose prediction failed."""

    features: FeatureSet
    failures: dict[str, str] = attrs.Factory(dict)


@attrs.define
class PipelineResult:
    """Outputs of a full analysis.

    Attributes:
        features: Transcript features the graph was built from.
        splice_graph: The splice graph.
        feature_counts: Feature count matrix and counting failures.
        events: Events and variants (None until variants are analyzed).
        variant_counts: Variant count matrix (None until analyzed).
        sample_failures: Sample name -> error message, from any stage.
    """

    features: FeatureSet
    splice_graph: SpliceGraph
    feature_counts: QuantificationResult
    events: EventSet | None = None
    variant_counts: QuantificationResult | None = None
    sample_failures: dict[str, str] = attrs.Factory(dict)

    @property
    def locus_errors(self) -> dict[int, str]:
        """Gene ID -> message for loci excluded from graph or events."""
        errors = {e.gene_id: e.message for e in self.splice_graph.errors}
        if self.events is not None:
            errors.update(self.events.errors)
        return errors

    def summary(self) -> dict[str, Any]:
        """Counts of the main outputs, for reporting."""
        return {
            "n_features": len(self.splice_graph.features),
            "n_loci": len(self.splice_graph.gene_ids),
            "n_events": len(self.events.events) if self.events else 0,
            "n_variants": len(self.events.variants) if self.events else 0,
            "n_skipped_events": len(self.events.skipped) if self.events else 0,
            "n_samples_failed": len(self.sample_failures),
            "n_loci_failed": len(self.locus_errors),
        }


# =============================================================================
# Stages
# =============================================================================


def make_executor(parallel: ParallelConfig) -> ParallelExecutor:
    """Executor for the configured worker count and backend."""
    return ParallelExecutor(n_workers=parallel.max_workers, backend=parallel.backend)


def _predict_task(
    args: tuple[SampleInfo, Any, list[GenomicRegion] | None],
) -> FeatureSet:
    sample, prediction_config, regions = args
    return predict.predict_sample(sample, prediction_config, regions)


def predict_features(
    samples: Sequence[SampleInfo],
    config: Config | None = None,
    regions: list[GenomicRegion] | None = None,
    executor: ParallelExecutor | None = None,
) -> PredictionResult:
    """Predict features per sample, merge, and process terminal exons.

    Args:
        samples: Samples to predict from.
        config: Full configuration (validated here).
        regions: Regions to scan; whole genome if None.
        executor: Optional executor; built from ``config.parallel`` if None.

    Returns:
        PredictionResult with the consensus features.

    Raises:
        ConfigurationError: If the configuration is invalid.
    """
    config = (config or Config()).validate()
    executor = executor or make_executor(config.parallel)

    tasks = [(sample, config.prediction, regions) for sample in samples]
    with Timer("Feature prediction", logger):
        results, _ = executor.map_items(
            _predict_task,
            tasks,
            desc="Predicting features",
            task_ids=[s.sample_name for s in samples],
        )

    feature_sets = []
    failures: dict[str, str] = {}
    for sample, result in zip(samples, results):
        if result.success:
            feature_sets.append(result.result)
        else:
            failures[sample.sample_name] = result.error or "unknown error"
            logger.error(f"{sample.sample_name}: prediction failed: {result.error}")

    features = merge_and_process(feature_sets, config.merge.min_overhang)
    logger.info(
        f"Predicted {len(features)} features from {len(feature_sets)} samples "
        f"({len(failures)} failed)"
    )
    return PredictionResult(features=features, failures=failures)


def analyze_features(
    samples: Sequence[SampleInfo],
    config: Config | None = None,
    features: FeatureSet | None = None,
    regions: list[GenomicRegion] | None = None,
    executor: ParallelExecutor | None = None,
) -> PipelineResult:
    """Build the splice graph and count compatible fragments per feature.

    Args:
        samples: Samples to count (and predict from, if no features given).
        config: Full configuration (validated here).
        features: Transcript features, e.g. from an annotation. Predicted
            from the samples when None.
        regions: Regions for prediction.
        executor: Optional executor; built from ``config.parallel`` if None.

    Returns:
        PipelineResult with graph and feature counts.
    """
    config = (config or Config()).validate()
    executor = executor or make_executor(config.parallel)

    failures: dict[str, str] = {}
    if features is None:
        prediction = predict_features(samples, config, regions, executor)
        features = prediction.features
        failures.update(prediction.failures)

    with Timer("Splice graph construction", logger):
        splice_graph = build_splice_graph(features)

    with Timer("Feature counting", logger):
        feature_counts = count_features(splice_graph, samples, config.counting, executor)
    failures.update(feature_counts.failures)

    return PipelineResult(
        features=features,
        splice_graph=splice_graph,
        feature_counts=feature_counts,
        sample_failures=failures,
    )


def analyze_variants(
    splice_graph: SpliceGraph,
    feature_counts: CountMatrix,
    config: Config | None = None,
    executor: ParallelExecutor | None = None,
) -> tuple[EventSet, QuantificationResult]:
    """Decompose the graph into events and derive variant counts.

    Returns:
        Tuple of (events, variant counts).
    """
    config = (config or Config()).validate()
    executor = executor or make_executor(config.parallel)

    with Timer("Event decomposition", logger):
        events = find_events(splice_graph, config.events.max_variants, executor)
    variant_counts = count_variants(events, feature_counts)
    return events, variant_counts


def run_pipeline(
    samples: Sequence[SampleInfo],
    config: Config | None = None,
    features: FeatureSet | None = None,
    regions: list[GenomicRegion] | None = None,
) -> PipelineResult:
    """Run features, graph, counts, events and variant counts in order."""
    config = (config or Config()).validate()
    executor = make_executor(config.parallel)

    result = analyze_features(samples, config, features, regions, executor)
    result.events, result.variant_counts = analyze_variants(
        result.splice_graph, result.feature_counts.matrix, config, executor
    )
    logger.info(f"Pipeline finished: {result.summary()}")
    return result
