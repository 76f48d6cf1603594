"""Merging of per-sample features and terminal-exon processing.

Merging is a pure union keyed on coordinates, strand and type, so it is
associative and commutative: samples can be merged in any order or in
batches. Gene IDs are recomputed from the merged set on every merge.

Terminal-exon processing is a separate, idempotent step that runs once
after the final merge:

1. Trim: a terminal exon that extends past an opposite-kind splice site
   by less than ``min_overhang`` bases is cut back to that site, until
   no such site remains near its free end.
2. Drop terminal exons contained in an internal exon that shares their
   spliced boundary (their transcript names move to the internal exon).
3. Collapse terminal exons of the same type sharing a spliced boundary
   into the longest one.

Example:
    >>> from spliceforge.core.merge import merge_features, process_terminal_exons
    >>> merged = merge_features(sample1, sample2, sample3)
    >>> processed = process_terminal_exons(merged, min_overhang=20)
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Iterable

import networkx as nx

from spliceforge.core.features import Feature, FeatureSet, FeatureType, TERMINAL_TYPES

logger = logging.getLogger(__name__)


# =============================================================================
# Gene IDs
# =============================================================================


def _component_key(component: list[Feature]) -> tuple:
    return (
        component[0].seqid,
        min(f.start for f in component),
        component[0].strand,
        max(f.end for f in component),
        component[0].sort_key(),
    )


def connected_components(features: Iterable[Feature]) -> list[list[Feature]]:
    """Group features into loci.

    Two features are connected when they share a sequence and strand and
    either overlap or abut (non-junction features), or meet at a junction
    flank (a junction connects to exons ending at its start - 1 and exons
    starting at its end + 1).

    Components are returned ordered by (seqid, leftmost start, strand,
    rightmost end); features inside a component keep sorted order.
    """
    feature_list = sorted(features, key=Feature.sort_key)
    graph = nx.Graph()
    graph.add_nodes_from(range(len(feature_list)))

    by_strand: dict[tuple[str, str], list[int]] = defaultdict(list)
    for i, feature in enumerate(feature_list):
        by_strand[(feature.seqid, feature.strand)].append(i)

    for (seqid, strand), indices in by_strand.items():
        # Boundary tokens: exons touching a junction flank share a token
        for i in indices:
            feature = feature_list[i]
            if feature.is_junction:
                graph.add_edge(i, ("R", seqid, strand, feature.start - 1))
                graph.add_edge(i, ("L", seqid, strand, feature.end + 1))
            elif feature.is_exon:
                graph.add_edge(i, ("L", seqid, strand, feature.start))
                graph.add_edge(i, ("R", seqid, strand, feature.end))

        # Overlap sweep over non-junction features (sorted by start)
        cluster_rep: int | None = None
        cluster_end = 0
        for i in indices:
            feature = feature_list[i]
            if feature.is_junction:
                continue
            if cluster_rep is not None and feature.start <= cluster_end + 1:
                graph.add_edge(cluster_rep, i)
                cluster_end = max(cluster_end, feature.end)
            else:
                cluster_rep = i
                cluster_end = feature.end

    components = [
        [feature_list[i] for i in sorted(n for n in nodes if isinstance(n, int))]
        for nodes in nx.connected_components(graph)
    ]
    components = [c for c in components if c]
    components.sort(key=_component_key)
    return components


def assign_gene_ids(features: Iterable[Feature]) -> FeatureSet:
    """Assign deterministic gene IDs (1..n) to connected components.

    Args:
        features: Features of any type.

    Returns:
        FeatureSet with ``gene_id`` set on every feature.
    """
    assigned: list[Feature] = []
    for gene_id, component in enumerate(connected_components(features), start=1):
        assigned.extend(f.evolve(gene_id=gene_id) for f in component)
    return FeatureSet(assigned)


# =============================================================================
# Merging
# =============================================================================


def _combine(a: Feature, b: Feature) -> Feature:
    changes = {
        "transcript_names": a.transcript_names | b.transcript_names,
        "gene_names": a.gene_names | b.gene_names,
    }
    if a.type == FeatureType.E:
        changes["spliced5p"] = bool(a.spliced5p or b.spliced5p)
        changes["spliced3p"] = bool(a.spliced3p or b.spliced3p)
        changes["starts5p"] = a.starts5p or b.starts5p
        changes["ends3p"] = a.ends3p or b.ends3p
    return a.evolve(**changes)


def merge_features(*feature_sets: Iterable[Feature]) -> FeatureSet:
    """Union feature sets by coordinate, strand and type.

    Transcript and gene names are unioned; feature IDs are cleared and
    gene IDs recomputed, so the result depends only on the union of the
    inputs.

    Args:
        *feature_sets: Any number of feature collections.

    Returns:
        Merged FeatureSet with gene IDs assigned.
    """
    merged: dict[tuple, Feature] = {}
    for feature_set in feature_sets:
        for feature in feature_set:
            feature = feature.evolve(feature_id=None, gene_id=None)
            existing = merged.get(feature.key)
            merged[feature.key] = feature if existing is None else _combine(existing, feature)

    logger.debug(f"Merged {len(feature_sets)} feature sets into {len(merged)} features")
    return assign_gene_ids(merged.values())


# =============================================================================
# Terminal-Exon Processing
# =============================================================================


def _splice_positions(features: Iterable[Feature]) -> dict[tuple[str, str], tuple[set[int], set[int]]]:
    """Spliced boundary positions per (seqid, strand).

    Returns (left, right) sets: ``left`` holds first bases of exons
    preceded by an intron, ``right`` last bases of exons followed by one.
    """
    positions: dict[tuple[str, str], tuple[set[int], set[int]]] = defaultdict(
        lambda: (set(), set())
    )
    for feature in features:
        left, right = positions[(feature.seqid, feature.strand)]
        if feature.is_junction:
            right.add(feature.start - 1)
            left.add(feature.end + 1)
        elif feature.is_exon:
            if feature.spliced_left:
                left.add(feature.start)
            if feature.spliced_right:
                right.add(feature.end)
    return positions


def _trim(exon: Feature, left: set[int], right: set[int], min_overhang: int) -> Feature:
    start, end = exon.start, exon.end
    if not exon.spliced_right and exon.spliced_left:
        while True:
            inside = [p for p in right if start <= p < end]
            if not inside:
                break
            site = max(inside)
            if end - site >= min_overhang:
                break
            end = site
    elif not exon.spliced_left and exon.spliced_right:
        while True:
            inside = [p for p in left if start < p <= end]
            if not inside:
                break
            site = min(inside)
            if site - start >= min_overhang:
                break
            start = site

    if (start, end) == (exon.start, exon.end):
        return exon
    logger.debug(f"Trimmed {exon.label} to {start}-{end}")
    return exon.evolve(start=start, end=end)


def _spliced_boundary(exon: Feature) -> tuple[str, int]:
    return ("L", exon.start) if exon.spliced_left else ("R", exon.end)


def process_terminal_exons(
    features: Iterable[Feature],
    min_overhang: int | None,
) -> FeatureSet:
    """Trim, drop and collapse provisional terminal exons.

    Args:
        features: Merged features.
        min_overhang: Overhang threshold in bases. None returns the input
            unchanged (deferred merging mode).

    Returns:
        Processed FeatureSet with gene IDs reassigned.
    """
    feature_set = features if isinstance(features, FeatureSet) else FeatureSet(features)
    if min_overhang is None:
        return feature_set

    positions = _splice_positions(feature_set)

    others: list[Feature] = []
    terminals: list[Feature] = []
    for feature in feature_set:
        if feature.type in TERMINAL_TYPES:
            left, right = positions[(feature.seqid, feature.strand)]
            terminals.append(_trim(feature, left, right, min_overhang))
        else:
            others.append(feature)

    # Internal exons indexed by their spliced boundaries
    internal_by_boundary: dict[tuple, list[int]] = defaultdict(list)
    for i, feature in enumerate(others):
        if feature.type == FeatureType.I:
            internal_by_boundary[(feature.seqid, feature.strand, "L", feature.start)].append(i)
            internal_by_boundary[(feature.seqid, feature.strand, "R", feature.end)].append(i)

    kept: dict[tuple, Feature] = {}
    n_dropped = 0
    for exon in sorted(terminals, key=Feature.sort_key):
        side, pos = _spliced_boundary(exon)
        containers = [
            i
            for i in internal_by_boundary.get((exon.seqid, exon.strand, side, pos), [])
            if others[i].start <= exon.start and exon.end <= others[i].end
        ]
        if containers:
            for i in containers:
                others[i] = others[i].evolve(
                    transcript_names=others[i].transcript_names | exon.transcript_names,
                    gene_names=others[i].gene_names | exon.gene_names,
                )
            n_dropped += 1
            continue

        group = (exon.seqid, exon.strand, exon.type, side, pos)
        existing = kept.get(group)
        if existing is None:
            kept[group] = exon
            continue
        longest = exon if exon.width > existing.width else existing
        kept[group] = longest.evolve(
            transcript_names=existing.transcript_names | exon.transcript_names,
            gene_names=existing.gene_names | exon.gene_names,
        )

    logger.info(
        f"Terminal exons: {len(terminals)} in, {len(kept)} kept, "
        f"{n_dropped} contained in internal exons"
    )
    return assign_gene_ids(others + list(kept.values()))


def merge_and_process(
    feature_sets: Iterable[Iterable[Feature]],
    min_overhang: int | None = None,
) -> FeatureSet:
    """Merge all feature sets, then process terminal exons once."""
    return process_terminal_exons(merge_features(*feature_sets), min_overhang)
