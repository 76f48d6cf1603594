"""Decomposition of splice graphs into splice events and variants.

An event is a pair of nodes (from, to) joined by two or more paths that
diverge at ``from`` and first reconverge at ``to`` (a bubble). Each path
is a variant. Every locus graph is augmented with a virtual root ``R``
(feeding all transcript starts) and sink ``K`` (fed by all transcript
ends), so alternative first and last exons become ordinary bubbles.

Discovery is iterative: for each node with two or more out-edges, every
out-edge starts a branch label, labels are pushed forward in topological
order, and each node where distinct labels meet is a convergence point.
Labels that meet are merged and the sweep continues until one label
remains, so nested bubbles are found when their own start node is
processed and no recursion is needed.

Features:
    - Bubble detection with per-event variant cap
    - closed5p/closed3p flags
    - 5'/3' anchor features for counting
    - SGSeq-style variant types (SE, S2E, MXE, RI, A5SS, A3SS, AFE, ALE, AS, AE)

Example:
    >>> from spliceforge.core.events import find_events
    >>> events = find_events(splice_graph, max_variants=20)
    >>> for variant in events.variants_for(1):
    ...     print(variant.variant_name, variant.variant_type)
"""

from __future__ import annotations

import csv
import heapq
import logging
from collections import defaultdict
from pathlib import Path
from typing import Any, Hashable, Iterable

import attrs
import networkx as nx
from networkx.utils import UnionFind

from spliceforge.core.features import Feature, FeatureType
from spliceforge.core.graph import Locus, SpliceGraph, SpliceNode
from spliceforge.parallel.executor import ParallelExecutor

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

ROOT = "R"
SINK = "K"
VIRTUAL = "virtual"

DEFAULT_MAX_VARIANTS = 20

VARIANT_COLUMNS = (
    "variant_id",
    "event_id",
    "gene_id",
    "from",
    "to",
    "feature_ids",
    "segment_ids",
    "feature_id5p",
    "feature_id3p",
    "closed5p",
    "closed3p",
    "variant_type",
    "variant_name",
    "transcript_names",
)


# =============================================================================
# Data Structures
# =============================================================================


@attrs.frozen
class SpliceVariant:
    """One path through a splice event.

    Attributes:
        variant_id: Unique ID over the event set.
        event_id: Event the variant belongs to.
        gene_id: Locus ID.
        from_node: Name of the event start node (``R`` for the root).
        to_node: Name of the event end node (``K`` for the sink).
        feature_ids: Features along the path, 5' to 3'.
        segment_ids: Unbranched segments along the path.
        feature_id5p: 5' anchor used for counting, if any.
        feature_id3p: 3' anchor used for counting, if any.
        closed5p: Event is closed at its 5' end.
        closed3p: Event is closed at its 3' end.
        variant_type: Comma-separated structural types, or "other".
        variant_name: ``<gene>_<event>_<k>/<n>``.
        transcript_names: Transcripts containing every feature of the path.
    """

    variant_id: int
    event_id: int
    gene_id: int
    from_node: str
    to_node: str
    feature_ids: tuple[int, ...]
    segment_ids: tuple[int, ...]
    feature_id5p: int | None
    feature_id3p: int | None
    closed5p: bool
    closed3p: bool
    variant_type: str
    variant_name: str
    transcript_names: frozenset[str] = frozenset()

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat dictionary for tabular output."""
        return {
            "variant_id": self.variant_id,
            "event_id": self.event_id,
            "gene_id": self.gene_id,
            "from": self.from_node,
            "to": self.to_node,
            "feature_ids": ",".join(map(str, self.feature_ids)),
            "segment_ids": ",".join(map(str, self.segment_ids)),
            "feature_id5p": self.feature_id5p,
            "feature_id3p": self.feature_id3p,
            "closed5p": self.closed5p,
            "closed3p": self.closed3p,
            "variant_type": self.variant_type,
            "variant_name": self.variant_name,
            "transcript_names": ",".join(sorted(self.transcript_names)),
        }


@attrs.frozen
class SpliceEvent:
    """A bubble in a locus graph.

    Attributes:
        event_id: Unique ID over the event set.
        gene_id: Locus ID.
        from_node: Name of the start node.
        to_node: Name of the end node.
        closed5p: Internal nodes are entered only through ``from_node``.
        closed3p: Internal nodes are left only through ``to_node``.
        variant_ids: Variants of the event, in variant order.
    """

    event_id: int
    gene_id: int
    from_node: str
    to_node: str
    closed5p: bool
    closed3p: bool
    variant_ids: tuple[int, ...]

    @property
    def n_variants(self) -> int:
        return len(self.variant_ids)


@attrs.frozen
class SkippedEvent:
    """An event not reported because it has too many variants."""

    gene_id: int
    from_node: str
    to_node: str
    n_paths: int
    reason: str


@attrs.define
class EventSet:
    """Events and variants of a splice graph.

    Attributes:
        events: Events ordered by ID.
        variants: Variants ordered by ID.
        skipped: Events exceeding the variant cap.
        errors: Loci whose decomposition failed, by gene ID.
    """

    events: list[SpliceEvent] = attrs.Factory(list)
    variants: list[SpliceVariant] = attrs.Factory(list)
    skipped: list[SkippedEvent] = attrs.Factory(list)
    errors: dict[int, str] = attrs.Factory(dict)

    def __len__(self) -> int:
        return len(self.events)

    def event(self, event_id: int) -> SpliceEvent:
        return self.events[event_id - 1]

    def variant(self, variant_id: int) -> SpliceVariant:
        return self.variants[variant_id - 1]

    def variants_for(self, event_id: int) -> list[SpliceVariant]:
        """Variants of one event, in variant order."""
        return [self.variant(i) for i in self.event(event_id).variant_ids]

    def to_records(self) -> list[dict[str, Any]]:
        """One flat record per variant."""
        return [v.to_dict() for v in self.variants]

    def write_tsv(self, path: Path | str) -> None:
        """Write one row per variant (header only when there are none)."""
        records = self.to_records()
        with open(path, "w", newline="") as f:
            writer = csv.DictWriter(f, fieldnames=VARIANT_COLUMNS, delimiter="\t", lineterminator="\n")
            writer.writeheader()
            writer.writerows(records)


# Per-locus result before global IDs are assigned
@attrs.frozen
class _RawVariant:
    feature_ids: tuple[int, ...]
    segment_ids: tuple[int, ...]
    feature_id5p: int | None
    feature_id3p: int | None
    variant_type: str
    transcript_names: frozenset[str]


@attrs.frozen
class _RawEvent:
    from_node: str
    to_node: str
    closed5p: bool
    closed3p: bool
    variants: tuple[_RawVariant, ...]


@attrs.frozen
class LocusEvents:
    """Events of one locus, before global identifiers are assigned."""

    gene_id: int
    label: str
    events: tuple[_RawEvent, ...]
    skipped: tuple[SkippedEvent, ...]


# =============================================================================
# Graph Augmentation
# =============================================================================


def augment(locus: Locus) -> tuple[nx.MultiDiGraph, list[Hashable]]:
    """Add root and sink nodes to a locus graph.

    Returns:
        The augmented graph and its nodes in topological (5' to 3') order.
    """
    graph = nx.MultiDiGraph(locus.graph)
    cuts = sorted(locus.graph.nodes, key=lambda c: locus.node(c).order())

    graph.add_node(ROOT)
    graph.add_node(SINK)
    for cut in cuts:
        node = locus.node(cut)
        if node.start or locus.graph.in_degree(cut) == 0:
            graph.add_edge(ROOT, cut, key=VIRTUAL)
        if node.end or locus.graph.out_degree(cut) == 0:
            graph.add_edge(cut, SINK, key=VIRTUAL)

    return graph, [ROOT, *cuts, SINK]


def _node_name(locus: Locus, node: Hashable) -> str:
    if node in (ROOT, SINK):
        return str(node)
    return locus.node(node).name


# =============================================================================
# Bubble Detection
# =============================================================================


def convergence_nodes(
    graph: nx.MultiDiGraph,
    order: dict[Hashable, int],
    source: Hashable,
) -> list[Hashable]:
    """Nodes where branches leaving ``source`` reconverge.

    Each out-edge of ``source`` starts its own label. Labels are carried
    forward in topological order; a node reached by two or more distinct
    labels is a convergence point, after which those labels are merged.
    The sweep stops once a single label remains.

    Args:
        graph: Augmented locus graph.
        order: Topological index of every node.
        source: Start node.

    Returns:
        Convergence nodes in topological order (empty if out-degree < 2).
    """
    out_edges = list(graph.out_edges(source, keys=True))
    if len(out_edges) < 2:
        return []

    labels = UnionFind(range(len(out_edges)))

    pending: dict[Hashable, set[int]] = {}
    heap: list[int] = []
    by_index: dict[int, Hashable] = {}

    def push(node: Hashable, label: int) -> None:
        if node not in pending:
            pending[node] = set()
            heapq.heappush(heap, order[node])
            by_index[order[node]] = node
        pending[node].add(label)

    for label, (_, target, _) in enumerate(out_edges):
        push(target, label)

    n_active = len(out_edges)
    convergences = []
    while heap and n_active > 1:
        node = by_index.pop(heapq.heappop(heap))
        classes = {labels[label] for label in pending.pop(node)}
        if len(classes) > 1:
            convergences.append(node)
            labels.union(*classes)
            n_active -= len(classes) - 1
        root = labels[next(iter(classes))]
        for _, target, _ in graph.out_edges(node, keys=True):
            push(target, root)

    return convergences


def enumerate_paths(
    graph: nx.MultiDiGraph,
    source: Hashable,
    target: Hashable,
    max_paths: int,
) -> list[list[tuple[Hashable, Hashable, Any]]] | None:
    """All edge paths from ``source`` to ``target`` (iterative DFS).

    Returns:
        Paths as lists of (u, v, key) edges, or None if there are more
        than ``max_paths``.
    """
    allowed = nx.ancestors(graph, target) & (nx.descendants(graph, source) | {source})
    allowed.add(target)

    paths: list[list[tuple[Hashable, Hashable, Any]]] = []
    stack: list[tuple[Hashable, list]] = [(source, [])]
    while stack:
        node, edges = stack.pop()
        if node == target:
            paths.append(edges)
            if len(paths) > max_paths:
                return None
            continue
        for _, nxt, key in graph.out_edges(node, keys=True):
            if nxt in allowed:
                stack.append((nxt, edges + [(node, nxt, key)]))
    return paths


def _count_paths(graph: nx.MultiDiGraph, order: list[Hashable], source: Hashable, target: Hashable) -> int:
    counts: dict[Hashable, int] = defaultdict(int)
    counts[source] = 1
    for node in order:
        if counts[node]:
            for _, nxt, _ in graph.out_edges(node, keys=True):
                counts[nxt] += counts[node]
    return counts[target]


# =============================================================================
# Variant Annotation
# =============================================================================


def _signature(features: list[Feature]) -> str:
    """Compress a path to its exon/junction pattern, e.g. ``JEJ``."""
    pattern = []
    for feature in features:
        letter = "J" if feature.is_junction else "E"
        if letter == "E" and pattern and pattern[-1] == "E":
            continue
        pattern.append(letter)
    return "".join(pattern)


def _exons_overlap(a: list[Feature], b: list[Feature]) -> bool:
    exons_a = [f for f in a if f.is_exon]
    exons_b = [f for f in b if f.is_exon]
    return any(x.start <= y.end and y.start <= x.end for x in exons_a for y in exons_b)


_PAIR_TYPES = {
    ("J", "JEJ"): ("SE:S", "SE:I"),
    ("J", "JEJEJ"): ("S2E:S", "S2E:I"),
    ("E", "J"): ("RI:R", "RI:E"),
    ("EJ", "J"): ("A5SS:P", "A5SS:D"),
    ("J", "JE"): ("A3SS:D", "A3SS:P"),
}


def classify_pair(
    a: list[Feature],
    b: list[Feature],
    from_root: bool = False,
    to_sink: bool = False,
) -> tuple[str | None, str | None]:
    """Structural type of two variants of the same event.

    Args:
        a: Features of the first variant.
        b: Features of the second variant.
        from_root: The event starts at the virtual root.
        to_sink: The event ends at the virtual sink.

    Returns:
        (type of a, type of b); None where no type applies.
    """
    sig_a, sig_b = _signature(a), _signature(b)

    if from_root:
        kind = "AFE" if "J" in sig_a and "J" in sig_b else "AS"
        return kind, kind
    if to_sink:
        kind = "ALE" if "J" in sig_a and "J" in sig_b else "AE"
        return kind, kind

    if sig_a == sig_b == "JEJ" and not _exons_overlap(a, b):
        return "MXE", "MXE"

    if (sig_a, sig_b) in _PAIR_TYPES:
        return _PAIR_TYPES[(sig_a, sig_b)]
    if (sig_b, sig_a) in _PAIR_TYPES:
        type_b, type_a = _PAIR_TYPES[(sig_b, sig_a)]
        return type_a, type_b
    return None, None


def _anchors(
    locus: Locus,
    path: list[tuple[Hashable, Hashable, Any]],
) -> tuple[int | None, int | None]:
    """5' and 3' anchor features of a variant path.

    5': a leading junction, else the donor site at the start node, else
    the leading exon bin. 3': a trailing junction, else the acceptor site
    at the end node, else the trailing exon bin. Paths from the root have
    no 5' anchor; paths into the sink have no 3' anchor.
    """
    first_u, _, first_key = path[0]
    last_u, last_v, last_key = path[-1]

    anchor5p = None
    if first_key != VIRTUAL:
        feature = locus.features[first_key]
        if feature.is_junction:
            anchor5p = feature.feature_id
        else:
            site = locus.site_feature(first_u, FeatureType.D)
            anchor5p = site.feature_id if site is not None else feature.feature_id

    anchor3p = None
    if last_key != VIRTUAL:
        feature = locus.features[last_key]
        if feature.is_junction:
            anchor3p = feature.feature_id
        else:
            site = locus.site_feature(last_v, FeatureType.A)
            anchor3p = site.feature_id if site is not None else feature.feature_id

    return anchor5p, anchor3p


def _variant_order(features: list[Feature]) -> tuple:
    if not features:
        return (0, 0, 0, ())
    return (
        1,
        features[0].start,
        sum(f.width for f in features),
        tuple(f.feature_id for f in features),
    )


# =============================================================================
# Locus Decomposition
# =============================================================================


def locus_label(locus: Locus) -> str:
    """Gene label used in variant names."""
    names = sorted(locus.gene_names)
    return ",".join(names) if names else f"G{locus.gene_id}"


def find_locus_events(locus: Locus, max_variants: int = DEFAULT_MAX_VARIANTS) -> LocusEvents:
    """Find all events and variants of one locus.

    Args:
        locus: Locus from a SpliceGraph.
        max_variants: Events with more paths are skipped.

    Returns:
        LocusEvents with events in (from, to) topological order.
    """
    graph, topo = augment(locus)
    order = {node: i for i, node in enumerate(topo)}

    events: list[_RawEvent] = []
    skipped: list[SkippedEvent] = []

    for source in topo:
        for target in convergence_nodes(graph, order, source):
            paths = enumerate_paths(graph, source, target, max_variants)
            if paths is None:
                n_paths = _count_paths(graph, topo, source, target)
                skipped.append(
                    SkippedEvent(
                        gene_id=locus.gene_id,
                        from_node=_node_name(locus, source),
                        to_node=_node_name(locus, target),
                        n_paths=n_paths,
                        reason=f"more than {max_variants} variants",
                    )
                )
                logger.warning(
                    f"Locus {locus.gene_id}: skipping event "
                    f"{_node_name(locus, source)} -> {_node_name(locus, target)} "
                    f"with {n_paths} variants (max {max_variants})"
                )
                continue
            events.append(_build_event(locus, graph, source, target, paths))

    return LocusEvents(
        gene_id=locus.gene_id,
        label=locus_label(locus),
        events=tuple(events),
        skipped=tuple(skipped),
    )


def _build_event(
    locus: Locus,
    graph: nx.MultiDiGraph,
    source: Hashable,
    target: Hashable,
    paths: list[list[tuple[Hashable, Hashable, Any]]],
) -> _RawEvent:
    internal = {v for path in paths for _, v, _ in path} - {source, target}

    closed5p = all(
        u == source or u in internal for v in internal for u, _ in graph.in_edges(v)
    )
    closed3p = all(
        w == target or w in internal for v in internal for _, w in graph.out_edges(v)
    )

    path_features = [
        [locus.features[key] for _, _, key in path if key != VIRTUAL] for path in paths
    ]
    ranked = sorted(zip(path_features, paths), key=lambda item: _variant_order(item[0]))

    types: list[set[str]] = [set() for _ in ranked]
    for i in range(len(ranked)):
        for j in range(i + 1, len(ranked)):
            type_i, type_j = classify_pair(
                ranked[i][0],
                ranked[j][0],
                from_root=source == ROOT,
                to_sink=target == SINK,
            )
            if type_i:
                types[i].add(type_i)
            if type_j:
                types[j].add(type_j)

    variants = []
    for (features, path), variant_types in zip(ranked, types):
        anchor5p, anchor3p = _anchors(locus, path)
        segment_ids: list[int] = []
        for feature in features:
            segment = locus.segments.get(feature.feature_id)
            if segment is not None and segment not in segment_ids:
                segment_ids.append(segment)
        variants.append(
            _RawVariant(
                feature_ids=tuple(f.feature_id for f in features),
                segment_ids=tuple(segment_ids),
                feature_id5p=anchor5p,
                feature_id3p=anchor3p,
                variant_type=",".join(sorted(variant_types)) or "other",
                transcript_names=_shared_transcripts(features),
            )
        )

    return _RawEvent(
        from_node=_node_name(locus, source),
        to_node=_node_name(locus, target),
        closed5p=closed5p,
        closed3p=closed3p,
        variants=tuple(variants),
    )


def _shared_transcripts(features: Iterable[Feature]) -> frozenset[str]:
    shared: frozenset[str] | None = None
    for feature in features:
        shared = feature.transcript_names if shared is None else shared & feature.transcript_names
    return shared or frozenset()


# =============================================================================
# Public API
# =============================================================================


def assemble_event_set(results: Iterable[LocusEvents], errors: dict[int, str] | None = None) -> EventSet:
    """Assign global event and variant IDs in gene ID order.

    Args:
        results: Per-locus results, in any order.
        errors: Per-locus failures to carry along.

    Returns:
        EventSet with sequential IDs.
    """
    event_set = EventSet(errors=dict(errors or {}))

    for result in sorted(results, key=lambda r: r.gene_id):
        event_set.skipped.extend(result.skipped)
        for raw in result.events:
            event_id = len(event_set.events) + 1
            n = len(raw.variants)
            variant_ids = []
            for k, raw_variant in enumerate(raw.variants, start=1):
                variant_id = len(event_set.variants) + 1
                variant_ids.append(variant_id)
                event_set.variants.append(
                    SpliceVariant(
                        variant_id=variant_id,
                        event_id=event_id,
                        gene_id=result.gene_id,
                        from_node=raw.from_node,
                        to_node=raw.to_node,
                        feature_ids=raw_variant.feature_ids,
                        segment_ids=raw_variant.segment_ids,
                        feature_id5p=raw_variant.feature_id5p,
                        feature_id3p=raw_variant.feature_id3p,
                        closed5p=raw.closed5p,
                        closed3p=raw.closed3p,
                        variant_type=raw_variant.variant_type,
                        variant_name=f"{result.label}_{event_id}_{k}/{n}",
                        transcript_names=raw_variant.transcript_names,
                    )
                )
            event_set.events.append(
                SpliceEvent(
                    event_id=event_id,
                    gene_id=result.gene_id,
                    from_node=raw.from_node,
                    to_node=raw.to_node,
                    closed5p=raw.closed5p,
                    closed3p=raw.closed3p,
                    variant_ids=tuple(variant_ids),
                )
            )

    return event_set


def _locus_task(args: tuple[Locus, int]) -> LocusEvents:
    locus, max_variants = args
    return find_locus_events(locus, max_variants)


def find_events(
    splice_graph: SpliceGraph,
    max_variants: int = DEFAULT_MAX_VARIANTS,
    executor: ParallelExecutor | None = None,
) -> EventSet:
    """Decompose every locus of a splice graph into events and variants.

    Loci are independent; with an executor they are processed in
    parallel and a failing locus is recorded in ``EventSet.errors``
    without affecting the others.

    Args:
        splice_graph: Graph to decompose.
        max_variants: Per-event variant cap.
        executor: Optional parallel executor (serial if None).

    Returns:
        EventSet with deterministic IDs.
    """
    executor = executor or ParallelExecutor(n_workers=1)
    loci = list(splice_graph.iter_loci())
    tasks = [(locus, max_variants) for locus in loci]

    results, _ = executor.map_items(_locus_task, tasks, desc="Decomposing loci")

    locus_events = []
    errors: dict[int, str] = {}
    for locus, task_result in zip(loci, results):
        if task_result.success:
            locus_events.append(task_result.result)
        else:
            errors[locus.gene_id] = task_result.error or "unknown error"
            logger.error(f"Locus {locus.gene_id}: decomposition failed: {task_result.error}")

    event_set = assemble_event_set(locus_events, errors)
    logger.info(
        f"Found {len(event_set.events)} events with {len(event_set.variants)} variants "
        f"({len(event_set.skipped)} skipped)"
    )
    return event_set
