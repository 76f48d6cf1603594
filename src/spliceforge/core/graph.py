"""Splice graph construction.

A splice graph is a directed acyclic graph per gene locus. Nodes sit
between bases ("cuts": cut ``c`` lies between base ``c`` and ``c + 1``)
and are flagged as donor, acceptor, transcript start or transcript end.
Edges are exon bins and junctions, directed 5' to 3'. An exon bin and a
junction may connect the same pair of nodes (a retained intron), so each
locus is a ``networkx.MultiDiGraph`` keyed by feature ID.

Construction per locus:

1. Validate that all features share one known strand.
2. Drop junctions whose flanking bases are not exonic.
3. Cut every exon at every distinct exon boundary and junction flank
   (sweep over sorted cuts) to obtain disjoint exon bins.
4. Flag nodes, connect bins and junctions, check acyclicity.

Gene IDs are then assigned per weakly connected component and feature
IDs over all features, both ordered by genomic position (then type), so
identifiers do not depend on input order or worker count.

Example:
    >>> from spliceforge.core.graph import build_splice_graph
    >>> sg = build_splice_graph(features)
    >>> for gene_id in sg.gene_ids:
    ...     print(gene_id, len(sg.edges(gene_id)))
"""

from __future__ import annotations

import bisect
import logging
from collections import defaultdict
from typing import Any, Iterable, Iterator

import attrs
import networkx as nx

from spliceforge.core.features import Feature, FeatureSet, FeatureType, TRANSCRIPT_TYPES
from spliceforge.core.merge import assign_gene_ids
from spliceforge.errors import InputValidationError
from spliceforge.utils.intervals import Interval, merge_intervals
from spliceforge.utils.logging import ProgressLogger

logger = logging.getLogger(__name__)


# =============================================================================
# Data Structures
# =============================================================================


@attrs.frozen
class SpliceNode:
    """A splice graph node.

    Attributes:
        seqid: Sequence name.
        strand: "+" or "-".
        cut: The node lies between base ``cut`` and ``cut + 1``.
        donor: An intron starts here (transcript orientation).
        acceptor: An intron ends here.
        start: A transcript starts here.
        end: A transcript ends here.
    """

    seqid: str
    strand: str
    cut: int
    donor: bool = False
    acceptor: bool = False
    start: bool = False
    end: bool = False

    @property
    def kind(self) -> str:
        """Display type with priority D > A > S > E."""
        if self.donor:
            return "D"
        if self.acceptor:
            return "A"
        if self.start:
            return "S"
        return "E"

    @property
    def position(self) -> int:
        """Exonic base next to the node.

        The last exonic base for donors and ends, the first exonic base
        for acceptors and starts, in transcript orientation.
        """
        upstream_exon = self.donor or (self.end and not self.acceptor and not self.start)
        if self.strand == "-":
            return self.cut + 1 if upstream_exon else self.cut
        return self.cut if upstream_exon else self.cut + 1

    @property
    def name(self) -> str:
        """SGSeq-style node name, e.g. ``D:chr1:200:+``."""
        return f"{self.kind}:{self.seqid}:{self.position}:{self.strand}"

    def order(self) -> int:
        """Sort key giving 5' to 3' order."""
        return -self.cut if self.strand == "-" else self.cut


@attrs.frozen
class LocusError:
    """A locus excluded from the splice graph.

    Attributes:
        gene_id: Locus ID in the input feature set.
        message: Why the locus was excluded.
        region: Span of the locus, e.g. ``chr1:100-900``.
        n_features: Number of input features in the locus.
    """

    gene_id: int | None
    message: str
    region: str
    n_features: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return attrs.asdict(self)


def node_order(strand: str, cut: int) -> int:
    """5' to 3' sort key of a cut on a strand."""
    return -cut if strand == "-" else cut


# =============================================================================
# Splice Graph
# =============================================================================


class SpliceGraph:
    """Read-only splice graph over one or more gene loci.

    Attributes:
        errors: Loci excluded during construction.
    """

    def __init__(
        self,
        graphs: dict[int, nx.MultiDiGraph],
        features: dict[int, Feature],
        segments: dict[int, int],
        errors: list[LocusError] | None = None,
    ) -> None:
        self._graphs = graphs
        self._features = features
        self._segments = segments
        self.errors: list[LocusError] = list(errors or [])

        self._by_gene: dict[int, list[Feature]] = defaultdict(list)
        for feature_id in sorted(features):
            self._by_gene[features[feature_id].gene_id].append(features[feature_id])

    def __repr__(self) -> str:
        return (
            f"SpliceGraph(loci={len(self._graphs)}, features={len(self._features)}, "
            f"errors={len(self.errors)})"
        )

    def __len__(self) -> int:
        return len(self._features)

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    @property
    def gene_ids(self) -> list[int]:
        """Locus IDs in ascending order."""
        return sorted(self._graphs)

    @property
    def features(self) -> list[Feature]:
        """All features (bins, junctions, sites) ordered by feature ID."""
        return [self._features[i] for i in sorted(self._features)]

    def feature(self, feature_id: int) -> Feature:
        """Look up a feature by ID."""
        return self._features[feature_id]

    def locus_features(self, gene_id: int) -> list[Feature]:
        """Features of one locus ordered by feature ID."""
        return list(self._by_gene.get(gene_id, []))

    def to_feature_set(self) -> FeatureSet:
        """All features as a FeatureSet."""
        return FeatureSet(self._features.values())

    @property
    def segments(self) -> dict[int, int]:
        """Unbranched-segment ID for every bin and junction feature ID."""
        return dict(self._segments)

    # -------------------------------------------------------------------------
    # Graph access
    # -------------------------------------------------------------------------

    def graph(self, gene_id: int) -> nx.MultiDiGraph:
        """A read-only view of one locus graph.

        Nodes are cuts with a ``node`` attribute (SpliceNode) and a
        ``sites`` attribute (site feature IDs); edges are keyed by
        feature ID.
        """
        return self._graphs[gene_id].copy(as_view=True)

    def nodes(self, gene_id: int) -> list[SpliceNode]:
        """Nodes of one locus in 5' to 3' order."""
        graph = self._graphs[gene_id]
        nodes = [data["node"] for _, data in graph.nodes(data=True)]
        return sorted(nodes, key=SpliceNode.order)

    def edges(self, gene_id: int) -> list[tuple[SpliceNode, SpliceNode, Feature]]:
        """Edges of one locus as (from node, to node, feature), by feature ID."""
        graph = self._graphs[gene_id]
        edges = [
            (graph.nodes[u]["node"], graph.nodes[v]["node"], self._features[key])
            for u, v, key in graph.edges(keys=True)
        ]
        return sorted(edges, key=lambda e: e[2].feature_id)

    def site_feature(self, gene_id: int, cut: int, site_type: FeatureType) -> Feature | None:
        """The donor or acceptor site feature at a node, if any."""
        graph = self._graphs[gene_id]
        if cut not in graph:
            return None
        for feature_id in graph.nodes[cut]["sites"]:
            feature = self._features[feature_id]
            if feature.type == site_type:
                return feature
        return None

    def locus(self, gene_id: int) -> Locus:
        """A self-contained, picklable copy of one locus."""
        graph = self._graphs[gene_id]
        features = {f.feature_id: f for f in self._by_gene.get(gene_id, [])}
        return Locus(
            gene_id=gene_id,
            graph=graph.copy(),
            features=features,
            segments={i: self._segments[i] for i in features if i in self._segments},
        )

    def iter_loci(self) -> Iterator[Locus]:
        """Iterate loci in gene ID order."""
        for gene_id in self.gene_ids:
            yield self.locus(gene_id)


@attrs.frozen
class Locus:
    """One connected component of a splice graph.

    Attributes:
        gene_id: Locus ID.
        graph: Locus graph (cuts as nodes, feature IDs as edge keys).
        features: Locus features by ID.
        segments: Unbranched-segment ID per bin/junction feature ID.
    """

    gene_id: int
    graph: nx.MultiDiGraph = attrs.field(eq=False)
    features: dict[int, Feature] = attrs.field(eq=False)
    segments: dict[int, int] = attrs.field(eq=False)

    @property
    def strand(self) -> str:
        return next(iter(self.features.values())).strand

    @property
    def gene_names(self) -> frozenset[str]:
        """Gene names found on any feature of the locus."""
        names: set[str] = set()
        for feature in self.features.values():
            names |= feature.gene_names
        return frozenset(names)

    def node(self, cut: int) -> SpliceNode:
        return self.graph.nodes[cut]["node"]

    def site_feature(self, cut: int, site_type: FeatureType) -> Feature | None:
        """The donor or acceptor site feature at a node, if any."""
        for feature_id in self.graph.nodes[cut]["sites"]:
            if self.features[feature_id].type == site_type:
                return self.features[feature_id]
        return None


# =============================================================================
# Locus Construction
# =============================================================================


def _locus_region(features: list[Feature]) -> str:
    start = min(f.start for f in features)
    end = max(f.end for f in features)
    return f"{features[0].seqid}:{start}-{end}"


def _validate_strand(features: list[Feature], gene_id: int | None) -> str:
    seqids = {f.seqid for f in features}
    if len(seqids) > 1:
        raise InputValidationError(
            f"Locus spans several sequences: {sorted(seqids)}", gene_id=gene_id
        )
    strands = {f.strand for f in features}
    if len(strands) > 1:
        raise InputValidationError(
            f"Inconsistent strands in locus: {sorted(strands)}", gene_id=gene_id
        )
    strand = strands.pop()
    if strand not in ("+", "-"):
        raise InputValidationError("Locus strand is unknown ('*')", gene_id=gene_id)
    return strand


def _covered(coverage: list[Interval], starts: list[int], position: int) -> bool:
    i = bisect.bisect_right(starts, position) - 1
    return i >= 0 and coverage[i].contains(position)


def _name_sets(features: Iterable[Feature]) -> tuple[frozenset[str], frozenset[str]]:
    transcripts: set[str] = set()
    genes: set[str] = set()
    for feature in features:
        transcripts |= feature.transcript_names
        genes |= feature.gene_names
    return frozenset(transcripts), frozenset(genes)


def build_locus_graph(features: list[Feature], gene_id: int | None = None) -> nx.MultiDiGraph:
    """Build the graph of one candidate locus (without identifiers).

    Args:
        features: Transcript features (J/I/F/L/U) and/or exon bins (E)
            of a single locus.
        gene_id: Input locus ID, used in error messages.

    Returns:
        MultiDiGraph over cuts. Node attributes: ``node`` (SpliceNode),
        ``sites`` (site Features). Edge attribute: ``feature``.

    Raises:
        InputValidationError: On mixed/unknown strand or a cyclic result.
    """
    strand = _validate_strand(features, gene_id)
    seqid = features[0].seqid
    minus = strand == "-"

    exons = [f for f in features if f.is_exon]
    junctions: dict[tuple, list[Feature]] = defaultdict(list)
    for f in features:
        if f.is_junction:
            junctions[(f.start, f.end)].append(f)

    coverage = merge_intervals((Interval(e.start, e.end) for e in exons), adjacent=False)
    cov_starts = [c.start for c in coverage]

    valid_junctions = {}
    for (js, je), group in sorted(junctions.items()):
        if _covered(coverage, cov_starts, js - 1) and _covered(coverage, cov_starts, je + 1):
            valid_junctions[(js, je)] = group
        else:
            logger.debug(f"Dropping junction {seqid}:{js}-{je}:{strand} with non-exonic flank")

    # Genomic splice cuts: exon on the left / on the right of the intron
    right_splice: set[int] = set()
    left_splice: set[int] = set()
    for js, je in valid_junctions:
        right_splice.add(js - 1)
        left_splice.add(je)
    for exon in exons:
        if exon.spliced_right:
            right_splice.add(exon.end)
        if exon.spliced_left:
            left_splice.add(exon.start - 1)

    cuts_set = set(right_splice) | set(left_splice)
    for exon in exons:
        cuts_set.add(exon.start - 1)
        cuts_set.add(exon.end)
    cuts = sorted(cuts_set)

    # Sweep: each exon contributes to the segments between its own cuts
    contributors: dict[int, list[Feature]] = defaultdict(list)
    for exon in exons:
        first = bisect.bisect_left(cuts, exon.start - 1)
        last = bisect.bisect_left(cuts, exon.end)
        for i in range(first, last):
            contributors[i].append(exon)

    # Transcript starts/ends at unspliced exon boundaries. Exon bins mark
    # them where exonic sequence does not continue across the cut, or
    # where they carry an explicit start/end flag.
    free_left: set[int] = set()
    free_right: set[int] = set()
    for exon in exons:
        if exon.open_left:
            free_left.add(exon.start - 1)
        if exon.open_right:
            free_right.add(exon.end)
        explicit = exon.type in TRANSCRIPT_TYPES
        if not exon.spliced_left:
            cut = exon.start - 1
            if explicit or not _covered(coverage, cov_starts, cut):
                free_left.add(cut)
        if not exon.spliced_right:
            cut = exon.end
            if explicit or not _covered(coverage, cov_starts, cut + 1):
                free_right.add(cut)

    graph = nx.MultiDiGraph()

    def add_node(cut: int) -> None:
        if cut in graph:
            return
        in_right, in_left = cut in right_splice, cut in left_splice
        node = SpliceNode(
            seqid=seqid,
            strand=strand,
            cut=cut,
            donor=in_left if minus else in_right,
            acceptor=in_right if minus else in_left,
            start=(cut in free_right) if minus else (cut in free_left),
            end=(cut in free_left) if minus else (cut in free_right),
        )
        graph.add_node(cut, node=node, sites=[])

    for i in sorted(contributors):
        left_cut, right_cut = cuts[i], cuts[i + 1]
        bin_start, bin_end = left_cut + 1, right_cut
        group = contributors[i]

        # Mandatory splice: spliced here, no contributing exon continues,
        # and no input exon bin starting/ending here is marked unspliced
        spliced_left = (
            left_cut in left_splice
            and not any(e.start < bin_start for e in group)
            and not any(
                e.type == FeatureType.E and e.start == bin_start and not e.spliced_left
                for e in group
            )
        )
        spliced_right = (
            right_cut in right_splice
            and not any(e.end > bin_end for e in group)
            and not any(
                e.type == FeatureType.E and e.end == bin_end and not e.spliced_right
                for e in group
            )
        )

        transcripts, genes = _name_sets(group)
        exon_bin = Feature(
            seqid,
            bin_start,
            bin_end,
            strand,
            FeatureType.E,
            transcript_names=transcripts,
            gene_names=genes,
            spliced5p=spliced_right if minus else spliced_left,
            spliced3p=spliced_left if minus else spliced_right,
            starts5p=(right_cut in free_right) if minus else (left_cut in free_left),
            ends3p=(left_cut in free_left) if minus else (right_cut in free_right),
        )
        add_node(left_cut)
        add_node(right_cut)
        u, v = (right_cut, left_cut) if minus else (left_cut, right_cut)
        graph.add_edge(u, v, key=exon_bin.key, feature=exon_bin)

    for (js, je), group in valid_junctions.items():
        transcripts, genes = _name_sets(group)
        junction = Feature(
            seqid, js, je, strand, FeatureType.J,
            transcript_names=transcripts, gene_names=genes,
        )
        add_node(js - 1)
        add_node(je)
        u, v = (je, js - 1) if minus else (js - 1, je)
        graph.add_edge(u, v, key=junction.key, feature=junction)

    if not nx.is_directed_acyclic_graph(graph):
        raise InputValidationError(
            f"Splice graph for locus {_locus_region(features)} contains a cycle",
            gene_id=gene_id,
        )

    _add_site_features(graph)
    return graph


def _add_site_features(graph: nx.MultiDiGraph) -> None:
    """Attach 1 bp donor/acceptor site features to their nodes."""
    for cut, data in graph.nodes(data=True):
        node: SpliceNode = data["node"]
        sites = []
        if node.donor:
            position = cut + 1 if node.strand == "-" else cut
            sites.append(_site(graph, cut, node, position, FeatureType.D))
        if node.acceptor:
            position = cut if node.strand == "-" else cut + 1
            sites.append(_site(graph, cut, node, position, FeatureType.A))
        data["sites"] = sites


def _site(
    graph: nx.MultiDiGraph, cut: int, node: SpliceNode, position: int, site_type: FeatureType
) -> Feature:
    # Names come from the junctions using this site
    incident = [
        d["feature"]
        for _, _, d in list(graph.in_edges(cut, data=True)) + list(graph.out_edges(cut, data=True))
        if d["feature"].is_junction
    ]
    transcripts, genes = _name_sets(incident)
    return Feature(
        node.seqid, position, position, node.strand, site_type,
        transcript_names=transcripts, gene_names=genes,
    )


# =============================================================================
# Identifier Assignment
# =============================================================================


def _component_order(graph: nx.MultiDiGraph) -> tuple:
    features = [d["feature"] for _, _, d in graph.edges(data=True)]
    first = features[0]
    return (
        first.seqid,
        min(f.start for f in features),
        first.strand,
        max(f.end for f in features),
    )


def _id_order(feature: Feature) -> tuple:
    return (feature.seqid, feature.start, feature.end, feature.strand, feature.type.rank)


def _segments(graph: nx.MultiDiGraph) -> list[list[int]]:
    """Maximal unbranched chains of edges, as lists of feature IDs."""

    def passes_through(cut: int) -> bool:
        node: SpliceNode = graph.nodes[cut]["node"]
        return (
            graph.in_degree(cut) == 1
            and graph.out_degree(cut) == 1
            and not node.start
            and not node.end
        )

    segments = []
    for u, v, key in sorted(graph.edges(keys=True), key=lambda e: e[2]):
        if passes_through(u):
            continue
        chain = [key]
        while passes_through(v):
            _, v, key = next(iter(graph.out_edges(v, keys=True)))
            chain.append(key)
        segments.append(chain)
    return segments


def _finalize(locus_graphs: list[nx.MultiDiGraph], errors: list[LocusError]) -> SpliceGraph:
    components: list[nx.MultiDiGraph] = []
    for graph in locus_graphs:
        for nodes in nx.weakly_connected_components(graph):
            component = graph.subgraph(nodes)
            if component.number_of_edges():
                components.append(component)
    components.sort(key=_component_order)

    # Feature IDs over all features, by position then type
    entries = []
    for gene_id, component in enumerate(components, start=1):
        for _, _, data in component.edges(data=True):
            entries.append((gene_id, data["feature"]))
        for _, data in component.nodes(data=True):
            entries.extend((gene_id, site) for site in data["sites"])
    entries.sort(key=lambda e: _id_order(e[1]))

    features: dict[int, Feature] = {}
    ids: dict[tuple, int] = {}
    for feature_id, (gene_id, feature) in enumerate(entries, start=1):
        features[feature_id] = feature.evolve(feature_id=feature_id, gene_id=gene_id)
        ids[feature.key] = feature_id

    graphs: dict[int, nx.MultiDiGraph] = {}
    segments: dict[int, int] = {}
    segment_lists = []
    for gene_id, component in enumerate(components, start=1):
        graph = nx.MultiDiGraph(gene_id=gene_id)
        for cut, data in component.nodes(data=True):
            graph.add_node(
                cut,
                node=data["node"],
                sites=tuple(ids[s.key] for s in data["sites"]),
            )
        for u, v, data in component.edges(data=True):
            feature_id = ids[data["feature"].key]
            graph.add_edge(u, v, key=feature_id, feature_id=feature_id)
        graphs[gene_id] = graph
        segment_lists.extend(_segments(graph))

    for segment_id, chain in enumerate(sorted(segment_lists), start=1):
        for feature_id in chain:
            segments[feature_id] = segment_id

    return SpliceGraph(graphs, features, segments, errors)


# =============================================================================
# Public API
# =============================================================================


def build_splice_graph(features: Iterable[Feature]) -> SpliceGraph:
    """Build a splice graph from a consensus feature set.

    Features are grouped into candidate loci by ``gene_id`` (computed
    with ``assign_gene_ids`` when missing). A locus that fails validation
    is excluded, recorded in ``SpliceGraph.errors`` and logged; the other
    loci are unaffected. Donor/acceptor site features in the input are
    ignored and regenerated.

    Args:
        features: Transcript features and/or exon bins with junctions.

    Returns:
        SpliceGraph with final gene and feature IDs.
    """
    feature_set = FeatureSet(f for f in features if not f.type.is_site)
    if any(f.gene_id is None for f in feature_set):
        feature_set = assign_gene_ids(feature_set)

    locus_graphs: list[nx.MultiDiGraph] = []
    errors: list[LocusError] = []
    loci = feature_set.loci()
    progress = ProgressLogger(logger, total=len(loci), interval=1000, description="Building loci")

    for gene_id in sorted(loci):
        locus = loci[gene_id]
        progress.update()
        try:
            locus_graphs.append(build_locus_graph(locus, gene_id))
        except InputValidationError as e:
            logger.warning(f"Excluding locus {gene_id} ({_locus_region(locus)}): {e}")
            errors.append(
                LocusError(
                    gene_id=gene_id,
                    message=str(e),
                    region=_locus_region(locus),
                    n_features=len(locus),
                )
            )

    splice_graph = _finalize(locus_graphs, errors)
    logger.info(
        f"Splice graph: {len(splice_graph.gene_ids)} loci, {len(splice_graph)} features, "
        f"{len(errors)} loci excluded"
    )
    return splice_graph
