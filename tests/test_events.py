"""Tests for spliceforge.core.events module.

Tests cover:
- Bubble detection on small loci
- Variant ordering, anchors and names
- Structural variant types
- Variant cap and the event table
"""

import random
from pathlib import Path

from spliceforge.core.events import (
    VARIANT_COLUMNS,
    classify_pair,
    find_events,
    find_locus_events,
)
from spliceforge.core.features import Feature, FeatureType
from spliceforge.core.graph import build_splice_graph


def _feature(start, end, ftype):
    return Feature("chr1", start, end, "+", ftype)


# =============================================================================
# Event Detection Tests
# =============================================================================


class TestFindEvents:
    """Tests for find_events."""

    def test_two_acceptors(self, two_acceptor_features):
        """One event with proximal and distal acceptor variants."""
        events = find_events(build_splice_graph(two_acceptor_features))
        assert len(events) == 1

        event = events.event(1)
        assert event.from_node == "D:chr1:100:+"
        assert event.to_node == "A:chr1:401:+"
        assert event.closed5p and event.closed3p
        assert event.variant_ids == (1, 2)

        proximal, distal = events.variants_for(1)
        assert proximal.feature_ids == (3, 6)
        assert proximal.variant_type == "A3SS:P"
        assert (proximal.feature_id5p, proximal.feature_id3p) == (3, 7)
        assert proximal.variant_name == "GENE1_1_1/2"
        assert proximal.transcript_names == frozenset({"tx1"})

        assert distal.feature_ids == (4,)
        assert distal.variant_type == "A3SS:D"
        assert (distal.feature_id5p, distal.feature_id3p) == (4, 4)
        assert distal.variant_name == "GENE1_1_2/2"

    def test_skipped_exon(self, skipped_exon_features):
        """A cassette exon gives inclusion and skipping variants."""
        events = find_events(build_splice_graph(skipped_exon_features))
        assert len(events) == 1
        inclusion, skipping = events.variants_for(1)
        assert inclusion.variant_type == "SE:I"
        assert skipping.variant_type == "SE:S"
        assert len(inclusion.feature_ids) == 3
        assert inclusion.variant_name.startswith("G1_1_")

    def test_linear_locus_has_no_events(self, linear_features):
        """Without alternatives there are no bubbles."""
        events = find_events(build_splice_graph(linear_features))
        assert len(events) == 0
        assert events.variants == []

    def test_alternative_first_exons(self):
        """Alternative starts become an event from the root."""
        features = [
            _feature(1, 100, FeatureType.F),
            _feature(101, 500, FeatureType.J),
            _feature(201, 300, FeatureType.F),
            _feature(301, 500, FeatureType.J),
            _feature(501, 600, FeatureType.L),
        ]
        events = find_events(build_splice_graph(features))
        assert len(events) == 1
        assert events.event(1).from_node == "R"
        first, second = events.variants_for(1)
        assert first.variant_type == second.variant_type == "AFE"
        assert first.feature_id5p is None
        assert first.feature_id3p is not None

    def test_variant_cap(self, skipped_exon_features):
        """Events with too many variants are skipped and reported."""
        events = find_events(build_splice_graph(skipped_exon_features), max_variants=1)
        assert len(events) == 0
        assert len(events.skipped) == 1
        assert events.skipped[0].n_paths == 2

    def test_ids_unique_across_loci(self, two_acceptor_features, skipped_exon_features):
        """Event and variant IDs are sequential over all loci."""
        shifted = [
            f.evolve(seqid="chr2") for f in skipped_exon_features
        ]
        events = find_events(build_splice_graph(two_acceptor_features + shifted))
        assert [e.event_id for e in events.events] == [1, 2]
        assert [v.variant_id for v in events.variants] == [1, 2, 3, 4]
        assert [e.gene_id for e in events.events] == [1, 2]

    def test_locus_events_direct(self, two_acceptor_features):
        """Per-locus decomposition works on a detached locus."""
        sg = build_splice_graph(two_acceptor_features)
        result = find_locus_events(sg.locus(1))
        assert result.label == "GENE1"
        assert len(result.events) == 1
        assert result.skipped == ()


# =============================================================================
# Structure Tests
# =============================================================================


def _edge_nodes(sg, gene_id):
    return {f.feature_id: (u.name, v.name) for u, v, f in sg.edges(gene_id)}


def _id_table(events):
    return (
        [(e.event_id, e.from_node, e.to_node, e.variant_ids) for e in events.events],
        [(v.variant_id, v.feature_ids, v.variant_type, v.variant_name) for v in events.variants],
    )


class TestEventStructure:
    """Tests for minimality, strand handling and determinism."""

    def test_nested_events(self, nested_features):
        """A cassette exon and a downstream acceptor give two events."""
        events = find_events(build_splice_graph(nested_features))
        found = {
            (e.from_node, e.to_node): tuple(v.variant_type for v in events.variants_for(e.event_id))
            for e in events.events
        }
        assert found == {
            ("D:chr1:100:+", "A:chr1:401:+"): ("SE:I", "SE:S"),
            ("D:chr1:300:+", "A:chr1:501:+"): ("A3SS:P", "A3SS:D"),
        }

    def test_no_shared_interior_node(self, nested_features):
        """No node inside an event is visited by all of its variants."""
        sg = build_splice_graph(nested_features)
        edges = _edge_nodes(sg, 1)
        events = find_events(sg)

        for event in events.events:
            interiors = []
            for variant in events.variants_for(event.event_id):
                nodes = {name for fid in variant.feature_ids for name in edges[fid]}
                interiors.append(nodes - {event.from_node, event.to_node})
            assert set.intersection(*interiors) == set()

    def test_minus_strand(self, minus_two_acceptor_features):
        """Events on minus run from the higher to the lower coordinate."""
        events = find_events(build_splice_graph(minus_two_acceptor_features))
        assert len(events) == 1

        event = events.event(1)
        assert event.from_node == "D:chr1:401:-"
        assert event.to_node == "A:chr1:100:-"
        by_type = {v.variant_type: v for v in events.variants_for(1)}
        assert set(by_type) == {"A3SS:P", "A3SS:D"}
        assert (by_type["A3SS:P"].feature_id5p, by_type["A3SS:P"].feature_id3p) == (6, 2)
        assert (by_type["A3SS:D"].feature_id5p, by_type["A3SS:D"].feature_id3p) == (4, 4)
        assert by_type["A3SS:P"].transcript_names == frozenset({"tx1"})

    def test_ids_independent_of_input_order(self, nested_features):
        """Shuffled input gives identical event and variant IDs."""
        expected = _id_table(find_events(build_splice_graph(nested_features)))
        for seed in range(5):
            shuffled = list(nested_features)
            random.Random(seed).shuffle(shuffled)
            assert _id_table(find_events(build_splice_graph(shuffled))) == expected


# =============================================================================
# Classification Tests
# =============================================================================


class TestClassifyPair:
    """Tests for classify_pair."""

    def test_retained_intron(self):
        """Exon versus junction over the same span."""
        exon = [_feature(101, 200, FeatureType.E)]
        junction = [_feature(101, 200, FeatureType.J)]
        assert classify_pair(exon, junction) == ("RI:R", "RI:E")

    def test_alternative_donor(self):
        """Exon extension then junction versus a direct junction."""
        longer = [_feature(101, 150, FeatureType.E), _feature(151, 300, FeatureType.J)]
        direct = [_feature(101, 300, FeatureType.J)]
        assert classify_pair(longer, direct) == ("A5SS:P", "A5SS:D")

    def test_mutually_exclusive(self):
        """Two non-overlapping cassette exons."""
        a = [
            _feature(101, 200, FeatureType.J),
            _feature(201, 300, FeatureType.E),
            _feature(301, 600, FeatureType.J),
        ]
        b = [
            _feature(101, 400, FeatureType.J),
            _feature(401, 500, FeatureType.E),
            _feature(501, 600, FeatureType.J),
        ]
        assert classify_pair(a, b) == ("MXE", "MXE")

    def test_last_exon_types(self):
        """Events into the sink are ALE or AE."""
        spliced = [_feature(101, 200, FeatureType.J), _feature(201, 300, FeatureType.E)]
        unspliced = [_feature(101, 300, FeatureType.E)]
        assert classify_pair(spliced, unspliced, to_sink=True) == ("AE", "AE")

    def test_unclassified(self):
        """Unmatched patterns have no type."""
        a = [_feature(101, 200, FeatureType.E)]
        b = [_feature(101, 150, FeatureType.E)]
        assert classify_pair(a, b) == (None, None)


# =============================================================================
# Output Tests
# =============================================================================


class TestEventTable:
    """Tests for the variant table."""

    def test_write_tsv(self, two_acceptor_features, tmp_path: Path):
        """One row per variant under a fixed header."""
        events = find_events(build_splice_graph(two_acceptor_features))
        path = tmp_path / "variants.tsv"
        events.write_tsv(path)

        lines = path.read_text().splitlines()
        assert lines[0].split("\t") == list(VARIANT_COLUMNS)
        assert len(lines) == 3
        first = dict(zip(VARIANT_COLUMNS, lines[1].split("\t")))
        assert first["feature_ids"] == "3,6"
        assert first["variant_type"] == "A3SS:P"
        assert first["closed5p"] == "True"

    def test_empty_table(self, tmp_path: Path):
        """An empty event set writes only the header."""
        events = find_events(build_splice_graph([]))
        path = tmp_path / "variants.tsv"
        events.write_tsv(path)
        assert path.read_text().strip().split("\t") == list(VARIANT_COLUMNS)
