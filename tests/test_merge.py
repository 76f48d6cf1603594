"""Tests for spliceforge.core.merge module.

Tests cover:
- Connected components and gene IDs
- Order-independent merging
- Terminal-exon trimming, dropping and collapsing
"""

from spliceforge.core.features import Feature, FeatureSet, FeatureType
from spliceforge.core.merge import (
    assign_gene_ids,
    connected_components,
    merge_and_process,
    merge_features,
    process_terminal_exons,
)


def _f(start, end, ftype, strand="+", names=()):
    return Feature("chr1", start, end, strand, ftype, transcript_names=set(names))


# =============================================================================
# Gene ID Tests
# =============================================================================


class TestConnectedComponents:
    """Tests for connected_components and assign_gene_ids."""

    def test_junction_links_exons(self, linear_features):
        """Exons meeting at a junction flank share a locus."""
        components = connected_components(linear_features)
        assert len(components) == 1
        assert len(components[0]) == 3

    def test_strands_separate(self):
        """Overlapping features on opposite strands are separate loci."""
        components = connected_components([_f(1, 100, "E", "+"), _f(50, 150, "E", "-")])
        assert len(components) == 2

    def test_overlap_links(self):
        """Overlapping exons are connected without a junction."""
        components = connected_components([_f(1, 100, "E"), _f(90, 150, "E")])
        assert len(components) == 1

    def test_abutting_exons_link(self):
        """Exons that touch end to start are connected."""
        components = connected_components([_f(1, 100, "E"), _f(101, 200, "E")])
        assert len(components) == 1

    def test_gap_separates(self):
        """A one-base gap without a junction splits the locus."""
        components = connected_components([_f(1, 100, "E"), _f(102, 200, "E")])
        assert len(components) == 2

    def test_junction_needs_flanking_exon(self):
        """A junction links only exons that end or start at its flanks."""
        features = [_f(1, 99, "E"), _f(101, 200, "J"), _f(201, 300, "E")]
        components = connected_components(features)
        assert [[(f.start, f.end) for f in c] for c in components] == [
            [(1, 99)],
            [(101, 200), (201, 300)],
        ]

    def test_junction_chain(self):
        """Exons linked only through junctions end up in one locus."""
        features = [
            _f(1, 100, "E"),
            _f(101, 200, "J"),
            _f(201, 300, "E"),
            _f(301, 400, "J"),
            _f(401, 500, "E"),
        ]
        assert len(connected_components(list(reversed(features)))) == 1

    def test_gene_ids_ordered_by_position(self):
        """Gene IDs follow genomic order."""
        fs = assign_gene_ids([_f(1000, 1100, "E"), _f(1, 100, "E")])
        assert [(f.start, f.gene_id) for f in fs] == [(1, 1), (1000, 2)]

    def test_gene_ids_start_before_strand(self):
        """Leftmost start decides before strand, strand before rightmost end."""
        fs = assign_gene_ids(
            [
                _f(10, 300, "E", "+"),
                _f(1, 50, "E", "-"),
                _f(1000, 1100, "E", "-"),
                _f(1000, 1050, "E", "+"),
            ]
        )
        genes = sorted((f.gene_id, f.strand, f.start) for f in fs)
        assert genes == [(1, "-", 1), (2, "+", 10), (3, "+", 1000), (4, "-", 1000)]


# =============================================================================
# Merge Tests
# =============================================================================


class TestMergeFeatures:
    """Tests for merge_features."""

    def test_names_unioned(self):
        """Identical features merge their transcript names."""
        merged = merge_features([_f(1, 100, "F", names=["tx1"])], [_f(1, 100, "F", names=["tx2"])])
        assert len(merged) == 1
        assert merged[0].transcript_names == frozenset({"tx1", "tx2"})

    def test_types_kept_apart(self):
        """Same coordinates with different types stay separate."""
        merged = merge_features([_f(1, 100, "F")], [_f(1, 100, "I")])
        assert len(merged) == 2

    def test_exon_bin_flags_combined(self):
        """Exon bin spliced flags are ORed."""
        a = Feature("chr1", 1, 100, "+", FeatureType.E, spliced5p=True)
        b = Feature("chr1", 1, 100, "+", FeatureType.E, spliced3p=True)
        (merged,) = merge_features([a], [b])
        assert merged.spliced5p and merged.spliced3p

    def test_order_independent(self, two_acceptor_features, skipped_exon_features, linear_features):
        """Merging is associative and commutative."""
        a, b, c = two_acceptor_features, skipped_exon_features, linear_features
        left = merge_features(merge_features(a, b), c)
        right = merge_features(a, merge_features(c, b))
        assert left == right
        assert merge_features(a, b, c) == left

    def test_ids_reassigned(self):
        """Stale IDs from the inputs are discarded."""
        stale = _f(1, 100, "E").evolve(feature_id=42, gene_id=7)
        (merged,) = merge_features([stale])
        assert merged.feature_id is None
        assert merged.gene_id == 1


# =============================================================================
# Terminal-Exon Processing Tests
# =============================================================================


class TestProcessTerminalExons:
    """Tests for process_terminal_exons."""

    def _locus(self):
        return merge_features(
            [
                _f(1, 100, "F", names=["tx1"]),
                _f(101, 200, "J", names=["tx1"]),
                _f(201, 300, "I", names=["tx1"]),
                _f(301, 400, "J", names=["tx1"]),
                _f(401, 500, "L", names=["tx1"]),
                # Provisional last exon running 10 bp past the donor at 300
                _f(201, 310, "L", names=["tx2"]),
            ]
        )

    def test_disabled(self):
        """None leaves features untouched."""
        features = self._locus()
        assert process_terminal_exons(features, None) == features

    def test_trim_and_drop(self):
        """A short overhang is trimmed, then absorbed by the internal exon."""
        processed = process_terminal_exons(self._locus(), min_overhang=20)
        exons = {(f.type, f.start, f.end) for f in processed if f.is_exon}
        assert (FeatureType.L, 201, 310) not in exons
        assert (FeatureType.L, 201, 300) not in exons
        internal = next(f for f in processed if f.type == FeatureType.I)
        assert internal.transcript_names == frozenset({"tx1", "tx2"})

    def test_long_overhang_kept(self):
        """Overhangs at or above the threshold are kept."""
        processed = process_terminal_exons(self._locus(), min_overhang=5)
        exons = {(f.type, f.start, f.end) for f in processed if f.is_exon}
        assert (FeatureType.L, 201, 310) in exons

    def test_collapse_same_boundary(self):
        """Terminal exons sharing a spliced boundary keep the longest."""
        features = merge_features(
            [
                _f(10, 100, "F", names=["tx1"]),
                _f(50, 100, "F", names=["tx2"]),
                _f(101, 200, "J"),
                _f(201, 300, "L"),
            ]
        )
        processed = process_terminal_exons(features, min_overhang=0)
        firsts = [f for f in processed if f.type == FeatureType.F]
        assert len(firsts) == 1
        assert (firsts[0].start, firsts[0].end) == (10, 100)
        assert firsts[0].transcript_names == frozenset({"tx1", "tx2"})

    def test_idempotent(self):
        """Processing twice equals processing once."""
        once = process_terminal_exons(self._locus(), min_overhang=20)
        assert process_terminal_exons(once, min_overhang=20) == once

    def test_merge_and_process(self, two_acceptor_features):
        """Merge-then-process returns gene IDs for every feature."""
        result = merge_and_process([two_acceptor_features], min_overhang=10)
        assert isinstance(result, FeatureSet)
        assert all(f.gene_id == 1 for f in result)
