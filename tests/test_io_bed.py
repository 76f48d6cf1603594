"""Tests for spliceforge.io.bed module."""

from pathlib import Path

import pytest

from spliceforge.core.events import find_events
from spliceforge.core.features import Feature, FeatureType
from spliceforge.core.graph import build_splice_graph
from spliceforge.errors import InputValidationError, ResourceError
from spliceforge.io.bed import (
    IntervalRecord,
    from_interval_records,
    read_bed,
    to_interval_records,
    write_bed,
)


def _round_trip(sg, tmp_path: Path):
    path = tmp_path / "graph.bed"
    write_bed(to_interval_records(sg.features), path)
    return build_splice_graph(from_interval_records(read_bed(path)))


def _event_nodes(sg):
    return [(e.from_node, e.to_node) for e in find_events(sg).events]


def _flags(features):
    return sorted(
        (
            f.feature_id,
            f.type.value,
            f.start,
            f.end,
            f.spliced5p,
            f.spliced3p,
            f.starts5p,
            f.ends3p,
        )
        for f in features
    )


class TestExport:
    """Tests for BED export."""

    def test_zero_based_coordinates(self):
        """Starts shift to 0-based; ends stay."""
        feature = Feature("chr1", 101, 200, "+", FeatureType.J, feature_id=3)
        (record,) = to_interval_records([feature])
        assert (record.start, record.end) == (100, 200)
        assert record.name == "J:3"
        assert record.score == 0

    def test_scores_capped(self):
        """Counts become scores in [0, 1000]."""
        features = [
            Feature("chr1", 1, 10, "+", FeatureType.E, feature_id=1),
            Feature("chr1", 11, 20, "+", FeatureType.E, feature_id=2),
            Feature("chr1", 21, 30, "+", FeatureType.E, feature_id=3),
        ]
        records = to_interval_records(features, counts={1: 12.6, 2: 5000, 3: float("nan")})
        assert [r.score for r in records] == [13, 1000, 0]

    def test_unknown_strand_as_dot(self):
        """Unknown strand is written as '.'."""
        record = IntervalRecord("chr1", 0, 10, "*", "E:1")
        assert record.to_line() == "chr1\t0\t10\tE:1\t0\t."

    def test_boundary_flags_in_names(self, two_acceptor_features):
        """Exon bins at transcript starts and ends carry S/E flags."""
        sg = build_splice_graph(two_acceptor_features)
        names = [r.name for r in to_interval_records(sg.features)]
        assert names == ["E:1:S", "D:2", "J:3", "J:4", "A:5", "E:6", "A:7", "E:8:E"]

    def test_write_bed(self, tmp_path: Path, two_acceptor_features):
        """One line per feature."""
        sg = build_splice_graph(two_acceptor_features)
        path = tmp_path / "graph.bed"
        n = write_bed(to_interval_records(sg.features), path)
        assert n == 8
        assert path.read_text().splitlines()[0] == "chr1\t0\t100\tE:1:S\t0\t+"


class TestImport:
    """Tests for BED import."""

    def test_round_trip(self, tmp_path: Path, two_acceptor_features):
        """Exported graph features come back with their spliced flags."""
        sg = build_splice_graph(two_acceptor_features)
        path = tmp_path / "graph.bed"
        write_bed(to_interval_records(sg.features), path)

        restored = from_interval_records(read_bed(path))

        assert _flags(restored) == _flags(sg.features)
        rebuilt = build_splice_graph(restored)
        assert _flags(rebuilt.features) == _flags(sg.features)

    def test_header_lines_skipped(self, tmp_path: Path):
        """Track, browser and comment lines are ignored."""
        path = tmp_path / "x.bed"
        path.write_text("track name=x\n# comment\nchr1\t0\t10\tE:1\t0\t.\n")
        (record,) = read_bed(path)
        assert record.strand == "*"

    def test_missing_file(self, tmp_path: Path):
        """Missing files raise ResourceError."""
        with pytest.raises(ResourceError):
            read_bed(tmp_path / "none.bed")

    def test_short_line(self, tmp_path: Path):
        """BED3 lines cannot encode features."""
        path = tmp_path / "x.bed"
        path.write_text("chr1\t0\t10\n")
        with pytest.raises(InputValidationError, match="6 BED columns"):
            read_bed(path)

    def test_unknown_type(self):
        """Names must start with a feature type code."""
        with pytest.raises(InputValidationError, match="Unknown feature type"):
            from_interval_records([IntervalRecord("chr1", 0, 10, "+", "exon_1")])

    def test_invalid_boundary_flags(self):
        """Boundary flags are only valid on exon bins."""
        with pytest.raises(InputValidationError, match="boundary flags"):
            from_interval_records([IntervalRecord("chr1", 100, 200, "+", "J:3:S")])
        with pytest.raises(InputValidationError, match="boundary flags"):
            from_interval_records([IntervalRecord("chr1", 0, 100, "+", "E:1:X")])


class TestGraphRoundTrip:
    """Events of a graph rebuilt from its own BED export."""

    def test_start_inside_exon(self, tmp_path: Path):
        """A transcript start inside a longer exon survives the round trip."""
        features = [
            Feature("chr1", 1, 300, "+", FeatureType.F, transcript_names={"tx1"}),
            Feature("chr1", 201, 300, "+", FeatureType.F, transcript_names={"tx2"}),
            Feature("chr1", 301, 400, "+", FeatureType.J, transcript_names={"tx1", "tx2"}),
            Feature("chr1", 401, 500, "+", FeatureType.L, transcript_names={"tx1", "tx2"}),
        ]
        sg = build_splice_graph(features)
        assert _event_nodes(sg) == [("R", "S:chr1:201:+")]

        rebuilt = _round_trip(sg, tmp_path)

        assert _event_nodes(rebuilt) == _event_nodes(sg)
        assert [n.name for n in rebuilt.nodes(1)] == [n.name for n in sg.nodes(1)]

    def test_end_inside_exon_minus(self, tmp_path: Path):
        """A transcript end inside a longer exon survives on minus strand."""
        features = [
            Feature("chr1", 1, 100, "-", FeatureType.L, transcript_names={"tx1"}),
            Feature("chr1", 51, 100, "-", FeatureType.L, transcript_names={"tx2"}),
            Feature("chr1", 101, 200, "-", FeatureType.J, transcript_names={"tx1", "tx2"}),
            Feature("chr1", 201, 300, "-", FeatureType.F, transcript_names={"tx1", "tx2"}),
        ]
        sg = build_splice_graph(features)
        assert len(_event_nodes(sg)) == 1

        rebuilt = _round_trip(sg, tmp_path)

        assert _event_nodes(rebuilt) == _event_nodes(sg)
        assert _flags(rebuilt.features) == _flags(sg.features)

    def test_two_acceptors(self, tmp_path: Path, two_acceptor_features):
        """Graphs without inner starts or ends are unchanged."""
        sg = build_splice_graph(two_acceptor_features)
        rebuilt = _round_trip(sg, tmp_path)
        assert _flags(rebuilt.features) == _flags(sg.features)
        assert _event_nodes(rebuilt) == _event_nodes(sg)
