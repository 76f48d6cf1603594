"""Tests for spliceforge.io.gff module.

Tests cover:
- Attribute and line parsing
- Transcript assembly and validation
- Conversion of transcripts into transcript features
- Region-restricted import
"""

from pathlib import Path

import pytest

from spliceforge.core.features import FeatureType
from spliceforge.core.graph import build_splice_graph
from spliceforge.errors import ResourceError
from spliceforge.io.gff import (
    TranscriptRecord,
    import_transcripts,
    parse_attributes,
    parse_line,
    read_transcripts,
    transcript_features,
)
from spliceforge.utils.regions import GenomicRegion

GFF_LINES = [
    "##gff-version 3",
    "chr1\ttest\tgene\t1\t500\t.\t+\t.\tID=gene1;Name=GENE1",
    "chr1\ttest\tmRNA\t1\t500\t.\t+\t.\tID=tx1;Parent=gene1",
    "chr1\ttest\texon\t1\t100\t.\t+\t.\tParent=tx1",
    "chr1\ttest\texon\t201\t500\t.\t+\t.\tParent=tx1",
    "chr1\ttest\tmRNA\t1\t500\t.\t+\t.\tID=tx2;Parent=gene1",
    "chr1\ttest\texon\t1\t100\t.\t+\t.\tParent=tx2",
    "chr1\ttest\texon\t401\t500\t.\t+\t.\tParent=tx2",
    "chr2\ttest\tgene\t1\t500\t.\t-\t.\tID=gene2",
    "chr2\ttest\tmRNA\t1\t500\t.\t-\t.\tID=tx3;Parent=gene2",
    "chr2\ttest\texon\t401\t500\t.\t-\t.\tParent=tx3",
    "chr2\ttest\texon\t201\t300\t.\t-\t.\tParent=tx3",
    "chr2\ttest\texon\t1\t100\t.\t-\t.\tParent=tx3",
    "chr2\ttest\ttranscript\t1000\t1200\t.\t+\t.\tID=tx4;Parent=gene3",
    "chr2\ttest\texon\t1000\t1200\t.\t+\t.\tParent=tx4",
    "chr2\ttest\tmRNA\t2000\t2300\t.\t+\t.\tID=tx5;Parent=gene3",
    "chr2\ttest\texon\t2000\t2150\t.\t+\t.\tParent=tx5",
    "chr2\ttest\texon\t2100\t2300\t.\t+\t.\tParent=tx5",
    "chr2\ttest\tmRNA\t3000\t3100\t.\t+\t.\tID=tx6;Parent=gene3",
    "chr2\ttest\texon\tbad",
]


@pytest.fixture
def gff_file(tmp_path: Path) -> Path:
    path = tmp_path / "annotation.gff3"
    path.write_text("\n".join(GFF_LINES) + "\n")
    return path


# =============================================================================
# Parsing Tests
# =============================================================================


class TestParsing:
    """Tests for attribute and line parsing."""

    def test_parse_attributes(self):
        """Key-value pairs are split and URL-decoded."""
        attrs = parse_attributes("ID=tx1;Name=a%3Bb;Parent=g1,g2;")
        assert attrs == {"ID": "tx1", "Name": "a;b", "Parent": "g1,g2"}

    def test_parse_attributes_empty(self):
        """A dot means no attributes."""
        assert parse_attributes(".") == {}

    def test_parse_line(self):
        """Columns are typed."""
        record = parse_line(GFF_LINES[3])
        assert record["type"] == "exon"
        assert (record["start"], record["end"]) == (1, 100)
        assert record["attributes"]["Parent"] == "tx1"

    def test_comment_and_malformed(self):
        """Comments, short lines and bad intervals give None."""
        assert parse_line("##gff-version 3") is None
        assert parse_line("chr1\ttest\texon\tbad") is None
        assert parse_line("chr1\tt\texon\t200\t100\t.\t+\t.\tParent=x") is None


# =============================================================================
# Transcript Tests
# =============================================================================


class TestReadTranscripts:
    """Tests for read_transcripts."""

    def test_valid_transcripts(self, gff_file: Path):
        """Invalid transcripts are skipped; exons are sorted."""
        transcripts = read_transcripts(gff_file)
        assert [tx.transcript_id for tx in transcripts] == ["tx1", "tx2", "tx3", "tx4"]
        tx3 = transcripts[2]
        assert tx3.exons == [(1, 100), (201, 300), (401, 500)]
        assert tx3.introns == [(101, 200), (301, 400)]

    def test_gene_names(self, gff_file: Path):
        """Name attribute is preferred, then the gene ID."""
        names = {tx.transcript_id: tx.gene_name for tx in read_transcripts(gff_file)}
        assert names["tx1"] == "GENE1"
        assert names["tx3"] == "gene2"
        assert names["tx4"] == "gene3"

    def test_missing_file(self, tmp_path: Path):
        """A missing file raises ResourceError."""
        with pytest.raises(ResourceError, match="not found"):
            read_transcripts(tmp_path / "none.gff3")


class TestTranscriptFeatures:
    """Tests for transcript_features."""

    def test_plus_strand(self):
        """Leftmost exon is first on plus."""
        tx = TranscriptRecord("tx", "g", "G", "chr1", "+", [(1, 100), (201, 300), (401, 500)])
        found = [(f.type, f.start, f.end) for f in transcript_features(tx)]
        assert found == [
            (FeatureType.F, 1, 100),
            (FeatureType.I, 201, 300),
            (FeatureType.L, 401, 500),
            (FeatureType.J, 101, 200),
            (FeatureType.J, 301, 400),
        ]

    def test_minus_strand(self):
        """Leftmost exon is last on minus."""
        tx = TranscriptRecord("tx", "g", "G", "chr1", "-", [(1, 100), (201, 300)])
        types = {(f.start, f.type) for f in transcript_features(tx)}
        assert (1, FeatureType.L) in types
        assert (201, FeatureType.F) in types

    def test_single_exon(self):
        """Single-exon transcripts are unspliced."""
        tx = TranscriptRecord("tx", "g", "G", "chr1", "+", [(1, 100)])
        (feature,) = transcript_features(tx)
        assert feature.type == FeatureType.U
        assert feature.transcript_names == frozenset({"tx"})
        assert feature.gene_names == frozenset({"G"})


# =============================================================================
# Import Tests
# =============================================================================


class TestImportTranscripts:
    """Tests for import_transcripts."""

    def test_merged_features(self, gff_file: Path):
        """Shared exons are merged with both transcript names."""
        features = import_transcripts(gff_file, region="chr1")
        assert len(features) == 5
        first = next(f for f in features if f.type == FeatureType.F)
        assert first.transcript_names == frozenset({"tx1", "tx2"})
        assert all(f.gene_id == 1 for f in features)

    def test_region_filter(self, gff_file: Path):
        """Only transcripts overlapping the region are imported."""
        features = import_transcripts(gff_file, region=GenomicRegion("chr2", 900, 1300))
        assert [f.type for f in features] == [FeatureType.U]

    def test_several_regions(self, gff_file: Path):
        """Transcripts overlapping any of several regions are imported."""
        features = import_transcripts(
            gff_file, region=["chr2:900-1300", GenomicRegion("chr2", 1, 50)]
        )
        assert len(features) == 6
        names = set().union(*(f.transcript_names for f in features))
        assert names == {"tx3", "tx4"}

    def test_graph_from_annotation(self, gff_file: Path, two_acceptor_features):
        """Annotation import feeds graph construction directly."""
        from_gff = build_splice_graph(import_transcripts(gff_file, region="chr1"))
        from_fixture = build_splice_graph(two_acceptor_features)
        assert [f.label for f in from_gff.features] == [f.label for f in from_fixture.features]
