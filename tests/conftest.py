"""Pytest configuration and shared fixtures for SpliceForge tests.

Fixtures are organized by category:

- Feature fixtures: transcript features for small synthetic loci
- Read fixtures: AlignedRead factories and read sets
- Sample fixtures: sample tables and fake BAM paths
"""

from pathlib import Path
from typing import Callable

import pytest

from spliceforge.core.features import Feature, FeatureType
from spliceforge.io.bam import AlignedRead
from spliceforge.io.samples import SampleInfo


# =============================================================================
# Feature Fixtures
# =============================================================================


@pytest.fixture
def two_acceptor_features() -> list[Feature]:
    """One donor splicing to two acceptors 200 bp apart (plus strand).

    tx1: F 1-100, J 101-200, L 201-500
    tx2: F 1-100, J 101-400, L 401-500
    """
    names1 = {"transcript_names": {"tx1"}, "gene_names": {"GENE1"}}
    names2 = {"transcript_names": {"tx2"}, "gene_names": {"GENE1"}}
    return [
        Feature("chr1", 1, 100, "+", FeatureType.F, **names1),
        Feature("chr1", 101, 200, "+", FeatureType.J, **names1),
        Feature("chr1", 201, 500, "+", FeatureType.L, **names1),
        Feature("chr1", 1, 100, "+", FeatureType.F, **names2),
        Feature("chr1", 101, 400, "+", FeatureType.J, **names2),
        Feature("chr1", 401, 500, "+", FeatureType.L, **names2),
    ]


@pytest.fixture
def minus_two_acceptor_features() -> list[Feature]:
    """The two-acceptor locus mirrored onto the minus strand.

    tx1: F 401-500, J 301-400, L 1-300
    tx2: F 401-500, J 101-400, L 1-100
    """
    return [
        Feature("chr1", 401, 500, "-", FeatureType.F, transcript_names={"tx1", "tx2"}),
        Feature("chr1", 301, 400, "-", FeatureType.J, transcript_names={"tx1"}),
        Feature("chr1", 1, 300, "-", FeatureType.L, transcript_names={"tx1"}),
        Feature("chr1", 101, 400, "-", FeatureType.J, transcript_names={"tx2"}),
        Feature("chr1", 1, 100, "-", FeatureType.L, transcript_names={"tx2"}),
    ]


@pytest.fixture
def nested_features() -> list[Feature]:
    """A cassette exon followed by an alternative acceptor (plus strand).

    tx1: F 1-100, J 101-200, I 201-300, J 301-400, L 401-600
    tx2: F 1-100, J 101-400, L 401-600
    tx3: F 1-100, J 101-200, I 201-300, J 301-500, L 501-600
    """
    return [
        Feature("chr1", 1, 100, "+", FeatureType.F, transcript_names={"tx1", "tx2", "tx3"}),
        Feature("chr1", 101, 200, "+", FeatureType.J, transcript_names={"tx1", "tx3"}),
        Feature("chr1", 201, 300, "+", FeatureType.I, transcript_names={"tx1", "tx3"}),
        Feature("chr1", 301, 400, "+", FeatureType.J, transcript_names={"tx1"}),
        Feature("chr1", 101, 400, "+", FeatureType.J, transcript_names={"tx2"}),
        Feature("chr1", 401, 600, "+", FeatureType.L, transcript_names={"tx1", "tx2"}),
        Feature("chr1", 301, 500, "+", FeatureType.J, transcript_names={"tx3"}),
        Feature("chr1", 501, 600, "+", FeatureType.L, transcript_names={"tx3"}),
    ]


@pytest.fixture
def skipped_exon_features() -> list[Feature]:
    """A cassette exon: inclusion (tx1) and skipping (tx2) on plus strand.

    tx1: F 1-100, J 101-200, I 201-300, J 301-400, L 401-500
    tx2: F 1-100, J 101-400, L 401-500
    """
    return [
        Feature("chr1", 1, 100, "+", FeatureType.F, transcript_names={"tx1", "tx2"}),
        Feature("chr1", 101, 200, "+", FeatureType.J, transcript_names={"tx1"}),
        Feature("chr1", 201, 300, "+", FeatureType.I, transcript_names={"tx1"}),
        Feature("chr1", 301, 400, "+", FeatureType.J, transcript_names={"tx1"}),
        Feature("chr1", 101, 400, "+", FeatureType.J, transcript_names={"tx2"}),
        Feature("chr1", 401, 500, "+", FeatureType.L, transcript_names={"tx1", "tx2"}),
    ]


@pytest.fixture
def linear_features() -> list[Feature]:
    """A single two-exon transcript without alternatives."""
    return [
        Feature("chr1", 1, 100, "+", FeatureType.F, transcript_names={"tx1"}),
        Feature("chr1", 101, 200, "+", FeatureType.J, transcript_names={"tx1"}),
        Feature("chr1", 201, 300, "+", FeatureType.L, transcript_names={"tx1"}),
    ]


# =============================================================================
# Read Fixtures
# =============================================================================


@pytest.fixture
def make_read() -> Callable[..., AlignedRead]:
    """Factory for AlignedRead objects with sensible defaults."""

    def _make(
        name: str,
        *blocks: tuple[int, int],
        seqid: str = "chr1",
        strand: str = "+",
        has_strand_tag: bool = True,
        mapping_quality: int = 60,
    ) -> AlignedRead:
        return AlignedRead(
            name=name,
            seqid=seqid,
            blocks=list(blocks),
            strand=strand,
            has_strand_tag=has_strand_tag,
            mapping_quality=mapping_quality,
        )

    return _make


@pytest.fixture
def two_acceptor_reads(make_read) -> list[AlignedRead]:
    """Five fragments for each acceptor plus five crossing the distal one.

    - p*: spliced to the proximal acceptor (J 101-200)
    - d*: spliced to the distal acceptor (J 101-400)
    - x*: unspliced across position 400/401 (inside tx1's last exon)
    """
    reads = []
    for i in range(5):
        reads.append(make_read(f"p{i}", (51, 100), (201, 250)))
        reads.append(make_read(f"d{i}", (51, 100), (401, 450)))
        reads.append(make_read(f"x{i}", (351, 450)))
    return reads


# =============================================================================
# Sample Fixtures
# =============================================================================


@pytest.fixture
def fake_bam(tmp_path: Path) -> Path:
    """An empty BAM path with an index file next to it."""
    bam_path = tmp_path / "sample1.bam"
    bam_path.touch()
    (tmp_path / "sample1.bam.bai").touch()
    return bam_path


@pytest.fixture
def sample(fake_bam: Path) -> SampleInfo:
    """A paired-end sample with library statistics."""
    return SampleInfo(
        sample_name="S1",
        file_bam=fake_bam,
        paired_end=True,
        read_length=100,
        frag_length=250,
        lib_size=1_000_000,
    )


@pytest.fixture
def sample_table(tmp_path: Path, fake_bam: Path) -> Path:
    """A two-sample TSV sample table."""
    other = tmp_path / "sample2.bam"
    other.touch()
    (tmp_path / "sample2.bam.bai").touch()

    path = tmp_path / "samples.tsv"
    path.write_text(
        "sample_name\tfile_bam\tpaired_end\tread_length\tfrag_length\tlib_size\n"
        f"S1\t{fake_bam.name}\tTRUE\t100\t250\t1000000\n"
        "S2\tsample2.bam\tFALSE\t75\t\t2000000\n"
    )
    return path
