"""Input/output handlers for SpliceForge.

- BAM: RNA-seq alignments (spliceforge.io.bam)
- Sample tables (spliceforge.io.samples)
- GFF3: transcript annotation import (spliceforge.io.gff)
- BED: splice graph feature export/import (spliceforge.io.bed)

Example:
    >>> from spliceforge.io.samples import load_sample_info
    >>> samples = load_sample_info("samples.tsv")
"""

from spliceforge.io.bam import AlignedRead, AlignmentReader
from spliceforge.io.samples import SampleInfo, load_sample_info

__all__: list[str] = [
    "AlignedRead",
    "AlignmentReader",
    "SampleInfo",
    "load_sample_info",
]
