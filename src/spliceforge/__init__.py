"""SpliceForge: splice graphs and alternative splicing analysis from RNA-seq.

SpliceForge predicts transcript features from RNA-seq alignments (or
imports them from an annotation), builds per-locus splice graphs,
decomposes the graphs into splice events and variants, and counts
compatible fragments for features and variants.

Example:
    >>> import spliceforge
    >>> spliceforge.__version__
    '0.1.0'

Modules:
    io: Input/output handlers for BAM, GFF3, BED and sample tables
    core: Feature model, prediction, merging, graphs, events, counting
    parallel: Local parallel execution
    utils: General utilities
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
]
