"""Core splicing logic for SpliceForge.

This module contains the fundamental algorithms and data structures:

- Feature model (junctions, exons, exon bins, splice sites)
- Feature prediction from read evidence
- Feature merging and terminal-exon processing
- Splice graph construction
- Splice event and variant decomposition
- Compatible-read counting

Example:
    >>> from spliceforge.core.graph import build_splice_graph
    >>> from spliceforge.core.events import find_events
"""

from spliceforge.core.events import (
    EventSet,
    SpliceEvent,
    SpliceVariant,
    find_events,
)
from spliceforge.core.features import (
    Feature,
    FeatureSet,
    FeatureType,
    GenomicInterval,
)
from spliceforge.core.graph import (
    Locus,
    SpliceGraph,
    SpliceNode,
    build_splice_graph,
)
from spliceforge.core.merge import (
    merge_and_process,
    merge_features,
    process_terminal_exons,
)

__all__: list[str] = [
    # Feature model
    "Feature",
    "FeatureSet",
    "FeatureType",
    "GenomicInterval",
    # Merging
    "merge_and_process",
    "merge_features",
    "process_terminal_exons",
    # Splice graph
    "Locus",
    "SpliceGraph",
    "SpliceNode",
    "build_splice_graph",
    # Events
    "EventSet",
    "SpliceEvent",
    "SpliceVariant",
    "find_events",
]
