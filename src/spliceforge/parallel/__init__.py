"""Parallelization utilities for SpliceForge.

Per-sample prediction, per-sample counting and per-locus event
decomposition are independent map steps run by ``ParallelExecutor``.

Example:
    >>> from spliceforge.parallel import ParallelExecutor
    >>> executor = ParallelExecutor(n_workers=4, backend="processes")
    >>> results, stats = executor.map_items(func, items)
"""

from spliceforge.parallel.executor import (
    ExecutionStats,
    ExecutorBackend,
    ParallelExecutor,
    TaskResult,
)

__all__ = [
    "ExecutionStats",
    "ExecutorBackend",
    "ParallelExecutor",
    "TaskResult",
]
