"""Local parallel execution of per-sample and per-locus work.

Per-sample prediction, per-sample counting and per-locus decomposition
are independent map steps. This module runs them serially, on a thread
pool, or on a process pool, isolating failures per task so the caller
can report them next to the successful results.

Features:
    - Multiple execution backends (serial, threads, processes)
    - Per-task error capture (partial-failure semantics)
    - Results returned in input order regardless of completion order
    - Progress callbacks

Example:
    >>> from spliceforge.parallel.executor import ParallelExecutor
    >>> executor = ParallelExecutor(n_workers=4, backend="processes")
    >>> results, stats = executor.map_items(count_sample, samples)
    >>> failed = [r.task_id for r in results if not r.success]
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import (
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from enum import Enum
from typing import Any, Callable, TypeVar

import attrs

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


# =============================================================================
# Enums
# =============================================================================


class ExecutorBackend(Enum):
    """Available execution backends."""

    SERIAL = "serial"
    THREADS = "threads"
    PROCESSES = "processes"


# =============================================================================
# Data Structures
# =============================================================================


@attrs.define(slots=True)
class TaskResult:
    """Result from one task.

    Attributes:
        task_id: Caller-visible task label.
        success: Whether the task returned normally.
        result: Return value on success.
        error: Error message on failure.
        error_type: Exception class name on failure.
        duration_seconds: Wall time of the task.
    """

    task_id: str
    success: bool
    result: Any | None = None
    error: str | None = None
    error_type: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "task_id": self.task_id,
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@attrs.define(slots=True)
class ExecutionStats:
    """Statistics from parallel execution."""

    total_tasks: int
    successful: int
    failed: int
    total_duration: float
    mean_task_duration: float
    max_task_duration: float

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "total_tasks": self.total_tasks,
            "successful": self.successful,
            "failed": self.failed,
            "total_duration": round(self.total_duration, 3),
            "mean_task_duration": round(self.mean_task_duration, 3),
            "max_task_duration": round(self.max_task_duration, 3),
        }


# =============================================================================
# Task Runner
# =============================================================================


def _run_task(func: Callable[[Any], Any], task_id: str, item: Any) -> TaskResult:
    """Run one task, capturing its outcome.

    Module-level so it can be sent to worker processes.
    """
    start_time = time.time()
    try:
        result = func(item)
    except Exception as e:
        return TaskResult(
            task_id=task_id,
            success=False,
            error=str(e),
            error_type=type(e).__name__,
            duration_seconds=time.time() - start_time,
        )
    return TaskResult(
        task_id=task_id,
        success=True,
        result=result,
        duration_seconds=time.time() - start_time,
    )


# =============================================================================
# Parallel Executor
# =============================================================================


class ParallelExecutor:
    """Map a function over independent items.

    With the processes backend, ``func`` must be a module-level function
    and items must be picklable.

    Example:
        >>> executor = ParallelExecutor(n_workers=4, backend="threads")
        >>> results, stats = executor.map_items(process, items)
        >>> print(f"Processed {stats.successful}/{stats.total_tasks} items")
    """

    def __init__(
        self,
        n_workers: int = 1,
        backend: ExecutorBackend | str = ExecutorBackend.PROCESSES,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ) -> None:
        """Initialize executor.

        Args:
            n_workers: Number of parallel workers (1 = serial).
            backend: Execution backend.
            progress_callback: Called with (completed, total, task_id).
        """
        self.n_workers = max(1, n_workers)
        self.backend = ExecutorBackend(backend) if isinstance(backend, str) else backend
        self.progress_callback = progress_callback

        if self.n_workers == 1:
            self.backend = ExecutorBackend.SERIAL

    def map_items(
        self,
        func: Callable[[T], R],
        items: list[T],
        desc: str = "Processing",
        continue_on_error: bool = True,
        task_ids: list[str] | None = None,
    ) -> tuple[list[TaskResult], ExecutionStats]:
        """Apply ``func`` to every item.

        Args:
            func: Function applied to each item.
            items: Items to process.
            desc: Description for log messages.
            continue_on_error: If False, the first failure raises RuntimeError.
            task_ids: Labels for the tasks (default ``item_000000`` ...).

        Returns:
            Tuple of (results in input order, execution stats).
        """
        items = list(items)
        if task_ids is None:
            task_ids = [f"item_{i:06d}" for i in range(len(items))]
        if len(task_ids) != len(items):
            raise ValueError("task_ids must match items in length")

        if not items:
            return [], ExecutionStats(0, 0, 0, 0.0, 0.0, 0.0)

        logger.debug(
            f"{desc}: {len(items)} tasks with {self.n_workers} workers "
            f"(backend={self.backend.value})"
        )
        start_time = time.time()

        if self.backend == ExecutorBackend.SERIAL:
            results = self._execute_serial(func, items, task_ids, continue_on_error)
        else:
            pool_cls = (
                ThreadPoolExecutor
                if self.backend == ExecutorBackend.THREADS
                else ProcessPoolExecutor
            )
            results = self._execute_pool(pool_cls, func, items, task_ids, continue_on_error)

        total_duration = time.time() - start_time
        successful = sum(1 for r in results if r.success)
        durations = [r.duration_seconds for r in results]

        stats = ExecutionStats(
            total_tasks=len(results),
            successful=successful,
            failed=len(results) - successful,
            total_duration=total_duration,
            mean_task_duration=sum(durations) / len(durations) if durations else 0.0,
            max_task_duration=max(durations) if durations else 0.0,
        )

        if stats.failed:
            logger.warning(f"{desc}: {stats.failed}/{stats.total_tasks} tasks failed")
        logger.debug(f"{desc}: completed in {total_duration:.1f}s")

        return results, stats

    def _execute_serial(
        self,
        func: Callable,
        items: list,
        task_ids: list[str],
        continue_on_error: bool,
    ) -> list[TaskResult]:
        results = []
        total = len(items)

        for i, (task_id, item) in enumerate(zip(task_ids, items)):
            task_result = _run_task(func, task_id, item)
            results.append(task_result)

            if not task_result.success and not continue_on_error:
                logger.error(f"Task {task_id} failed: {task_result.error}")
                raise RuntimeError(f"Task {task_id} failed: {task_result.error}")

            if self.progress_callback:
                self.progress_callback(i + 1, total, task_id)

        return results

    def _execute_pool(
        self,
        pool_cls: type,
        func: Callable,
        items: list,
        task_ids: list[str],
        continue_on_error: bool,
    ) -> list[TaskResult]:
        total = len(items)
        completed = 0
        slots: list[TaskResult | None] = [None] * total

        with pool_cls(max_workers=self.n_workers) as executor:
            futures: dict[Future, int] = {
                executor.submit(_run_task, func, task_id, item): i
                for i, (task_id, item) in enumerate(zip(task_ids, items))
            }

            for future in as_completed(futures):
                index = futures[future]
                completed += 1
                try:
                    task_result = future.result()
                except Exception as e:
                    # Worker crashed or result could not be unpickled
                    task_result = TaskResult(
                        task_id=task_ids[index],
                        success=False,
                        error=str(e),
                        error_type=type(e).__name__,
                    )
                slots[index] = task_result

                if self.progress_callback:
                    self.progress_callback(completed, total, task_result.task_id)

                if not task_result.success and not continue_on_error:
                    logger.error(f"Task {task_result.task_id} failed: {task_result.error}")
                    executor.shutdown(wait=False, cancel_futures=True)
                    raise RuntimeError(
                        f"Task {task_result.task_id} failed: {task_result.error}"
                    )

        return [r for r in slots if r is not None]
