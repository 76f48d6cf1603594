"""Logging configuration for SpliceForge.

Library modules only call ``logging.getLogger(__name__)``; handlers are
attached once, by the CLI or by an embedding program, through
``setup_logging``.

Features:
    - Rich console output
    - Optional debug log file
    - Verbosity levels mapped from -q/-v flags
    - Progress and timing helpers for per-sample and per-locus loops

Example:
    >>> import logging
    >>> from spliceforge.utils.logging import setup_logging
    >>> setup_logging(verbosity=2)
    >>> logger = logging.getLogger("spliceforge.core.graph")
    >>> logger.info("Building splice graph")
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any

from rich.logging import RichHandler

# =============================================================================
# Constants
# =============================================================================

ROOT_LOGGER = "spliceforge"

# File log format
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Rich adds its own level and time columns
RICH_FORMAT = "%(message)s"

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,
    2: logging.DEBUG,
}


# =============================================================================
# Setup Functions
# =============================================================================


def setup_logging(
    verbosity: int = 1,
    log_file: Path | str | None = None,
    use_rich: bool = True,
) -> logging.Logger:
    """Configure the ``spliceforge`` logger hierarchy.

    Calling this again replaces previously installed handlers.

    Args:
        verbosity: Verbosity level (0=warning, 1=info, 2=debug).
        log_file: Optional file that receives all debug output.
        use_rich: Use rich for console output.

    Returns:
        The configured package logger.
    """
    level = VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)
    if verbosity < 0:
        level = logging.ERROR

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(min(level, logging.DEBUG) if log_file else level)
    logger.handlers.clear()
    logger.propagate = False

    if use_rich:
        console_handler: logging.Handler = RichHandler(
            rich_tracebacks=True,
            show_time=False,
            show_path=False,
        )
        console_handler.setFormatter(logging.Formatter(RICH_FORMAT))
    else:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))

    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_file is not None:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(DEFAULT_FORMAT))
        file_handler.setLevel(logging.DEBUG)
        logger.addHandler(file_handler)

    return logger


# =============================================================================
# Progress Logging
# =============================================================================


class ProgressLogger:
    """Periodic progress messages for loops over samples or loci.

    Example:
        >>> progress = ProgressLogger(logger, total=len(loci), description="Decomposing")
        >>> for locus in loci:
        ...     decompose(locus)
        ...     progress.update()
    """

    def __init__(
        self,
        logger: logging.Logger,
        total: int,
        interval: int = 100,
        description: str = "Processing",
    ) -> None:
        self.logger = logger
        self.total = total
        self.interval = max(1, interval)
        self.description = description
        self.count = 0

    def update(self, n: int = 1) -> None:
        """Advance the counter, logging every ``interval`` items."""
        previous = self.count
        self.count += n
        crossed = self.count // self.interval > previous // self.interval
        if crossed or self.count == self.total:
            pct = 100 * self.count / self.total if self.total > 0 else 100
            self.logger.debug(f"{self.description}: {self.count}/{self.total} ({pct:.1f}%)")


# =============================================================================
# Timing Utilities
# =============================================================================


class Timer:
    """Context manager for timing operations.

    Example:
        >>> with Timer("Splice graph", logger):
        ...     graph = build_splice_graph(features)
        # Logs: "Splice graph completed in 1.23s"
    """

    def __init__(self, description: str, logger: logging.Logger | None = None) -> None:
        self.description = description
        self.logger = logger or logging.getLogger(ROOT_LOGGER)
        self.start_time: float = 0
        self.elapsed: float = 0

    def __enter__(self) -> Timer:
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        self.elapsed = time.perf_counter() - self.start_time
        self.logger.info(f"{self.description} completed in {self.elapsed:.2f}s")
