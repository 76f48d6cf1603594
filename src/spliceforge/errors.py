"""Exception types shared across SpliceForge.

Three failure classes are raised; a fourth outcome, a sample or locus
without qualifying reads, is reported as an empty or missing-valued
result and never raised.

- InputValidationError: a locus whose features cannot form a valid splice
  graph (mixed or unknown strand, cycles, malformed coordinates). The
  locus is excluded and the error recorded; other loci continue.
- ResourceError: an alignment source that cannot be read (missing file,
  missing index, corrupt record). Raised for that sample only.
- ConfigurationError: an invalid threshold or option combination. Raised
  before any per-sample work begins.
"""

from __future__ import annotations


class SpliceForgeError(Exception):
    """Base class for all SpliceForge errors."""


class InputValidationError(SpliceForgeError, ValueError):
    """Malformed or strand-inconsistent feature input.

    Attributes:
        gene_id: Locus the error applies to, if known.
    """

    def __init__(self, message: str, gene_id: int | None = None) -> None:
        super().__init__(message)
        self.gene_id = gene_id


class ResourceError(SpliceForgeError, OSError):
    """Failure to read from an alignment source.

    Attributes:
        path: File that could not be read.
        sample_name: Sample the file belongs to, if known.
    """

    def __init__(
        self,
        message: str,
        path: str | None = None,
        sample_name: str | None = None,
    ) -> None:
        super().__init__(message)
        self.path = path
        self.sample_name = sample_name

    def __str__(self) -> str:
        message = self.args[0] if self.args else ""
        if self.sample_name:
            return f"[{self.sample_name}] {message}"
        return message


class ConfigurationError(SpliceForgeError, ValueError):
    """Invalid threshold or option combination."""
