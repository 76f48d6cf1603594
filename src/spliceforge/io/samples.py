"""Sample sheets describing per-sample alignment files and library statistics.

Library statistics (paired-end status, read length, fragment length,
library size) are supplied by the user; SpliceForge does not estimate them.

Sample sheet format (tab-separated, header required):

    sample_name  file_bam          paired_end  read_length  frag_length  lib_size
    liver_1      bam/liver_1.bam   TRUE        101          280          31042133

Only ``sample_name`` and ``file_bam`` are required. Relative BAM paths are
resolved against the sheet's directory.

Example:
    >>> from spliceforge.io.samples import load_sample_info
    >>> samples = load_sample_info("samples.tsv")
    >>> samples[0].effective_length
    280.0
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Any

import attrs

from spliceforge.errors import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("sample_name", "file_bam")
OPTIONAL_COLUMNS = ("paired_end", "read_length", "frag_length", "lib_size")

_TRUE_VALUES = {"true", "t", "yes", "y", "1"}
_FALSE_VALUES = {"false", "f", "no", "n", "0", ""}


@attrs.frozen
class SampleInfo:
    """Alignment file and library statistics for one sample.

    Attributes:
        sample_name: Unique sample label (matrix column name).
        file_bam: Path to the indexed BAM file.
        paired_end: Whether reads are paired.
        read_length: Read length in bases.
        frag_length: Mean fragment length (paired-end only).
        lib_size: Number of fragments in the library.
    """

    sample_name: str
    file_bam: Path = attrs.field(converter=Path)
    paired_end: bool = False
    read_length: float | None = None
    frag_length: float | None = None
    lib_size: int | None = None

    @property
    def effective_length(self) -> float | None:
        """Fragment length for paired-end samples, read length otherwise."""
        if self.paired_end and self.frag_length:
            return float(self.frag_length)
        if self.read_length:
            return float(self.read_length)
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "sample_name": self.sample_name,
            "file_bam": str(self.file_bam),
            "paired_end": self.paired_end,
            "read_length": self.read_length,
            "frag_length": self.frag_length,
            "lib_size": self.lib_size,
        }


def _parse_bool(value: str, column: str, line_no: int) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"Line {line_no}: invalid {column} value {value!r}")


def _parse_number(value: str, column: str, line_no: int, cast: type) -> Any:
    value = value.strip()
    if value in ("", "NA", "."):
        return None
    try:
        number = cast(float(value)) if cast is int else cast(value)
    except ValueError as e:
        raise ConfigurationError(f"Line {line_no}: invalid {column} value {value!r}") from e
    if number <= 0:
        raise ConfigurationError(f"Line {line_no}: {column} must be positive, got {value}")
    return number


def load_sample_info(path: Path | str) -> list[SampleInfo]:
    """Read a tab-separated sample sheet.

    Args:
        path: Sample sheet path.

    Returns:
        Samples in file order.

    Raises:
        ConfigurationError: On missing columns, bad values or duplicate names.
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Sample sheet not found: {path}")

    samples: list[SampleInfo] = []
    seen: set[str] = set()

    with open(path, newline="") as f:
        reader = csv.DictReader(
            (line for line in f if line.strip() and not line.startswith("#")),
            delimiter="\t",
        )
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ConfigurationError(
                f"Sample sheet {path.name} is missing column(s): {', '.join(missing)}"
            )

        for line_no, row in enumerate(reader, start=2):
            name = (row.get("sample_name") or "").strip()
            if not name:
                raise ConfigurationError(f"Line {line_no}: empty sample_name")
            if name in seen:
                raise ConfigurationError(f"Line {line_no}: duplicate sample_name {name!r}")
            seen.add(name)

            bam = Path((row.get("file_bam") or "").strip())
            if not bam.is_absolute():
                bam = path.parent / bam

            samples.append(
                SampleInfo(
                    sample_name=name,
                    file_bam=bam,
                    paired_end=_parse_bool(row.get("paired_end") or "", "paired_end", line_no),
                    read_length=_parse_number(row.get("read_length") or "", "read_length", line_no, float),
                    frag_length=_parse_number(row.get("frag_length") or "", "frag_length", line_no, float),
                    lib_size=_parse_number(row.get("lib_size") or "", "lib_size", line_no, int),
                )
            )

    logger.info(f"Loaded {len(samples)} samples from {path.name}")
    return samples
