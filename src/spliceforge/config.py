"""Configuration management for SpliceForge.

Settings are grouped per pipeline stage. Configuration can come from:
- Default values
- A YAML configuration file
- Command-line arguments (applied by the CLI on top of the file)

Every run validates its configuration before any per-sample work starts;
invalid thresholds or option combinations raise ``ConfigurationError``.

Example:
    >>> from spliceforge.config import Config
    >>> config = Config.load("spliceforge.yaml")
    >>> config.prediction.min_junction_count
    3
    >>> config.validate()
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import attrs
import yaml

from spliceforge.errors import ConfigurationError
from spliceforge.io.bam import STRANDNESS

# =============================================================================
# Default Configuration Values
# =============================================================================

# Prediction defaults
DEFAULT_MIN_JUNCTION_COUNT = 3
DEFAULT_MIN_ANCHOR = 1
DEFAULT_MIN_MAPQ = 0
DEFAULT_MIN_COVERAGE = 1

# Event decomposition defaults
DEFAULT_MAX_VARIANTS = 20

# Parallel processing defaults
DEFAULT_MAX_WORKERS = 1
DEFAULT_BACKEND = "processes"

BACKENDS = ("serial", "threads", "processes")


# =============================================================================
# Configuration Classes
# =============================================================================


@attrs.define
class PredictionConfig:
    """Thresholds for per-sample feature prediction.

    Attributes:
        min_junction_count: Minimum fragments supporting a junction.
        min_anchor: Minimum aligned bases on each side of a junction.
        min_mapq: Minimum mapping quality of reads used.
        min_coverage: Minimum depth for a base to count as covered.
        require_strand_tag: Discard spliced reads without an XS tag.
        strandness: Library type ("unstranded", "forward", "reverse").
        min_junction_fpkm: Optional FPKM floor for junctions.
    """

    min_junction_count: int = DEFAULT_MIN_JUNCTION_COUNT
    min_anchor: int = DEFAULT_MIN_ANCHOR
    min_mapq: int = DEFAULT_MIN_MAPQ
    min_coverage: int = DEFAULT_MIN_COVERAGE
    require_strand_tag: bool = True
    strandness: str = "unstranded"
    min_junction_fpkm: float | None = None

    def validate(self) -> None:
        """Raise ConfigurationError for invalid settings."""
        if self.min_junction_count < 1:
            raise ConfigurationError(
                f"min_junction_count must be >= 1, got {self.min_junction_count}"
            )
        if self.min_anchor < 1:
            raise ConfigurationError(f"min_anchor must be >= 1, got {self.min_anchor}")
        if self.min_mapq < 0:
            raise ConfigurationError(f"min_mapq must be >= 0, got {self.min_mapq}")
        if self.min_coverage < 1:
            raise ConfigurationError(f"min_coverage must be >= 1, got {self.min_coverage}")
        if self.strandness not in STRANDNESS:
            raise ConfigurationError(
                f"strandness must be one of {STRANDNESS}, got {self.strandness!r}"
            )
        if self.min_junction_fpkm is not None and self.min_junction_fpkm < 0:
            raise ConfigurationError(
                f"min_junction_fpkm must be >= 0, got {self.min_junction_fpkm}"
            )


@attrs.define
class MergeConfig:
    """Settings for merging per-sample features.

    Attributes:
        min_overhang: Terminal-exon overhang threshold. None skips
            terminal-exon processing (for deferred, batched merging).
    """

    min_overhang: int | None = None

    def validate(self) -> None:
        """Raise ConfigurationError for invalid settings."""
        if self.min_overhang is not None and self.min_overhang < 0:
            raise ConfigurationError(f"min_overhang must be >= 0, got {self.min_overhang}")


@attrs.define
class EventConfig:
    """Settings for event/variant decomposition.

    Attributes:
        max_variants: Events with more variants are skipped and reported.
    """

    max_variants: int = DEFAULT_MAX_VARIANTS

    def validate(self) -> None:
        """Raise ConfigurationError for invalid settings."""
        if self.max_variants < 2:
            raise ConfigurationError(f"max_variants must be >= 2, got {self.max_variants}")


@attrs.define
class CountConfig:
    """Settings for compatible-read counting.

    Attributes:
        min_mapq: Minimum mapping quality of counted reads.
        strandness: Library type ("unstranded", "forward", "reverse").
    """

    min_mapq: int = DEFAULT_MIN_MAPQ
    strandness: str = "unstranded"

    def validate(self) -> None:
        """Raise ConfigurationError for invalid settings."""
        if self.min_mapq < 0:
            raise ConfigurationError(f"min_mapq must be >= 0, got {self.min_mapq}")
        if self.strandness not in STRANDNESS:
            raise ConfigurationError(
                f"strandness must be one of {STRANDNESS}, got {self.strandness!r}"
            )


@attrs.define
class ParallelConfig:
    """Configuration for parallel processing.

    Attributes:
        max_workers: Maximum number of parallel workers.
        backend: Execution backend ("serial", "threads", "processes").
    """

    max_workers: int = DEFAULT_MAX_WORKERS
    backend: str = DEFAULT_BACKEND

    def validate(self) -> None:
        """Raise ConfigurationError for invalid settings."""
        if self.max_workers < 1:
            raise ConfigurationError(f"max_workers must be >= 1, got {self.max_workers}")
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"backend must be one of {BACKENDS}, got {self.backend!r}"
            )


_SECTIONS = {
    "prediction": PredictionConfig,
    "merge": MergeConfig,
    "events": EventConfig,
    "counting": CountConfig,
    "parallel": ParallelConfig,
}


@attrs.define
class Config:
    """Main configuration container for SpliceForge.

    Attributes:
        prediction: Feature prediction thresholds.
        merge: Feature merging settings.
        events: Event decomposition settings.
        counting: Read counting settings.
        parallel: Parallel processing configuration.
    """

    prediction: PredictionConfig = attrs.Factory(PredictionConfig)
    merge: MergeConfig = attrs.Factory(MergeConfig)
    events: EventConfig = attrs.Factory(EventConfig)
    counting: CountConfig = attrs.Factory(CountConfig)
    parallel: ParallelConfig = attrs.Factory(ParallelConfig)

    def validate(self) -> Config:
        """Validate every section.

        Returns:
            self, to allow chaining.

        Raises:
            ConfigurationError: If any setting is invalid.
        """
        for name in _SECTIONS:
            getattr(self, name).validate()

        if self.prediction.strandness != self.counting.strandness:
            raise ConfigurationError(
                "prediction.strandness and counting.strandness must match "
                f"({self.prediction.strandness!r} != {self.counting.strandness!r})"
            )
        return self

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Build a configuration from nested dictionaries.

        Args:
            data: Mapping of section name to settings. Missing sections and
                keys take their defaults.

        Returns:
            Configuration object (not yet validated).

        Raises:
            ConfigurationError: On unknown sections or keys.
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Configuration must be a mapping of sections")

        unknown = set(data) - set(_SECTIONS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration section(s): {sorted(unknown)}")

        sections = {}
        for name, section_cls in _SECTIONS.items():
            values = data.get(name) or {}
            if not isinstance(values, dict):
                raise ConfigurationError(f"Section {name!r} must be a mapping")
            valid = {a.name for a in attrs.fields(section_cls)}
            bad = set(values) - valid
            if bad:
                raise ConfigurationError(f"Unknown key(s) in {name!r}: {sorted(bad)}")
            sections[name] = section_cls(**values)

        return cls(**sections)

    @classmethod
    def load(cls, path: Path | str | None = None) -> Config:
        """Load configuration from a YAML file.

        Args:
            path: Path to configuration file. If None, returns defaults.

        Returns:
            Loaded configuration object.

        Raises:
            ConfigurationError: If the file is missing or invalid.
        """
        if path is None:
            return cls()

        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        return cls.from_dict(data)

    def to_dict(self) -> dict[str, Any]:
        """Convert configuration to dictionary."""
        return attrs.asdict(self)

    def save(self, path: Path | str) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save configuration file.
        """
        with open(path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, sort_keys=False)
