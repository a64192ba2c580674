"""Unified configuration for Metrics Core.

This module provides the filesystem layout (DataPaths) and the tunable
settings of a derivation run (PipelineConfig), plus reporting-period helpers
shared by every layer.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from metrics_core.exceptions import ConfigError

PERIOD_RE = re.compile(r"^\d{4}-\d{2}$")


@dataclass
class DataPaths:
    """All filesystem paths used by the metrics store and audit log.

    Attributes:
        data_root: Root directory for persisted builds.

    Directory Structure:
        data_root/
        ├── parameters.json      # Versioned parameter history
        ├── published/           # Last-known-good table sets
        │   └── <period>/
        │       ├── _current.json
        │       └── <build_id>/  # One CSV per fact/mart table
        └── audit/               # Append-only JSON lines
            ├── builds.jsonl
            └── validation_results.jsonl
    """

    data_root: Path

    @classmethod
    def from_root(cls, data_root: str | Path) -> DataPaths:
        """Create DataPaths from a root directory.

        Examples:
            >>> paths = DataPaths.from_root("data")
            >>> paths.published
            PosixPath('data/published')

        """
        if isinstance(data_root, str):
            data_root = Path(data_root)
        return cls(data_root=data_root)

    @property
    def parameters_json(self) -> Path:
        """Versioned parameter history file."""
        return self.data_root / "parameters.json"

    @property
    def published(self) -> Path:
        """Published (validated) table sets, one directory per period."""
        return self.data_root / "published"

    @property
    def audit(self) -> Path:
        """Audit trail of builds and validation results."""
        return self.data_root / "audit"

    def published_period(self, period: str) -> Path:
        return self.published / period

    def ensure_dirs(self) -> None:
        """Create all directories in the data structure."""
        for path in [self.data_root, self.published, self.audit]:
            path.mkdir(parents=True, exist_ok=True)


@dataclass
class PipelineConfig:
    """Settings for one derivation run.

    Attributes:
        reconciliation_tolerance: Allowed absolute difference, after rounding
            to cents, between independently derived money totals.
        attribution_tolerance: Allowed difference between weighted channel
            attribution and the unweighted total (weights are floats).
        max_offending_rows: Cap on offending keys stored per ValidationResult.
        lock_timeout_seconds: How long a build waits for the period lock.
        forecast_metrics: Monthly metrics that get a run-rate forecast.
    """

    reconciliation_tolerance: float = 0.0
    attribution_tolerance: float = 0.01
    max_offending_rows: int = 50
    lock_timeout_seconds: float = 30.0
    forecast_metrics: list[str] = field(default_factory=lambda: ["net_revenue", "mrr"])

    def validate(self) -> PipelineConfig:
        """Check value ranges, returning self so calls can be chained.

        Raises:
            ConfigError: If a setting is out of range.
        """
        if self.reconciliation_tolerance < 0:
            raise ConfigError("reconciliation_tolerance must be >= 0")
        if self.attribution_tolerance < 0:
            raise ConfigError("attribution_tolerance must be >= 0")
        if self.max_offending_rows < 1:
            raise ConfigError("max_offending_rows must be >= 1")
        if self.lock_timeout_seconds <= 0:
            raise ConfigError("lock_timeout_seconds must be > 0")
        unknown = set(self.forecast_metrics) - {"net_revenue", "mrr"}
        if unknown:
            raise ConfigError(f"Unsupported forecast metrics: {sorted(unknown)}")
        return self


def parse_period(period: str) -> pd.Period:
    """Parse a reporting period in YYYY-MM format.

    Raises:
        ConfigError: If the string is not a valid month.

    Examples:
        >>> parse_period("2025-03")
        Period('2025-03', 'M')

    """
    if not isinstance(period, str) or not PERIOD_RE.match(period):
        raise ConfigError(f"Invalid period {period!r}; expected YYYY-MM")
    try:
        return pd.Period(period, freq="M")
    except ValueError as e:
        raise ConfigError(f"Invalid period {period!r}: {e}") from e


def period_cutoff(period: str) -> pd.Timestamp:
    """Return the last instant of a reporting period (inclusive cutoff)."""
    return parse_period(period).end_time
