"""Per-build context handed to every stage."""

from __future__ import annotations

from dataclasses import dataclass

import pandas as pd

from metrics_core.config import PipelineConfig
from metrics_core.parameters import ParameterSnapshot


@dataclass(frozen=True)
class BuildContext:
    """Immutable inputs shared by all stages of one build.

    Attributes:
        build_id: Unique build identifier.
        period: Reporting period (YYYY-MM).
        cutoff: Last instant of the period; later events are excluded.
        parameters: The single parameter snapshot of the build.
        prior_cohort_sizes: mart_cohort_sizes of an earlier published build,
            or None.
        config: Pipeline settings.
    """

    build_id: str
    period: str
    cutoff: pd.Timestamp
    parameters: ParameterSnapshot
    prior_cohort_sizes: pd.DataFrame | None
    config: PipelineConfig
