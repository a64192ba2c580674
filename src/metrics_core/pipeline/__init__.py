"""Build pipeline: the stage DAG, its default wiring and the build runner."""

from metrics_core.pipeline.build import BuildResult, execute_stages, new_build_id, run_build
from metrics_core.pipeline.context import BuildContext
from metrics_core.pipeline.graph import LAYER_RANKS, Stage, StageGraph
from metrics_core.pipeline.stages import DEFAULT_GRAPH

__all__ = [
    "DEFAULT_GRAPH",
    "LAYER_RANKS",
    "BuildContext",
    "BuildResult",
    "Stage",
    "StageGraph",
    "execute_stages",
    "new_build_id",
    "run_build",
]
