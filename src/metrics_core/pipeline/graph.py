"""Stage graph: the build as a DAG of typed table-producing stages.

Each stage declares the tables it reads. The graph checks the declarations
once, up front:

- every input is produced by a stage or is a raw source
- there are no cycles
- no stage reads a table from a higher-ranked layer than its own

Layer ranks, leaves first::

    raw (0) -> staging / parameters (1) -> facts (2) -> marts (3)
            -> validation (4) -> query (5)

"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from graphlib import CycleError, TopologicalSorter
from typing import Callable, Iterable, Mapping

import pandas as pd

from metrics_core.exceptions import ConfigError

logger = logging.getLogger(__name__)

RAW = "raw"
STAGING = "staging"
PARAMETERS = "parameters"
FACTS = "facts"
MARTS = "marts"
VALIDATION = "validation"
QUERY = "query"

LAYER_RANKS: dict[str, int] = {
    RAW: 0,
    STAGING: 1,
    PARAMETERS: 1,
    FACTS: 2,
    MARTS: 3,
    VALIDATION: 4,
    QUERY: 5,
}

# Layers whose tables are published and fingerprinted.
PUBLISHED_LAYERS = (PARAMETERS, FACTS, MARTS)


@dataclass(frozen=True)
class Stage:
    """One table-producing step.

    Attributes:
        name: Output table name.
        layer: Layer the output belongs to (a key of LAYER_RANKS).
        inputs: Tables passed to ``build`` as keyword arguments.
        build: ``build(ctx, **inputs) -> DataFrame``.
    """

    name: str
    layer: str
    inputs: tuple[str, ...]
    build: Callable[..., pd.DataFrame]

    def __repr__(self) -> str:
        return f"<Stage {self.name} [{self.layer}] <- {list(self.inputs)}>"


class StageGraph:
    """Validated DAG of stages.

    Args:
        stages: Stages to wire; names must be unique.
        sources: External table name -> layer (raw sources).

    Raises:
        ConfigError: If a layer is unknown, an input is undeclared, the
            layer-rank rule is broken or the graph has a cycle.
    """

    def __init__(self, stages: Iterable[Stage], sources: Mapping[str, str] | None = None) -> None:
        self.stages: dict[str, Stage] = {}
        for stage in stages:
            if stage.name in self.stages:
                raise ConfigError(f"Duplicate stage '{stage.name}'")
            self.stages[stage.name] = stage
        self.sources: dict[str, str] = dict(sources or {})
        self._order = self._validate()

    def layer_of(self, table: str) -> str:
        if table in self.stages:
            return self.stages[table].layer
        if table in self.sources:
            return self.sources[table]
        raise ConfigError(f"Unknown table '{table}'")

    def _validate(self) -> list[str]:
        for stage in self.stages.values():
            if stage.layer not in LAYER_RANKS:
                raise ConfigError(f"Stage '{stage.name}' has unknown layer '{stage.layer}'")
            rank = LAYER_RANKS[stage.layer]
            for table in stage.inputs:
                if table not in self.stages and table not in self.sources:
                    raise ConfigError(f"Stage '{stage.name}' reads undeclared table '{table}'")
                input_layer = self.layer_of(table)
                if LAYER_RANKS[input_layer] > rank:
                    raise ConfigError(
                        f"Stage '{stage.name}' ({stage.layer}) cannot read '{table}' "
                        f"from higher layer '{input_layer}'"
                    )

        sorter: TopologicalSorter = TopologicalSorter()
        for stage in self.stages.values():
            sorter.add(stage.name, *[t for t in stage.inputs if t in self.stages])
        try:
            sorter.prepare()
        except CycleError as e:
            raise ConfigError(f"Stage graph has a cycle: {e.args[1]}") from e

        order: list[str] = []
        while sorter.is_active():
            ready = sorted(sorter.get_ready())
            order.extend(ready)
            sorter.done(*ready)
        return order

    def order(self) -> list[str]:
        """Stage names in deterministic topological order (ties by name)."""
        return list(self._order)

    def dependents(self, name: str) -> set[str]:
        """Every stage that transitively reads ``name``."""
        found: set[str] = set()
        frontier = [name]
        while frontier:
            current = frontier.pop()
            for stage in self.stages.values():
                if current in stage.inputs and stage.name not in found:
                    found.add(stage.name)
                    frontier.append(stage.name)
        return found

    def published_tables(self) -> list[str]:
        return [n for n in self._order if self.stages[n].layer in PUBLISHED_LAYERS]

    def __len__(self) -> int:
        return len(self.stages)

    def __iter__(self):
        return (self.stages[name] for name in self._order)
