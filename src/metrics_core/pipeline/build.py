"""Build runner.

``run_build`` executes one build of one reporting period end to end:

1. take the period lock (builds of the same period never interleave)
2. take one parameter snapshot for the whole build
3. run every stage in topological order; a stage that fails with
   SchemaError or MissingParameterError is marked failed and its dependents
   skipped, while independent stages keep running
4. validate the produced tables
5. publish atomically if validation passed or soft-failed and no stage
   failed; otherwise the last-known-good build stays live
6. record the build and its validation results in the audit log
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping

import pandas as pd

from metrics_core.audit import STAGE_FAILED, STAGE_SKIPPED, STAGE_SUCCEEDED, AuditLog, BuildRecord
from metrics_core.config import PipelineConfig, parse_period, period_cutoff
from metrics_core.exceptions import MissingParameterError, SchemaError
from metrics_core.parameters import ParameterStore
from metrics_core.pipeline.context import BuildContext
from metrics_core.pipeline.graph import FACTS, MARTS, StageGraph
from metrics_core.pipeline.stages import DEFAULT_GRAPH
from metrics_core.qa.engine import BuildStatus, ValidationEngine, ValidationReport
from metrics_core.store import MetricsStore
from metrics_core.utils import fingerprint_tables, format_duration

logger = logging.getLogger(__name__)


@dataclass
class BuildResult:
    """Everything a build produced.

    Attributes:
        record: The audited BuildRecord.
        report: Validation report.
        tables: Every table the build produced, staging included.
        published: Table names that went live (empty if not published).
    """

    record: BuildRecord
    report: ValidationReport
    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    published: list[str] = field(default_factory=list)

    @property
    def build_id(self) -> str:
        return self.record.build_id

    @property
    def status(self) -> BuildStatus:
        return self.record.status

    @property
    def fingerprint(self) -> str:
        return self.record.fingerprint


def new_build_id(period: str) -> str:
    return f"{period}-{uuid.uuid4().hex[:12]}"


def execute_stages(
    graph: StageGraph,
    ctx: BuildContext,
    raw: Mapping[str, pd.DataFrame],
) -> tuple[dict[str, pd.DataFrame], dict[str, str], dict[str, str]]:
    """Run every stage of a graph in order.

    Returns:
        (tables, outcomes, errors): produced tables, stage -> outcome, and
        stage -> error message for failed stages.
    """
    tables: dict[str, pd.DataFrame] = {}
    outcomes: dict[str, str] = {}
    errors: dict[str, str] = {}

    for name in graph.order():
        stage = graph.stages[name]
        blocked = [t for t in stage.inputs if t in graph.stages and outcomes.get(t) != STAGE_SUCCEEDED]
        if blocked:
            outcomes[name] = STAGE_SKIPPED
            logger.warning("Skipping %s: upstream %s not built", name, blocked)
            continue

        inputs = {t: tables[t] if t in graph.stages else raw.get(t) for t in stage.inputs}
        t0 = time.perf_counter()
        try:
            frame = stage.build(ctx, **inputs)
        except (SchemaError, MissingParameterError) as e:
            outcomes[name] = STAGE_FAILED
            errors[name] = str(e)
            logger.error("Stage %s failed: %s", name, e)
            continue
        tables[name] = frame
        outcomes[name] = STAGE_SUCCEEDED
        logger.debug("Stage %s: %d rows in %s", name, len(frame), format_duration(time.perf_counter() - t0))

    return tables, outcomes, errors


def run_build(
    raw: Mapping[str, pd.DataFrame],
    store: MetricsStore,
    period: str,
    parameters: ParameterStore,
    *,
    config: PipelineConfig | None = None,
    audit: AuditLog | None = None,
    graph: StageGraph | None = None,
    engine: ValidationEngine | None = None,
    prior_cohort_sizes: pd.DataFrame | None = None,
    build_id: str | None = None,
) -> BuildResult:
    """Build, validate and (if allowed) publish one reporting period.

    Args:
        raw: Raw source name -> raw event records. Missing sources are empty.
        store: Metrics store to publish into; also holds the period lock.
        period: Reporting period (YYYY-MM). Events after its last instant
            are excluded.
        parameters: Parameter store; one snapshot is taken per build.
        config: Pipeline settings.
        audit: Audit log receiving the BuildRecord and validation results.
        graph: Stage graph; defaults to DEFAULT_GRAPH.
        engine: Validation engine; defaults to the standard checks.
        prior_cohort_sizes: Fixed cohort sizes to reuse. Defaults to those
            of the store's live build for the period, or its latest build.
        build_id: Explicit build id; generated if omitted.

    Returns:
        BuildResult with the record, validation report and tables.

    Raises:
        ConfigError: If the period or config is invalid.
        BuildLockError: If another build of the period holds the lock past
            ``config.lock_timeout_seconds``.

    """
    config = (config or PipelineConfig()).validate()
    period = str(parse_period(period))
    cutoff = period_cutoff(period)
    graph = graph or DEFAULT_GRAPH
    engine = engine or ValidationEngine(config=config)
    build_id = build_id or new_build_id(period)

    unknown = sorted(set(raw) - set(graph.sources))
    if unknown:
        logger.warning("Ignoring unknown raw source(s) %s; expected %s", unknown, sorted(graph.sources))

    with store.period_lock(period, config.lock_timeout_seconds):
        status = BuildStatus.PENDING.advance(BuildStatus.RUNNING)
        started_at = datetime.now()
        t0 = time.perf_counter()
        logger.info("Build %s started for period %s", build_id, period)

        snapshot = parameters.snapshot()
        if prior_cohort_sizes is None:
            prior_cohort_sizes = store.fixed_cohort_sizes(period)
        ctx = BuildContext(
            build_id=build_id,
            period=period,
            cutoff=cutoff,
            parameters=snapshot,
            prior_cohort_sizes=prior_cohort_sizes,
            config=config,
        )

        tables, outcomes, errors = execute_stages(graph, ctx, raw)
        report = engine.run(build_id, tables)

        if errors:
            logger.error("Build %s has %d failed stage(s): %s", build_id, len(errors), sorted(errors))
            status = status.advance(BuildStatus.FAILED_HARD)
        else:
            status = status.advance(report.status)

        publishable = [n for n in graph.published_tables() if n in tables]
        fingerprinted = {n: tables[n] for n in publishable if graph.stages[n].layer in (FACTS, MARTS)}
        record = BuildRecord(
            build_id=build_id,
            period=period,
            status=status,
            parameter_revision=snapshot.revision,
            started_at=started_at,
            finished_at=datetime.now(),
            fingerprint=fingerprint_tables(fingerprinted),
            stage_outcomes=outcomes,
            stage_errors=errors,
            published=status.publishable,
        )

        if status.publishable:
            store.publish(record, {n: tables[n] for n in publishable})
        else:
            store.record_attempt(record)
            publishable = []

    if audit is not None:
        audit.record_results(report.results)
        audit.record_build(record)

    logger.info(
        "Build %s finished: %s in %s",
        build_id,
        status.value,
        format_duration(time.perf_counter() - t0),
    )
    return BuildResult(record=record, report=report, tables=tables, published=publishable)
