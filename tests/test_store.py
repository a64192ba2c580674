"""Tests for last-known-good serving in the metrics store."""

from pathlib import Path
from tempfile import TemporaryDirectory

import pandas as pd
import pytest

from metrics_core.config import DataPaths
from metrics_core.exceptions import TableNotFoundError, ValidationError
from metrics_core.parameters import ParameterStore
from metrics_core.pipeline import run_build
from metrics_core.qa import BuildStatus, RowCheck, Severity, ValidationEngine
from metrics_core.store import POINTER_FILE, MetricsStore


@pytest.fixture
def failing_engine() -> ValidationEngine:
    """An engine whose single HARD check always fails on the scenario."""
    return ValidationEngine(
        [RowCheck("impossible", "mart_revenue_monthly", "net_revenue > 1000000", severity=Severity.HARD)]
    )


class TestServing:
    """Reads and staleness."""

    def test_read_returns_copy_with_provenance(self, scenario_build) -> None:
        store, result = scenario_build
        answer = store.read("2025-03", "mart_revenue_monthly")

        assert answer.build_id == result.build_id
        assert answer.validation_status is BuildStatus.PASSED
        assert not answer.is_stale
        assert answer.frame["net_revenue"].tolist() == [180.0, 150.0, 70.0]

        answer.frame.loc[0, "net_revenue"] = -1.0
        assert store.read("2025-03", "mart_revenue_monthly").frame.loc[0, "net_revenue"] == 180.0

    def test_failed_build_keeps_previous_tables_live(
        self, scenario_build, raw_events: dict, parameter_store: ParameterStore, failing_engine
    ) -> None:
        store, good = scenario_build
        bad = run_build(raw_events, store, "2025-03", parameter_store, engine=failing_engine)

        assert bad.status is BuildStatus.FAILED_HARD
        answer = store.read("2025-03", "mart_revenue_monthly")
        assert answer.build_id == good.build_id
        assert answer.is_stale

        status = store.status("2025-03")
        assert status.served_build_id == good.build_id
        assert status.latest_attempt_id == bad.build_id
        assert status.latest_attempt_status is BuildStatus.FAILED_HARD

    def test_next_good_build_clears_staleness(
        self, scenario_build, raw_events: dict, parameter_store: ParameterStore, failing_engine
    ) -> None:
        store, _ = scenario_build
        run_build(raw_events, store, "2025-03", parameter_store, engine=failing_engine)
        latest = run_build(raw_events, store, "2025-03", parameter_store)

        answer = store.read("2025-03", "mart_revenue_monthly")
        assert answer.build_id == latest.build_id
        assert not answer.is_stale

    def test_soft_failure_is_published_and_flagged(self, raw_events: dict, parameter_store: ParameterStore) -> None:
        engine = ValidationEngine([RowCheck("tiny", "mart_revenue_monthly", "net_revenue < 100")])
        store = MetricsStore()
        result = run_build(raw_events, store, "2025-03", parameter_store, engine=engine)

        assert result.status is BuildStatus.FAILED_SOFT
        assert store.read("2025-03", "mart_revenue_monthly").validation_status is BuildStatus.FAILED_SOFT

    def test_unknown_period_or_table_raises(self, scenario_build) -> None:
        store, _ = scenario_build
        with pytest.raises(TableNotFoundError):
            store.read("2024-12", "mart_revenue_monthly")
        with pytest.raises(TableNotFoundError, match="stg_orders"):
            store.read("2025-03", "stg_orders")

    def test_status_of_never_built_period(self) -> None:
        status = MetricsStore().status("2025-01")
        assert status.served_build_id is None
        assert not status.is_stale

    def test_publish_refuses_hard_failure(self, scenario_build) -> None:
        store, result = scenario_build
        from dataclasses import replace

        with pytest.raises(ValidationError):
            store.publish(replace(result.record, status=BuildStatus.FAILED_HARD), {})


class TestPersistence:
    """Publishing to disk and restoring."""

    def test_load_restores_live_build(self, raw_events: dict, parameter_store: ParameterStore) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = DataPaths.from_root(Path(tmpdir))
            store = MetricsStore(paths)
            result = run_build(raw_events, store, "2025-03", parameter_store)

            assert (paths.published_period("2025-03") / POINTER_FILE).exists()
            restored = MetricsStore.load(paths)

            answer = restored.read("2025-03", "mart_revenue_monthly")
            assert answer.build_id == result.build_id
            assert answer.frame["month"].astype(str).tolist() == ["2025-01", "2025-02", "2025-03"]
            assert answer.frame["net_revenue"].tolist() == [180.0, 150.0, 70.0]

            fact = restored.read("2025-03", "fact_revenue").frame
            assert pd.api.types.is_datetime64_any_dtype(fact["revenue_date"])

    def test_load_of_empty_root(self) -> None:
        with TemporaryDirectory() as tmpdir:
            store = MetricsStore.load(DataPaths.from_root(tmpdir))
            assert store.periods() == []
            assert store.fixed_cohort_sizes() is None
