"""Tests for the append-only audit log."""

from datetime import datetime, timedelta
from pathlib import Path
from tempfile import TemporaryDirectory

from metrics_core.audit import AuditLog, BuildRecord
from metrics_core.config import DataPaths
from metrics_core.parameters import ParameterStore
from metrics_core.pipeline import run_build
from metrics_core.qa import BuildStatus
from metrics_core.store import MetricsStore


def _record(build_id: str, period: str, started_at: datetime) -> BuildRecord:
    return BuildRecord(
        build_id=build_id,
        period=period,
        status=BuildStatus.PASSED,
        parameter_revision=1,
        started_at=started_at,
        finished_at=started_at + timedelta(seconds=2),
        fingerprint="abc",
        stage_outcomes={"fact_revenue": "succeeded"},
        published=True,
    )


class TestAuditLog:
    """Recording and querying."""

    def test_build_queries_filter_by_period_and_time(self) -> None:
        log = AuditLog()
        t0 = datetime(2025, 4, 1, 8, 0)
        log.record_build(_record("b1", "2025-02", t0))
        log.record_build(_record("b2", "2025-03", t0 + timedelta(hours=1)))
        log.record_build(_record("b3", "2025-03", t0 + timedelta(hours=2)))

        assert [b.build_id for b in log.builds(period="2025-03")] == ["b2", "b3"]
        assert [b.build_id for b in log.builds(since=t0 + timedelta(minutes=30))] == ["b2", "b3"]
        assert [b.build_id for b in log.builds(until=t0)] == ["b1"]
        assert log.builds(build_id="b2")[0].duration_seconds == 2.0

    def test_every_build_is_audited(self, raw_events: dict, parameter_store: ParameterStore) -> None:
        log = AuditLog()
        result = run_build(raw_events, MetricsStore(), "2025-03", parameter_store, audit=log)

        assert log.builds() == [result.record]
        assert len(log.results(build_id=result.build_id)) == len(result.report.results)
        recon = log.results(check_name="revenue_reconciliation")
        assert len(recon) == 1 and recon[0].passed

    def test_jsonl_round_trip(self, raw_events: dict, parameter_store: ParameterStore) -> None:
        with TemporaryDirectory() as tmpdir:
            paths = DataPaths.from_root(Path(tmpdir))
            log = AuditLog(paths)
            result = run_build(raw_events, MetricsStore(), "2025-03", parameter_store, audit=log)

            assert log.builds_path.exists()
            restored = AuditLog.load(paths)

            assert restored.builds() == [result.record]
            assert restored.results() == log.results()

    def test_record_round_trips_through_dict(self) -> None:
        record = _record("b1", "2025-03", datetime(2025, 4, 1, 8, 0))
        assert BuildRecord.from_dict(record.to_dict()) == record
        assert record.failed_stages == []
