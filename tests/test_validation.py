"""Tests for declarative checks and the validation engine."""

import pandas as pd
import pytest

from metrics_core.config import PipelineConfig
from metrics_core.exceptions import BoundsViolation, InvalidTransitionError, ReconciliationError
from metrics_core.qa import (
    TABLE_NOT_BUILT,
    BuildStatus,
    GrainCheck,
    NotNullCheck,
    ReconciliationCheck,
    RowCheck,
    Severity,
    Term,
    ValidationEngine,
    ValidationResult,
    default_checks,
)


@pytest.fixture
def monthly() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "month": ["2025-01", "2025-02", "2025-03"],
            "net_revenue": [180.0, -40.0, 70.0],
            "cac": [800.0, None, 1000.0],
        }
    )


class TestChecks:
    """Individual check types."""

    def test_row_check_reports_offending_keys(self, monthly: pd.DataFrame) -> None:
        check = RowCheck("non_negative", "mart_revenue_monthly", "net_revenue >= 0")
        outcome = check.evaluate({"mart_revenue_monthly": monthly})

        assert not outcome.passed
        assert outcome.offending["month"].tolist() == ["2025-02"]
        assert outcome.offending["net_revenue"].tolist() == [-40.0]

    def test_row_check_skips_null_rows(self, monthly: pd.DataFrame) -> None:
        check = RowCheck("cac_non_negative", "mart_marketing_monthly", "cac >= 0")
        outcome = check.evaluate({"mart_marketing_monthly": monthly})

        assert outcome.passed
        assert "1 null row(s) skipped" in outcome.message

    def test_not_null_check(self) -> None:
        frame = pd.DataFrame({"order_id": ["O1", None], "revenue_date": pd.to_datetime(["2025-01-01", "2025-01-02"])})
        outcome = NotNullCheck("nn", "fact_revenue", ("order_id", "revenue_date")).evaluate({"fact_revenue": frame})
        assert len(outcome.offending) == 1

    def test_grain_check_counts_duplicates(self) -> None:
        frame = pd.DataFrame({"customer_id": ["C1", "C1", "C2"], "value": [1, 2, 3]})
        outcome = GrainCheck("grain", "fact_customer_ltv", ("customer_id",)).evaluate({"fact_customer_ltv": frame})

        assert outcome.offending.to_dict("records") == [{"customer_id": "C1", "row_count": 2}]

    def test_reconciliation_buckets_each_side_by_its_own_date(self) -> None:
        fact = pd.DataFrame(
            {"net_revenue": [100.0, -30.0], "revenue_date": pd.to_datetime(["2025-01-10", "2025-03-03"])}
        )
        lines = pd.DataFrame({"line_amount": [100.0], "ordered_at": pd.to_datetime(["2025-01-10"])})
        refunds = pd.DataFrame({"amount": [30.0], "refunded_at": pd.to_datetime(["2025-03-03"])})
        check = ReconciliationCheck(
            "recon",
            left=(Term("fact", "net_revenue", "revenue_date"),),
            right=(Term("lines", "line_amount", "ordered_at"), Term("refunds", "amount", "refunded_at", -1)),
        )

        assert check.tables == ("fact", "lines", "refunds")
        assert check.evaluate({"fact": fact, "lines": lines, "refunds": refunds}).passed

    def test_reconciliation_can_date_child_rows_by_parent(self) -> None:
        fact = pd.DataFrame({"net_revenue": [50.0], "revenue_date": pd.to_datetime(["2025-01-31"])})
        orders = pd.DataFrame({"order_id": ["O2"], "ordered_at": pd.to_datetime(["2025-01-31 23:55"])})
        lines = pd.DataFrame(
            {
                "order_id": ["O2", "O404"],
                "line_amount": [50.0, 99.0],
                "ordered_at": pd.to_datetime(["2025-02-01 00:02", "2025-02-03"]),
            }
        )
        own_date = ReconciliationCheck(
            "recon",
            left=(Term("fact", "net_revenue", "revenue_date"),),
            right=(Term("lines", "line_amount", "ordered_at"),),
        )
        order_date = ReconciliationCheck(
            "recon",
            left=(Term("fact", "net_revenue", "revenue_date"),),
            right=(Term("lines", "line_amount", "ordered_at", dated_by=("orders", "order_id")),),
        )
        tables = {"fact": fact, "orders": orders, "lines": lines}

        assert not own_date.evaluate(tables).passed
        assert order_date.tables == ("fact", "lines", "orders")
        outcome = order_date.evaluate(tables)
        assert outcome.passed, f"Lines without an order are left out: {outcome.message}"

    def test_reconciliation_reports_months_beyond_tolerance(self) -> None:
        left = pd.DataFrame({"v": [100.0, 50.0], "d": pd.to_datetime(["2025-01-01", "2025-02-01"])})
        right = pd.DataFrame({"v": [100.004, 49.0], "d": pd.to_datetime(["2025-01-01", "2025-02-01"])})
        check = ReconciliationCheck(
            "recon", left=(Term("a", "v", "d"),), right=(Term("b", "v", "d"),), tolerance=0.5
        )
        outcome = check.evaluate({"a": left, "b": right})

        assert outcome.offending["period"].tolist() == ["2025-02"]
        assert outcome.offending["difference"].tolist() == [1.0]


class TestBuildStatus:
    """Status state machine."""

    def test_allowed_path(self) -> None:
        status = BuildStatus.PENDING.advance(BuildStatus.RUNNING)
        assert status.advance(BuildStatus.FAILED_SOFT) is BuildStatus.FAILED_SOFT

    @pytest.mark.parametrize(
        "current,new",
        [
            (BuildStatus.PENDING, BuildStatus.PASSED),
            (BuildStatus.PASSED, BuildStatus.RUNNING),
            (BuildStatus.FAILED_HARD, BuildStatus.PASSED),
            (BuildStatus.RUNNING, BuildStatus.PENDING),
        ],
    )
    def test_invalid_transitions_raise(self, current: BuildStatus, new: BuildStatus) -> None:
        with pytest.raises(InvalidTransitionError):
            current.advance(new)

    def test_publishable(self) -> None:
        assert BuildStatus.PASSED.publishable
        assert BuildStatus.FAILED_SOFT.publishable
        assert not BuildStatus.FAILED_HARD.publishable
        assert not BuildStatus.RUNNING.is_terminal


class TestValidationEngine:
    """Folding results into a status."""

    def test_soft_failure_only_gives_failed_soft(self, monthly: pd.DataFrame) -> None:
        engine = ValidationEngine([RowCheck("non_negative", "mart_revenue_monthly", "net_revenue >= 0")])
        report = engine.run("b1", {"mart_revenue_monthly": monthly})

        assert report.status is BuildStatus.FAILED_SOFT
        assert [r.check_name for r in report.soft_failures] == ["non_negative"]
        with pytest.raises(BoundsViolation):
            report.raise_for_status()

    def test_hard_failure_wins(self, monthly: pd.DataFrame) -> None:
        engine = ValidationEngine(
            [
                RowCheck("non_negative", "mart_revenue_monthly", "net_revenue >= 0"),
                RowCheck("cac_cap", "mart_revenue_monthly", "cac < 900", severity=Severity.HARD),
            ]
        )
        report = engine.run("b1", {"mart_revenue_monthly": monthly})

        assert report.status is BuildStatus.FAILED_HARD
        with pytest.raises(ReconciliationError, match="cac_cap"):
            report.raise_for_status()

    def test_missing_table_is_a_failed_result(self) -> None:
        engine = ValidationEngine([GrainCheck("grain_fact_revenue", "fact_revenue", ("order_id",))])
        report = engine.run("b1", {})

        result = report.results[0]
        assert not result.passed
        assert result.message == TABLE_NOT_BUILT
        assert result.offending_keys == [{"table": "fact_revenue"}]
        assert report.status is BuildStatus.FAILED_HARD

    def test_unknown_column_is_a_failed_result(self, monthly: pd.DataFrame) -> None:
        engine = ValidationEngine([RowCheck("typo", "mart_revenue_monthly", "net_revenu >= 0")])
        result = engine.run("b1", {"mart_revenue_monthly": monthly}).results[0]

        assert not result.passed
        assert result.message.startswith("check could not be evaluated")

    def test_offending_keys_are_capped(self) -> None:
        frame = pd.DataFrame({"month": [f"2025-{m:02d}" for m in range(1, 13)], "net_revenue": [-1.0] * 12})
        engine = ValidationEngine(
            [RowCheck("non_negative", "mart_revenue_monthly", "net_revenue >= 0")],
            config=PipelineConfig(max_offending_rows=5),
        )
        result = engine.run("b1", {"mart_revenue_monthly": frame}).results[0]

        assert result.offending_count == 12
        assert len(result.offending_keys) == 5

    def test_result_round_trips_through_dict(self, monthly: pd.DataFrame) -> None:
        engine = ValidationEngine([RowCheck("non_negative", "mart_revenue_monthly", "net_revenue >= 0")])
        result = engine.run("b1", {"mart_revenue_monthly": monthly}).results[0]

        assert ValidationResult.from_dict(result.to_dict()) == result

    def test_default_checks_use_configured_tolerances(self) -> None:
        checks = {c.name: c for c in default_checks(PipelineConfig(attribution_tolerance=0.5))}

        assert checks["attribution_reconciliation"].tolerance == 0.5
        assert checks["revenue_reconciliation"].severity is Severity.HARD
        assert checks["monthly_net_revenue_non_negative"].severity is Severity.SOFT
        assert "grain_fact_revenue" in checks
