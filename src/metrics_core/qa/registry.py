"""Declarative check registry.

Checks are data: each one names the tables it reads and knows how to
evaluate itself against a table set, returning the offending rows. The
engine decides severity handling, capping and auditing.

Check types:

- ``RowCheck``: a ``DataFrame.eval`` boolean expression that must hold for
  every row. Rows with a null in any column the expression reads are skipped.
- ``NotNullCheck``: listed columns must be populated.
- ``GrainCheck``: key columns must be unique. One is generated for every
  declared fact and mart grain.
- ``ReconciliationCheck``: two signed sums of columns, each bucketed by month
  of its own date column, must agree per month after rounding to cents.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Mapping

import numpy as np
import pandas as pd

from metrics_core.config import PipelineConfig
from metrics_core.metrics import TABLE_GRAINS
from metrics_core.utils import MONEY_DECIMALS, to_month


class Severity(str, Enum):
    """HARD failures block publishing; SOFT failures publish with a flag."""

    SOFT = "soft"
    HARD = "hard"


@dataclass(frozen=True)
class CheckOutcome:
    """Raw result of evaluating one check.

    Attributes:
        offending: One row per offending key (empty when the check passed).
        message: Summary for the audit trail.
    """

    offending: pd.DataFrame
    message: str

    @property
    def passed(self) -> bool:
        return self.offending.empty


def _key_columns(table: str, frame: pd.DataFrame) -> list[str]:
    keys = [c for c in TABLE_GRAINS.get(table, ()) if c in frame.columns]
    return keys or list(frame.columns)


@dataclass(frozen=True)
class RowCheck:
    """Row-level predicate evaluated with ``DataFrame.eval``.

    Example:
        >>> check = RowCheck("cac_non_negative", "mart_marketing_monthly", "cac >= 0")
        >>> frame = pd.DataFrame({"month": ["2025-01", "2025-02"], "cac": [10.0, None]})
        >>> check.evaluate({"mart_marketing_monthly": frame}).passed
        True

    """

    name: str
    table: str
    expression: str
    severity: Severity = Severity.SOFT
    description: str = ""

    @property
    def tables(self) -> tuple[str, ...]:
        return (self.table,)

    def referenced_columns(self, frame: pd.DataFrame) -> list[str]:
        return [c for c in frame.columns if re.search(rf"\b{re.escape(str(c))}\b", self.expression)]

    def evaluate(self, tables: Mapping[str, pd.DataFrame]) -> CheckOutcome:
        frame = tables[self.table]
        checked = frame.dropna(subset=self.referenced_columns(frame))
        if checked.empty:
            return CheckOutcome(frame.iloc[0:0], f"{self.expression}: no rows to check")
        holds = checked.eval(self.expression, engine="python").astype(bool)
        offending = checked.loc[~holds, _key_columns(self.table, frame) + self.referenced_columns(frame)]
        offending = offending.loc[:, ~offending.columns.duplicated()]
        skipped = len(frame) - len(checked)
        return CheckOutcome(
            offending.reset_index(drop=True),
            f"{self.expression}: {len(offending)} of {len(checked)} row(s) violate"
            + (f" ({skipped} null row(s) skipped)" if skipped else ""),
        )


@dataclass(frozen=True)
class NotNullCheck:
    """Listed columns must have no nulls."""

    name: str
    table: str
    columns: tuple[str, ...]
    severity: Severity = Severity.HARD
    description: str = ""

    @property
    def tables(self) -> tuple[str, ...]:
        return (self.table,)

    def evaluate(self, tables: Mapping[str, pd.DataFrame]) -> CheckOutcome:
        frame = tables[self.table]
        missing = [c for c in self.columns if c not in frame.columns]
        if missing:
            return CheckOutcome(pd.DataFrame({"missing_column": missing}), f"Missing columns: {missing}")
        null_rows = frame[frame[list(self.columns)].isna().any(axis=1)]
        offending = null_rows.loc[:, _key_columns(self.table, frame)].reset_index(drop=True)
        return CheckOutcome(offending, f"{len(offending)} row(s) with null {list(self.columns)}")


@dataclass(frozen=True)
class GrainCheck:
    """Key uniqueness at a table's declared grain."""

    name: str
    table: str
    keys: tuple[str, ...]
    severity: Severity = Severity.HARD
    description: str = ""

    @property
    def tables(self) -> tuple[str, ...]:
        return (self.table,)

    def evaluate(self, tables: Mapping[str, pd.DataFrame]) -> CheckOutcome:
        frame = tables[self.table]
        missing = [k for k in self.keys if k not in frame.columns]
        if missing:
            return CheckOutcome(pd.DataFrame({"missing_column": missing}), f"Missing key columns: {missing}")
        keys = list(self.keys)
        dupes = frame[frame.duplicated(subset=keys, keep=False)]
        offending = (
            dupes.groupby(keys, dropna=False).size().rename("row_count").reset_index()
            if not dupes.empty
            else frame.loc[:, keys].iloc[0:0]
        )
        return CheckOutcome(offending, f"{len(offending)} duplicate key(s) on {keys}")


@dataclass(frozen=True)
class Term:
    """One signed column sum in a reconciliation, bucketed by month of ``date_column``.

    With ``dated_by=(owner, key)`` the date is read from the ``owner`` table
    joined on ``key``, so child rows land in their parent's month. Rows with no
    parent are left out.
    """

    table: str
    column: str
    date_column: str
    sign: int = 1
    dated_by: tuple[str, str] | None = None

    @property
    def tables(self) -> tuple[str, ...]:
        return (self.table,) if self.dated_by is None else (self.table, self.dated_by[0])

    def monthly(self, tables: Mapping[str, pd.DataFrame]) -> pd.Series:
        frame = tables[self.table]
        values = pd.to_numeric(frame[self.column], errors="coerce").fillna(0.0).astype(float)
        if self.dated_by is None:
            dates = frame[self.date_column]
        else:
            owner, key = self.dated_by
            parent_dates = tables[owner].drop_duplicates(subset=key).set_index(key)[self.date_column]
            dates = frame[key].map(parent_dates)
            values, dates = values[dates.notna()], dates[dates.notna()]
        months = to_month(dates)
        return (values * self.sign).groupby(months).sum()


@dataclass(frozen=True)
class ReconciliationCheck:
    """Per-month equality of two independently derived totals.

    Both sides are summed per month, rounded to cents, and a month is
    offending when ``|left - right| > tolerance``.
    """

    name: str
    left: tuple[Term, ...]
    right: tuple[Term, ...]
    tolerance: float = 0.0
    severity: Severity = Severity.HARD
    description: str = ""
    period_column: str = "period"

    @property
    def table(self) -> str:
        return self.left[0].table

    @property
    def tables(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(name for t in (*self.left, *self.right) for name in t.tables))

    @staticmethod
    def _side(terms: tuple[Term, ...], tables: Mapping[str, pd.DataFrame]) -> pd.Series:
        parts = [term.monthly(tables) for term in terms]
        total = pd.concat(parts, axis=1).fillna(0.0).sum(axis=1) if parts else pd.Series(dtype=float)
        return total.round(MONEY_DECIMALS)

    def evaluate(self, tables: Mapping[str, pd.DataFrame]) -> CheckOutcome:
        left = self._side(self.left, tables)
        right = self._side(self.right, tables)
        compared = pd.DataFrame({"left": left, "right": right}).fillna(0.0).sort_index()
        compared["difference"] = (compared["left"] - compared["right"]).round(MONEY_DECIMALS)
        # Epsilon keeps float noise from breaking a zero tolerance.
        bad = compared["difference"].abs() > self.tolerance + 1e-9
        offending = compared[bad].rename_axis(self.period_column).reset_index()
        worst = float(np.abs(compared["difference"]).max()) if not compared.empty else 0.0
        return CheckOutcome(
            offending,
            f"{len(offending)} of {len(compared)} month(s) differ by more than {self.tolerance:g} "
            f"(max difference {worst:.2f})",
        )


Check = RowCheck | NotNullCheck | GrainCheck | ReconciliationCheck


def grain_checks() -> list[GrainCheck]:
    """One uniqueness check per declared fact and mart grain."""
    return [GrainCheck(f"grain_{table}", table, keys) for table, keys in sorted(TABLE_GRAINS.items())]


def not_null_checks() -> list[NotNullCheck]:
    """Fact grain keys must be populated."""
    return [
        NotNullCheck(f"not_null_{table}", table, keys)
        for table, keys in sorted(TABLE_GRAINS.items())
        if table.startswith("fact_")
    ]


def default_checks(config: PipelineConfig | None = None) -> list[Check]:
    """Build the standard check set with tolerances taken from config."""
    config = config or PipelineConfig()
    checks: list[Check] = [
        ReconciliationCheck(
            "revenue_reconciliation",
            left=(Term("fact_revenue", "net_revenue", "revenue_date"),),
            right=(
                Term("stg_order_lines", "line_amount", "ordered_at", dated_by=("stg_orders", "order_id")),
                Term("stg_orders", "discount_amount", "ordered_at", -1),
                Term("stg_refunds", "amount", "refunded_at", -1),
            ),
            tolerance=config.reconciliation_tolerance,
            description="Net revenue equals line amounts less discounts less refunds, per month of the order or refund",
        ),
        ReconciliationCheck(
            "mart_revenue_matches_fact",
            left=(Term("mart_revenue_monthly", "net_revenue", "month"),),
            right=(Term("fact_revenue", "net_revenue", "revenue_date"),),
            tolerance=config.reconciliation_tolerance,
            description="Monthly net revenue mart equals the fact it is built from",
        ),
        ReconciliationCheck(
            "spend_reconciliation",
            left=(Term("mart_marketing_monthly", "marketing_spend", "month"),),
            right=(Term("stg_marketing_spend", "amount", "spent_at"),),
            tolerance=config.reconciliation_tolerance,
            description="Monthly marketing spend equals staged spend events",
        ),
        ReconciliationCheck(
            "attribution_reconciliation",
            left=(Term("fact_channel_attribution", "attributed_net_revenue", "activity_date"),),
            right=(Term("fact_revenue", "net_revenue", "revenue_date"),),
            tolerance=config.attribution_tolerance,
            description="Channel weights distribute all net revenue (weights sum to 1)",
        ),
        RowCheck(
            "monthly_net_revenue_non_negative",
            "mart_revenue_monthly",
            "net_revenue >= 0",
            description="Refund-heavy months are allowed but flagged",
        ),
        RowCheck("gross_margin_pct_at_most_one", "mart_revenue_monthly", "gross_margin_pct <= 1"),
        RowCheck(
            "retention_rate_bounds",
            "mart_cohort_retention",
            "(retention_rate >= 0) & (retention_rate <= 1)",
        ),
        RowCheck("cac_non_negative", "mart_marketing_monthly", "cac >= 0"),
        RowCheck("roas_non_negative", "mart_marketing_monthly", "roas >= 0"),
        RowCheck(
            "channel_weight_bounds",
            "fact_marketing_spend",
            "(channel_weight >= 0) & (channel_weight <= 1)",
        ),
    ]
    checks.extend(not_null_checks())
    checks.extend(grain_checks())
    return checks


DEFAULT_CHECKS: list[Check] = default_checks()

