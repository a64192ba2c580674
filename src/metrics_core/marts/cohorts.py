"""Mart layer: cohort sizes, retention and LTV:CAC.

Cohort sizes are fixed. A cohort's size is computed once, in the first build
that sees the cohort, and every later build reuses the stored value even if
late-arriving events would now place more or fewer customers in it.
Retention and LTV always divide by that stored size.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.metrics import METRICS
from metrics_core.utils import month_range, round_money, to_month

logger = logging.getLogger(__name__)

SIZE_COLUMNS = ["cohort_month", "cohort_size", "fixed_in_period", "current_members"]
RETENTION_COLUMNS = [
    "cohort_month",
    "activity_month",
    "months_since_start",
    "active_customers",
    "cohort_size",
    "retention_rate",
]
LTV_CAC_COLUMNS = ["cohort_month", "cohort_size", "cohort_lifetime_value", "avg_lifetime_value", "cac", "ltv_to_cac"]


def build_cohort_sizes(
    first_purchase: pd.DataFrame,
    prior_sizes: pd.DataFrame | None = None,
    period: str | None = None,
) -> pd.DataFrame:
    """Cohort sizes, reusing previously fixed values.

    Args:
        first_purchase: fact_customer_first_purchase.
        prior_sizes: mart_cohort_sizes of an earlier published build, or None
            when no cohort has been fixed yet.
        period: Reporting month of this build. New cohorts are stamped with
            it; prior cohorts after it are ignored.

    Returns:
        DataFrame at cohort_month grain with SIZE_COLUMNS. ``current_members``
        is the count recomputed now, kept next to the fixed size so drift from
        late-arriving events is visible.
    """
    current = first_purchase.groupby("first_purchase_month")["customer_id"].nunique()

    fixed: dict[str, tuple[int, str]] = {}
    if prior_sizes is not None and not prior_sizes.empty:
        for row in prior_sizes.itertuples(index=False):
            if period is None or row.cohort_month <= period:
                fixed[row.cohort_month] = (int(row.cohort_size), str(row.fixed_in_period))

    rows = []
    for cohort in sorted(set(current.index) | set(fixed)):
        members = int(current.get(cohort, 0))
        if cohort in fixed:
            size, fixed_in = fixed[cohort]
            if size != members:
                logger.info("Cohort %s keeps fixed size %d (now %d members)", cohort, size, members)
        else:
            size, fixed_in = members, period or cohort
        rows.append(
            {
                "cohort_month": cohort,
                "cohort_size": size,
                "fixed_in_period": fixed_in,
                "current_members": members,
            }
        )

    mart = pd.DataFrame(rows, columns=SIZE_COLUMNS)
    mart["cohort_size"] = mart["cohort_size"].astype(int)
    mart["current_members"] = mart["current_members"].astype(int)
    logger.debug("Built mart_cohort_sizes: %d cohorts (%d reused)", len(mart), len(fixed))
    return mart


def build_cohort_retention(
    fact_revenue: pd.DataFrame,
    first_purchase: pd.DataFrame,
    cohort_sizes: pd.DataFrame,
    through_month: str | None = None,
) -> pd.DataFrame:
    """Active customers per cohort per month since the cohort started.

    A customer is active in a month when they have an order inflow row in that
    month. Each cohort gets a row for every month from its start to the
    reporting month.

    Returns:
        DataFrame at (cohort_month, activity_month) grain with RETENTION_COLUMNS.
    """
    orders = fact_revenue[fact_revenue["ordered_at"].notna() & fact_revenue["customer_id"].notna()]
    cohort_of = first_purchase.set_index("customer_id")["first_purchase_month"]
    activity = pd.DataFrame(
        {
            "customer_id": orders["customer_id"],
            "cohort_month": orders["customer_id"].map(cohort_of),
            "activity_month": to_month(orders["revenue_date"]),
        }
    ).dropna(subset=["cohort_month"])
    active = activity.groupby(["cohort_month", "activity_month"])["customer_id"].nunique()

    last = through_month
    if last is None:
        observed = [*activity["activity_month"], *cohort_sizes["cohort_month"]]
        last = max(observed) if observed else None

    rows = []
    for cohort in cohort_sizes.itertuples(index=False):
        if last is None or cohort.cohort_month > last:
            continue
        for offset, month in enumerate(month_range(cohort.cohort_month, last)):
            rows.append(
                {
                    "cohort_month": cohort.cohort_month,
                    "activity_month": month,
                    "months_since_start": offset,
                    "active_customers": int(active.get((cohort.cohort_month, month), 0)),
                    "cohort_size": int(cohort.cohort_size),
                }
            )

    mart = pd.DataFrame(rows, columns=RETENTION_COLUMNS[:-1])
    mart["retention_rate"] = METRICS["retention_rate"].compute_ratio(mart)
    logger.debug("Built mart_cohort_retention: %d rows", len(mart))
    return mart.loc[:, RETENTION_COLUMNS]


def build_ltv_cac(
    fact_customer_ltv: pd.DataFrame,
    cohort_sizes: pd.DataFrame,
    marketing_monthly: pd.DataFrame,
) -> pd.DataFrame:
    """Average lifetime value per cohort against the cohort month's CAC.

    Returns:
        DataFrame at cohort_month grain with LTV_CAC_COLUMNS.
    """
    value = fact_customer_ltv.groupby("cohort_month")["lifetime_value"].sum()
    cac = marketing_monthly.set_index("month")["cac"]

    mart = cohort_sizes[["cohort_month", "cohort_size"]].copy()
    mart["cohort_lifetime_value"] = round_money(mart["cohort_month"].map(value).fillna(0.0))
    mart["avg_lifetime_value"] = METRICS["avg_lifetime_value"].compute_ratio(mart)
    mart["cac"] = mart["cohort_month"].map(cac).astype(float)
    mart["ltv_to_cac"] = METRICS["ltv_to_cac"].compute_ratio(mart)

    mart = mart.reset_index(drop=True)
    logger.debug("Built mart_ltv_cac: %d cohorts", len(mart))
    return mart.loc[:, LTV_CAC_COLUMNS]
