"""Mart layer: monthly revenue and recurring revenue.

Both marts are at ``month`` grain and densified from the first to the last
observed month, so a quiet month shows zero sums and null ratios instead of
disappearing.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.metrics import METRICS
from metrics_core.staging.schemas import RECURRING
from metrics_core.utils import month_calendar, round_money, to_month

logger = logging.getLogger(__name__)

REVENUE_SUMS = ["gross_revenue", "discount_amount", "refund_amount", "net_revenue", "cogs", "gross_margin"]

REVENUE_COLUMNS = ["month", *REVENUE_SUMS, "gross_margin_pct", "order_count"]
RECURRING_COLUMNS = ["month", "mrr", "active_subscribers"]


def build_revenue_monthly(fact_revenue: pd.DataFrame, through_month: str | None = None) -> pd.DataFrame:
    """Roll fact_revenue up to calendar months.

    Refund rows land in the month of their own revenue_date, so a refund
    issued in March for a January order reduces March.

    Args:
        fact_revenue: fact_revenue.
        through_month: Reporting month; extends the calendar to it.

    Returns:
        DataFrame at month grain with REVENUE_COLUMNS.
    """
    rows = fact_revenue.assign(month=to_month(fact_revenue["revenue_date"]))
    months = month_calendar(rows["month"], through_month)

    sums = rows.groupby("month")[REVENUE_SUMS].sum().reindex(months, fill_value=0.0)
    orders = rows[rows["ordered_at"].notna()].groupby("month")["order_id"].nunique()

    mart = sums.rename_axis("month").reset_index()
    mart[REVENUE_SUMS] = round_money(mart[REVENUE_SUMS])
    mart["gross_margin_pct"] = METRICS["gross_margin_pct"].compute_ratio(mart)
    mart["order_count"] = mart["month"].map(orders).fillna(0).astype(int)

    logger.debug("Built mart_revenue_monthly: %d months", len(mart))
    return mart.loc[:, REVENUE_COLUMNS]


def build_recurring_revenue_monthly(
    fact_subscription_revenue: pd.DataFrame,
    through_month: str | None = None,
) -> pd.DataFrame:
    """Monthly recurring revenue from normalized subscription rows.

    One-time charges are excluded by their ``revenue_type`` tag. Months after
    ``through_month`` (the tail of annual or quarterly charges) are not
    reported yet.

    Returns:
        DataFrame at month grain with RECURRING_COLUMNS.
    """
    recurring = fact_subscription_revenue[fact_subscription_revenue["revenue_type"] == RECURRING]
    if through_month is not None:
        recurring = recurring[recurring["revenue_month"] <= through_month]
    months = month_calendar(recurring["revenue_month"], through_month)

    grouped = recurring.groupby("revenue_month")
    mart = pd.DataFrame({"month": pd.Series(months, dtype=object)})
    mart["mrr"] = mart["month"].map(grouped["monthly_amount"].sum()).fillna(0.0).astype(float)
    mart["mrr"] = round_money(mart["mrr"])
    mart["active_subscribers"] = mart["month"].map(grouped["customer_id"].nunique()).fillna(0).astype(int)

    logger.debug("Built mart_recurring_revenue_monthly: %d months", len(mart))
    return mart.loc[:, RECURRING_COLUMNS]
