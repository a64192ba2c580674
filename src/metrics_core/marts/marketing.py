"""Mart layer: marketing efficiency at month and channel-month grain.

New customers come only from fact_customer_first_purchase. CAC and ROAS are
computed through the metric registry, so a month with spend and no new
customers has a null CAC, not an error and not infinity.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.metrics import METRICS
from metrics_core.utils import month_calendar, round_money, to_month

logger = logging.getLogger(__name__)

MONTHLY_COLUMNS = ["month", "marketing_spend", "new_customers", "net_revenue", "cac", "roas"]
CHANNEL_COLUMNS = [
    "channel",
    "month",
    "channel_spend",
    "attributed_net_revenue",
    "attributed_new_customers",
    "channel_cac",
    "channel_roas",
]


def build_marketing_monthly(
    fact_marketing_spend: pd.DataFrame,
    first_purchase: pd.DataFrame,
    revenue_monthly: pd.DataFrame,
    through_month: str | None = None,
) -> pd.DataFrame:
    """Monthly spend, new customers, CAC and ROAS.

    Args:
        fact_marketing_spend: fact_marketing_spend.
        first_purchase: fact_customer_first_purchase.
        revenue_monthly: mart_revenue_monthly (source of net_revenue).
        through_month: Reporting month; extends the calendar to it.

    Returns:
        DataFrame at month grain with MONTHLY_COLUMNS.
    """
    spend = fact_marketing_spend.groupby(to_month(fact_marketing_spend["spend_date"]))["spend"].sum()
    new_customers = first_purchase.groupby("first_purchase_month")["customer_id"].nunique()
    net_revenue = revenue_monthly.set_index("month")["net_revenue"]

    months = month_calendar([*spend.index, *new_customers.index, *net_revenue.index], through_month)
    mart = pd.DataFrame({"month": pd.Series(months, dtype=object)})
    mart["marketing_spend"] = round_money(mart["month"].map(spend).fillna(0.0))
    mart["new_customers"] = mart["month"].map(new_customers).fillna(0).astype(int)
    mart["net_revenue"] = mart["month"].map(net_revenue).fillna(0.0).astype(float)
    mart["cac"] = METRICS["cac"].compute_ratio(mart)
    mart["roas"] = METRICS["roas"].compute_ratio(mart)

    logger.debug("Built mart_marketing_monthly: %d months", len(mart))
    return mart.loc[:, MONTHLY_COLUMNS]


def build_marketing_channel_monthly(
    fact_marketing_spend: pd.DataFrame,
    fact_channel_attribution: pd.DataFrame,
) -> pd.DataFrame:
    """Per-channel spend and weighted attribution by month.

    Only (channel, month) pairs with spend or attributed activity appear.

    Returns:
        DataFrame at (channel, month) grain with CHANNEL_COLUMNS.
    """
    spend = (
        fact_marketing_spend.assign(month=to_month(fact_marketing_spend["spend_date"]))
        .groupby(["channel", "month"])
        .agg(channel_spend=("spend", "sum"))
    )
    attributed = (
        fact_channel_attribution.assign(month=to_month(fact_channel_attribution["activity_date"]))
        .groupby(["channel", "month"])
        .agg(
            attributed_net_revenue=("attributed_net_revenue", "sum"),
            attributed_new_customers=("attributed_new_customers", "sum"),
        )
    )

    mart = spend.join(attributed, how="outer").fillna(0.0).reset_index()
    mart["channel_spend"] = round_money(mart["channel_spend"])
    mart["attributed_net_revenue"] = round_money(mart["attributed_net_revenue"])
    mart["attributed_new_customers"] = mart["attributed_new_customers"].astype(float)
    mart["channel_cac"] = METRICS["channel_cac"].compute_ratio(mart)
    mart["channel_roas"] = METRICS["channel_roas"].compute_ratio(mart)

    mart = mart.sort_values(["channel", "month"], kind="mergesort").reset_index(drop=True)
    logger.debug("Built mart_marketing_channel_monthly: %d rows", len(mart))
    return mart.loc[:, CHANNEL_COLUMNS]
