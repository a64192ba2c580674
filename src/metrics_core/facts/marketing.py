"""Fact layer: marketing spend and static-weight channel attribution.

Attribution is by explicit, versioned channel weights, not a learned
model. For every day, each channel effective that day is credited
``weight x net revenue`` and ``weight x new customers``.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.parameters import CHANNEL_WEIGHT, ParameterSnapshot
from metrics_core.utils import round_money

logger = logging.getLogger(__name__)

SPEND_GRAIN = ("channel", "spend_date")
ATTRIBUTION_GRAIN = ("channel", "activity_date")

SPEND_COLUMNS = ["channel", "spend_date", "spend", "spend_events", "channel_weight"]
ATTRIBUTION_COLUMNS = [
    "channel",
    "activity_date",
    "channel_weight",
    "attributed_net_revenue",
    "attributed_new_customers",
]


def build_fact_marketing_spend(marketing_spend: pd.DataFrame, parameters: ParameterSnapshot) -> pd.DataFrame:
    """Sum spend per channel per day and join the channel weight.

    Raises:
        MissingParameterError: If a channel that spent has no effective weight.
    """
    spend = marketing_spend.assign(spend_date=marketing_spend["spent_at"].dt.normalize())
    fact = (
        spend.groupby(["channel", "spend_date"], sort=True)
        .agg(spend=("amount", "sum"), spend_events=("spend_id", "nunique"))
        .reset_index()
    )
    fact["spend"] = round_money(fact["spend"])
    fact["spend_events"] = fact["spend_events"].astype(int)
    fact["channel_weight"] = parameters.resolve_series(CHANNEL_WEIGHT, fact["channel"], fact["spend_date"])
    logger.debug("Built fact_marketing_spend: %d rows", len(fact))
    return fact.loc[:, SPEND_COLUMNS]


def build_fact_channel_attribution(
    fact_revenue: pd.DataFrame,
    first_purchase: pd.DataFrame,
    parameters: ParameterSnapshot,
) -> pd.DataFrame:
    """Credit daily net revenue and new customers to channels by weight.

    Args:
        fact_revenue: fact_revenue (net revenue per revenue_date).
        first_purchase: fact_customer_first_purchase (new customers per
            first_purchase_date).
        parameters: Build snapshot holding the channel_weight versions.

    Returns:
        DataFrame at (channel, activity_date) grain with ATTRIBUTION_COLUMNS.

    Raises:
        MissingParameterError: If a day with activity has no effective weights.
    """
    revenue = fact_revenue.groupby("revenue_date")["net_revenue"].sum()
    acquired = first_purchase.groupby("first_purchase_date")["customer_id"].nunique()
    days = sorted(set(revenue.index) | set(acquired.index))

    rows = []
    for day in days:
        net = float(revenue.get(day, 0.0))
        new_customers = float(acquired.get(day, 0))
        for channel, weight in parameters.effective(CHANNEL_WEIGHT, day).items():
            rows.append(
                {
                    "channel": channel,
                    "activity_date": pd.Timestamp(day),
                    "channel_weight": weight,
                    "attributed_net_revenue": net * weight,
                    "attributed_new_customers": new_customers * weight,
                }
            )

    if not rows:
        return pd.DataFrame(
            {
                "channel": pd.Series(dtype=object),
                "activity_date": pd.Series(dtype="datetime64[ns]"),
                "channel_weight": pd.Series(dtype=float),
                "attributed_net_revenue": pd.Series(dtype=float),
                "attributed_new_customers": pd.Series(dtype=float),
            }
        )

    fact = pd.DataFrame(rows, columns=ATTRIBUTION_COLUMNS)
    fact = fact.sort_values(["channel", "activity_date"], kind="mergesort").reset_index(drop=True)
    logger.debug("Built fact_channel_attribution: %d rows over %d days", len(fact), len(days))
    return fact
