"""Fact layer: customer-grain facts.

``fact_customer_first_purchase`` is the single authoritative new-customer
derivation. CAC, cohort assignment, LTV and channel attribution all read it
instead of recomputing "first purchase" on their own.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.utils import round_money, to_month

logger = logging.getLogger(__name__)

FIRST_PURCHASE_GRAIN = ("customer_id",)
LTV_GRAIN = ("customer_id",)

FIRST_PURCHASE_COLUMNS = [
    "customer_id",
    "first_order_id",
    "first_purchase_at",
    "first_purchase_date",
    "first_purchase_month",
]

LTV_COLUMNS = [
    "customer_id",
    "cohort_month",
    "order_count",
    "lifetime_gross_revenue",
    "lifetime_refund_amount",
    "lifetime_net_revenue",
    "lifetime_gross_margin",
    "lifetime_subscription_revenue",
    "lifetime_value",
]


def build_first_purchase(fact_revenue: pd.DataFrame) -> pd.DataFrame:
    """Earliest order per customer from fact_revenue inflow rows.

    Ties on the timestamp are broken by order_id so the result is stable.
    """
    purchases = fact_revenue[fact_revenue["ordered_at"].notna() & fact_revenue["customer_id"].notna()]
    first = (
        purchases.sort_values(["customer_id", "ordered_at", "order_id"], kind="mergesort")
        .groupby("customer_id", sort=True)
        .head(1)
    )
    out = pd.DataFrame(
        {
            "customer_id": first["customer_id"],
            "first_order_id": first["order_id"],
            "first_purchase_at": first["ordered_at"],
            "first_purchase_date": first["ordered_at"].dt.normalize(),
            "first_purchase_month": to_month(first["ordered_at"]),
        }
    )
    out = out.sort_values("customer_id", kind="mergesort").reset_index(drop=True)
    logger.debug("Built fact_customer_first_purchase: %d customers", len(out))
    return out.loc[:, FIRST_PURCHASE_COLUMNS]


def build_customer_ltv(
    fact_revenue: pd.DataFrame,
    first_purchase: pd.DataFrame,
    subscription_charges: pd.DataFrame,
) -> pd.DataFrame:
    """Lifetime totals per customer, keyed to the customer's cohort.

    Args:
        fact_revenue: fact_revenue.
        first_purchase: fact_customer_first_purchase (defines the customer set
            and the cohort month).
        subscription_charges: stg_subscription_charges; every charge counts
            toward lifetime value whatever its billing period.

    Returns:
        DataFrame at customer_id grain with LTV_COLUMNS.
    """
    rows = fact_revenue[fact_revenue["customer_id"].notna()]
    totals = rows.groupby("customer_id", sort=True).agg(
        lifetime_gross_revenue=("gross_revenue", "sum"),
        lifetime_refund_amount=("refund_amount", "sum"),
        lifetime_net_revenue=("net_revenue", "sum"),
        lifetime_gross_margin=("gross_margin", "sum"),
    )
    order_count = rows[rows["ordered_at"].notna()].groupby("customer_id")["order_id"].nunique()
    subscriptions = subscription_charges.groupby("customer_id")["amount"].sum()

    ltv = first_purchase[["customer_id", "first_purchase_month"]].rename(
        columns={"first_purchase_month": "cohort_month"}
    )
    ltv = ltv.merge(totals, left_on="customer_id", right_index=True, how="left")
    ltv["order_count"] = ltv["customer_id"].map(order_count).fillna(0).astype(int)
    ltv["lifetime_subscription_revenue"] = ltv["customer_id"].map(subscriptions).fillna(0.0)

    money = [
        "lifetime_gross_revenue",
        "lifetime_refund_amount",
        "lifetime_net_revenue",
        "lifetime_gross_margin",
        "lifetime_subscription_revenue",
    ]
    ltv[money] = round_money(ltv[money].fillna(0.0))
    ltv["lifetime_value"] = round_money(ltv["lifetime_net_revenue"] + ltv["lifetime_subscription_revenue"])
    ltv = ltv.sort_values("customer_id", kind="mergesort").reset_index(drop=True)
    logger.debug("Built fact_customer_ltv: %d customers", len(ltv))
    return ltv.loc[:, LTV_COLUMNS]
