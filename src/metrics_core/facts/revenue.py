"""Fact layer: revenue at (order_id, revenue_date) grain.

Order lines are summed to the order before anything else, so every order
contributes exactly one inflow row no matter how many lines it has. Refunds
are outflow rows dated at the refund's own timestamp, never at the original
order's date. Both components are netted only when rows are aggregated.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.parameters import PRODUCT_COST, ParameterSnapshot
from metrics_core.utils import round_money, safe_divide

logger = logging.getLogger(__name__)

GRAIN = ("order_id", "revenue_date")

COLUMNS = [
    "order_id",
    "revenue_date",
    "customer_id",
    "ordered_at",
    "row_type",
    "line_count",
    "gross_revenue",
    "discount_amount",
    "refund_amount",
    "net_revenue",
    "cogs",
    "gross_margin",
    "gross_margin_pct",
]


def _order_inflows(
    orders: pd.DataFrame,
    order_lines: pd.DataFrame,
    parameters: ParameterSnapshot,
) -> pd.DataFrame:
    """One row per order: gross, discount and cost of goods at the order date.

    Lines take their order's timestamp, both for the month they count in and
    for the effective product cost.
    """
    orphans = ~order_lines["order_id"].isin(orders["order_id"])
    if orphans.any():
        logger.warning(
            "Dropping %d order line(s) without a staged order: %s",
            int(orphans.sum()),
            sorted(order_lines.loc[orphans, "order_id"].unique())[:5],
        )
    lines = order_lines[~orphans].copy()

    order_time = orders.drop_duplicates(subset="order_id").set_index("order_id")["ordered_at"]
    lines["order_ordered_at"] = lines["order_id"].map(order_time)
    lines["unit_cost"] = parameters.resolve_series(PRODUCT_COST, lines["product_id"], lines["order_ordered_at"])
    lines["line_cost"] = lines["unit_cost"] * lines["quantity"]

    per_order = lines.groupby("order_id", sort=True).agg(
        gross_revenue=("line_amount", "sum"),
        cogs=("line_cost", "sum"),
        line_count=("line_id", "nunique"),
    )

    inflow = orders[["order_id", "customer_id", "ordered_at", "discount_amount"]].merge(
        per_order, left_on="order_id", right_index=True, how="left"
    )
    inflow[["gross_revenue", "cogs"]] = inflow[["gross_revenue", "cogs"]].fillna(0.0)
    inflow["line_count"] = inflow["line_count"].fillna(0).astype(int)
    inflow["revenue_date"] = inflow["ordered_at"].dt.normalize().astype("datetime64[ns]")
    return inflow


def _refund_outflows(refunds: pd.DataFrame) -> pd.DataFrame:
    """Refunds summed per order per refund date."""
    outflow = refunds.assign(revenue_date=refunds["refunded_at"].dt.normalize())
    outflow = (
        outflow.groupby(["order_id", "revenue_date"], sort=True)
        .agg(refund_amount=("amount", "sum"))
        .reset_index()
    )
    outflow["revenue_date"] = outflow["revenue_date"].astype("datetime64[ns]")
    return outflow


def build_fact_revenue(
    orders: pd.DataFrame,
    order_lines: pd.DataFrame,
    refunds: pd.DataFrame,
    parameters: ParameterSnapshot,
) -> pd.DataFrame:
    """Build fact_revenue from staged orders, lines and refunds.

    Args:
        orders: stg_orders.
        order_lines: stg_order_lines.
        refunds: stg_refunds.
        parameters: Build snapshot; product_cost is joined on each line's
            product at its order's timestamp.

    Returns:
        DataFrame at (order_id, revenue_date) grain with COLUMNS.

    Raises:
        MissingParameterError: If a line's product has no effective cost.
    """
    inflow = _order_inflows(orders, order_lines, parameters)
    outflow = _refund_outflows(refunds)

    fact = inflow.merge(outflow, on=["order_id", "revenue_date"], how="outer")
    has_inflow = fact["ordered_at"].notna()
    has_refund = fact["refund_amount"].notna()

    customers = orders.set_index("order_id")["customer_id"]
    fact["customer_id"] = fact["order_id"].map(customers)
    fact[["gross_revenue", "discount_amount", "refund_amount", "cogs"]] = fact[
        ["gross_revenue", "discount_amount", "refund_amount", "cogs"]
    ].fillna(0.0)
    fact["line_count"] = fact["line_count"].fillna(0).astype(int)

    fact["row_type"] = "order"
    fact.loc[~has_inflow, "row_type"] = "refund"
    fact.loc[has_inflow & has_refund, "row_type"] = "order_and_refund"

    fact["net_revenue"] = fact["gross_revenue"] - fact["discount_amount"] - fact["refund_amount"]
    fact["gross_margin"] = fact["net_revenue"] - fact["cogs"]
    for col in ["gross_revenue", "discount_amount", "refund_amount", "net_revenue", "cogs", "gross_margin"]:
        fact[col] = round_money(fact[col])
    fact["gross_margin_pct"] = safe_divide(fact["gross_margin"], fact["net_revenue"])

    unmatched = fact["customer_id"].isna() & ~has_inflow
    if unmatched.any():
        logger.warning("%d refund row(s) reference orders not in stg_orders", int(unmatched.sum()))

    fact = fact.sort_values(["revenue_date", "order_id"], kind="mergesort").reset_index(drop=True)
    logger.debug("Built fact_revenue: %d rows", len(fact))
    return fact.loc[:, COLUMNS]
