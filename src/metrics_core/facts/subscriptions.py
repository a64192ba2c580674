"""Fact layer: subscription revenue at (charge_id, revenue_month) grain.

Recurring charges are spread over the months they pay for: a monthly charge
is one row, a quarterly charge three rows, an annual charge twelve. Each row
carries the monthly-normalized amount. The last month absorbs the rounding
remainder so the parts of a charge always sum back to the charge.

One-time charges keep a single row in their charge month and stay tagged
``one_time`` so recurring aggregates can exclude them by tag.
"""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd

from metrics_core.staging.schemas import RECURRING
from metrics_core.utils import MONEY_DECIMALS

logger = logging.getLogger(__name__)

GRAIN = ("charge_id", "revenue_month")

COLUMNS = [
    "charge_id",
    "customer_id",
    "charged_at",
    "revenue_month",
    "month_index",
    "billing_period",
    "period_months",
    "revenue_type",
    "monthly_amount",
]


def build_fact_subscription_revenue(subscription_charges: pd.DataFrame) -> pd.DataFrame:
    """Expand stg_subscription_charges into monthly revenue rows."""
    charges = subscription_charges.copy()
    charges["span"] = np.where(charges["revenue_type"] == RECURRING, charges["period_months"], 1)
    charges["span"] = charges["span"].astype(int)

    expanded = charges.loc[charges.index.repeat(charges["span"])].copy()
    expanded["month_index"] = expanded.groupby(level=0).cumcount().astype(int)
    expanded = expanded.reset_index(drop=True)

    base = (expanded["amount"] / expanded["span"]).round(MONEY_DECIMALS)
    remainder = (expanded["amount"] - base * (expanded["span"] - 1)).round(MONEY_DECIMALS)
    is_last = expanded["month_index"] == expanded["span"] - 1
    expanded["monthly_amount"] = base.where(~is_last, remainder).astype(float)

    start = expanded["charged_at"].dt.year * 12 + expanded["charged_at"].dt.month - 1
    absolute = (start + expanded["month_index"]).astype(int)
    expanded["revenue_month"] = [f"{m // 12:04d}-{m % 12 + 1:02d}" for m in absolute]

    fact = expanded.sort_values(["charge_id", "month_index"], kind="mergesort").reset_index(drop=True)
    logger.debug("Built fact_subscription_revenue: %d rows from %d charges", len(fact), len(charges))
    return fact.loc[:, COLUMNS]
