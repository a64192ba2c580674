"""Metric registry.

Defines the canonical set of governed metrics. Every metric declares the
table that holds it, its grain, how it is computed and the upstream tables
or metrics it depends on, so the dependency order is known statically.

Each metric has exactly one grain. Channel-level variants are separate
metrics (``channel_cac``, ``channel_roas``), not overloads of ``cac`` and
``roas``.

Ratio metrics are computed only through ``MetricDefinition.compute_ratio``,
which applies the null-safe division policy.
"""

from __future__ import annotations

from dataclasses import dataclass
from graphlib import TopologicalSorter

import pandas as pd

from metrics_core.utils import safe_divide

SUM = "sum"
COUNT_DISTINCT = "count_distinct"
RATIO = "ratio"
FORECAST = "forecast"

MONTH = ("month",)
CHANNEL_MONTH = ("channel", "month")
COHORT = ("cohort_month",)
COHORT_ACTIVITY = ("cohort_month", "activity_month")


@dataclass(frozen=True)
class MetricDefinition:
    """Describes a single metric.

    Attributes:
        name: Metric name; also the column that holds it in ``table``.
        table: Mart table holding the metric.
        grain: Key columns of ``table``.
        kind: One of sum, count_distinct, ratio, forecast.
        depends_on: Upstream tables and/or metric names.
        numerator: Numerator column (ratios only).
        denominator: Denominator column (ratios only).
        unit: Display unit.
        description: Business definition.
    """

    name: str
    table: str
    grain: tuple[str, ...]
    kind: str
    depends_on: tuple[str, ...]
    numerator: str | None = None
    denominator: str | None = None
    unit: str = ""
    description: str = ""

    def compute_ratio(self, frame: pd.DataFrame) -> pd.Series:
        """Evaluate a ratio metric over a frame holding its inputs.

        A zero or null denominator yields NaN for that row.

        Raises:
            ValueError: If the metric is not a ratio.
        """
        if self.kind != RATIO or self.numerator is None or self.denominator is None:
            raise ValueError(f"Metric '{self.name}' is not a ratio")
        return safe_divide(frame[self.numerator], frame[self.denominator])

    def __repr__(self) -> str:
        return f"<Metric {self.name} ({self.kind}) @ {self.table}{list(self.grain)}>"


_DEFINITIONS = [
    # Revenue
    MetricDefinition("gross_revenue", "mart_revenue_monthly", MONTH, SUM, ("fact_revenue",),
                     unit="currency", description="Sum of order line amounts, counted once per order"),
    MetricDefinition("discount_amount", "mart_revenue_monthly", MONTH, SUM, ("fact_revenue",),
                     unit="currency", description="Order-level discounts at order date"),
    MetricDefinition("refund_amount", "mart_revenue_monthly", MONTH, SUM, ("fact_revenue",),
                     unit="currency", description="Refunds at their own refund date"),
    MetricDefinition("net_revenue", "mart_revenue_monthly", MONTH, SUM,
                     ("gross_revenue", "discount_amount", "refund_amount"),
                     unit="currency", description="Gross revenue minus discounts minus refunds"),
    MetricDefinition("cogs", "mart_revenue_monthly", MONTH, SUM, ("fact_revenue",),
                     unit="currency", description="Quantity times effective product cost"),
    MetricDefinition("gross_margin", "mart_revenue_monthly", MONTH, SUM, ("net_revenue", "cogs"),
                     unit="currency", description="Net revenue minus cost of goods"),
    MetricDefinition("gross_margin_pct", "mart_revenue_monthly", MONTH, RATIO,
                     ("gross_margin", "net_revenue"), numerator="gross_margin", denominator="net_revenue",
                     unit="ratio", description="Gross margin over net revenue"),
    MetricDefinition("order_count", "mart_revenue_monthly", MONTH, COUNT_DISTINCT, ("fact_revenue",),
                     unit="count", description="Distinct orders placed in the month"),
    # Recurring revenue
    MetricDefinition("mrr", "mart_recurring_revenue_monthly", MONTH, SUM, ("fact_subscription_revenue",),
                     unit="currency", description="Recurring charges normalized to a monthly amount"),
    MetricDefinition("active_subscribers", "mart_recurring_revenue_monthly", MONTH, COUNT_DISTINCT,
                     ("fact_subscription_revenue",), unit="count",
                     description="Distinct customers with recurring revenue in the month"),
    # Marketing (month grain)
    MetricDefinition("marketing_spend", "mart_marketing_monthly", MONTH, SUM, ("fact_marketing_spend",),
                     unit="currency", description="Total marketing spend"),
    MetricDefinition("new_customers", "mart_marketing_monthly", MONTH, COUNT_DISTINCT,
                     ("fact_customer_first_purchase",), unit="count",
                     description="Customers whose first purchase falls in the month"),
    MetricDefinition("cac", "mart_marketing_monthly", MONTH, RATIO, ("marketing_spend", "new_customers"),
                     numerator="marketing_spend", denominator="new_customers", unit="currency",
                     description="Customer acquisition cost"),
    MetricDefinition("roas", "mart_marketing_monthly", MONTH, RATIO, ("net_revenue", "marketing_spend"),
                     numerator="net_revenue", denominator="marketing_spend", unit="ratio",
                     description="Return on ad spend"),
    # Marketing (channel-month grain)
    MetricDefinition("channel_spend", "mart_marketing_channel_monthly", CHANNEL_MONTH, SUM,
                     ("fact_marketing_spend",), unit="currency", description="Spend per channel"),
    MetricDefinition("attributed_net_revenue", "mart_marketing_channel_monthly", CHANNEL_MONTH, SUM,
                     ("fact_channel_attribution",), unit="currency",
                     description="Net revenue credited to the channel by static weight"),
    MetricDefinition("attributed_new_customers", "mart_marketing_channel_monthly", CHANNEL_MONTH, SUM,
                     ("fact_channel_attribution",), unit="count",
                     description="New customers credited to the channel by static weight"),
    MetricDefinition("channel_cac", "mart_marketing_channel_monthly", CHANNEL_MONTH, RATIO,
                     ("channel_spend", "attributed_new_customers"), numerator="channel_spend",
                     denominator="attributed_new_customers", unit="currency",
                     description="Channel acquisition cost"),
    MetricDefinition("channel_roas", "mart_marketing_channel_monthly", CHANNEL_MONTH, RATIO,
                     ("attributed_net_revenue", "channel_spend"), numerator="attributed_net_revenue",
                     denominator="channel_spend", unit="ratio", description="Channel return on ad spend"),
    # Cohorts and lifetime value
    MetricDefinition("cohort_size", "mart_cohort_sizes", COHORT, COUNT_DISTINCT,
                     ("fact_customer_first_purchase",), unit="count",
                     description="Customers in the cohort, fixed when the cohort is first built"),
    MetricDefinition("active_customers", "mart_cohort_retention", COHORT_ACTIVITY, COUNT_DISTINCT,
                     ("fact_revenue", "fact_customer_first_purchase"), unit="count",
                     description="Cohort members with an order in the activity month"),
    MetricDefinition("retention_rate", "mart_cohort_retention", COHORT_ACTIVITY, RATIO,
                     ("active_customers", "cohort_size"), numerator="active_customers",
                     denominator="cohort_size", unit="ratio",
                     description="Active customers over the fixed cohort size"),
    MetricDefinition("cohort_lifetime_value", "mart_ltv_cac", COHORT, SUM, ("fact_customer_ltv",),
                     unit="currency", description="Lifetime value summed over the cohort"),
    MetricDefinition("avg_lifetime_value", "mart_ltv_cac", COHORT, RATIO,
                     ("cohort_lifetime_value", "cohort_size"), numerator="cohort_lifetime_value",
                     denominator="cohort_size", unit="currency",
                     description="Average lifetime value per cohort member"),
    MetricDefinition("ltv_to_cac", "mart_ltv_cac", COHORT, RATIO, ("avg_lifetime_value", "cac"),
                     numerator="avg_lifetime_value", denominator="cac", unit="ratio",
                     description="Average lifetime value over the cohort month's CAC"),
    # Forecast
    MetricDefinition("forecast_total", "mart_forecast", ("metric",), FORECAST, ("net_revenue", "mrr"),
                     unit="currency", description="Trailing-window average times horizon length"),
]

METRICS: dict[str, MetricDefinition] = {m.name: m for m in _DEFINITIONS}

# Declared grain of every fact and mart table.
TABLE_GRAINS: dict[str, tuple[str, ...]] = {
    "fact_revenue": ("order_id", "revenue_date"),
    "fact_customer_first_purchase": ("customer_id",),
    "fact_customer_ltv": ("customer_id",),
    "fact_subscription_revenue": ("charge_id", "revenue_month"),
    "fact_marketing_spend": ("channel", "spend_date"),
    "fact_channel_attribution": ("channel", "activity_date"),
    **{m.table: m.grain for m in _DEFINITIONS},
}


def metrics_for_table(table: str) -> list[MetricDefinition]:
    return [m for m in _DEFINITIONS if m.table == table]


def resolution_order(metrics: dict[str, MetricDefinition] | None = None) -> list[str]:
    """Metric names in dependency order (upstream first).

    Table dependencies are leaves and are not included in the result.

    Raises:
        graphlib.CycleError: If the declarations are cyclic.
    """
    metrics = METRICS if metrics is None else metrics
    sorter: TopologicalSorter = TopologicalSorter()
    for name in sorted(metrics):
        sorter.add(name, *[d for d in metrics[name].depends_on if d in metrics])
    return list(sorter.static_order())


def upstream_tables(name: str, metrics: dict[str, MetricDefinition] | None = None) -> set[str]:
    """All tables a metric transitively depends on."""
    metrics = METRICS if metrics is None else metrics
    seen: set[str] = set()
    tables: set[str] = set()
    stack = [name]
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        for dep in metrics[current].depends_on:
            if dep in metrics:
                stack.append(dep)
            else:
                tables.add(dep)
    return tables
