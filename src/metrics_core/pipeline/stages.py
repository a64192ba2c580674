"""Stage definitions wiring staging, facts and marts into DEFAULT_GRAPH.

Stage functions are thin adapters: they unpack the context and delegate to
the layer builders, so each builder stays a plain function of DataFrames.
"""

from __future__ import annotations

import logging
from typing import Callable

import pandas as pd

from metrics_core import facts, marts
from metrics_core.metrics import METRICS
from metrics_core.pipeline.context import BuildContext
from metrics_core.pipeline.graph import FACTS, MARTS, PARAMETERS, RAW, STAGING, Stage, StageGraph
from metrics_core.staging import SCHEMAS, empty_table, normalize_source

logger = logging.getLogger(__name__)


def _staging_build(source: str) -> Callable[..., pd.DataFrame]:
    schema = SCHEMAS[source]

    def build(ctx: BuildContext, **inputs: pd.DataFrame | None) -> pd.DataFrame:
        raw = inputs[source]
        if raw is None:
            return empty_table(schema)
        staged = normalize_source(source, raw)
        late = staged[schema.timestamp_column] > ctx.cutoff
        if late.any():
            logger.info("Excluding %d %s event(s) after cutoff %s", int(late.sum()), source, ctx.cutoff)
            staged = staged[~late].reset_index(drop=True)
        return staged

    return build


def _parameter_snapshot(ctx: BuildContext) -> pd.DataFrame:
    return ctx.parameters.to_frame()


def _fact_revenue(ctx, stg_orders, stg_order_lines, stg_refunds):
    return facts.build_fact_revenue(stg_orders, stg_order_lines, stg_refunds, ctx.parameters)


def _fact_first_purchase(ctx, fact_revenue):
    return facts.build_first_purchase(fact_revenue)


def _fact_customer_ltv(ctx, fact_revenue, fact_customer_first_purchase, stg_subscription_charges):
    return facts.build_customer_ltv(fact_revenue, fact_customer_first_purchase, stg_subscription_charges)


def _fact_subscription_revenue(ctx, stg_subscription_charges):
    return facts.build_fact_subscription_revenue(stg_subscription_charges)


def _fact_marketing_spend(ctx, stg_marketing_spend):
    return facts.build_fact_marketing_spend(stg_marketing_spend, ctx.parameters)


def _fact_channel_attribution(ctx, fact_revenue, fact_customer_first_purchase):
    return facts.build_fact_channel_attribution(fact_revenue, fact_customer_first_purchase, ctx.parameters)


def _mart_revenue_monthly(ctx, fact_revenue):
    return marts.build_revenue_monthly(fact_revenue, through_month=ctx.period)


def _mart_recurring_revenue_monthly(ctx, fact_subscription_revenue):
    return marts.build_recurring_revenue_monthly(fact_subscription_revenue, through_month=ctx.period)


def _mart_marketing_monthly(ctx, fact_marketing_spend, fact_customer_first_purchase, mart_revenue_monthly):
    return marts.build_marketing_monthly(
        fact_marketing_spend, fact_customer_first_purchase, mart_revenue_monthly, through_month=ctx.period
    )


def _mart_marketing_channel_monthly(ctx, fact_marketing_spend, fact_channel_attribution):
    return marts.build_marketing_channel_monthly(fact_marketing_spend, fact_channel_attribution)


def _mart_cohort_sizes(ctx, fact_customer_first_purchase):
    return marts.build_cohort_sizes(fact_customer_first_purchase, ctx.prior_cohort_sizes, period=ctx.period)


def _mart_cohort_retention(ctx, fact_revenue, fact_customer_first_purchase, mart_cohort_sizes):
    return marts.build_cohort_retention(
        fact_revenue, fact_customer_first_purchase, mart_cohort_sizes, through_month=ctx.period
    )


def _mart_ltv_cac(ctx, fact_customer_ltv, mart_cohort_sizes, mart_marketing_monthly):
    return marts.build_ltv_cac(fact_customer_ltv, mart_cohort_sizes, mart_marketing_monthly)


def _mart_forecast(ctx, mart_revenue_monthly, mart_recurring_revenue_monthly):
    tables = {
        "mart_revenue_monthly": mart_revenue_monthly,
        "mart_recurring_revenue_monthly": mart_recurring_revenue_monthly,
    }
    monthly = {metric: tables[METRICS[metric].table] for metric in ctx.config.forecast_metrics}
    return marts.build_forecast(
        monthly,
        ctx.parameters,
        as_of_month=ctx.period,
        cutoff=ctx.cutoff,
        metrics=list(ctx.config.forecast_metrics),
    )


RAW_SOURCES: dict[str, str] = {source: RAW for source in SCHEMAS}

STAGES: list[Stage] = [
    *[Stage(schema.table, STAGING, (source,), _staging_build(source)) for source, schema in SCHEMAS.items()],
    Stage("parameter_snapshot", PARAMETERS, (), _parameter_snapshot),
    Stage("fact_revenue", FACTS, ("stg_orders", "stg_order_lines", "stg_refunds"), _fact_revenue),
    Stage("fact_customer_first_purchase", FACTS, ("fact_revenue",), _fact_first_purchase),
    Stage(
        "fact_customer_ltv",
        FACTS,
        ("fact_revenue", "fact_customer_first_purchase", "stg_subscription_charges"),
        _fact_customer_ltv,
    ),
    Stage("fact_subscription_revenue", FACTS, ("stg_subscription_charges",), _fact_subscription_revenue),
    Stage("fact_marketing_spend", FACTS, ("stg_marketing_spend",), _fact_marketing_spend),
    Stage(
        "fact_channel_attribution",
        FACTS,
        ("fact_revenue", "fact_customer_first_purchase"),
        _fact_channel_attribution,
    ),
    Stage("mart_revenue_monthly", MARTS, ("fact_revenue",), _mart_revenue_monthly),
    Stage(
        "mart_recurring_revenue_monthly",
        MARTS,
        ("fact_subscription_revenue",),
        _mart_recurring_revenue_monthly,
    ),
    Stage(
        "mart_marketing_monthly",
        MARTS,
        ("fact_marketing_spend", "fact_customer_first_purchase", "mart_revenue_monthly"),
        _mart_marketing_monthly,
    ),
    Stage(
        "mart_marketing_channel_monthly",
        MARTS,
        ("fact_marketing_spend", "fact_channel_attribution"),
        _mart_marketing_channel_monthly,
    ),
    Stage("mart_cohort_sizes", MARTS, ("fact_customer_first_purchase",), _mart_cohort_sizes),
    Stage(
        "mart_cohort_retention",
        MARTS,
        ("fact_revenue", "fact_customer_first_purchase", "mart_cohort_sizes"),
        _mart_cohort_retention,
    ),
    Stage(
        "mart_ltv_cac",
        MARTS,
        ("fact_customer_ltv", "mart_cohort_sizes", "mart_marketing_monthly"),
        _mart_ltv_cac,
    ),
    Stage(
        "mart_forecast",
        MARTS,
        ("mart_revenue_monthly", "mart_recurring_revenue_monthly"),
        _mart_forecast,
    ),
]

DEFAULT_GRAPH = StageGraph(STAGES, sources=RAW_SOURCES)
