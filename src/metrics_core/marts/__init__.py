"""Mart layer - Metric tables at reporting grain.

Marts read facts (and, where declared, earlier marts) and never staging or
raw events. Ratio columns go through the metric registry's null-safe
division.

Tables
------
- ``mart_revenue_monthly`` (month)
- ``mart_recurring_revenue_monthly`` (month)
- ``mart_marketing_monthly`` (month)
- ``mart_marketing_channel_monthly`` (channel, month)
- ``mart_cohort_sizes`` (cohort_month)
- ``mart_cohort_retention`` (cohort_month, activity_month)
- ``mart_ltv_cac`` (cohort_month)
- ``mart_forecast`` (metric)
"""

from metrics_core.marts.cohorts import build_cohort_retention, build_cohort_sizes, build_ltv_cac
from metrics_core.marts.forecast import build_forecast
from metrics_core.marts.marketing import build_marketing_channel_monthly, build_marketing_monthly
from metrics_core.marts.revenue import build_recurring_revenue_monthly, build_revenue_monthly

__all__ = [
    "build_cohort_retention",
    "build_cohort_sizes",
    "build_forecast",
    "build_ltv_cac",
    "build_marketing_channel_monthly",
    "build_marketing_monthly",
    "build_recurring_revenue_monthly",
    "build_revenue_monthly",
]
