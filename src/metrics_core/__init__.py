"""Metrics Core - governed business-metrics derivation and validation.

This package turns raw transactional events into revenue, marketing,
customer and forecast metrics, and refuses to serve numbers that fail their
invariants. Data moves through explicitly layered tables:

- **Staging**: canonical, typed copies of each raw event source
- **Facts**: transaction-grain tables with one declared grain each
- **Marts**: metric tables at reporting grain (month, channel-month, cohort)

Module Structure:
    metrics_core.staging: Raw events into canonical staging tables
    metrics_core.parameters: Versioned, time-ranged parameter store
    metrics_core.facts: Fact builders
    metrics_core.marts: Mart builders
    metrics_core.metrics: Metric registry (grain, kind, dependencies)
    metrics_core.forecasting: Run-rate forecast model
    metrics_core.qa: Declarative checks and the validation engine
    metrics_core.pipeline: Stage DAG and the build runner
    metrics_core.store: Last-known-good serving of published builds
    metrics_core.audit: Append-only record of builds and check results

Quick Start:
    >>> from metrics_core import MetricsStore, ParameterStore, run_build
    >>>
    >>> params = ParameterStore()
    >>> params.publish("product_cost", "SKU-1", 4.0, "2025-01-01")
    >>> params.publish("channel_weight", "search", 1.0, "2025-01-01")
    >>> params.publish("forecast_window", "*", 3, "2025-01-01")
    >>> params.publish("forecast_horizon", "*", 3, "2025-01-01")
    >>>
    >>> store = MetricsStore()
    >>> result = run_build(raw_events, store, "2025-03", params)
    >>> store.read("2025-03", "mart_revenue_monthly").frame

Grain Reference:
    Facts:
        - fact_revenue: order_id x revenue_date
        - fact_customer_first_purchase / fact_customer_ltv: customer_id
        - fact_subscription_revenue: charge_id x revenue_month
        - fact_marketing_spend: channel x spend_date
        - fact_channel_attribution: channel x activity_date

    Marts:
        - mart_*_monthly: month (channel x month for the channel mart)
        - mart_cohort_sizes / mart_ltv_cac: cohort_month
        - mart_cohort_retention: cohort_month x activity_month
        - mart_forecast: metric
"""

__version__ = "0.1.0"

from metrics_core.audit import AuditLog, BuildRecord
from metrics_core.config import DataPaths, PipelineConfig
from metrics_core.exceptions import (
    BuildLockError,
    ConfigError,
    ETLError,
    MetricsCoreError,
    MissingParameterError,
    SchemaError,
    TableNotFoundError,
)
from metrics_core.metrics import METRICS, MetricDefinition
from metrics_core.parameters import ParameterStore
from metrics_core.pipeline import DEFAULT_GRAPH, BuildResult, run_build
from metrics_core.qa import BuildStatus, Severity, ValidationEngine
from metrics_core.store import MetricsStore, QueryResult

__all__ = [
    "AuditLog",
    "BuildLockError",
    "BuildRecord",
    "BuildResult",
    "BuildStatus",
    "ConfigError",
    "DEFAULT_GRAPH",
    "DataPaths",
    "ETLError",
    "METRICS",
    "MetricDefinition",
    "MetricsCoreError",
    "MetricsStore",
    "MissingParameterError",
    "ParameterStore",
    "PipelineConfig",
    "QueryResult",
    "SchemaError",
    "Severity",
    "TableNotFoundError",
    "ValidationEngine",
    "__version__",
    "run_build",
]
