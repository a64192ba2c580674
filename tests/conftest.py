"""Shared fixtures: a small three-month business used across test modules.

Scenario (period 2025-03):

- C1 orders in January (gross 200, discount 20) and February (100); part of
  the January order is refunded in March (30).
- C2 orders in February (50); C3 orders in March (100).
- Product costs: SKU-1 = 20, SKU-2 = 40. Channel weights: search 0.6,
  social 0.4. Forecast window and horizon: 3 months for every metric.

Expected monthly net revenue: Jan 180, Feb 150, Mar 70.
"""

from __future__ import annotations

import pandas as pd
import pytest

from metrics_core.parameters import ParameterStore


@pytest.fixture
def raw_orders() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "order_id": ["O1", "O2", "O3", "O4"],
            "customer_id": ["C1", "C2", "C1", "C3"],
            "ordered_at": ["2025-01-10 10:00", "2025-02-05 09:30", "2025-02-20 18:00", "2025-03-10 12:00"],
            "channel": ["search", "social", "search", "search"],
            "discount_amount": [20.0, 0.0, 0.0, 0.0],
        }
    )


@pytest.fixture
def raw_order_lines() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "line_id": ["L1", "L2", "L3", "L4", "L5"],
            "order_id": ["O1", "O1", "O2", "O3", "O4"],
            "product_id": ["SKU-2", "SKU-1", "SKU-1", "SKU-2", "SKU-1"],
            "ordered_at": [
                "2025-01-10 10:00",
                "2025-01-10 10:00",
                "2025-02-05 09:30",
                "2025-02-20 18:00",
                "2025-03-10 12:00",
            ],
            "unit_price": [100.0, 50.0, 50.0, 100.0, 50.0],
            "quantity": [1, 2, 1, 1, 2],
        }
    )


@pytest.fixture
def raw_refunds() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "refund_id": ["R1"],
            "order_id": ["O1"],
            "refunded_at": ["2025-03-03 08:00"],
            "amount": [30.0],
        }
    )


@pytest.fixture
def raw_subscription_charges() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "charge_id": ["S1", "S2", "S3"],
            "customer_id": ["C1", "C2", "C1"],
            "charged_at": ["2025-01-01", "2025-02-01", "2025-02-15"],
            "amount": [30.0, 120.0, 25.0],
            "billing_period": ["monthly", "annual", "monthly"],
            "revenue_type": ["recurring", "recurring", "one_time"],
        }
    )


@pytest.fixture
def raw_marketing_spend() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "spend_id": ["M1", "M2", "M3", "M4"],
            "channel": ["search", "social", "search", "search"],
            "spent_at": ["2025-01-05", "2025-01-06", "2025-02-01", "2025-03-01"],
            "amount": [500.0, 300.0, 400.0, 1000.0],
        }
    )


@pytest.fixture
def raw_events(
    raw_orders: pd.DataFrame,
    raw_order_lines: pd.DataFrame,
    raw_refunds: pd.DataFrame,
    raw_subscription_charges: pd.DataFrame,
    raw_marketing_spend: pd.DataFrame,
) -> dict[str, pd.DataFrame]:
    return {
        "orders": raw_orders,
        "order_lines": raw_order_lines,
        "refunds": raw_refunds,
        "subscription_charges": raw_subscription_charges,
        "marketing_spend": raw_marketing_spend,
    }


@pytest.fixture
def parameter_store() -> ParameterStore:
    store = ParameterStore()
    store.publish("product_cost", "SKU-1", 20.0, "2025-01-01")
    store.publish("product_cost", "SKU-2", 40.0, "2025-01-01")
    store.publish("channel_weight", "search", 0.6, "2025-01-01")
    store.publish("channel_weight", "social", 0.4, "2025-01-01")
    store.publish("forecast_window", "*", 3, "2025-01-01")
    store.publish("forecast_horizon", "*", 3, "2025-01-01")
    return store


@pytest.fixture
def staged(raw_events: dict[str, pd.DataFrame]) -> dict[str, pd.DataFrame]:
    """Canonical staging tables for the scenario."""
    from metrics_core.staging import normalize_sources

    result = normalize_sources(raw_events)
    assert result.ok, f"Scenario should stage cleanly: {result.errors}"
    return result.tables


@pytest.fixture
def scenario_build(raw_events: dict[str, pd.DataFrame], parameter_store: ParameterStore):
    """One published build of period 2025-03 into a fresh in-memory store."""
    from metrics_core.pipeline import run_build
    from metrics_core.store import MetricsStore

    store = MetricsStore()
    result = run_build(raw_events, store, "2025-03", parameter_store)
    return store, result
