"""Tests for mart builders on the three-month scenario."""

import math

import pandas as pd
import pytest

from metrics_core.exceptions import MissingParameterError
from metrics_core.facts import (
    build_customer_ltv,
    build_fact_channel_attribution,
    build_fact_marketing_spend,
    build_fact_revenue,
    build_fact_subscription_revenue,
    build_first_purchase,
)
from metrics_core.marts import (
    build_cohort_retention,
    build_cohort_sizes,
    build_forecast,
    build_ltv_cac,
    build_marketing_channel_monthly,
    build_marketing_monthly,
    build_recurring_revenue_monthly,
    build_revenue_monthly,
)
from metrics_core.parameters import ParameterStore

PERIOD = "2025-03"


@pytest.fixture
def facts(staged: dict, parameter_store: ParameterStore) -> dict[str, pd.DataFrame]:
    """Fact tables for the scenario."""
    snapshot = parameter_store.snapshot()
    fact_revenue = build_fact_revenue(
        staged["stg_orders"], staged["stg_order_lines"], staged["stg_refunds"], snapshot
    )
    first_purchase = build_first_purchase(fact_revenue)
    return {
        "fact_revenue": fact_revenue,
        "fact_customer_first_purchase": first_purchase,
        "fact_customer_ltv": build_customer_ltv(fact_revenue, first_purchase, staged["stg_subscription_charges"]),
        "fact_subscription_revenue": build_fact_subscription_revenue(staged["stg_subscription_charges"]),
        "fact_marketing_spend": build_fact_marketing_spend(staged["stg_marketing_spend"], snapshot),
        "fact_channel_attribution": build_fact_channel_attribution(fact_revenue, first_purchase, snapshot),
    }


@pytest.fixture
def revenue_monthly(facts: dict) -> pd.DataFrame:
    return build_revenue_monthly(facts["fact_revenue"], through_month=PERIOD)


@pytest.fixture
def marketing_monthly(facts: dict, revenue_monthly: pd.DataFrame) -> pd.DataFrame:
    return build_marketing_monthly(
        facts["fact_marketing_spend"], facts["fact_customer_first_purchase"], revenue_monthly, PERIOD
    )


class TestRevenueMarts:
    """Monthly revenue and recurring revenue."""

    def test_refund_reduces_month_of_refund(self, revenue_monthly: pd.DataFrame) -> None:
        mart = revenue_monthly.set_index("month")
        assert mart["net_revenue"].to_dict() == {"2025-01": 180.0, "2025-02": 150.0, "2025-03": 70.0}
        assert mart.loc["2025-01", "refund_amount"] == 0.0
        assert mart.loc["2025-03", "refund_amount"] == 30.0

    def test_monthly_columns(self, revenue_monthly: pd.DataFrame) -> None:
        feb = revenue_monthly.set_index("month").loc["2025-02"]
        assert feb["order_count"] == 2
        assert feb["cogs"] == 60.0
        assert feb["gross_margin"] == 90.0
        assert feb["gross_margin_pct"] == pytest.approx(0.6)

    def test_calendar_extends_to_reporting_month(self, facts: dict) -> None:
        mart = build_revenue_monthly(facts["fact_revenue"], through_month="2025-05")
        assert mart["month"].tolist() == ["2025-01", "2025-02", "2025-03", "2025-04", "2025-05"]
        quiet = mart.set_index("month").loc["2025-04"]
        assert quiet["net_revenue"] == 0.0
        assert quiet["order_count"] == 0
        assert math.isnan(quiet["gross_margin_pct"]), "Zero net revenue gives a null margin pct"

    def test_mrr_excludes_one_time_and_future_months(self, facts: dict) -> None:
        mart = build_recurring_revenue_monthly(facts["fact_subscription_revenue"], through_month=PERIOD)
        assert mart["month"].tolist() == ["2025-01", "2025-02", "2025-03"]
        assert mart["mrr"].tolist() == [30.0, 10.0, 10.0]
        assert mart["active_subscribers"].tolist() == [1, 1, 1]


class TestMarketingMarts:
    """CAC and ROAS at month and channel-month grain."""

    def test_cac_and_roas(self, marketing_monthly: pd.DataFrame) -> None:
        mart = marketing_monthly.set_index("month")
        assert mart["marketing_spend"].tolist() == [800.0, 400.0, 1000.0]
        assert mart["new_customers"].tolist() == [1, 1, 1]
        assert mart["cac"].tolist() == [800.0, 400.0, 1000.0]
        assert mart["roas"].tolist() == pytest.approx([0.225, 0.375, 0.07])

    def test_spend_without_new_customers_has_null_cac(self) -> None:
        spend = pd.DataFrame(
            {
                "channel": ["search"],
                "spend_date": [pd.Timestamp("2025-04-01")],
                "spend": [1000.0],
                "spend_events": [1],
                "channel_weight": [1.0],
            }
        )
        first_purchase = pd.DataFrame(
            {"customer_id": pd.Series(dtype=object), "first_purchase_month": pd.Series(dtype=object)}
        )
        revenue = pd.DataFrame({"month": pd.Series(dtype=object), "net_revenue": pd.Series(dtype=float)})

        mart = build_marketing_monthly(spend, first_purchase, revenue)
        row = mart.iloc[0]
        assert row["month"] == "2025-04"
        assert row["new_customers"] == 0
        assert math.isnan(row["cac"]), f"Expected null CAC, got {row['cac']}"
        assert row["roas"] == 0.0

    def test_channel_mart(self, facts: dict) -> None:
        mart = build_marketing_channel_monthly(facts["fact_marketing_spend"], facts["fact_channel_attribution"])
        mart = mart.set_index(["channel", "month"])

        search_jan = mart.loc[("search", "2025-01")]
        assert search_jan["channel_spend"] == 500.0
        assert search_jan["attributed_net_revenue"] == pytest.approx(108.0)
        assert search_jan["attributed_new_customers"] == pytest.approx(0.6)
        assert search_jan["channel_cac"] == pytest.approx(500.0 / 0.6)
        assert search_jan["channel_roas"] == pytest.approx(0.216)

        social_feb = mart.loc[("social", "2025-02")]
        assert social_feb["channel_spend"] == 0.0
        assert social_feb["attributed_net_revenue"] == pytest.approx(60.0)
        assert math.isnan(social_feb["channel_roas"])


class TestCohortMarts:
    """Fixed cohort sizes, retention and LTV:CAC."""

    def test_new_cohorts_are_fixed_in_this_period(self, facts: dict) -> None:
        sizes = build_cohort_sizes(facts["fact_customer_first_purchase"], period=PERIOD)
        assert sizes["cohort_month"].tolist() == ["2025-01", "2025-02", "2025-03"]
        assert sizes["cohort_size"].tolist() == [1, 1, 1]
        assert set(sizes["fixed_in_period"]) == {PERIOD}

    def test_prior_sizes_are_reused(self, facts: dict) -> None:
        prior = pd.DataFrame(
            {
                "cohort_month": ["2025-01", "2025-06"],
                "cohort_size": [5, 2],
                "fixed_in_period": ["2025-01", "2025-06"],
                "current_members": [5, 2],
            }
        )
        sizes = build_cohort_sizes(facts["fact_customer_first_purchase"], prior, period=PERIOD)
        jan = sizes.set_index("cohort_month").loc["2025-01"]

        assert jan["cohort_size"] == 5, "Fixed size wins over the recomputed count"
        assert jan["current_members"] == 1
        assert jan["fixed_in_period"] == "2025-01"
        assert "2025-06" not in set(sizes["cohort_month"])

    def test_retention_curve(self, facts: dict) -> None:
        sizes = build_cohort_sizes(facts["fact_customer_first_purchase"], period=PERIOD)
        mart = build_cohort_retention(
            facts["fact_revenue"], facts["fact_customer_first_purchase"], sizes, through_month=PERIOD
        )
        jan = mart[mart["cohort_month"] == "2025-01"]
        assert jan["months_since_start"].tolist() == [0, 1, 2]
        assert jan["active_customers"].tolist() == [1, 1, 0], "A March refund is not activity"
        assert jan["retention_rate"].tolist() == [1.0, 1.0, 0.0]
        assert len(mart) == 6

    def test_retention_divides_by_fixed_size(self, facts: dict) -> None:
        prior = pd.DataFrame(
            {"cohort_month": ["2025-01"], "cohort_size": [5], "fixed_in_period": ["2025-01"], "current_members": [5]}
        )
        sizes = build_cohort_sizes(facts["fact_customer_first_purchase"], prior, period=PERIOD)
        mart = build_cohort_retention(
            facts["fact_revenue"], facts["fact_customer_first_purchase"], sizes, through_month=PERIOD
        )
        first = mart[(mart["cohort_month"] == "2025-01") & (mart["months_since_start"] == 0)].iloc[0]
        assert first["retention_rate"] == pytest.approx(0.2)

    def test_ltv_to_cac(self, facts: dict, marketing_monthly: pd.DataFrame) -> None:
        sizes = build_cohort_sizes(facts["fact_customer_first_purchase"], period=PERIOD)
        mart = build_ltv_cac(facts["fact_customer_ltv"], sizes, marketing_monthly).set_index("cohort_month")

        assert mart.loc["2025-01", "cohort_lifetime_value"] == 305.0
        assert mart.loc["2025-01", "cac"] == 800.0
        assert mart.loc["2025-01", "ltv_to_cac"] == pytest.approx(0.38125)
        assert mart.loc["2025-02", "ltv_to_cac"] == pytest.approx(0.425)

    def test_ltv_to_cac_is_null_without_cac(self, facts: dict, marketing_monthly: pd.DataFrame) -> None:
        sizes = build_cohort_sizes(facts["fact_customer_first_purchase"], period=PERIOD)
        sizes.loc[sizes["cohort_month"] == "2025-02", "cohort_size"] = 0
        no_cac = marketing_monthly.assign(cac=[800.0, 400.0, float("nan")])

        mart = build_ltv_cac(facts["fact_customer_ltv"], sizes, no_cac).set_index("cohort_month")
        assert math.isnan(mart.loc["2025-02", "avg_lifetime_value"])
        assert math.isnan(mart.loc["2025-02", "ltv_to_cac"])
        assert math.isnan(mart.loc["2025-03", "ltv_to_cac"])


class TestForecastMart:
    """Run-rate forecasts from monthly marts."""

    def test_forecast_totals(self, facts: dict, revenue_monthly: pd.DataFrame, parameter_store) -> None:
        recurring = build_recurring_revenue_monthly(facts["fact_subscription_revenue"], through_month=PERIOD)
        mart = build_forecast(
            {"net_revenue": revenue_monthly, "mrr": recurring},
            parameter_store.snapshot(),
            as_of_month=PERIOD,
            cutoff=pd.Timestamp("2025-03-31 23:59:59"),
            metrics=["net_revenue", "mrr"],
        ).set_index("metric")

        assert mart.loc["net_revenue", "trailing_average"] == 133.33
        assert mart.loc["net_revenue", "forecast_total"] == 400.0
        assert mart.loc["mrr", "trailing_average"] == 16.67
        assert mart.loc["mrr", "forecast_total"] == 50.0
        assert mart.loc["mrr", "first_forecast_month"] == "2025-04"
        assert mart.loc["mrr", "last_forecast_month"] == "2025-06"

    def test_missing_window_raises(self, revenue_monthly: pd.DataFrame) -> None:
        store = ParameterStore()
        store.publish("forecast_horizon", "*", 3, "2025-01-01")
        with pytest.raises(MissingParameterError):
            build_forecast(
                {"net_revenue": revenue_monthly},
                store.snapshot(),
                as_of_month=PERIOD,
                cutoff=pd.Timestamp("2025-03-31"),
                metrics=["net_revenue"],
            )
