"""Fact layer - Transaction-grain facts built from staged events.

Every fact has one fixed, explicit grain. Nothing is aggregated at a finer
grain and silently rolled up later.

Core facts
----------
1. **Revenue** (``fact_revenue``):
   - Grain: ``(order_id, revenue_date)``
   - One inflow row per order at its order date (lines summed first)
   - One outflow row per order per refund date (refunds at their own date)
   - Joins ``product_cost`` for cost of goods

2. **First purchase** (``fact_customer_first_purchase``):
   - Grain: ``customer_id``
   - The single authoritative new-customer derivation

3. **Customer LTV** (``fact_customer_ltv``):
   - Grain: ``customer_id``

4. **Subscription revenue** (``fact_subscription_revenue``):
   - Grain: ``(charge_id, revenue_month)``
   - Recurring charges normalized to monthly amounts

5. **Marketing spend** (``fact_marketing_spend``):
   - Grain: ``(channel, spend_date)``
   - Joins ``channel_weight``

6. **Channel attribution** (``fact_channel_attribution``):
   - Grain: ``(channel, activity_date)``
   - Static-weight attribution of net revenue and new customers
"""

from metrics_core.facts.customers import build_customer_ltv, build_first_purchase
from metrics_core.facts.marketing import build_fact_channel_attribution, build_fact_marketing_spend
from metrics_core.facts.revenue import build_fact_revenue
from metrics_core.facts.subscriptions import build_fact_subscription_revenue

__all__ = [
    "build_customer_ltv",
    "build_fact_channel_attribution",
    "build_fact_marketing_spend",
    "build_fact_revenue",
    "build_fact_subscription_revenue",
    "build_first_purchase",
]
