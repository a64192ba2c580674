"""Canonical schemas for staged events.

Each raw source maps to one staging table with a fixed column order. The
schema names the event id, the event timestamp, the amount columns and the
other keys a record must carry; anything missing is a SchemaError.
"""

from __future__ import annotations

from dataclasses import dataclass, field

BILLING_PERIOD_MONTHS = {
    "monthly": 1,
    "quarterly": 3,
    "semiannual": 6,
    "annual": 12,
}

BILLING_PERIOD_ALIASES = {
    "month": "monthly",
    "quarter": "quarterly",
    "semi_annual": "semiannual",
    "yearly": "annual",
    "year": "annual",
}

RECURRING = "recurring"
ONE_TIME = "one_time"
REVENUE_TYPES = (RECURRING, ONE_TIME)

# Common source header spellings mapped to canonical column names.
COLUMN_ALIASES = {
    "price": "unit_price",
    "qty": "quantity",
    "customer": "customer_id",
    "product": "product_id",
    "sku": "product_id",
    "discount": "discount_amount",
    "period": "billing_period",
    "type": "revenue_type",
}

# Generic headers that resolve to each source's own id / timestamp column.
GENERIC_ID_COLUMN = "id"
GENERIC_TIMESTAMP_COLUMNS = ("created_at", "timestamp", "event_time")


@dataclass(frozen=True)
class EventSchema:
    """Declared shape of one staged event type.

    Attributes:
        source: Raw source name (key of the raw input mapping).
        table: Staging table name.
        id_column: Event id; unique within the source.
        timestamp_column: Event time; every event has exactly one.
        amount_columns: Numeric columns that must be present and non-null.
        key_columns: Other identifiers that must be present and non-null.
        optional_columns: Columns filled with a default when absent or null.
        non_negative: Numeric columns that may not be negative.
        columns: Output column order.
    """

    source: str
    table: str
    id_column: str
    timestamp_column: str
    amount_columns: tuple[str, ...]
    key_columns: tuple[str, ...] = ()
    optional_columns: dict[str, object] = field(default_factory=dict)
    non_negative: tuple[str, ...] = ()
    columns: tuple[str, ...] = ()

    @property
    def required_columns(self) -> tuple[str, ...]:
        return (self.id_column, self.timestamp_column, *self.amount_columns, *self.key_columns)

    def aliases(self) -> dict[str, str]:
        """Alias map for this source, including its generic id/timestamp headers."""
        mapping = dict(COLUMN_ALIASES)
        mapping[GENERIC_ID_COLUMN] = self.id_column
        for name in GENERIC_TIMESTAMP_COLUMNS:
            mapping[name] = self.timestamp_column
        return mapping


ORDERS = EventSchema(
    source="orders",
    table="stg_orders",
    id_column="order_id",
    timestamp_column="ordered_at",
    amount_columns=(),
    key_columns=("customer_id",),
    optional_columns={"discount_amount": 0.0, "channel": None},
    non_negative=("discount_amount",),
    columns=("order_id", "customer_id", "ordered_at", "channel", "discount_amount"),
)

ORDER_LINES = EventSchema(
    source="order_lines",
    table="stg_order_lines",
    id_column="line_id",
    timestamp_column="ordered_at",
    amount_columns=("unit_price", "quantity"),
    key_columns=("order_id", "product_id"),
    non_negative=("unit_price",),
    columns=(
        "line_id",
        "order_id",
        "product_id",
        "ordered_at",
        "unit_price",
        "quantity",
        "line_amount",
    ),
)

REFUNDS = EventSchema(
    source="refunds",
    table="stg_refunds",
    id_column="refund_id",
    timestamp_column="refunded_at",
    amount_columns=("amount",),
    key_columns=("order_id",),
    non_negative=("amount",),
    columns=("refund_id", "order_id", "refunded_at", "amount"),
)

SUBSCRIPTION_CHARGES = EventSchema(
    source="subscription_charges",
    table="stg_subscription_charges",
    id_column="charge_id",
    timestamp_column="charged_at",
    amount_columns=("amount",),
    key_columns=("customer_id",),
    optional_columns={"billing_period": "monthly", "revenue_type": RECURRING},
    non_negative=("amount",),
    columns=(
        "charge_id",
        "customer_id",
        "charged_at",
        "amount",
        "billing_period",
        "period_months",
        "revenue_type",
    ),
)

MARKETING_SPEND = EventSchema(
    source="marketing_spend",
    table="stg_marketing_spend",
    id_column="spend_id",
    timestamp_column="spent_at",
    amount_columns=("amount",),
    key_columns=("channel",),
    non_negative=("amount",),
    columns=("spend_id", "channel", "spent_at", "amount"),
)

SCHEMAS: dict[str, EventSchema] = {
    s.source: s for s in (ORDERS, ORDER_LINES, REFUNDS, SUBSCRIPTION_CHARGES, MARKETING_SPEND)
}
