"""Staging layer - Canonical event tables, one row per source event.

This layer handles record cleaning and standardization:
- Normalize headers and resolve common aliases
- Parse ids, timestamps and money values
- Reject records missing an id, a timestamp or an amount (SchemaError)
- Tag billing periods and recurring / one-time revenue types

No aggregation happens here. Staged tables and their grain:

1. ``stg_orders``: one row per order (``order_id``)
2. ``stg_order_lines``: one row per order line (``line_id``); multiple rows
   share an ``order_id``
3. ``stg_refunds``: one row per refund event (``refund_id``)
4. ``stg_subscription_charges``: one row per charge (``charge_id``)
5. ``stg_marketing_spend``: one row per spend event (``spend_id``)
"""

from metrics_core.staging.cleaning_utils import clean_id, strip_invisibles, to_float, to_snake
from metrics_core.staging.normalizer import (
    StagingResult,
    empty_table,
    normalize_source,
    normalize_sources,
)
from metrics_core.staging.schemas import SCHEMAS, EventSchema

__all__ = [
    "EventSchema",
    "SCHEMAS",
    "StagingResult",
    "clean_id",
    "empty_table",
    "normalize_source",
    "normalize_sources",
    "strip_invisibles",
    "to_float",
    "to_snake",
]
