"""Staging normalizer: raw event records into canonical staging tables.

The transform is pure and order-independent. It keeps no running state,
outputs one row per source event and sorts by event id, so reprocessing a
shuffled batch yields an identical frame.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping

import numpy as np
import pandas as pd

from metrics_core.exceptions import SchemaError
from metrics_core.staging.cleaning_utils import clean_id, to_float, to_snake, to_utc_naive
from metrics_core.staging.schemas import (
    BILLING_PERIOD_ALIASES,
    BILLING_PERIOD_MONTHS,
    REVENUE_TYPES,
    SCHEMAS,
    EventSchema,
)
from metrics_core.utils import MONEY_DECIMALS

logger = logging.getLogger(__name__)

# Number of offending ids quoted in a SchemaError message
_SAMPLE_SIZE = 5


@dataclass
class StagingResult:
    """Output of normalize_sources().

    Attributes:
        tables: Staging table name -> canonical DataFrame, for every source
            that normalized cleanly.
        errors: Source name -> SchemaError, for every source that failed.
    """

    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    errors: dict[str, SchemaError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def _sample(values: pd.Series) -> list:
    return values.head(_SAMPLE_SIZE).tolist()


def normalize_columns(df: pd.DataFrame, schema: EventSchema) -> pd.DataFrame:
    """Snake-case the headers and resolve aliases onto canonical names."""
    out = df.copy()
    out.columns = [to_snake(str(c)) for c in out.columns]
    aliases = schema.aliases()
    rename = {
        col: aliases[col]
        for col in out.columns
        if col in aliases and aliases[col] not in out.columns
    }
    return out.rename(columns=rename)


def empty_table(schema: EventSchema) -> pd.DataFrame:
    """Canonical, zero-row frame for a source that supplied no events."""
    df = pd.DataFrame({col: pd.Series(dtype=object) for col in schema.columns})
    df[schema.timestamp_column] = pd.Series(dtype="datetime64[ns]")
    for col in schema.columns:
        if col in schema.amount_columns or col in ("line_amount", "discount_amount", "period_months"):
            df[col] = pd.Series(dtype=float)
    return df


def _identifier(df: pd.DataFrame, schema: EventSchema, column: str) -> pd.Series:
    values = df[column].map(clean_id)
    bad = values.isna()
    if bad.any():
        raise SchemaError(
            schema.source,
            f"{int(bad.sum())} record(s) with null '{column}' (rows {list(values.index[bad][:_SAMPLE_SIZE])})",
        )
    return values.astype(object)


def _numeric(df: pd.DataFrame, schema: EventSchema, column: str, ids: pd.Series) -> pd.Series:
    values = df[column].map(to_float).astype(float)
    bad = values.isna()
    if bad.any():
        raise SchemaError(
            schema.source,
            f"{int(bad.sum())} record(s) with null or unparseable '{column}' (ids {_sample(ids[bad])})",
        )
    if column in schema.non_negative:
        negative = values < 0
        if negative.any():
            raise SchemaError(
                schema.source,
                f"{int(negative.sum())} record(s) with negative '{column}' (ids {_sample(ids[negative])})",
            )
    return values


def _tag(values: pd.Series, allowed: tuple[str, ...], aliases: Mapping[str, str]) -> pd.Series:
    cleaned = values.map(lambda v: to_snake(str(v)) if isinstance(v, str) else v)
    cleaned = cleaned.map(lambda v: aliases.get(v, v) if isinstance(v, str) else v)
    return cleaned.where(cleaned.isin(allowed))


def normalize_source(source: str, raw: pd.DataFrame) -> pd.DataFrame:
    """Normalize one raw source into its canonical staging table.

    Args:
        source: Raw source name (a key of SCHEMAS).
        raw: Raw records in any supported header spelling.

    Returns:
        Canonical DataFrame with the schema's fixed column order, sorted by
        event id.

    Raises:
        SchemaError: If the source is unknown, a required column is missing,
            a required value is null or unparseable, ids are duplicated, or a
            tag column holds an unknown value.
    """
    schema = SCHEMAS.get(source)
    if schema is None:
        raise SchemaError(source, f"Unknown source. Expected one of {sorted(SCHEMAS)}")

    df = normalize_columns(raw, schema).reset_index(drop=True)

    missing = [col for col in schema.required_columns if col not in df.columns]
    if missing:
        raise SchemaError(source, f"Missing required columns: {missing}")

    if df.empty:
        logger.debug("Source %s is empty", source)
        return empty_table(schema)

    out = pd.DataFrame(index=df.index)
    ids = _identifier(df, schema, schema.id_column)
    out[schema.id_column] = ids

    duplicated = ids.duplicated(keep=False)
    if duplicated.any():
        raise SchemaError(source, f"Duplicate '{schema.id_column}' values: {sorted(set(ids[duplicated]))[:_SAMPLE_SIZE]}")

    for col in schema.key_columns:
        out[col] = _identifier(df, schema, col)

    timestamps = to_utc_naive(df[schema.timestamp_column])
    bad_ts = timestamps.isna()
    if bad_ts.any():
        raise SchemaError(
            source,
            f"{int(bad_ts.sum())} record(s) with null or unparseable '{schema.timestamp_column}' "
            f"(ids {_sample(ids[bad_ts])})",
        )
    out[schema.timestamp_column] = timestamps

    for col in schema.amount_columns:
        out[col] = _numeric(df, schema, col, ids)

    for col, default in schema.optional_columns.items():
        if col not in df.columns:
            out[col] = default
            continue
        if isinstance(default, float):
            values = df[col].map(to_float).astype(float).fillna(default)
            if col in schema.non_negative and (values < 0).any():
                raise SchemaError(source, f"Negative '{col}' values (ids {_sample(ids[values < 0])})")
            out[col] = values
        else:
            values = df[col].map(clean_id)
            out[col] = values.where(values.notna(), default)

    out = _derive(schema, out, ids)

    money_columns = [c for c in schema.columns if c in out.columns and out[c].dtype == float and c != "quantity"]
    for col in money_columns:
        out[col] = out[col].round(MONEY_DECIMALS)

    out = out.loc[:, list(schema.columns)]
    out = out.sort_values(schema.id_column, kind="mergesort").reset_index(drop=True)
    logger.debug("Normalized %s: %d rows", schema.table, len(out))
    return out


def _derive(schema: EventSchema, out: pd.DataFrame, ids: pd.Series) -> pd.DataFrame:
    """Source-specific derived columns and tag validation."""
    if schema.source == "order_lines":
        non_positive = out["quantity"] <= 0
        if non_positive.any():
            raise SchemaError(schema.source, f"Non-positive 'quantity' (ids {_sample(ids[non_positive])})")
        out["line_amount"] = np.round(out["unit_price"] * out["quantity"], MONEY_DECIMALS)

    elif schema.source == "subscription_charges":
        periods = _tag(out["billing_period"], tuple(BILLING_PERIOD_MONTHS), BILLING_PERIOD_ALIASES)
        bad = periods.isna()
        if bad.any():
            raise SchemaError(
                schema.source,
                f"Unknown billing_period values {sorted(set(out.loc[bad, 'billing_period'].astype(str)))} "
                f"(expected {sorted(BILLING_PERIOD_MONTHS)})",
            )
        out["billing_period"] = periods
        out["period_months"] = periods.map(BILLING_PERIOD_MONTHS).astype(int)

        types = _tag(out["revenue_type"], REVENUE_TYPES, {})
        bad = types.isna()
        if bad.any():
            raise SchemaError(
                schema.source,
                f"Unknown revenue_type values {sorted(set(out.loc[bad, 'revenue_type'].astype(str)))} "
                f"(expected {list(REVENUE_TYPES)})",
            )
        out["revenue_type"] = types

    return out


def normalize_sources(raw: Mapping[str, pd.DataFrame]) -> StagingResult:
    """Normalize every raw source independently.

    Sources absent from ``raw`` produce an empty canonical table. A
    SchemaError in one source is collected and does not stop the others.

    Args:
        raw: Raw source name -> raw DataFrame.

    Returns:
        StagingResult with the clean tables and the per-source errors.
    """
    result = StagingResult()
    unknown = sorted(set(raw) - set(SCHEMAS))
    for source in unknown:
        result.errors[source] = SchemaError(source, f"Unknown source. Expected one of {sorted(SCHEMAS)}")

    for source, schema in SCHEMAS.items():
        frame = raw.get(source)
        if frame is None:
            result.tables[schema.table] = empty_table(schema)
            continue
        try:
            result.tables[schema.table] = normalize_source(source, frame)
        except SchemaError as e:
            logger.error("Staging failed for %s: %s", source, e)
            result.errors[source] = e

    logger.info(
        "Staged %d source(s), %d failed",
        len(result.tables),
        len(result.errors),
    )
    return result
