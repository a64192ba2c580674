"""Shared utilities for the metrics pipeline.

This module provides reusable helpers used across layers:

- Date parsing and month bucketing
- Money rounding
- Null-safe division (the single division policy for every ratio metric)
- Deterministic fingerprints of table sets (idempotence checks)

Examples:
    >>> safe_divide(1000.0, 0)
    >>> safe_divide(10, 4)
    2.5

"""

from __future__ import annotations

import hashlib
import math
from datetime import date
from typing import Any, Iterable, Mapping

import numpy as np
import pandas as pd

MONEY_DECIMALS = 2


def parse_date(value: str) -> date:
    """Read an ISO ``YYYY-MM-DD`` day, as stored in parameter records.

        >>> parse_date("2025-03-31")
        datetime.date(2025, 3, 31)

    A malformed day raises ValueError.
    """
    return date.fromisoformat(value)


def format_duration(seconds: float) -> str:
    """Render a build duration for log lines.

        >>> format_duration(12.34)
        '12.3s'
        >>> format_duration(125.0)
        '2m 5.0s'

    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, remainder = divmod(seconds, 60)
    return f"{int(minutes)}m {remainder:.1f}s"


def round_money(values: Any) -> Any:
    """Round a scalar, Series or DataFrame of money values to cents."""
    if isinstance(values, (pd.Series, pd.DataFrame)):
        return values.astype(float).round(MONEY_DECIMALS)
    return round(float(values), MONEY_DECIMALS)


def to_month(timestamps: pd.Series) -> pd.Series:
    """Bucket timestamps into YYYY-MM strings."""
    return pd.to_datetime(timestamps).dt.to_period("M").astype(str)


def month_range(first: str, last: str) -> list[str]:
    """Inclusive list of YYYY-MM months between two months."""
    return [str(p) for p in pd.period_range(first, last, freq="M")]


def month_calendar(observed: Iterable[str], through: str | None = None) -> list[str]:
    """Dense month list from the first observed month to the last.

    ``through`` extends (never shortens) the calendar to the reporting month.
    No observed months means an empty calendar.

    Examples:
        >>> month_calendar(["2025-03", "2025-01"], through="2025-04")
        ['2025-01', '2025-02', '2025-03', '2025-04']

    """
    months = sorted({str(m) for m in observed if not _is_null(m)})
    if not months:
        return []
    last = max(months[-1], through) if through else months[-1]
    return month_range(months[0], last)


def _is_null(value: Any) -> bool:
    if value is None:
        return True
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def safe_divide(numerator: Any, denominator: Any) -> Any:
    """Divide with the null-safe policy.

    A zero, null or NaN denominator yields null (None for scalars, NaN inside
    a Series) instead of raising or producing inf.

    Args:
        numerator: Scalar or Series.
        denominator: Scalar or Series. If either argument is a Series the
            result is a float Series aligned to it.

    Returns:
        The quotient, or null where the denominator is unusable.

    Examples:
        >>> safe_divide(1000.0, 0) is None
        True
        >>> safe_divide(pd.Series([10.0, 5.0]), pd.Series([2.0, 0.0])).tolist()
        [5.0, nan]

    """
    if isinstance(numerator, pd.Series) or isinstance(denominator, pd.Series):
        index = numerator.index if isinstance(numerator, pd.Series) else denominator.index
        num = pd.to_numeric(pd.Series(numerator, index=index), errors="coerce").astype(float)
        den = pd.to_numeric(pd.Series(denominator, index=index), errors="coerce").astype(float)
        valid = num.notna() & den.notna() & (den != 0)
        result = pd.Series(np.nan, index=index, dtype=float)
        result[valid] = num[valid] / den[valid]
        return result

    if _is_null(numerator) or _is_null(denominator):
        return None
    den = float(denominator)
    if den == 0 or math.isnan(den):
        return None
    return float(numerator) / den


def fingerprint_tables(tables: Mapping[str, pd.DataFrame]) -> str:
    """Return a SHA-256 digest of a table set.

    Tables are hashed in name order from their CSV text, so two builds with
    identical content produce identical fingerprints.
    """
    digest = hashlib.sha256()
    for name in sorted(tables):
        digest.update(name.encode("utf-8"))
        digest.update(tables[name].to_csv(index=False).encode("utf-8"))
    return digest.hexdigest()
