"""Shared utilities for cleaning raw event records.

Key utilities:
- Text normalization: strip invisible characters, snake_case headers
- Number parsing: currency strings, thousands separators, parentheses negatives
- Identifier cleaning: stable string ids from ints, floats and strings
- Timestamp parsing: mixed formats into tz-naive UTC

Examples:
    >>> to_float("$1,234.56")
    1234.56
    >>> to_snake("Ordered At")
    'ordered_at'
    >>> clean_id(1001.0)
    '1001'
"""

from __future__ import annotations

import math
import re
import unicodedata
from typing import Any, Optional

import pandas as pd

_NO_BREAK_SPACE = "\u00a0"
_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\ufeff]")

_CURRENCY_RE = re.compile(r"[^\d,.\-\(\)]")


def strip_invisibles(x: Any) -> Optional[str]:
    """Remove invisible characters and collapse whitespace.

    Examples:
        >>> strip_invisibles("  search ads ")
        'search ads'
    """
    if x is None or (isinstance(x, float) and pd.isna(x)):
        return None
    text = _ZERO_WIDTH.sub("", str(x).replace(_NO_BREAK_SPACE, " "))
    return " ".join(text.split())


def to_snake(s: str) -> str:
    """Convert a source header to snake_case.

    Examples:
        >>> to_snake("Unit-Price")
        'unit_price'
    """
    decomposed = unicodedata.normalize("NFKD", strip_invisibles(s) or "")
    ascii_ish = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    words = re.split(r"[^\w]+", ascii_ish.lower())
    return "_".join(w for w in words if w)


def to_float(x: Any) -> Optional[float]:
    """Parse a money or quantity value.

    Accepts numbers and strings with currency symbols, comma thousands
    separators and parenthesised negatives. Returns None when the value
    cannot be parsed.

    Examples:
        >>> to_float("(12.50)")
        -12.5
        >>> to_float("n/a") is None
        True
    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        v = float(x)
        return None if math.isnan(v) or math.isinf(v) else v
    s = strip_invisibles(x)
    if not s:
        return None
    neg = s.startswith("(") and s.endswith(")")
    if neg:
        s = s[1:-1]
    s = _CURRENCY_RE.sub("", s).strip()
    if re.fullmatch(r"-?\d{1,3}(?:,\d{3})+(?:\.\d+)?", s):
        s = s.replace(",", "")
    try:
        v = float(s)
    except ValueError:
        return None
    return -v if neg else v


def clean_id(x: Any) -> Optional[str]:
    """Normalise an identifier to a non-empty string, or None.

    Integral floats (as produced by CSV readers for int columns with nulls)
    lose their trailing ".0".
    """
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return None
    if x is pd.NaT or (not isinstance(x, str) and pd.isna(x)):
        return None
    if isinstance(x, float) and x.is_integer():
        x = int(x)
    s = strip_invisibles(x)
    return s or None


def to_utc_naive(values: pd.Series) -> pd.Series:
    """Parse timestamps of mixed formats into tz-naive UTC datetimes.

    Unparseable values become NaT.
    """
    parsed = pd.to_datetime(values, errors="coerce", utc=True, format="mixed")
    return parsed.dt.tz_convert(None)
