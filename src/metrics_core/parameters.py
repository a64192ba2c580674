"""Versioned parameter store for inputs not derivable from events.

Parameters are product costs, channel attribution weights and forecast
settings. Each one is published as an immutable version with an inclusive
effective window (effective_from / effective_to, where None means open-ended),
the same way branch codes carry valid_from / valid_to windows.

The store is append-only: a new version supersedes an older one for the
dates it covers, but the old one stays in the history for audit. A build
works against a ParameterSnapshot so it sees one fixed set of versions even
if new versions are published mid-run.

Example:
    >>> from datetime import date
    >>> store = ParameterStore()
    >>> _ = store.publish("product_cost", "SKU-1", 4.0, date(2025, 1, 1))
    >>> snap = store.snapshot()
    >>> snap.resolve("product_cost", "SKU-1", date(2025, 2, 1))
    4.0

"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterable

import pandas as pd

from metrics_core.exceptions import ConfigError, MissingParameterError
from metrics_core.utils import parse_date

logger = logging.getLogger(__name__)

PRODUCT_COST = "product_cost"
CHANNEL_WEIGHT = "channel_weight"
FORECAST_WINDOW = "forecast_window"
FORECAST_HORIZON = "forecast_horizon"

PARAMETER_KINDS = (PRODUCT_COST, CHANNEL_WEIGHT, FORECAST_WINDOW, FORECAST_HORIZON)

# Forecast settings may be declared once for every metric under this key.
WILDCARD_KEY = "*"
WILDCARD_KINDS = {FORECAST_WINDOW, FORECAST_HORIZON}


def _as_date(value: Any) -> date:
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return pd.Timestamp(value).date()
    raise TypeError(f"Cannot interpret {value!r} as a date")


@dataclass(frozen=True)
class ParameterVersion:
    """One published version of a parameter.

    Attributes:
        kind: Parameter type (product_cost, channel_weight, ...).
        key: Dimension key (product id, channel, metric name or "*").
        value: Numeric value.
        effective_from: First date this version applies to (inclusive).
        effective_to: Last date this version applies to (inclusive).
            None indicates the version is open-ended.
        version: Sequence number within (kind, key); higher supersedes lower.
        revision: Store-wide publish sequence number.
        published_at: ISO timestamp of publication.
    """

    kind: str
    key: str
    value: float
    effective_from: date
    effective_to: date | None
    version: int
    revision: int
    published_at: str

    def covers(self, at: date) -> bool:
        return self.effective_from <= at and (self.effective_to is None or self.effective_to >= at)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["effective_from"] = self.effective_from.isoformat()
        data["effective_to"] = self.effective_to.isoformat() if self.effective_to else None
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ParameterVersion:
        vt_raw = data.get("effective_to")
        return cls(
            kind=data["kind"],
            key=str(data["key"]),
            value=float(data["value"]),
            effective_from=parse_date(data["effective_from"]),
            effective_to=parse_date(vt_raw) if vt_raw else None,
            version=int(data["version"]),
            revision=int(data["revision"]),
            published_at=data.get("published_at", ""),
        )


@dataclass(frozen=True)
class ParameterSnapshot:
    """Read-only view of the store as of one revision.

    Attributes:
        versions: Every version visible to the snapshot, in publish order.
        revision: Store revision the snapshot was taken at.
    """

    versions: tuple[ParameterVersion, ...]
    revision: int

    def keys(self, kind: str) -> list[str]:
        return sorted({v.key for v in self.versions if v.kind == kind})

    def _candidates(self, kind: str, key: str, at: date) -> list[ParameterVersion]:
        return [v for v in self.versions if v.kind == kind and v.key == key and v.covers(at)]

    def find(self, kind: str, key: Any, at: Any) -> ParameterVersion:
        """Return the winning version for (kind, key) at a timestamp.

        The highest version whose effective window contains the date wins.
        Forecast kinds fall back to the "*" key.

        Raises:
            MissingParameterError: If no version is effective.
        """
        day = _as_date(at)
        key = str(key)
        candidates = self._candidates(kind, key, day)
        if not candidates and kind in WILDCARD_KINDS and key != WILDCARD_KEY:
            candidates = self._candidates(kind, WILDCARD_KEY, day)
        if not candidates:
            raise MissingParameterError(kind, key, day)
        return max(candidates, key=lambda v: v.version)

    def resolve(self, kind: str, key: Any, at: Any) -> float:
        """Return the effective value for (kind, key) at a timestamp."""
        return self.find(kind, key, at).value

    def effective(self, kind: str, at: Any) -> dict[str, float]:
        """Return {key: value} for every key of a kind effective at a timestamp.

        Raises:
            MissingParameterError: If no key of this kind is effective.
        """
        day = _as_date(at)
        result: dict[str, float] = {}
        for key in self.keys(kind):
            candidates = self._candidates(kind, key, day)
            if candidates:
                result[key] = max(candidates, key=lambda v: v.version).value
        if not result:
            raise MissingParameterError(kind, WILDCARD_KEY, day)
        return result

    def resolve_series(self, kind: str, keys: pd.Series, at: pd.Series) -> pd.Series:
        """Vectorised resolve for a join: one value per (key, timestamp) row."""
        days = pd.to_datetime(at).dt.date
        cache: dict[tuple[str, date], float] = {}
        values = []
        for key, day in zip(keys.astype(str), days):
            lookup = (key, day)
            if lookup not in cache:
                cache[lookup] = self.resolve(kind, key, day)
            values.append(cache[lookup])
        return pd.Series(values, index=keys.index, dtype=float)

    def to_frame(self) -> pd.DataFrame:
        columns = [
            "kind",
            "key",
            "value",
            "effective_from",
            "effective_to",
            "version",
            "revision",
            "published_at",
        ]
        if not self.versions:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame([v.to_dict() for v in self.versions], columns=columns)


class ParameterStore:
    """Append-only, time-ranged lookup table of parameter versions.

    Example:
        >>> store = ParameterStore()
        >>> _ = store.publish("channel_weight", "search", 0.6, "2025-01-01")
        >>> _ = store.publish("channel_weight", "social", 0.4, "2025-01-01")
        >>> store.snapshot().effective("channel_weight", "2025-03-10")
        {'search': 0.6, 'social': 0.4}

    """

    def __init__(self, versions: Iterable[ParameterVersion] = ()) -> None:
        self._versions: list[ParameterVersion] = sorted(versions, key=lambda v: v.revision)
        self._lock = threading.Lock()

    @property
    def revision(self) -> int:
        return self._versions[-1].revision if self._versions else 0

    def publish(
        self,
        kind: str,
        key: Any,
        value: float,
        effective_from: date | str,
        effective_to: date | str | None = None,
    ) -> ParameterVersion:
        """Append a new parameter version.

        Args:
            kind: One of PARAMETER_KINDS.
            key: Dimension key; stored as a string.
            value: Numeric value.
            effective_from: First effective date (inclusive).
            effective_to: Last effective date (inclusive), or None if open-ended.

        Returns:
            The published version.

        Raises:
            ConfigError: If the kind is unknown, the value is not numeric, a
                forecast setting is not a whole number of months or the
                window is empty.
        """
        if kind not in PARAMETER_KINDS:
            raise ConfigError(f"Unknown parameter kind '{kind}'. Expected one of {PARAMETER_KINDS}")
        try:
            numeric = float(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Parameter {kind}/{key} value must be numeric, got {value!r}") from e
        if kind in WILDCARD_KINDS and (numeric < 1 or not numeric.is_integer()):
            raise ConfigError(f"Parameter {kind}/{key} must be a whole number of months >= 1, got {value!r}")
        vf = _as_date(effective_from)
        vt = _as_date(effective_to) if effective_to is not None else None
        if vt is not None and vt < vf:
            raise ConfigError(f"Parameter {kind}/{key}: effective_to {vt} is before effective_from {vf}")

        with self._lock:
            previous = [v.version for v in self._versions if v.kind == kind and v.key == str(key)]
            version = ParameterVersion(
                kind=kind,
                key=str(key),
                value=numeric,
                effective_from=vf,
                effective_to=vt,
                version=max(previous, default=0) + 1,
                revision=self.revision + 1,
                published_at=datetime.now().isoformat(),
            )
            self._versions.append(version)

        logger.info(
            "Published %s/%s v%d = %s (%s to %s)",
            kind,
            version.key,
            version.version,
            numeric,
            vf,
            vt or "open",
        )
        return version

    def history(self, kind: str, key: Any) -> list[ParameterVersion]:
        """All versions ever published for (kind, key), oldest first."""
        return [v for v in self._versions if v.kind == kind and v.key == str(key)]

    def snapshot(self) -> ParameterSnapshot:
        with self._lock:
            return ParameterSnapshot(versions=tuple(self._versions), revision=self.revision)

    @classmethod
    def from_json(cls, path: Path) -> ParameterStore:
        """Load a parameter history written by to_json().

        Raises:
            ConfigError: If the file cannot be parsed.
        """
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            versions = [ParameterVersion.from_dict(rec) for rec in data]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise ConfigError(f"Cannot load parameters from {path}: {e}") from e
        logger.debug("Loaded %d parameter versions from %s", len(versions), path)
        return cls(versions)

    def to_json(self, path: Path) -> None:
        with self._lock:
            payload = [v.to_dict() for v in self._versions]
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        logger.debug("Wrote %d parameter versions to %s", len(payload), path)
