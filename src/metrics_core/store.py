"""Metrics store: last-known-good serving of validated table sets.

A period is served from exactly one published build at a time. Publishing
swaps the whole table set in one step, so a reader sees either the previous
build or the new one, never a mix. A build that fails validation is recorded
as an attempt but never replaces what is served; readers then get the older
tables with ``is_stale=True``.

On-disk layout (when DataPaths is given)::

    published/<period>/<build_id>/<table>.csv
    published/<period>/_current.json   # pointer, replaced atomically

"""

from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Mapping

import pandas as pd

from metrics_core.audit import BuildRecord
from metrics_core.config import DataPaths
from metrics_core.exceptions import BuildLockError, TableNotFoundError, ValidationError
from metrics_core.qa.engine import BuildStatus

logger = logging.getLogger(__name__)

POINTER_FILE = "_current.json"
COHORT_SIZES_TABLE = "mart_cohort_sizes"


@dataclass(frozen=True)
class QueryResult:
    """A table read from the store with its provenance.

    Attributes:
        frame: Copy of the published table.
        period: Reporting period.
        table: Table name.
        build_id: Build that produced the table.
        validation_status: PASSED or FAILED_SOFT.
        published_at: When the build went live.
        is_stale: True if a later build for the period was attempted and not
            published.
    """

    frame: pd.DataFrame
    period: str
    table: str
    build_id: str
    validation_status: BuildStatus
    published_at: datetime
    is_stale: bool


@dataclass(frozen=True)
class ServingStatus:
    """What is served for a period and how the latest attempt went."""

    period: str
    served_build_id: str | None
    served_status: BuildStatus | None
    published_at: datetime | None
    latest_attempt_id: str | None
    latest_attempt_status: BuildStatus | None
    is_stale: bool


@dataclass(frozen=True)
class _Published:
    record: BuildRecord
    tables: Mapping[str, pd.DataFrame]
    published_at: datetime
    sequence: int


class MetricsStore:
    """Thread-safe store of published builds, one live build per period.

    Args:
        paths: Optional filesystem layout; when given, published builds are
            persisted and can be restored with load().
    """

    def __init__(self, paths: DataPaths | None = None) -> None:
        self.paths = paths
        self._published: dict[str, _Published] = {}
        self._attempts: dict[str, BuildRecord] = {}
        self._sequence = 0
        self._lock = threading.Lock()
        self._period_locks: dict[str, threading.Lock] = {}

    # ------------------------------------------------------------------ #
    # Build coordination
    # ------------------------------------------------------------------ #

    @contextmanager
    def period_lock(self, period: str, timeout: float) -> Iterator[None]:
        """Hold the exclusive build lock for one reporting period.

        Raises:
            BuildLockError: If the lock is not acquired within ``timeout``.
        """
        with self._lock:
            lock = self._period_locks.setdefault(period, threading.Lock())
        if not lock.acquire(timeout=timeout):
            raise BuildLockError(f"Another build holds the lock for period {period} (waited {timeout:g}s)")
        try:
            yield
        finally:
            lock.release()

    def record_attempt(self, record: BuildRecord) -> None:
        """Remember a finished build that was not published."""
        with self._lock:
            self._attempts[record.period] = record
        logger.warning(
            "Build %s for %s not published (%s); serving last known good",
            record.build_id,
            record.period,
            record.status.value,
        )

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    def publish(self, record: BuildRecord, tables: Mapping[str, pd.DataFrame]) -> None:
        """Make a build's table set the live one for its period.

        Raises:
            ValidationError: If the build's status does not allow publishing.
        """
        if not record.status.publishable:
            raise ValidationError(
                f"Build {record.build_id} has status {record.status.value}; only passed or "
                "soft-failed builds are published"
            )
        frozen = {name: frame.copy() for name, frame in tables.items()}
        published_at = datetime.now()
        if self.paths is not None:
            self._write(record, frozen, published_at)

        with self._lock:
            self._sequence += 1
            self._published[record.period] = _Published(record, frozen, published_at, self._sequence)
            self._attempts[record.period] = record
        logger.info(
            "Published build %s for %s (%s, %d tables)",
            record.build_id,
            record.period,
            record.status.value,
            len(frozen),
        )

    def _write(self, record: BuildRecord, tables: Mapping[str, pd.DataFrame], published_at: datetime) -> None:
        period_dir = self.paths.published_period(record.period)
        build_dir = period_dir / record.build_id
        build_dir.mkdir(parents=True, exist_ok=True)
        for name, frame in tables.items():
            frame.to_csv(build_dir / f"{name}.csv", index=False)

        pointer = {
            "record": record.to_dict(),
            "published_at": published_at.isoformat(),
            "tables": sorted(tables),
            "date_columns": {
                name: [c for c in frame.columns if pd.api.types.is_datetime64_any_dtype(frame[c])]
                for name, frame in tables.items()
            },
        }
        tmp = period_dir / f"{POINTER_FILE}.tmp"
        tmp.write_text(json.dumps(pointer, indent=2), encoding="utf-8")
        os.replace(tmp, period_dir / POINTER_FILE)
        logger.debug("Wrote %d table(s) to %s", len(tables), build_dir)

    @classmethod
    def load(cls, paths: DataPaths) -> MetricsStore:
        """Restore every period's live build from disk."""
        store = cls(paths)
        if not paths.published.exists():
            return store
        for period_dir in sorted(p for p in paths.published.iterdir() if p.is_dir()):
            pointer_path = period_dir / POINTER_FILE
            if not pointer_path.exists():
                continue
            pointer = json.loads(pointer_path.read_text(encoding="utf-8"))
            record = BuildRecord.from_dict(pointer["record"])
            build_dir = period_dir / record.build_id
            tables = {}
            for name in pointer["tables"]:
                dates = pointer.get("date_columns", {}).get(name, [])
                tables[name] = pd.read_csv(build_dir / f"{name}.csv", parse_dates=dates or False)
            store._sequence += 1
            store._published[record.period] = _Published(
                record, tables, datetime.fromisoformat(pointer["published_at"]), store._sequence
            )
            store._attempts[record.period] = record
        logger.info("Loaded %d published period(s) from %s", len(store._published), paths.published)
        return store

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def periods(self) -> list[str]:
        with self._lock:
            return sorted(self._published)

    def tables(self, period: str) -> list[str]:
        with self._lock:
            published = self._published.get(period)
        if published is None:
            raise TableNotFoundError(f"No published build for period {period}")
        return sorted(published.tables)

    def _is_stale(self, period: str) -> bool:
        published = self._published.get(period)
        attempt = self._attempts.get(period)
        if published is None or attempt is None:
            return False
        return attempt.build_id != published.record.build_id

    def read(self, period: str, table: str) -> QueryResult:
        """Read one table from the live build of a period.

        Raises:
            TableNotFoundError: If the period has no published build or the
                build has no such table.
        """
        with self._lock:
            published = self._published.get(period)
            stale = self._is_stale(period)
        if published is None:
            raise TableNotFoundError(f"No published build for period {period}")
        if table not in published.tables:
            raise TableNotFoundError(f"Table '{table}' not found in build {published.record.build_id}")
        return QueryResult(
            frame=published.tables[table].copy(),
            period=period,
            table=table,
            build_id=published.record.build_id,
            validation_status=published.record.status,
            published_at=published.published_at,
            is_stale=stale,
        )

    def status(self, period: str) -> ServingStatus:
        with self._lock:
            published = self._published.get(period)
            attempt = self._attempts.get(period)
            stale = self._is_stale(period)
        return ServingStatus(
            period=period,
            served_build_id=published.record.build_id if published else None,
            served_status=published.record.status if published else None,
            published_at=published.published_at if published else None,
            latest_attempt_id=attempt.build_id if attempt else None,
            latest_attempt_status=attempt.status if attempt else None,
            is_stale=stale,
        )

    def fixed_cohort_sizes(self, period: str | None = None) -> pd.DataFrame | None:
        """Fixed cohort sizes to seed a build of ``period``.

        Sizes are pooled across every published period, so a backfill of an
        older month never hides a cohort a later build already fixed. For each
        cohort the earliest fixation wins. Cohorts after ``period`` are left
        out. None when nothing is published.
        """
        with self._lock:
            frames = [
                p.tables[COHORT_SIZES_TABLE]
                for p in sorted(self._published.values(), key=lambda p: p.sequence)
                if COHORT_SIZES_TABLE in p.tables
            ]
        if not frames:
            return None
        pooled = pd.concat(frames, ignore_index=True)
        pooled["cohort_month"] = pooled["cohort_month"].astype(str)
        pooled["fixed_in_period"] = pooled["fixed_in_period"].astype(str)
        if period is not None:
            pooled = pooled[pooled["cohort_month"] <= period]
        pooled = pooled.sort_values(["cohort_month", "fixed_in_period"], kind="stable")
        return pooled.drop_duplicates(subset="cohort_month", keep="first").reset_index(drop=True)
