"""Append-only audit log of builds and validation results.

Every build, published or not, leaves a BuildRecord and one ValidationResult
per check. Entries are never updated or removed. With DataPaths the log is
mirrored to JSON lines under ``audit/`` so it survives restarts.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable

from metrics_core.config import DataPaths
from metrics_core.qa.engine import BuildStatus, ValidationResult

logger = logging.getLogger(__name__)

STAGE_SUCCEEDED = "succeeded"
STAGE_FAILED = "failed"
STAGE_SKIPPED = "skipped"


@dataclass(frozen=True)
class BuildRecord:
    """Summary of one build attempt.

    Attributes:
        build_id: Unique build identifier.
        period: Reporting period (YYYY-MM).
        status: Terminal BuildStatus.
        parameter_revision: Revision of the parameter snapshot the build used.
        started_at: Build start.
        finished_at: Build end.
        fingerprint: SHA-256 of the built fact and mart tables.
        stage_outcomes: Stage name -> succeeded / failed / skipped.
        stage_errors: Stage name -> error message, for failed stages.
        published: Whether the table set went live.
    """

    build_id: str
    period: str
    status: BuildStatus
    parameter_revision: int
    started_at: datetime
    finished_at: datetime
    fingerprint: str
    stage_outcomes: dict[str, str] = field(default_factory=dict)
    stage_errors: dict[str, str] = field(default_factory=dict)
    published: bool = False

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def failed_stages(self) -> list[str]:
        return sorted(name for name, outcome in self.stage_outcomes.items() if outcome == STAGE_FAILED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "build_id": self.build_id,
            "period": self.period,
            "status": self.status.value,
            "parameter_revision": self.parameter_revision,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat(),
            "fingerprint": self.fingerprint,
            "stage_outcomes": dict(self.stage_outcomes),
            "stage_errors": dict(self.stage_errors),
            "published": self.published,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BuildRecord:
        return cls(
            build_id=data["build_id"],
            period=data["period"],
            status=BuildStatus(data["status"]),
            parameter_revision=int(data["parameter_revision"]),
            started_at=datetime.fromisoformat(data["started_at"]),
            finished_at=datetime.fromisoformat(data["finished_at"]),
            fingerprint=data["fingerprint"],
            stage_outcomes=dict(data.get("stage_outcomes", {})),
            stage_errors=dict(data.get("stage_errors", {})),
            published=bool(data.get("published", False)),
        )


def _in_range(at: datetime, since: datetime | None, until: datetime | None) -> bool:
    return (since is None or at >= since) and (until is None or at <= until)


def _read_jsonl(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return []
    with path.open(encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


class AuditLog:
    """In-memory, optionally file-backed, append-only audit trail.

    Args:
        paths: When given, entries are also appended to
            ``audit/validation_results.jsonl`` and ``audit/builds.jsonl``.
    """

    def __init__(self, paths: DataPaths | None = None) -> None:
        self.paths = paths
        self._results: list[ValidationResult] = []
        self._builds: list[BuildRecord] = []
        self._lock = threading.Lock()

    @property
    def results_path(self) -> Path | None:
        return self.paths.audit / "validation_results.jsonl" if self.paths else None

    @property
    def builds_path(self) -> Path | None:
        return self.paths.audit / "builds.jsonl" if self.paths else None

    def _append(self, path: Path | None, rows: list[dict[str, Any]]) -> None:
        if path is None or not rows:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            for row in rows:
                f.write(json.dumps(row, default=str) + "\n")

    def record_results(self, results: Iterable[ValidationResult]) -> None:
        results = list(results)
        with self._lock:
            self._results.extend(results)
            self._append(self.results_path, [r.to_dict() for r in results])
        logger.debug("Audited %d validation result(s)", len(results))

    def record_build(self, record: BuildRecord) -> None:
        with self._lock:
            self._builds.append(record)
            self._append(self.builds_path, [record.to_dict()])
        logger.debug("Audited build %s (%s)", record.build_id, record.status.value)

    def results(
        self,
        build_id: str | None = None,
        check_name: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[ValidationResult]:
        """Validation results matching every given filter, in recorded order."""
        with self._lock:
            entries = list(self._results)
        return [
            r
            for r in entries
            if (build_id is None or r.build_id == build_id)
            and (check_name is None or r.check_name == check_name)
            and _in_range(r.checked_at, since, until)
        ]

    def builds(
        self,
        build_id: str | None = None,
        period: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[BuildRecord]:
        """Build records matching every given filter, in recorded order."""
        with self._lock:
            entries = list(self._builds)
        return [
            b
            for b in entries
            if (build_id is None or b.build_id == build_id)
            and (period is None or b.period == period)
            and _in_range(b.started_at, since, until)
        ]

    @classmethod
    def load(cls, paths: DataPaths) -> AuditLog:
        """Rebuild the log from its JSON lines files."""
        log = cls(paths)
        log._results = [ValidationResult.from_dict(d) for d in _read_jsonl(paths.audit / "validation_results.jsonl")]
        log._builds = [BuildRecord.from_dict(d) for d in _read_jsonl(paths.audit / "builds.jsonl")]
        logger.info("Loaded audit log: %d build(s), %d result(s)", len(log._builds), len(log._results))
        return log
