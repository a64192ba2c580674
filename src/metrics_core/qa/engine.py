"""Validation engine.

Runs every registered check against a build's table set and folds the
results into one build status:

- any failing HARD check -> ``FAILED_HARD`` (nothing is published)
- otherwise any failing SOFT check -> ``FAILED_SOFT`` (published, flagged)
- otherwise -> ``PASSED``

A check whose table was never built (its stage failed or was skipped) is a
failed result with the message "table not built".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Mapping

import pandas as pd

from metrics_core.config import PipelineConfig
from metrics_core.exceptions import BoundsViolation, InvalidTransitionError, ReconciliationError
from metrics_core.qa.registry import DEFAULT_CHECKS, Check, Severity

logger = logging.getLogger(__name__)

TABLE_NOT_BUILT = "table not built"


class BuildStatus(str, Enum):
    """Lifecycle of a build: PENDING -> RUNNING -> one terminal state."""

    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED_SOFT = "failed_soft"
    FAILED_HARD = "failed_hard"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def publishable(self) -> bool:
        return self in (BuildStatus.PASSED, BuildStatus.FAILED_SOFT)

    def advance(self, new: BuildStatus) -> BuildStatus:
        """Return ``new`` if the transition is allowed.

        Raises:
            InvalidTransitionError: For any transition other than
                PENDING -> RUNNING or RUNNING -> a terminal state.

        Examples:
            >>> BuildStatus.PENDING.advance(BuildStatus.RUNNING)
            <BuildStatus.RUNNING: 'running'>

        """
        if new not in _TRANSITIONS[self]:
            raise InvalidTransitionError(f"Cannot move build from {self.value} to {new.value}")
        return new


_TERMINAL = {BuildStatus.PASSED, BuildStatus.FAILED_SOFT, BuildStatus.FAILED_HARD}
_TRANSITIONS: dict[BuildStatus, set[BuildStatus]] = {
    BuildStatus.PENDING: {BuildStatus.RUNNING},
    BuildStatus.RUNNING: set(_TERMINAL),
    BuildStatus.PASSED: set(),
    BuildStatus.FAILED_SOFT: set(),
    BuildStatus.FAILED_HARD: set(),
}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.isoformat()
    if isinstance(value, pd.Period):
        return str(value)
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, float) and value != value:
        return None
    return value


def _records(frame: pd.DataFrame, limit: int) -> list[dict[str, Any]]:
    return [{str(k): _jsonable(v) for k, v in row.items()} for row in frame.head(limit).to_dict("records")]


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one check in one build, as stored in the audit log.

    Attributes:
        build_id: Build the check ran in.
        check_name: Registered check name.
        table: Primary table the check reads.
        severity: HARD or SOFT.
        passed: Whether the check held.
        offending_keys: Offending keys as dicts, capped at max_offending_rows.
        offending_count: Total offending keys before capping.
        checked_at: When the check ran.
        message: Human-readable summary.
    """

    build_id: str
    check_name: str
    table: str
    severity: Severity
    passed: bool
    offending_keys: list[dict[str, Any]]
    offending_count: int
    checked_at: datetime
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "build_id": self.build_id,
            "check_name": self.check_name,
            "table": self.table,
            "severity": self.severity.value,
            "passed": self.passed,
            "offending_keys": self.offending_keys,
            "offending_count": self.offending_count,
            "checked_at": self.checked_at.isoformat(),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationResult:
        return cls(
            build_id=data["build_id"],
            check_name=data["check_name"],
            table=data["table"],
            severity=Severity(data["severity"]),
            passed=bool(data["passed"]),
            offending_keys=list(data.get("offending_keys", [])),
            offending_count=int(data.get("offending_count", 0)),
            checked_at=datetime.fromisoformat(data["checked_at"]),
            message=data.get("message", ""),
        )


@dataclass
class ValidationReport:
    """All results of one validation run and the resulting status."""

    build_id: str
    status: BuildStatus
    results: list[ValidationResult] = field(default_factory=list)

    @property
    def hard_failures(self) -> list[ValidationResult]:
        return [r for r in self.results if not r.passed and r.severity == Severity.HARD]

    @property
    def soft_failures(self) -> list[ValidationResult]:
        return [r for r in self.results if not r.passed and r.severity == Severity.SOFT]

    def summary(self) -> dict[str, Any]:
        return {
            "build_id": self.build_id,
            "status": self.status.value,
            "checks": len(self.results),
            "hard_failures": [r.check_name for r in self.hard_failures],
            "soft_failures": [r.check_name for r in self.soft_failures],
        }

    def raise_for_status(self) -> None:
        """Raise the exception matching a failed status.

        Raises:
            ReconciliationError: If any HARD check failed.
            BoundsViolation: If only SOFT checks failed.
        """
        if self.hard_failures:
            names = [r.check_name for r in self.hard_failures]
            raise ReconciliationError(f"Build {self.build_id}: hard check(s) failed: {names}")
        if self.soft_failures:
            names = [r.check_name for r in self.soft_failures]
            raise BoundsViolation(f"Build {self.build_id}: soft check(s) failed: {names}")


class ValidationEngine:
    """Evaluate a set of checks against a table set.

    Args:
        checks: Checks to run; defaults to DEFAULT_CHECKS.
        config: Supplies max_offending_rows.
    """

    def __init__(self, checks: Iterable[Check] | None = None, config: PipelineConfig | None = None) -> None:
        self.checks: list[Check] = list(DEFAULT_CHECKS if checks is None else checks)
        self.config = config or PipelineConfig()

    def _run_check(self, check: Check, build_id: str, tables: Mapping[str, pd.DataFrame]) -> ValidationResult:
        checked_at = datetime.now()
        missing = [t for t in check.tables if t not in tables]
        if missing:
            return ValidationResult(
                build_id=build_id,
                check_name=check.name,
                table=check.table,
                severity=check.severity,
                passed=False,
                offending_keys=[{"table": t} for t in missing],
                offending_count=len(missing),
                checked_at=checked_at,
                message=TABLE_NOT_BUILT,
            )
        try:
            outcome = check.evaluate(tables)
        except (KeyError, NameError) as e:
            logger.error("Check %s could not be evaluated: %s", check.name, e)
            return ValidationResult(
                build_id=build_id,
                check_name=check.name,
                table=check.table,
                severity=check.severity,
                passed=False,
                offending_keys=[],
                offending_count=0,
                checked_at=checked_at,
                message=f"check could not be evaluated: {e}",
            )
        return ValidationResult(
            build_id=build_id,
            check_name=check.name,
            table=check.table,
            severity=check.severity,
            passed=outcome.passed,
            offending_keys=_records(outcome.offending, self.config.max_offending_rows),
            offending_count=len(outcome.offending),
            checked_at=checked_at,
            message=outcome.message,
        )

    def run(self, build_id: str, tables: Mapping[str, pd.DataFrame]) -> ValidationReport:
        """Run every check and return the report with the final status."""
        status = BuildStatus.PENDING.advance(BuildStatus.RUNNING)
        results = [self._run_check(check, build_id, tables) for check in self.checks]
        report = ValidationReport(build_id=build_id, status=status, results=results)

        for r in report.hard_failures:
            logger.error("HARD check failed: %s [%s] %s", r.check_name, r.table, r.message)
        for r in report.soft_failures:
            logger.warning("SOFT check failed: %s [%s] %s", r.check_name, r.table, r.message)

        if report.hard_failures:
            final = BuildStatus.FAILED_HARD
        elif report.soft_failures:
            final = BuildStatus.FAILED_SOFT
        else:
            final = BuildStatus.PASSED
        report.status = status.advance(final)

        logger.info(
            "Validation %s: %d checks, %d hard / %d soft failures -> %s",
            build_id,
            len(results),
            len(report.hard_failures),
            len(report.soft_failures),
            report.status.value,
        )
        return report
