"""Validation layer: declarative checks and the engine that runs them."""

from metrics_core.qa.engine import (
    TABLE_NOT_BUILT,
    BuildStatus,
    ValidationEngine,
    ValidationReport,
    ValidationResult,
)
from metrics_core.qa.registry import (
    DEFAULT_CHECKS,
    GrainCheck,
    NotNullCheck,
    ReconciliationCheck,
    RowCheck,
    Severity,
    Term,
    default_checks,
)

__all__ = [
    "DEFAULT_CHECKS",
    "TABLE_NOT_BUILT",
    "BuildStatus",
    "GrainCheck",
    "NotNullCheck",
    "ReconciliationCheck",
    "RowCheck",
    "Severity",
    "Term",
    "ValidationEngine",
    "ValidationReport",
    "ValidationResult",
    "default_checks",
]
