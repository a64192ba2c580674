"""Domain-specific exceptions for Metrics Core.

This module defines custom exceptions that are part of the public API.
All exceptions inherit from MetricsCoreError for easy catching.
"""

from __future__ import annotations

from typing import Any


class MetricsCoreError(Exception):
    """Base exception for all Metrics Core errors.

    Users can catch this exception to handle any error raised by the
    derivation pipeline, the validation engine or the metrics store.
    """

    pass


class ConfigError(MetricsCoreError):
    """Raised when there is a configuration error.

    This exception is raised when:
    - Invalid configuration values are provided (e.g. a negative tolerance)
    - A reporting period string cannot be parsed
    - Parameter files cannot be loaded or parsed
    """

    pass


class ETLError(MetricsCoreError):
    """Raised when a pipeline stage fails.

    Stage failures are local: the build runner marks the failing stage and
    its dependents, keeps running independent stages, and refuses to publish.
    """

    pass


class SchemaError(ETLError):
    """Raised when a raw event source does not match its canonical schema.

    This exception is raised when:
    - A required column is missing
    - An id, timestamp or amount value is null or unparseable
    - Event ids are duplicated within one source
    - A tag column holds an unknown value
    """

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"[{source}] {message}")


class MissingParameterError(ETLError):
    """Raised when no parameter version is effective for a required timestamp.

    The fact builder never falls back to a default value; a missing cost,
    weight or forecast setting fails the affected table instead.
    """

    def __init__(self, kind: str, key: Any, at: Any) -> None:
        self.kind = kind
        self.key = key
        self.at = at
        super().__init__(f"No effective '{kind}' parameter for key {key!r} at {at}")


class ValidationError(MetricsCoreError):
    """Base class for validation outcomes raised from a ValidationReport."""

    pass


class ReconciliationError(ValidationError):
    """Independently derived totals disagree beyond tolerance (FAILED_HARD).

    A build with this outcome is not published; the previous good build
    stays live.
    """

    pass


class BoundsViolation(ValidationError):
    """A declared invariant was violated in an accepted edge case (FAILED_SOFT).

    Logged and recorded, but does not block publishing.
    """

    pass


class InvalidTransitionError(ValidationError):
    """Raised when a build status moves outside its state machine."""

    pass


class BuildLockError(MetricsCoreError):
    """Raised when a build cannot acquire the lock for its reporting period."""

    pass


class TableNotFoundError(MetricsCoreError, KeyError):
    """Raised when a query names a period or table that was never published."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
