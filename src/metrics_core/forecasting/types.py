"""Debug payload attached to a model after it forecasts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ModelDebugInfo:
    """What a model looked at when it produced its last projection.

    ``data`` stays JSON-ready (window months and values, horizon, as-of
    month) so it can be logged or written to the audit trail unchanged.
    """

    model_name: str
    data: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> str:
        """One-line rendering for log messages."""
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.data.items()) if k != "window_values")
        return f"{self.model_name}({details})"
