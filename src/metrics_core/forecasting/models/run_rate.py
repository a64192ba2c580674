"""Run-rate forecasting model.

The only forecaster in the package: project the mean of the trailing window
of months forward, unchanged, for every month of the horizon. Months inside
the window with no value count as zero, so a quiet month pulls the run-rate
down instead of being skipped.
"""

from __future__ import annotations

from typing import Any

import pandas as pd

from metrics_core.forecasting.models.base import ForecastModel
from metrics_core.forecasting.types import ModelDebugInfo


def _monthly(series: pd.Series) -> pd.Series:
    index = pd.PeriodIndex([pd.Period(m, freq="M") for m in series.index], freq="M")
    monthly = pd.Series(series.to_numpy(dtype=float), index=index)
    return monthly.groupby(level=0).sum()


class RunRateModel(ForecastModel):
    """Trailing-average run-rate.

    ``forecast_total = trailing_average * horizon`` where the trailing average
    is taken over the ``window`` months ending at the as-of month.

    Example:
        >>> model = RunRateModel(window=3, horizon=2)
        >>> history = pd.Series([100.0, 200.0, 300.0], index=["2025-01", "2025-02", "2025-03"])
        >>> state = model.train(history, as_of="2025-03")
        >>> state["trailing_average"]
        200.0
        >>> float(model.forecast(state).sum())
        400.0

    """

    def __init__(self, window: int, horizon: int) -> None:
        if int(window) != window or window < 1:
            raise ValueError(f"window must be a whole number of months >= 1, got {window!r}")
        if int(horizon) != horizon or horizon < 1:
            raise ValueError(f"horizon must be a whole number of months >= 1, got {horizon!r}")
        self.window = int(window)
        self.horizon = int(horizon)
        self.debug_: ModelDebugInfo | None = None

    def train(self, series: pd.Series, as_of: Any = None, **_kwargs: Any) -> dict:
        """Compute the trailing average ending at ``as_of``.

        Args:
            series: Monthly values; duplicate months are summed.
            as_of: Last month of the window. Defaults to the last month in
                the series.

        Returns:
            Dict with ``as_of``, ``window_values`` and ``trailing_average``.

        Raises:
            ValueError: If the series is empty and no as_of month is given.
        """
        monthly = _monthly(series)
        if as_of is None:
            if monthly.empty:
                raise ValueError("Cannot infer as_of month from an empty series")
            end = monthly.index.max()
        else:
            end = pd.Period(as_of, freq="M")

        window_index = pd.period_range(end=end, periods=self.window, freq="M")
        window_values = monthly.reindex(window_index, fill_value=0.0)
        return {
            "as_of": end,
            "window_values": window_values,
            "trailing_average": float(window_values.mean()),
        }

    def forecast(self, model: dict, steps: int | None = None, **_kwargs: Any) -> pd.Series:
        """Repeat the trailing average for each month after ``as_of``.

        Args:
            model: State returned by train().
            steps: Months to project; defaults to the model horizon.
        """
        steps = self.horizon if steps is None else steps
        index = pd.period_range(start=model["as_of"] + 1, periods=steps, freq="M")
        forecast_series = pd.Series(model["trailing_average"], index=index, dtype=float)

        self.debug_ = ModelDebugInfo(
            model_name="run_rate",
            data={
                "window": self.window,
                "horizon_steps": steps,
                "as_of": str(model["as_of"]),
                "window_values": {str(k): float(v) for k, v in model["window_values"].items()},
            },
        )
        return forecast_series
