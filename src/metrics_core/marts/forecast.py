"""Mart layer: run-rate forecast per metric.

Window and horizon lengths are parameters resolved from the build snapshot
at the cutoff, so a forecast is reproducible from the stored parameter
history.
"""

from __future__ import annotations

import logging

import pandas as pd

from metrics_core.forecasting.models.run_rate import RunRateModel
from metrics_core.parameters import FORECAST_HORIZON, FORECAST_WINDOW, ParameterSnapshot
from metrics_core.utils import round_money

logger = logging.getLogger(__name__)

COLUMNS = [
    "metric",
    "as_of_month",
    "window_months",
    "horizon_months",
    "trailing_average",
    "forecast_total",
    "first_forecast_month",
    "last_forecast_month",
]


def build_forecast(
    monthly: dict[str, pd.DataFrame],
    parameters: ParameterSnapshot,
    as_of_month: str,
    cutoff: pd.Timestamp,
    metrics: list[str],
) -> pd.DataFrame:
    """Project each forecast metric forward with RunRateModel.

    Args:
        monthly: Metric name -> month-grain mart that holds it as a column.
        parameters: Build snapshot.
        as_of_month: Last month of the trailing window (YYYY-MM).
        cutoff: Instant at which window and horizon are resolved.
        metrics: Metrics to forecast, in output order.

    Returns:
        DataFrame at metric grain with COLUMNS.

    Raises:
        MissingParameterError: If a metric has no forecast_window or
            forecast_horizon at the cutoff.
    """
    rows = []
    for metric in metrics:
        window = int(parameters.resolve(FORECAST_WINDOW, metric, cutoff))
        horizon = int(parameters.resolve(FORECAST_HORIZON, metric, cutoff))
        table = monthly[metric]
        series = pd.Series(table[metric].to_numpy(dtype=float), index=table["month"].astype(str))

        model = RunRateModel(window=window, horizon=horizon)
        state = model.train(series, as_of=as_of_month)
        projected = model.forecast(state, steps=horizon)

        average = float(state["trailing_average"])
        rows.append(
            {
                "metric": metric,
                "as_of_month": as_of_month,
                "window_months": window,
                "horizon_months": horizon,
                "trailing_average": round_money(average),
                "forecast_total": round_money(average * horizon),
                "first_forecast_month": str(projected.index[0]),
                "last_forecast_month": str(projected.index[-1]),
            }
        )
        if model.debug_ is not None:
            logger.debug("Forecast %s: %s", metric, model.debug_.summary())

    return pd.DataFrame(rows, columns=COLUMNS)
