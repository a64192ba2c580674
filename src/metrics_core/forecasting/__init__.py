"""Run-rate forecasting.

Example:
    >>> import pandas as pd
    >>> from metrics_core.forecasting import RunRateModel
    >>> model = RunRateModel(window=2, horizon=3)
    >>> state = model.train(pd.Series([90.0, 110.0], index=["2025-05", "2025-06"]))
    >>> model.forecast(state).tolist()
    [100.0, 100.0, 100.0]

"""

from metrics_core.forecasting.models import ForecastModel, RunRateModel
from metrics_core.forecasting.types import ModelDebugInfo

__all__ = ["ForecastModel", "ModelDebugInfo", "RunRateModel"]
