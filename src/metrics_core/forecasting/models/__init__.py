"""Forecasting models.

Models implement ForecastModel and set ``self.debug_`` to a ModelDebugInfo
after forecast(), keeping forecast() itself returning a plain Series.
"""

from metrics_core.forecasting.models.base import ForecastModel
from metrics_core.forecasting.models.run_rate import RunRateModel

__all__ = ["ForecastModel", "RunRateModel"]
