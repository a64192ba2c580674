"""Interface every forecaster in the forecast mart implements."""

from __future__ import annotations

from abc import ABC, abstractmethod

import pandas as pd


class ForecastModel(ABC):
    """Train on a monthly metric series, then project it forward."""

    @abstractmethod
    def train(self, series: pd.Series, **kwargs) -> object:
        """Capture whatever state the projection needs from ``series``.

        ``series`` is indexed by month, either ``pd.Period`` or ``YYYY-MM``
        strings. Raise ValueError when it holds nothing usable.
        """

    @abstractmethod
    def forecast(self, model: object, steps: int, **kwargs) -> pd.Series:
        """Return ``steps`` projected months indexed by monthly ``pd.Period``."""
