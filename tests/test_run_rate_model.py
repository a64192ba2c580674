"""Tests for the run-rate forecast model."""

import pandas as pd
import pytest

from metrics_core.forecasting import ForecastModel, ModelDebugInfo, RunRateModel


def test_is_a_forecast_model() -> None:
    """RunRateModel implements the ForecastModel interface."""
    assert isinstance(RunRateModel(window=3, horizon=3), ForecastModel)


def test_trailing_average_over_window() -> None:
    """Only the last `window` months count."""
    series = pd.Series([1000.0, 100.0, 200.0, 300.0], index=["2024-12", "2025-01", "2025-02", "2025-03"])
    model = RunRateModel(window=3, horizon=2)
    state = model.train(series)

    assert state["as_of"] == pd.Period("2025-03", freq="M")
    assert state["trailing_average"] == 200.0


def test_missing_months_count_as_zero() -> None:
    """A month absent from the series pulls the run-rate down."""
    series = pd.Series([300.0, 300.0], index=["2025-01", "2025-03"])
    state = RunRateModel(window=3, horizon=1).train(series, as_of="2025-03")

    assert state["window_values"].tolist() == [300.0, 0.0, 300.0]
    assert state["trailing_average"] == 200.0


def test_as_of_before_series_end_ignores_later_months() -> None:
    """Months after as_of are outside the window."""
    series = pd.Series([100.0, 200.0, 900.0], index=["2025-01", "2025-02", "2025-03"])
    state = RunRateModel(window=2, horizon=1).train(series, as_of="2025-02")
    assert state["trailing_average"] == 150.0


def test_forecast_repeats_average_over_horizon() -> None:
    """Each horizon month gets the trailing average."""
    series = pd.Series([100.0, 200.0, 300.0], index=["2025-01", "2025-02", "2025-03"])
    model = RunRateModel(window=3, horizon=3)
    forecast = model.forecast(model.train(series))

    assert list(forecast.index.astype(str)) == ["2025-04", "2025-05", "2025-06"]
    assert forecast.tolist() == [200.0, 200.0, 200.0]
    assert forecast.sum() == pytest.approx(600.0)


def test_forecast_sets_debug_info() -> None:
    """debug_ is populated after forecast()."""
    series = pd.Series([10.0, 20.0], index=["2025-01", "2025-02"])
    model = RunRateModel(window=2, horizon=4)
    assert model.debug_ is None

    model.forecast(model.train(series), steps=1)

    assert isinstance(model.debug_, ModelDebugInfo)
    assert model.debug_.model_name == "run_rate"
    assert model.debug_.data["horizon_steps"] == 1
    assert model.debug_.data["window_values"] == {"2025-01": 10.0, "2025-02": 20.0}
    assert model.debug_.summary() == "run_rate(as_of=2025-02, horizon_steps=1, window=2)"


@pytest.mark.parametrize("window,horizon", [(0, 3), (3, 0), (2.5, 3), (3, -1)])
def test_invalid_lengths_raise(window, horizon) -> None:
    """Window and horizon must be whole months >= 1."""
    with pytest.raises(ValueError):
        RunRateModel(window=window, horizon=horizon)


def test_empty_series_without_as_of_raises() -> None:
    """An empty series has no month to anchor on."""
    with pytest.raises(ValueError, match="empty"):
        RunRateModel(window=3, horizon=3).train(pd.Series([], dtype=float))
