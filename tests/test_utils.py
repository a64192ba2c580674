"""Tests for shared utilities and configuration helpers."""

import math

import pandas as pd
import pytest

from metrics_core.config import DataPaths, PipelineConfig, parse_period, period_cutoff
from metrics_core.exceptions import ConfigError
from metrics_core.utils import fingerprint_tables, month_calendar, round_money, safe_divide, to_month


class TestSafeDivide:
    """The single division policy."""

    @pytest.mark.parametrize("denominator", [0, 0.0, None, float("nan")])
    def test_scalar_bad_denominator_is_none(self, denominator) -> None:
        assert safe_divide(1000.0, denominator) is None

    def test_scalar_null_numerator_is_none(self) -> None:
        assert safe_divide(None, 4) is None

    def test_series(self) -> None:
        result = safe_divide(pd.Series([10.0, 5.0, 1.0]), pd.Series([2.0, 0.0, None]))
        assert result.iloc[0] == 5.0
        assert math.isnan(result.iloc[1])
        assert math.isnan(result.iloc[2])
        assert not result.isin([float("inf")]).any()

    def test_series_by_scalar(self) -> None:
        assert safe_divide(pd.Series([10.0, 20.0]), 0).isna().all()


class TestRoundMoney:
    """Cent rounding shared by facts and marts."""

    def test_scalar(self) -> None:
        assert round_money(33.333) == 33.33

    def test_frame_columns_become_float(self) -> None:
        frame = pd.DataFrame({"gross": [10, 20], "net": [1.004, 2.499]})
        rounded = round_money(frame)
        assert rounded["gross"].dtype == float
        assert rounded["net"].tolist() == [1.0, 2.5]


class TestMonths:
    """Month bucketing and calendars."""

    def test_to_month(self) -> None:
        stamps = pd.Series(pd.to_datetime(["2025-01-31 23:59", "2025-02-01 00:00"]))
        assert to_month(stamps).tolist() == ["2025-01", "2025-02"]

    def test_calendar_fills_gaps(self) -> None:
        assert month_calendar(["2025-03", "2025-01", None]) == ["2025-01", "2025-02", "2025-03"]

    def test_calendar_through_never_shortens(self) -> None:
        assert month_calendar(["2025-01", "2025-03"], through="2025-02") == ["2025-01", "2025-02", "2025-03"]

    def test_empty_calendar(self) -> None:
        assert month_calendar([], through="2025-03") == []


class TestFingerprint:
    """Table-set digests."""

    def test_same_content_same_digest(self) -> None:
        a = {"t1": pd.DataFrame({"x": [1, 2]}), "t2": pd.DataFrame({"y": ["a"]})}
        b = {"t2": pd.DataFrame({"y": ["a"]}), "t1": pd.DataFrame({"x": [1, 2]})}
        assert fingerprint_tables(a) == fingerprint_tables(b)

    def test_changed_value_changes_digest(self) -> None:
        a = {"t1": pd.DataFrame({"x": [1, 2]})}
        b = {"t1": pd.DataFrame({"x": [1, 3]})}
        assert fingerprint_tables(a) != fingerprint_tables(b)


class TestConfig:
    """Periods and pipeline settings."""

    def test_period_cutoff_is_last_instant(self) -> None:
        cutoff = period_cutoff("2025-02")
        assert cutoff >= pd.Timestamp("2025-02-28 23:59:59")
        assert cutoff < pd.Timestamp("2025-03-01")

    @pytest.mark.parametrize("period", ["2025-13", "2025/03", "March", "2025-3"])
    def test_invalid_period_raises(self, period: str) -> None:
        with pytest.raises(ConfigError):
            parse_period(period)

    @pytest.mark.parametrize(
        "settings",
        [
            {"reconciliation_tolerance": -1.0},
            {"max_offending_rows": 0},
            {"lock_timeout_seconds": 0},
            {"forecast_metrics": ["cac"]},
        ],
    )
    def test_invalid_config_raises(self, settings: dict) -> None:
        with pytest.raises(ConfigError):
            PipelineConfig(**settings).validate()

    def test_data_paths_layout(self, tmp_path) -> None:
        paths = DataPaths.from_root(tmp_path)
        paths.ensure_dirs()
        assert paths.published.is_dir()
        assert paths.audit.is_dir()
        assert paths.published_period("2025-03") == tmp_path / "published" / "2025-03"
