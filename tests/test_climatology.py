"""Tests for monthly climatology building."""

from __future__ import annotations

from collections.abc import Callable

import numpy as np
import pytest

from climatehub.climatology import (
    MONTHS,
    MonthlyClimatology,
    build_monthly_climatology,
    normalize_metric,
)
from climatehub.exceptions import ConfigurationError, EmptyGroupWarning, MissingBandError
from climatehub.imagery import GriddedTimeSeries

SeriesFactory = Callable[..., GriddedTimeSeries]


@pytest.mark.unit
class TestNormalizeMetric:
    """Metric names are validated case-insensitively."""

    @pytest.mark.parametrize(("raw", "expected"), [("MEAN", "mean"), ("Median", "median")])
    def test_accepted(self, raw: str, expected: str) -> None:
        assert normalize_metric(raw) == expected

    def test_unknown_rejected(self) -> None:
        with pytest.raises(ConfigurationError, match="averaging metric"):
            normalize_metric("mode")


@pytest.mark.unit
class TestBuildMonthlyClimatology:
    """Twelve tagged composites, one per calendar month."""

    def test_twelve_months_in_order(self, make_series: SeriesFactory) -> None:
        clim = build_monthly_climatology(make_series({"tp_mm": 1.0}), "tp_mm", "mean")
        assert len(clim) == 12
        assert [img.get("month") for img in clim] == list(MONTHS)

    def test_images_are_tagged(self, make_series: SeriesFactory) -> None:
        clim = build_monthly_climatology(make_series({"tp_mm": 1.0}), "tp_mm", "MEDIAN")
        img = clim.for_month(4)
        assert img.get("band") == "tp_mm"
        assert img.get("metric") == "median"
        assert img.get("source_count") == 3
        assert img.band_names == ("tp_mm",)

    def test_mean_across_years(self, make_series: SeriesFactory) -> None:
        # Year 2000 -> 0, 2001 -> 1, 2002 -> 5, plus the month number.
        offsets = {2000: 0.0, 2001: 1.0, 2002: 5.0}
        series = make_series({"x": lambda y, m: m + offsets[y]})
        clim = build_monthly_climatology(series, "x", "mean")
        assert clim.for_month(1).band("x")[0, 0] == pytest.approx(3.0)
        assert clim.for_month(12).band("x")[0, 0] == pytest.approx(14.0)

    def test_median_across_years(self, make_series: SeriesFactory) -> None:
        offsets = {2000: 0.0, 2001: 1.0, 2002: 5.0}
        series = make_series({"x": lambda y, m: m + offsets[y]})
        clim = build_monthly_climatology(series, "x", "median")
        assert clim.for_month(1).band("x")[0, 0] == pytest.approx(2.0)

    def test_only_requested_band_kept(self, make_series: SeriesFactory) -> None:
        series = make_series({"tp_mm": 1.0, "tmean_C": 20.0})
        clim = build_monthly_climatology(series, "tmean_C", "mean")
        assert all(img.band_names == ("tmean_C",) for img in clim)

    def test_empty_month_is_no_data_and_warns(self, make_series: SeriesFactory) -> None:
        skip = {(y, 2) for y in (2000, 2001, 2002)}
        series = make_series({"tp_mm": 1.0}, skip=skip)
        with pytest.warns(EmptyGroupWarning, match="month 2"):
            clim = build_monthly_climatology(series, "tp_mm", "mean")
        assert len(clim) == 12
        assert clim.empty_months == [2]
        assert np.isnan(clim.for_month(2).band("tp_mm")).all()
        assert clim.for_month(3).band("tp_mm")[0, 0] == pytest.approx(1.0)

    def test_partial_month_uses_available_years(self, make_series: SeriesFactory) -> None:
        series = make_series({"x": lambda y, m: float(y - 2000)}, skip={(2002, 6)})
        clim = build_monthly_climatology(series, "x", "mean")
        assert clim.for_month(6).get("source_count") == 2
        assert clim.for_month(6).band("x")[0, 0] == pytest.approx(0.5)

    def test_rebuilding_gives_identical_composites(self, make_series: SeriesFactory) -> None:
        series = make_series({"x": lambda y, m: y * 0.01 + m})
        first = build_monthly_climatology(series, "x", "mean")
        second = build_monthly_climatology(series, "x", "mean")
        for a, b in zip(first, second):
            np.testing.assert_array_equal(a.band("x"), b.band("x"))
            assert a.properties == b.properties
            assert a.timestamp == b.timestamp
        assert [img.get("month") for img in second] == list(range(1, 13))

    def test_missing_band(self, make_series: SeriesFactory) -> None:
        with pytest.raises(MissingBandError):
            build_monthly_climatology(make_series({"tp_mm": 1.0}), "tmax_C", "mean")

    def test_invalid_metric(self, make_series: SeriesFactory) -> None:
        with pytest.raises(ConfigurationError):
            build_monthly_climatology(make_series({"tp_mm": 1.0}), "tp_mm", "max")


@pytest.mark.unit
class TestMonthlyClimatology:
    """Container invariants."""

    def test_for_month_rejects_out_of_range(self, make_series: SeriesFactory) -> None:
        clim = build_monthly_climatology(make_series({"tp_mm": 1.0}), "tp_mm", "mean")
        with pytest.raises(ConfigurationError, match="Invalid month"):
            clim.for_month(13)

    def test_requires_twelve_ordered_months(self, make_series: SeriesFactory) -> None:
        clim = build_monthly_climatology(make_series({"tp_mm": 1.0}), "tp_mm", "mean")
        with pytest.raises(ValueError, match="months 1..12"):
            MonthlyClimatology(band="tp_mm", metric="mean", images=clim.images[:11])
