"""Tests for the shared calendar-grouping helper."""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np
import pytest

from climatehub._pipeline import reduce_by_calendar_field
from climatehub.exceptions import EmptyGroupWarning, MissingBandError
from climatehub.imagery import GriddedTimeSeries

SeriesFactory = Callable[..., GriddedTimeSeries]


@pytest.mark.unit
class TestReduceByCalendarField:
    """Grouping by month or year."""

    def test_groups_in_requested_order(self, make_series: SeriesFactory) -> None:
        series = make_series({"x": lambda y, m: float(m)})
        groups = reduce_by_calendar_field(series, "month", [12, 1], "x", "mean")
        assert [value for value, _, _ in groups] == [12, 1]
        assert groups[0][1].band("x")[0, 0] == pytest.approx(12.0)
        assert groups[0][2] == 3

    def test_year_sum(self, make_series: SeriesFactory) -> None:
        groups = reduce_by_calendar_field(make_series({"x": 2.0}), "year", [2001], "x", "sum")
        assert groups[0][1].band("x")[0, 0] == pytest.approx(24.0)

    def test_restricts_to_band(self, make_series: SeriesFactory) -> None:
        series = make_series({"x": 1.0, "y": 2.0})
        groups = reduce_by_calendar_field(series, "month", [1], "y", "mean")
        assert groups[0][1].band_names == ("y",)

    def test_empty_group(
        self, make_series: SeriesFactory, caplog: pytest.LogCaptureFixture
    ) -> None:
        with (
            caplog.at_level(logging.WARNING, logger="climatehub._pipeline"),
            pytest.warns(EmptyGroupWarning, match="year 1999"),
        ):
            groups = reduce_by_calendar_field(make_series({"x": 1.0}), "year", [1999], "x", "sum")
        value, composite, count = groups[0]
        assert (value, count) == (1999, 0)
        assert np.isnan(composite.band("x")).all()
        assert "No source images for year 1999" in caplog.text

    def test_missing_band(self, make_series: SeriesFactory) -> None:
        with pytest.raises(MissingBandError):
            reduce_by_calendar_field(make_series({"x": 1.0}), "month", [1], "z", "mean")
