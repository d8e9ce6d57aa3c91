"""Tests for the climate variable registry."""

from __future__ import annotations

import pytest

from climatehub.annual import default_annual_method
from climatehub.exceptions import ConfigurationError
from climatehub.units import CONVERSIONS
from climatehub.variables import DEFAULT_VARIABLES, TREND_COLOR, VARIABLES, get_variable


@pytest.mark.unit
class TestRegistry:
    """Registry entries agree with the conversion table."""

    def test_default_variables(self) -> None:
        assert DEFAULT_VARIABLES == ("tp", "tmean", "tmin", "tmax")

    @pytest.mark.parametrize("key", list(VARIABLES))
    def test_band_matches_conversion(self, key: str) -> None:
        var = VARIABLES[key]
        assert CONVERSIONS[var.raw_band].band == var.band

    @pytest.mark.parametrize("key", list(VARIABLES))
    def test_annual_method_matches_default(self, key: str) -> None:
        var = VARIABLES[key]
        assert var.annual_method == default_annual_method(var.band)

    @pytest.mark.parametrize(
        ("key", "label"),
        [("tp", "TPmm"), ("tmean", "TmeanC"), ("tmin", "TminC"), ("tmax", "TmaxC")],
    )
    def test_export_labels(self, key: str, label: str) -> None:
        assert VARIABLES[key].var_label == label

    def test_trend_colour(self) -> None:
        assert TREND_COLOR == "#a71930"

    def test_precipitation_vis(self) -> None:
        vis = VARIABLES["tp"].vis
        assert (vis.min, vis.max) == (0, 800)
        assert len(vis.palette) == 9


@pytest.mark.unit
class TestGetVariable:
    """Lookup by key, band or title."""

    def test_by_key(self) -> None:
        assert get_variable("tmean").band == "tmean_C"

    def test_by_band(self) -> None:
        assert get_variable("tmax_C").key == "tmax"

    def test_by_title(self) -> None:
        assert get_variable("Total Precipitation (mm)").key == "tp"

    def test_unknown(self) -> None:
        with pytest.raises(ConfigurationError, match="Unknown climate variable"):
            get_variable("snow")
