"""Tests for raw ERA5 band unit conversion."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime

import numpy as np
import pytest

from climatehub.exceptions import MissingBandError
from climatehub.imagery import GriddedImage, GriddedTimeSeries, GridSpec
from climatehub.units import CONVERSIONS, RAW_BANDS, convert_image, convert_series

SeriesFactory = Callable[..., GriddedTimeSeries]


@pytest.mark.unit
class TestConversionTable:
    """The conversion table covers every raw band."""

    def test_raw_bands(self) -> None:
        assert RAW_BANDS == [
            "total_precipitation",
            "mean_2m_air_temperature",
            "minimum_2m_air_temperature",
            "maximum_2m_air_temperature",
            "u_component_of_wind_10m",
            "v_component_of_wind_10m",
        ]

    def test_analysis_band_names(self) -> None:
        assert [c.band for c in CONVERSIONS.values()] == [
            "tp_mm",
            "tmean_C",
            "tmin_C",
            "tmax_C",
            "u10",
            "v10",
        ]


@pytest.mark.unit
class TestConvertImage:
    """Per-image conversion."""

    def _image(self, grid: GridSpec, **bands: float) -> GriddedImage:
        return GriddedImage(
            {name: np.full(grid.shape, v) for name, v in bands.items()},
            grid,
            timestamp=datetime(2000, 6, 1),
            properties={"source": "era5"},
        )

    def test_precipitation_metres_to_mm(self, grid: GridSpec) -> None:
        out = convert_image(self._image(grid, total_precipitation=0.001))
        assert out.band("tp_mm")[0, 0] == pytest.approx(1.0)

    def test_kelvin_to_celsius(self, grid: GridSpec) -> None:
        out = convert_image(
            self._image(
                grid,
                mean_2m_air_temperature=273.15,
                minimum_2m_air_temperature=263.15,
                maximum_2m_air_temperature=303.15,
            )
        )
        assert out.band("tmean_C")[0, 0] == pytest.approx(0.0)
        assert out.band("tmin_C")[0, 0] == pytest.approx(-10.0)
        assert out.band("tmax_C")[0, 0] == pytest.approx(30.0)

    def test_wind_is_renamed_only(self, grid: GridSpec) -> None:
        out = convert_image(self._image(grid, u_component_of_wind_10m=-3.5))
        assert out.band_names == ("u10",)
        assert out.band("u10")[0, 0] == pytest.approx(-3.5)

    def test_timestamp_and_properties_preserved(self, grid: GridSpec) -> None:
        out = convert_image(self._image(grid, total_precipitation=0.002))
        assert out.timestamp == datetime(2000, 6, 1)
        assert out.get("source") == "era5"

    def test_nan_passes_through(self, grid: GridSpec) -> None:
        out = convert_image(self._image(grid, total_precipitation=np.nan))
        assert np.isnan(out.band("tp_mm")).all()

    def test_requested_band_missing(self, grid: GridSpec) -> None:
        with pytest.raises(MissingBandError) as exc_info:
            convert_image(self._image(grid, total_precipitation=0.0), ["mean_2m_air_temperature"])
        assert exc_info.value.band == "mean_2m_air_temperature"

    def test_unknown_band_rejected(self, grid: GridSpec) -> None:
        with pytest.raises(MissingBandError):
            convert_image(self._image(grid, dewpoint=280.0), ["dewpoint"])

    def test_unrelated_bands_dropped(self, grid: GridSpec) -> None:
        out = convert_image(self._image(grid, total_precipitation=0.0, dewpoint=280.0))
        assert out.band_names == ("tp_mm",)


@pytest.mark.unit
class TestConvertSeries:
    """Whole-series conversion."""

    def test_every_image_converted(self, make_series: SeriesFactory) -> None:
        series = make_series({"total_precipitation": 0.01, "mean_2m_air_temperature": 300.0})
        out = convert_series(series)
        assert out.band_names == ("tp_mm", "tmean_C")
        assert len(out) == len(series)
        assert all(img.band("tp_mm")[0, 0] == pytest.approx(10.0) for img in out)
        assert [img.timestamp for img in out] == [img.timestamp for img in series]

    def test_missing_requested_band(self, make_series: SeriesFactory) -> None:
        series = make_series({"total_precipitation": 0.01})
        with pytest.raises(MissingBandError):
            convert_series(series, ["mean_2m_air_temperature"])

    def test_empty_series_keeps_converted_band_names(self, grid: GridSpec) -> None:
        series = GriddedTimeSeries(
            (),
            grid,
            date(2000, 1, 1),
            date(2000, 12, 31),
            band_names=("total_precipitation",),
        )
        out = convert_series(series)
        assert len(out) == 0
        assert out.band_names == ("tp_mm",)
