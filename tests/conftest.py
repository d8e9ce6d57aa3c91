"""Shared test fixtures for ClimateHub test suite."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import date, datetime

import numpy as np
import pandas as pd
import pytest
import xarray as xr
from shapely.geometry import box

from climatehub.aoi import AOIGeometry
from climatehub.config import Config
from climatehub.imagery import GriddedImage, GriddedTimeSeries, GridSpec

SeriesFactory = Callable[..., GriddedTimeSeries]


@pytest.fixture
def test_config() -> Config:
    """Return a fresh default Config instance for test isolation."""
    return Config(start_year=2000, end_year=2002)


@pytest.fixture
def grid() -> GridSpec:
    """Return a 4x4 north-up grid of 1-degree cells over (0..4, 0..4)."""
    return GridSpec.regular(west=0.0, south=0.0, east=4.0, north=4.0, step=1.0)


@pytest.fixture
def aoi() -> AOIGeometry:
    """Return an AOI covering the 2x2 cells around (2, 2)."""
    return AOIGeometry(box(1.0, 1.0, 3.0, 3.0), asset_id="test_aoi")


@pytest.fixture
def make_series(grid: GridSpec) -> SeriesFactory:
    """Return a factory building monthly series with constant-valued bands.

    ``values`` maps band name to either a constant or a callable of
    ``(year, month)`` returning the constant for that month.
    """

    def factory(
        values: Mapping[str, float | Callable[[int, int], float]],
        start_year: int = 2000,
        end_year: int = 2002,
        skip: set[tuple[int, int]] | None = None,
    ) -> GriddedTimeSeries:
        images = []
        for year in range(start_year, end_year + 1):
            for month in range(1, 13):
                if skip and (year, month) in skip:
                    continue
                bands = {}
                for name, value in values.items():
                    v = value(year, month) if callable(value) else value
                    bands[name] = np.full(grid.shape, float(v))
                images.append(
                    GriddedImage(bands=bands, grid=grid, timestamp=datetime(year, month, 1))
                )
        return GriddedTimeSeries(
            images=tuple(images),
            grid=grid,
            start=date(start_year, 1, 1),
            end=date(end_year, 12, 31),
            band_names=tuple(values),
        )

    return factory


@pytest.fixture
def era5_dataset() -> Callable[..., xr.Dataset]:
    """Return a factory building ERA5-style monthly datasets.

    Variables use NetCDF short names (``tp`` in m, ``t2m`` in K) on a
    descending-latitude grid matching the ``grid`` fixture.
    """

    def factory(
        start: str = "2000-01-01",
        periods: int = 36,
        variables: tuple[str, ...] = ("tp", "t2m"),
        lon: np.ndarray | None = None,
    ) -> xr.Dataset:
        times = pd.date_range(start, periods=periods, freq="MS")
        lat = np.array([3.5, 2.5, 1.5, 0.5])
        lon_values = np.array([0.5, 1.5, 2.5, 3.5]) if lon is None else lon
        shape = (periods, lat.size, lon_values.size)
        fill = {"tp": 0.01, "t2m": 293.15, "mn2t": 283.15, "mx2t": 303.15}
        return xr.Dataset(
            {
                name: (("time", "latitude", "longitude"), np.full(shape, fill[name]))
                for name in variables
            },
            coords={"time": times, "latitude": lat, "longitude": lon_values},
        )

    return factory
