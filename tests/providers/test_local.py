"""Tests for the NetCDF data source and dataset conversion."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import numpy as np
import pytest
import xarray as xr

from climatehub.config import Config
from climatehub.exceptions import ProviderError
from climatehub.providers.base import GriddedDataSource, series_from_dataset
from climatehub.providers.local import NetCDFDataSource

DatasetFactory = Callable[..., xr.Dataset]

_RANGE = ("2000-01-01", "2002-12-31")


@pytest.mark.unit
class TestSeriesFromDataset:
    """xarray dataset to GriddedTimeSeries."""

    def test_short_names_mapped(self, era5_dataset: DatasetFactory) -> None:
        series = series_from_dataset(era5_dataset(), _RANGE)
        assert set(series.band_names) == {"total_precipitation", "mean_2m_air_temperature"}
        assert len(series) == 36

    def test_bands_filter(self, era5_dataset: DatasetFactory) -> None:
        series = series_from_dataset(era5_dataset(), _RANGE, ["total_precipitation"])
        assert series.band_names == ("total_precipitation",)
        assert series.images[0].band("total_precipitation")[0, 0] == pytest.approx(0.01)

    def test_time_range_applied(self, era5_dataset: DatasetFactory) -> None:
        series = series_from_dataset(era5_dataset(), ("2001-01-01", "2001-12-31"))
        assert len(series) == 12
        assert series.start.year == series.end.year == 2001
        assert series.images[0].timestamp == datetime(2001, 1, 1)

    def test_timestamps_normalised_to_month_start(
        self, era5_dataset: DatasetFactory
    ) -> None:
        ds = era5_dataset(periods=3)
        ds = ds.assign_coords(time=ds["time"].values + np.timedelta64(14, "D"))
        series = series_from_dataset(ds, ("2000-01-01", "2000-12-31"))
        assert [img.timestamp for img in series] == [
            datetime(2000, 1, 1),
            datetime(2000, 2, 1),
            datetime(2000, 3, 1),
        ]

    def test_longitudes_wrapped(self, era5_dataset: DatasetFactory) -> None:
        ds = era5_dataset(lon=np.array([358.5, 359.5, 0.5, 1.5]))
        series = series_from_dataset(ds, _RANGE)
        assert list(series.grid.lon) == [-1.5, -0.5, 0.5, 1.5]

    def test_grid_keeps_descending_latitude(self, era5_dataset: DatasetFactory) -> None:
        series = series_from_dataset(era5_dataset(), _RANGE)
        assert series.grid.north_up
        assert series.grid.shape == (4, 4)

    def test_extra_dimension_first_slice(self, era5_dataset: DatasetFactory) -> None:
        ds = era5_dataset(variables=("tp",))
        stacked = xr.concat([ds, ds * 2], dim="expver")
        series = series_from_dataset(stacked, _RANGE)
        assert series.images[0].band("total_precipitation")[0, 0] == pytest.approx(0.01)

    def test_missing_band_logged(
        self, era5_dataset: DatasetFactory, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="climatehub.providers.base"):
            series = series_from_dataset(
                era5_dataset(variables=("tp",)),
                _RANGE,
                ["total_precipitation", "minimum_2m_air_temperature"],
            )
        assert series.band_names == ("total_precipitation",)
        assert "minimum_2m_air_temperature" in caplog.text

    def test_unsupported_layout(self) -> None:
        ds = xr.Dataset({"tp": (("a", "b"), np.zeros((2, 2)))})
        with pytest.raises(ProviderError, match="Unsupported gridded dataset layout"):
            series_from_dataset(ds, _RANGE)


@pytest.mark.unit
class TestNetCDFDataSource:
    """File and in-memory NetCDF sources."""

    def test_is_gridded_source(self) -> None:
        source = NetCDFDataSource(Config(), dataset=xr.Dataset())
        assert isinstance(source, GriddedDataSource)
        assert source.name == "netcdf"

    def test_in_memory_dataset(self, era5_dataset: DatasetFactory) -> None:
        source = NetCDFDataSource(Config(), dataset=era5_dataset())
        series = source.query("", _RANGE, ["mean_2m_air_temperature"])
        assert series.band_names == ("mean_2m_air_temperature",)

    def test_reads_file(self, era5_dataset: DatasetFactory, tmp_path: Path) -> None:
        path = tmp_path / "era5.nc"
        era5_dataset().to_netcdf(path, engine="h5netcdf")
        source = NetCDFDataSource(Config(), path=path)
        series = source.query("ignored", _RANGE, ["total_precipitation"])
        assert len(series) == 36

    def test_directory_lookup_by_dataset_id(
        self, era5_dataset: DatasetFactory, tmp_path: Path
    ) -> None:
        era5_dataset().to_netcdf(tmp_path / "monthly.nc", engine="h5netcdf")
        source = NetCDFDataSource(Config(), path=tmp_path)
        assert len(source.query("monthly", _RANGE, ["total_precipitation"])) == 36

    def test_directory_missing_dataset(self, tmp_path: Path) -> None:
        source = NetCDFDataSource(Config(), path=tmp_path)
        with pytest.raises(ProviderError, match="not found"):
            source.query("absent", _RANGE, ["total_precipitation"])

    def test_corrupt_file(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.nc"
        path.write_bytes(b"not a netcdf file")
        with pytest.raises(ProviderError, match="Cannot read NetCDF"):
            NetCDFDataSource(Config(), path=path).query("", _RANGE, ["total_precipitation"])

    def test_no_path_or_dataset(self) -> None:
        with pytest.raises(ProviderError, match="No NetCDF source"):
            NetCDFDataSource(Config()).query("", _RANGE, ["total_precipitation"])

    def test_check_status(self, tmp_path: Path) -> None:
        assert NetCDFDataSource(Config(), path=tmp_path).check_status().available
        missing = NetCDFDataSource(Config(), path=tmp_path / "missing.nc").check_status()
        assert not missing.available
        assert "missing.nc" in missing.message
