"""Local NetCDF source for gridded monthly climate data.

Reads ERA5-style monthly files already on disk (for example a previous
CDS download) so the engine can run offline.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

import xarray as xr

from climatehub.config import Config
from climatehub.exceptions import ProviderError
from climatehub.imagery import GriddedTimeSeries
from climatehub.providers.base import (
    GriddedDataSource,
    ProviderStatus,
    series_from_dataset,
)

if TYPE_CHECKING:
    from climatehub._types import TimeRange
    from climatehub.aoi import AOIGeometry

logger = logging.getLogger(__name__)

_SUFFIXES: tuple[str, ...] = (".nc", ".nc4", ".netcdf")


class NetCDFDataSource(GriddedDataSource):
    """Gridded source backed by NetCDF files or an in-memory dataset.

    ``path`` may be a single file, or a directory in which
    ``<dataset_id>.nc`` is looked up. A ready ``xarray.Dataset`` can be
    passed instead of a path.

    Args:
        config: Frozen run configuration.
        path: NetCDF file or directory.
        dataset: In-memory dataset, used instead of *path*.

    Example:
        >>> source = NetCDFDataSource(Config(), path="era5_monthly.nc")
        >>> series = source.query("", ("1990-01-01", "2020-12-31"), ["total_precipitation"])  # doctest: +SKIP
    """

    _name: str = "netcdf"

    def __init__(
        self,
        config: Config,
        path: str | Path | None = None,
        dataset: xr.Dataset | None = None,
    ) -> None:
        super().__init__(config)
        self._path = Path(path).expanduser() if path is not None else None
        self._dataset = dataset

    def _resolve_path(self, dataset_id: str) -> Path:
        if self._path is None:
            raise ProviderError(
                what="No NetCDF source configured",
                cause="Neither a path nor a dataset was given",
                fix="Create NetCDFDataSource with path=... or dataset=...",
            )
        if self._path.is_dir():
            for suffix in _SUFFIXES:
                candidate = self._path / f"{dataset_id}{suffix}"
                if candidate.is_file():
                    return candidate
            raise ProviderError(
                what=f"Dataset {dataset_id!r} not found",
                cause=f"No {dataset_id}.nc in {self._path}",
                fix="Download the dataset or point path at the file",
            )
        return self._path

    def query(
        self,
        dataset_id: str,
        time_range: TimeRange,
        bands: Sequence[str],
        region: AOIGeometry | None = None,
    ) -> GriddedTimeSeries:
        # region is only an extent hint; full grids are returned and the
        # spatial reducer clips to the AOI.
        if self._dataset is not None:
            return series_from_dataset(self._dataset, time_range, bands)

        path = self._resolve_path(dataset_id)
        logger.info("Reading gridded data from %s", path)
        try:
            with xr.open_dataset(path) as ds:
                return series_from_dataset(ds.load(), time_range, bands)
        except (OSError, ValueError) as exc:
            raise ProviderError(
                what=f"Cannot read NetCDF file {path}",
                cause=str(exc),
                fix="Check the file exists and is valid NetCDF",
            ) from exc

    def check_status(self) -> ProviderStatus:
        if self._dataset is not None:
            return ProviderStatus(available=True)
        if self._path is not None and self._path.exists():
            return ProviderStatus(available=True)
        return ProviderStatus(available=False, message=f"Path not found: {self._path}")
