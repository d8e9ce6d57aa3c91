"""Gridded data source contract and shared provider types.

Defines the ``GriddedDataSource`` abstract base class and the helper that
turns an xarray dataset into a ``GriddedTimeSeries``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

import numpy as np
import pandas as pd
from pydantic import BaseModel, ConfigDict

from climatehub._types import TimeRange
from climatehub.config import Config
from climatehub.exceptions import ProviderError
from climatehub.imagery import GridSpec, GriddedImage, GriddedTimeSeries

if TYPE_CHECKING:
    import xarray as xr

    from climatehub.aoi import AOIGeometry

logger = logging.getLogger(__name__)

_TIME_DIMS: tuple[str, ...] = ("time", "valid_time", "date")
_LAT_DIMS: tuple[str, ...] = ("latitude", "lat", "y")
_LON_DIMS: tuple[str, ...] = ("longitude", "lon", "x")

# NetCDF short names of ERA5 variables mapped onto raw band names.
ERA5_SHORT_NAMES: dict[str, str] = {
    "tp": "total_precipitation",
    "t2m": "mean_2m_air_temperature",
    "2t": "mean_2m_air_temperature",
    "mn2t": "minimum_2m_air_temperature",
    "mx2t": "maximum_2m_air_temperature",
    "u10": "u_component_of_wind_10m",
    "v10": "v_component_of_wind_10m",
}


class ProviderCredentials(BaseModel):
    """Credentials for authenticating with a data source.

    Example:
        >>> creds = ProviderCredentials(api_key="placeholder")
        >>> creds.api_key
        'placeholder'
    """

    model_config = ConfigDict(frozen=True)

    username: str = ""
    password: str = ""
    api_key: str = ""


@dataclass
class ProviderStatus:
    """Operational status of a data source.

    Args:
        available: ``True`` if the source is operational.
        message: Human-readable status message (empty when healthy).
    """

    available: bool = False
    message: str = ""


class GriddedDataSource(ABC):
    """Abstract base class for gridded monthly climate data sources.

    Subclasses set ``_name`` and implement ``query`` and ``check_status``.

    Args:
        config: Frozen run configuration.
    """

    _name: str = ""

    def __init__(self, config: Config) -> None:
        self._config = config

    @property
    def name(self) -> str:
        """Source identifier used in the registry."""
        return self._name

    def authenticate(self, credentials: ProviderCredentials) -> None:  # noqa: B027
        """Validate and store credentials. Sources without auth ignore them."""

    @abstractmethod
    def query(
        self,
        dataset_id: str,
        time_range: TimeRange,
        bands: Sequence[str],
        region: AOIGeometry | None = None,
    ) -> GriddedTimeSeries:
        """Return the monthly images of *bands* within *time_range*.

        Args:
            dataset_id: Dataset identifier.
            time_range: ISO-8601 ``(start, end)`` dates, both inclusive.
            bands: Raw band names to load.
            region: Optional AOI used to limit the spatial extent.

        Returns:
            Time series of raw (unconverted) images.

        Raises:
            ProviderError: If the data cannot be retrieved.
        """
        ...

    @abstractmethod
    def check_status(self) -> ProviderStatus:
        """Check operational status. Never raises."""
        ...


def _find_dim(names: Sequence[str], candidates: Sequence[str]) -> str | None:
    for candidate in candidates:
        if candidate in names:
            return candidate
    return None


def _month_start(value: object) -> datetime:
    ts = pd.Timestamp(value)  # type: ignore[arg-type]
    return datetime(ts.year, ts.month, 1)


def series_from_dataset(
    ds: xr.Dataset,
    time_range: TimeRange,
    bands: Sequence[str] | None = None,
    names: Mapping[str, str] | None = None,
) -> GriddedTimeSeries:
    """Convert an xarray dataset of monthly fields into a time series.

    Variables are matched by raw band name or through *names* (NetCDF
    short name to raw band, defaulting to the ERA5 short names).
    Longitudes in 0..360 are wrapped to -180..180. Timestamps are
    normalised to month starts.

    Args:
        ds: Dataset with a time dimension and latitude/longitude dimensions.
        time_range: ISO-8601 ``(start, end)`` dates, both inclusive.
        bands: Raw bands to keep; ``None`` keeps every recognised variable.
        names: Short-name to raw-band mapping.

    Returns:
        Raw ``GriddedTimeSeries`` ordered by time.

    Raises:
        ProviderError: If the dataset lacks time or spatial dimensions.
    """
    names = dict(ERA5_SHORT_NAMES if names is None else names)
    dims = [str(d) for d in ds.dims]
    time_dim = _find_dim(dims, _TIME_DIMS)
    lat_dim = _find_dim(dims, _LAT_DIMS)
    lon_dim = _find_dim(dims, _LON_DIMS)
    if time_dim is None or lat_dim is None or lon_dim is None:
        raise ProviderError(
            what="Unsupported gridded dataset layout",
            cause=f"Expected time, latitude and longitude dimensions, got {dims}",
            fix="Provide a dataset with (time, latitude, longitude) variables",
        )

    lon_values = ds[lon_dim].values
    if lon_values.size and float(np.nanmax(lon_values)) > 180.0:
        ds = ds.assign_coords({lon_dim: ((ds[lon_dim] + 180.0) % 360.0) - 180.0})
        ds = ds.sortby(lon_dim)

    start = date.fromisoformat(time_range[0])
    end = date.fromisoformat(time_range[1])
    ds = ds.sel({time_dim: slice(start.isoformat(), f"{end.isoformat()}T23:59:59")})
    ds = ds.sortby(time_dim)

    selected: dict[str, str] = {}
    for var in ds.data_vars:
        raw = names.get(str(var), str(var))
        if bands is None and raw not in names.values():
            continue
        if bands is not None and raw not in bands:
            continue
        selected[raw] = str(var)
    if bands is not None:
        absent = [b for b in bands if b not in selected]
        if absent:
            logger.warning("Dataset lacks requested bands: %s", absent)

    grid = GridSpec(lat=ds[lat_dim].values, lon=ds[lon_dim].values)
    arrays: dict[str, np.ndarray] = {}
    for raw, var in selected.items():
        da = ds[var]
        extra = [d for d in da.dims if d not in (time_dim, lat_dim, lon_dim)]
        if extra:
            # e.g. ERA5T "expver" or ensemble "number": keep the first slice.
            da = da.isel({d: 0 for d in extra})
        arrays[raw] = da.transpose(time_dim, lat_dim, lon_dim).values

    images = [
        GriddedImage(
            bands={raw: values[i] for raw, values in arrays.items()},
            grid=grid,
            timestamp=_month_start(t),
        )
        for i, t in enumerate(ds[time_dim].values)
    ]
    logger.debug(
        "Loaded %d monthly images with bands %s on grid %s",
        len(images),
        list(selected),
        grid.shape,
    )
    return GriddedTimeSeries(
        images=tuple(images),
        grid=grid,
        start=start,
        end=end,
        band_names=tuple(selected),
    )
