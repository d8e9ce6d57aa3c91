"""Gridded image and time series data model.

A ``GriddedImage`` is a set of named 2-D bands on a fixed lat/lon grid,
tagged with a month-start timestamp. A ``GriddedTimeSeries`` is an
ordered stack of such images sharing one grid. Both are immutable: every
transform returns a new object and band arrays are read-only.

This module is also the in-process implementation of the gridded-data
platform contract: ``filter_calendar_field`` and ``reduce``.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime
from types import MappingProxyType
from typing import Any

import numpy as np

from climatehub._types import CalendarField, FloatArray, ReduceMethod
from climatehub.exceptions import ConfigurationError, MissingBandError

logger = logging.getLogger(__name__)

# Metres per degree of latitude on the WGS84 ellipsoid (mean).
_METRES_PER_DEGREE: float = 111_320.0
# ERA5 native grid spacing, used when an axis has a single coordinate.
_DEFAULT_STEP_DEG: float = 0.25

_REDUCE_METHODS: frozenset[str] = frozenset({"mean", "median", "sum"})
_CALENDAR_FIELDS: frozenset[str] = frozenset({"month", "year"})


def _readonly(values: Any) -> FloatArray:
    """Return a float copy of *values* that cannot be written to."""
    arr: FloatArray = np.array(values, dtype=np.float64, copy=True)
    arr.setflags(write=False)
    return arr


def _axis_step(coords: FloatArray) -> float:
    if coords.size < 2:
        return _DEFAULT_STEP_DEG
    return float(abs(coords[1] - coords[0]))


@dataclass(frozen=True, eq=False)
class GridSpec:
    """Spatial reference shared by every image of a series.

    Coordinates are cell centres in WGS84 degrees (EPSG:4326). Latitude
    may be ascending or descending; ERA5 files are usually descending.

    Args:
        lat: 1-D latitude coordinates (rows).
        lon: 1-D longitude coordinates (columns).

    Example:
        >>> grid = GridSpec.regular(west=-70.0, south=8.0, east=-65.0, north=10.0, step=0.25)
        >>> grid.shape
        (8, 20)
    """

    lat: FloatArray
    lon: FloatArray

    def __post_init__(self) -> None:
        lat = _readonly(self.lat)
        lon = _readonly(self.lon)
        if lat.ndim != 1 or lon.ndim != 1:
            msg = "GridSpec coordinates must be 1-D arrays"
            raise ValueError(msg)
        object.__setattr__(self, "lat", lat)
        object.__setattr__(self, "lon", lon)

    @classmethod
    def regular(
        cls,
        west: float,
        south: float,
        east: float,
        north: float,
        step: float = _DEFAULT_STEP_DEG,
    ) -> GridSpec:
        """Build a north-up grid whose cell edges span the given box."""
        n_rows = max(int(round((north - south) / step)), 1)
        n_cols = max(int(round((east - west) / step)), 1)
        lat = north - step * (np.arange(n_rows) + 0.5)
        lon = west + step * (np.arange(n_cols) + 0.5)
        return cls(lat=lat, lon=lon)

    @property
    def shape(self) -> tuple[int, int]:
        """``(rows, cols)`` of every band on this grid."""
        return (int(self.lat.size), int(self.lon.size))

    @property
    def lat_step(self) -> float:
        return _axis_step(self.lat)

    @property
    def lon_step(self) -> float:
        return _axis_step(self.lon)

    @property
    def nominal_scale(self) -> float:
        """Approximate native pixel size in metres (north-south)."""
        return self.lat_step * _METRES_PER_DEGREE

    @property
    def north_up(self) -> bool:
        """``True`` when row 0 is the northernmost row."""
        return self.lat.size < 2 or bool(self.lat[0] > self.lat[-1])

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Cell-edge bounding box ``(minx, miny, maxx, maxy)``."""
        half_lat = self.lat_step / 2
        half_lon = self.lon_step / 2
        return (
            float(self.lon.min()) - half_lon,
            float(self.lat.min()) - half_lat,
            float(self.lon.max()) + half_lon,
            float(self.lat.max()) + half_lat,
        )

    def cell_centres(self) -> tuple[FloatArray, FloatArray]:
        """Return 2-D ``(lon, lat)`` arrays of cell centres."""
        lon2d, lat2d = np.meshgrid(self.lon, self.lat)
        return lon2d, lat2d

    def same_as(self, other: GridSpec) -> bool:
        """Compare coordinates exactly."""
        return bool(
            np.array_equal(self.lat, other.lat) and np.array_equal(self.lon, other.lon)
        )

    def __repr__(self) -> str:
        rows, cols = self.shape
        return f"GridSpec(shape=({rows}, {cols}), bounds={self.bounds})"


@dataclass(frozen=True, eq=False)
class GriddedImage:
    """An immutable multi-band 2-D field on a fixed grid.

    Args:
        bands: Mapping of band name to 2-D array shaped like ``grid``.
        grid: Spatial reference of every band.
        timestamp: Month-start acquisition time, or ``None`` for composites.
        properties: Free-form metadata (e.g. ``month``, ``band``, ``metric``).

    Example:
        >>> grid = GridSpec.regular(0.0, 0.0, 1.0, 1.0, step=0.5)
        >>> img = GriddedImage({"tp_mm": np.ones((2, 2))}, grid, datetime(2000, 1, 1))
        >>> img.band_names
        ('tp_mm',)
    """

    bands: Mapping[str, FloatArray]
    grid: GridSpec
    timestamp: datetime | None = None
    properties: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen_bands: dict[str, FloatArray] = {}
        for name, values in self.bands.items():
            arr = _readonly(values)
            if arr.shape != self.grid.shape:
                msg = (
                    f"Band {name!r} has shape {arr.shape}, "
                    f"expected grid shape {self.grid.shape}"
                )
                raise ValueError(msg)
            frozen_bands[name] = arr
        object.__setattr__(self, "bands", MappingProxyType(frozen_bands))
        object.__setattr__(self, "properties", MappingProxyType(dict(self.properties)))

    @classmethod
    def no_data(
        cls,
        grid: GridSpec,
        bands: Sequence[str],
        properties: Mapping[str, Any] | None = None,
    ) -> GriddedImage:
        """Build an all-NaN image, the result of reducing zero images."""
        empty = np.full(grid.shape, np.nan, dtype=np.float64)
        return cls(
            bands={name: empty for name in bands},
            grid=grid,
            timestamp=None,
            properties=properties or {},
        )

    @property
    def band_names(self) -> tuple[str, ...]:
        return tuple(self.bands)

    def band(self, name: str) -> FloatArray:
        """Return the read-only array of band *name*.

        Raises:
            MissingBandError: If the image has no such band.
        """
        try:
            return self.bands[name]
        except KeyError:
            raise MissingBandError(name, available=list(self.bands)) from None

    def get(self, key: str, default: Any = None) -> Any:
        """Return metadata property *key*."""
        return self.properties.get(key, default)

    def select(self, names: Sequence[str]) -> GriddedImage:
        """Return a new image carrying only the bands in *names*."""
        return GriddedImage(
            bands={name: self.band(name) for name in names},
            grid=self.grid,
            timestamp=self.timestamp,
            properties=self.properties,
        )

    def with_bands(self, bands: Mapping[str, FloatArray]) -> GriddedImage:
        """Return a new image with *bands* added or replaced."""
        merged = dict(self.bands)
        merged.update(bands)
        return GriddedImage(
            bands=merged,
            grid=self.grid,
            timestamp=self.timestamp,
            properties=self.properties,
        )

    def with_properties(self, **properties: Any) -> GriddedImage:
        """Return a new image with extra metadata properties."""
        merged = dict(self.properties)
        merged.update(properties)
        return GriddedImage(
            bands=self.bands,
            grid=self.grid,
            timestamp=self.timestamp,
            properties=merged,
        )

    def __repr__(self) -> str:
        ts = self.timestamp.date().isoformat() if self.timestamp else "composite"
        return f"GriddedImage({ts}, bands={list(self.bands)}, shape={self.grid.shape})"


def reduce_images(
    images: Sequence[GriddedImage],
    method: ReduceMethod,
    grid: GridSpec,
    bands: Sequence[str],
) -> GriddedImage:
    """Pixel-wise temporal reduction of *images* into one composite.

    NaN pixels are ignored. A pixel that is NaN in every input stays NaN,
    including for ``sum`` (a no-data pixel never turns into ``0``). Zero
    input images yield an all-NaN image.

    Args:
        images: Images to reduce; all must lie on *grid*.
        method: ``"mean"``, ``"median"`` or ``"sum"``.
        grid: Shared grid of the inputs.
        bands: Bands to reduce.

    Returns:
        Composite ``GriddedImage`` with ``timestamp=None``.

    Raises:
        ConfigurationError: If *method* is not a supported reducer.
        MissingBandError: If an image lacks one of *bands*.
    """
    if method not in _REDUCE_METHODS:
        raise ConfigurationError(
            what=f"Unsupported reducer: {method!r}",
            cause=f"Valid reducers are: {', '.join(sorted(_REDUCE_METHODS))}",
            fix="Use 'mean', 'median' or 'sum'",
        )
    if not images:
        return GriddedImage.no_data(grid, bands)

    reduced: dict[str, FloatArray] = {}
    for name in bands:
        stack = np.stack([img.band(name) for img in images], axis=0)
        valid = np.isfinite(stack).any(axis=0)
        with warnings.catch_warnings():
            # All-NaN pixels are expected; they stay NaN below.
            warnings.simplefilter("ignore", RuntimeWarning)
            if method == "mean":
                values = np.nanmean(stack, axis=0)
            elif method == "median":
                values = np.nanmedian(stack, axis=0)
            else:
                values = np.nansum(stack, axis=0)
        reduced[name] = np.where(valid, values, np.nan)

    return GriddedImage(bands=reduced, grid=grid, timestamp=None)


@dataclass(frozen=True, eq=False)
class GriddedTimeSeries:
    """Ordered, immutable stack of images sharing one grid.

    Args:
        images: Images ordered by timestamp.
        grid: Spatial reference shared by all images.
        start: First date of the series' nominal range.
        end: Last date of the series' nominal range (inclusive).
        band_names: Band set of the series. Derived from the first image
            when omitted; kept on empty subsets so their reductions still
            know which bands to produce.

    Example:
        >>> series.filter_calendar_field("month", 3).reduce("mean")  # doctest: +SKIP
    """

    images: tuple[GriddedImage, ...]
    grid: GridSpec
    start: date
    end: date
    band_names: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        images = tuple(self.images)
        for img in images:
            if not img.grid.same_as(self.grid):
                msg = "All images of a GriddedTimeSeries must share one grid"
                raise ValueError(msg)
        object.__setattr__(self, "images", images)
        if not self.band_names and images:
            object.__setattr__(self, "band_names", images[0].band_names)
        else:
            object.__setattr__(self, "band_names", tuple(self.band_names))

    def __len__(self) -> int:
        return len(self.images)

    def __iter__(self) -> Iterator[GriddedImage]:
        return iter(self.images)

    def _derive(
        self,
        images: Sequence[GriddedImage],
        band_names: Sequence[str] | None = None,
    ) -> GriddedTimeSeries:
        return GriddedTimeSeries(
            images=tuple(images),
            grid=self.grid,
            start=self.start,
            end=self.end,
            band_names=tuple(band_names if band_names is not None else self.band_names),
        )

    def filter_calendar_field(self, field: CalendarField, value: int) -> GriddedTimeSeries:
        """Keep images whose timestamp's calendar *field* equals *value*.

        Images without a timestamp never match.

        Raises:
            ConfigurationError: If *field* is not ``"month"`` or ``"year"``.
        """
        if field not in _CALENDAR_FIELDS:
            raise ConfigurationError(
                what=f"Unsupported calendar field: {field!r}",
                cause="Only 'month' and 'year' groupings are supported",
                fix="Use field='month' or field='year'",
            )
        kept = [
            img
            for img in self.images
            if img.timestamp is not None and getattr(img.timestamp, field) == value
        ]
        return self._derive(kept)

    def select(self, names: Sequence[str]) -> GriddedTimeSeries:
        """Restrict every image to the bands in *names*.

        Raises:
            MissingBandError: If the series (or any image) lacks a band.
        """
        for name in names:
            if name not in self.band_names:
                raise MissingBandError(name, available=list(self.band_names))
        return self._derive([img.select(names) for img in self.images], names)

    def map(self, fn: Callable[[GriddedImage], GriddedImage]) -> GriddedTimeSeries:
        """Apply a pure image transform to every image."""
        mapped = [fn(img) for img in self.images]
        band_names = mapped[0].band_names if mapped else None
        return self._derive(mapped, band_names)

    def reduce(self, method: ReduceMethod) -> GriddedImage:
        """Reduce the whole series pixel-wise into one composite image."""
        logger.debug(
            "Reducing %d images with %s over bands %s",
            len(self.images),
            method,
            list(self.band_names),
        )
        return reduce_images(self.images, method, self.grid, self.band_names)

    def __repr__(self) -> str:
        return (
            f"GriddedTimeSeries({len(self.images)} images, "
            f"{self.start.isoformat()}..{self.end.isoformat()}, "
            f"bands={list(self.band_names)})"
        )
