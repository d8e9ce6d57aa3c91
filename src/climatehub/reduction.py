"""Spatial (areal) reduction of gridded images over an AOI.

``SpatialReducer`` is the narrow interface to the reduction primitive.
``GridAreaReducer`` implements it in-process on numpy grids: a cell takes
part when its centre lies inside the AOI, missing (NaN) cells are
excluded, and the pixel cap is enforced by coarsening the sampling stride.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import numpy as np
import numpy.typing as npt
import shapely
from shapely.geometry.base import BaseGeometry

from climatehub.aoi import AOIGeometry
from climatehub.exceptions import ReductionUnavailable
from climatehub.imagery import GriddedImage

logger = logging.getLogger(__name__)

DEFAULT_MAX_PIXELS: float = 1e13

_STATISTICS: frozenset[str] = frozenset({"mean", "median", "sum"})


class SpatialReducer(ABC):
    """Reduces one band of an image to a scalar over a region."""

    @abstractmethod
    def areal_reduce(
        self,
        image: GriddedImage,
        band: str,
        geometry: AOIGeometry | BaseGeometry,
        statistic: str = "mean",
        scale: float | None = None,
        best_effort: bool = True,
        max_pixels: float = DEFAULT_MAX_PIXELS,
    ) -> float | None:
        """Reduce *band* of *image* over *geometry*.

        Args:
            image: Image to reduce.
            band: Band to reduce.
            geometry: Region of interest.
            statistic: ``"mean"`` (default), ``"median"`` or ``"sum"``.
            scale: Nominal sampling scale in metres (``None`` = native).
            best_effort: Coarsen instead of failing when the pixel count
                exceeds *max_pixels*.
            max_pixels: Upper bound on processed pixels.

        Returns:
            The statistic, or ``None`` when no value could be produced.

        Raises:
            MissingBandError: If *band* is absent from *image*.
            ReductionUnavailable: If the reduction cannot produce a value.
        """
        ...


def _as_shapely(geometry: AOIGeometry | BaseGeometry) -> BaseGeometry:
    if isinstance(geometry, AOIGeometry):
        return geometry.geometry
    return geometry


class GridAreaReducer(SpatialReducer):
    """In-process areal reducer over ``GridSpec`` cell centres.

    Example:
        >>> reducer = GridAreaReducer()
        >>> reducer.areal_reduce(img, "tp_mm", aoi, scale=5000)  # doctest: +SKIP
        104.2
    """

    def areal_reduce(
        self,
        image: GriddedImage,
        band: str,
        geometry: AOIGeometry | BaseGeometry,
        statistic: str = "mean",
        scale: float | None = None,
        best_effort: bool = True,
        max_pixels: float = DEFAULT_MAX_PIXELS,
    ) -> float | None:
        if statistic not in _STATISTICS:
            raise ReductionUnavailable(
                what=f"Unsupported spatial statistic: {statistic!r}",
                cause=f"Valid statistics are: {', '.join(sorted(_STATISTICS))}",
                fix="Use statistic='mean'",
            )

        values = image.band(band)
        geom = _as_shapely(geometry)
        grid = image.grid

        stride = 1
        if scale is not None and scale > grid.nominal_scale:
            stride = max(int(round(scale / grid.nominal_scale)), 1)

        lon2d, lat2d = grid.cell_centres()
        inside: npt.NDArray[np.bool_] = shapely.contains_xy(geom, lon2d, lat2d)

        # Coarse sampling starts at the first covered row and column.
        row0, col0 = 0, 0
        if inside.any():
            row0, col0 = (int(i) for i in np.argwhere(inside).min(axis=0))
        window = (slice(row0, None, stride), slice(col0, None, stride))

        sampled = inside[window]
        count = int(np.count_nonzero(sampled))
        while count > max_pixels:
            if not best_effort:
                raise ReductionUnavailable(
                    what="Too many pixels in spatial reduction",
                    cause=f"{count} pixels exceed max_pixels={max_pixels:g}",
                    fix="Enable best_effort, raise max_pixels or use a coarser scale",
                )
            if stride >= max(grid.shape):
                raise ReductionUnavailable(
                    what="Spatial reduction cannot be coarsened further",
                    cause=f"{count} pixel(s) at stride {stride} exceed max_pixels={max_pixels:g}",
                    fix="Use max_pixels of at least 1",
                )
            stride *= 2
            window = (slice(row0, None, stride), slice(col0, None, stride))
            sampled = inside[window]
            count = int(np.count_nonzero(sampled))
            logger.warning(
                "Spatial reduction of %s coarsened to stride %d (%d pixels) "
                "to respect max_pixels=%g",
                band,
                stride,
                count,
                max_pixels,
            )

        if count == 0:
            selected = self._fallback_cell(values, lon2d, lat2d, geom, band)
        else:
            selected = values[window][sampled]

        finite = selected[np.isfinite(selected)]
        if finite.size == 0:
            raise ReductionUnavailable(
                what=f"No valid pixels for band {band!r} inside the AOI",
                cause="Every covered cell is missing data",
            )

        if statistic == "median":
            return float(np.median(finite))
        if statistic == "sum":
            return float(np.sum(finite))
        return float(np.mean(finite))

    @staticmethod
    def _fallback_cell(
        values: npt.NDArray[np.floating[Any]],
        lon2d: npt.NDArray[np.floating[Any]],
        lat2d: npt.NDArray[np.floating[Any]],
        geom: BaseGeometry,
        band: str,
    ) -> npt.NDArray[np.floating[Any]]:
        """Use the cell holding the AOI's representative point.

        AOIs smaller than one grid cell contain no cell centre.
        """
        point = geom.representative_point()
        lat_axis = lat2d[:, 0]
        lon_axis = lon2d[0, :]
        half_lat = abs(lat_axis[1] - lat_axis[0]) / 2 if lat_axis.size > 1 else 0.125
        half_lon = abs(lon_axis[1] - lon_axis[0]) / 2 if lon_axis.size > 1 else 0.125
        row = int(np.argmin(np.abs(lat_axis - point.y)))
        col = int(np.argmin(np.abs(lon_axis - point.x)))
        if (
            abs(lat_axis[row] - point.y) > half_lat
            or abs(lon_axis[col] - point.x) > half_lon
        ):
            raise ReductionUnavailable(
                what=f"AOI lies outside the data coverage for band {band!r}",
                cause="No grid cell intersects the AOI",
                fix="Check the AOI and the dataset's spatial extent",
            )
        logger.debug("AOI smaller than one cell; using cell (%d, %d)", row, col)
        return values[row : row + 1, col : col + 1].ravel()


def areal_mean(
    reducer: SpatialReducer,
    image: GriddedImage,
    band: str,
    aoi: AOIGeometry,
    scale: float | None,
    max_pixels: float = DEFAULT_MAX_PIXELS,
) -> float | None:
    """Best-effort areal mean; unavailable reductions become ``None``.

    ``MissingBandError`` still propagates: it is fatal for the variable.
    """
    try:
        value = reducer.areal_reduce(
            image,
            band,
            aoi,
            statistic="mean",
            scale=scale,
            best_effort=True,
            max_pixels=max_pixels,
        )
    except ReductionUnavailable as exc:
        logger.debug("Reduction unavailable for %s: %s", band, exc.what)
        return None
    if value is None or not np.isfinite(value):
        return None
    return float(value)
