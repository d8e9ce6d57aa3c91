"""Raster export planning and the local GeoTIFF export sink.

``plan_exports`` enumerates one export job per calendar month of a
climatology. Job file ids follow a fixed naming scheme that downstream
tooling relies on:

    ERA5_{var_label}_{metric}_{start_year}-{end_year}_M{month:02d}

Sinks accept jobs and hand back a task handle; the planner never waits
for completion.
"""

from __future__ import annotations

import logging
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path

import numpy as np
import shapely

from climatehub.aoi import AOIGeometry
from climatehub.climatology import MONTHS, MonthlyClimatology
from climatehub.imagery import GriddedImage
from climatehub.reduction import DEFAULT_MAX_PIXELS

logger = logging.getLogger(__name__)

_METRES_PER_DEGREE: float = 111_320.0


def export_file_id(
    var_label: str,
    metric: str,
    start_year: int,
    end_year: int,
    month: int,
) -> str:
    """Build the export file id for one month.

    Example:
        >>> export_file_id("TPmm", "mean", 1990, 2020, 3)
        'ERA5_TPmm_mean_1990-2020_M03'
    """
    return f"ERA5_{var_label}_{metric}_{start_year}-{end_year}_M{month:02d}"


@dataclass(frozen=True)
class ExportJob:
    """Description of one raster export.

    Attributes:
        file_id: Output file name prefix (see ``export_file_id``).
        band: Band to export.
        region: AOI the raster is clipped to.
        resolution: Output pixel size in metres.
        description: Task description, equal to ``file_id``.
        folder: Opaque export folder name, passed through to the sink.
        image: Monthly composite to export.
        month: Calendar month of the composite.
        max_pixels: Pixel cap for the export.
    """

    file_id: str
    band: str
    region: AOIGeometry
    resolution: float
    description: str
    folder: str = ""
    image: GriddedImage | None = None
    month: int = 0
    max_pixels: float = DEFAULT_MAX_PIXELS


@dataclass(frozen=True)
class ExportTask:
    """Handle returned by an export sink.

    Attributes:
        task_id: Sink-specific identifier.
        file_id: File id of the submitted job.
        state: ``"COMPLETED"`` or ``"FAILED"`` for the local sink.
        path: Written file, when any.
        error: Failure reason, when any.
    """

    task_id: str
    file_id: str
    state: str
    path: Path | None = None
    error: str = ""


def plan_exports(
    climatology: MonthlyClimatology,
    band: str,
    var_label: str,
    aoi: AOIGeometry,
    metric: str,
    start_year: int,
    end_year: int,
    resolution: float,
    folder: str = "",
    max_pixels: float = DEFAULT_MAX_PIXELS,
) -> list[ExportJob]:
    """Enumerate twelve export jobs, January first.

    Args:
        climatology: Monthly composites to export.
        band: Band to export.
        var_label: Variable label for file ids (e.g. ``"TPmm"``).
        aoi: Export region.
        metric: Climatology metric, embedded in file ids.
        start_year: First analysis year, embedded in file ids.
        end_year: Last analysis year, embedded in file ids.
        resolution: Output pixel size in metres.
        folder: Export folder name passed through to the sink.
        max_pixels: Pixel cap for each export.

    Returns:
        One ``ExportJob`` per calendar month.
    """
    jobs: list[ExportJob] = []
    for month in MONTHS:
        file_id = export_file_id(var_label, metric, start_year, end_year, month)
        jobs.append(
            ExportJob(
                file_id=file_id,
                band=band,
                region=aoi,
                resolution=resolution,
                description=file_id,
                folder=folder,
                image=climatology.for_month(month),
                month=month,
                max_pixels=max_pixels,
            )
        )
    logger.debug("Planned %d exports for %s (%s)", len(jobs), band, var_label)
    return jobs


class ExportSink(ABC):
    """Destination that accepts export jobs."""

    @abstractmethod
    def submit(self, job: ExportJob) -> ExportTask:
        """Accept *job* and return a task handle."""
        ...


class GeoTIFFExportSink(ExportSink):
    """Writes each job as ``<root>/<folder>/<file_id>.tif``.

    The composite is cropped to the AOI bounding box, cells whose centre
    falls outside the AOI are set to NaN, and the result is resampled
    (nearest neighbour) to the job resolution in EPSG:4326.

    Failures are reported on the returned ``ExportTask`` and never raised.

    Args:
        root: Base output directory.
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()

    def submit(self, job: ExportJob) -> ExportTask:
        task_id = uuid.uuid4().hex
        try:
            path = self._write(job)
        except (ValueError, OSError) as exc:
            logger.warning("Export %s failed: %s", job.file_id, exc)
            return ExportTask(
                task_id=task_id, file_id=job.file_id, state="FAILED", error=str(exc)
            )
        logger.info("Exported %s to %s", job.file_id, path)
        return ExportTask(task_id=task_id, file_id=job.file_id, state="COMPLETED", path=path)

    def _write(self, job: ExportJob) -> Path:
        import rasterio
        from rasterio.transform import from_origin
        from rasterio.warp import Resampling, reproject

        if job.image is None:
            msg = "Export job carries no image"
            raise ValueError(msg)

        grid = job.image.grid
        data = np.array(job.image.band(job.band), dtype=np.float32)
        lat = np.asarray(grid.lat)
        lon = np.asarray(grid.lon)
        if not grid.north_up:
            data = data[::-1, :]
            lat = lat[::-1]

        # Crop to the cells touching the AOI bounding box.
        minx, miny, maxx, maxy = job.region.bounds
        half_lat = grid.lat_step / 2
        half_lon = grid.lon_step / 2
        rows = np.nonzero((lat + half_lat >= miny) & (lat - half_lat <= maxy))[0]
        cols = np.nonzero((lon + half_lon >= minx) & (lon - half_lon <= maxx))[0]
        if rows.size == 0 or cols.size == 0:
            msg = "AOI does not overlap the image grid"
            raise ValueError(msg)
        data = data[rows[0] : rows[-1] + 1, cols[0] : cols[-1] + 1].copy()
        lat = lat[rows[0] : rows[-1] + 1]
        lon = lon[cols[0] : cols[-1] + 1]

        lon2d, lat2d = np.meshgrid(lon, lat)
        inside = shapely.contains_xy(job.region.geometry, lon2d, lat2d)
        if inside.any():
            data[~inside] = np.nan

        west = float(lon[0]) - half_lon
        north = float(lat[0]) + half_lat
        east = float(lon[-1]) + half_lon
        south = float(lat[-1]) - half_lat
        src_transform = from_origin(west, north, grid.lon_step, grid.lat_step)

        step = job.resolution / _METRES_PER_DEGREE
        width = max(math.ceil((east - west) / step), 1)
        height = max(math.ceil((north - south) / step), 1)
        if width * height > job.max_pixels:
            msg = f"{width * height} output pixels exceed max_pixels={job.max_pixels:g}"
            raise ValueError(msg)
        dst_transform = from_origin(west, north, step, step)
        out = np.full((height, width), np.nan, dtype=np.float32)
        reproject(
            source=data,
            destination=out,
            src_transform=src_transform,
            src_crs="EPSG:4326",
            src_nodata=np.nan,
            dst_transform=dst_transform,
            dst_crs="EPSG:4326",
            dst_nodata=np.nan,
            resampling=Resampling.nearest,
        )

        folder = self._root / job.folder if job.folder else self._root
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"{job.file_id}.tif"
        with rasterio.open(
            path,
            "w",
            driver="GTiff",
            height=height,
            width=width,
            count=1,
            dtype="float32",
            crs="EPSG:4326",
            transform=dst_transform,
            nodata=np.nan,
        ) as dst:
            dst.write(out, 1)
            dst.update_tags(
                file_id=job.file_id,
                band=job.band,
                month=str(job.month),
                description=job.description,
            )
        return path
