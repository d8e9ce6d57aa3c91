"""Map-layer descriptors for browsing monthly climatologies.

``render_map`` is a pure function of explicit state: the caller owns the
selected variable and month and passes them in.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

import numpy as np
import shapely

from climatehub.aoi import AOIGeometry
from climatehub.charts import month_label
from climatehub.climatology import MonthlyClimatology
from climatehub.imagery import GriddedImage
from climatehub.variables import VisParams, get_variable

LAYER_NAME = "Monthly Climatology"


@dataclass(frozen=True)
class MapState:
    """Selected variable (registry key, band or title) and month."""

    variable: str = "tp"
    month: int = 1


@dataclass(frozen=True)
class LayerDescriptor:
    """Everything a map widget needs to draw one layer."""

    image: GriddedImage
    vis_params: VisParams
    label: str


def clip_to_aoi(image: GriddedImage, aoi: AOIGeometry) -> GriddedImage:
    """Set every cell whose centre lies outside *aoi* to NaN."""
    lon2d, lat2d = image.grid.cell_centres()
    inside = shapely.contains_xy(aoi.geometry, lon2d, lat2d)
    clipped = {name: np.where(inside, arr, np.nan) for name, arr in image.bands.items()}
    return image.with_bands(clipped)


def render_map(
    climatologies: Mapping[str, MonthlyClimatology],
    state: MapState,
    aoi: AOIGeometry | None = None,
) -> LayerDescriptor:
    """Describe the map layer for the selected variable and month.

    Args:
        climatologies: Monthly climatologies keyed by variable key.
        state: Selected variable and month.
        aoi: Optional AOI to clip the layer to.

    Raises:
        ConfigurationError: If the variable is unknown or the month is
            outside 1..12.
        KeyError: If no climatology was built for the variable.

    Example:
        >>> layer = render_map(report.climatologies, MapState("tmean", 7))  # doctest: +SKIP
        >>> layer.label
        'Monthly Climatology - Avg Air Temp (°C) - Jul'
    """
    variable = get_variable(state.variable)
    climatology = climatologies[variable.key]
    image = climatology.for_month(state.month).select([variable.band])
    if aoi is not None:
        image = clip_to_aoi(image, aoi)
    label = f"{LAYER_NAME} - {variable.title} - {month_label(state.month)}"
    return LayerDescriptor(image=image, vis_params=variable.vis, label=label)
