"""Unit conversion from raw ERA5 bands to analysis bands.

Pure per-image transforms: precipitation from metres of water depth to
millimetres, air temperatures from Kelvin to degrees Celsius, wind
components renamed only. Timestamps and properties pass through untouched
so that calendar grouping downstream keeps working.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from climatehub._types import FloatArray
from climatehub.exceptions import MissingBandError
from climatehub.imagery import GriddedImage, GriddedTimeSeries

logger = logging.getLogger(__name__)

_KELVIN_OFFSET: float = 273.15
_MM_PER_M: float = 1000.0


@dataclass(frozen=True)
class BandConversion:
    """How one raw band maps onto one analysis band."""

    raw_band: str
    band: str
    unit: str
    transform: Callable[[FloatArray], FloatArray]


def _metres_to_mm(values: FloatArray) -> FloatArray:
    return values * _MM_PER_M


def _kelvin_to_celsius(values: FloatArray) -> FloatArray:
    return values - _KELVIN_OFFSET


def _identity(values: FloatArray) -> FloatArray:
    return values


CONVERSIONS: dict[str, BandConversion] = {
    conv.raw_band: conv
    for conv in (
        BandConversion("total_precipitation", "tp_mm", "mm", _metres_to_mm),
        BandConversion("mean_2m_air_temperature", "tmean_C", "°C", _kelvin_to_celsius),
        BandConversion("minimum_2m_air_temperature", "tmin_C", "°C", _kelvin_to_celsius),
        BandConversion("maximum_2m_air_temperature", "tmax_C", "°C", _kelvin_to_celsius),
        BandConversion("u_component_of_wind_10m", "u10", "m s-1", _identity),
        BandConversion("v_component_of_wind_10m", "v10", "m s-1", _identity),
    )
}
"""Raw ERA5 band name to conversion rule."""

RAW_BANDS: list[str] = list(CONVERSIONS)


def convert_image(
    image: GriddedImage,
    bands: Sequence[str] | None = None,
) -> GriddedImage:
    """Convert raw bands of *image* into analysis units.

    Args:
        image: Image carrying raw ERA5 bands.
        bands: Raw band names to convert. ``None`` converts every band
            of the conversion table that the image carries.

    Returns:
        New image holding only the converted, renamed bands, with the
        original timestamp and properties.

    Raises:
        MissingBandError: If a requested raw band is absent, or a
            requested name has no conversion rule.

    Example:
        >>> out = convert_image(img, ["total_precipitation"])  # doctest: +SKIP
        >>> out.band_names
        ('tp_mm',)
    """
    if bands is None:
        wanted = [raw for raw in CONVERSIONS if raw in image.bands]
    else:
        wanted = list(bands)

    converted: dict[str, FloatArray] = {}
    for raw in wanted:
        rule = CONVERSIONS.get(raw)
        if rule is None:
            raise MissingBandError(raw, available=RAW_BANDS)
        converted[rule.band] = rule.transform(image.band(raw))

    return GriddedImage(
        bands=converted,
        grid=image.grid,
        timestamp=image.timestamp,
        properties=image.properties,
    )


def convert_series(
    series: GriddedTimeSeries,
    bands: Sequence[str] | None = None,
) -> GriddedTimeSeries:
    """Apply ``convert_image`` to every image of *series*."""
    if bands is None:
        raw_present = [raw for raw in CONVERSIONS if raw in series.band_names]
    else:
        raw_present = list(bands)
        for raw in raw_present:
            if raw not in series.band_names:
                raise MissingBandError(raw, available=list(series.band_names))

    converted = series.map(lambda img: convert_image(img, raw_present))
    if not len(converted):
        # Empty series: keep the converted band set for no-data reductions.
        return GriddedTimeSeries(
            images=(),
            grid=series.grid,
            start=series.start,
            end=series.end,
            band_names=tuple(CONVERSIONS[raw].band for raw in raw_present),
        )
    logger.debug(
        "Converted %d images to bands %s", len(converted), list(converted.band_names)
    )
    return converted
