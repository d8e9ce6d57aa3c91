"""Annual aggregate series: one AOI scalar per calendar year."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict

from climatehub._pipeline import reduce_by_calendar_field
from climatehub._types import AggregationMethod
from climatehub.aoi import AOIGeometry
from climatehub.exceptions import ConfigurationError
from climatehub.imagery import GriddedTimeSeries
from climatehub.reduction import DEFAULT_MAX_PIXELS, SpatialReducer, areal_mean

logger = logging.getLogger(__name__)

_METHODS: frozenset[str] = frozenset({"sum", "mean"})
# Flux-like bands accumulate over a year; everything else is averaged.
_SUM_BANDS: frozenset[str] = frozenset({"tp_mm"})


class AnnualRecord(BaseModel):
    """One year of an annual series.

    ``value`` is ``None`` when the year had no source images or the
    spatial reduction produced no valid pixels. It is never coerced to 0.

    Example:
        >>> AnnualRecord(year=2000, value=None).value is None
        True
    """

    model_config = ConfigDict(frozen=True)

    year: int
    value: float | None = None


def default_annual_method(band: str) -> AggregationMethod:
    """Return ``"sum"`` for precipitation totals and ``"mean"`` otherwise.

    Example:
        >>> default_annual_method("tp_mm"), default_annual_method("tmax_C")
        ('sum', 'mean')
    """
    return "sum" if band in _SUM_BANDS else "mean"


def build_annual_series(
    series: GriddedTimeSeries,
    band: str,
    method: str,
    aoi: AOIGeometry,
    resolution: float | None,
    reducer: SpatialReducer,
    start_year: int | None = None,
    end_year: int | None = None,
    max_pixels: float = DEFAULT_MAX_PIXELS,
) -> list[AnnualRecord]:
    """Aggregate *band* per calendar year and reduce it over the AOI.

    Each year's months are reduced pixel-wise (``sum`` for an annual
    total, ``mean`` for an annual average) using whatever months that
    year contains; there is no gap filling. The yearly image is then
    areal-averaged over *aoi* at *resolution*, best effort.

    Args:
        series: Unit-converted monthly time series.
        band: Analysis band.
        method: ``"sum"`` or ``"mean"``.
        aoi: Resolved area of interest.
        resolution: Reduction scale in metres.
        reducer: Spatial reduction primitive.
        start_year: First year; defaults to the series' start year.
        end_year: Last year (inclusive); defaults to the series' end year.
        max_pixels: Pixel cap for each spatial reduction.

    Returns:
        One ``AnnualRecord`` per year in ``[start_year, end_year]``, ascending.

    Raises:
        ConfigurationError: If *method* is unsupported or years are inverted.
        MissingBandError: If *band* is absent from the series.
    """
    if method not in _METHODS:
        raise ConfigurationError(
            what=f"Unsupported annual aggregation method: {method!r}",
            cause="Annual series use 'sum' (totals) or 'mean' (averages)",
            fix="Use method='sum' for precipitation and 'mean' for temperatures",
        )
    first = series.start.year if start_year is None else start_year
    last = series.end.year if end_year is None else end_year
    if first > last:
        raise ConfigurationError(
            what="Invalid annual series range",
            cause=f"start_year {first} is after end_year {last}",
            fix="Swap start_year and end_year",
        )

    groups = reduce_by_calendar_field(
        series, "year", range(first, last + 1), band, method  # type: ignore[arg-type]
    )

    records: list[AnnualRecord] = []
    for year, composite, count in groups:
        value = None
        if count:
            value = areal_mean(reducer, composite, band, aoi, resolution, max_pixels)
        records.append(AnnualRecord(year=year, value=value))

    missing = sum(1 for rec in records if rec.value is None)
    logger.info(
        "Built annual %s series for %s: %d years, %d without value",
        method,
        band,
        len(records),
        missing,
    )
    return records
