"""Monthly climatologies: one composite per calendar month across years."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from climatehub._pipeline import reduce_by_calendar_field
from climatehub._types import Metric
from climatehub.exceptions import ConfigurationError
from climatehub.imagery import GriddedImage, GriddedTimeSeries

logger = logging.getLogger(__name__)

MONTHS: tuple[int, ...] = tuple(range(1, 13))
_METRICS: frozenset[str] = frozenset({"mean", "median"})


def normalize_metric(value: str) -> Metric:
    """Validate a climatology metric name, case-insensitively.

    Raises:
        ConfigurationError: If *value* is neither mean nor median.

    Example:
        >>> normalize_metric("Median")
        'median'
    """
    metric = str(value).strip().lower()
    if metric not in _METRICS:
        raise ConfigurationError(
            what=f"Unsupported averaging metric: {value!r}",
            cause="Climatologies are reduced with 'mean' or 'median'",
            fix="Set metric to 'mean' or 'median'",
        )
    return metric  # type: ignore[return-value]


@dataclass(frozen=True)
class MonthlyClimatology:
    """Exactly twelve composites, one per calendar month, month ascending.

    Every composite carries ``month``, ``band`` and ``metric`` properties
    and a ``source_count`` giving how many images it was reduced from.
    A month without source images holds an all-NaN composite.

    Attributes:
        band: Band the composites carry.
        metric: Reducer used across years.
        images: The twelve composites, January first.
    """

    band: str
    metric: Metric
    images: tuple[GriddedImage, ...]

    def __post_init__(self) -> None:
        months = [img.get("month") for img in self.images]
        if months != list(MONTHS):
            msg = f"A monthly climatology needs months 1..12 in order, got {months}"
            raise ValueError(msg)

    def __iter__(self) -> Iterator[GriddedImage]:
        return iter(self.images)

    def __len__(self) -> int:
        return len(self.images)

    def for_month(self, month: int) -> GriddedImage:
        """Return the composite for calendar *month* (1..12)."""
        if month not in MONTHS:
            raise ConfigurationError(
                what=f"Invalid month: {month!r}",
                cause="Months are numbered 1 to 12",
                fix="Pass a month between 1 and 12",
            )
        return self.images[month - 1]

    @property
    def empty_months(self) -> list[int]:
        """Months whose composite was reduced from zero images."""
        return [img.get("month") for img in self.images if img.get("source_count") == 0]


def build_monthly_climatology(
    series: GriddedTimeSeries,
    band: str,
    metric: str,
) -> MonthlyClimatology:
    """Build the twelve calendar-month composites of *band*.

    For each month every image of that calendar month, across all years,
    is reduced pixel-wise with *metric*.

    Args:
        series: Unit-converted monthly time series.
        band: Analysis band (e.g. ``"tp_mm"``).
        metric: ``"mean"`` or ``"median"``; pass the run-wide setting.

    Returns:
        ``MonthlyClimatology`` tagged ``{month, band, metric}`` per image.

    Raises:
        ConfigurationError: If *metric* is not mean or median.
        MissingBandError: If *band* is absent from the series.

    Example:
        >>> clim = build_monthly_climatology(series, "tp_mm", "mean")  # doctest: +SKIP
        >>> [img.get("month") for img in clim]
        [1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12]
    """
    reducer = normalize_metric(metric)
    groups = reduce_by_calendar_field(series, "month", MONTHS, band, reducer)
    images = tuple(
        composite.with_properties(
            month=month,
            band=band,
            metric=reducer,
            source_count=count,
        )
        for month, composite, count in groups
    )
    logger.info("Built %s monthly climatology for %s", reducer, band)
    return MonthlyClimatology(band=band, metric=reducer, images=images)
