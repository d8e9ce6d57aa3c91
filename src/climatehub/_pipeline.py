"""Shared calendar-grouping helper for the climatology and annual builders.

``reduce_by_calendar_field`` is the one place where a series is split by
calendar month or calendar year and each group is reduced to a
composite. Empty groups emit an ``EmptyGroupWarning`` and yield an
all-NaN composite instead of failing.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Iterable

from climatehub._types import CalendarField, ReduceMethod
from climatehub.exceptions import EmptyGroupWarning
from climatehub.imagery import GriddedImage, GriddedTimeSeries

logger = logging.getLogger(__name__)


def reduce_by_calendar_field(
    series: GriddedTimeSeries,
    field: CalendarField,
    values: Iterable[int],
    band: str,
    reducer: ReduceMethod,
) -> list[tuple[int, GriddedImage, int]]:
    """Group *series* by a calendar field and reduce each group.

    Args:
        series: Unit-converted time series.
        field: ``"month"`` or ``"year"``.
        values: Candidate field values, in output order.
        band: Band to restrict every group to.
        reducer: Pixel-wise reducer (``"mean"``, ``"median"``, ``"sum"``).

    Returns:
        ``(value, composite, image_count)`` triples in the order of
        *values*. Composites of empty groups are all-NaN.

    Raises:
        MissingBandError: If *band* is absent from the series.
    """
    restricted = series.select([band])
    groups: list[tuple[int, GriddedImage, int]] = []
    for value in values:
        subset = restricted.filter_calendar_field(field, value)
        if not len(subset):
            message = f"No source images for {field} {value} (band {band})"
            warnings.warn(message, EmptyGroupWarning, stacklevel=2)
            logger.warning(message)
        else:
            logger.debug(
                "Reducing %d images for %s %d (band %s, %s)",
                len(subset),
                field,
                value,
                band,
                reducer,
            )
        groups.append((value, subset.reduce(reducer), len(subset)))
    return groups
