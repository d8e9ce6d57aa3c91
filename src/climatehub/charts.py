"""Chart-ready tables: monthly bar rows and annual series with trendline."""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from typing import TYPE_CHECKING

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from scipy import stats

from climatehub.annual import AnnualRecord
from climatehub.aoi import AOIGeometry
from climatehub.climatology import MONTHS, MonthlyClimatology
from climatehub.reduction import DEFAULT_MAX_PIXELS, SpatialReducer, areal_mean

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)

MONTH_NAMES: tuple[str, ...] = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)  # fmt: skip


class ChartRow(BaseModel):
    """One bar of a monthly climatology chart."""

    model_config = ConfigDict(frozen=True)

    month: int = Field(ge=1, le=12)
    label: str
    value: float | None = None


class Trendline(BaseModel):
    """Least-squares line ``value = slope * year + intercept``.

    Attributes:
        slope: Change per year.
        intercept: Value at year 0.
        r_squared: Coefficient of determination (0 with < 2 points).
        n: Number of non-null points the fit used.
    """

    model_config = ConfigDict(frozen=True)

    slope: float = 0.0
    intercept: float = 0.0
    r_squared: float = 0.0
    n: int = 0

    def predict(self, year: int | float) -> float:
        """Evaluate the line at *year*."""
        return self.slope * year + self.intercept


class AnnualChart(BaseModel):
    """Annual series handed unmodified to the chart consumer, plus trend."""

    model_config = ConfigDict(frozen=True)

    records: list[AnnualRecord]
    trendline: Trendline

    def to_dataframe(self) -> pd.DataFrame:
        """Return ``year``, ``value`` and ``trend`` columns.

        ``trend`` is only filled when the fit used at least two points.
        """
        import pandas as pd

        has_trend = self.trendline.n >= 2
        return pd.DataFrame(
            {
                "year": [rec.year for rec in self.records],
                "value": [
                    rec.value if rec.value is not None else math.nan
                    for rec in self.records
                ],
                "trend": [
                    self.trendline.predict(rec.year) if has_trend else math.nan
                    for rec in self.records
                ],
            }
        )


def month_label(month: int) -> str:
    """Three-letter English abbreviation of *month*; not locale-dependent."""
    return MONTH_NAMES[month - 1]


def monthly_table(
    climatology: MonthlyClimatology,
    band: str,
    aoi: AOIGeometry,
    resolution: float | None,
    reducer: SpatialReducer,
    max_pixels: float = DEFAULT_MAX_PIXELS,
) -> list[ChartRow]:
    """Areal-average each monthly composite over the AOI.

    Returns:
        Twelve ``ChartRow`` objects, January first. Months whose composite
        has no valid pixels inside the AOI get ``value=None``.

    Raises:
        MissingBandError: If the composites do not carry *band*.
    """
    rows: list[ChartRow] = []
    for month in MONTHS:
        image = climatology.for_month(month)
        value = areal_mean(reducer, image, band, aoi, resolution, max_pixels)
        rows.append(ChartRow(month=month, label=month_label(month), value=value))
    return rows


def fit_trendline(records: Sequence[AnnualRecord]) -> Trendline:
    """Fit a least-squares line over the non-null ``(year, value)`` pairs.

    Fewer than two points, or a single distinct year, give a flat line
    with ``r_squared = 0``. A perfectly flat series also has
    ``r_squared = 0`` (no variance to explain).

    Example:
        >>> recs = [AnnualRecord(year=y, value=v) for y, v in [(2000, 1), (2001, 2), (2002, 3)]]
        >>> line = fit_trendline(recs)
        >>> round(line.slope, 6), round(line.intercept, 6), round(line.r_squared, 6)
        (1.0, -1999.0, 1.0)
    """
    points = [
        (float(rec.year), float(rec.value))
        for rec in records
        if rec.value is not None and math.isfinite(rec.value)
    ]
    n = len(points)
    if n == 0:
        return Trendline()

    years = np.array([p[0] for p in points])
    values = np.array([p[1] for p in points])
    if n < 2 or np.ptp(years) == 0:
        return Trendline(intercept=float(values.mean()), n=n)

    fit = stats.linregress(years, values)
    r_value = float(fit.rvalue)
    r_squared = r_value**2 if math.isfinite(r_value) else 0.0
    return Trendline(
        slope=float(fit.slope),
        intercept=float(fit.intercept),
        r_squared=r_squared,
        n=n,
    )


def annual_table(records: Sequence[AnnualRecord]) -> AnnualChart:
    """Pass *records* through unmodified and attach their trendline."""
    trend = fit_trendline(records)
    logger.debug(
        "Trendline over %d points: slope=%.4g, R2=%.3f",
        trend.n,
        trend.slope,
        trend.r_squared,
    )
    return AnnualChart(records=list(records), trendline=trend)


def rows_to_dataframe(rows: Sequence[ChartRow]) -> pd.DataFrame:
    """Tabulate monthly chart rows as ``month``, ``label``, ``value``."""
    import pandas as pd

    return pd.DataFrame(
        {
            "month": [row.month for row in rows],
            "label": [row.label for row in rows],
            "value": [row.value if row.value is not None else math.nan for row in rows],
        }
    )
