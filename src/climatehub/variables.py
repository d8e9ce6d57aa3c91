"""Registry of analysis variables.

Ties each analysis band to its raw ERA5 band, export label, chart title,
unit, annual aggregation method, chart colour and map visualisation.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from climatehub._types import AggregationMethod
from climatehub.exceptions import ConfigurationError

PALETTE_BLUES: tuple[str, ...] = (
    "f7fbff", "deebf7", "c6dbef", "9ecae1", "6baed6",
    "4292c6", "2171b5", "08519c", "08306b",
)  # fmt: skip
PALETTE_TEMP: tuple[str, ...] = (
    "313695", "4575b4", "74add1", "abd9e9", "e0f3f8", "ffffbf",
    "fee090", "fdae61", "f46d43", "d73027", "a50026",
)  # fmt: skip
PALETTE_WIND: tuple[str, ...] = (
    "543005", "8c510a", "bf812d", "dfc27d", "f6e8c3", "f5f5f5",
    "c7eae5", "80cdc1", "35978f", "01665e", "003c30",
)  # fmt: skip

TREND_COLOR = "#a71930"


class VisParams(BaseModel):
    """Map visualisation range and palette."""

    model_config = ConfigDict(frozen=True)

    min: float
    max: float
    palette: tuple[str, ...] = Field(default_factory=tuple)


class ClimateVariable(BaseModel):
    """One analysis variable.

    Attributes:
        key: Short registry key (``"tp"``, ``"tmean"``...).
        band: Analysis band after unit conversion.
        raw_band: Source ERA5 band name.
        var_label: Label embedded in export file names.
        title: Human-readable title used in map and chart labels.
        unit: Analysis unit.
        annual_method: Annual aggregation (``"sum"`` or ``"mean"``).
        color: Monthly chart colour.
        vis: Map visualisation parameters.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    band: str
    raw_band: str
    var_label: str
    title: str
    unit: str
    annual_method: AggregationMethod
    color: str
    vis: VisParams


VARIABLES: dict[str, ClimateVariable] = {
    var.key: var
    for var in (
        ClimateVariable(
            key="tp",
            band="tp_mm",
            raw_band="total_precipitation",
            var_label="TPmm",
            title="Total Precipitation (mm)",
            unit="mm",
            annual_method="sum",
            color="#2c5fdf",
            vis=VisParams(min=0, max=800, palette=PALETTE_BLUES),
        ),
        ClimateVariable(
            key="tmean",
            band="tmean_C",
            raw_band="mean_2m_air_temperature",
            var_label="TmeanC",
            title="Avg Air Temp (°C)",
            unit="°C",
            annual_method="mean",
            color="#facf45",
            vis=VisParams(min=-20, max=35, palette=PALETTE_TEMP),
        ),
        ClimateVariable(
            key="tmin",
            band="tmin_C",
            raw_band="minimum_2m_air_temperature",
            var_label="TminC",
            title="Min Air Temp (°C)",
            unit="°C",
            annual_method="mean",
            color="#00d5d5",
            vis=VisParams(min=-40, max=25, palette=PALETTE_TEMP),
        ),
        ClimateVariable(
            key="tmax",
            band="tmax_C",
            raw_band="maximum_2m_air_temperature",
            var_label="TmaxC",
            title="Max Air Temp (°C)",
            unit="°C",
            annual_method="mean",
            color="#f44336",
            vis=VisParams(min=-5, max=45, palette=PALETTE_TEMP),
        ),
        ClimateVariable(
            key="u10",
            band="u10",
            raw_band="u_component_of_wind_10m",
            var_label="U10",
            title="U Wind 10m (m/s)",
            unit="m s-1",
            annual_method="mean",
            color="#7f7f7f",
            vis=VisParams(min=-10, max=10, palette=PALETTE_WIND),
        ),
        ClimateVariable(
            key="v10",
            band="v10",
            raw_band="v_component_of_wind_10m",
            var_label="V10",
            title="V Wind 10m (m/s)",
            unit="m s-1",
            annual_method="mean",
            color="#bcbd22",
            vis=VisParams(min=-10, max=10, palette=PALETTE_WIND),
        ),
    )
}

DEFAULT_VARIABLES: tuple[str, ...] = ("tp", "tmean", "tmin", "tmax")


def get_variable(key: str) -> ClimateVariable:
    """Look up a variable by registry key, band name or title.

    Raises:
        ConfigurationError: If nothing matches *key*.

    Example:
        >>> get_variable("tp").var_label
        'TPmm'
    """
    if key in VARIABLES:
        return VARIABLES[key]
    for var in VARIABLES.values():
        if key in (var.band, var.title):
            return var
    valid = ", ".join(VARIABLES)
    raise ConfigurationError(
        what=f"Unknown climate variable: {key!r}",
        cause=f"Valid variables are: {valid}",
        fix=f"Use one of: {valid}",
    )
