"""ClimateHub — monthly climatologies and annual series from ERA5 over an AOI.

Example:
    >>> import climatehub as ch
    >>>
    >>> # One full run: climatologies, chart tables, trendlines, export plan
    >>> ch.configure(aoi_asset_id="Cojedes_Guarico", start_year=1990, end_year=2020)
    >>> report = ch.climate_report()
    >>> report["tp"].annual.trendline.slope
    >>>
    >>> # Browse a map layer
    >>> layer = report.layer("tmean", 7)
"""

from climatehub.__about__ import __version__
from climatehub.annual import AnnualRecord, build_annual_series
from climatehub.aoi import AOIGeometry, GeoJSONAssetStore, resolve_aoi
from climatehub.api import ClimateReport, VariableReport, climate_report
from climatehub.charts import (
    AnnualChart,
    ChartRow,
    Trendline,
    annual_table,
    fit_trendline,
    monthly_table,
)
from climatehub.climatology import MonthlyClimatology, build_monthly_climatology
from climatehub.config import Config, configure
from climatehub.exceptions import (
    ClimateHubError,
    ConfigurationError,
    EmptyGroupWarning,
    InvalidAOIError,
    MissingBandError,
    ProviderError,
    ReductionUnavailable,
)
from climatehub.exports import (
    ExportJob,
    ExportTask,
    GeoTIFFExportSink,
    export_file_id,
    plan_exports,
)
from climatehub.imagery import GriddedImage, GriddedTimeSeries, GridSpec
from climatehub.layers import LayerDescriptor, MapState, render_map
from climatehub.reduction import GridAreaReducer, SpatialReducer
from climatehub.units import convert_image, convert_series
from climatehub.variables import VARIABLES, ClimateVariable, get_variable

__all__ = [
    # Version
    "__version__",
    # Top-level run
    "climate_report",
    "ClimateReport",
    "VariableReport",
    # Configuration
    "Config",
    "configure",
    # Data model
    "GridSpec",
    "GriddedImage",
    "GriddedTimeSeries",
    # AOI
    "AOIGeometry",
    "GeoJSONAssetStore",
    "resolve_aoi",
    # Builders
    "convert_image",
    "convert_series",
    "build_monthly_climatology",
    "MonthlyClimatology",
    "build_annual_series",
    "AnnualRecord",
    "monthly_table",
    "annual_table",
    "fit_trendline",
    "ChartRow",
    "AnnualChart",
    "Trendline",
    # Spatial reduction
    "SpatialReducer",
    "GridAreaReducer",
    # Exports
    "export_file_id",
    "plan_exports",
    "ExportJob",
    "ExportTask",
    "GeoTIFFExportSink",
    # Map layers
    "render_map",
    "MapState",
    "LayerDescriptor",
    # Variables
    "VARIABLES",
    "ClimateVariable",
    "get_variable",
    # Exceptions
    "ClimateHubError",
    "ConfigurationError",
    "EmptyGroupWarning",
    "InvalidAOIError",
    "MissingBandError",
    "ProviderError",
    "ReductionUnavailable",
]
