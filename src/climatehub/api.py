"""Top-level entry point: one full climatology run over an AOI.

Example:
    >>> import climatehub as ch
    >>> report = ch.climate_report(ch.Config(aoi_asset_id="Cojedes_Guarico"))  # doctest: +SKIP
    >>> report["tp"].monthly_rows[0]
    ChartRow(month=1, label='Jan', value=12.7)
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from climatehub.annual import build_annual_series
from climatehub.aoi import AOIAssetStore, AOIGeometry, GeoJSONAssetStore, resolve_aoi
from climatehub.charts import AnnualChart, ChartRow, annual_table, monthly_table
from climatehub.climatology import MonthlyClimatology, build_monthly_climatology
from climatehub.config import (
    Config,
    get_default_config,
    load_credentials,
    resolve_credentials_path,
)
from climatehub.exceptions import MissingBandError
from climatehub.exports import ExportJob, ExportSink, ExportTask, plan_exports
from climatehub.imagery import GriddedTimeSeries
from climatehub.layers import LayerDescriptor, MapState, render_map
from climatehub.providers import get_provider
from climatehub.providers.base import GriddedDataSource, ProviderCredentials
from climatehub.reduction import GridAreaReducer, SpatialReducer
from climatehub.units import convert_series
from climatehub.variables import DEFAULT_VARIABLES, ClimateVariable, get_variable

if TYPE_CHECKING:
    import pandas as pd
    from shapely.geometry.base import BaseGeometry

logger = logging.getLogger(__name__)


@dataclass
class VariableReport:
    """Outputs of one variable's pipeline.

    ``error`` is set (and the products left empty) when the variable's
    band was missing; other variables of the run are unaffected.
    """

    variable: ClimateVariable
    climatology: MonthlyClimatology | None = None
    monthly_rows: list[ChartRow] = field(default_factory=list)
    annual: AnnualChart | None = None
    export_jobs: list[ExportJob] = field(default_factory=list)
    export_tasks: list[ExportTask] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def __repr__(self) -> str:
        status = "ok" if self.ok else "failed"
        return (
            f"VariableReport({self.variable.key}, {status}, "
            f"warnings={len(self.warnings)})"
        )


@dataclass
class ClimateReport:
    """All products of one run, keyed by variable.

    Attributes:
        config: Configuration the run used.
        aoi: Resolved area of interest.
        variables: Per-variable reports in requested order.
    """

    config: Config
    aoi: AOIGeometry
    variables: dict[str, VariableReport] = field(default_factory=dict)

    def __getitem__(self, key: str) -> VariableReport:
        return self.variables[get_variable(key).key]

    @property
    def climatologies(self) -> dict[str, MonthlyClimatology]:
        """Climatologies of the variables that succeeded."""
        return {
            key: rep.climatology
            for key, rep in self.variables.items()
            if rep.climatology is not None
        }

    @property
    def failed(self) -> list[str]:
        return [key for key, rep in self.variables.items() if not rep.ok]

    @property
    def export_jobs(self) -> list[ExportJob]:
        return [job for rep in self.variables.values() for job in rep.export_jobs]

    def layer(self, variable: str, month: int) -> LayerDescriptor:
        """Map layer for *variable* and *month*, clipped to the AOI."""
        return render_map(self.climatologies, MapState(variable, month), self.aoi)

    def monthly_dataframe(self) -> pd.DataFrame:
        """Long table: ``variable``, ``band``, ``month``, ``label``, ``value``."""
        import pandas as pd

        rows: list[dict[str, Any]] = []
        for key, rep in self.variables.items():
            for row in rep.monthly_rows:
                rows.append(
                    {
                        "variable": key,
                        "band": rep.variable.band,
                        "month": row.month,
                        "label": row.label,
                        "value": row.value,
                    }
                )
        return pd.DataFrame(rows, columns=["variable", "band", "month", "label", "value"])

    def annual_dataframe(self) -> pd.DataFrame:
        """Long table: ``variable``, ``band``, ``year``, ``value``, ``trend``."""
        import pandas as pd

        frames = []
        for key, rep in self.variables.items():
            if rep.annual is None:
                continue
            df = rep.annual.to_dataframe()
            df.insert(0, "band", rep.variable.band)
            df.insert(0, "variable", key)
            frames.append(df)
        if not frames:
            return pd.DataFrame(columns=["variable", "band", "year", "value", "trend"])
        return pd.concat(frames, ignore_index=True)

    def __repr__(self) -> str:
        parts = [
            f"aoi={self.aoi.asset_id!r}",
            f"years={self.config.start_year}-{self.config.end_year}",
            f"metric={self.config.metric}",
            f"variables={list(self.variables)}",
        ]
        if self.failed:
            parts.append(f"failed={self.failed}")
        return f"ClimateReport({', '.join(parts)})"


def _default_source(config: Config) -> GriddedDataSource:
    """Build an authenticated CDS source from the credentials chain."""
    provider = get_provider("cds", config)
    creds_path = resolve_credentials_path(explicit=config.cds_credentials)
    if creds_path is not None:
        section = load_credentials(creds_path).get("cds", {})
        if section:
            provider.authenticate(ProviderCredentials(**section))
    return provider


def _run_variable(
    series: GriddedTimeSeries,
    variable: ClimateVariable,
    aoi: AOIGeometry,
    config: Config,
    reducer: SpatialReducer,
    sink: ExportSink | None,
) -> VariableReport:
    """Build every product of one variable.

    ``MissingBandError`` is recorded on the report instead of raised.
    """
    report = VariableReport(variable=variable)
    band = variable.band
    try:
        climatology = build_monthly_climatology(series, band, config.metric)
        rows = monthly_table(
            climatology,
            band,
            aoi,
            config.reduction_scale,
            reducer,
            max_pixels=config.max_pixels,
        )
        records = build_annual_series(
            series,
            band,
            variable.annual_method,
            aoi,
            config.reduction_scale,
            reducer,
            start_year=config.start_year,
            end_year=config.end_year,
            max_pixels=config.max_pixels,
        )
    except MissingBandError as exc:
        logger.warning("Skipping %s: %s", variable.key, exc.what)
        report.error = str(exc)
        return report

    report.climatology = climatology
    report.monthly_rows = rows
    report.annual = annual_table(records)
    report.export_jobs = plan_exports(
        climatology,
        band,
        variable.var_label,
        aoi,
        config.metric,
        config.start_year,
        config.end_year,
        config.resolution,
        folder=config.export_folder,
        max_pixels=config.max_pixels,
    )
    if sink is not None:
        report.export_tasks = [sink.submit(job) for job in report.export_jobs]

    if climatology.empty_months:
        report.warnings.append(
            f"No source images for months {climatology.empty_months}"
        )
    empty_years = [rec.year for rec in records if rec.value is None]
    if empty_years:
        report.warnings.append(f"No annual value for years {empty_years}")
    failed_exports = [t.file_id for t in report.export_tasks if t.state == "FAILED"]
    if failed_exports:
        report.warnings.append(f"Exports failed: {failed_exports}")
    return report


def climate_report(
    config: Config | None = None,
    *,
    aoi: str | Mapping[str, Any] | BaseGeometry | AOIGeometry | None = None,
    source: GriddedDataSource | None = None,
    reducer: SpatialReducer | None = None,
    store: AOIAssetStore | None = None,
    sink: ExportSink | None = None,
    variables: Sequence[str] | None = None,
) -> ClimateReport:
    """Run the full aggregation pipeline for an AOI.

    Steps: resolve the AOI, query the raw monthly series, convert units,
    then per variable build the monthly climatology, chart rows, annual
    series with trendline and the export plan (submitting jobs to *sink*
    when given).

    Args:
        config: Run configuration; the module default when ``None``.
        aoi: AOI reference overriding ``config.aoi_asset_id``.
        source: Gridded data source; an authenticated CDS source when ``None``.
        reducer: Spatial reducer; ``GridAreaReducer`` when ``None``.
        store: AOI asset store; a GeoJSON store at ``config.aoi_dir`` when ``None``.
        sink: Optional export sink receiving every planned job.
        variables: Variable keys; temperature and precipitation by default.

    Returns:
        ``ClimateReport`` with one ``VariableReport`` per variable.

    Raises:
        InvalidAOIError: If the AOI resolves to zero geometries. Raised
            before any data is queried.
        ConfigurationError: If a variable key is unknown.
        ProviderError: If the data source fails.
    """
    cfg = config if config is not None else get_default_config()
    asset_store = store if store is not None else GeoJSONAssetStore(cfg.aoi_dir)
    region = resolve_aoi(aoi if aoi is not None else cfg.aoi_asset_id, asset_store)

    selected = [get_variable(key) for key in (variables or DEFAULT_VARIABLES)]
    data_source = source if source is not None else _default_source(cfg)
    spatial = reducer if reducer is not None else GridAreaReducer()

    raw = data_source.query(
        cfg.dataset_id,
        cfg.time_range,
        [var.raw_band for var in selected],
        region=region,
    )
    series = convert_series(raw)
    logger.info(
        "Processing %d variables over %d monthly images (%d-%d, %s)",
        len(selected),
        len(series),
        cfg.start_year,
        cfg.end_year,
        cfg.metric,
    )

    def run(var: ClimateVariable) -> VariableReport:
        return _run_variable(series, var, region, cfg, spatial, sink)

    if cfg.max_workers > 1 and len(selected) > 1:
        with ThreadPoolExecutor(max_workers=cfg.max_workers) as pool:
            reports = list(pool.map(run, selected))
    else:
        reports = [run(var) for var in selected]

    return ClimateReport(
        config=cfg,
        aoi=region,
        variables={rep.variable.key: rep for rep in reports},
    )
