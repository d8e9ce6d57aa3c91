"""End-to-end tests for climate_report()."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import xarray as xr

from climatehub.aoi import AOIGeometry, GeoJSONAssetStore
from climatehub.api import ClimateReport, _default_source, climate_report
from climatehub.config import Config
from climatehub.exceptions import ConfigurationError, InvalidAOIError
from climatehub.exports import GeoTIFFExportSink
from climatehub.providers.base import GriddedDataSource, ProviderCredentials
from climatehub.providers.cds import CDSProvider
from climatehub.providers.local import NetCDFDataSource

DatasetFactory = Callable[..., xr.Dataset]


@pytest.fixture
def source(test_config: Config, era5_dataset: DatasetFactory) -> NetCDFDataSource:
    """In-memory ERA5 source with precipitation and mean temperature only."""
    return NetCDFDataSource(test_config, dataset=era5_dataset())


@pytest.fixture
def report(
    test_config: Config, source: NetCDFDataSource, aoi: AOIGeometry
) -> ClimateReport:
    return climate_report(test_config, aoi=aoi, source=source)


@pytest.mark.unit
class TestClimateReport:
    """A full run over synthetic data."""

    def test_variables_in_requested_order(self, report: ClimateReport) -> None:
        assert list(report.variables) == ["tp", "tmean", "tmin", "tmax"]

    def test_missing_bands_recorded_per_variable(self, report: ClimateReport) -> None:
        assert report.failed == ["tmin", "tmax"]
        assert "tmin_C" in (report["tmin"].error or "")
        assert report["tmin"].climatology is None
        assert report["tp"].ok

    def test_monthly_rows(self, report: ClimateReport) -> None:
        rows = report["tp"].monthly_rows
        assert len(rows) == 12
        assert all(r.value == pytest.approx(10.0) for r in rows)
        assert report["tmean"].monthly_rows[6].value == pytest.approx(20.0)

    def test_annual_series(self, report: ClimateReport) -> None:
        annual = report["tp"].annual
        assert annual is not None
        assert [r.year for r in annual.records] == [2000, 2001, 2002]
        assert all(r.value == pytest.approx(120.0) for r in annual.records)
        assert annual.trendline.slope == pytest.approx(0.0)
        tmean = report["tmean"].annual
        assert tmean is not None
        assert tmean.records[0].value == pytest.approx(20.0)

    def test_export_plan(self, report: ClimateReport) -> None:
        jobs = report["tp"].export_jobs
        assert [j.file_id for j in jobs][:2] == [
            "ERA5_TPmm_mean_2000-2002_M01",
            "ERA5_TPmm_mean_2000-2002_M02",
        ]
        assert all(j.folder == "EE_ERA5_Monthly" for j in jobs)
        assert all(j.resolution == 5000.0 for j in jobs)
        assert len(report.export_jobs) == 24
        assert report["tp"].export_tasks == []

    def test_layer(self, report: ClimateReport) -> None:
        layer = report.layer("tp", 3)
        assert layer.label == "Monthly Climatology - Total Precipitation (mm) - Mar"

    def test_dataframes(self, report: ClimateReport) -> None:
        monthly = report.monthly_dataframe()
        assert len(monthly) == 24
        assert set(monthly["variable"]) == {"tp", "tmean"}
        annual = report.annual_dataframe()
        assert list(annual.columns) == ["variable", "band", "year", "value", "trend"]
        assert len(annual) == 6

    def test_repr_lists_failures(self, report: ClimateReport) -> None:
        assert "failed=['tmin', 'tmax']" in repr(report)

    def test_lookup_by_band(self, report: ClimateReport) -> None:
        assert report["tp_mm"] is report["tp"]


@pytest.mark.unit
class TestClimateReportOptions:
    """Variables, metric, workers and sinks."""

    def test_selected_variables(
        self, test_config: Config, source: NetCDFDataSource, aoi: AOIGeometry
    ) -> None:
        report = climate_report(test_config, aoi=aoi, source=source, variables=["tmean"])
        assert list(report.variables) == ["tmean"]
        assert report.failed == []

    def test_unknown_variable(
        self, test_config: Config, source: NetCDFDataSource, aoi: AOIGeometry
    ) -> None:
        with pytest.raises(ConfigurationError):
            climate_report(test_config, aoi=aoi, source=source, variables=["snow"])

    def test_median_metric_in_file_ids(
        self, source: NetCDFDataSource, aoi: AOIGeometry
    ) -> None:
        cfg = Config(start_year=2000, end_year=2002, metric="MEDIAN")
        report = climate_report(cfg, aoi=aoi, source=source, variables=["tp"])
        assert report["tp"].export_jobs[0].file_id == "ERA5_TPmm_median_2000-2002_M01"
        clim = report["tp"].climatology
        assert clim is not None
        assert clim.metric == "median"

    def test_thread_pool_matches_sequential(
        self, source: NetCDFDataSource, aoi: AOIGeometry, report: ClimateReport
    ) -> None:
        cfg = Config(start_year=2000, end_year=2002, max_workers=4)
        threaded = climate_report(cfg, aoi=aoi, source=source)
        assert list(threaded.variables) == list(report.variables)
        assert threaded.failed == report.failed
        assert [r.value for r in threaded["tp"].monthly_rows] == [
            r.value for r in report["tp"].monthly_rows
        ]

    def test_sink_receives_every_job(
        self, test_config: Config, source: NetCDFDataSource, aoi: AOIGeometry
    ) -> None:
        sink = MagicMock(spec=GeoTIFFExportSink)
        report = climate_report(test_config, aoi=aoi, source=source, sink=sink, variables=["tp"])
        assert sink.submit.call_count == 12
        assert len(report["tp"].export_tasks) == 12

    def test_empty_years_reported(
        self, test_config: Config, era5_dataset: DatasetFactory, aoi: AOIGeometry
    ) -> None:
        cfg = Config(start_year=2000, end_year=2003)
        src = NetCDFDataSource(test_config, dataset=era5_dataset())
        with pytest.warns(UserWarning):
            report = climate_report(cfg, aoi=aoi, source=src, variables=["tp"])
        annual = report["tp"].annual
        assert annual is not None
        assert annual.records[-1].value is None
        assert any("2003" in w for w in report["tp"].warnings)


@pytest.mark.unit
class TestAOIHandling:
    """AOI resolution happens first and is fatal."""

    def test_invalid_aoi_stops_before_query(self, test_config: Config, tmp_path: Path) -> None:
        source = MagicMock(spec=GriddedDataSource)
        with pytest.raises(InvalidAOIError):
            climate_report(
                test_config, aoi="missing", source=source, store=GeoJSONAssetStore(tmp_path)
            )
        source.query.assert_not_called()

    def test_asset_id_from_config(
        self, era5_dataset: DatasetFactory, tmp_path: Path
    ) -> None:
        feature = {
            "type": "Feature",
            "properties": {},
            "geometry": {
                "type": "Polygon",
                "coordinates": [[[1, 1], [3, 1], [3, 3], [1, 3], [1, 1]]],
            },
        }
        (tmp_path / "demo.geojson").write_text(json.dumps(feature))
        cfg = Config(aoi_asset_id="demo", aoi_dir=tmp_path, start_year=2000, end_year=2002)
        src = NetCDFDataSource(cfg, dataset=era5_dataset())
        report = climate_report(cfg, source=src, variables=["tp"])
        assert report.aoi.asset_id == "demo"
        assert report["tp"].ok


@pytest.mark.unit
class TestDefaultSource:
    """CDS source built from the credentials chain."""

    def test_authenticates_from_credentials_file(self, tmp_path: Path) -> None:
        creds = tmp_path / "credentials.json"
        creds.write_text(json.dumps({"cds": {"api_key": "placeholder"}}))
        with patch.object(CDSProvider, "authenticate") as auth:
            source = _default_source(Config(cds_credentials=creds))
        assert isinstance(source, CDSProvider)
        auth.assert_called_once_with(ProviderCredentials(api_key="placeholder"))

    def test_no_credentials_file(self, tmp_path: Path) -> None:
        with patch.object(CDSProvider, "authenticate") as auth:
            _default_source(Config(cds_credentials=tmp_path / "none.json"))
        auth.assert_not_called()
