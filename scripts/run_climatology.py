#!/usr/bin/env python3
"""Run the ERA5 monthly climatology pipeline for one AOI.

Writes the monthly chart table and annual series (with trendline) as CSV,
and optionally exports one GeoTIFF per calendar month and variable.

Usage:
    python run_climatology.py --aoi Cojedes_Guarico --start 1991 --end 2020 --out results/

Example:
    python run_climatology.py --aoi aoi.geojson --netcdf era5_monthly.nc \\
        --metric median --export-dir rasters/ --variables tp tmean
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

# Check imports before running
try:
    import climatehub as ch
    from climatehub.providers import get_provider
    from pydantic import ValidationError
except ImportError:
    print("Error: climatehub not installed. Run: pip install climatehub")
    sys.exit(1)


def run(args: argparse.Namespace) -> None:
    """Build every product for the requested AOI and write them to disk."""
    config = ch.Config(
        aoi_asset_id=args.aoi,
        aoi_dir=args.aoi_dir,
        start_year=args.start,
        end_year=args.end,
        metric=args.metric,
        resolution=args.resolution,
        max_workers=args.workers,
    )
    print(f"Building climatology for {config.aoi_asset_id!r}...")
    print(f"  Years: {config.start_year}-{config.end_year} ({config.metric})")

    source = None
    if args.netcdf is not None:
        source = get_provider("netcdf", config, path=args.netcdf)
        print(f"  Source: {args.netcdf}")
    else:
        print("  Source: Copernicus Climate Data Store")

    sink = ch.GeoTIFFExportSink(args.export_dir) if args.export_dir else None
    report = ch.climate_report(config, source=source, sink=sink, variables=args.variables)

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)
    monthly_path = out_dir / "monthly_climatology.csv"
    annual_path = out_dir / "annual_series.csv"
    report.monthly_dataframe().to_csv(monthly_path, index=False)
    report.annual_dataframe().to_csv(annual_path, index=False)

    for key, var_report in report.variables.items():
        if not var_report.ok:
            print(f"  [FAILED] {key}: {var_report.error}")
            continue
        annual = var_report.annual
        slope = annual.trendline.slope if annual is not None else float("nan")
        print(f"  [OK] {key}: trend {slope:+.3f} {var_report.variable.unit}/yr")
        for warning in var_report.warnings:
            print(f"       warning: {warning}")

    print(f"\n[OK] Tables saved to: {out_dir.absolute()}")
    if sink is not None:
        tasks = [task for rep in report.variables.values() for task in rep.export_tasks]
        written = sum(1 for task in tasks if task.state == "COMPLETED")
        print(f"[OK] {written}/{len(tasks)} rasters written to: {Path(args.export_dir).absolute()}")


def main() -> None:
    """Parse arguments and run the pipeline."""
    parser = argparse.ArgumentParser(
        description="Compute ERA5 monthly climatologies and annual series for an AOI.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_climatology.py --aoi Cojedes_Guarico --start 1991 --end 2020
  python run_climatology.py --aoi aoi.geojson --netcdf era5.nc --metric median -o out/
        """,
    )
    parser.add_argument("--aoi", required=True, help="AOI asset id or GeoJSON file")
    parser.add_argument(
        "--aoi-dir",
        default="~/.climatehub/assets",
        help="Directory holding <asset_id>.geojson files",
    )
    parser.add_argument("--start", type=int, default=1990, help="First year (default: 1990)")
    parser.add_argument("--end", type=int, default=2020, help="Last year (default: 2020)")
    parser.add_argument(
        "--metric",
        default="mean",
        help="Climatology reducer across years: mean or median (default: mean)",
    )
    parser.add_argument(
        "--resolution",
        type=float,
        default=5000.0,
        help="Output pixel size in metres (default: 5000)",
    )
    parser.add_argument(
        "--variables",
        nargs="+",
        default=None,
        help="Variables to process (default: tp tmean tmin tmax)",
    )
    parser.add_argument(
        "--netcdf",
        default=None,
        help="Read ERA5 monthly data from a NetCDF file instead of CDS",
    )
    parser.add_argument("-o", "--out", default="results", help="Directory for CSV tables")
    parser.add_argument(
        "--export-dir",
        default=None,
        help="Write one GeoTIFF per month and variable into this directory",
    )
    parser.add_argument("--workers", type=int, default=1, help="Variables processed in parallel")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log progress to stderr")

    args = parser.parse_args()

    if args.start > args.end:
        print(f"Error: --start {args.start} is after --end {args.end}.")
        sys.exit(1)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    try:
        run(args)
    except (ch.ClimateHubError, ValidationError) as e:
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
