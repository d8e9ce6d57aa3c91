"""Run configuration and credential management for ClimateHub.

Every user parameter of a run (AOI asset, analysis years, climatology
metric, output resolution, export folder) is an input to the core and
lives on the immutable ``Config`` model.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from climatehub.exceptions import ConfigurationError

logger = logging.getLogger("climatehub")

_CREDENTIALS_ENV_VAR = "CLIMATEHUB_CREDENTIALS"
_DEFAULT_CREDENTIALS_PATH = Path("~/.climatehub/credentials.json")

# ERA5 starts in 1940; the upper bound only guards against typos.
_MIN_YEAR = 1940
_MAX_YEAR = 2100


class Config(BaseModel):
    """Run configuration model.

    Immutable pydantic model. The averaging ``metric`` is chosen once
    here and applies to every climatology built during a run.

    Args:
        aoi_asset_id: Identifier of the AOI asset (resolved by an
            ``AOIAssetStore``).
        aoi_dir: Root directory of the local GeoJSON asset store.
        start_year: First analysis year (inclusive).
        end_year: Last analysis year (inclusive).
        metric: Climatology reducer across years, ``"mean"`` or ``"median"``.
        resolution: Output pixel size in metres for raster exports.
        chart_resolution: Reduction scale in metres for chart statistics.
            Defaults to ``resolution``.
        export_folder: Opaque export folder name passed to the sink.
        max_pixels: Upper bound on pixels processed per spatial reduction.
        dataset_id: Gridded dataset identifier queried from the source.
        cds_credentials: Path to the CDS API credentials file.
        max_workers: Variables processed concurrently (1 = sequential).

    Example:
        >>> cfg = Config(aoi_asset_id="cojedes_guarico", metric="MEDIAN")
        >>> cfg.metric
        'median'
    """

    model_config = ConfigDict(frozen=True, validate_default=True, extra="forbid")

    aoi_asset_id: str = ""
    aoi_dir: Path = Path("~/.climatehub/assets")
    start_year: int = 1990
    end_year: int = 2020
    metric: Literal["mean", "median"] = "mean"
    resolution: float = 5000.0
    chart_resolution: float | None = None
    export_folder: str = "EE_ERA5_Monthly"
    max_pixels: float = 1e13
    dataset_id: str = "reanalysis-era5-single-levels-monthly-means"
    cds_credentials: Path | None = None
    max_workers: int = 1

    @field_validator("metric", mode="before")
    @classmethod
    def _normalize_metric(cls, v: Any) -> Any:
        """Accept metric names in any case."""
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("aoi_dir", mode="before")
    @classmethod
    def _expand_aoi_dir(cls, v: str | Path) -> Path:
        """Expand ``~`` in the asset store directory."""
        return Path(v).expanduser()

    @field_validator("cds_credentials", mode="before")
    @classmethod
    def _expand_credential_path(cls, v: str | Path | None) -> Path | None:
        """Expand ``~`` in the credentials path."""
        if v is None:
            return None
        return Path(v).expanduser()

    @field_validator("start_year", "end_year")
    @classmethod
    def _validate_year(cls, v: int) -> int:
        """Ensure analysis years fall inside the dataset's lifetime."""
        if not _MIN_YEAR <= v <= _MAX_YEAR:
            msg = f"year must be between {_MIN_YEAR} and {_MAX_YEAR}"
            raise ValueError(msg)
        return v

    @field_validator("resolution")
    @classmethod
    def _validate_positive(cls, v: float) -> float:
        """Ensure sizes are positive."""
        if v <= 0:
            msg = "value must be greater than 0"
            raise ValueError(msg)
        return v

    @field_validator("max_pixels")
    @classmethod
    def _validate_max_pixels(cls, v: float) -> float:
        """A reduction keeps at least one pixel."""
        if v < 1:
            msg = "max_pixels must be at least 1"
            raise ValueError(msg)
        return v

    @field_validator("chart_resolution")
    @classmethod
    def _validate_chart_resolution(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            msg = "chart_resolution must be greater than 0"
            raise ValueError(msg)
        return v

    @field_validator("max_workers")
    @classmethod
    def _validate_workers(cls, v: int) -> int:
        if v < 1:
            msg = "max_workers must be at least 1"
            raise ValueError(msg)
        return v

    @model_validator(mode="after")
    def _validate_year_order(self) -> Config:
        """Ensure the year range is not inverted."""
        if self.start_year > self.end_year:
            msg = (
                f"start_year ({self.start_year}) must not be after "
                f"end_year ({self.end_year})"
            )
            raise ValueError(msg)
        return self

    @property
    def reduction_scale(self) -> float:
        """Scale in metres used for chart and annual spatial reductions."""
        if self.chart_resolution is not None:
            return self.chart_resolution
        return self.resolution

    @property
    def time_range(self) -> tuple[str, str]:
        """ISO date range covering every month of the analysis years."""
        return (f"{self.start_year}-01-01", f"{self.end_year}-12-31")


_default_config = Config()


def configure(**kwargs: Any) -> None:
    """Set module-level default configuration.

    Creates a new ``Config`` from the current defaults merged with
    the provided keyword arguments.

    Args:
        **kwargs: Any ``Config`` field (e.g. ``aoi_asset_id``,
            ``start_year``, ``metric``).

    Raises:
        ValidationError: If a provided value fails pydantic validation.

    Example:
        >>> configure(start_year=1991, end_year=2020, metric="median")
    """
    global _default_config  # noqa: PLW0603
    current = _default_config.model_dump()
    current.update(kwargs)
    _default_config = Config(**current)


def get_default_config() -> Config:
    """Return the current module-level default configuration."""
    return _default_config


def resolve_credentials_path(
    explicit: Path | None = None,
) -> Path | None:
    """Resolve the credentials file path.

    Resolution order:
        1. *explicit* argument (highest priority)
        2. ``CLIMATEHUB_CREDENTIALS`` environment variable
        3. Default ``~/.climatehub/credentials.json``

    Emits a warning if the file exists and is readable by group or
    others on POSIX systems.

    Args:
        explicit: An explicit path passed via ``Config``.

    Returns:
        Resolved ``Path``, or ``None`` if no credentials file exists
        at the selected location.
    """
    if explicit is not None:
        path = Path(explicit).expanduser()
    elif os.environ.get(_CREDENTIALS_ENV_VAR):
        path = Path(os.environ[_CREDENTIALS_ENV_VAR]).expanduser()
    else:
        path = _DEFAULT_CREDENTIALS_PATH.expanduser()

    if not path.exists():
        return None

    _check_file_permissions(path)
    return path


def _check_file_permissions(path: Path) -> None:
    """Warn if *path* is readable by group or others.

    Skipped on Windows where POSIX permission bits are not meaningful.
    """
    if sys.platform == "win32":
        return
    try:
        mode = path.stat().st_mode
    except OSError as exc:
        logger.debug("Cannot stat credentials file %s: %s", path, exc)
        return
    if mode & 0o077:
        logger.warning(
            "Credentials file %s has overly permissive "
            "permissions (%o). Consider running: "
            "chmod 600 %s",
            path,
            mode & 0o777,
            path,
        )


def load_credentials(path: Path) -> dict[str, Any]:
    """Load and parse a JSON credentials file.

    Args:
        path: Absolute or ``~``-expanded path to the JSON file.

    Returns:
        Parsed credentials dictionary.

    Raises:
        ConfigurationError: If the file is missing or contains
            invalid JSON.
    """
    resolved = Path(path).expanduser()
    try:
        text = resolved.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigurationError(
            what="Cannot read credentials file",
            cause=f"File not found: {resolved}",
            fix=(
                f"Create {resolved} with provider credentials, "
                f"or set the {_CREDENTIALS_ENV_VAR} environment variable"
            ),
        ) from None
    except PermissionError:
        raise ConfigurationError(
            what="Cannot read credentials file",
            cause=f"Permission denied: {resolved}",
            fix=f"Check file permissions on {resolved}",
        ) from None

    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(
            what="Invalid credentials file format",
            cause=f"JSON parse error in {resolved}: {exc}",
            fix='Ensure the file contains valid JSON: {"cds": {"api_key": "..."}}',
        ) from None

    if not isinstance(parsed, dict):
        raise ConfigurationError(
            what="Invalid credentials file format",
            cause=f"Expected a JSON object in {resolved}, got {type(parsed).__name__}",
            fix='Ensure the file contains a JSON object: {"cds": {"api_key": "..."}}',
        )

    return parsed
