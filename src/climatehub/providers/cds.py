"""ERA5 monthly means via the Copernicus Climate Data Store API."""

from __future__ import annotations

import calendar
import logging
import random
import tempfile
import time
from collections.abc import Sequence
from datetime import date
from io import BytesIO
from typing import TYPE_CHECKING, Any

import requests
import xarray as xr

from climatehub.config import Config
from climatehub.exceptions import ConfigurationError, ProviderError
from climatehub.imagery import GriddedImage, GriddedTimeSeries
from climatehub.providers.base import (
    GriddedDataSource,
    ProviderCredentials,
    ProviderStatus,
    series_from_dataset,
)

if TYPE_CHECKING:
    from climatehub._types import TimeRange
    from climatehub.aoi import AOIGeometry

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CDS API constants
# ---------------------------------------------------------------------------

_CDS_API_URL = "https://cds.climate.copernicus.eu/api"
_CDS_RESOURCES_URL = f"{_CDS_API_URL}/retrieve/v1/processes"
_CDS_JOBS_URL = f"{_CDS_API_URL}/retrieve/v1/jobs"
_CDS_PORTAL_URL = "https://cds.climate.copernicus.eu/"
_CDS_HOWTO_URL = "https://cds.climate.copernicus.eu/how-to-api"

# ---------------------------------------------------------------------------
# Timeouts
# ---------------------------------------------------------------------------

_DEFAULT_TIMEOUT = 30  # seconds for connection/request timeout
_STATUS_TIMEOUT = 10  # shorter timeout for status checks
_READ_TIMEOUT = 600  # multi-decade monthly files are large

# ---------------------------------------------------------------------------
# Retry constants
# ---------------------------------------------------------------------------

_MAX_RETRIES = 3
_INITIAL_BACKOFF = 1.0  # seconds
_MAX_BACKOFF = 60.0  # seconds
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 408})
_SUCCESS_STATUS_CODES = frozenset({200, 201, 202})

# ---------------------------------------------------------------------------
# Queue polling constants
# ---------------------------------------------------------------------------

_POLL_INTERVAL = 5.0  # seconds between queue status checks
_MAX_QUEUE_TIME = 1800.0  # 30-minute budget for queue completion
_LOG_INTERVAL = 30.0  # log progress every 30 seconds

# ---------------------------------------------------------------------------
# ERA5 product constants
# ---------------------------------------------------------------------------

_ERA5_MONTHLY_PRODUCT = "reanalysis-era5-single-levels-monthly-means"
_AREA_PADDING_DEG = 0.25

# Raw band name -> CDS request variable name.
_CDS_VARIABLES: dict[str, str] = {
    "total_precipitation": "total_precipitation",
    "mean_2m_air_temperature": "2m_temperature",
    "minimum_2m_air_temperature": "minimum_2m_temperature_since_previous_post_processing",
    "maximum_2m_air_temperature": "maximum_2m_temperature_since_previous_post_processing",
    "u_component_of_wind_10m": "10m_u_component_of_wind",
    "v_component_of_wind_10m": "10m_v_component_of_wind",
}


def _to_monthly_totals(series: GriddedTimeSeries) -> GriddedTimeSeries:
    """Scale precipitation from mean daily depth to a monthly total.

    CDS monthly means store ``tp`` as metres per day; the engine expects
    metres accumulated over the month.
    """
    if "total_precipitation" not in series.band_names:
        return series

    def scale(img: GriddedImage) -> GriddedImage:
        if img.timestamp is None:
            return img
        days = calendar.monthrange(img.timestamp.year, img.timestamp.month)[1]
        return img.with_bands({"total_precipitation": img.band("total_precipitation") * days})

    return series.map(scale)


class CDSProvider(GriddedDataSource):
    """ERA5 monthly-means source backed by the CDS API.

    Submits a retrieval job covering the AOI bounding box, polls the CDS
    queue until it completes, and parses the NetCDF result with xarray.

    Args:
        config: Frozen run configuration.

    Example:
        >>> provider = CDSProvider(config=Config())
        >>> provider.name
        'cds'
    """

    _name: str = "cds"

    def __init__(self, config: Config) -> None:
        super().__init__(config)
        self._session: requests.Session = requests.Session()
        self._api_key: str = ""
        self._authenticated: bool = False

    def authenticate(self, credentials: ProviderCredentials) -> None:
        """Validate the CDS API key with a lightweight request.

        Raises:
            ConfigurationError: If the API key is missing, rejected,
                or the CDS service is unreachable.
        """
        api_key = credentials.api_key
        if not api_key:
            raise ConfigurationError(
                what="CDS API key not provided",
                cause="Missing api_key in credentials",
                fix="Add a CDS API key to ~/.climatehub/credentials.json",
            )

        self._session.headers["PRIVATE-TOKEN"] = api_key

        try:
            resp = self._session.get(_CDS_RESOURCES_URL, timeout=_STATUS_TIMEOUT)
        except requests.RequestException as exc:
            raise ConfigurationError(
                what="Cannot reach CDS API",
                cause=str(exc),
                fix=f"Check internet connection and CDS status at {_CDS_PORTAL_URL}",
            ) from exc

        if resp.status_code in (401, 403):
            raise ConfigurationError(
                what="CDS authentication failed",
                cause="Invalid or expired API key",
                fix=f"Register at {_CDS_HOWTO_URL} and generate a new API key",
            )

        if resp.status_code != 200:  # noqa: PLR2004
            raise ConfigurationError(
                what="CDS authentication check failed",
                cause=f"HTTP {resp.status_code}",
                fix=f"Check CDS status at {_CDS_PORTAL_URL}",
            )

        self._api_key = api_key
        self._authenticated = True
        logger.debug("CDS authentication successful")

    def query(
        self,
        dataset_id: str,
        time_range: TimeRange,
        bands: Sequence[str],
        region: AOIGeometry | None = None,
    ) -> GriddedTimeSeries:
        """Retrieve ERA5 monthly means for *bands* over *region*.

        Raises:
            ProviderError: If not authenticated, a band is unknown to CDS,
                the queue fails or times out, or the result cannot be parsed.
        """
        if not self._authenticated:
            raise ProviderError(
                what="CDS query requires authentication",
                cause="Not authenticated",
                fix="Call authenticate() before query()",
            )

        product = dataset_id or _ERA5_MONTHLY_PRODUCT
        request_body = self._build_request(time_range, bands, region)

        logger.info(
            "Submitting ERA5 monthly request for %s (%s to %s)",
            ", ".join(bands),
            time_range[0],
            time_range[1],
        )
        job_id = self._submit_request(product, request_body)
        download_url = self._poll_queue(job_id)

        logger.debug("ERA5 request completed, downloading result...")
        series = self._download_result(download_url, time_range, bands)
        return _to_monthly_totals(series)

    def _build_request(
        self,
        time_range: TimeRange,
        bands: Sequence[str],
        region: AOIGeometry | None,
    ) -> dict[str, Any]:
        """Build the CDS request body.

        Raises:
            ProviderError: If a band has no CDS variable.
        """
        unknown = [b for b in bands if b not in _CDS_VARIABLES]
        if unknown:
            raise ProviderError(
                what="Unsupported ERA5 bands requested",
                cause=f"No CDS variable for: {', '.join(unknown)}",
                fix=f"Use bands among: {', '.join(_CDS_VARIABLES)}",
            )

        start = date.fromisoformat(time_range[0])
        end = date.fromisoformat(time_range[1])
        years = [str(y) for y in range(start.year, end.year + 1)]
        if start.year == end.year:
            months = [f"{m:02d}" for m in range(start.month, end.month + 1)]
        else:
            months = [f"{m:02d}" for m in range(1, 13)]

        body: dict[str, Any] = {
            "product_type": ["monthly_averaged_reanalysis"],
            "variable": [_CDS_VARIABLES[b] for b in bands],
            "year": years,
            "month": months,
            "time": ["00:00"],
            "data_format": "netcdf",
            "download_format": "unarchived",
        }
        if region is not None:
            minx, miny, maxx, maxy = region.bounds
            pad = _AREA_PADDING_DEG
            body["area"] = [maxy + pad, minx - pad, miny - pad, maxx + pad]  # N, W, S, E
        return body

    def _submit_request(self, product: str, request_body: dict[str, Any]) -> str:
        """Submit the request and return the CDS job id."""
        url = f"{_CDS_RESOURCES_URL}/{product}/execution"

        resp = self._retry_request("post", url, json={"inputs": request_body})

        try:
            body: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise ProviderError(
                what="CDS request submission failed",
                cause="Invalid response format",
                fix="Try again; if persistent, check CDS status",
            ) from exc

        job_id = str(body.get("jobID") or body.get("request_id") or body.get("id") or "")
        if not job_id:
            raise ProviderError(
                what="CDS request submission failed",
                cause="No job ID in response",
                fix="Try again; if persistent, check CDS status",
            )
        return job_id

    def _poll_queue(self, job_id: str) -> str:
        """Poll the CDS queue until the job completes; return the result URL."""
        url = f"{_CDS_JOBS_URL}/{job_id}"
        start_time = time.time()
        last_log_time = start_time

        logger.info("ERA5 request queued, polling for completion...")

        while True:
            elapsed = time.time() - start_time

            if elapsed > _MAX_QUEUE_TIME:
                raise ProviderError(
                    what="ERA5 request timed out",
                    cause=f"CDS queue exceeded {_MAX_QUEUE_TIME:.0f}s budget",
                    fix="Try again later or request fewer years",
                )

            try:
                resp = self._session.get(url, timeout=_DEFAULT_TIMEOUT)
            except requests.RequestException as exc:
                raise ProviderError(
                    what="CDS queue polling failed",
                    cause=str(exc),
                    fix="Check internet connection and try again",
                ) from exc

            if resp.status_code != 200:  # noqa: PLR2004
                raise ProviderError(
                    what="CDS queue polling failed",
                    cause=f"HTTP {resp.status_code}",
                    fix="Try again; if persistent, check CDS status",
                )

            try:
                body = resp.json()
            except ValueError as exc:
                raise ProviderError(
                    what="CDS queue polling failed",
                    cause="Invalid JSON response",
                    fix="Try again; if persistent, check CDS status",
                ) from exc

            state = str(body.get("status", body.get("state", ""))).lower()

            if state in ("successful", "completed"):
                return self._result_location(job_id, body)

            if state in ("failed", "rejected", "dismissed"):
                error = body.get("error") or {}
                if isinstance(error, dict):
                    message = str(error.get("message", "Unknown error"))
                else:
                    message = str(error)
                raise ProviderError(
                    what="ERA5 request failed",
                    cause=message,
                    fix="Check request parameters and try again",
                )

            if time.time() - last_log_time >= _LOG_INTERVAL:
                logger.info("ERA5 request processing (elapsed: %.0fs)...", elapsed)
                last_log_time = time.time()

            time.sleep(_POLL_INTERVAL)

    def _result_location(self, job_id: str, body: dict[str, Any]) -> str:
        """Extract the download URL of a finished job."""
        location = str(body.get("location", ""))
        if location:
            return location

        resp = self._retry_request("get", f"{_CDS_JOBS_URL}/{job_id}/results")
        try:
            results: dict[str, Any] = resp.json()
            href = str(results["asset"]["value"]["href"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderError(
                what="CDS request completed without download URL",
                cause="Missing asset href in results",
                fix="Try again; if persistent, report to CDS support",
            ) from exc
        return href

    def _download_result(
        self,
        download_url: str,
        time_range: TimeRange,
        bands: Sequence[str],
    ) -> GriddedTimeSeries:
        """Download the NetCDF result and parse it into a time series."""
        resp = self._retry_request(
            "get",
            download_url,
            stream=True,
            timeout=(_DEFAULT_TIMEOUT, _READ_TIMEOUT),
        )
        content = resp.content
        logger.debug("Downloaded %d bytes from CDS", len(content))
        return self._parse_netcdf(content, time_range, bands)

    def _parse_netcdf(
        self,
        content: bytes,
        time_range: TimeRange,
        bands: Sequence[str],
    ) -> GriddedTimeSeries:
        """Parse NetCDF bytes, in memory first, then via a temp file.

        Raises:
            ProviderError: If parsing fails.
        """
        try:
            with xr.open_dataset(BytesIO(content), engine="h5netcdf") as ds:
                return series_from_dataset(ds.load(), time_range, bands)
        except (OSError, ValueError) as mem_err:
            logger.debug(
                "In-memory NetCDF parsing failed: %s. Trying temp file fallback.",
                mem_err,
            )

        try:
            with tempfile.NamedTemporaryFile(suffix=".nc", delete=False) as tmp:
                tmp.write(content)
                tmp_path = tmp.name

            with xr.open_dataset(tmp_path) as ds:
                return series_from_dataset(ds.load(), time_range, bands)
        except (OSError, ValueError) as file_err:
            raise ProviderError(
                what="Failed to parse ERA5 NetCDF data",
                cause=str(file_err),
                fix="Check CDS response format or try again",
            ) from file_err

    def _retry_request(
        self,
        method: str,
        url: str,
        **kwargs: Any,
    ) -> requests.Response:
        """Execute an HTTP request with retry and exponential backoff.

        Raises:
            ProviderError: If all retries are exhausted.
        """
        kwargs.setdefault("timeout", _DEFAULT_TIMEOUT)
        last_status: int = 0
        last_exc: requests.RequestException | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                resp = self._session.request(method, url, **kwargs)

                if resp.status_code in _SUCCESS_STATUS_CODES:
                    return resp

                last_status = resp.status_code

                if resp.status_code in (401, 403):
                    raise ProviderError(
                        what="CDS authentication failed",
                        cause="API key rejected",
                        fix="Call authenticate() with valid credentials",
                    )

                if resp.status_code not in _RETRYABLE_STATUS_CODES:
                    raise ProviderError(
                        what="CDS request failed",
                        cause=f"HTTP {resp.status_code}",
                        fix=f"Check CDS status at {_CDS_PORTAL_URL}",
                    )

                backoff = self._compute_backoff(attempt)
                logger.warning(
                    "CDS request failed (HTTP %d, attempt %d/%d), retrying in %.1fs...",
                    resp.status_code,
                    attempt + 1,
                    _MAX_RETRIES,
                    backoff,
                )
                time.sleep(backoff)

            except requests.RequestException as exc:
                last_exc = exc
                if attempt < _MAX_RETRIES - 1:
                    backoff = self._compute_backoff(attempt)
                    logger.warning(
                        "CDS request failed (%s, attempt %d/%d), retrying in %.1fs...",
                        type(exc).__name__,
                        attempt + 1,
                        _MAX_RETRIES,
                        backoff,
                    )
                    time.sleep(backoff)

        if last_exc is not None:
            raise ProviderError(
                what="CDS request failed after retries",
                cause=str(last_exc),
                fix="Check internet connection and try again",
            ) from last_exc

        raise ProviderError(
            what="CDS request failed after retries",
            cause=f"HTTP {last_status} after {_MAX_RETRIES} retries",
            fix=f"Check CDS status at {_CDS_PORTAL_URL}",
        )

    @staticmethod
    def _compute_backoff(attempt: int) -> float:
        """Exponential backoff with up to 10% jitter."""
        base_delay: float = min(_INITIAL_BACKOFF * (2**attempt), _MAX_BACKOFF)
        jitter: float = random.uniform(0, base_delay * 0.1)  # noqa: S311
        return float(base_delay + jitter)

    def check_status(self) -> ProviderStatus:
        """Check CDS operational status. Never raises."""
        try:
            resp = self._session.get(_CDS_RESOURCES_URL, timeout=_STATUS_TIMEOUT)
        except requests.RequestException as exc:
            return ProviderStatus(
                available=False,
                message=f"CDS API unreachable: {exc}",
            )
        if resp.status_code == 200:  # noqa: PLR2004
            return ProviderStatus(available=True)
        return ProviderStatus(
            available=False,
            message=f"CDS returned HTTP {resp.status_code}",
        )
