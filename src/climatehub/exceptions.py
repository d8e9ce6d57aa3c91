"""ClimateHub exception hierarchy.

All exceptions follow a three-part message pattern: what failed,
likely cause, and suggested fix. Non-fatal conditions (empty calendar
groups, unavailable reductions) never escape the builders; they surface
as ``None`` values and an ``EmptyGroupWarning``.
"""

from __future__ import annotations


class ClimateHubError(Exception):
    """Base exception for all ClimateHub errors.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise ClimateHubError(
        ...     what="Operation failed",
        ...     cause="Unexpected internal state",
        ...     fix="Please report this issue",
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
    ) -> None:
        """Initialize with structured error context.

        Args:
            what: Description of what failed.
            cause: Likely cause of the failure.
            fix: Suggested action to resolve the issue.
        """
        self.what = what
        self.cause = cause
        self.fix = fix
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Build the multi-line error message from parts.

        Returns:
            Formatted message with optional Cause and Fix lines.
        """
        parts = [self.what]
        if self.cause:
            parts.append(f"Cause: {self.cause}")
        if self.fix:
            parts.append(f"Fix: {self.fix}")
        return "\n".join(parts)


class ConfigurationError(ClimateHubError):
    """Raised for configuration and credential errors.

    Example:
        >>> raise ConfigurationError(
        ...     what="Invalid year range",
        ...     cause="start_year 2020 is after end_year 1990",
        ...     fix="Swap start_year and end_year",
        ... )
    """


class ProviderError(ClimateHubError):
    """Raised for gridded data source failures after retries exhausted.

    Example:
        >>> raise ProviderError(
        ...     what="CDS download failed",
        ...     cause="HTTP 503 after 3 retries",
        ...     fix="Check CDS status at https://cds.climate.copernicus.eu/",
        ... )
    """


class InvalidAOIError(ClimateHubError):
    """Raised when an AOI reference resolves to zero geometries.

    Fatal: the run is aborted before any reduction is attempted.

    Args:
        asset_id: The AOI asset identifier that failed to resolve.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise InvalidAOIError("projects/demo/assets/empty")
    """

    def __init__(
        self,
        asset_id: str,
        cause: str = "Reference resolved to zero geometries",
        fix: str = "Check the aoi_asset_id setting points to a non-empty asset",
    ) -> None:
        self.asset_id = asset_id
        super().__init__(
            what=f"Cannot resolve AOI {asset_id!r}",
            cause=cause,
            fix=fix,
        )


class MissingBandError(ClimateHubError):
    """Raised when a requested band is absent from a source image.

    Fatal for the affected variable only; other variables continue.

    Args:
        band: Name of the missing band.
        available: Bands the image actually carries.

    Example:
        >>> raise MissingBandError("tp_mm", available=["tmean_C"])
    """

    def __init__(self, band: str, available: list[str] | None = None) -> None:
        self.band = band
        self.available = list(available or [])
        listing = ", ".join(self.available) if self.available else "none"
        super().__init__(
            what=f"Band {band!r} not found",
            cause=f"Image bands are: {listing}",
            fix="Request the raw band from the data source or pick another variable",
        )


class ReductionUnavailable(ClimateHubError):
    """Raised by a spatial reducer that cannot produce a value.

    Builders catch it and record ``None`` instead of a number.
    """


class EmptyGroupWarning(UserWarning):
    """A calendar-month or calendar-year group had no source images."""
