"""Gridded data source registry.

Provides ``get_provider()`` to instantiate configured sources by name:
CDS (ERA5 monthly means over the network) and NetCDF (local files).
"""

from __future__ import annotations

from typing import Any

from climatehub.config import Config
from climatehub.exceptions import ConfigurationError
from climatehub.providers.base import GriddedDataSource

_PROVIDER_REGISTRY: dict[str, type[GriddedDataSource]] = {}
_REGISTRY_INITIALIZED = False


def _init_registry() -> None:
    """Populate the registry on first use (lazy import)."""
    global _REGISTRY_INITIALIZED  # noqa: PLW0603
    if _REGISTRY_INITIALIZED:
        return

    from climatehub.providers.cds import CDSProvider
    from climatehub.providers.local import NetCDFDataSource

    _PROVIDER_REGISTRY.update(
        {
            "cds": CDSProvider,
            "netcdf": NetCDFDataSource,
        }
    )
    _REGISTRY_INITIALIZED = True


def get_registered_names() -> list[str]:
    """Return the sorted registered source names."""
    _init_registry()
    return sorted(_PROVIDER_REGISTRY)


def get_provider(name: str, config: Config, **kwargs: Any) -> GriddedDataSource:
    """Return a configured source instance by (case-insensitive) name.

    Args:
        name: Source identifier (``"cds"`` or ``"netcdf"``).
        config: Frozen run configuration.
        **kwargs: Extra constructor arguments (e.g. ``path`` for NetCDF).

    Raises:
        ConfigurationError: If *name* does not match a registered source.

    Example:
        >>> get_provider("cds", Config()).name
        'cds'
    """
    _init_registry()
    key = name.lower()
    if key not in _PROVIDER_REGISTRY:
        valid = ", ".join(get_registered_names())
        raise ConfigurationError(
            what=f"Unknown provider: {name!r}",
            cause=f"Valid providers are: {valid}",
            fix=f"Use one of: {valid}",
        )
    return _PROVIDER_REGISTRY[key](config=config, **kwargs)
