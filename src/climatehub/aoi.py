"""Area-of-interest resolution.

Turns a user-supplied reference (asset id, GeoJSON mapping, or shapely
geometry) into ONE analysis geometry. Feature collections are unioned.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from shapely.geometry import mapping, shape
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from climatehub.exceptions import InvalidAOIError

logger = logging.getLogger(__name__)

_POLYGONAL_TYPES: frozenset[str] = frozenset({"Polygon", "MultiPolygon"})
_SAFE_ASSET_CHARS = re.compile(r"[^A-Za-z0-9_.-]+")


@dataclass(frozen=True)
class AOIGeometry:
    """A resolved, immutable area of interest.

    Args:
        geometry: Unified Polygon or MultiPolygon in WGS84 degrees.
        asset_id: Identifier the geometry was resolved from.

    Example:
        >>> from shapely.geometry import box
        >>> aoi = AOIGeometry(box(-68.0, 8.0, -66.0, 10.0), asset_id="demo")
        >>> aoi.bounds
        (-68.0, 8.0, -66.0, 10.0)
    """

    geometry: BaseGeometry
    asset_id: str = ""

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """Bounding box ``(minx, miny, maxx, maxy)``."""
        minx, miny, maxx, maxy = self.geometry.bounds
        return (float(minx), float(miny), float(maxx), float(maxy))

    @property
    def area(self) -> float:
        """Planar area in square degrees."""
        return float(self.geometry.area)

    def to_geojson(self) -> dict[str, Any]:
        """Return the geometry as a GeoJSON mapping."""
        return dict(mapping(self.geometry))


class AOIAssetStore(ABC):
    """Lookup of AOI assets by identifier."""

    @abstractmethod
    def resolve(self, asset_id: str) -> dict[str, list[BaseGeometry]]:
        """Return ``{"geometries": [...]}`` for *asset_id*.

        Raises:
            InvalidAOIError: If the asset does not exist.
        """
        ...


class GeoJSONAssetStore(AOIAssetStore):
    """Asset store backed by ``<root>/<asset_id>.geojson`` files.

    Path separators in asset ids (``projects/x/assets/y``) are flattened
    to underscores so remote-style ids map onto a single directory.

    Args:
        root: Directory holding the GeoJSON files.

    Example:
        >>> store = GeoJSONAssetStore("~/.climatehub/assets")
        >>> store.path_for("projects/demo/assets/Cojedes_Guarico").name
        'projects_demo_assets_Cojedes_Guarico.geojson'
    """

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root).expanduser()

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, asset_id: str) -> Path:
        """Return the file path an asset id maps onto."""
        candidate = Path(asset_id).expanduser()
        if candidate.suffix.lower() in (".geojson", ".json") and candidate.is_file():
            return candidate
        stem = _SAFE_ASSET_CHARS.sub("_", asset_id.strip("/"))
        return self._root / f"{stem}.geojson"

    def resolve(self, asset_id: str) -> dict[str, list[BaseGeometry]]:
        path = self.path_for(asset_id)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise InvalidAOIError(
                asset_id,
                cause=f"No asset file at {path}",
                fix=f"Place a GeoJSON file for the AOI at {path}",
            ) from None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as exc:
            raise InvalidAOIError(
                asset_id,
                cause=f"Invalid GeoJSON in {path}: {exc}",
                fix="Re-export the AOI as GeoJSON",
            ) from None
        logger.debug("Loaded AOI asset %s from %s", asset_id, path)
        return {"geometries": _geometries_from_geojson(payload, asset_id)}


def _geometries_from_geojson(payload: Any, asset_id: str) -> list[BaseGeometry]:
    """Flatten a GeoJSON object into a list of shapely geometries."""
    if not isinstance(payload, Mapping):
        raise InvalidAOIError(
            asset_id,
            cause=f"Expected a GeoJSON object, got {type(payload).__name__}",
        )
    kind = payload.get("type")
    if kind == "FeatureCollection":
        geoms: list[BaseGeometry] = []
        for feature in payload.get("features") or []:
            geoms.extend(_geometries_from_geojson(feature, asset_id))
        return geoms
    if kind == "Feature":
        geometry = payload.get("geometry")
        if geometry is None:
            return []
        return _geometries_from_geojson(geometry, asset_id)
    if kind == "GeometryCollection":
        geoms = []
        for member in payload.get("geometries") or []:
            geoms.extend(_geometries_from_geojson(member, asset_id))
        return geoms
    try:
        return [shape(payload)]
    except (ValueError, KeyError, TypeError, AttributeError) as exc:
        raise InvalidAOIError(
            asset_id,
            cause=f"Unreadable geometry of type {kind!r}: {exc}",
        ) from None


def resolve_aoi(
    asset_ref: str | Mapping[str, Any] | BaseGeometry | AOIGeometry,
    store: AOIAssetStore | None = None,
) -> AOIGeometry:
    """Resolve *asset_ref* into one unified ``AOIGeometry``.

    Args:
        asset_ref: Asset identifier, GeoJSON mapping (Geometry, Feature,
            FeatureCollection, GeometryCollection), shapely geometry, or an
            already-resolved ``AOIGeometry``.
        store: Asset store used for string identifiers.

    Returns:
        The union of all polygonal geometries the reference denotes.

    Raises:
        InvalidAOIError: If the reference resolves to zero geometries.

    Example:
        >>> aoi = resolve_aoi({"type": "Polygon", "coordinates": [[[0, 0], [1, 0], [1, 1], [0, 0]]]})
        >>> aoi.geometry.geom_type
        'Polygon'
    """
    if isinstance(asset_ref, AOIGeometry):
        return asset_ref

    if isinstance(asset_ref, BaseGeometry):
        asset_id = asset_ref.geom_type
        geometries = [asset_ref]
    elif isinstance(asset_ref, Mapping):
        asset_id = str(asset_ref.get("id") or asset_ref.get("type") or "geojson")
        geometries = _geometries_from_geojson(asset_ref, asset_id)
    else:
        asset_id = str(asset_ref)
        if not asset_id:
            raise InvalidAOIError(
                asset_id,
                cause="Empty AOI asset identifier",
                fix="Set aoi_asset_id in the configuration",
            )
        if store is None:
            raise InvalidAOIError(
                asset_id,
                cause="No asset store configured to look up the identifier",
                fix="Pass an AOIAssetStore or a GeoJSON mapping",
            )
        geometries = store.resolve(asset_id).get("geometries", [])

    polygons = [g for g in geometries if not g.is_empty and g.geom_type in _POLYGONAL_TYPES]
    if not polygons:
        raise InvalidAOIError(asset_id)

    # buffer(0) repairs self-intersections before the overlay.
    polygons = [g if g.is_valid else g.buffer(0) for g in polygons]
    unified = unary_union(polygons)
    logger.info(
        "Resolved AOI %s from %d geometries (bounds=%s)",
        asset_id,
        len(polygons),
        tuple(round(v, 4) for v in unified.bounds),
    )
    return AOIGeometry(geometry=unified, asset_id=asset_id)
