"""Turn GeoJSON-style explored-area features into polygons and pick the
reference region ("ubersquadrat") that anchors the grid."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .errors import NoReferenceRegionFound
from .geometry import LatLon, Polygon, polygon_area_m2

logger = logging.getLogger(__name__)

DEFAULT_REGION_SIZE = 16


@dataclass
class RegionCandidate:
    name: str
    coords: List[LatLon]
    size: int = DEFAULT_REGION_SIZE


@dataclass
class ParsedFeatures:
    features: List[Polygon] = field(default_factory=list)
    all_polygons: List[Polygon] = field(default_factory=list)
    candidates: List[RegionCandidate] = field(default_factory=list)


def extract_polygons(geometry: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Return ``{"outer", "holes"}`` dicts (source axis order) for ``geometry``."""
    gtype = geometry.get("type")
    out: List[Dict[str, Any]] = []
    if gtype == "Polygon":
        rings = geometry.get("coordinates") or []
        if rings:
            out.append({"outer": rings[0], "holes": rings[1:]})
    elif gtype == "MultiPolygon":
        for rings in geometry.get("coordinates") or []:
            if rings:
                out.append({"outer": rings[0], "holes": rings[1:]})
    elif gtype == "GeometryCollection":
        for sub in geometry.get("geometries") or []:
            out.extend(extract_polygons(sub))
    return out


def _to_lat_lon(ring: List[List[float]]) -> List[LatLon]:
    return [(float(c[1]), float(c[0])) for c in ring]


def _parse_size(raw: Any, default: int = DEFAULT_REGION_SIZE) -> int:
    try:
        size = int(raw)
    except (TypeError, ValueError):
        return default
    return size if size > 0 else default


def parse_features(
    feature_collection: Dict[str, Any], default_size: int = DEFAULT_REGION_SIZE
) -> ParsedFeatures:
    """Split a FeatureCollection into plain features and region candidates.

    Coordinates arrive as ``(lon, lat)`` and are flipped to ``(lat, lon)``.
    Point features and "ubersquadratinho" features are skipped.
    """
    parsed = ParsedFeatures()
    for feat in feature_collection.get("features", []):
        props = feat.get("properties") or {}
        name = str(props.get("name") or "")
        lname = name.lower()
        if "ubersquadratinho" in lname or "squadratinho" in lname:
            continue
        is_reference = "ubersquadrat" in lname
        geometry = feat.get("geometry")
        if not geometry or geometry.get("type") == "Point":
            continue
        for poly in extract_polygons(geometry):
            outer = _to_lat_lon(poly["outer"])
            holes = [_to_lat_lon(h) for h in poly["holes"]]
            polygon = Polygon(outer, holes)
            parsed.all_polygons.append(polygon)
            if is_reference:
                parsed.candidates.append(
                    RegionCandidate(name, outer, _parse_size(props.get("size"), default_size))
                )
            else:
                parsed.features.append(polygon)
    logger.info(
        "Parsed %d polygons (%d reference candidates)",
        len(parsed.all_polygons),
        len(parsed.candidates),
    )
    return parsed


def find_reference_region(
    candidates: List[RegionCandidate],
    features: List[Polygon],
    default_size: int = DEFAULT_REGION_SIZE,
) -> Tuple[List[LatLon], int]:
    """Return ``(outer_ring, size)`` of the reference region.

    The largest named candidate wins; without candidates the largest plain
    feature is used with the default size.
    """
    best: Optional[Tuple[List[LatLon], int]] = None
    best_area = 0.0
    if candidates:
        for cand in candidates:
            area = polygon_area_m2(cand.coords)
            if area > best_area:
                best_area = area
                best = (cand.coords, cand.size)
    else:
        for feat in features:
            area = polygon_area_m2(feat.outer)
            if area > best_area:
                best_area = area
                best = (feat.outer, default_size)
    if best is None:
        raise NoReferenceRegionFound("no polygon with positive area to anchor the grid")
    logger.info("Reference region: %d vertices, %.0f m^2, size %d", len(best[0]), best_area, best[1])
    return best
