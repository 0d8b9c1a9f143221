"""Road-aware placement of one routing waypoint per cell.

Roads are clipped to the cell rectangle and three candidate strategies are
ranked: road-road intersections, on-road midpoints and the nearest on-road
point to a reference.  Shapely geometries are kept in ``(lon, lat)`` order;
everything leaving this module is ``(lat, lon)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from shapely.geometry import LineString, Point
from shapely.geometry.base import BaseGeometry

from .bounds_utils import CellBounds
from .errors import NoRoadsInCell
from .geometry import LatLon, haversine_km

logger = logging.getLogger(__name__)

PRIORITY_INTERSECTION = 3
PRIORITY_MIDPOINT = 2
PRIORITY_NEAREST = 1
CONNECTING_ROAD_BOOST = 0.5
DEFAULT_MAX_ALTERNATIVES = 3
# rounding used to merge candidates found by several road pairs
DEDUPE_DECIMALS = 7


@dataclass
class RoadFeature:
    """One road line with ``coords`` in ``(lon, lat)`` order."""

    id: str
    coords: List[Tuple[float, float]]
    highway: Optional[str] = None
    name: Optional[str] = None
    surface: Optional[str] = None

    @property
    def line(self) -> LineString:
        return LineString(self.coords)

    @classmethod
    def from_geojson(cls, feature: Dict[str, Any]) -> "RoadFeature":
        props = feature.get("properties") or {}
        geom = feature.get("geometry") or {}
        fid = feature.get("id", props.get("id"))
        return cls(
            id=str(fid),
            coords=[(float(c[0]), float(c[1])) for c in geom.get("coordinates", [])],
            highway=props.get("highway"),
            name=props.get("name"),
            surface=props.get("surface"),
        )

    def to_geojson(self) -> Dict[str, Any]:
        return {
            "type": "Feature",
            "id": self.id,
            "properties": {
                "highway": self.highway,
                "name": self.name,
                "surface": self.surface,
            },
            "geometry": {
                "type": "LineString",
                "coordinates": [list(c) for c in self.coords],
            },
        }


@dataclass
class Waypoint:
    lat: float
    lon: float
    type: str
    priority: float = 0.0
    grid_coords: Optional[Tuple[int, int]] = None
    has_road: bool = True
    alternatives: List["Waypoint"] = field(default_factory=list)
    road_ids: Tuple[str, ...] = ()

    @property
    def point(self) -> LatLon:
        return (self.lat, self.lon)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "lat": self.lat,
            "lon": self.lon,
            "type": self.type,
            "priority": self.priority,
            "hasRoad": self.has_road,
        }
        if self.grid_coords is not None:
            data["gridCoords"] = {"i": self.grid_coords[0], "j": self.grid_coords[1]}
        if self.alternatives:
            data["alternatives"] = [
                {"lat": a.lat, "lon": a.lon, "type": a.type, "priority": a.priority}
                for a in self.alternatives
            ]
        return data


@dataclass
class ClippedRoad:
    road: RoadFeature
    clipped: BaseGeometry
    connecting: bool = False

    def parts(self) -> List[LineString]:
        return _line_parts(self.clipped)


def _line_parts(geom: BaseGeometry) -> List[LineString]:
    if geom.is_empty:
        return []
    if isinstance(geom, LineString):
        return [geom] if geom.length > 0 else []
    parts: List[LineString] = []
    for sub in getattr(geom, "geoms", []):
        parts.extend(_line_parts(sub))
    return parts


def _points_of(geom: BaseGeometry) -> List[Point]:
    if geom.is_empty:
        return []
    if isinstance(geom, Point):
        return [geom]
    if isinstance(geom, LineString):
        # overlapping roads: use the start of the shared stretch
        return [Point(geom.coords[0])]
    pts: List[Point] = []
    for sub in getattr(geom, "geoms", []):
        pts.extend(_points_of(sub))
    return pts


def find_roads_in_cell(
    roads: Iterable[RoadFeature],
    bounds: Any,
    next_bounds: Any = None,
) -> List[ClippedRoad]:
    """Roads crossing the cell, clipped to its rectangle.

    When ``next_bounds`` is given, roads that also reach that cell are
    flagged as connecting.
    """
    box = CellBounds.from_any(bounds).to_box()
    next_box = CellBounds.from_any(next_bounds).to_box() if next_bounds is not None else None
    found: List[ClippedRoad] = []
    for road in roads:
        if len(road.coords) < 2:
            continue
        line = road.line
        if not line.intersects(box):
            continue
        clipped = line.intersection(box)
        if not _line_parts(clipped):
            continue
        connecting = next_box is not None and line.intersects(next_box)
        found.append(ClippedRoad(road, clipped, connecting))
    return found


@dataclass
class _Candidate:
    lon: float
    lat: float
    priority: float
    type: str
    road_ids: Tuple[str, ...]

    @property
    def latlon(self) -> LatLon:
        return (self.lat, self.lon)


def find_candidates(
    clipped_roads: Sequence[ClippedRoad],
    references: Sequence[LatLon],
) -> List[_Candidate]:
    """Candidate waypoints from every strategy, deduplicated by location.

    Raises :class:`NoRoadsInCell` when ``clipped_roads`` yields nothing.
    """
    if not clipped_roads:
        raise NoRoadsInCell("no road crosses the cell")

    raw: List[_Candidate] = []

    for a_idx in range(len(clipped_roads)):
        for b_idx in range(a_idx + 1, len(clipped_roads)):
            a, b = clipped_roads[a_idx], clipped_roads[b_idx]
            boost = CONNECTING_ROAD_BOOST if (a.connecting or b.connecting) else 0.0
            for pt in _points_of(a.clipped.intersection(b.clipped)):
                raw.append(
                    _Candidate(
                        pt.x,
                        pt.y,
                        PRIORITY_INTERSECTION + boost,
                        "intersection",
                        (a.road.id, b.road.id),
                    )
                )

    for cr in clipped_roads:
        boost = CONNECTING_ROAD_BOOST if cr.connecting else 0.0
        for part in cr.parts():
            mid = part.interpolate(0.5, normalized=True)
            raw.append(_Candidate(mid.x, mid.y, PRIORITY_MIDPOINT + boost, "midpoint", (cr.road.id,)))
            for ref_lat, ref_lon in references:
                ref = Point(ref_lon, ref_lat)
                near = part.interpolate(part.project(ref))
                raw.append(
                    _Candidate(near.x, near.y, PRIORITY_NEAREST + boost, "nearest", (cr.road.id,))
                )

    merged: Dict[Tuple[float, float], _Candidate] = {}
    for cand in raw:
        key = (round(cand.lon, DEDUPE_DECIMALS), round(cand.lat, DEDUPE_DECIMALS))
        seen = merged.get(key)
        if seen is None or cand.priority > seen.priority:
            merged[key] = cand
    if not merged:
        raise NoRoadsInCell("roads in the cell produced no usable point")
    return list(merged.values())


def rank_candidates(
    candidates: Sequence[_Candidate],
    center: LatLon,
    prev_point: Optional[LatLon] = None,
    next_point: Optional[LatLon] = None,
) -> List[_Candidate]:
    """Sort by priority, then by distance to the neighbours (or the center)."""
    anchors = [p for p in (prev_point, next_point) if p is not None] or [center]

    def key(c: _Candidate):
        return (-c.priority, sum(haversine_km(c.latlon, p) for p in anchors))

    return sorted(candidates, key=key)


def center_waypoint(bounds: Any, grid_coords: Optional[Tuple[int, int]] = None) -> Waypoint:
    lat, lon = CellBounds.from_any(bounds).center
    return Waypoint(lat, lon, "no-road", 0.0, grid_coords, has_road=False)


def place_waypoint(
    roads: Iterable[RoadFeature],
    bounds: Any,
    grid_coords: Optional[Tuple[int, int]] = None,
    *,
    prev_point: Optional[LatLon] = None,
    next_point: Optional[LatLon] = None,
    next_bounds: Any = None,
    max_alternatives: int = DEFAULT_MAX_ALTERNATIVES,
) -> Waypoint:
    """Best on-road waypoint for the cell ``bounds``.

    Without ``prev_point``/``next_point`` the placement is neutral and ties
    are broken by distance to the cell center.  Cells without roads fall back
    to their center with ``has_road=False``.
    """
    cell = CellBounds.from_any(bounds)
    center = cell.center
    references = [center] + [p for p in (prev_point, next_point) if p is not None]
    try:
        clipped = find_roads_in_cell(roads, cell, next_bounds)
        candidates = find_candidates(clipped, references)
    except NoRoadsInCell as e:
        logger.debug("Cell %s: %s, using center", grid_coords, e)
        return center_waypoint(cell, grid_coords)

    ranked = rank_candidates(candidates, center, prev_point, next_point)
    best = ranked[0]
    alternatives = [
        Waypoint(c.lat, c.lon, c.type, c.priority, grid_coords, True, [], c.road_ids)
        for c in ranked[1 : 1 + max_alternatives]
    ]
    logger.debug(
        "Cell %s: %d roads, %d candidates, best %s", grid_coords, len(clipped), len(ranked), best.type
    )
    return Waypoint(
        best.lat,
        best.lon,
        best.type,
        best.priority,
        grid_coords,
        True,
        alternatives,
        best.road_ids,
    )
