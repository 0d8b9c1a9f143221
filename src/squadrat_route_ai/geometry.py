from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import List, Sequence, Tuple

import numpy as np

from .errors import InvalidGeometry

LatLon = Tuple[float, float]
Ring = Sequence[LatLon]

EARTH_RADIUS_KM = 6371.0088


@dataclass
class Polygon:
    """Outer ring plus holes, all as ``(lat, lon)`` pairs.

    Rings need not repeat their first vertex at the end.  Holes are assumed to
    lie within ``outer``; this is not validated.
    """

    outer: List[LatLon]
    holes: List[List[LatLon]] = field(default_factory=list)


@dataclass(frozen=True)
class BoundingBox:
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def to_dict(self) -> dict:
        return {
            "minLat": self.min_lat,
            "maxLat": self.max_lat,
            "minLon": self.min_lon,
            "maxLon": self.max_lon,
        }


def bounding_box(ring: Ring) -> BoundingBox:
    """Return the lat/lon extent of ``ring``."""
    if ring is None or len(ring) < 2:
        raise InvalidGeometry("ring must contain at least two points")
    lats = [float(p[0]) for p in ring]
    lons = [float(p[1]) for p in ring]
    return BoundingBox(min(lats), max(lats), min(lons), max(lons))


def point_in_ring(lat: float, lon: float, ring: Ring) -> bool:
    """Even-odd ray casting test of ``(lat, lon)`` against ``ring``.

    Points exactly on a vertex or an edge may land on either side.
    """
    inside = False
    n = len(ring)
    if n < 3:
        return False
    j = n - 1
    for i in range(n):
        yi, xi = ring[i][0], ring[i][1]
        yj, xj = ring[j][0], ring[j][1]
        if (yi > lat) != (yj > lat):
            x_cross = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lon < x_cross:
                inside = not inside
        j = i
    return inside


def point_in_polygon_with_holes(lat: float, lon: float, polygon: Polygon) -> bool:
    if not point_in_ring(lat, lon, polygon.outer):
        return False
    return not any(point_in_ring(lat, lon, hole) for hole in polygon.holes)


def points_in_ring_mask(lats: np.ndarray, lons: np.ndarray, ring: Ring) -> np.ndarray:
    """Vectorized :func:`point_in_ring` over arrays of points."""
    inside = np.zeros(lats.shape, dtype=bool)
    pts = np.asarray(ring, dtype=float)
    if len(pts) < 3:
        return inside
    ys = pts[:, 0]
    xs = pts[:, 1]
    ys_prev = np.roll(ys, 1)
    xs_prev = np.roll(xs, 1)
    with np.errstate(divide="ignore", invalid="ignore"):
        for yi, xi, yj, xj in zip(ys, xs, ys_prev, xs_prev):
            crosses = (yi > lats) != (yj > lats)
            if not crosses.any():
                continue
            x_cross = (xj - xi) * (lats - yi) / (yj - yi) + xi
            inside ^= crosses & (lons < x_cross)
    return inside


def points_in_polygon_mask(
    lats: np.ndarray, lons: np.ndarray, polygon: Polygon
) -> np.ndarray:
    mask = points_in_ring_mask(lats, lons, polygon.outer)
    if not mask.any():
        return mask
    for hole in polygon.holes:
        mask &= ~points_in_ring_mask(lats, lons, hole)
    return mask


def haversine_km(a: LatLon, b: LatLon) -> float:
    """Great-circle distance in kilometers between two ``(lat, lon)`` points."""
    lat1, lon1 = a
    lat2, lon2 = b
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def polygon_area_m2(ring: Ring) -> float:
    """Approximate area of ``ring`` in square meters.

    Projects onto a local equirectangular plane scaled at the ring's mean
    latitude and applies the shoelace formula.
    """
    if ring is None or len(ring) < 3:
        return 0.0
    mean_lat = sum(p[0] for p in ring) / len(ring)
    m_per_deg_lat = 111_320.0
    m_per_deg_lon = 111_320.0 * math.cos(math.radians(mean_lat))
    xs = [p[1] * m_per_deg_lon for p in ring]
    ys = [p[0] * m_per_deg_lat for p in ring]
    total = 0.0
    n = len(ring)
    for i in range(n):
        j = (i + 1) % n
        total += xs[i] * ys[j] - xs[j] * ys[i]
    return abs(total) / 2.0
