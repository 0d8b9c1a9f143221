"""Nearest-neighbor tour construction and 2-opt improvement over lat/lon points."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np

from .geometry import EARTH_RADIUS_KM, LatLon, haversine_km

logger = logging.getLogger(__name__)

MAX_TWO_OPT_ITERATIONS = 100
IMPROVEMENT_EPS = 1e-9


@dataclass
class TSPResult:
    route: List[LatLon]
    order: List[int]
    nearest_neighbor_km: float
    distance_km: float
    two_opt_passes: int


def route_distance_km(route: Sequence[LatLon]) -> float:
    """Sum of successive great-circle legs along ``route``."""
    return sum(haversine_km(route[k], route[k + 1]) for k in range(len(route) - 1))


def _distances_from(coords: np.ndarray, origin: np.ndarray) -> np.ndarray:
    dlat = coords[:, 0] - origin[0]
    dlon = coords[:, 1] - origin[1]
    h = np.sin(dlat / 2) ** 2 + np.cos(origin[0]) * np.cos(coords[:, 0]) * np.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * np.arcsin(np.sqrt(np.clip(h, 0.0, 1.0)))


def nearest_neighbor_order(points: Sequence[LatLon], start: LatLon) -> List[int]:
    """Visiting order of ``points`` (as indices) for the greedy tour from ``start``."""
    if not len(points):
        return []
    coords = np.radians(np.asarray(points, dtype=float))
    remaining = np.ones(len(points), dtype=bool)
    order: List[int] = []
    cur = np.radians(np.asarray(start, dtype=float))
    for _ in range(len(points)):
        dist = np.where(remaining, _distances_from(coords, cur), np.inf)
        idx = int(np.argmin(dist))
        order.append(idx)
        remaining[idx] = False
        cur = coords[idx]
    return order


def nearest_neighbor(
    points: Sequence[LatLon], start: LatLon, roundtrip: bool = True
) -> List[LatLon]:
    """Greedy tour from ``start`` through every point in ``points``.

    The returned route begins with ``start`` and, for round trips, ends with
    it as well.  ``points`` is not modified.
    """
    order = nearest_neighbor_order(points, start)
    route = [tuple(start)] + [tuple(points[k]) for k in order]
    if roundtrip:
        route.append(tuple(start))
    return route


def two_opt_permutation(
    route: Sequence[LatLon],
    max_iterations: int = MAX_TWO_OPT_ITERATIONS,
    *,
    open_end: bool = False,
) -> Tuple[List[int], int]:
    """2-opt over ``route``; returns ``(permutation, passes)``.

    ``permutation[k]`` is the index into ``route`` of the k-th stop.  The
    first stop never moves; the last one moves only with ``open_end``.
    """
    pts = [tuple(p) for p in route]
    perm = list(range(len(pts)))
    n = len(perm)
    if n < 3 or (n < 4 and not open_end):
        return perm, 0

    def d(a: int, b: int) -> float:
        return haversine_km(pts[perm[a]], pts[perm[b]])

    passes = 0
    improved = True
    while improved and passes < max_iterations:
        improved = False
        passes += 1
        for i in range(0, n - 2):
            for j in range(i + 2, n - 1):
                delta = (d(i, j) + d(i + 1, j + 1)) - (d(i, i + 1) + d(j, j + 1))
                if delta < -IMPROVEMENT_EPS:
                    perm[i + 1 : j + 1] = reversed(perm[i + 1 : j + 1])
                    improved = True
            if open_end:
                # reversing the tail replaces edge (i, i+1) with (i, n-1)
                if d(i, n - 1) - d(i, i + 1) < -IMPROVEMENT_EPS:
                    perm[i + 1 :] = reversed(perm[i + 1 :])
                    improved = True
    return perm, passes


def two_opt(
    route: Sequence[LatLon],
    max_iterations: int = MAX_TWO_OPT_ITERATIONS,
    *,
    open_end: bool = False,
) -> List[LatLon]:
    """Improve ``route`` with 2-opt edge exchanges.

    Endpoints stay in place unless ``open_end`` frees the last one, which
    suits one-way routes.
    """
    perm, _ = two_opt_permutation(route, max_iterations, open_end=open_end)
    return [tuple(route[k]) for k in perm]


def solve_tsp(
    points: Sequence[LatLon],
    start: LatLon,
    roundtrip: bool = True,
    max_iterations: int = MAX_TWO_OPT_ITERATIONS,
) -> TSPResult:
    """Order ``points`` into a short tour from ``start``.

    ``order`` gives the visiting sequence as indices into ``points``.
    """
    nn_order = nearest_neighbor_order(points, start)
    nn_route = [tuple(start)] + [tuple(points[k]) for k in nn_order]
    if roundtrip:
        nn_route.append(tuple(start))
    nn_km = route_distance_km(nn_route)

    perm, passes = two_opt_permutation(nn_route, max_iterations, open_end=not roundtrip)
    route = [nn_route[k] for k in perm]
    # route position p (1..len(points)) holds nn_order[p - 1]
    order = [nn_order[k - 1] for k in perm if 1 <= k <= len(points)]
    km = route_distance_km(route)
    logger.info(
        "TSP: %d points, nearest neighbor %.2f km, 2-opt %.2f km (%d passes)",
        len(points),
        nn_km,
        km,
        passes,
    )
    return TSPResult(route, order, nn_km, km, passes)
