"""Route planning through selected cells.

:class:`RouteOrchestrator` places a neutral waypoint per cell, fixes the
visiting order with the TSP solver, re-places every waypoint knowing its
neighbours, polishes the sequence with alternative swaps and 2-opt, and
finally submits it to the routing service through the fallback tiers of
:mod:`routing_strategies`.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from . import brouter_api
from .bounds_utils import CellBounds
from .config import NavigatorConfig
from .geometry import LatLon, haversine_km
from .routing_strategies import RouteCall, submit_with_fallbacks
from .tsp_solver import IMPROVEMENT_EPS, route_distance_km, solve_tsp, two_opt_permutation
from .waypoint_placer import RoadFeature, Waypoint, place_waypoint

logger = logging.getLogger(__name__)

SPREAD_WARNING_KM = 15.0
SPREAD_MIN_CELLS = 3


def format_time(minutes: int) -> str:
    """``"H:MM"`` for a duration in minutes."""
    hours, mins = divmod(int(minutes), 60)
    return f"{hours}:{mins:02d}"


@dataclass
class CellRef:
    index: int
    bounds: CellBounds
    grid_coords: Optional[Tuple[int, int]] = None

    @property
    def identity(self) -> Tuple[int, int]:
        return self.grid_coords if self.grid_coords is not None else (self.index, -1)


def normalize_cells(cells: Iterable[Any]) -> List[CellRef]:
    """Accept optimizer picks, ``{"gridCoords", "bounds"}`` mappings or bare bounds."""
    refs: List[CellRef] = []
    for idx, cell in enumerate(cells):
        coords = getattr(cell, "grid_coords", None)
        if coords is None and isinstance(cell, Mapping):
            gc = cell.get("gridCoords")
            if isinstance(gc, Mapping):
                coords = (int(gc["i"]), int(gc["j"]))
            elif gc is not None:
                coords = (int(gc[0]), int(gc[1]))
        refs.append(CellRef(idx, CellBounds.from_any(cell), coords))
    return refs


@dataclass
class RefinementStats:
    rounds: int = 0
    swaps: int = 0
    two_opt_improvements: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "rounds": self.rounds,
            "swaps": self.swaps,
            "twoOptImprovements": self.two_opt_improvements,
        }


@dataclass
class RoutePlan:
    """Ordered waypoints before submission to the routing service."""

    start: LatLon
    roundtrip: bool
    waypoints: List[Waypoint]
    straight_line_km: float
    refinement: RefinementStats = field(default_factory=RefinementStats)

    def points(self) -> List[LatLon]:
        """Start, every waypoint on a road, and the start again for round trips."""
        pts = [self.start] + [w.point for w in self.waypoints if w.has_road]
        if self.roundtrip:
            pts.append(self.start)
        return pts

    @property
    def skipped_square_coords(self) -> List[Tuple[int, int]]:
        return [w.grid_coords for w in self.waypoints if not w.has_road]

    def statistics(self) -> Dict[str, int]:
        types = [w.type for w in self.waypoints]
        return {
            "total": len(types),
            "withRoads": sum(1 for w in self.waypoints if w.has_road),
            "intersections": types.count("intersection"),
            "midpoints": types.count("midpoint"),
            "nearest": types.count("nearest"),
            "noRoad": sum(1 for w in self.waypoints if not w.has_road),
        }


@dataclass
class RoutePoint:
    lat: float
    lon: float
    elevation: float = 0.0


@dataclass
class Route:
    coordinates: List[RoutePoint]
    distance_km: float
    elevation_gain_m: int
    time_min: int
    waypoints: List[Waypoint]
    submitted: List[LatLon]
    skipped_square_coords: List[Tuple[int, int]]
    profile_used: str
    simplified: bool
    minimal: bool
    tier: str
    straight_line_km: float
    refinement: RefinementStats
    statistics: Dict[str, int]

    @property
    def time_formatted(self) -> str:
        return format_time(self.time_min)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "coordinates": [
                {"lat": p.lat, "lon": p.lon, "elevation": p.elevation} for p in self.coordinates
            ],
            "distanceKm": self.distance_km,
            "elevationGainM": self.elevation_gain_m,
            "timeMin": self.time_min,
            "waypoints": [w.to_dict() for w in self.waypoints],
            "profileUsed": self.profile_used,
            "simplified": self.simplified,
            "minimal": self.minimal,
            "straightLineKm": self.straight_line_km,
            "statistics": dict(self.statistics),
            "refinement": self.refinement.to_dict(),
        }
        if self.skipped_square_coords:
            data["skippedSquareCoords"] = [
                {"i": c[0], "j": c[1]} for c in self.skipped_square_coords
            ]
        return data


def max_spread_km(points: Sequence[LatLon]) -> float:
    best = 0.0
    for a in range(len(points)):
        for b in range(a + 1, len(points)):
            best = max(best, haversine_km(points[a], points[b]))
    return best


def _swap_in(current: Waypoint, alt_idx: int) -> Waypoint:
    """``current`` with its ``alt_idx``-th alternative promoted."""
    alt = current.alternatives[alt_idx]
    pool = [replace(current, alternatives=[])] + [
        a for k, a in enumerate(current.alternatives) if k != alt_idx
    ]
    return replace(alt, alternatives=pool, grid_coords=current.grid_coords)


class RouteOrchestrator:
    def __init__(
        self,
        config: Optional[NavigatorConfig] = None,
        route_call: Optional[RouteCall] = None,
    ) -> None:
        self.config = config or NavigatorConfig()
        if route_call is None:
            route_call = functools.partial(
                _call_brouter,
                api_url=self.config.brouter_url,
                retries=self.config.routing_retries,
                retry_delay_s=self.config.retry_delay_s,
                timeout_s=self.config.request_timeout_s,
            )
        self.route_call = route_call

    # -- sequencing -----------------------------------------------------

    def _length(self, start: LatLon, seq: Sequence[Waypoint], roundtrip: bool) -> float:
        pts = [start] + [w.point for w in seq]
        if roundtrip:
            pts.append(start)
        return route_distance_km(pts)

    def build_neutral_waypoints(
        self, cells: Sequence[CellRef], roads: Sequence[RoadFeature]
    ) -> List[Waypoint]:
        return [
            place_waypoint(
                roads,
                c.bounds,
                c.identity,
                max_alternatives=self.config.max_alternatives,
            )
            for c in cells
        ]

    def refine_for_order(
        self,
        cells: Sequence[CellRef],
        neutral: Sequence[Waypoint],
        order: Sequence[int],
        roads: Sequence[RoadFeature],
        start: LatLon,
        roundtrip: bool,
    ) -> List[Waypoint]:
        """Re-place each waypoint against its actual predecessor and next stop."""
        refined: List[Waypoint] = []
        for pos, k in enumerate(order):
            prev_point = refined[-1].point if refined else start
            next_bounds = None
            if pos + 1 < len(order):
                nxt = order[pos + 1]
                next_point: Optional[LatLon] = neutral[nxt].point
                next_bounds = cells[nxt].bounds
            else:
                next_point = start if roundtrip else None
            refined.append(
                place_waypoint(
                    roads,
                    cells[k].bounds,
                    cells[k].identity,
                    prev_point=prev_point,
                    next_point=next_point,
                    next_bounds=next_bounds,
                    max_alternatives=self.config.max_alternatives,
                )
            )
        return refined

    def refinement_loop(
        self, seq: List[Waypoint], start: LatLon, roundtrip: bool
    ) -> Tuple[List[Waypoint], RefinementStats]:
        stats = RefinementStats()
        seq = list(seq)
        for _ in range(self.config.refinement_rounds):
            stats.rounds += 1
            swaps = 0
            length = self._length(start, seq, roundtrip)
            for idx in range(len(seq)):
                for alt_idx in range(len(seq[idx].alternatives)):
                    trial = list(seq)
                    trial[idx] = _swap_in(seq[idx], alt_idx)
                    trial_len = self._length(start, trial, roundtrip)
                    if trial_len < length - IMPROVEMENT_EPS:
                        seq, length = trial, trial_len
                        swaps += 1
                        break
            stats.swaps += swaps

            pts = [start] + [w.point for w in seq] + ([start] if roundtrip else [])
            perm, _ = two_opt_permutation(
                pts, self.config.two_opt_max_iterations, open_end=not roundtrip
            )
            reordered = [seq[k - 1] for k in perm if 1 <= k <= len(seq)]
            improved = self._length(start, reordered, roundtrip) < length - IMPROVEMENT_EPS
            if improved:
                seq = reordered
                stats.two_opt_improvements += 1

            if swaps == 0 and not improved:
                break
        logger.info(
            "Refinement: %d rounds, %d swaps, %d 2-opt improvements",
            stats.rounds,
            stats.swaps,
            stats.two_opt_improvements,
        )
        return seq, stats

    def plan(
        self,
        cells: Iterable[Any],
        roads: Sequence[RoadFeature],
        start: LatLon,
        roundtrip: Optional[bool] = None,
    ) -> RoutePlan:
        """Order and place waypoints for ``cells`` without calling the router."""
        roundtrip = self.config.roundtrip if roundtrip is None else roundtrip
        start = (float(start[0]), float(start[1]))
        refs = normalize_cells(cells)
        if not refs:
            raise ValueError("no cells to route through")

        if len(refs) > SPREAD_MIN_CELLS:
            spread = max_spread_km([c.bounds.center for c in refs])
            logger.info("Maximum distance between cells: %.2f km", spread)
            if spread > SPREAD_WARNING_KM:
                logger.warning(
                    "Cells are spread out (max %.1f km apart); consider restricting directions",
                    spread,
                )

        neutral = self.build_neutral_waypoints(refs, roads)
        tsp = solve_tsp(
            [w.point for w in neutral],
            start,
            roundtrip,
            self.config.two_opt_max_iterations,
        )
        logger.info("Visiting order fixed, %.2f km straight-line", tsp.distance_km)

        refined = self.refine_for_order(refs, neutral, tsp.order, roads, start, roundtrip)
        seq, stats = self.refinement_loop(refined, start, roundtrip)
        return RoutePlan(start, roundtrip, seq, tsp.distance_km, stats)

    # -- submission -----------------------------------------------------

    def calculate_route(
        self,
        cells: Iterable[Any],
        roads: Sequence[RoadFeature],
        start: LatLon,
        roundtrip: Optional[bool] = None,
        profile: Optional[str] = None,
    ) -> Route:
        """Plan the route and fetch its geometry through the fallback tiers.

        Raises :class:`RoutingExhausted` when every tier fails.
        """
        profile = profile or self.config.profile
        plan = self.plan(cells, roads, start, roundtrip)
        points = plan.points()
        skipped = plan.skipped_square_coords
        if skipped:
            logger.warning("%d cells have no usable road and are skipped", len(skipped))
        if len(points) > self.config.max_route_waypoints:
            logger.warning(
                "Route has %d waypoints, more than %d may fail",
                len(points),
                self.config.max_route_waypoints,
            )

        result = submit_with_fallbacks(
            points,
            profile,
            self.route_call,
            thresholds_km=self.config.simplification_thresholds_km,
            max_intermediate=self.config.minimal_max_intermediate,
        )
        parsed = brouter_api.parse_brouter_response(result.outcome.geojson)
        logger.info(
            "Route via %s (%s): %.1f km, %d m up, %s",
            result.profile,
            result.tier,
            parsed.distance_km,
            parsed.elevation_gain_m,
            format_time(parsed.time_min),
        )
        return Route(
            coordinates=[RoutePoint(c["lat"], c["lon"], c["elevation"]) for c in parsed.coordinates],
            distance_km=parsed.distance_km,
            elevation_gain_m=parsed.elevation_gain_m,
            time_min=parsed.time_min,
            waypoints=[w for w in plan.waypoints if w.has_road],
            submitted=result.waypoints,
            skipped_square_coords=skipped,
            profile_used=result.profile,
            simplified=result.simplified,
            minimal=result.minimal,
            tier=result.tier,
            straight_line_km=plan.straight_line_km,
            refinement=plan.refinement,
            statistics=plan.statistics(),
        )


def _call_brouter(waypoints, profile, **kwargs):
    return brouter_api.call_brouter(waypoints, profile, **kwargs)
