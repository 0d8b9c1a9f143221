"""Squadrat exploration planner: pick the next cells and route a ride through them."""

from .bounds_utils import CellBounds
from .errors import (
    CoverageError,
    ErrorKind,
    ExternalServiceTransportError,
    InvalidGeometry,
    NoReferenceRegionFound,
    NoRoadsInCell,
    RoutingExhausted,
    SquadratRouteError,
)
from .geometry import Polygon, bounding_box, point_in_polygon_with_holes, point_in_ring
from .grid import BaseSquare, GridParameters, derive_grid_parameters, scan_visited
from .optimizer import OptimizationResult, optimize_squares
from .tsp_solver import nearest_neighbor, solve_tsp, two_opt
from .waypoint_placer import RoadFeature, Waypoint, place_waypoint
from .router import Route, RouteOrchestrator, format_time
from . import cache_utils

__all__ = [
    "CellBounds",
    "CoverageError",
    "ErrorKind",
    "ExternalServiceTransportError",
    "InvalidGeometry",
    "NoReferenceRegionFound",
    "NoRoadsInCell",
    "RoutingExhausted",
    "SquadratRouteError",
    "Polygon",
    "bounding_box",
    "point_in_polygon_with_holes",
    "point_in_ring",
    "BaseSquare",
    "GridParameters",
    "derive_grid_parameters",
    "scan_visited",
    "OptimizationResult",
    "optimize_squares",
    "nearest_neighbor",
    "solve_tsp",
    "two_opt",
    "RoadFeature",
    "Waypoint",
    "place_waypoint",
    "Route",
    "RouteOrchestrator",
    "format_time",
    "cache_utils",
]
