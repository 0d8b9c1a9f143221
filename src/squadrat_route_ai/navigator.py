"""Command line entry point: suggest the next cells to explore and route them.

Reads a GeoJSON FeatureCollection of explored areas, anchors the grid on the
reference region, scans the visited cells and prints the optimizer output as
JSON.  With ``--route`` it also fetches roads and plans a bicycle route from
the start point through the suggested cells.
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from tqdm.auto import tqdm

from .config import NavigatorConfig, load_config
from .errors import SquadratRouteError
from .grid import GridParameters, VisitedSet, derive_grid_parameters, scan_visited
from .optimizer import MODE_MULTIPLIERS, OptimizationResult, optimize_squares
from .region_loader import find_reference_region, parse_features
from .road_fetcher import fetch_roads_for_cells
from .router import RouteOrchestrator

logger = logging.getLogger(__name__)


class TqdmWriteHandler(logging.Handler):
    def emit(self, record):
        try:
            msg = self.format(record)
            tqdm.write(msg, file=sys.stderr)
            self.flush()
        except OSError:
            self.handleError(record)


def setup_logging(verbose: bool = False) -> None:
    handler = TqdmWriteHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s: %(name)s: %(message)s"))
    root_logger = logging.getLogger()
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.INFO if verbose else logging.WARNING)


@dataclass
class Suggestion:
    grid: GridParameters
    visited: VisitedSet
    result: OptimizationResult

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grid": self.grid.to_dict(),
            "visitedCount": len(self.visited),
            "rectangles": self.result.rectangles(),
            "metadata": self.result.metadata(),
        }


def suggest_cells(
    feature_collection: Dict[str, Any],
    config: NavigatorConfig,
    size: Optional[int] = None,
    progress: bool = False,
) -> Suggestion:
    """Run region discovery, visited scan and the optimizer on one input."""
    parsed = parse_features(feature_collection, default_size=config.grid_size)
    ring, region_size = find_reference_region(
        parsed.candidates, parsed.features, default_size=config.grid_size
    )
    grid = derive_grid_parameters(ring, size or region_size)
    visited = scan_visited(
        parsed.all_polygons, grid, config.scan_radius_buffer, progress=progress
    )
    result = optimize_squares(
        grid.base_square,
        visited,
        grid,
        config.target_count,
        config.directions,
        config.mode,
        config.max_hole_size,
        search_radius=config.search_radius,
        exclude_other_directions=config.exclude_other_directions,
    )
    return Suggestion(grid, visited, result)


def _find_config_path(argv: List[str]) -> Optional[str]:
    for i, arg in enumerate(argv):
        if arg == "--config" and i + 1 < len(argv):
            return argv[i + 1]
        if arg.startswith("--config="):
            return arg.split("=", 1)[1]
    default_yaml = os.path.join("config", "navigator_config.yaml")
    default_json = os.path.join("config", "navigator_config.json")
    if os.path.exists(default_yaml):
        return default_yaml
    if os.path.exists(default_json):
        return default_json
    return None


def _parse_directions(value: Optional[Any]) -> Optional[List[str]]:
    if value is None:
        return None
    if isinstance(value, str):
        dirs = [d for d in value.upper() if d in "NSEW"]
    else:
        dirs = [str(d).upper() for d in value]
    return dirs or None


def build_parser(config_defaults: Dict[str, Any], config_path: Optional[str]) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Suggest unexplored squadrats and route a ride through them"
    )
    parser.set_defaults(**config_defaults)
    parser.add_argument("input", help="GeoJSON FeatureCollection of explored areas")
    parser.add_argument("--config", default=config_path, help="Path to config YAML or JSON file")
    parser.add_argument(
        "--size",
        type=int,
        default=None,
        help="Grid size of the reference region (overrides the region's own size)",
    )
    parser.add_argument("--target-count", dest="target_count", type=int, help="Number of cells to suggest")
    parser.add_argument("--mode", choices=sorted(MODE_MULTIPLIERS), help="Scoring emphasis")
    parser.add_argument("--max-hole-size", dest="max_hole_size", type=int, help="Largest hole that earns a bonus")
    parser.add_argument("--directions", help="Restrict suggestions to these sides, e.g. NE")
    parser.add_argument(
        "--exclude-other-directions",
        dest="exclude_other_directions",
        action="store_true",
        help="Drop cells outside --directions instead of penalizing them",
    )
    parser.add_argument("--scan-buffer", dest="scan_radius_buffer", type=int, help="Extra cells scanned around the region")
    parser.add_argument("--route", action="store_true", help="Also plan a route through the suggestions")
    parser.add_argument("--start-lat", dest="start_lat", type=float, help="Route start latitude")
    parser.add_argument("--start-lon", dest="start_lon", type=float, help="Route start longitude")
    parser.add_argument("--profile", help="Routing profile (trekking, gravel, fastbike)")
    parser.add_argument("--one-way", dest="roundtrip", action="store_false", help="Do not return to the start")
    parser.add_argument("--no-cache", dest="use_cache", action="store_false", help="Skip the road cache")
    parser.add_argument("--output", help="Write JSON here instead of stdout")
    parser.add_argument("--progress", action="store_true", help="Show a progress bar while scanning")
    parser.add_argument("--verbose", action="store_true", help="Log progress information")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    config_path = _find_config_path(argv)
    config_defaults: Dict[str, Any] = asdict(NavigatorConfig())
    if config_path and os.path.exists(config_path):
        try:
            config_defaults = asdict(load_config(config_path))
        except (OSError, ValueError, TypeError, json.JSONDecodeError) as e:
            logger.error("Failed to load config %s: %s", config_path, e)

    args = build_parser(config_defaults, config_path).parse_args(argv)
    setup_logging(args.verbose)

    fields = NavigatorConfig.__dataclass_fields__
    config = NavigatorConfig(**{k: v for k, v in vars(args).items() if k in fields})
    config.directions = _parse_directions(config.directions)

    try:
        with open(args.input) as f:
            feature_collection = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to read %s: %s", args.input, e)
        return 1

    try:
        suggestion = suggest_cells(feature_collection, config, args.size, args.progress)
        output = suggestion.to_dict()

        if args.route:
            if config.start_lat is None or config.start_lon is None:
                logger.error("--route needs --start-lat and --start-lon")
                return 1
            selected = suggestion.result.selected
            roads = fetch_roads_for_cells(
                selected,
                config.profile,
                max_retries=config.road_fetch_retries,
                instances=config.overpass_instances,
                buffer_deg=config.road_buffer_deg,
                retry_delay_s=config.retry_delay_s,
                timeout_s=config.request_timeout_s,
                max_workers=config.fetch_workers,
                use_cache=config.use_cache,
            )
            route = RouteOrchestrator(config).calculate_route(
                selected, roads, (config.start_lat, config.start_lon)
            )
            output["route"] = route.to_dict()
    except SquadratRouteError as e:
        logger.error("%s", e)
        return 1

    text = json.dumps(output, indent=2)
    if args.output:
        with open(args.output, "w") as f:
            f.write(text)
        logger.info("Wrote %s", args.output)
    else:
        print(text)
    return 0


if __name__ == "__main__":
    sys.exit(main())
