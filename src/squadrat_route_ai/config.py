from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import List, Optional

DEFAULT_OVERPASS_INSTANCES = [
    "https://overpass-api.de/api/interpreter",
    "https://overpass.kumi.systems/api/interpreter",
    "https://overpass.openstreetmap.ru/api/interpreter",
]


@dataclass
class NavigatorConfig:
    # Grid
    grid_size: int = 16
    scan_radius_buffer: int = 20  # extra cells scanned beyond the reference region
    search_radius: int = 5
    # Optimizer
    target_count: int = 10
    mode: str = "balanced"
    max_hole_size: int = 5
    directions: Optional[List[str]] = None
    exclude_other_directions: bool = False
    # Routing
    profile: str = "trekking"
    roundtrip: bool = True
    start_lat: Optional[float] = None
    start_lon: Optional[float] = None
    brouter_url: str = "https://brouter.de/brouter"
    overpass_instances: List[str] = field(
        default_factory=lambda: list(DEFAULT_OVERPASS_INSTANCES)
    )
    road_fetch_retries: int = 2
    routing_retries: int = 1
    retry_delay_s: float = 2.0
    request_timeout_s: float = 60.0
    road_buffer_deg: float = 0.01
    fetch_workers: int = 4
    use_cache: bool = True
    max_route_waypoints: int = 50
    refinement_rounds: int = 5
    max_alternatives: int = 3
    simplification_thresholds_km: List[float] = field(
        default_factory=lambda: [0.5, 1.0, 1.5]
    )
    minimal_max_intermediate: int = 8
    two_opt_max_iterations: int = 100


def load_config(path: str) -> NavigatorConfig:
    """Load a :class:`NavigatorConfig` from a JSON or YAML file."""
    if not os.path.exists(path):
        raise FileNotFoundError(path)
    with open(path) as f:
        if path.lower().endswith(".json"):
            data = json.load(f)
        else:
            import yaml

            data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise ValueError("Configuration file must contain a mapping")
    if "size" in data and "grid_size" not in data:
        data["grid_size"] = data.pop("size")
    if isinstance(data.get("directions"), str):
        data["directions"] = [d for d in data["directions"].upper() if d in "NSEW"]
    return NavigatorConfig(**data)
