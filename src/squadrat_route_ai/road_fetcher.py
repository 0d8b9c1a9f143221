"""Road geometry from Overpass-compatible services.

Queries are filtered per bike profile, retried per instance and then failed
over to the next instance.  Successful responses are cached in RocksDB keyed
by the query text.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import asdict
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from . import cache_utils
from .bounds_utils import CellBounds
from .config import DEFAULT_OVERPASS_INSTANCES
from .errors import ExternalServiceTransportError
from .waypoint_placer import RoadFeature

logger = logging.getLogger(__name__)

RETRY_STATUS = {429, 504}
DEFAULT_BUFFER_DEG = 0.01
CACHE_NAME = "overpass_roads"
CACHE_KEY = "v1"

ROAD_FILTERS: Dict[str, Dict[str, str]] = {
    "fastbike": {
        "highways": "primary|primary_link|secondary|secondary_link|tertiary|tertiary_link|residential|living_street|unclassified",
        "exclude_surfaces": "gravel|unpaved|dirt|grass|sand|mud|ground|earth|compacted|fine_gravel|pebblestone|wood|metal|cobblestone",
        "allowed_surfaces": "paved|asphalt|concrete",
        "exclude_highways": "track|path|footway|bridleway|steps",
        "description": "Paved roads only - suitable for road bikes",
    },
    "gravel": {
        "highways": "primary|primary_link|secondary|secondary_link|tertiary|tertiary_link|unclassified|residential|living_street|cycleway|service|track|path|bridleway",
        "exclude_surfaces": "mud|sand",
        "description": "Paved and unpaved roads suitable for gravel bikes",
    },
    "trekking": {
        "highways": "primary|primary_link|secondary|secondary_link|tertiary|tertiary_link|unclassified|residential|living_street|cycleway|service|track|path",
        "exclude_surfaces": "mud|sand|grass",
        "description": "General cycling roads and paths",
    },
}

_ACCESS_FILTER = '["bicycle"!="no"]["access"!="private"]["motor_vehicle"!="designated"]'
_MAJOR_HIGHWAYS = "primary|primary_link|secondary|secondary_link|tertiary|tertiary_link|unclassified"


def available_profiles() -> List[str]:
    return list(ROAD_FILTERS)


def profile_description(profile: str) -> str:
    return ROAD_FILTERS.get(profile, ROAD_FILTERS["trekking"])["description"]


def build_overpass_query(bounds: Any, profile: str = "trekking") -> str:
    """Overpass QL selecting rideable ways inside ``bounds``."""
    b = CellBounds.from_any(bounds)
    bbox = f"{b.south},{b.west},{b.north},{b.east}"
    filt = ROAD_FILTERS.get(profile, ROAD_FILTERS["trekking"])

    if profile == "fastbike":
        clauses = [
            f'way["highway"~"^({filt["highways"]})$"]'
            f'["surface"~"^({filt["allowed_surfaces"]})$"]'
            f"{_ACCESS_FILTER}({bbox});",
            f'way["highway"~"^({_MAJOR_HIGHWAYS})$"]'
            f"{_ACCESS_FILTER}"
            f'["surface"!~"^({filt["exclude_surfaces"]})$"]'
            f'["highway"!~"^({filt["exclude_highways"]})$"]({bbox});',
        ]
    else:
        surface = (
            f'["surface"!~"^({filt["exclude_surfaces"]})$"]'
            if filt.get("exclude_surfaces")
            else ""
        )
        clauses = [
            f'way["highway"~"^({filt["highways"]})$"]{_ACCESS_FILTER}{surface}({bbox});'
        ]
    body = "\n".join(f"  {c}" for c in clauses)
    return f"[out:json][timeout:30];\n(\n{body}\n);\nout body geom;\n"


def _way_coords(element: Dict[str, Any]) -> Optional[List[Tuple[float, float]]]:
    try:
        return [(float(n["lon"]), float(n["lat"])) for n in element["geometry"]]
    except (KeyError, TypeError, ValueError):
        return None


def overpass_to_features(data: Dict[str, Any]) -> List[RoadFeature]:
    """Road features from an Overpass JSON answer.

    Ways with missing or unreadable geometry are skipped.  Raises
    :class:`ValueError` when ``data`` is not a JSON object.
    """
    if not isinstance(data, dict):
        raise ValueError(f"Overpass answer is not an object: {type(data).__name__}")
    elements = data.get("elements") or []
    if not isinstance(elements, list):
        raise ValueError("Overpass answer has no element list")
    roads: List[RoadFeature] = []
    skipped = 0
    for element in elements:
        if not isinstance(element, dict):
            skipped += 1
            continue
        if element.get("type") != "way" or not element.get("geometry"):
            continue
        coords = _way_coords(element)
        if coords is None:
            skipped += 1
            continue
        tags = element.get("tags")
        if not isinstance(tags, dict):
            tags = {}
        roads.append(
            RoadFeature(
                id=str(element.get("id")),
                coords=coords,
                highway=tags.get("highway", "unknown"),
                name=tags.get("name"),
                surface=tags.get("surface"),
            )
        )
    if skipped:
        logger.debug("Skipped %d malformed Overpass elements", skipped)
    return roads


def _instance_name(url: str) -> str:
    return url.split("//", 1)[-1].split("/", 1)[0]


def fetch_roads_in_area(
    bounds: Any,
    profile: str = "trekking",
    max_retries: int = 2,
    *,
    instances: Optional[Sequence[str]] = None,
    buffer_deg: float = DEFAULT_BUFFER_DEG,
    retry_delay_s: float = 2.0,
    timeout_s: float = 60.0,
    cache: Any = None,
) -> List[RoadFeature]:
    """Fetch the roads of ``bounds`` grown by ``buffer_deg``.

    Gateway timeouts, rate limiting, connection failures and empty answers
    are retried ``max_retries`` times per instance.  Raises
    :class:`ExternalServiceTransportError` when every instance fails.
    """
    area = CellBounds.from_any(bounds).expand(buffer_deg)
    query = build_overpass_query(area, profile)

    cached = cache_utils.load_rocksdb_cache(cache, query)
    if cached is not None:
        logger.debug("Road cache hit (%d roads)", len(cached))
        return [RoadFeature(**r) for r in cached]

    urls = list(instances or DEFAULT_OVERPASS_INSTANCES)
    total_attempts = 0
    last_error = "no instance configured"
    for idx, url in enumerate(urls):
        name = _instance_name(url)
        logger.info("Trying Overpass instance %d/%d: %s", idx + 1, len(urls), name)
        for attempt in range(1, max_retries + 2):
            total_attempts += 1
            retry = False
            try:
                resp = requests.post(url, data={"data": query}, timeout=timeout_s)
                if resp.status_code in RETRY_STATUS:
                    last_error = f"HTTP {resp.status_code} from {name}"
                    retry = True
                else:
                    resp.raise_for_status()
                    roads = overpass_to_features(resp.json())
                    if roads:
                        logger.info(
                            "Fetched %d roads from %s (attempt %d)", len(roads), name, attempt
                        )
                        cache_utils.save_rocksdb_cache(
                            cache, query, [asdict(r) for r in roads]
                        )
                        return roads
                    last_error = f"0 roads returned from {name}"
                    retry = True
            except (requests.ConnectionError, requests.Timeout) as e:
                last_error = f"{name}: {e}"
                retry = True
            except (requests.RequestException, ValueError) as e:
                last_error = f"{name}: {e}"

            if retry and attempt <= max_retries:
                logger.warning("%s (attempt %d), retrying in %.1fs", last_error, attempt, retry_delay_s)
                time.sleep(retry_delay_s)
                continue
            logger.warning("Giving up on %s after %d attempts: %s", name, attempt, last_error)
            break

    raise ExternalServiceTransportError(
        f"road data unavailable after {total_attempts} attempts on {len(urls)} "
        f"instances: {last_error}"
    )


def partition_cells_by_direction(
    cells: Iterable[Any], center: Optional[Sequence[float]] = None
) -> Dict[str, List[CellBounds]]:
    """Group cells by their dominant cardinal direction from ``center``.

    ``center`` defaults to the mean of the cell centers.  Empty groups are
    omitted; keys keep the order N, S, E, W.
    """
    items = [CellBounds.from_any(c) for c in cells]
    if not items:
        return {}
    if center is None:
        center = (
            sum(c.center[0] for c in items) / len(items),
            sum(c.center[1] for c in items) / len(items),
        )
    lon_scale = math.cos(math.radians(center[0]))
    groups: Dict[str, List[CellBounds]] = {"N": [], "S": [], "E": [], "W": []}
    for cell in items:
        dlat = cell.center[0] - center[0]
        dlon = (cell.center[1] - center[1]) * lon_scale
        if abs(dlat) >= abs(dlon):
            groups["N" if dlat >= 0 else "S"].append(cell)
        else:
            groups["E" if dlon > 0 else "W"].append(cell)
    return {k: v for k, v in groups.items() if v}


def fetch_roads_for_cells(
    cells: Iterable[Any],
    profile: str = "trekking",
    *,
    max_retries: int = 2,
    instances: Optional[Sequence[str]] = None,
    buffer_deg: float = DEFAULT_BUFFER_DEG,
    retry_delay_s: float = 2.0,
    timeout_s: float = 60.0,
    max_workers: int = 4,
    use_cache: bool = True,
) -> List[RoadFeature]:
    """Fetch roads for every cell, one request per direction partition.

    A failed partition contributes no roads.  Results are merged in
    partition order and deduplicated by road id.
    """
    partitions = partition_cells_by_direction(cells)
    if not partitions:
        return []

    db = cache_utils.open_rocksdb(CACHE_NAME, CACHE_KEY, read_only=False) if use_cache else None
    results: Dict[str, List[RoadFeature]] = {}
    try:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(partitions)))) as executor:
            futures = {
                executor.submit(
                    fetch_roads_in_area,
                    CellBounds.combine(group),
                    profile,
                    max_retries,
                    instances=instances,
                    buffer_deg=buffer_deg,
                    retry_delay_s=retry_delay_s,
                    timeout_s=timeout_s,
                    cache=db,
                ): key
                for key, group in partitions.items()
            }
            for future in as_completed(futures):
                key = futures[future]
                try:
                    results[key] = future.result()
                except ExternalServiceTransportError as e:
                    logger.warning("Road fetch for partition %s failed: %s", key, e)
                    results[key] = []
    finally:
        cache_utils.close_rocksdb(db)

    merged: List[RoadFeature] = []
    seen = set()
    for key in partitions:
        for road in results.get(key, []):
            if road.id in seen:
                continue
            seen.add(road.id)
            merged.append(road)
    logger.info(
        "Fetched %d unique roads across %d partitions (%s)",
        len(merged),
        len(partitions),
        ",".join(partitions),
    )
    return merged
