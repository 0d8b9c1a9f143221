from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import FrozenSet, Iterator, List, Sequence, Tuple

import numpy as np
from tqdm.auto import tqdm

from .bounds_utils import CellBounds
from .errors import InvalidGeometry
from .geometry import (
    BoundingBox,
    Polygon,
    Ring,
    bounding_box,
    points_in_polygon_mask,
)

logger = logging.getLogger(__name__)

CellKey = Tuple[int, int]
VisitedSet = FrozenSet[CellKey]

CELL_CENTER_OFFSET = 0.5


@dataclass(frozen=True)
class BaseSquare:
    """Inclusive cell-index bounds of the reference region."""

    min_i: int
    max_i: int
    min_j: int
    max_j: int

    def expanded(self, radius: int) -> "BaseSquare":
        return BaseSquare(
            self.min_i - radius,
            self.max_i + radius,
            self.min_j - radius,
            self.max_j + radius,
        )

    def contains(self, i: int, j: int) -> bool:
        return self.min_i <= i <= self.max_i and self.min_j <= j <= self.max_j

    def cells(self) -> Iterator[CellKey]:
        """Yield every ``(i, j)`` in row-major order."""
        for i in range(self.min_i, self.max_i + 1):
            for j in range(self.min_j, self.max_j + 1):
                yield (i, j)

    def to_dict(self) -> dict:
        return {
            "minI": self.min_i,
            "maxI": self.max_i,
            "minJ": self.min_j,
            "maxJ": self.max_j,
        }


@dataclass(frozen=True)
class GridParameters:
    lat_step: float
    lon_step: float
    origin_lat: float
    origin_lon: float
    base_square: BaseSquare
    bounds: BoundingBox

    def cell_center(self, i: int, j: int) -> Tuple[float, float]:
        return (
            self.origin_lat + (i + CELL_CENTER_OFFSET) * self.lat_step,
            self.origin_lon + (j + CELL_CENTER_OFFSET) * self.lon_step,
        )

    def cell_bounds(self, i: int, j: int) -> CellBounds:
        south = self.origin_lat + i * self.lat_step
        west = self.origin_lon + j * self.lon_step
        return CellBounds(south, west, south + self.lat_step, west + self.lon_step)

    def cell_for_point(self, lat: float, lon: float) -> CellKey:
        """Inverse of :meth:`cell_bounds`: the cell containing ``(lat, lon)``."""
        i = math.floor((lat - self.origin_lat) / self.lat_step)
        j = math.floor((lon - self.origin_lon) / self.lon_step)
        return (int(i), int(j))

    def base_square_bounds(self) -> CellBounds:
        """Grid-aligned rectangle covering the reference region."""
        b = self.base_square
        south = self.origin_lat + b.min_i * self.lat_step
        west = self.origin_lon + b.min_j * self.lon_step
        return CellBounds(
            south,
            west,
            self.origin_lat + (b.max_i + 1) * self.lat_step,
            self.origin_lon + (b.max_j + 1) * self.lon_step,
        )

    def to_dict(self) -> dict:
        return {
            "latStep": self.lat_step,
            "lonStep": self.lon_step,
            "originLat": self.origin_lat,
            "originLon": self.origin_lon,
            "baseSquare": self.base_square.to_dict(),
            "bounds": self.bounds.to_dict(),
        }


def derive_grid_parameters(reference_ring: Ring, size: int) -> GridParameters:
    """Build the lattice anchored at the reference ring's south-west corner."""
    if size is None or size <= 0:
        raise InvalidGeometry(f"grid size must be positive, got {size}")
    bbox = bounding_box(reference_ring)
    if bbox.max_lat <= bbox.min_lat or bbox.max_lon <= bbox.min_lon:
        raise InvalidGeometry("reference region has zero extent")
    return GridParameters(
        lat_step=(bbox.max_lat - bbox.min_lat) / size,
        lon_step=(bbox.max_lon - bbox.min_lon) / size,
        origin_lat=bbox.min_lat,
        origin_lon=bbox.min_lon,
        base_square=BaseSquare(0, size - 1, 0, size - 1),
        bounds=bbox,
    )


def scan_visited(
    polygons: Sequence[Polygon],
    grid: GridParameters,
    buffer_radius: int,
    *,
    base_square: BaseSquare | None = None,
    progress: bool = False,
) -> VisitedSet:
    """Return the cells whose center lies inside any of ``polygons``.

    Scans ``base_square`` (default: the grid's own) grown by
    ``buffer_radius`` cells on every side.  Each polygon is tested only
    against the cell centers inside its bounding box.
    """
    scan = (base_square or grid.base_square).expanded(buffer_radius)
    rows = np.arange(scan.min_i, scan.max_i + 1)
    cols = np.arange(scan.min_j, scan.max_j + 1)
    ii, jj = np.meshgrid(rows, cols, indexing="ij")
    lats = grid.origin_lat + (ii + CELL_CENTER_OFFSET) * grid.lat_step
    lons = grid.origin_lon + (jj + CELL_CENTER_OFFSET) * grid.lon_step

    visited = np.zeros(lats.shape, dtype=bool)
    for poly in tqdm(polygons, desc="Scanning grid", unit="polygon", disable=not progress):
        try:
            bbox = bounding_box(poly.outer)
        except InvalidGeometry:
            logger.debug("Skipping degenerate polygon with %d vertices", len(poly.outer))
            continue
        window = (
            ~visited
            & (lats >= bbox.min_lat)
            & (lats <= bbox.max_lat)
            & (lons >= bbox.min_lon)
            & (lons <= bbox.max_lon)
        )
        if not window.any():
            continue
        hits = points_in_polygon_mask(lats[window], lons[window], poly)
        visited[window] = hits

    keys: List[CellKey] = [
        (int(i), int(j)) for i, j in zip(ii[visited], jj[visited])
    ]
    logger.info(
        "Scanned %d cells against %d polygons, %d visited",
        lats.size,
        len(polygons),
        len(keys),
    )
    return frozenset(keys)
