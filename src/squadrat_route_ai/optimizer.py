"""Strategic selection of unexplored cells around the reference region.

The optimizer is a pure function of the reference region's cell bounds, the
visited snapshot and the grid.  It runs in phases: edge analysis, hole
detection, candidate collection, additive scoring and a greedy,
distance-aware pick of ``target_count`` cells.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx

from .bounds_utils import CellBounds
from .grid import BaseSquare, CellKey, GridParameters, VisitedSet

logger = logging.getLogger(__name__)

DIRECTIONS = ("N", "S", "E", "W")
SEARCH_RADIUS = 5

BASE_SCORE = 100
LAYER_BONUS = {0: 10000, 1: 5000, 2: 2000, 3: 500, 4: -2000}
FAR_LAYER_PENALTY = -10000
HOLE_MULTIPLIER = 800
HOLE_MULTIPLIER_LAYER3 = 400
HOLE_MULTIPLIER_LAYER5 = 200
HOLE_COMPLETION_BONUS = 1500
EDGE_COMPLETION_FACTOR = 5
ADJACENCY_BONUS = 25
DIRECTION_PENALTY = -1_000_000
ROUTE_DISTANCE_PENALTY = 100
HOLE_CONTINUATION_BONUS = 1500

# (edge multiplier, hole multiplier)
MODE_MULTIPLIERS: Dict[str, Tuple[float, float]] = {
    "edge": (3.0, 0.3),
    "holes": (0.3, 2.0),
    "balanced": (1.0, 1.0),
}


@dataclass
class EdgeAnalysis:
    name: str
    cells: List[CellKey]
    visited_count: int
    unvisited_count: int

    @property
    def total(self) -> int:
        return len(self.cells)

    @property
    def completion(self) -> float:
        """Visited share of the border line in percent."""
        return (self.visited_count / self.total) * 100.0 if self.cells else 0.0

    @property
    def can_expand(self) -> bool:
        return self.unvisited_count == 0


@dataclass
class Hole:
    id: int
    cells: List[CellKey]
    avg_layer_distance: float

    @property
    def size(self) -> int:
        return len(self.cells)


@dataclass
class Candidate:
    i: int
    j: int
    edge_tags: str
    layer_distance: int
    score: int = 0
    score_breakdown: Dict[str, int] = field(default_factory=dict)
    hole: Optional[Hole] = None

    @property
    def key(self) -> CellKey:
        return (self.i, self.j)


@dataclass
class SelectedSquare:
    i: int
    j: int
    bounds: CellBounds
    score: int
    score_breakdown: Dict[str, int]
    layer_distance: int
    selection_order: int
    edge_tags: str
    hole: Optional[Hole] = None

    @property
    def grid_coords(self) -> CellKey:
        return (self.i, self.j)

    def metadata(self) -> dict:
        data = {
            "gridCoords": {"i": self.i, "j": self.j},
            "score": self.score,
            "scoreBreakdown": dict(self.score_breakdown),
            "layerDistance": self.layer_distance,
            "selectionOrder": self.selection_order,
        }
        if self.edge_tags:
            data["edge"] = self.edge_tags
        if self.hole is not None:
            data["hole"] = {"id": self.hole.id, "size": self.hole.size}
        return data


@dataclass
class OptimizationResult:
    selected: List[SelectedSquare]
    edges: Dict[str, EdgeAnalysis]
    holes: List[Hole]
    kept_holes: List[Hole]
    candidate_count: int

    def rectangles(self) -> List[List[List[float]]]:
        return [s.bounds.to_array() for s in self.selected]

    def metadata(self) -> List[dict]:
        return [s.metadata() for s in self.selected]


def manhattan_distance(a: CellKey, b: CellKey) -> int:
    return abs(a[0] - b[0]) + abs(a[1] - b[1])


def neighbor_keys(i: int, j: int) -> List[CellKey]:
    return [(i - 1, j), (i + 1, j), (i, j - 1), (i, j + 1)]


def layer_distance(i: int, j: int, base: BaseSquare) -> int:
    """Manhattan layers between ``(i, j)`` and the ring hugging ``base``.

    Cells in the first ring outside ``base`` (corners included) are layer 0.
    """
    if is_on_border(i, j, base):
        return 0
    dist_i = max(0, base.min_i - i - 1, i - base.max_i - 1)
    dist_j = max(0, base.min_j - j - 1, j - base.max_j - 1)
    return dist_i + dist_j


def is_on_border(i: int, j: int, base: BaseSquare) -> bool:
    in_i = base.min_i - 1 <= i <= base.max_i + 1
    in_j = base.min_j - 1 <= j <= base.max_j + 1
    return (
        (i in (base.max_i + 1, base.min_i - 1) and in_j)
        or (j in (base.max_j + 1, base.min_j - 1) and in_i)
    )


def direction_tags(i: int, j: int, base: BaseSquare) -> str:
    positions = {
        "N": i > base.max_i,
        "S": i < base.min_i,
        "E": j > base.max_j,
        "W": j < base.min_j,
    }
    return "".join(d for d in DIRECTIONS if positions[d])


def analyze_edges(base: BaseSquare, visited: VisitedSet) -> Dict[str, EdgeAnalysis]:
    """Visited share of the row/column immediately outside each side."""
    lines = {
        "N": [(base.max_i + 1, j) for j in range(base.min_j, base.max_j + 1)],
        "S": [(base.min_i - 1, j) for j in range(base.min_j, base.max_j + 1)],
        "E": [(i, base.max_j + 1) for i in range(base.min_i, base.max_i + 1)],
        "W": [(i, base.min_j - 1) for i in range(base.min_i, base.max_i + 1)],
    }
    edges: Dict[str, EdgeAnalysis] = {}
    for name, cells in lines.items():
        visited_count = sum(1 for c in cells if c in visited)
        edges[name] = EdgeAnalysis(name, cells, visited_count, len(cells) - visited_count)
    expandable = [e.name for e in edges.values() if e.can_expand]
    if expandable:
        logger.info("Edges %s can expand", ",".join(expandable))
    return edges


def detect_holes(
    base: BaseSquare, visited: VisitedSet, search_radius: int = SEARCH_RADIUS
) -> List[Hole]:
    """Partition unvisited cells within the search area into 4-connected holes.

    Hole ids follow the row-major position of each hole's first cell.
    """
    search = base.expanded(search_radius)
    G = nx.Graph()
    for cell in search.cells():
        if cell not in visited:
            G.add_node(cell)
    for i, j in list(G.nodes):
        for nb in ((i + 1, j), (i, j + 1)):
            if nb in G:
                G.add_edge((i, j), nb)

    holes: List[Hole] = []
    for component in nx.connected_components(G):
        cells = sorted(component)
        avg = sum(layer_distance(i, j, base) for i, j in cells) / len(cells)
        holes.append(Hole(len(holes), cells, avg))
    return holes


def collect_candidates(
    base: BaseSquare, visited: VisitedSet, search_radius: int = SEARCH_RADIUS
) -> List[Candidate]:
    """Every unvisited cell outside ``base`` but inside the search area."""
    candidates: List[Candidate] = []
    for i, j in base.expanded(search_radius).cells():
        if (i, j) in visited or base.contains(i, j):
            continue
        candidates.append(
            Candidate(i, j, direction_tags(i, j, base), layer_distance(i, j, base))
        )
    return candidates


def _layer_term(distance: int) -> int:
    if distance >= 5:
        return FAR_LAYER_PENALTY
    return LAYER_BONUS[distance]


def _hole_multiplier(distance: int) -> int:
    if distance >= 5:
        return HOLE_MULTIPLIER_LAYER5
    if distance >= 3:
        return HOLE_MULTIPLIER_LAYER3
    return HOLE_MULTIPLIER


def score_candidate(
    cand: Candidate,
    base: BaseSquare,
    visited: VisitedSet,
    edges: Dict[str, EdgeAnalysis],
    hole_by_cell: Dict[CellKey, Hole],
    mode: str,
    allowed_directions: Optional[Sequence[str]] = None,
) -> Candidate:
    edge_mult, hole_mult = MODE_MULTIPLIERS.get(mode, MODE_MULTIPLIERS["balanced"])

    layer = _layer_term(cand.layer_distance)

    completion = max(
        (edges[d].completion for d in cand.edge_tags if d in edges), default=0.0
    )
    edge_bonus = math.floor(math.floor(completion * EDGE_COMPLETION_FACTOR) * edge_mult)

    hole = hole_by_cell.get(cand.key)
    hole_bonus = 0
    hole_completion = 0
    if hole is not None:
        raw = hole.size * _hole_multiplier(cand.layer_distance)
        hole_bonus = math.floor(raw * hole_mult)
        still_open = [c for c in hole.cells if c not in visited and c != cand.key]
        if not still_open:
            hole_completion = HOLE_COMPLETION_BONUS

    adjacency = ADJACENCY_BONUS * sum(
        1 for n in neighbor_keys(cand.i, cand.j) if n in visited
    )

    direction = 0
    if allowed_directions is not None and not set(DIRECTIONS) <= set(allowed_directions):
        if not any(d in cand.edge_tags for d in allowed_directions):
            direction = DIRECTION_PENALTY

    breakdown = {
        "base": BASE_SCORE,
        "layer": layer,
        "edge": edge_bonus,
        "hole": hole_bonus,
        "holeCompletion": hole_completion,
        "adjacency": adjacency,
        "direction": direction,
    }
    return replace(
        cand,
        score=sum(breakdown.values()),
        score_breakdown=breakdown,
        hole=hole,
    )


def select_greedy(scored: Iterable[Candidate], target_count: int) -> List[Candidate]:
    """Pick the best candidate, then repeatedly the best next hop from the last pick."""
    remaining = list(scored)
    if not remaining or target_count <= 0:
        return []
    first = max(remaining, key=lambda c: c.score)
    remaining.remove(first)
    selected = [first]
    touched_holes = {first.hole.id} if first.hole is not None else set()

    while len(selected) < target_count and remaining:
        last = selected[-1].key

        def route_score(c: Candidate) -> int:
            s = c.score - ROUTE_DISTANCE_PENALTY * manhattan_distance(c.key, last)
            if c.hole is not None and c.hole.id in touched_holes:
                s += HOLE_CONTINUATION_BONUS
            return s

        best = max(remaining, key=route_score)
        remaining.remove(best)
        selected.append(best)
        if best.hole is not None:
            touched_holes.add(best.hole.id)
    return selected


def optimize_squares(
    base: BaseSquare,
    visited: VisitedSet,
    grid: GridParameters,
    target_count: int,
    allowed_directions: Optional[Sequence[str]] = None,
    mode: str = "balanced",
    max_hole_size: int = 5,
    *,
    search_radius: int = SEARCH_RADIUS,
    exclude_other_directions: bool = False,
) -> OptimizationResult:
    """Return up to ``target_count`` unvisited cells ranked for exploration.

    ``allowed_directions`` restricts selection to cells north/south/east/west
    of ``base``; non-matching cells are penalized, or dropped entirely when
    ``exclude_other_directions`` is set.
    """
    if mode not in MODE_MULTIPLIERS:
        logger.warning("Unknown optimization mode %r, using balanced", mode)
        mode = "balanced"
    if allowed_directions is not None:
        allowed_directions = [d.upper() for d in allowed_directions]
    logger.info(
        "Optimizing %dx%d region, %d visited, mode=%s",
        base.max_i - base.min_i + 1,
        base.max_j - base.min_j + 1,
        len(visited),
        mode,
    )

    edges = analyze_edges(base, visited)

    holes = detect_holes(base, visited, search_radius)
    kept_holes = [h for h in holes if h.size <= max_hole_size]
    logger.info(
        "Holes: %d valid (<=%d), %d ignored",
        len(kept_holes),
        max_hole_size,
        len(holes) - len(kept_holes),
    )
    hole_by_cell: Dict[CellKey, Hole] = {
        cell: hole for hole in kept_holes for cell in hole.cells
    }

    candidates = collect_candidates(base, visited, search_radius)
    logger.info("Candidates: %d unvisited", len(candidates))

    scored = [
        score_candidate(c, base, visited, edges, hole_by_cell, mode, allowed_directions)
        for c in candidates
    ]
    if exclude_other_directions:
        scored = [c for c in scored if c.score_breakdown["direction"] == 0]

    picks = select_greedy(scored, target_count)
    if not picks:
        logger.info("No candidates available")
    else:
        logger.info(
            "Selected %d squares: %s",
            len(picks),
            " -> ".join(f"({c.i},{c.j})" for c in picks),
        )

    selected = [
        SelectedSquare(
            i=c.i,
            j=c.j,
            bounds=grid.cell_bounds(c.i, c.j),
            score=c.score,
            score_breakdown=c.score_breakdown,
            layer_distance=c.layer_distance,
            selection_order=order,
            edge_tags=c.edge_tags,
            hole=c.hole,
        )
        for order, c in enumerate(picks)
    ]
    return OptimizationResult(selected, edges, holes, kept_holes, len(candidates))
