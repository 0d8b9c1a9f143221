import logging
import random

import pytest

from squadrat_route_ai.grid import BaseSquare, derive_grid_parameters
from squadrat_route_ai.optimizer import (
    Candidate,
    Hole,
    analyze_edges,
    collect_candidates,
    detect_holes,
    direction_tags,
    is_on_border,
    layer_distance,
    optimize_squares,
    select_greedy,
)

SIZE = 16
BASE = BaseSquare(0, SIZE - 1, 0, SIZE - 1)
SEARCH = BASE.expanded(5)


@pytest.fixture
def grid():
    ring = [(48.0, 11.0), (48.0, 11.16), (48.16, 11.16), (48.16, 11.0)]
    return derive_grid_parameters(ring, SIZE)


def all_visited_except(*missing):
    return frozenset(c for c in SEARCH.cells() if c not in set(missing))


def test_layer_distance_and_border():
    assert layer_distance(16, 5, BASE) == 0
    assert layer_distance(-1, -1, BASE) == 0
    assert is_on_border(16, 16, BASE)
    assert not is_on_border(17, 5, BASE)
    assert layer_distance(17, 5, BASE) == 1
    assert layer_distance(-2, -2, BASE) == 2
    assert layer_distance(20, 20, BASE) == 8


def test_direction_tags():
    assert direction_tags(16, 5, BASE) == "N"
    assert direction_tags(-1, 16, BASE) == "SE"
    assert direction_tags(20, -3, BASE) == "NW"
    assert direction_tags(3, 3, BASE) == ""


def test_analyze_edges():
    visited = frozenset((16, j) for j in range(SIZE)) | frozenset((i, -1) for i in range(8))
    edges = analyze_edges(BASE, visited)
    assert edges["N"].can_expand
    assert edges["N"].completion == 100.0
    assert edges["W"].completion == 50.0
    assert not edges["W"].can_expand
    assert edges["S"].visited_count == 0
    assert edges["E"].total == SIZE


def test_detect_holes_partitions_unvisited_cells():
    rng = random.Random(7)
    visited = frozenset(c for c in SEARCH.cells() if rng.random() < 0.6)
    holes = detect_holes(BASE, visited)
    cells = [c for h in holes for c in h.cells]
    assert len(cells) == len(set(cells))
    assert set(cells) == {c for c in SEARCH.cells() if c not in visited}
    assert [h.id for h in holes] == list(range(len(holes)))
    firsts = [h.cells[0] for h in holes]
    assert firsts == sorted(firsts)


def test_detect_holes_connectivity_is_four_neighbour():
    # diagonal neighbours are separate holes
    visited = all_visited_except((16, 5), (17, 6))
    holes = detect_holes(BASE, visited)
    assert [h.cells for h in holes] == [[(16, 5)], [(17, 6)]]
    assert holes[0].avg_layer_distance == 0
    assert holes[1].avg_layer_distance == 1


def test_collect_candidates_excludes_base_and_visited():
    visited = all_visited_except((16, 5), (3, 3), (-6, 0))
    cands = collect_candidates(BASE, visited)
    assert [c.key for c in cands] == [(16, 5)]


def test_single_gap_north_is_selected(grid):
    visited = all_visited_except((16, 5))
    result = optimize_squares(BASE, visited, grid, 1, mode="holes", max_hole_size=3)
    assert [s.grid_coords for s in result.selected] == [(16, 5)]
    pick = result.selected[0]
    assert pick.score_breakdown == {
        "base": 100,
        "layer": 10000,
        "edge": 140,
        "hole": 1600,
        "holeCompletion": 1500,
        "adjacency": 100,
        "direction": 0,
    }
    assert pick.score == 13440
    assert pick.edge_tags == "N"
    assert pick.hole is not None and pick.hole.size == 1


def test_never_returns_visited_cells(grid):
    rng = random.Random(3)
    visited = frozenset(c for c in SEARCH.cells() if rng.random() < 0.5)
    result = optimize_squares(BASE, visited, grid, 25)
    assert len(result.selected) == 25
    keys = [s.grid_coords for s in result.selected]
    assert len(set(keys)) == len(keys)
    assert not set(keys) & visited
    assert all(not BASE.contains(*k) for k in keys)


def test_holes_larger_than_limit_get_no_bonus(grid):
    result = optimize_squares(BASE, frozenset(BASE.cells()), grid, 3, max_hole_size=5)
    assert len(result.holes) == 1
    assert result.kept_holes == []
    assert all(s.score_breakdown["hole"] == 0 for s in result.selected)


def test_first_pick_is_best_ring_cell(grid):
    result = optimize_squares(BASE, frozenset(BASE.cells()), grid, 4)
    first = result.selected[0]
    assert first.layer_distance == 0
    # corners touch no visited cell, so a ring cell next to the region wins
    assert first.score_breakdown["adjacency"] == 25
    # later picks stay close to the previous one
    for a, b in zip(result.selected, result.selected[1:]):
        assert abs(a.i - b.i) + abs(a.j - b.j) <= 2


def test_direction_penalty(grid):
    result = optimize_squares(BASE, frozenset(BASE.cells()), grid, 5, allowed_directions=["n"])
    assert all("N" in s.edge_tags for s in result.selected)
    assert all(s.score_breakdown["direction"] == 0 for s in result.selected)


def test_direction_exclusion_drops_other_cells(grid):
    visited = all_visited_except((16, 5), (-1, 5))
    penalized = optimize_squares(BASE, visited, grid, 5, allowed_directions=["S"])
    assert [s.grid_coords for s in penalized.selected] == [(-1, 5), (16, 5)]
    assert penalized.selected[1].score_breakdown["direction"] == -1_000_000

    excluded = optimize_squares(
        BASE, visited, grid, 5, allowed_directions=["S"], exclude_other_directions=True
    )
    assert [s.grid_coords for s in excluded.selected] == [(-1, 5)]


def test_all_directions_is_no_filter(grid):
    visited = all_visited_except((16, 5), (-1, 5))
    result = optimize_squares(BASE, visited, grid, 2, allowed_directions=list("NSEW"))
    assert all(s.score_breakdown["direction"] == 0 for s in result.selected)


def test_unknown_mode_falls_back_to_balanced(grid, caplog):
    visited = all_visited_except((16, 5))
    with caplog.at_level(logging.WARNING):
        result = optimize_squares(BASE, visited, grid, 1, mode="sideways")
    assert "Unknown optimization mode" in caplog.text
    balanced = optimize_squares(BASE, visited, grid, 1, mode="balanced")
    assert result.selected[0].score == balanced.selected[0].score


def test_mode_changes_edge_and_hole_weight(grid):
    visited = all_visited_except((16, 5))
    edge = optimize_squares(BASE, visited, grid, 1, mode="edge").selected[0]
    holes = optimize_squares(BASE, visited, grid, 1, mode="holes").selected[0]
    assert edge.score_breakdown["edge"] == 1404
    assert edge.score_breakdown["hole"] == 240
    assert holes.score_breakdown["edge"] == 140
    assert holes.score_breakdown["hole"] == 1600


def test_output_shapes(grid):
    visited = all_visited_except((16, 5))
    result = optimize_squares(BASE, visited, grid, 1)
    (south, west), (north, east) = result.rectangles()[0]
    assert (south, west, north, east) == pytest.approx((48.16, 11.05, 48.17, 11.06))
    meta = result.metadata()[0]
    assert meta["gridCoords"] == {"i": 16, "j": 5}
    assert meta["selectionOrder"] == 0
    assert meta["edge"] == "N"
    assert meta["hole"] == {"id": 0, "size": 1}
    assert meta["layerDistance"] == 0


def test_no_candidates(grid):
    result = optimize_squares(BASE, all_visited_except(), grid, 5)
    assert result.selected == []
    assert result.candidate_count == 0


def test_greedy_prefers_nearby_and_hole_continuation():
    hole = Hole(0, [(16, 0), (16, 1)], 0)
    a = Candidate(16, 0, "N", 0, score=5000, hole=hole)
    far = Candidate(16, 10, "N", 0, score=5500)
    near = Candidate(16, 2, "N", 0, score=5000)
    same_hole = Candidate(16, 1, "N", 0, score=3600, hole=hole)
    picks = select_greedy([a, far, near, same_hole], 3)
    # after (16, 10): near 5000 - 800 beats a 5000 - 1000 and same_hole 3600 - 900
    assert [c.key for c in picks] == [(16, 10), (16, 2), (16, 0)]

    picks = select_greedy([a, near, same_hole], 2)
    assert [c.key for c in picks] == [(16, 0), (16, 1)]


def test_greedy_ties_keep_scan_order():
    c1 = Candidate(16, 0, "N", 0, score=100)
    c2 = Candidate(16, 1, "N", 0, score=100)
    assert [c.key for c in select_greedy([c1, c2], 1)] == [(16, 0)]
    assert select_greedy([], 3) == []
