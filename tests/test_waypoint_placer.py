import pytest

from squadrat_route_ai.errors import NoRoadsInCell
from squadrat_route_ai.waypoint_placer import (
    PRIORITY_INTERSECTION,
    PRIORITY_MIDPOINT,
    RoadFeature,
    find_candidates,
    find_roads_in_cell,
    place_waypoint,
)

CELL = [[48.0, 11.0], [48.01, 11.01]]
EAST_CELL = [[48.0, 11.01], [48.01, 11.02]]


def road(rid, *coords):
    return RoadFeature(rid, [tuple(c) for c in coords], highway="residential")


def test_crossing_roads_give_intersection():
    roads = [
        road("h", (10.995, 48.005), (11.015, 48.005)),
        road("v", (11.003, 47.995), (11.003, 48.015)),
    ]
    wp = place_waypoint(roads, CELL, (3, 4))
    assert wp.type == "intersection"
    assert wp.has_road
    assert wp.lat == pytest.approx(48.005)
    assert wp.lon == pytest.approx(11.003)
    assert wp.grid_coords == (3, 4)
    assert set(wp.road_ids) == {"h", "v"}
    assert wp.alternatives
    assert all(a.priority < wp.priority for a in wp.alternatives)
    assert wp.priority == PRIORITY_INTERSECTION


def test_single_road_uses_midpoint_of_clipped_part():
    roads = [road("h", (10.99, 48.005), (11.02, 48.005))]
    wp = place_waypoint(roads, CELL)
    assert wp.type == "midpoint"
    assert wp.priority == PRIORITY_MIDPOINT
    assert wp.lon == pytest.approx(11.005)
    assert wp.lat == pytest.approx(48.005)


def test_no_roads_falls_back_to_center():
    far = road("x", (12.0, 49.0), (12.1, 49.1))
    wp = place_waypoint([far], CELL, (1, 2))
    assert not wp.has_road
    assert wp.type == "no-road"
    assert (wp.lat, wp.lon) == pytest.approx((48.005, 11.005))
    assert wp.grid_coords == (1, 2)
    assert wp.alternatives == []


def test_find_candidates_raises_without_roads():
    with pytest.raises(NoRoadsInCell):
        find_candidates([], [(48.005, 11.005)])


def test_find_roads_in_cell_clips_to_cell():
    roads = [road("h", (10.99, 48.005), (11.02, 48.005)), road("deg", (11.005, 48.005))]
    clipped = find_roads_in_cell(roads, CELL, EAST_CELL)
    assert len(clipped) == 1
    minx, miny, maxx, maxy = clipped[0].clipped.bounds
    assert (minx, maxx) == pytest.approx((11.0, 11.01))
    assert clipped[0].connecting


def test_connecting_road_wins_over_closer_road():
    roads = [
        road("west", (10.995, 48.005), (11.003, 48.005)),
        road("through", (11.004, 48.009), (11.02, 48.009)),
    ]
    neutral = place_waypoint(roads, CELL)
    assert neutral.road_ids == ("west",)
    boosted = place_waypoint(roads, CELL, next_bounds=EAST_CELL)
    assert boosted.road_ids == ("through",)
    assert boosted.type == "midpoint"
    assert boosted.priority == PRIORITY_MIDPOINT + 0.5


def test_sequence_mode_prefers_candidates_near_neighbours():
    roads = [
        road("south", (10.99, 48.004), (11.02, 48.004)),
        road("north", (10.99, 48.008), (11.02, 48.008)),
    ]
    neutral = place_waypoint(roads, CELL)
    assert neutral.road_ids == ("south",)
    seq = place_waypoint(roads, CELL, prev_point=(48.05, 11.0), next_point=(48.05, 11.01))
    assert seq.road_ids == ("north",)
    assert seq.lat == pytest.approx(48.008)


def test_alternatives_are_limited():
    roads = [
        road("a", (10.99, 48.002), (11.02, 48.002)),
        road("b", (10.99, 48.004), (11.02, 48.004)),
        road("c", (10.99, 48.006), (11.02, 48.006)),
        road("d", (10.99, 48.008), (11.02, 48.008)),
    ]
    wp = place_waypoint(roads, CELL, max_alternatives=2)
    assert len(wp.alternatives) == 2
    data = wp.to_dict()
    assert len(data["alternatives"]) == 2
    assert data["hasRoad"] is True


def test_road_feature_geojson_round_trip():
    feature = {
        "type": "Feature",
        "id": 42,
        "properties": {"highway": "track", "name": "Forstweg", "surface": "gravel"},
        "geometry": {"type": "LineString", "coordinates": [[11.0, 48.0], [11.1, 48.1]]},
    }
    rf = RoadFeature.from_geojson(feature)
    assert rf.id == "42"
    assert rf.coords == [(11.0, 48.0), (11.1, 48.1)]
    assert rf.to_geojson()["properties"]["surface"] == "gravel"
    assert rf.line.length == pytest.approx((0.1 ** 2 * 2) ** 0.5)
