from types import SimpleNamespace

import pytest

from squadrat_route_ai.bounds_utils import CellBounds, coords_match, points_match
from squadrat_route_ai.errors import InvalidGeometry

EXPECTED = CellBounds(south=48.0, west=11.0, north=48.1, east=11.2)


@pytest.mark.parametrize(
    "value",
    [
        [[48.0, 11.0], [48.1, 11.2]],
        ((48.0, 11.0), (48.1, 11.2)),
        {"minLat": 48.0, "maxLat": 48.1, "minLon": 11.0, "maxLon": 11.2},
        {"south": 48.0, "west": 11.0, "north": 48.1, "east": 11.2},
        {"bounds": {"south": 48.0, "west": 11.0, "north": 48.1, "east": 11.2}},
        {"bounds": [[48.0, 11.0], [48.1, 11.2]], "lat": 48.05},
        SimpleNamespace(bounds=[[48.0, 11.0], [48.1, 11.2]]),
        EXPECTED,
    ],
)
def test_from_any_accepts_every_shape(value):
    assert CellBounds.from_any(value) == EXPECTED


@pytest.mark.parametrize(
    "value",
    [None, 42, "north", [[1.0, 2.0]], {"south": 1.0, "west": 2.0}, {"minLat": 1.0}],
)
def test_from_any_rejects_unknown_shapes(value):
    with pytest.raises(InvalidGeometry):
        CellBounds.from_any(value)


def test_conversions():
    assert EXPECTED.to_array() == [[48.0, 11.0], [48.1, 11.2]]
    assert EXPECTED.to_min_max() == {"minLat": 48.0, "maxLat": 48.1, "minLon": 11.0, "maxLon": 11.2}
    assert EXPECTED.to_dict()["east"] == 11.2
    lat, lon = EXPECTED.center
    assert lat == pytest.approx(48.05)
    assert lon == pytest.approx(11.1)


def test_contains_and_expand():
    assert EXPECTED.contains(48.05, 11.1)
    assert not EXPECTED.contains(48.2, 11.1)
    grown = EXPECTED.expand(0.01)
    assert grown.south == pytest.approx(47.99)
    assert grown.east == pytest.approx(11.21)
    assert grown.contains(48.105, 11.1)


def test_to_box_is_lon_lat():
    box = EXPECTED.to_box()
    assert box.bounds == pytest.approx((11.0, 48.0, 11.2, 48.1))


def test_combine():
    combined = CellBounds.combine([[[48.0, 11.0], [48.1, 11.1]], {"south": 47.9, "west": 11.05, "north": 48.05, "east": 11.3}])
    assert combined == CellBounds(47.9, 11.0, 48.1, 11.3)


def test_combine_empty():
    with pytest.raises(ValueError):
        CellBounds.combine([])


def test_point_tolerance():
    assert coords_match(1.0, 1.00005)
    assert not coords_match(1.0, 1.0002)
    assert points_match((48.0, 11.0), (48.00001, 10.99999))
    assert not points_match((48.0, 11.0), (48.0, 11.001))
