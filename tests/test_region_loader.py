import pytest

from squadrat_route_ai.errors import NoReferenceRegionFound
from squadrat_route_ai.region_loader import (
    extract_polygons,
    find_reference_region,
    parse_features,
)


def square(lon0, lat0, d):
    return [[lon0, lat0], [lon0 + d, lat0], [lon0 + d, lat0 + d], [lon0, lat0 + d], [lon0, lat0]]


def feature(name, geometry, **props):
    return {"type": "Feature", "properties": {"name": name, **props}, "geometry": geometry}


def test_extract_polygons_handles_collections():
    geom = {
        "type": "GeometryCollection",
        "geometries": [
            {"type": "Polygon", "coordinates": [square(0, 0, 1), square(0.2, 0.2, 0.1)]},
            {"type": "MultiPolygon", "coordinates": [[square(5, 5, 1)], [square(7, 7, 1)]]},
            {"type": "Point", "coordinates": [1, 1]},
        ],
    }
    polys = extract_polygons(geom)
    assert len(polys) == 3
    assert len(polys[0]["holes"]) == 1
    assert polys[1]["outer"][0] == [5, 5]


def test_parse_features_classifies_and_flips_axes():
    fc = {
        "type": "FeatureCollection",
        "features": [
            feature("ubersquadrat", {"type": "Polygon", "coordinates": [square(11.0, 48.0, 0.16)]}, size="12"),
            feature("ubersquadratinho", {"type": "Polygon", "coordinates": [square(11.0, 48.0, 0.02)]}),
            feature("squadrats", {"type": "MultiPolygon", "coordinates": [[square(11.2, 48.2, 0.01)]]}),
            feature("marker", {"type": "Point", "coordinates": [11.0, 48.0]}),
        ],
    }
    parsed = parse_features(fc)
    assert len(parsed.candidates) == 1
    assert parsed.candidates[0].size == 12
    assert parsed.candidates[0].coords[0] == (48.0, 11.0)
    assert len(parsed.features) == 1
    assert len(parsed.all_polygons) == 2
    assert parsed.features[0].outer[1] == pytest.approx((48.2, 11.21))


def test_parse_features_default_size():
    fc = {"features": [feature("Ubersquadrat big", {"type": "Polygon", "coordinates": [square(0, 0, 1)]}, size="n/a")]}
    assert parse_features(fc, default_size=20).candidates[0].size == 20


def test_find_reference_region_prefers_largest_candidate():
    fc = {
        "features": [
            feature("ubersquadrat", {"type": "Polygon", "coordinates": [square(0, 0, 0.1)]}, size=8),
            feature("ubersquadrat", {"type": "Polygon", "coordinates": [square(1, 1, 0.2)]}, size=16),
            feature("squadrats", {"type": "Polygon", "coordinates": [square(5, 5, 2)]}),
        ]
    }
    parsed = parse_features(fc)
    ring, size = find_reference_region(parsed.candidates, parsed.features)
    assert size == 16
    assert ring[0] == (1, 1)


def test_find_reference_region_falls_back_to_largest_feature():
    fc = {
        "features": [
            feature("a", {"type": "Polygon", "coordinates": [square(0, 0, 0.1)]}),
            feature("b", {"type": "Polygon", "coordinates": [square(3, 3, 0.3)]}),
        ]
    }
    parsed = parse_features(fc)
    ring, size = find_reference_region(parsed.candidates, parsed.features, default_size=10)
    assert size == 10
    assert ring[0] == (3, 3)


def test_find_reference_region_nothing_usable():
    with pytest.raises(NoReferenceRegionFound):
        find_reference_region([], [])
