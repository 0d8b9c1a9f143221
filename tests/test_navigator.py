import json

import pytest

from squadrat_route_ai import brouter_api, navigator
from squadrat_route_ai.brouter_api import RoutingOutcome
from squadrat_route_ai.config import NavigatorConfig
from squadrat_route_ai.waypoint_placer import RoadFeature


def square(lon0, lat0, d):
    return [[lon0, lat0], [lon0 + d, lat0], [lon0 + d, lat0 + d], [lon0, lat0 + d], [lon0, lat0]]


# 4x4 reference region of 0.01 degree cells plus one explored cell to the east
FC = {
    "type": "FeatureCollection",
    "features": [
        {
            "type": "Feature",
            "properties": {"name": "ubersquadrat", "size": 4},
            "geometry": {"type": "Polygon", "coordinates": [square(11.0, 48.0, 0.04)]},
        },
        {
            "type": "Feature",
            "properties": {"name": "squadrats"},
            "geometry": {"type": "Polygon", "coordinates": [square(11.04, 48.0, 0.01)]},
        },
    ],
}


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "explored.geojson").write_text(json.dumps(FC))
    return tmp_path


def test_suggest_cells():
    config = NavigatorConfig(target_count=3, scan_radius_buffer=2)
    suggestion = navigator.suggest_cells(FC, config)
    assert suggestion.grid.base_square.max_i == 3
    assert len(suggestion.visited) == 17
    assert (0, 4) in suggestion.visited
    data = suggestion.to_dict()
    assert len(data["rectangles"]) == 3
    assert [m["selectionOrder"] for m in data["metadata"]] == [0, 1, 2]


def test_main_writes_output(workdir):
    out = workdir / "out.json"
    code = navigator.main(
        ["explored.geojson", "--target-count", "2", "--mode", "edge", "--output", str(out)]
    )
    assert code == 0
    data = json.loads(out.read_text())
    assert data["visitedCount"] >= 16
    assert len(data["rectangles"]) == 2
    assert data["grid"]["baseSquare"] == {"minI": 0, "maxI": 3, "minJ": 0, "maxJ": 3}


def test_main_reads_config_file(workdir, capsys):
    cfg = workdir / "nav.json"
    cfg.write_text(json.dumps({"target_count": 1, "directions": "N"}))
    code = navigator.main(["explored.geojson", "--config", str(cfg)])
    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert len(data["rectangles"]) == 1
    assert "N" in data["metadata"][0]["edge"]


def test_main_missing_input(workdir):
    assert navigator.main(["missing.geojson"]) == 1


def test_main_without_polygons_fails(workdir):
    (workdir / "empty.geojson").write_text(json.dumps({"type": "FeatureCollection", "features": []}))
    assert navigator.main(["empty.geojson"]) == 1


def test_route_needs_start(workdir):
    assert navigator.main(["explored.geojson", "--route"]) == 1


def test_main_with_route(workdir, monkeypatch):
    captured = {}

    def fake_fetch(cells, profile, **kwargs):
        captured["cells"] = list(cells)
        captured["use_cache"] = kwargs["use_cache"]
        return [RoadFeature("r", [(10.9, 48.015), (11.2, 48.015)])]

    def fake_call(waypoints, profile, **kwargs):
        return RoutingOutcome(
            profile,
            geojson={
                "features": [
                    {
                        "properties": {"track-length": "3000", "total-time": "600"},
                        "geometry": {"coordinates": [[11.0, 48.0], [11.05, 48.015]]},
                    }
                ]
            },
            attempts=1,
        )

    monkeypatch.setattr(navigator, "fetch_roads_for_cells", fake_fetch)
    monkeypatch.setattr(brouter_api, "call_brouter", fake_call)
    out = workdir / "route.json"
    code = navigator.main(
        [
            "explored.geojson",
            "--target-count",
            "2",
            "--route",
            "--start-lat",
            "48.02",
            "--start-lon",
            "11.02",
            "--one-way",
            "--no-cache",
            "--output",
            str(out),
        ]
    )
    assert code == 0
    assert len(captured["cells"]) == 2
    assert captured["use_cache"] is False
    route = json.loads(out.read_text())["route"]
    assert route["distanceKm"] == pytest.approx(3.0)
    assert route["timeMin"] == 10
    assert route["profileUsed"] == "trekking"
