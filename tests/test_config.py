import json

import pytest

from squadrat_route_ai.config import NavigatorConfig, load_config


def test_defaults():
    cfg = NavigatorConfig()
    assert cfg.grid_size == 16
    assert cfg.mode == "balanced"
    assert cfg.simplification_thresholds_km == [0.5, 1.0, 1.5]
    assert len(cfg.overpass_instances) == 3
    # mutable defaults are not shared
    cfg.overpass_instances.append("https://x")
    assert len(NavigatorConfig().overpass_instances) == 3


def test_load_json(tmp_path):
    path = tmp_path / "nav.json"
    path.write_text(json.dumps({"size": 8, "directions": "ne", "target_count": 4}))
    cfg = load_config(str(path))
    assert cfg.grid_size == 8
    assert cfg.directions == ["N", "E"]
    assert cfg.target_count == 4


def test_load_yaml(tmp_path):
    path = tmp_path / "nav.yaml"
    path.write_text("mode: holes\nprofile: gravel\nroundtrip: false\ndirections: [S, W]\n")
    cfg = load_config(str(path))
    assert cfg.mode == "holes"
    assert cfg.profile == "gravel"
    assert cfg.roundtrip is False
    assert cfg.directions == ["S", "W"]


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- 1\n- 2\n")
    with pytest.raises(ValueError):
        load_config(str(path))


def test_unknown_key_rejected(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"colour": "red"}))
    with pytest.raises(TypeError):
        load_config(str(path))
