from pathlib import Path

import pytest
import yaml

from rigloc.config import DEFAULT_CONFIG, load_config, merge_config

SHIPPED_CONFIG = Path(__file__).resolve().parents[1] / "configs" / "default.yaml"


def test_defaults_without_file():
    cfg = load_config(None)
    assert cfg == DEFAULT_CONFIG
    cfg["estimation"]["describer"] = "orb"
    assert DEFAULT_CONFIG["estimation"]["describer"] == "sift"


def test_yaml_is_merged_over_defaults(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump({"estimation": {"describer": "aruco"}, "localizer": {"min_inliers": 30}}))
    cfg = load_config(str(path))
    assert cfg["estimation"]["describer"] == "aruco"
    assert cfg["estimation"]["resection_estimator"] == "acransac"
    assert cfg["localizer"]["min_inliers"] == 30
    assert cfg["localizer"]["ransac_iterations"] == 2000


def test_empty_yaml_gives_defaults(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(str(path)) == DEFAULT_CONFIG


def test_non_mapping_yaml_is_rejected(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(str(path))
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


def test_merge_replaces_non_mapping_values():
    out = merge_config({"a": {"b": 1}, "c": [1, 2]}, {"a": 5, "c": [3]})
    assert out == {"a": 5, "c": [3]}


def test_shipped_yaml_matches_builtin_defaults():
    with open(SHIPPED_CONFIG, "r", encoding="utf-8") as f:
        assert yaml.safe_load(f) == DEFAULT_CONFIG
    assert load_config(str(SHIPPED_CONFIG)) == DEFAULT_CONFIG
