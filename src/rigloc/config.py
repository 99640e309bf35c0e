from __future__ import annotations

import copy
from typing import Any, Dict

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    "estimation": {
        "describer": "sift",
        "matching_estimator": "acransac",
        "resection_estimator": "acransac",
        "reprojection_error": 4.0,
        "matching_error": 4.0,
        "angular_threshold_deg": 0.1,
        "refine_intrinsics": False,
        "use_rig_naive": False,
    },
    "localizer": {
        "min_inliers": 12,
        "min_camera_inliers": 4,
        "ransac_confidence": 0.999,
        "ransac_iterations": 2000,
    },
    "features": {
        "preset": "normal",
        "orb": {"scaleFactor": 1.2, "nlevels": 8, "edgeThreshold": 31, "fastThreshold": 20},
        "sift": {"contrastThreshold": 0.04, "edgeThreshold": 10},
    },
    "feature": {
        "algorithm": "AllResults",
        "nb_image_match": 4,
        "max_results": 10,
        "ratio": 0.8,
        "min_verified_matches": 15,
    },
    "marker": {
        "dictionary": "DICT_4X4_50",
        "subpix": True,
        "min_inliers": 4,
    },
    "output": {
        "export": True,
        "trajectory": "trackedcameras.txt",
        "verbose": True,
    },
}


def merge_config(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into a copy of base."""
    out = copy.deepcopy(base)
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = merge_config(out[k], v)
        else:
            out[k] = copy.deepcopy(v)
    return out


def load_config(config_path: str | None) -> Dict[str, Any]:
    """
    Load a YAML configuration and merge it over DEFAULT_CONFIG.

    Raises:
        FileNotFoundError: config file does not exist
        yaml.YAMLError: config file is malformed
        ValueError: the top level is not a mapping
    """
    if not config_path:
        return copy.deepcopy(DEFAULT_CONFIG)
    with open(config_path, "r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f)
    if cfg is None:
        cfg = {}
    if not isinstance(cfg, dict):
        raise ValueError(f"Config {config_path} must be a mapping, got {type(cfg).__name__}")
    return merge_config(DEFAULT_CONFIG, cfg)
