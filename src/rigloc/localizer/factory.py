from __future__ import annotations

from ..dataset.scene import SceneMap
from ..modules.features import FEATURE_DESCRIBERS
from ..system.errors import LocalizerInitError
from .feature import FeatureRigLocalizer
from .marker import MarkerRigLocalizer

MARKER_DESCRIBERS = ("aruco",)


def make_localizer(describer: str, scene: SceneMap, cfg: dict):
    """
    Select the localizer once from the describer type.

    cfg is the full configuration; the "localizer" section is shared and the
    "feature" / "marker" sections hold variant settings.
    """
    describer = str(describer).strip().lower()
    common = dict(cfg.get("localizer", {}) or {})
    if describer in MARKER_DESCRIBERS:
        print("[INFO] Localizing sequence using the marker localizer")
        return MarkerRigLocalizer(scene, {**common, **(cfg.get("marker", {}) or {})})
    if describer in FEATURE_DESCRIBERS:
        print(f"[INFO] Localizing sequence using the feature localizer ({describer})")
        feature_cfg = {**common, **(cfg.get("feature", {}) or {})}
        feature_cfg.setdefault("features", cfg.get("features", {}) or {})
        return FeatureRigLocalizer(scene, describer, feature_cfg)
    raise LocalizerInitError(
        f"Unknown describer type {describer!r}, expected one of {FEATURE_DESCRIBERS + MARKER_DESCRIBERS}"
    )
