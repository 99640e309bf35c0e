from __future__ import annotations

import numpy as np

from ..dataset.scene import SceneMap
from ..geom.camera import PinholeRadialK3
from ..modules.markers import detect_markers, make_marker_detector
from ..system.errors import LocalizerInitError
from ..system.params import LocalizerParams
from .base import CorrespondenceRigLocalizer


class MarkerRigLocalizer(CorrespondenceRigLocalizer):
    """Localizer on fiducial markers whose corners are known in the scene."""

    name = "marker"

    def __init__(self, scene: SceneMap, cfg: dict | None = None):
        super().__init__(cfg)
        if scene.marker_ids.shape[0] == 0:
            raise LocalizerInitError("The scene map has no markers to localize against")
        try:
            self.detector = make_marker_detector(
                str(self.cfg.get("dictionary", "DICT_4X4_50")),
                subpix=bool(self.cfg.get("subpix", True)),
            )
        except ValueError as ex:
            raise LocalizerInitError(str(ex)) from ex
        self.scene = scene
        self.marker_index = {int(m): j for j, m in enumerate(scene.marker_ids)}

    def correspondences(
        self, image: np.ndarray, intrinsics: PinholeRadialK3, params: LocalizerParams
    ) -> tuple[np.ndarray, np.ndarray]:
        ids, corners = detect_markers(self.detector, image)
        pts3d, pts2d = [], []
        for marker_id, c in zip(ids, corners):
            j = self.marker_index.get(int(marker_id))
            if j is None:
                continue
            pts3d.append(self.scene.marker_corners[j])
            pts2d.append(c)
        if not pts3d:
            return np.zeros((0, 3)), np.zeros((0, 2))
        return np.concatenate(pts3d, axis=0), np.concatenate(pts2d, axis=0)
