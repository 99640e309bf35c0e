from __future__ import annotations

from typing import Sequence

import numpy as np

from ..geom.camera import PinholeRadialK3
from ..modules.rig_resection import resect_rig
from ..system.outcome import RigLocalization
from ..system.params import LocalizerParams


class CorrespondenceRigLocalizer:
    """
    Rig localizer built on per-camera 2D-3D correspondences.

    Subclasses implement correspondences(); rig resection is shared.
    """

    name = "base"

    def __init__(self, cfg: dict | None = None):
        self.cfg = dict(cfg or {})

    def correspondences(
        self, image: np.ndarray, intrinsics: PinholeRadialK3, params: LocalizerParams
    ) -> tuple[np.ndarray, np.ndarray]:
        """Return (pts3d (N,3), pts2d (N,2)) for one camera image."""
        raise NotImplementedError

    def localize_rig(
        self,
        images: Sequence[np.ndarray],
        intrinsics: Sequence[PinholeRadialK3],
        sub_poses: Sequence[np.ndarray],
        params: LocalizerParams,
    ) -> RigLocalization:
        if len(images) != len(intrinsics):
            raise ValueError(f"{len(images)} images but {len(intrinsics)} intrinsics")
        corrs = [self.correspondences(img, intr, params) for img, intr in zip(images, intrinsics)]
        return resect_rig(corrs, intrinsics, sub_poses, params, self.cfg)
