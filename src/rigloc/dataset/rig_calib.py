from __future__ import annotations

import os
from typing import List

import numpy as np

from ..geom.se3 import camera_center, pose_from_rotation_center


def load_rig_calibration(path: str) -> List[np.ndarray]:
    """
    Read rig sub-poses. Format (whitespace separated):

        K
        r00 r01 r02 r10 r11 r12 r20 r21 r22  cx cy cz     # sub-pose of camera 1
        ...                                               # K lines in total

    Each sub-pose maps camera 0 coordinates to camera i: x_i = R (x_0 - C).
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Missing rig calibration: {path}")
    with open(path, "r", encoding="utf-8") as f:
        tokens = f.read().split()
    if not tokens:
        raise ValueError(f"Empty rig calibration file: {path}")

    n = int(tokens[0])
    values = np.array([float(t) for t in tokens[1:]], dtype=np.float64)
    if n < 0 or values.shape[0] != 12 * n:
        raise ValueError(f"Rig calibration {path}: expected {n} sub-poses (12 values each), "
                         f"got {values.shape[0]} values")

    sub_poses: List[np.ndarray] = []
    for v in values.reshape(n, 12):
        R = v[:9].reshape(3, 3)
        if not np.allclose(R @ R.T, np.eye(3), atol=1e-5):
            raise ValueError(f"Rig calibration {path}: sub-pose {len(sub_poses)} has a non-orthonormal rotation")
        sub_poses.append(pose_from_rotation_center(R, v[9:12]))
    return sub_poses


def save_rig_calibration(sub_poses: List[np.ndarray], path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"{len(sub_poses)}\n")
        for T in sub_poses:
            R = T[:3, :3]
            C = camera_center(T)
            f.write(" ".join(f"{x:.12g}" for x in R.reshape(-1)))
            f.write(" ")
            f.write(" ".join(f"{x:.12g}" for x in C))
            f.write("\n")
