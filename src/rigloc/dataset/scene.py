# src/rigloc/dataset/scene.py
from __future__ import annotations

import os
from dataclasses import dataclass, field

import numpy as np


@dataclass
class SceneMap:
    """
    Previously reconstructed scene the rig is localized in.

    points:          (M,3) landmark positions, world frame
    obs_view:        (K,)  keyframe index of each observation
    obs_point:       (K,)  landmark index of each observation
    obs_xy:          (K,2) pixel position of the observation in its keyframe
    obs_desc:        (K,D) descriptor of the observation (uint8 for binary describers)
    describer:       describer type of obs_desc ("orb", "sift", or "" when there are none)
    marker_ids:      (P,)  fiducial marker ids
    marker_corners:  (P,4,3) marker corners, in the detector's corner order
    """
    points: np.ndarray
    obs_view: np.ndarray = field(default_factory=lambda: np.zeros((0,), np.int32))
    obs_point: np.ndarray = field(default_factory=lambda: np.zeros((0,), np.int32))
    obs_xy: np.ndarray = field(default_factory=lambda: np.zeros((0, 2), np.float32))
    obs_desc: np.ndarray = field(default_factory=lambda: np.zeros((0, 32), np.uint8))
    describer: str = ""
    marker_ids: np.ndarray = field(default_factory=lambda: np.zeros((0,), np.int32))
    marker_corners: np.ndarray = field(default_factory=lambda: np.zeros((0, 4, 3), np.float64))

    def __post_init__(self):
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 3)
        self.obs_view = np.asarray(self.obs_view, dtype=np.int32).reshape(-1)
        self.obs_point = np.asarray(self.obs_point, dtype=np.int32).reshape(-1)
        self.obs_xy = np.asarray(self.obs_xy, dtype=np.float32).reshape(-1, 2)
        self.obs_desc = np.asarray(self.obs_desc)
        self.marker_ids = np.asarray(self.marker_ids, dtype=np.int32).reshape(-1)
        self.marker_corners = np.asarray(self.marker_corners, dtype=np.float64).reshape(-1, 4, 3)
        self.describer = str(self.describer).lower()
        self.validate()

    def validate(self) -> None:
        k = self.obs_view.shape[0]
        if self.obs_point.shape[0] != k or self.obs_xy.shape[0] != k or self.obs_desc.shape[0] != k:
            raise ValueError(
                "Scene observations are inconsistent: "
                f"view={k} point={self.obs_point.shape[0]} xy={self.obs_xy.shape[0]} desc={self.obs_desc.shape[0]}"
            )
        if self.obs_desc.ndim != 2:
            raise ValueError(f"obs_desc must be (K,D), got shape {self.obs_desc.shape}")
        if k > 0 and (self.obs_point.min() < 0 or self.obs_point.max() >= self.points.shape[0]):
            raise ValueError("obs_point references a landmark outside points")
        if self.marker_ids.shape[0] != self.marker_corners.shape[0]:
            raise ValueError(
                f"marker_ids ({self.marker_ids.shape[0]}) and marker_corners "
                f"({self.marker_corners.shape[0]}) differ in length"
            )

    @property
    def num_views(self) -> int:
        return 0 if self.obs_view.shape[0] == 0 else int(self.obs_view.max()) + 1

    def view_observations(self, view: int) -> np.ndarray:
        return np.nonzero(self.obs_view == view)[0]

    @classmethod
    def load(cls, path: str) -> "SceneMap":
        if not os.path.isfile(path):
            raise FileNotFoundError(f"Missing scene map: {path}")
        with np.load(path, allow_pickle=False) as data:
            kw = {k: data[k] for k in data.files}
        if "points" not in kw:
            raise ValueError(f"Scene map {path} has no 'points' array")
        if "describer" in kw:
            kw["describer"] = str(kw["describer"])
        unknown = set(kw) - {f for f in cls.__dataclass_fields__}
        if unknown:
            raise ValueError(f"Scene map {path} has unknown arrays: {sorted(unknown)}")
        return cls(**kw)

    def save(self, path: str) -> None:
        np.savez_compressed(
            path,
            points=self.points,
            obs_view=self.obs_view,
            obs_point=self.obs_point,
            obs_xy=self.obs_xy,
            obs_desc=self.obs_desc,
            describer=np.array(self.describer),
            marker_ids=self.marker_ids,
            marker_corners=self.marker_corners,
        )
