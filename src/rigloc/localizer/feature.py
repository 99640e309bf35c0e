# src/rigloc/localizer/feature.py
from __future__ import annotations

import numpy as np

from ..dataset.scene import SceneMap
from ..geom.camera import PinholeRadialK3
from ..modules.features import make_describer, nearest_neighbors, ratio_match
from ..modules.verify import verify_fundamental
from ..system.errors import LocalizerInitError
from ..system.params import LocalizerParams
from .base import CorrespondenceRigLocalizer

ALGORITHMS = ("firstbest", "allresults")


class FeatureRigLocalizer(CorrespondenceRigLocalizer):
    """
    Descriptor-based localizer.

    For each camera image:
      1) describe the image (orb / sift)
      2) rank scene views by nearest-neighbour votes, keep nb_image_match of them
      3) ratio-test match against each view and verify with a fundamental matrix
      4) collect unique 2D-3D correspondences from verified views
         (FirstBest: first verified view only; AllResults: up to max_results views)
    """

    name = "feature"

    def __init__(self, scene: SceneMap, describer: str, cfg: dict | None = None):
        super().__init__(cfg)
        describer = describer.lower()
        if scene.obs_desc.shape[0] == 0:
            raise LocalizerInitError("The scene map has no descriptors to localize against")
        if scene.describer != describer:
            raise LocalizerInitError(
                f"The scene map holds {scene.describer!r} descriptors, cannot match {describer!r}"
            )
        try:
            self.describer = make_describer(describer, self.cfg.get("features", {}))
        except ValueError as ex:
            raise LocalizerInitError(str(ex)) from ex

        self.algorithm = str(self.cfg.get("algorithm", "allresults")).lower()
        if self.algorithm not in ALGORITHMS:
            raise LocalizerInitError(f"Unknown algorithm {self.algorithm!r}, expected FirstBest or AllResults")
        self.nb_image_match = int(self.cfg.get("nb_image_match", 4))
        self.max_results = int(self.cfg.get("max_results", 10))
        self.ratio = float(self.cfg.get("ratio", 0.8))
        self.min_verified_matches = int(self.cfg.get("min_verified_matches", 15))

        self.scene = scene
        self.scene_desc = self.describer.cast(scene.obs_desc)
        self.view_obs = [scene.view_observations(v) for v in range(scene.num_views)]

    def retrieve_views(self, des: np.ndarray) -> list[int]:
        nn = nearest_neighbors(des, self.scene_desc, self.describer.norm)
        if nn.shape[0] == 0:
            return []
        votes = np.bincount(self.scene.obs_view[nn], minlength=self.scene.num_views)
        order = np.argsort(-votes, kind="stable")[: self.nb_image_match]
        return [int(v) for v in order if votes[v] > 0]

    def correspondences(
        self, image: np.ndarray, intrinsics: PinholeRadialK3, params: LocalizerParams
    ) -> tuple[np.ndarray, np.ndarray]:
        xy, des = self.describer.describe(image)
        if des is None:
            return np.zeros((0, 3)), np.zeros((0, 2))

        point_ids: list[int] = []
        pts2d: list[np.ndarray] = []
        seen_points: set[int] = set()
        used_query: set[int] = set()
        verified = 0

        for view in self.retrieve_views(des):
            obs = self.view_obs[view]
            iq, it = ratio_match(des, self.scene_desc[obs], self.describer.norm, ratio=self.ratio)
            if iq.shape[0] == 0:
                continue
            mask, _reason = verify_fundamental(
                xy[iq],
                self.scene.obs_xy[obs][it],
                params.matching_estimator,
                params.matching_error,
                min_inliers=self.min_verified_matches,
            )
            if mask is None:
                continue
            verified += 1
            for q, t in zip(iq[mask], it[mask]):
                pid = int(self.scene.obs_point[obs[t]])
                if pid in seen_points or int(q) in used_query:
                    continue
                seen_points.add(pid)
                used_query.add(int(q))
                point_ids.append(pid)
                pts2d.append(xy[q])

            if self.algorithm == "firstbest":
                break
            if self.max_results > 0 and verified >= self.max_results:
                break

        if not point_ids:
            return np.zeros((0, 3)), np.zeros((0, 2))
        return self.scene.points[np.array(point_ids)], np.array(pts2d, dtype=np.float64)
