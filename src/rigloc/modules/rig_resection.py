# src/rigloc/modules/rig_resection.py
from __future__ import annotations

import math
from typing import Sequence

import cv2
import numpy as np
from scipy.optimize import least_squares
from scipy.spatial.transform import Rotation

from ..geom.camera import PinholeRadialK3
from ..geom.se3 import Rt_to_T, camera_pose_in_rig, rig_pose_from_camera
from ..system.outcome import CameraLocalization, Evidence, RigLocalization
from ..system.params import LocalizerParams
from ..system.policy import BestCameraPolicy
from .resection import refine_intrinsics, reprojection_errors, resect_camera

# correspondences further than this many angular thresholds from the seed pose
# are left out of the joint refinement
REFINE_GATE_FACTOR = 5.0


def bearing_vectors(pts2d: np.ndarray, intr: PinholeRadialK3) -> np.ndarray:
    """Unit bearing vectors (N,3) of pixel observations, distortion removed."""
    if pts2d.shape[0] == 0:
        return np.zeros((0, 3), np.float64)
    und = cv2.undistortPoints(
        np.asarray(pts2d, dtype=np.float64).reshape(-1, 1, 2), intr.K, intr.dist_coeffs
    ).reshape(-1, 2)
    b = np.hstack([und, np.ones((und.shape[0], 1))])
    return b / np.linalg.norm(b, axis=1, keepdims=True)


def _directions(X_w: np.ndarray, T_c_w: np.ndarray) -> np.ndarray:
    Xc = X_w @ T_c_w[:3, :3].T + T_c_w[:3, 3]
    return Xc / (np.linalg.norm(Xc, axis=1, keepdims=True) + 1e-12)


def angular_errors(X_w: np.ndarray, bearings: np.ndarray, T_c_w: np.ndarray) -> np.ndarray:
    """Angle (rad) between each observed bearing and the direction to its 3D point."""
    if X_w.shape[0] == 0:
        return np.zeros((0,), np.float64)
    d = _directions(X_w, T_c_w)
    return np.arccos(np.clip(np.sum(d * bearings, axis=1), -1.0, 1.0))


def _perturb(x: np.ndarray, T0: np.ndarray) -> np.ndarray:
    dT = Rt_to_T(Rotation.from_rotvec(x[:3]).as_matrix(), x[3:6])
    return dT @ T0


def refine_rig_pose(
    T_rig0: np.ndarray,
    groups: Sequence[tuple[np.ndarray, np.ndarray, np.ndarray]],
    angular_threshold: float,
    *,
    max_nfev: int = 100,
) -> np.ndarray:
    """
    Jointly refine the rig pose over the observations of every camera.

    Args:
        T_rig0: (4,4) initial rig pose
        groups: per camera (X_w (n,3), bearings (n,3), T_ci_c0 (4,4))
        angular_threshold: scale of the Huber loss, radians

    Returns:
        refined (4,4) rig pose
    """
    groups = [g for g in groups if g[0].shape[0] > 0]
    if sum(g[0].shape[0] for g in groups) < 4:
        return T_rig0

    def residuals(x: np.ndarray) -> np.ndarray:
        T = _perturb(x, T_rig0)
        res = [(_directions(X, S @ T) - b).ravel() for X, b, S in groups]
        return np.concatenate(res)

    sol = least_squares(
        residuals,
        np.zeros(6, dtype=np.float64),
        loss="huber",
        f_scale=float(angular_threshold),
        x_scale="jac",
        max_nfev=max_nfev,
    )
    return _perturb(sol.x, T_rig0)


def resect_rig(
    correspondences: Sequence[tuple[np.ndarray, np.ndarray]],
    intrinsics: Sequence[PinholeRadialK3],
    sub_poses: Sequence[np.ndarray],
    params: LocalizerParams,
    cfg: dict | None = None,
) -> RigLocalization:
    """
    Localize the rig from per-camera 2D-3D correspondences.

    1) resect every camera on its own (optionally refining its intrinsics)
    2) let the policy choose the seed camera and map it to a rig pose via its sub-pose
    3) coupled mode: refine the rig pose over all cameras with bearing residuals;
       naive mode: keep the seed
    4) derive every camera pose from the rig pose and count its inliers
    """
    cfg = cfg or {}
    n_cams = len(intrinsics)
    if len(correspondences) != n_cams:
        raise ValueError(f"Got correspondences for {len(correspondences)} cameras, expected {n_cams}")
    if len(sub_poses) != n_cams - 1:
        raise ValueError(f"Rig with {n_cams} cameras needs {n_cams - 1} sub-poses, got {len(sub_poses)}")
    subs = [None] + [np.asarray(S, dtype=np.float64) for S in sub_poses]
    policy = BestCameraPolicy(cfg)

    corrs = [
        (np.asarray(p3, dtype=np.float64).reshape(-1, 3), np.asarray(p2, dtype=np.float64).reshape(-1, 2))
        for p3, p2 in correspondences
    ]

    # --- 1) Per-camera resection
    cams: list[CameraLocalization] = []
    thresholds: list[float] = []
    for i, (p3, p2) in enumerate(corrs):
        cam, thr = resect_camera(
            p3, p2, intrinsics[i],
            params.resection_estimator, params.reprojection_error,
            confidence=float(cfg.get("ransac_confidence", 0.999)),
            iterations=int(cfg.get("ransac_iterations", 2000)),
        )
        if cam.valid and params.refine_intrinsics:
            refined = refine_intrinsics(p3[cam.inliers], p2[cam.inliers], cam.intrinsics)
            if refined is not None:
                cam2, thr2 = resect_camera(
                    p3, p2, refined,
                    params.resection_estimator, params.reprojection_error,
                    confidence=float(cfg.get("ransac_confidence", 0.999)),
                    iterations=int(cfg.get("ransac_iterations", 2000)),
                )
                if cam2.valid:
                    cam2.reason = "RESECTION_OK_REFINED_INTRINSICS"
                    cam, thr = cam2, thr2
        cams.append(cam)
        thresholds.append(thr)

    # --- 2) Seed
    choice = policy.choose(list(enumerate(cams)))
    if choice is None:
        return RigLocalization.failed(cams, "REJECT_NO_CAMERA_RESECTED")
    seed_idx, seed = choice
    T_rig = rig_pose_from_camera(seed.T_c_w, subs[seed_idx])
    reproj_thr = params.reprojection_error if math.isfinite(params.reprojection_error) else thresholds[seed_idx]

    # --- 3) Coupled refinement
    bearings = [bearing_vectors(p2, cams[i].intrinsics) for i, (_p3, p2) in enumerate(corrs)]
    if not params.use_rig_naive:
        groups = []
        for i, (p3, _p2) in enumerate(corrs):
            S = np.eye(4) if subs[i] is None else subs[i]
            gate = max(
                REFINE_GATE_FACTOR * params.angular_threshold,
                math.atan2(reproj_thr, cams[i].intrinsics.focal),
            )
            ang = angular_errors(p3, bearings[i], camera_pose_in_rig(T_rig, subs[i]))
            keep = ang <= gate
            groups.append((p3[keep], bearings[i][keep], S))
        T_rig = refine_rig_pose(T_rig, groups, params.angular_threshold)

    # --- 4) Per-camera results from the rig pose
    out: list[CameraLocalization] = []
    for i, (p3, p2) in enumerate(corrs):
        T_c_w = camera_pose_in_rig(T_rig, subs[i])
        err_px = reprojection_errors(p3, p2, T_c_w, cams[i].intrinsics)
        if params.use_rig_naive:
            mask = err_px <= reproj_thr
        else:
            mask = angular_errors(p3, bearings[i], T_c_w) <= params.angular_threshold
        inliers = np.nonzero(mask)[0].astype(np.int32)
        ev = Evidence(
            num_correspondences=int(p3.shape[0]),
            num_inliers=int(inliers.shape[0]),
            reproj_median_px=float(np.median(err_px[inliers])) if inliers.shape[0] > 0 else None,
        )
        out.append(CameraLocalization(T_c_w, cams[i].intrinsics, ev, inliers=inliers,
                                      valid=True, reason=cams[i].reason))

    total = int(sum(c.evidence.num_inliers for c in out))
    min_inliers = int(cfg.get("min_inliers", 12))
    if total < min_inliers:
        for c in out:
            c.valid = False
        return RigLocalization(False, T_rig, out, f"REJECT_RIG_TOO_FEW_INLIERS:{total}")
    return RigLocalization(True, T_rig, out, "RIG_NAIVE_OK" if params.use_rig_naive else "RIG_COUPLED_OK")
