# src/rigloc/modules/resection.py
from __future__ import annotations

import math

import cv2
import numpy as np

from ..geom.camera import PinholeRadialK3
from ..geom.se3 import Rt_to_T
from ..system.outcome import CameraLocalization, Evidence
from ..system.params import RobustEstimator

RANSAC_MIN_POINTS = 6
# initial gate when the reprojection threshold is estimated from the residuals
ADAPTIVE_START_PX = 16.0
ADAPTIVE_FLOOR_PX = 0.5
LO_ITERATIONS = 2
REFINE_INTRINSICS_MIN_POINTS = 12


def reprojection_errors(
    pts3d: np.ndarray, pts2d: np.ndarray, T_c_w: np.ndarray, intr: PinholeRadialK3
) -> np.ndarray:
    if pts3d.shape[0] == 0:
        return np.zeros((0,), np.float64)
    rvec, _ = cv2.Rodrigues(np.ascontiguousarray(T_c_w[:3, :3]))
    proj, _ = cv2.projectPoints(
        np.asarray(pts3d, dtype=np.float64).reshape(-1, 1, 3),
        rvec,
        np.ascontiguousarray(T_c_w[:3, 3]),
        intr.K,
        intr.dist_coeffs,
    )
    err = np.linalg.norm(proj.reshape(-1, 2) - np.asarray(pts2d, dtype=np.float64).reshape(-1, 2), axis=1)
    # points behind the camera project somewhere plausible; never count them
    Xc = pts3d @ T_c_w[:3, :3].T + T_c_w[:3, 3]
    err[Xc[:, 2] <= 1e-9] = np.inf
    return err


def adaptive_threshold(residuals: np.ndarray) -> float:
    """Robust inlier threshold from residuals: median + 3 sigma (MAD estimate)."""
    r = residuals[np.isfinite(residuals)]
    if r.shape[0] == 0:
        return ADAPTIVE_FLOOR_PX
    med = float(np.median(r))
    mad = float(np.median(np.abs(r - med)))
    return max(ADAPTIVE_FLOOR_PX, med + 3.0 * 1.4826 * mad)


def _invalid(intr: PinholeRadialK3, ev: Evidence, reason: str) -> CameraLocalization:
    return CameraLocalization(np.eye(4, dtype=np.float64), intr, ev, valid=False, reason=reason)


def resect_camera(
    pts3d: np.ndarray,
    pts2d: np.ndarray,
    intr: PinholeRadialK3,
    estimator: RobustEstimator,
    error_max: float,
    *,
    confidence: float = 0.999,
    iterations: int = 2000,
) -> tuple[CameraLocalization, float]:
    """
    Estimate a camera pose from 2D-3D correspondences.

    Args:
        pts3d: (N,3) world points
        pts2d: (N,2) pixel observations
        estimator: LORANSAC re-runs the refinement on the updated inlier set (local optimization);
                   ACRANSAC with error_max=inf picks the threshold from the residuals
        error_max: maximum reprojection error in pixels, inf = adaptive

    Returns:
        (camera localization, inlier threshold in pixels that was applied)
    """
    pts3d = np.asarray(pts3d, dtype=np.float64).reshape(-1, 3)
    pts2d = np.asarray(pts2d, dtype=np.float64).reshape(-1, 2)
    n = int(pts3d.shape[0])
    ev = Evidence(num_correspondences=n)
    adaptive = math.isinf(error_max)
    threshold = ADAPTIVE_START_PX if adaptive else float(error_max)

    if n < 4:
        return _invalid(intr, ev, f"REJECT_RESECTION_TOO_FEW_CORRESPONDENCES:{n}"), threshold

    obj = pts3d.reshape(-1, 1, 3)
    img = pts2d.reshape(-1, 1, 2)
    K, dist = intr.K, intr.dist_coeffs

    if n < RANSAC_MIN_POINTS:
        ok, rvec, tvec = cv2.solvePnP(obj, img, K, dist, flags=cv2.SOLVEPNP_SQPNP)
        if not ok:
            return _invalid(intr, ev, "REJECT_RESECTION_PNP_FAILED"), threshold
        inliers = np.arange(n)
    else:
        ok, rvec, tvec, inl = cv2.solvePnPRansac(
            obj, img, K, dist,
            iterationsCount=int(iterations),
            reprojectionError=float(threshold),
            confidence=float(confidence),
            flags=cv2.SOLVEPNP_EPNP,
        )
        if not ok or inl is None or len(inl) < 4:
            return _invalid(intr, ev, "REJECT_RESECTION_RANSAC_FAILED"), threshold
        inliers = inl.reshape(-1)

    rvec = np.asarray(rvec, dtype=np.float64).reshape(3, 1)
    tvec = np.asarray(tvec, dtype=np.float64).reshape(3, 1)
    rounds = LO_ITERATIONS if estimator is RobustEstimator.LORANSAC else 1
    for _ in range(rounds):
        if inliers.shape[0] < 4:
            break
        rvec, tvec = cv2.solvePnPRefineLM(obj[inliers], img[inliers], K, dist, rvec, tvec)
        T = Rt_to_T(cv2.Rodrigues(rvec)[0], tvec)
        err = reprojection_errors(pts3d, pts2d, T, intr)
        if adaptive:
            threshold = adaptive_threshold(err[inliers])
        inliers = np.nonzero(err <= threshold)[0]

    T_c_w = Rt_to_T(cv2.Rodrigues(rvec)[0], tvec)
    err = reprojection_errors(pts3d, pts2d, T_c_w, intr)
    inliers = np.nonzero(err <= threshold)[0].astype(np.int32)
    ev.num_inliers = int(inliers.shape[0])
    ev.reproj_median_px = float(np.median(err[inliers])) if inliers.shape[0] > 0 else None

    if inliers.shape[0] < 4:
        return _invalid(intr, ev, f"REJECT_RESECTION_TOO_FEW_INLIERS:{inliers.shape[0]}"), threshold

    cam = CameraLocalization(T_c_w, intr, ev, inliers=inliers, valid=True, reason="RESECTION_OK")
    return cam, threshold


def refine_intrinsics(
    pts3d: np.ndarray,
    pts2d: np.ndarray,
    intr: PinholeRadialK3,
) -> PinholeRadialK3 | None:
    """
    Re-estimate focal length and radial distortion from inlier correspondences of one image.
    Principal point and aspect ratio stay fixed. Returns None when there is not enough data
    or OpenCV rejects the problem.
    """
    if pts3d.shape[0] < REFINE_INTRINSICS_MIN_POINTS:
        return None
    flags = (
        cv2.CALIB_USE_INTRINSIC_GUESS
        | cv2.CALIB_FIX_PRINCIPAL_POINT
        | cv2.CALIB_FIX_ASPECT_RATIO
        | cv2.CALIB_ZERO_TANGENT_DIST
    )
    try:
        _rms, K, dist, _rvecs, _tvecs = cv2.calibrateCamera(
            [np.asarray(pts3d, dtype=np.float32).reshape(-1, 3)],
            [np.asarray(pts2d, dtype=np.float32).reshape(-1, 2)],
            (int(intr.width), int(intr.height)),
            intr.K.copy(),
            intr.dist_coeffs.copy(),
            flags=flags,
        )
    except cv2.error as ex:
        print(f"[WARN] Intrinsics refinement failed: {ex}")
        return None
    if not np.all(np.isfinite(K)) or K[0, 0] <= 0:
        return None
    return intr.with_params(K, dist)
