# src/rigloc/modules/verify.py
from __future__ import annotations

import math

import cv2
import numpy as np

from ..system.params import RobustEstimator

# upper bound handed to MAGSAC when the matching threshold is left adaptive
ADAPTIVE_MAX_THRESHOLD_PX = 8.0


def verify_fundamental(
    pts_q: np.ndarray,
    pts_v: np.ndarray,
    estimator: RobustEstimator,
    threshold_px: float,
    *,
    prob: float = 0.999,
    max_iters: int = 2000,
    min_inliers: int = 15,
) -> tuple[np.ndarray | None, str]:
    """
    Geometric verification of putative matches between the query image and a scene view.

    Args:
        pts_q, pts_v: (N,2) pixel coordinates in the query image and in the view
        estimator: ACRANSAC uses MAGSAC++ (threshold adaptive when threshold_px is inf),
                   LORANSAC uses OpenCV's LO-RANSAC
        threshold_px: maximum epipolar error

    Returns:
        mask: (N,) bool inlier mask, or None when the view is rejected
        reason: verification outcome code
    """
    if pts_q.shape[0] != pts_v.shape[0]:
        raise ValueError("verify_fundamental expects paired points")
    n = int(pts_q.shape[0])
    if n < max(8, min_inliers):
        return None, f"REJECT_VERIFY_TOO_FEW_MATCHES:{n}"

    if estimator is RobustEstimator.ACRANSAC:
        method = cv2.USAC_MAGSAC
        thr = ADAPTIVE_MAX_THRESHOLD_PX if math.isinf(threshold_px) else float(threshold_px)
    else:
        method = cv2.USAC_DEFAULT
        thr = float(threshold_px)

    p0 = np.asarray(pts_q, dtype=np.float64)
    p1 = np.asarray(pts_v, dtype=np.float64)
    F, mask = cv2.findFundamentalMat(p0, p1, method, thr, prob, max_iters)

    if F is None or mask is None:
        return None, "REJECT_VERIFY_FIND_F_FAILED"

    mask = mask.reshape(-1).astype(bool)
    num_inliers = int(mask.sum())
    if num_inliers < min_inliers:
        return None, f"REJECT_VERIFY_TOO_FEW_INLIERS:{num_inliers}"
    return mask, "VERIFY_OK"
