from __future__ import annotations

import cv2
import numpy as np


def make_marker_detector(dictionary: str = "DICT_4X4_50", subpix: bool = True):
    if not hasattr(cv2.aruco, dictionary):
        raise ValueError(f"Unknown ArUco dictionary {dictionary!r}")
    aruco_dict = cv2.aruco.getPredefinedDictionary(getattr(cv2.aruco, dictionary))
    aruco_params = cv2.aruco.DetectorParameters()
    if subpix:
        aruco_params.cornerRefinementMethod = cv2.aruco.CORNER_REFINE_SUBPIX
        aruco_params.cornerRefinementWinSize = 5
        aruco_params.cornerRefinementMaxIterations = 30
        aruco_params.cornerRefinementMinAccuracy = 0.1
    return cv2.aruco.ArucoDetector(aruco_dict, aruco_params)


def detect_markers(detector, img_gray_u8: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Returns:
        ids: (K,) int32 marker ids
        corners: (K,4,2) float64 corners, clockwise from top-left of the marker
    """
    corners, ids, _rejected = detector.detectMarkers(img_gray_u8)
    if ids is None or len(ids) == 0:
        return np.zeros((0,), np.int32), np.zeros((0, 4, 2), np.float64)
    ids = np.asarray(ids, dtype=np.int32).reshape(-1)
    corners = np.stack([np.asarray(c, dtype=np.float64).reshape(4, 2) for c in corners])
    return ids, corners
