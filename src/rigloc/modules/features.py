# src/rigloc/modules/features.py
from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

FEATURE_DESCRIBERS = ("orb", "sift")

# number of features per image for each preset
PRESET_NFEATURES = {
    "low": 500,
    "medium": 1000,
    "normal": 2000,
    "high": 4000,
    "ultra": 8000,
}


@dataclass
class Describer:
    name: str
    extractor: object
    norm: int

    def describe(self, img_gray_u8: np.ndarray) -> tuple[np.ndarray, np.ndarray | None]:
        """
        Detect and describe features.

        Returns:
            xy: (N,2) float32 pixel coordinates
            des: (N,D) descriptors (uint8 for orb, float32 for sift) or None
        """
        if img_gray_u8 is None:
            raise ValueError("Input image is None")
        if img_gray_u8.ndim != 2:
            raise ValueError("describe expects grayscale images (H,W).")
        kps, des = self.extractor.detectAndCompute(img_gray_u8, None)
        if des is None or len(kps) == 0:
            return np.zeros((0, 2), np.float32), None
        xy = np.array([k.pt for k in kps], dtype=np.float32)
        return xy, self.cast(des)

    def cast(self, des: np.ndarray) -> np.ndarray:
        if self.norm == cv2.NORM_HAMMING:
            return np.ascontiguousarray(des, dtype=np.uint8)
        return np.ascontiguousarray(des, dtype=np.float32)


def make_describer(name: str, cfg: dict | None = None) -> Describer:
    cfg = cfg or {}
    name = str(name).lower()
    preset = str(cfg.get("preset", "normal")).lower()
    if preset not in PRESET_NFEATURES:
        raise ValueError(f"Unknown describer preset {preset!r}, expected one of {sorted(PRESET_NFEATURES)}")
    nfeatures = int(cfg.get("nfeatures") or PRESET_NFEATURES[preset])

    if name == "orb":
        orb_cfg = cfg.get("orb", {}) or {}
        orb = cv2.ORB_create(
            nfeatures=nfeatures,
            scaleFactor=float(orb_cfg.get("scaleFactor", 1.2)),
            nlevels=int(orb_cfg.get("nlevels", 8)),
            edgeThreshold=int(orb_cfg.get("edgeThreshold", 31)),
            fastThreshold=int(orb_cfg.get("fastThreshold", 20)),
        )
        return Describer("orb", orb, cv2.NORM_HAMMING)
    if name == "sift":
        sift_cfg = cfg.get("sift", {}) or {}
        sift = cv2.SIFT_create(
            nfeatures=nfeatures,
            contrastThreshold=float(sift_cfg.get("contrastThreshold", 0.04)),
            edgeThreshold=float(sift_cfg.get("edgeThreshold", 10)),
        )
        return Describer("sift", sift, cv2.NORM_L2)
    raise ValueError(f"Unknown feature describer {name!r}, expected one of {FEATURE_DESCRIBERS}")


def ratio_match(
    des_q: np.ndarray,
    des_t: np.ndarray,
    norm: int,
    *,
    ratio: float = 0.8,
    max_matches: int | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Lowe ratio-test matching of query descriptors against train descriptors.

    Returns:
        idx_q, idx_t: (N,) int32 indices of matched pairs, sorted by distance
    """
    empty = np.zeros((0,), np.int32)
    if des_q is None or des_t is None or len(des_q) < 2 or len(des_t) < 2:
        return empty, empty

    bf = cv2.BFMatcher(norm, crossCheck=False)
    knn = bf.knnMatch(des_q, des_t, k=2)
    good = []
    for pair in knn:
        if len(pair) < 2:
            continue
        m, n = pair
        if m.distance < ratio * n.distance:
            good.append(m)

    good.sort(key=lambda m: m.distance)
    if max_matches is not None and len(good) > max_matches:
        good = good[:max_matches]

    idx_q = np.array([m.queryIdx for m in good], dtype=np.int32)
    idx_t = np.array([m.trainIdx for m in good], dtype=np.int32)
    return idx_q, idx_t


def nearest_neighbors(des_q: np.ndarray, des_t: np.ndarray, norm: int) -> np.ndarray:
    """Index into des_t of the nearest neighbour of every query descriptor."""
    if des_q is None or des_t is None or len(des_q) == 0 or len(des_t) == 0:
        return np.zeros((0,), np.int32)
    bf = cv2.BFMatcher(norm, crossCheck=False)
    matches = bf.match(des_q, des_t)
    return np.array([m.trainIdx for m in matches], dtype=np.int32)
