# src/rigloc/geom/camera.py
from __future__ import annotations

import os
from dataclasses import dataclass, replace

import numpy as np


@dataclass(frozen=True)
class PinholeRadialK3:
    """
    Pinhole camera with three radial distortion coefficients.

    Distortion is applied to normalized coordinates:
        x_d = x * (1 + k1 r^2 + k2 r^4 + k3 r^6)
    which is OpenCV's model with zero tangential terms.
    """
    width: int
    height: int
    focal: float
    ppx: float
    ppy: float
    k1: float = 0.0
    k2: float = 0.0
    k3: float = 0.0

    @property
    def K(self) -> np.ndarray:
        return np.array(
            [[self.focal, 0.0, self.ppx], [0.0, self.focal, self.ppy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def dist_coeffs(self) -> np.ndarray:
        return np.array([self.k1, self.k2, 0.0, 0.0, self.k3], dtype=np.float64)

    def with_params(self, K: np.ndarray, dist: np.ndarray) -> "PinholeRadialK3":
        d = np.asarray(dist, dtype=np.float64).reshape(-1)
        k3 = float(d[4]) if d.shape[0] > 4 else 0.0
        return replace(
            self,
            focal=float(0.5 * (K[0, 0] + K[1, 1])),
            ppx=float(K[0, 2]),
            ppy=float(K[1, 2]),
            k1=float(d[0]),
            k2=float(d[1]),
            k3=k3,
        )

    def to_dict(self) -> dict:
        return {
            "width": int(self.width),
            "height": int(self.height),
            "focal": float(self.focal),
            "ppx": float(self.ppx),
            "ppy": float(self.ppy),
            "k1": float(self.k1),
            "k2": float(self.k2),
            "k3": float(self.k3),
        }

    @classmethod
    def guess(cls, width: int, height: int) -> "PinholeRadialK3":
        # uncalibrated placeholder: 45 deg-ish field of view
        f = 1.2 * float(max(width, height))
        return cls(int(width), int(height), f, 0.5 * width, 0.5 * height)


def _read_numbers(path: str) -> list[float]:
    values: list[float] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.split("#", 1)[0].strip()
            if not line:
                continue
            values.extend(float(v) for v in line.split())
    return values


def load_intrinsics(path: str) -> PinholeRadialK3:
    """
    Read a calibration file:

        int    # image width
        int    # image height
        double # focal
        double # ppx
        double # ppy
        double # k1
        double # k2
        double # k3
    """
    if not os.path.isfile(path):
        raise FileNotFoundError(f"Missing intrinsics file: {path}")
    v = _read_numbers(path)
    if len(v) != 8:
        raise ValueError(f"Expected 8 values in intrinsics file {path}, got {len(v)}")
    return PinholeRadialK3(int(v[0]), int(v[1]), v[2], v[3], v[4], v[5], v[6], v[7])


def save_intrinsics(intr: PinholeRadialK3, path: str) -> None:
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"{intr.width} # image width\n")
        f.write(f"{intr.height} # image height\n")
        f.write(f"{intr.focal:.10g} # focal\n")
        f.write(f"{intr.ppx:.10g} # ppx\n")
        f.write(f"{intr.ppy:.10g} # ppy\n")
        f.write(f"{intr.k1:.10g} {intr.k2:.10g} {intr.k3:.10g} # k1 k2 k3\n")
