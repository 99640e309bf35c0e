from dataclasses import dataclass, field
import numpy as np

from ..geom.camera import PinholeRadialK3

@dataclass
class Evidence:
    num_correspondences: int = 0
    num_inliers: int = 0
    reproj_median_px: float | None = None

@dataclass
class CameraLocalization:
    T_c_w: np.ndarray  # 4x4, world -> camera
    intrinsics: PinholeRadialK3
    evidence: Evidence = field(default_factory=Evidence)
    inliers: np.ndarray = field(default_factory=lambda: np.zeros((0,), np.int32))
    valid: bool = False
    reason: str = ""

@dataclass
class RigLocalization:
    success: bool
    T_rig_w: np.ndarray  # 4x4, pose of camera 0; meaningful only on success
    cameras: list[CameraLocalization] = field(default_factory=list)
    reason: str = ""

    @classmethod
    def failed(cls, cameras: list[CameraLocalization], reason: str) -> "RigLocalization":
        return cls(False, np.eye(4, dtype=np.float64), cameras, reason)

    @property
    def num_inliers(self) -> int:
        return int(sum(c.evidence.num_inliers for c in self.cameras))
