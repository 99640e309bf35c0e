import json

from .outcome import RigLocalization

class Telemetry:
    def __init__(self):
        self.frames = []

    def log_frame(self, idx: int, rec: dict):
        rec["frame_idx"] = idx
        self.frames.append(rec)

    def log_localization(self, idx: int, outcome: RigLocalization, elapsed_ms: float):
        self.log_frame(idx, {
            "localized": bool(outcome.success),
            "elapsed_ms": float(elapsed_ms),
            "reason": str(outcome.reason),
            "cameras": [
                {
                    "valid": bool(c.valid),
                    "reason": str(c.reason),
                    "num_correspondences": int(c.evidence.num_correspondences),
                    "num_inliers": int(c.evidence.num_inliers),
                    "reproj_median_px": (None if c.evidence.reproj_median_px is None
                                         else float(c.evidence.reproj_median_px)),
                }
                for c in outcome.cameras
            ],
        })

    def dump(self, path: str):
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.frames, f, indent=2)
