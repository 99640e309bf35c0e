from .outcome import CameraLocalization

class BestCameraPolicy:
    """Pick which camera's resection seeds the rig pose."""

    def __init__(self, cfg: dict):
        self.cfg = cfg

    def choose(self, candidates: list[tuple[int, CameraLocalization]]) -> tuple[int, CameraLocalization] | None:
        # priority: most inliers > lowest median reprojection error > lowest camera index
        min_inliers = int(self.cfg.get("min_camera_inliers", 4))
        valid = [(i, c) for i, c in candidates if c.valid and c.evidence.num_inliers >= min_inliers]
        if not valid:
            return None

        def key(item):
            i, c = item
            med = c.evidence.reproj_median_px
            return (-c.evidence.num_inliers, float("inf") if med is None else med, i)

        idx, cam = min(valid, key=key)
        cam.reason = "ACCEPT_RIG_SEED"
        return idx, cam
