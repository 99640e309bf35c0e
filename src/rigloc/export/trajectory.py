# src/rigloc/export/trajectory.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass

import numpy as np

from ..geom.camera import PinholeRadialK3
from ..geom.se3 import inv_T
from ..system.interfaces import RIG_STREAM, camera_stream


def _R_to_quat_xyzw(R: np.ndarray) -> np.ndarray:
    # Returns quaternion [x,y,z,w] from rotation matrix.
    m = R.astype(np.float64)
    trace = float(np.trace(m))
    if trace > 0.0:
        s = np.sqrt(trace + 1.0) * 2.0
        qw = 0.25 * s
        qx = (m[2, 1] - m[1, 2]) / s
        qy = (m[0, 2] - m[2, 0]) / s
        qz = (m[1, 0] - m[0, 1]) / s
    else:
        if m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
            s = np.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
            qw = (m[2, 1] - m[1, 2]) / s
            qx = 0.25 * s
            qy = (m[0, 1] + m[1, 0]) / s
            qz = (m[0, 2] + m[2, 0]) / s
        elif m[1, 1] > m[2, 2]:
            s = np.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
            qw = (m[0, 2] - m[2, 0]) / s
            qx = (m[0, 1] + m[1, 0]) / s
            qy = 0.25 * s
            qz = (m[1, 2] + m[2, 1]) / s
        else:
            s = np.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
            qw = (m[1, 0] - m[0, 1]) / s
            qx = (m[0, 2] + m[2, 0]) / s
            qy = (m[1, 2] + m[2, 1]) / s
            qz = 0.25 * s

    q = np.array([qx, qy, qz, qw], dtype=np.float64)
    n = np.linalg.norm(q) + 1e-12
    return q / n


@dataclass
class Keyframe:
    frame_idx: int
    T_c_w: np.ndarray
    intrinsics: PinholeRadialK3


class TrajectoryExporter:
    """
    Animated-camera export: one track for the rig and one per camera.

    Every track holds exactly one record per processed frame, a Keyframe or None for a gap,
    so the record index is the frame index. Files are written on close():

        <stem>.txt            rig track
        <stem>.camXX.txt      camera tracks
        <stem>.json           per-track intrinsics and counts
        <stem>.points.txt     scene landmarks (if add_points was called)

    Track lines are "frame tx ty tz qx qy qz qw" with the camera centre and the
    camera-to-world rotation; a gap is written as "# frame gap".
    """

    def __init__(self, output_path: str, num_cameras: int):
        if num_cameras < 1:
            raise ValueError("num_cameras must be >= 1")
        root, _ext = os.path.splitext(output_path)
        self.stem = root
        self.num_cameras = num_cameras
        self.tracks: dict[str, list[Keyframe | None]] = {RIG_STREAM: []}
        for i in range(num_cameras):
            self.tracks[camera_stream(i)] = []
        self.points: np.ndarray | None = None
        self.closed = False
        self.written: list[str] = []

    def _track(self, stream_id: str) -> list[Keyframe | None]:
        if self.closed:
            raise RuntimeError("TrajectoryExporter is closed")
        try:
            return self.tracks[stream_id]
        except KeyError:
            raise ValueError(f"Unknown stream {stream_id!r}") from None

    def stream_path(self, stream_id: str) -> str:
        if stream_id == RIG_STREAM:
            return f"{self.stem}.txt"
        return f"{self.stem}.{stream_id}.txt"

    def add_points(self, points: np.ndarray) -> None:
        self.points = np.asarray(points, dtype=np.float64).reshape(-1, 3)

    def append_keyframe(self, stream_id: str, T_c_w: np.ndarray, intrinsics: PinholeRadialK3, frame_idx: int) -> None:
        track = self._track(stream_id)
        if frame_idx != len(track):
            raise ValueError(
                f"Stream {stream_id} is at frame {len(track)}, cannot add a keyframe for frame {frame_idx}"
            )
        track.append(Keyframe(int(frame_idx), np.array(T_c_w, dtype=np.float64), intrinsics))

    def append_gap(self, stream_id: str) -> None:
        self._track(stream_id).append(None)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        out_dir = os.path.dirname(self.stem)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)

        meta = {"streams": {}}
        for stream_id, track in self.tracks.items():
            path = self.stream_path(stream_id)
            with open(path, "w", encoding="utf-8") as f:
                f.write(f"# {stream_id}: frame tx ty tz qx qy qz qw\n")
                for frame_idx, kf in enumerate(track):
                    if kf is None:
                        f.write(f"# {frame_idx} gap\n")
                        continue
                    T_w_c = inv_T(kf.T_c_w)
                    t = T_w_c[:3, 3]
                    q = _R_to_quat_xyzw(T_w_c[:3, :3])
                    f.write(f"{frame_idx} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} "
                            f"{q[0]:.6f} {q[1]:.6f} {q[2]:.6f} {q[3]:.6f}\n")
            self.written.append(path)
            keyframes = [kf for kf in track if kf is not None]
            meta["streams"][stream_id] = {
                "file": os.path.basename(path),
                "frames": len(track),
                "keyframes": len(keyframes),
                "intrinsics": keyframes[-1].intrinsics.to_dict() if keyframes else None,
            }

        if self.points is not None:
            points_path = f"{self.stem}.points.txt"
            np.savetxt(points_path, self.points, fmt="%.6f")
            self.written.append(points_path)
            meta["num_points"] = int(self.points.shape[0])

        meta_path = f"{self.stem}.json"
        with open(meta_path, "w", encoding="utf-8") as f:
            json.dump(meta, f, indent=2)
        self.written.append(meta_path)
