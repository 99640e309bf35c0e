# src/rigloc/system/runner.py
from __future__ import annotations

import time
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from .errors import MissingCalibrationError, RigConfigurationError, RigLocError, StreamDesyncError
from .interfaces import RIG_STREAM, FrameFeed, RigLocalizer, TrajectorySink, camera_stream
from .outcome import RigLocalization
from .params import LocalizerParams
from .state import FrameBundle, LoopState
from .stats import RunStatistics, StatsSummary
from .telemetry import Telemetry


@dataclass
class RunReport:
    frames_processed: int
    frames_localized: int
    stats: StatsSummary | None

    def lines(self) -> list[str]:
        out = [f"Localized {self.frames_localized} / {self.frames_processed} images"]
        if self.stats is None:
            out.append("No statistics available: no frame was processed")
            return out
        out.append(f"Processing took {self.stats.sum / 1000.0:.3f} [s] overall")
        out.append(f"Mean time for localization: {self.stats.mean:.1f} [ms]")
        out.append(f"Max time for localization:  {self.stats.max:.1f} [ms]")
        out.append(f"Min time for localization:  {self.stats.min:.1f} [ms]")
        return out


class RigLoop:
    """
    Drive N frame feeds in lock-step and localize the rig once per frame set.

    Per iteration:
      1) read one frame per camera (camera 0 first), advancing every feed once
      2) camera 0 out of frames -> clean end; any other camera out of frames -> StreamDesyncError
      3) any frame without calibration -> MissingCalibrationError
      4) localize the rig, time the call into the run statistics
      5) write one rig record and one record per camera to the sink (keyframe or gap)
      6) advance the frame cursor

    Feeds and sink are owned by the loop and released by close(), which run() calls
    on every exit path.
    """

    def __init__(
        self,
        feeds: Sequence[FrameFeed],
        localizer: RigLocalizer,
        sub_poses: Sequence[np.ndarray],
        params: LocalizerParams,
        *,
        sink: TrajectorySink | None = None,
        telemetry: Telemetry | None = None,
        on_frame: Callable[[int, RigLocalization], None] | None = None,
        verbose: bool = True,
    ):
        self.feeds = list(feeds)
        if len(self.feeds) == 0:
            raise RigConfigurationError("A rig needs at least one camera feed.")
        self.sub_poses = tuple(np.asarray(T, dtype=np.float64) for T in sub_poses)
        if len(self.sub_poses) != len(self.feeds) - 1:
            raise RigConfigurationError(
                f"Rig with {len(self.feeds)} cameras needs {len(self.feeds) - 1} sub-poses, "
                f"got {len(self.sub_poses)}"
            )
        self.localizer = localizer
        self.params = params
        self.sink = sink
        self.telemetry = telemetry
        self.on_frame = on_frame
        self.verbose = verbose

        self.state = LoopState()
        self.stats = RunStatistics()
        self._closed = False

    @property
    def num_cameras(self) -> int:
        return len(self.feeds)

    def __enter__(self) -> "RigLoop":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        # ExitStack runs every callback even if one of them raises
        with ExitStack() as stack:
            if self.sink is not None:
                stack.callback(self.sink.close)
            for feed in reversed(self.feeds):
                stack.callback(feed.close)

    def run(self) -> RunReport:
        try:
            while self.step():
                pass
        finally:
            self.close()
        return self.report()

    def report(self) -> RunReport:
        return RunReport(
            frames_processed=self.state.frame_idx,
            frames_localized=self.state.num_localized,
            stats=self.stats.summary(),
        )

    def step(self) -> bool:
        """Process one synchronized frame set. Returns False once camera 0 is exhausted."""
        if self.state.finished:
            return False
        if self._closed:
            raise RigLocError("RigLoop.step() called after close()")

        bundle = self._grab_bundle()
        if bundle is None:
            self.state.finished = True
            return False

        frame_idx = self.state.frame_idx
        t0 = time.perf_counter()
        outcome = self.localizer.localize_rig(bundle.images, bundle.intrinsics, self.sub_poses, self.params)
        elapsed_ms = (time.perf_counter() - t0) * 1000.0
        # a malformed outcome aborts before the frame is counted
        if outcome.success:
            self._check_camera_count(outcome)
        self.stats.record(elapsed_ms)

        if outcome.success:
            self.state.num_localized += 1
            if self.verbose:
                print(f"[INFO] Frame {frame_idx:04d}: localized in {elapsed_ms:.1f} [ms] "
                      f"({outcome.num_inliers} inliers)")
            self._commit_keyframes(frame_idx, outcome)
        else:
            print(f"[WARN] Unable to localize frame {frame_idx:04d} ({elapsed_ms:.1f} [ms]"
                  f"{', ' + outcome.reason if outcome.reason else ''})")
            self._commit_gaps()

        if self.telemetry is not None:
            self.telemetry.log_localization(frame_idx, outcome, elapsed_ms)
        if self.on_frame is not None:
            self.on_frame(frame_idx, outcome)

        self.state.frame_idx += 1
        return True

    def _grab_bundle(self) -> FrameBundle | None:
        frame_idx = self.state.frame_idx
        bundle = FrameBundle(frame_idx=frame_idx)
        for cam_idx, feed in enumerate(self.feeds):
            frame = feed.read_frame()
            feed.advance()
            if frame is None:
                if cam_idx > 0:
                    raise StreamDesyncError(cam_idx, frame_idx)
                return None
            if not frame.has_calibration:
                raise MissingCalibrationError(cam_idx, frame.name or f"#{frame_idx}")
            bundle.add(frame)
        return bundle

    def _check_camera_count(self, outcome: RigLocalization) -> None:
        if len(outcome.cameras) != self.num_cameras:
            raise RigLocError(
                f"Localizer returned {len(outcome.cameras)} camera results for a "
                f"{self.num_cameras}-camera rig"
            )

    def _commit_keyframes(self, frame_idx: int, outcome: RigLocalization) -> None:
        if self.sink is None:
            return
        self.sink.append_keyframe(RIG_STREAM, outcome.T_rig_w, outcome.cameras[0].intrinsics, frame_idx)
        for cam_idx, cam in enumerate(outcome.cameras):
            self.sink.append_keyframe(camera_stream(cam_idx), cam.T_c_w, cam.intrinsics, frame_idx)

    def _commit_gaps(self) -> None:
        if self.sink is None:
            return
        self.sink.append_gap(RIG_STREAM)
        for cam_idx in range(self.num_cameras):
            self.sink.append_gap(camera_stream(cam_idx))
