from __future__ import annotations

from typing import Protocol, Sequence

import numpy as np

from ..geom.camera import PinholeRadialK3
from .outcome import RigLocalization
from .params import LocalizerParams
from .state import FeedFrame


class FrameFeed(Protocol):
    def read_frame(self) -> FeedFrame | None: ...

    def advance(self) -> None: ...

    def close(self) -> None: ...


class RigLocalizer(Protocol):
    def localize_rig(
        self,
        images: Sequence[np.ndarray],
        intrinsics: Sequence[PinholeRadialK3],
        sub_poses: Sequence[np.ndarray],
        params: LocalizerParams,
    ) -> RigLocalization: ...


class TrajectorySink(Protocol):
    def append_keyframe(
        self, stream_id: str, T_c_w: np.ndarray, intrinsics: PinholeRadialK3, frame_idx: int
    ) -> None: ...

    def append_gap(self, stream_id: str) -> None: ...

    def close(self) -> None: ...


RIG_STREAM = "rig"


def camera_stream(camera_idx: int) -> str:
    return f"cam{camera_idx:02d}"
