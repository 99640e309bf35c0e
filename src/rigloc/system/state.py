from dataclasses import dataclass, field
import numpy as np

from ..geom.camera import PinholeRadialK3

@dataclass
class FeedFrame:
    image: np.ndarray  # (H,W) uint8
    intrinsics: PinholeRadialK3
    has_calibration: bool
    name: str = ""

@dataclass
class FrameBundle:
    """One synchronized frame per camera slot; lives for a single iteration."""
    frame_idx: int
    images: list[np.ndarray] = field(default_factory=list)
    intrinsics: list[PinholeRadialK3] = field(default_factory=list)
    names: list[str] = field(default_factory=list)

    def add(self, frame: FeedFrame) -> None:
        self.images.append(frame.image)
        self.intrinsics.append(frame.intrinsics)
        self.names.append(frame.name)

    def __len__(self) -> int:
        return len(self.images)

@dataclass
class LoopState:
    frame_idx: int = 0        # frame cursor, one per processed iteration
    num_localized: int = 0
    finished: bool = False
