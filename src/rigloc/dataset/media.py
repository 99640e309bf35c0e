from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List

import cv2
import numpy as np

from ..geom.camera import PinholeRadialK3, load_intrinsics
from ..system.errors import FeedInitError
from ..system.state import FeedFrame

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".pgm", ".ppm")


@dataclass
class ImageEntry:
    name: str
    path: str


def _read_image_list(list_path: str) -> List[ImageEntry]:
    entries: List[ImageEntry] = []
    base = os.path.dirname(list_path)

    with open(list_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            path = line if os.path.isabs(line) else os.path.join(base, line)
            entries.append(ImageEntry(name=os.path.basename(path), path=path))
    return entries


def _scan_image_dir(dir_path: str) -> List[ImageEntry]:
    names = sorted(n for n in os.listdir(dir_path) if n.lower().endswith(IMAGE_EXTENSIONS))
    return [ImageEntry(name=n, path=os.path.join(dir_path, n)) for n in names]


class _CalibratedFeed:
    def __init__(self, calibration_path: str | None):
        self.intrinsics: PinholeRadialK3 | None = None
        if calibration_path:
            try:
                self.intrinsics = load_intrinsics(calibration_path)
            except (OSError, ValueError) as ex:
                raise FeedInitError(f"Cannot load intrinsics {calibration_path}: {ex}") from ex
        self._size_warned = False

    def _make_frame(self, img: np.ndarray, name: str) -> FeedFrame:
        h, w = img.shape[:2]
        if self.intrinsics is None:
            return FeedFrame(img, PinholeRadialK3.guess(w, h), has_calibration=False, name=name)
        if (w, h) != (self.intrinsics.width, self.intrinsics.height) and not self._size_warned:
            print(f"[WARN] Image {name} is {w}x{h} but the calibration is for "
                  f"{self.intrinsics.width}x{self.intrinsics.height}")
            self._size_warned = True
        return FeedFrame(img, self.intrinsics, has_calibration=True, name=name)


class ImageListFeed(_CalibratedFeed):
    """Frames from a folder of images or from a text file listing one image per line."""

    def __init__(self, media_path: str, calibration_path: str | None = None):
        super().__init__(calibration_path)
        self.media_path = media_path
        if os.path.isdir(media_path):
            self.entries = _scan_image_dir(media_path)
        elif os.path.isfile(media_path):
            self.entries = _read_image_list(media_path)
        else:
            raise FeedInitError(f"Media path does not exist: {media_path}")
        if len(self.entries) == 0:
            raise FeedInitError(f"No images found in {media_path}")
        self.cursor = 0
        self._cached: FeedFrame | None = None

    def __len__(self) -> int:
        return len(self.entries)

    def read_frame(self) -> FeedFrame | None:
        if self.cursor >= len(self.entries):
            return None
        if self._cached is None:
            e = self.entries[self.cursor]
            img = cv2.imread(e.path, cv2.IMREAD_GRAYSCALE)
            if img is None:
                raise FileNotFoundError(f"Failed to read image: {e.path}")
            self._cached = self._make_frame(img, e.name)
        return self._cached

    def advance(self) -> None:
        self._cached = None
        if self.cursor < len(self.entries):
            self.cursor += 1

    def close(self) -> None:
        self._cached = None


class VideoFeed(_CalibratedFeed):
    def __init__(self, media_path: str, calibration_path: str | None = None):
        super().__init__(calibration_path)
        if not os.path.isfile(media_path):
            raise FeedInitError(f"Media path does not exist: {media_path}")
        self.media_path = media_path
        self.cap = cv2.VideoCapture(media_path)
        if not self.cap.isOpened():
            raise FeedInitError(f"Cannot open video {media_path}")
        self.cursor = 0
        self.exhausted = False
        self._cached: FeedFrame | None = None
        self._stem = os.path.splitext(os.path.basename(media_path))[0]

    def read_frame(self) -> FeedFrame | None:
        if self.exhausted:
            return None
        if self._cached is None:
            ok, img = self.cap.read()
            if not ok or img is None:
                self.exhausted = True
                return None
            if img.ndim == 3:
                img = cv2.cvtColor(img, cv2.COLOR_BGR2GRAY)
            self._cached = self._make_frame(img, f"{self._stem}:{self.cursor:06d}")
        return self._cached

    def advance(self) -> None:
        if self.exhausted:
            return
        if self._cached is None:
            # skip a frame that was never decoded
            if not self.cap.grab():
                self.exhausted = True
                return
        self._cached = None
        self.cursor += 1

    def close(self) -> None:
        self._cached = None
        if self.cap is not None:
            self.cap.release()
            self.cap = None
            self.exhausted = True


def open_feed(media_path: str, calibration_path: str | None = None):
    """
    Pick the feed type from the media path:
      - directory            -> images sorted by name
      - .txt file            -> list of image paths
      - anything else        -> video file
    """
    if os.path.isdir(media_path) or media_path.lower().endswith(".txt"):
        return ImageListFeed(media_path, calibration_path)
    if media_path.lower().endswith(IMAGE_EXTENSIONS):
        raise FeedInitError(f"A single image is not a sequence: {media_path}")
    return VideoFeed(media_path, calibration_path)
