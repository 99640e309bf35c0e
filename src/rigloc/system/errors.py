class RigLocError(RuntimeError):
    """Base class of the errors that abort a rig localization run."""


class RigConfigurationError(RigLocError):
    pass


class StreamDesyncError(RigLocError):
    """A camera other than the reference ran out of frames before camera 0."""

    def __init__(self, camera_idx: int, frame_idx: int):
        super().__init__(
            f"Camera {camera_idx} has no image for frame {frame_idx} while camera 0 does; "
            "the feeds are not synchronized."
        )
        self.camera_idx = camera_idx
        self.frame_idx = frame_idx


class MissingCalibrationError(RigLocError):
    def __init__(self, camera_idx: int, frame_name: str):
        super().__init__(
            "Only internally calibrated cameras are supported: "
            f"camera {camera_idx} has no calibration for image {frame_name}"
        )
        self.camera_idx = camera_idx
        self.frame_name = frame_name


class FeedInitError(RigLocError):
    pass


class LocalizerInitError(RigLocError):
    pass
