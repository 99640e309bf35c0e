import numpy as np
import pytest

from rigloc.geom.camera import PinholeRadialK3
from rigloc.geom.se3 import Rt_to_T
from rigloc.system.errors import MissingCalibrationError, RigConfigurationError, RigLocError, StreamDesyncError
from rigloc.system.outcome import CameraLocalization, Evidence, RigLocalization
from rigloc.system.params import LocalizerParams
from rigloc.system.runner import RigLoop
from rigloc.system.state import FeedFrame
from rigloc.system.telemetry import Telemetry

INTR = PinholeRadialK3(64, 48, 50.0, 32.0, 24.0)


class _DummyFeed:
    def __init__(self, num_frames, uncalibrated_at=None):
        self.num_frames = num_frames
        self.uncalibrated_at = uncalibrated_at
        self.cursor = 0
        self.reads = 0
        self.advances = 0
        self.closed = False

    def read_frame(self):
        self.reads += 1
        if self.cursor >= self.num_frames:
            return None
        img = np.full((48, 64), self.cursor, dtype=np.uint8)
        return FeedFrame(img, INTR, has_calibration=(self.cursor != self.uncalibrated_at),
                         name=f"img{self.cursor:03d}.png")

    def advance(self):
        self.advances += 1
        self.cursor += 1

    def close(self):
        self.closed = True


class _DummyLocalizer:
    def __init__(self, fail_frames=()):
        self.fail_frames = set(fail_frames)
        self.calls = []

    def localize_rig(self, images, intrinsics, sub_poses, params):
        frame = len(self.calls)
        self.calls.append((list(images), list(intrinsics), sub_poses, params))
        cams = []
        for i, img in enumerate(images):
            T = Rt_to_T(np.eye(3), np.array([float(frame), float(i), 0.0]))
            cams.append(CameraLocalization(T, intrinsics[i], Evidence(10, 8), valid=True))
        if frame in self.fail_frames:
            return RigLocalization.failed(cams, "REJECT_TEST")
        return RigLocalization(True, cams[0].T_c_w.copy(), cams, "OK")


class _RecordingSink:
    def __init__(self):
        self.records = {}
        self.closed = False

    def append_keyframe(self, stream_id, T_c_w, intrinsics, frame_idx):
        self.records.setdefault(stream_id, []).append(("keyframe", frame_idx))

    def append_gap(self, stream_id):
        self.records.setdefault(stream_id, []).append(("gap", None))

    def close(self):
        self.closed = True


def _sub_poses(n_cams):
    return [Rt_to_T(np.eye(3), np.array([0.1 * (i + 1), 0.0, 0.0])) for i in range(n_cams - 1)]


def _kinds(records):
    return [kind for kind, _ in records]


def test_equal_length_feeds_run_every_frame():
    feeds = [_DummyFeed(5) for _ in range(3)]
    localizer = _DummyLocalizer()
    loop = RigLoop(feeds, localizer, _sub_poses(3), LocalizerParams(), verbose=False)

    report = loop.run()

    assert report.frames_processed == 5
    assert report.frames_localized == 5
    assert loop.state.frame_idx == 5
    assert loop.stats.count == 5
    assert report.stats.count == 5
    assert len(localizer.calls) == 5
    # every feed is advanced once per iteration, plus once on the final end-of-stream read of camera 0
    assert feeds[0].advances == 6
    assert feeds[1].advances == 5
    assert all(f.closed for f in feeds)


def test_localizer_receives_fixed_sub_poses_and_params():
    feeds = [_DummyFeed(3) for _ in range(2)]
    localizer = _DummyLocalizer()
    params = LocalizerParams.build(angular_threshold_deg=0.5, use_rig_naive=True)
    sub_poses = _sub_poses(2)
    RigLoop(feeds, localizer, sub_poses, params, verbose=False).run()

    for images, intrinsics, subs, p in localizer.calls:
        assert len(images) == 2 and len(intrinsics) == 2
        assert p is params
        assert len(subs) == 1
        np.testing.assert_allclose(subs[0], sub_poses[0])
    # frames are passed in lock-step
    assert [c[0][0][0, 0] for c in localizer.calls] == [0, 1, 2]
    assert [c[0][1][0, 0] for c in localizer.calls] == [0, 1, 2]


def test_failed_frame_is_recorded_as_gap_for_rig_and_cameras():
    feeds = [_DummyFeed(3), _DummyFeed(3)]
    sink = _RecordingSink()
    loop = RigLoop(feeds, _DummyLocalizer(fail_frames={2}), _sub_poses(2), LocalizerParams(),
                   sink=sink, verbose=False)

    report = loop.run()

    assert report.frames_localized == 2
    assert report.frames_processed == 3
    assert _kinds(sink.records["rig"]) == ["keyframe", "keyframe", "gap"]
    assert _kinds(sink.records["cam00"]) == ["keyframe", "keyframe", "gap"]
    assert _kinds(sink.records["cam01"]) == ["keyframe", "keyframe", "gap"]
    assert [idx for _, idx in sink.records["rig"][:2]] == [0, 1]
    assert sink.closed


def test_gap_in_the_middle_keeps_frame_indices_aligned():
    feeds = [_DummyFeed(4), _DummyFeed(4)]
    sink = _RecordingSink()
    RigLoop(feeds, _DummyLocalizer(fail_frames={1}), _sub_poses(2), LocalizerParams(),
            sink=sink, verbose=False).run()

    for stream in ("rig", "cam00", "cam01"):
        recs = sink.records[stream]
        assert len(recs) == 4
        for idx, (kind, frame_idx) in enumerate(recs):
            if kind == "keyframe":
                assert frame_idx == idx
        assert _kinds(recs) == ["keyframe", "gap", "keyframe", "keyframe"]


def test_failure_is_reported(capsys):
    feeds = [_DummyFeed(2)]
    RigLoop(feeds, _DummyLocalizer(fail_frames={1}), [], LocalizerParams(), verbose=False).run()
    out = capsys.readouterr().out
    assert "Unable to localize frame 0001" in out


def test_shorter_secondary_feed_aborts_run():
    feeds = [_DummyFeed(3), _DummyFeed(2)]
    sink = _RecordingSink()
    localizer = _DummyLocalizer()
    loop = RigLoop(feeds, localizer, _sub_poses(2), LocalizerParams(), sink=sink, verbose=False)

    with pytest.raises(StreamDesyncError) as exc:
        loop.run()

    assert exc.value.camera_idx == 1
    assert exc.value.frame_idx == 2
    assert len(localizer.calls) == 2
    assert loop.state.frame_idx == 2
    assert loop.stats.count == 2
    for stream in ("rig", "cam00", "cam01"):
        assert len(sink.records[stream]) == 2
    assert sink.closed
    assert all(f.closed for f in feeds)


def test_shorter_reference_feed_ends_cleanly():
    feeds = [_DummyFeed(2), _DummyFeed(4)]
    report = RigLoop(feeds, _DummyLocalizer(), _sub_poses(2), LocalizerParams(), verbose=False).run()
    assert report.frames_processed == 2


def test_missing_calibration_aborts_before_localization():
    feeds = [_DummyFeed(4), _DummyFeed(4, uncalibrated_at=1)]
    localizer = _DummyLocalizer()
    sink = _RecordingSink()
    loop = RigLoop(feeds, localizer, _sub_poses(2), LocalizerParams(), sink=sink, verbose=False)

    with pytest.raises(MissingCalibrationError) as exc:
        loop.run()

    assert exc.value.camera_idx == 1
    assert "img001.png" in str(exc.value)
    assert len(localizer.calls) == 1
    assert loop.stats.count == 1
    assert len(sink.records["rig"]) == 1
    assert sink.closed and all(f.closed for f in feeds)


def test_empty_feeds_produce_empty_report():
    feeds = [_DummyFeed(0), _DummyFeed(0)]
    localizer = _DummyLocalizer()
    loop = RigLoop(feeds, localizer, _sub_poses(2), LocalizerParams(), verbose=False)

    report = loop.run()

    assert report.frames_processed == 0
    assert report.stats is None
    assert loop.stats.count == 0
    assert localizer.calls == []
    assert any("No statistics available" in line for line in report.lines())


def test_sub_pose_count_must_match_cameras():
    with pytest.raises(RigConfigurationError):
        RigLoop([_DummyFeed(1), _DummyFeed(1)], _DummyLocalizer(), [], LocalizerParams())
    with pytest.raises(RigConfigurationError):
        RigLoop([_DummyFeed(1)], _DummyLocalizer(), _sub_poses(2), LocalizerParams())
    with pytest.raises(RigConfigurationError):
        RigLoop([], _DummyLocalizer(), [], LocalizerParams())


def test_sink_absence_does_not_change_counters():
    with_sink = RigLoop([_DummyFeed(4), _DummyFeed(4)], _DummyLocalizer(fail_frames={0, 3}),
                        _sub_poses(2), LocalizerParams(), sink=_RecordingSink(), verbose=False).run()
    without_sink = RigLoop([_DummyFeed(4), _DummyFeed(4)], _DummyLocalizer(fail_frames={0, 3}),
                           _sub_poses(2), LocalizerParams(), verbose=False).run()
    assert with_sink.frames_processed == without_sink.frames_processed == 4
    assert with_sink.frames_localized == without_sink.frames_localized == 2
    assert with_sink.stats.count == without_sink.stats.count == 4


def test_step_drives_one_iteration_at_a_time():
    feeds = [_DummyFeed(2)]
    with RigLoop(feeds, _DummyLocalizer(), [], LocalizerParams(), verbose=False) as loop:
        assert loop.step() is True
        assert loop.state.frame_idx == 1
        assert loop.step() is True
        assert loop.step() is False
        assert loop.step() is False
        assert loop.state.frame_idx == 2
    assert feeds[0].closed


def test_localizer_exception_still_releases_resources():
    class _Boom:
        def localize_rig(self, *args):
            raise RuntimeError("boom")

    feeds = [_DummyFeed(3)]
    sink = _RecordingSink()
    with pytest.raises(RuntimeError, match="boom"):
        RigLoop(feeds, _Boom(), [], LocalizerParams(), sink=sink, verbose=False).run()
    assert feeds[0].closed and sink.closed


def test_wrong_camera_count_from_localizer_is_fatal():
    class _OneCamera(_DummyLocalizer):
        def localize_rig(self, images, intrinsics, sub_poses, params):
            out = super().localize_rig(images, intrinsics, sub_poses, params)
            out.cameras = out.cameras[:1]
            return out

    sink = _RecordingSink()
    loop = RigLoop([_DummyFeed(2), _DummyFeed(2)], _OneCamera(), _sub_poses(2), LocalizerParams(),
                   sink=sink, verbose=False)
    with pytest.raises(RigLocError):
        loop.run()

    report = loop.report()
    assert report.frames_processed == 0
    assert report.frames_localized == 0
    assert report.stats is None
    assert sink.records == {}
    assert "Localized 0 / 0 images" in report.lines()[0]


def test_telemetry_and_callback_see_every_frame():
    telemetry = Telemetry()
    seen = []
    RigLoop([_DummyFeed(3), _DummyFeed(3)], _DummyLocalizer(fail_frames={1}), _sub_poses(2), LocalizerParams(),
            telemetry=telemetry, on_frame=lambda idx, out: seen.append((idx, out.success)),
            verbose=False).run()

    assert seen == [(0, True), (1, False), (2, True)]
    assert [f["frame_idx"] for f in telemetry.frames] == [0, 1, 2]
    assert [f["localized"] for f in telemetry.frames] == [True, False, True]
    assert len(telemetry.frames[0]["cameras"]) == 2
    assert telemetry.frames[1]["reason"] == "REJECT_TEST"
