import json

import cv2
import numpy as np

from rigloc.config import load_config
from rigloc.dataset.rig_calib import save_rig_calibration
from rigloc.dataset.scene import SceneMap
from rigloc.geom.camera import PinholeRadialK3, save_intrinsics
from rigloc.geom.se3 import pose_from_rotation_center
from rigloc.scripts.run_rig import apply_overrides, build_parser, build_params, main

INTR = PinholeRadialK3(400, 400, 500.0, 200.0, 200.0)
CORNERS = np.array([[-0.2, -0.2, 1.0], [0.2, -0.2, 1.0], [0.2, 0.2, 1.0], [-0.2, 0.2, 1.0]])


def _marker_folder(folder, n):
    folder.mkdir(parents=True)
    aruco_dict = cv2.aruco.getPredefinedDictionary(cv2.aruco.DICT_4X4_50)
    marker = cv2.aruco.generateImageMarker(aruco_dict, 3, 200)
    for i in range(n):
        img = np.full((400, 400), 255, dtype=np.uint8)
        img[100:300, 100:300] = marker
        cv2.imwrite(str(folder / f"{i:04d}.png"), img)
    return str(folder)


def _inputs(tmp_path):
    scene = tmp_path / "scene.npz"
    SceneMap(points=CORNERS, marker_ids=[3], marker_corners=CORNERS[None]).save(str(scene))
    calib = tmp_path / "cam.txt"
    save_intrinsics(INTR, str(calib))
    return str(scene), str(calib)


def test_cli_overrides_reach_params():
    args = build_parser().parse_args([
        "--sfmdata", "s.npz", "--mediapath", "a", "--cameraIntrinsics", "a.txt",
        "--resectionEstimator", "loransac", "--reprojectionError", "2.5",
        "--angularThreshold", "0.3", "--useLocalizeRigNaive", "--algorithm", "FirstBest", "--quiet",
    ])
    cfg = apply_overrides(load_config(None), args)
    params = build_params(cfg)
    assert params.resection_estimator.value == "loransac"
    assert params.reprojection_error == 2.5
    assert params.use_rig_naive
    assert not params.refine_intrinsics
    assert cfg["feature"]["algorithm"] == "FirstBest"
    assert cfg["output"]["verbose"] is False
    assert cfg["output"]["export"] is True


def test_cli_rejects_mismatched_intrinsics(tmp_path, capsys):
    status = main([
        "--sfmdata", "s.npz", "--mediapath", "a", "b", "--cameraIntrinsics", "a.txt",
        "--out_dir", str(tmp_path / "out"),
    ])
    assert status == 1
    assert "number of intrinsics" in capsys.readouterr().err


def test_cli_rejects_zero_loransac_threshold(tmp_path, capsys):
    status = main([
        "--sfmdata", "s.npz", "--mediapath", "a", "--cameraIntrinsics", "a.txt",
        "--resectionEstimator", "loransac", "--reprojectionError", "0",
        "--out_dir", str(tmp_path / "out"),
    ])
    assert status == 1
    assert "cannot be 0" in capsys.readouterr().err


def test_cli_localizes_marker_sequence(tmp_path, capsys):
    scene, calib = _inputs(tmp_path)
    media = _marker_folder(tmp_path / "cam0", 3)
    out_dir = tmp_path / "out"

    status = main([
        "--sfmdata", scene, "--mediapath", media, "--cameraIntrinsics", calib,
        "--matchDescTypes", "aruco", "--useLocalizeRigNaive", "--out_dir", str(out_dir),
    ])

    assert status == 0
    stdout = capsys.readouterr().out
    assert "Localized 3 / 3 images" in stdout
    rows = [l for l in (out_dir / "trackedcameras.txt").read_text().splitlines() if not l.startswith("#")]
    assert [r.split()[0] for r in rows] == ["0", "1", "2"]
    assert (out_dir / "trackedcameras.cam00.txt").exists()
    metrics = json.loads((out_dir / "metrics.json").read_text())
    assert [m["localized"] for m in metrics] == [True, True, True]
    assert (out_dir / "config_used.yaml").exists()


def test_cli_reports_summary_after_desync(tmp_path, capsys):
    scene, calib = _inputs(tmp_path)
    media0 = _marker_folder(tmp_path / "cam0", 3)
    media1 = _marker_folder(tmp_path / "cam1", 2)
    rig = tmp_path / "rig.txt"
    save_rig_calibration([pose_from_rotation_center(np.eye(3), np.array([0.001, 0.0, 0.0]))], str(rig))

    status = main([
        "--sfmdata", scene, "--mediapath", media0, media1, "--cameraIntrinsics", calib, calib,
        "--calibration", str(rig), "--matchDescTypes", "aruco", "--useLocalizeRigNaive",
        "--no-export", "--out_dir", str(tmp_path / "out"),
    ])

    assert status == 1
    captured = capsys.readouterr()
    assert "[ERROR]" in captured.err
    assert "Localized 2 / 2 images" in captured.out
    assert not (tmp_path / "out" / "trackedcameras.txt").exists()


def test_cli_needs_rig_calibration_for_several_cameras(tmp_path, capsys):
    scene, calib = _inputs(tmp_path)
    media = _marker_folder(tmp_path / "cam0", 1)
    status = main([
        "--sfmdata", scene, "--mediapath", media, media, "--cameraIntrinsics", calib, calib,
        "--matchDescTypes", "aruco", "--out_dir", str(tmp_path / "out"),
    ])
    assert status == 1
    captured = capsys.readouterr()
    assert "--calibration" in captured.err
    assert "No frame was processed" in captured.out


def test_cli_reports_missing_scene(tmp_path, capsys):
    _scene, calib = _inputs(tmp_path)
    status = main([
        "--sfmdata", str(tmp_path / "nope.npz"), "--mediapath", "x", "--cameraIntrinsics", calib,
        "--out_dir", str(tmp_path / "out"),
    ])
    assert status == 1
    assert "Cannot load scene map" in capsys.readouterr().err


class _BrokenLocalizer:
    def localize_rig(self, images, intrinsics, sub_poses, params):
        raise cv2.error("solver exploded")


def test_cli_reports_opencv_failure_during_run(tmp_path, capsys, monkeypatch):
    scene, calib = _inputs(tmp_path)
    media = _marker_folder(tmp_path / "cam0", 2)
    monkeypatch.setattr("rigloc.scripts.run_rig.make_localizer", lambda *args: _BrokenLocalizer())

    status = main([
        "--sfmdata", scene, "--mediapath", media, "--cameraIntrinsics", calib,
        "--matchDescTypes", "aruco", "--no-export", "--out_dir", str(tmp_path / "out"),
    ])

    assert status == 1
    captured = capsys.readouterr()
    assert "[ERROR]" in captured.err and "solver exploded" in captured.err
    assert "Localized 0 / 0 images" in captured.out


class _RecordingVisualizer:
    instances = []

    def __init__(self, update_every):
        self.frames = []
        self.block = None
        _RecordingVisualizer.instances.append(self)

    def on_frame(self, frame_idx, outcome):
        self.frames.append(frame_idx)

    def close(self, block=True):
        self.block = block


def test_cli_closes_visualizer_without_blocking_after_abort(tmp_path, monkeypatch):
    scene, calib = _inputs(tmp_path)
    media0 = _marker_folder(tmp_path / "cam0", 3)
    media1 = _marker_folder(tmp_path / "cam1", 2)
    rig = tmp_path / "rig.txt"
    save_rig_calibration([pose_from_rotation_center(np.eye(3), np.array([0.001, 0.0, 0.0]))], str(rig))
    _RecordingVisualizer.instances = []
    monkeypatch.setattr("rigloc.export.visualize.TrajectoryVisualizer", _RecordingVisualizer)

    status = main([
        "--sfmdata", scene, "--mediapath", media0, media1, "--cameraIntrinsics", calib, calib,
        "--calibration", str(rig), "--matchDescTypes", "aruco", "--useLocalizeRigNaive",
        "--no-export", "--visualize", "--out_dir", str(tmp_path / "out"),
    ])

    assert status == 1
    (viz,) = _RecordingVisualizer.instances
    assert viz.frames == [0, 1]
    assert viz.block is False


def test_cli_shows_visualizer_after_clean_run(tmp_path, monkeypatch):
    scene, calib = _inputs(tmp_path)
    media = _marker_folder(tmp_path / "cam0", 2)
    _RecordingVisualizer.instances = []
    monkeypatch.setattr("rigloc.export.visualize.TrajectoryVisualizer", _RecordingVisualizer)

    status = main([
        "--sfmdata", scene, "--mediapath", media, "--cameraIntrinsics", calib,
        "--matchDescTypes", "aruco", "--useLocalizeRigNaive", "--no-export", "--visualize",
        "--out_dir", str(tmp_path / "out"),
    ])

    assert status == 0
    (viz,) = _RecordingVisualizer.instances
    assert viz.block is True
