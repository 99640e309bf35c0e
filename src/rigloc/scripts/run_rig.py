from __future__ import annotations

import argparse
import os
import sys
from contextlib import ExitStack
from pathlib import Path

import cv2
import yaml

from rigloc.config import load_config
from rigloc.dataset.media import open_feed
from rigloc.dataset.rig_calib import load_rig_calibration
from rigloc.dataset.scene import SceneMap
from rigloc.export.trajectory import TrajectoryExporter
from rigloc.localizer.factory import make_localizer
from rigloc.system.errors import LocalizerInitError, RigConfigurationError, RigLocError
from rigloc.system.params import LocalizerParams
from rigloc.system.runner import RigLoop
from rigloc.system.telemetry import Telemetry


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Localize a camera rig composed of internally calibrated cameras."
    )
    req = ap.add_argument_group("Required input parameters")
    req.add_argument("--sfmdata", type=str, required=True, help="Scene map (.npz) to localize in")
    req.add_argument("--mediapath", type=str, nargs="+", required=True,
                     help="Video file, image folder or image list (.txt) for each camera of the rig")
    req.add_argument("--cameraIntrinsics", type=str, nargs="+", required=True,
                     help="Intrinsics calibration file for each camera of the rig")
    req.add_argument("--calibration", type=str, default=None,
                     help="Rig calibration file (sub-poses); required with more than one camera")

    common = ap.add_argument_group("Common optional parameters for the localizer")
    common.add_argument("--config", type=str, default=None, help="YAML config, merged over the defaults")
    common.add_argument("--matchDescTypes", type=str, default=None, help="Describer type: orb, sift or aruco")
    common.add_argument("--preset", type=str, default=None, help="Describer preset {low,medium,normal,high,ultra}")
    common.add_argument("--resectionEstimator", type=str, default=None, help="{acransac,loransac}")
    common.add_argument("--matchingEstimator", type=str, default=None, help="{acransac,loransac}")
    common.add_argument("--refineIntrinsics", action="store_true", default=None,
                        help="Refine the camera intrinsics for each localized image")
    common.add_argument("--reprojectionError", type=float, default=None,
                        help="Maximum reprojection error (px) for resection; 0 lets acransac pick it")
    common.add_argument("--useLocalizeRigNaive", action="store_true", default=None,
                        help="Localize each camera separately instead of resecting the rig jointly")
    common.add_argument("--angularThreshold", type=float, default=None,
                        help="Maximum angle (degrees) between bearing vector and 3D point direction")

    feat = ap.add_argument_group("Parameters specific to the feature localizer")
    feat.add_argument("--algorithm", type=str, default=None, help="{FirstBest,AllResults}")
    feat.add_argument("--nbImageMatch", type=int, default=None, help="Number of scene views to retrieve")
    feat.add_argument("--maxResults", type=int, default=None,
                      help="AllResults: stop after this many verified views (0 = no limit)")
    feat.add_argument("--matchingError", type=float, default=None,
                      help="Maximum matching error (px) for geometric verification; 0 lets acransac pick it")

    out = ap.add_argument_group("Options for the output of the localizer")
    out.add_argument("--out_dir", type=str, default="outputs")
    out.add_argument("--output", type=str, default=None, help="Trajectory file name (relative to --out_dir)")
    out.add_argument("--no-export", dest="export", action="store_false", default=None,
                     help="Do not write trajectory files")
    out.add_argument("--quiet", action="store_true", help="Only log failed frames")
    out.add_argument("--visualize", action="store_true", help="Enable real-time trajectory visualization")
    out.add_argument("--viz_update_every", type=int, default=10, help="Update visualization every N frames")
    return ap


def apply_overrides(cfg: dict, args: argparse.Namespace) -> dict:
    est = cfg["estimation"]
    feat = cfg["feature"]
    overrides = [
        (est, "describer", args.matchDescTypes),
        (est, "resection_estimator", args.resectionEstimator),
        (est, "matching_estimator", args.matchingEstimator),
        (est, "refine_intrinsics", args.refineIntrinsics),
        (est, "reprojection_error", args.reprojectionError),
        (est, "matching_error", args.matchingError),
        (est, "use_rig_naive", args.useLocalizeRigNaive),
        (est, "angular_threshold_deg", args.angularThreshold),
        (cfg["features"], "preset", args.preset),
        (feat, "algorithm", args.algorithm),
        (feat, "nb_image_match", args.nbImageMatch),
        (feat, "max_results", args.maxResults),
        (cfg["output"], "trajectory", args.output),
        (cfg["output"], "export", args.export),
    ]
    for section, key, value in overrides:
        if value is not None:
            section[key] = value
    if args.quiet:
        cfg["output"]["verbose"] = False
    return cfg


def build_params(cfg: dict) -> LocalizerParams:
    est = cfg["estimation"]
    return LocalizerParams.build(
        matching_estimator=est["matching_estimator"],
        resection_estimator=est["resection_estimator"],
        reprojection_error=float(est["reprojection_error"]),
        matching_error=float(est["matching_error"]),
        angular_threshold_deg=float(est["angular_threshold_deg"]),
        refine_intrinsics=bool(est["refine_intrinsics"]),
        use_rig_naive=bool(est["use_rig_naive"]),
    )


def _print_parameters(args: argparse.Namespace, cfg: dict, params: LocalizerParams) -> None:
    print("[INFO] Program called with the following parameters:")
    print(f"[INFO] \tsfmdata: {args.sfmdata}")
    print(f"[INFO] \tmediapath: {args.mediapath}")
    print(f"[INFO] \tcameraIntrinsics: {args.cameraIntrinsics}")
    print(f"[INFO] \tcalibration: {args.calibration}")
    print(f"[INFO] \tdescriber: {cfg['estimation']['describer']} (preset {cfg['features']['preset']})")
    print(f"[INFO] \tresectionEstimator: {params.resection_estimator.value}")
    print(f"[INFO] \tmatchingEstimator: {params.matching_estimator.value}")
    print(f"[INFO] \trefineIntrinsics: {params.refine_intrinsics}")
    print(f"[INFO] \tuseLocalizeRigNaive: {params.use_rig_naive}")
    print(f"[INFO] \treprojectionError: {params.reprojection_error}")
    print(f"[INFO] \tmatchingError: {params.matching_error}")
    print(f"[INFO] \tangularThreshold: {cfg['estimation']['angular_threshold_deg']} [deg]")
    print(f"[INFO] \tnCameras: {len(args.mediapath)}")


def _error(msg: str) -> None:
    print(f"[ERROR] {msg}", file=sys.stderr)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = apply_overrides(load_config(args.config), args)
    except (OSError, ValueError, yaml.YAMLError) as ex:
        _error(f"Cannot load config {args.config}: {ex}")
        return 1

    num_cameras = len(args.mediapath)
    if num_cameras != len(args.cameraIntrinsics):
        _error("The number of intrinsics and the number of cameras are not the same.")
        return 1

    try:
        params = build_params(cfg)
    except RigConfigurationError as ex:
        _error(str(ex))
        return 1
    _print_parameters(args, cfg, params)

    out_dir = Path(args.out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    print(f"[INFO] Output dir: {out_dir}")
    with open(out_dir / "config_used.yaml", "w", encoding="utf-8") as f:
        yaml.safe_dump(cfg, f, sort_keys=False)

    loop = None
    telemetry = Telemetry()
    visualizer = None
    status = 0
    try:
        try:
            scene = SceneMap.load(args.sfmdata)
        except (OSError, ValueError) as ex:
            raise LocalizerInitError(f"Cannot load scene map {args.sfmdata}: {ex}") from ex
        print(f"[INFO] Scene: {scene.points.shape[0]} points, {scene.num_views} views, "
              f"{scene.marker_ids.shape[0]} markers")
        localizer = make_localizer(cfg["estimation"]["describer"], scene, cfg)

        sub_poses = []
        if num_cameras > 1:
            if not args.calibration:
                raise RigConfigurationError("--calibration is required for a rig with more than one camera")
            try:
                sub_poses = load_rig_calibration(args.calibration)
            except (OSError, ValueError) as ex:
                raise RigConfigurationError(f"Cannot load rig calibration {args.calibration}: {ex}") from ex
            if len(sub_poses) != num_cameras - 1:
                raise RigConfigurationError(
                    f"The rig calibration has {len(sub_poses)} sub-poses, expected {num_cameras - 1}"
                )

        with ExitStack() as stack:
            feeds = []
            for cam_idx, (media, calib) in enumerate(zip(args.mediapath, args.cameraIntrinsics)):
                print(f"[INFO] Camera {cam_idx}: {media}")
                feed = open_feed(media, calib)
                stack.callback(feed.close)
                feeds.append(feed)

            sink = None
            if cfg["output"]["export"]:
                traj_path = str(out_dir / cfg["output"]["trajectory"])
                sink = TrajectoryExporter(traj_path, num_cameras)
                sink.add_points(scene.points)

            if args.visualize:
                from rigloc.export.visualize import TrajectoryVisualizer
                visualizer = TrajectoryVisualizer(args.viz_update_every)

            loop = RigLoop(
                feeds, localizer, sub_poses, params,
                sink=sink,
                telemetry=telemetry,
                on_frame=None if visualizer is None else visualizer.on_frame,
                verbose=bool(cfg["output"]["verbose"]),
            )
            # from here on the loop releases feeds and sink
            stack.pop_all()

        loop.run()
        if sink is not None:
            for path in sink.written:
                print(f"[OK] wrote: {path}")
    except (RigLocError, OSError, ValueError, cv2.error) as ex:
        _error(str(ex))
        status = 1
    finally:
        print("\n[INFO] ******************************")
        report = loop.report() if loop is not None else None
        if report is None:
            print("[INFO] No frame was processed")
        else:
            for line in report.lines():
                print(f"[INFO] {line}")
        metrics_path = os.path.join(out_dir, "metrics.json")
        telemetry.dump(metrics_path)
        print(f"[OK] wrote: {metrics_path}")

    if visualizer is not None:
        if status == 0:
            print("[INFO] Showing final trajectory. Close the window to exit.")
        visualizer.close(block=(status == 0))
    return status


if __name__ == "__main__":
    sys.exit(main())
