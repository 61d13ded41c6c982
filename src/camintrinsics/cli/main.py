from __future__ import annotations

import argparse
import logging
from pathlib import Path

import numpy as np

from camintrinsics.api.features_io import load_frame_features, save_frame_features
from camintrinsics.api.model_io import load_model, save_model
from camintrinsics.calib.convert import DEFAULT_SAMPLES_PER_SIDE, convert_model
from camintrinsics.calib.pipeline import CalibrationSettings, calibrate
from camintrinsics.core.models import ModelKind, model_class, model_from_kind
from camintrinsics.errors import SolverNonConvergence
from camintrinsics.sim.synthetic import board_points, default_poses, generate_frames

MODEL_CHOICES = [k.value for k in ModelKind]


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="camintrinsics")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    cal = sub.add_parser("calibrate", help="Calibrate camera intrinsics from detected target features (JSON).")
    cal.add_argument("features", type=Path)
    cal.add_argument("--model", type=str, default="eucm", choices=MODEL_CHOICES)
    cal.add_argument("--one-focal", action="store_true", help="Estimate a single focal (fx = fy).")
    cal.add_argument(
        "--disabled-distortions",
        type=int,
        default=0,
        help="Pin the last N distortion parameters to 0.",
    )
    cal.add_argument("--fixed-focal", type=float, default=None, help="Known focal length (px), kept fixed.")
    cal.add_argument("--attempts", type=int, default=10, help="Maximum initialization attempts.")
    cal.add_argument("--seed", type=int, default=0, help="Seed for the random frame pairs of retries.")
    cal.add_argument("--samples-per-side", type=int, default=DEFAULT_SAMPLES_PER_SIDE)
    cal.add_argument("--out", type=Path, required=True)

    conv = sub.add_parser("convert-model", help="Fit another camera model family to an existing model.")
    conv.add_argument("source", type=Path)
    conv.add_argument("--model", type=str, required=True, choices=MODEL_CHOICES)
    conv.add_argument("--disabled-distortions", type=int, default=0)
    conv.add_argument("--samples-per-side", type=int, default=DEFAULT_SAMPLES_PER_SIDE)
    conv.add_argument("--out", type=Path, required=True)

    gen = sub.add_parser("generate-synthetic", help="Generate synthetic target detections for a known model.")
    gen.add_argument("--out", type=Path, required=True)
    gen.add_argument("--model", type=str, required=True, choices=MODEL_CHOICES)
    gen.add_argument("--params", type=float, nargs="+", required=True, help="Full parameter vector (fx fy cx cy ...).")
    gen.add_argument("--width", type=int, default=640)
    gen.add_argument("--height", type=int, default=480)
    gen.add_argument("--frames", type=int, default=12)
    gen.add_argument("--board-cols", type=int, default=9)
    gen.add_argument("--board-rows", type=int, default=7)
    gen.add_argument("--board-spacing", type=float, default=0.04, help="Square size (target units).")
    gen.add_argument("--distance", type=float, default=0.5, help="Nominal camera-to-board distance.")
    gen.add_argument("--noise-std", type=float, default=0.0, help="Pixel noise (px).")
    gen.add_argument("--seed", type=int, default=0)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.cmd == "calibrate":
        frames = load_frame_features(args.features)
        settings = CalibrationSettings(
            model=ModelKind(args.model),
            disabled_distortions=args.disabled_distortions,
            one_focal=args.one_focal,
            fixed_focal=args.fixed_focal,
            max_init_attempts=args.attempts,
            seed=args.seed,
            samples_per_side=args.samples_per_side,
        )
        run = calibrate(frames, settings)
        save_model(args.out, run.model)
        print(f"median reprojection error: {run.report.median:.4f} px (mean 99%: {run.report.mean_99:.4f} px)")
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "convert-model":
        source = load_model(args.source)
        target_cls = model_class(args.model)
        target = target_cls.from_camera_params(*source.camera_params(), source.width, source.height)
        converted = convert_model(source, target, args.disabled_distortions, args.samples_per_side)
        if converted is None:
            raise SolverNonConvergence(f"stage=convert {source.kind.value}->{args.model}: no solution")
        save_model(args.out, converted)
        print(f"Wrote {args.out}")
        return 0

    if args.cmd == "generate-synthetic":
        model = model_from_kind(args.model, args.params, args.width, args.height)
        board = board_points(args.board_cols, args.board_rows, args.board_spacing)
        poses = default_poses(args.frames, distance=args.distance)
        frames = generate_frames(model, poses, board, args.noise_std, np.random.default_rng(args.seed))
        save_frame_features(args.out, frames)
        print(f"Wrote {args.out}")
        return 0

    raise AssertionError(f"Unhandled cmd: {args.cmd}")
