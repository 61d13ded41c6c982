from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from camintrinsics.calib.convert import DEFAULT_SAMPLES_PER_SIDE, convert_model
from camintrinsics.calib.refine import calib_camera
from camintrinsics.calib.seed import try_init_camera
from camintrinsics.calib.selection import find_best_two_frames
from camintrinsics.calib.validate import ReprojectionReport, ValidationObserver, validation
from camintrinsics.core.models import CameraModel, ModelKind, model_class
from camintrinsics.errors import InitializationFailure, SolverNonConvergence
from camintrinsics.optim.problem import SolverOptions
from camintrinsics.types import FrameList, Pose, image_size

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationSettings:
    model: ModelKind = ModelKind.EUCM
    disabled_distortions: int = 0
    one_focal: bool = False
    fixed_focal: float | None = None
    max_init_attempts: int = 10
    seed: int = 0
    samples_per_side: int = DEFAULT_SAMPLES_PER_SIDE
    solver: SolverOptions = field(default_factory=SolverOptions)


@dataclass(frozen=True)
class CalibrationRun:
    model: CameraModel
    initial_model: CameraModel  # two-frame UCM seed
    poses: list[tuple[int, Pose]]
    report: ReprojectionReport
    init_pair: tuple[int, int]


def _points_in(frames: FrameList) -> int:
    return int(sum(len(f) for f in frames if f is not None))


def _initial_pairs(frames: FrameList, settings: CalibrationSettings):
    """Best pair first, then random distinct pairs of detected frames."""
    yield find_best_two_frames(frames)
    present = [i for i, f in enumerate(frames) if f is not None and len(f) > 0]
    if len(present) < 2:
        return
    rng = np.random.default_rng(settings.seed)
    for _ in range(max(int(settings.max_init_attempts) - 1, 0)):
        a, b = rng.choice(len(present), size=2, replace=False)
        yield present[int(a)], present[int(b)]


def initialize_camera(frames: FrameList, settings: CalibrationSettings) -> tuple[CameraModel, tuple[int, int]]:
    """Two-frame UCM seed, retrying on other frame pairs until one succeeds."""
    for attempt, (i0, i1) in enumerate(_initial_pairs(frames, settings)):
        logger.info("init attempt %d with frames %d, %d", attempt, i0, i1)
        model = try_init_camera(frames[i0], frames[i1], settings.fixed_focal, settings.solver)
        if model is not None:
            return model, (i0, i1)
    raise InitializationFailure(f"no frame pair produced an initial camera ({settings.max_init_attempts} attempts)")


def calibrate(
    frames: FrameList,
    settings: CalibrationSettings | None = None,
    observer: ValidationObserver | None = None,
) -> CalibrationRun:
    """
    Full intrinsic calibration of one camera from detected frames.

    selection -> homography bootstrap -> UCM seed -> conversion to the
    requested family -> joint refinement over every frame -> validation.
    """
    settings = settings or CalibrationSettings()
    w, h = image_size(frames)
    logger.info("calibrating %s on %d frames (%dx%d)", ModelKind(settings.model).value, len(frames), w, h)

    initial_model, pair = initialize_camera(frames, settings)

    kind = ModelKind(settings.model)
    if kind is ModelKind.UCM:
        start = initial_model.copy()
    else:
        cam = initial_model.camera_params()
        target = model_class(kind).from_camera_params(*cam, w, h)
        start = convert_model(initial_model, target, 0, settings.samples_per_side, settings.solver)
        if start is None:
            raise SolverNonConvergence(
                f"stage=convert ucm->{kind.value}: no solution (frames={len(frames)}, points={_points_in(frames)})"
            )
    if settings.fixed_focal is not None:
        params = start.params()
        params[0] = float(settings.fixed_focal)
        start.set_params(params)

    result = calib_camera(
        frames,
        start,
        settings.one_focal,
        settings.disabled_distortions,
        settings.fixed_focal is not None,
        settings.solver,
    )
    if result is None:
        raise SolverNonConvergence(
            f"stage=calib_camera {kind.value}: no solution (frames={len(frames)}, points={_points_in(frames)})"
        )

    report = validation(result.model, result.poses, frames, observer)
    return CalibrationRun(
        model=result.model,
        initial_model=initial_model,
        poses=result.poses,
        report=report,
        init_pair=pair,
    )
