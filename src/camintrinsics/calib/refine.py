from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from camintrinsics.calib.pose import estimate_frame_pose
from camintrinsics.core.models import CameraModel
from camintrinsics.errors import InsufficientFrameData
from camintrinsics.optim.factors import ReprojectionFactor
from camintrinsics.optim.problem import PARAMS, BlockId, Problem, SolverOptions, optimize, pose_block
from camintrinsics.types import FrameList, Pose

logger = logging.getLogger(__name__)

FOCAL_BOUNDS = (0.0, 10_000.0)


@dataclass(frozen=True)
class CalibrationResult:
    model: CameraModel
    poses: list[tuple[int, Pose]]  # (frame index, pose), ascending frame index
    diagnostics: dict[str, float] = field(default_factory=dict)


def set_problem_parameter_bound(
    problem: Problem,
    model: CameraModel,
    xy_same_focal: bool,
    block: BlockId = PARAMS,
) -> None:
    """Focal, principal point and distortion bounds on the intrinsic block."""
    shift = 1 if xy_same_focal else 0
    problem.set_variable_bounds(block, 0, *FOCAL_BOUNDS)
    if not xy_same_focal:
        problem.set_variable_bounds(block, 1, *FOCAL_BOUNDS)
    problem.set_variable_bounds(block, 2 - shift, 0.0, float(model.width))
    problem.set_variable_bounds(block, 3 - shift, 0.0, float(model.height))
    for idx, lower, upper in model.distortion_params_bound():
        problem.set_variable_bounds(block, idx - shift, lower, upper)


def set_problem_parameter_disabled(
    problem: Problem,
    model: CameraModel,
    xy_same_focal: bool,
    disabled_distortions: int,
    block: BlockId = PARAMS,
) -> None:
    """Pin the last `disabled_distortions` parameters to exactly zero."""
    n_distortion = len(model.PARAM_NAMES) - 4
    if not 0 <= int(disabled_distortions) <= n_distortion:
        raise ValueError(f"disabled_distortions must be in [0, {n_distortion}] for {model.kind.value}")
    shift = 1 if xy_same_focal else 0
    n_params = len(model.PARAM_NAMES)
    for i in range(int(disabled_distortions)):
        idx = n_params - 1 - shift - i
        logger.debug("disable %s (block index %d)", model.PARAM_NAMES[n_params - 1 - i], idx)
        problem.fix_variable(block, idx, 0.0)


def calib_camera(
    frame_feature_list: FrameList,
    generic_camera: CameraModel,
    xy_same_focal: bool = False,
    disabled_distortions: int = 0,
    fixed_focal: bool = False,
    options: SolverOptions | None = None,
) -> CalibrationResult | None:
    """
    Joint refinement of the intrinsics and every frame's pose.

    Each present frame's pose is seeded by PnP on points undistorted through
    `generic_camera`; frames without enough usable points are left out of the
    problem and of the returned poses. Returns None if the solver finds no
    solution.
    """
    params = generic_camera.params()
    if xy_same_focal:
        params = np.delete(params, 1)
    params_len = int(params.size)

    initial_values: dict[BlockId, np.ndarray] = {PARAMS: params}
    problem = Problem()
    valid_indexes: list[int] = []
    n_points = 0
    for i, frame in enumerate(frame_feature_list):
        if frame is None:
            continue
        try:
            pose0 = estimate_frame_pose(generic_camera, frame)
        except InsufficientFrameData as e:
            logger.info("skip frame %d: %s", i, e)
            continue
        _ids, p2d, p3d = frame.arrays()
        cost = ReprojectionFactor(generic_camera, p3d, p2d, xy_same_focal)
        block = pose_block(i)
        problem.add_residual_block(cost, [(PARAMS, params_len), (block, 6)])
        initial_values[block] = pose0.as_vector()
        valid_indexes.append(i)
        n_points += int(p3d.shape[0])

    if not valid_indexes:
        logger.warning("calibration: no frame with enough points to seed a pose")
        return None
    logger.debug("init params %s", initial_values[PARAMS])

    set_problem_parameter_bound(problem, generic_camera, xy_same_focal)
    set_problem_parameter_disabled(problem, generic_camera, xy_same_focal, disabled_distortions)

    result = optimize(problem, initial_values, options)
    if result is None:
        logger.warning(
            "calibration: no solution (model=%s, frames=%d, points=%d)",
            generic_camera.kind.value,
            len(valid_indexes),
            n_points,
        )
        return None

    if fixed_focal:
        logger.info("set focal and optimize again")
        problem.fix_variable(PARAMS, 0)
        result[PARAMS][0] = generic_camera.params()[0]
        second = optimize(problem, result, options)
        # The second pass is expected to converge when the first did.
        if second is not None:
            result = second

    new_params = np.asarray(result[PARAMS], dtype=np.float64).copy()
    if xy_same_focal:
        new_params = np.insert(new_params, 1, new_params[0])
    calibrated = generic_camera.with_params(new_params)
    logger.info("params %s", calibrated)

    poses = [(i, Pose.from_vector(result[pose_block(i)])) for i in valid_indexes]
    diag = {"n_frames": float(len(valid_indexes)), "n_points": float(n_points)}
    return CalibrationResult(model=calibrated, poses=poses, diagnostics=diag)
