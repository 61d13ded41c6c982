from __future__ import annotations

import logging

import numpy as np

from camintrinsics.calib.homography import bootstrap_homography
from camintrinsics.calib.refine import calib_camera
from camintrinsics.core.models import UCM, CameraModel
from camintrinsics.errors import InitializationFailure
from camintrinsics.optim.factors import UCMInitFocalAlphaFactor
from camintrinsics.optim.problem import PARAMS, BlockId, Problem, SolverOptions, optimize, pose_block
from camintrinsics.types import FrameFeature, Pose

logger = logging.getLogger(__name__)

ALPHA_BOUNDS = (1e-6, 1.0)


def init_ucm(
    frame_feature0: FrameFeature,
    frame_feature1: FrameFeature,
    pose0: Pose,
    pose1: Pose,
    init_f: float,
    init_alpha: float,
    fixed_focal: bool = False,
    options: SolverOptions | None = None,
) -> CameraModel:
    """
    Two-frame UCM seed.

    1. Solve (focal, alpha) + both poses with fx = fy and the principal point
       at the image center.
    2. Refine the resulting 5-parameter UCM on the same two frames with
       `calib_camera` (shared focal).

    Raises InitializationFailure when either solve yields no solution.
    """
    w, h = frame_feature0.img_w_h
    half_w = 0.5 * float(w)
    half_h = 0.5 * float(h)
    ucm_init_model = UCM([init_f, init_f, half_w, half_h, init_alpha], w, h)

    problem = Problem()
    initial_values: dict[BlockId, np.ndarray] = {
        PARAMS: np.array([init_f, np.clip(init_alpha, *ALPHA_BOUNDS)], dtype=np.float64)
    }
    for k, (frame, pose) in enumerate(((frame_feature0, pose0), (frame_feature1, pose1))):
        _ids, p2d, p3d = frame.arrays()
        cost = UCMInitFocalAlphaFactor(ucm_init_model, p3d, p2d)
        problem.add_residual_block(cost, [(PARAMS, 2), (pose_block(k), 6)])
        initial_values[pose_block(k)] = pose.as_vector()

    if fixed_focal:
        problem.fix_variable(PARAMS, 0)
    else:
        problem.set_variable_bounds(PARAMS, 0, init_f / 3.0, init_f * 3.0)
    problem.set_variable_bounds(PARAMS, 1, *ALPHA_BOUNDS)
    logger.debug("init ucm: focal %.6g alpha %.6g", init_f, init_alpha)

    result = optimize(problem, initial_values, options)
    if result is None:
        raise InitializationFailure("two-parameter UCM seed did not converge")

    focal, alpha = (float(v) for v in result[PARAMS])
    logger.info("ucm seed: focal %.6g alpha %.6g", focal, alpha)
    ucm_camera = UCM([focal, focal, half_w, half_h, alpha], w, h)

    refined = calib_camera([frame_feature0, frame_feature1], ucm_camera, True, 0, fixed_focal, options)
    if refined is None:
        raise InitializationFailure("two-frame UCM refinement did not converge")
    return refined.model


def try_init_camera(
    frame_feature0: FrameFeature,
    frame_feature1: FrameFeature,
    fixed_focal: float | None = None,
    options: SolverOptions | None = None,
) -> CameraModel | None:
    """
    Bootstrap a UCM from two frames. Returns None on a recoverable
    initialization failure (the caller may retry with another pair).
    """
    try:
        boot = bootstrap_homography(frame_feature0, frame_feature1, fixed_focal)
        logger.info("init f %.6g", boot.focal)
        initial_camera = init_ucm(
            frame_feature0,
            frame_feature1,
            boot.poses[0],
            boot.poses[1],
            boot.focal,
            abs(boot.lambda_),
            fixed_focal is not None,
            options,
        )
    except InitializationFailure as e:
        logger.warning("initialization failed, try again: %s", e)
        return None

    logger.info("initialized %s", initial_camera)
    if initial_camera.params()[0] == 0.0:
        logger.warning("failed to initialize UCM, try again")
        return None
    return initial_camera
