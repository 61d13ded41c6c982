from __future__ import annotations

import logging

import numpy as np

from camintrinsics.calib.refine import set_problem_parameter_bound, set_problem_parameter_disabled
from camintrinsics.core.models import CameraModel
from camintrinsics.errors import PreconditionViolation
from camintrinsics.optim.factors import ModelConvertFactor
from camintrinsics.optim.problem import PARAMS, Problem, SolverOptions, optimize

logger = logging.getLogger(__name__)

DEFAULT_SAMPLES_PER_SIDE = 30


def convert_model(
    source: CameraModel,
    target: CameraModel,
    disabled_distortions: int = 0,
    samples_per_side: int = DEFAULT_SAMPLES_PER_SIDE,
    options: SolverOptions | None = None,
) -> CameraModel | None:
    """
    Fit `target`'s parameters so it reproduces `source`'s projection.

    Rays are sampled by unprojecting a regular pixel grid through `source`
    (edge margin max(w, h) // 100, step max(w, h) / samples_per_side).
    `target` starts from `source`'s (fx, fy, cx, cy) and its own distortion
    terms; on success its parameters are replaced in place and it is
    returned. Returns None (target untouched) if the solver finds no solution.
    """
    if source.width != target.width or source.height != target.height:
        raise PreconditionViolation(
            f"image size mismatch: source {source.width}x{source.height}, target {target.width}x{target.height}"
        )
    if int(samples_per_side) <= 0:
        raise PreconditionViolation("samples_per_side must be > 0")

    long_side = max(source.width, source.height)
    edge_pixels = long_side // 100
    steps = long_side / float(samples_per_side)

    params = target.params()
    params[:4] = source.camera_params()

    cost = ModelConvertFactor(source, target, edge_pixels, steps)
    if cost.num_residuals == 0:
        logger.warning("convert %s -> %s: no sample ray", source.kind.value, target.kind.value)
        return None

    problem = Problem()
    problem.add_residual_block(cost, [(PARAMS, params.size)])
    set_problem_parameter_bound(problem, target, False)
    set_problem_parameter_disabled(problem, target, False, disabled_distortions)
    logger.debug(
        "convert %s -> %s over %d rays, init %s",
        source.kind.value,
        target.kind.value,
        cost.num_residuals // 2,
        params,
    )

    result = optimize(problem, {PARAMS: params}, options)
    if result is None:
        logger.warning(
            "convert %s -> %s: no solution (%d samples)",
            source.kind.value,
            target.kind.value,
            cost.num_residuals // 2,
        )
        return None

    target.set_params(np.asarray(result[PARAMS], dtype=np.float64))
    logger.info("converted %s", target)
    return target
