from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from camintrinsics.core import dual
from camintrinsics.core.models.base import CameraModel, ModelKind, normalize_rays

_EPS = 1e-9


def eucm_project(
    fx: Any, fy: Any, cx: Any, cy: Any, alpha: Any, beta: Any, x: Any, y: Any, z: Any
) -> tuple[Any, Any, np.ndarray]:
    """
    Enhanced unified camera model projection (UCM is the beta=1 case):

      d = sqrt(beta (x^2 + y^2) + z^2)
      u = fx x / (alpha d + (1 - alpha) z) + cx
    """
    rho = dual.sqrt(beta * (x * x + y * y) + z * z)
    norm = alpha * rho + (1.0 - alpha) * z
    norm_v = dual.value(norm)
    valid = norm_v > _EPS
    a = float(dual.value(alpha))
    if a > 0.5:
        # Upper part of the ellipsoid only.
        c = (a - 1.0) / (2.0 * a - 1.0)
        with np.errstate(all="ignore"):
            valid &= dual.value(z) / norm_v >= c
    norm = dual.where(valid, norm, 1.0)
    u = fx * x / norm + cx
    v = fy * y / norm + cy
    return u, v, np.asarray(valid, dtype=bool)


def eucm_unproject(
    fx: float, fy: float, cx: float, cy: float, alpha: float, beta: float, uv_px: np.ndarray
) -> np.ndarray:
    uv_px = np.asarray(uv_px, dtype=np.float64).reshape(-1, 2)
    mx = (uv_px[:, 0] - cx) / fx
    my = (uv_px[:, 1] - cy) / fy
    r2 = mx * mx + my * my
    arg = 1.0 - (2.0 * alpha - 1.0) * beta * r2
    valid = np.isfinite(r2) & (arg >= 0.0)
    with np.errstate(all="ignore"):
        mz = (1.0 - beta * alpha * alpha * r2) / (alpha * np.sqrt(np.where(valid, arg, 1.0)) + (1.0 - alpha))
        valid &= np.isfinite(mz)
        return normalize_rays(mx, my, mz, valid)


class EUCM(CameraModel):
    kind = ModelKind.EUCM
    PARAM_NAMES = ("fx", "fy", "cx", "cy", "alpha", "beta")
    DEFAULT_DISTORTION = (0.5, 1.0)
    DISTORTION_BOUNDS = ((4, 1e-6, 1.0), (5, 1e-6, 100.0))

    @classmethod
    def project_generic(cls, params: Sequence[Any], x: Any, y: Any, z: Any) -> tuple[Any, Any, np.ndarray]:
        fx, fy, cx, cy, alpha, beta = params
        return eucm_project(fx, fy, cx, cy, alpha, beta, x, y, z)

    def unproject(self, uv_px: np.ndarray) -> np.ndarray:
        fx, fy, cx, cy, alpha, beta = (float(v) for v in self._params)
        return eucm_unproject(fx, fy, cx, cy, alpha, beta, uv_px)
