from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from camintrinsics.core import dual
from camintrinsics.core.distortion import brown_distort, brown_undistort
from camintrinsics.core.models.base import CameraModel, ModelKind, normalize_rays

_Z_EPS = 1e-9


class OpenCV5(CameraModel):
    """Pinhole + Brown-Conrady distortion (fx, fy, cx, cy, k1, k2, p1, p2, k3)."""

    kind = ModelKind.OPENCV5
    PARAM_NAMES = ("fx", "fy", "cx", "cy", "k1", "k2", "p1", "p2", "k3")
    DEFAULT_DISTORTION = (0.0, 0.0, 0.0, 0.0, 0.0)
    DISTORTION_BOUNDS = ((4, -2.0, 2.0), (5, -2.0, 2.0), (6, -0.5, 0.5), (7, -0.5, 0.5), (8, -2.0, 2.0))

    @classmethod
    def project_generic(cls, params: Sequence[Any], x: Any, y: Any, z: Any) -> tuple[Any, Any, np.ndarray]:
        fx, fy, cx, cy, k1, k2, p1, p2, k3 = params
        z_v = dual.value(z)
        valid = np.asarray(z_v > _Z_EPS, dtype=bool)
        z_safe = dual.where(valid, z, 1.0)
        xd, yd = brown_distort(k1, k2, p1, p2, k3, x / z_safe, y / z_safe)
        return fx * xd + cx, fy * yd + cy, valid

    def unproject(self, uv_px: np.ndarray) -> np.ndarray:
        fx, fy, cx, cy, k1, k2, p1, p2, k3 = (float(v) for v in self._params)
        uv_px = np.asarray(uv_px, dtype=np.float64).reshape(-1, 2)
        xd = (uv_px[:, 0] - cx) / fx
        yd = (uv_px[:, 1] - cy) / fy
        with np.errstate(all="ignore"):
            x, y = brown_undistort(k1, k2, p1, p2, k3, xd, yd)
            xc, yc = brown_distort(k1, k2, p1, p2, k3, x, y)
            # Fixed-point iteration may not converge far from the center.
            valid = np.isfinite(x) & np.isfinite(y) & (np.hypot(xc - xd, yc - yd) < 1e-9)
            return normalize_rays(x, y, np.ones_like(x), valid)
