from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from camintrinsics.core import dual
from camintrinsics.core.models.base import CameraModel, ModelKind, normalize_rays

_R2_EPS = 1e-18


def _theta_poly(theta: Any, k1: Any, k2: Any, k3: Any, k4: Any) -> Any:
    t2 = theta * theta
    return theta * (1.0 + t2 * (k1 + t2 * (k2 + t2 * (k3 + t2 * k4))))


class KannalaBrandt4(CameraModel):
    """
    Kannala-Brandt fisheye model with four radial terms:

      theta = atan2(r, z),  d(theta) = theta (1 + k1 theta^2 + ... + k4 theta^8)
      u = fx d(theta) x / r + cx
    """

    kind = ModelKind.KB4
    PARAM_NAMES = ("fx", "fy", "cx", "cy", "k1", "k2", "k3", "k4")
    DEFAULT_DISTORTION = (0.0, 0.0, 0.0, 0.0)
    DISTORTION_BOUNDS = ((4, -1.0, 1.0), (5, -1.0, 1.0), (6, -1.0, 1.0), (7, -1.0, 1.0))

    @classmethod
    def project_generic(cls, params: Sequence[Any], x: Any, y: Any, z: Any) -> tuple[Any, Any, np.ndarray]:
        fx, fy, cx, cy, k1, k2, k3, k4 = params
        r2 = x * x + y * y
        r2_v = dual.value(r2)
        z_v = dual.value(z)
        on_axis = r2_v < _R2_EPS
        valid = np.asarray((~on_axis) | (z_v > 0.0), dtype=bool)

        r2_safe = dual.where(on_axis, 1.0, r2)
        r = dual.sqrt(r2_safe)
        theta = dual.arctan2(r, z)
        d = _theta_poly(theta, k1, k2, k3, k4)
        # On the optical axis d/r -> 1/z.
        z_safe = dual.where(z_v > 0.0, z, 1.0)
        scale = dual.where(on_axis, 1.0 / z_safe, d / r)
        u = fx * x * scale + cx
        v = fy * y * scale + cy
        return u, v, valid

    def unproject(self, uv_px: np.ndarray, iterations: int = 20) -> np.ndarray:
        fx, fy, cx, cy, k1, k2, k3, k4 = (float(v) for v in self._params)
        uv_px = np.asarray(uv_px, dtype=np.float64).reshape(-1, 2)
        mx = (uv_px[:, 0] - cx) / fx
        my = (uv_px[:, 1] - cy) / fy
        ru = np.sqrt(mx * mx + my * my)

        # Newton on d(theta) = ru.
        theta = ru.copy()
        for _ in range(int(iterations)):
            t2 = theta * theta
            f = _theta_poly(theta, k1, k2, k3, k4) - ru
            df = 1.0 + t2 * (3.0 * k1 + t2 * (5.0 * k2 + t2 * (7.0 * k3 + t2 * 9.0 * k4)))
            with np.errstate(all="ignore"):
                theta = theta - f / df
        with np.errstate(all="ignore"):
            valid = (
                np.isfinite(theta)
                & (theta >= 0.0)
                & (theta < np.pi)
                & (np.abs(_theta_poly(theta, k1, k2, k3, k4) - ru) < 1e-9)
            )
            on_axis = ru < 1e-12
            s = np.where(on_axis, 1.0, np.sin(theta) / np.where(on_axis, 1.0, ru))
            x = np.where(on_axis, mx, mx * s)
            y = np.where(on_axis, my, my * s)
            z = np.where(on_axis, 1.0, np.cos(theta))
            return normalize_rays(x, y, z, valid)
