from __future__ import annotations

from typing import Any, Sequence

import numpy as np

from camintrinsics.core import dual

_SMALL_ANGLE2 = 1e-12


def rotate_points(rvec: Sequence[Any], x: Any, y: Any, z: Any) -> tuple[Any, Any, Any]:
    """
    Rodrigues rotation of points (x,y,z) by a rotation vector, generic over the
    numeric type (float/ndarray or `Dual`).

      R p = cos(t) p + sin(t)/t (r x p) + (1 - cos(t))/t^2 (r . p) r
    """
    rx, ry, rz = rvec
    theta2 = rx * rx + ry * ry + rz * rz
    small = dual.value(theta2) < _SMALL_ANGLE2
    # Keep sqrt away from 0: the small-angle branch replaces these coefficients.
    theta2_safe = dual.where(small, 1.0, theta2)
    theta = dual.sqrt(theta2_safe)
    c = dual.cos(theta)
    k_sin = dual.where(small, 1.0, dual.sin(theta) / theta)
    k_cos = dual.where(small, 0.5, (1.0 - c) / theta2_safe)
    c = dual.where(small, 1.0, c)

    cross_x = ry * z - rz * y
    cross_y = rz * x - rx * z
    cross_z = rx * y - ry * x
    r_dot_p = rx * x + ry * y + rz * z

    xr = c * x + k_sin * cross_x + k_cos * r_dot_p * rx
    yr = c * y + k_sin * cross_y + k_cos * r_dot_p * ry
    zr = c * z + k_sin * cross_z + k_cos * r_dot_p * rz
    return xr, yr, zr


def transform_points(pose_vec: Sequence[Any], P: np.ndarray) -> tuple[Any, Any, Any]:
    """
    Apply a pose packed as [rx, ry, rz, tx, ty, tz] (target -> camera) to P (N,3).
    """
    P = np.asarray(P, dtype=np.float64).reshape(-1, 3)
    xr, yr, zr = rotate_points(pose_vec[:3], P[:, 0], P[:, 1], P[:, 2])
    return xr + pose_vec[3], yr + pose_vec[4], zr + pose_vec[5]


def rvec_to_matrix(rvec: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as R  # type: ignore

    return R.from_rotvec(np.asarray(rvec, dtype=np.float64).reshape(3)).as_matrix()


def matrix_to_rvec(Rm: np.ndarray) -> np.ndarray:
    from scipy.spatial.transform import Rotation as R  # type: ignore

    return R.from_matrix(np.asarray(Rm, dtype=np.float64).reshape(3, 3)).as_rotvec()
