from __future__ import annotations

from typing import Any

import numpy as np


def brown_distort(k1: Any, k2: Any, p1: Any, p2: Any, k3: Any, x: Any, y: Any) -> tuple[Any, Any]:
    """
    Brown-Conrady distortion on normalized camera coordinates (x=X/Z, y=Y/Z).

    Parameters follow common OpenCV naming:
      radial: k1, k2, k3
      tangential: p1, p2

    Only arithmetic operators are used so coefficients and coordinates may be
    `Dual` numbers.
    """
    r2 = x * x + y * y
    r4 = r2 * r2
    r6 = r4 * r2
    radial = 1.0 + k1 * r2 + k2 * r4 + k3 * r6
    x2 = x * x
    y2 = y * y
    xy = x * y
    x_tan = 2.0 * p1 * xy + p2 * (r2 + 2.0 * x2)
    y_tan = p1 * (r2 + 2.0 * y2) + 2.0 * p2 * xy
    return x * radial + x_tan, y * radial + y_tan


def brown_undistort(
    k1: float,
    k2: float,
    p1: float,
    p2: float,
    k3: float,
    xd: np.ndarray,
    yd: np.ndarray,
    iterations: int = 50,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Fixed-point inverse of `brown_distort` for small/moderate distortion.
    """
    xd = np.asarray(xd, dtype=np.float64)
    yd = np.asarray(yd, dtype=np.float64)
    x = xd.copy()
    y = yd.copy()
    for _ in range(int(iterations)):
        x_est, y_est = brown_distort(k1, k2, p1, p2, k3, x, y)
        x += xd - x_est
        y += yd - y_est
    return x, y
