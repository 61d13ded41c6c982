from __future__ import annotations

import numpy as np

from camintrinsics.core.models import CameraModel
from camintrinsics.errors import InsufficientFrameData
from camintrinsics.types import FrameFeature, Pose

MIN_POSE_POINTS = 4
_MIN_RAY_Z = 1e-6


def undistorted_points(model: CameraModel, p2d: np.ndarray, p3d: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    Unproject pixels through `model` onto the z=1 plane.

    Returns (p3d kept (M,3), normalized points (M,2)); rays the model cannot
    unproject or that point backwards are dropped.
    """
    rays = model.unproject(p2d)
    keep = np.all(np.isfinite(rays), axis=1)
    keep[keep] = rays[keep, 2] > _MIN_RAY_Z
    rays = rays[keep]
    return np.asarray(p3d, dtype=np.float64).reshape(-1, 3)[keep], rays[:, :2] / rays[:, 2:3]


def solve_pnp(p3d: np.ndarray, xy_norm: np.ndarray) -> Pose:
    """Absolute pose from 3D points and normalized (undistorted) image points."""
    import cv2  # type: ignore

    p3d = np.ascontiguousarray(np.asarray(p3d, dtype=np.float64).reshape(-1, 1, 3))
    xy = np.ascontiguousarray(np.asarray(xy_norm, dtype=np.float64).reshape(-1, 1, 2))
    if p3d.shape[0] < MIN_POSE_POINTS:
        raise InsufficientFrameData(f"need >= {MIN_POSE_POINTS} points for PnP, got {p3d.shape[0]}")
    try:
        ok, rvec, tvec = cv2.solvePnP(p3d, xy, np.eye(3), None, flags=cv2.SOLVEPNP_SQPNP)
    except cv2.error as e:
        raise InsufficientFrameData(f"PnP failed: {e}") from e
    rvec = np.asarray(rvec, dtype=np.float64).reshape(3)
    tvec = np.asarray(tvec, dtype=np.float64).reshape(3)
    if not ok or not (np.all(np.isfinite(rvec)) and np.all(np.isfinite(tvec))):
        raise InsufficientFrameData("PnP did not return a pose")
    return Pose(rvec=rvec, tvec=tvec)


def estimate_frame_pose(model: CameraModel, frame: FrameFeature) -> Pose:
    """Seed one frame's pose: undistort through `model`, then PnP."""
    _ids, p2d, p3d = frame.arrays()
    p3d_kept, xy = undistorted_points(model, p2d, p3d)
    if p3d_kept.shape[0] < MIN_POSE_POINTS:
        raise InsufficientFrameData(
            f"{p3d_kept.shape[0]} usable undistorted points (of {p3d.shape[0]}), need >= {MIN_POSE_POINTS}"
        )
    return solve_pnp(p3d_kept, xy)
