from __future__ import annotations

import numpy as np

from camintrinsics.core.geometry import matrix_to_rvec
from camintrinsics.core.models import CameraModel
from camintrinsics.types import FrameFeature, Pose


def board_points(cols: int, rows: int, spacing: float) -> tuple[np.ndarray, np.ndarray]:
    """
    Planar grid target centered on the origin, z = 0.

    Returns (ids (N,), p3d (N,3)); ids run row-major.
    """
    if cols < 2 or rows < 2 or spacing <= 0:
        raise ValueError("board needs cols, rows >= 2 and spacing > 0")
    xs = (np.arange(cols, dtype=np.float64) - 0.5 * (cols - 1)) * float(spacing)
    ys = (np.arange(rows, dtype=np.float64) - 0.5 * (rows - 1)) * float(spacing)
    xx, yy = np.meshgrid(xs, ys)
    p3d = np.stack([xx.reshape(-1), yy.reshape(-1), np.zeros(xx.size)], axis=-1)
    return np.arange(p3d.shape[0], dtype=np.int64), p3d


def look_at_pose(eye: np.ndarray, target: np.ndarray | None = None, down: np.ndarray | None = None) -> Pose:
    """
    Pose (target -> camera) of a camera at `eye` looking at `target`.

    Camera axes: x right, y down (along `down` as far as possible), z forward.
    """
    eye = np.asarray(eye, dtype=np.float64).reshape(3)
    target = np.zeros(3) if target is None else np.asarray(target, dtype=np.float64).reshape(3)
    down = np.array([0.0, 1.0, 0.0]) if down is None else np.asarray(down, dtype=np.float64).reshape(3)

    z = target - eye
    z /= np.linalg.norm(z)
    x = np.cross(down, z)
    nx = float(np.linalg.norm(x))
    if nx < 1e-9:
        raise ValueError("viewing direction is parallel to the down vector")
    x /= nx
    y = np.cross(z, x)
    R = np.stack([x, y, z], axis=0)
    return Pose(rvec=matrix_to_rvec(R), tvec=-R @ eye)


def default_poses(n: int = 12, distance: float = 0.5, tilt: float = 0.45) -> list[Pose]:
    """
    `n` views of a board at the origin from a ring of viewpoints.

    Every view is tilted by roughly `tilt` rad, with the distance and the
    aimed-at point varying from view to view so the board sweeps the image.
    """
    poses: list[Pose] = []
    for k in range(int(n)):
        az = 2.0 * np.pi * k / max(int(n), 1)
        t = tilt * (0.8 + 0.4 * ((k % 3) / 2.0))
        d = distance * (0.85 + 0.3 * ((k % 4) / 3.0))
        eye = d * np.array([np.sin(t) * np.cos(az), np.sin(t) * np.sin(az), -np.cos(t)])
        aim = 0.15 * distance * np.array([np.cos(az + 1.0), np.sin(az + 1.0), 0.0])
        poses.append(look_at_pose(eye, aim))
    return poses


def _in_image(uv: np.ndarray, w: int, h: int) -> np.ndarray:
    return (uv[:, 0] >= 0) & (uv[:, 0] <= (w - 1)) & (uv[:, 1] >= 0) & (uv[:, 1] <= (h - 1))


def generate_frames(
    model: CameraModel,
    poses: list[Pose],
    board: tuple[np.ndarray, np.ndarray],
    noise_std: float = 0.0,
    rng: np.random.Generator | None = None,
    drop_outside: bool = True,
) -> list[FrameFeature | None]:
    """
    Project `board` through `model` for every pose.

    Undefined projections are always dropped; points outside the image too
    when `drop_outside`. A frame with no point left is None.
    """
    rng = rng if rng is not None else np.random.default_rng(0)
    ids, p3d = board
    ids = np.asarray(ids, dtype=np.int64).reshape(-1)
    p3d = np.asarray(p3d, dtype=np.float64).reshape(-1, 3)
    w, h = model.width, model.height

    frames: list[FrameFeature | None] = []
    for k, pose in enumerate(poses):
        uv = model.project(pose.transform(p3d))
        valid = np.all(np.isfinite(uv), axis=1)
        if drop_outside:
            valid &= _in_image(np.nan_to_num(uv, nan=-1.0), w, h)
        if not np.any(valid):
            frames.append(None)
            continue
        uv = uv[valid]
        if noise_std > 0:
            uv = uv + rng.normal(0.0, float(noise_std), size=uv.shape)
        frames.append(FrameFeature.from_arrays(ids[valid], uv, p3d[valid], (w, h), time_ns=k * 33_333_333))
    return frames
