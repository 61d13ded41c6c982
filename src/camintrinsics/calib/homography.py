from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from camintrinsics.core.geometry import matrix_to_rvec
from camintrinsics.errors import InitializationFailure, PreconditionViolation
from camintrinsics.types import FrameFeature, Pose

logger = logging.getLogger(__name__)

MIN_HOMOGRAPHY_POINTS = 6
_LAMBDA_RANGE = (-2.0, 2.0)
_LAMBDA_GRID = 81


@dataclass(frozen=True)
class HomographyBootstrap:
    lambda_: float
    homographies: tuple[np.ndarray, np.ndarray]  # target plane -> undistorted normalized image
    unit_plane_focal: float
    focal: float  # pixels
    poses: tuple[Pose, Pose]


def half_image_size(img_w_h: tuple[int, int]) -> float:
    return 0.5 * float(max(img_w_h[0], img_w_h[1]))


def normalize_pixels(uv_px: np.ndarray, img_w_h: tuple[int, int]) -> np.ndarray:
    """Pixels -> image-center origin, scaled by half of the larger image side."""
    uv_px = np.asarray(uv_px, dtype=np.float64).reshape(-1, 2)
    w, h = img_w_h
    s = half_image_size(img_w_h)
    return np.stack([(uv_px[:, 0] - 0.5 * w) / s, (uv_px[:, 1] - 0.5 * h) / s], axis=-1)


def _plane_coords(frame: FrameFeature) -> tuple[np.ndarray, np.ndarray, float]:
    """(target xy (N,2), pixels (N,2), target plane z)."""
    _ids, p2d, p3d = frame.arrays()
    if p3d.shape[0] < MIN_HOMOGRAPHY_POINTS:
        raise InitializationFailure(f"need >= {MIN_HOMOGRAPHY_POINTS} points, frame has {p3d.shape[0]}")
    z = p3d[:, 2]
    extent = float(np.max(np.ptp(p3d[:, :2], axis=0)))
    if extent <= 0.0 or float(np.ptp(z)) > 1e-6 * max(extent, 1.0):
        raise InitializationFailure("target points must lie on a plane z = const")
    return p3d[:, :2], p2d, float(np.mean(z))


def _hartley(xy: np.ndarray) -> np.ndarray:
    """Similarity moving points to zero mean and sqrt(2) mean radius."""
    c = xy.mean(axis=0)
    d = float(np.mean(np.linalg.norm(xy - c, axis=1)))
    s = np.sqrt(2.0) / d if d > 0 else 1.0
    return np.array([[s, 0.0, -s * c[0]], [0.0, s, -s * c[1]], [0.0, 0.0, 1.0]], dtype=np.float64)


def _division_dlt(plane_xy: np.ndarray, xd: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """
    DLT for x_u ~ H X with x_u = (x, y, 1 + lambda r^2): returns (A0, A1),
    the system being (A0 + lambda A1) h = 0 with h the row-major H.
    """
    n = plane_xy.shape[0]
    X = plane_xy[:, 0]
    Y = plane_xy[:, 1]
    x = xd[:, 0]
    y = xd[:, 1]
    r2 = x * x + y * y
    one = np.ones(n)
    zero = np.zeros(n)

    A0 = np.zeros((2 * n, 9), dtype=np.float64)
    A1 = np.zeros((2 * n, 9), dtype=np.float64)
    # y q3 - w q2 = 0
    A0[0::2] = np.stack([zero, zero, zero, -X, -Y, -one, y * X, y * Y, y], axis=1)
    A1[0::2] = np.stack([zero, zero, zero, -r2 * X, -r2 * Y, -r2, zero, zero, zero], axis=1)
    # w q1 - x q3 = 0
    A0[1::2] = np.stack([X, Y, one, zero, zero, zero, -x * X, -x * Y, -x], axis=1)
    A1[1::2] = np.stack([r2 * X, r2 * Y, r2, zero, zero, zero, zero, zero, zero], axis=1)
    return A0, A1


def _null_vector(A: np.ndarray) -> tuple[np.ndarray, float]:
    _u, s, vt = np.linalg.svd(A, full_matrices=False)
    return vt[-1], float(s[-1])


class _DivisionSystem:
    def __init__(self, frame: FrameFeature) -> None:
        plane_xy, p2d, self.plane_z = _plane_coords(frame)
        self.T = _hartley(plane_xy)
        plane_n = (self.T[:2, :2] @ plane_xy.T).T + self.T[:2, 2]
        self.xd = normalize_pixels(p2d, frame.img_w_h)
        self.plane_xy = plane_xy
        self.A0, self.A1 = _division_dlt(plane_n, self.xd)

    def sigma(self, lam: float) -> float:
        return _null_vector(self.A0 + lam * self.A1)[1]

    def homography(self, lam: float) -> np.ndarray:
        h, _s = _null_vector(self.A0 + lam * self.A1)
        H = h.reshape(3, 3) @ self.T
        return H / np.linalg.norm(H)


def radial_distortion_homography(frame0: FrameFeature, frame1: FrameFeature) -> tuple[float, np.ndarray]:
    """
    Jointly estimate a one-parameter division-model distortion (shared by both
    frames) and the frame-0 plane -> normalized-image homography.

    lambda minimizes the sum of the squared smallest singular values of both
    frames' DLT systems.
    """
    from scipy.optimize import minimize_scalar  # type: ignore

    systems = [_DivisionSystem(frame0), _DivisionSystem(frame1)]

    def cost(lam: float) -> float:
        return float(sum(s.sigma(lam) ** 2 for s in systems))

    grid = np.linspace(_LAMBDA_RANGE[0], _LAMBDA_RANGE[1], _LAMBDA_GRID)
    costs = np.asarray([cost(float(lam)) for lam in grid])
    k = int(np.argmin(costs))
    step = float(grid[1] - grid[0])
    lo = max(_LAMBDA_RANGE[0], float(grid[k]) - step)
    hi = min(_LAMBDA_RANGE[1], float(grid[k]) + step)
    sol = minimize_scalar(cost, bounds=(lo, hi), method="bounded", options={"xatol": 1e-10})
    lam = float(sol.x) if np.isfinite(sol.fun) and sol.fun <= costs[k] else float(grid[k])
    logger.debug("division lambda %.6g (cost %.3g)", lam, cost(lam))
    return lam, systems[0].homography(lam)


def plane_homography(frame: FrameFeature, lambda_: float) -> np.ndarray:
    return _DivisionSystem(frame).homography(float(lambda_))


def homography_to_focal(H: np.ndarray, *more: np.ndarray) -> float | None:
    """
    Unit-plane focal f from plane -> image homographies (principal point at the
    origin, square pixels, no skew). With w = 1/f^2, each H = [h1 h2 h3] gives

      w (h11 h12 + h21 h22) + h31 h32 = 0
      w (h11^2 + h21^2 - h12^2 - h22^2) + (h31^2 - h32^2) = 0

    solved for w in the least-squares sense. None if w is not positive.
    """
    rows: list[tuple[float, float]] = []
    for Hi in (H, *more):
        Hi = np.asarray(Hi, dtype=np.float64).reshape(3, 3)
        Hi = Hi / np.linalg.norm(Hi)
        h1 = Hi[:, 0]
        h2 = Hi[:, 1]
        rows.append((h1[0] * h2[0] + h1[1] * h2[1], h1[2] * h2[2]))
        rows.append((h1[0] ** 2 + h1[1] ** 2 - h2[0] ** 2 - h2[1] ** 2, h1[2] ** 2 - h2[2] ** 2))
    c = np.asarray([r[0] for r in rows])
    d = np.asarray([r[1] for r in rows])
    denom = float(c @ c)
    if denom < 1e-30:
        return None
    w = -float(c @ d) / denom
    if not np.isfinite(w) or w <= 1e-12:
        return None
    return float(1.0 / np.sqrt(w))


def _decompose_plane_homography(H: np.ndarray, plane_z: float) -> Pose:
    """Zhang decomposition of H ~ [r1 r2 t] (camera-normalized image)."""
    h1 = H[:, 0]
    h2 = H[:, 1]
    h3 = H[:, 2]
    scale = 2.0 / (np.linalg.norm(h1) + np.linalg.norm(h2))
    r1 = scale * h1
    r2 = scale * h2
    t = scale * h3
    if t[2] < 0:
        r1, r2, t = -r1, -r2, -t
    r3 = np.cross(r1, r2)
    U, _s, Vt = np.linalg.svd(np.stack([r1, r2, r3], axis=1))
    Rm = U @ Vt
    if np.linalg.det(Rm) < 0:
        Rm = U @ np.diag([1.0, 1.0, -1.0]) @ Vt
    # Homography plane is z = plane_z in target coordinates.
    t = t - plane_z * Rm[:, 2]
    return Pose(rvec=matrix_to_rvec(Rm), tvec=t)


def init_pose(frame: FrameFeature, lambda_: float, unit_plane_focal: float) -> Pose:
    """Initial target pose for one frame from its undistorted plane homography."""
    plane_xy, p2d, plane_z = _plane_coords(frame)
    xd = normalize_pixels(p2d, frame.img_w_h)
    r2 = np.sum(xd * xd, axis=1, keepdims=True)
    xu = xd / (1.0 + float(lambda_) * r2)
    m = xu / float(unit_plane_focal)
    T = _hartley(plane_xy)
    plane_n = (T[:2, :2] @ plane_xy.T).T + T[:2, 2]
    A0, _A1 = _division_dlt(plane_n, m)
    h, _s = _null_vector(A0)
    H = h.reshape(3, 3) @ T
    return _decompose_plane_homography(H, plane_z)


def bootstrap_homography(
    frame0: FrameFeature,
    frame1: FrameFeature,
    fixed_focal: float | None = None,
) -> HomographyBootstrap:
    if frame0.img_w_h != frame1.img_w_h:
        raise PreconditionViolation("bootstrap frames must share the image size")

    lam, H0 = radial_distortion_homography(frame0, frame1)
    H1 = plane_homography(frame1, lam)
    unit_focal = homography_to_focal(H0, H1)
    if unit_focal is None:
        raise InitializationFailure("focal length not extractable from the homography")
    logger.info("unit-plane focal %.6g, division lambda %.6g", unit_focal, lam)

    half = half_image_size(frame0.img_w_h)
    if fixed_focal is not None:
        focal = float(fixed_focal)
        pose_focal = focal / half
    else:
        focal = unit_focal * half
        pose_focal = unit_focal

    poses = (init_pose(frame0, lam, pose_focal), init_pose(frame1, lam, pose_focal))
    return HomographyBootstrap(
        lambda_=lam,
        homographies=(H0, H1),
        unit_plane_focal=float(unit_focal),
        focal=float(focal),
        poses=poses,
    )
