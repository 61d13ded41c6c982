from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

import numpy as np

from camintrinsics.core import dual
from camintrinsics.core.dual import Dual
from camintrinsics.core.geometry import transform_points
from camintrinsics.core.models import UCM, CameraModel


class Factor(ABC):
    """
    Residual function over one or more variable blocks.

    Subclasses implement `residual` once, generically over the numeric type;
    `evaluate` runs it on `Dual` numbers to get residuals and per-block
    Jacobians in a single pass. Residuals are one (du, dv) pair per
    correspondence, laid out as [du0, dv0, du1, dv1, ...].
    """

    block_sizes: tuple[int, ...] = ()

    @property
    @abstractmethod
    def num_residuals(self) -> int: ...

    @abstractmethod
    def residual(self, *blocks: Sequence[Any]) -> tuple[Any, Any]: ...

    def evaluate(self, *blocks: np.ndarray) -> tuple[np.ndarray, list[np.ndarray]]:
        if len(blocks) != len(self.block_sizes):
            raise ValueError(f"expected {len(self.block_sizes)} blocks, got {len(blocks)}")
        flat = np.concatenate([np.asarray(b, dtype=np.float64).reshape(-1) for b in blocks])
        if flat.size != sum(self.block_sizes):
            raise ValueError("block values do not match the declared block sizes")
        seeded = Dual.variables(flat)
        split: list[list[Dual]] = []
        start = 0
        for size in self.block_sizes:
            split.append(seeded[start : start + size])
            start += size
        with np.errstate(all="ignore"):
            ru, rv = self.residual(*split)
            r, J = dual.stack_residuals(ru, rv, flat.size)
        Js: list[np.ndarray] = []
        start = 0
        for size in self.block_sizes:
            Js.append(J[:, start : start + size])
            start += size
        return r, Js

    def evaluate_values(self, *blocks: np.ndarray) -> np.ndarray:
        """Residuals only, evaluated on plain floats."""
        with np.errstate(all="ignore"):
            ru, rv = self.residual(*(list(np.asarray(b, dtype=np.float64).reshape(-1)) for b in blocks))
            return np.stack([np.asarray(ru, dtype=np.float64), np.asarray(rv, dtype=np.float64)], axis=-1).reshape(-1)


def _as_points(p: np.ndarray, dim: int) -> np.ndarray:
    return np.asarray(p, dtype=np.float64).reshape(-1, dim).copy()


class ReprojectionFactor(Factor):
    """
    Blocks: intrinsics (optionally without fy), pose [rvec, tvec].

    r = project(R p3d + t) - p2d; NaN where the projection is undefined.
    """

    def __init__(self, model: CameraModel, p3d: np.ndarray, p2d: np.ndarray, xy_same_focal: bool = False) -> None:
        self.model_cls = type(model)
        self.p3d = _as_points(p3d, 3)
        self.p2d = _as_points(p2d, 2)
        if self.p3d.shape[0] != self.p2d.shape[0]:
            raise ValueError("p3d and p2d must have the same length")
        self.xy_same_focal = bool(xy_same_focal)
        n_params = len(self.model_cls.PARAM_NAMES) - (1 if self.xy_same_focal else 0)
        self.block_sizes = (n_params, 6)

    @property
    def num_residuals(self) -> int:
        return 2 * int(self.p3d.shape[0])

    def residual(self, params: Sequence[Any], pose: Sequence[Any]) -> tuple[Any, Any]:
        if self.xy_same_focal:
            params = [params[0], params[0], *params[1:]]
        x, y, z = transform_points(pose, self.p3d)
        u, v, valid = self.model_cls.project_generic(params, x, y, z)
        ru = dual.where(valid, u - self.p2d[:, 0], np.nan)
        rv = dual.where(valid, v - self.p2d[:, 1], np.nan)
        return ru, rv


class UCMInitFocalAlphaFactor(Factor):
    """
    Blocks: (focal, alpha), pose [rvec, tvec].

    UCM with fx = fy = focal and the principal point fixed to the model's (cx, cy).
    """

    block_sizes = (2, 6)

    def __init__(self, model: CameraModel, p3d: np.ndarray, p2d: np.ndarray) -> None:
        cam = model.camera_params()
        self.cx = float(cam[2])
        self.cy = float(cam[3])
        self.p3d = _as_points(p3d, 3)
        self.p2d = _as_points(p2d, 2)
        if self.p3d.shape[0] != self.p2d.shape[0]:
            raise ValueError("p3d and p2d must have the same length")

    @property
    def num_residuals(self) -> int:
        return 2 * int(self.p3d.shape[0])

    def residual(self, focal_alpha: Sequence[Any], pose: Sequence[Any]) -> tuple[Any, Any]:
        f, alpha = focal_alpha
        x, y, z = transform_points(pose, self.p3d)
        u, v, valid = UCM.project_generic([f, f, self.cx, self.cy, alpha], x, y, z)
        ru = dual.where(valid, u - self.p2d[:, 0], np.nan)
        rv = dual.where(valid, v - self.p2d[:, 1], np.nan)
        return ru, rv


def sample_pixel_grid(width: int, height: int, edge_pixels: int, steps: float) -> np.ndarray:
    """Regular grid (N,2) over the image, `edge_pixels` away from every border."""
    steps = max(float(steps), 1.0)
    us = np.arange(float(edge_pixels), float(width - edge_pixels), steps)
    vs = np.arange(float(edge_pixels), float(height - edge_pixels), steps)
    uu, vv = np.meshgrid(us, vs)
    return np.stack([uu.reshape(-1), vv.reshape(-1)], axis=-1)


class ModelConvertFactor(Factor):
    """
    Block: full target parameter vector.

    Rays come from unprojecting a pixel grid through the source model;
    r = source.project(ray) - target.project(ray), zero where either is undefined.
    """

    def __init__(self, source: CameraModel, target: CameraModel, edge_pixels: int, steps: float) -> None:
        grid = sample_pixel_grid(source.width, source.height, int(edge_pixels), steps)
        rays = source.unproject(grid)
        keep = np.all(np.isfinite(rays), axis=1)
        rays = rays[keep]
        uv_src = source.project(rays)
        self.rays = rays
        self.uv_src = uv_src
        self.src_valid = np.all(np.isfinite(uv_src), axis=1)
        self.target_cls = type(target)
        self.block_sizes = (len(self.target_cls.PARAM_NAMES),)

    @property
    def num_residuals(self) -> int:
        return 2 * int(self.rays.shape[0])

    def residual(self, params: Sequence[Any]) -> tuple[Any, Any]:
        u, v, valid = self.target_cls.project_generic(params, self.rays[:, 0], self.rays[:, 1], self.rays[:, 2])
        ok = valid & self.src_valid
        uv_src = np.where(self.src_valid[:, None], self.uv_src, 0.0)
        ru = dual.where(ok, uv_src[:, 0] - u, 0.0)
        rv = dual.where(ok, uv_src[:, 1] - v, 0.0)
        return ru, rv
