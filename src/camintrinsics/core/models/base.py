from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, ClassVar, Sequence

import numpy as np

from camintrinsics.errors import PreconditionViolation


class ModelKind(str, Enum):
    UCM = "ucm"
    EUCM = "eucm"
    KB4 = "kb4"
    OPENCV5 = "opencv5"


class CameraModel(ABC):
    """
    Intrinsic camera model: fixed-length parameter vector + image size.

    The parameter vector always starts with (fx, fy, cx, cy); families append
    their distortion terms. `project_generic` is the numeric-type-generic
    projection used by the residual factors (plain floats or `Dual`).
    """

    kind: ClassVar[ModelKind]
    PARAM_NAMES: ClassVar[tuple[str, ...]]
    DEFAULT_DISTORTION: ClassVar[tuple[float, ...]]
    # (index, lower, upper) for each bounded distortion term.
    DISTORTION_BOUNDS: ClassVar[tuple[tuple[int, float, float], ...]] = ()

    def __init__(self, params: Sequence[float] | np.ndarray, width: int, height: int) -> None:
        if int(width) <= 0 or int(height) <= 0:
            raise PreconditionViolation("image width/height must be > 0")
        self._width = int(width)
        self._height = int(height)
        self._params = self._checked(params)

    @classmethod
    def _checked(cls, params: Sequence[float] | np.ndarray) -> np.ndarray:
        p = np.asarray(params, dtype=np.float64).reshape(-1)
        if p.size != len(cls.PARAM_NAMES):
            raise PreconditionViolation(
                f"{cls.kind.value} expects {len(cls.PARAM_NAMES)} parameters, got {p.size}"
            )
        return p.copy()

    @classmethod
    def from_camera_params(cls, fx: float, fy: float, cx: float, cy: float, width: int, height: int) -> "CameraModel":
        return cls([fx, fy, cx, cy, *cls.DEFAULT_DISTORTION], width, height)

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def params(self) -> np.ndarray:
        return self._params.copy()

    def set_params(self, params: Sequence[float] | np.ndarray) -> None:
        self._params = self._checked(params)

    def camera_params(self) -> np.ndarray:
        """(fx, fy, cx, cy)."""
        return self._params[:4].copy()

    def distortion_params_bound(self) -> list[tuple[int, float, float]]:
        return [(int(i), float(lo), float(hi)) for i, lo, hi in self.DISTORTION_BOUNDS]

    def copy(self) -> "CameraModel":
        return type(self)(self._params, self._width, self._height)

    def with_params(self, params: Sequence[float] | np.ndarray) -> "CameraModel":
        return type(self)(params, self._width, self._height)

    def __repr__(self) -> str:
        vals = ", ".join(f"{n}={float(v):.6g}" for n, v in zip(self.PARAM_NAMES, self._params))
        return f"{type(self).__name__}({vals}, width={self._width}, height={self._height})"

    @classmethod
    @abstractmethod
    def project_generic(cls, params: Sequence[Any], x: Any, y: Any, z: Any) -> tuple[Any, Any, np.ndarray]:
        """
        Project camera-frame points. Returns (u, v, valid) where `valid` is a
        boolean array; u/v are meaningless where `valid` is False.
        """

    @abstractmethod
    def unproject(self, uv_px: np.ndarray) -> np.ndarray:
        """Pixels (N,2) -> unit rays (N,3), NaN rows where undefined."""

    def project(self, XYZ_cam: np.ndarray) -> np.ndarray:
        """Camera-frame points (N,3) -> pixels (N,2), NaN rows where undefined."""
        XYZ_cam = np.asarray(XYZ_cam, dtype=np.float64).reshape(-1, 3)
        with np.errstate(all="ignore"):
            u, v, valid = self.project_generic(list(self._params), XYZ_cam[:, 0], XYZ_cam[:, 1], XYZ_cam[:, 2])
            uv = np.stack([np.broadcast_to(u, valid.shape), np.broadcast_to(v, valid.shape)], axis=-1)
        uv = np.array(uv, dtype=np.float64)
        uv[~valid] = np.nan
        return uv

    def project_one(self, XYZ: np.ndarray) -> np.ndarray | None:
        uv = self.project(np.asarray(XYZ, dtype=np.float64).reshape(1, 3))[0]
        if not np.all(np.isfinite(uv)):
            return None
        return uv


def normalize_rays(x: np.ndarray, y: np.ndarray, z: np.ndarray, valid: np.ndarray) -> np.ndarray:
    rays = np.stack([x, y, z], axis=-1)
    rays /= np.linalg.norm(rays, axis=-1, keepdims=True)
    rays[~valid] = np.nan
    return rays
