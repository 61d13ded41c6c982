from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from camintrinsics.core.geometry import rvec_to_matrix


@dataclass(frozen=True)
class FeaturePoint:
    """
    One detected correspondence.

    - `p2d`: observed pixel (u, v)
    - `p3d`: target point in the target frame
    """

    p2d: tuple[float, float]
    p3d: tuple[float, float, float]


@dataclass(frozen=True)
class FrameFeature:
    """
    All correspondences detected in one frame, keyed by point id.

    Every frame of one calibration run shares the same `img_w_h`.
    """

    features: dict[int, FeaturePoint]
    img_w_h: tuple[int, int]
    time_ns: int = 0

    def __len__(self) -> int:
        return len(self.features)

    def arrays(self) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """(ids (N,), p2d (N,2), p3d (N,3)) ordered by point id."""
        ids = np.asarray(sorted(self.features), dtype=np.int64)
        p2d = np.asarray([self.features[int(i)].p2d for i in ids], dtype=np.float64).reshape(-1, 2)
        p3d = np.asarray([self.features[int(i)].p3d for i in ids], dtype=np.float64).reshape(-1, 3)
        return ids, p2d, p3d

    @classmethod
    def from_arrays(
        cls,
        ids: Sequence[int],
        p2d: np.ndarray,
        p3d: np.ndarray,
        img_w_h: tuple[int, int],
        time_ns: int = 0,
    ) -> "FrameFeature":
        p2d = np.asarray(p2d, dtype=np.float64).reshape(-1, 2)
        p3d = np.asarray(p3d, dtype=np.float64).reshape(-1, 3)
        if len(ids) != p2d.shape[0] or p2d.shape[0] != p3d.shape[0]:
            raise ValueError("ids, p2d and p3d must have the same length")
        features = {
            int(i): FeaturePoint(p2d=(float(a[0]), float(a[1])), p3d=(float(b[0]), float(b[1]), float(b[2])))
            for i, a, b in zip(ids, p2d, p3d)
        }
        if len(features) != len(ids):
            raise ValueError("point ids must be unique within a frame")
        return cls(features=features, img_w_h=(int(img_w_h[0]), int(img_w_h[1])), time_ns=int(time_ns))


FrameList = Sequence[Optional[FrameFeature]]


@dataclass(frozen=True)
class Pose:
    """Rigid transform target -> camera: P_cam = R(rvec) P + tvec."""

    rvec: np.ndarray = field(default_factory=lambda: np.zeros(3))
    tvec: np.ndarray = field(default_factory=lambda: np.zeros(3))

    @classmethod
    def from_vector(cls, vec: np.ndarray) -> "Pose":
        vec = np.asarray(vec, dtype=np.float64).reshape(6)
        return cls(rvec=vec[:3].copy(), tvec=vec[3:].copy())

    def as_vector(self) -> np.ndarray:
        return np.concatenate([np.asarray(self.rvec, dtype=np.float64).reshape(3), np.asarray(self.tvec, dtype=np.float64).reshape(3)])

    def transform(self, P: np.ndarray) -> np.ndarray:
        P = np.asarray(P, dtype=np.float64).reshape(-1, 3)
        Rm = rvec_to_matrix(self.rvec)
        return (Rm @ P.T).T + np.asarray(self.tvec, dtype=np.float64).reshape(1, 3)


def image_size(frames: FrameList) -> tuple[int, int]:
    """Shared (width, height) of a frame sequence."""
    sizes = {f.img_w_h for f in frames if f is not None}
    if not sizes:
        raise ValueError("no detected frame")
    if len(sizes) != 1:
        raise ValueError(f"frames disagree on image size: {sorted(sizes)}")
    return next(iter(sizes))
