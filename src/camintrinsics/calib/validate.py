from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Protocol, Sequence

import numpy as np

from camintrinsics.core.models import CameraModel
from camintrinsics.types import FrameList, Pose

logger = logging.getLogger(__name__)


class ValidationObserver(Protocol):
    def on_frame(self, frame_index: int, time_ns: int, points_cam: np.ndarray, avg_error_px: float) -> None: ...


class NullObserver:
    def on_frame(self, frame_index: int, time_ns: int, points_cam: np.ndarray, avg_error_px: float) -> None:
        return None


@dataclass(frozen=True)
class ReprojectionReport:
    """
    Reprojection errors of a calibrated model.

    - `errors`: per-point pixel errors, frame order then point-id order
    - `median`: sorted(errors)[n // 2]
    - `mean_99`: mean of the smallest n * 99 // 100 errors (at least one)
    - `n_undefined`: points left out because their projection is undefined
    """

    errors: np.ndarray
    median: float
    mean_99: float
    n_points: int
    n_frames: int = 0
    n_undefined: int = 0


def reprojection_error_stats(errors: Sequence[float] | np.ndarray) -> tuple[float, float]:
    """(median, mean_99). NaN for both when `errors` is empty."""
    e = np.sort(np.asarray(errors, dtype=np.float64).reshape(-1))
    n = int(e.size)
    if n == 0:
        return float("nan"), float("nan")
    median = float(e[n // 2])
    k = max(n * 99 // 100, 1)
    return median, float(np.mean(e[:k]))


def validation(
    model: CameraModel,
    poses: Mapping[int, Pose] | Sequence[tuple[int, Pose]],
    frames: FrameList,
    observer: ValidationObserver | None = None,
) -> ReprojectionReport:
    """
    Reproject every frame that has a pose and collect the pixel errors.

    `poses` maps frame index -> pose (a list of (index, pose) pairs is
    accepted too). The observer is called once per validated frame with the
    camera-frame points and the frame's mean error.
    """
    observer = observer or NullObserver()
    pose_by_frame = dict(poses.items()) if isinstance(poses, Mapping) else dict(poses)

    all_errors: list[np.ndarray] = []
    n_frames = 0
    n_undefined = 0
    for i, frame in enumerate(frames):
        if frame is None:
            continue
        pose = pose_by_frame.get(i)
        if pose is None:
            logger.debug("validation: frame %d has no pose", i)
            continue
        _ids, p2d, p3d = frame.arrays()
        points_cam = pose.transform(p3d)
        uv = model.project(points_cam)
        ok = np.all(np.isfinite(uv), axis=1)
        n_undefined += int(np.count_nonzero(~ok))
        errors = np.linalg.norm(uv[ok] - p2d[ok], axis=1)
        all_errors.append(errors)
        n_frames += 1

        avg = float(np.mean(errors)) if errors.size else float("nan")
        try:
            observer.on_frame(i, frame.time_ns, points_cam, avg)
        except Exception:
            logger.exception("validation observer failed on frame %d", i)

    errors_all = np.concatenate(all_errors) if all_errors else np.zeros((0,), dtype=np.float64)
    median, mean_99 = reprojection_error_stats(errors_all)
    if n_undefined:
        logger.warning("validation: %d points with undefined projection excluded", n_undefined)
    logger.info("median reprojection error %.4g px, mean (99%%) %.4g px", median, mean_99)
    return ReprojectionReport(
        errors=errors_all,
        median=median,
        mean_99=mean_99,
        n_points=int(errors_all.size),
        n_frames=n_frames,
        n_undefined=n_undefined,
    )
