from __future__ import annotations

import numpy as np

from camintrinsics.types import FrameFeature, FrameList


def features_avg_center(frame: FrameFeature) -> np.ndarray:
    _ids, p2d, _p3d = frame.arrays()
    return p2d.mean(axis=0)


def features_covered_area(frame: FrameFeature) -> float:
    """Axis-aligned bounding-box area of the frame's pixels."""
    _ids, p2d, _p3d = frame.arrays()
    span = p2d.max(axis=0) - p2d.min(axis=0)
    return float(span[0] * span[1])


def max_detection_indices(frames: FrameList) -> list[int]:
    """Indices of the present frames with the largest number of detections."""
    best = 0
    idxs: list[int] = []
    for i, f in enumerate(frames):
        if f is None or len(f) == 0:
            continue
        n = len(f)
        if n > best:
            best = n
            idxs = [i]
        elif n == best:
            idxs.append(i)
    return idxs


def find_best_two_frames(frames: FrameList) -> tuple[int, int]:
    """
    Pick two frames to bootstrap the intrinsics.

    Among the frames with the most detections, returns
    (widest pixel coverage, average position farthest from the candidates' centroid).
    The two picks are independent and may be the same frame.
    """
    candidates = max_detection_indices(frames)
    if not candidates:
        raise ValueError("no detected frame to select from")

    centers = np.stack([features_avg_center(frames[i]) for i in candidates], axis=0)
    centroid = centers.mean(axis=0)
    dist2 = np.sum((centers - centroid) ** 2, axis=1)
    areas = np.asarray([features_covered_area(frames[i]) for i in candidates], dtype=np.float64)

    # Stable ascending sort, take the last: ties resolve to the later frame.
    by_area = np.argsort(areas, kind="stable")
    by_dist = np.argsort(dist2, kind="stable")
    return candidates[int(by_area[-1])], candidates[int(by_dist[-1])]
