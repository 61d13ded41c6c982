from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from camintrinsics.errors import SchemaValidationError
from camintrinsics.types import FeaturePoint, FrameFeature, FrameList, image_size

FEATURES_SCHEMA = "camintrinsics.features.v0"


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SchemaValidationError(msg)


def _parse_frame(raw: dict[str, Any], k: int, img_w_h: tuple[int, int]) -> FrameFeature:
    _require(isinstance(raw, dict), f"frames[{k}] must be null or an object")
    points = raw.get("points", [])
    _require(isinstance(points, list), f"frames[{k}].points must be a list")

    features: dict[int, FeaturePoint] = {}
    for j, p in enumerate(points):
        where = f"frames[{k}].points[{j}]"
        _require(isinstance(p, dict) and "id" in p, f"{where}.id is required")
        p2d = p.get("p2d")
        p3d = p.get("p3d")
        _require(isinstance(p2d, (list, tuple)) and len(p2d) == 2, f"{where}.p2d must be [u,v]")
        _require(isinstance(p3d, (list, tuple)) and len(p3d) == 3, f"{where}.p3d must be [x,y,z]")
        pid = int(p["id"])
        _require(pid not in features, f"{where}: duplicate point id {pid}")
        features[pid] = FeaturePoint(
            p2d=(float(p2d[0]), float(p2d[1])),
            p3d=(float(p3d[0]), float(p3d[1]), float(p3d[2])),
        )
    return FrameFeature(features=features, img_w_h=img_w_h, time_ns=int(raw.get("time_ns", 0)))


def parse_frame_features(data: dict[str, Any]) -> list[FrameFeature | None]:
    _require(data.get("schema_version") == FEATURES_SCHEMA, f"schema_version must be {FEATURES_SCHEMA}")

    image = data.get("image", {})
    w_raw = image.get("width_px")
    h_raw = image.get("height_px")
    _require(w_raw is not None and h_raw is not None, "image.width_px and image.height_px are required")
    img_w_h = (int(w_raw), int(h_raw))
    _require(img_w_h[0] > 0 and img_w_h[1] > 0, "image.width_px and image.height_px must be > 0")

    frames = data.get("frames")
    _require(isinstance(frames, list), "frames must be a list")
    return [None if raw is None else _parse_frame(raw, k, img_w_h) for k, raw in enumerate(frames)]


def frame_features_to_dict(frames: FrameList) -> dict[str, Any]:
    w, h = image_size(frames)
    out: list[dict[str, Any] | None] = []
    for f in frames:
        if f is None:
            out.append(None)
            continue
        out.append(
            {
                "time_ns": int(f.time_ns),
                "points": [
                    {"id": int(pid), "p2d": list(f.features[pid].p2d), "p3d": list(f.features[pid].p3d)}
                    for pid in sorted(f.features)
                ],
            }
        )
    return {"schema_version": FEATURES_SCHEMA, "image": {"width_px": int(w), "height_px": int(h)}, "frames": out}


def save_frame_features(path: Path, frames: FrameList) -> Path:
    """Write detected frames (null for undetected ones) as JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(frame_features_to_dict(frames)), encoding="utf-8")
    return path


def load_frame_features(path: Path) -> list[FrameFeature | None]:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_frame_features(data)
