from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import numpy as np

from camintrinsics.core.models import CameraModel, ModelKind, model_class
from camintrinsics.errors import SchemaValidationError

MODEL_SCHEMA = "camintrinsics.model.v0"


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise SchemaValidationError(msg)


def model_to_dict(model: CameraModel) -> dict[str, Any]:
    return {
        "schema_version": MODEL_SCHEMA,
        "model": model.kind.value,
        "width": int(model.width),
        "height": int(model.height),
        "params": {name: float(v) for name, v in zip(model.PARAM_NAMES, model.params())},
    }


def parse_model(data: dict[str, Any]) -> CameraModel:
    _require(data.get("schema_version") == MODEL_SCHEMA, f"schema_version must be {MODEL_SCHEMA}")

    kind_raw = data.get("model")
    try:
        kind = ModelKind(kind_raw)
    except ValueError as e:
        raise SchemaValidationError(f"unknown model {kind_raw!r}") from e
    cls = model_class(kind)

    w_raw = data.get("width")
    h_raw = data.get("height")
    _require(w_raw is not None and h_raw is not None, "width and height are required")
    w = int(w_raw)
    h = int(h_raw)
    _require(w > 0 and h > 0, "width and height must be > 0")

    params = data.get("params")
    _require(isinstance(params, dict), "params must be an object {name: value}")
    missing = [n for n in cls.PARAM_NAMES if n not in params]
    _require(not missing, f"params missing for {kind.value}: {missing}")
    extra = sorted(set(params) - set(cls.PARAM_NAMES))
    _require(not extra, f"unexpected params for {kind.value}: {extra}")
    values = np.asarray([float(params[n]) for n in cls.PARAM_NAMES], dtype=np.float64)
    _require(bool(np.all(np.isfinite(values))), "params must be finite")
    return cls(values, w, h)


def save_model(path: Path, model: CameraModel) -> Path:
    """Write `model` as a small JSON document (parameters keyed by name)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(model_to_dict(model), indent=2, sort_keys=True), encoding="utf-8")
    return path


def load_model(path: Path) -> CameraModel:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return parse_model(data)
