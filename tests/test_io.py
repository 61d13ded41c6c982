import json

import numpy as np
import pytest

from camintrinsics.api.features_io import load_frame_features, parse_frame_features, save_frame_features
from camintrinsics.api.model_io import load_model, parse_model, save_model
from camintrinsics.core.models import KannalaBrandt4
from camintrinsics.errors import SchemaValidationError
from camintrinsics.types import FrameFeature


def test_model_json_roundtrip(tmp_path):
    model = KannalaBrandt4([290.0, 292.0, 318.0, 242.0, 0.05, -0.01, 0.004, -0.001], 640, 480)
    path = save_model(tmp_path / "out" / "model.json", model)
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["schema_version"] == "camintrinsics.model.v0"
    assert data["model"] == "kb4"
    assert data["params"]["k4"] == -0.001
    loaded = load_model(path)
    assert isinstance(loaded, KannalaBrandt4)
    assert np.array_equal(loaded.params(), model.params())
    assert (loaded.width, loaded.height) == (640, 480)


def test_model_json_rejects_missing_params():
    with pytest.raises(SchemaValidationError):
        parse_model(
            {
                "schema_version": "camintrinsics.model.v0",
                "model": "ucm",
                "width": 640,
                "height": 480,
                "params": {"fx": 1.0, "fy": 1.0, "cx": 1.0, "cy": 1.0},
            }
        )


def test_model_json_rejects_unknown_model():
    with pytest.raises(SchemaValidationError):
        parse_model({"schema_version": "camintrinsics.model.v0", "model": "fov", "width": 1, "height": 1, "params": {}})


def test_features_json_roundtrip_keeps_undetected_frames(tmp_path):
    f0 = FrameFeature.from_arrays([3, 1], [[10.0, 20.0], [30.0, 40.0]], [[0.0, 0.0, 0.0], [0.1, 0.0, 0.0]], (640, 480), 5)
    frames = [f0, None]
    path = save_frame_features(tmp_path / "features.json", frames)
    loaded = load_frame_features(path)
    assert loaded[1] is None
    assert loaded[0] == f0
    ids, p2d, _p3d = loaded[0].arrays()
    assert list(ids) == [1, 3]
    assert np.allclose(p2d[0], [30.0, 40.0])


def test_features_json_validation():
    base = {"schema_version": "camintrinsics.features.v0", "image": {"width_px": 640, "height_px": 480}}
    with pytest.raises(SchemaValidationError):
        parse_frame_features({**base, "frames": [{"points": [{"id": 0, "p2d": [1.0], "p3d": [0.0, 0.0, 0.0]}]}]})
    with pytest.raises(SchemaValidationError):
        parse_frame_features(
            {
                **base,
                "frames": [
                    {
                        "points": [
                            {"id": 0, "p2d": [1.0, 2.0], "p3d": [0.0, 0.0, 0.0]},
                            {"id": 0, "p2d": [1.0, 2.0], "p3d": [0.0, 0.0, 0.0]},
                        ]
                    }
                ],
            }
        )
    with pytest.raises(SchemaValidationError):
        parse_frame_features({**base, "schema_version": "other", "frames": []})
    assert parse_frame_features({**base, "frames": [None]}) == [None]
