from __future__ import annotations

from typing import Sequence

import numpy as np

from camintrinsics.core.models.base import CameraModel, ModelKind
from camintrinsics.core.models.eucm import EUCM
from camintrinsics.core.models.kb4 import KannalaBrandt4
from camintrinsics.core.models.opencv5 import OpenCV5
from camintrinsics.core.models.ucm import UCM

MODEL_CLASSES: dict[ModelKind, type[CameraModel]] = {
    ModelKind.UCM: UCM,
    ModelKind.EUCM: EUCM,
    ModelKind.KB4: KannalaBrandt4,
    ModelKind.OPENCV5: OpenCV5,
}


def model_class(kind: ModelKind | str) -> type[CameraModel]:
    return MODEL_CLASSES[ModelKind(kind)]


def model_from_kind(kind: ModelKind | str, params: Sequence[float] | np.ndarray, width: int, height: int) -> CameraModel:
    return model_class(kind)(params, width, height)


__all__ = [
    "CameraModel",
    "ModelKind",
    "UCM",
    "EUCM",
    "KannalaBrandt4",
    "OpenCV5",
    "MODEL_CLASSES",
    "model_class",
    "model_from_kind",
]
