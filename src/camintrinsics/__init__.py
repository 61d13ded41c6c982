from camintrinsics.api import (
    CalibrationSettings,
    calib_camera,
    calibrate,
    convert_model,
    find_best_two_frames,
    load_frame_features,
    load_model,
    save_frame_features,
    save_model,
    try_init_camera,
    validation,
)
from camintrinsics.core.models import EUCM, UCM, CameraModel, KannalaBrandt4, ModelKind, OpenCV5, model_from_kind
from camintrinsics.types import FeaturePoint, FrameFeature, Pose

__all__ = [
    "CameraModel",
    "ModelKind",
    "UCM",
    "EUCM",
    "KannalaBrandt4",
    "OpenCV5",
    "model_from_kind",
    "FeaturePoint",
    "FrameFeature",
    "Pose",
    "CalibrationSettings",
    "calibrate",
    "calib_camera",
    "convert_model",
    "find_best_two_frames",
    "try_init_camera",
    "validation",
    "load_model",
    "save_model",
    "load_frame_features",
    "save_frame_features",
]
