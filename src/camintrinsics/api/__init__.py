from camintrinsics.api.features_io import load_frame_features, parse_frame_features, save_frame_features
from camintrinsics.api.model_io import load_model, parse_model, save_model
from camintrinsics.calib.convert import convert_model
from camintrinsics.calib.pipeline import CalibrationRun, CalibrationSettings, calibrate
from camintrinsics.calib.refine import CalibrationResult, calib_camera
from camintrinsics.calib.seed import try_init_camera
from camintrinsics.calib.selection import find_best_two_frames
from camintrinsics.calib.validate import NullObserver, ReprojectionReport, ValidationObserver, validation

__all__ = [
    "CalibrationResult",
    "CalibrationRun",
    "CalibrationSettings",
    "NullObserver",
    "ReprojectionReport",
    "ValidationObserver",
    "calib_camera",
    "calibrate",
    "convert_model",
    "find_best_two_frames",
    "load_frame_features",
    "load_model",
    "parse_frame_features",
    "parse_model",
    "save_frame_features",
    "save_model",
    "try_init_camera",
    "validation",
]
