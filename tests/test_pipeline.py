import numpy as np
import pytest

from camintrinsics.calib.pipeline import CalibrationSettings, calibrate
from camintrinsics.calib.seed import try_init_camera
from camintrinsics.core.models import EUCM, UCM, ModelKind, OpenCV5
from camintrinsics.errors import InitializationFailure
from camintrinsics.sim.synthetic import board_points, default_poses, generate_frames
from camintrinsics.types import FrameFeature

W, H = 640, 480


def _frames(model, n=10, noise_std=0.0, seed=0):
    return generate_frames(model, default_poses(n), board_points(9, 7, 0.04), noise_std, np.random.default_rng(seed))


@pytest.mark.integration
def test_two_frame_ucm_seed():
    pytest.importorskip("cv2")
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frames = _frames(truth, 4)
    model = try_init_camera(frames[0], frames[1])
    assert model is not None
    assert model.kind is ModelKind.UCM
    fx, fy = model.params()[:2]
    assert fx == fy
    assert fx == pytest.approx(300.0, rel=1e-3)


def test_seed_failure_is_reported_as_none():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frame = _frames(truth, 1)[0]
    ids, p2d, p3d = frame.arrays()
    small = FrameFeature.from_arrays(ids[:5], p2d[:5], p3d[:5], (W, H))
    assert try_init_camera(small, small) is None


@pytest.mark.integration
def test_calibrate_eucm_end_to_end():
    pytest.importorskip("cv2")
    truth = EUCM([300.0, 302.0, 322.0, 238.0, 0.6, 1.1], W, H)
    frames = list(_frames(truth, 10))
    frames.insert(3, None)
    calls = []

    class _Observer:
        def on_frame(self, frame_index, time_ns, points_cam, avg_error_px):
            calls.append(frame_index)

    run = calibrate(frames, CalibrationSettings(model=ModelKind.EUCM), _Observer())
    assert isinstance(run.model, EUCM)
    assert run.initial_model.kind is ModelKind.UCM
    assert np.allclose(run.model.params()[:4], truth.params()[:4], rtol=1e-5)
    assert run.report.median < 1e-4
    assert 3 not in calls and len(calls) == 10


@pytest.mark.integration
def test_calibrate_opencv5_with_noise():
    pytest.importorskip("cv2")
    truth = OpenCV5([300.0, 300.0, 320.0, 240.0, -0.05, 0.01, 0.0, 0.0, 0.0], W, H)
    frames = _frames(truth, 12, noise_std=0.1, seed=1)
    run = calibrate(frames, CalibrationSettings(model=ModelKind.OPENCV5, disabled_distortions=1))
    assert run.model.params()[8] == 0.0
    assert run.report.median < 0.3
    assert np.allclose(run.model.params()[:2], [300.0, 300.0], rtol=1e-2)


def test_calibrate_without_usable_frames_raises():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frame = _frames(truth, 1)[0]
    ids, p2d, p3d = frame.arrays()
    small = FrameFeature.from_arrays(ids[:5], p2d[:5], p3d[:5], (W, H))
    with pytest.raises(InitializationFailure):
        calibrate([small, small, None], CalibrationSettings(max_init_attempts=3))
