import numpy as np
import pytest

from camintrinsics.calib.refine import calib_camera
from camintrinsics.core.models import EUCM, UCM, OpenCV5
from camintrinsics.sim.synthetic import board_points, default_poses, generate_frames
from camintrinsics.types import FrameFeature

pytest.importorskip("cv2")

W, H = 640, 480


def _frames(model, n=10):
    return generate_frames(model, default_poses(n), board_points(9, 7, 0.04))


def test_zero_noise_eucm_is_recovered():
    truth = EUCM([300.0, 302.0, 322.0, 238.0, 0.6, 1.1], W, H)
    frames = _frames(truth)
    start = EUCM([285.0, 290.0, 315.0, 245.0, 0.5, 1.0], W, H)
    result = calib_camera(frames, start)
    assert result is not None
    got = result.model.params()
    want = truth.params()
    assert np.max(np.abs(got[:4] - want[:4]) / want[:4]) < 1e-6
    assert np.max(np.abs(got[4:] - want[4:]) / want[4:]) < 1e-4
    assert [i for i, _ in result.poses] == list(range(len(frames)))
    # The starting model is not modified.
    assert start.params()[0] == 285.0


def test_recovered_poses_match_the_generating_poses():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    poses = default_poses(6)
    frames = generate_frames(truth, poses, board_points(9, 7, 0.04))
    result = calib_camera(frames, UCM([310.0, 310.0, 318.0, 242.0, 0.5], W, H))
    assert result is not None
    for i, pose in result.poses:
        assert np.allclose(pose.tvec, poses[i].tvec, atol=1e-6)


def test_disabled_distortions_are_exactly_zero():
    truth = OpenCV5([300.0, 300.0, 320.0, 240.0, -0.1, 0.02, 0.001, -0.001, 0.0], W, H)
    frames = _frames(truth)
    start = OpenCV5([290.0, 295.0, 318.0, 243.0, 0.0, 0.0, 0.0, 0.0, 0.05], W, H)
    result = calib_camera(frames, start, disabled_distortions=1)
    assert result is not None
    got = result.model.params()
    assert got[8] == 0.0
    assert np.allclose(got[:4], truth.params()[:4], rtol=1e-6)
    assert np.allclose(got[4:8], truth.params()[4:8], atol=1e-6)


def test_shared_focal_is_bitwise_equal():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frames = _frames(truth, 6)
    result = calib_camera(frames, UCM([290.0, 310.0, 318.0, 242.0, 0.5], W, H), xy_same_focal=True)
    assert result is not None
    fx, fy = result.model.params()[:2]
    assert fx == fy
    assert fx == pytest.approx(300.0, rel=1e-6)


def test_fixed_focal_keeps_the_starting_fx():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frames = _frames(truth, 6)
    result = calib_camera(frames, UCM([300.0, 295.0, 318.0, 242.0, 0.5], W, H), fixed_focal=True)
    assert result is not None
    assert result.model.params()[0] == 300.0
    assert result.model.params()[1] == pytest.approx(300.0, rel=1e-6)


def test_frames_without_enough_points_are_left_out():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frames = list(_frames(truth, 6))
    ids, p2d, p3d = frames[0].arrays()
    frames.insert(2, FrameFeature.from_arrays(ids[:3], p2d[:3], p3d[:3], (W, H)))
    frames.insert(4, None)
    result = calib_camera(frames, UCM([310.0, 310.0, 318.0, 242.0, 0.5], W, H))
    assert result is not None
    used = [i for i, _ in result.poses]
    assert 2 not in used and 4 not in used
    assert used == [0, 1, 3, 5, 6, 7]
    assert result.diagnostics["n_frames"] == 6.0


def test_no_usable_frame_gives_no_result():
    model = UCM([300.0, 300.0, 320.0, 240.0, 0.5], W, H)
    assert calib_camera([None, None], model) is None


def test_too_many_disabled_distortions_is_rejected():
    truth = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    frames = _frames(truth, 3)
    with pytest.raises(ValueError):
        calib_camera(frames, truth, disabled_distortions=2)
