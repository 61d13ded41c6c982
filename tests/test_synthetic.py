import numpy as np
import pytest

from camintrinsics.core.models import KannalaBrandt4
from camintrinsics.sim.synthetic import board_points, default_poses, generate_frames, look_at_pose


def test_board_points_are_planar_and_centered():
    ids, p3d = board_points(4, 3, 0.1)
    assert list(ids) == list(range(12))
    assert np.allclose(p3d[:, 2], 0.0)
    assert np.allclose(p3d.mean(axis=0), 0.0)


def test_look_at_pose_faces_the_target():
    pose = look_at_pose(np.array([0.2, 0.1, -1.0]))
    center = pose.transform(np.zeros((1, 3)))[0]
    assert np.allclose(center[:2], 0.0, atol=1e-12)
    assert center[2] == pytest.approx(np.linalg.norm([0.2, 0.1, -1.0]))


def test_frames_are_inside_the_image_and_noise_is_seeded():
    model = KannalaBrandt4([250.0, 250.0, 320.0, 240.0, 0.01, 0.0, 0.0, 0.0], 640, 480)
    board = board_points(9, 7, 0.04)
    a = generate_frames(model, default_poses(4), board, 0.2, np.random.default_rng(3))
    b = generate_frames(model, default_poses(4), board, 0.2, np.random.default_rng(3))
    for fa, fb in zip(a, b):
        _ids, p2d, _p3d = fa.arrays()
        assert np.all((p2d >= -1.0).all(axis=1) & (p2d[:, 0] <= 641.0) & (p2d[:, 1] <= 481.0))
        assert np.array_equal(p2d, fb.arrays()[1])


def test_views_out_of_sight_are_none():
    model = KannalaBrandt4.from_camera_params(250.0, 250.0, 320.0, 240.0, 640, 480)
    behind = look_at_pose(np.array([0.0, 0.0, -1.0]), np.array([0.0, 0.0, -2.0]))
    assert generate_frames(model, [behind], board_points(3, 3, 0.01)) == [None]
