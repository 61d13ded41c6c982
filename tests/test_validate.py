import numpy as np
import pytest

from camintrinsics.calib.validate import NullObserver, reprojection_error_stats, validation
from camintrinsics.core.models import UCM
from camintrinsics.sim.synthetic import board_points, default_poses, generate_frames
from camintrinsics.types import Pose

W, H = 640, 480


class _Recorder:
    def __init__(self):
        self.calls = []

    def on_frame(self, frame_index, time_ns, points_cam, avg_error_px):
        self.calls.append((frame_index, time_ns, points_cam.shape, avg_error_px))


class _Broken:
    def on_frame(self, frame_index, time_ns, points_cam, avg_error_px):
        raise RuntimeError("observer failure")


def _scene(n=4):
    model = UCM([300.0, 300.0, 320.0, 240.0, 0.55], W, H)
    poses = default_poses(n)
    frames = generate_frames(model, poses, board_points(9, 7, 0.04))
    return model, poses, frames


def test_error_statistics():
    median, mean_99 = reprojection_error_stats(np.arange(1.0, 11.0))
    assert median == 6.0
    assert mean_99 == 5.0
    median, mean_99 = reprojection_error_stats([2.0])
    assert (median, mean_99) == (2.0, 2.0)
    median, mean_99 = reprojection_error_stats([])
    assert np.isnan(median) and np.isnan(mean_99)


def test_exact_poses_give_zero_error_and_notify_per_frame():
    model, poses, frames = _scene()
    frames = [frames[0], None, *frames[1:]]
    pose_map = {0: poses[0], 2: poses[1], 3: poses[2], 4: poses[3]}
    rec = _Recorder()
    report = validation(model, pose_map, frames, rec)
    assert report.n_points == 4 * 63
    assert report.n_frames == 4
    assert report.median < 1e-9
    assert [c[0] for c in rec.calls] == [0, 2, 3, 4]
    assert rec.calls[0][2] == (63, 3)


def test_poses_are_matched_by_frame_index():
    model, poses, frames = _scene(3)
    # Frame 1 has no pose: it must not be compared with another frame's pose.
    report = validation(model, [(0, poses[0]), (2, poses[2])], frames)
    assert report.n_frames == 2
    assert report.n_points == 2 * 63
    assert report.median < 1e-9


def test_observer_exceptions_do_not_break_validation():
    model, poses, frames = _scene(2)
    report = validation(model, dict(enumerate(poses)), frames, _Broken())
    assert report.n_frames == 2
    assert report.mean_99 < 1e-9


def test_undefined_projections_are_counted_not_averaged():
    model, poses, frames = _scene(1)
    flipped = Pose(rvec=np.array([np.pi, 0.0, 0.0]), tvec=np.array([0.0, 0.0, -0.5]))
    report = validation(model, {0: flipped}, frames, NullObserver())
    assert report.n_undefined > 0
    assert report.n_points + report.n_undefined == 63


@pytest.mark.parametrize("n", [1, 99, 100, 250])
def test_mean_99_uses_at_least_one_error(n):
    errors = np.linspace(0.0, 1.0, n)
    _median, mean_99 = reprojection_error_stats(errors)
    k = max(n * 99 // 100, 1)
    assert mean_99 == pytest.approx(float(np.mean(np.sort(errors)[:k])))
