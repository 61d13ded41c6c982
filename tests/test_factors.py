import numpy as np
import pytest

from camintrinsics.core.models import EUCM, UCM, KannalaBrandt4, OpenCV5
from camintrinsics.optim.factors import ModelConvertFactor, ReprojectionFactor, UCMInitFocalAlphaFactor, sample_pixel_grid
from camintrinsics.sim.synthetic import board_points, look_at_pose

W, H = 640, 480


def _numeric_jacobian(factor, blocks, k, eps=1e-6):
    base = [np.asarray(b, dtype=np.float64).copy() for b in blocks]
    cols = []
    for i in range(base[k].size):
        plus = [b.copy() for b in base]
        minus = [b.copy() for b in base]
        plus[k][i] += eps
        minus[k][i] -= eps
        cols.append((factor.evaluate_values(*plus) - factor.evaluate_values(*minus)) / (2 * eps))
    return np.stack(cols, axis=1)


def _board_in_view():
    _ids, p3d = board_points(6, 5, 0.05)
    pose = look_at_pose(np.array([0.15, -0.1, -0.6]))
    return p3d, pose


@pytest.mark.parametrize(
    "model",
    [
        EUCM([300.0, 310.0, 320.0, 240.0, 0.6, 1.1], W, H),
        KannalaBrandt4([290.0, 292.0, 318.0, 242.0, 0.05, -0.01, 0.004, -0.001], W, H),
        OpenCV5([400.0, 402.0, 320.0, 240.0, -0.2, 0.05, 0.001, -0.0005, 0.01], W, H),
    ],
    ids=lambda m: m.kind.value,
)
def test_reprojection_jacobian_matches_finite_differences(model):
    p3d, pose = _board_in_view()
    p2d = model.project(pose.transform(p3d)) + 0.5
    factor = ReprojectionFactor(model, p3d, p2d)
    blocks = [model.params(), pose.as_vector()]
    r, Js = factor.evaluate(*blocks)
    assert r.shape == (factor.num_residuals,)
    assert np.allclose(r, -0.5, atol=1e-9)
    for k in range(2):
        num = _numeric_jacobian(factor, blocks, k)
        scale = max(1.0, float(np.max(np.abs(num))))
        assert np.max(np.abs(Js[k] - num)) / scale < 1e-5


def test_shared_focal_factor_drops_fy():
    model = UCM([300.0, 300.0, 320.0, 240.0, 0.5], W, H)
    p3d, pose = _board_in_view()
    p2d = model.project(pose.transform(p3d))
    factor = ReprojectionFactor(model, p3d, p2d, xy_same_focal=True)
    assert factor.block_sizes == (4, 6)
    r, Js = factor.evaluate(np.array([300.0, 320.0, 240.0, 0.5]), pose.as_vector())
    assert np.max(np.abs(r)) < 1e-9
    assert Js[0].shape == (factor.num_residuals, 4)


def test_ucm_init_factor_uses_model_principal_point():
    model = UCM([280.0, 280.0, 320.0, 240.0, 0.4], W, H)
    p3d, pose = _board_in_view()
    p2d = model.project(pose.transform(p3d))
    factor = UCMInitFocalAlphaFactor(UCM([1.0, 1.0, 320.0, 240.0, 0.5], W, H), p3d, p2d)
    r, Js = factor.evaluate(np.array([280.0, 0.4]), pose.as_vector())
    assert np.max(np.abs(r)) < 1e-9
    num = _numeric_jacobian(factor, [np.array([280.0, 0.4]), pose.as_vector()], 0)
    assert np.max(np.abs(Js[0] - num)) / max(1.0, float(np.max(np.abs(num)))) < 1e-5


def test_undefined_projection_gives_nan_residuals():
    model = OpenCV5.from_camera_params(400.0, 400.0, 320.0, 240.0, W, H)
    p3d = np.array([[0.0, 0.0, 1.0], [0.0, 0.0, -1.0]])
    factor = ReprojectionFactor(model, p3d, np.array([[320.0, 240.0], [320.0, 240.0]]))
    r, Js = factor.evaluate(model.params(), np.zeros(6))
    assert np.allclose(r[:2], 0.0)
    assert np.all(np.isnan(r[2:]))


def test_sample_pixel_grid_respects_edges():
    grid = sample_pixel_grid(640, 480, 6, 640 / 30)
    assert grid[:, 0].min() >= 6 and grid[:, 0].max() < 640 - 6
    assert grid[:, 1].min() >= 6 and grid[:, 1].max() < 480 - 6
    assert 25 * 20 <= grid.shape[0] <= 31 * 31


def test_convert_factor_zero_fills_where_target_is_undefined():
    source = KannalaBrandt4([160.0, 160.0, 320.0, 240.0, 0.0, 0.0, 0.0, 0.0], W, H)
    target = OpenCV5.from_camera_params(160.0, 160.0, 320.0, 240.0, W, H)
    factor = ModelConvertFactor(source, target, 6, 20.0)
    # Image corners of a 160 px focal fisheye are beyond 90 degrees: no pinhole projection.
    assert np.any(factor.rays[:, 2] <= 0.0)
    r = factor.evaluate_values(target.params())
    assert np.all(np.isfinite(r))
    behind = np.repeat(factor.rays[:, 2] <= 1e-9, 2)
    assert np.all(r[behind] == 0.0)
