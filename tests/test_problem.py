import numpy as np
import pytest

from camintrinsics.core import dual
from camintrinsics.optim.factors import Factor
from camintrinsics.optim.problem import PARAMS, BlockKind, Problem, SolverOptions, optimize, pose_block


class _Offset(Factor):
    """r = (x0 - a, x1 - b)."""

    block_sizes = (2,)

    def __init__(self, a: float, b: float, undefined_v: bool = False) -> None:
        self.a = a
        self.b = b
        self.undefined_v = undefined_v

    @property
    def num_residuals(self) -> int:
        return 2

    def residual(self, x):
        rv = x[1] - self.b
        if self.undefined_v:
            rv = dual.where(np.array(False), rv, np.nan)
        return x[0] - self.a, rv


class _Infinite(Factor):
    block_sizes = (2,)

    @property
    def num_residuals(self) -> int:
        return 2

    def residual(self, x):
        return x[0] + np.inf, x[1]


def test_unconstrained_solution():
    problem = Problem()
    problem.add_residual_block(_Offset(0.25, -0.5), [(PARAMS, 2)])
    result = optimize(problem, {PARAMS: np.zeros(2)}, SolverOptions(loss="linear"))
    assert result is not None
    assert np.allclose(result[PARAMS], [0.25, -0.5], atol=1e-8)


def test_bounds_and_fixed_values_hold():
    problem = Problem()
    problem.add_residual_block(_Offset(3.0, -1.0), [(PARAMS, 2)])
    problem.set_variable_bounds(PARAMS, 0, 0.0, 2.0)
    problem.fix_variable(PARAMS, 1, 5.0)
    result = optimize(problem, {PARAMS: np.array([10.0, 0.0])})
    assert result is not None
    assert 0.0 <= result[PARAMS][0] <= 2.0
    assert abs(result[PARAMS][0] - 2.0) < 1e-6
    assert result[PARAMS][1] == 5.0


def test_fixed_without_value_keeps_initial():
    problem = Problem()
    problem.add_residual_block(_Offset(1.0, 1.0), [(PARAMS, 2)])
    problem.fix_variable(PARAMS, 0)
    result = optimize(problem, {PARAMS: np.array([7.0, 0.0])})
    assert result is not None
    assert result[PARAMS][0] == 7.0
    assert abs(result[PARAMS][1] - 1.0) < 1e-6


def test_undefined_residual_rows_are_masked():
    problem = Problem()
    problem.add_residual_block(_Offset(0.5, 100.0, undefined_v=True), [(PARAMS, 2)])
    problem.add_residual_block(_Offset(0.5, -1.0), [(PARAMS, 2)])
    result = optimize(problem, {PARAMS: np.zeros(2)})
    assert result is not None
    assert abs(result[PARAMS][0] - 0.5) < 1e-6
    assert abs(result[PARAMS][1] + 1.0) < 1e-6


def test_non_finite_residual_means_no_solution():
    problem = Problem()
    problem.add_residual_block(_Infinite(), [(PARAMS, 2)])
    assert optimize(problem, {PARAMS: np.zeros(2)}) is None


def test_declared_size_mismatch_is_rejected():
    problem = Problem()
    with pytest.raises(ValueError):
        problem.add_residual_block(_Offset(0.0, 0.0), [(PARAMS, 3)])
    problem.add_residual_block(_Offset(0.0, 0.0), [(pose_block(2), 2)])
    assert problem.block_sizes == {pose_block(2): 2}
    with pytest.raises(IndexError):
        problem.set_variable_bounds(pose_block(2), 2, 0.0, 1.0)


def test_block_labels():
    assert PARAMS.kind is BlockKind.INTRINSICS
    assert PARAMS.label == "params"
    assert pose_block(3).label == "pose3"
