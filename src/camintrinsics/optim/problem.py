from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Literal, Mapping, Sequence

import numpy as np

if TYPE_CHECKING:
    from camintrinsics.optim.factors import Factor

logger = logging.getLogger(__name__)

Loss = Literal["linear", "huber", "soft_l1", "cauchy", "arctan"]


class BlockKind(str, Enum):
    INTRINSICS = "params"
    POSE = "pose"


@dataclass(frozen=True)
class BlockId:
    """Key of one optimization variable block; `label` is for logs only."""

    kind: BlockKind
    index: int = 0

    @property
    def label(self) -> str:
        if self.kind is BlockKind.INTRINSICS:
            return self.kind.value
        return f"{self.kind.value}{self.index}"


PARAMS = BlockId(BlockKind.INTRINSICS)


def pose_block(frame_index: int) -> BlockId:
    return BlockId(BlockKind.POSE, int(frame_index))


OptimizationResult = dict[BlockId, np.ndarray]


@dataclass(frozen=True)
class SolverOptions:
    loss: Loss = "huber"
    f_scale: float = 1.0
    max_nfev: int = 500
    ftol: float = 1e-10
    xtol: float = 1e-10
    gtol: float = 1e-10


@dataclass(frozen=True)
class ResidualBlock:
    factor: "Factor"
    blocks: tuple[BlockId, ...]


@dataclass(frozen=True)
class ScalarConstraint:
    """Per-scalar constraint: either bounds or a pinned value (None = keep initial)."""

    lower: float = -np.inf
    upper: float = np.inf
    fixed: bool = False
    value: float | None = None


class Problem:
    """
    Named variable blocks + residual blocks, flattened for the solver.

    Block declaration order defines the flat layout; residual registration
    order does not change the optimum.
    """

    def __init__(self) -> None:
        self._sizes: dict[BlockId, int] = {}
        self._residual_blocks: list[ResidualBlock] = []
        self._constraints: dict[tuple[BlockId, int], ScalarConstraint] = {}

    @property
    def block_sizes(self) -> dict[BlockId, int]:
        return dict(self._sizes)

    @property
    def residual_blocks(self) -> list[ResidualBlock]:
        return list(self._residual_blocks)

    @property
    def num_residuals(self) -> int:
        return int(sum(rb.factor.num_residuals for rb in self._residual_blocks))

    def _declare(self, block: BlockId, size: int) -> None:
        known = self._sizes.get(block)
        if known is None:
            self._sizes[block] = int(size)
        elif known != int(size):
            raise ValueError(f"block {block.label} declared with size {known}, got {size}")

    def add_residual_block(self, factor: "Factor", blocks: Sequence[tuple[BlockId, int]]) -> None:
        if len(blocks) != len(factor.block_sizes):
            raise ValueError("factor block count does not match the referenced blocks")
        for (block, size), expected in zip(blocks, factor.block_sizes):
            if int(size) != int(expected):
                raise ValueError(f"block {block.label}: factor expects size {expected}, got {size}")
            self._declare(block, size)
        self._residual_blocks.append(ResidualBlock(factor=factor, blocks=tuple(b for b, _ in blocks)))

    def _check_index(self, block: BlockId, index: int) -> None:
        if block not in self._sizes:
            raise KeyError(f"unknown block {block.label}")
        if not 0 <= int(index) < self._sizes[block]:
            raise IndexError(f"index {index} out of range for block {block.label}")

    def set_variable_bounds(self, block: BlockId, index: int, lower: float, upper: float) -> None:
        self._check_index(block, index)
        if not float(lower) < float(upper):
            raise ValueError(f"empty bounds [{lower}, {upper}] for {block.label}[{index}]")
        c = self._constraints.get((block, int(index)), ScalarConstraint())
        self._constraints[(block, int(index))] = ScalarConstraint(
            lower=float(lower), upper=float(upper), fixed=c.fixed, value=c.value
        )

    def fix_variable(self, block: BlockId, index: int, value: float | None = None) -> None:
        self._check_index(block, index)
        c = self._constraints.get((block, int(index)), ScalarConstraint())
        self._constraints[(block, int(index))] = ScalarConstraint(
            lower=c.lower, upper=c.upper, fixed=True, value=None if value is None else float(value)
        )

    def constraint(self, block: BlockId, index: int) -> ScalarConstraint:
        return self._constraints.get((block, int(index)), ScalarConstraint())


class _Evaluator:
    """Residuals + Jacobian for a flat free-variable vector (last evaluation cached)."""

    def __init__(self, problem: Problem, base_values: dict[BlockId, np.ndarray]) -> None:
        self.problem = problem
        self.base_values = base_values
        self.free: list[tuple[BlockId, int]] = []
        cols: dict[tuple[BlockId, int], int] = {}
        for block, size in problem.block_sizes.items():
            for i in range(size):
                if not problem.constraint(block, i).fixed:
                    cols[(block, i)] = len(self.free)
                    self.free.append((block, i))

        self.row_slices: list[slice] = []
        self.scatter: list[list[tuple[np.ndarray, np.ndarray]]] = []
        row = 0
        for rb in problem.residual_blocks:
            m = rb.factor.num_residuals
            self.row_slices.append(slice(row, row + m))
            row += m
            per_ref = []
            for block in rb.blocks:
                local = [i for i in range(problem.block_sizes[block]) if (block, i) in cols]
                per_ref.append((np.asarray(local, dtype=np.int64), np.asarray([cols[(block, i)] for i in local], dtype=np.int64)))
            self.scatter.append(per_ref)
        self.n_rows = row
        self._cache_key: bytes | None = None
        self._cache: tuple[np.ndarray, np.ndarray, int] | None = None

    def x0(self) -> np.ndarray:
        return np.asarray([self.base_values[b][i] for b, i in self.free], dtype=np.float64)

    def bounds(self) -> tuple[np.ndarray, np.ndarray]:
        lb = np.asarray([self.problem.constraint(b, i).lower for b, i in self.free], dtype=np.float64)
        ub = np.asarray([self.problem.constraint(b, i).upper for b, i in self.free], dtype=np.float64)
        return lb, ub

    def unpack(self, x: np.ndarray) -> dict[BlockId, np.ndarray]:
        values = {b: v.copy() for b, v in self.base_values.items()}
        for k, (b, i) in enumerate(self.free):
            values[b][i] = x[k]
        return values

    def _evaluate(self, x: np.ndarray) -> tuple[np.ndarray, np.ndarray, int]:
        key = np.asarray(x, dtype=np.float64).tobytes()
        if self._cache_key == key and self._cache is not None:
            return self._cache
        values = self.unpack(x)
        r_all = np.zeros((self.n_rows,), dtype=np.float64)
        J_all = np.zeros((self.n_rows, len(self.free)), dtype=np.float64)
        n_undefined = 0
        with np.errstate(all="ignore"):
            for rb, rows, per_ref in zip(self.problem.residual_blocks, self.row_slices, self.scatter):
                r, Js = rb.factor.evaluate(*(values[b] for b in rb.blocks))
                # Undefined projections come back as NaN: drop those rows from the cost.
                bad = np.isnan(r)
                if np.any(bad):
                    n_undefined += int(np.count_nonzero(bad))
                    r = np.where(bad, 0.0, r)
                r_all[rows] = r
                for (local, cols), J in zip(per_ref, Js):
                    if local.size:
                        Jb = np.asarray(J, dtype=np.float64)[:, local]
                        Jb[bad] = 0.0
                        J_all[rows, cols] += np.nan_to_num(Jb, nan=0.0, posinf=0.0, neginf=0.0)
        self._cache_key = key
        self._cache = (r_all, J_all, n_undefined)
        return self._cache

    def fun(self, x: np.ndarray) -> np.ndarray:
        return self._evaluate(x)[0]

    def jac(self, x: np.ndarray) -> np.ndarray:
        return self._evaluate(x)[1]

    def n_undefined(self, x: np.ndarray) -> int:
        return self._evaluate(x)[2]


def optimize(
    problem: Problem,
    initial_values: Mapping[BlockId, np.ndarray],
    options: SolverOptions | None = None,
) -> OptimizationResult | None:
    """
    Solve a `Problem` with `scipy.optimize.least_squares` (trust-region reflective).

    Returns block -> vector (fixed scalars included), or None when the solver
    cannot produce a finite solution.
    """
    from scipy.optimize import least_squares  # type: ignore

    options = options or SolverOptions()
    base: dict[BlockId, np.ndarray] = {}
    for block, size in problem.block_sizes.items():
        if block not in initial_values:
            raise KeyError(f"missing initial value for block {block.label}")
        v = np.asarray(initial_values[block], dtype=np.float64).reshape(-1).copy()
        if v.size != size:
            raise ValueError(f"initial value for {block.label} has size {v.size}, expected {size}")
        for i in range(size):
            c = problem.constraint(block, i)
            if c.fixed and c.value is not None:
                v[i] = c.value
        base[block] = v

    ev = _Evaluator(problem, base)
    if not ev.free or ev.n_rows == 0:
        return {b: v.copy() for b, v in base.items()}

    lb, ub = ev.bounds()
    # The initial guess must lie inside the bounds.
    x0 = np.clip(ev.x0(), lb, ub)
    logger.debug("optimize: %d residuals, %d free variables", ev.n_rows, x0.size)

    try:
        sol = least_squares(
            ev.fun,
            x0,
            jac=ev.jac,
            bounds=(lb, ub),
            method="trf",
            loss=options.loss,
            f_scale=float(options.f_scale),
            x_scale="jac",
            max_nfev=int(options.max_nfev),
            ftol=options.ftol,
            xtol=options.xtol,
            gtol=options.gtol,
        )
    except (ValueError, np.linalg.LinAlgError) as e:
        logger.warning("solver failed: %s", e)
        return None

    if sol.status < 0 or not np.all(np.isfinite(sol.x)) or not np.isfinite(sol.cost):
        logger.warning("solver returned no usable solution (status=%s)", sol.status)
        return None
    if sol.status == 0:
        logger.warning("solver hit max_nfev=%d; keeping the last iterate (cost=%.6g)", options.max_nfev, sol.cost)

    n_undef = ev.n_undefined(sol.x)
    if n_undef:
        logger.debug("%d residual rows undefined at the solution", n_undef)
    logger.debug("optimize: cost=%.6g nfev=%d status=%d", sol.cost, sol.nfev, sol.status)
    return ev.unpack(sol.x)
