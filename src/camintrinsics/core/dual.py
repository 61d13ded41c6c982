from __future__ import annotations

from typing import Any

import numpy as np


class Dual:
    """
    Forward-mode dual number, vectorized with NumPy.

    - `v`: value, any shape S
    - `d`: derivatives, shape S + (P,) for P seeded variables

    Camera-model and pose formulas are written with the operators below and the
    module-level functions (`sqrt`, `sin`, `where`, ...), so the same code runs on
    plain floats/arrays or on `Dual` values.
    """

    __slots__ = ("v", "d")
    # Let NumPy defer to our reflected operators (ndarray * Dual -> Dual.__rmul__).
    __array_ufunc__ = None

    def __init__(self, v: Any, d: Any) -> None:
        self.v = np.asarray(v, dtype=np.float64)
        self.d = np.asarray(d, dtype=np.float64)

    @classmethod
    def variables(cls, values: np.ndarray) -> list["Dual"]:
        """One scalar Dual per entry, each seeded with its own unit derivative."""
        values = np.asarray(values, dtype=np.float64).reshape(-1)
        eye = np.eye(values.size, dtype=np.float64)
        return [cls(values[i], eye[i]) for i in range(values.size)]

    @property
    def n_vars(self) -> int:
        return int(self.d.shape[-1])

    def __repr__(self) -> str:
        return f"Dual(v={self.v!r}, d={self.d!r})"

    def __neg__(self) -> "Dual":
        return Dual(-self.v, -self.d)

    def __pos__(self) -> "Dual":
        return self

    def __add__(self, other: Any) -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.v + other.v, self.d + other.d)
        other = np.asarray(other, dtype=np.float64)
        v = self.v + other
        return Dual(v, np.broadcast_to(self.d, v.shape + (self.n_vars,)))

    __radd__ = __add__

    def __sub__(self, other: Any) -> "Dual":
        return self + (-other)

    def __rsub__(self, other: Any) -> "Dual":
        return (-self) + other

    def __mul__(self, other: Any) -> "Dual":
        if isinstance(other, Dual):
            return Dual(self.v * other.v, self.d * other.v[..., None] + other.d * self.v[..., None])
        other = np.asarray(other, dtype=np.float64)
        return Dual(self.v * other, self.d * other[..., None])

    __rmul__ = __mul__

    def __truediv__(self, other: Any) -> "Dual":
        if isinstance(other, Dual):
            inv = 1.0 / other.v
            v = self.v * inv
            return Dual(v, (self.d - other.d * v[..., None]) * inv[..., None])
        other = np.asarray(other, dtype=np.float64)
        return Dual(self.v / other, self.d / other[..., None])

    def __rtruediv__(self, other: Any) -> "Dual":
        other = np.asarray(other, dtype=np.float64)
        v = other / self.v
        return Dual(v, -self.d * (v / self.v)[..., None])

    def __pow__(self, exponent: float) -> "Dual":
        if isinstance(exponent, Dual):
            raise TypeError("Dual exponents are not supported")
        e = float(exponent)
        return Dual(self.v**e, self.d * (e * self.v ** (e - 1.0))[..., None])

    # Comparisons act on values only (used for validity masks).
    def __lt__(self, other: Any) -> np.ndarray:
        return self.v < value(other)

    def __le__(self, other: Any) -> np.ndarray:
        return self.v <= value(other)

    def __gt__(self, other: Any) -> np.ndarray:
        return self.v > value(other)

    def __ge__(self, other: Any) -> np.ndarray:
        return self.v >= value(other)


def value(x: Any) -> np.ndarray:
    """Plain value of `x` (strips derivatives)."""
    if isinstance(x, Dual):
        return x.v
    return np.asarray(x, dtype=np.float64)


def jacobian(x: Any, n_vars: int) -> np.ndarray:
    """Derivatives of `x` with shape value(x).shape + (n_vars,); zeros for constants."""
    if isinstance(x, Dual):
        return np.broadcast_to(x.d, x.v.shape + (n_vars,))
    return np.zeros(np.shape(x) + (n_vars,), dtype=np.float64)


def sqrt(x: Any) -> Any:
    if isinstance(x, Dual):
        s = np.sqrt(x.v)
        return Dual(s, x.d * (0.5 / s)[..., None])
    return np.sqrt(x)


def sin(x: Any) -> Any:
    if isinstance(x, Dual):
        return Dual(np.sin(x.v), x.d * np.cos(x.v)[..., None])
    return np.sin(x)


def cos(x: Any) -> Any:
    if isinstance(x, Dual):
        return Dual(np.cos(x.v), -x.d * np.sin(x.v)[..., None])
    return np.cos(x)


def arctan2(y: Any, x: Any) -> Any:
    if not isinstance(y, Dual) and not isinstance(x, Dual):
        return np.arctan2(y, x)
    yv = value(y)
    xv = value(x)
    r2 = xv * xv + yv * yv
    a = np.arctan2(yv, xv)
    n = y.n_vars if isinstance(y, Dual) else x.n_vars
    dy = jacobian(y, n)
    dx = jacobian(x, n)
    return Dual(a, (dy * xv[..., None] - dx * yv[..., None]) / r2[..., None])


def where(mask: Any, a: Any, b: Any) -> Any:
    """Elementwise select; derivatives of the unselected branch are dropped."""
    mask = np.asarray(mask, dtype=bool)
    if not isinstance(a, Dual) and not isinstance(b, Dual):
        return np.where(mask, a, b)
    n = a.n_vars if isinstance(a, Dual) else b.n_vars
    v = np.where(mask, value(a), value(b))
    d = np.where(mask[..., None], jacobian(a, n), jacobian(b, n))
    return Dual(v, d)


def stack_residuals(ru: Any, rv: Any, n_vars: int) -> tuple[np.ndarray, np.ndarray]:
    """
    Interleave per-point residual pairs.

    Returns r (2N,) laid out as [u0, v0, u1, v1, ...] and J (2N, n_vars).
    """
    r = np.stack([value(ru), value(rv)], axis=-1).reshape(-1)
    J = np.stack([jacobian(ru, n_vars), jacobian(rv, n_vars)], axis=-2).reshape(-1, n_vars)
    return r, J
