# Copyright 2024-2025 pylinsol authors. All rights reserved.

"""Matrix-valued expression graph.

Every node is a 2D matrix expression. Structural zeros are represented by
``Zero`` nodes, and the helper functions below fold them away so that
``is_zero`` can be used to skip work when building derivative graphs.
"""

from typing import TYPE_CHECKING

import numpy as np

from pylinsol import ArrayLike, NDArray
from pylinsol.core.sparsity import Sparsity

if TYPE_CHECKING:
    from pylinsol.core.solver import LinearSolver


class Expr:
    """Base class for matrix expressions."""

    shape: tuple[int, int]

    # numpy defers to the reflected operators below
    __array_ufunc__ = None

    @property
    def n_rows(self) -> int:
        return self.shape[0]

    @property
    def n_cols(self) -> int:
        return self.shape[1]

    @property
    def T(self) -> "Expr":
        return trans(self)

    def is_zero(self) -> bool:
        """Whether the expression is structurally zero."""
        return False

    def dependencies(self) -> tuple["Expr", ...]:
        return ()

    def evaluate(self, env: dict = None, cache: dict = None) -> NDArray:
        """Evaluate the expression numerically.

        Parameters
        ----------
        env : dict, optional
            Values of the symbols, keyed by ``Symbol`` or by symbol name.
        cache : dict, optional
            Results of already evaluated nodes, keyed by ``id(node)``. Shared
            sub-expressions are only evaluated once per cache.

        Returns
        -------
        NDArray
            Dense array of shape ``self.shape``.
        """
        if env is None:
            env = {}
        if cache is None:
            cache = {}
        key = id(self)
        if key not in cache:
            cache[key] = self._evaluate(env, cache)
        return cache[key]

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        raise NotImplementedError

    def __add__(self, other) -> "Expr":
        return add(self, _as_expr(other))

    def __radd__(self, other) -> "Expr":
        return add(_as_expr(other), self)

    def __sub__(self, other) -> "Expr":
        return sub(self, _as_expr(other))

    def __rsub__(self, other) -> "Expr":
        return sub(_as_expr(other), self)

    def __neg__(self) -> "Expr":
        return neg(self)

    def __matmul__(self, other) -> "Expr":
        return mul(self, _as_expr(other))

    def __rmatmul__(self, other) -> "Expr":
        return mul(_as_expr(other), self)


class Symbol(Expr):
    """Free variable, bound to a value at evaluation time."""

    def __init__(self, name: str, shape: tuple[int, int]) -> None:
        self.name = name
        self.shape = (int(shape[0]), int(shape[1]))

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        if self in env:
            value = env[self]
        elif self.name in env:
            value = env[self.name]
        else:
            raise KeyError(f"No value given for symbol '{self.name}'")

        value = np.asarray(value, dtype=np.float64)
        if value.ndim == 1 and self.n_rows == 1:
            value = value.reshape(1, -1)
        if value.shape != self.shape:
            raise ValueError(
                f"Symbol '{self.name}' has shape {self.shape}, got {value.shape}"
            )
        return value

    def __repr__(self) -> str:
        return self.name


class Constant(Expr):
    def __init__(self, value: ArrayLike) -> None:
        value = np.asarray(value, dtype=np.float64)
        if value.ndim < 2:
            value = value.reshape(1, -1)
        self.value = value
        self.shape = value.shape

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return self.value

    def __repr__(self) -> str:
        return f"Constant{self.shape}"


class Zero(Expr):
    """Structurally zero matrix."""

    def __init__(self, shape: tuple[int, int]) -> None:
        self.shape = (int(shape[0]), int(shape[1]))

    def is_zero(self) -> bool:
        return True

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return np.zeros(self.shape)

    def __repr__(self) -> str:
        return f"Zero{self.shape}"


class Neg(Expr):
    def __init__(self, x: Expr) -> None:
        self.x = x
        self.shape = x.shape

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.x,)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return -self.x.evaluate(env, cache)

    def __repr__(self) -> str:
        return f"(-{self.x!r})"


class Add(Expr):
    def __init__(self, x: Expr, y: Expr) -> None:
        self.x = x
        self.y = y
        self.shape = x.shape

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.x, self.y)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return self.x.evaluate(env, cache) + self.y.evaluate(env, cache)

    def __repr__(self) -> str:
        return f"({self.x!r}+{self.y!r})"


class Sub(Expr):
    def __init__(self, x: Expr, y: Expr) -> None:
        self.x = x
        self.y = y
        self.shape = x.shape

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.x, self.y)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return self.x.evaluate(env, cache) - self.y.evaluate(env, cache)

    def __repr__(self) -> str:
        return f"({self.x!r}-{self.y!r})"


class MatMul(Expr):
    """Matrix product, optionally restricted to the nonzeros of ``mask``."""

    def __init__(self, x: Expr, y: Expr, mask: Sparsity = None) -> None:
        self.x = x
        self.y = y
        self.mask = mask
        self.shape = (x.n_rows, y.n_cols)

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.x, self.y)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        result = self.x.evaluate(env, cache) @ self.y.evaluate(env, cache)
        if self.mask is not None:
            result = np.where(self.mask.to_dense() != 0, result, 0.0)
        return result

    def __repr__(self) -> str:
        return f"mul({self.x!r},{self.y!r})"


class Transpose(Expr):
    def __init__(self, x: Expr) -> None:
        self.x = x
        self.shape = (x.n_cols, x.n_rows)

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.x,)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return self.x.evaluate(env, cache).T

    def __repr__(self) -> str:
        return f"{self.x!r}'"


class Vertcat(Expr):
    def __init__(self, parts: list[Expr]) -> None:
        self.parts = list(parts)
        self.shape = (sum(p.n_rows for p in self.parts), self.parts[0].n_cols)

    def dependencies(self) -> tuple[Expr, ...]:
        return tuple(self.parts)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return np.vstack([p.evaluate(env, cache) for p in self.parts])

    def __repr__(self) -> str:
        return f"vertcat({', '.join(repr(p) for p in self.parts)})"


class RowSlice(Expr):
    def __init__(self, x: Expr, start: int, stop: int) -> None:
        self.x = x
        self.start = start
        self.stop = stop
        self.shape = (stop - start, x.n_cols)

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.x,)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        return self.x.evaluate(env, cache)[self.start : self.stop]

    def __repr__(self) -> str:
        return f"{self.x!r}[{self.start}:{self.stop}]"


class SolveNode(Expr):
    """Rows of the solution of ``A x = b`` (``A' x = b`` if transposed)
    for every row ``b`` of ``B``, computed by ``solver``."""

    def __init__(
        self,
        A: Expr,
        B: Expr,
        transpose: bool,
        solver: "LinearSolver",
    ) -> None:
        n = solver.n
        if A.shape != (n, n):
            raise ValueError(f"A must have shape {(n, n)}, got {A.shape}")
        if B.n_cols != n:
            raise ValueError(f"B must have {n} columns, got shape {B.shape}")

        self.A = A
        self.B = B
        self.transpose = transpose
        self.solver = solver
        self.shape = B.shape

    def dependencies(self) -> tuple[Expr, ...]:
        return (self.A, self.B)

    def _evaluate(self, env: dict, cache: dict) -> NDArray:
        self.solver.set_A(self.A.evaluate(env, cache))
        self.solver.prepare()

        x = np.array(self.B.evaluate(env, cache), dtype=np.float64, copy=True)
        return self.solver.solve(x, x.shape[0], self.transpose)

    def __repr__(self) -> str:
        return f"solve({self.A!r},{self.B!r},{self.transpose})"


class Slot:
    """Mutable cell holding an expression (or nothing).

    Seed and sensitivity slots that are the same object alias each other.
    """

    __slots__ = ("value",)

    def __init__(self, value: Expr = None) -> None:
        self.value = value

    def __repr__(self) -> str:
        return f"Slot({self.value!r})"


# --- Construction helpers ------------------------------------------------------


def _as_expr(x) -> Expr:
    if isinstance(x, Expr):
        return x
    return Constant(x)


def _check_same_shape(x: Expr, y: Expr, op: str) -> None:
    if x.shape != y.shape:
        raise ValueError(f"Dimension mismatch in {op}: {x.shape} and {y.shape}")


def symbol(name: str, n_rows: int, n_cols: int = 1) -> Symbol:
    return Symbol(name, (n_rows, n_cols))


def constant(value: ArrayLike) -> Constant:
    return Constant(value)


def zeros(shape: tuple[int, int]) -> Zero:
    return Zero(shape)


def is_zero(x: Expr) -> bool:
    return x.is_zero()


def neg(x: Expr) -> Expr:
    if x.is_zero():
        return x
    if isinstance(x, Neg):
        return x.x
    return Neg(x)


def add(x: Expr, y: Expr) -> Expr:
    _check_same_shape(x, y, "add")
    if x.is_zero():
        return y
    if y.is_zero():
        return x
    return Add(x, y)


def sub(x: Expr, y: Expr) -> Expr:
    _check_same_shape(x, y, "sub")
    if y.is_zero():
        return x
    if x.is_zero():
        return neg(y)
    return Sub(x, y)


def mul(x: Expr, y: Expr, mask: Sparsity = None) -> Expr:
    """Matrix product ``x @ y``, restricted to ``mask`` if given."""
    if x.n_cols != y.n_rows:
        raise ValueError(f"Dimension mismatch in mul: {x.shape} and {y.shape}")
    shape = (x.n_rows, y.n_cols)
    if mask is not None and mask.shape != shape:
        raise ValueError(f"Mask has shape {mask.shape}, product has {shape}")
    if x.is_zero() or y.is_zero():
        return Zero(shape)
    return MatMul(x, y, mask)


def trans(x: Expr) -> Expr:
    if x.is_zero():
        return Zero((x.n_cols, x.n_rows))
    if isinstance(x, Transpose):
        return x.x
    return Transpose(x)


def vertcat(parts: list[Expr]) -> Expr:
    if len(parts) == 0:
        raise ValueError("vertcat needs at least one expression")
    n_cols = parts[0].n_cols
    if any(p.n_cols != n_cols for p in parts):
        raise ValueError("vertcat: all expressions must have the same number of columns")
    if len(parts) == 1:
        return parts[0]
    if all(p.is_zero() for p in parts):
        return Zero((sum(p.n_rows for p in parts), n_cols))
    return Vertcat(parts)


def vertsplit(x: Expr, offsets: list[int]) -> list[Expr]:
    """Split ``x`` row-wise at ``offsets`` (first entry 0, last ``x.n_rows``)."""
    if offsets[0] != 0 or offsets[-1] != x.n_rows:
        raise ValueError(
            f"Offsets must run from 0 to {x.n_rows}, got {offsets[0]} to {offsets[-1]}"
        )
    if len(offsets) == 2:
        return [x]
    if x.is_zero():
        return [Zero((stop - start, x.n_cols)) for start, stop in zip(offsets[:-1], offsets[1:])]
    return [RowSlice(x, start, stop) for start, stop in zip(offsets[:-1], offsets[1:])]
