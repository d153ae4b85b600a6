# Copyright 2024-2025 pylinsol authors. All rights reserved.

import logging
from abc import ABC, abstractmethod

import numpy as np
from scipy import sparse
from tabulate import tabulate

from pylinsol import ArrayLike, NDArray
from pylinsol.configs.linsol_config import LinearSolverConfig
from pylinsol.core.exceptions import (
    ConfigurationError,
    FactorizationError,
    PreparationError,
    SingularStructureError,
)
from pylinsol.core.propagation import (
    bvec_t,
    propagate_conservative,
    propagate_precise,
)
from pylinsol.core.sparsity import (
    Sparsity,
    dulmage_mendelsohn,
    is_singular,
    structural_rank,
)
from pylinsol.graph.expr import (
    Expr,
    Slot,
    SolveNode,
    is_zero,
    mul,
    neg,
    trans,
    vertcat,
    vertsplit,
    zeros,
)
from pylinsol.utils.print_utils import add_str_header, format_size

logger = logging.getLogger(__name__)


class LinearSolver(ABC):
    """Abstract core class for sparse linear-system solvers.

    Solves ``A x = b`` (or ``A' x = b``) for every row ``b`` of a
    right-hand-side batch of shape ``(nrhs, n)``, reusing one factorization
    of ``A`` for all rows, and propagates forward/adjoint sensitivities and
    dependency bit-vectors through the solve.

    Backends implement the factorization by overriding ``_factorize`` and
    ``_solve``.
    """

    def __init__(
        self,
        sparsity: Sparsity,
        nrhs: int = 1,
        config: LinearSolverConfig = None,
        **kwargs,
    ) -> None:
        """Initializes the solver and validates the structure of ``A``.

        Parameters
        ----------
        sparsity : Sparsity
            Nonzero pattern of ``A``. Fixed for the lifetime of the solver.
        nrhs : int
            Number of right-hand sides of the ``B`` input.
        config : LinearSolverConfig, optional
            Configuration object for the solver.

        Raises
        ------
        ConfigurationError
            If the pattern is null or not square.
        SingularStructureError
            If the pattern is structurally rank-deficient.
        """
        if config is None:
            config = LinearSolverConfig()
        self.config = config

        # Make sure arguments are consistent
        if sparsity is None or sparsity.is_null():
            raise ConfigurationError("The sparsity pattern of A must not be null.")
        if not sparsity.is_square:
            raise ConfigurationError(
                f"The matrix must be square but got {sparsity.dim_string()}"
            )
        if nrhs < 1:
            raise ConfigurationError(f"nrhs must be positive, got {nrhs}")
        if is_singular(sparsity):
            rank = structural_rank(sparsity)
            raise SingularStructureError(
                rank,
                sparsity.n_rows,
                "Singularity - the matrix is structurally rank-deficient. "
                f"sprank(A)={rank} (instead of {sparsity.n_rows})",
            )

        self.sparsity: Sparsity = sparsity
        self.n: int = sparsity.n_rows
        self.nrhs: int = nrhs

        # Calculate the Dulmage-Mendelsohn decomposition
        dm = dulmage_mendelsohn(sparsity)
        self.row_perm: NDArray = dm.row_perm
        self.col_perm: NDArray = dm.col_perm
        self.row_blocks: NDArray = dm.row_blocks
        self.col_blocks: NDArray = dm.col_blocks
        self.coarse_row_blocks: NDArray = dm.coarse_row_blocks
        self.coarse_col_blocks: NDArray = dm.coarse_col_blocks

        # Perfect matching (column on the diagonal of each row)
        self.col_of_row: NDArray = np.empty(self.n, dtype=np.int64)
        self.col_of_row[self.row_perm] = self.col_perm

        # No native directional derivatives
        self.number_of_fwd_dir: int = config.number_of_fwd_dir
        self.number_of_adj_dir: int = config.number_of_adj_dir
        self.max_number_of_fwd_dir: int = config.max_number_of_fwd_dir
        self.max_number_of_adj_dir: int = config.max_number_of_adj_dir

        # Allocate inputs and outputs
        self.input_A: NDArray = np.zeros(sparsity.nnz, dtype=np.float64)
        self.input_B: NDArray = np.zeros((nrhs, self.n), dtype=np.float64)
        self.output_X: NDArray = self.input_B.copy()

        # Not prepared
        self.prepared: bool = False
        self.n_factorizations: int = 0
        self._factored_A: NDArray = None

        logger.info(
            "%s initialized: %s, nrhs=%d, %d diagonal blocks.",
            type(self).__name__,
            sparsity.dim_string(),
            nrhs,
            dm.n_blocks,
        )

    # --- Backend interface ----------------------------------------------------

    @abstractmethod
    def _factorize(self, A: sparse.csr_matrix) -> None:
        """Factor ``A``. Raise ``FactorizationError`` on failure."""
        ...

    @abstractmethod
    def _solve(self, buffer: NDArray, transpose: bool) -> None:
        """Overwrite each row ``b`` of ``buffer`` with the solution of
        ``A x = b`` (``A' x = b`` if ``transpose``)."""
        ...

    @abstractmethod
    def get_solver_memory(self) -> int:
        """Return the memory used by the factorization in number of bytes."""
        ...

    # --- Inputs ---------------------------------------------------------------

    def _to_values(self, values: ArrayLike, name: str = "A") -> NDArray:
        """Nonzero vector of a matrix with (a subset of) the pattern of ``A``.

        Accepts the nonzero vector itself, a dense ``(n, n)`` matrix or a
        scipy sparse matrix.
        """
        if sparse.issparse(values):
            if not self.sparsity.contains(Sparsity.from_spmatrix(values)):
                raise ConfigurationError(
                    f"{name} has nonzeros outside the sparsity pattern of the solver."
                )
            return self.sparsity.project(values.toarray()).astype(np.float64)

        values = np.asarray(values, dtype=np.float64)
        if values.shape == (self.sparsity.nnz,):
            return values
        if values.shape == self.sparsity.shape:
            outside = values.copy()
            outside[self.sparsity.rows, self.sparsity.indices] = 0.0
            if np.any(outside != 0.0):
                raise ConfigurationError(
                    f"{name} has nonzeros outside the sparsity pattern of the solver."
                )
            return self.sparsity.project(values)

        raise ConfigurationError(
            f"{name} must be a {self.sparsity.nnz}-vector of nonzeros or a "
            f"{self.n}-by-{self.n} matrix, got shape {values.shape}"
        )

    def set_A(self, values: ArrayLike) -> None:
        """Set the numeric values of ``A``.

        This does not invalidate the current factorization: call
        ``prepare()`` before relying on the new values.
        """
        self.input_A[:] = self._to_values(values)

    def set_B(self, values: ArrayLike) -> None:
        values = np.asarray(values, dtype=np.float64)
        if values.ndim == 1 and self.nrhs == 1:
            values = values.reshape(1, -1)
        if values.shape != self.input_B.shape:
            raise ConfigurationError(
                f"B must have shape {self.input_B.shape}, got {values.shape}"
            )
        self.input_B[:] = values

    @property
    def A(self) -> sparse.csr_matrix:
        """Current value of ``A`` as a CSR matrix."""
        return self.sparsity.to_csr(self.input_A.copy())

    # --- Prepare / solve protocol ---------------------------------------------

    def prepare(self) -> None:
        """Factor the current values of ``A``.

        Raises
        ------
        FactorizationError
            If the factorization fails. The solver is left unprepared.
        """
        self.prepared = False

        try:
            self._factorize(self.A)
        except FactorizationError as e:
            logger.warning("%s: factorization failed: %s", type(self).__name__, e)
            raise

        self.prepared = True
        self.n_factorizations += 1
        self._factored_A = self.input_A.copy()
        logger.info("%s: factorization #%d done.", type(self).__name__, self.n_factorizations)

    def solve(self, buffer: NDArray, nrhs: int, transpose: bool = False) -> NDArray:
        """Solve in place with the most recent factorization.

        Parameters
        ----------
        buffer : NDArray
            Right-hand sides, shape ``(nrhs, n)``. Overwritten by the solution.
        nrhs : int
            Number of right-hand sides in ``buffer``.
        transpose : bool
            Solve ``A' x = b`` instead of ``A x = b``.

        Returns
        -------
        NDArray
            ``buffer``.
        """
        if not self.prepared:
            raise PreparationError(
                "The linear solver has not been prepared. Call prepare() first."
            )
        if buffer.shape != (nrhs, self.n):
            raise ConfigurationError(
                f"Expected a right-hand side of shape {(nrhs, self.n)}, got {buffer.shape}"
            )

        if nrhs > 0:
            self._solve(buffer, transpose)
        logger.debug(
            "%s: solved %d right-hand side(s), transpose=%s.",
            type(self).__name__,
            nrhs,
            transpose,
        )

        return buffer

    def solve_rhs(self, transpose: bool = False) -> NDArray:
        """Solve for the ``B`` input into the ``X`` output."""
        np.copyto(self.output_X, self.input_B)
        return self.solve(self.output_X, self.nrhs, transpose)

    def _is_factorization_current(self) -> bool:
        return (
            self.prepared
            and self._factored_A is not None
            and np.array_equal(self._factored_A, self.input_A)
        )

    def evaluate(self, nfdir: int = 0, nadir: int = 0) -> NDArray:
        """Factor ``A`` and solve for ``B``.

        Parameters
        ----------
        nfdir, nadir : int
            Number of forward/adjoint directions. Must be zero: use
            ``evaluate_symbolic`` or ``evaluate_numeric`` for sensitivities.

        Returns
        -------
        NDArray
            The ``X`` output.
        """
        if nfdir != 0 or nadir != 0:
            raise ConfigurationError(
                "Directional derivatives for LinearSolver not supported. "
                "Reformulate with evaluate_symbolic or evaluate_numeric."
            )

        if not (self.config.reuse_factorization and self._is_factorization_current()):
            self.prepare()

        # Make sure preparation successful
        if not self.prepared:
            raise PreparationError("LinearSolver.evaluate: Preparation failed")

        return self.solve_rhs(False)

    # --- Graph construction ---------------------------------------------------

    def build_solve(self, A: Expr, B: Expr, transpose: bool = False) -> SolveNode:
        """Graph node for the solution of ``A x = b`` for every row of ``B``."""
        return SolveNode(A, B, transpose, self)

    # --- Symbolic sensitivities -----------------------------------------------

    def evaluate_symbolic(
        self,
        A: Expr,
        B: Expr,
        X: Expr = None,
        fwd_seed: list[tuple[Expr, Expr]] = (),
        fwd_sens: list[Slot] = (),
        adj_seed: list[Slot] = (),
        adj_sens: list[tuple[Slot, Slot]] = (),
        transpose: bool = False,
    ) -> Expr:
        """Build the solution and its sensitivities as graph expressions.

        Parameters
        ----------
        A, B : Expr
            Matrix ``(n, n)`` and right-hand sides ``(nrhs, n)``.
        X : Expr, optional
            Already computed solution. Built from ``A`` and ``B`` if omitted.
        fwd_seed : list of (B_hat, A_hat)
            Forward seeds, one pair per direction. ``None`` means zero.
        fwd_sens : list of Slot
            Receives the forward sensitivity of ``X`` for each direction.
        adj_seed : list of Slot
            Adjoint seeds ``X_bar``. Consumed (cleared) by the call.
        adj_sens : list of (Slot, Slot)
            Adjoint sensitivities ``(B_bar, A_bar)``, accumulated into. A
            ``B_bar`` slot may be the same object as the seed slot.
        transpose : bool
            Whether the primal solve is transposed.

        Returns
        -------
        Expr
            The solution ``X``.
        """
        if len(fwd_seed) != len(fwd_sens):
            raise ConfigurationError("fwd_seed and fwd_sens must have the same length.")
        if len(adj_seed) != len(adj_sens):
            raise ConfigurationError("adj_seed and adj_sens must have the same length.")

        # Nondifferentiated output
        if X is None:
            if is_zero(B):
                X = zeros(B.shape)
            else:
                X = self.build_solve(A, B, transpose)

        # Forward sensitivities, collect the right-hand sides
        rhs, rhs_ind, row_offset = [], [], [0]
        for d, (B_hat, A_hat) in enumerate(fwd_seed):
            if B_hat is None:
                B_hat = zeros(B.shape)
            if A_hat is None:
                A_hat = zeros(A.shape)

            if transpose:
                rhs_d = B_hat - mul(X, A_hat)
            else:
                rhs_d = B_hat - mul(X, trans(A_hat))

            if is_zero(rhs_d):
                fwd_sens[d].value = zeros(rhs_d.shape)
            else:
                rhs.append(rhs_d)
                rhs_ind.append(d)
                row_offset.append(row_offset[-1] + rhs_d.n_rows)

        if rhs:
            # Solve for all directions at once
            rhs = vertsplit(self.build_solve(A, vertcat(rhs), transpose), row_offset)
            for d, X_hat in zip(rhs_ind, rhs):
                fwd_sens[d].value = X_hat

        # Adjoint sensitivities, collect the right-hand sides
        rhs, rhs_ind, row_offset = [], [], [0]
        for d, X_bar in enumerate(adj_seed):
            B_bar = adj_sens[d][0]

            if X_bar.value is None or is_zero(X_bar.value):
                if X_bar is B_bar:
                    B_bar.value = zeros(B.shape)
                else:
                    if B_bar.value is None:
                        B_bar.value = zeros(B.shape)
                    X_bar.value = None
            else:
                rhs.append(X_bar.value)
                rhs_ind.append(d)
                row_offset.append(row_offset[-1] + X_bar.value.n_rows)

                # Delete seed
                X_bar.value = None

        if rhs:
            # Solve for all directions at once, transposed
            rhs = vertsplit(self.build_solve(A, vertcat(rhs), not transpose), row_offset)

            for d, R in zip(rhs_ind, rhs):
                B_bar, A_bar = adj_sens[d]

                # Propagate to A
                if transpose:
                    A_contrib = mul(trans(X), R, mask=self.sparsity)
                else:
                    A_contrib = mul(trans(R), X, mask=self.sparsity)
                if A_bar.value is None:
                    A_bar.value = neg(A_contrib)
                else:
                    A_bar.value = A_bar.value - A_contrib

                # Propagate to B
                if adj_seed[d] is B_bar or B_bar.value is None:
                    B_bar.value = R
                else:
                    B_bar.value = B_bar.value + R

        return X

    # --- Numeric sensitivities ------------------------------------------------

    def evaluate_numeric(
        self,
        A: ArrayLike,
        B: NDArray,
        X: NDArray,
        fwd_seed: list[tuple[NDArray, ArrayLike]] = (),
        fwd_sens: list[NDArray] = (),
        adj_seed: list[NDArray] = (),
        adj_sens: list[tuple[NDArray, NDArray]] = (),
        transpose: bool = False,
    ) -> NDArray:
        """Solve and propagate sensitivities numerically with one factorization.

        All buffers are updated in place. ``B``-shaped buffers have shape
        ``(nrhs, n)``, ``A``-shaped seeds are given as nonzero vectors, dense
        or sparse matrices, and ``A``-shaped sensitivities are nonzero
        vectors. A seed buffer may be the same array as its sensitivity
        buffer.

        Parameters
        ----------
        A : ArrayLike
            Values of the matrix.
        B, X : NDArray
            Right-hand sides and solution buffer (may be the same array).
        fwd_seed : list of (B_hat, A_hat)
            Forward seeds. ``None`` means zero.
        fwd_sens : list of NDArray
            Forward sensitivities of ``X``, overwritten.
        adj_seed : list of NDArray
            Adjoint seeds ``X_bar``, consumed.
        adj_sens : list of (B_bar, A_bar)
            Adjoint sensitivities, accumulated into.
        transpose : bool
            Whether the system is transposed.

        Returns
        -------
        NDArray
            ``X``.
        """
        A_hats = self._check_numeric_buffers(B, X, fwd_seed, fwd_sens, adj_seed, adj_sens)

        nrhs = X.shape[0]
        rows, cols = self.sparsity.rows, self.sparsity.indices

        # Factorize the matrix
        self.set_A(A)
        self.prepare()

        # Solve for nondifferentiated output
        if B is not X:
            np.copyto(X, B)
        self.solve(X, nrhs, transpose)

        # Forward sensitivities
        for d, (B_hat, _) in enumerate(fwd_seed):
            X_hat = fwd_sens[d]
            A_hat = A_hats[d]
            if B_hat is None:
                X_hat[...] = 0.0
            elif B_hat is not X_hat:
                np.copyto(X_hat, B_hat)

            if A_hat is not None:
                if transpose:
                    X_hat -= (A_hat.T @ X.T).T
                else:
                    X_hat -= (A_hat @ X.T).T

            if B_hat is not None or A_hat is not None:
                self.solve(X_hat, nrhs, transpose)

        # Adjoint sensitivities
        for d, X_bar in enumerate(adj_seed):
            B_bar, A_bar = adj_sens[d]

            # Solve transposed
            np.negative(X_bar, out=X_bar)
            self.solve(X_bar, nrhs, not transpose)

            # Propagate to A, restricted to the pattern
            if transpose:
                A_bar += np.sum(X[:, rows] * X_bar[:, cols], axis=0)
            else:
                A_bar += np.sum(X_bar[:, rows] * X[:, cols], axis=0)

            # Propagate to B
            if X_bar is B_bar:
                np.negative(B_bar, out=B_bar)
            else:
                B_bar -= X_bar
                X_bar[...] = 0.0

        return X

    def _check_numeric_buffers(
        self,
        B: NDArray,
        X: NDArray,
        fwd_seed: list[tuple[NDArray, ArrayLike]],
        fwd_sens: list[NDArray],
        adj_seed: list[NDArray],
        adj_sens: list[tuple[NDArray, NDArray]],
    ) -> list[sparse.csr_matrix]:
        """Validate every buffer of ``evaluate_numeric`` before any is written.

        Returns the forward ``A`` seeds as CSR matrices (``None`` for zero).
        """
        if len(fwd_seed) != len(fwd_sens):
            raise ConfigurationError("fwd_seed and fwd_sens must have the same length.")
        if len(adj_seed) != len(adj_sens):
            raise ConfigurationError("adj_seed and adj_sens must have the same length.")

        if X.ndim != 2 or X.shape[1] != self.n:
            raise ConfigurationError(f"X must have shape (nrhs, {self.n}), got {X.shape}")

        def check_shape(name: str, buffer: NDArray, shape: tuple[int, ...]) -> None:
            if buffer.shape != shape:
                raise ConfigurationError(f"{name} must have shape {shape}, got {buffer.shape}")

        check_shape("B", B, X.shape)

        A_hats = []
        for d, (B_hat, A_hat) in enumerate(fwd_seed):
            check_shape(f"fwd_sens[{d}]", fwd_sens[d], X.shape)
            if B_hat is not None:
                check_shape(f"B_hat[{d}]", B_hat, X.shape)
            if A_hat is None:
                A_hats.append(None)
            else:
                A_hats.append(self.sparsity.to_csr(self._to_values(A_hat, name="A_hat")))

        for d, X_bar in enumerate(adj_seed):
            B_bar, A_bar = adj_sens[d]
            check_shape(f"X_bar[{d}]", X_bar, X.shape)
            check_shape(f"B_bar[{d}]", B_bar, X.shape)
            check_shape(f"A_bar[{d}]", A_bar, (self.sparsity.nnz,))

        return A_hats

    # --- Dependency propagation -----------------------------------------------

    def propagate_sparsity(
        self,
        A_bits: NDArray,
        B_bits: NDArray,
        X_bits: NDArray,
        fwd: bool = True,
        transpose: bool = False,
    ) -> None:
        """Propagate dependency bit-vectors through the solve, in place.

        Parameters
        ----------
        A_bits : NDArray
            One ``uint64`` word per nonzero of ``A``.
        B_bits, X_bits : NDArray
            ``uint64`` words of shape ``(nrhs, n)``. May be the same array.
        fwd : bool
            Forward (inputs to outputs) or reverse (outputs to inputs).
        transpose : bool
            Whether the solve is transposed. Only the precise policy
            distinguishes the two.
        """
        for name, bits in (("A_bits", A_bits), ("B_bits", B_bits), ("X_bits", X_bits)):
            if bits.dtype != bvec_t:
                raise TypeError(f"{name} must have dtype {np.dtype(bvec_t)}, got {bits.dtype}")
        if A_bits.shape != (self.sparsity.nnz,):
            raise ConfigurationError(
                f"A_bits must have shape {(self.sparsity.nnz,)}, got {A_bits.shape}"
            )
        if B_bits.ndim != 2 or B_bits.shape[1] != self.n or B_bits.shape != X_bits.shape:
            raise ConfigurationError(
                f"B_bits and X_bits must have shape (nrhs, {self.n}), "
                f"got {B_bits.shape} and {X_bits.shape}"
            )

        if self.config.sparsity_propagation == "precise":
            propagate_precise(
                self.sparsity, self.col_of_row, A_bits, B_bits, X_bits, fwd, transpose
            )
        else:
            propagate_conservative(A_bits, B_bits, X_bits, fwd)

        logger.debug(
            "%s: %s %s dependency propagation over %d right-hand side(s).",
            type(self).__name__,
            self.config.sparsity_propagation,
            "forward" if fwd else "reverse",
            B_bits.shape[0],
        )

    # --- Reporting ------------------------------------------------------------

    def __str__(self) -> str:
        """String representation of the solver."""
        headers = [
            "Backend",
            "Size",
            "Nonzeros",
            "RHS",
            "Structural Rank",
            "Diagonal Blocks",
            "Prepared",
            "Factorizations",
            "Memory",
        ]
        values = [
            type(self).__name__,
            f"{self.n}x{self.n}",
            self.sparsity.nnz,
            self.nrhs,
            structural_rank(self.sparsity),
            len(self.row_blocks) - 1,
            self.prepared,
            self.n_factorizations,
            format_size(self.get_solver_memory()),
        ]

        table = tabulate(
            [headers, values],
            tablefmt="fancy_grid",
            colalign=("center",) * len(headers),
        )

        return add_str_header("Linear Solver", table)
