# Copyright 2024-2025 pylinsol authors. All rights reserved.

import warnings

import numpy as np
from scipy.linalg import LinAlgWarning, lu_factor, lu_solve
from scipy.sparse import csr_matrix

from pylinsol import NDArray
from pylinsol.configs.linsol_config import LinearSolverConfig
from pylinsol.core.exceptions import FactorizationError
from pylinsol.core.solver import LinearSolver
from pylinsol.core.sparsity import Sparsity


class DenseSolver(LinearSolver):
    def __init__(
        self,
        sparsity: Sparsity,
        nrhs: int = 1,
        config: LinearSolverConfig = None,
        **kwargs,
    ) -> None:
        """Initializes the DenseSolver class.

        The matrix is densified and factored with partial pivoting. Suited
        for small or nearly dense systems.

        Parameters
        ----------
        sparsity : Sparsity
            Nonzero pattern of the matrix.
        nrhs : int
            Number of right-hand sides.
        config : LinearSolverConfig, optional
            Configuration object for the solver.
        """
        super().__init__(sparsity, nrhs, config)

        self.LU: NDArray = None
        self.piv: NDArray = None

    def _factorize(self, A: csr_matrix) -> None:
        self.LU = None
        self.piv = None

        try:
            with warnings.catch_warnings():
                # Singularity is reported below
                warnings.simplefilter("ignore", LinAlgWarning)
                LU, piv = lu_factor(A.toarray(), check_finite=True)
        except ValueError as e:
            raise FactorizationError(f"Dense LU factorization failed: {e}") from e

        zero_pivots = np.flatnonzero(np.diag(LU) == 0.0)
        if zero_pivots.size > 0:
            raise FactorizationError(
                f"The matrix is numerically singular: zero pivot at position {zero_pivots[0]}"
            )

        self.LU = LU
        self.piv = piv

    def _solve(self, buffer: NDArray, transpose: bool) -> None:
        buffer[:] = lu_solve((self.LU, self.piv), buffer.T, trans=1 if transpose else 0).T

    def get_solver_memory(self) -> int:
        """Return the memory used by the solver in number of bytes."""
        if self.LU is None:
            return 0

        return self.LU.nbytes + self.piv.nbytes
