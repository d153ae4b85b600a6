# Copyright 2024-2025 pylinsol authors. All rights reserved.

import numpy as np
from scipy.sparse import csc_matrix, csr_matrix
from scipy.sparse.linalg import SuperLU, splu

from pylinsol import NDArray
from pylinsol.configs.linsol_config import LinearSolverConfig
from pylinsol.core.exceptions import FactorizationError
from pylinsol.core.solver import LinearSolver
from pylinsol.core.sparsity import Sparsity


class ScipySolver(LinearSolver):
    """General sparse LU factorization (SuperLU)."""

    def __init__(
        self,
        sparsity: Sparsity,
        nrhs: int = 1,
        config: LinearSolverConfig = None,
        **kwargs,
    ) -> None:
        """Initializes the solver."""
        super().__init__(sparsity, nrhs, config)

        self.LU: SuperLU = None

    def _factorize(self, A: csr_matrix) -> None:
        """Compute the LU factors of the input matrix."""
        self.LU = None

        try:
            self.LU = splu(csc_matrix(A), permc_spec=self.config.solver.permc_spec)
        except RuntimeError as e:
            raise FactorizationError(f"Sparse LU factorization failed: {e}") from e

    def _solve(self, buffer: NDArray, transpose: bool) -> None:
        """Solve linear system using the LU factors."""
        x = self.LU.solve(np.ascontiguousarray(buffer.T), trans="T" if transpose else "N")
        buffer[:] = x.reshape(self.n, -1).T

    def get_solver_memory(self) -> int:
        """Return the memory used by the solver in number of bytes"""
        if self.LU is None:
            return 0

        factors = (self.LU.L, self.LU.U)
        return sum(f.data.nbytes + f.indptr.nbytes + f.indices.nbytes for f in factors)
