# Copyright 2024-2025 pylinsol authors. All rights reserved.

from scipy.sparse import csc_matrix, csr_matrix, diags
from scipy.sparse.linalg import splu, spsolve_triangular

from pylinsol import NDArray
from pylinsol.configs.linsol_config import LinearSolverConfig
from pylinsol.core.exceptions import FactorizationError
from pylinsol.core.solver import LinearSolver
from pylinsol.core.sparsity import Sparsity


class CholeskySolver(LinearSolver):
    """Sparse Cholesky factorization for symmetric positive definite
    matrices. Transposed solves are the same as untransposed ones."""

    def __init__(
        self,
        sparsity: Sparsity,
        nrhs: int = 1,
        config: LinearSolverConfig = None,
        **kwargs,
    ) -> None:
        """Initializes the solver."""
        super().__init__(sparsity, nrhs, config)

        self.L: csr_matrix = None
        self.Lt: csr_matrix = None

    def _factorize(self, A: csr_matrix) -> None:
        """Compute Cholesky factor of input matrix."""
        self.L = None
        self.Lt = None

        asymmetry = abs(A - A.T)
        if asymmetry.nnz > 0 and asymmetry.max() > 1e-12 * max(abs(A).max(), 1.0):
            raise FactorizationError("The matrix is not symmetric")

        try:
            LU = splu(csc_matrix(A), diag_pivot_thresh=0, permc_spec="NATURAL")
        except RuntimeError as e:
            raise FactorizationError(f"Cholesky factorization failed: {e}") from e

        if (LU.U.diagonal() > 0).all():  # Check the matrix A is positive definite.
            L = LU.L.dot(diags(LU.U.diagonal() ** 0.5))
        else:
            raise FactorizationError("The matrix is not positive definite")

        self.L = csr_matrix(L)
        self.Lt = csr_matrix(L.T)

    def _solve(self, buffer: NDArray, transpose: bool) -> None:
        """Solve linear system using Cholesky factor."""
        rhs = buffer.T.copy()

        rhs = spsolve_triangular(self.L, rhs, lower=True, overwrite_b=True)
        rhs = spsolve_triangular(self.Lt, rhs, lower=False, overwrite_b=True)

        buffer[:] = rhs.reshape(self.n, -1).T

    def get_solver_memory(self) -> int:
        """Return the memory used by the solver in number of bytes"""
        if self.L is None:
            return 0

        return self.L.data.nbytes + self.L.indptr.nbytes + self.L.indices.nbytes
