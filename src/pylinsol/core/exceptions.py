# Copyright 2024-2025 pylinsol authors. All rights reserved.


class LinearSolverError(Exception):
    """Base class for all errors raised by pylinsol."""


class ConfigurationError(LinearSolverError, ValueError):
    """Malformed construction arguments or an unsupported derivative request."""


class SingularStructureError(LinearSolverError):
    """The sparsity pattern is structurally rank-deficient.

    Parameters
    ----------
    rank : int
        Structural rank of the pattern.
    n : int
        Dimension of the (square) pattern.
    """

    def __init__(self, rank: int, n: int, message: str = None) -> None:
        self.rank = rank
        self.n = n
        if message is None:
            message = (
                "The matrix is structurally rank-deficient. "
                f"sprank(A)={rank} (instead of {n})"
            )
        super().__init__(message)


class FactorizationError(LinearSolverError, RuntimeError):
    """The numeric factorization of the matrix failed."""


class PreparationError(LinearSolverError, RuntimeError):
    """A solve was requested before a successful factorization."""
