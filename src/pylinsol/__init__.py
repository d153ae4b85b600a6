# Copyright 2024-2025 pylinsol authors. All rights reserved.

"""pylinsol - sparse linear solves with forward/adjoint sensitivities and
dependency-bit propagation sharing one factorization."""

from typing import Any, TypeAlias, TypeVar

import numpy as np
from numpy.typing import ArrayLike

from pylinsol.__about__ import __version__

# Some type aliases for the array module.
_ScalarType = TypeVar("ScalarType", bound=np.generic, covariant=True)
_DType = np.dtype[_ScalarType]
NDArray: TypeAlias = np.ndarray[Any, _DType]

from pylinsol.configs import LinearSolverConfig, SolverConfig, parse_config  # noqa: E402
from pylinsol.core import (  # noqa: E402
    ConfigurationError,
    FactorizationError,
    LinearSolver,
    LinearSolverError,
    PreparationError,
    SingularStructureError,
    Sparsity,
    bvec_t,
)
from pylinsol.solvers import (  # noqa: E402
    CholeskySolver,
    DenseSolver,
    ScipySolver,
    make_linear_solver,
)

__all__ = [
    "__version__",
    "ArrayLike",
    "NDArray",
    "LinearSolverConfig",
    "SolverConfig",
    "parse_config",
    "ConfigurationError",
    "FactorizationError",
    "LinearSolver",
    "LinearSolverError",
    "PreparationError",
    "SingularStructureError",
    "Sparsity",
    "bvec_t",
    "CholeskySolver",
    "DenseSolver",
    "ScipySolver",
    "make_linear_solver",
]
