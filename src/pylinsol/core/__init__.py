# Copyright 2024-2025 pylinsol authors. All rights reserved.

from pylinsol.core.exceptions import (
    ConfigurationError,
    FactorizationError,
    LinearSolverError,
    PreparationError,
    SingularStructureError,
)
from pylinsol.core.sparsity import (
    DMDecomposition,
    Sparsity,
    dulmage_mendelsohn,
    is_singular,
    matching,
    structural_rank,
)
from pylinsol.core.propagation import (
    bvec_t,
    propagate_conservative,
    propagate_precise,
)
from pylinsol.core.solver import LinearSolver

__all__ = [
    "ConfigurationError",
    "FactorizationError",
    "LinearSolverError",
    "PreparationError",
    "SingularStructureError",
    "DMDecomposition",
    "Sparsity",
    "dulmage_mendelsohn",
    "is_singular",
    "matching",
    "structural_rank",
    "bvec_t",
    "propagate_conservative",
    "propagate_precise",
    "LinearSolver",
]
