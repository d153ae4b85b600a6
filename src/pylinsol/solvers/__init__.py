# Copyright 2024-2025 pylinsol authors. All rights reserved.

from pylinsol.configs.linsol_config import LinearSolverConfig
from pylinsol.core.exceptions import ConfigurationError
from pylinsol.core.solver import LinearSolver
from pylinsol.core.sparsity import Sparsity
from pylinsol.solvers.cholesky_solver import CholeskySolver
from pylinsol.solvers.dense_solver import DenseSolver
from pylinsol.solvers.scipy_solver import ScipySolver


def make_linear_solver(
    sparsity: Sparsity,
    nrhs: int = 1,
    config: LinearSolverConfig = None,
) -> LinearSolver:
    """Instantiate the backend selected by ``config.solver.type``."""
    if config is None:
        config = LinearSolverConfig()

    if config.solver.type == "scipy":
        return ScipySolver(sparsity, nrhs, config)
    elif config.solver.type == "dense":
        return DenseSolver(sparsity, nrhs, config)
    elif config.solver.type == "cholesky":
        return CholeskySolver(sparsity, nrhs, config)

    raise ConfigurationError(f"Unknown solver type '{config.solver.type}'")


__all__ = ["CholeskySolver", "DenseSolver", "ScipySolver", "make_linear_solver"]
