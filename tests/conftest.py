# Copyright 2024-2025 pylinsol authors. All rights reserved.

from os import environ

import numpy as np
import pytest

from pylinsol.configs.linsol_config import LinearSolverConfig, SolverConfig
from pylinsol.core.sparsity import Sparsity
from pylinsol.solvers import CholeskySolver, DenseSolver, ScipySolver

environ["OMP_NUM_THREADS"] = "1"

SOLVER = [ScipySolver, DenseSolver, CholeskySolver]

SOLVER_TYPE = {
    ScipySolver: "scipy",
    DenseSolver: "dense",
    CholeskySolver: "cholesky",
}


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "precise: precise dependency propagation")


@pytest.fixture(params=SOLVER)
def solver(request):
    return request.param


@pytest.fixture
def rng():
    return np.random.default_rng(2024)


@pytest.fixture
def n():
    return 6


@pytest.fixture
def nrhs():
    return 2


@pytest.fixture
def density():
    return 0.3


@pytest.fixture(scope="function", autouse=False)
def A_dense(solver, n, density, rng):
    """Returns a random, sparse, strictly diagonally dominant matrix.

    Symmetric (hence positive definite) for the Cholesky backend.
    """
    A = rng.uniform(-1.0, 1.0, (n, n)) * (rng.random((n, n)) < density)
    if solver is CholeskySolver:
        A = (A + A.T) / 2

    A[np.diag_indices(n)] = 0.0
    A[np.diag_indices(n)] = 1.0 + np.sum(np.abs(A), axis=1)

    return A


@pytest.fixture
def config(solver):
    """Returns a LinearSolverConfig object matching the backend."""
    return LinearSolverConfig(solver=SolverConfig(type=SOLVER_TYPE[solver]))


@pytest.fixture
def solver_instance(solver, A_dense, nrhs, config):
    """Returns a solver bound to the pattern of A_dense, with its values set."""
    solver_instance = solver(Sparsity.from_dense(A_dense), nrhs, config)
    solver_instance.set_A(A_dense)

    return solver_instance
