# Copyright 2024-2025 pylinsol authors. All rights reserved.

import numpy as np
import pytest

from pylinsol.core.exceptions import ConfigurationError


def _reference_solve(A, B, transpose):
    M = A.T if transpose else A
    return np.linalg.solve(M, B.T).T


def _random_direction(solver_instance, nrhs, rng):
    B_hat = rng.standard_normal((nrhs, solver_instance.n))
    A_hat = rng.standard_normal(solver_instance.sparsity.nnz)
    return B_hat, A_hat


@pytest.mark.parametrize("transpose", [False, True])
def test_forward_finite_differences(solver_instance, A_dense, nrhs, rng, transpose):
    n = solver_instance.n
    B = rng.standard_normal((nrhs, n))
    X = np.zeros((nrhs, n))
    seeds = [_random_direction(solver_instance, nrhs, rng) for _ in range(2)]
    sens = [np.zeros((nrhs, n)) for _ in seeds]

    solver_instance.evaluate_numeric(A_dense, B, X, seeds, sens, transpose=transpose)

    assert np.allclose(X, _reference_solve(A_dense, B, transpose))

    h = 1e-6
    for (B_hat, A_hat), X_hat in zip(seeds, sens):
        A_hat_dense = solver_instance.sparsity.to_dense(A_hat)
        X_plus = _reference_solve(A_dense + h * A_hat_dense, B + h * B_hat, transpose)
        X_minus = _reference_solve(A_dense - h * A_hat_dense, B - h * B_hat, transpose)
        fd = (X_plus - X_minus) / (2 * h)

        assert np.allclose(X_hat, fd, rtol=1e-5, atol=1e-7)


@pytest.mark.parametrize("transpose", [False, True])
def test_adjoint_finite_differences(solver_instance, A_dense, nrhs, rng, transpose):
    n = solver_instance.n
    nnz = solver_instance.sparsity.nnz
    B = rng.standard_normal((nrhs, n))
    X = np.zeros((nrhs, n))
    X_bar = rng.standard_normal((nrhs, n))
    X_bar_copy = X_bar.copy()
    B_bar = np.zeros((nrhs, n))
    A_bar = np.zeros(nnz)

    solver_instance.evaluate_numeric(
        A_dense, B, X, adj_seed=[X_bar], adj_sens=[(B_bar, A_bar)], transpose=transpose
    )

    # Seed consumed
    assert np.all(X_bar == 0.0)

    # Gradient of <X_bar, X(A, B)> by central differences
    h = 1e-6

    def objective(A, B):
        return np.sum(X_bar_copy * _reference_solve(A, B, transpose))

    B_bar_fd = np.zeros((nrhs, n))
    for r in range(nrhs):
        for i in range(n):
            E = np.zeros((nrhs, n))
            E[r, i] = h
            B_bar_fd[r, i] = (objective(A_dense, B + E) - objective(A_dense, B - E)) / (2 * h)

    A_bar_fd = np.zeros(nnz)
    for k, (i, j) in enumerate(zip(solver_instance.sparsity.rows, solver_instance.sparsity.indices)):
        E = np.zeros((n, n))
        E[i, j] = h
        A_bar_fd[k] = (objective(A_dense + E, B) - objective(A_dense - E, B)) / (2 * h)

    assert np.allclose(B_bar, B_bar_fd, rtol=1e-5, atol=1e-7)
    assert np.allclose(A_bar, A_bar_fd, rtol=1e-5, atol=1e-7)


@pytest.mark.parametrize("transpose", [False, True])
def test_forward_adjoint_duality(solver_instance, A_dense, nrhs, rng, transpose):
    """<X_bar, X_hat> = <B_hat, B_bar> + <A_hat, A_bar>"""
    n = solver_instance.n
    B = rng.standard_normal((nrhs, n))
    X = np.zeros((nrhs, n))
    B_hat, A_hat = _random_direction(solver_instance, nrhs, rng)
    X_hat = np.zeros((nrhs, n))
    X_bar = rng.standard_normal((nrhs, n))
    X_bar_copy = X_bar.copy()
    B_bar = np.zeros((nrhs, n))
    A_bar = np.zeros(solver_instance.sparsity.nnz)

    solver_instance.evaluate_numeric(
        A_dense,
        B,
        X,
        [(B_hat, A_hat)],
        [X_hat],
        [X_bar],
        [(B_bar, A_bar)],
        transpose=transpose,
    )

    lhs = np.sum(X_bar_copy * X_hat)
    rhs = np.sum(B_hat * B_bar) + np.sum(A_hat * A_bar)
    assert np.isclose(lhs, rhs)


def test_one_factorization_per_call(solver_instance, A_dense, nrhs, rng):
    n = solver_instance.n
    B = rng.standard_normal((nrhs, n))
    X = np.zeros((nrhs, n))
    seeds = [_random_direction(solver_instance, nrhs, rng) for _ in range(3)]
    sens = [np.zeros((nrhs, n)) for _ in seeds]
    adj_seed = [rng.standard_normal((nrhs, n)) for _ in range(2)]
    adj_sens = [(np.zeros((nrhs, n)), np.zeros(solver_instance.sparsity.nnz)) for _ in adj_seed]

    solver_instance.evaluate_numeric(A_dense, B, X, seeds, sens, adj_seed, adj_sens)

    assert solver_instance.n_factorizations == 1


@pytest.mark.parametrize("transpose", [False, True])
def test_in_place_buffers(solver_instance, A_dense, nrhs, rng, transpose):
    n = solver_instance.n
    nnz = solver_instance.sparsity.nnz
    B = rng.standard_normal((nrhs, n))
    B_hat, A_hat = _random_direction(solver_instance, nrhs, rng)
    X_bar = rng.standard_normal((nrhs, n))

    # Reference with separate buffers
    X_ref = np.zeros((nrhs, n))
    X_hat_ref = np.zeros((nrhs, n))
    B_bar_ref = np.zeros((nrhs, n))
    A_bar_ref = np.zeros(nnz)
    solver_instance.evaluate_numeric(
        A_dense,
        B,
        X_ref,
        [(B_hat, A_hat)],
        [X_hat_ref],
        [X_bar.copy()],
        [(B_bar_ref, A_bar_ref)],
        transpose=transpose,
    )

    # B and X, B_hat and X_hat, X_bar and B_bar sharing storage
    BX = B.copy()
    BX_hat = B_hat.copy()
    XB_bar = X_bar.copy()
    A_bar = np.zeros(nnz)
    solver_instance.evaluate_numeric(
        A_dense,
        BX,
        BX,
        [(BX_hat, A_hat)],
        [BX_hat],
        [XB_bar],
        [(XB_bar, A_bar)],
        transpose=transpose,
    )

    assert np.allclose(BX, X_ref)
    assert np.allclose(BX_hat, X_hat_ref)
    assert np.allclose(XB_bar, B_bar_ref)
    assert np.allclose(A_bar, A_bar_ref)


def test_adjoint_accumulates(solver_instance, A_dense, nrhs, rng):
    n = solver_instance.n
    nnz = solver_instance.sparsity.nnz
    B = rng.standard_normal((nrhs, n))
    X_bar = rng.standard_normal((nrhs, n))

    B_bar = np.zeros((nrhs, n))
    A_bar = np.zeros(nnz)
    solver_instance.evaluate_numeric(
        A_dense, B, np.zeros((nrhs, n)), adj_seed=[X_bar.copy()], adj_sens=[(B_bar, A_bar)]
    )

    B_bar_acc = np.ones((nrhs, n))
    A_bar_acc = np.ones(nnz)
    solver_instance.evaluate_numeric(
        A_dense,
        B,
        np.zeros((nrhs, n)),
        adj_seed=[X_bar.copy()],
        adj_sens=[(B_bar_acc, A_bar_acc)],
    )

    assert np.allclose(B_bar_acc, B_bar + 1.0)
    assert np.allclose(A_bar_acc, A_bar + 1.0)


def test_dense_matrix_seed(solver_instance, A_dense, nrhs, rng):
    n = solver_instance.n
    B = rng.standard_normal((nrhs, n))
    B_hat, A_hat = _random_direction(solver_instance, nrhs, rng)

    X_hat_nnz = np.zeros((nrhs, n))
    solver_instance.evaluate_numeric(
        A_dense, B, np.zeros((nrhs, n)), [(B_hat, A_hat)], [X_hat_nnz]
    )

    X_hat_dense = np.zeros((nrhs, n))
    solver_instance.evaluate_numeric(
        A_dense,
        B,
        np.zeros((nrhs, n)),
        [(B_hat, solver_instance.sparsity.to_dense(A_hat))],
        [X_hat_dense],
    )

    assert np.allclose(X_hat_nnz, X_hat_dense)


def test_mismatched_directions(solver_instance, A_dense, nrhs):
    n = solver_instance.n
    B = np.ones((nrhs, n))
    X = np.zeros((nrhs, n))

    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(
            A_dense, B, X, [(B, np.zeros(solver_instance.sparsity.nnz))], []
        )

    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(A_dense, B, X, adj_seed=[X.copy()], adj_sens=[])

    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(
            A_dense, B, X, adj_seed=[X.copy()], adj_sens=[(np.zeros((nrhs, n)), np.zeros(1))]
        )


def test_malformed_direction_leaves_buffers_untouched(solver_instance, A_dense, nrhs, rng):
    n = solver_instance.n
    nnz = solver_instance.sparsity.nnz
    B = rng.standard_normal((nrhs, n))
    X = np.zeros((nrhs, n))
    X_bar0 = rng.standard_normal((nrhs, n))
    B_bar0 = np.ones((nrhs, n))
    A_bar0 = np.ones(nnz)
    X_bar0_before = X_bar0.copy()

    # Direction 1 has a B_bar with the wrong number of right-hand sides
    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(
            A_dense,
            B,
            X,
            adj_seed=[X_bar0, rng.standard_normal((nrhs, n))],
            adj_sens=[(B_bar0, A_bar0), (np.zeros((nrhs + 1, n)), np.zeros(nnz))],
        )

    assert np.array_equal(X_bar0, X_bar0_before)
    assert np.all(B_bar0 == 1.0)
    assert np.all(A_bar0 == 1.0)
    assert np.all(X == 0.0)
    assert solver_instance.n_factorizations == 0

    # Same for a malformed forward direction
    X_hat0 = np.full((nrhs, n), 5.0)
    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(
            A_dense,
            B,
            X,
            [(B, np.zeros(nnz)), (B, np.zeros(nnz + 1))],
            [X_hat0, np.zeros((nrhs, n))],
        )

    assert np.all(X_hat0 == 5.0)
    assert solver_instance.n_factorizations == 0


def test_rhs_shape_mismatch(solver_instance, A_dense, nrhs):
    n = solver_instance.n
    nnz = solver_instance.sparsity.nnz
    X = np.zeros((nrhs, n))

    # No broadcasting of a single right-hand side over all rows of X
    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(A_dense, np.ones((1, n)), X)

    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(
            A_dense, np.ones((nrhs, n)), X, [(np.ones((1, n)), np.zeros(nnz))], [np.zeros((nrhs, n))]
        )

    with pytest.raises(ConfigurationError):
        solver_instance.evaluate_numeric(A_dense, np.ones((nrhs, n + 1)), np.zeros((nrhs, n + 1)))

    assert np.all(X == 0.0)


def test_missing_forward_seeds_are_zero(solver_instance, A_dense, nrhs, rng):
    n = solver_instance.n
    nnz = solver_instance.sparsity.nnz
    B = rng.standard_normal((nrhs, n))
    B_hat, A_hat = _random_direction(solver_instance, nrhs, rng)

    sens = [np.full((nrhs, n), 3.0) for _ in range(4)]
    solver_instance.evaluate_numeric(
        A_dense,
        B,
        np.zeros((nrhs, n)),
        [(None, None), (B_hat, None), (None, A_hat), (B_hat, A_hat)],
        sens,
    )

    expected = [np.zeros((nrhs, n))]
    for seed in [(B_hat, np.zeros(nnz)), (np.zeros((nrhs, n)), A_hat)]:
        X_hat = np.zeros((nrhs, n))
        solver_instance.evaluate_numeric(A_dense, B, np.zeros((nrhs, n)), [seed], [X_hat])
        expected.append(X_hat)
    expected.append(expected[1] + expected[2])

    for X_hat, X_hat_expected in zip(sens, expected):
        assert np.allclose(X_hat, X_hat_expected)
