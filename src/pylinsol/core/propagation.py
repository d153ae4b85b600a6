# Copyright 2024-2025 pylinsol authors. All rights reserved.

"""Propagate dependency bit-vectors through a linear solve.

Each element carries a ``uint64`` word. Bit ``k`` set on element ``e`` means
that the value of ``e`` may depend on source ``k``. Both policies
over-approximate the true dependencies and never drop one.

Layout: ``A_bits`` has one word per nonzero of ``A`` (CSR order), ``B_bits``
and ``X_bits`` have shape ``(nrhs, n)`` with one right-hand side per row.
All arrays are updated in place. ``B_bits`` and ``X_bits`` may be the same
array.
"""

import numpy as np

from pylinsol import NDArray
from pylinsol.core.sparsity import Sparsity

bvec_t = np.uint64


def propagate_conservative(
    A_bits: NDArray,
    B_bits: NDArray,
    X_bits: NDArray,
    fwd: bool,
) -> None:
    """Whole-row dependency propagation.

    Forward, every element of row ``r`` of ``X`` depends on all of ``A`` and
    all of row ``r`` of ``B``. Reverse, the union of row ``r`` of ``X`` is
    added to row ``r`` of ``B`` and the union over all rows to every nonzero
    of ``A``. The consumed ``X`` seeds are cleared.
    """
    if fwd:
        A_dep = np.bitwise_or.reduce(A_bits)
        AB_dep = np.bitwise_or.reduce(B_bits, axis=1) | A_dep
        X_bits[...] = AB_dep[:, np.newaxis]
    else:
        X_dep = np.bitwise_or.reduce(X_bits, axis=1)
        X_bits[...] = 0
        B_bits |= X_dep[:, np.newaxis]
        A_bits |= np.bitwise_or.reduce(X_dep)


def _relax(bits: NDArray, src: NDArray, dst: NDArray, max_iter: int) -> NDArray:
    """OR ``bits[src]`` into ``bits[dst]`` along every edge until nothing
    changes, for at most ``max_iter`` rounds."""
    for _ in range(max_iter):
        updated = bits.copy()
        np.bitwise_or.at(updated, dst, bits[src])
        if np.array_equal(updated, bits):
            break
        bits = updated
    return bits


def _matched_graph(
    sparsity: Sparsity, col_of_row: NDArray, transpose: bool
) -> tuple[NDArray, NDArray, NDArray, NDArray]:
    """Edges of the structural graph of ``A`` (or ``A'``) permuted to a
    zero-free diagonal.

    Returns ``(equation, src, dst, unknown)``: the equation each nonzero
    belongs to, the edge list (``y[dst] |= y[src]`` for the forward pass)
    and the solution position that each permuted position ``k`` maps to.
    """
    n = sparsity.n_rows
    rows = sparsity.rows
    cols = sparsity.indices
    row_of_col = np.empty(n, dtype=np.int64)
    row_of_col[col_of_row] = np.arange(n)

    if transpose:
        return cols, col_of_row[rows], cols, row_of_col
    return rows, row_of_col[cols], rows, col_of_row


def propagate_precise(
    sparsity: Sparsity,
    col_of_row: NDArray,
    A_bits: NDArray,
    B_bits: NDArray,
    X_bits: NDArray,
    fwd: bool,
    transpose: bool = False,
) -> None:
    """Fixed-point dependency propagation over the structural graph of ``A``.

    With a perfect matching ``col_of_row`` the system is permuted to a
    zero-free diagonal. Solution position ``k`` then depends on equation
    ``i`` exactly when ``i`` is reachable from ``k`` in the directed graph of
    the permuted matrix, which is what the relaxation computes. Each
    relaxation terminates after at most ``n`` rounds since a path in an
    ``n``-node graph has fewer than ``n`` edges.
    """
    n = sparsity.n_rows
    nrhs = B_bits.shape[0]
    equation, src, dst, unknown = _matched_graph(sparsity, col_of_row, transpose)

    for r in range(nrhs):
        if fwd:
            # Seed the equations with B and the entries of A in each equation
            tmp = B_bits[r].copy()
            np.bitwise_or.at(tmp, equation, A_bits)

            y = _relax(tmp, src, dst, n)

            X_bits[r] = 0
            X_bits[r, unknown] = y
        else:
            y_bar = X_bits[r, unknown].copy()
            X_bits[r] = 0

            # Mirror the edges for the reverse pass
            tmp_bar = _relax(y_bar, dst, src, n)

            A_bits |= tmp_bar[equation]
            B_bits[r] |= tmp_bar
