# Copyright 2024-2025 pylinsol authors. All rights reserved.

"""Structural description of sparse matrices and the structural analysis
(matching, structural rank, block triangular decomposition) run on them."""

import heapq
from dataclasses import dataclass
from functools import cached_property
from typing import NamedTuple

import numpy as np
from scipy import sparse
from scipy.sparse import csgraph

from pylinsol import ArrayLike, NDArray
from pylinsol.core.exceptions import SingularStructureError


@dataclass(frozen=True)
class Sparsity:
    """Compressed-row nonzero pattern of a matrix (no values).

    Attributes
    ----------
    indptr : NDArray
        Row extents, shape ``(n_rows + 1,)``. The nonzeros of row ``i`` are
        ``indptr[i]:indptr[i + 1]``.
    indices : NDArray
        Column index of each nonzero, shape ``(nnz,)``.
    shape : tuple[int, int]
        Matrix dimensions.
    """

    indptr: NDArray
    indices: NDArray
    shape: tuple[int, int]

    def __post_init__(self) -> None:
        indptr = np.asarray(self.indptr, dtype=np.int64)
        indices = np.asarray(self.indices, dtype=np.int64)
        shape = (int(self.shape[0]), int(self.shape[1]))

        if indptr.shape != (shape[0] + 1,):
            raise ValueError(
                f"indptr must have {shape[0] + 1} entries, got {indptr.shape[0]}"
            )
        if indptr[-1] != indices.shape[0]:
            raise ValueError(
                f"indptr ends at {indptr[-1]} but there are {indices.shape[0]} indices"
            )
        if indices.size > 0 and (indices.min() < 0 or indices.max() >= shape[1]):
            raise ValueError("Column index out of range.")

        object.__setattr__(self, "indptr", indptr)
        object.__setattr__(self, "indices", indices)
        object.__setattr__(self, "shape", shape)

    # --- Constructors ---------------------------------------------------------

    @classmethod
    def null(cls) -> "Sparsity":
        """The null (0-by-0) pattern."""
        return cls(indptr=np.zeros(1), indices=np.zeros(0), shape=(0, 0))

    @classmethod
    def from_spmatrix(cls, a: sparse.spmatrix) -> "Sparsity":
        """Pattern of a scipy sparse matrix. Explicitly stored zeros count
        as structural nonzeros."""
        a = sparse.csr_matrix(a, copy=True)
        a.sum_duplicates()
        a.sort_indices()
        return cls(indptr=a.indptr, indices=a.indices, shape=a.shape)

    @classmethod
    def from_dense(cls, dense: ArrayLike) -> "Sparsity":
        """Pattern of the nonzero entries of a dense matrix."""
        dense = np.atleast_2d(np.asarray(dense))
        return cls.from_spmatrix(sparse.csr_matrix(dense != 0))

    @classmethod
    def from_coordinates(
        cls,
        rows: ArrayLike,
        cols: ArrayLike,
        shape: tuple[int, int],
    ) -> "Sparsity":
        """Pattern from row and column index arrays (duplicates merged)."""
        rows = np.asarray(rows, dtype=np.int64)
        cols = np.asarray(cols, dtype=np.int64)
        a = sparse.coo_matrix(
            (np.ones(rows.shape[0], dtype=np.int8), (rows, cols)), shape=shape
        )
        return cls.from_spmatrix(a)

    # --- Properties -----------------------------------------------------------

    @property
    def n_rows(self) -> int:
        return self.shape[0]

    @property
    def n_cols(self) -> int:
        return self.shape[1]

    @property
    def nnz(self) -> int:
        """Number of structural nonzeros."""
        return int(self.indices.shape[0])

    @property
    def is_square(self) -> bool:
        return self.shape[0] == self.shape[1]

    def is_null(self) -> bool:
        return self.shape == (0, 0)

    def dim_string(self) -> str:
        return f"{self.shape[0]}-by-{self.shape[1]} ({self.nnz} nnz)"

    @cached_property
    def rows(self) -> NDArray:
        """Row index of each nonzero, shape ``(nnz,)``."""
        return np.repeat(np.arange(self.n_rows), np.diff(self.indptr))

    # --- Conversion -----------------------------------------------------------

    def to_csr(self, values: ArrayLike = None) -> sparse.csr_matrix:
        """Build a CSR matrix with this pattern. Ones if no values are given."""
        if values is None:
            values = np.ones(self.nnz, dtype=np.int8)
        values = np.asarray(values)
        if values.shape != (self.nnz,):
            raise ValueError(
                f"Expected {self.nnz} nonzero values, got shape {values.shape}"
            )
        return sparse.csr_matrix(
            (values, self.indices.copy(), self.indptr.copy()), shape=self.shape
        )

    def to_dense(self, values: ArrayLike = None) -> NDArray:
        """Dense matrix with the given nonzero values (ones if omitted)."""
        return self.to_csr(values).toarray()

    def project(self, dense: ArrayLike) -> NDArray:
        """Extract the entries of a dense matrix at the pattern positions."""
        dense = np.asarray(dense)
        if dense.shape != self.shape:
            raise ValueError(f"Expected shape {self.shape}, got {dense.shape}")
        return dense[self.rows, self.indices]

    def contains(self, other: "Sparsity") -> bool:
        """Whether every nonzero of ``other`` is also a nonzero of ``self``."""
        if other.shape != self.shape:
            return False
        union = self.to_csr() + other.to_csr()
        return union.nnz == self.nnz

    def nonzero_index(self, i: int, j: int) -> int:
        """Position of entry ``(i, j)`` in the nonzero vector, -1 if absent."""
        start, stop = self.indptr[i], self.indptr[i + 1]
        hits = np.flatnonzero(self.indices[start:stop] == j)
        return int(start + hits[0]) if hits.size > 0 else -1

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Sparsity):
            return NotImplemented
        return (
            self.shape == other.shape
            and np.array_equal(self.indptr, other.indptr)
            and np.array_equal(self.indices, other.indices)
        )

    def __hash__(self) -> int:
        return hash((self.shape, self.indptr.tobytes(), self.indices.tobytes()))


class DMDecomposition(NamedTuple):
    """Dulmage-Mendelsohn permutation of a square, structurally
    nonsingular pattern.

    ``A[row_perm][:, col_perm]`` is block upper triangular with a zero-free
    diagonal. Fine block ``b`` spans rows ``row_blocks[b]:row_blocks[b + 1]``
    of the permuted matrix. The coarse blocks follow the usual four-way
    split and are trivial for a square nonsingular pattern.
    """

    row_perm: NDArray
    col_perm: NDArray
    row_blocks: NDArray
    col_blocks: NDArray
    coarse_row_blocks: NDArray
    coarse_col_blocks: NDArray

    @property
    def n_blocks(self) -> int:
        return len(self.row_blocks) - 1


def matching(sparsity: Sparsity) -> NDArray:
    """Maximum bipartite matching: the column matched to each row, or -1."""
    if sparsity.nnz == 0:
        return -np.ones(sparsity.n_rows, dtype=np.int64)
    match = csgraph.maximum_bipartite_matching(
        sparsity.to_csr(), perm_type="column"
    )
    return np.asarray(match, dtype=np.int64)


def structural_rank(sparsity: Sparsity) -> int:
    """Structural rank, i.e. the size of a maximum bipartite matching."""
    if sparsity.nnz == 0:
        return 0
    return int(csgraph.structural_rank(sparsity.to_csr()))


def is_singular(sparsity: Sparsity) -> bool:
    """Whether a square pattern is structurally rank-deficient."""
    if not sparsity.is_square:
        raise ValueError(f"Expected a square pattern, got {sparsity.dim_string()}")
    return structural_rank(sparsity) < sparsity.n_rows


def _topological_block_order(
    n_blocks: int, src: NDArray, dst: NDArray
) -> NDArray:
    """Position of each strongly connected component such that every
    condensation edge ``src -> dst`` goes from an earlier to a later block.

    Ties are broken by component label so that the result is deterministic.
    """
    keep = src != dst
    edges = set(zip(src[keep].tolist(), dst[keep].tolist()))

    successors = [[] for _ in range(n_blocks)]
    indegree = np.zeros(n_blocks, dtype=np.int64)
    for s, d in sorted(edges):
        successors[s].append(d)
        indegree[d] += 1

    ready = [b for b in range(n_blocks) if indegree[b] == 0]
    heapq.heapify(ready)
    position = np.empty(n_blocks, dtype=np.int64)
    next_position = 0
    while ready:
        b = heapq.heappop(ready)
        position[b] = next_position
        next_position += 1
        for d in successors[b]:
            indegree[d] -= 1
            if indegree[d] == 0:
                heapq.heappush(ready, d)

    return position


def dulmage_mendelsohn(sparsity: Sparsity) -> DMDecomposition:
    """Block upper triangular decomposition of a square pattern.

    A perfect matching moves a nonzero onto every diagonal position; the
    strongly connected components of the resulting row graph are the
    diagonal blocks.

    Raises
    ------
    SingularStructureError
        If the pattern has no perfect matching.
    """
    if not sparsity.is_square:
        raise ValueError(f"Expected a square pattern, got {sparsity.dim_string()}")

    n = sparsity.n_rows
    col_of_row = matching(sparsity)
    if np.any(col_of_row < 0):
        raise SingularStructureError(structural_rank(sparsity), n)

    row_of_col = np.empty(n, dtype=np.int64)
    row_of_col[col_of_row] = np.arange(n)

    # Row i depends on row r when it has a nonzero in the column matched to r
    dependents = row_of_col[sparsity.indices]
    graph = sparse.csr_matrix(
        (np.ones(sparsity.nnz, dtype=np.int8), dependents, sparsity.indptr.copy()),
        shape=(n, n),
    )
    n_blocks, labels = csgraph.connected_components(
        graph, directed=True, connection="strong"
    )

    position = _topological_block_order(
        n_blocks, labels[sparsity.rows], labels[dependents]
    )
    row_block = position[labels]

    row_perm = np.argsort(row_block, kind="stable")
    col_perm = col_of_row[row_perm]
    block_sizes = np.bincount(row_block, minlength=n_blocks)
    row_blocks = np.concatenate([[0], np.cumsum(block_sizes)]).astype(np.int64)

    return DMDecomposition(
        row_perm=row_perm,
        col_perm=col_perm,
        row_blocks=row_blocks,
        col_blocks=row_blocks.copy(),
        coarse_row_blocks=np.array([0, 0, n, n, n], dtype=np.int64),
        coarse_col_blocks=np.array([0, 0, 0, n, n], dtype=np.int64),
    )
