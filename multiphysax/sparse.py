"""Global sparse matrix assembly and manipulation.

Element matrices are accumulated as coordinate triplets and turned into a JAX
BCOO matrix once assembly is finished. Duplicate (row, column) pairs add up.

Key Classes:
    SparseMatrix: COO accumulator for element matrix contributions

Key Functions:
    compute_csr: Build a BCOO matrix from COO triplets
    zero_rows: Eliminate rows and columns and put ones on the diagonal
"""

from typing import Optional

import jax.numpy as np
from jax.experimental.sparse import BCOO

from multiphysax import logger


def compute_csr(V: np.ndarray, I: np.ndarray, J: np.ndarray, num_dofs: int) -> BCOO:
    """Assemble a square sparse matrix from COO triplets.

    Args:
        V (np.ndarray): Values, shape (nnz,).
        I (np.ndarray): Row indices, shape (nnz,).
        J (np.ndarray): Column indices, shape (nnz,).
        num_dofs (int): Number of rows and columns.

    Returns:
        BCOO: Matrix of shape (num_dofs, num_dofs). Duplicate entries are kept
            and summed by every BCOO operation.
    """
    logger.debug(f"Creating sparse matrix with JAX BCOO, nnz={V.shape[0]}")
    return BCOO((np.asarray(V), np.column_stack([I, J])), shape=(num_dofs, num_dofs))


def zero_rows(A: BCOO, row_indices: np.ndarray) -> BCOO:
    """Zero the given rows and columns of ``A`` and set their diagonal to 1.

    The sparsity structure is kept; eliminated entries are stored as zeros.

    Args:
        A (BCOO): Input matrix.
        row_indices (np.ndarray): Indices of the rows/columns to eliminate.

    Returns:
        BCOO: Modified matrix.
    """
    row_indices = np.asarray(row_indices, dtype=A.indices.dtype)
    row_constrained = np.any(A.indices[:, 0:1] == row_indices[None, :], axis=1)
    col_constrained = np.any(A.indices[:, 1:2] == row_indices[None, :], axis=1)
    data = np.where(row_constrained | col_constrained, 0.0, A.data)

    diagonal_indices = np.column_stack([row_indices, row_indices])
    diagonal_data = np.ones(len(row_indices), dtype=A.data.dtype)

    return BCOO(
        (np.concatenate([data, diagonal_data]), np.vstack([A.indices, diagonal_indices])),
        shape=A.shape,
    )


class SparseMatrix:
    """Coordinate-format accumulator for a square global matrix.

    Contributions are appended as blocks and concatenated only when the matrix
    is requested, so repeated ``add_values`` calls stay cheap. With a
    ``chunk_size`` the stored triplets are merged, summing duplicate
    (row, column) pairs, whenever more than ``chunk_size`` new entries have been
    appended. Storage then stays bounded by the number of distinct entries plus
    one chunk.

    Args:
        num_dofs (int): Number of rows and columns.
        options (dict, optional): ``chunk_size``, the number of appended
            entries that triggers a merge. Defaults to never merging.

    Raises:
        ValueError: If chunk_size is not positive when provided.
    """

    def __init__(self, num_dofs: int, options: Optional[dict] = None):
        options = options or {}
        self.num_dofs = num_dofs
        self.chunk_size = options.get("chunk_size", None)
        if self.chunk_size is not None and self.chunk_size <= 0:
            raise ValueError("chunk_size must be a positive integer.")
        self.zero()

    def zero(self):
        self._rows = []
        self._cols = []
        self._vals = []
        self._pending = 0

    def add_values(self, rows: np.ndarray, cols: np.ndarray, values: np.ndarray):
        """Append a block of contributions.

        Args:
            rows (np.ndarray): Row indices, shape (..., m).
            cols (np.ndarray): Column indices, shape (..., n).
            values (np.ndarray): Values, shape (..., m, n).
        """
        rows = np.asarray(rows)
        cols = np.asarray(cols)
        values = np.asarray(values)
        I = np.broadcast_to(rows[..., :, None], values.shape)
        J = np.broadcast_to(cols[..., None, :], values.shape)
        self._rows.append(I.reshape(-1))
        self._cols.append(J.reshape(-1))
        self._vals.append(values.reshape(-1))

        self._pending += values.size
        if self.chunk_size is not None and self._pending > self.chunk_size:
            self._merge()

    def _merge(self):
        matrix = self.to_bcoo().sum_duplicates()
        logger.debug(f"Merged {self.get_nnz()} stored entries into {matrix.nse}")
        self._rows = [matrix.indices[:, 0]]
        self._cols = [matrix.indices[:, 1]]
        self._vals = [matrix.data]
        self._pending = 0

    def get_nnz(self) -> int:
        """Number of stored triplets, duplicates included."""
        return sum(int(v.shape[0]) for v in self._vals)

    def to_bcoo(self) -> BCOO:
        if not self._vals:
            empty = np.zeros((0,), dtype=np.int32)
            return compute_csr(np.zeros((0,)), empty, empty, self.num_dofs)
        return compute_csr(
            np.concatenate(self._vals),
            np.concatenate(self._rows),
            np.concatenate(self._cols),
            self.num_dofs,
        )

    def todense(self) -> np.ndarray:
        return self.to_bcoo().todense()
