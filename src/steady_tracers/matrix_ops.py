# src/steady_tracers/matrix_ops.py
"""
Sparse matrix utilities for transport operators and block Jacobians.

This module provides the small, performance-oriented sparse building blocks
used by the assembler, the Jacobian builder and the Newton solver:

- Restriction of full-grid operators to an active (wet) index set.
- Diagonal and block-diagonal operator construction.
- Assembly of tracer-blocked, cell-diagonal matrices from dense local partials.
- Sparse LU factorization wrapped as a reusable solve callable.

Design notes:
    * Sparse-only: every public function returns a ``csr_matrix``. Problem
      sizes of interest (hundreds of thousands of active cells times the
      number of tracers) never fit a dense path.
    * Backend-friendly surface: public APIs operate on plain ndarrays or CSR
      matrices and avoid leaking SciPy-specific solver objects; the LU object
      stays inside the returned closure.
    * Ordering: restriction never reorders the active index set; tracer blocks
      are laid out tracer-major (block ``(k, j)`` spans rows
      ``k*nb:(k+1)*nb`` and columns ``j*nb:(j+1)*nb``).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, TypeAlias, cast

import numpy as np
from numpy.typing import DTypeLike, NDArray
from scipy.sparse import block_diag, coo_matrix, csr_matrix, diags, issparse
from scipy.sparse.linalg import splu

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


# =============================================================================
# Public operator types
# =============================================================================

SparseOperator: TypeAlias = csr_matrix
SolveFunction: TypeAlias = "Callable[[NDArray[np.floating]], NDArray[np.floating]]"


# =============================================================================
# Error message constants
# =============================================================================

_OPERATOR_SQUARE_ERROR = "Operator must be square; got shape {shape}"
_OPERATOR_TYPE_ERROR = "Expected a dense ndarray or scipy sparse matrix; got {typ}"
_INDEX_1D_ERROR = "index must be a 1D integer array; got ndim={ndim}"
_INDEX_ORDER_ERROR = "index must be strictly increasing"
_INDEX_RANGE_ERROR = "index entries must lie in [0, {n}); got [{lo}, {hi}]"
_BLOCKS_EMPTY_ERROR = "ops must contain at least one operator"
_LOCAL_SHAPE_ERROR = "local partials must have shape (n, n, nb); got {shape}"
_RHS_DIM_ERROR = "rhs length {actual} does not match operator size {expected}"
_SINGULAR_ERROR = "sparse LU factorization failed: {detail}"


# =============================================================================
# Conversion / validation
# =============================================================================


def as_csr(op: NDArray[np.floating] | csr_matrix) -> SparseOperator:
    """
    Convert a dense or sparse 2D operator to CSR.

    Args:
        op: Dense ndarray or any scipy sparse matrix/array.

    Raises:
        TypeError: If op is neither an ndarray nor a sparse matrix.

    Returns:
        CSR matrix with the same entries.
    """
    if issparse(op):
        return csr_matrix(op)
    if isinstance(op, np.ndarray):
        return csr_matrix(op)
    raise TypeError(_OPERATOR_TYPE_ERROR.format(typ=type(op)))


def validate_square(op: csr_matrix) -> int:
    """Return the size of a square operator.

    Raises:
        ValueError: If op is not square.
    """
    shape = cast("tuple[int, int]", op.shape)
    if shape[0] != shape[1]:
        raise ValueError(_OPERATOR_SQUARE_ERROR.format(shape=shape))
    return int(shape[0])


def validate_index(index: NDArray[np.integer], n: int) -> NDArray[np.int64]:
    """
    Validate an active index set against an operator of size n.

    Args:
        index: Candidate index set.
        n: Size of the operator being indexed.

    Raises:
        ValueError: If the index is not 1D, not strictly increasing or out of range.

    Returns:
        Index as a contiguous int64 array.
    """
    idx = np.asarray(index, dtype=np.int64)
    if idx.ndim != 1:
        raise ValueError(_INDEX_1D_ERROR.format(ndim=idx.ndim))
    if idx.size == 0:
        return idx
    if np.any(np.diff(idx) <= 0):
        raise ValueError(_INDEX_ORDER_ERROR)
    if idx[0] < 0 or idx[-1] >= n:
        raise ValueError(
            _INDEX_RANGE_ERROR.format(n=n, lo=int(idx[0]), hi=int(idx[-1]))
        )
    return idx


# =============================================================================
# Operator construction
# =============================================================================


def restrict_operator(
    op: NDArray[np.floating] | csr_matrix,
    index: NDArray[np.integer],
) -> SparseOperator:
    """Restrict rows and columns of a square operator to an index set.

    Row ``i`` and column ``i`` of the result both refer to ``index[i]``, so the
    restriction preserves the relative ordering of the active cells. The
    operation stays sparse and is idempotent: restricting a restricted
    operator to ``arange(len(index))`` returns the same matrix.

    Args:
        op: Square operator on the full index space.
        index: Strictly increasing active indices.

    Returns:
        CSR matrix of shape ``(len(index), len(index))``.
    """
    op_csr = as_csr(op)
    n = validate_square(op_csr)
    idx = validate_index(index, n)
    restricted = op_csr[idx, :][:, idx]
    out = csr_matrix(restricted)
    out.sum_duplicates()
    out.sort_indices()
    return out


def diagonal_operator(
    values: NDArray[np.floating] | float,
    n: int | None = None,
    *,
    dtype: DTypeLike = np.float64,
) -> SparseOperator:
    """
    Build a sparse diagonal operator.

    Args:
        values: Diagonal entries, or a scalar broadcast to length n.
        n: Size; required when values is a scalar.
        dtype: Floating dtype.

    Raises:
        ValueError: If values is scalar and n is not given.

    Returns:
        CSR diagonal matrix.
    """
    vals = np.asarray(values, dtype=np.dtype(dtype))
    if vals.ndim == 0:
        if n is None:
            msg = "n is required for a scalar diagonal"
            raise ValueError(msg)
        vals = np.full(n, float(vals), dtype=np.dtype(dtype))
    size = vals.shape[0]
    return diags(vals, 0, shape=(size, size), format="csr", dtype=np.dtype(dtype))


def block_diagonal_operator(ops: Sequence[csr_matrix]) -> SparseOperator:
    """
    Stack square operators along the block diagonal.

    Args:
        ops: Sequence of square operators (one per tracer).

    Raises:
        ValueError: If ops is empty.

    Returns:
        CSR block-diagonal matrix.
    """
    if not ops:
        raise ValueError(_BLOCKS_EMPTY_ERROR)
    return cast("csr_matrix", block_diag([as_csr(op) for op in ops], format="csr"))


def tracer_block_operator(local: NDArray[np.floating]) -> SparseOperator:
    """Assemble cell-local partial derivatives into a tracer-blocked matrix.

    ``local[k, j, c]`` is ``dG_k / dx_j`` at cell ``c``. The result has one
    diagonal per tracer pair: block ``(k, j)`` is ``diag(local[k, j, :])``.
    Structural zeros (all-zero tracer pairs) are skipped.

    Args:
        local: Array of shape ``(n_tracers, n_tracers, nb)``.

    Raises:
        ValueError: If local does not have the expected shape.

    Returns:
        CSR matrix of shape ``(n_tracers*nb, n_tracers*nb)``.
    """
    arr = np.asarray(local, dtype=np.float64)
    if arr.ndim != 3 or arr.shape[0] != arr.shape[1]:
        raise ValueError(_LOCAL_SHAPE_ERROR.format(shape=arr.shape))

    n_tracers, _, nb = arr.shape
    cells = np.arange(nb, dtype=np.int64)
    rows: list[NDArray[np.int64]] = []
    cols: list[NDArray[np.int64]] = []
    data: list[NDArray[np.floating]] = []
    for k in range(n_tracers):
        for j in range(n_tracers):
            block = arr[k, j]
            if not np.any(block):
                continue
            rows.append(k * nb + cells)
            cols.append(j * nb + cells)
            data.append(block)

    size = n_tracers * nb
    if not data:
        return csr_matrix((size, size), dtype=np.float64)
    return coo_matrix(
        (np.concatenate(data), (np.concatenate(rows), np.concatenate(cols))),
        shape=(size, size),
    ).tocsr()


def row_sums(op: NDArray[np.floating] | csr_matrix) -> NDArray[np.floating]:
    """Return the row sums of an operator as a 1D array."""
    return np.asarray(as_csr(op).sum(axis=1)).ravel()


# =============================================================================
# Factorized solves
# =============================================================================


def factorize_operator(op: NDArray[np.floating] | csr_matrix) -> SolveFunction:
    """
    Factorize a square sparse operator once and return a reusable solver.

    The returned callable solves ``op @ y = rhs`` for a 1D or 2D right-hand
    side using the stored LU factors. This is the object a chord iteration
    reuses across several steps.

    Args:
        op: Square operator.

    Raises:
        ArithmeticError: If the factorization fails (singular operator).

    Returns:
        A callable mapping rhs to the solution y.
    """
    op_csr = as_csr(op)
    n = validate_square(op_csr)
    try:
        lu = splu(op_csr.tocsc())
    except RuntimeError as exc:
        raise ArithmeticError(_SINGULAR_ERROR.format(detail=exc)) from exc

    def sparse_solver(rhs: NDArray[np.floating]) -> NDArray[np.floating]:
        rhs_arr = np.asarray(rhs, dtype=np.float64)
        if rhs_arr.shape[0] != n:
            raise ValueError(
                _RHS_DIM_ERROR.format(actual=rhs_arr.shape[0], expected=n)
            )
        return np.asarray(lu.solve(rhs_arr), dtype=np.float64)

    return sparse_solver
