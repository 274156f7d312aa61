# tests/test_matrix_ops.py
"""Unit tests for steady_tracers.matrix_ops.

This module verifies:
- CSR conversion and square/index validation.
- Restriction to an active index set (grid order, idempotence).
- Block assembly: per-tracer block diagonal and cell-local tracer coupling.
- The reusable sparse LU solver and its singular-operator error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest
from scipy.sparse import csr_matrix, identity, issparse

from steady_tracers.matrix_ops import (
    as_csr,
    block_diagonal_operator,
    diagonal_operator,
    factorize_operator,
    restrict_operator,
    row_sums,
    tracer_block_operator,
    validate_index,
    validate_square,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    FloatArray = NDArray[np.floating]


def _dense(mat: object) -> FloatArray:
    """Return a dense float64 array for a sparse or dense operator."""
    if issparse(mat):
        return np.asarray(mat.toarray(), dtype=float)  # type: ignore[union-attr]
    return np.asarray(mat, dtype=float)


# -----------------------------------------------------------------------------
# Conversion / validation
# -----------------------------------------------------------------------------


def test_as_csr_accepts_dense_and_sparse() -> None:
    """as_csr converts dense arrays and other sparse formats to CSR."""
    dense = np.array([[1.0, 2.0], [0.0, 3.0]])
    assert isinstance(as_csr(dense), csr_matrix)
    assert np.array_equal(_dense(as_csr(identity(3, format="coo"))), np.eye(3))


def test_as_csr_rejects_other_types() -> None:
    """as_csr rejects lists and other non-array objects."""
    with pytest.raises(TypeError, match="Expected a dense ndarray"):
        as_csr([[1.0]])  # type: ignore[arg-type]


def test_validate_square_rejects_rectangular() -> None:
    """validate_square returns n for square operators and raises otherwise."""
    assert validate_square(csr_matrix((4, 4))) == 4
    with pytest.raises(ValueError, match="must be square"):
        validate_square(csr_matrix((2, 3)))


@pytest.mark.parametrize(
    ("index", "match"),
    [
        (np.array([[0, 1]]), "1D"),
        (np.array([2, 1]), "strictly increasing"),
        (np.array([0, 0]), "strictly increasing"),
        (np.array([0, 5]), "must lie in"),
        (np.array([-1, 2]), "must lie in"),
    ],
)
def test_validate_index_errors(index: NDArray[np.integer], match: str) -> None:
    """validate_index rejects malformed index sets."""
    with pytest.raises(ValueError, match=match):
        validate_index(index, 5)


# -----------------------------------------------------------------------------
# Restriction
# -----------------------------------------------------------------------------


def test_restrict_operator_keeps_grid_order() -> None:
    """Restriction selects rows and columns in the order of the index."""
    full = np.arange(25, dtype=float).reshape(5, 5)
    index = np.array([0, 2, 4])
    restricted = _dense(restrict_operator(full, index))
    assert np.array_equal(restricted, full[np.ix_(index, index)])


def test_restrict_operator_is_idempotent() -> None:
    """Restricting an already-restricted operator to all indices is a no-op."""
    rng = np.random.default_rng(1)
    full = rng.normal(size=(6, 6))
    index = np.array([1, 2, 5])
    once = restrict_operator(full, index)
    twice = restrict_operator(once, np.arange(index.size))
    assert np.array_equal(_dense(once), _dense(twice))


# -----------------------------------------------------------------------------
# Block assembly
# -----------------------------------------------------------------------------


def test_diagonal_operator_broadcasts_scalar() -> None:
    """A scalar diagonal requires n and is broadcast."""
    assert np.array_equal(_dense(diagonal_operator(2.0, 3)), 2.0 * np.eye(3))
    assert np.array_equal(
        _dense(diagonal_operator(np.array([1.0, 2.0]))), np.diag([1.0, 2.0])
    )


def test_block_diagonal_operator_places_blocks() -> None:
    """Per-tracer operators land on the diagonal blocks in order."""
    a = np.array([[1.0, -1.0], [-1.0, 1.0]])
    b = np.array([[2.0, 0.0], [0.0, 3.0]])
    out = _dense(block_diagonal_operator([a, b]))
    assert out.shape == (4, 4)
    assert np.array_equal(out[:2, :2], a)
    assert np.array_equal(out[2:, 2:], b)
    assert np.count_nonzero(out[:2, 2:]) == 0


def test_block_diagonal_operator_requires_blocks() -> None:
    """An empty operator list is an error."""
    with pytest.raises(ValueError, match="at least one operator"):
        block_diagonal_operator([])


def test_tracer_block_operator_is_cell_diagonal() -> None:
    """local[k, j, c] lands at (k*nb + c, j*nb + c)."""
    nb = 3
    local = np.zeros((2, 2, nb))
    local[0, 0] = [1.0, 2.0, 3.0]
    local[1, 0] = [4.0, 5.0, 6.0]
    local[0, 1] = [7.0, 0.0, 0.0]
    out = _dense(tracer_block_operator(local))

    assert out.shape == (2 * nb, 2 * nb)
    assert np.array_equal(np.diag(out[:nb, :nb]), local[0, 0])
    assert np.array_equal(np.diag(out[nb:, :nb]), local[1, 0])
    assert out[0, nb] == pytest.approx(7.0)
    # Only cell-diagonal entries are populated.
    assert np.count_nonzero(out) == 7
    assert np.count_nonzero(out[nb:, nb:]) == 0


def test_tracer_block_operator_rejects_bad_shape() -> None:
    """local must be (n, n, nb)."""
    with pytest.raises(ValueError, match=r"\(n, n, nb\)"):
        tracer_block_operator(np.zeros((2, 3, 4)))


def test_row_sums_dense_and_sparse() -> None:
    """row_sums agrees for dense and sparse inputs."""
    dense = np.array([[1.0, -1.0], [2.0, 0.5]])
    assert np.allclose(row_sums(dense), [0.0, 2.5])
    assert np.allclose(row_sums(csr_matrix(dense)), [0.0, 2.5])


# -----------------------------------------------------------------------------
# Sparse LU
# -----------------------------------------------------------------------------


def test_factorize_operator_solves_repeatedly() -> None:
    """The returned solver is reusable across right-hand sides."""
    op = csr_matrix(np.array([[4.0, 1.0, 0.0], [1.0, 3.0, 0.0], [0.0, 0.0, 2.0]]))
    solve = factorize_operator(op)
    for rhs in (np.array([1.0, 2.0, 3.0]), np.array([0.0, -1.0, 4.0])):
        assert np.allclose(op @ solve(rhs), rhs)


def test_factorize_operator_checks_rhs_length() -> None:
    """A right-hand side of the wrong length is rejected."""
    solve = factorize_operator(identity(3, format="csr"))
    with pytest.raises(ValueError, match="does not match operator size"):
        solve(np.ones(2))


def test_factorize_operator_singular_raises_arithmetic_error() -> None:
    """A structurally singular operator raises ArithmeticError."""
    op = csr_matrix(np.array([[1.0, 0.0], [0.0, 0.0]]))
    with pytest.raises(ArithmeticError, match="factorization failed"):
        factorize_operator(op)
