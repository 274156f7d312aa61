# tests/test_newton.py
"""Tests for the Newton-chord-Shamanskii solver.

These tests cover the solver's contract on small hand-built problems:

- a linear problem converges in exactly one Newton step,
- chord steps reuse one factorization and refresh after K steps,
- plain Newton (K = 0) refactorizes every step,
- singular Jacobians, stalls and the iteration cap are returned outcomes,
  surfaced as exceptions only by ``unwrap()``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np
import pytest
from scipy.sparse import csr_matrix, diags, identity

from steady_tracers import (
    ConvergenceFailure,
    NewtonConfig,
    SingularJacobianError,
    SolverDiagnostics,
    solve_steady_state,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from steady_tracers import Parameters

    FloatArray = NDArray[np.floating]


# -----------------------------------------------------------------------------
# Problems
# -----------------------------------------------------------------------------

A = csr_matrix(np.array([[2.0, 1.0, 0.0], [1.0, 3.0, 1.0], [0.0, 1.0, 4.0]]))
B = np.array([1.0, 2.0, 3.0])


def _linear_f(x: FloatArray, params: Parameters | None = None) -> FloatArray:  # noqa: ARG001
    return B - A @ x


def _linear_jac(x: FloatArray, params: Parameters | None = None) -> csr_matrix:  # noqa: ARG001
    return csr_matrix(-A)


def _sqrt2_f(x: FloatArray, params: Parameters | None = None) -> FloatArray:  # noqa: ARG001
    return x * x - 2.0


def _sqrt2_jac(x: FloatArray, params: Parameters | None = None) -> csr_matrix:  # noqa: ARG001
    return diags(2.0 * x, 0, format="csr")


# -----------------------------------------------------------------------------
# Convergence
# -----------------------------------------------------------------------------


def test_linear_problem_converges_in_one_newton_step() -> None:
    """One Newton step solves a linear problem exactly."""
    result = solve_steady_state(_linear_f, _linear_jac, np.zeros(3))
    assert result.converged
    assert result.status == "converged"
    assert np.allclose(A @ result.x, B)
    diag = result.diagnostics
    assert diag.iterations == 1
    assert diag.newton_steps == 1
    assert diag.chord_steps == 0
    assert diag.factorizations == 1
    assert len(diag.residual_history) == 2


def test_initial_guess_already_converged() -> None:
    """No Jacobian is built when x0 already satisfies atol."""
    x_star = np.linalg.solve(A.toarray(), B)
    result = solve_steady_state(_linear_f, _linear_jac, x_star)
    assert result.converged
    assert result.diagnostics.iterations == 0
    assert result.diagnostics.factorizations == 0


def test_atol_is_absolute_in_residual_units() -> None:
    """A residual scaled below atol stops at once; a matching atol solves it."""
    scale = 1e-12

    def f(x: FloatArray, params: Parameters | None = None) -> FloatArray:
        return scale * _linear_f(x, params)

    def jac(x: FloatArray, params: Parameters | None = None) -> csr_matrix:
        return scale * _linear_jac(x, params)

    early = solve_steady_state(f, jac, np.zeros(3))
    assert early.converged
    assert early.diagnostics.iterations == 0
    assert not np.allclose(A @ early.x, B)

    scaled = solve_steady_state(f, jac, np.zeros(3), tolerances=NewtonConfig(atol=1e-24))
    assert scaled.converged
    assert scaled.diagnostics.iterations == 1
    assert np.allclose(A @ scaled.x, B)


def test_chord_steps_reuse_factorization() -> None:
    """Chord steps reuse the LU factors and refresh after max_chord_steps."""
    cfg = NewtonConfig(atol=1e-12, max_chord_steps=5, rate_threshold=0.9)
    result = solve_steady_state(_sqrt2_f, _sqrt2_jac, np.full(2, 1.5), tolerances=cfg)
    diag = result.diagnostics

    assert result.converged
    assert np.allclose(result.x, np.sqrt(2.0))
    assert diag.chord_steps > 0
    assert diag.factorizations < diag.iterations
    assert diag.newton_steps + diag.chord_steps == diag.iterations
    # Residual decreases monotonically on this problem.
    assert all(
        b < a for a, b in zip(diag.residual_history, diag.residual_history[1:])
    )


def test_plain_newton_refactorizes_every_step() -> None:
    """max_chord_steps=0 is plain Newton."""
    cfg = NewtonConfig(atol=1e-12, max_chord_steps=0)
    result = solve_steady_state(_sqrt2_f, _sqrt2_jac, np.full(2, 3.0), tolerances=cfg)
    diag = result.diagnostics
    assert result.converged
    assert diag.chord_steps == 0
    assert diag.factorizations == diag.iterations


def test_slow_convergence_triggers_refresh() -> None:
    """A tight rate threshold forces a refresh after every slow chord step."""
    eager = NewtonConfig(atol=1e-12, max_chord_steps=50, rate_threshold=0.01)
    lazy = NewtonConfig(atol=1e-12, max_chord_steps=50, rate_threshold=0.9)
    x0 = np.full(2, 1.5)
    eager_diag = solve_steady_state(_sqrt2_f, _sqrt2_jac, x0, tolerances=eager).diagnostics
    lazy_diag = solve_steady_state(_sqrt2_f, _sqrt2_jac, x0, tolerances=lazy).diagnostics
    assert eager_diag.status == lazy_diag.status == "converged"
    assert eager_diag.factorizations > lazy_diag.factorizations


def test_two_norm_supported() -> None:
    """The Euclidean norm can replace the max-norm."""
    cfg = NewtonConfig(norm="2")
    result = solve_steady_state(_linear_f, _linear_jac, np.zeros(3), tolerances=cfg)
    assert result.converged
    assert result.diagnostics.residual_norm <= cfg.atol


def test_x0_is_not_modified() -> None:
    """The initial guess is copied."""
    x0 = np.full(2, 1.5)
    solve_steady_state(_sqrt2_f, _sqrt2_jac, x0)
    assert np.array_equal(x0, np.full(2, 1.5))


def test_unwrap_returns_solution() -> None:
    """unwrap returns x for a converged result."""
    result = solve_steady_state(_linear_f, _linear_jac, np.zeros(3))
    assert result.unwrap() is result.x


def test_convergence_logged(caplog: pytest.LogCaptureFixture) -> None:
    """Convergence is reported at INFO level."""
    with caplog.at_level("INFO", logger="steady_tracers.newton"):
        solve_steady_state(_linear_f, _linear_jac, np.zeros(3))
    assert "Converged after 1 iterations" in caplog.text


# -----------------------------------------------------------------------------
# Failure outcomes
# -----------------------------------------------------------------------------


def test_singular_jacobian_is_reported_not_raised() -> None:
    """A singular Jacobian ends the solve with status 'failed'."""

    def zero_jac(x: FloatArray, params: Parameters | None = None) -> csr_matrix:  # noqa: ARG001
        return csr_matrix((x.size, x.size))

    x0 = np.array([0.5, 0.25])
    result = solve_steady_state(_sqrt2_f, zero_jac, x0)
    assert not result.converged
    assert result.status == "failed"

    error = result.diagnostics.error
    assert isinstance(error, SingularJacobianError)
    assert error.iterate is not None
    assert np.array_equal(error.iterate, x0)

    with pytest.raises(SingularJacobianError, match="singular"):
        result.unwrap()


def test_iteration_cap_is_failure() -> None:
    """Hitting max_iterations returns 'failed'; unwrap raises ConvergenceFailure."""
    cfg = NewtonConfig(atol=1e-14, max_iterations=1)
    result = solve_steady_state(_sqrt2_f, _sqrt2_jac, np.full(2, 3.0), tolerances=cfg)
    assert result.status == "failed"
    assert result.diagnostics.iterations == 1
    assert "max_iterations=1" in result.diagnostics.message
    assert result.diagnostics.last_iterate is not None

    with pytest.raises(ConvergenceFailure, match="failed") as excinfo:
        result.unwrap()
    assert isinstance(excinfo.value.diagnostics, SolverDiagnostics)


def test_constant_residual_stalls() -> None:
    """A residual that never decreases is reported as stalled."""

    def stuck(x: FloatArray, params: Parameters | None = None) -> FloatArray:  # noqa: ARG001
        return np.ones_like(x)

    def eye(x: FloatArray, params: Parameters | None = None) -> csr_matrix:  # noqa: ARG001
        return identity(x.size, format="csr")

    cfg = NewtonConfig(max_stall=3, max_iterations=20)
    result = solve_steady_state(stuck, eye, np.zeros(2), tolerances=cfg)
    assert result.status == "stalled"
    assert result.diagnostics.iterations == 3
    with pytest.raises(ConvergenceFailure, match="stalled"):
        result.unwrap()


def test_stall_logged_as_warning(caplog: pytest.LogCaptureFixture) -> None:
    """Non-convergence is reported at WARNING level."""

    def stuck(x: FloatArray, params: Parameters | None = None) -> FloatArray:  # noqa: ARG001
        return np.ones_like(x)

    def eye(x: FloatArray, params: Parameters | None = None) -> csr_matrix:  # noqa: ARG001
        return identity(x.size, format="csr")

    with caplog.at_level("WARNING", logger="steady_tracers.newton"):
        solve_steady_state(stuck, eye, np.zeros(2), tolerances=NewtonConfig(max_stall=2))
    assert "stalled" in caplog.text


def test_nonfinite_initial_residual_fails() -> None:
    """A non-finite residual at x0 fails immediately."""

    def bad(x: FloatArray, params: Parameters | None = None) -> FloatArray:  # noqa: ARG001
        return np.full_like(x, np.nan)

    result = solve_steady_state(bad, _sqrt2_jac, np.ones(2))
    assert result.status == "failed"
    assert result.diagnostics.factorizations == 0


# -----------------------------------------------------------------------------
# Input validation
# -----------------------------------------------------------------------------


def test_x0_must_be_1d() -> None:
    """x0 must be a vector."""
    with pytest.raises(ValueError, match="1D"):
        solve_steady_state(_linear_f, _linear_jac, np.zeros((3, 1)))


def test_residual_shape_checked() -> None:
    """F must return a vector shaped like x."""

    def short(x: FloatArray, params: Parameters | None = None) -> FloatArray:  # noqa: ARG001
        return x[:-1]

    with pytest.raises(ValueError, match="F returned shape"):
        solve_steady_state(short, _linear_jac, np.ones(3))


@pytest.mark.parametrize(
    ("kwargs", "match"),
    [
        ({"atol": 0.0}, "atol"),
        ({"rtol": -1.0}, "rtol"),
        ({"rate_threshold": 0.0}, "rate_threshold"),
        ({"rate_threshold": 1.5}, "rate_threshold"),
        ({"armijo": 1.0}, "armijo"),
        ({"max_chord_steps": -1}, "max_chord_steps"),
        ({"norm": "1"}, "Unknown norm"),
    ],
)
def test_newton_config_validation(kwargs: dict[str, object], match: str) -> None:
    """Invalid tolerances are rejected at construction."""
    with pytest.raises(ValueError, match=match):
        NewtonConfig(**kwargs)  # type: ignore[arg-type]
