# src/steady_tracers/newton.py
"""Newton-chord-Shamanskii solver for sparse steady-state problems.

The solver drives x toward a root of F using a sparse LU factorization of the
Jacobian that is reused across several steps:

    - "newton": the step right after a (re)factorization at the current
      iterate (a full Newton step).
    - "chord":  a step solved with a stale factorization.

After at most ``max_chord_steps`` chord steps, or as soon as the residual
stops decreasing fast enough (``||F_new|| > rate_threshold * ||F_old||``), the
Jacobian is recomputed and refactorized (the Shamanskii refresh).

Every step is globalized by Armijo backtracking on ``||F||``.

State machine:
    init -> newton <-> chord -> converged | stalled | failed

Outcomes:
    - converged: ``||F(x)|| <= atol`` or ``||alpha*delta|| <= rtol * ||x||``.
    - stalled: the residual failed to decrease for ``max_stall`` consecutive
      steps.
    - failed: iteration cap reached, or the Jacobian could not be factorized
      (a SingularJacobianError holding the offending iterate is recorded).

Non-convergence is returned, not raised: callers inspect
``result.converged``/``result.diagnostics`` or call ``result.unwrap()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

import numpy as np
from numpy.typing import NDArray

from .errors import (
    ConvergenceFailure,
    SingularJacobianError,
    raise_singular_jacobian,
)
from .matrix_ops import factorize_operator

if TYPE_CHECKING:
    from collections.abc import Callable

    from scipy.sparse import csr_matrix

    from .matrix_ops import SolveFunction
    from .params import Parameters

    ResidualFunction = Callable[
        [NDArray[np.floating], Parameters | None], NDArray[np.floating]
    ]
    JacobianCallable = Callable[[NDArray[np.floating], Parameters | None], csr_matrix]

logger = logging.getLogger(__name__)


# =============================================================================
# Errors / messages
# =============================================================================

_X0_SHAPE_ERROR_MSG = "x0 must be a 1D array; got shape {shape}"
_RESIDUAL_SHAPE_ERROR_MSG = "F returned shape {actual}; expected {expected}"
_JACOBIAN_SHAPE_ERROR_MSG = "Jacobian has shape {actual}; expected {expected}"
_UNKNOWN_NORM_ERROR_MSG = "Unknown norm: {norm}"
_CONFIG_POSITIVE_ERROR_MSG = "{name} must be positive; got {value!r}"
_CONFIG_RANGE_ERROR_MSG = "{name} must lie in {interval}; got {value!r}"
_NONFINITE_STEP_MSG = "linear solve produced a non-finite step"
_NONFINITE_RESIDUAL_MSG = "residual is non-finite at the initial guess"
_MAX_ITER_MSG = "Exceeded max_iterations={max_iterations} (||F||={norm:.3e})"
_STALLED_MSG = (
    "Residual did not decrease for {count} consecutive steps (||F||={norm:.3e})"
)
_CONVERGED_RESIDUAL_MSG = "||F|| = {norm:.3e} <= atol"
_CONVERGED_STEP_MSG = "relative step {step:.3e} <= rtol"


# =============================================================================
# Types
# =============================================================================

SolverState = Literal["init", "newton", "chord", "converged", "stalled", "failed"]
NormName = Literal["inf", "2"]


@dataclass(slots=True, frozen=True)
class NewtonConfig:
    """Tolerances and policy of the Newton-chord-Shamanskii iteration.

    Attributes:
        atol: Absolute tolerance on ``||F(x)||``, in the units of F. It is not
            scaled by the problem, so choose it below the residual of any
            state you would not accept: with tendencies of order 1e-12 per
            second the default accepts almost any initial guess.
        rtol: Relative tolerance on the step, ``||alpha*delta|| / ||x||``.
        max_iterations: Hard cap on the number of steps.
        max_chord_steps: Maximum consecutive steps reusing one factorization
            (0 means plain Newton: refactorize every step).
        rate_threshold: Refactorize when ``||F_new|| > rate_threshold * ||F_old||``.
        max_stall: Consecutive non-decreasing steps before giving up.
        norm: Residual/step norm, "inf" (max-norm) or "2".
        max_backtracks: Maximum step halvings of the Armijo line search.
        armijo: Sufficient-decrease constant of the line search.
    """

    atol: float = 1e-10
    rtol: float = 1e-14
    max_iterations: int = 50
    max_chord_steps: int = 5
    rate_threshold: float = 0.5
    max_stall: int = 5
    norm: NormName = "inf"
    max_backtracks: int = 10
    armijo: float = 1e-4

    def __post_init__(self) -> None:
        for name in ("atol", "max_iterations", "max_stall"):
            value = getattr(self, name)
            if not value > 0:
                raise ValueError(
                    _CONFIG_POSITIVE_ERROR_MSG.format(name=name, value=value)
                )
        if self.rtol < 0:
            raise ValueError(
                _CONFIG_RANGE_ERROR_MSG.format(
                    name="rtol", interval="[0, inf)", value=self.rtol
                )
            )
        if self.max_chord_steps < 0 or self.max_backtracks < 0:
            raise ValueError(
                _CONFIG_RANGE_ERROR_MSG.format(
                    name="max_chord_steps/max_backtracks",
                    interval="[0, inf)",
                    value=(self.max_chord_steps, self.max_backtracks),
                )
            )
        if not 0.0 < self.rate_threshold <= 1.0:
            raise ValueError(
                _CONFIG_RANGE_ERROR_MSG.format(
                    name="rate_threshold", interval="(0, 1]", value=self.rate_threshold
                )
            )
        if not 0.0 <= self.armijo < 1.0:
            raise ValueError(
                _CONFIG_RANGE_ERROR_MSG.format(
                    name="armijo", interval="[0, 1)", value=self.armijo
                )
            )
        if self.norm not in ("inf", "2"):
            raise ValueError(_UNKNOWN_NORM_ERROR_MSG.format(norm=self.norm))


@dataclass(slots=True)
class SolverDiagnostics:
    """Record of a solve, filled in as the iteration proceeds.

    Attributes:
        status: Final state of the solver.
        iterations: Number of steps taken.
        newton_steps: Steps taken right after a (re)factorization.
        chord_steps: Steps taken with a stale factorization.
        factorizations: Number of Jacobian evaluations + LU factorizations.
        residual_history: ``||F||`` at x0 and after every step.
        step_norms: ``||alpha*delta||`` of every step.
        message: Human-readable outcome.
        error: Exception that ended the solve, if any.
        last_iterate: Last iterate (copy), for diagnosis.
    """

    status: SolverState = "init"
    iterations: int = 0
    newton_steps: int = 0
    chord_steps: int = 0
    factorizations: int = 0
    residual_history: list[float] = field(default_factory=list)
    step_norms: list[float] = field(default_factory=list)
    message: str = ""
    error: Exception | None = None
    last_iterate: NDArray[np.floating] | None = None

    @property
    def residual_norm(self) -> float:
        return self.residual_history[-1] if self.residual_history else float("nan")

    @property
    def last_step_norm(self) -> float:
        return self.step_norms[-1] if self.step_norms else float("nan")


@dataclass(slots=True, frozen=True)
class SteadyStateResult:
    """Outcome of :func:`solve_steady_state`.

    Attributes:
        x: Converged state, or the last iterate when not converged.
        residual: ``F(x)``.
        diagnostics: Iteration record.
    """

    x: NDArray[np.floating]
    residual: NDArray[np.floating]
    diagnostics: SolverDiagnostics

    @property
    def converged(self) -> bool:
        return self.diagnostics.status == "converged"

    @property
    def status(self) -> SolverState:
        return self.diagnostics.status

    def unwrap(self) -> NDArray[np.floating]:
        """Return x if converged.

        Raises:
            SingularJacobianError: If the solve failed on a singular Jacobian.
            ConvergenceFailure: If the solve stalled or hit the iteration cap.
        """
        if self.converged:
            return self.x
        if isinstance(self.diagnostics.error, SingularJacobianError):
            raise self.diagnostics.error
        raise ConvergenceFailure(
            f"Steady-state solve {self.status}: {self.diagnostics.message}",
            diagnostics=self.diagnostics,
        )


# =============================================================================
# Helpers
# =============================================================================


def _norm(v: NDArray[np.floating], kind: NormName) -> float:
    if v.size == 0:
        return 0.0
    if kind == "inf":
        return float(np.max(np.abs(v)))
    return float(np.linalg.norm(v))


def _evaluate(
    f: ResidualFunction,
    x: NDArray[np.floating],
    params: Parameters | None,
) -> NDArray[np.floating]:
    out = np.asarray(f(x, params), dtype=np.float64)
    if out.shape != x.shape:
        raise ValueError(
            _RESIDUAL_SHAPE_ERROR_MSG.format(actual=out.shape, expected=x.shape)
        )
    return out


def _factorize(
    jac: JacobianCallable,
    x: NDArray[np.floating],
    params: Parameters | None,
    iteration: int,
) -> SolveFunction:
    """Evaluate and factorize the Jacobian at x.

    Raises:
        SingularJacobianError: If the factorization fails.
    """
    matrix = jac(x, params)
    if matrix.shape != (x.size, x.size):
        raise ValueError(
            _JACOBIAN_SHAPE_ERROR_MSG.format(
                actual=matrix.shape, expected=(x.size, x.size)
            )
        )
    try:
        return factorize_operator(matrix)
    except ArithmeticError as exc:
        raise_singular_jacobian(iteration=iteration, iterate=x.copy(), detail=str(exc))


@dataclass(slots=True)
class _LineSearchResult:
    x: NDArray[np.floating]
    f: NDArray[np.floating]
    norm: float
    alpha: float
    sufficient: bool


def _line_search(
    f: ResidualFunction,
    params: Parameters | None,
    x: NDArray[np.floating],
    delta: NDArray[np.floating],
    f_norm: float,
    cfg: NewtonConfig,
) -> _LineSearchResult:
    """Armijo backtracking on ||F||; returns the last trial if none is sufficient."""
    alpha = 1.0
    trial = x + delta
    f_trial = _evaluate(f, trial, params)
    trial_norm = _norm(f_trial, cfg.norm)
    for _ in range(cfg.max_backtracks):
        if np.isfinite(trial_norm) and trial_norm <= (1.0 - cfg.armijo * alpha) * f_norm:
            return _LineSearchResult(trial, f_trial, trial_norm, alpha, True)
        alpha *= 0.5
        trial = x + alpha * delta
        f_trial = _evaluate(f, trial, params)
        trial_norm = _norm(f_trial, cfg.norm)
    sufficient = bool(
        np.isfinite(trial_norm) and trial_norm <= (1.0 - cfg.armijo * alpha) * f_norm
    )
    return _LineSearchResult(trial, f_trial, trial_norm, alpha, sufficient)


# =============================================================================
# Solver
# =============================================================================


class NewtonChordSolver:
    """Newton iteration with chord reuse of a sparse LU factorization."""

    def __init__(
        self,
        f: ResidualFunction,
        jac: JacobianCallable,
        config: NewtonConfig | None = None,
    ) -> None:
        """Initialize the solver.

        Args:
            f: Residual ``f(x, params) -> (n,)``.
            jac: Jacobian ``jac(x, params) -> (n, n)`` sparse matrix.
            config: Tolerances and reuse policy.
        """
        self.f = f
        self.jac = jac
        self.config = config or NewtonConfig()

    def _finish(
        self,
        diag: SolverDiagnostics,
        state: SolverState,
        message: str,
        x: NDArray[np.floating],
        fx: NDArray[np.floating],
        error: Exception | None = None,
    ) -> SteadyStateResult:
        diag.status = state
        diag.message = message
        diag.error = error
        diag.last_iterate = x.copy()
        if state == "converged":
            logger.info(
                "Converged after %d iterations (%d newton, %d chord): %s",
                diag.iterations,
                diag.newton_steps,
                diag.chord_steps,
                message,
            )
        else:
            logger.warning(
                "Steady-state solve %s after %d iterations: %s",
                state,
                diag.iterations,
                message,
            )
        return SteadyStateResult(x=x, residual=fx, diagnostics=diag)

    def solve(
        self,
        x0: NDArray[np.floating],
        params: Parameters | None = None,
    ) -> SteadyStateResult:
        """Iterate from x0 until convergence, stall or failure.

        Args:
            x0: Initial guess (1D); never modified.
            params: Parameters forwarded to F and its Jacobian.

        Raises:
            ValueError: If x0 is not 1D or F/J return inconsistent shapes.

        Returns:
            SteadyStateResult; inspect ``converged`` before using ``x``.
        """
        cfg = self.config
        x = np.array(x0, dtype=np.float64, copy=True)
        if x.ndim != 1:
            raise ValueError(_X0_SHAPE_ERROR_MSG.format(shape=x.shape))

        diag = SolverDiagnostics()

        # ------------------------------------------------------------------
        # init
        # ------------------------------------------------------------------
        fx = _evaluate(self.f, x, params)
        f_norm = _norm(fx, cfg.norm)
        diag.residual_history.append(f_norm)
        logger.debug("Iteration 0: ||F|| = %.4e", f_norm)

        if not np.isfinite(f_norm):
            return self._finish(diag, "failed", _NONFINITE_RESIDUAL_MSG, x, fx)
        if f_norm <= cfg.atol:
            return self._finish(
                diag, "converged", _CONVERGED_RESIDUAL_MSG.format(norm=f_norm), x, fx
            )

        try:
            solve = _factorize(self.jac, x, params, 0)
        except SingularJacobianError as exc:
            return self._finish(diag, "failed", str(exc), x, fx, exc)
        diag.factorizations += 1
        state: SolverState = "newton"
        chord_count = 0
        stall_count = 0

        # ------------------------------------------------------------------
        # newton / chord steps
        # ------------------------------------------------------------------
        for iteration in range(1, cfg.max_iterations + 1):
            delta = solve(-fx)
            if not np.all(np.isfinite(delta)):
                exc = SingularJacobianError(
                    f"{_NONFINITE_STEP_MSG} at iteration {iteration}",
                    iterate=x.copy(),
                )
                return self._finish(diag, "failed", str(exc), x, fx, exc)

            step = _line_search(self.f, params, x, delta, f_norm, cfg)
            step_norm = _norm(step.alpha * delta, cfg.norm)
            x_norm = _norm(x, cfg.norm)

            diag.iterations = iteration
            if state == "newton":
                diag.newton_steps += 1
            else:
                diag.chord_steps += 1

            if not step.sufficient and state == "chord":
                # A stale factorization that cannot produce descent is discarded
                # before the step is taken.
                logger.debug(
                    "Iteration %d: chord step rejected (||F|| %.4e -> %.4e), "
                    "refactorizing",
                    iteration,
                    f_norm,
                    step.norm,
                )
                diag.residual_history.append(f_norm)
                diag.step_norms.append(0.0)
                stall_count += 1
                if stall_count >= cfg.max_stall:
                    return self._finish(
                        diag,
                        "stalled",
                        _STALLED_MSG.format(count=stall_count, norm=f_norm),
                        x,
                        fx,
                    )
                try:
                    solve = _factorize(self.jac, x, params, iteration)
                except SingularJacobianError as exc:
                    return self._finish(diag, "failed", str(exc), x, fx, exc)
                diag.factorizations += 1
                state = "newton"
                chord_count = 0
                continue

            previous_norm = f_norm
            x, fx, f_norm = step.x, step.f, step.norm
            diag.residual_history.append(f_norm)
            diag.step_norms.append(step_norm)
            logger.debug(
                "Iteration %d (%s): ||F|| = %.4e, step = %.4e, alpha = %.3g",
                iteration,
                state,
                f_norm,
                step_norm,
                step.alpha,
            )

            if not np.isfinite(f_norm):
                return self._finish(
                    diag, "failed", f"non-finite residual at iteration {iteration}", x, fx
                )
            if f_norm <= cfg.atol:
                return self._finish(
                    diag,
                    "converged",
                    _CONVERGED_RESIDUAL_MSG.format(norm=f_norm),
                    x,
                    fx,
                )
            if x_norm > 0.0 and step_norm <= cfg.rtol * x_norm:
                return self._finish(
                    diag,
                    "converged",
                    _CONVERGED_STEP_MSG.format(step=step_norm / x_norm),
                    x,
                    fx,
                )

            stall_count = stall_count + 1 if f_norm >= previous_norm else 0
            if stall_count >= cfg.max_stall:
                return self._finish(
                    diag,
                    "stalled",
                    _STALLED_MSG.format(count=stall_count, norm=f_norm),
                    x,
                    fx,
                )

            # Shamanskii policy: refresh after K chord steps or a slow step.
            slow = f_norm > cfg.rate_threshold * previous_norm
            if chord_count >= cfg.max_chord_steps or slow:
                try:
                    solve = _factorize(self.jac, x, params, iteration)
                except SingularJacobianError as exc:
                    return self._finish(diag, "failed", str(exc), x, fx, exc)
                diag.factorizations += 1
                state = "newton"
                chord_count = 0
            else:
                state = "chord"
                chord_count += 1

        return self._finish(
            diag,
            "failed",
            _MAX_ITER_MSG.format(max_iterations=cfg.max_iterations, norm=f_norm),
            x,
            fx,
        )


def solve_steady_state(
    f: ResidualFunction,
    jac: JacobianCallable,
    x0: NDArray[np.floating],
    params: Parameters | None = None,
    tolerances: NewtonConfig | None = None,
) -> SteadyStateResult:
    """Solve ``F(x) = 0`` with the Newton-chord-Shamanskii iteration.

    Args:
        f: Residual ``f(x, params)``, e.g. from ``build_state_function``.
        jac: Jacobian ``jac(x, params)`` returning a sparse matrix.
        x0: Initial guess.
        params: Parameters forwarded to f and jac (None uses their defaults).
        tolerances: Solver configuration.

    Returns:
        SteadyStateResult; never raises on non-convergence.
    """
    return NewtonChordSolver(f, jac, tolerances).solve(x0, params)
