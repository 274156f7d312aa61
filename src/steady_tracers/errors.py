# src/steady_tracers/errors.py
"""Error types and raise helpers for steady_tracers.

This module centralizes:
- the error taxonomy shared by assembly, differentiation and solving, and
- small helpers that build actionable, uniformly formatted messages.

Design intent:
- assembly and differentiation errors are programming/configuration errors and
  propagate to the caller immediately
- solver non-convergence is a reportable outcome; ConvergenceFailure is only
  raised when a caller explicitly unwraps a failed result
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, NoReturn

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from .newton import SolverDiagnostics

_LIFT_HINT: Final[str] = (
    "Constants combined additively with differentiable state must be lifted "
    "first, e.g. `lift(1.0, x) - x` instead of `1.0 - x`."
)


class SteadyTracersError(Exception):
    """Base exception for steady_tracers."""


class ConfigurationError(SteadyTracersError, ValueError):
    """Raised when grid, flux or tracer input is malformed."""


class DifferentiationError(SteadyTracersError, TypeError):
    """Raised when local kinetics cannot be differentiated in forward mode.

    Attributes:
        tracer: Name of the tracer whose kinetics failed, if known.
        reason: Reason without the tracer context.
        hint: Whether the constant-lifting hint applies.
    """

    def __init__(
        self,
        msg: str,
        *,
        tracer: str | None = None,
        reason: str | None = None,
        hint: bool = False,
    ):
        super().__init__(msg)
        self.tracer = tracer
        self.reason = reason if reason is not None else msg
        self.hint = hint


class SingularJacobianError(SteadyTracersError, ArithmeticError):
    """Raised when the sparse factorization of the Jacobian fails.

    Attributes:
        iterate: State at which the Jacobian was evaluated.
    """

    def __init__(self, msg: str, *, iterate: NDArray[np.floating] | None = None):
        super().__init__(msg)
        self.iterate = iterate


class ConvergenceFailure(SteadyTracersError, RuntimeError):
    """Raised when a non-converged solver result is unwrapped.

    Attributes:
        diagnostics: Diagnostics of the failed solve.
    """

    def __init__(self, msg: str, *, diagnostics: SolverDiagnostics):
        super().__init__(msg)
        self.diagnostics = diagnostics


def raise_configuration_error(*, what: str, detail: str | None = None) -> NoReturn:
    """Raise a standardized ConfigurationError.

    Args:
        what: Short description of the offending input.
        detail: Optional additional context.

    Raises:
        ConfigurationError: Always.
    """
    parts: list[str] = [f"Invalid configuration: {what}."]
    if detail:
        parts.append(f"Detail: {detail}")
    raise ConfigurationError(" ".join(parts))


def raise_differentiation_error(
    *,
    tracer: str | None,
    reason: str,
    hint: bool = True,
) -> NoReturn:
    """Raise a standardized DifferentiationError.

    Args:
        tracer: Name of the tracer whose kinetics failed, if known.
        reason: Human-readable reason.
        hint: Whether to append the constant-lifting hint.

    Raises:
        DifferentiationError: Always.
    """
    where = f" in local kinetics of tracer '{tracer}'" if tracer else ""
    msg = f"Forward-mode differentiation failed{where}: {reason}"
    if hint:
        msg = f"{msg}\n{_LIFT_HINT}"
    raise DifferentiationError(msg, tracer=tracer, reason=reason, hint=hint)


def raise_singular_jacobian(
    *,
    iteration: int,
    iterate: NDArray[np.floating],
    detail: str,
) -> NoReturn:
    """Raise a standardized SingularJacobianError.

    Args:
        iteration: Solver iteration at which factorization failed.
        iterate: Offending state.
        detail: Message from the underlying factorization.

    Raises:
        SingularJacobianError: Always.
    """
    msg = (
        f"Jacobian factorization failed at iteration {iteration}: {detail}. "
        "The Jacobian is singular or numerically close to singular."
    )
    raise SingularJacobianError(msg, iterate=iterate)
