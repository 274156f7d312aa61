# src/steady_tracers/jacobian.py
"""Forward-mode Jacobian of the steady-state residual.

The residual of tracer k is ``F_k(x) = -T_k(p) @ x_k + G_k(x, p)``. Its
Jacobian splits into:

- the transport part, exactly ``-T_k(p)`` on diagonal block ``(k, k)``
  (linear, nothing to differentiate), and
- the local-kinetics part ``dG_k / dx_j``, which is diagonal inside every
  tracer block because local kinetics never couple distinct cells.

Because cells do not interact through G, seeding tracer j with a unit tangent
on *every* cell at once yields ``dG_k/dx_j`` at every cell in a single dual
evaluation. n_tracers dual evaluations therefore produce every cell's dense
``n_tracers x n_tracers`` local Jacobian, for a cost of O(nb * n_tracers**2).

Seeds are independent and write disjoint blocks, so they may run on a thread
pool (``n_workers > 1``).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from .dual import DualArray
from .errors import DifferentiationError, raise_differentiation_error
from .matrix_ops import block_diagonal_operator, tracer_block_operator

if TYPE_CHECKING:
    from collections.abc import Sequence

    from scipy.sparse import csr_matrix

    from .params import Parameters
    from .registry import TracerModel, TracerRegistry
    from .state_function import StateFunction

logger = logging.getLogger(__name__)


# Error / message constants -------------------------------------------------

_RESULT_SHAPE_REASON = "local kinetics returned shape {actual}; expected ({nb},)"
_NONFINITE_REASON = (
    "non-finite derivative with respect to tracer '{seed}' at {count} cell(s) "
    "(first active cell {first})"
)
_WORKERS_ERROR = "n_workers must be a positive integer; got {n_workers!r}"


# =============================================================================
# Dual evaluation of one tracer
# =============================================================================


def _tangent_of(
    tracer: TracerModel,
    x_dual: DualArray,
    params: Parameters,
    nb: int,
) -> NDArray[np.floating]:
    """Evaluate one tracer's kinetics on a dual state and return the tangent.

    A plain (non-dual) result means the kinetics do not depend on the state;
    its tangent is zero.
    """
    try:
        result: Any = tracer.local_kinetics(x_dual, params)
    except DifferentiationError as exc:
        if exc.tracer is not None:
            raise
        raise_differentiation_error(
            tracer=tracer.name, reason=exc.reason, hint=exc.hint
        )
    except TypeError as exc:
        raise_differentiation_error(tracer=tracer.name, reason=str(exc))

    if isinstance(result, DualArray):
        if result.shape == ():
            return np.broadcast_to(result.tangent, (nb,)).copy()
        if result.shape != (nb,):
            raise_differentiation_error(
                tracer=tracer.name,
                reason=_RESULT_SHAPE_REASON.format(actual=result.shape, nb=nb),
                hint=False,
            )
        return result.tangent

    shape = np.shape(result)
    if shape not in {(), (nb,)}:
        raise_differentiation_error(
            tracer=tracer.name,
            reason=_RESULT_SHAPE_REASON.format(actual=shape, nb=nb),
            hint=False,
        )
    return np.zeros(nb, dtype=np.float64)


def local_jacobian(
    tracers: TracerRegistry,
    params: Parameters,
    x: NDArray[np.floating],
    *,
    n_workers: int = 1,
) -> NDArray[np.floating]:
    """Compute every cell's local Jacobian of the kinetics.

    Args:
        tracers: Tracer registry.
        params: Parameters.
        x: Concatenated state of length ``nb * n_tracers``.
        n_workers: Number of threads used to evaluate the seeds.

    Raises:
        DifferentiationError: If any kinetics function cannot be evaluated on
            dual numbers or yields non-finite derivatives.
        ValueError: If n_workers is not a positive integer.

    Returns:
        Array ``local`` of shape ``(n_tracers, n_tracers, nb)`` with
        ``local[k, j, c] = dG_k(c) / dx_j(c)``.
    """
    if int(n_workers) < 1:
        raise ValueError(_WORKERS_ERROR.format(n_workers=n_workers))

    x_arr = np.array(x, dtype=np.float64, copy=True)
    tracers.check_state(x_arr)
    x_arr.setflags(write=False)

    n_tracers = tracers.n_tracers
    nb = tracers.nb
    models: Sequence[TracerModel] = list(tracers)
    local = np.zeros((n_tracers, n_tracers, nb), dtype=np.float64)

    def _seed(j: int) -> None:
        direction = np.zeros(tracers.size, dtype=np.float64)
        direction[tracers.block(j)] = 1.0
        x_dual = DualArray(x_arr, direction)
        for k, tracer in enumerate(models):
            tangent = _tangent_of(tracer, x_dual, params, nb)
            bad = ~np.isfinite(tangent)
            if np.any(bad):
                raise_differentiation_error(
                    tracer=tracer.name,
                    reason=_NONFINITE_REASON.format(
                        seed=models[j].name,
                        count=int(bad.sum()),
                        first=int(np.flatnonzero(bad)[0]),
                    ),
                    hint=False,
                )
            local[k, j, :] = tangent

    workers = min(int(n_workers), n_tracers)
    if workers > 1:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            # list() re-raises the first worker exception here
            list(pool.map(_seed, range(n_tracers)))
    else:
        for j in range(n_tracers):
            _seed(j)
    return local


# =============================================================================
# Full Jacobian
# =============================================================================


def build_jacobian(
    tracers: TracerRegistry,
    params: Parameters,
    x: NDArray[np.floating],
    *,
    operators: Sequence[csr_matrix] | None = None,
    n_workers: int = 1,
) -> csr_matrix:
    """Assemble the sparse Jacobian of the steady-state residual at x.

    Args:
        tracers: Tracer registry.
        params: Parameters.
        x: Concatenated state.
        operators: Pre-evaluated transport operators (one per tracer); evaluated
            from the registry when omitted.
        n_workers: Number of threads used for the local Jacobian.

    Returns:
        CSR matrix of shape ``(nb * n_tracers, nb * n_tracers)``.
    """
    ops = list(operators) if operators is not None else tracers.transport_operators(
        params
    )
    transport = block_diagonal_operator(ops)
    kinetics = tracer_block_operator(
        local_jacobian(tracers, params, x, n_workers=n_workers)
    )
    jac = (kinetics - transport).tocsr()
    jac.sum_duplicates()
    logger.debug(
        "Built Jacobian: size=%d, nnz=%d (transport nnz=%d, kinetics nnz=%d)",
        jac.shape[0],
        jac.nnz,
        transport.nnz,
        kinetics.nnz,
    )
    return jac


class JacobianFunction:
    """Callable ``J(x, params=None)`` bound to a state function.

    Shares the state function's registry, default parameters and operator
    cache, so transport operators are evaluated the same way for F and for
    its Jacobian.
    """

    def __init__(self, state_function: StateFunction, *, n_workers: int = 1) -> None:
        if int(n_workers) < 1:
            raise ValueError(_WORKERS_ERROR.format(n_workers=n_workers))
        self.state_function = state_function
        self.n_workers = int(n_workers)

    def __call__(
        self,
        x: NDArray[np.floating],
        params: Parameters | None = None,
    ) -> csr_matrix:
        p = self.state_function.resolve_params(params)
        return build_jacobian(
            self.state_function.tracers,
            p,
            x,
            operators=self.state_function.operators(p),
            n_workers=self.n_workers,
        )
