"""Steady-state residual of a multi-tracer system.

For every tracer k the residual block is

    F_k(x) = -T_k(p) @ x_k + G_k(x, p)

where ``x_k`` is tracer k's slice of the concatenated state. A root of F is a
steady state. F is pure: the state handed to user kinetics is a read-only
copy, so no kinetics function can mutate the caller's vector.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from .dual import is_dual
from .errors import raise_configuration_error
from .jacobian import JacobianFunction

if TYPE_CHECKING:
    from scipy.sparse import csr_matrix

    from .params import Parameters
    from .registry import TracerRegistry

logger = logging.getLogger(__name__)


# Error / message constants -------------------------------------------------

_KINETICS_SHAPE_ERROR = (
    "local kinetics of tracer {name!r} returned shape {actual}; expected ({nb},)"
)
_KINETICS_DUAL_ERROR = (
    "local kinetics of tracer {name!r} returned a DualArray for a plain state"
)
_NONFINITE_WARNING = "residual contains %d non-finite entries"


class StateFunction:
    """Callable residual ``F(x, params=None)`` over the concatenated state.

    Args:
        tracers: Tracer registry (fixed order).
        params: Default parameters used when a call passes none.
        cache_operators: If True, transport operators are cached per parameter
            object (parameters are immutable and compare by value). The cache
            is only invalidated by :meth:`clear_cache`. If False, operators are
            evaluated on every call.
    """

    def __init__(
        self,
        tracers: TracerRegistry,
        params: Parameters,
        *,
        cache_operators: bool = False,
    ) -> None:
        self.tracers = tracers
        self.params = params
        self.cache_operators = bool(cache_operators)
        self._operator_cache: dict[Parameters, list[csr_matrix]] = {}

    def resolve_params(self, params: Parameters | None) -> Parameters:
        return self.params if params is None else params

    def operators(self, params: Parameters | None = None) -> list[csr_matrix]:
        """Return the per-tracer transport operators for params."""
        p = self.resolve_params(params)
        if not self.cache_operators:
            return self.tracers.transport_operators(p)
        cached = self._operator_cache.get(p)
        if cached is None:
            cached = self.tracers.transport_operators(p)
            self._operator_cache[p] = cached
        return cached

    def clear_cache(self) -> None:
        """Drop cached transport operators."""
        self._operator_cache.clear()

    def __call__(
        self,
        x: NDArray[np.floating],
        params: Parameters | None = None,
    ) -> NDArray[np.floating]:
        p = self.resolve_params(params)
        x_arr = np.array(x, dtype=np.float64, copy=True)
        self.tracers.check_state(x_arr)
        x_arr.setflags(write=False)

        nb = self.tracers.nb
        out = np.empty(self.tracers.size, dtype=np.float64)
        for k, (tracer, op) in enumerate(zip(self.tracers, self.operators(p))):
            block = self.tracers.block(k)
            g = _as_block(tracer.local_kinetics(x_arr, p), tracer.name, nb)
            out[block] = g - op @ x_arr[block]

        if not np.all(np.isfinite(out)):
            logger.warning(
                _NONFINITE_WARNING, int(np.count_nonzero(~np.isfinite(out)))
            )
        return out


def _as_block(result: Any, name: str, nb: int) -> NDArray[np.floating]:
    if is_dual(result):
        raise_configuration_error(what=_KINETICS_DUAL_ERROR.format(name=name))
    arr = np.asarray(result, dtype=np.float64)
    if arr.shape == ():
        return np.full(nb, float(arr), dtype=np.float64)
    if arr.shape != (nb,):
        raise ValueError(
            _KINETICS_SHAPE_ERROR.format(name=name, actual=arr.shape, nb=nb)
        )
    return arr


def build_state_function(
    tracers: TracerRegistry,
    params: Parameters,
    *,
    cache_operators: bool = False,
    n_workers: int = 1,
) -> tuple[StateFunction, JacobianFunction]:
    """Build the residual F and its Jacobian for a tracer registry.

    Args:
        tracers: Registry of tracers in state order.
        params: Default parameters bound into both callables.
        cache_operators: Cache transport operators per parameter object.
        n_workers: Threads used for the local-kinetics Jacobian.

    Returns:
        Tuple ``(F, jac)``; both are called as ``f(x)`` or ``f(x, params)``.
    """
    if tracers.n_tracers == 0:
        raise_configuration_error(what="no tracers registered")
    state_function = StateFunction(tracers, params, cache_operators=cache_operators)
    jacobian = JacobianFunction(state_function, n_workers=n_workers)
    return state_function, jacobian
