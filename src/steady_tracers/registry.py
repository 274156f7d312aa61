"""Ordered registry of tracers and the concatenated state layout.

Each tracer supplies two operations:

- ``transport_operator(params)`` -> sparse ``(nb, nb)`` flux-divergence matrix
- ``local_kinetics(x, params)`` -> length-``nb`` source-minus-sink vector

``x`` passed to local kinetics is the FULL concatenated state (all tracers),
so one tracer's kinetics may depend on other tracers at the same cell. The
state layout is tracer-major in registration order: tracer ``k`` occupies
``x[k*nb:(k+1)*nb]``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import csr_matrix

from .errors import raise_configuration_error
from .matrix_ops import as_csr

if TYPE_CHECKING:
    from .params import Parameters


# Error / message constants -------------------------------------------------

_NB_ERROR = "nb must be a positive integer; got {nb!r}"
_DUPLICATE_NAME_ERROR = "tracer name {name!r} is already registered"
_UNKNOWN_TRACER_ERROR = "Unknown tracer: {name!r}"
_OPERATOR_SHAPE_ERROR = (
    "transport operator of tracer {name!r} has shape {shape}; expected ({nb}, {nb})"
)
_STATE_LENGTH_ERROR = "state has shape {actual}; expected ({expected},)"
_BLOCKS_ERROR = "expected {expected} blocks of length {nb}; got {actual}"
_EMPTY_REGISTRY_ERROR = "no tracers registered"


# =============================================================================
# Tracer interface
# =============================================================================

TransportConstructor = Callable[["Parameters"], Any]
LocalKinetics = Callable[[Any, "Parameters"], Any]


@runtime_checkable
class TracerModel(Protocol):
    """Two-operation interface every registered tracer implements."""

    name: str

    def transport_operator(self, params: Parameters) -> csr_matrix:
        """Return the tracer's ``(nb, nb)`` flux-divergence operator."""
        ...

    def local_kinetics(self, x: Any, params: Parameters) -> Any:
        """Return the tracer's source-minus-sink at every active cell."""
        ...


@dataclass(frozen=True, slots=True)
class Tracer:
    """Tracer built from a pair of closures.

    Attributes:
        name: Unique tracer name.
        transport: ``transport(params) -> (nb, nb)`` operator constructor.
        kinetics: ``kinetics(x, params) -> (nb,)`` local source-minus-sink,
            where x is the full concatenated state.
    """

    name: str
    transport: TransportConstructor
    kinetics: LocalKinetics

    def transport_operator(self, params: Parameters) -> csr_matrix:
        return as_csr(self.transport(params))

    def local_kinetics(self, x: Any, params: Parameters) -> Any:
        return self.kinetics(x, params)


def constant_transport(operator: Any) -> TransportConstructor:
    """
    Wrap a fixed operator as a transport constructor.

    Args:
        operator: Operator returned for every parameter value.

    Returns:
        A constructor ignoring its parameters.
    """
    operator_0 = as_csr(operator)

    def _transport(params: Parameters) -> csr_matrix:  # noqa: ARG001
        return operator_0

    return _transport


# =============================================================================
# Registry
# =============================================================================


class TracerRegistry:
    """Fixed-order sequence of tracers sharing one active grid of size nb."""

    def __init__(self, nb: int, tracers: Sequence[TracerModel] = ()) -> None:
        if not isinstance(nb, (int, np.integer)) or int(nb) <= 0:
            raise_configuration_error(what=_NB_ERROR.format(nb=nb))
        self._nb = int(nb)
        self._tracers: list[TracerModel] = []
        self._index: dict[str, int] = {}
        for tracer in tracers:
            self.add(tracer)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add(self, tracer: TracerModel) -> int:
        """Append a tracer object and return its position."""
        if tracer.name in self._index:
            raise_configuration_error(
                what=_DUPLICATE_NAME_ERROR.format(name=tracer.name)
            )
        self._index[tracer.name] = len(self._tracers)
        self._tracers.append(tracer)
        return self._index[tracer.name]

    def register(
        self,
        name: str,
        transport: TransportConstructor,
        kinetics: LocalKinetics,
    ) -> int:
        """Register a tracer from its two closures and return its position."""
        return self.add(Tracer(name=name, transport=transport, kinetics=kinetics))

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    @property
    def nb(self) -> int:
        """Number of active cells per tracer."""
        return self._nb

    @property
    def n_tracers(self) -> int:
        return len(self._tracers)

    @property
    def size(self) -> int:
        """Length of the concatenated state vector."""
        return self._nb * len(self._tracers)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(t.name for t in self._tracers)

    def index(self, name: str) -> int:
        try:
            return self._index[name]
        except KeyError:
            raise KeyError(_UNKNOWN_TRACER_ERROR.format(name=name)) from None

    def _position(self, tracer: int | str) -> int:
        k = self.index(tracer) if isinstance(tracer, str) else int(tracer)
        if not 0 <= k < len(self._tracers):
            raise IndexError(_UNKNOWN_TRACER_ERROR.format(name=tracer))
        return k

    def offset(self, tracer: int | str, cell: int) -> int:
        """Flat offset of ``(tracer, active cell)`` in the state vector."""
        k = self._position(tracer)
        c = int(cell)
        if not 0 <= c < self._nb:
            msg = f"cell {c} outside [0, {self._nb})"
            raise IndexError(msg)
        return k * self._nb + c

    def block(self, tracer: int | str) -> slice:
        """Slice of the state vector holding one tracer."""
        k = self._position(tracer)
        return slice(k * self._nb, (k + 1) * self._nb)

    def split(self, x: Any) -> list[Any]:
        """Split a state (plain or dual) into per-tracer views."""
        self.check_state(x)
        return [x[self.block(k)] for k in range(self.n_tracers)]

    def concatenate(self, blocks: Sequence[NDArray[np.floating]]) -> NDArray[np.floating]:
        """Concatenate per-tracer vectors into a state vector."""
        arrays = [np.asarray(b, dtype=np.float64).reshape(-1) for b in blocks]
        if len(arrays) != self.n_tracers or any(a.size != self._nb for a in arrays):
            raise ValueError(
                _BLOCKS_ERROR.format(
                    expected=self.n_tracers,
                    nb=self._nb,
                    actual=[a.size for a in arrays],
                )
            )
        return np.concatenate(arrays)

    def check_state(self, x: Any) -> None:
        """Validate the shape of a (plain or dual) state vector.

        Raises:
            ConfigurationError: If no tracer is registered.
            ValueError: If x does not have shape ``(size,)``.
        """
        if not self._tracers:
            raise_configuration_error(what=_EMPTY_REGISTRY_ERROR)
        if tuple(x.shape) != (self.size,):
            raise ValueError(
                _STATE_LENGTH_ERROR.format(actual=tuple(x.shape), expected=self.size)
            )

    # ------------------------------------------------------------------
    # Per-tracer evaluation
    # ------------------------------------------------------------------

    def transport_operators(self, params: Parameters) -> list[csr_matrix]:
        """Evaluate and validate every tracer's transport operator."""
        if not self._tracers:
            raise_configuration_error(what=_EMPTY_REGISTRY_ERROR)
        ops: list[csr_matrix] = []
        for tracer in self._tracers:
            op = as_csr(tracer.transport_operator(params))
            if op.shape != (self._nb, self._nb):
                raise_configuration_error(
                    what=_OPERATOR_SHAPE_ERROR.format(
                        name=tracer.name, shape=op.shape, nb=self._nb
                    )
                )
            ops.append(op)
        return ops

    def __iter__(self) -> Iterator[TracerModel]:
        return iter(self._tracers)

    def __len__(self) -> int:
        return len(self._tracers)

    def __getitem__(self, tracer: int | str) -> TracerModel:
        return self._tracers[self._position(tracer)]

    def __repr__(self) -> str:
        return f"TracerRegistry(nb={self._nb}, tracers={list(self.names)})"
