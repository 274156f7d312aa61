"""Ready-made tracers for circulation diagnostics.

Both tracers share the circulation operator of a :class:`Grid` and differ in
their local kinetics:

- radiocarbon ratio R: relaxes to the atmospheric ratio 1 at the surface with
  rate ``piston_velocity / surface_thickness`` and decays everywhere with the
  e-folding ``decay_timescale``:

      G(R) = surface * (v / h) * (1 - R) - R / tau

- ideal age a: reset to 0 at the surface with the same relaxation rate and
  ageing at rate 1 below it:

      G(a) = (1 - surface) - surface * (v / h) * a

Parameter names are configurable so several tracers can share one parameter
object.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import numpy as np
from numpy.typing import NDArray

from .dual import lift
from .errors import raise_configuration_error
from .registry import Tracer, constant_transport

if TYPE_CHECKING:
    from scipy.sparse import csr_matrix

    from .params import Parameters
    from .registry import TransportConstructor
    from .transport import Grid

_RATIO_ERROR = "radiocarbon ratio must be positive; got minimum {value!r}"


def _transport_of(transport: csr_matrix | TransportConstructor) -> TransportConstructor:
    return transport if callable(transport) else constant_transport(transport)


def radiocarbon_tracer(
    grid: Grid,
    transport: csr_matrix | TransportConstructor,
    *,
    name: str = "radiocarbon",
    position: int = 0,
    piston_velocity: str = "piston_velocity",
    surface_thickness: str = "surface_thickness",
    decay_timescale: str = "decay_timescale",
) -> Tracer:
    """
    Build a radiocarbon-ratio tracer.

    Args:
        grid: Grid providing the active surface mask.
        transport: Circulation operator, or a constructor ``transport(params)``.
        name: Tracer name.
        position: Registration position of this tracer in its registry.
        piston_velocity: Name of the gas-exchange velocity parameter.
        surface_thickness: Name of the surface-layer thickness parameter.
        decay_timescale: Name of the radioactive e-folding time parameter.

    Returns:
        Tracer whose kinetics read block ``position`` of the state.
    """
    surface = grid.surface_active.astype(np.float64)
    nb = grid.nb
    block = slice(position * nb, (position + 1) * nb)

    def kinetics(x: Any, params: Parameters) -> Any:
        ratio = x[block]
        exchange = params[piston_velocity] / params[surface_thickness]
        return (lift(1.0, ratio) - ratio) * (exchange * surface) - ratio / params[
            decay_timescale
        ]

    return Tracer(name=name, transport=_transport_of(transport), kinetics=kinetics)


def ideal_age_tracer(
    grid: Grid,
    transport: csr_matrix | TransportConstructor,
    *,
    name: str = "ideal_age",
    position: int = 0,
    piston_velocity: str = "piston_velocity",
    surface_thickness: str = "surface_thickness",
) -> Tracer:
    """Build an ideal-age tracer (time since last surface contact)."""
    surface = grid.surface_active.astype(np.float64)
    interior = 1.0 - surface
    nb = grid.nb
    block = slice(position * nb, (position + 1) * nb)

    def kinetics(x: Any, params: Parameters) -> Any:
        age = x[block]
        exchange = params[piston_velocity] / params[surface_thickness]
        return lift(interior, age) - age * (exchange * surface)

    return Tracer(name=name, transport=_transport_of(transport), kinetics=kinetics)


def radiocarbon_age(
    ratio: NDArray[np.floating],
    timescale: float,
) -> NDArray[np.floating]:
    """
    Convert a radiocarbon ratio to a radiocarbon age ``tau * log(1 / R)``.

    Args:
        ratio: Radiocarbon ratio relative to the atmosphere (positive).
        timescale: Radioactive e-folding time ``tau`` (same unit as the age).

    Returns:
        Ages with the shape of ratio.
    """
    r = np.asarray(ratio, dtype=np.float64)
    if r.size and not np.all(r > 0.0):
        raise_configuration_error(what=_RATIO_ERROR.format(value=float(np.min(r))))
    return float(timescale) * np.log(1.0 / r)
