# src/steady_tracers/transport.py
"""Grid geometry and circulation assembly.

A circulation is given as a list of directed volumetric fluxes between grid
cells. Each flux of rate q (volume/time) from cell i to cell j removes
concentration from i at rate q/V_i and delivers it to j at rate q/V_j. The
flux-divergence operator T collects these terms so that the transport
tendency of a tracer concentration c is ``-T @ c``:

    T[i, i] += q / V_i
    T[j, i] -= q / V_j

For a divergence-free circulation every row of T sums to zero, i.e. a
uniform concentration is a steady state of transport alone.

The operator is built over the full grid and then restricted to the wet cells,
keeping the original grid order of the active cells for both axes.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, NamedTuple

import numpy as np
from numpy.typing import NDArray
from scipy.sparse import coo_matrix, csr_matrix

from .errors import raise_configuration_error
from .matrix_ops import diagonal_operator, restrict_operator

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = logging.getLogger(__name__)


# Error / message constants -------------------------------------------------

_MASK_LENGTH_ERROR = "wet mask length {mask} does not match volumes length {vol}"
_SURFACE_LENGTH_ERROR = "surface mask length {surface} does not match grid size {n}"
_VOLUME_ERROR = "cell volumes must be finite and positive"
_NO_WET_ERROR = "wet mask selects no active cells"
_SELF_EDGE_ERROR = "flux edge {name!r} connects cell {cell} to itself"
_EDGE_RANGE_ERROR = "flux edge {name!r} references cell {cell} outside [0, {n})"
_RATE_ERROR = "flux edge {name!r} has invalid rate {rate!r}"
_DRY_EDGES_WARNING = (
    "{count} flux edge(s) touch dry cells and are dropped by the wet-cell "
    "restriction; rows of the affected wet cells no longer conserve mass"
)
_NOT_WET_ERROR = "cell {cell} is not a wet cell"
_ACTIVE_LENGTH_ERROR = "active array has length {actual}; expected {expected}"
_TIMESCALE_ERROR = "timescale must be finite and positive; got {value!r}"
_THICKNESS_ERROR = "thickness must be finite and positive; got {value!r}"


# =============================================================================
# Flux edges
# =============================================================================


class FluxEdge(NamedTuple):
    """A directed volumetric flow between two cells.

    Attributes:
        source: Global index of the cell the water leaves.
        destination: Global index of the cell the water enters.
        rate: Volumetric flow rate (volume / time), non-negative.
        name: Optional label used in error messages.
    """

    source: int
    destination: int
    rate: float
    name: str = ""


def mixing_edges(i: int, j: int, rate: float, name: str = "mixing") -> list[FluxEdge]:
    """Return the symmetric pair of edges representing exchange between i and j.

    Mixing is modelled as equal and opposite directed fluxes, so it conserves
    volume by construction.
    """
    return [
        FluxEdge(i, j, rate, name),
        FluxEdge(j, i, rate, name),
    ]


def loop_edges(cells: Sequence[int], rate: float, name: str = "loop") -> list[FluxEdge]:
    """Return the edges of a closed advective loop through ``cells`` in order.

    A loop over two cells is a back-and-forth exchange; loops over more cells
    are overturning cells (``cells[-1]`` flows back into ``cells[0]``).
    """
    n = len(cells)
    if n < 2:
        raise_configuration_error(what=f"loop {name!r} needs at least two cells")
    return [FluxEdge(cells[k], cells[(k + 1) % n], rate, name) for k in range(n)]


def _validate_edges(edges: Iterable[FluxEdge], n: int) -> list[FluxEdge]:
    checked: list[FluxEdge] = []
    for raw in edges:
        edge = FluxEdge(*raw)
        for cell in (edge.source, edge.destination):
            if not 0 <= int(cell) < n:
                raise_configuration_error(
                    what=_EDGE_RANGE_ERROR.format(name=edge.name, cell=cell, n=n)
                )
        if int(edge.source) == int(edge.destination):
            raise_configuration_error(
                what=_SELF_EDGE_ERROR.format(name=edge.name, cell=edge.source)
            )
        rate = float(edge.rate)
        if not np.isfinite(rate) or rate < 0.0:
            raise_configuration_error(
                what=_RATE_ERROR.format(name=edge.name, rate=edge.rate)
            )
        checked.append(edge)
    return checked


def _validate_volumes(volumes: NDArray[np.floating]) -> NDArray[np.floating]:
    vol = np.array(volumes, dtype=np.float64).reshape(-1)
    if vol.size == 0 or not np.all(np.isfinite(vol)) or np.any(vol <= 0.0):
        raise_configuration_error(what=_VOLUME_ERROR)
    return vol


# =============================================================================
# Grid
# =============================================================================


@dataclass(frozen=True, slots=True, eq=False)
class Grid:
    """Discretized cells with volumes and wet/surface flags.

    Multi-dimensional inputs are flattened in C order; the original shape is
    kept so active vectors can be mapped back with :meth:`to_full`.

    Attributes:
        volumes: Cell volumes, length N_total.
        wet: Boolean wet mask, length N_total.
        surface: Boolean near-surface mask, length N_total.
        shape: Original array shape of the grid.
        wet_index: Strictly increasing global indices of the wet cells.
    """

    volumes: NDArray[np.floating]
    wet: NDArray[np.bool_]
    surface: NDArray[np.bool_]
    shape: tuple[int, ...]
    wet_index: NDArray[np.int64] = field(init=False, repr=False)
    _active: NDArray[np.int64] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        wet_index = np.flatnonzero(self.wet).astype(np.int64)
        active = np.full(self.wet.size, -1, dtype=np.int64)
        active[wet_index] = np.arange(wet_index.size, dtype=np.int64)
        wet_index.setflags(write=False)
        active.setflags(write=False)
        object.__setattr__(self, "wet_index", wet_index)
        object.__setattr__(self, "_active", active)

    @classmethod
    def from_arrays(
        cls,
        wet: NDArray[np.bool_],
        volumes: NDArray[np.floating],
        surface: NDArray[np.bool_] | None = None,
    ) -> Grid:
        """
        Build a Grid from (possibly multi-dimensional) arrays.

        Args:
            wet: Wet/dry mask.
            volumes: Cell volumes with the same number of entries as wet.
            surface: Optional near-surface mask; defaults to no surface cells.

        Returns:
            Validated Grid.
        """
        wet_arr = np.asarray(wet, dtype=bool)
        shape = tuple(int(s) for s in wet_arr.shape)
        wet_flat = wet_arr.reshape(-1).copy()
        vol = _validate_volumes(volumes)
        if vol.size != wet_flat.size:
            raise_configuration_error(
                what=_MASK_LENGTH_ERROR.format(mask=wet_flat.size, vol=vol.size)
            )
        if not np.any(wet_flat):
            raise_configuration_error(what=_NO_WET_ERROR)
        if surface is None:
            surf = np.zeros_like(wet_flat)
        else:
            surf = np.asarray(surface, dtype=bool).reshape(-1).copy()
            if surf.size != wet_flat.size:
                raise_configuration_error(
                    what=_SURFACE_LENGTH_ERROR.format(
                        surface=surf.size, n=wet_flat.size
                    )
                )
        for arr in (vol, wet_flat, surf):
            arr.setflags(write=False)
        return cls(volumes=vol, wet=wet_flat, surface=surf, shape=shape)

    @property
    def n_total(self) -> int:
        return int(self.wet.size)

    @property
    def nb(self) -> int:
        """Number of active (wet) cells."""
        return int(self.wet_index.size)

    @property
    def surface_active(self) -> NDArray[np.bool_]:
        """Near-surface flag restricted to the active cells."""
        return self.surface[self.wet_index]

    @property
    def volumes_active(self) -> NDArray[np.floating]:
        return self.volumes[self.wet_index]

    def active_index(self, cell: int) -> int:
        """Translate a global cell index to its active index.

        Raises:
            KeyError: If the cell is dry.
        """
        idx = int(self._active[int(cell)])
        if idx < 0:
            raise KeyError(_NOT_WET_ERROR.format(cell=cell))
        return idx

    def global_index(self, active: int) -> int:
        return int(self.wet_index[int(active)])

    def to_active(self, full: NDArray[np.floating]) -> NDArray[np.floating]:
        """Select the wet entries of a full-grid array (any shape)."""
        return np.asarray(full).reshape(-1)[self.wet_index]

    def to_full(
        self,
        active: NDArray[np.floating],
        fill: float = np.nan,
    ) -> NDArray[np.floating]:
        """Scatter an active vector back onto the grid, in its original shape."""
        vec = np.asarray(active, dtype=np.float64)
        if vec.shape != (self.nb,):
            raise ValueError(
                _ACTIVE_LENGTH_ERROR.format(actual=vec.shape, expected=(self.nb,))
            )
        full = np.full(self.n_total, fill, dtype=np.float64)
        full[self.wet_index] = vec
        return full.reshape(self.shape)

    def transport(self, edges: Iterable[FluxEdge]) -> csr_matrix:
        """Assemble the wet-cell transport operator for this grid."""
        return _assemble(self.wet, self.volumes, edges, self.wet_index)


# =============================================================================
# Assembly
# =============================================================================


def flux_divergence(
    volumes: NDArray[np.floating],
    edges: Iterable[FluxEdge],
) -> csr_matrix:
    """Build the full-grid flux-divergence operator.

    Duplicate edges between the same ordered pair of cells accumulate.

    Args:
        volumes: Cell volumes, length N_total.
        edges: Directed flux edges addressed in global cell indices.

    Returns:
        CSR matrix of shape ``(N_total, N_total)``.
    """
    vol = _validate_volumes(volumes)
    n = vol.size
    checked = _validate_edges(edges, n)
    if not checked:
        return csr_matrix((n, n), dtype=np.float64)

    src = np.fromiter((e.source for e in checked), dtype=np.int64, count=len(checked))
    dst = np.fromiter(
        (e.destination for e in checked), dtype=np.int64, count=len(checked)
    )
    rate = np.fromiter((e.rate for e in checked), dtype=np.float64, count=len(checked))

    rows = np.concatenate([src, dst])
    cols = np.concatenate([src, src])
    data = np.concatenate([rate / vol[src], -rate / vol[dst]])
    op = coo_matrix((data, (rows, cols)), shape=(n, n)).tocsr()
    op.sum_duplicates()
    return op


def _assemble(
    wet: NDArray[np.bool_],
    volumes: NDArray[np.floating],
    edges: Iterable[FluxEdge],
    wet_index: NDArray[np.int64],
) -> csr_matrix:
    edge_list = list(edges)
    full = flux_divergence(volumes, edge_list)

    n_dry = sum(
        1 for e in edge_list if not (wet[int(e.source)] and wet[int(e.destination)])
    )
    if n_dry:
        warnings.warn(
            _DRY_EDGES_WARNING.format(count=n_dry),
            RuntimeWarning,
            stacklevel=3,
        )

    op = restrict_operator(full, wet_index)
    logger.debug(
        "Assembled transport operator: %d edges, %d/%d active cells, nnz=%d",
        len(edge_list),
        wet_index.size,
        wet.size,
        op.nnz,
    )
    return op


def assemble_transport(
    mask: NDArray[np.bool_],
    volumes: NDArray[np.floating],
    edges: Iterable[FluxEdge],
) -> csr_matrix:
    """Assemble the flux-divergence operator restricted to the wet cells.

    Args:
        mask: Wet/dry mask over the full grid (any shape; flattened in C order).
        volumes: Cell volumes with the same number of entries as mask.
        edges: Directed flux edges in global cell indices.

    Raises:
        ConfigurationError: On mismatched lengths, non-positive volumes, self
            edges, out-of-range cells, invalid rates or an all-dry mask.

    Returns:
        CSR matrix of shape ``(nb, nb)`` in the grid order of the wet cells.
    """
    wet = np.asarray(mask, dtype=bool).reshape(-1)
    vol = _validate_volumes(volumes)
    if wet.size != vol.size:
        raise_configuration_error(
            what=_MASK_LENGTH_ERROR.format(mask=wet.size, vol=vol.size)
        )
    wet_index = np.flatnonzero(wet).astype(np.int64)
    if wet_index.size == 0:
        raise_configuration_error(what=_NO_WET_ERROR)
    return _assemble(wet, vol, edges, wet_index)


# =============================================================================
# Common linear terms
# =============================================================================


def surface_exchange_operator(
    grid: Grid,
    piston_velocity: float,
    thickness: float,
) -> csr_matrix:
    """Diagonal relaxation rate ``piston_velocity / thickness`` on surface cells.

    Args:
        grid: Grid providing the surface mask.
        piston_velocity: Gas-exchange velocity (length / time).
        thickness: Thickness of the surface layer (length).

    Returns:
        CSR diagonal matrix of shape ``(nb, nb)``, zero away from the surface.
    """
    if not np.isfinite(thickness) or thickness <= 0.0:
        raise_configuration_error(what=_THICKNESS_ERROR.format(value=thickness))
    rate = float(piston_velocity) / float(thickness)
    return diagonal_operator(rate * grid.surface_active.astype(np.float64))


def linear_decay_operator(nb: int, timescale: float) -> csr_matrix:
    """Uniform first-order loss ``1 / timescale`` on every active cell."""
    if not np.isfinite(timescale) or timescale <= 0.0:
        raise_configuration_error(what=_TIMESCALE_ERROR.format(value=timescale))
    return diagonal_operator(1.0 / float(timescale), nb)
