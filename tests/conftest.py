"""Global pytest configuration and shared fixtures for steady_tracers."""

from __future__ import annotations

from typing import Final

import numpy as np
import pytest

from steady_tracers import FluxEdge, Grid, Parameters, loop_edges, mixing_edges

# -----------------------------------------------------------------------------
# Eight-box ocean
# -----------------------------------------------------------------------------
#
# Global cells (C order):
#   0, 1, 3: surface boxes (200 m thick)
#   4, 5:    deep boxes (3800 m thick)
#   2, 6, 7: land (dry)

SECONDS_PER_YEAR: Final[float] = 365.25 * 86400.0
BOX_AREA: Final[float] = 1e14
SURFACE_THICKNESS: Final[float] = 200.0
DEEP_THICKNESS: Final[float] = 3800.0
RADIOCARBON_TIMESCALE: Final[float] = 5730.0 / np.log(2.0) * SECONDS_PER_YEAR
PISTON_VELOCITY: Final[float] = 5.0 / SECONDS_PER_YEAR

WET: Final = np.array([True, True, False, True, True, True, False, False])
SURFACE: Final = np.array([True, True, False, True, False, False, False, False])
VOLUMES: Final = BOX_AREA * np.where(SURFACE, SURFACE_THICKNESS, DEEP_THICKNESS)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used by the test suite."""
    config.addinivalue_line(
        "markers",
        "scenario: end-to-end steady-state scenarios on the eight-box ocean",
    )


@pytest.fixture
def box_edges() -> list[FluxEdge]:
    """Zonal loop, meridional overturning and vertical mixing (m^3/s)."""
    return [
        *loop_edges([1, 3], 100e6, name="zonal"),
        *loop_edges([1, 0, 4, 5], 15e6, name="meridional"),
        *mixing_edges(1, 5, 10e6, name="vertical"),
    ]


@pytest.fixture
def box_grid() -> Grid:
    """Eight-box grid with three dry boxes."""
    return Grid.from_arrays(WET, VOLUMES, SURFACE)


@pytest.fixture
def box_params() -> Parameters:
    """Radiocarbon parameters in SI units."""
    return Parameters.from_mapping(
        {
            "piston_velocity": (PISTON_VELOCITY, "m/s"),
            "surface_thickness": (SURFACE_THICKNESS, "m"),
            "decay_timescale": (RADIOCARBON_TIMESCALE, "s"),
        }
    )
