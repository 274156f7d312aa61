"""steady_tracers: sparse Newton solver for steady tracer distributions."""

from __future__ import annotations

import logging

from .config import SolverSettings, load_solver_settings
from .dual import DualArray, is_dual, lift, real, seed, where
from .errors import (
    ConfigurationError,
    ConvergenceFailure,
    DifferentiationError,
    SingularJacobianError,
    SteadyTracersError,
)
from .jacobian import JacobianFunction, build_jacobian, local_jacobian
from .newton import (
    NewtonChordSolver,
    NewtonConfig,
    SolverDiagnostics,
    SteadyStateResult,
    solve_steady_state,
)
from .params import Parameters
from .registry import Tracer, TracerModel, TracerRegistry, constant_transport
from .state_function import StateFunction, build_state_function
from .tracers import ideal_age_tracer, radiocarbon_age, radiocarbon_tracer
from .transport import (
    FluxEdge,
    Grid,
    assemble_transport,
    flux_divergence,
    linear_decay_operator,
    loop_edges,
    mixing_edges,
    surface_exchange_operator,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ConfigurationError",
    "ConvergenceFailure",
    "DifferentiationError",
    "DualArray",
    "FluxEdge",
    "Grid",
    "JacobianFunction",
    "NewtonChordSolver",
    "NewtonConfig",
    "Parameters",
    "SingularJacobianError",
    "SolverDiagnostics",
    "SolverSettings",
    "StateFunction",
    "SteadyStateResult",
    "SteadyTracersError",
    "Tracer",
    "TracerModel",
    "TracerRegistry",
    "assemble_transport",
    "build_jacobian",
    "build_state_function",
    "constant_transport",
    "flux_divergence",
    "ideal_age_tracer",
    "is_dual",
    "lift",
    "linear_decay_operator",
    "load_solver_settings",
    "local_jacobian",
    "loop_edges",
    "mixing_edges",
    "radiocarbon_age",
    "radiocarbon_tracer",
    "real",
    "seed",
    "solve_steady_state",
    "surface_exchange_operator",
    "where",
]

__version__ = "0.1.0"
