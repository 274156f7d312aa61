# src/steady_tracers/config.py
"""YAML-friendly solver settings.

This module defines the pydantic-facing configuration object read from YAML
files and translates it into the native :class:`NewtonConfig`.

Notes:
    - Unknown fields are allowed and ignored (`extra="allow"`) so one YAML file
      can carry settings for other tools; they are reported with a warning.
    - Field constraints mirror the checks of NewtonConfig, so invalid values
      fail at load time with pydantic's error report.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field

from .errors import raise_configuration_error
from .newton import NewtonConfig

_NOT_A_MAPPING_ERROR = "solver settings must be a mapping; got {typ}"
_IGNORED_FIELDS_WARNING = "Ignoring unknown solver settings: {names}"


class SolverSettings(BaseModel):
    """Configuration schema of the Newton-chord-Shamanskii solver."""

    model_config = ConfigDict(extra="allow")

    atol: float = Field(default=1e-10, gt=0.0, description="Absolute tolerance on ||F||")
    rtol: float = Field(default=1e-14, ge=0.0, description="Relative step tolerance")
    max_iterations: int = Field(default=50, gt=0)

    # Shamanskii reuse policy
    max_chord_steps: int = Field(
        default=5,
        ge=0,
        description="Maximum steps reusing one factorization",
    )
    rate_threshold: float = Field(default=0.5, gt=0.0, le=1.0)
    max_stall: int = Field(default=5, gt=0)
    norm: Literal["inf", "2"] = "inf"

    # Line search
    max_backtracks: int = Field(default=10, ge=0)
    armijo: float = Field(default=1e-4, ge=0.0, lt=1.0)

    # Jacobian evaluation
    n_workers: int = Field(default=1, gt=0)
    cache_operators: bool = False

    def to_newton_config(self) -> NewtonConfig:
        """Convert these settings to a native NewtonConfig.

        Returns:
            Fully constructed NewtonConfig instance.
        """
        if self.model_extra:
            warnings.warn(
                _IGNORED_FIELDS_WARNING.format(names=sorted(self.model_extra)),
                RuntimeWarning,
                stacklevel=2,
            )
        return NewtonConfig(
            atol=self.atol,
            rtol=self.rtol,
            max_iterations=self.max_iterations,
            max_chord_steps=self.max_chord_steps,
            rate_threshold=self.rate_threshold,
            max_stall=self.max_stall,
            norm=self.norm,
            max_backtracks=self.max_backtracks,
            armijo=self.armijo,
        )

    def state_function_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``build_state_function``.

        Returns:
            Mapping with ``cache_operators`` and ``n_workers``.
        """
        return {"cache_operators": self.cache_operators, "n_workers": self.n_workers}


def load_solver_settings(path: str | Path, *, section: str | None = None) -> SolverSettings:
    """
    Read solver settings from a YAML file.

    Args:
        path: YAML file path.
        section: Optional top-level key holding the settings.

    Raises:
        ConfigurationError: If the document (or section) is not a mapping.
        pydantic.ValidationError: If a field violates its constraints.

    Returns:
        Validated SolverSettings. An empty file yields the defaults.
    """
    with Path(path).open(encoding="utf-8") as fh:
        data: Any = yaml.safe_load(fh)
    if data is None:
        data = {}
    if section is not None and isinstance(data, dict):
        data = data.get(section, {})
    if not isinstance(data, dict):
        raise_configuration_error(
            what=_NOT_A_MAPPING_ERROR.format(typ=type(data).__name__),
            detail=str(path),
        )
    return SolverSettings.model_validate(data)
