"""Tests for the tracer registry and state layout."""

from __future__ import annotations

from typing import Any

import numpy as np
import pytest
from scipy.sparse import csr_matrix, identity

from steady_tracers import (
    ConfigurationError,
    Parameters,
    Tracer,
    TracerModel,
    TracerRegistry,
    constant_transport,
)

NB = 3
PARAMS = Parameters.from_mapping({"k": 1.0})


def _zero_kinetics(x: Any, params: Parameters) -> Any:  # noqa: ARG001
    return np.zeros(NB)


def _registry(*names: str) -> TracerRegistry:
    registry = TracerRegistry(NB)
    for name in names:
        registry.register(name, constant_transport(identity(NB)), _zero_kinetics)
    return registry


def test_layout_is_tracer_major() -> None:
    """Tracer k occupies x[k*nb:(k+1)*nb] in registration order."""
    registry = _registry("a", "b", "c")
    assert registry.names == ("a", "b", "c")
    assert registry.size == 9
    assert registry.block("b") == slice(3, 6)
    assert registry.offset("c", 1) == 7
    assert registry.offset(0, 2) == 2

    x = np.arange(9.0)
    blocks = registry.split(x)
    assert [b.tolist() for b in blocks] == [[0, 1, 2], [3, 4, 5], [6, 7, 8]]
    assert np.array_equal(registry.concatenate(blocks), x)


def test_duplicate_names_rejected() -> None:
    """Tracer names are unique."""
    registry = _registry("a")
    with pytest.raises(ConfigurationError, match="already registered"):
        registry.register("a", constant_transport(identity(NB)), _zero_kinetics)


def test_unknown_tracer_and_cell() -> None:
    """Unknown names and out-of-range positions are rejected."""
    registry = _registry("a")
    with pytest.raises(KeyError, match="Unknown tracer"):
        registry.index("zzz")
    with pytest.raises(IndexError):
        registry.block(4)
    with pytest.raises(IndexError, match="outside"):
        registry.offset("a", NB)


def test_invalid_nb_rejected() -> None:
    """nb must be a positive integer."""
    with pytest.raises(ConfigurationError, match="nb must be"):
        TracerRegistry(0)


def test_check_state_errors() -> None:
    """An empty registry and a mis-sized state are both rejected."""
    with pytest.raises(ConfigurationError, match="no tracers"):
        TracerRegistry(NB).check_state(np.zeros(NB))
    with pytest.raises(ValueError, match="expected"):
        _registry("a").check_state(np.zeros(NB + 1))


def test_transport_operators_are_shape_checked() -> None:
    """Every transport operator must be (nb, nb)."""
    registry = TracerRegistry(NB)
    registry.register("bad", constant_transport(identity(NB + 1)), _zero_kinetics)
    with pytest.raises(ConfigurationError, match="expected"):
        registry.transport_operators(PARAMS)


def test_transport_depends_on_parameters() -> None:
    """Transport constructors receive the parameter object."""
    registry = TracerRegistry(NB)
    registry.register(
        "scaled", lambda p: p["k"] * identity(NB, format="csr"), _zero_kinetics
    )
    (op,) = registry.transport_operators(PARAMS.replace(k=4.0))
    assert isinstance(op, csr_matrix)
    assert np.allclose(op.diagonal(), 4.0)


def test_tracer_objects_satisfy_protocol() -> None:
    """Tracer and custom classes satisfy the two-operation interface."""

    class Custom:
        name = "custom"

        def transport_operator(self, params: Parameters) -> csr_matrix:  # noqa: ARG002
            return csr_matrix((NB, NB))

        def local_kinetics(self, x: Any, params: Parameters) -> Any:  # noqa: ARG002
            return np.ones(NB)

    tracer = Tracer("t", constant_transport(identity(NB)), _zero_kinetics)
    assert isinstance(tracer, TracerModel)
    assert isinstance(Custom(), TracerModel)

    registry = TracerRegistry(NB, [tracer, Custom()])
    assert len(registry) == 2
    assert registry["custom"].name == "custom"
    assert "custom" in repr(registry)
