"""Immutable, named parameter vectors.

Parameters are threaded explicitly through every transport-operator
constructor and every local kinetics function; there is no process-wide
"current parameters" object. Units are the collaborator's concern: a mapping
of ``name -> (value, unit)`` is accepted but only the values are kept.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .errors import raise_configuration_error

_EMPTY_NAME_ERROR = "parameter names must be non-empty strings"
_NONFINITE_ERROR = "parameter '{name}' must be a finite scalar; got {value!r}"
_UNKNOWN_PARAM_ERROR = "Unknown parameter: {name}"


class Parameters(Mapping[str, float]):
    """Ordered, named, read-only scalar parameters.

    Values are accessible by item (``p["tau"]``), by attribute (``p.tau``) and
    as a read-only float vector (``p.vector``). Instances are hashable and
    compare by content, which makes them usable as cache keys.
    """

    __slots__ = ("_names", "_values", "_index")

    def __init__(self, names: tuple[str, ...], values: NDArray[np.floating]) -> None:
        vals = np.array(values, dtype=np.float64, copy=True).reshape(-1)
        if len(names) != vals.size:
            raise_configuration_error(
                what="parameter names/values length mismatch",
                detail=f"{len(names)} names for {vals.size} values",
            )
        for name, value in zip(names, vals, strict=True):
            if not isinstance(name, str) or not name:
                raise_configuration_error(what=_EMPTY_NAME_ERROR)
            if not np.isfinite(value):
                raise_configuration_error(
                    what=_NONFINITE_ERROR.format(name=name, value=value)
                )
        if len(set(names)) != len(names):
            raise_configuration_error(
                what="duplicate parameter names", detail=repr(names)
            )
        vals.setflags(write=False)
        self._names = tuple(names)
        self._values = vals
        self._index = {name: i for i, name in enumerate(self._names)}

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> Parameters:
        """Build parameters from ``name -> value`` or ``name -> (value, unit)``.

        Args:
            mapping: Ordered mapping of parameter names to values. Tuple values
                are interpreted as ``(value, unit)`` and the unit is dropped.

        Returns:
            New Parameters instance preserving the mapping order.
        """
        names: list[str] = []
        values: list[float] = []
        for name, entry in mapping.items():
            value = entry[0] if isinstance(entry, tuple) else entry
            names.append(name)
            try:
                values.append(float(value))
            except (TypeError, ValueError):
                raise_configuration_error(
                    what=_NONFINITE_ERROR.format(name=name, value=value)
                )
        return cls(tuple(names), np.asarray(values, dtype=np.float64))

    @property
    def names(self) -> tuple[str, ...]:
        return self._names

    @property
    def vector(self) -> NDArray[np.floating]:
        return self._values

    def replace(self, **changes: float) -> Parameters:
        """Return a copy with some values replaced.

        Raises:
            KeyError: If a name is not a known parameter.
        """
        values = self._values.copy()
        for name, value in changes.items():
            if name not in self._index:
                raise KeyError(_UNKNOWN_PARAM_ERROR.format(name=name))
            values[self._index[name]] = float(value)
        return Parameters(self._names, values)

    def __getitem__(self, name: str) -> float:
        try:
            return float(self._values[self._index[name]])
        except KeyError:
            raise KeyError(_UNKNOWN_PARAM_ERROR.format(name=name)) from None

    def __getattr__(self, name: str) -> float:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self[name]
        except KeyError:
            raise AttributeError(_UNKNOWN_PARAM_ERROR.format(name=name)) from None

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __hash__(self) -> int:
        # -0.0 == 0.0 but their bytes differ.
        return hash((self._names, (self._values + 0.0).tobytes()))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Parameters):
            return NotImplemented
        return self._names == other._names and bool(
            np.array_equal(self._values, other._values)
        )

    def __repr__(self) -> str:
        body = ", ".join(f"{n}={v:g}" for n, v in zip(self._names, self._values))
        return f"Parameters({body})"
