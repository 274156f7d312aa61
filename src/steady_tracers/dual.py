# src/steady_tracers/dual.py
"""Forward-mode dual numbers over NumPy arrays.

A :class:`DualArray` carries a primal value and a tangent (first-order
perturbation) per element. Arithmetic and the supported NumPy ufuncs propagate
tangents element-wise, so evaluating a cell-local function on a DualArray
seeded with unit tangents yields its diagonal partial derivatives.

Rules enforced here:
    * Additive mixing with plain constants is undefined. ``x - 1.0`` raises
      DifferentiationError; write ``x - lift(1.0, x)``. Scaling by plain
      constants (``2.0 * x``, ``x / tau``, ``mask * x``) is linear and allowed.
    * Comparisons look at the primal only and return plain boolean arrays;
      masks carry no derivative.
    * Silent conversion to a plain ndarray is refused; use ``real(x)``.
"""

from __future__ import annotations

from numbers import Number
from typing import Any, Final

import numpy as np
from numpy.typing import ArrayLike, NDArray

from .errors import raise_differentiation_error

_ADDITIVE_CONSTANT_REASON: Final[str] = (
    "'{op}' between a DualArray and an un-lifted {typ} is undefined"
)
_ARRAY_CONVERSION_REASON: Final[str] = (
    "a DualArray cannot be converted to a plain array without dropping its "
    "tangent; use real(x) for primal-only arithmetic such as masks"
)
_UNSUPPORTED_UFUNC_REASON: Final[str] = "NumPy ufunc '{name}' is not supported"
_SHAPE_MISMATCH_ERROR = "primal shape {primal} does not match tangent shape {tangent}"


def _is_constant(value: object) -> bool:
    return isinstance(value, (Number, np.ndarray, np.generic, bool))


def _constant_name(value: object) -> str:
    if isinstance(value, np.ndarray):
        return f"ndarray of shape {value.shape}"
    return type(value).__name__


class DualArray:
    """Array of dual numbers ``primal + tangent * eps`` with ``eps**2 == 0``."""

    __slots__ = ("primal", "tangent")

    # Make NumPy defer binary operators to this class.
    __array_priority__ = 1000

    def __init__(self, primal: ArrayLike, tangent: ArrayLike | None = None) -> None:
        p = np.asarray(primal, dtype=np.float64)
        t = np.zeros_like(p) if tangent is None else np.asarray(tangent, np.float64)
        if t.shape != p.shape:
            try:
                t = np.broadcast_to(t, p.shape).copy()
            except ValueError:
                raise ValueError(
                    _SHAPE_MISMATCH_ERROR.format(primal=p.shape, tangent=t.shape)
                ) from None
        self.primal: NDArray[np.floating] = p
        self.tangent: NDArray[np.floating] = t

    # ------------------------------------------------------------------
    # Array-like surface
    # ------------------------------------------------------------------

    @property
    def shape(self) -> tuple[int, ...]:
        return self.primal.shape

    @property
    def size(self) -> int:
        return int(self.primal.size)

    @property
    def ndim(self) -> int:
        return self.primal.ndim

    @property
    def real(self) -> NDArray[np.floating]:
        return self.primal

    @property
    def dual(self) -> NDArray[np.floating]:
        return self.tangent

    def __len__(self) -> int:
        return len(self.primal)

    def __getitem__(self, key: Any) -> DualArray:
        return DualArray(self.primal[key], self.tangent[key])

    def __repr__(self) -> str:
        return f"DualArray(primal={self.primal!r}, tangent={self.tangent!r})"

    def __array__(self, dtype: Any = None, copy: Any = None) -> NDArray[Any]:
        raise_differentiation_error(tracer=None, reason=_ARRAY_CONVERSION_REASON)

    def __float__(self) -> float:
        raise_differentiation_error(tracer=None, reason=_ARRAY_CONVERSION_REASON)

    # ------------------------------------------------------------------
    # Operand coercion
    # ------------------------------------------------------------------

    @staticmethod
    def _additive(other: object, op: str) -> DualArray:
        if isinstance(other, DualArray):
            return other
        if _is_constant(other):
            raise_differentiation_error(
                tracer=None,
                reason=_ADDITIVE_CONSTANT_REASON.format(
                    op=op, typ=_constant_name(other)
                ),
            )
        return NotImplemented

    @staticmethod
    def _split(other: object) -> tuple[Any, Any] | None:
        """Return (value, tangent) for multiplicative operands; tangent None = const."""
        if isinstance(other, DualArray):
            return other.primal, other.tangent
        if _is_constant(other):
            return np.asarray(other), None
        return None

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def __add__(self, other: object) -> DualArray:
        rhs = self._additive(other, "+")
        if rhs is NotImplemented:
            return NotImplemented
        return DualArray(self.primal + rhs.primal, self.tangent + rhs.tangent)

    def __radd__(self, other: object) -> DualArray:
        return self.__add__(other)

    def __sub__(self, other: object) -> DualArray:
        rhs = self._additive(other, "-")
        if rhs is NotImplemented:
            return NotImplemented
        return DualArray(self.primal - rhs.primal, self.tangent - rhs.tangent)

    def __rsub__(self, other: object) -> DualArray:
        lhs = self._additive(other, "-")
        if lhs is NotImplemented:
            return NotImplemented
        return lhs.__sub__(self)

    def __mul__(self, other: object) -> DualArray:
        split = self._split(other)
        if split is None:
            return NotImplemented
        b, db = split
        if db is None:
            return DualArray(self.primal * b, self.tangent * b)
        return DualArray(self.primal * b, self.tangent * b + self.primal * db)

    def __rmul__(self, other: object) -> DualArray:
        return self.__mul__(other)

    def __truediv__(self, other: object) -> DualArray:
        split = self._split(other)
        if split is None:
            return NotImplemented
        b, db = split
        if db is None:
            return DualArray(self.primal / b, self.tangent / b)
        value = self.primal / b
        return DualArray(value, (self.tangent - value * db) / b)

    def __rtruediv__(self, other: object) -> DualArray:
        split = self._split(other)
        if split is None:
            return NotImplemented
        c, _ = split
        value = c / self.primal
        return DualArray(value, -value * self.tangent / self.primal)

    def __pow__(self, other: object) -> DualArray:
        split = self._split(other)
        if split is None:
            return NotImplemented
        b, db = split
        value = self.primal**b
        tangent = b * self.primal ** (b - 1) * self.tangent
        if db is not None:
            with np.errstate(divide="ignore", invalid="ignore"):
                log_a = np.where(self.primal > 0, np.log(self.primal), 0.0)
            tangent = tangent + value * log_a * db
        return DualArray(value, tangent)

    def __rpow__(self, other: object) -> DualArray:
        split = self._split(other)
        if split is None:
            return NotImplemented
        c, _ = split
        value = c**self.primal
        return DualArray(value, value * np.log(c) * self.tangent)

    def __neg__(self) -> DualArray:
        return DualArray(-self.primal, -self.tangent)

    def __pos__(self) -> DualArray:
        return DualArray(self.primal.copy(), self.tangent.copy())

    def __abs__(self) -> DualArray:
        return DualArray(np.abs(self.primal), np.sign(self.primal) * self.tangent)

    # ------------------------------------------------------------------
    # Comparisons (primal only, no derivative)
    # ------------------------------------------------------------------

    def __lt__(self, other: object) -> NDArray[np.bool_]:
        return self.primal < real(other)

    def __le__(self, other: object) -> NDArray[np.bool_]:
        return self.primal <= real(other)

    def __gt__(self, other: object) -> NDArray[np.bool_]:
        return self.primal > real(other)

    def __ge__(self, other: object) -> NDArray[np.bool_]:
        return self.primal >= real(other)

    def __eq__(self, other: object) -> NDArray[np.bool_]:  # type: ignore[override]
        return self.primal == real(other)

    def __ne__(self, other: object) -> NDArray[np.bool_]:  # type: ignore[override]
        return self.primal != real(other)

    __hash__ = None  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # NumPy ufunc protocol
    # ------------------------------------------------------------------

    def __array_ufunc__(
        self,
        ufunc: np.ufunc,
        method: str,
        *inputs: Any,
        **kwargs: Any,
    ) -> Any:
        if method != "__call__" or kwargs.get("out") is not None:
            raise_differentiation_error(
                tracer=None,
                reason=_UNSUPPORTED_UFUNC_REASON.format(
                    name=f"{ufunc.__name__}.{method}"
                ),
                hint=False,
            )

        binary = _BINARY_UFUNCS.get(ufunc)
        if binary is not None:
            a, b = inputs
            if not isinstance(a, DualArray):
                return getattr(b, binary[1])(a)
            return getattr(a, binary[0])(b)

        compare = _COMPARISON_UFUNCS.get(ufunc)
        if compare is not None:
            return compare(real(inputs[0]), real(inputs[1]))

        if ufunc in (np.maximum, np.minimum):
            return _extremum(inputs[0], inputs[1], take_max=ufunc is np.maximum)

        unary = _UNARY_UFUNCS.get(ufunc)
        if unary is not None:
            (x,) = inputs
            value, slope = unary(x.primal)
            return DualArray(value, slope * x.tangent)

        raise_differentiation_error(
            tracer=None,
            reason=_UNSUPPORTED_UFUNC_REASON.format(name=ufunc.__name__),
            hint=False,
        )


# =============================================================================
# Ufunc tables
# =============================================================================

_BINARY_UFUNCS: dict[np.ufunc, tuple[str, str]] = {
    np.add: ("__add__", "__radd__"),
    np.subtract: ("__sub__", "__rsub__"),
    np.multiply: ("__mul__", "__rmul__"),
    np.true_divide: ("__truediv__", "__rtruediv__"),
    np.power: ("__pow__", "__rpow__"),
}

_COMPARISON_UFUNCS: dict[np.ufunc, Any] = {
    np.less: np.less,
    np.less_equal: np.less_equal,
    np.greater: np.greater,
    np.greater_equal: np.greater_equal,
    np.equal: np.equal,
    np.not_equal: np.not_equal,
}


def _d_log(a: NDArray[np.floating]) -> tuple[NDArray, NDArray]:
    return np.log(a), 1.0 / a


def _d_sqrt(a: NDArray[np.floating]) -> tuple[NDArray, NDArray]:
    value = np.sqrt(a)
    return value, 0.5 / value


def _d_exp(a: NDArray[np.floating]) -> tuple[NDArray, NDArray]:
    value = np.exp(a)
    return value, value


def _d_tanh(a: NDArray[np.floating]) -> tuple[NDArray, NDArray]:
    value = np.tanh(a)
    return value, 1.0 - value**2


_UNARY_UFUNCS: dict[np.ufunc, Any] = {
    np.negative: lambda a: (-a, -np.ones_like(a)),
    np.positive: lambda a: (a.copy(), np.ones_like(a)),
    np.absolute: lambda a: (np.abs(a), np.sign(a)),
    np.square: lambda a: (a**2, 2.0 * a),
    np.exp: _d_exp,
    np.log: _d_log,
    np.log10: lambda a: (np.log10(a), 1.0 / (a * np.log(10.0))),
    np.sqrt: _d_sqrt,
    np.sin: lambda a: (np.sin(a), np.cos(a)),
    np.cos: lambda a: (np.cos(a), -np.sin(a)),
    np.tanh: _d_tanh,
}


def _extremum(a: object, b: object, *, take_max: bool) -> DualArray:
    pa, ta = (a.primal, a.tangent) if isinstance(a, DualArray) else (a, 0.0)
    pb, tb = (b.primal, b.tangent) if isinstance(b, DualArray) else (b, 0.0)
    pick_a = np.asarray(pa >= pb) if take_max else np.asarray(pa <= pb)
    value = np.where(pick_a, pa, pb)
    tangent = np.where(pick_a, ta, tb)
    return DualArray(value, np.broadcast_to(tangent, value.shape))


# =============================================================================
# Helpers for kinetics authors
# =============================================================================


def is_dual(x: object) -> bool:
    """Return True if x carries tangents."""
    return isinstance(x, DualArray)


def real(x: object) -> Any:
    """Primal part of x (x itself if it is not a DualArray)."""
    return x.primal if isinstance(x, DualArray) else x


def lift(value: ArrayLike, like: object) -> Any:
    """Lift a constant into the representation of ``like``.

    Returns a zero-tangent DualArray broadcast to ``like.shape`` when ``like``
    is a DualArray, and ``value`` unchanged otherwise. Kinetics written with
    ``lift`` evaluate identically on plain arrays and on dual arrays.
    """
    if isinstance(like, DualArray):
        primal = np.broadcast_to(np.asarray(value, dtype=np.float64), like.shape)
        return DualArray(primal.copy())
    return value


def where(condition: ArrayLike, a: object, b: object) -> Any:
    """Element-wise select between a and b (dual-aware ``np.where``).

    The condition is evaluated on primal values only.
    """
    cond = np.asarray(real(condition), dtype=bool)
    if not isinstance(a, DualArray) and not isinstance(b, DualArray):
        return np.where(cond, a, b)
    pa, ta = (a.primal, a.tangent) if isinstance(a, DualArray) else (a, 0.0)
    pb, tb = (b.primal, b.tangent) if isinstance(b, DualArray) else (b, 0.0)
    value = np.where(cond, pa, pb)
    return DualArray(value, np.broadcast_to(np.where(cond, ta, tb), value.shape))


def seed(primal: ArrayLike, direction: ArrayLike) -> DualArray:
    """Create a DualArray at ``primal`` perturbed along ``direction``."""
    p = np.array(primal, dtype=np.float64, copy=True)
    return DualArray(p, np.asarray(direction, dtype=np.float64))
