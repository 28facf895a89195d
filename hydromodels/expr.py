"""
Expression tree for flux declarations.

Fluxes are written as ordinary Python arithmetic over :class:`Expr` leaves
created with :func:`variables` and :func:`parameters`. The resulting tree is
backend-agnostic: :mod:`hydromodels.backends` compiles it to NumPy closures
or to a CasADi function.

Only explicit ``output = f(inputs, states, params)`` forms are represented.
There is no simplification and no equation rearrangement.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, List, Optional, Tuple, Union

from beartype import beartype


class ExprKind(Enum):
    """Kinds of expression nodes."""

    # Leaf nodes
    VARIABLE = auto()  # Input, state or intermediate flux
    PARAMETER = auto()  # Named parameter, possibly per node
    CONSTANT = auto()  # Numeric constant

    # Unary operations
    NEG = auto()
    NOT = auto()

    # Binary arithmetic
    ADD = auto()
    SUB = auto()
    MUL = auto()
    DIV = auto()
    POW = auto()

    # Relational
    LT = auto()
    LE = auto()
    GT = auto()
    GE = auto()

    # Boolean
    AND = auto()
    OR = auto()

    # Conditional
    IF_THEN_ELSE = auto()

    # Math functions
    EXP = auto()
    LOG = auto()
    SQRT = auto()
    ABS = auto()
    SIGN = auto()
    SIN = auto()
    COS = auto()
    TANH = auto()
    MIN = auto()
    MAX = auto()


UNARY_FUNCTIONS = (
    ExprKind.EXP,
    ExprKind.LOG,
    ExprKind.SQRT,
    ExprKind.ABS,
    ExprKind.SIGN,
    ExprKind.SIN,
    ExprKind.COS,
    ExprKind.TANH,
)

_INFIX = {
    ExprKind.ADD: "+",
    ExprKind.SUB: "-",
    ExprKind.MUL: "*",
    ExprKind.DIV: "/",
    ExprKind.POW: "**",
    ExprKind.LT: "<",
    ExprKind.LE: "<=",
    ExprKind.GT: ">",
    ExprKind.GE: ">=",
    ExprKind.AND: "and",
    ExprKind.OR: "or",
}


@dataclass(frozen=True)
class Expr:
    """
    Immutable expression tree node.

    Equality is structural, so two separately built trees for the same
    formula compare equal and hash alike. Relational operators build
    comparison nodes; an ``Expr`` has no truth value.
    """

    kind: ExprKind
    children: Tuple["Expr", ...] = ()
    name: Optional[str] = None  # For VARIABLE, PARAMETER
    value: Optional[float] = None  # For CONSTANT

    def __repr__(self) -> str:
        if self.kind in (ExprKind.VARIABLE, ExprKind.PARAMETER):
            return f"{self.name}"
        elif self.kind == ExprKind.CONSTANT:
            return f"{self.value}"
        elif self.kind == ExprKind.NEG:
            return f"(-{self.children[0]})"
        elif self.kind == ExprKind.NOT:
            return f"(not {self.children[0]})"
        elif self.kind in _INFIX:
            return f"({self.children[0]} {_INFIX[self.kind]} {self.children[1]})"
        elif self.kind in UNARY_FUNCTIONS:
            return f"{self.kind.name.lower()}({self.children[0]})"
        elif self.kind == ExprKind.MIN:
            return f"min({self.children[0]}, {self.children[1]})"
        elif self.kind == ExprKind.MAX:
            return f"max({self.children[0]}, {self.children[1]})"
        elif self.kind == ExprKind.IF_THEN_ELSE:
            return f"(if {self.children[0]} then {self.children[1]} else {self.children[2]})"
        return f"Expr({self.kind})"

    def __bool__(self) -> bool:
        raise TypeError(f"Expression {self!r} has no truth value; use if_else() for conditionals")

    # Arithmetic operators - return new Expr nodes
    def __add__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (self, to_expr(other)))

    def __radd__(self, other: Any) -> "Expr":
        return Expr(ExprKind.ADD, (to_expr(other), self))

    def __sub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (self, to_expr(other)))

    def __rsub__(self, other: Any) -> "Expr":
        return Expr(ExprKind.SUB, (to_expr(other), self))

    def __mul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (self, to_expr(other)))

    def __rmul__(self, other: Any) -> "Expr":
        return Expr(ExprKind.MUL, (to_expr(other), self))

    def __truediv__(self, other: Any) -> "Expr":
        return Expr(ExprKind.DIV, (self, to_expr(other)))

    def __rtruediv__(self, other: Any) -> "Expr":
        return Expr(ExprKind.DIV, (to_expr(other), self))

    def __pow__(self, other: Any) -> "Expr":
        return Expr(ExprKind.POW, (self, to_expr(other)))

    def __rpow__(self, other: Any) -> "Expr":
        return Expr(ExprKind.POW, (to_expr(other), self))

    def __neg__(self) -> "Expr":
        return Expr(ExprKind.NEG, (self,))

    def __pos__(self) -> "Expr":
        return self

    # Relational operators - return Boolean Expr
    def __lt__(self, other: Any) -> "Expr":
        return Expr(ExprKind.LT, (self, to_expr(other)))

    def __le__(self, other: Any) -> "Expr":
        return Expr(ExprKind.LE, (self, to_expr(other)))

    def __gt__(self, other: Any) -> "Expr":
        return Expr(ExprKind.GT, (self, to_expr(other)))

    def __ge__(self, other: Any) -> "Expr":
        return Expr(ExprKind.GE, (self, to_expr(other)))

    # Boolean combinators
    def __and__(self, other: Any) -> "Expr":
        return Expr(ExprKind.AND, (self, to_expr(other)))

    def __or__(self, other: Any) -> "Expr":
        return Expr(ExprKind.OR, (self, to_expr(other)))

    def __invert__(self) -> "Expr":
        return Expr(ExprKind.NOT, (self,))


def to_expr(x: Any) -> Expr:
    """Convert a number or an expression to Expr."""
    if isinstance(x, Expr):
        return x
    if isinstance(x, bool):
        return Expr(ExprKind.CONSTANT, value=1.0 if x else 0.0)
    if isinstance(x, (int, float)):
        return Expr(ExprKind.CONSTANT, value=float(x))
    # numpy scalars
    if hasattr(x, "dtype") and getattr(x, "shape", None) == ():
        return Expr(ExprKind.CONSTANT, value=float(x))
    raise TypeError(f"Cannot convert {type(x).__name__} to expression")


def _make_leaves(kind: ExprKind, names: str) -> Union[Expr, Tuple[Expr, ...]]:
    parts = names.replace(",", " ").split()
    if not parts:
        raise ValueError("At least one name is required")
    leaves = tuple(Expr(kind, name=n) for n in parts)
    return leaves[0] if len(leaves) == 1 else leaves


@beartype
def variables(names: str) -> Union[Expr, Tuple[Expr, ...]]:
    """
    Create variable leaves from a whitespace or comma separated string.

    A single name returns one Expr, several names return a tuple::

        S, precip, pet = variables("S precip pet")
    """
    return _make_leaves(ExprKind.VARIABLE, names)


@beartype
def parameters(names: str) -> Union[Expr, Tuple[Expr, ...]]:
    """Create parameter leaves, see :func:`variables`."""
    return _make_leaves(ExprKind.PARAMETER, names)


def _collect(expr: Expr, kind: ExprKind) -> List[str]:
    found: List[str] = []
    stack = [expr]
    while stack:
        node = stack.pop()
        if node.kind == kind and node.name not in found:
            found.append(node.name)
        stack.extend(reversed(node.children))
    return found


@beartype
def find_variables(expr: Expr) -> List[str]:
    """Variable names referenced in expr, in first-occurrence order."""
    return _collect(expr, ExprKind.VARIABLE)


@beartype
def find_parameters(expr: Expr) -> List[str]:
    """Parameter names referenced in expr, in first-occurrence order."""
    return _collect(expr, ExprKind.PARAMETER)


# Math functions


def exp(x: Any) -> Expr:
    return Expr(ExprKind.EXP, (to_expr(x),))


def log(x: Any) -> Expr:
    return Expr(ExprKind.LOG, (to_expr(x),))


def sqrt(x: Any) -> Expr:
    return Expr(ExprKind.SQRT, (to_expr(x),))


def abs_(x: Any) -> Expr:
    return Expr(ExprKind.ABS, (to_expr(x),))


def sign(x: Any) -> Expr:
    return Expr(ExprKind.SIGN, (to_expr(x),))


def sin(x: Any) -> Expr:
    return Expr(ExprKind.SIN, (to_expr(x),))


def cos(x: Any) -> Expr:
    return Expr(ExprKind.COS, (to_expr(x),))


def tanh(x: Any) -> Expr:
    return Expr(ExprKind.TANH, (to_expr(x),))


def min_(a: Any, b: Any) -> Expr:
    """Elementwise minimum of two expressions."""
    return Expr(ExprKind.MIN, (to_expr(a), to_expr(b)))


def max_(a: Any, b: Any) -> Expr:
    """Elementwise maximum of two expressions."""
    return Expr(ExprKind.MAX, (to_expr(a), to_expr(b)))


def clamp(x: Any, lo: Any, hi: Any) -> Expr:
    """Limit x to [lo, hi]; the upper bound wins when lo > hi."""
    return min_(max_(x, lo), hi)


def if_else(cond: Expr, then: Any, otherwise: Any) -> Expr:
    """
    Conditional expression.

    Parameters
    ----------
    cond : Expr
        Boolean expression, e.g. ``T < Tmin``.
    then, otherwise : Expr or float
        Values selected elementwise where cond is true/false.
    """
    return Expr(ExprKind.IF_THEN_ELSE, (cond, to_expr(then), to_expr(otherwise)))


def step_func(x: Any) -> Expr:
    """Smooth Heaviside step, ``(tanh(5 x) + 1) / 2``."""
    return (tanh(5.0 * to_expr(x)) + 1.0) * 0.5


def smooth_logistic(S: Any, Smax: Any, r: float = 0.01, e: float = 5.0) -> Expr:
    """
    Smoothed threshold used to switch saturation-excess fluxes on.

    Close to 1 while S is below ``r * e * Smax`` and drops to 0 above it.
    The transition width scales with ``r * Smax``.
    """
    S = to_expr(S)
    Smax = to_expr(Smax)
    return 1.0 / (1.0 + exp((S - r * e * Smax) / (r * Smax)))
