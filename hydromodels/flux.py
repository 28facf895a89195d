"""
Flux declarations.

A declaration names the variables it produces and reads, and carries either
expression trees or a plain Python function computing them:

- :class:`Flux` - algebraic outputs from inputs, states and parameters
- :class:`StateFlux` - rate of change of one state variable
- :class:`NeuralFlux` - opaque function with a single shared weight vector

Declarations are immutable. The builders :func:`flux` and
:func:`state_flux` infer inputs and parameters from the expressions, so the
caller only states what is assigned.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from beartype import beartype

from hydromodels.errors import ConfigurationError
from hydromodels.expr import Expr, ExprKind, find_parameters, find_variables, to_expr


def fingerprint(*parts: Any, length: int = 10) -> str:
    """Short structural hash of the repr of parts."""
    return hashlib.sha1(repr(parts).encode()).hexdigest()[:length]


def func_identity(func: Optional[Callable[..., Any]]) -> Optional[int]:
    """Key of a declaration function by object identity, since reprs of distinct callables can match."""
    return None if func is None else id(func)


def rate_name(state: str) -> str:
    """Name under which the rate of a state is produced by the compiler."""
    return f"d({state})"


def _names(items: Sequence[Union[str, Expr]]) -> Tuple[str, ...]:
    out = []
    for item in items:
        if isinstance(item, Expr):
            if item.kind not in (ExprKind.VARIABLE, ExprKind.PARAMETER):
                raise TypeError(f"Expected a variable or parameter, got {item!r}")
            out.append(item.name)
        else:
            out.append(item)
    return tuple(out)


def _unique(names: Sequence[str], what: str, owner: str) -> None:
    seen = set()
    for n in names:
        if n in seen:
            raise ConfigurationError(f"{owner}: {what} '{n}' is declared more than once")
        seen.add(n)


@dataclass(frozen=True)
class Flux:
    """
    Algebraic flux declaration.

    Parameters
    ----------
    outputs : sequence of str
        Names assigned by this flux.
    inputs : sequence of str
        Variables read (forcings, states or outputs of other fluxes).
    params : sequence of str
        Parameters read.
    exprs : sequence of Expr
        One expression per output. Expression ``i`` may also read outputs
        ``0..i-1`` of the same flux.
    func : callable, optional
        Alternative to ``exprs``: ``func(*inputs, *params)`` returning one
        array per output (a single array when there is one output).
    name : str, optional
        Defaults to a structural hash.
    """

    outputs: Sequence[Union[str, Expr]]
    inputs: Sequence[Union[str, Expr]] = ()
    params: Sequence[Union[str, Expr]] = ()
    exprs: Sequence[Expr] = ()
    func: Optional[Callable[..., Any]] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        for field in ("outputs", "inputs", "params"):
            object.__setattr__(self, field, _names(getattr(self, field)))
        object.__setattr__(self, "exprs", tuple(to_expr(e) for e in self.exprs))
        if self.name is None:
            key = fingerprint(self.outputs, self.inputs, self.params, self.exprs, func_identity(self.func))
            object.__setattr__(self, "name", f"flux_{key}")
        self._validate()

    def _validate(self) -> None:
        owner = f"Flux '{self.name}'"
        if not self.outputs:
            raise ConfigurationError(f"{owner} declares no outputs")
        _unique(self.outputs, "output", owner)
        _unique(self.inputs, "input", owner)
        _unique(self.params, "parameter", owner)
        overlap = set(self.inputs) & set(self.outputs)
        if overlap:
            raise ConfigurationError(f"{owner}: variables {sorted(overlap)} are both input and output")
        if (self.func is None) == (len(self.exprs) == 0):
            raise ConfigurationError(f"{owner}: give exactly one of exprs or func")
        if self.func is not None:
            return
        if len(self.exprs) != len(self.outputs):
            raise ConfigurationError(
                f"{owner}: {len(self.exprs)} expressions for {len(self.outputs)} outputs {list(self.outputs)}"
            )
        available = set(self.inputs)
        for out, expr in zip(self.outputs, self.exprs):
            for v in find_variables(expr):
                if v not in available:
                    raise ConfigurationError(f"{owner}: expression for '{out}' reads undeclared variable '{v}'")
            for p in find_parameters(expr):
                if p not in self.params:
                    raise ConfigurationError(f"{owner}: expression for '{out}' reads undeclared parameter '{p}'")
            available.add(out)

    @property
    def nns(self) -> Tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class StateFlux:
    """
    Rate of change of a single state variable.

    With an explicit stepper the rate is the increment per time step,
    with the ODE solver it is the time derivative.
    """

    state: Union[str, Expr]
    expr: Expr
    inputs: Sequence[Union[str, Expr]] = ()
    params: Sequence[Union[str, Expr]] = ()
    name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "state", _names([self.state])[0])
        object.__setattr__(self, "inputs", _names(self.inputs))
        object.__setattr__(self, "params", _names(self.params))
        object.__setattr__(self, "expr", to_expr(self.expr))
        if self.name is None:
            object.__setattr__(self, "name", f"state_{self.state}_{fingerprint(self.expr, self.inputs, self.params)}")
        owner = f"StateFlux '{self.name}'"
        _unique(self.inputs, "input", owner)
        _unique(self.params, "parameter", owner)
        for v in find_variables(self.expr):
            if v != self.state and v not in self.inputs:
                raise ConfigurationError(f"{owner}: rate of '{self.state}' reads undeclared variable '{v}'")
        for p in find_parameters(self.expr):
            if p not in self.params:
                raise ConfigurationError(f"{owner}: rate of '{self.state}' reads undeclared parameter '{p}'")

    @property
    def outputs(self) -> Tuple[str, ...]:
        return (rate_name(self.state),)

    @property
    def exprs(self) -> Tuple[Expr, ...]:
        return (self.expr,)

    @property
    def func(self) -> None:
        return None

    @property
    def reads(self) -> Tuple[str, ...]:
        """Inputs plus the state itself when the rate depends on it."""
        if self.state in self.inputs or self.state not in find_variables(self.expr):
            return tuple(self.inputs)
        return tuple(self.inputs) + (self.state,)

    @property
    def nns(self) -> Tuple[str, ...]:
        return ()


@dataclass(frozen=True)
class NeuralFlux:
    """
    Opaque learned flux.

    ``func(x, theta)`` maps stacked inputs ``x`` of shape (n_inputs, M) and
    the flat weight vector ``theta`` to outputs of shape (n_outputs, M).
    The weights are looked up under ``nn_name`` and are shared by every node,
    they are never expanded per node.
    """

    inputs: Sequence[Union[str, Expr]]
    outputs: Sequence[Union[str, Expr]]
    nn_name: str
    func: Callable[..., Any]
    n_params: Optional[int] = None
    name: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "inputs", _names(self.inputs))
        object.__setattr__(self, "outputs", _names(self.outputs))
        if self.name is None:
            key = fingerprint(self.inputs, self.outputs, func_identity(self.func))
            object.__setattr__(self, "name", f"nn_{self.nn_name}_{key}")
        owner = f"NeuralFlux '{self.name}'"
        if not self.outputs:
            raise ConfigurationError(f"{owner} declares no outputs")
        _unique(self.inputs, "input", owner)
        _unique(self.outputs, "output", owner)
        overlap = set(self.inputs) & set(self.outputs)
        if overlap:
            raise ConfigurationError(f"{owner}: variables {sorted(overlap)} are both input and output")

    @property
    def params(self) -> Tuple[str, ...]:
        return ()

    @property
    def exprs(self) -> Tuple[Expr, ...]:
        return ()

    @property
    def nns(self) -> Tuple[str, ...]:
        return (self.nn_name,)


Declaration = Union[Flux, StateFlux, NeuralFlux]


def _key_name(key: Union[str, Expr]) -> str:
    return _names([key])[0]


@beartype
def flux(assignments: Mapping[Any, Any], name: Optional[str] = None) -> Flux:
    """
    Build a :class:`Flux` from ``{output: expression}`` pairs.

    Inputs are the referenced variables that are not assigned here, params
    are the referenced parameters::

        S, pet = variables("S pet")
        evap = variables("evap")
        f = flux({evap: clamp(pet, 0.0, S)})
    """
    outputs = tuple(_key_name(k) for k in assignments)
    exprs = tuple(to_expr(v) for v in assignments.values())
    inputs: Dict[str, None] = {}
    params: Dict[str, None] = {}
    for e in exprs:
        for v in find_variables(e):
            if v not in outputs:
                inputs[v] = None
        for p in find_parameters(e):
            params[p] = None
    return Flux(outputs=outputs, inputs=tuple(inputs), params=tuple(params), exprs=exprs, name=name)


@beartype
def state_flux(
    state: Union[str, Expr],
    expr: Any = None,
    inflows: Sequence[Union[str, Expr]] = (),
    outflows: Sequence[Union[str, Expr]] = (),
    name: Optional[str] = None,
) -> StateFlux:
    """
    Build a :class:`StateFlux`.

    Either give the rate expression directly, or lists of inflow and outflow
    variables whose difference of sums is the rate.
    """
    state_name = _key_name(state)
    if expr is None:
        if not inflows and not outflows:
            raise ConfigurationError(f"State '{state_name}' needs a rate expression or inflows/outflows")
        terms = [Expr(ExprKind.VARIABLE, name=n) for n in _names(inflows)]
        rate = terms[0] if terms else to_expr(0.0)
        for t in terms[1:]:
            rate = rate + t
        for n in _names(outflows):
            rate = rate - Expr(ExprKind.VARIABLE, name=n)
    else:
        if inflows or outflows:
            raise ConfigurationError(f"State '{state_name}': give either expr or inflows/outflows, not both")
        rate = to_expr(expr)
    inputs = tuple(v for v in find_variables(rate) if v != state_name)
    params = tuple(find_parameters(rate))
    return StateFlux(state=state_name, expr=rate, inputs=inputs, params=params, name=name)
