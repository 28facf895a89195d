"""NumPy backend.

Expression trees are compiled once into nested closures over numpy ufuncs,
so evaluation does no tree walking. Every operation is elementwise, the
same compiled function serves a single time step of shape (n_nodes,) and a
whole trajectory of shape (n_nodes, n_time).

Floating point warnings are silenced during evaluation: NaN and Inf are
valid results of user expressions.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Sequence

import numpy as np

from hydromodels.backends.base import FluxFunction
from hydromodels.errors import ShapeError
from hydromodels.expr import Expr, ExprKind
from hydromodels.flux import NeuralFlux

Env = Dict[str, Any]
Compiled = Callable[[Env, Mapping[str, Any]], Any]


_UNARY = {
    ExprKind.NEG: np.negative,
    ExprKind.NOT: np.logical_not,
    ExprKind.EXP: np.exp,
    ExprKind.LOG: np.log,
    ExprKind.SQRT: np.sqrt,
    ExprKind.ABS: np.abs,
    ExprKind.SIGN: np.sign,
    ExprKind.SIN: np.sin,
    ExprKind.COS: np.cos,
    ExprKind.TANH: np.tanh,
}

_BINARY = {
    ExprKind.ADD: np.add,
    ExprKind.SUB: np.subtract,
    ExprKind.MUL: np.multiply,
    ExprKind.DIV: np.divide,
    ExprKind.POW: np.power,
    ExprKind.LT: np.less,
    ExprKind.LE: np.less_equal,
    ExprKind.GT: np.greater,
    ExprKind.GE: np.greater_equal,
    ExprKind.AND: np.logical_and,
    ExprKind.OR: np.logical_or,
    ExprKind.MIN: np.minimum,
    ExprKind.MAX: np.maximum,
}


def compile_expr(expr: Expr) -> Compiled:
    """Compile an expression into ``f(env, params)``."""
    kind = expr.kind
    if kind == ExprKind.VARIABLE:
        name = expr.name
        return lambda env, p: env[name]
    if kind == ExprKind.PARAMETER:
        name = expr.name
        return lambda env, p: p[name]
    if kind == ExprKind.CONSTANT:
        value = expr.value
        return lambda env, p: value
    if kind in _UNARY:
        op = _UNARY[kind]
        a = compile_expr(expr.children[0])
        return lambda env, p: op(a(env, p))
    if kind in _BINARY:
        op = _BINARY[kind]
        a = compile_expr(expr.children[0])
        b = compile_expr(expr.children[1])
        return lambda env, p: op(a(env, p), b(env, p))
    if kind == ExprKind.IF_THEN_ELSE:
        c, a, b = (compile_expr(ch) for ch in expr.children)
        return lambda env, p: np.where(c(env, p), a(env, p), b(env, p))
    raise NotImplementedError(f"Unsupported expression kind: {kind}")


class NumpyFluxFunction(FluxFunction):
    """Declarations compiled to numpy closures."""

    def __init__(self, fluxes: Sequence[Any], input_names: Sequence[str], output_names: Sequence[str]) -> None:
        super().__init__(fluxes, input_names, output_names)
        self._steps = [self._compile_flux(f) for f in self.fluxes]

    def _compile_flux(self, f: Any) -> Callable[[Env, Mapping[str, Any], Mapping[str, Any], tuple], None]:
        if isinstance(f, NeuralFlux):
            return self._neural_step(f)
        if f.func is not None:
            func, inputs, params, outputs = f.func, tuple(f.inputs), tuple(f.params), tuple(f.outputs)

            def call_func(env: Env, p: Mapping[str, Any], nns: Mapping[str, Any], shape: tuple) -> None:
                values = func(*[env[i] for i in inputs], *[p[k] for k in params])
                if len(outputs) == 1 and not isinstance(values, (tuple, list)):
                    values = (values,)
                if len(values) != len(outputs):
                    raise ShapeError(f"Flux '{f.name}' returned {len(values)} values for outputs {list(outputs)}")
                for out, v in zip(outputs, values):
                    env[out] = v

            return call_func

        compiled = [(out, compile_expr(e)) for out, e in zip(f.outputs, f.exprs)]

        def eval_exprs(env: Env, p: Mapping[str, Any], nns: Mapping[str, Any], shape: tuple) -> None:
            for out, fn in compiled:
                env[out] = fn(env, p)

        return eval_exprs

    @staticmethod
    def _neural_step(f: NeuralFlux) -> Callable[[Env, Mapping[str, Any], Mapping[str, Any], tuple], None]:
        inputs, outputs = tuple(f.inputs), tuple(f.outputs)

        def call_nn(env: Env, p: Mapping[str, Any], nns: Mapping[str, Any], shape: tuple) -> None:
            x = np.stack([np.broadcast_to(env[i], shape) for i in inputs]).reshape(len(inputs), -1)
            theta = np.asarray(nns[f.nn_name])
            if f.n_params is not None and theta.size != f.n_params:
                raise ShapeError(f"Neural network '{f.nn_name}' expects {f.n_params} weights, got {theta.size}")
            y = np.asarray(f.func(x, theta), dtype=float)
            if y.ndim != 2 or y.shape[0] != len(outputs):
                raise ShapeError(
                    f"NeuralFlux '{f.name}' must return shape ({len(outputs)}, {x.shape[1]}), got {y.shape}"
                )
            for k, out in enumerate(outputs):
                env[out] = y[k].reshape(shape)

        return call_nn

    def _evaluate(self, x: np.ndarray, params: Mapping[str, Any], nns: Mapping[str, Any]) -> np.ndarray:
        shape = x.shape[1:]
        env: Env = dict(zip(self.input_names, x))
        p = {k: np.asarray(params[k], dtype=float) for k in self.param_names}
        with np.errstate(all="ignore"):
            for step in self._steps:
                step(env, p, nns, shape)
        if not self.output_names:
            return np.empty((0,) + shape)
        return np.stack([np.broadcast_to(np.asarray(env[o], dtype=float), shape) for o in self.output_names])
