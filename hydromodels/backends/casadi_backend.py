"""CasADi backend.

Declarations are compiled into a single SX ``casadi.Function`` mapping one
column of inputs and parameters to one column of outputs. Evaluation maps
that function over every node and time column at once. Because the graph
is symbolic, the sensitivity of the outputs with respect to the parameters
is available from :meth:`CasadiFluxFunction.jacobian_params`.

Only expression declarations can be compiled; function-valued and neural
declarations need the NumPy backend.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Sequence

import casadi as ca
import numpy as np

from hydromodels.backends.base import FluxFunction
from hydromodels.errors import ConfigurationError
from hydromodels.expr import Expr, ExprKind


def _make_expr_handlers() -> Dict[ExprKind, Callable[[Callable[[Expr], Any], Expr], Any]]:
    """Create dispatch table for expression conversion."""
    unary_math = {
        ExprKind.NEG: lambda c, e: -c(e.children[0]),
        ExprKind.NOT: lambda c, e: ca.logic_not(c(e.children[0])),
        ExprKind.EXP: lambda c, e: ca.exp(c(e.children[0])),
        ExprKind.LOG: lambda c, e: ca.log(c(e.children[0])),
        ExprKind.SQRT: lambda c, e: ca.sqrt(c(e.children[0])),
        ExprKind.ABS: lambda c, e: ca.fabs(c(e.children[0])),
        ExprKind.SIGN: lambda c, e: ca.sign(c(e.children[0])),
        ExprKind.SIN: lambda c, e: ca.sin(c(e.children[0])),
        ExprKind.COS: lambda c, e: ca.cos(c(e.children[0])),
        ExprKind.TANH: lambda c, e: ca.tanh(c(e.children[0])),
    }

    binary_math = {
        ExprKind.ADD: lambda c, e: c(e.children[0]) + c(e.children[1]),
        ExprKind.SUB: lambda c, e: c(e.children[0]) - c(e.children[1]),
        ExprKind.MUL: lambda c, e: c(e.children[0]) * c(e.children[1]),
        ExprKind.DIV: lambda c, e: c(e.children[0]) / c(e.children[1]),
        ExprKind.POW: lambda c, e: c(e.children[0]) ** c(e.children[1]),
        ExprKind.MIN: lambda c, e: ca.fmin(c(e.children[0]), c(e.children[1])),
        ExprKind.MAX: lambda c, e: ca.fmax(c(e.children[0]), c(e.children[1])),
        ExprKind.AND: lambda c, e: ca.logic_and(c(e.children[0]), c(e.children[1])),
        ExprKind.OR: lambda c, e: ca.logic_or(c(e.children[0]), c(e.children[1])),
    }

    relational = {
        ExprKind.LT: lambda c, e: c(e.children[0]) < c(e.children[1]),
        ExprKind.LE: lambda c, e: c(e.children[0]) <= c(e.children[1]),
        ExprKind.GT: lambda c, e: c(e.children[0]) > c(e.children[1]),
        ExprKind.GE: lambda c, e: c(e.children[0]) >= c(e.children[1]),
    }

    ternary = {
        ExprKind.IF_THEN_ELSE: lambda c, e: ca.if_else(c(e.children[0]), c(e.children[1]), c(e.children[2])),
    }

    return {**unary_math, **binary_math, **relational, **ternary}


# Global dispatch table
_EXPR_HANDLERS = _make_expr_handlers()


class CasadiFluxFunction(FluxFunction):
    """Declarations compiled to one CasADi SX function of (x, p)."""

    def __init__(self, fluxes: Sequence[Any], input_names: Sequence[str], output_names: Sequence[str]) -> None:
        super().__init__(fluxes, input_names, output_names)
        for f in self.fluxes:
            if f.func is not None or f.nns:
                raise ConfigurationError(
                    f"Flux '{f.name}' is not an expression declaration and cannot use the CasADi backend"
                )

        self._x = ca.SX.sym("x", len(self.input_names))
        self._p = ca.SX.sym("p", len(self.param_names))
        self._env: Dict[str, Any] = {name: self._x[i] for i, name in enumerate(self.input_names)}
        self._params = {name: self._p[k] for k, name in enumerate(self.param_names)}

        for f in self.fluxes:
            for out, e in zip(f.outputs, f.exprs):
                self._env[out] = self._convert(e)

        y = ca.vertcat(*[ca.SX(self._env[o]) for o in self.output_names]) if self.output_names else ca.SX(0, 1)
        self.function = ca.Function("fluxes", [self._x, self._p], [y], ["x", "p"], ["y"])
        self._jac = ca.Function("fluxes_jac_p", [self._x, self._p], [ca.jacobian(y, self._p)])
        self._mapped: Dict[int, ca.Function] = {}

    def _convert(self, expr: Expr) -> Any:
        if expr.kind == ExprKind.VARIABLE:
            return self._env[expr.name]
        if expr.kind == ExprKind.PARAMETER:
            return self._params[expr.name]
        if expr.kind == ExprKind.CONSTANT:
            return ca.SX(expr.value)
        handler = _EXPR_HANDLERS.get(expr.kind)
        if handler is None:
            raise NotImplementedError(f"Unsupported expression kind: {expr.kind}")
        return handler(self._convert, expr)

    def _param_matrix(self, params: Mapping[str, Any], shape: tuple) -> np.ndarray:
        m = int(np.prod(shape))
        if not self.param_names:
            return np.zeros((0, m))
        return np.stack(
            [np.broadcast_to(np.asarray(params[k], dtype=float), shape).reshape(m) for k in self.param_names]
        )

    def _evaluate(self, x: np.ndarray, params: Mapping[str, Any], nns: Mapping[str, Any]) -> np.ndarray:
        shape = x.shape[1:]
        m = int(np.prod(shape))
        n_out = len(self.output_names)
        if m == 0 or n_out == 0:
            return np.empty((n_out,) + shape)
        if m not in self._mapped:
            self._mapped[m] = self.function.map(m)
        y = self._mapped[m](x.reshape(len(self.input_names), m), self._param_matrix(params, shape))
        return y.full().reshape((n_out,) + shape)

    def jacobian_params(self, x: Any, params: Mapping[str, Any]) -> np.ndarray:
        """
        Sensitivity of the outputs to the parameters at one column.

        Args:
            x: Input column of shape (n_inputs,)
            params: Scalar parameter values

        Returns:
            Matrix of shape (n_outputs, n_params), columns in ``param_names`` order
        """
        for p in self.param_names:
            if p not in params:
                raise ConfigurationError(f"Missing value for parameter '{p}'")
        x = np.asarray(x, dtype=float).reshape(len(self.input_names))
        p = np.array([float(params[k]) for k in self.param_names])
        return self._jac(x, p).full().reshape(len(self.output_names), len(self.param_names))
