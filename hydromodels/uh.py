"""
Unit hydrograph routing.

A unit hydrograph spreads each input pulse over the following time steps.
Its weights are the increments of an S-curve ``S(t, lag)`` rising from 0 at
t = 0 to 1 at the end of the hydrograph, normalized to sum to one, so
routing conserves volume.

Two evaluation methods give the same result:
- "sparse": direct convolution of the input with the weights
- "discrete": a buffer of pending outflow advanced by the stepper
"""

from __future__ import annotations

import math
from enum import Enum, auto
from typing import Any, Callable, Optional

import numpy as np

from hydromodels.component import Component, RunContext
from hydromodels.config import SolverType
from hydromodels.errors import ConfigurationError
from hydromodels.flux import fingerprint
from hydromodels.integrators import make_stepper
from hydromodels.interpolation import make_interpolation


class UHKind(Enum):
    """Shape of the unit hydrograph S-curve."""

    UH_1_HALF = auto()  # (t/lag)^2.5 up to lag
    UH_2_FULL = auto()  # Symmetric rise and fall over 2 * lag
    CUSTOM = auto()  # User supplied S(t, lag)


class UHFunction:
    """
    S-curve of a unit hydrograph.

    Parameters
    ----------
    kind : UHKind
        Built-in shape, or CUSTOM together with ``func``.
    func : callable, optional
        ``func(t, lag) -> float`` cumulative fraction for CUSTOM curves.
    max_lag : float, optional
        For CUSTOM curves, the hydrograph length as a multiple of the lag.
    """

    def __init__(
        self,
        kind: UHKind = UHKind.UH_1_HALF,
        func: Optional[Callable[[float, float], float]] = None,
        max_lag: Optional[float] = None,
    ) -> None:
        if (kind == UHKind.CUSTOM) != (func is not None):
            raise ConfigurationError("A custom unit hydrograph needs func, built-in kinds take none")
        if kind == UHKind.CUSTOM and max_lag is None:
            raise ConfigurationError("A custom unit hydrograph needs max_lag")
        self.kind = kind
        self.func = func
        self.max_lag = max_lag

    def __repr__(self) -> str:
        return f"UHFunction({self.kind.name}, max_lag={self.max_lag})"

    def __call__(self, t: float, lag: float) -> float:
        if self.kind == UHKind.UH_1_HALF:
            return 1.0 if t > lag else (t / lag) ** 2.5
        if self.kind == UHKind.UH_2_FULL:
            if t > 2 * lag:
                return 1.0
            if t > lag:
                return 1.0 - 0.5 * abs(2.0 - t / lag) ** 2.5
            return 0.5 * abs(t / lag) ** 2.5
        return float(self.func(t, lag))

    def tmax(self, lag: float) -> int:
        """Number of time steps the hydrograph spans."""
        if self.kind == UHKind.UH_1_HALF:
            return math.ceil(lag)
        if self.kind == UHKind.UH_2_FULL:
            return 2 * math.ceil(lag)
        return math.ceil(self.max_lag * lag)

    def weights(self, lag: Any) -> np.ndarray:
        """Normalized weights; a non-positive lag passes input through unchanged."""
        lag = float(lag)
        if not lag > 0.0:
            return np.ones(1)
        n = max(self.tmax(lag), 1)
        s = np.array([self(float(t), lag) for t in range(n + 1)])
        w = np.diff(s)
        total = w.sum()
        if not total > 0.0:
            return np.ones(1)
        return w / total


class UnitHydrograph(Component):
    """
    Route one variable through a unit hydrograph with a per-node lag.

    Parameters
    ----------
    input, output : str
        Routed variable and result name.
    lag : str
        Name of the lag parameter, expanded over nodes like any parameter.
    uhfunc : UHFunction
        S-curve of the hydrograph.
    method : {"sparse", "discrete"}
        Convolution, or buffer advanced by the explicit/discrete stepper.
    """

    def __init__(
        self,
        input: str,
        output: str,
        lag: str,
        uhfunc: Optional[UHFunction] = None,
        method: str = "sparse",
        name: Optional[str] = None,
    ) -> None:
        if method not in ("sparse", "discrete"):
            raise ConfigurationError(f"Unknown unit hydrograph method '{method}', use 'sparse' or 'discrete'")
        self.uhfunc = uhfunc if uhfunc is not None else UHFunction()
        self.method = method
        self.inputs = (input,)
        self.outputs = (output,)
        self.states = ()
        self.params = (lag,)
        self.nns = ()
        self.name = name or f"uh_{fingerprint(input, output, lag, repr(self.uhfunc), method)}"
        if input == output:
            raise ConfigurationError(f"UnitHydrograph '{self.name}' reads and writes '{input}'")

    def weight_matrix(self, lags: Any) -> np.ndarray:
        """Weights of every node, zero padded to shape (n_nodes, max_length)."""
        rows = [self.uhfunc.weights(lag) for lag in np.atleast_1d(lags)]
        width = max(len(r) for r in rows)
        w = np.zeros((len(rows), width))
        for i, r in enumerate(rows):
            w[i, : len(r)] = r
        return w

    def _run(self, ctx: RunContext) -> np.ndarray:
        q = ctx.x[0]  # (N, T)
        w = self.weight_matrix(ctx.params[self.params[0]])
        if self.method == "sparse":
            out = self._convolve(q, w)
        else:
            out = self._buffered(q, w, ctx)
        return out[None]

    @staticmethod
    def _convolve(q: np.ndarray, w: np.ndarray) -> np.ndarray:
        n_time = q.shape[1]
        out = np.zeros_like(q)
        for j in range(min(w.shape[1], n_time)):
            out[:, j:] += w[:, j : j + 1] * q[:, : n_time - j]
        return out

    def _buffered(self, q: np.ndarray, w: np.ndarray, ctx: RunContext) -> np.ndarray:
        if ctx.config.solver == SolverType.ODE:
            raise ConfigurationError(f"UnitHydrograph '{self.name}' needs the explicit or discrete solver")
        if w.shape[1] == 1:
            return w[:, :1] * q
        # buffer[j] holds outflow already scheduled j + 1 steps ahead
        tail = w[:, 1:].T  # (L - 1, N)
        itp = make_interpolation(ctx.config.interp, q, ctx.ts)

        def du(u: np.ndarray, p: Any, t: float) -> np.ndarray:
            shifted = np.concatenate([u[1:], np.zeros((1, u.shape[1]))], axis=0)
            return shifted - u + tail * itp(t)

        x0 = np.zeros(tail.shape)
        traj = make_stepper(ctx.config).advance(du, None, x0, ctx.ts)
        return w[:, :1] * q + traj[0]
