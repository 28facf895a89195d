"""
Steppers advancing state variables over a sequence of time points.

Every stepper implements ``advance(du, params, x0, ts)`` where
``du(u, params, t)`` returns the rate of the state ``u`` at time ``t``:
- ExplicitSolver: ``u[i+1] = u[i] + du(u[i], params, ts[i])``
- DiscreteSolver: the same recurrence through a generic discrete map
- ODESolver: adaptive integration of ``du/dt`` with scipy, sampled at ts

The returned trajectory has shape ``x0.shape + (len(ts),)`` and holds the
initial state in its first column, whatever the stepper. An integrator that
fails to converge returns a NaN-filled trajectory and emits
SolverFailureWarning. Exceptions raised by the rate function propagate.
"""

from __future__ import annotations

import logging
import warnings
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

import numpy as np
from scipy.integrate import solve_ivp

from hydromodels.config import RunConfig, SolverType
from hydromodels.errors import ShapeError, SolverFailureWarning

logger = logging.getLogger(__name__)

RateFunction = Callable[[np.ndarray, Any, float], np.ndarray]


def _failed(shape: tuple, n_time: int, reason: str) -> np.ndarray:
    warnings.warn(f"Solver failed: {reason}; returning NaN trajectory", SolverFailureWarning, stacklevel=3)
    return np.full(shape + (n_time,), np.nan)


class Stepper(ABC):
    """Advance a state array over time points."""

    @abstractmethod
    def advance(self, du: RateFunction, params: Any, x0: Any, ts: Any) -> np.ndarray:
        """
        Args:
            du: Rate function ``du(u, params, t)`` returning an array shaped like u
            params: Passed through to du
            x0: Initial state, any shape
            ts: Increasing time points

        Returns:
            Trajectory of shape ``x0.shape + (len(ts),)``
        """
        pass


def _check_rate(rate: Any, shape: tuple) -> np.ndarray:
    rate = np.asarray(rate, dtype=float)
    if rate.shape != shape:
        raise ShapeError(f"Rate function returned shape {rate.shape}, expected state shape {shape}")
    return rate


class ExplicitSolver(Stepper):
    """
    Fixed-step explicit update on the declared time points.

    Parameters
    ----------
    min_value : float, optional
        States are clipped from below to this value after each step.
    """

    def __init__(self, min_value: Optional[float] = None) -> None:
        self.min_value = min_value

    def advance(self, du: RateFunction, params: Any, x0: Any, ts: Any) -> np.ndarray:
        x0 = np.asarray(x0, dtype=float)
        ts = np.asarray(ts, dtype=float)
        traj = np.empty(x0.shape + (ts.size,))
        if ts.size == 0:
            return traj
        traj[..., 0] = x0
        with np.errstate(all="ignore"):
            for i in range(ts.size - 1):
                u = traj[..., i] + _check_rate(du(traj[..., i], params, ts[i]), x0.shape)
                if self.min_value is not None:
                    u = np.maximum(u, self.min_value)
                traj[..., i + 1] = u
        return traj


def discrete_solve(step: Callable[[np.ndarray, float], np.ndarray], x0: np.ndarray, ts: np.ndarray) -> np.ndarray:
    """
    Iterate a discrete map ``u[i+1] = step(u[i], ts[i])``.

    Exceptions raised by the map propagate.
    """
    states = [x0]
    for t in ts[:-1]:
        states.append(np.asarray(step(states[-1], t), dtype=float))
    return np.stack(states, axis=-1)


class DiscreteSolver(Stepper):
    """
    Explicit recurrence delegated to :func:`discrete_solve`.

    Parameters
    ----------
    min_value : float, optional
        States are clipped from below to this value after each step.
    """

    def __init__(self, min_value: Optional[float] = None) -> None:
        self.min_value = min_value

    def advance(self, du: RateFunction, params: Any, x0: Any, ts: Any) -> np.ndarray:
        x0 = np.asarray(x0, dtype=float)
        ts = np.asarray(ts, dtype=float)
        if ts.size == 0:
            return np.empty(x0.shape + (0,))

        def step(u: np.ndarray, t: float) -> np.ndarray:
            u = u + _check_rate(du(u, params, t), x0.shape)
            return u if self.min_value is None else np.maximum(u, self.min_value)

        with np.errstate(all="ignore"):
            return discrete_solve(step, x0, ts)


class ODESolver(Stepper):
    """
    Adaptive integration with :func:`scipy.integrate.solve_ivp`.

    The rate is treated as a time derivative. Inputs are taken from the
    caller's interpolation at the times the integrator requests.

    Parameters
    ----------
    method : str
        solve_ivp method, e.g. "RK45", "LSODA", "BDF"
    rtol, atol : float
        Relative and absolute tolerances
    max_step : float
        Largest allowed step
    """

    def __init__(self, method: str = "RK45", rtol: float = 1e-3, atol: float = 1e-3, max_step: float = np.inf) -> None:
        self.method = method
        self.rtol = rtol
        self.atol = atol
        self.max_step = max_step

    def advance(self, du: RateFunction, params: Any, x0: Any, ts: Any) -> np.ndarray:
        x0 = np.asarray(x0, dtype=float)
        ts = np.asarray(ts, dtype=float)
        shape = x0.shape
        if ts.size < 2:
            return x0.reshape(shape + (1,))[..., : ts.size].copy()

        def rhs(t: float, y: np.ndarray) -> np.ndarray:
            return _check_rate(du(y.reshape(shape), params, t), shape).ravel()

        logger.debug("solve_ivp method=%s rtol=%g atol=%g over %d points", self.method, self.rtol, self.atol, ts.size)
        with np.errstate(all="ignore"):
            sol = solve_ivp(
                rhs,
                (ts[0], ts[-1]),
                x0.ravel(),
                method=self.method,
                t_eval=ts,
                rtol=self.rtol,
                atol=self.atol,
                max_step=self.max_step,
            )
        if sol.status != 0 or sol.y.shape[1] != ts.size:
            return _failed(shape, ts.size, sol.message)
        return sol.y.reshape(shape + (ts.size,))


def make_stepper(config: RunConfig) -> Stepper:
    """Stepper selected by ``config.solver``."""
    if config.solver == SolverType.ODE:
        return ODESolver(method=config.method, rtol=config.rtol, atol=config.atol, max_step=config.max_step)
    if config.solver == SolverType.DISCRETE:
        return DiscreteSolver(min_value=config.min_value)
    return ExplicitSolver(min_value=config.min_value)
