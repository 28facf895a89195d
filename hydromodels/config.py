"""
Run configuration.

Every run of a component takes a :class:`RunConfig`. The solver and the
interpolation scheme are explicit enumerated choices; nothing is inferred
from the inputs. Keyword overrides passed to ``run`` are merged with
:func:`resolve_config`.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Optional, Sequence, Union

import numpy as np
from beartype import beartype

from hydromodels.backends.base import Backend
from hydromodels.errors import ConfigurationError


class SolverType(Enum):
    """Stepper selection."""

    EXPLICIT = auto()  # Fixed-step explicit update, state[t+1] = state[t] + rate
    DISCRETE = auto()  # Same recurrence through the generic discrete-map solver
    ODE = auto()  # Adaptive integration with scipy.integrate.solve_ivp


class InterpType(Enum):
    """Interpolation of forcing inputs between time points."""

    DIRECT = auto()  # Value at the first sample time >= t
    LINEAR = auto()  # Piecewise linear, clamped at the ends


@dataclass(frozen=True)
class RunConfig:
    """
    Settings for one run.

    Parameters
    ----------
    solver : SolverType
        Stepper used for stateful components.
    interp : InterpType
        Interpolation of inputs when the stepper asks for a time between
        samples.
    timeidx : sequence of float, optional
        Time of each input column, defaults to ``0, 1, ..., T-1``.
    min_value : float, optional
        Lower bound applied to states after every explicit step.
    param_index : sequence of int, optional
        Node to parameter-class index used to expand parameter vectors.
    state_index : sequence of int, optional
        Node to class index used to expand initial state vectors.
    rtol, atol : float
        Tolerances of the ODE solver.
    method : str
        ``scipy.integrate.solve_ivp`` method name.
    max_step : float
        Largest step of the ODE solver.
    backend : Backend
        Function compiler backend.
    """

    solver: SolverType = SolverType.EXPLICIT
    interp: InterpType = InterpType.DIRECT
    timeidx: Optional[Union[Sequence[float], np.ndarray]] = None
    min_value: Optional[float] = None
    param_index: Optional[Union[Sequence[int], np.ndarray]] = None
    state_index: Optional[Union[Sequence[int], np.ndarray]] = None
    rtol: float = 1e-3
    atol: float = 1e-3
    method: str = "RK45"
    max_step: float = float("inf")
    backend: Backend = Backend.NUMPY


_FIELDS = {f.name for f in dataclasses.fields(RunConfig)}


@beartype
def resolve_config(config: Optional[RunConfig] = None, **overrides: Any) -> RunConfig:
    """Return config (or the defaults) with keyword overrides applied."""
    unknown = sorted(set(overrides) - _FIELDS)
    if unknown:
        raise ConfigurationError(f"Unknown run options {unknown}; valid options are {sorted(_FIELDS)}")
    base = config if config is not None else RunConfig()
    return dataclasses.replace(base, **overrides) if overrides else base
