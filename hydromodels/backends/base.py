"""
Base interface of compiled flux functions.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum, auto
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from hydromodels.errors import ConfigurationError, ShapeError


class Backend(Enum):
    """Function compiler selection."""

    NUMPY = auto()  # Closures over numpy ufuncs, supports every declaration kind
    CASADI = auto()  # CasADi SX function, expression declarations only


def _ordered_union(groups: Sequence[Sequence[str]]) -> List[str]:
    seen: Dict[str, None] = {}
    for group in groups:
        for name in group:
            seen[name] = None
    return list(seen)


class FluxFunction(ABC):
    """
    A list of ordered declarations compiled into one callable.

    ``f(x, params, nns)`` takes stacked variables ``x`` of shape
    (n_inputs, ...) in ``input_names`` order and returns the requested
    outputs stacked as (n_outputs, ...). Each declaration is evaluated once
    and its outputs are visible to every later declaration. Parameter values
    broadcast elementwise against the trailing shape of ``x``.
    """

    def __init__(self, fluxes: Sequence[Any], input_names: Sequence[str], output_names: Sequence[str]) -> None:
        """
        Args:
            fluxes: Declarations in evaluation order
            input_names: Row names of the stacked input
            output_names: Names to return, any input or produced variable
        """
        self.fluxes = tuple(fluxes)
        self.input_names = tuple(input_names)
        self.output_names = tuple(output_names)
        self.param_names = _ordered_union([f.params for f in self.fluxes])
        self.nn_names = _ordered_union([f.nns for f in self.fluxes])
        self._check_wiring()

    def _check_wiring(self) -> None:
        available = set(self.input_names)
        for f in self.fluxes:
            for var in getattr(f, "reads", f.inputs):
                if var not in available:
                    raise ConfigurationError(f"Flux '{f.name}' reads '{var}' which is not available at its position")
            available.update(f.outputs)
        for name in self.output_names:
            if name not in available:
                raise ConfigurationError(f"Requested output '{name}' is not produced by any flux")

    def __call__(self, x: Any, params: Mapping[str, Any], nns: Optional[Mapping[str, Any]] = None) -> np.ndarray:
        x = np.asarray(x, dtype=float)
        if x.ndim == 0 or x.shape[0] != len(self.input_names):
            raise ShapeError(f"Expected {len(self.input_names)} input rows {list(self.input_names)}, got shape {x.shape}")
        nns = {} if nns is None else nns
        for p in self.param_names:
            if p not in params:
                raise ConfigurationError(f"Missing value for parameter '{p}'")
        for n in self.nn_names:
            if n not in nns:
                raise ConfigurationError(f"Missing weights for neural network '{n}'")
        return self._evaluate(x, params, nns)

    @abstractmethod
    def _evaluate(self, x: np.ndarray, params: Mapping[str, Any], nns: Mapping[str, Any]) -> np.ndarray:
        """Evaluate with validated arguments."""
        pass
