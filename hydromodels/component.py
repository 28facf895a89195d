"""
Common run machinery of buckets, routes, unit hydrographs and models.

A component declares the names it reads (``inputs``), integrates
(``states``) and computes (``outputs``), plus the parameters and neural
network weights it needs. Runs accept

- a single instance: input of shape (n_inputs, n_time), output of shape
  (n_states + n_outputs, n_time)
- N nodes: input of shape (n_inputs, N, n_time), output of shape
  (n_states + n_outputs, N, n_time)

Both go through the same implementation over a node axis; a single
instance is run as one node.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from hydromodels.config import RunConfig, resolve_config
from hydromodels.errors import ConfigurationError, ShapeError
from hydromodels.expansion import expand_params, expand_states


def ordered_union(*groups: Sequence[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for group in groups:
        for name in group:
            seen[name] = None
    return tuple(seen)


@dataclass
class RunContext:
    """Validated arrays of one run, all with a node axis."""

    x: np.ndarray  # (n_inputs, N, T)
    params: Dict[str, np.ndarray]  # (N,) for per-step evaluation
    nns: Dict[str, np.ndarray]
    x0: np.ndarray  # (n_states, N)
    ts: np.ndarray  # (T,)
    config: RunConfig

    @property
    def n_nodes(self) -> int:
        return self.x.shape[1]

    @property
    def full_params(self) -> Dict[str, np.ndarray]:
        """Parameters shaped (N, 1) to broadcast over (N, T) trajectories."""
        return {k: v.reshape(-1, 1) for k, v in self.params.items()}


class Component:
    """Base class of every runnable unit."""

    name: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...]
    states: Tuple[str, ...]
    params: Tuple[str, ...]
    nns: Tuple[str, ...]

    @property
    def output_names(self) -> Tuple[str, ...]:
        """Row names of the run result: states, then outputs."""
        return tuple(self.states) + tuple(self.outputs)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "inputs": list(self.inputs),
            "outputs": list(self.outputs),
            "states": list(self.states),
            "params": list(self.params),
            "nns": list(self.nns),
        }

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(name={self.name!r}, inputs={list(self.inputs)}, "
            f"states={list(self.states)}, outputs={list(self.outputs)}, params={list(self.params)})"
        )

    def _check_invariants(self) -> None:
        both = set(self.states) & set(self.outputs)
        if both:
            raise ConfigurationError(f"{type(self).__name__} '{self.name}': {sorted(both)} are both states and outputs")

    def _as_nodes(self, input: Any) -> Tuple[np.ndarray, bool]:
        x = np.asarray(input, dtype=float)
        if x.ndim == 2:
            x, single = x[:, None, :], True
        elif x.ndim == 3:
            single = False
        else:
            raise ShapeError(
                f"{type(self).__name__} '{self.name}' expects input of shape (vars, time) or "
                f"(vars, nodes, time), got {x.shape}"
            )
        if x.shape[0] != len(self.inputs):
            raise ShapeError(
                f"{type(self).__name__} '{self.name}' expects {len(self.inputs)} input rows "
                f"{list(self.inputs)}, got {x.shape[0]}"
            )
        return x, single

    def _context(
        self,
        x: np.ndarray,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]],
        config: RunConfig,
    ) -> RunContext:
        n_nodes, n_time = x.shape[1], x.shape[2]
        ts = np.arange(n_time, dtype=float) if config.timeidx is None else np.asarray(config.timeidx, dtype=float)
        if ts.shape != (n_time,):
            raise ShapeError(f"timeidx has {ts.size} entries for {n_time} input time steps")
        p = expand_params(params, self.params, n_nodes, config.param_index)
        nns = {}
        for n in self.nns:
            if n not in params:
                raise ConfigurationError(f"Missing weights for neural network '{n}'")
            nns[n] = np.asarray(params[n], dtype=float)
        x0 = expand_states(init_states, self.states, n_nodes, config.state_index)
        return RunContext(x=x, params=p, nns=nns, x0=x0, ts=ts, config=config)

    def _validate(
        self,
        n_nodes: int,
        n_time: int,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]],
        config: RunConfig,
    ) -> None:
        """Raise the shape and configuration errors of a run without computing it."""
        self._context(np.empty((len(self.inputs), n_nodes, n_time)), params, init_states, config)

    def run(
        self,
        input: Any,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]] = None,
        config: Optional[RunConfig] = None,
        **overrides: Any,
    ) -> np.ndarray:
        """
        Run the component over the time axis of ``input``.

        Parameters
        ----------
        input : array
            Rows in ``self.inputs`` order, shaped (vars, time) or
            (vars, nodes, time).
        params : mapping
            Parameter values by name; neural network weights by network name.
        init_states : mapping, optional
            Initial state values by name, zero when absent.
        config : RunConfig, optional
            Run settings; keyword overrides are applied on top.

        Returns
        -------
        np.ndarray
            Rows in ``self.output_names`` order, with the node axis only when
            the input has one.
        """
        config = resolve_config(config, **overrides)
        x, single = self._as_nodes(input)
        out = self._execute(x, params, init_states, config)
        return out[:, 0, :] if single else out

    __call__ = run

    def _execute(
        self,
        x: np.ndarray,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]],
        config: RunConfig,
    ) -> np.ndarray:
        """Run on input with a node axis, returning (rows, N, T)."""
        return self._run(self._context(x, params, init_states, config))

    def _run(self, ctx: RunContext) -> np.ndarray:
        """Compute the (rows, N, T) result for a validated context."""
        raise NotImplementedError
