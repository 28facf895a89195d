"""
Model: components wired together by variable name.

At construction every component's inputs are resolved to row indices of a
growing array that starts with the model inputs and gains each component's
states and outputs in turn. A run slices those rows, runs the component and
appends its result; the model output rows are selected at the end.

Ordering is a precondition: components must be given in a valid order or
``sort=True`` must be passed. An input that cannot be resolved fails at
construction.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from hydromodels.causality import check_component_order, sort_components
from hydromodels.component import Component, ordered_union
from hydromodels.config import RunConfig
from hydromodels.errors import ConfigurationError
from hydromodels.flux import fingerprint


class Model(Component):
    """
    Composite of buckets, routes, unit hydrographs or nested models.

    Parameters
    ----------
    components : sequence of Component
        Units in execution order (or any order with ``sort=True``).
    name : str, optional
        Defaults to a structural hash.
    sort : bool
        Order components by the variables they produce and read.
    inputs : sequence of str, optional
        Model input rows. By default every variable read but not produced,
        in order of first use.
    outputs : sequence of str, optional
        Rows returned by ``run``. By default all states, then all outputs.
    configs : mapping of str to RunConfig, optional
        Settings of individual components by name; the others use the
        config passed to ``run``.
    """

    def __init__(
        self,
        components: Sequence[Component],
        name: Optional[str] = None,
        sort: bool = False,
        inputs: Optional[Sequence[str]] = None,
        outputs: Optional[Sequence[str]] = None,
        configs: Optional[Mapping[str, RunConfig]] = None,
    ) -> None:
        components = list(components)
        if not components:
            raise ConfigurationError("A model needs at least one component")
        names = [c.name for c in components]
        for n in names:
            if names.count(n) > 1:
                raise ConfigurationError(f"Component name '{n}' is used more than once")
        if sort:
            components = sort_components(components)
        else:
            check_component_order(components)
        self.components = tuple(components)

        self.states = ordered_union(*[c.states for c in self.components])
        self.outputs = ordered_union(*[c.outputs for c in self.components])
        self.params = ordered_union(*[c.params for c in self.components])
        self.nns = ordered_union(*[c.nns for c in self.components])
        self.name = name or f"model_{fingerprint(names)}"
        self._check_invariants()

        produced = set(self.states) | set(self.outputs)
        if inputs is None:
            reads = ordered_union(*[c.inputs for c in self.components])
            self.inputs = tuple(v for v in reads if v not in produced)
        else:
            self.inputs = tuple(inputs)
            clash = sorted(set(self.inputs) & produced)
            if clash:
                raise ConfigurationError(f"Model inputs {clash} are also produced by components")
        self._prepare_indices(outputs)

        self.configs = {} if configs is None else dict(configs)
        unknown = set(self.configs) - set(names)
        if unknown:
            raise ConfigurationError(f"Configs given for unknown components {sorted(unknown)}")

    def _prepare_indices(self, outputs: Optional[Sequence[str]]) -> None:
        known: List[str] = list(self.inputs)
        self._input_idx: List[np.ndarray] = []
        for c in self.components:
            idx = []
            for var in c.inputs:
                if var not in known:
                    raise ConfigurationError(
                        f"Input '{var}' of component '{c.name}' is neither a model input "
                        f"nor produced by an earlier component"
                    )
                idx.append(known.index(var))
            self._input_idx.append(np.array(idx, dtype=int))
            known.extend(c.output_names)
        self._known = tuple(known)

        selected = self.states + self.outputs if outputs is None else tuple(outputs)
        produced = set(self.states) | set(self.outputs)
        for var in selected:
            if var not in produced:
                raise ConfigurationError(f"Requested output '{var}' is not computed by model '{self.name}'")
        self._output_names = selected
        if outputs is not None:
            self.states = tuple(v for v in selected if v in self.states)
            self.outputs = tuple(v for v in selected if v not in self.states)
        self._output_idx = np.array([known.index(v) for v in selected], dtype=int)

    @property
    def output_names(self) -> tuple:
        return self._output_names

    def _execute(
        self,
        x: np.ndarray,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]],
        config: RunConfig,
    ) -> np.ndarray:
        for p in self.params:
            if p not in params:
                raise ConfigurationError(f"Missing value for parameter '{p}'")
        for n in self.nns:
            if n not in params:
                raise ConfigurationError(f"Missing weights for neural network '{n}'")
        self._validate(x.shape[1], x.shape[2], params, init_states, config)
        data = x
        for c, idx in zip(self.components, self._input_idx):
            out = c._execute(data[idx], params, init_states, self.configs.get(c.name, config))
            data = np.concatenate([data, out], axis=0)
        return data[self._output_idx]

    def _validate(
        self,
        n_nodes: int,
        n_time: int,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]],
        config: RunConfig,
    ) -> None:
        for c in self.components:
            c._validate(n_nodes, n_time, params, init_states, self.configs.get(c.name, config))

    def variable_index(self) -> Dict[str, int]:
        """Row of every variable in the internal array, inputs first."""
        return {v: i for i, v in enumerate(self._known)}
