"""
Route: a bucket whose state rates also see aggregated upstream outflow.

At every step, for all nodes at once:

1. the routing fluxes compute each node's local terms, including its
   outflow, from the current state and interpolated inputs
2. the topology aggregates the outflow vector into each node's inflow
3. the state fluxes combine local terms and inflow into the rate

The coupling is simultaneous: the inflow a node sees at step t comes from
the upstream outflow at step t, not t - 1.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import numpy as np

from hydromodels.aggregation import Topology
from hydromodels.backends import compile_fluxes
from hydromodels.causality import check_flux_order, sort_fluxes
from hydromodels.component import Component, RunContext, ordered_union
from hydromodels.config import RunConfig
from hydromodels.errors import ConfigurationError, ShapeError
from hydromodels.flux import StateFlux, fingerprint, rate_name
from hydromodels.integrators import make_stepper
from hydromodels.interpolation import make_interpolation


class Route(Component):
    """
    Network-coupled storage component.

    Parameters
    ----------
    rfluxes : sequence of Flux or NeuralFlux
        Local routing fluxes. They may read inputs and states but not the
        inflow.
    dfluxes : sequence of StateFlux
        State rates; they may read the inflow variable.
    topology : Topology
        Drainage network; its node order is the node axis order.
    outflow : str
        Flux output that is passed downstream.
    inflow : str
        Name under which the aggregated upstream outflow is exposed.
    """

    def __init__(
        self,
        rfluxes: Sequence[Any],
        dfluxes: Sequence[StateFlux],
        topology: Topology,
        outflow: str = "q_out",
        inflow: str = "q_in",
        name: Optional[str] = None,
        sort: bool = True,
    ) -> None:
        rfluxes = tuple(rfluxes)
        self.rfluxes = tuple(sort_fluxes(rfluxes)) if sort else rfluxes
        if not sort:
            check_flux_order(self.rfluxes)
        self.dfluxes = tuple(dfluxes)
        self.topology = topology
        self.outflow = outflow
        self.inflow = inflow

        flux_outputs = ordered_union(*[f.outputs for f in rfluxes])
        self.states = tuple(d.state for d in self.dfluxes)
        if len(set(self.states)) != len(self.states):
            raise ConfigurationError(f"Route states {list(self.states)} have more than one StateFlux")
        self.outputs = flux_outputs + (inflow,)
        self.name = name or f"route_{fingerprint(self.states, self.outputs, outflow, topology.nodes)}"
        self._check_invariants()

        if outflow not in flux_outputs:
            raise ConfigurationError(f"Route '{self.name}': outflow '{outflow}' is not produced by any routing flux")
        if inflow in flux_outputs:
            raise ConfigurationError(f"Route '{self.name}': inflow '{inflow}' is also produced by a routing flux")
        for f in self.rfluxes:
            if inflow in f.inputs:
                raise ConfigurationError(
                    f"Route '{self.name}': routing flux '{f.name}' reads inflow '{inflow}', "
                    f"which is only known after outflows are aggregated"
                )

        reads = ordered_union(*[getattr(f, "reads", f.inputs) for f in (*rfluxes, *self.dfluxes)])
        produced = set(self.outputs) | set(self.states)
        self.inputs = tuple(v for v in reads if v not in produced)
        self.params = ordered_union(*[f.params for f in (*rfluxes, *self.dfluxes)])
        self.nns = ordered_union(*[f.nns for f in rfluxes])
        self._flux_outputs = flux_outputs

    def _context(
        self,
        x: np.ndarray,
        params: Mapping[str, Any],
        init_states: Optional[Mapping[str, Any]],
        config: RunConfig,
    ) -> RunContext:
        if x.shape[1] != self.topology.n_nodes:
            raise ShapeError(f"Route '{self.name}' has {self.topology.n_nodes} nodes, input has {x.shape[1]}")
        return super()._context(x, params, init_states, config)

    def _run(self, ctx: RunContext) -> np.ndarray:
        backend = ctx.config.backend
        variables = self.inputs + self.states
        flux_fn = compile_fluxes(self.rfluxes, variables, self._flux_outputs, backend)
        rate_fn = compile_fluxes(
            self.dfluxes,
            variables + self._flux_outputs + (self.inflow,),
            [rate_name(s) for s in self.states],
            backend,
        )
        k_out = self._flux_outputs.index(self.outflow)
        itp = make_interpolation(ctx.config.interp, ctx.x, ctx.ts)
        nns = ctx.nns
        topology = self.topology

        def du(u: np.ndarray, p: Any, t: float) -> np.ndarray:
            z = np.concatenate([itp(t), u], axis=0)
            local = flux_fn(z, p, nns)
            q_in = topology.aggregate(local[k_out])
            return rate_fn(np.concatenate([z, local, q_in[None]], axis=0), p, nns)

        traj = make_stepper(ctx.config).advance(du, ctx.params, ctx.x0, ctx.ts)
        local = flux_fn(np.concatenate([ctx.x, traj], axis=0), ctx.full_params, nns)
        q_in = topology.aggregate(local[k_out])
        return np.concatenate([traj, local, q_in[None]], axis=0)
