"""
Bucket: a storage unit built from fluxes and state fluxes.

Roles are derived from the declarations once, at construction:
- states: one per StateFlux
- outputs: every flux output, in declaration order
- inputs: everything read that is neither a state nor an output
- params and nns: everything the declarations reference

A stateless bucket is evaluated in one vectorized pass over the whole
input. A stateful bucket interpolates its inputs, advances the states with
the configured stepper, then evaluates the fluxes over the state trajectory.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import numpy as np

from hydromodels.backends import compile_fluxes
from hydromodels.causality import check_flux_order, sort_fluxes
from hydromodels.component import Component, RunContext, ordered_union
from hydromodels.errors import ConfigurationError
from hydromodels.flux import StateFlux, fingerprint, rate_name
from hydromodels.integrators import make_stepper
from hydromodels.interpolation import make_interpolation


class Bucket(Component):
    """
    Coupled fluxes and state fluxes run as one component.

    Parameters
    ----------
    fluxes : sequence of Flux or NeuralFlux
        Algebraic declarations.
    dfluxes : sequence of StateFlux
        Exactly one per state variable.
    name : str, optional
        Defaults to a structural hash.
    sort : bool
        Order ``fluxes`` by their dependencies. With ``sort=False`` the
        given order must already be valid.
    """

    def __init__(
        self,
        fluxes: Sequence[Any] = (),
        dfluxes: Sequence[StateFlux] = (),
        name: Optional[str] = None,
        sort: bool = True,
    ) -> None:
        fluxes = tuple(fluxes)
        for f in fluxes:
            if isinstance(f, StateFlux):
                raise ConfigurationError(f"StateFlux '{f.name}' must be passed in dfluxes, not fluxes")
        self.fluxes = tuple(sort_fluxes(fluxes)) if sort else tuple(fluxes)
        if not sort:
            check_flux_order(self.fluxes)
        self.dfluxes = tuple(dfluxes)

        self.states = tuple(d.state for d in self.dfluxes)
        seen = set()
        for s in self.states:
            if s in seen:
                raise ConfigurationError(f"State '{s}' has more than one StateFlux")
            seen.add(s)
        # Rows follow declaration order regardless of evaluation order
        self.outputs = ordered_union(*[f.outputs for f in fluxes])
        self.name = name or f"bucket_{fingerprint(self.outputs, self.states, [f.name for f in self.fluxes])}"
        self._check_invariants()

        reads = ordered_union(*[getattr(f, "reads", f.inputs) for f in (*fluxes, *self.dfluxes)])
        produced = set(self.outputs) | set(self.states)
        self.inputs = tuple(v for v in reads if v not in produced)
        self.params = ordered_union(*[f.params for f in (*fluxes, *self.dfluxes)])
        self.nns = ordered_union(*[f.nns for f in fluxes])

    @property
    def is_stateful(self) -> bool:
        return len(self.states) > 0

    def _run(self, ctx: RunContext) -> np.ndarray:
        backend = ctx.config.backend
        variables = self.inputs + self.states
        flux_fn = compile_fluxes(self.fluxes, variables, self.outputs, backend)
        if not self.is_stateful:
            return flux_fn(ctx.x, ctx.full_params, ctx.nns)

        rate_fn = compile_fluxes(
            self.fluxes + self.dfluxes, variables, [rate_name(s) for s in self.states], backend
        )
        itp = make_interpolation(ctx.config.interp, ctx.x, ctx.ts)
        nns = ctx.nns

        def du(u: np.ndarray, p: Any, t: float) -> np.ndarray:
            return rate_fn(np.concatenate([itp(t), u], axis=0), p, nns)

        traj = make_stepper(ctx.config).advance(du, ctx.params, ctx.x0, ctx.ts)
        out = flux_fn(np.concatenate([ctx.x, traj], axis=0), ctx.full_params, nns)
        return np.concatenate([traj, out], axis=0)
