"""
HydroModels - declarative hydrological simulation.

Declare fluxes and state fluxes as symbolic expressions, group them into
buckets, routes and unit hydrographs, and compose those into models that
run over one or many spatial nodes.
"""

from beartype import BeartypeConf
from beartype.claw import beartype_package

beartype_package(__name__, conf=BeartypeConf(is_pep484_tower=True))

__version__ = "0.4.0"

from hydromodels.errors import ConfigurationError, ShapeError, SolverFailureWarning
from hydromodels.expr import (
    Expr,
    ExprKind,
    abs_,
    clamp,
    cos,
    exp,
    if_else,
    log,
    max_,
    min_,
    parameters,
    sign,
    sin,
    smooth_logistic,
    sqrt,
    step_func,
    tanh,
    variables,
)
from hydromodels.flux import Flux, NeuralFlux, StateFlux, flux, state_flux
from hydromodels.causality import check_component_order, check_flux_order, sort_components, sort_fluxes
from hydromodels.config import InterpType, RunConfig, SolverType, resolve_config
from hydromodels.backends import Backend, compile_fluxes
from hydromodels.integrators import DiscreteSolver, ExplicitSolver, ODESolver, Stepper, make_stepper
from hydromodels.interpolation import DirectInterpolation, LinearInterpolation
from hydromodels.expansion import collapse_params, expand_params, expand_states
from hydromodels.bucket import Bucket
from hydromodels.aggregation import Topology
from hydromodels.route import Route
from hydromodels.uh import UHFunction, UHKind, UnitHydrograph
from hydromodels.model import Model

__all__ = [
    "__version__",
    # errors
    "ConfigurationError",
    "ShapeError",
    "SolverFailureWarning",
    # expressions
    "Expr",
    "ExprKind",
    "variables",
    "parameters",
    "exp",
    "log",
    "sqrt",
    "abs_",
    "sign",
    "sin",
    "cos",
    "tanh",
    "min_",
    "max_",
    "clamp",
    "if_else",
    "step_func",
    "smooth_logistic",
    # declarations
    "Flux",
    "StateFlux",
    "NeuralFlux",
    "flux",
    "state_flux",
    "sort_fluxes",
    "sort_components",
    "check_flux_order",
    "check_component_order",
    # compilation and solving
    "Backend",
    "compile_fluxes",
    "SolverType",
    "InterpType",
    "RunConfig",
    "resolve_config",
    "Stepper",
    "ExplicitSolver",
    "DiscreteSolver",
    "ODESolver",
    "make_stepper",
    "DirectInterpolation",
    "LinearInterpolation",
    # expansion
    "expand_params",
    "expand_states",
    "collapse_params",
    # components
    "Bucket",
    "Topology",
    "Route",
    "UHKind",
    "UHFunction",
    "UnitHydrograph",
    "Model",
]
