"""
Function compiler backends.

Declarations in evaluation order are compiled into one
:class:`~hydromodels.backends.base.FluxFunction`:
- NumPy: closures over ufuncs, supports every declaration kind
- CasADi: symbolic SX function with parameter sensitivities

Compiled functions are pure. They are cached process-wide by a structural
fingerprint of the declarations and the requested signature, with Python
functions keyed by identity. An entry is written once and never invalidated.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Sequence

from beartype import beartype

from hydromodels.backends.base import Backend, FluxFunction
from hydromodels.backends.casadi_backend import CasadiFluxFunction
from hydromodels.backends.numpy_backend import NumpyFluxFunction
from hydromodels.flux import fingerprint, func_identity

logger = logging.getLogger(__name__)

_BACKENDS = {
    Backend.NUMPY: NumpyFluxFunction,
    Backend.CASADI: CasadiFluxFunction,
}

_CACHE: Dict[str, FluxFunction] = {}
_CACHE_LOCK = threading.Lock()


def _flux_key(f: Any) -> tuple:
    # The cached function holds its declarations, so an id in a live key is never reused
    func = func_identity(f.func)
    return (type(f).__name__, f.name, f.outputs, f.inputs, f.params, f.exprs, f.nns, func, getattr(f, "n_params", None))


@beartype
def compile_fluxes(
    fluxes: Sequence[Any],
    input_names: Sequence[str],
    output_names: Sequence[str],
    backend: Backend = Backend.NUMPY,
) -> FluxFunction:
    """
    Compile ordered declarations into one callable, reusing cached builds.

    Args:
        fluxes: Declarations in evaluation order
        input_names: Row names of the stacked input array
        output_names: Names of the returned rows
        backend: Compiler backend

    Returns:
        A FluxFunction ``f(x, params, nns) -> y``
    """
    key = fingerprint(backend.name, [_flux_key(f) for f in fluxes], tuple(input_names), tuple(output_names), length=40)
    cached = _CACHE.get(key)
    if cached is not None:
        logger.debug("compile cache hit %s", key)
        return cached
    compiled = _BACKENDS[backend](fluxes, input_names, output_names)
    with _CACHE_LOCK:
        compiled = _CACHE.setdefault(key, compiled)
    logger.debug("compiled %d fluxes with %s backend (%s)", len(fluxes), backend.name, key)
    return compiled


__all__ = [
    "Backend",
    "FluxFunction",
    "NumpyFluxFunction",
    "CasadiFluxFunction",
    "compile_fluxes",
]
