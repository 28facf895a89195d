"""Shared model definitions and forcing data for the tests."""

import numpy as np

from hydromodels import (
    Bucket,
    clamp,
    exp,
    flux,
    max_,
    min_,
    parameters,
    state_flux,
    step_func,
    variables,
)

EPS = 1e-9


def evap_bucket() -> Bucket:
    """Single storage with evaporation limited by the storage itself."""
    S, precip, pet, evap = variables("S precip pet evap")
    return Bucket(
        fluxes=[flux({evap: clamp(pet, 0.0, S)})],
        dfluxes=[state_flux(S, precip - evap)],
        name="evap_bucket",
    )


def linear_reservoir() -> Bucket:
    """dS = P - k S, with the outflow as output."""
    S, P, Q = variables("S P Q")
    k = parameters("k")
    return Bucket(
        fluxes=[flux({Q: k * S})],
        dfluxes=[state_flux(S, P - Q)],
        name="linear_reservoir",
    )


def exphydro_buckets():
    """Snow and soil buckets of the EXP-HYDRO model."""
    T, P, Ep = variables("T P Ep")
    snowfall, rainfall, melt, snowpack = variables("snowfall rainfall melt snowpack")
    soilwater, evap, baseflow, surfaceflow, flow = variables("soilwater evap baseflow surfaceflow flow")
    f, Smax, Qmax, Df, Tmax, Tmin = parameters("f Smax Qmax Df Tmax Tmin")

    snow = Bucket(
        fluxes=[
            flux({snowfall: step_func(Tmin - T) * P, rainfall: step_func(T - Tmin) * P}),
            flux({melt: step_func(T - Tmax) * step_func(snowpack) * min_(snowpack, Df * (T - Tmax))}),
        ],
        dfluxes=[state_flux(snowpack, snowfall - melt)],
        name="surface",
    )
    soil = Bucket(
        fluxes=[
            flux({evap: step_func(soilwater) * Ep * min_(1.0, soilwater / Smax)}),
            flux({baseflow: step_func(soilwater) * Qmax * exp(-f * max_(0.0, Smax - soilwater))}),
            flux({surfaceflow: max_(0.0, soilwater - Smax)}),
            flux({flow: baseflow + surfaceflow}),
        ],
        dfluxes=[state_flux(soilwater, (rainfall + melt) - (evap + flow))],
        name="soil",
    )
    return snow, soil


EXPHYDRO_PARAMS = {
    "f": 0.0167,
    "Smax": 1709.46,
    "Qmax": 18.47,
    "Df": 2.674,
    "Tmax": 0.17,
    "Tmin": -2.09,
}


def forcing(n_time: int = 60, seed: int = 0) -> dict:
    """Synthetic daily temperature, precipitation and PET."""
    rng = np.random.default_rng(seed)
    day = np.arange(n_time)
    return {
        "T": 10.0 * np.sin(2 * np.pi * day / 365.0) + rng.normal(0.0, 3.0, n_time) - 2.0,
        "P": np.where(rng.random(n_time) < 0.3, rng.gamma(2.0, 5.0, n_time), 0.0),
        "Ep": 1.0 + 0.5 * rng.random(n_time),
    }


def stack(component, data: dict) -> np.ndarray:
    """Input rows of a component from named series."""
    return np.stack([np.asarray(data[name], dtype=float) for name in component.inputs])
