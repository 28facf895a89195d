"""
Interpolation of forcing arrays over the time axis.

Both interpolators take values shaped (..., n_time) sampled at increasing
times and return the (...) slice at an arbitrary time t. The explicit and
discrete steppers only ask for sample times, where both schemes return the
samples exactly.
"""

from __future__ import annotations

from typing import Any

import numpy as np

from hydromodels.config import InterpType
from hydromodels.errors import ShapeError


class _Interpolation:
    def __init__(self, values: Any, ts: Any) -> None:
        self.values = np.asarray(values, dtype=float)
        self.ts = np.asarray(ts, dtype=float)
        if self.ts.ndim != 1 or self.values.shape[-1] != self.ts.size:
            raise ShapeError(f"Time axis of length {self.values.shape[-1]} does not match {self.ts.size} time points")
        if self.ts.size == 0:
            raise ShapeError("Cannot interpolate over an empty time axis")
        if np.any(np.diff(self.ts) <= 0):
            raise ShapeError("Time points must be strictly increasing")


class DirectInterpolation(_Interpolation):
    """Value of the first sample at or after t, the last sample beyond the end."""

    def __call__(self, t: Any) -> np.ndarray:
        i = int(np.searchsorted(self.ts, t, side="left"))
        return self.values[..., min(i, self.ts.size - 1)]


class LinearInterpolation(_Interpolation):
    """Piecewise linear between samples, held constant outside the sampled range."""

    def __call__(self, t: Any) -> np.ndarray:
        n = self.ts.size
        if n == 1:
            return self.values[..., 0]
        i = int(np.clip(np.searchsorted(self.ts, t, side="right") - 1, 0, n - 2))
        w = float(np.clip((t - self.ts[i]) / (self.ts[i + 1] - self.ts[i]), 0.0, 1.0))
        if w == 0.0:
            return self.values[..., i]
        if w == 1.0:
            return self.values[..., i + 1]
        return self.values[..., i] * (1.0 - w) + self.values[..., i + 1] * w


def make_interpolation(kind: InterpType, values: Any, ts: Any) -> _Interpolation:
    if kind == InterpType.LINEAR:
        return LinearInterpolation(values, ts)
    return DirectInterpolation(values, ts)
