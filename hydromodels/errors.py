"""
Exception and warning types raised by hydromodels.

Configuration errors are detected when components are built (or, for
parameter sets, at the start of a run) and are never recovered locally.
Shape errors are raised before any computation when input arrays do not
match a component. Solver failures are not exceptions: the stepper returns
a NaN trajectory and emits :class:`SolverFailureWarning`.
"""


class ConfigurationError(ValueError):
    """A model is declared or wired inconsistently.

    Raised for dependency cycles, duplicate producers, missing parameters,
    inputs or states, expression-count mismatches, unknown topology nodes,
    and unknown configuration keys.
    """


class ShapeError(ValueError):
    """An input, parameter or state array has the wrong rank or size."""


class SolverFailureWarning(RuntimeWarning):
    """A stepper failed to advance the state; the trajectory is NaN-filled."""
