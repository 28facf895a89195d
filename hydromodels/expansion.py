"""
Parameter and state expansion over the node axis.

A parameter value given for a multi-node run may be
- a scalar, shared by every node
- a vector with one value per node
- a vector with one value per parameter class, selected for each node by
  a node-to-class index

Neural network weights are never expanded; they are shared verbatim.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence

import numpy as np
from beartype import beartype

from hydromodels.errors import ConfigurationError, ShapeError


def _class_index(index: Any, n_nodes: int) -> np.ndarray:
    idx = np.asarray(index)
    if idx.ndim != 1 or idx.size != n_nodes:
        raise ShapeError(f"Class index must have one entry per node ({n_nodes}), got shape {idx.shape}")
    if not np.issubdtype(idx.dtype, np.integer):
        raise ConfigurationError(f"Class index must be integer, got dtype {idx.dtype}")
    return idx


def _expand_one(name: str, value: Any, n_nodes: int, index: Optional[np.ndarray], what: str) -> np.ndarray:
    v = np.asarray(value, dtype=float)
    if v.ndim == 0:
        return np.full(n_nodes, float(v))
    if v.ndim != 1:
        raise ShapeError(f"{what} '{name}' must be a scalar or a vector, got shape {v.shape}")
    if index is not None:
        if index.size and (index.min() < 0 or index.max() >= v.size):
            raise ConfigurationError(
                f"{what} '{name}' has {v.size} class values but the class index refers to class {index.max()}"
            )
        return v[index]
    if v.size != n_nodes:
        raise ShapeError(f"{what} '{name}' has {v.size} values for {n_nodes} nodes")
    return v


@beartype
def expand_params(
    params: Mapping[str, Any],
    names: Sequence[str],
    n_nodes: Optional[int] = None,
    param_index: Optional[Any] = None,
) -> Dict[str, np.ndarray]:
    """
    Select and expand the named parameters.

    Parameters
    ----------
    params : mapping
        Parameter values by name. Extra names are ignored.
    names : sequence of str
        Parameters the caller needs.
    n_nodes : int, optional
        Node count of a multi-node run; None for a single-instance run where
        values are used as given.
    param_index : array of int, optional
        Node-to-class index, length ``n_nodes``.

    Returns
    -------
    dict
        Arrays of shape (n_nodes,) for multi-node runs.

    Raises
    ------
    ConfigurationError
        If a named parameter is missing or a class index is out of range.
    """
    missing = [n for n in names if n not in params]
    if missing:
        extra = f" (also missing: {missing[1:]})" if len(missing) > 1 else ""
        raise ConfigurationError(f"Missing value for parameter '{missing[0]}'{extra}")
    if n_nodes is None:
        return {n: np.asarray(params[n], dtype=float) for n in names}
    index = None if param_index is None else _class_index(param_index, n_nodes)
    return {n: _expand_one(n, params[n], n_nodes, index, "Parameter") for n in names}


@beartype
def expand_states(
    init_states: Optional[Mapping[str, Any]],
    names: Sequence[str],
    n_nodes: Optional[int] = None,
    state_index: Optional[Any] = None,
) -> np.ndarray:
    """
    Stack initial states as (n_states,) or (n_states, n_nodes).

    States without an initial value start at zero. Values follow the same
    scalar, per-node and per-class rules as parameters.
    """
    init_states = {} if init_states is None else init_states
    if n_nodes is None:
        rows = [float(np.asarray(init_states.get(n, 0.0), dtype=float)) for n in names]
        return np.array(rows, dtype=float)
    index = None if state_index is None else _class_index(state_index, n_nodes)
    rows = [_expand_one(n, init_states.get(n, 0.0), n_nodes, index, "Initial state") for n in names]
    return np.stack(rows) if rows else np.zeros((0, n_nodes))


@beartype
def collapse_params(
    expanded: Mapping[str, Any],
    param_index: Any,
    n_classes: Optional[int] = None,
) -> Dict[str, np.ndarray]:
    """
    Inverse of class expansion: the value of the first node of each class.

    Raises
    ------
    ConfigurationError
        If a class below ``n_classes`` has no node.
    """
    idx = np.asarray(param_index)
    n_classes = int(idx.max()) + 1 if n_classes is None else n_classes
    first = []
    for k in range(n_classes):
        nodes = np.flatnonzero(idx == k)
        if nodes.size == 0:
            raise ConfigurationError(f"Parameter class {k} is not used by any node")
        first.append(nodes[0])
    return {name: np.asarray(v, dtype=float)[first] for name, v in expanded.items()}
