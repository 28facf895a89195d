"""
Dependency resolution for fluxes and components.

Declarations are ordered so that every variable a declaration reads is
either external or produced by an earlier declaration. The graph has an
edge from the producer of a variable to every reader of it; a cycle among
produced variables is a configuration error and is reported with the
declarations involved.

Ties are broken by declaration order, so an already valid order is
returned unchanged.
"""

from __future__ import annotations

import heapq
import logging
from typing import Any, Callable, Dict, List, Sequence, Tuple

from beartype import beartype

from hydromodels.errors import ConfigurationError

logger = logging.getLogger(__name__)


def _tarjan_scc(nodes: List[int], adj: Dict[int, List[int]]) -> List[List[int]]:
    """Find strongly connected components using Tarjan's algorithm.

    Args:
        nodes: List of node identifiers
        adj: Adjacency list (adj[node] = list of nodes this node points to)

    Returns:
        List of SCCs, each SCC is a list of nodes.
        SCCs are returned in reverse topological order.
    """
    index_counter = [0]
    stack: List[int] = []
    lowlink: Dict[int, int] = {}
    index: Dict[int, int] = {}
    on_stack: Dict[int, bool] = {}
    sccs: List[List[int]] = []

    def strongconnect(node: int) -> None:
        index[node] = index_counter[0]
        lowlink[node] = index_counter[0]
        index_counter[0] += 1
        stack.append(node)
        on_stack[node] = True

        for successor in adj.get(node, []):
            if successor not in index:
                strongconnect(successor)
                lowlink[node] = min(lowlink[node], lowlink[successor])
            elif on_stack.get(successor, False):
                lowlink[node] = min(lowlink[node], index[successor])

        # Root node: pop the stack and generate SCC
        if lowlink[node] == index[node]:
            scc: List[int] = []
            while True:
                w = stack.pop()
                on_stack[w] = False
                scc.append(w)
                if w == node:
                    break
            sccs.append(scc)

    for node in nodes:
        if node not in index:
            strongconnect(node)

    return sccs


def _producers(items: Sequence[Any], produces: Callable[[Any], Sequence[str]], kind: str) -> Dict[str, int]:
    producer: Dict[str, int] = {}
    for i, item in enumerate(items):
        for var in produces(item):
            if var in producer:
                other = items[producer[var]]
                raise ConfigurationError(
                    f"Variable '{var}' is produced by both {kind} '{other.name}' and {kind} '{item.name}'"
                )
            producer[var] = i
    return producer


def _build_graph(
    items: Sequence[Any],
    reads: Callable[[Any], Sequence[str]],
    produces: Callable[[Any], Sequence[str]],
    kind: str,
) -> Tuple[Dict[int, List[int]], Dict[Tuple[int, int], List[str]]]:
    producer = _producers(items, produces, kind)
    adj: Dict[int, List[int]] = {i: [] for i in range(len(items))}
    via: Dict[Tuple[int, int], List[str]] = {}
    for j, item in enumerate(items):
        for var in reads(item):
            i = producer.get(var)
            if i is None:
                continue
            if i == j:
                raise ConfigurationError(f"{kind.capitalize()} '{item.name}' reads its own output '{var}'")
            if j not in adj[i]:
                adj[i].append(j)
            via.setdefault((i, j), []).append(var)
    return adj, via


def _raise_cycle(
    items: Sequence[Any],
    remaining: List[int],
    adj: Dict[int, List[int]],
    via: Dict[Tuple[int, int], List[str]],
    kind: str,
) -> None:
    sub = {i: [j for j in adj[i] if j in remaining] for i in remaining}
    cycles = [scc for scc in _tarjan_scc(remaining, sub) if len(scc) > 1]
    scc = sorted(cycles[0]) if cycles else sorted(remaining)
    members = set(scc)
    names = [items[i].name for i in scc]
    variables = sorted({v for (i, j), vs in via.items() if i in members and j in members for v in vs})
    raise ConfigurationError(f"Dependency cycle through {kind} declarations {names} via variables {variables}")


def _resolve(
    items: Sequence[Any],
    reads: Callable[[Any], Sequence[str]],
    produces: Callable[[Any], Sequence[str]],
    kind: str,
) -> List[Any]:
    """Kahn's algorithm over the producer/reader graph, insertion order first."""
    adj, via = _build_graph(items, reads, produces, kind)
    indegree = {i: 0 for i in adj}
    for i, succ in adj.items():
        for j in succ:
            indegree[j] += 1

    ready = [i for i, d in indegree.items() if d == 0]
    heapq.heapify(ready)
    order: List[int] = []
    while ready:
        i = heapq.heappop(ready)
        order.append(i)
        for j in adj[i]:
            indegree[j] -= 1
            if indegree[j] == 0:
                heapq.heappush(ready, j)

    if len(order) < len(items):
        done = set(order)
        remaining = [i for i in range(len(items)) if i not in done]
        _raise_cycle(items, remaining, adj, via, kind)

    logger.debug("resolved %s order: %s", kind, [items[i].name for i in order])
    return [items[i] for i in order]


def _check_order(
    items: Sequence[Any],
    reads: Callable[[Any], Sequence[str]],
    produces: Callable[[Any], Sequence[str]],
    kind: str,
) -> None:
    producer = _producers(items, produces, kind)
    for j, item in enumerate(items):
        for var in reads(item):
            i = producer.get(var)
            if i is not None and i >= j:
                raise ConfigurationError(
                    f"{kind.capitalize()} '{item.name}' reads '{var}' before {kind} '{items[i].name}' produces it"
                )


def _flux_reads(f: Any) -> Sequence[str]:
    return getattr(f, "reads", f.inputs)


def _flux_produces(f: Any) -> Sequence[str]:
    return f.outputs


def _component_produces(c: Any) -> Sequence[str]:
    return tuple(c.states) + tuple(c.outputs)


def _component_reads(c: Any) -> Sequence[str]:
    return c.inputs


@beartype
def sort_fluxes(fluxes: Sequence[Any]) -> List[Any]:
    """
    Order fluxes so each one's inputs are external or produced earlier.

    Args:
        fluxes: Flux, StateFlux or NeuralFlux declarations

    Returns:
        The declarations in a valid evaluation order. Multi-output
        declarations appear once.

    Raises:
        ConfigurationError: on a cycle, a self-reading flux or a variable
            produced by more than one flux.
    """
    return _resolve(list(fluxes), _flux_reads, _flux_produces, "flux")


@beartype
def check_flux_order(fluxes: Sequence[Any]) -> None:
    """Raise if a flux reads a variable produced by itself or a later flux."""
    _check_order(list(fluxes), _flux_reads, _flux_produces, "flux")


@beartype
def sort_components(components: Sequence[Any]) -> List[Any]:
    """Order components by the states and outputs they produce, see :func:`sort_fluxes`."""
    return _resolve(list(components), _component_reads, _component_produces, "component")


@beartype
def check_component_order(components: Sequence[Any]) -> None:
    """Raise if a component reads a variable produced by itself or a later component."""
    _check_order(list(components), _component_reads, _component_produces, "component")
