"""
Static river network topology and outflow aggregation.

The topology is a sparse matrix ``A`` of shape (n_nodes, n_nodes) with
``A[i, j] = 1`` when node j drains into node i. Aggregating a per-node
outflow vector ``q`` gives each node's upstream inflow ``A @ q``; a node
without upstream contributors receives zero.

Three constructors are provided: a node-to-upstreams mapping, a list of
(upstream, downstream) edges, and a D8 flow-direction grid.
"""

from __future__ import annotations

from typing import Any, Dict, Hashable, List, Mapping, Sequence, Tuple

import numpy as np
from scipy import sparse

from hydromodels.causality import _tarjan_scc
from hydromodels.errors import ConfigurationError, ShapeError

# D8 direction code -> (row, col) offset of the downstream cell
D8_OFFSETS = {
    1: (0, 1),  # E
    2: (1, 1),  # SE
    4: (1, 0),  # S
    8: (1, -1),  # SW
    16: (0, -1),  # W
    32: (-1, -1),  # NW
    64: (-1, 0),  # N
    128: (-1, 1),  # NE
}


class Topology:
    """
    Directed acyclic drainage network over named nodes.

    Parameters
    ----------
    nodes : sequence
        Node identifiers; their order is the node axis order of runs.
    edges : sequence of (upstream, downstream)
        Drainage connections.
    """

    def __init__(self, nodes: Sequence[Hashable], edges: Sequence[Tuple[Hashable, Hashable]] = ()) -> None:
        self.nodes = tuple(nodes)
        self._index: Dict[Hashable, int] = {}
        for i, n in enumerate(self.nodes):
            if n in self._index:
                raise ConfigurationError(f"Node '{n}' appears more than once in the topology")
            self._index[n] = i

        rows, cols = [], []
        self._downstream: Dict[int, List[int]] = {i: [] for i in range(len(self.nodes))}
        for up, down in edges:
            for n in (up, down):
                if n not in self._index:
                    raise ConfigurationError(f"Topology edge ({up!r}, {down!r}) refers to unknown node '{n}'")
            i, j = self._index[down], self._index[up]
            if i == j:
                raise ConfigurationError(f"Node '{up}' drains into itself")
            if i in self._downstream[j]:
                continue
            rows.append(i)
            cols.append(j)
            self._downstream[j].append(i)

        n = len(self.nodes)
        self.matrix = sparse.csr_matrix((np.ones(len(rows)), (rows, cols)), shape=(n, n))
        self._check_acyclic()

    def _check_acyclic(self) -> None:
        sccs = _tarjan_scc(list(range(len(self.nodes))), self._downstream)
        for scc in sccs:
            if len(scc) > 1:
                names = [self.nodes[i] for i in sorted(scc)]
                raise ConfigurationError(f"Topology has a cycle through nodes {names}")

    @classmethod
    def from_upstreams(cls, upstreams: Mapping[Hashable, Sequence[Hashable]]) -> "Topology":
        """Build from ``{node: [upstream nodes]}``; every node must be a key."""
        edges = [(up, node) for node, ups in upstreams.items() for up in ups]
        return cls(list(upstreams), edges)

    @classmethod
    def from_edges(cls, nodes: Sequence[Hashable], edges: Sequence[Tuple[Hashable, Hashable]]) -> "Topology":
        return cls(nodes, edges)

    @classmethod
    def from_flwdir(cls, flwdir: Any, positions: Sequence[Any]) -> "Topology":
        """
        Build from a D8 flow-direction grid.

        Parameters
        ----------
        flwdir : 2-D array of int
            ESRI D8 codes (1 E, 2 SE, 4 S, 8 SW, 16 W, 32 NW, 64 N, 128 NE);
            any other code marks a sink.
        positions : sequence of (row, col)
            Grid cell of each node. Nodes are identified by their position
            index. Flow leaving the node cells is dropped.
        """
        grid = np.asarray(flwdir)
        if grid.ndim != 2:
            raise ShapeError(f"Flow direction grid must be 2-D, got shape {grid.shape}")
        cells = {(int(r), int(c)): k for k, (r, c) in enumerate(positions)}
        if len(cells) != len(positions):
            raise ConfigurationError("Two nodes share the same grid cell")
        for (r, c), k in cells.items():
            if not (0 <= r < grid.shape[0] and 0 <= c < grid.shape[1]):
                raise ConfigurationError(f"Node {k} position {(r, c)} is outside the {grid.shape} grid")
        edges = []
        for (r, c), k in cells.items():
            offset = D8_OFFSETS.get(int(grid[r, c]))
            if offset is None:
                continue
            down = cells.get((r + offset[0], c + offset[1]))
            if down is not None:
                edges.append((k, down))
        return cls(list(range(len(positions))), edges)

    @property
    def n_nodes(self) -> int:
        return len(self.nodes)

    def upstreams(self, node: Hashable) -> List[Hashable]:
        i = self._index[node]
        return [self.nodes[j] for j in self.matrix[i].indices]

    @property
    def outlets(self) -> List[Hashable]:
        """Nodes draining out of the network."""
        return [self.nodes[i] for i, down in self._downstream.items() if not down]

    def aggregate(self, outflow: Any) -> np.ndarray:
        """Upstream inflow of every node; ``outflow`` has the node axis first."""
        q = np.asarray(outflow, dtype=float)
        if q.shape[:1] != (self.n_nodes,):
            raise ShapeError(f"Outflow has {q.shape[:1]} nodes, topology has {self.n_nodes}")
        return np.asarray(self.matrix @ q)
