"""
Tests for hydromodels.aggregation and hydromodels.route.

Covers: topology construction and validation, outflow aggregation,
network routing with simultaneous coupling.
"""

import numpy as np
import pytest


def _linear_route(topology, name="channel"):
    """Each node: q_out = k S, dS = runoff + q_in - q_out."""
    from hydromodels import Route, flux, parameters, state_flux, variables

    S, runoff, q_in, q_out = variables("S runoff q_in q_out")
    k = parameters("k")
    return Route(
        rfluxes=[flux({q_out: k * S})],
        dfluxes=[state_flux(S, runoff + q_in - q_out)],
        topology=topology,
        name=name,
    )


def _tree():
    """a, b -> c -> d; e -> d"""
    from hydromodels import Topology

    return Topology.from_upstreams({"a": [], "b": [], "c": ["a", "b"], "e": [], "d": ["c", "e"]})


class TestTopology:
    """Test network construction."""

    def test_from_upstreams(self) -> None:
        topo = _tree()
        assert topo.nodes == ("a", "b", "c", "e", "d")
        assert sorted(topo.upstreams("c")) == ["a", "b"]
        assert topo.upstreams("a") == []
        assert topo.outlets == ["d"]

    def test_from_edges_matches_upstreams(self) -> None:
        from hydromodels import Topology

        edges = [("a", "c"), ("b", "c"), ("c", "d"), ("e", "d")]
        topo = Topology.from_edges(["a", "b", "c", "e", "d"], edges)
        np.testing.assert_array_equal(topo.matrix.toarray(), _tree().matrix.toarray())

    def test_aggregate_headwaters_receive_zero(self) -> None:
        topo = _tree()
        q_in = topo.aggregate(np.array([1.0, 2.0, 3.0, 4.0, 5.0]))
        np.testing.assert_allclose(q_in, [0.0, 0.0, 3.0, 0.0, 7.0])

    def test_aggregate_with_time_axis(self) -> None:
        topo = _tree()
        q = np.arange(10.0).reshape(5, 2)
        assert topo.aggregate(q).shape == (5, 2)

    def test_duplicate_edges_counted_once(self) -> None:
        from hydromodels import Topology

        topo = Topology(["x", "y"], [("x", "y"), ("x", "y")])
        np.testing.assert_allclose(topo.aggregate(np.array([1.0, 0.0])), [0.0, 1.0])

    def test_cycle_rejected(self) -> None:
        from hydromodels import ConfigurationError, Topology

        with pytest.raises(ConfigurationError, match="cycle"):
            Topology.from_upstreams({"a": ["c"], "b": ["a"], "c": ["b"]})

    def test_unknown_node_rejected(self) -> None:
        from hydromodels import ConfigurationError, Topology

        with pytest.raises(ConfigurationError, match="unknown node 'z'"):
            Topology(["a"], [("a", "z")])

    def test_self_drain_rejected(self) -> None:
        from hydromodels import ConfigurationError, Topology

        with pytest.raises(ConfigurationError, match="into itself"):
            Topology(["a"], [("a", "a")])

    def test_from_flwdir(self) -> None:
        from hydromodels import Topology

        # 0 drains E into 1, 1 drains S into 2, 3 drains W into 2
        grid = np.array(
            [
                [1, 4, 0],
                [0, 0, 16],
            ]
        )
        positions = [(0, 0), (0, 1), (1, 1), (1, 2)]
        topo = Topology.from_flwdir(grid, positions)
        assert topo.upstreams(1) == [0]
        assert sorted(topo.upstreams(2)) == [1, 3]
        assert topo.outlets == [2]

    def test_from_flwdir_position_outside_grid(self) -> None:
        from hydromodels import ConfigurationError, Topology

        with pytest.raises(ConfigurationError, match="outside"):
            Topology.from_flwdir(np.zeros((2, 2), dtype=int), [(0, 0), (2, 0)])


class TestRoute:
    """Test routing runs over a topology."""

    def test_roles(self) -> None:
        route = _linear_route(_tree())
        assert route.states == ("S",)
        assert route.outputs == ("q_out", "q_in")
        assert route.inputs == ("runoff",)
        assert route.params == ("k",)

    def test_single_node_is_a_bucket(self) -> None:
        from common import linear_reservoir

        from hydromodels import Topology

        route = _linear_route(Topology(["only"]))
        P = np.random.default_rng(0).random(15)
        y = route.run(P[None, None], {"k": 0.3}, {"S": 2.0})
        b = linear_reservoir().run(P[None], {"k": 0.3}, {"S": 2.0})
        np.testing.assert_allclose(y[0, 0], b[0])
        np.testing.assert_allclose(y[1, 0], b[1])
        np.testing.assert_allclose(y[2, 0], 0.0)

    def test_inflow_is_simultaneous(self) -> None:
        from hydromodels import Topology

        topo = Topology.from_upstreams({"up": [], "down": ["up"]})
        route = _linear_route(topo)
        x = np.zeros((1, 2, 3))
        y = route.run(x, {"k": 0.5}, {"S": [4.0, 0.0]})
        S, q_out, q_in = y
        np.testing.assert_allclose(S[0], [4.0, 2.0, 1.0])
        # down receives up's outflow of the same step
        np.testing.assert_allclose(q_in[1], q_out[0])
        np.testing.assert_allclose(S[1, 1], 2.0)

    def test_network_conserves_mass(self) -> None:
        topo = _tree()
        route = _linear_route(topo)
        rng = np.random.default_rng(7)
        n_time = 40
        runoff = rng.random((1, 5, n_time))
        y = route.run(runoff, {"k": [0.2, 0.3, 0.4, 0.5, 0.6]}, {"S": 1.0})
        S, q_out, _ = y
        outlet = topo.nodes.index("d")
        storage_change = S[:, -1].sum() - S[:, 0].sum()
        net_input = runoff[0, :, :-1].sum() - q_out[outlet, :-1].sum()
        np.testing.assert_allclose(storage_change, net_input, rtol=1e-10)

    def test_node_count_checked(self) -> None:
        from hydromodels import ShapeError

        route = _linear_route(_tree())
        with pytest.raises(ShapeError, match="5 nodes"):
            route.run(np.zeros((1, 3, 4)), {"k": 0.1})

    def test_rflux_reading_inflow_rejected(self) -> None:
        from hydromodels import ConfigurationError, Route, flux, state_flux, variables

        S, q_in, q_out = variables("S q_in q_out")
        with pytest.raises(ConfigurationError, match="reads inflow"):
            Route(
                rfluxes=[flux({q_out: 0.5 * (S + q_in)})],
                dfluxes=[state_flux(S, q_in - q_out)],
                topology=_tree(),
            )

    def test_outflow_must_be_produced(self) -> None:
        from hydromodels import ConfigurationError, Route, flux, state_flux, variables

        S, q_out = variables("S q_out")
        with pytest.raises(ConfigurationError, match="outflow 'discharge'"):
            Route(
                rfluxes=[flux({q_out: 0.1 * S})],
                dfluxes=[state_flux(S, -q_out)],
                topology=_tree(),
                outflow="discharge",
            )

    def test_ode_solver(self) -> None:
        from hydromodels import RunConfig, SolverType, Topology

        topo = Topology.from_upstreams({"up": [], "down": ["up"]})
        route = _linear_route(topo)
        ts = np.linspace(0.0, 4.0, 9)
        config = RunConfig(solver=SolverType.ODE, timeidx=ts, rtol=1e-8, atol=1e-10)
        y = route.run(np.zeros((1, 2, 9)), {"k": 1.0}, {"S": [1.0, 0.0]}, config)
        # up: e^-t, down: t e^-t
        np.testing.assert_allclose(y[0, 0], np.exp(-ts), rtol=1e-5, atol=1e-8)
        np.testing.assert_allclose(y[0, 1], ts * np.exp(-ts), rtol=1e-5, atol=1e-8)
