"""
Tests for hydromodels.model.

Covers: wiring by name, ordering, output selection, per-component
configuration, multi-node runs, nesting.
"""

import numpy as np
import pytest
from common import EXPHYDRO_PARAMS, exphydro_buckets, forcing, linear_reservoir, stack

INIT = {"snowpack": 0.0, "soilwater": 1303.0}


def _exphydro(**kwargs):
    from hydromodels import Model

    snow, soil = exphydro_buckets()
    return Model([snow, soil], name="exphydro", **kwargs)


def _by_hand(data, soil_config=None):
    """Run the two buckets one after the other."""
    snow, soil = exphydro_buckets()
    y_snow = snow.run(stack(snow, data), EXPHYDRO_PARAMS, INIT)
    data = dict(data, **dict(zip(snow.output_names, y_snow)))
    y_soil = soil.run(stack(soil, data), EXPHYDRO_PARAMS, INIT, soil_config)
    return dict(data, **dict(zip(soil.output_names, y_soil)))


class TestWiring:
    """Test name resolution between components."""

    def test_roles(self) -> None:
        model = _exphydro()
        assert model.inputs == ("T", "P", "Ep")
        assert model.states == ("snowpack", "soilwater")
        assert model.outputs == ("snowfall", "rainfall", "melt", "evap", "baseflow", "surfaceflow", "flow")
        assert set(model.params) == set(EXPHYDRO_PARAMS)

    def test_matches_components_run_by_hand(self) -> None:
        model = _exphydro()
        data = forcing(80)
        y = model.run(stack(model, data), EXPHYDRO_PARAMS, INIT)
        assert y.shape == (9, 80)
        expected = _by_hand(data)
        for name, row in zip(model.output_names, y):
            np.testing.assert_allclose(row, expected[name], err_msg=name)

    def test_unresolvable_input(self) -> None:
        from hydromodels import ConfigurationError

        with pytest.raises(ConfigurationError, match="'Ep'.*neither a model input"):
            _exphydro(inputs=["T", "P"])

    def test_input_clashing_with_produced_name(self) -> None:
        from hydromodels import ConfigurationError

        with pytest.raises(ConfigurationError, match="melt"):
            _exphydro(inputs=["T", "P", "Ep", "melt"])

    def test_duplicate_component_names(self) -> None:
        from hydromodels import ConfigurationError, Model

        snow, _ = exphydro_buckets()
        with pytest.raises(ConfigurationError, match="'surface'"):
            Model([snow, snow])

    def test_missing_parameter_named(self) -> None:
        from hydromodels import ConfigurationError

        model = _exphydro()
        params = dict(EXPHYDRO_PARAMS)
        del params["Qmax"]
        with pytest.raises(ConfigurationError, match="'Qmax'"):
            model.run(np.zeros((3, 5)), params)

    def test_variable_index(self) -> None:
        model = _exphydro()
        index = model.variable_index()
        assert index["T"] == 0
        assert index["snowpack"] == 3
        assert index["flow"] == len(index) - 1


class TestOrdering:
    """Test component ordering."""

    def test_unordered_rejected(self) -> None:
        from hydromodels import ConfigurationError, Model

        snow, soil = exphydro_buckets()
        with pytest.raises(ConfigurationError):
            Model([soil, snow])

    def test_sort(self) -> None:
        from hydromodels import Model

        snow, soil = exphydro_buckets()
        model = Model([soil, snow], sort=True)
        assert [c.name for c in model.components] == ["surface", "soil"]


class TestOutputSelection:
    """Test choosing the returned rows."""

    def test_selected_rows_in_requested_order(self) -> None:
        full = _exphydro()
        model = _exphydro(outputs=["flow", "soilwater"])
        assert model.output_names == ("flow", "soilwater")
        assert model.states == ("soilwater",)
        assert model.outputs == ("flow",)
        data = forcing(30)
        x = stack(model, data)
        y = model.run(x, EXPHYDRO_PARAMS, INIT)
        y_full = full.run(x, EXPHYDRO_PARAMS, INIT)
        np.testing.assert_allclose(y[0], y_full[full.output_names.index("flow")])
        np.testing.assert_allclose(y[1], y_full[full.output_names.index("soilwater")])

    def test_unknown_output(self) -> None:
        from hydromodels import ConfigurationError

        with pytest.raises(ConfigurationError, match="'runoff'"):
            _exphydro(outputs=["runoff"])


class TestConfigs:
    """Test per-component run settings."""

    def test_component_config_overrides_run_config(self) -> None:
        from hydromodels import RunConfig, SolverType

        ode = RunConfig(solver=SolverType.ODE, rtol=1e-6, atol=1e-6)
        model = _exphydro(configs={"soil": ode})
        data = forcing(25, seed=3)
        y = model.run(stack(model, data), EXPHYDRO_PARAMS, INIT)
        expected = _by_hand(data, soil_config=ode)
        for name, row in zip(model.output_names, y):
            np.testing.assert_allclose(row, expected[name], err_msg=name)

    def test_unknown_component(self) -> None:
        from hydromodels import ConfigurationError, RunConfig

        with pytest.raises(ConfigurationError, match="'groundwater'"):
            _exphydro(configs={"groundwater": RunConfig()})


class TestMultiNode:
    """Test a model run over several nodes."""

    def test_nodes_independent(self) -> None:
        model = _exphydro()
        data = [forcing(30, seed=s) for s in range(3)]
        x = np.stack([stack(model, d) for d in data], axis=1)
        smax = np.array([800.0, 1200.0, 1700.0])
        params = dict(EXPHYDRO_PARAMS, Smax=smax)
        s0 = np.array([700.0, 900.0, 1100.0])
        y = model.run(x, params, {"soilwater": s0})
        assert y.shape == (9, 3, 30)
        for n in range(3):
            single = model.run(x[:, n], dict(EXPHYDRO_PARAMS, Smax=smax[n]), {"soilwater": s0[n]})
            np.testing.assert_allclose(y[:, n], single)

    def test_later_parameter_shape_checked_before_running(self) -> None:
        from hydromodels import Bucket, Flux, Model, ShapeError

        calls = []

        def rain(x):
            calls.append(x.shape)
            return x

        first = Bucket(fluxes=[Flux(outputs=["P"], inputs=["x"], func=rain)], name="rain")
        model = Model([first, linear_reservoir()])
        with pytest.raises(ShapeError, match="'k' has 3 values for 2 nodes"):
            model.run(np.ones((1, 2, 4)), {"k": [0.1, 0.2, 0.3]})
        assert calls == []

    def test_initial_state_shape_checked_before_running(self) -> None:
        from hydromodels import ShapeError

        model = _exphydro()
        x = np.ones((3, 2, 5))
        with pytest.raises(ShapeError, match="soilwater"):
            model.run(x, EXPHYDRO_PARAMS, {"soilwater": [1.0, 2.0, 3.0]})


class TestNesting:
    """Test models containing models and unit hydrographs."""

    def test_nested_model_with_routing(self) -> None:
        from hydromodels import Model, UnitHydrograph

        inner = _exphydro()
        model = Model([inner, UnitHydrograph("flow", "flow_routed", "lag")], outputs=["flow", "flow_routed"])
        assert model.inputs == inner.inputs
        assert "lag" in model.params
        data = forcing(40)
        data["P"][:] = 0.0
        data["P"][5] = 50.0
        data["T"][:] = 10.0
        y = model.run(stack(model, data), dict(EXPHYDRO_PARAMS, lag=3.0), {"soilwater": 1800.0})
        flow, routed = y
        assert routed[0] < flow[0]
        # volume still in transit at the end of the run is lost
        w = model.components[1].uhfunc.weights(3.0)
        kept = np.array([w[: 40 - i].sum() for i in range(40)])
        np.testing.assert_allclose(routed.sum(), (flow * kept).sum())

    def test_as_dict(self) -> None:
        d = _exphydro().as_dict()
        assert d["name"] == "exphydro"
        assert d["inputs"] == ["T", "P", "Ep"]
        assert d["states"] == ["snowpack", "soilwater"]
