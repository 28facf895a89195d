"""
Tests for the function compiler backends.

Covers: numpy evaluation, casadi parity and sensitivities, caching,
argument validation.
"""

from functools import partial

import numpy as np
import pytest


def _soil_fluxes():
    from hydromodels import exp, flux, max_, min_, parameters, variables

    S, Ep, evap, base, flow = variables("S Ep evap base flow")
    Smax, Qmax, f = parameters("Smax Qmax f")
    return [
        flux({evap: Ep * min_(1.0, S / Smax)}),
        flux({base: Qmax * exp(-f * max_(0.0, Smax - S))}),
        flux({flow: base + max_(0.0, S - Smax)}),
    ]


PARAMS = {"Smax": 100.0, "Qmax": 10.0, "f": 0.05}


def _lookup(table, x):
    return table[1000] + 0.0 * x


def _tables():
    """Two large arrays with equal reprs."""
    a, b = np.zeros(2000), np.zeros(2000)
    b[1000] = 7.0
    return a, b


class TestNumpyBackend:
    """Test the closure compiler."""

    def test_chained_outputs(self) -> None:
        from hydromodels import compile_fluxes

        fn = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["evap", "base", "flow"])
        x = np.array([[50.0, 150.0], [2.0, 2.0]])
        y = fn(x, PARAMS)
        np.testing.assert_allclose(y[0], [1.0, 2.0])
        np.testing.assert_allclose(y[1], [10.0 * np.exp(-2.5), 10.0])
        np.testing.assert_allclose(y[2], y[1] + [0.0, 50.0])

    def test_inputs_can_be_requested(self) -> None:
        from hydromodels import compile_fluxes

        fn = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["S", "flow"])
        y = fn(np.array([[10.0], [1.0]]), PARAMS)
        assert y.shape == (2, 1)
        assert y[0, 0] == 10.0

    def test_per_node_parameters_broadcast(self) -> None:
        from hydromodels import compile_fluxes

        fn = compile_fluxes(_soil_fluxes()[:1], ["S", "Ep"], ["evap"])
        x = np.ones((2, 3, 4))
        params = {"Smax": np.array([1.0, 2.0, 4.0]).reshape(3, 1)}
        y = fn(x, params)
        np.testing.assert_allclose(y[0, :, 0], [1.0, 0.5, 0.25])

    def test_function_flux(self) -> None:
        from hydromodels import Flux, compile_fluxes

        f = Flux(outputs=["lo", "hi"], inputs=["x"], params=["k"], func=lambda x, k: (x - k, x + k))
        y = compile_fluxes([f], ["x"], ["hi", "lo"])(np.array([[1.0, 2.0]]), {"k": 0.5})
        np.testing.assert_allclose(y, [[1.5, 2.5], [0.5, 1.5]])

    def test_division_by_zero_propagates(self) -> None:
        from hydromodels import compile_fluxes, flux, variables

        x, y = variables("x y")
        fn = compile_fluxes([flux({y: 1.0 / x})], ["x"], ["y"])
        out = fn(np.array([[0.0, 2.0]]), {})
        assert np.isinf(out[0, 0])
        assert out[0, 1] == 0.5


class TestValidation:
    """Test errors raised at compile and call time."""

    def test_missing_parameter_named(self) -> None:
        from hydromodels import ConfigurationError, compile_fluxes

        fn = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["flow"])
        with pytest.raises(ConfigurationError, match="Missing value for parameter 'Qmax'"):
            fn(np.ones((2, 1)), {"Smax": 1.0, "f": 1.0})

    def test_unavailable_input(self) -> None:
        from hydromodels import ConfigurationError, compile_fluxes

        with pytest.raises(ConfigurationError, match="reads 'Ep'"):
            compile_fluxes(_soil_fluxes(), ["S"], ["evap"])

    def test_unknown_output(self) -> None:
        from hydromodels import ConfigurationError, compile_fluxes

        with pytest.raises(ConfigurationError, match="'runoff'"):
            compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["runoff"])

    def test_row_count_checked(self) -> None:
        from hydromodels import ShapeError, compile_fluxes

        fn = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["flow"])
        with pytest.raises(ShapeError):
            fn(np.ones((3, 1)), PARAMS)


class TestCasadiBackend:
    """Test the symbolic backend against numpy."""

    def test_matches_numpy(self) -> None:
        from hydromodels import Backend, compile_fluxes

        rng = np.random.default_rng(1)
        x = np.stack([rng.uniform(0.0, 200.0, (3, 5)), rng.uniform(0.0, 3.0, (3, 5))])
        names = ["evap", "base", "flow"]
        y_np = compile_fluxes(_soil_fluxes(), ["S", "Ep"], names)(x, PARAMS)
        y_ca = compile_fluxes(_soil_fluxes(), ["S", "Ep"], names, Backend.CASADI)(x, PARAMS)
        assert y_ca.shape == (3, 3, 5)
        np.testing.assert_allclose(y_ca, y_np, rtol=1e-10)

    def test_if_else_and_relations(self) -> None:
        from hydromodels import Backend, compile_fluxes, flux, if_else, variables

        x, y = variables("x y")
        fluxes = [flux({y: if_else((x > 1.0) & (x <= 3.0), x, -x)})]
        xs = np.array([[0.0, 2.0, 5.0]])
        expected = [[0.0, 2.0, -5.0]]
        for backend in (Backend.NUMPY, Backend.CASADI):
            np.testing.assert_allclose(compile_fluxes(fluxes, ["x"], ["y"], backend)(xs, {}), expected)

    def test_parameter_jacobian(self) -> None:
        from hydromodels import Backend, compile_fluxes, flux, parameters, variables

        S, Q = variables("S Q")
        k, c = parameters("k c")
        fn = compile_fluxes([flux({Q: k * S**2 + c})], ["S"], ["Q"], Backend.CASADI)
        jac = fn.jacobian_params(np.array([3.0]), {"k": 0.5, "c": 1.0})
        np.testing.assert_allclose(jac, [[9.0, 1.0]])

    def test_rejects_neural_flux(self) -> None:
        from hydromodels import Backend, ConfigurationError, NeuralFlux, compile_fluxes

        nf = NeuralFlux(inputs=["a"], outputs=["b"], nn_name="net", func=lambda x, w: x)
        with pytest.raises(ConfigurationError, match="CasADi"):
            compile_fluxes([nf], ["a"], ["b"], Backend.CASADI)


class TestCache:
    """Test reuse of compiled functions."""

    def test_structurally_equal_fluxes_share_function(self) -> None:
        from hydromodels import compile_fluxes

        a = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["flow"])
        b = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["flow"])
        assert a is b

    def test_signature_is_part_of_key(self) -> None:
        from hydromodels import Backend, compile_fluxes

        a = compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["flow"])
        assert compile_fluxes(_soil_fluxes(), ["Ep", "S"], ["flow"]) is not a
        assert compile_fluxes(_soil_fluxes(), ["S", "Ep"], ["flow"], Backend.CASADI) is not a

    def test_functions_with_equal_repr_compiled_separately(self) -> None:
        from hydromodels import Flux, compile_fluxes

        a, b = _tables()
        fa = Flux(outputs=("y",), inputs=("x",), func=partial(_lookup, a))
        fb = Flux(outputs=("y",), inputs=("x",), func=partial(_lookup, b))
        assert repr(fa.func) == repr(fb.func)
        x = np.zeros((1, 3))
        np.testing.assert_array_equal(compile_fluxes([fa], ["x"], ["y"])(x, {}), [[0.0, 0.0, 0.0]])
        np.testing.assert_array_equal(compile_fluxes([fb], ["x"], ["y"])(x, {}), [[7.0, 7.0, 7.0]])

    def test_same_function_shares_entry(self) -> None:
        from hydromodels import Flux, compile_fluxes

        func = partial(_lookup, _tables()[1])
        a = compile_fluxes([Flux(outputs=("y",), inputs=("x",), func=func)], ["x"], ["y"])
        b = compile_fluxes([Flux(outputs=("y",), inputs=("x",), func=func)], ["x"], ["y"])
        assert a is b
