"""Tests for HPWL and the weighted-average wirelength model."""

import numpy as np
import pytest

from gplace.acceleration import get_backend
from gplace.placement import PlacementModel, WeightedAverageWirelength, hpwl
from gplace.placement.wirelength import wirelength_coef


@pytest.fixture
def wa_setup(small_design):
    model = PlacementModel.from_database(small_design)
    rng = np.random.default_rng(11)
    mov = model.movable
    model.cx[mov] = rng.uniform(10, 90, len(mov))
    model.cy[mov] = rng.uniform(10, 90, len(mov))
    topo = model.netlist.topology()
    wa = WeightedAverageWirelength(topo, model.netlist.num_instances, get_backend(force_cpu=True))
    return model, wa


class TestHPWL:
    """Tests for the half-perimeter wirelength."""

    def test_two_nets(self):
        px = np.array([0.0, 3.0, 1.0, 1.0, 5.0])
        py = np.array([0.0, 4.0, 2.0, 7.0, 2.0])
        pin_net = np.array([0, 0, 1, 1, 1])
        assert hpwl(px, py, pin_net, 2) == pytest.approx(7.0 + 9.0)
        assert hpwl(px, py, pin_net, 2, weights=np.array([2.0, 1.0])) == pytest.approx(23.0)

    def test_single_pin_net_contributes_nothing(self):
        assert hpwl(np.array([5.0]), np.array([5.0]), np.array([0]), 1) == 0.0

    def test_empty(self):
        assert hpwl(np.array([]), np.array([]), np.array([], dtype=np.int64), 0) == 0.0


class TestWeightedAverage:
    """Tests for the smoothed wirelength and its gradient."""

    def test_gradient_matches_finite_differences(self, wa_setup):
        model, wa = wa_setup
        weights = model.net_weights()
        gamma = 4.0
        result = wa.gradient(model.cx, model.cy, weights, gamma)

        eps = 1e-5
        for i in model.movable[:4]:
            cx = model.cx.copy()
            cx[i] += eps
            plus = wa.gradient(cx, model.cy, weights, gamma).value
            cx[i] -= 2 * eps
            minus = wa.gradient(cx, model.cy, weights, gamma).value
            assert result.grad_x[i] == pytest.approx((plus - minus) / (2 * eps), rel=1e-4, abs=1e-4)

            cy = model.cy.copy()
            cy[i] += eps
            plus = wa.gradient(model.cx, cy, weights, gamma).value
            cy[i] -= 2 * eps
            minus = wa.gradient(model.cx, cy, weights, gamma).value
            assert result.grad_y[i] == pytest.approx((plus - minus) / (2 * eps), rel=1e-4, abs=1e-4)

    def test_approaches_hpwl_for_small_gamma(self, wa_setup):
        model, wa = wa_setup
        weights = model.net_weights()
        exact = model.hpwl()
        assert wa.gradient(model.cx, model.cy, weights, 1e-3).value == pytest.approx(exact, rel=1e-3)
        assert wa.gradient(model.cx, model.cy, weights, 10.0).value < exact

    def test_net_weights_scale_value(self, wa_setup):
        model, wa = wa_setup
        weights = model.net_weights()
        base = wa.gradient(model.cx, model.cy, weights, 2.0)
        doubled = wa.gradient(model.cx, model.cy, 2.0 * weights, 2.0)
        assert doubled.value == pytest.approx(2.0 * base.value)
        np.testing.assert_allclose(doubled.grad_x, 2.0 * base.grad_x)

    def test_fixed_pads_pull_but_do_not_need_gradient(self, wa_setup):
        model, wa = wa_setup
        result = wa.gradient(model.cx, model.cy, model.net_weights(), 2.0)
        assert np.all(np.isfinite(result.grad_x))
        assert result.grad_x.shape == (model.netlist.num_instances,)

    def test_pin_weight_sum(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        wa = WeightedAverageWirelength(model.netlist.topology(), 3, get_backend(force_cpu=True))
        np.testing.assert_allclose(wa.pin_weight_sum(np.array([2.0])), [2.0, 2.0, 2.0])

    def test_no_nets(self):
        from gplace.placement import Design, Instance, Rect

        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("a", 1, 1))
        model = PlacementModel.from_database(design)
        wa = WeightedAverageWirelength(model.netlist.topology(), 1, get_backend(force_cpu=True))
        result = wa.gradient(model.cx, model.cy, model.net_weights(), 1.0)
        assert result.value == 0.0
        np.testing.assert_array_equal(result.grad_x, [0.0])


class TestWirelengthCoef:
    """Tests for the overflow-dependent smoothing schedule."""

    def test_endpoints(self):
        base = 0.25 / 5.0
        assert wirelength_coef(0.25, 4.0, 6.0, 2.0) == pytest.approx(0.1 * base)
        assert wirelength_coef(0.25, 4.0, 6.0, 0.05) == pytest.approx(10.0 * base)

    def test_continuous_and_monotone(self):
        coefs = [wirelength_coef(0.25, 1.0, 1.0, ov) for ov in np.linspace(0.1, 1.0, 10)]
        assert coefs[0] == pytest.approx(2.5)
        assert coefs[-1] == pytest.approx(0.025)
        assert all(a > b for a, b in zip(coefs, coefs[1:]))
