"""Tests for the bound-to-bound initial placement."""

import numpy as np
import pytest

from gplace.config import InitialPlaceConfig
from gplace.placement import Design, InitialPlacer, Instance, Net, Pin, PlacementModel, Rect


class TestAnchoredPlacement:
    """Movable cells settle around their fixed anchors."""

    def test_collapses_onto_fixed_anchor(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        result = InitialPlacer(model).place()
        assert result.iterations >= 1
        assert not result.failures
        assert not result.degenerate
        np.testing.assert_allclose(model.cx[1:], [20.0, 20.0], atol=1e-3)
        np.testing.assert_allclose(model.cy[1:], [30.0, 30.0], atol=1e-3)
        # Fixed instance untouched
        assert (model.cx[0], model.cy[0]) == (20.0, 30.0)

    def test_chain_between_pads_is_ordered(self):
        design = Design(Rect(0, 0, 100, 100))
        design.add_instance(Instance("w", 1, 1, x=9.5, y=49.5, fixed=True))
        design.add_instance(Instance("e", 1, 1, x=89.5, y=49.5, fixed=True))
        names = ["w", "a", "b", "c", "e"]
        for name in names[1:-1]:
            design.add_instance(Instance(name, 1, 1))
        for u, v in zip(names, names[1:]):
            design.add_net(Net(f"{u}{v}", [Pin(u), Pin(v)]))
        model = PlacementModel.from_database(design)
        InitialPlacer(model).place()
        x = model.cx[2:]
        assert np.all(np.diff(x) > 0)
        assert 10.0 < x[0] < x[-1] < 90.0
        np.testing.assert_allclose(model.cy[2:], 50.0, atol=1e-3)

    def test_pin_offsets_shift_solution(self):
        design = Design(Rect(0, 0, 100, 100))
        design.add_instance(Instance("f", 2, 2, x=49, y=49, fixed=True))
        design.add_instance(Instance("a", 4, 4))
        design.add_net(Net("n", [Pin("f"), Pin("a", 2.0, -1.0)]))
        model = PlacementModel.from_database(design)
        InitialPlacer(model).place()
        assert model.cx[1] == pytest.approx(48.0, abs=1e-3)
        assert model.cy[1] == pytest.approx(51.0, abs=1e-3)

    def test_io_port_anchor(self):
        design = Design(Rect(0, 0, 100, 100))
        design.add_instance(Instance("a", 2, 2))
        design.add_net(Net("n", [Pin(None, 70.0, 20.0), Pin("a")]))
        model = PlacementModel.from_database(design)
        result = InitialPlacer(model).place()
        assert not result.degenerate
        assert model.cx[0] == pytest.approx(70.0, abs=1e-3)
        assert model.cy[0] == pytest.approx(20.0, abs=1e-3)

    def test_results_stay_inside_core(self, benchmark_design):
        model = PlacementModel.from_database(benchmark_design)
        InitialPlacer(model).place()
        mov = model.movable
        half = 0.5 * model.netlist.width[mov]
        assert np.all(model.cx[mov] - half >= model.core.lx - 1e-9)
        assert np.all(model.cx[mov] + half <= model.core.ux + 1e-9)


class TestDeterminism:
    """The sequential path is bit-reproducible."""

    def test_same_input_same_output(self, design_factory):
        a = PlacementModel.from_database(design_factory())
        b = PlacementModel.from_database(design_factory())
        InitialPlacer(a).place()
        InitialPlacer(b).place()
        np.testing.assert_array_equal(a.cx, b.cx)
        np.testing.assert_array_equal(a.cy, b.cy)


class TestDegenerateInput:
    """Unanchored components fall back to the core centre."""

    def test_isolated_cell(self):
        design = Design(Rect(0, 0, 100, 60))
        design.add_instance(Instance("lonely", 1, 1, x=3, y=3))
        model = PlacementModel.from_database(design)
        result = InitialPlacer(model).place()
        assert len(result.degenerate) == 1
        assert result.degenerate[0].instances == ["lonely"]
        assert (model.cx[0], model.cy[0]) == (50.0, 30.0)

    def test_unanchored_pair(self, anchor_design):
        anchor_design.add_instance(Instance("C", 1, 1))
        anchor_design.add_instance(Instance("D", 1, 1))
        anchor_design.add_net(Net("cd", [Pin("C"), Pin("D")]))
        model = PlacementModel.from_database(anchor_design)
        result = InitialPlacer(model).place()
        assert len(result.degenerate) == 1
        assert sorted(result.degenerate[0].instances) == ["C", "D"]
        np.testing.assert_allclose(model.cx[3:], [50.0, 50.0])
        # The anchored component still solves normally
        np.testing.assert_allclose(model.cx[1:3], [20.0, 20.0], atol=1e-3)

    def test_high_fanout_net_skipped(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        result = InitialPlacer(model, InitialPlaceConfig(max_fanout=2)).place()
        assert len(result.degenerate) == 2
        np.testing.assert_allclose(model.cx[1:], [50.0, 50.0])


class TestIterationLimits:
    """Iteration caps degrade gracefully."""

    def test_zero_iterations_leaves_cells_at_centre(self, benchmark_design):
        model = PlacementModel.from_database(benchmark_design)
        result = InitialPlacer(model, InitialPlaceConfig(max_iter=0)).place()
        assert result.iterations == 0
        np.testing.assert_allclose(model.cx[model.movable], 50.0)

    def test_solver_cap_records_failure(self, benchmark_design):
        model = PlacementModel.from_database(benchmark_design)
        config = InitialPlaceConfig(max_iter=1, max_solver_iter=1)
        result = InitialPlacer(model, config).place()
        assert result.iterations == 1
        assert result.failures
        assert result.failures[0].phase == "initial_place"
        assert np.all(np.isfinite(model.cx))

    def test_no_movable_instances(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("f", 1, 1, fixed=True))
        result = InitialPlacer(PlacementModel.from_database(design)).place()
        assert result.iterations == 0

    def test_skip_io_mode_runs(self, benchmark_design):
        model = PlacementModel.from_database(benchmark_design)
        result = InitialPlacer(model, skip_io=True).place()
        assert not result.degenerate
        assert np.all(np.isfinite(model.cx))
