"""Tests for the design database and the placement model."""

import numpy as np
import pytest

from gplace.exceptions import DesignError
from gplace.placement import Design, Instance, Net, PlacementDatabase, Pin, Rect
from gplace.placement.model import Netlist, PlacementModel


class TestDesign:
    """Tests for the in-memory database."""

    def test_implements_protocol(self, anchor_design):
        assert isinstance(anchor_design, PlacementDatabase)
        assert anchor_design.die() == anchor_design.core()

    def test_duplicate_instance(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("a", 1, 1))
        with pytest.raises(DesignError, match="Duplicate"):
            design.add_instance(Instance("a", 2, 2))

    def test_set_location_rejects_fixed(self, anchor_design):
        with pytest.raises(DesignError, match="fixed"):
            anchor_design.set_location("F", 0, 0)
        anchor_design.set_location("A", 3, 4)
        assert (anchor_design.instance("A").x, anchor_design.instance("A").y) == (3, 4)

    def test_unknown_instance(self, anchor_design):
        with pytest.raises(DesignError):
            anchor_design.instance("nope")


class TestNetlist:
    """Tests for building the array netlist from a database."""

    def test_centres_from_lower_left(self, anchor_design):
        netlist, cx, cy = Netlist.from_database(anchor_design)
        assert netlist.names == ("F", "A", "B")
        assert (cx[0], cy[0]) == (20.0, 30.0)
        assert (cx[1], cy[1]) == (0.5, 0.5)
        np.testing.assert_array_equal(netlist.movable, [1, 2])
        np.testing.assert_array_equal(netlist.net_ptr, [0, 3])

    def test_arrays_are_read_only(self, anchor_design):
        netlist, _, _ = Netlist.from_database(anchor_design)
        with pytest.raises(ValueError):
            netlist.width[0] = 5.0

    def test_empty_core(self):
        with pytest.raises(DesignError, match="Core area is empty"):
            Netlist.from_database(Design(Rect(0, 0, 0, 10)))

    def test_unknown_pin_instance(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("a", 1, 1))
        design.add_net(Net("n", [Pin("a"), Pin("ghost")]))
        with pytest.raises(DesignError, match="unknown instance"):
            Netlist.from_database(design)

    def test_negative_size(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("a", -1, 1))
        with pytest.raises(DesignError, match="negative size"):
            Netlist.from_database(design)

    def test_non_positive_net_weight(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("a", 1, 1))
        design.add_instance(Instance("b", 1, 1))
        design.add_net(Net("n", [Pin("a"), Pin("b")], weight=0.0))
        with pytest.raises(DesignError, match="weight"):
            Netlist.from_database(design)

    def test_io_instance_counts_as_fixed(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("pad", 1, 1, is_io=True))
        netlist, _, _ = Netlist.from_database(design)
        assert netlist.fixed[0]
        assert len(netlist.movable) == 0


class TestTopology:
    """Tests for the wirelength pin topology."""

    @pytest.fixture
    def netlist(self):
        design = Design(Rect(0, 0, 100, 100))
        design.add_instance(Instance("pad", 1, 1, x=0, y=50, is_io=True))
        design.add_instance(Instance("a", 1, 1))
        design.add_instance(Instance("b", 1, 1))
        design.add_net(Net("io", [Pin("pad"), Pin("a")]))
        design.add_net(Net("ab", [Pin("a"), Pin("b")]))
        design.add_net(Net("single", [Pin("b")]))
        design.add_net(Net("port", [Pin(None, 100, 20), Pin("b")]))
        netlist, _, _ = Netlist.from_database(design)
        return netlist

    def test_single_pin_nets_dropped(self, netlist):
        topo = netlist.topology()
        np.testing.assert_array_equal(topo.net_ids, [0, 1, 3])
        np.testing.assert_array_equal(topo.net_ptr, [0, 2, 4, 6])
        assert topo.pin_inst[4] == -1

    def test_skip_io_removes_io_pins(self, netlist):
        topo = netlist.topology(skip_io=True)
        np.testing.assert_array_equal(topo.net_ids, [1])
        np.testing.assert_array_equal(topo.pin_inst, [1, 2])
        np.testing.assert_array_equal(topo.pin_net, [0, 0])


class TestPlacementModel:
    """Tests for the mutable placement store."""

    def test_pin_positions_include_offsets_and_ports(self):
        design = Design(Rect(0, 0, 100, 100))
        design.add_instance(Instance("a", 2, 2, x=10, y=10))
        design.add_net(Net("n", [Pin("a", 1.0, -0.5), Pin(None, 90.0, 80.0)]))
        model = PlacementModel.from_database(design)
        px, py = model.pin_positions()
        np.testing.assert_allclose(px, [12.0, 90.0])
        np.testing.assert_allclose(py, [10.5, 80.0])
        assert model.hpwl() == pytest.approx(78.0 + 69.5)

    def test_clamp_keeps_boxes_inside_core(self):
        model = PlacementModel.from_database(Design(Rect(0, 0, 100, 50)))
        x, y = model.clamp(
            np.array([-10.0, 50.0, 200.0]),
            np.array([-10.0, 25.0, 200.0]),
            np.array([4.0, 4.0, 120.0]),
            np.array([2.0, 2.0, 2.0]),
        )
        np.testing.assert_allclose(x, [2.0, 50.0, 50.0])
        np.testing.assert_allclose(y, [1.0, 25.0, 49.0])

    def test_clamp_instances_moves_only_movable(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        model.cx[:] = -50.0
        model.clamp_instances()
        assert model.cx[0] == -50.0
        np.testing.assert_allclose(model.cx[1:], [0.5, 0.5])

    def test_areas_and_uniform_density(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("blk", 5, 10, x=0, y=0, fixed=True))
        design.add_instance(Instance("outside", 4, 4, x=20, y=20, fixed=True))
        design.add_instance(Instance("a", 3, 3))
        model = PlacementModel.from_database(design)
        assert model.movable_area() == pytest.approx(9.0)
        assert model.fixed_area_in_core() == pytest.approx(50.0)
        assert model.white_space_area() == pytest.approx(50.0)
        assert model.uniform_target_density() == pytest.approx(0.18)

    def test_net_weights_combine_base_and_timing(self):
        design = Design(Rect(0, 0, 10, 10))
        design.add_instance(Instance("a", 1, 1))
        design.add_instance(Instance("b", 1, 1))
        design.add_net(Net("n", [Pin("a"), Pin("b")], weight=2.0))
        model = PlacementModel.from_database(design)
        model.timing_weight[0] = 1.5
        np.testing.assert_allclose(model.net_weights(), [3.0])

    def test_snapshot_is_read_only_copy(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        snap = model.snapshot()
        with pytest.raises(ValueError):
            snap.x[1] = 99.0
        model.cx[1] = 42.0
        assert snap.x[1] == 0.5
        xs, ys = snap.net_pins(0)
        assert len(xs) == 3

    def test_write_back_uses_lower_left(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        model.cx[1], model.cy[1] = 40.0, 60.0
        model.write_back(anchor_design)
        inst = anchor_design.instance("A")
        assert (inst.x, inst.y) == (39.5, 59.5)
        assert (anchor_design.instance("F").x, anchor_design.instance("F").y) == (19, 29)

    def test_write_back_refuses_nan(self, anchor_design):
        model = PlacementModel.from_database(anchor_design)
        model.cx[1] = np.nan
        with pytest.raises(DesignError):
            model.write_back(anchor_design)
