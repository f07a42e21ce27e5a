"""Tests for the bin grid and the electrostatic density model."""

import numpy as np
import pytest

from gplace.placement import BinGrid, Design, DensityModel, Instance, PlacementModel, Rect


def _block_model(n: int = 4, size: float = 10.0, fixed: list | None = None) -> PlacementModel:
    design = Design(Rect(0, 0, 100, 100))
    for i in range(n):
        design.add_instance(Instance(f"c{i}", size, size))
    for k, (x, y, w, h) in enumerate(fixed or []):
        design.add_instance(Instance(f"m{k}", w, h, x=x, y=y, fixed=True))
    return PlacementModel.from_database(design)


class TestBinGrid:
    """Tests for the uniform bin grid."""

    def test_bins_tile_the_core(self):
        grid = BinGrid(Rect(3, 7, 103.3, 57.1), 7, 5)
        assert grid.bin_area.shape == (7, 5)
        assert float(np.sum(grid.bin_area)) == pytest.approx(grid.core.area)
        assert grid.edges_x[-1] == 103.3
        assert grid.edges_y[-1] == 57.1

    def test_bin_index_clips(self):
        grid = BinGrid(Rect(0, 0, 10, 10), 5, 5)
        ix, iy = grid.bin_index(np.array([-1.0, 0.0, 3.9, 10.0]), np.array([5.0, 5.0, 5.0, 5.0]))
        np.testing.assert_array_equal(ix, [0, 0, 1, 4])
        np.testing.assert_array_equal(iy, [2, 2, 2, 2])

    def test_rejects_empty_grid(self):
        with pytest.raises(ValueError):
            BinGrid(Rect(0, 0, 10, 10), 0, 4)

    def test_auto_square(self):
        grid = BinGrid.auto(Rect(0, 0, 100, 100), avg_cell_area=100.0, target_density=0.5)
        assert (grid.nx, grid.ny) == (4, 4)

    def test_auto_stretches_long_side(self):
        grid = BinGrid.auto(Rect(0, 0, 400, 100), avg_cell_area=1.0, target_density=1.0)
        assert grid.nx == 4 * grid.ny

    def test_auto_without_cells(self):
        grid = BinGrid.auto(Rect(0, 0, 100, 100), avg_cell_area=0.0, target_density=0.7)
        assert (grid.nx, grid.ny) == (2, 2)


class TestFillers:
    """Tests for filler sizing."""

    def test_filler_count_fills_target_white_space(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.5)
        assert density.filler_w == pytest.approx(10.0)
        assert density.num_fillers == 46
        x, y = density.initial_cell_positions()
        assert len(x) == density.num_cells == 50

    def test_no_fillers_when_already_dense(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.04)
        assert density.num_fillers == 0

    def test_fillers_are_seeded(self):
        model = _block_model()
        a = DensityModel(model, BinGrid(model.core, 10, 10), 0.5).initial_cell_positions()
        b = DensityModel(model, BinGrid(model.core, 10, 10), 0.5).initial_cell_positions()
        np.testing.assert_array_equal(a[0], b[0])

    def test_fillers_keep_size_after_inflation(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.5)
        model.inflation[model.movable] = 2.0
        w, h = density.cell_sizes()
        assert density.movable_area() == pytest.approx(800.0)
        assert density.filler_area() == pytest.approx(4600.0)
        assert float(np.sum(w * h)) == pytest.approx(5400.0)

    def test_raised_target_lowers_overflow(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.5)
        # One cell filling each of four bins
        x = np.array([15.0, 35.0, 55.0, 75.0])
        y = np.full(4, 15.0)
        assert density.overflow(x, y) == pytest.approx(0.5)
        density.set_target_density(1.0)
        assert density.target_density == 1.0
        assert density.overflow(x, y) == pytest.approx(0.0)

    def test_padding_widens_cells(self):
        model = _block_model(n=1)
        density = DensityModel(model, BinGrid(model.core, 10, 10), 0.5, pad_left=1.0, pad_right=2.0)
        w, h = density.movable_sizes()
        assert w[0] == pytest.approx(13.0)
        assert h[0] == pytest.approx(10.0)


class TestOverflow:
    """Tests for bin density and overflow."""

    def test_stacked_cells_overflow(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.5)
        x = np.full(4, 55.0)
        assert density.overflow(x, x) == pytest.approx(350.0 / 400.0)

    def test_spread_cells_overflow_less(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.5)
        x = np.array([15.0, 35.0, 55.0, 75.0])
        assert density.overflow(x, x) == pytest.approx(0.5)
        assert density.overflow(x, x) < density.overflow(np.full(4, 55.0), np.full(4, 55.0))

    def test_fixed_map_capped_at_bin_area(self):
        model = _block_model(n=1, fixed=[(0, 0, 20, 20), (0, 0, 20, 20)])
        density = DensityModel(model, BinGrid(model.core, 10, 10), target_density=0.5)
        assert float(np.max(density.fixed_map)) == pytest.approx(100.0)
        bins = density.bin_density(np.array([95.0]), np.array([95.0]))
        assert bins[0, 0] == pytest.approx(1.0)
        assert bins[9, 9] == pytest.approx(1.0)

    def test_no_movable_area(self):
        model = _block_model(n=0)
        density = DensityModel(model, BinGrid(model.core, 4, 4), target_density=0.7)
        assert density.overflow(np.zeros(0), np.zeros(0)) == 0.0
        assert density.num_cells == 0
        assert density.gradient(np.zeros(0), np.zeros(0)).energy == 0.0


class TestGradient:
    """Tests for the electrostatic gradient."""

    @pytest.fixture
    def density(self):
        model = _block_model(n=2)
        return DensityModel(model, BinGrid(model.core, 16, 16), target_density=0.02)

    def test_symmetric_pair_pushed_apart(self, density):
        assert density.num_fillers == 0
        grad = density.gradient(np.array([40.0, 60.0]), np.array([50.0, 50.0]))
        # Descent moves the left cell left and the right cell right
        assert grad.grad_x[0] > 0
        assert grad.grad_x[1] == pytest.approx(-grad.grad_x[0], rel=1e-9, abs=1e-9)
        assert grad.grad_y[0] == pytest.approx(0.0, abs=1e-9 * abs(grad.grad_x[0]))
        np.testing.assert_allclose(grad.charge, [100.0, 100.0])

    def test_centred_cell_feels_no_force(self):
        model = _block_model(n=1)
        density = DensityModel(model, BinGrid(model.core, 16, 16), target_density=0.01)
        grad = density.gradient(np.array([50.0]), np.array([50.0]))
        assert grad.grad_x[0] == pytest.approx(0.0, abs=1e-9)
        assert grad.grad_y[0] == pytest.approx(0.0, abs=1e-9)

    def test_stacked_energy_exceeds_spread(self):
        model = _block_model()
        density = DensityModel(model, BinGrid(model.core, 16, 16), target_density=0.04)
        stacked = density.gradient(np.full(4, 50.0), np.full(4, 50.0))
        spread = density.gradient(np.array([20.0, 80.0, 20.0, 80.0]), np.array([20.0, 20.0, 80.0, 80.0]))
        assert stacked.energy > spread.energy

    def test_small_cells_are_smoothed(self):
        model = _block_model(n=2, size=1.0)
        density = DensityModel(model, BinGrid(model.core, 16, 16), target_density=0.0002)
        grad = density.gradient(np.array([45.0, 55.0]), np.array([50.0, 50.0]))
        assert np.all(np.isfinite(grad.grad_x))
        assert grad.grad_x[0] > 0 > grad.grad_x[1]
        # Charge reports the unsmoothed area
        np.testing.assert_allclose(grad.charge, [1.0, 1.0])
