"""
Electrostatic density model.

Cells are positive charges on a uniform bin grid over the core. The charge
map is expanded on a cosine basis, which solves Poisson's equation with
Neumann boundary conditions, and each cell feels the electric field
integrated over the bins it overlaps. Fixed instances contribute a static
charge; filler cells soak up white space so spreading stops at the target
density.

Example::

    grid = BinGrid(core, 64, 64)
    density = DensityModel(model, grid, target_density=0.7)
    x, y = density.initial_cell_positions()
    grad = density.gradient(x, y)
    overflow = density.overflow(x[: model.num_movable], y[: model.num_movable])
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from gplace.acceleration import ArrayBackend, get_backend
from gplace.placement.design import Rect
from gplace.placement.model import PlacementModel

logger = logging.getLogger(__name__)

SQRT2 = math.sqrt(2.0)

# Fillers are sized from this slice of the sorted movable dimensions
FILLER_TRIM = 0.1

FILLER_SEED = 1337


class BinGrid:
    """Uniform ``nx`` by ``ny`` grid that exactly tiles the core.

    Edges come from ``linspace`` over the core bounds with the last edge
    pinned to the upper bound, so no area is lost to rounding.
    """

    def __init__(self, core: Rect, nx: int, ny: int):
        if nx < 1 or ny < 1:
            raise ValueError(f"Bin grid needs at least one bin per axis, got {nx}x{ny}")
        self.core = core
        self.nx = nx
        self.ny = ny
        self.edges_x = np.linspace(core.lx, core.ux, nx + 1)
        self.edges_y = np.linspace(core.ly, core.uy, ny + 1)
        self.edges_x[-1] = core.ux
        self.edges_y[-1] = core.uy

    @property
    def bin_w(self) -> float:
        return self.core.width / self.nx

    @property
    def bin_h(self) -> float:
        return self.core.height / self.ny

    @property
    def bin_area(self) -> NDArray[np.float64]:
        """Area of every bin, shape (nx, ny)."""
        return np.outer(np.diff(self.edges_x), np.diff(self.edges_y))

    @property
    def centers_x(self) -> NDArray[np.float64]:
        return 0.5 * (self.edges_x[:-1] + self.edges_x[1:])

    @property
    def centers_y(self) -> NDArray[np.float64]:
        return 0.5 * (self.edges_y[:-1] + self.edges_y[1:])

    def bin_index(self, x: NDArray, y: NDArray) -> tuple[NDArray[np.int64], NDArray[np.int64]]:
        """Bin containing each point (points outside are clipped to the grid)."""
        ix = np.clip(np.searchsorted(self.edges_x, x, side="right") - 1, 0, self.nx - 1)
        iy = np.clip(np.searchsorted(self.edges_y, y, side="right") - 1, 0, self.ny - 1)
        return ix, iy

    @classmethod
    def auto(cls, core: Rect, avg_cell_area: float, target_density: float) -> BinGrid:
        """Pick a power-of-two grid with roughly one average cell per bin.

        The per-axis count is the largest power of two whose square fits the
        ideal bin count, then stretched along the longer core side.
        """
        if avg_cell_area <= 0:
            return cls(core, 2, 2)
        ideal_bin_area = avg_cell_area / target_density
        ideal_count = core.area / ideal_bin_area
        found = 2
        while found * 2 <= 1024 and (found * 2) ** 2 <= ideal_count:
            found *= 2
        nx = ny = found
        ratio = core.width / core.height
        if ratio >= 2.0:
            nx = min(1024, found * 2 ** int(round(math.log2(ratio))))
        elif ratio <= 0.5:
            ny = min(1024, found * 2 ** int(round(math.log2(1.0 / ratio))))
        logger.info(f"Automatic bin grid: {nx} x {ny} (ideal bin count {ideal_count:.0f})")
        return cls(core, nx, ny)

    def __repr__(self) -> str:
        return f"BinGrid({self.nx}x{self.ny}, bin={self.bin_w:g}x{self.bin_h:g})"


class ElectrostaticSolver:
    """Cosine-basis Poisson solver on a bin grid.

    All basis matrices are precomputed; one solve is four small matrix
    products per quantity.
    """

    def __init__(self, grid: BinGrid, backend: ArrayBackend):
        self.grid = grid
        self.backend = backend
        xp = backend.xp
        nx, ny = grid.nx, grid.ny
        kx = np.pi * np.arange(nx) / grid.core.width
        ky = np.pi * np.arange(ny) / grid.core.height
        xc = (np.arange(nx) + 0.5) * grid.bin_w
        yc = (np.arange(ny) + 0.5) * grid.bin_h

        cu = np.full(nx, 2.0)
        cu[0] = 1.0
        cv = np.full(ny, 2.0)
        cv[0] = 1.0

        k2 = kx[:, None] ** 2 + ky[None, :] ** 2
        k2[0, 0] = 1.0
        inv_k2 = 1.0 / k2
        inv_k2[0, 0] = 0.0

        self._cos_x = backend.array(np.cos(np.outer(kx, xc)))
        self._sin_x = backend.array(np.sin(np.outer(kx, xc)))
        self._cos_y = backend.array(np.cos(np.outer(ky, yc)))
        self._sin_y = backend.array(np.sin(np.outer(ky, yc)))
        self._norm = backend.array(np.outer(cu, cv) / (nx * ny))
        self._inv_k2 = backend.array(inv_k2)
        self._kx = backend.array(kx[:, None])
        self._ky = backend.array(ky[None, :])
        self._xp = xp

    def solve(self, rho: Any) -> tuple[Any, Any, Any]:
        """Potential and field for a density map.

        Args:
            rho: Density per bin (area / bin area), shape (nx, ny).

        Returns:
            (psi, field_x, field_y), each (nx, ny) on the backend.
        """
        coef = self._norm * (self._cos_x @ rho @ self._cos_y.T)
        phi = coef * self._inv_k2
        psi = self._cos_x.T @ phi @ self._cos_y
        field_x = self._sin_x.T @ (phi * self._kx) @ self._cos_y
        field_y = self._cos_x.T @ (phi * self._ky) @ self._sin_y
        return psi, field_x, field_y


@dataclass
class DensityGradient:
    """Density gradient for all optimizer cells.

    Attributes:
        grad_x: dD/dx per cell.
        grad_y: dD/dy per cell.
        charge: Charge (weighted area) per cell, for preconditioning.
        energy: Electrostatic energy of the placement.
    """

    grad_x: NDArray[np.float64]
    grad_y: NDArray[np.float64]
    charge: NDArray[np.float64]
    energy: float


def _overlap_windows(xp: Any, lo: Any, hi: Any, edges: Any, span: int) -> tuple[Any, Any]:
    """Bins overlapped by each interval, as fixed-width windows.

    Returns ``(index, overlap)`` of shape (n, span); windows past the last
    bin carry zero overlap.
    """
    nb = len(edges) - 1
    first = xp.clip(xp.searchsorted(edges, lo, side="right") - 1, 0, nb - 1)
    idx = first[:, None] + xp.arange(span)[None, :]
    valid = idx < nb
    idx = xp.minimum(idx, nb - 1)
    ov = xp.minimum(hi[:, None], edges[idx + 1]) - xp.maximum(lo[:, None], edges[idx])
    ov = xp.clip(ov, 0.0, None) * valid
    return idx, ov


class DensityModel:
    """Bin occupancy, overflow and electrostatic gradient.

    Optimizer cells are the movable instances (in model order) followed by
    the fillers. Movable cell sizes include density padding and the
    routability inflation ratio stored on the model.

    Args:
        model: Placement model.
        grid: Bin grid over the core.
        target_density: Target utilisation per bin.
        backend: Array backend (CPU when omitted).
        pad_left: Density padding on the left of movable cells.
        pad_right: Density padding on the right of movable cells.
        seed: Seed for filler placement.
    """

    def __init__(
        self,
        model: PlacementModel,
        grid: BinGrid,
        target_density: float,
        backend: ArrayBackend | None = None,
        pad_left: float = 0.0,
        pad_right: float = 0.0,
        seed: int = FILLER_SEED,
    ):
        self.model = model
        self.grid = grid
        self.target_density = target_density
        self.backend = backend or get_backend(force_cpu=True)
        self.pad_left = pad_left
        self.pad_right = pad_right
        self.solver = ElectrostaticSolver(grid, self.backend)

        xp = self.backend.xp
        self._edges_x = self.backend.array(grid.edges_x)
        self._edges_y = self.backend.array(grid.edges_y)
        self._bin_area = self.backend.array(grid.bin_area)

        nl = model.netlist
        mov = model.movable
        self._base_w = nl.width[mov] + pad_left + pad_right
        self._base_h = nl.height[mov].copy()
        self._weight = nl.density_weight[mov].copy()

        fixed = nl.fixed
        fixed_area = self._area_map(
            model.cx[fixed], model.cy[fixed], nl.width[fixed], nl.height[fixed], np.ones(int(fixed.sum()))
        )
        self.fixed_map = xp.minimum(fixed_area, self._bin_area)

        self._init_fillers(seed)
        logger.info(
            f"Density model: {grid}, target density {target_density:.3f}, "
            f"{self.num_fillers} fillers of {self.filler_w:.3g} x {self.filler_h:.3g}"
        )

    # ------------------------------------------------------------------
    # Cells
    # ------------------------------------------------------------------

    @property
    def num_movable(self) -> int:
        return len(self._base_w)

    @property
    def num_cells(self) -> int:
        return self.num_movable + self.num_fillers

    def movable_sizes(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Density sizes of movable instances (padding and inflation applied)."""
        s = np.sqrt(self.model.inflation[self.model.movable])
        return self._base_w * s, self._base_h * s

    def cell_sizes(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        w, h = self.movable_sizes()
        return (
            np.concatenate([w, np.full(self.num_fillers, self.filler_w)]),
            np.concatenate([h, np.full(self.num_fillers, self.filler_h)]),
        )

    def cell_weights(self) -> NDArray[np.float64]:
        return np.concatenate([self._weight, np.ones(self.num_fillers)])

    def movable_area(self) -> float:
        w, h = self.movable_sizes()
        return float(np.sum(w * h))

    def white_space(self) -> float:
        return float(self.backend.to_numpy(self.backend.xp.sum(self._bin_area - self.fixed_map)))

    def _init_fillers(self, seed: int) -> None:
        self.num_fillers = 0
        self.filler_w = 0.0
        self.filler_h = 0.0
        self._filler_x = np.zeros(0)
        self._filler_y = np.zeros(0)
        if self.num_movable == 0:
            return

        lo = int(self.num_movable * FILLER_TRIM)
        hi = max(lo + 1, int(self.num_movable * (1.0 - FILLER_TRIM)))
        w, h = self.movable_sizes()
        self.filler_w = float(np.mean(np.sort(w)[lo:hi]))
        self.filler_h = float(np.mean(np.sort(h)[lo:hi]))
        filler_area = self.white_space() * self.target_density - self.movable_area()
        if filler_area <= 0 or self.filler_w * self.filler_h <= 0:
            return

        self.num_fillers = int(filler_area / (self.filler_w * self.filler_h))
        core = self.grid.core
        rng = np.random.default_rng(seed)
        self._filler_x = rng.uniform(core.lx, core.ux, self.num_fillers)
        self._filler_y = rng.uniform(core.ly, core.uy, self.num_fillers)

    def filler_area(self) -> float:
        return self.num_fillers * self.filler_w * self.filler_h

    def set_target_density(self, target_density: float) -> None:
        """Change the target used by overflow and the fixed-cell charge.

        Fillers keep their size; routability inflation raises the target so
        inflated cells plus fillers still fit.
        """
        if target_density != self.target_density:
            logger.debug(f"Target density {self.target_density:.4f} -> {target_density:.4f}")
        self.target_density = target_density

    def initial_cell_positions(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Movable centres from the model followed by the seeded fillers."""
        mov = self.model.movable
        return (
            np.concatenate([self.model.cx[mov], self._filler_x]),
            np.concatenate([self.model.cy[mov], self._filler_y]),
        )

    # ------------------------------------------------------------------
    # Maps
    # ------------------------------------------------------------------

    def _windows(self, x: Any, y: Any, w: Any, h: Any) -> tuple[Any, Any, Any, Any]:
        xp = self.backend.xp
        span_x = min(self.grid.nx, int(math.ceil(float(xp.max(w)) / self.grid.bin_w)) + 1) if len(w) else 1
        span_y = min(self.grid.ny, int(math.ceil(float(xp.max(h)) / self.grid.bin_h)) + 1) if len(h) else 1
        ix, ox = _overlap_windows(xp, x - 0.5 * w, x + 0.5 * w, self._edges_x, span_x)
        iy, oy = _overlap_windows(xp, y - 0.5 * h, y + 0.5 * h, self._edges_y, span_y)
        return ix, ox, iy, oy

    def _area_map(self, x: Any, y: Any, w: Any, h: Any, scale: Any) -> Any:
        be = self.backend
        xp = be.xp
        out = be.zeros(self.grid.nx * self.grid.ny)
        if len(x) == 0:
            return out.reshape(self.grid.nx, self.grid.ny)
        x, y, w, h, scale = (be.array(a) for a in (x, y, w, h, scale))
        ix, ox, iy, oy = self._windows(x, y, w, h)
        flat = ix[:, :, None] * self.grid.ny + iy[:, None, :]
        area = ox[:, :, None] * oy[:, None, :] * scale[:, None, None]
        be.scatter_add(out, flat.ravel(), area.ravel())
        return out.reshape(self.grid.nx, self.grid.ny)

    def _smoothed(self, w: NDArray, h: NDArray) -> tuple[NDArray, NDArray, NDArray]:
        """Stretch cells below sqrt(2) bin sizes, keeping their area."""
        sw = np.maximum(w, SQRT2 * self.grid.bin_w)
        sh = np.maximum(h, SQRT2 * self.grid.bin_h)
        return sw, sh, (w * h) / (sw * sh)

    def movable_map(self, x: NDArray, y: NDArray) -> NDArray[np.float64]:
        """Area of movable instances per bin (no smoothing, no fillers)."""
        w, h = self.movable_sizes()
        return self.backend.to_numpy(self._area_map(x, y, w, h, np.ones(len(w))))

    def bin_density(self, x: NDArray, y: NDArray) -> NDArray[np.float64]:
        """(movable + fixed area) / bin area, shape (nx, ny)."""
        fixed = self.backend.to_numpy(self.fixed_map)
        return (self.movable_map(x, y) + fixed) / self.grid.bin_area

    def overflow(self, x: NDArray, y: NDArray) -> float:
        """Total overflow area over total movable area.

        Args:
            x: Movable instance centres (x), fillers excluded.
            y: Movable instance centres (y), fillers excluded.
        """
        total = self.movable_area()
        if total <= 0:
            return 0.0
        fixed = self.backend.to_numpy(self.fixed_map)
        over = self.movable_map(x, y) + fixed * self.target_density - self.target_density * self.grid.bin_area
        return float(np.sum(np.clip(over, 0.0, None)) / total)

    # ------------------------------------------------------------------
    # Gradient
    # ------------------------------------------------------------------

    def gradient(self, x: NDArray, y: NDArray) -> DensityGradient:
        """Electrostatic density gradient at the given cell centres."""
        be = self.backend
        xp = be.xp
        w, h = self.cell_sizes()
        weight = self.cell_weights()
        if len(w) == 0:
            return DensityGradient(np.zeros(0), np.zeros(0), np.zeros(0), 0.0)
        sw, sh, ratio = self._smoothed(w, h)
        scale = ratio * weight

        xd, yd, swd, shd, sd = (be.array(a) for a in (x, y, sw, sh, scale))
        charge_map = self._area_map(xd, yd, swd, shd, sd) + self.fixed_map * self.target_density
        rho = charge_map / self._bin_area
        psi, field_x, field_y = self.solver.solve(rho)

        ix, ox, iy, oy = self._windows(xd, yd, swd, shd)
        overlap = ox[:, :, None] * oy[:, None, :]
        fx = field_x[ix[:, :, None], iy[:, None, :]]
        fy = field_y[ix[:, :, None], iy[:, None, :]]
        grad_x = -sd * xp.sum(overlap * fx, axis=(1, 2))
        grad_y = -sd * xp.sum(overlap * fy, axis=(1, 2))
        energy = 0.5 * float(xp.sum(psi * charge_map))

        return DensityGradient(
            grad_x=be.to_numpy(grad_x),
            grad_y=be.to_numpy(grad_y),
            charge=w * h * weight,
            energy=energy,
        )
