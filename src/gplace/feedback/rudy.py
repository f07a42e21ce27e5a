"""
RUDY congestion estimator.

Rectangular Uniform wire DensitY: each net's horizontal and vertical wire
length (its bounding box width and height) is spread uniformly over its
bounding box. Summing over nets gives a routing demand map that stands in
for a global router when none is available.
"""

from __future__ import annotations

import logging

import numpy as np
from numpy.typing import NDArray

from gplace.feedback.routability import CongestionMap
from gplace.placement.density import BinGrid
from gplace.placement.model import PlacementSnapshot

logger = logging.getLogger(__name__)


def _axis_overlap(lo: float, hi: float, edges: NDArray[np.float64]) -> tuple[int, NDArray[np.float64]]:
    """First bin index and overlap lengths of ``[lo, hi]`` with the bins."""
    nb = len(edges) - 1
    first = int(np.clip(np.searchsorted(edges, lo, side="right") - 1, 0, nb - 1))
    last = int(np.clip(np.searchsorted(edges, hi, side="left") - 1, first, nb - 1))
    left = edges[first : last + 1]
    right = edges[first + 1 : last + 2]
    return first, np.clip(np.minimum(hi, right) - np.maximum(lo, left), 0.0, None)


class RudyCongestionEstimator:
    """Congestion provider built on the RUDY demand model.

    Args:
        h_tracks: Horizontal routing tracks per unit of height.
        v_tracks: Vertical routing tracks per unit of width.

    Example::

        placer = GlobalPlacer(design, router=RudyCongestionEstimator(h_tracks=2, v_tracks=2))
    """

    def __init__(self, h_tracks: float = 1.0, v_tracks: float = 1.0):
        if h_tracks <= 0 or v_tracks <= 0:
            raise ValueError("Track densities must be positive")
        self.h_tracks = h_tracks
        self.v_tracks = v_tracks

    def demand(self, snapshot: PlacementSnapshot, grid: BinGrid) -> tuple[NDArray, NDArray]:
        """Horizontal and vertical wire length per bin."""
        h_demand = np.zeros((grid.nx, grid.ny))
        v_demand = np.zeros((grid.nx, grid.ny))
        for k in range(len(snapshot.net_names)):
            px, py = snapshot.net_pins(k)
            if len(px) < 2:
                continue
            lx, ux = float(px.min()), float(px.max())
            ly, uy = float(py.min()), float(py.max())
            wire_h = ux - lx
            wire_v = uy - ly
            if wire_h == 0 and wire_v == 0:
                continue
            # Degenerate boxes are widened to one bin so their wire lands somewhere
            if wire_h < grid.bin_w:
                mid = 0.5 * (lx + ux)
                lx, ux = mid - 0.5 * grid.bin_w, mid + 0.5 * grid.bin_w
            if wire_v < grid.bin_h:
                mid = 0.5 * (ly + uy)
                ly, uy = mid - 0.5 * grid.bin_h, mid + 0.5 * grid.bin_h
            box_area = (ux - lx) * (uy - ly)

            fx, ox = _axis_overlap(lx, ux, grid.edges_x)
            fy, oy = _axis_overlap(ly, uy, grid.edges_y)
            overlap = np.outer(ox, oy) / box_area
            window = (slice(fx, fx + len(ox)), slice(fy, fy + len(oy)))
            h_demand[window] += wire_h * overlap
            v_demand[window] += wire_v * overlap
        return h_demand, v_demand

    def estimate_congestion(self, snapshot: PlacementSnapshot, grid: BinGrid) -> CongestionMap:
        h_demand, v_demand = self.demand(snapshot, grid)
        area = grid.bin_area
        h_capacity = self.h_tracks * area
        v_capacity = self.v_tracks * area
        logger.debug(
            f"RUDY: peak usage h={float(np.max(h_demand / h_capacity)):.3f} "
            f"v={float(np.max(v_demand / v_capacity)):.3f}"
        )
        return CongestionMap(h_demand, h_capacity, v_demand, v_capacity)
