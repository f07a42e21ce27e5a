"""
Routability feedback: congestion-driven cell inflation.

Once the placement is spread enough (overflow at or below the check value)
the congestion provider estimates routing demand per bin. If the resulting
RC metric is above target, instances in congested or over-dense bins are
inflated so the optimizer pushes them apart. Inflation changes density sizes
only; positions are untouched and physical sizes are restored at the end of
the run.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from gplace.config import RoutabilityConfig
from gplace.exceptions import ExternalEngineError
from gplace.placement.density import BinGrid, DensityModel
from gplace.placement.model import PlacementModel, PlacementSnapshot

logger = logging.getLogger(__name__)

# Top fractions of bin edges averaged by the RC metric
ACE_FRACTIONS = (0.005, 0.01, 0.02, 0.05)

# Usage reported for bins with demand but no routing capacity
BLOCKED_USAGE = 1e6


@dataclass(frozen=True)
class CongestionMap:
    """Routing demand and capacity per bin, each of shape (nx, ny).

    Attributes:
        h_demand: Horizontal routing demand.
        h_capacity: Horizontal routing capacity.
        v_demand: Vertical routing demand.
        v_capacity: Vertical routing capacity.
    """

    h_demand: NDArray[np.float64]
    h_capacity: NDArray[np.float64]
    v_demand: NDArray[np.float64]
    v_capacity: NDArray[np.float64]

    @staticmethod
    def _ratio(demand: NDArray, capacity: NDArray) -> NDArray[np.float64]:
        out = np.zeros_like(demand, dtype=np.float64)
        has_cap = capacity > 0
        out[has_cap] = demand[has_cap] / capacity[has_cap]
        # Demand with no capacity at all is as congested as it gets
        out[~has_cap & (demand > 0)] = np.inf
        return out

    @property
    def h_usage(self) -> NDArray[np.float64]:
        return self._ratio(self.h_demand, self.h_capacity)

    @property
    def v_usage(self) -> NDArray[np.float64]:
        return self._ratio(self.v_demand, self.v_capacity)

    @property
    def usage(self) -> NDArray[np.float64]:
        """Worse of the two directions per bin."""
        return np.maximum(self.h_usage, self.v_usage)

    def check_shape(self, grid: BinGrid) -> None:
        """Raise ValueError unless every map matches the bin grid."""
        expected = (grid.nx, grid.ny)
        for name in ("h_demand", "h_capacity", "v_demand", "v_capacity"):
            shape = np.shape(getattr(self, name))
            if shape != expected:
                raise ValueError(f"{name} has shape {shape}, expected {expected} for {grid!r}")


@runtime_checkable
class CongestionProvider(Protocol):
    """Global router (or estimator) consulted by routability feedback."""

    def estimate_congestion(self, snapshot: PlacementSnapshot, grid: BinGrid) -> CongestionMap: ...


def average_congestion(usage: NDArray[np.float64], fraction: float) -> float:
    """Mean of the most congested ``fraction`` of entries (at least one)."""
    flat = np.sort(usage.ravel())[::-1]
    if len(flat) == 0:
        return 0.0
    count = max(1, int(math.ceil(fraction * len(flat))))
    return float(np.mean(flat[:count]))


def rc_metric(cmap: CongestionMap, k: tuple[float, float, float, float]) -> float:
    """Weighted average of the ACE(0.5%, 1%, 2%, 5%) congestion figures.

    Horizontal and vertical bin edges are pooled before ranking.
    """
    usage = np.concatenate([cmap.h_usage.ravel(), cmap.v_usage.ravel()])
    usage = np.nan_to_num(usage, posinf=BLOCKED_USAGE)
    aces = [average_congestion(usage, f) for f in ACE_FRACTIONS]
    return sum(ki * a for ki, a in zip(k, aces)) / sum(k)


class RoutabilityFeedback:
    """Decides when to consult the router and inflates instances.

    Inflation raises the density model's target so that inflated cells plus
    fillers still fit; an inflation that would push the target past
    ``routability_max_density`` is reverted and ends the feedback.

    Args:
        model: Placement model (owner of the inflation ratios).
        density: Density model (bin grid and fillers).
        config: Routability settings.
        provider: Congestion provider.
    """

    def __init__(
        self,
        model: PlacementModel,
        density: DensityModel,
        config: RoutabilityConfig,
        provider: CongestionProvider,
    ):
        self.model = model
        self.density = density
        self.config = config
        self.provider = provider
        self.inflation_count = 0
        self.done = False
        self.rc_history: list[float] = []
        self.base_target_density = density.target_density

    @property
    def k(self) -> tuple[float, float, float, float]:
        c = self.config
        return (c.routability_rc_k1, c.routability_rc_k2, c.routability_rc_k3, c.routability_rc_k4)

    def should_check(self, overflow: float) -> bool:
        return (
            not self.done
            and self.inflation_count < self.config.routability_max_inflation_iter
            and overflow <= self.config.routability_check_overflow
        )

    def check(self, iteration: int, overflow: float) -> bool:
        """Consult the router if due; returns True if instances were inflated.

        Raises:
            ExternalEngineError: If the congestion provider fails or returns
                maps that do not match the bin grid.
        """
        if not self.should_check(overflow):
            return False

        self.inflation_count += 1
        logger.info(
            f"[Routability] Check {self.inflation_count}/"
            f"{self.config.routability_max_inflation_iter} at iteration {iteration} "
            f"(overflow {overflow:.4f})"
        )
        try:
            cmap = self.provider.estimate_congestion(self.model.snapshot(), self.density.grid)
            cmap.check_shape(self.density.grid)
        except Exception as e:
            raise ExternalEngineError("routability", e, iteration) from e

        rc = rc_metric(cmap, self.k)
        self.rc_history.append(rc)
        logger.info(f"[Routability] RC metric {rc:.4f} (target {self.config.routability_target_rc_metric})")
        if rc < self.config.routability_target_rc_metric:
            logger.info("[Routability] RC metric under target, routability feedback finished")
            self.done = True
            return False

        return self.inflate(cmap)

    def inflation_ratios(self, cmap: CongestionMap) -> NDArray[np.float64]:
        """Area ratio per bin from congestion and density signals."""
        c = self.config
        mov = self.model.movable
        density = self.density.bin_density(self.model.cx[mov], self.model.cy[mov])
        signal = np.maximum(cmap.usage, density / c.routability_max_density)
        ratio = np.ones_like(signal)
        hot = signal > 1.0
        with np.errstate(over="ignore"):
            ratio[hot] = np.minimum(
                c.routability_max_inflation_ratio, signal[hot] ** c.routability_inflation_ratio_coef
            )
        return ratio

    def inflate(self, cmap: CongestionMap) -> bool:
        """Inflate instances in hot bins; returns True if any size changed."""
        c = self.config
        model = self.model
        density = self.density
        mov = model.movable
        ratio = self.inflation_ratios(cmap)

        ix, iy = density.grid.bin_index(model.cx[mov], model.cy[mov])
        cell_ratio = ratio[ix, iy]
        eligible = model.bloat_count[mov] < c.routability_max_bloat_iter
        bloat = eligible & (cell_ratio > 1.0)
        if not np.any(bloat):
            logger.info("[Routability] No instance eligible for inflation")
            return False

        base_area = density.movable_area()
        old = model.inflation[mov].copy()
        new = old.copy()
        new[bloat] *= cell_ratio[bloat]
        model.inflation[mov] = new

        inflated_area = density.movable_area()
        target = (inflated_area + density.filler_area()) / density.white_space()
        if target > c.routability_max_density:
            model.inflation[mov] = old
            self.done = True
            logger.warning(
                f"[Routability] Target density {target:.4f} would exceed max density "
                f"{c.routability_max_density}; inflation reverted, routability feedback finished"
            )
            return False

        model.bloat_count[mov[bloat]] += 1
        density.set_target_density(max(density.target_density, target))
        logger.info(
            f"[Routability] Inflated {int(bloat.sum())} instances, movable area "
            f"{base_area:.4g} -> {inflated_area:.4g}, target density {density.target_density:.4f}"
        )
        return True

    def restore(self) -> None:
        """Restore physical sizes and the original target density."""
        if np.any(self.model.inflation != 1.0):
            logger.info("[Routability] Restoring physical instance sizes")
        self.model.inflation[:] = 1.0
        self.model.bloat_count[:] = 0
        self.density.set_target_density(self.base_target_density)
