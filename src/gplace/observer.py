"""
Debug observer hooks.

A visualiser (or a test) implements :class:`PlacementObserver` and receives
read-only snapshots of the placement at a configurable cadence. Snapshots are
copies, so an observer can keep them across iterations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Protocol, runtime_checkable

import numpy as np
from numpy.typing import NDArray

from gplace.config import DebugConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IterationSnapshot:
    """State of the placement at one observer call.

    Attributes:
        iteration: Optimizer iteration (-1 for the initial placement).
        overflow: Density overflow.
        hpwl: Half-perimeter wirelength.
        density_penalty: Current density penalty (lambda).
        phi_coef: Last penalty multiplier.
        names: Reported instance names.
        x: Centre x of the reported instances.
        y: Centre y of the reported instances.
        width: Width of the reported instances.
        height: Height of the reported instances.
        bin_density: Bin density map (only when bin drawing is enabled).
    """

    iteration: int
    overflow: float
    hpwl: float
    density_penalty: float
    phi_coef: float
    names: tuple[str, ...]
    x: NDArray[np.float64]
    y: NDArray[np.float64]
    width: NDArray[np.float64]
    height: NDArray[np.float64]
    bin_density: NDArray[np.float64] | None = None


@runtime_checkable
class PlacementObserver(Protocol):
    """Receives placement snapshots."""

    def update(self, snapshot: IterationSnapshot) -> None: ...

    def pause(self, snapshot: IterationSnapshot) -> None: ...


def _readonly(arr: NDArray) -> NDArray:
    out = np.array(arr, dtype=np.float64)
    out.flags.writeable = False
    return out


class ObserverHub:
    """Applies the debug cadence and instance filter to an observer.

    Args:
        observer: Receiver of snapshots (None disables all calls).
        config: Debug settings.
    """

    def __init__(self, observer: PlacementObserver | None, config: DebugConfig):
        self.observer = observer
        self.config = config

    @property
    def active(self) -> bool:
        return self.observer is not None

    def wants_update(self, iteration: int) -> bool:
        n = self.config.debug_update_iterations
        return self.active and n > 0 and iteration % n == 0

    def wants_pause(self, iteration: int) -> bool:
        n = self.config.debug_pause_iterations
        return self.active and n > 0 and iteration % n == 0

    def build(
        self,
        iteration: int,
        names: tuple[str, ...],
        x: NDArray,
        y: NDArray,
        width: NDArray,
        height: NDArray,
        overflow: float,
        hpwl: float,
        density_penalty: float = 0.0,
        phi_coef: float = 1.0,
        bin_density: Callable[[], NDArray] | None = None,
    ) -> IterationSnapshot:
        """Copy the given arrays into a snapshot, applying the instance filter."""
        target = self.config.debug_instance
        if target:
            keep = np.array([n == target for n in names], dtype=bool)
            names = tuple(n for n in names if n == target)
            x, y, width, height = x[keep], y[keep], width[keep], height[keep]
        bins = None
        if self.config.debug_draw_bins and bin_density is not None:
            bins = _readonly(bin_density())
        return IterationSnapshot(
            iteration=iteration,
            overflow=overflow,
            hpwl=hpwl,
            density_penalty=density_penalty,
            phi_coef=phi_coef,
            names=names,
            x=_readonly(x),
            y=_readonly(y),
            width=_readonly(width),
            height=_readonly(height),
            bin_density=bins,
        )

    def notify(self, iteration: int, make: Callable[[], IterationSnapshot]) -> None:
        """Call ``update``/``pause`` if the cadence says so.

        ``make`` is only called when a snapshot is needed.
        """
        update = self.wants_update(iteration)
        pause = self.wants_pause(iteration)
        if not (update or pause):
            return
        snapshot = make()
        if update:
            self.observer.update(snapshot)
        if pause:
            logger.debug(f"Observer pause at iteration {iteration}")
            self.observer.pause(snapshot)

    def notify_initial(self, make: Callable[[], IterationSnapshot]) -> None:
        if self.active and self.config.debug_initial:
            snapshot = make()
            self.observer.update(snapshot)
            self.observer.pause(snapshot)
