"""
Nesterov-accelerated global placement.

Minimises ``W(x, y) + lambda * D(x, y)`` where ``W`` is the weighted-average
wirelength and ``D`` the electrostatic density energy. The step length is
predicted from the local Lipschitz estimate ``|dv| / |dg|`` with
backtracking, the gradient is diagonally preconditioned, and ``lambda`` grows
by a bounded multiplier each iteration until the overflow target is met.

Optimizer cells are the movable instances followed by the density model's
fillers. Fixed instances are never part of the state.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable

import numpy as np
from numpy.typing import NDArray

from gplace.config import NesterovConfig
from gplace.exceptions import ConvergenceFailure
from gplace.observer import IterationSnapshot, ObserverHub
from gplace.placement.density import DensityModel
from gplace.placement.model import PlacementModel
from gplace.placement.wirelength import WeightedAverageWirelength, wirelength_coef

if TYPE_CHECKING:
    from gplace.feedback.routability import RoutabilityFeedback
    from gplace.feedback.timing import TimingFeedback

logger = logging.getLogger(__name__)

# Step for the synthetic previous point used to seed the step length
INITIAL_PREV_COORDI_UPDATE_COEF = 100.0

# A new step is accepted once it is at least this fraction of the previous one
STEP_ACCEPT_RATIO = 0.95

LOG_EVERY = 10


@dataclass
class NesterovState:
    """Optimization state, kept between runs so a later run resumes.

    Attributes:
        iteration: Next iteration index.
        cur_x: Current (major) solution u, x part.
        cur_y: Current (major) solution u, y part.
        slp_x: Lookahead v, x part.
        slp_y: Lookahead v, y part.
        grad_x: Preconditioned gradient at v, x part.
        grad_y: Preconditioned gradient at v, y part.
        a: Nesterov parameter.
        step_length: Current step length alpha.
        density_penalty: Density penalty lambda.
        phi_coef: Last penalty multiplier.
        overflow: Overflow at u.
        hpwl: HPWL at u.
    """

    iteration: int
    cur_x: NDArray[np.float64]
    cur_y: NDArray[np.float64]
    slp_x: NDArray[np.float64]
    slp_y: NDArray[np.float64]
    grad_x: NDArray[np.float64]
    grad_y: NDArray[np.float64]
    a: float
    step_length: float
    density_penalty: float
    phi_coef: float
    overflow: float
    hpwl: float


@dataclass
class NesterovResult:
    """Outcome of one optimization run.

    Attributes:
        converged: True if overflow reached the target.
        iterations: Iteration index reached (one past the last executed).
        overflow: Final overflow.
        hpwl: Final HPWL.
        density_penalty: Final density penalty.
        failures: Non-convergence records.
        diverged: True if the loop stopped on non-finite values.
        inflations: Routability inflations during the run.
        reweights: Timing reweights during the run.
    """

    converged: bool
    iterations: int
    overflow: float
    hpwl: float
    density_penalty: float
    failures: list[ConvergenceFailure] = field(default_factory=list)
    diverged: bool = False
    inflations: int = 0
    reweights: int = 0


@dataclass
class _Gradient:
    x: NDArray[np.float64]
    y: NDArray[np.float64]
    wl_sum: float
    density_sum: float


def _finite(*arrays: NDArray) -> bool:
    return all(bool(np.all(np.isfinite(a))) for a in arrays)


class NesterovPlacer:
    """Runs the Nesterov loop over a placement model.

    Args:
        model: Placement model; movable centres are updated every iteration.
        density: Density model built on the same model.
        wirelength: WA wirelength kernel for the model's pin topology.
        config: Loop settings.
        routability: Optional routability feedback.
        timing: Optional timing feedback.
        observer: Optional observer hub.
    """

    def __init__(
        self,
        model: PlacementModel,
        density: DensityModel,
        wirelength: WeightedAverageWirelength,
        config: NesterovConfig | None = None,
        routability: RoutabilityFeedback | None = None,
        timing: TimingFeedback | None = None,
        observer: ObserverHub | None = None,
    ):
        self.model = model
        self.density = density
        self.wirelength = wirelength
        self.config = config or NesterovConfig()
        self.routability = routability
        self.timing = timing
        self.observer = observer
        self.state: NesterovState | None = None
        self._gamma = 1.0

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    def _update_gamma(self, overflow: float) -> None:
        grid = self.density.grid
        coef = wirelength_coef(self.config.init_wirelength_coef, grid.bin_w, grid.bin_h, overflow)
        self._gamma = 1.0 / coef

    def _clamp(self, x: NDArray, y: NDArray) -> tuple[NDArray, NDArray]:
        n = self.model.num_movable
        w, h = self.density.cell_sizes()
        mov = self.model.movable
        w[:n] = self.model.netlist.width[mov]
        h[:n] = self.model.netlist.height[mov]
        return self.model.clamp(x, y, w, h)

    def _gradient(self, x: NDArray, y: NDArray, penalty: float) -> _Gradient:
        model = self.model
        mov = model.movable
        n = model.num_movable
        n_fill = len(x) - n

        cx = model.cx.copy()
        cy = model.cy.copy()
        cx[mov] = x[:n]
        cy[mov] = y[:n]
        weights = model.net_weights()
        wl = self.wirelength.gradient(cx, cy, weights, self._gamma)
        dens = self.density.gradient(x, y)

        pad = np.zeros(n_fill)
        wl_x = np.concatenate([wl.grad_x[mov], pad])
        wl_y = np.concatenate([wl.grad_y[mov], pad])
        pin_w = np.concatenate([self.wirelength.pin_weight_sum(weights)[mov], pad])
        precond = np.maximum(1.0, pin_w + penalty * dens.charge)

        return _Gradient(
            x=(wl_x + penalty * dens.grad_x) / precond,
            y=(wl_y + penalty * dens.grad_y) / precond,
            wl_sum=float(np.sum(np.abs(wl_x)) + np.sum(np.abs(wl_y))),
            density_sum=float(np.sum(np.abs(dens.grad_x)) + np.sum(np.abs(dens.grad_y))),
        )

    def _step_estimate(
        self, x0: NDArray, y0: NDArray, g0: _Gradient, x1: NDArray, y1: NDArray, g1: _Gradient
    ) -> float:
        dist = math.sqrt(float(np.sum((x1 - x0) ** 2) + np.sum((y1 - y0) ** 2)))
        dgrad = math.sqrt(float(np.sum((g1.x - g0.x) ** 2) + np.sum((g1.y - g0.y) ** 2)))
        if dgrad <= 0:
            return math.nan
        return dist / dgrad

    def _bootstrap(self, x: NDArray, y: NDArray, iteration: int, overflow: float, hpwl: float) -> NesterovState:
        """Fresh state at ``(x, y)``: initial penalty, gradient and step."""
        self._update_gamma(overflow)
        raw = self._gradient(x, y, 0.0)
        if raw.density_sum > 0:
            penalty = self.config.init_density_penalty * raw.wl_sum / raw.density_sum
        else:
            penalty = self.config.init_density_penalty
        if not math.isfinite(penalty) or penalty <= 0:
            penalty = self.config.init_density_penalty

        grad = self._gradient(x, y, penalty)
        px, py = self._clamp(
            x - INITIAL_PREV_COORDI_UPDATE_COEF * grad.x, y - INITIAL_PREV_COORDI_UPDATE_COEF * grad.y
        )
        prev_grad = self._gradient(px, py, penalty)
        step = self._step_estimate(px, py, prev_grad, x, y, grad)
        if not math.isfinite(step) or step <= 0:
            step = 0.1 * min(self.density.grid.bin_w, self.density.grid.bin_h)

        logger.info(f"[Nesterov] Initial density penalty: {penalty:.6e}, step length: {step:.6e}")
        return NesterovState(
            iteration=iteration,
            cur_x=x.copy(),
            cur_y=y.copy(),
            slp_x=x.copy(),
            slp_y=y.copy(),
            grad_x=grad.x,
            grad_y=grad.y,
            a=1.0,
            step_length=step,
            density_penalty=penalty,
            phi_coef=1.0,
            overflow=overflow,
            hpwl=hpwl,
        )

    def initialize(self) -> NesterovState:
        """Build the state from the model's current positions."""
        x, y = self._clamp(*self.density.initial_cell_positions())
        n = self.model.num_movable
        overflow = self.density.overflow(x[:n], y[:n])
        self.state = self._bootstrap(x, y, 0, overflow, self.model.hpwl())
        logger.info(
            f"[Nesterov] {n} movable cells, {self.density.num_fillers} fillers, "
            f"initial overflow {overflow:.4f}, HPWL {self.state.hpwl:.0f}"
        )
        return self.state

    def _phi_coef(self, hpwl: float, prev_hpwl: float, overflow: float, prev_overflow: float) -> float:
        c = self.config
        delta = hpwl - prev_hpwl
        if delta < 0:
            phi = c.max_phi_coef
        else:
            phi = max(c.min_phi_coef, c.max_phi_coef ** (1.0 - delta / c.reference_hpwl))
        if overflow <= c.target_overflow:
            phi = c.min_phi_coef
        elif overflow > prev_overflow:
            phi = c.max_phi_coef
        return min(c.max_phi_coef, max(c.min_phi_coef, phi))

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def run(self, start_iteration: int | None = None) -> NesterovResult:
        """Iterate until the overflow target or the iteration cap.

        Args:
            start_iteration: First iteration index; defaults to the stored
                state's index so a second call resumes.
        """
        state = self.state or self.initialize()
        c = self.config
        model = self.model
        mov = model.movable
        n = model.num_movable
        first = state.iteration if start_iteration is None else start_iteration
        result = NesterovResult(
            converged=False,
            iterations=first,
            overflow=state.overflow,
            hpwl=state.hpwl,
            density_penalty=state.density_penalty,
        )

        if n == 0:
            result.converged = True
            return result

        for it in range(first, c.max_iter):
            self._update_gamma(state.overflow)
            a_next = (1.0 + math.sqrt(4.0 * state.a * state.a + 1.0)) / 2.0
            coeff = (state.a - 1.0) / a_next
            step = state.step_length
            penalty = state.density_penalty
            slp_grad = _Gradient(state.grad_x, state.grad_y, 0.0, 0.0)

            for _ in range(c.max_backtrack):
                next_x, next_y = self._clamp(state.slp_x - step * state.grad_x, state.slp_y - step * state.grad_y)
                next_slp_x, next_slp_y = self._clamp(
                    next_x + coeff * (next_x - state.cur_x), next_y + coeff * (next_y - state.cur_y)
                )
                grad = self._gradient(next_slp_x, next_slp_y, penalty)
                new_step = self._step_estimate(
                    state.slp_x, state.slp_y, slp_grad, next_slp_x, next_slp_y, grad
                )
                if not math.isfinite(new_step) or new_step <= 0:
                    break
                if new_step > STEP_ACCEPT_RATIO * step:
                    step = new_step
                    break
                step = new_step

            if not _finite(next_x, next_y, next_slp_x, next_slp_y, grad.x, grad.y):
                logger.warning(
                    f"[Nesterov] Non-finite values at iteration {it}; keeping the last finite placement"
                )
                result.diverged = True
                result.iterations = it
                break

            state.cur_x, state.cur_y = next_x, next_y
            state.slp_x, state.slp_y = next_slp_x, next_slp_y
            state.grad_x, state.grad_y = grad.x, grad.y
            state.a = a_next
            state.step_length = step
            state.iteration = it + 1

            model.cx[mov] = next_x[:n]
            model.cy[mov] = next_y[:n]
            prev_overflow, prev_hpwl = state.overflow, state.hpwl
            state.overflow = self.density.overflow(next_x[:n], next_y[:n])
            state.hpwl = model.hpwl()
            state.phi_coef = self._phi_coef(state.hpwl, prev_hpwl, state.overflow, prev_overflow)
            state.density_penalty *= state.phi_coef

            if it % LOG_EVERY == 0:
                logger.info(
                    f"[Nesterov] Iter: {it} overflow: {state.overflow:.4f} HPWL: {state.hpwl:.0f} "
                    f"penalty: {state.density_penalty:.4e} phi: {state.phi_coef:.4f}"
                )

            inflated = False
            if self.routability is not None and self.routability.check(it, state.overflow):
                inflated = True
                result.inflations += 1
                state = self._restart(state)
            if self.timing is not None and self.timing.check(it, state.overflow):
                result.reweights += 1

            if self.observer is not None:
                self.observer.notify(it, self._snapshot_factory(it, state))

            result.iterations = it + 1
            if state.overflow <= c.target_overflow and not inflated:
                result.converged = True
                logger.info(
                    f"[Nesterov] Converged at iteration {it}: overflow {state.overflow:.4f}, "
                    f"HPWL {state.hpwl:.0f}"
                )
                break
        else:
            if first >= c.max_iter:
                result.converged = state.overflow <= c.target_overflow

        result.overflow = state.overflow
        result.hpwl = state.hpwl
        result.density_penalty = state.density_penalty
        if not result.converged:
            failure = ConvergenceFailure("nesterov", result.iterations, state.overflow)
            result.failures.append(failure)
            logger.warning(
                f"[Nesterov] Stopped at iteration {result.iterations} with overflow "
                f"{state.overflow:.4f} (target {c.target_overflow})"
            )
        return result

    def _restart(self, state: NesterovState) -> NesterovState:
        """Reset momentum and the penalty after cell sizes changed."""
        n = self.model.num_movable
        overflow = self.density.overflow(state.cur_x[:n], state.cur_y[:n])
        fresh = self._bootstrap(state.cur_x, state.cur_y, state.iteration, overflow, state.hpwl)
        self.state = fresh
        logger.info(f"[Nesterov] Restarted after inflation, overflow {overflow:.4f}")
        return fresh

    def _snapshot_factory(self, iteration: int, state: NesterovState) -> Callable[[], IterationSnapshot]:
        def make() -> IterationSnapshot:
            model = self.model
            nl = model.netlist
            mov = model.movable
            return self.observer.build(
                iteration,
                nl.names,
                model.cx,
                model.cy,
                nl.width,
                nl.height,
                state.overflow,
                state.hpwl,
                state.density_penalty,
                state.phi_coef,
                bin_density=lambda: self.density.bin_density(model.cx[mov], model.cy[mov]),
            )

        return make
