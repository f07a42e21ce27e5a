"""
Global placement orchestrator.

:class:`GlobalPlacer` wires the database, the numeric engines and the
optional external engines together. Configuration is validated eagerly;
the placement model, density model, feedback subsystems and optimizer are
built lazily on the first optimization entry point and kept until
``reset()`` so later runs resume from the stored state.

Example::

    from gplace import GlobalPlacer
    from gplace.io import load_design

    design = load_design("design.json")
    placer = GlobalPlacer(design)
    placer.set_target_density(0.8)
    placer.run_initial_placement()
    result = placer.run_optimization()
    print(result.converged, result.overflow, result.hpwl)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from gplace.acceleration import ArrayBackend, get_backend
from gplace.config import PlacerConfig
from gplace.exceptions import ConfigurationError, ConvergenceFailure, DegenerateInputError
from gplace.feedback.routability import CongestionProvider, RoutabilityFeedback
from gplace.feedback.rudy import RudyCongestionEstimator
from gplace.feedback.timing import TimingFeedback, TimingProvider
from gplace.observer import ObserverHub, PlacementObserver
from gplace.placement.density import BinGrid, DensityModel
from gplace.placement.design import PlacementDatabase
from gplace.placement.initial import InitialPlacer, InitialPlaceResult
from gplace.placement.model import PlacementModel
from gplace.placement.nesterov import NesterovPlacer
from gplace.placement.wirelength import WeightedAverageWirelength

logger = logging.getLogger(__name__)

# Fields that shape the bin grid, the fillers or the kernels; changing one
# rebuilds the optimizer from the current positions
REBUILD_FIELDS = frozenset(
    {
        "target_density",
        "uniform_target_density_mode",
        "bin_grid_count_x",
        "bin_grid_count_y",
        "pad_left",
        "pad_right",
        "skip_io_mode",
        "force_cpu",
    }
)


@dataclass
class PlacementResult:
    """Outcome of an optimization run.

    Attributes:
        converged: True if the overflow target was reached.
        iterations: Iteration index reached.
        overflow: Final density overflow.
        hpwl: Final half-perimeter wirelength.
        density_penalty: Final density penalty.
        failures: Non-convergence records from this run.
        degenerate: Unanchored components recovered by the initial placement.
        inflations: Routability inflations performed.
        reweights: Timing reweights performed.
    """

    converged: bool
    iterations: int
    overflow: float
    hpwl: float
    density_penalty: float = 0.0
    failures: list[ConvergenceFailure] = field(default_factory=list)
    degenerate: list[DegenerateInputError] = field(default_factory=list)
    inflations: int = 0
    reweights: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "converged": self.converged,
            "iterations": self.iterations,
            "overflow": self.overflow,
            "hpwl": self.hpwl,
            "density_penalty": self.density_penalty,
            "failures": [f.message for f in self.failures],
            "degenerate_components": len(self.degenerate),
            "inflations": self.inflations,
            "reweights": self.reweights,
        }


class GlobalPlacer:
    """Runs initial and Nesterov placement on a database.

    Args:
        db: Circuit database.
        router: Congestion provider for routability mode (a RUDY estimator
            is used when omitted).
        timing_engine: Timing provider, required for timing mode.
        observer: Optional debug observer.
        config: Initial configuration (defaults when omitted).
    """

    def __init__(
        self,
        db: PlacementDatabase,
        router: CongestionProvider | None = None,
        timing_engine: TimingProvider | None = None,
        observer: PlacementObserver | None = None,
        config: PlacerConfig | None = None,
    ):
        self.db = db
        self.router = router
        self.timing_engine = timing_engine
        self.observer = observer
        if config is None:
            config = PlacerConfig()
        else:
            config.validate()
        self._config = config
        self._custom_timing_overflows = False
        self._degenerate: list[DegenerateInputError] = []
        self._clear()

    def _clear(self) -> None:
        self.model: PlacementModel | None = None
        self._clear_engines()

    def _clear_engines(self) -> None:
        self.density: DensityModel | None = None
        self.routability: RoutabilityFeedback | None = None
        self.timing: TimingFeedback | None = None
        self.nesterov: NesterovPlacer | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def config(self) -> PlacerConfig:
        return self._config

    def configure(self, **fields: Any) -> None:
        """Set configuration fields by flat name.

        Loop, feedback and debug settings are applied to the live engines, so
        the optimizer state, fired timing checkpoints and inflation counters
        carry over to the next run. Fields in ``REBUILD_FIELDS`` rebuild the
        optimizer; the placement model and its positions are always kept.

        Raises:
            ConfigurationError: If a field is unknown or out of range, or
                timing mode is enabled without a timing engine. The previous
                configuration stays in effect.
        """
        new = self._config.replace(**fields)
        changed = {name for name in fields if new.get(name) != self._config.get(name)}
        if self.nesterov is None or changed & REBUILD_FIELDS:
            if self.nesterov is not None:
                rebuilt = ", ".join(sorted(changed & REBUILD_FIELDS))
                logger.debug(f"Rebuilding the optimizer after changes to {rebuilt}")
            self._config = new
            self._clear_engines()
            return
        self._apply_config(new)
        self._config = new

    def _apply_config(self, cfg: PlacerConfig) -> None:
        """Point the live engines at ``cfg``, attaching or detaching feedback."""
        model = self.model
        routability = self.routability
        if not cfg.routability.routability_driven_mode:
            routability = None
        elif routability is None:
            routability = self._build_routability(model, self.density, cfg)
        else:
            routability.config = cfg.routability

        timing = self.timing
        if not cfg.timing.timing_driven_mode:
            timing = None
        elif timing is None:
            timing = self._build_timing(model, cfg)
        else:
            timing.update_config(cfg.timing)

        self.routability = routability
        self.timing = timing
        nesterov = self.nesterov
        nesterov.config = cfg.nesterov
        nesterov.routability = routability
        nesterov.timing = timing
        nesterov.observer = ObserverHub(self.observer, cfg.debug)

    def set_target_density(self, density: float) -> None:
        self.configure(target_density=density)

    def set_uniform_target_density_mode(self, mode: bool) -> None:
        self.configure(uniform_target_density_mode=mode)

    def set_bin_grid_count(self, count_x: int, count_y: int) -> None:
        self.configure(bin_grid_count_x=count_x, bin_grid_count_y=count_y)

    def set_routability_rc_coefficients(self, k1: float, k2: float, k3: float, k4: float) -> None:
        self.configure(
            routability_rc_k1=k1, routability_rc_k2=k2, routability_rc_k3=k3, routability_rc_k4=k4
        )

    def add_timing_net_weight_overflow(self, overflow: int) -> None:
        """Add an overflow checkpoint (percent) for timing reweighting.

        The first call replaces the default checkpoint list.
        """
        current = [] if not self._custom_timing_overflows else list(self._config.timing.timing_net_weight_overflows)
        self.configure(timing_net_weight_overflows=current + [overflow])
        self._custom_timing_overflows = True

    def set_debug(
        self,
        pause_iterations: int,
        update_iterations: int,
        draw_bins: bool = False,
        initial: bool = False,
        instance: str | None = None,
    ) -> None:
        self.configure(
            debug_pause_iterations=pause_iterations,
            debug_update_iterations=update_iterations,
            debug_draw_bins=draw_bins,
            debug_initial=initial,
            debug_instance=instance,
        )

    def get_uniform_target_density(self) -> float:
        """Uniform density of the built model, else the configured target."""
        if self.model is None:
            return self._config.nesterov.target_density
        return self.model.uniform_target_density()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Drop the model, the optimizer state and the feedback subsystems."""
        self._clear()
        self._degenerate = []
        logger.debug("Placer reset")

    def _backend(self) -> ArrayBackend:
        return get_backend(force_cpu=self._config.force_cpu)

    def _ensure_model(self) -> PlacementModel:
        if self.model is None:
            self.model = PlacementModel.from_database(self.db)
        return self.model

    def _ensure_nesterov(self) -> NesterovPlacer:
        """Build density, feedback and optimizer once per configuration."""
        if self.nesterov is not None:
            return self.nesterov

        cfg = self._config
        nv = cfg.nesterov
        model = self._ensure_model()
        backend = self._backend()

        target = nv.target_density
        if nv.uniform_target_density_mode:
            target = model.uniform_target_density()
            logger.info(f"Uniform target density: {target:.2f}")
        if model.movable_area() > target * model.white_space_area():
            logger.warning(
                f"Movable area exceeds target density {target:.2f} of the white space; "
                f"overflow cannot reach zero"
            )

        if nv.bin_grid_count_x and nv.bin_grid_count_y:
            grid = BinGrid(model.core, nv.bin_grid_count_x, nv.bin_grid_count_y)
        else:
            avg = model.movable_area() / model.num_movable if model.num_movable else 0.0
            grid = BinGrid.auto(model.core, avg, target)
            if nv.bin_grid_count_x:
                grid = BinGrid(model.core, nv.bin_grid_count_x, grid.ny)
            elif nv.bin_grid_count_y:
                grid = BinGrid(model.core, grid.nx, nv.bin_grid_count_y)

        self.density = DensityModel(
            model, grid, target, backend, pad_left=cfg.pad_left, pad_right=cfg.pad_right
        )
        wirelength = WeightedAverageWirelength(
            model.netlist.topology(skip_io=cfg.skip_io_mode), model.netlist.num_instances, backend
        )

        if cfg.routability.routability_driven_mode:
            self.routability = self._build_routability(model, self.density, cfg)
        if cfg.timing.timing_driven_mode:
            self.timing = self._build_timing(model, cfg)

        self.nesterov = NesterovPlacer(
            model,
            self.density,
            wirelength,
            nv,
            routability=self.routability,
            timing=self.timing,
            observer=ObserverHub(self.observer, cfg.debug),
        )
        return self.nesterov

    def _build_routability(
        self, model: PlacementModel, density: DensityModel, cfg: PlacerConfig
    ) -> RoutabilityFeedback:
        router = self.router
        if router is None:
            logger.info("No global router supplied, estimating congestion with RUDY")
            router = RudyCongestionEstimator()
        return RoutabilityFeedback(model, density, cfg.routability, router)

    def _build_timing(self, model: PlacementModel, cfg: PlacerConfig) -> TimingFeedback:
        if self.timing_engine is None:
            raise ConfigurationError(
                "timing_driven_mode",
                True,
                message="Timing-driven mode needs a timing engine",
                suggestions=["Pass timing_engine= to GlobalPlacer", "Disable timing_driven_mode"],
            )
        return TimingFeedback(model, cfg.timing, self.timing_engine)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_initial_placement(self) -> InitialPlaceResult:
        """Quadratic initial placement; writes positions to the database.

        Existing optimizer state is dropped because positions change.
        """
        model = self._ensure_model()
        self._clear_engines()
        placer = InitialPlacer(
            model,
            self._config.initial_place,
            self._backend(),
            skip_io=self._config.skip_io_mode,
        )
        result = placer.place()
        self._degenerate = list(result.degenerate)
        model.write_back(self.db)

        hub = ObserverHub(self.observer, self._config.debug)
        if hub.active:
            nl = model.netlist
            hub.notify_initial(
                lambda: hub.build(-1, nl.names, model.cx, model.cy, nl.width, nl.height, 0.0, model.hpwl())
            )
        return result

    def run_optimization(self, start_iteration: int = 0) -> PlacementResult:
        """Run the Nesterov loop from ``start_iteration``.

        Raises:
            ExternalEngineError: If the router or timing engine fails.
        """
        nesterov = self._ensure_nesterov()
        return self._finish(nesterov.run(start_iteration))

    def run_incremental(self) -> PlacementResult:
        """Re-enter the loop from the current positions, without initial placement.

        If the model was reset, positions are read back from the database.
        """
        nesterov = self._ensure_nesterov()
        if nesterov.state is None:
            nesterov.initialize()
        logger.info(f"Incremental placement from iteration {nesterov.state.iteration}")
        return self._finish(nesterov.run())

    def _finish(self, run: Any) -> PlacementResult:
        if self.routability is not None:
            self.routability.restore()
        self.model.write_back(self.db)
        result = PlacementResult(
            converged=run.converged,
            iterations=run.iterations,
            overflow=run.overflow,
            hpwl=run.hpwl,
            density_penalty=run.density_penalty,
            failures=list(run.failures),
            degenerate=list(self._degenerate),
            inflations=run.inflations,
            reweights=run.reweights,
        )
        logger.info(
            f"Global placement {'converged' if result.converged else 'stopped'}: "
            f"iterations {result.iterations}, overflow {result.overflow:.4f}, HPWL {result.hpwl:.0f}"
        )
        return result
