"""
gplace: analytical global placement for standard-cell designs.

Places circuit instances on a chip core by minimising a smoothed wirelength
under an electrostatic density penalty, with optional routability-driven
inflation and timing-driven net reweighting.

Modules:
    placement: Placement model, density and wirelength models, initial and
        Nesterov placers
    feedback: Routability (congestion) and timing feedback
    acceleration: NumPy/SciPy and CUDA (CuPy) kernel dispatch
    replace: The GlobalPlacer orchestrator
    config: Configuration fields, ranges and TOML loading
    io: JSON design files

Quick Start::

    from gplace import GlobalPlacer, load_design, save_design

    design = load_design("design.json")
    placer = GlobalPlacer(design)
    placer.run_initial_placement()
    result = placer.run_optimization()
    save_design(design, "placed.json")
"""

__version__ = "0.1.0"

from gplace.config import PlacerConfig
from gplace.exceptions import (
    ConfigurationError,
    ConvergenceFailure,
    DegenerateInputError,
    DesignError,
    ExternalEngineError,
    GPlaceError,
)
from gplace.feedback import CongestionMap, CongestionProvider, RudyCongestionEstimator, TimingProvider
from gplace.io import load_design, save_design
from gplace.observer import IterationSnapshot, PlacementObserver
from gplace.placement import Design, Instance, Net, Pin, PlacementDatabase, Rect
from gplace.replace import GlobalPlacer, PlacementResult

__all__ = [
    # Version
    "__version__",
    # Orchestrator
    "GlobalPlacer",
    "PlacementResult",
    "PlacerConfig",
    # Design
    "Design",
    "Instance",
    "Net",
    "Pin",
    "PlacementDatabase",
    "Rect",
    "load_design",
    "save_design",
    # External engines
    "CongestionMap",
    "CongestionProvider",
    "RudyCongestionEstimator",
    "TimingProvider",
    "IterationSnapshot",
    "PlacementObserver",
    # Errors
    "GPlaceError",
    "ConfigurationError",
    "ConvergenceFailure",
    "DegenerateInputError",
    "DesignError",
    "ExternalEngineError",
]
