"""
Placement model and numeric engines.

- :mod:`design`: database protocol and the in-memory :class:`Design`
- :mod:`model`: array view of a design plus the mutable position store
- :mod:`density`: bin grid and electrostatic density model
- :mod:`wirelength`: HPWL and weighted-average wirelength
- :mod:`initial`: bound-to-bound quadratic initial placement
- :mod:`nesterov`: Nesterov global placement loop
"""

from __future__ import annotations

from .density import BinGrid, DensityModel
from .design import Design, Instance, Net, Pin, PlacementDatabase, Rect
from .initial import InitialPlacer, InitialPlaceResult
from .model import Netlist, PlacementModel, PlacementSnapshot
from .nesterov import NesterovPlacer, NesterovResult, NesterovState
from .wirelength import WeightedAverageWirelength, hpwl

__all__ = [
    "BinGrid",
    "DensityModel",
    "Design",
    "Instance",
    "InitialPlacer",
    "InitialPlaceResult",
    "Net",
    "Netlist",
    "NesterovPlacer",
    "NesterovResult",
    "NesterovState",
    "Pin",
    "PlacementDatabase",
    "PlacementModel",
    "PlacementSnapshot",
    "Rect",
    "WeightedAverageWirelength",
    "hpwl",
]
