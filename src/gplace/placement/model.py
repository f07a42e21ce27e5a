"""
Placement model: array view of the design owned by the placer.

The model is split into an immutable identity part (:class:`Netlist`:
names, sizes, pin topology) and a mutable store on :class:`PlacementModel`
(instance centres, timing weights, inflation ratios). Every subsystem reads
and mutates the same store, and the optimizer, routability feedback and
timing feedback touch it in a fixed order, so no subsystem ever sees a
half-updated state.

Positions are instance centres inside the engine. ``write_back`` converts to
lower-left coordinates for the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from gplace.exceptions import DesignError
from gplace.placement.design import PlacementDatabase, Rect

logger = logging.getLogger(__name__)


def _frozen(arr: Any, dtype: Any = np.float64) -> NDArray:
    out = np.array(arr, dtype=dtype)
    out.flags.writeable = False
    return out


@dataclass(frozen=True)
class PinTopology:
    """Pins grouped by net, as consumed by the wirelength kernels.

    Attributes:
        pin_inst: Owning instance index per pin (-1 for free IO ports).
        pin_off_x: Offset from the instance centre (absolute x for IO ports).
        pin_off_y: Offset from the instance centre (absolute y for IO ports).
        pin_net: Index into ``net_ids`` per pin.
        net_ids: Netlist net index of each net kept in this topology.
        net_ptr: CSR pointer; pins of net k are ``net_ptr[k]:net_ptr[k+1]``.
    """

    pin_inst: NDArray[np.int64]
    pin_off_x: NDArray[np.float64]
    pin_off_y: NDArray[np.float64]
    pin_net: NDArray[np.int64]
    net_ids: NDArray[np.int64]
    net_ptr: NDArray[np.int64]

    @property
    def num_pins(self) -> int:
        return len(self.pin_inst)

    @property
    def num_nets(self) -> int:
        return len(self.net_ids)


@dataclass(frozen=True)
class Netlist:
    """Immutable identity structure of a design.

    All arrays are read-only. Pins are stored net by net in CSR order.
    """

    core: Rect
    die: Rect
    names: tuple[str, ...]
    width: NDArray[np.float64]
    height: NDArray[np.float64]
    fixed: NDArray[np.bool_]
    is_io: NDArray[np.bool_]
    density_weight: NDArray[np.float64]
    net_names: tuple[str, ...]
    net_base_weight: NDArray[np.float64]
    net_ptr: NDArray[np.int64]
    pin_inst: NDArray[np.int64]
    pin_off_x: NDArray[np.float64]
    pin_off_y: NDArray[np.float64]
    pin_net: NDArray[np.int64]
    pin_is_io: NDArray[np.bool_]

    @property
    def num_instances(self) -> int:
        return len(self.names)

    @property
    def num_nets(self) -> int:
        return len(self.net_names)

    @property
    def num_pins(self) -> int:
        return len(self.pin_inst)

    @property
    def movable(self) -> NDArray[np.int64]:
        """Indices of movable instances."""
        return np.flatnonzero(~self.fixed)

    def topology(self, skip_io: bool = False) -> PinTopology:
        """Pins of the nets that carry wirelength.

        Nets with fewer than two remaining pins are dropped. With ``skip_io``
        the IO pins are removed first, so IO-only terminals never enter the
        smoothed wirelength model.
        """
        keep = np.ones(self.num_pins, dtype=bool)
        if skip_io:
            keep &= ~self.pin_is_io
        counts = np.bincount(self.pin_net[keep], minlength=self.num_nets)
        live = counts >= 2
        keep &= live[self.pin_net]

        net_ids = np.flatnonzero(live)
        remap = np.full(self.num_nets, -1, dtype=np.int64)
        remap[net_ids] = np.arange(len(net_ids))
        pin_net = remap[self.pin_net[keep]]
        net_ptr = np.zeros(len(net_ids) + 1, dtype=np.int64)
        np.cumsum(counts[net_ids], out=net_ptr[1:])
        return PinTopology(
            pin_inst=self.pin_inst[keep],
            pin_off_x=self.pin_off_x[keep],
            pin_off_y=self.pin_off_y[keep],
            pin_net=pin_net,
            net_ids=net_ids,
            net_ptr=net_ptr,
        )

    @classmethod
    def from_database(cls, db: PlacementDatabase) -> tuple[Netlist, NDArray, NDArray]:
        """Read a database into a netlist plus initial centre coordinates.

        Raises:
            DesignError: On an empty core, duplicate instance names, or a pin
                on an unknown instance.
        """
        core = db.core()
        if core.width <= 0 or core.height <= 0:
            raise DesignError(
                "Core area is empty",
                context={"core": core},
                suggestions=["Check the core rectangle's lower-left and upper-right corners"],
            )

        instances = list(db.instances())
        index: dict[str, int] = {}
        for i, inst in enumerate(instances):
            if inst.name in index:
                raise DesignError("Duplicate instance name", context={"instance": inst.name})
            if inst.width < 0 or inst.height < 0:
                raise DesignError(
                    "Instance has a negative size",
                    context={"instance": inst.name, "size": (inst.width, inst.height)},
                )
            index[inst.name] = i

        width = np.array([inst.width for inst in instances], dtype=np.float64)
        height = np.array([inst.height for inst in instances], dtype=np.float64)
        cx = np.array([inst.x for inst in instances], dtype=np.float64) + 0.5 * width
        cy = np.array([inst.y for inst in instances], dtype=np.float64) + 0.5 * height
        fixed = np.array([inst.fixed or inst.is_io for inst in instances], dtype=bool)
        is_io = np.array([inst.is_io for inst in instances], dtype=bool)

        net_names: list[str] = []
        net_weight: list[float] = []
        net_ptr = [0]
        pin_inst: list[int] = []
        pin_off_x: list[float] = []
        pin_off_y: list[float] = []
        pin_net: list[int] = []
        pin_is_io: list[bool] = []

        for net in db.nets():
            if net.weight <= 0:
                raise DesignError(
                    "Net weight must be positive", context={"net": net.name, "weight": net.weight}
                )
            k = len(net_names)
            for pin in net.pins:
                if pin.instance is None:
                    pin_inst.append(-1)
                    pin_is_io.append(True)
                else:
                    try:
                        owner = index[pin.instance]
                    except KeyError:
                        raise DesignError(
                            "Net references an unknown instance",
                            context={"net": net.name, "instance": pin.instance},
                        ) from None
                    pin_inst.append(owner)
                    pin_is_io.append(bool(is_io[owner]))
                pin_off_x.append(pin.offset_x)
                pin_off_y.append(pin.offset_y)
                pin_net.append(k)
            net_names.append(net.name)
            net_weight.append(net.weight)
            net_ptr.append(len(pin_inst))

        netlist = cls(
            core=core,
            die=db.die(),
            names=tuple(inst.name for inst in instances),
            width=_frozen(width),
            height=_frozen(height),
            fixed=_frozen(fixed, bool),
            is_io=_frozen(is_io, bool),
            density_weight=_frozen([inst.density_weight for inst in instances]),
            net_names=tuple(net_names),
            net_base_weight=_frozen(net_weight),
            net_ptr=_frozen(net_ptr, np.int64),
            pin_inst=_frozen(pin_inst, np.int64),
            pin_off_x=_frozen(pin_off_x),
            pin_off_y=_frozen(pin_off_y),
            pin_net=_frozen(pin_net, np.int64),
            pin_is_io=_frozen(pin_is_io, bool),
        )
        return netlist, cx, cy


@dataclass(frozen=True)
class PlacementSnapshot:
    """Read-only copy of the placement handed to external engines.

    Attributes:
        core: Core rectangle.
        names: Instance names.
        x: Instance centre x.
        y: Instance centre y.
        width: Instance width (inflated sizes are not reported).
        height: Instance height.
        fixed: Fixed flags.
        net_names: Net names.
        net_weights: Current net weights (base times timing weight).
        net_ptr: CSR pointer into the pin arrays.
        pin_x: Absolute pin x.
        pin_y: Absolute pin y.
    """

    core: Rect
    names: tuple[str, ...]
    x: NDArray[np.float64]
    y: NDArray[np.float64]
    width: NDArray[np.float64]
    height: NDArray[np.float64]
    fixed: NDArray[np.bool_]
    net_names: tuple[str, ...]
    net_weights: NDArray[np.float64]
    net_ptr: NDArray[np.int64]
    pin_x: NDArray[np.float64]
    pin_y: NDArray[np.float64]

    def net_pins(self, k: int) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Absolute pin coordinates of net ``k``."""
        lo, hi = self.net_ptr[k], self.net_ptr[k + 1]
        return self.pin_x[lo:hi], self.pin_y[lo:hi]


class PlacementModel:
    """Mutable position and weight store over an immutable netlist.

    Args:
        netlist: Identity structure.
        cx: Initial instance centres (x).
        cy: Initial instance centres (y).

    Example::

        model = PlacementModel.from_database(design)
        model.cx[model.movable] = 10.0
        model.clamp_instances()
        model.write_back(design)
    """

    def __init__(self, netlist: Netlist, cx: NDArray[np.float64], cy: NDArray[np.float64]):
        self.netlist = netlist
        self.cx = np.array(cx, dtype=np.float64)
        self.cy = np.array(cy, dtype=np.float64)
        self.movable = netlist.movable
        self.timing_weight = np.ones(netlist.num_nets, dtype=np.float64)
        # Area ratio per instance applied by routability feedback
        self.inflation = np.ones(netlist.num_instances, dtype=np.float64)
        self.bloat_count = np.zeros(netlist.num_instances, dtype=np.int64)

    @classmethod
    def from_database(cls, db: PlacementDatabase) -> PlacementModel:
        netlist, cx, cy = Netlist.from_database(db)
        logger.info(
            f"Placement model: {netlist.num_instances} instances "
            f"({len(netlist.movable)} movable), {netlist.num_nets} nets, "
            f"{netlist.num_pins} pins"
        )
        return cls(netlist, cx, cy)

    @property
    def core(self) -> Rect:
        return self.netlist.core

    @property
    def num_movable(self) -> int:
        return len(self.movable)

    # ------------------------------------------------------------------
    # Weights
    # ------------------------------------------------------------------

    def net_weights(self) -> NDArray[np.float64]:
        """Effective net weights (base weight times timing weight)."""
        return self.netlist.net_base_weight * self.timing_weight

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def pin_positions(
        self, cx: NDArray | None = None, cy: NDArray | None = None
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Absolute pin coordinates for the given (or current) centres."""
        cx = self.cx if cx is None else cx
        cy = self.cy if cy is None else cy
        nl = self.netlist
        if nl.num_instances == 0:
            return nl.pin_off_x.copy(), nl.pin_off_y.copy()
        owned = nl.pin_inst >= 0
        owner = np.where(owned, nl.pin_inst, 0)
        px = np.where(owned, cx[owner] + nl.pin_off_x, nl.pin_off_x)
        py = np.where(owned, cy[owner] + nl.pin_off_y, nl.pin_off_y)
        return px, py

    def hpwl(self, cx: NDArray | None = None, cy: NDArray | None = None) -> float:
        """Unweighted half-perimeter wirelength over all nets."""
        from gplace.placement.wirelength import hpwl

        px, py = self.pin_positions(cx, cy)
        return hpwl(px, py, self.netlist.pin_net, self.netlist.num_nets)

    def clamp(
        self,
        x: NDArray[np.float64],
        y: NDArray[np.float64],
        width: NDArray[np.float64],
        height: NDArray[np.float64],
    ) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        """Clamp centres so each box lies inside the core.

        A box wider (or taller) than the core is centred on that axis.
        """
        return (
            _clamp_axis(x, width, self.core.lx, self.core.ux),
            _clamp_axis(y, height, self.core.ly, self.core.uy),
        )

    def clamp_instances(self) -> None:
        """Clamp movable instance centres into the core in place."""
        mov = self.movable
        self.cx[mov], self.cy[mov] = self.clamp(
            self.cx[mov], self.cy[mov], self.netlist.width[mov], self.netlist.height[mov]
        )

    def movable_area(self) -> float:
        mov = self.movable
        return float(np.sum(self.netlist.width[mov] * self.netlist.height[mov]))

    def fixed_area_in_core(self) -> float:
        """Area of fixed instances clipped to the core."""
        nl = self.netlist
        fx = nl.fixed
        core = self.core
        lx = np.maximum(self.cx[fx] - 0.5 * nl.width[fx], core.lx)
        ux = np.minimum(self.cx[fx] + 0.5 * nl.width[fx], core.ux)
        ly = np.maximum(self.cy[fx] - 0.5 * nl.height[fx], core.ly)
        uy = np.minimum(self.cy[fx] + 0.5 * nl.height[fx], core.uy)
        return float(np.sum(np.clip(ux - lx, 0, None) * np.clip(uy - ly, 0, None)))

    def white_space_area(self) -> float:
        return self.core.area - self.fixed_area_in_core()

    def uniform_target_density(self) -> float:
        """``ceil(100 * movable_area / white_space) / 100``."""
        white = self.white_space_area()
        if white <= 0:
            return 1.0
        return float(np.ceil(100.0 * self.movable_area() / white) / 100.0)

    # ------------------------------------------------------------------
    # Database and engine views
    # ------------------------------------------------------------------

    def snapshot(self) -> PlacementSnapshot:
        """Copy the current placement into read-only arrays."""
        nl = self.netlist
        px, py = self.pin_positions()
        return PlacementSnapshot(
            core=nl.core,
            names=nl.names,
            x=_frozen(self.cx),
            y=_frozen(self.cy),
            width=nl.width,
            height=nl.height,
            fixed=nl.fixed,
            net_names=nl.net_names,
            net_weights=_frozen(self.net_weights()),
            net_ptr=nl.net_ptr,
            pin_x=_frozen(px),
            pin_y=_frozen(py),
        )

    def write_back(self, db: PlacementDatabase) -> None:
        """Store movable instance lower-left coordinates in the database."""
        if not np.all(np.isfinite(self.cx)) or not np.all(np.isfinite(self.cy)):
            raise DesignError("Refusing to write non-finite coordinates")
        nl = self.netlist
        for i in self.movable:
            db.set_location(
                nl.names[i],
                float(self.cx[i] - 0.5 * nl.width[i]),
                float(self.cy[i] - 0.5 * nl.height[i]),
            )
        logger.debug(f"Wrote {self.num_movable} instance locations back to the database")


def _clamp_axis(c: NDArray, size: NDArray, lo: float, hi: float) -> NDArray:
    half = 0.5 * size
    low = lo + half
    high = hi - half
    centred = 0.5 * (lo + hi)
    return np.where(low <= high, np.clip(c, low, np.maximum(low, high)), centred)
