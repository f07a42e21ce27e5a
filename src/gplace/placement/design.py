"""Design database types and the in-memory database.

The placer never owns the circuit database. It reads instances, nets and
core geometry through the :class:`PlacementDatabase` protocol and writes
final lower-left coordinates back through ``set_location``. :class:`Design`
is the in-memory implementation used by the CLI, the JSON loader and tests.

Usage::

    design = Design(core=Rect(0, 0, 100, 100))
    design.add_instance(Instance("u1", width=2, height=1))
    design.add_instance(Instance("pad", width=1, height=1, x=0, y=50, fixed=True, is_io=True))
    design.add_net(Net("n1", [Pin("u1"), Pin("pad")]))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence, runtime_checkable

from gplace.exceptions import DesignError


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle.

    Attributes:
        lx: Left edge.
        ly: Bottom edge.
        ux: Right edge.
        uy: Top edge.
    """

    lx: float
    ly: float
    ux: float
    uy: float

    @property
    def width(self) -> float:
        return self.ux - self.lx

    @property
    def height(self) -> float:
        return self.uy - self.ly

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def center(self) -> tuple[float, float]:
        return (0.5 * (self.lx + self.ux), 0.5 * (self.ly + self.uy))


@dataclass
class Instance:
    """A placeable (or fixed) circuit instance.

    Attributes:
        name: Unique instance name.
        width: Physical width.
        height: Physical height.
        x: Lower-left x coordinate.
        y: Lower-left y coordinate.
        fixed: Fixed instances never move.
        is_io: Fixed terminal on the core boundary (IO port or pad).
        density_weight: Multiplier on the instance's area in the density model.
    """

    name: str
    width: float
    height: float
    x: float = 0.0
    y: float = 0.0
    fixed: bool = False
    is_io: bool = False
    density_weight: float = 1.0

    @property
    def area(self) -> float:
        return self.width * self.height


@dataclass(frozen=True)
class Pin:
    """A net terminal.

    Attributes:
        instance: Owning instance name, or None for a free-standing IO port.
        offset_x: Offset from the instance centre (absolute x for IO ports).
        offset_y: Offset from the instance centre (absolute y for IO ports).
        name: Pin name, for reporting only.
    """

    instance: str | None
    offset_x: float = 0.0
    offset_y: float = 0.0
    name: str = ""


@dataclass
class Net:
    """A net and its pins.

    Attributes:
        name: Unique net name.
        pins: Pins on the net.
        weight: Base weight; timing feedback multiplies on top of it.
    """

    name: str
    pins: list[Pin] = field(default_factory=list)
    weight: float = 1.0


@runtime_checkable
class PlacementDatabase(Protocol):
    """Capability the placer needs from a circuit database."""

    def instances(self) -> Sequence[Instance]: ...

    def nets(self) -> Sequence[Net]: ...

    def core(self) -> Rect: ...

    def die(self) -> Rect: ...

    def set_location(self, name: str, x: float, y: float) -> None: ...


class Design:
    """In-memory placement database.

    Args:
        core: Placeable core area.
        die: Die area (defaults to the core).
    """

    def __init__(self, core: Rect, die: Rect | None = None):
        self._core = core
        self._die = die or core
        self._instances: list[Instance] = []
        self._by_name: dict[str, Instance] = {}
        self._nets: list[Net] = []

    def add_instance(self, instance: Instance) -> Instance:
        if instance.name in self._by_name:
            raise DesignError(
                "Duplicate instance name",
                context={"instance": instance.name},
            )
        self._instances.append(instance)
        self._by_name[instance.name] = instance
        return instance

    def add_net(self, net: Net) -> Net:
        self._nets.append(net)
        return net

    def instance(self, name: str) -> Instance:
        try:
            return self._by_name[name]
        except KeyError:
            raise DesignError("Unknown instance", context={"instance": name}) from None

    # PlacementDatabase protocol

    def instances(self) -> Sequence[Instance]:
        return self._instances

    def nets(self) -> Sequence[Net]:
        return self._nets

    def core(self) -> Rect:
        return self._core

    def die(self) -> Rect:
        return self._die

    def set_location(self, name: str, x: float, y: float) -> None:
        inst = self.instance(name)
        if inst.fixed:
            raise DesignError("Cannot move a fixed instance", context={"instance": name})
        inst.x = x
        inst.y = y

    def __repr__(self) -> str:
        return (
            f"Design(instances={len(self._instances)}, nets={len(self._nets)}, "
            f"core={self._core})"
        )
