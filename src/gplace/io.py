"""
JSON design files.

Format::

    {
      "core": [lx, ly, ux, uy],
      "die": [lx, ly, ux, uy],            # optional, defaults to the core
      "instances": [
        {"name": "u1", "width": 2, "height": 1, "x": 0, "y": 0,
         "fixed": false, "io": false, "density_weight": 1.0}
      ],
      "nets": [
        {"name": "n1", "weight": 1.0,
         "pins": [{"instance": "u1", "dx": 0.5, "dy": 0}, {"x": 0, "y": 40}]}
      ]
    }

A pin without ``instance`` is a free-standing IO port at absolute ``(x, y)``.
Instance coordinates are lower-left corners.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from gplace.exceptions import DesignError
from gplace.placement.design import Design, Instance, Net, Pin, PlacementDatabase, Rect

logger = logging.getLogger(__name__)


def _rect(value: Any, what: str) -> Rect:
    if not isinstance(value, (list, tuple)) or len(value) != 4:
        raise DesignError(f"'{what}' must be [lx, ly, ux, uy]", context={what: value})
    return Rect(*(float(v) for v in value))


def _pin(data: dict[str, Any]) -> Pin:
    if data.get("instance") is None:
        return Pin(None, float(data.get("x", 0.0)), float(data.get("y", 0.0)), data.get("name", ""))
    return Pin(
        data["instance"],
        float(data.get("dx", 0.0)),
        float(data.get("dy", 0.0)),
        data.get("name", ""),
    )


def design_from_dict(data: dict[str, Any]) -> Design:
    """Build a :class:`Design` from parsed JSON.

    Raises:
        DesignError: On missing or malformed fields.
    """
    if "core" not in data:
        raise DesignError("Design has no 'core' rectangle")
    core = _rect(data["core"], "core")
    die = _rect(data["die"], "die") if "die" in data else None
    design = Design(core, die)

    try:
        for item in data.get("instances", []):
            design.add_instance(
                Instance(
                    name=item["name"],
                    width=float(item["width"]),
                    height=float(item["height"]),
                    x=float(item.get("x", 0.0)),
                    y=float(item.get("y", 0.0)),
                    fixed=bool(item.get("fixed", False)),
                    is_io=bool(item.get("io", False)),
                    density_weight=float(item.get("density_weight", 1.0)),
                )
            )
        for item in data.get("nets", []):
            design.add_net(
                Net(
                    name=item["name"],
                    pins=[_pin(p) for p in item.get("pins", [])],
                    weight=float(item.get("weight", 1.0)),
                )
            )
    except KeyError as e:
        raise DesignError(f"Missing field {e} in design file") from e
    return design


def design_to_dict(db: PlacementDatabase) -> dict[str, Any]:
    """Serialise any placement database to the JSON structure."""
    core = db.core()
    die = db.die()
    instances = []
    for inst in db.instances():
        entry: dict[str, Any] = {
            "name": inst.name,
            "width": inst.width,
            "height": inst.height,
            "x": inst.x,
            "y": inst.y,
        }
        if inst.fixed:
            entry["fixed"] = True
        if inst.is_io:
            entry["io"] = True
        if inst.density_weight != 1.0:
            entry["density_weight"] = inst.density_weight
        instances.append(entry)

    nets = []
    for net in db.nets():
        pins = []
        for pin in net.pins:
            if pin.instance is None:
                p: dict[str, Any] = {"x": pin.offset_x, "y": pin.offset_y}
            else:
                p = {"instance": pin.instance, "dx": pin.offset_x, "dy": pin.offset_y}
            if pin.name:
                p["name"] = pin.name
            pins.append(p)
        entry = {"name": net.name, "pins": pins}
        if net.weight != 1.0:
            entry["weight"] = net.weight
        nets.append(entry)

    return {
        "core": [core.lx, core.ly, core.ux, core.uy],
        "die": [die.lx, die.ly, die.ux, die.uy],
        "instances": instances,
        "nets": nets,
    }


def load_design(path: str | Path) -> Design:
    """Read a JSON design file.

    Raises:
        DesignError: If the file cannot be read or is malformed.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except OSError as e:
        raise DesignError(f"Cannot read design file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise DesignError(f"Invalid JSON in {path}: {e}") from e
    design = design_from_dict(data)
    logger.info(f"Loaded {path}: {design}")
    return design


def save_design(db: PlacementDatabase, path: str | Path) -> None:
    """Write a placement database as a JSON design file."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(design_to_dict(db), indent=2) + "\n")
    logger.info(f"Wrote {path}")
