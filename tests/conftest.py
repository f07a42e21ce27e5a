"""Pytest fixtures for gplace tests."""

import numpy as np
import pytest

from gplace.placement.design import Design, Instance, Net, Pin, Rect


def make_anchor_design() -> Design:
    """Two movable cells on one net with a fixed instance at (20, 30)."""
    design = Design(Rect(0, 0, 100, 100))
    design.add_instance(Instance("F", 2, 2, x=19, y=29, fixed=True))
    design.add_instance(Instance("A", 1, 1))
    design.add_instance(Instance("B", 1, 1))
    design.add_net(Net("n1", [Pin("F"), Pin("A"), Pin("B")]))
    return design


def make_benchmark_design(n_cells: int = 40, size: float = 10.0, seed: int = 7) -> Design:
    """Random netlist of equal cells anchored by four IO pads on the core edges."""
    rng = np.random.default_rng(seed)
    design = Design(Rect(0, 0, 100, 100))
    pads = {"pad_w": (0, 49), "pad_e": (99, 49), "pad_s": (49, 0), "pad_n": (49, 99)}
    for name, (x, y) in pads.items():
        design.add_instance(Instance(name, 1, 1, x=x, y=y, fixed=True, is_io=True))
    names = [f"c{i}" for i in range(n_cells)]
    for name in names:
        design.add_instance(Instance(name, size, size))

    # Chain plus random 3-pin nets
    for i in range(n_cells - 1):
        design.add_net(Net(f"chain{i}", [Pin(names[i], 1.0, 0.0), Pin(names[i + 1], -1.0, 0.0)]))
    for i in range(n_cells // 2):
        picks = rng.choice(n_cells, size=3, replace=False)
        design.add_net(Net(f"r{i}", [Pin(names[int(p)]) for p in picks]))
    for k, pad in enumerate(pads):
        design.add_net(Net(f"io{k}", [Pin(pad), Pin(names[(k * n_cells) // 4])]))
    return design


@pytest.fixture
def anchor_design():
    return make_anchor_design()


@pytest.fixture
def benchmark_design():
    return make_benchmark_design()


@pytest.fixture
def small_design():
    """Eight movable cells, two pads, a few nets."""
    return make_benchmark_design(n_cells=8, size=10.0, seed=3)


@pytest.fixture
def design_factory():
    """Builds fresh benchmark designs; keyword arguments as make_benchmark_design."""
    return make_benchmark_design
