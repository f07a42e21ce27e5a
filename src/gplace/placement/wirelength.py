"""
Wirelength models.

HPWL is the reporting metric. The optimizer differentiates the
weighted-average (WA) smoothing of each net's span::

    W_x(e) = sum(x_i exp(x_i/g)) / sum(exp(x_i/g))
           - sum(x_i exp(-x_i/g)) / sum(exp(-x_i/g))

which tends to the HPWL as ``g`` (gamma) goes to 0. Exponents are shifted by
the per-net extreme so they never overflow.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from gplace.acceleration import ArrayBackend
from gplace.placement.model import PinTopology

logger = logging.getLogger(__name__)


def hpwl(
    px: NDArray[np.float64],
    py: NDArray[np.float64],
    pin_net: NDArray[np.int64],
    num_nets: int,
    weights: NDArray[np.float64] | None = None,
) -> float:
    """Half-perimeter wirelength.

    Args:
        px: Pin x coordinates.
        py: Pin y coordinates.
        pin_net: Net index per pin.
        num_nets: Number of nets.
        weights: Optional per-net weights.

    Returns:
        Sum over nets with at least two pins of the bounding box half
        perimeter.
    """
    if num_nets == 0 or len(px) == 0:
        return 0.0
    counts = np.bincount(pin_net, minlength=num_nets)
    spans = np.zeros(num_nets)
    for coords in (px, py):
        hi = np.full(num_nets, -np.inf)
        lo = np.full(num_nets, np.inf)
        np.maximum.at(hi, pin_net, coords)
        np.minimum.at(lo, pin_net, coords)
        live = counts >= 2
        spans[live] += hi[live] - lo[live]
    if weights is not None:
        spans *= weights
    return float(np.sum(spans))


@dataclass
class WirelengthGradient:
    """Result of one WA evaluation.

    Attributes:
        grad_x: dW/dx per instance.
        grad_y: dW/dy per instance.
        value: Weighted WA wirelength.
    """

    grad_x: NDArray[np.float64]
    grad_y: NDArray[np.float64]
    value: float


class WeightedAverageWirelength:
    """Weighted-average wirelength and its gradient per instance.

    The pin topology is uploaded to the backend once; every call only moves
    instance centres and net weights.

    Args:
        topology: Pins of the nets that carry wirelength.
        num_instances: Number of instances in the model.
        backend: Array backend for the kernels.
    """

    def __init__(self, topology: PinTopology, num_instances: int, backend: ArrayBackend):
        self.topology = topology
        self.num_instances = num_instances
        self.backend = backend
        owned = topology.pin_inst >= 0
        self._owned = backend.array(owned, dtype=bool)
        self._owner = backend.array(np.where(owned, topology.pin_inst, 0), dtype=np.int64)
        self._owned_idx = backend.array(np.flatnonzero(owned), dtype=np.int64)
        self._owned_inst = backend.array(topology.pin_inst[owned], dtype=np.int64)
        self._off_x = backend.array(topology.pin_off_x)
        self._off_y = backend.array(topology.pin_off_y)
        self._pin_net = backend.array(topology.pin_net, dtype=np.int64)

    def pin_weight_sum(self, net_weights: NDArray[np.float64]) -> NDArray[np.float64]:
        """Sum of incident net weights per instance (preconditioner term)."""
        w = np.asarray(net_weights)[self.topology.net_ids]
        out = np.zeros(self.num_instances)
        owned = self.topology.pin_inst >= 0
        np.add.at(out, self.topology.pin_inst[owned], w[self.topology.pin_net[owned]])
        return out

    def gradient(
        self,
        cx: NDArray[np.float64],
        cy: NDArray[np.float64],
        net_weights: NDArray[np.float64],
        gamma: float,
    ) -> WirelengthGradient:
        """Evaluate the WA wirelength and its gradient.

        Args:
            cx: Instance centres (x), all instances.
            cy: Instance centres (y), all instances.
            net_weights: Weights of all netlist nets.
            gamma: Smoothing length (> 0).
        """
        if self.topology.num_nets == 0:
            zeros = np.zeros(self.num_instances)
            return WirelengthGradient(zeros, zeros.copy(), 0.0)

        be = self.backend
        w = be.array(np.asarray(net_weights)[self.topology.net_ids])
        gx, vx = self._axis(be.array(cx), self._off_x, w, gamma)
        gy, vy = self._axis(be.array(cy), self._off_y, w, gamma)
        return WirelengthGradient(be.to_numpy(gx), be.to_numpy(gy), float(vx + vy))

    def _axis(self, centres: Any, offsets: Any, w: Any, gamma: float) -> tuple[Any, float]:
        be = self.backend
        xp = be.xp
        n_nets = self.topology.num_nets
        net = self._pin_net

        if self.num_instances:
            pos = xp.where(self._owned, centres[self._owner] + offsets, offsets)
        else:
            pos = offsets

        hi = be.full(n_nets, -np.inf)
        be.scatter_max(hi, net, pos)
        neg_lo = be.full(n_nets, -np.inf)
        be.scatter_max(neg_lo, net, -pos)
        lo = -neg_lo

        e_max = xp.exp((pos - hi[net]) / gamma)
        e_min = xp.exp((lo[net] - pos) / gamma)

        s_max = be.scatter_add(be.zeros(n_nets), net, e_max)
        s_min = be.scatter_add(be.zeros(n_nets), net, e_min)
        x_max = be.scatter_add(be.zeros(n_nets), net, pos * e_max) / s_max
        x_min = be.scatter_add(be.zeros(n_nets), net, pos * e_min) / s_min

        value = float(xp.sum(w * (x_max - x_min)))

        d_max = e_max / s_max[net] * (1.0 + (pos - x_max[net]) / gamma)
        d_min = e_min / s_min[net] * (1.0 - (pos - x_min[net]) / gamma)
        pin_grad = w[net] * (d_max - d_min)

        grad = be.zeros(self.num_instances)
        be.scatter_add(grad, self._owned_inst, pin_grad[self._owned_idx])
        return grad, value


def wirelength_coef(init_coef: float, bin_w: float, bin_h: float, overflow: float) -> float:
    """Inverse smoothing length ``1 / gamma`` for the given overflow.

    Large overflow keeps the model smooth; as overflow falls the model
    sharpens towards HPWL.
    """
    base = init_coef / (0.5 * (bin_w + bin_h))
    if overflow > 1.0:
        factor = 0.1
    elif overflow < 0.1:
        factor = 10.0
    else:
        factor = 10.0 ** (-((overflow - 0.1) * 20.0 / 9.0 - 1.0))
    return base * factor
