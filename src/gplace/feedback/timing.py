"""
Timing feedback: slack-driven net reweighting.

At configured overflow checkpoints the timing engine reports per-net slack
for the current placement. The most critical nets get their weight raised,
proportionally to how far their slack is from the best of the critical set,
so the wirelength model pulls their pins together harder.
"""

from __future__ import annotations

import logging
import math
from typing import Mapping, Protocol, runtime_checkable

import numpy as np

from gplace.config import TimingConfig
from gplace.exceptions import ExternalEngineError
from gplace.placement.model import PlacementModel, PlacementSnapshot

logger = logging.getLogger(__name__)


@runtime_checkable
class TimingProvider(Protocol):
    """Static timing engine consulted by timing feedback."""

    def net_slacks(self, snapshot: PlacementSnapshot) -> Mapping[str, float]: ...


class TimingFeedback:
    """Fires each overflow checkpoint once and reweights critical nets.

    Args:
        model: Placement model (owner of the timing weights).
        config: Timing settings.
        provider: Timing engine.
    """

    def __init__(self, model: PlacementModel, config: TimingConfig, provider: TimingProvider):
        self.model = model
        self.config = config
        self.provider = provider
        self.pending = sorted(set(config.timing_net_weight_overflows), reverse=True)
        self.fired: list[int] = []
        self._net_index = {name: k for k, name in enumerate(model.netlist.net_names)}

    def update_config(self, config: TimingConfig) -> None:
        """Switch settings mid-run; checkpoints that already fired stay fired."""
        self.config = config
        self.pending = sorted(set(config.timing_net_weight_overflows) - set(self.fired), reverse=True)

    def due(self, overflow: float) -> list[int]:
        """Checkpoints crossed by ``overflow`` that have not fired yet."""
        percent = overflow * 100.0
        return [cp for cp in self.pending if percent <= cp]

    def check(self, iteration: int, overflow: float) -> bool:
        """Reweight if a checkpoint was crossed; returns True if weights changed.

        Several checkpoints crossed in one iteration fire together, once.

        Raises:
            ExternalEngineError: If the timing engine fails.
        """
        crossed = self.due(overflow)
        if not crossed:
            return False
        for cp in crossed:
            self.pending.remove(cp)
            self.fired.append(cp)
        logger.info(
            f"[Timing] Checkpoint {min(crossed)}% reached at iteration {iteration} "
            f"(overflow {overflow:.4f})"
        )
        try:
            slacks = self.provider.net_slacks(self.model.snapshot())
        except Exception as e:
            raise ExternalEngineError("timing", e, iteration) from e
        return self.reweight(slacks)

    def reweight(self, slacks: Mapping[str, float]) -> bool:
        """Raise the weights of the worst-slack nets."""
        indices = []
        values = []
        for name, slack in slacks.items():
            k = self._net_index.get(name)
            if k is None or not math.isfinite(slack):
                continue
            indices.append(k)
            values.append(float(slack))
        if not indices:
            logger.warning("[Timing] Engine reported no usable slacks")
            return False

        idx = np.array(indices, dtype=np.int64)
        slack = np.array(values)
        order = np.argsort(slack, kind="stable")
        count = max(1, int(math.ceil(self.config.timing_critical_fraction * len(order))))
        critical = order[:count]
        s = slack[critical]
        s_min, s_max = float(s.min()), float(s.max())

        max_w = self.config.timing_net_weight_max
        if s_max > s_min:
            factor = 1.0 + (max_w - 1.0) * (s_max - s) / (s_max - s_min)
        else:
            factor = np.full(len(s), max_w)

        weights = self.model.timing_weight
        nets = idx[critical]
        before = weights[nets].copy()
        weights[nets] = np.minimum(max_w, before * factor)
        changed = int(np.count_nonzero(weights[nets] > before))
        logger.info(
            f"[Timing] Reweighted {changed}/{count} critical nets "
            f"(worst slack {s_min:.4g}, max weight {float(weights.max()):.3f})"
        )
        return changed > 0
