"""Routability and timing feedback for the optimization loop."""

from __future__ import annotations

from .routability import CongestionMap, CongestionProvider, RoutabilityFeedback, rc_metric
from .rudy import RudyCongestionEstimator
from .timing import TimingFeedback, TimingProvider

__all__ = [
    "CongestionMap",
    "CongestionProvider",
    "RoutabilityFeedback",
    "RudyCongestionEstimator",
    "TimingFeedback",
    "TimingProvider",
    "rc_metric",
]
