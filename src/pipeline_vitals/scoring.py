"""Weighted fusion of the four signals into one health score."""

from __future__ import annotations

from pipeline_vitals.coerce import clamp_score
from pipeline_vitals.config import SignalWeights
from pipeline_vitals.schemas import SignalScores


def composite_health(signals: SignalScores, weights: SignalWeights | None = None) -> int:
    """Return ``floor(sum(signal * weight) / 100)`` clamped to ``[0, 100]``.

    Weights are percentages and are expected, not required, to sum to 100.
    """
    weights = weights or SignalWeights()
    weighted = (
        signals.momentum * weights.momentum
        + signals.convergence * weights.convergence
        + signals.budget * weights.budget
        + signals.error_maturity * weights.error_maturity
    )
    return clamp_score(weighted // 100)
