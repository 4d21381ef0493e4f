"""Adaptive retry-cycle limits for build/test style loops."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from pipeline_vitals.coerce import parse_int
from pipeline_vitals.schemas import VitalsResult

logger = logging.getLogger(__name__)

DEFAULT_CYCLE_LIMIT = 5
MIN_HARD_CEILING = 4

EXTEND_HEALTH = 70
EXTEND_CONVERGENCE = 60
HOLD_HEALTH = 40
BUDGET_FLOOR = 30


def baseline_cycles(
    model: Mapping[str, int],
    loop_type: str,
    default: int = DEFAULT_CYCLE_LIMIT,
) -> int:
    """Learned cycle count for *loop_type*, or *default* when none is positive."""
    learned = model.get(loop_type, 0)
    return learned if learned > 0 else default


def hard_ceiling(baseline: int) -> int:
    return max(MIN_HARD_CEILING, baseline * 2)


def _signal_values(vitals: VitalsResult | Mapping[str, Any]) -> tuple[int, int, int]:
    if isinstance(vitals, VitalsResult):
        return vitals.health_score, vitals.signals.convergence, vitals.signals.budget
    signals = vitals.get("signals")
    if not isinstance(signals, Mapping):
        signals = {}

    def _field(source: Mapping[str, Any], key: str, default: int) -> int:
        value = parse_int(source.get(key))
        return default if value is None else value

    return (
        _field(vitals, "health_score", 50),
        _field(signals, "convergence", 50),
        _field(signals, "budget", 100),
    )


def adaptive_limit(
    baseline: int,
    vitals: VitalsResult | Mapping[str, Any] | None = None,
) -> int:
    """Return how many cycles the loop may use, within ``[1, hard_ceiling(baseline)]``.

    Healthy, converging pipelines earn one extra cycle; unhealthy ones are
    held at the baseline; a nearly exhausted budget cuts the loop to a single
    cycle.
    """
    ceiling = hard_ceiling(baseline)
    if vitals is None:
        return max(1, min(baseline, ceiling))

    health, convergence, budget = _signal_values(vitals)
    limit = baseline
    if health > EXTEND_HEALTH and convergence > EXTEND_CONVERGENCE:
        limit = baseline + 1
    if health < HOLD_HEALTH:
        limit = baseline
    if budget < BUDGET_FLOOR:
        limit = 1
    limit = max(1, min(limit, ceiling))
    logger.debug(
        "Adaptive limit %d (baseline=%d health=%d convergence=%d budget=%d)",
        limit,
        baseline,
        health,
        convergence,
        budget,
    )
    return limit
