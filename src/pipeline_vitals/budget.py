"""Forecast whether the remaining daily budget can carry the pipeline to the end."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from pipeline_vitals.inputs import BudgetState
from pipeline_vitals.schemas import BudgetOutlook

STAGE_ORDER = (
    "intake",
    "plan",
    "design",
    "build",
    "test",
    "review",
    "compound_quality",
    "pr",
    "merge",
    "deploy",
    "validate",
    "monitor",
)
# Stages still to run after the named stage.
REMAINING_STAGES = {stage: len(STAGE_ORDER) - 1 - index for index, stage in enumerate(STAGE_ORDER)}
DEFAULT_REMAINING_STAGES = 6

DEFAULT_STAGE_COST_USD = 0.50
SAFETY_FACTOR = 1.5
MIN_STAGES_IN_RESERVE = 2


def remaining_stage_count(stage: str) -> int:
    return REMAINING_STAGES.get(stage, DEFAULT_REMAINING_STAGES)


def average_stage_cost(costs: Sequence[float], default: float = DEFAULT_STAGE_COST_USD) -> float:
    """Mean historical stage cost, or *default* without usable history."""
    if not costs:
        return default
    average = round(sum(costs) / len(costs), 2)
    return average if average > 0 else default


@dataclass(frozen=True)
class BudgetForecast:
    """Inputs and result of one budget trajectory prediction (USD, rounded to cents)."""

    outlook: BudgetOutlook
    remaining: float | None = None
    needed: float = 0.0
    minimum: float = 0.0
    average_stage_cost: float = DEFAULT_STAGE_COST_USD
    remaining_stages: int = DEFAULT_REMAINING_STAGES


def forecast_budget(
    budget: BudgetState,
    today_spent: float,
    stage: str,
    stage_costs: Sequence[float],
    *,
    default_stage_cost: float = DEFAULT_STAGE_COST_USD,
    safety_factor: float = SAFETY_FACTOR,
) -> BudgetForecast:
    """Predict ``ok``/``warn``/``stop`` for the rest of the pipeline.

    ``stop`` when less than two average stages of budget remain, ``warn``
    when the remaining stages (with a safety margin) do not fit.
    """
    average = average_stage_cost(stage_costs, default_stage_cost)
    stages = remaining_stage_count(stage)
    if not budget.enforced:
        return BudgetForecast(
            outlook=BudgetOutlook.OK,
            average_stage_cost=average,
            remaining_stages=stages,
        )

    remaining = round(budget.daily_budget_usd - today_spent, 2)
    needed = round(average * stages * safety_factor, 2)
    minimum = round(average * MIN_STAGES_IN_RESERVE, 2)
    if remaining < minimum:
        outlook = BudgetOutlook.STOP
    elif remaining < needed:
        outlook = BudgetOutlook.WARN
    else:
        outlook = BudgetOutlook.OK
    return BudgetForecast(
        outlook=outlook,
        remaining=remaining,
        needed=needed,
        minimum=minimum,
        average_stage_cost=average,
        remaining_stages=stages,
    )
