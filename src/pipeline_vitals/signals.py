"""The four health signals, each an integer score in ``[0, 100]``.

All functions are pure: they take already-loaded inputs and never raise.
A ``ProgressState`` of ``None`` means the issue has no progress document yet.
"""

from __future__ import annotations

import math

from pipeline_vitals.coerce import clamp_score
from pipeline_vitals.config import ConvergenceTuning, MaturityTuning
from pipeline_vitals.inputs import BudgetState
from pipeline_vitals.schemas import ProgressState

NEUTRAL_MOMENTUM = 50
EARLY_ADVANCE_MOMENTUM = 60
PRE_WORK_STAGES = frozenset({"intake", "unknown"})

STAGE_ADVANCE_BONUS = 30
ITERATION_BONUS_STEP = 10
ITERATION_BONUS_CAP = 30
DIFF_BONUS_LINES = 50
DIFF_BONUS_STEP = 5
DIFF_BONUS_CAP = 20
STAGNATION_PENALTY = 20


def compute_momentum(
    state: ProgressState | None,
    stage: str,
    iteration: int,
    diff_lines: int,
) -> int:
    """Score forward motion of the pipeline against its last snapshot."""
    if state is None or not state.snapshots:
        return NEUTRAL_MOMENTUM
    last = state.snapshots[-1]
    if len(state.snapshots) == 1:
        if last.stage not in PRE_WORK_STAGES:
            return EARLY_ADVANCE_MOMENTUM
        return NEUTRAL_MOMENTUM

    stage = stage or "unknown"
    score = NEUTRAL_MOMENTUM
    if stage != last.stage and stage != "unknown":
        score += STAGE_ADVANCE_BONUS

    iteration_delta = max(0, iteration) - last.iteration
    if iteration_delta > 0:
        score += min(ITERATION_BONUS_CAP, iteration_delta * ITERATION_BONUS_STEP)

    diff_delta = max(0, diff_lines) - last.diff_lines
    if diff_delta > 0:
        score += min(DIFF_BONUS_CAP, (diff_delta // DIFF_BONUS_LINES) * DIFF_BONUS_STEP)

    score -= state.no_progress_count * STAGNATION_PENALTY
    return clamp_score(score)


def compute_convergence(
    error_total: int,
    state: ProgressState | None,
    tuning: ConvergenceTuning | None = None,
) -> int:
    """Score whether errors are being resolved across the snapshot history.

    Compares how many snapshots carried an error in the older half of the
    history against the newer half.  When that comparison is not possible
    (too few snapshots, no early errors, or errors grew) the score falls back
    to the no-progress counter.
    """
    tuning = tuning or ConvergenceTuning()
    if error_total <= 0:
        return 100
    if state is None:
        return clamp_score(tuning.unknown_trend_score)

    snapshots = state.snapshots
    if len(snapshots) >= 2:
        midpoint = len(snapshots) // 2
        early = sum(1 for snap in snapshots[:midpoint] if snap.last_error)
        late = sum(1 for snap in snapshots[midpoint:] if snap.last_error)
        if early > 0:
            reduction_pct = math.trunc((early - late) * 100 / early)
            if reduction_pct > 50:
                return 100
            if reduction_pct > 0:
                return 75
            if reduction_pct == 0:
                return 40

    if state.no_progress_count >= tuning.stagnation_threshold:
        return clamp_score(tuning.stagnation_score)
    return clamp_score(tuning.unknown_trend_score)


def compute_budget_score(budget: BudgetState, today_spent: float) -> int:
    """Percentage of today's budget still available (100 when none is enforced)."""
    if not budget.enforced:
        return 100
    remaining = budget.daily_budget_usd - max(0.0, today_spent)
    return clamp_score(math.floor(remaining / budget.daily_budget_usd * 100))


def compute_error_maturity(
    error_total: int,
    unique_signatures: int,
    tuning: MaturityTuning | None = None,
) -> int:
    """Score how familiar the current errors are.

    Many distinct signatures mean the pipeline keeps hitting new problems;
    a low ratio means it is circling known ones.
    """
    tuning = tuning or MaturityTuning()
    if error_total <= 0 or unique_signatures <= 0:
        return clamp_score(tuning.no_errors_score)
    ratio_pct = unique_signatures * 100 // error_total
    if ratio_pct > tuning.novel_ratio_pct:
        return clamp_score(tuning.novel_score)
    if ratio_pct > tuning.mixed_ratio_pct:
        return clamp_score(tuning.mixed_score)
    return clamp_score(tuning.repeating_score)
