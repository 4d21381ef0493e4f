"""Human and machine renderings of a :class:`VitalsResult`."""

from __future__ import annotations

import json

from pipeline_vitals.schemas import BudgetOutlook, VitalsResult
from pipeline_vitals.verdict import VERDICT_LABELS, trajectory_between

RULE = "  " + "=" * 42

BUDGET_WARNINGS = {
    BudgetOutlook.WARN: "  ! Budget trajectory: may not have enough to finish",
    BudgetOutlook.STOP: "  x Budget trajectory: insufficient funds to continue",
}


def describe_momentum(score: int, stage: str = "unknown") -> str:
    if score >= 70:
        text = "advancing"
    elif score >= 40:
        text = "steady"
    else:
        text = "stagnant"
    if stage and stage != "unknown":
        text = f"{text} ({stage})"
    return text


def describe_convergence(score: int) -> str:
    if score >= 70:
        return "issues decreasing"
    if score >= 40:
        return "flat"
    return "issues increasing"


def describe_budget(remaining: float | None, today_spent: float) -> str:
    if remaining is None:
        return "no budget set"
    return f"${remaining:.2f} remaining (${today_spent:.2f} burned)"


def render_dashboard(result: VitalsResult, outlook: BudgetOutlook = BudgetOutlook.OK) -> str:
    """Multi-line text dashboard (plain ASCII, no colour codes)."""
    signals = result.signals
    pipeline = result.pipeline
    title = "Pipeline Vitals"
    if pipeline.issue:
        title = f"Pipeline Vitals - issue #{pipeline.issue}"

    lines = [
        "",
        f"  {title}",
        RULE,
        "",
        f"  Health Score:     {result.health_score}/100  ({VERDICT_LABELS[result.verdict]})",
        f"    Momentum:      {signals.momentum:3d}  {describe_momentum(signals.momentum, pipeline.stage)}",
        f"    Convergence:   {signals.convergence:3d}  {describe_convergence(signals.convergence)}",
        f"    Budget:        {signals.budget:3d}  "
        f"{describe_budget(result.budget.remaining, result.budget.today_spent)}",
        f"    Error Maturity:{signals.error_maturity:3d}  "
        f"{result.errors.unique} unique / {result.errors.total} total",
        "",
    ]
    if result.prev_score is not None:
        trajectory = trajectory_between(result.health_score, result.prev_score)
        lines.append(
            f"  Trajectory:      {trajectory.value} (was {result.prev_score} -> {result.health_score})"
        )
    lines.append(f"  Recommendation:  {result.recommended_action}")
    lines.append("")

    if pipeline.stage != "unknown":
        lines.append(
            f"  Active: stage={pipeline.stage} iter={pipeline.iteration} elapsed={pipeline.elapsed}"
        )
        lines.append("")

    warning = BUDGET_WARNINGS.get(outlook)
    if warning:
        lines.append(warning)
        lines.append("")
    return "\n".join(lines)


def render_json(result: VitalsResult) -> str:
    return json.dumps(result.to_dict(), indent=2)


def render_score(result: VitalsResult) -> str:
    return str(result.health_score)


def render_verdict(result: VitalsResult) -> str:
    return result.verdict.value
