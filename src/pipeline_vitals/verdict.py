"""Map a health score and its direction of change to a control decision."""

from __future__ import annotations

from pipeline_vitals.schemas import Trajectory, Verdict

CONTINUE_THRESHOLD = 70
PATIENCE_THRESHOLD = 50
WARN_THRESHOLD = 30

RECOMMENDED_ACTIONS: dict[Verdict, str] = {
    Verdict.CONTINUE: "continue",
    Verdict.WARN: "extend patience, monitor closely",
    Verdict.INTERVENE: "prepare intervention, consider reducing scope",
    Verdict.ABORT: "abort pipeline, escalate to human",
}

VERDICT_LABELS: dict[Verdict, str] = {
    Verdict.CONTINUE: "healthy",
    Verdict.WARN: "sluggish",
    Verdict.INTERVENE: "stalling",
    Verdict.ABORT: "critical",
}


def trajectory_between(current: int, previous: int | None) -> Trajectory:
    if previous is None or current == previous:
        return Trajectory.STABLE
    return Trajectory.IMPROVING if current > previous else Trajectory.DECLINING


def decide_verdict(score: int, trajectory: Trajectory = Trajectory.STABLE) -> Verdict:
    """Return the verdict for *score*.

    Scores in the two middle bands get one band of credit when improving,
    so a recovering pipeline is not escalated.
    """
    improving = trajectory is Trajectory.IMPROVING
    if score >= CONTINUE_THRESHOLD:
        return Verdict.CONTINUE
    if score >= PATIENCE_THRESHOLD:
        return Verdict.CONTINUE if improving else Verdict.WARN
    if score >= WARN_THRESHOLD:
        return Verdict.WARN if improving else Verdict.INTERVENE
    return Verdict.ABORT


def health_verdict(score: int, previous: int | None = None) -> Verdict:
    return decide_verdict(score, trajectory_between(score, previous))


def recommended_action(verdict: Verdict) -> str:
    return RECOMMENDED_ACTIONS[verdict]


def circuit_breaker_decision(
    verdict: Verdict | None,
    consecutive_failures: int,
    threshold: int,
) -> bool:
    """Return True when a retry loop should stop.

    A known verdict decides on its own except ``intervene``, which (like a
    missing verdict) defers to the consecutive-failure count.
    """
    if verdict is Verdict.ABORT:
        return True
    if verdict in (Verdict.CONTINUE, Verdict.WARN):
        return False
    return consecutive_failures >= threshold
