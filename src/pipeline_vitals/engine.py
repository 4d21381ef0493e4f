"""Orchestration: load inputs, compute signals, fuse them and decide.

``VitalsEngine`` is the entry point the pipeline executor polls.  It owns no
threads and holds no file handles between calls; every input is re-read on
each call and every missing or malformed input degrades to a neutral value.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

from pipeline_vitals.adaptive import adaptive_limit, baseline_cycles
from pipeline_vitals.budget import BudgetForecast, forecast_budget
from pipeline_vitals.config import VitalsPaths, VitalsSettings, load_settings
from pipeline_vitals.events import EventLog
from pipeline_vitals.git_tools import current_diff_totals
from pipeline_vitals.inputs import (
    BudgetState,
    PipelineState,
    count_unique_signatures,
    normalize_issue,
    read_budget_state,
    read_cost_entries,
    read_error_log,
    read_iteration_model,
    read_pipeline_state,
    resolve_error_log,
    spent_since,
    start_of_utc_day,
)
from pipeline_vitals.schemas import (
    BudgetInfo,
    BudgetOutlook,
    ErrorCounts,
    PipelineInfo,
    ProgressState,
    RecordOutcome,
    SignalScores,
    VitalsResult,
)
from pipeline_vitals.scoring import composite_health
from pipeline_vitals.signals import (
    compute_budget_score,
    compute_convergence,
    compute_error_maturity,
    compute_momentum,
)
from pipeline_vitals.store import FileProgressStore, ProgressRepository
from pipeline_vitals.store import record_snapshot as store_record_snapshot
from pipeline_vitals.store import update_health_score
from pipeline_vitals.verdict import circuit_breaker_decision, health_verdict, recommended_action

logger = logging.getLogger(__name__)

DEFAULT_LOOP_TYPE = "build_test"


def _probe_insertions(repo_dir: Path) -> int:
    return current_diff_totals(repo_dir).insertions


class VitalsEngine:
    """Health and adaptive-control engine for one workspace.

    Args:
        paths: Where shared files and the progress store live.
        settings: Tunables; loaded from ``paths`` and the environment when omitted.
        store: Progress repository; a :class:`FileProgressStore` under
            ``paths.progress_dir`` by default.
        events: Event log for lifecycle events; ``paths.events_file`` by default.
        clock: Epoch-seconds clock used for "today" in budget maths.
        diff_probe: Returns current diff insertions for a repo directory.
    """

    def __init__(
        self,
        paths: VitalsPaths,
        settings: VitalsSettings | None = None,
        *,
        store: ProgressRepository | None = None,
        events: EventLog | None = None,
        clock: Callable[[], float] = time.time,
        diff_probe: Callable[[Path], int] | None = None,
    ) -> None:
        self.paths = paths
        self.settings = settings if settings is not None else load_settings(paths)
        self.store: ProgressRepository = store or FileProgressStore(
            paths.progress_dir,
            lock_timeout=self.settings.lock_timeout_seconds,
        )
        self.events = events or EventLog(paths.events_file)
        self.clock = clock
        self.diff_probe = diff_probe or _probe_insertions

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def record_snapshot(
        self,
        issue: str,
        stage: str = "unknown",
        iteration: int = 0,
        diff_lines: int = 0,
        files_changed: int = 0,
        last_error: str = "",
    ) -> RecordOutcome:
        return store_record_snapshot(
            self.store,
            issue,
            stage=stage,
            iteration=iteration,
            diff_lines=diff_lines,
            files_changed=files_changed,
            last_error=last_error,
            events=self.events,
        )

    def progress_for(self, issue: str) -> ProgressState | None:
        """Stored progress for *issue*, or ``None`` when it has none yet."""
        issue = normalize_issue(issue)
        if not issue or not self.store.exists(issue):
            return None
        return self.store.get(issue)

    # ------------------------------------------------------------------
    # Budget
    # ------------------------------------------------------------------

    def budget_state(self) -> BudgetState:
        return read_budget_state(self.paths.budget_file)

    def today_spent(self) -> float:
        """Sum of today's (UTC) recorded costs."""
        cutoff = start_of_utc_day(self.clock())
        return spent_since(read_cost_entries(self.paths.costs_file), cutoff)

    def budget_forecast(self, state_file: str | Path | None = None) -> BudgetForecast:
        budget = self.budget_state()
        stage = self._read_state(state_file).stage
        today_spent = self.today_spent() if budget.enforced else 0.0
        return forecast_budget(
            budget,
            today_spent,
            stage,
            self.events.stage_costs() if budget.enforced else [],
            default_stage_cost=self.settings.default_stage_cost_usd,
            safety_factor=self.settings.budget_safety_factor,
        )

    def budget_trajectory(self, state_file: str | Path | None = None) -> BudgetOutlook:
        """Predict whether the budget can fund the rest of the pipeline."""
        return self.budget_forecast(state_file).outlook

    # ------------------------------------------------------------------
    # Vitals
    # ------------------------------------------------------------------

    def _read_state(self, state_file: str | Path | None) -> PipelineState:
        path = Path(state_file) if state_file else self.paths.default_state_file
        return read_pipeline_state(path)

    def compute_vitals(
        self,
        state_file: str | Path | None = None,
        artifacts_dir: str | Path | None = None,
        issue: str | None = None,
        *,
        diff_lines: int | None = None,
    ) -> VitalsResult:
        """Compute the composite health verdict for the current pipeline.

        The issue is taken from *issue* or else from the state file.  When the
        issue has a progress document, the new score is stored on it so the
        next call can tell which way health is moving.
        """
        state = self._read_state(state_file)
        issue_id = normalize_issue(issue) if issue else normalize_issue(state.issue)
        artifacts = Path(artifacts_dir) if artifacts_dir else self.paths.default_artifacts_dir
        progress = self.progress_for(issue_id) if issue_id else None

        if diff_lines is None:
            diff_lines = self.diff_probe(self.paths.repo_dir)

        error_log = resolve_error_log(artifacts, issue_id)
        errors = read_error_log(error_log)
        error_total = len(errors)
        error_unique = count_unique_signatures(errors)

        budget = self.budget_state()
        today_spent = self.today_spent() if budget.enforced else 0.0

        signals = SignalScores(
            momentum=compute_momentum(progress, state.stage, state.iteration, diff_lines),
            convergence=compute_convergence(error_total, progress, self.settings.convergence),
            budget=compute_budget_score(budget, today_spent),
            error_maturity=compute_error_maturity(error_total, error_unique, self.settings.maturity),
        )
        score = composite_health(signals, self.settings.weights)
        prev_score = progress.last_health_score if progress is not None else None
        verdict = health_verdict(score, prev_score)

        if progress is not None:
            update_health_score(self.store, issue_id, score)

        logger.debug(
            "Vitals issue=%s stage=%s score=%d verdict=%s signals=%s",
            issue_id or "-",
            state.stage,
            score,
            verdict.value,
            signals.model_dump(),
        )
        return VitalsResult(
            health_score=score,
            verdict=verdict,
            recommended_action=recommended_action(verdict),
            signals=signals,
            pipeline=PipelineInfo(
                stage=state.stage,
                iteration=state.iteration,
                elapsed=state.elapsed,
                issue=issue_id,
            ),
            budget=BudgetInfo(
                remaining=round(budget.daily_budget_usd - today_spent, 2) if budget.enforced else None,
                today_spent=round(today_spent, 2),
            ),
            errors=ErrorCounts(total=error_total, unique=error_unique),
            prev_score=prev_score,
        )

    # ------------------------------------------------------------------
    # Control decisions
    # ------------------------------------------------------------------

    def adaptive_limit(
        self,
        loop_type: str = DEFAULT_LOOP_TYPE,
        vitals: VitalsResult | Mapping[str, Any] | None = None,
    ) -> int:
        """Cycle limit for *loop_type*, adjusted by *vitals* when given."""
        model = read_iteration_model(self.paths.iteration_model_file)
        baseline = baseline_cycles(model, loop_type, self.settings.default_cycle_limit)
        return adaptive_limit(baseline, vitals)

    def check_health_gate(
        self,
        threshold: int | None = None,
        state_file: str | Path | None = None,
        artifacts_dir: str | Path | None = None,
        issue: str | None = None,
    ) -> bool:
        """Return False when health is below *threshold*; True on any internal error."""
        limit = self.settings.gate_threshold if threshold is None else threshold
        try:
            vitals = self.compute_vitals(state_file, artifacts_dir, issue)
        except Exception as exc:
            logger.warning("Health gate could not compute vitals; passing: %s", exc)
            return True
        if vitals.health_score < limit:
            logger.warning("Health gate: score %d < threshold %d", vitals.health_score, limit)
            return False
        return True

    def should_trip_circuit_breaker(
        self,
        consecutive_failures: int,
        threshold: int,
        vitals: VitalsResult | None = None,
        *,
        state_file: str | Path | None = None,
        artifacts_dir: str | Path | None = None,
        issue: str | None = None,
    ) -> bool:
        """Decide whether a retry loop should stop, preferring the vitals verdict.

        Vitals are computed when not supplied; if that fails the decision
        falls back to the consecutive-failure count.
        """
        if vitals is None:
            try:
                vitals = self.compute_vitals(state_file, artifacts_dir, issue)
            except Exception as exc:
                logger.warning("Circuit breaker falling back to failure count: %s", exc)
        verdict = vitals.verdict if vitals is not None else None
        tripped = circuit_breaker_decision(verdict, consecutive_failures, threshold)
        if tripped:
            logger.warning(
                "Circuit breaker tripped (verdict=%s, consecutive_failures=%d, threshold=%d)",
                verdict.value if verdict is not None else "n/a",
                consecutive_failures,
                threshold,
            )
        return tripped
