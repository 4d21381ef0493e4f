"""Tests for the four signal computers."""

from __future__ import annotations

import pytest

from pipeline_vitals.config import ConvergenceTuning, MaturityTuning
from pipeline_vitals.inputs import BudgetState
from pipeline_vitals.schemas import ProgressState, Snapshot
from pipeline_vitals.signals import (
    compute_budget_score,
    compute_convergence,
    compute_error_maturity,
    compute_momentum,
)

pytestmark = pytest.mark.unit


def _state(*snaps: tuple[str, int, int, str], no_progress: int = 0) -> ProgressState:
    return ProgressState(
        snapshots=[
            Snapshot(stage=stage, iteration=it, diff_lines=diff, last_error=err)
            for stage, it, diff, err in snaps
        ],
        no_progress_count=no_progress,
    )


class TestMomentum:
    def test_no_history_is_neutral(self):
        assert compute_momentum(None, "build", 3, 100) == 50
        assert compute_momentum(ProgressState(), "build", 3, 100) == 50

    def test_single_snapshot_past_intake(self):
        assert compute_momentum(_state(("build", 1, 10, "")), "build", 2, 20) == 60
        assert compute_momentum(_state(("intake", 0, 0, "")), "plan", 1, 0) == 50
        assert compute_momentum(_state(("unknown", 0, 0, "")), "plan", 1, 0) == 50

    def test_stage_advance_iteration_and_diff_bonuses(self):
        state = _state(("plan", 1, 0, ""), ("build", 1, 20, ""))
        # 50 + 30 stage + 20 iteration + 10 diff, clamped
        assert compute_momentum(state, "test", 3, 150) == 100
        # 50 + 10 iteration + 5 diff
        assert compute_momentum(state, "build", 2, 70) == 65
        # unknown current stage earns no stage bonus
        assert compute_momentum(state, "unknown", 1, 20) == 50

    def test_bonuses_are_capped(self):
        state = _state(("plan", 0, 0, ""), ("plan", 0, 0, ""), no_progress=1)
        # 50 + 30 (cap) + 20 (cap) - 20
        assert compute_momentum(state, "plan", 9, 5000) == 80

    def test_stagnation_penalty_and_floor(self):
        state = _state(("build", 2, 40, ""), ("build", 2, 40, ""), no_progress=2)
        assert compute_momentum(state, "build", 2, 40) == 10
        stuck = _state(("build", 2, 40, ""), ("build", 2, 40, ""), no_progress=5)
        assert compute_momentum(stuck, "build", 2, 40) == 0

    def test_shrinking_diff_or_iteration_earns_nothing(self):
        state = _state(("build", 1, 0, ""), ("build", 5, 400, ""))
        assert compute_momentum(state, "build", 3, 100) == 50

    def test_never_decreases_as_iteration_or_diff_grow(self):
        state = _state(("plan", 1, 10, ""), ("build", 2, 60, ""), no_progress=1)
        for stage in ("build", "test"):
            by_iteration = [compute_momentum(state, stage, it, 60) for it in range(0, 10)]
            by_diff = [compute_momentum(state, stage, 2, diff) for diff in range(0, 2000, 25)]
            assert by_iteration == sorted(by_iteration)
            assert by_diff == sorted(by_diff)
            assert all(0 <= v <= 100 for v in by_iteration + by_diff)


class TestConvergence:
    def test_no_errors_is_perfect(self):
        assert compute_convergence(0, _state(("build", 1, 0, "E"))) == 100
        assert compute_convergence(0, None) == 100

    def test_errors_without_history_use_unknown_trend(self):
        assert compute_convergence(4, None) == 40
        assert compute_convergence(4, _state(("build", 1, 0, "E"))) == 40

    def test_errors_resolved_in_later_half(self):
        state = _state(
            ("build", 1, 10, "TypeError"),
            ("build", 2, 20, "SyntaxError"),
            ("build", 3, 30, "ReferenceError"),
            ("test", 4, 40, ""),
            ("test", 5, 50, ""),
            ("review", 6, 60, ""),
        )
        assert compute_convergence(6, state) == 100

    def test_partial_reduction(self):
        state = _state(("build", 1, 0, "E1"), ("build", 2, 0, "E2"), ("build", 3, 0, "E3"), ("build", 4, 0, ""))
        # early 2, late 1 -> 50% reduction
        assert compute_convergence(3, state) == 75

    def test_flat_error_rate(self):
        state = _state(("build", 1, 0, "E1"), ("build", 2, 0, "E2"))
        assert compute_convergence(2, state) == 40

    def test_growing_errors_fall_back_to_stagnation(self):
        growing = _state(("build", 1, 0, "E1"), ("build", 1, 0, ""), ("build", 1, 0, "E2"), ("build", 1, 0, "E3"))
        assert compute_convergence(3, growing) == 40
        stuck = growing.model_copy(update={"no_progress_count": 3})
        assert compute_convergence(3, stuck) == 10

    def test_no_early_errors_fall_back(self):
        state = _state(("build", 1, 0, ""), ("build", 1, 0, "E"), no_progress=4)
        assert compute_convergence(1, state) == 10

    def test_tuning_overrides_fallbacks(self):
        tuning = ConvergenceTuning(stagnation_threshold=2, stagnation_score=5, unknown_trend_score=35)
        state = _state(("build", 1, 0, ""), ("build", 1, 0, "E"), no_progress=2)
        assert compute_convergence(1, state, tuning) == 5
        assert compute_convergence(1, None, tuning) == 35


class TestBudgetScore:
    def test_unenforced_budget_is_full(self):
        assert compute_budget_score(BudgetState(), 100.0) == 100
        assert compute_budget_score(BudgetState(enabled=True, daily_budget_usd=0.0), 3.0) == 100
        assert compute_budget_score(BudgetState(enabled=False, daily_budget_usd=10.0), 9.0) == 100

    def test_remaining_fraction_is_floored(self):
        budget = BudgetState(enabled=True, daily_budget_usd=10.0)
        assert compute_budget_score(budget, 2.5) == 75
        assert compute_budget_score(BudgetState(enabled=True, daily_budget_usd=3.0), 1.0) == 66
        assert compute_budget_score(budget, 0.0) == 100

    def test_overspend_clamps_to_zero(self):
        assert compute_budget_score(BudgetState(enabled=True, daily_budget_usd=10.0), 14.0) == 0


class TestErrorMaturity:
    @pytest.mark.parametrize(
        ("total", "unique", "expected"),
        [
            (0, 0, 80),
            (10, 9, 20),
            (10, 5, 50),
            (10, 4, 60),
            (10, 1, 60),
            (3, 3, 20),
        ],
    )
    def test_ratio_bands(self, total: int, unique: int, expected: int):
        assert compute_error_maturity(total, unique) == expected

    def test_tuning_overrides_bands(self):
        tuning = MaturityTuning(novel_ratio_pct=90, novel_score=10, mixed_score=45)
        assert compute_error_maturity(10, 9, tuning) == 45
        assert compute_error_maturity(10, 10, tuning) == 10
