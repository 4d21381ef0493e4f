"""Tests for readers of externally owned files."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest
from conftest import FIXED_NOW, START_OF_FIXED_DAY, write_error_log, write_json, write_state_file

from pipeline_vitals.errors import MalformedInput
from pipeline_vitals.inputs import (
    BudgetState,
    CostEntry,
    PipelineState,
    count_unique_signatures,
    load_json_document,
    normalize_issue,
    parse_pipeline_state,
    read_budget_state,
    read_cost_entries,
    read_error_log,
    read_iteration_model,
    read_pipeline_state,
    resolve_error_log,
    spent_since,
    start_of_utc_day,
)

pytestmark = pytest.mark.unit


def test_parse_pipeline_state_reads_known_fields(tmp_path: Path) -> None:
    state_file = write_state_file(
        tmp_path / "pipeline-state.md",
        stage="build",
        iteration=3,
        issue="42",
        elapsed="12m 5s",
    )

    state = read_pipeline_state(state_file)

    assert state == PipelineState(stage="build", iteration=3, elapsed="12m 5s", issue="42")


def test_parse_pipeline_state_uses_first_match_and_defaults() -> None:
    text = "current_stage: plan\ncurrent_stage: build\nstage_progress: waiting\n"

    state = parse_pipeline_state(text)

    assert state.stage == "plan"
    assert state.iteration == 0
    assert state.elapsed == "0s"
    assert state.issue == ""


def test_read_pipeline_state_missing_file_is_neutral(tmp_path: Path) -> None:
    assert read_pipeline_state(tmp_path / "absent.md") == PipelineState()
    assert read_pipeline_state(None) == PipelineState()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("42", "42"),
        ('"42"', "42"),
        ("#17", "17"),
        ("  PROJ-9 ", "PROJ-9"),
        ("", ""),
        (None, ""),
        ("../etc/passwd", ""),
        ("a/b", ""),
    ],
)
def test_normalize_issue(raw: object, expected: str) -> None:
    assert normalize_issue(raw) == expected


def test_resolve_error_log_prefers_per_issue_file(tmp_path: Path) -> None:
    shared = write_error_log(tmp_path / "error-log.jsonl", ["a"])

    assert resolve_error_log(tmp_path, "42") == shared

    per_issue = write_error_log(tmp_path / "error-log.42.jsonl", ["b"])

    assert resolve_error_log(tmp_path, "42") == per_issue
    assert resolve_error_log(tmp_path, "") == shared


def test_read_error_log_skips_malformed_lines_and_defaults_signature(
    tmp_path: Path,
    caplog: pytest.LogCaptureFixture,
) -> None:
    log = tmp_path / "error-log.jsonl"
    log.write_text(
        '{"signature": "TypeError", "ts": "t1"}\n'
        "not json\n"
        "\n"
        '{"ts": "t2"}\n'
        "[1, 2]\n"
        '{"signature": "TypeError"}\n',
        encoding="utf-8",
    )

    with caplog.at_level(logging.WARNING, logger="pipeline_vitals.inputs"):
        entries = read_error_log(log)

    assert [e.signature for e in entries] == ["TypeError", "unknown", "TypeError"]
    assert count_unique_signatures(entries) == 2
    assert "Skipped 2 malformed" in caplog.text


def test_read_error_log_missing_file_is_empty(tmp_path: Path) -> None:
    assert read_error_log(tmp_path / "error-log.jsonl") == []


def test_read_budget_state_variants(tmp_path: Path) -> None:
    budget = tmp_path / "budget.json"

    assert read_budget_state(budget) == BudgetState()

    write_json(budget, {"enabled": True, "daily_budget_usd": 25})
    assert read_budget_state(budget) == BudgetState(enabled=True, daily_budget_usd=25.0)
    assert read_budget_state(budget).enforced

    write_json(budget, {"enabled": "true", "daily_budget_usd": "0"})
    assert not read_budget_state(budget).enforced

    write_json(budget, {"enabled": True, "daily_budget_usd": "lots"})
    assert read_budget_state(budget) == BudgetState(enabled=True, daily_budget_usd=0.0)

    budget.write_text("{broken", encoding="utf-8")
    assert read_budget_state(budget) == BudgetState()


def test_read_cost_entries_skips_bad_rows(tmp_path: Path) -> None:
    costs = write_json(
        tmp_path / "costs.json",
        {
            "entries": [
                {"cost_usd": 1.25, "ts_epoch": FIXED_NOW},
                {"cost_usd": "x", "ts_epoch": FIXED_NOW},
                "junk",
                {"cost_usd": 0.5},
            ]
        },
    )

    assert read_cost_entries(costs) == [CostEntry(cost_usd=1.25, ts_epoch=FIXED_NOW)]


def test_today_cutoff_and_sum() -> None:
    assert start_of_utc_day(FIXED_NOW) == START_OF_FIXED_DAY

    entries = [
        CostEntry(cost_usd=4.0, ts_epoch=START_OF_FIXED_DAY - 1),
        CostEntry(cost_usd=1.5, ts_epoch=START_OF_FIXED_DAY),
        CostEntry(cost_usd=1.0, ts_epoch=FIXED_NOW),
    ]
    assert spent_since(entries, START_OF_FIXED_DAY) == 2.5


def test_read_iteration_model_keeps_numeric_entries(tmp_path: Path) -> None:
    model = write_json(
        tmp_path / "iteration-model.json",
        {
            "build_test": {"recommended_cycles": 3},
            "lint": {"recommended_cycles": "x"},
            "review": "bad",
        },
    )

    assert read_iteration_model(model) == {"build_test": 3}
    assert read_iteration_model(tmp_path / "absent.json") == {}


def test_load_json_document_raises_for_malformed(tmp_path: Path) -> None:
    doc = tmp_path / "doc.json"
    assert load_json_document(doc) is None

    doc.write_text("", encoding="utf-8")
    with pytest.raises(MalformedInput):
        load_json_document(doc)

    doc.write_text("{nope", encoding="utf-8")
    with pytest.raises(MalformedInput):
        load_json_document(doc)
