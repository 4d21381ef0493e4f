"""Shared pytest configuration for marker registration, execution ordering and workspaces."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from pipeline_vitals.config import VitalsPaths, VitalsSettings
from pipeline_vitals.engine import VitalsEngine

# 2026-01-15T12:00:00Z
FIXED_NOW = 1768478400.0
START_OF_FIXED_DAY = 1768435200.0


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: filesystem/subprocess integration tests")
    config.addinivalue_line("markers", "slow: expensive tests that spawn many processes")


def pytest_collection_modifyitems(items: list[pytest.Item]) -> None:
    """Run fast unit tests first, integration tests second, slow tests last."""

    def sort_key(item: pytest.Item) -> tuple[int, str]:
        if item.get_closest_marker("slow"):
            return (2, item.nodeid)
        if item.get_closest_marker("integration"):
            return (1, item.nodeid)
        return (0, item.nodeid)

    items.sort(key=sort_key)


@pytest.fixture(autouse=True)
def _isolate_vitals_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "VITALS_HOME",
        "VITALS_GATE_THRESHOLD",
        "VITALS_LOCK_TIMEOUT",
        "VITALS_WEIGHT_MOMENTUM",
        "VITALS_WEIGHT_CONVERGENCE",
        "VITALS_WEIGHT_BUDGET",
        "VITALS_WEIGHT_ERROR_MATURITY",
        "PIPELINE_STATE",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def paths(tmp_path: Path) -> VitalsPaths:
    home = tmp_path / "home"
    repo = tmp_path / "repo"
    home.mkdir()
    repo.mkdir()
    return VitalsPaths(home=home, repo_dir=repo)


@pytest.fixture
def engine(paths: VitalsPaths) -> VitalsEngine:
    return VitalsEngine(
        paths,
        VitalsSettings(),
        clock=lambda: FIXED_NOW,
        diff_probe=lambda _repo: 0,
    )


def write_state_file(
    path: Path,
    *,
    stage: str,
    iteration: int = 0,
    issue: str = "",
    elapsed: str = "4m 10s",
) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["---", "pipeline: standard"]
    if issue:
        lines.append(f'issue: "{issue}"')
    lines += [
        f"current_stage: {stage}",
        f'stage_progress: "{stage} iteration {iteration}"',
        f"elapsed: {elapsed}",
        "---",
    ]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


def write_error_log(path: Path, signatures: list[str]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    rows = [
        json.dumps({"signature": sig, "ts": f"2026-01-15T00:0{i % 10}:00Z"})
        for i, sig in enumerate(signatures)
    ]
    path.write_text("".join(row + "\n" for row in rows), encoding="utf-8")
    return path


def write_json(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path
