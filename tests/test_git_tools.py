"""Unit tests for git_tools helpers."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from pipeline_vitals.git_tools import (
    DiffTotals,
    GitError,
    _run_git,
    current_diff_totals,
    diff_stat,
    parse_diff_stat,
)

SAMPLE_STAT = (
    " src/app.py     | 12 ++++++++----\n"
    " tests/test_x.py |  5 +++++\n"
    " 2 files changed, 13 insertions(+), 4 deletions(-)\n"
)


def test_parse_diff_stat_reads_summary_line():
    assert parse_diff_stat(SAMPLE_STAT) == DiffTotals(files_changed=2, insertions=13, deletions=4)


def test_parse_diff_stat_handles_singular_and_missing_parts():
    assert parse_diff_stat(" 1 file changed, 1 insertion(+)") == DiffTotals(1, 1, 0)
    assert parse_diff_stat(" 1 file changed, 3 deletions(-)") == DiffTotals(1, 0, 3)
    assert parse_diff_stat("") == DiffTotals()


def test_diff_stat_runs_git_diff_stat(tmp_path: Path):
    with patch(
        "pipeline_vitals.git_tools._run_git",
        return_value=SimpleNamespace(stdout=SAMPLE_STAT),
    ) as run_git:
        out = diff_stat(tmp_path)

    assert run_git.call_args.args == ("diff", "--stat")
    assert run_git.call_args.kwargs["cwd"] == tmp_path
    assert out.endswith("4 deletions(-)")


def test_current_diff_totals_is_zero_when_git_fails(tmp_path: Path):
    with patch("pipeline_vitals.git_tools._run_git", side_effect=GitError("not a git repository")):
        assert current_diff_totals(tmp_path) == DiffTotals()


def test_run_git_wraps_launch_failures(tmp_path: Path):
    with patch(
        "pipeline_vitals.git_tools.subprocess.run",
        side_effect=FileNotFoundError("git"),
    ), pytest.raises(GitError):
        _run_git("status", cwd=tmp_path)


def test_run_git_raises_on_nonzero_exit(tmp_path: Path):
    failed = subprocess.CompletedProcess(["git", "diff"], 128, stdout="", stderr="fatal: nope")
    with patch("pipeline_vitals.git_tools.subprocess.run", return_value=failed), pytest.raises(
        GitError, match="rc=128"
    ):
        _run_git("diff", cwd=tmp_path)


def _git(repo: Path, *args: str) -> None:
    subprocess.run(
        ["git", "-c", "user.email=vitals@example.com", "-c", "user.name=Vitals", *args],
        cwd=repo,
        check=True,
        capture_output=True,
    )


@pytest.mark.integration
@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
def test_current_diff_totals_in_real_repo(tmp_path: Path):
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    (repo / "app.py").write_text("a = 1\n", encoding="utf-8")
    _git(repo, "add", "app.py")
    _git(repo, "commit", "-q", "-m", "init")

    (repo / "app.py").write_text("a = 1\nb = 2\nc = 3\n", encoding="utf-8")

    totals = current_diff_totals(repo)
    assert totals.files_changed == 1
    assert totals.insertions == 2
    assert totals.deletions == 0
