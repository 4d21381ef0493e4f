"""Git probe for the size of the uncommitted working-tree diff."""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from pipeline_vitals.errors import VitalsError

logger = logging.getLogger(__name__)

_FILES_RE = re.compile(r"(\d+)\s+files?\s+changed")
_INSERTIONS_RE = re.compile(r"(\d+)\s+insertions?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+)\s+deletions?\(-\)")


def _git_subprocess_isolation_kwargs() -> dict[str, object]:
    """Return kwargs that keep child console events away from the parent on Windows."""
    if os.name != "nt":
        return {}
    new_pg = int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
    no_win = int(getattr(subprocess, "CREATE_NO_WINDOW", 0))
    flags = new_pg | no_win
    return {"creationflags": flags} if flags else {}


class GitError(VitalsError):
    """Raised when a git command fails or cannot be started."""


def _run_git(
    *args: str,
    cwd: Path,
    check: bool = True,
    timeout: int = 30,
) -> subprocess.CompletedProcess[str]:
    cmd = ["git", *args]
    logger.debug("git %s (cwd=%s)", " ".join(args), cwd)
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            **_git_subprocess_isolation_kwargs(),
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise GitError(f"`git {' '.join(args)}` could not run: {exc}") from exc
    if check and result.returncode != 0:
        raise GitError(
            f"`git {' '.join(args)}` failed (rc={result.returncode}): {result.stderr.strip()}"
        )
    return result


@dataclass(frozen=True)
class DiffTotals:
    """Summary line of ``git diff --stat``."""

    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0


def diff_stat(repo: str | Path) -> str:
    """Return ``git diff --stat`` output for the working tree."""
    return _run_git("diff", "--stat", cwd=Path(repo)).stdout.strip()


def parse_diff_stat(raw: str) -> DiffTotals:
    """Parse the trailing summary line of ``git diff --stat`` output.

    Empty output (a clean tree) yields all zeros.
    """
    lines = [line for line in str(raw or "").splitlines() if line.strip()]
    if not lines:
        return DiffTotals()
    summary = lines[-1]

    def _count(pattern: re.Pattern[str]) -> int:
        match = pattern.search(summary)
        return int(match.group(1)) if match else 0

    return DiffTotals(
        files_changed=_count(_FILES_RE),
        insertions=_count(_INSERTIONS_RE),
        deletions=_count(_DELETIONS_RE),
    )


def current_diff_totals(repo: str | Path) -> DiffTotals:
    """Working-tree diff totals for *repo*; zeros when git is unavailable or fails."""
    try:
        return parse_diff_stat(diff_stat(repo))
    except GitError as exc:
        logger.debug("Could not measure diff in %s: %s", repo, exc)
        return DiffTotals()
