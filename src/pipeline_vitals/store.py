"""Durable per-issue progress history.

Each issue owns one JSON document (``progress/issue-<N>.json``) holding the
most recent snapshots, the consecutive no-progress counter and the last
computed health score.  Mutations happen under an exclusive, bounded-wait
lock and land via atomic replace, so concurrent readers never observe a
half-written file.  Engines talk to storage through :class:`ProgressRepository`.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from pipeline_vitals.coerce import clamp_score
from pipeline_vitals.errors import LockTimeout
from pipeline_vitals.events import SNAPSHOT_EVENT, EventLog
from pipeline_vitals.file_io import atomic_write_json, exclusive_file_lock, read_text_lenient
from pipeline_vitals.inputs import normalize_issue
from pipeline_vitals.schemas import ProgressState, RecordOutcome, Snapshot

logger = logging.getLogger(__name__)

MAX_SNAPSHOTS = 20
DEFAULT_LOCK_TIMEOUT_SECONDS = 5.0


class ProgressRepository(Protocol):
    """Storage seam for per-issue progress state."""

    def exists(self, issue: str) -> bool: ...

    def get(self, issue: str) -> ProgressState: ...

    def put(self, issue: str, state: ProgressState) -> None: ...

    def locked(self, issue: str) -> AbstractContextManager[None]: ...


class FileProgressStore:
    """Progress documents stored as one JSON file per issue."""

    def __init__(
        self,
        progress_dir: str | Path,
        *,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ) -> None:
        self.progress_dir = Path(progress_dir)
        self.lock_timeout = lock_timeout

    def path_for(self, issue: str) -> Path:
        return self.progress_dir / f"issue-{issue}.json"

    def exists(self, issue: str) -> bool:
        return self.path_for(issue).is_file()

    def get(self, issue: str) -> ProgressState:
        """Load the issue's state; absent or unreadable documents yield an empty state."""
        path = self.path_for(issue)
        try:
            raw = read_text_lenient(path)
        except OSError as exc:
            logger.warning("Could not read progress file %s: %s", path, exc)
            return ProgressState()
        if raw is None:
            return ProgressState()
        if not raw.strip():
            logger.warning("Progress file is empty; treating as new: %s", path)
            return ProgressState()
        try:
            return ProgressState.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Could not load progress file %s: %s", path, exc)
            return ProgressState()

    def put(self, issue: str, state: ProgressState) -> None:
        """Persist *state* atomically. Raises ``OSError`` when the write fails."""
        atomic_write_json(self.path_for(issue), state.to_document())

    @contextmanager
    def locked(self, issue: str) -> Iterator[None]:
        """Hold the issue's exclusive lock. Raises :class:`LockTimeout` on timeout."""
        with exclusive_file_lock(self.path_for(issue), timeout=self.lock_timeout):
            yield


def record_snapshot(
    repository: ProgressRepository,
    issue: str,
    stage: str = "unknown",
    iteration: int = 0,
    diff_lines: int = 0,
    files_changed: int = 0,
    last_error: str = "",
    *,
    events: EventLog | None = None,
) -> RecordOutcome:
    """Append one progress snapshot for *issue*.

    Returns ``LOCK_TIMEOUT`` (state untouched) when the lock cannot be
    acquired in time and ``IO_ERROR`` when the write fails; neither should be
    treated as a pipeline failure.
    """
    issue = normalize_issue(issue)
    if not issue:
        return RecordOutcome.SKIPPED

    snapshot = Snapshot(
        stage=stage,
        iteration=iteration,
        diff_lines=diff_lines,
        files_changed=files_changed,
        last_error=last_error or "",
    )
    try:
        with repository.locked(issue):
            state = repository.get(issue)
            updated = state.with_snapshot(snapshot, max_snapshots=MAX_SNAPSHOTS)
            repository.put(issue, updated)
    except LockTimeout as exc:
        logger.warning("Vitals lock timeout for issue %s: %s", issue, exc)
        return RecordOutcome.LOCK_TIMEOUT
    except OSError as exc:
        logger.warning("Could not record progress snapshot for issue %s: %s", issue, exc)
        return RecordOutcome.IO_ERROR

    logger.debug(
        "Recorded snapshot issue=%s stage=%s iteration=%d no_progress=%d",
        issue,
        snapshot.stage,
        snapshot.iteration,
        updated.no_progress_count,
    )
    if events is not None:
        events.emit(
            SNAPSHOT_EVENT,
            issue=issue,
            stage=snapshot.stage,
            iteration=snapshot.iteration,
            diff_lines=snapshot.diff_lines,
            no_progress=updated.no_progress_count,
        )
    return RecordOutcome.OK


def update_health_score(repository: ProgressRepository, issue: str, score: int) -> RecordOutcome:
    """Persist *score* as the issue's ``last_health_score`` for trajectory tracking.

    Only issues that already have a progress document are updated.
    """
    issue = normalize_issue(issue)
    if not issue or not repository.exists(issue):
        return RecordOutcome.SKIPPED
    try:
        with repository.locked(issue):
            state = repository.get(issue)
            repository.put(issue, state.model_copy(update={"last_health_score": clamp_score(score)}))
    except LockTimeout as exc:
        logger.debug("Skipped health score update for issue %s: %s", issue, exc)
        return RecordOutcome.LOCK_TIMEOUT
    except OSError as exc:
        logger.warning("Could not persist health score for issue %s: %s", issue, exc)
        return RecordOutcome.IO_ERROR
    return RecordOutcome.OK
