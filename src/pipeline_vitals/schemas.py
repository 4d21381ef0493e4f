"""Pydantic models for progress snapshots, persisted progress and vitals results."""

from __future__ import annotations

import datetime as dt
import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from pipeline_vitals.coerce import clamp_score, parse_int

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Return the current UTC instant as ``YYYY-MM-DDTHH:MM:SSZ``."""
    now = dt.datetime.now(dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def _count_or_zero(value: Any, field_name: str) -> int:
    parsed = parse_int(value)
    if parsed is None:
        if value not in (None, ""):
            logger.warning("Malformed %s value %r; using 0", field_name, value)
        return 0
    return max(0, parsed)


# ---------------------------------------------------------------------------
# Control decisions
# ---------------------------------------------------------------------------

class Verdict(str, Enum):
    """Control decision derived from health score and trajectory."""

    CONTINUE = "continue"
    WARN = "warn"
    INTERVENE = "intervene"
    ABORT = "abort"


class Trajectory(str, Enum):
    """Direction of change between consecutive health scores."""

    IMPROVING = "improving"
    DECLINING = "declining"
    STABLE = "stable"


class BudgetOutlook(str, Enum):
    """Forecast of whether the remaining budget can fund the remaining stages."""

    OK = "ok"
    WARN = "warn"
    STOP = "stop"


class RecordOutcome(str, Enum):
    """Result of recording a progress snapshot."""

    OK = "ok"
    LOCK_TIMEOUT = "lock_timeout"
    IO_ERROR = "io_error"
    SKIPPED = "skipped"


# ---------------------------------------------------------------------------
# Snapshot store documents
# ---------------------------------------------------------------------------

class Snapshot(BaseModel):
    """One timestamped observation of pipeline progress."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    stage: str = "unknown"
    iteration: int = 0
    diff_lines: int = 0
    files_changed: int = 0
    last_error: str = ""
    timestamp: str = Field(default_factory=utc_now_iso, alias="ts")

    @field_validator("iteration", "diff_lines", "files_changed", mode="before")
    @classmethod
    def _sanitize_counts(cls, value: Any, info: ValidationInfo) -> int:
        return _count_or_zero(value, info.field_name)

    @field_validator("stage", mode="before")
    @classmethod
    def _sanitize_stage(cls, value: Any) -> str:
        text = "" if value is None else str(value).strip()
        return text or "unknown"

    @field_validator("last_error", "timestamp", mode="before")
    @classmethod
    def _sanitize_text(cls, value: Any) -> str:
        return "" if value is None else str(value)


class ProgressState(BaseModel):
    """Per-issue progress document persisted by the snapshot store."""

    snapshots: list[Snapshot] = Field(default_factory=list)
    no_progress_count: int = 0
    last_health_score: int | None = None

    @field_validator("snapshots", mode="before")
    @classmethod
    def _drop_invalid_snapshots(cls, value: Any) -> list[Any]:
        if not isinstance(value, list):
            if value is not None:
                logger.warning("Progress snapshots is not a list (%s); ignoring", type(value).__name__)
            return []
        kept = [item for item in value if isinstance(item, (dict, Snapshot))]
        if len(kept) != len(value):
            logger.warning("Dropped %d malformed progress snapshot(s)", len(value) - len(kept))
        return kept

    @field_validator("no_progress_count", mode="before")
    @classmethod
    def _sanitize_no_progress(cls, value: Any) -> int:
        return _count_or_zero(value, "no_progress_count")

    @field_validator("last_health_score", mode="before")
    @classmethod
    def _sanitize_last_score(cls, value: Any) -> int | None:
        if value is None or value == "":
            return None
        parsed = parse_int(value)
        if parsed is None:
            logger.warning("Malformed last_health_score %r; ignoring", value)
            return None
        return clamp_score(parsed)

    @property
    def last_snapshot(self) -> Snapshot | None:
        return self.snapshots[-1] if self.snapshots else None

    def with_snapshot(self, snapshot: Snapshot, *, max_snapshots: int) -> ProgressState:
        """Return a new state with *snapshot* appended and the counters advanced.

        ``no_progress_count`` resets when the stage changes or the iteration
        strictly increases; otherwise it grows by one.
        """
        previous = self.last_snapshot
        prev_stage = previous.stage if previous else ""
        prev_iteration = previous.iteration if previous else -1
        if snapshot.stage != prev_stage or snapshot.iteration > prev_iteration:
            no_progress = 0
        else:
            no_progress = self.no_progress_count + 1
        snapshots = [*self.snapshots, snapshot][-max_snapshots:]
        return self.model_copy(update={"snapshots": snapshots, "no_progress_count": no_progress})

    def to_document(self) -> dict[str, Any]:
        """Return the on-disk JSON shape."""
        payload = self.model_dump(mode="json", by_alias=True)
        if payload.get("last_health_score") is None:
            payload.pop("last_health_score", None)
        return payload


# ---------------------------------------------------------------------------
# Vitals results
# ---------------------------------------------------------------------------

class SignalScores(BaseModel):
    """The four 0-100 signals feeding the composite health score."""

    momentum: int = 50
    convergence: int = 100
    budget: int = 100
    error_maturity: int = 80


class PipelineInfo(BaseModel):
    """Where the pipeline currently is, as read from its state file."""

    stage: str = "unknown"
    iteration: int = 0
    elapsed: str = "0s"
    issue: str = ""


class BudgetInfo(BaseModel):
    """Daily budget position. ``remaining`` is ``None`` when no budget is enforced."""

    remaining: float | None = None
    today_spent: float = 0.0


class ErrorCounts(BaseModel):
    """Error log totals for the current issue."""

    total: int = 0
    unique: int = 0


class VitalsResult(BaseModel):
    """Composite health verdict for one pipeline at one instant."""

    model_config = ConfigDict(populate_by_name=True)

    health_score: int
    verdict: Verdict
    recommended_action: str
    signals: SignalScores = Field(default_factory=SignalScores)
    pipeline: PipelineInfo = Field(default_factory=PipelineInfo)
    budget: BudgetInfo = Field(default_factory=BudgetInfo)
    errors: ErrorCounts = Field(default_factory=ErrorCounts)
    prev_score: int | None = None
    timestamp: str = Field(default_factory=utc_now_iso, alias="ts")

    def to_dict(self) -> dict[str, Any]:
        """Return the machine-readable JSON shape."""
        return self.model_dump(mode="json", by_alias=True)
