"""Readers for the files other subsystems own: pipeline state, error log, costs.

Every reader substitutes a neutral default when its file is absent and logs a
warning (rather than raising) when the file is present but malformed.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pipeline_vitals.coerce import parse_int, parse_number
from pipeline_vitals.errors import MalformedInput
from pipeline_vitals.file_io import read_text_lenient

logger = logging.getLogger(__name__)

_ITERATION_RE = re.compile(r"iteration\s+(\d+)")
_ISSUE_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
UNKNOWN_SIGNATURE = "unknown"


def load_json_document(path: Path) -> Any | None:
    """Return the parsed JSON at *path*, ``None`` when absent.

    Raises :class:`MalformedInput` when the file exists but is not JSON.
    """
    try:
        text = read_text_lenient(path)
    except OSError as exc:
        raise MalformedInput(f"Could not read {path}: {exc}") from exc
    if text is None:
        return None
    if not text.strip():
        raise MalformedInput(f"{path} is empty")
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedInput(f"{path} is not valid JSON: {exc}") from exc


def _load_mapping(path: Path, label: str) -> dict[str, Any] | None:
    try:
        data = load_json_document(path)
    except MalformedInput as exc:
        logger.warning("Ignoring malformed %s: %s", label, exc)
        return None
    if data is None:
        return None
    if not isinstance(data, dict):
        logger.warning("Ignoring %s %s: expected an object", label, path)
        return None
    return data


def normalize_issue(value: Any) -> str:
    """Return a filesystem-safe issue id, or ``""`` when *value* is unusable."""
    text = str(value or "").strip().strip('"').strip("'").lstrip("#")
    if not text:
        return ""
    if not _ISSUE_RE.match(text):
        logger.warning("Ignoring unsafe issue id %r", value)
        return ""
    return text


# ---------------------------------------------------------------------------
# Pipeline state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PipelineState:
    """Fields recognized in the executor's pipeline state document."""

    stage: str = "unknown"
    iteration: int = 0
    elapsed: str = "0s"
    issue: str = ""


def _first_field(lines: Sequence[str], name: str) -> str | None:
    prefix = f"{name}:"
    for line in lines:
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return None


def parse_pipeline_state(text: str) -> PipelineState:
    """Parse ``current_stage:``, ``stage_progress:``, ``elapsed:`` and ``issue:``."""
    lines = text.splitlines()
    stage = _first_field(lines, "current_stage") or "unknown"
    iteration = 0
    progress = _first_field(lines, "stage_progress") or ""
    match = _ITERATION_RE.search(progress)
    if match:
        iteration = int(match.group(1))
    elapsed = _first_field(lines, "elapsed")
    issue = _first_field(lines, "issue") or ""
    return PipelineState(
        stage=stage,
        iteration=iteration,
        elapsed=elapsed if elapsed is not None else "0s",
        issue=issue.replace('"', "").strip(),
    )


def read_pipeline_state(path: Path | None) -> PipelineState:
    if path is None:
        return PipelineState()
    try:
        text = read_text_lenient(path)
    except OSError as exc:
        logger.warning("Could not read pipeline state %s: %s", path, exc)
        return PipelineState()
    if text is None:
        return PipelineState()
    return parse_pipeline_state(text)


# ---------------------------------------------------------------------------
# Error log
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ErrorLogEntry:
    """One line of the executor's append-only error log."""

    signature: str
    ts: str = ""


def resolve_error_log(artifacts_dir: Path, issue: str = "") -> Path:
    """Prefer the per-issue ``error-log.<issue>.jsonl``, else ``error-log.jsonl``."""
    if issue:
        per_issue = artifacts_dir / f"error-log.{issue}.jsonl"
        if per_issue.is_file():
            return per_issue
    return artifacts_dir / "error-log.jsonl"


def read_error_log(path: Path) -> list[ErrorLogEntry]:
    try:
        text = read_text_lenient(path)
    except OSError as exc:
        logger.warning("Could not read error log %s: %s", path, exc)
        return []
    if text is None:
        return []

    entries: list[ErrorLogEntry] = []
    skipped = 0
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            raw = json.loads(line)
        except json.JSONDecodeError:
            skipped += 1
            continue
        if not isinstance(raw, dict):
            skipped += 1
            continue
        signature = str(raw.get("signature") or "").strip() or UNKNOWN_SIGNATURE
        entries.append(ErrorLogEntry(signature=signature, ts=str(raw.get("ts") or "")))
    if skipped:
        logger.warning("Skipped %d malformed line(s) in %s", skipped, path)
    return entries


def count_unique_signatures(entries: Iterable[ErrorLogEntry]) -> int:
    return len({entry.signature for entry in entries})


# ---------------------------------------------------------------------------
# Budget and costs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BudgetState:
    """Daily budget configuration written by the cost subsystem."""

    enabled: bool = False
    daily_budget_usd: float = 0.0

    @property
    def enforced(self) -> bool:
        """True when a positive daily budget is switched on."""
        return self.enabled and self.daily_budget_usd > 0


@dataclass(frozen=True)
class CostEntry:
    """One cost record from the cost ledger."""

    cost_usd: float
    ts_epoch: float


def read_budget_state(path: Path) -> BudgetState:
    data = _load_mapping(path, "budget file")
    if data is None:
        return BudgetState()
    enabled_raw = data.get("enabled")
    enabled = enabled_raw is True or str(enabled_raw).strip().lower() == "true"
    daily = parse_number(data.get("daily_budget_usd"))
    if daily is None:
        if data.get("daily_budget_usd") is not None:
            logger.warning("Malformed daily_budget_usd %r in %s; using 0", data.get("daily_budget_usd"), path)
        daily = 0.0
    return BudgetState(enabled=enabled, daily_budget_usd=max(0.0, daily))


def read_cost_entries(path: Path) -> list[CostEntry]:
    data = _load_mapping(path, "cost file")
    if data is None:
        return []
    raw_entries = data.get("entries")
    if not isinstance(raw_entries, list):
        return []

    entries: list[CostEntry] = []
    skipped = 0
    for raw in raw_entries:
        if not isinstance(raw, dict):
            skipped += 1
            continue
        cost = parse_number(raw.get("cost_usd"))
        ts_epoch = parse_number(raw.get("ts_epoch"))
        if cost is None or ts_epoch is None:
            skipped += 1
            continue
        entries.append(CostEntry(cost_usd=cost, ts_epoch=ts_epoch))
    if skipped:
        logger.warning("Skipped %d malformed cost entr(ies) in %s", skipped, path)
    return entries


def start_of_utc_day(now_epoch: float) -> float:
    """Return the epoch seconds of 00:00:00 UTC on the day containing *now_epoch*."""
    now = dt.datetime.fromtimestamp(now_epoch, tz=dt.timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight.timestamp()


def spent_since(entries: Iterable[CostEntry], cutoff_epoch: float) -> float:
    """Sum ``cost_usd`` of entries at or after *cutoff_epoch*."""
    return sum(entry.cost_usd for entry in entries if entry.ts_epoch >= cutoff_epoch)


# ---------------------------------------------------------------------------
# Learned iteration model
# ---------------------------------------------------------------------------

def read_iteration_model(path: Path) -> dict[str, int]:
    """Return ``{loop_type: recommended_cycles}`` for well-formed entries."""
    data = _load_mapping(path, "iteration model")
    if data is None:
        return {}
    model: dict[str, int] = {}
    for loop_type, entry in data.items():
        if not isinstance(entry, dict):
            continue
        cycles = parse_int(entry.get("recommended_cycles"))
        if cycles is None:
            continue
        model[str(loop_type)] = cycles
    return model
