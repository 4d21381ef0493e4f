"""Append-only lifecycle event log shared with the rest of the pipeline tooling.

Writes are a best-effort side channel: a failed append is logged and dropped.
The same file carries ``cost.record`` events from the cost subsystem, which
the budget forecaster reads back.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from enum import Enum
from pathlib import Path
from typing import Any

from pipeline_vitals.coerce import parse_number
from pipeline_vitals.file_io import append_text, read_text_lenient
from pipeline_vitals.schemas import utc_now_iso

logger = logging.getLogger(__name__)

COST_RECORD_EVENT = "cost.record"
SNAPSHOT_EVENT = "vitals.snapshot"


def _sanitize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class EventLog:
    """JSONL event stream at a fixed path."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def emit(self, event_type: str, **fields: Any) -> None:
        payload: dict[str, Any] = {"ts": utc_now_iso(), "type": event_type}
        payload.update({key: _sanitize(value) for key, value in fields.items()})
        try:
            append_text(self.path, json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as exc:
            logger.warning("Could not append %s event to %s: %s", event_type, self.path, exc)

    def iter_events(self, event_type: str | None = None) -> Iterator[dict[str, Any]]:
        """Yield parsed events, optionally only those of *event_type*."""
        try:
            text = read_text_lenient(self.path)
        except OSError as exc:
            logger.warning("Could not read event log %s: %s", self.path, exc)
            return
        if text is None:
            return
        for line in text.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if not isinstance(event, dict):
                continue
            if event_type is not None and event.get("type") != event_type:
                continue
            yield event

    def stage_costs(self) -> list[float]:
        """Return ``cost_usd`` of every recorded stage cost (non-numeric counts as 0)."""
        return [
            parse_number(event.get("cost_usd")) or 0.0
            for event in self.iter_events(COST_RECORD_EVENT)
        ]
