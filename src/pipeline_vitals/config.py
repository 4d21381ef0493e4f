"""Filesystem layout and tunable parameters for the vitals engine.

Settings are layered: built-in defaults, then an optional YAML override at
``<home>/vitals.yaml``, then ``VITALS_*`` environment variables.  Paths are
resolved once at the edge (CLI) and injected into the engine.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from pipeline_vitals.coerce import parse_int, parse_number

logger = logging.getLogger(__name__)

DEFAULT_HOME_DIRNAME = ".shipwright"
SETTINGS_FILENAME = "vitals.yaml"


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class VitalsPaths:
    """Locations of every file the engine reads or writes.

    ``home`` holds the shared cost/budget/event files and the progress store;
    ``repo_dir`` anchors the default pipeline state file and artifacts dir.
    """

    home: Path
    repo_dir: Path

    @property
    def progress_dir(self) -> Path:
        return self.home / "progress"

    @property
    def costs_file(self) -> Path:
        return self.home / "costs.json"

    @property
    def budget_file(self) -> Path:
        return self.home / "budget.json"

    @property
    def events_file(self) -> Path:
        return self.home / "events.jsonl"

    @property
    def iteration_model_file(self) -> Path:
        return self.home / "optimization" / "iteration-model.json"

    @property
    def settings_file(self) -> Path:
        return self.home / SETTINGS_FILENAME

    @property
    def default_state_file(self) -> Path:
        return self.repo_dir / ".claude" / "pipeline-state.md"

    @property
    def default_artifacts_dir(self) -> Path:
        return self.repo_dir / ".claude" / "pipeline-artifacts"

    @classmethod
    def from_env(
        cls,
        *,
        home: str | Path | None = None,
        repo_dir: str | Path | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> VitalsPaths:
        """Resolve paths from explicit arguments, then ``VITALS_HOME``, then defaults."""
        env = os.environ if environ is None else environ
        home_value = home or env.get("VITALS_HOME", "").strip() or Path.home() / DEFAULT_HOME_DIRNAME
        repo_value = repo_dir or Path.cwd()
        return cls(
            home=Path(home_value).expanduser().resolve(),
            repo_dir=Path(repo_value).expanduser().resolve(),
        )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class SignalWeights(BaseModel):
    """Composite weights; designed to sum to 100 but not required to."""

    momentum: int = Field(default=35, ge=0)
    convergence: int = Field(default=30, ge=0)
    budget: int = Field(default=20, ge=0)
    error_maturity: int = Field(default=15, ge=0)


class ConvergenceTuning(BaseModel):
    """Fallback scores used when the error trend cannot be measured."""

    stagnation_threshold: int = Field(default=3, ge=1)
    stagnation_score: int = Field(default=10, ge=0, le=100)
    unknown_trend_score: int = Field(default=40, ge=0, le=100)


class MaturityTuning(BaseModel):
    """Unique/total error ratio cut-offs (percent) and the score for each band."""

    novel_ratio_pct: int = Field(default=80, ge=0, le=100)
    mixed_ratio_pct: int = Field(default=40, ge=0, le=100)
    novel_score: int = Field(default=20, ge=0, le=100)
    mixed_score: int = Field(default=50, ge=0, le=100)
    repeating_score: int = Field(default=60, ge=0, le=100)
    no_errors_score: int = Field(default=80, ge=0, le=100)


class VitalsSettings(BaseModel):
    """All tunable parameters of the vitals engine."""

    weights: SignalWeights = Field(default_factory=SignalWeights)
    convergence: ConvergenceTuning = Field(default_factory=ConvergenceTuning)
    maturity: MaturityTuning = Field(default_factory=MaturityTuning)
    gate_threshold: int = Field(default=40, ge=0, le=100)
    lock_timeout_seconds: float = Field(default=5.0, ge=0)
    default_cycle_limit: int = Field(default=5, ge=1)
    default_stage_cost_usd: float = Field(default=0.50, gt=0)
    budget_safety_factor: float = Field(default=1.5, gt=0)


_ENV_OVERRIDES: dict[str, tuple[tuple[str, ...], Callable[[Any], Any]]] = {
    "VITALS_WEIGHT_MOMENTUM": (("weights", "momentum"), parse_int),
    "VITALS_WEIGHT_CONVERGENCE": (("weights", "convergence"), parse_int),
    "VITALS_WEIGHT_BUDGET": (("weights", "budget"), parse_int),
    "VITALS_WEIGHT_ERROR_MATURITY": (("weights", "error_maturity"), parse_int),
    "VITALS_GATE_THRESHOLD": (("gate_threshold",), parse_int),
    "VITALS_LOCK_TIMEOUT": (("lock_timeout_seconds",), parse_number),
}


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML mapping, returning an empty dict on failure."""
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}
    if data is None:
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring %s: expected a mapping, got %s", path, type(data).__name__)
        return {}
    return data


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (override wins)."""
    merged = dict(base)
    for k, v in override.items():
        if k in merged and isinstance(merged[k], dict) and isinstance(v, dict):
            merged[k] = _deep_merge(merged[k], v)
        else:
            merged[k] = v
    return merged


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for name, (keys, parser) in _ENV_OVERRIDES.items():
        raw = environ.get(name, "").strip()
        if not raw:
            continue
        value = parser(raw)
        if value is None:
            logger.warning("Invalid %s=%r; keeping configured value", name, raw)
            continue
        node = overrides
        for key in keys[:-1]:
            node = node.setdefault(key, {})
        node[keys[-1]] = value
    return overrides


def load_settings(
    paths: VitalsPaths | None = None,
    *,
    environ: Mapping[str, str] | None = None,
) -> VitalsSettings:
    """Build settings from defaults, the optional YAML file and the environment."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}
    if paths is not None and paths.settings_file.is_file():
        data = _deep_merge(data, _load_yaml(paths.settings_file))
        logger.debug("Loaded vitals settings from %s", paths.settings_file)
    data = _deep_merge(data, _env_overrides(env))
    try:
        return VitalsSettings.model_validate(data)
    except ValidationError as exc:
        logger.warning("Invalid vitals settings; using defaults: %s", exc)
        return VitalsSettings()
