"""Pipeline Vitals - health scoring and adaptive control for multi-stage build pipelines."""

from importlib.metadata import PackageNotFoundError, version

from pipeline_vitals.config import VitalsPaths, VitalsSettings, load_settings
from pipeline_vitals.engine import VitalsEngine
from pipeline_vitals.schemas import BudgetOutlook, RecordOutcome, Trajectory, Verdict, VitalsResult

__all__ = [
    "BudgetOutlook",
    "RecordOutcome",
    "Trajectory",
    "Verdict",
    "VitalsEngine",
    "VitalsPaths",
    "VitalsResult",
    "VitalsSettings",
    "load_settings",
]

try:
    __version__ = version("pipeline-vitals")
except PackageNotFoundError:
    __version__ = "0.0.0"
