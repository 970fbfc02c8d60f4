"""Evidence research pipeline: budgeted multi-provider research briefs."""

__version__ = "1.0.0"

from .models import (
    Evidence,
    EvidenceCluster,
    KeyFinding,
    Report,
    ReportSection,
    ResearchMode,
    ResearchQuery,
    RunResult,
    Theme,
)
from .orchestrator import run_pipeline

__all__ = [
    "Evidence",
    "EvidenceCluster",
    "KeyFinding",
    "Report",
    "ReportSection",
    "ResearchMode",
    "ResearchQuery",
    "RunResult",
    "Theme",
    "run_pipeline",
]
