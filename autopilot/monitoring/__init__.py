"""Monitoring and logging modules."""

from autopilot.monitoring.logger import setup_logging
from autopilot.monitoring.metrics import (
    DrainResult,
    EntryResult,
    ReconcileResult,
    RunResult,
    Stopwatch,
)

__all__ = [
    "setup_logging",
    "RunResult",
    "DrainResult",
    "EntryResult",
    "ReconcileResult",
    "Stopwatch",
]
