"""Failure reporting for Gadget Mirror.

This package provides:
- reporter: severity mapping and alarm escalation for pass records
- streak: persisted consecutive-failure count and last pass
"""

from gadget_mirror.reporting.reporter import FailureReporter, Report, Severity
from gadget_mirror.reporting.streak import StreakState, clear_streak, load_streak

__all__ = [
    "FailureReporter",
    "Report",
    "Severity",
    "StreakState",
    "clear_streak",
    "load_streak",
]
