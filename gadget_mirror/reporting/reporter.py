"""Failure reporter: maps pass outcomes to severities.

| Outcome  | Severity                         | Streak     |
|----------|----------------------------------|------------|
| success  | info                             | reset      |
| partial  | warning                          | reset      |
| failed   | warning, alarm at the threshold  | +1         |
| deferred | warning                          | unchanged  |
| skipped  | info                             | unchanged  |

Files that failed stay pending for the next pass, so nothing here retries
on its own. The alarm is the only escalation and it is persisted so the
service manager and ``status`` can show it.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from gadget_mirror.sync.record import PassOutcome, PassRecord
from gadget_mirror.reporting.streak import (
    StreakState,
    clear_streak,
    load_last_pass,
    load_streak,
    save_last_pass,
    save_streak,
)

logger = logging.getLogger(__name__)


class Severity(Enum):
    """Operator-facing severity of a pass."""
    INFO = "info"
    WARNING = "warning"
    ALARM = "alarm"

    @property
    def log_level(self) -> int:
        return {
            Severity.INFO: logging.INFO,
            Severity.WARNING: logging.WARNING,
            Severity.ALARM: logging.CRITICAL,
        }[self]


@dataclass
class Report:
    """What the reporter concluded about one pass.

    Attributes:
        severity: Severity of this pass
        outcome: The pass outcome
        consecutive_failures: Failed passes in a row, including this one
        alarm_active: Whether the alarm is raised after this pass
    """
    severity: Severity
    outcome: PassOutcome
    consecutive_failures: int
    alarm_active: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "severity": self.severity.value,
            "outcome": self.outcome.value,
            "consecutive_failures": self.consecutive_failures,
            "alarm_active": self.alarm_active,
        }


class FailureReporter:
    """Turns PassRecords into severities, logs them and tracks the alarm.

    Usage:
        reporter = FailureReporter(Path("/var/lib/gadget-mirror"), alarm_threshold=3)
        report = reporter.report(record)
        if report.alarm_active:
            ...
    """

    def __init__(
        self,
        state_dir: Optional[Path] = None,
        alarm_threshold: int = 3,
        sink: Optional[logging.Logger] = None,
    ):
        """Initialize the reporter.

        Args:
            state_dir: Where the streak persists; None keeps it in memory
            alarm_threshold: Consecutive failed passes before the alarm
            sink: Logger receiving pass records
        """
        self.state_dir = Path(state_dir) if state_dir else None
        self.alarm_threshold = alarm_threshold
        self.sink = sink or logger
        self._memory_state = StreakState()

    def _load(self) -> StreakState:
        if self.state_dir is None:
            return self._memory_state
        return load_streak(self.state_dir)

    def _save(self, state: StreakState) -> None:
        if self.state_dir is None:
            self._memory_state = state
            return
        save_streak(self.state_dir, state)

    def classify(self, record: PassRecord, state: StreakState) -> Severity:
        """Update the streak for a record and pick its severity."""
        outcome = record.outcome

        if outcome in (PassOutcome.SUCCESS, PassOutcome.PARTIAL):
            state.consecutive_failures = 0
            if state.alarm:
                logger.info("Alarm cleared: destination accepted writes again")
            state.alarm = False
            state.alarm_since = None
            return Severity.INFO if outcome == PassOutcome.SUCCESS else Severity.WARNING

        if outcome == PassOutcome.FAILED:
            state.consecutive_failures += 1
            if state.consecutive_failures >= self.alarm_threshold:
                if not state.alarm:
                    state.alarm = True
                    state.alarm_since = datetime.now(timezone.utc).isoformat()
                return Severity.ALARM
            return Severity.WARNING

        if outcome == PassOutcome.DEFERRED:
            return Severity.WARNING
        return Severity.INFO

    def report(self, record: PassRecord) -> Report:
        """Report one pass.

        Args:
            record: A finalized PassRecord

        Returns:
            Report with severity and alarm state
        """
        if record.outcome is None:
            record.finalize()

        state = self._load()
        severity = self.classify(record, state)
        state.last_outcome = record.outcome.value
        self._save(state)

        record_dict = record.to_dict()
        if self.state_dir is not None:
            save_last_pass(self.state_dir, record_dict)

        message = record.summary()
        if severity == Severity.ALARM:
            message = (
                f"ALARM: {state.consecutive_failures} consecutive failed passes. "
                f"{message}"
            )
        self.sink.log(
            severity.log_level,
            message,
            extra={"pass_record": record_dict, "severity": severity.value},
        )

        return Report(
            severity=severity,
            outcome=record.outcome,
            consecutive_failures=state.consecutive_failures,
            alarm_active=state.alarm,
        )

    def reset(self) -> bool:
        """Clear the streak and the alarm."""
        self._memory_state = StreakState()
        if self.state_dir is None:
            return True
        logger.info("Failure streak and alarm cleared")
        return clear_streak(self.state_dir)

    def status(self) -> Dict[str, Any]:
        """Persisted state and the last pass, for status output."""
        return {
            "alarm_threshold": self.alarm_threshold,
            "streak": self._load().to_dict(),
            "last_pass": load_last_pass(self.state_dir) if self.state_dir else None,
        }
