"""Pass records: the unit of reporting for one reconciliation pass."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PassOutcome(Enum):
    """Overall result of one invocation."""
    SUCCESS = "success"      # every eligible file is at the destination
    PARTIAL = "partial"      # some copies failed, others went through
    FAILED = "failed"        # copies were attempted and none succeeded
    DEFERRED = "deferred"    # mount chain not ready, nothing attempted
    SKIPPED = "skipped"      # previous pass still running


class SkipReason(Enum):
    """Why an entry was not copied this pass."""
    UNSTABLE = "unstable"
    UNSUPPORTED_PATH = "unsupported_path"
    DEFERRED = "deferred"


@dataclass
class SkippedFile:
    path: str
    reason: SkipReason
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "reason": self.reason.value, "detail": self.detail}


@dataclass
class FailedFile:
    path: str
    error: str
    errno: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "error": self.error, "errno": self.errno}


@dataclass
class PassRecord:
    """Outcome of one reconciliation pass.

    Exactly one record is produced per invocation, including skipped and
    deferred ones. Records never carry credential values.
    """
    started_at: float = field(default_factory=time.time)
    finished_at: float = 0.0
    duration_ms: float = 0.0
    outcome: Optional[PassOutcome] = None
    note: str = ""

    files_copied: int = 0
    bytes_copied: int = 0
    files_unchanged: int = 0

    copied: List[str] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    failures: List[FailedFile] = field(default_factory=list)

    @property
    def files_skipped(self) -> int:
        return len(self.skipped)

    @property
    def files_failed(self) -> int:
        return len(self.failures)

    def skip(self, path: str, reason: SkipReason, detail: str = "") -> None:
        self.skipped.append(SkippedFile(path, reason, detail))

    def fail(self, path: str, error: str, errno: Optional[int] = None) -> None:
        self.failures.append(FailedFile(path, error, errno))

    def add_copy(self, path: str, size: int) -> None:
        self.copied.append(path)
        self.files_copied += 1
        self.bytes_copied += size

    def finalize(self, outcome: Optional[PassOutcome] = None) -> "PassRecord":
        """Stamp the end time and settle the outcome.

        Without an explicit outcome it is derived from the counters.
        """
        self.finished_at = time.time()
        self.duration_ms = (self.finished_at - self.started_at) * 1000

        if outcome is not None:
            self.outcome = outcome
        elif self.failures and self.files_copied == 0:
            self.outcome = PassOutcome.FAILED
        elif self.failures:
            self.outcome = PassOutcome.PARTIAL
        else:
            self.outcome = PassOutcome.SUCCESS
        return self

    @classmethod
    def skipped_pass(cls, note: str) -> "PassRecord":
        """Record for an invocation that did not get the pass lock."""
        return cls(note=note).finalize(PassOutcome.SKIPPED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to dictionary."""
        return {
            "outcome": self.outcome.value if self.outcome else None,
            "note": self.note,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": round(self.duration_ms, 3),
            "files_copied": self.files_copied,
            "bytes_copied": self.bytes_copied,
            "files_unchanged": self.files_unchanged,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "copied": list(self.copied),
            "skipped": [s.to_dict() for s in self.skipped],
            "failures": [f.to_dict() for f in self.failures],
        }

    def summary(self) -> str:
        """One-line human summary."""
        text = (
            f"Pass {self.outcome.value if self.outcome else 'pending'}: "
            f"{self.files_copied} copied ({self.bytes_copied:,} bytes), "
            f"{self.files_unchanged} unchanged, "
            f"{self.files_skipped} skipped, "
            f"{self.files_failed} failed "
            f"in {self.duration_ms:.1f}ms"
        )
        if self.note:
            text += f" ({self.note})"
        return text
