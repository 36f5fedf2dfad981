"""Failure streak persistence.

Passes run as separate timer-started processes, so the count of
consecutive failed passes and the alarm flag live in a small JSON file in
the state directory:

1. A failed pass increments the streak
2. A pass that copies anything resets it and clears the alarm
3. Reaching the threshold sets the alarm until cleared

A missing or unreadable file counts as a clean slate.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

STREAK_FILE = "reporter.json"
LAST_PASS_FILE = "last_pass.json"


@dataclass
class StreakState:
    """Persisted reporter state."""
    consecutive_failures: int = 0
    alarm: bool = False
    alarm_since: Optional[str] = None
    last_outcome: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consecutive_failures": self.consecutive_failures,
            "alarm": self.alarm,
            "alarm_since": self.alarm_since,
            "last_outcome": self.last_outcome,
            "updated_at": self.updated_at,
        }


def _write_json(path: Path, data: Dict[str, Any]) -> bool:
    """Write JSON through a temporary file and rename."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
        return True
    except OSError as e:
        logger.error(f"Failed to write {path}: {e}")
        return False


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Ignoring unreadable {path}: {e}")
        return None
    return data if isinstance(data, dict) else None


def load_streak(state_dir: Path) -> StreakState:
    """Load the persisted streak, or a clean one."""
    data = _read_json(Path(state_dir) / STREAK_FILE)
    if data is None:
        return StreakState()
    try:
        return StreakState(
            consecutive_failures=int(data.get("consecutive_failures", 0)),
            alarm=bool(data.get("alarm", False)),
            alarm_since=data.get("alarm_since"),
            last_outcome=data.get("last_outcome"),
            updated_at=data.get("updated_at"),
        )
    except (TypeError, ValueError):
        logger.warning(f"Malformed streak state in {state_dir}, starting clean")
        return StreakState()


def save_streak(state_dir: Path, state: StreakState) -> bool:
    """Persist the streak with a fresh timestamp."""
    state.updated_at = datetime.now(timezone.utc).isoformat()
    return _write_json(Path(state_dir) / STREAK_FILE, state.to_dict())


def clear_streak(state_dir: Path) -> bool:
    """Forget the streak and the alarm.

    Returns:
        True if the state was removed or did not exist
    """
    path = Path(state_dir) / STREAK_FILE
    try:
        if path.exists():
            path.unlink()
        return True
    except OSError as e:
        logger.error(f"Failed to clear {path}: {e}")
        return False


def save_last_pass(state_dir: Path, record: Dict[str, Any]) -> bool:
    """Keep the most recent PassRecord for status queries."""
    return _write_json(Path(state_dir) / LAST_PASS_FILE, record)


def load_last_pass(state_dir: Path) -> Optional[Dict[str, Any]]:
    """Most recent PassRecord as a dict, if any."""
    return _read_json(Path(state_dir) / LAST_PASS_FILE)
