"""Logging setup for Gadget Mirror.

The failure reporter logs every pass with two ``extra`` fields:
``pass_record`` (the full PassRecord dict) and ``severity``. Both
formatters here know about them:

- ``JsonFormatter`` lifts the counters an alerting rule filters on
  (outcome, files_failed, ...) to the top level of the JSON line and keeps
  the full record under ``pass``.
- ``TextFormatter`` appends a short ``[severity outcome=...]`` tag so
  the journal shows the classification next to the summary line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union


TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# PassRecord fields promoted to the top level of a JSON line
PASS_SUMMARY_FIELDS = (
    "outcome",
    "duration_ms",
    "files_copied",
    "bytes_copied",
    "files_skipped",
    "files_failed",
)

# Attributes every LogRecord carries; anything else came in through extra=
_RESERVED_ATTRS = frozenset((
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "taskName",
))

# fasteners logs every lock attempt below DEBUG
_NOISY_LOGGERS = ("fasteners",)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with pass records flattened for collectors."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key == "pass_record":
                continue
            entry[key] = _jsonable(value)

        pass_record = getattr(record, "pass_record", None)
        if isinstance(pass_record, dict):
            for field_name in PASS_SUMMARY_FIELDS:
                if field_name in pass_record:
                    entry[field_name] = pass_record[field_name]
            entry["pass"] = _jsonable(pass_record)

        return json.dumps(entry)


class TextFormatter(logging.Formatter):
    """Plain text lines; pass reports get a severity/outcome tag."""

    def __init__(self):
        super().__init__(TEXT_FORMAT, DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pass_record = getattr(record, "pass_record", None)
        if not isinstance(pass_record, dict):
            return line
        severity = getattr(record, "severity", None) or record.levelname.lower()
        return f"{line} [{severity} outcome={pass_record.get('outcome')}]"


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return level


def configure_root_logger(
    level: Union[int, str] = logging.INFO,
    json_output: bool = False,
    log_file: Optional[Path] = None
) -> None:
    """Configure the root logger for a CLI invocation.

    Args:
        level: Logging level name or number; unknown names mean INFO
        json_output: Use JsonFormatter instead of TextFormatter
        log_file: Also append to this file
    """
    level = _resolve_level(level)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    formatter = JsonFormatter() if json_output else TextFormatter()

    # stderr ends up in the journal when run from a service unit
    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.INFO))
