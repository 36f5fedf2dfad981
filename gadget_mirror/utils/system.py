"""Command execution and mount inspection helpers.

Every external command runs with a timeout so no mount operation can
block the caller indefinitely.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Commands the lifecycle controller shells out to
REQUIRED_COMMANDS = ("mount", "umount", "mountpoint", "systemctl")

DEFAULT_COMMAND_TIMEOUT = 30.0


def run_command(
    cmd: List[str],
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
) -> Tuple[int, str, str]:
    """Run a command and return its results.

    Never raises for ordinary failures: a missing binary returns -1 and a
    timeout returns -2, with the reason in stderr.

    Args:
        cmd: Command and arguments
        timeout: Seconds before the command is killed

    Returns:
        Tuple of (return_code, stdout, stderr)
    """
    logger.debug(f"Running command: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            check=False,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode, result.stdout, result.stderr
    except FileNotFoundError:
        return -1, "", f"Command not found: {cmd[0]}"
    except subprocess.TimeoutExpired:
        return -2, "", f"Command timed out after {timeout:g}s: {' '.join(cmd)}"


def is_mountpoint(path: Path) -> bool:
    """Check if a path is a mount point.

    Uses ``mountpoint -q`` when available, /proc/self/mounts otherwise.
    """
    path = Path(path)
    if not path.exists():
        return False

    if shutil.which("mountpoint"):
        code, _, _ = run_command(["mountpoint", "-q", str(path)], timeout=10)
        return code == 0

    try:
        with open("/proc/self/mounts", "r") as f:
            for line in f:
                parts = line.split()
                if len(parts) >= 2 and parts[1] == str(path):
                    return True
    except OSError:
        pass
    return False


def missing_commands(commands: Iterable[str] = REQUIRED_COMMANDS) -> List[str]:
    """Return the commands that are not on PATH."""
    return [cmd for cmd in commands if shutil.which(cmd) is None]


def is_root() -> bool:
    """Check if the current process runs as root."""
    return os.geteuid() == 0


@dataclass
class DiskUsage:
    """Filesystem usage statistics.

    Attributes:
        total_bytes: Total capacity in bytes
        used_bytes: Used space in bytes
        free_bytes: Available space in bytes
        percent_used: Usage percentage (0-100)
    """
    total_bytes: int
    used_bytes: int
    free_bytes: int
    percent_used: float

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "total_bytes": self.total_bytes,
            "used_bytes": self.used_bytes,
            "free_bytes": self.free_bytes,
            "percent_used": self.percent_used,
        }


def get_disk_usage(path: Path) -> Optional[DiskUsage]:
    """Usage of the filesystem holding ``path``, or None if unreachable."""
    try:
        stat = os.statvfs(path)
    except OSError as e:
        logger.debug(f"statvfs failed for {path}: {e}")
        return None

    total = stat.f_blocks * stat.f_frsize
    free = stat.f_bavail * stat.f_frsize
    used = total - stat.f_bfree * stat.f_frsize
    percent = (used / total * 100) if total > 0 else 0
    return DiskUsage(
        total_bytes=total,
        used_bytes=used,
        free_bytes=free,
        percent_used=round(percent, 2),
    )
