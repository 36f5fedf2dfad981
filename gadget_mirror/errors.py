"""Error kinds for Gadget Mirror.

Recoverable kinds (MountTimeout, MountUnavailable, LockContention,
CopyFailure) are retried on the next scheduled invocation. ConfigInvalid
is fatal at startup only.
"""

from typing import List, Optional


class MirrorError(Exception):
    """Base class for all Gadget Mirror errors."""

    recoverable: bool = True


class MountTimeout(MirrorError):
    """A mount stage did not reach the wanted state within the bounded wait."""

    def __init__(self, stage: str, timeout: float, detail: str = ""):
        self.stage = stage
        self.timeout = timeout
        self.detail = detail
        message = f"Stage '{stage}' not active after {timeout:g}s"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class MountUnavailable(MirrorError):
    """The volume or destination mount cannot be reached."""

    def __init__(self, what: str, path: Optional[str] = None):
        self.what = what
        self.path = path
        message = f"{what} unavailable"
        if path:
            message += f" at {path}"
        super().__init__(message)


class CopyFailure(MirrorError):
    """Copying a single file to the destination failed."""

    def __init__(self, rel_path: str, reason: str, errno: Optional[int] = None):
        self.rel_path = rel_path
        self.reason = reason
        self.errno = errno
        super().__init__(f"Failed to copy {rel_path}: {reason}")


class LockContention(MirrorError):
    """The pass lock is held by another pass or a gadget reconfiguration."""

    def __init__(self, lock_path: str):
        self.lock_path = lock_path
        super().__init__(f"previous pass still running (lock {lock_path})")


class ConfigInvalid(MirrorError):
    """Required settings are missing or malformed."""

    recoverable = False

    def __init__(self, problems: List[str]):
        self.problems = list(problems)
        super().__init__("Invalid configuration: " + "; ".join(self.problems))
