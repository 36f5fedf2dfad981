"""Stages driven by systemd units.

Provisioning installs declarative mount units for the backing storage and
the destination share, and a service unit that binds the image to the USB
gadget. These stages start and stop those units without blocking and let
the controller poll for the settled state.
"""

from pathlib import Path
from typing import Optional

from .base import MountStage, StageResult
from ..utils.system import is_mountpoint, run_command


class SystemdUnitStage(MountStage):
    """A stage backed by one systemd unit.

    For mount units, ``mount_point`` is checked as well: systemd can report
    a mount unit active for a moment before the path is usable.

    Example:
        stage = SystemdUnitStage("destination", "mnt-gadget\\x2dshare.mount",
                                 mount_point=Path("/mnt/gadget-share"))
        stage.activate()
    """

    def __init__(
        self,
        name: str,
        unit: str,
        mount_point: Optional[Path] = None,
        command_timeout: float = 10.0,
    ):
        super().__init__()
        self.name = name
        self.unit = unit
        self.mount_point = Path(mount_point) if mount_point else None
        self.command_timeout = command_timeout

    def _systemctl(self, *args: str):
        return run_command(["systemctl", *args], timeout=self.command_timeout)

    def unit_active(self) -> bool:
        """Whether systemd reports the unit active."""
        code, _, _ = self._systemctl("is-active", "--quiet", self.unit)
        return code == 0

    def is_active(self) -> bool:
        if not self.unit_active():
            return False
        if self.mount_point is not None:
            return is_mountpoint(self.mount_point)
        return True

    def activate(self) -> StageResult:
        code, _, stderr = self._systemctl("start", "--no-block", self.unit)
        if code != 0:
            return StageResult(
                success=False,
                message=f"systemctl start {self.unit} failed: {stderr.strip() or code}",
            )
        self.logger.info(f"Requested start of {self.unit}")
        return StageResult(success=True, message=f"Start of {self.unit} queued")

    def deactivate(self) -> StageResult:
        code, _, stderr = self._systemctl("stop", "--no-block", self.unit)
        if code != 0:
            return StageResult(
                success=False,
                message=f"systemctl stop {self.unit} failed: {stderr.strip() or code}",
            )
        self.logger.info(f"Requested stop of {self.unit}")
        return StageResult(success=True, message=f"Stop of {self.unit} queued")

    def describe(self) -> str:
        if self.mount_point is not None:
            return f"{self.name} ({self.unit} at {self.mount_point})"
        return f"{self.name} ({self.unit})"

    def diagnose(self) -> str:
        _, stdout, _ = self._systemctl("is-active", self.unit)
        state = stdout.strip() or "unknown"
        return f"{self.unit} is {state}; check systemctl status {self.unit}"
