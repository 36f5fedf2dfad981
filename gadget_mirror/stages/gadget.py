"""Gadget exposure through the g_mass_storage kernel module.

Used on hosts where no service unit owns the gadget. Loading the module
with ``file=`` presents the image as a removable USB disk; unloading it
detaches the disk from the external host.
"""

from pathlib import Path

from .base import MountStage, StageResult
from ..utils.system import run_command


class MassStorageGadgetStage(MountStage):
    """Expose an image file with ``modprobe g_mass_storage``."""

    name = "gadget"

    MODULE = "g_mass_storage"
    SYSFS_MODULE = Path("/sys/module/g_mass_storage")

    def __init__(
        self,
        image_path: Path,
        removable: bool = True,
        read_only: bool = False,
        command_timeout: float = 10.0,
    ):
        super().__init__()
        self.image_path = Path(image_path)
        self.removable = removable
        self.read_only = read_only
        self.command_timeout = command_timeout

    def _bound_file(self) -> str:
        try:
            return (self.SYSFS_MODULE / "parameters" / "file").read_text().strip()
        except OSError:
            return ""

    def is_active(self) -> bool:
        if not self.SYSFS_MODULE.exists():
            return False
        bound = self._bound_file()
        # Older kernels do not expose the parameter; trust the module then
        return not bound or bound == str(self.image_path)

    def activate(self) -> StageResult:
        if not self.image_path.exists():
            return StageResult(
                success=False,
                message=f"Image not found: {self.image_path}",
            )

        cmd = [
            "modprobe", self.MODULE,
            f"file={self.image_path}",
            "stall=0",
            f"removable={1 if self.removable else 0}",
            f"ro={1 if self.read_only else 0}",
        ]
        code, _, stderr = run_command(cmd, timeout=self.command_timeout)
        if code != 0:
            return StageResult(
                success=False,
                message=f"modprobe {self.MODULE} failed: {stderr.strip() or code}",
            )
        self.logger.info(f"Loaded {self.MODULE} for {self.image_path}")
        return StageResult(success=True, message=f"Exposed {self.image_path}")

    def deactivate(self) -> StageResult:
        code, _, stderr = run_command(
            ["modprobe", "-r", self.MODULE], timeout=self.command_timeout
        )
        if code != 0:
            return StageResult(
                success=False,
                message=f"modprobe -r {self.MODULE} failed: {stderr.strip() or code}",
            )
        self.logger.info(f"Unloaded {self.MODULE}")
        return StageResult(success=True, message="Gadget detached")

    def describe(self) -> str:
        return f"gadget ({self.MODULE} file={self.image_path})"

    def diagnose(self) -> str:
        if not self.SYSFS_MODULE.exists():
            return f"{self.MODULE} not loaded"
        return f"{self.MODULE} bound to {self._bound_file() or 'unknown file'}"
