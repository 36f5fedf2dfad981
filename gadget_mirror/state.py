"""Mount state of the volume and the destination.

``ChainState`` is a snapshot taken by the lifecycle controller and passed
into every sync pass; the engine never consults ambient process state.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from gadget_mirror.config import DestinationConfig, Transport, VolumeConfig


class MountState(Enum):
    """Mount state of a volume or share."""
    UNMOUNTED = "unmounted"
    MOUNTED_LOCAL = "mounted-local"
    EXPOSED_TO_HOST = "exposed-to-host"
    MOUNTED = "mounted"


@dataclass
class Volume:
    """The exposed filesystem image.

    Mount state transitions are owned by the lifecycle controller.
    """
    path: Path
    declared_size: int
    filesystem: str
    mount_state: MountState = MountState.UNMOUNTED

    @classmethod
    def from_config(cls, config: VolumeConfig) -> "Volume":
        return cls(
            path=config.image_path,
            declared_size=config.disk_size,
            filesystem=config.filesystem,
        )

    def actual_size(self) -> Optional[int]:
        """Size of the image file on its backing storage, if readable."""
        try:
            return self.path.stat().st_size
        except OSError:
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "declared_size": self.declared_size,
            "filesystem": self.filesystem,
            "mount_state": self.mount_state.value,
        }


@dataclass
class DestinationMount:
    """The remote share mount point. Read-only to the sync engine."""
    path: Path
    transport: Transport
    credential_ref: Optional[str] = None
    mount_state: MountState = MountState.UNMOUNTED

    @classmethod
    def from_config(cls, config: DestinationConfig) -> "DestinationMount":
        return cls(
            path=config.mount_point,
            transport=config.transport,
            credential_ref=str(config.credentials_file) if config.credentials_file else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "transport": self.transport.value,
            "credential_ref": self.credential_ref,
            "mount_state": self.mount_state.value,
        }


@dataclass
class ChainState:
    """Snapshot of the mount chain handed to a sync pass."""
    volume: Volume
    destination: DestinationMount
    checked_at: float = field(default_factory=time.time)

    @property
    def is_ready(self) -> bool:
        """True only when the volume is exposed and the share is mounted."""
        return (
            self.volume.mount_state == MountState.EXPOSED_TO_HOST
            and self.destination.mount_state == MountState.MOUNTED
        )

    def not_ready_reason(self) -> Optional[str]:
        """Which part of the chain is down, or None when ready."""
        if self.volume.mount_state == MountState.UNMOUNTED:
            return "volume backing storage not mounted"
        if self.volume.mount_state != MountState.EXPOSED_TO_HOST:
            return "volume not exposed to host"
        if self.destination.mount_state != MountState.MOUNTED:
            return "destination share not mounted"
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ready": self.is_ready,
            "volume": self.volume.to_dict(),
            "destination": self.destination.to_dict(),
            "checked_at": self.checked_at,
        }
