"""Mount stage backends.

This module provides the stages that make up the mount chain. Each stage
implements the MountStage interface.

Available stages:
    - SystemdUnitStage: a mount or service unit managed by systemd
    - MassStorageGadgetStage: gadget exposure via the g_mass_storage module

Usage:
    from gadget_mirror.stages import build_chain

    chain = build_chain(config)
    for stage in chain:
        print(stage.describe(), stage.is_active())
"""

from dataclasses import dataclass
from typing import Iterator, List

from .base import MountStage, StageResult
from .gadget import MassStorageGadgetStage
from .systemd import SystemdUnitStage
from ..config import GadgetBackend, MirrorConfig


@dataclass
class MountChain:
    """The three stages in bring-up order."""
    backing: MountStage
    gadget: MountStage
    destination: MountStage

    def __iter__(self) -> Iterator[MountStage]:
        return iter((self.backing, self.gadget, self.destination))

    def ordered(self) -> List[MountStage]:
        """Stages in bring-up order."""
        return list(self)


def build_gadget_stage(config: MirrorConfig) -> MountStage:
    """Get the gadget stage for the configured backend.

    Raises:
        NotImplementedError: If the backend is not supported
    """
    if config.gadget_backend == GadgetBackend.SYSTEMD:
        return SystemdUnitStage("gadget", config.gadget_unit)
    elif config.gadget_backend == GadgetBackend.MODPROBE:
        return MassStorageGadgetStage(config.volume.image_path)
    else:
        raise NotImplementedError(
            f"Gadget backend '{config.gadget_backend}' is not supported. "
            f"Supported backends: systemd, modprobe"
        )


def build_chain(config: MirrorConfig) -> MountChain:
    """Build the mount chain described by the configuration."""
    return MountChain(
        backing=SystemdUnitStage(
            "backing",
            config.volume.backing_unit,
            mount_point=config.volume.backing_mount,
        ),
        gadget=build_gadget_stage(config),
        destination=SystemdUnitStage(
            "destination",
            config.destination.unit,
            mount_point=config.destination.mount_point,
        ),
    )


__all__ = [
    "MountStage",
    "StageResult",
    "SystemdUnitStage",
    "MassStorageGadgetStage",
    "MountChain",
    "build_chain",
    "build_gadget_stage",
]
