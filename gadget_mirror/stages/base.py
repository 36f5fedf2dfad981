"""Abstract base class for mount stages.

The mount chain is made of three stages brought up in order: the backing
storage holding the image, gadget exposure of the image to the external
host, and the destination share. Each backend implements this interface;
the lifecycle controller owns ordering and bounded waits.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging


@dataclass
class StageResult:
    """Result of asking a stage to change state.

    Attributes:
        success: Whether the command was accepted
        message: Human-readable status message
    """
    success: bool
    message: str


class MountStage(ABC):
    """One link of the mount chain.

    ``activate`` and ``deactivate`` only start the transition; the
    controller polls ``is_active`` until the stage settles or the bounded
    wait runs out.

    Example:
        class BindMountStage(MountStage):
            name = "destination"
            def is_active(self) -> bool:
                return is_mountpoint(self.path)
            # ... implement other methods
    """

    name: str = "stage"

    def __init__(self):
        """Initialize the stage with a logger."""
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @abstractmethod
    def is_active(self) -> bool:
        """Check if the stage is up (mounted, exposed, running).

        Returns:
            bool: True if the stage is active
        """
        pass

    @abstractmethod
    def activate(self) -> StageResult:
        """Start bringing the stage up.

        Returns:
            StageResult: Whether the request was accepted
        """
        pass

    @abstractmethod
    def deactivate(self) -> StageResult:
        """Start taking the stage down.

        Returns:
            StageResult: Whether the request was accepted
        """
        pass

    def describe(self) -> str:
        """Short description for status output."""
        return self.name

    def diagnose(self) -> str:
        """Extra detail for error messages when the stage fails to settle."""
        return ""
