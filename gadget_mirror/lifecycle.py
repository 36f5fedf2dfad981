"""Mount lifecycle controller.

Brings the mount chain up in strict order and tears it down in reverse:

    1. backing storage holding the image file
    2. gadget exposure of the image to the external host
    3. destination share

Gadget exposure must never start before the backing storage is mounted,
otherwise the host sees an empty or corrupt disk. Every step is
idempotent and waits a bounded time for its stage to settle; a step
that does not settle fails the bring-up without touching later stages.
"""

import dataclasses
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from .config import MirrorConfig
from .errors import MountTimeout, MountUnavailable
from .stages import MountChain, MountStage, build_chain
from .state import ChainState, DestinationMount, MountState, Volume

logger = logging.getLogger(__name__)


class MountLifecycleController:
    """Owns the mount state of the volume and the destination.

    Attributes:
        chain: The three stages in bring-up order
        volume: The exposed image
        destination: The destination share
        timeout: Bounded wait per stage, in seconds

    Example:
        controller = MountLifecycleController.from_config(config)
        controller.bring_up()
        if controller.is_ready():
            ...
        controller.tear_down()
    """

    def __init__(
        self,
        chain: MountChain,
        volume: Volume,
        destination: DestinationMount,
        timeout: float = 30.0,
        poll_interval: float = 0.5,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.chain = chain
        self.volume = volume
        self.destination = destination
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "MountLifecycleController":
        """Create a controller for the configured chain."""
        return cls(
            chain=build_chain(config),
            volume=Volume.from_config(config.volume),
            destination=DestinationMount.from_config(config.destination),
            timeout=config.mount_timeout,
        )

    def _wait_for(self, stage: MountStage, active: bool) -> bool:
        """Poll a stage until it reaches the wanted state or time runs out."""
        deadline = self._clock() + self.timeout
        while True:
            if stage.is_active() == active:
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            logger.debug(
                f"Waiting for {stage.name} to become "
                f"{'active' if active else 'inactive'} ({remaining:.1f}s left)"
            )
            self._sleep(min(self.poll_interval, remaining))

    def _ensure(self, stage: MountStage, active: bool) -> None:
        """Bring one stage to the wanted state.

        Raises:
            MountUnavailable: If the stage rejects the request
            MountTimeout: If the stage does not settle within the timeout
        """
        if stage.is_active() == active:
            logger.debug(f"Stage {stage.name} already {'active' if active else 'inactive'}")
            return

        logger.info(f"{'Starting' if active else 'Stopping'} {stage.describe()}")
        result = stage.activate() if active else stage.deactivate()
        if not result.success:
            raise MountUnavailable(f"{stage.name} stage ({result.message})")

        if not self._wait_for(stage, active):
            raise MountTimeout(stage.name, self.timeout, stage.diagnose())

        logger.info(f"Stage {stage.name} {'active' if active else 'stopped'}")

    def bring_up(self) -> ChainState:
        """Establish backing mount, gadget exposure and destination, in order.

        Returns:
            ChainState after bring-up

        Raises:
            MountTimeout: Naming the first stage that did not settle
            MountUnavailable: Naming the first stage that refused to start
        """
        for stage in self.chain:
            self._ensure(stage, active=True)
        state = self.snapshot()
        logger.info("Mount chain is up")
        return state

    def tear_down(self) -> bool:
        """Reverse bring-up: destination, gadget, backing.

        Every stage is attempted even if an earlier one fails, so a stuck
        share never keeps the gadget bound.

        Returns:
            True if every stage stopped
        """
        failures: List[str] = []
        for stage in reversed(self.chain.ordered()):
            try:
                self._ensure(stage, active=False)
            except (MountTimeout, MountUnavailable) as e:
                logger.error(f"Tear-down of {stage.name} failed: {e}")
                failures.append(stage.name)
        self.snapshot()
        if failures:
            logger.warning(f"Mount chain partially torn down, failed: {', '.join(failures)}")
            return False
        logger.info("Mount chain is down")
        return True

    def restart_gadget(self) -> ChainState:
        """Stop and restart gadget exposure.

        The backing stage must already be up. Callers hold the pass lock.

        Raises:
            MountUnavailable: If the backing storage is not mounted
            MountTimeout: If the gadget does not settle
        """
        if not self.chain.backing.is_active():
            raise MountUnavailable("backing storage", str(self.volume.path.parent))
        self._ensure(self.chain.gadget, active=False)
        self._ensure(self.chain.gadget, active=True)
        return self.snapshot()

    def snapshot(self) -> ChainState:
        """Query every stage and return an independent state struct."""
        backing_up = self.chain.backing.is_active()
        gadget_up = backing_up and self.chain.gadget.is_active()
        destination_up = self.chain.destination.is_active()

        if gadget_up:
            self.volume.mount_state = MountState.EXPOSED_TO_HOST
        elif backing_up:
            self.volume.mount_state = MountState.MOUNTED_LOCAL
        else:
            self.volume.mount_state = MountState.UNMOUNTED

        self.destination.mount_state = (
            MountState.MOUNTED if destination_up else MountState.UNMOUNTED
        )

        return ChainState(
            volume=dataclasses.replace(self.volume),
            destination=dataclasses.replace(self.destination),
        )

    def is_ready(self) -> bool:
        """True only when all three stages are active."""
        return self.snapshot().is_ready

    def status(self) -> Dict[str, Any]:
        """Stage-by-stage status for reporting."""
        state = self.snapshot()
        actual_size: Optional[int] = None
        if state.volume.mount_state != MountState.UNMOUNTED:
            actual_size = self.volume.actual_size()
        return {
            "ready": state.is_ready,
            "not_ready_reason": state.not_ready_reason(),
            "stages": {
                stage.name: {
                    "description": stage.describe(),
                    "active": stage.is_active(),
                }
                for stage in self.chain
            },
            "volume": dict(state.volume.to_dict(), actual_size=actual_size),
            "destination": state.destination.to_dict(),
        }
