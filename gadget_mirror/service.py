"""MirrorService - unified interface for one mirrored gadget volume.

Wires the lifecycle controller, the pass lock, the sync engine and the
failure reporter together. A scheduled invocation is:

    acquire lock -> snapshot chain -> (retry bring-up) -> pass -> release -> report

Example:
    from gadget_mirror import MirrorService, load_config

    service = MirrorService(load_config("/etc/gadget-mirror/config"))
    service.bring_up()
    record, report = service.run_pass()
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, ContextManager, Dict, List, Optional, Tuple

from .config import MirrorConfig, Transport
from .errors import LockContention, MountTimeout, MountUnavailable
from .image_view import mounted_image
from .lifecycle import MountLifecycleController
from .reporting import FailureReporter, Report
from .state import ChainState, MountState
from .sync.engine import SyncEngine
from .sync.lock import PassLock
from .sync.record import PassOutcome, PassRecord
from .utils.credentials import CredentialRef
from .utils.system import get_disk_usage, is_root, missing_commands

logger = logging.getLogger(__name__)

ImageView = Callable[..., ContextManager[Path]]


class MirrorService:
    """Runs the mount chain and scheduled passes for one volume.

    Attributes:
        config: Validated configuration
        controller: Mount lifecycle controller
        engine: Sync engine
        lock: Pass lock shared with gadget reconfiguration
        reporter: Failure reporter
    """

    def __init__(
        self,
        config: MirrorConfig,
        controller: Optional[MountLifecycleController] = None,
        engine: Optional[SyncEngine] = None,
        lock: Optional[PassLock] = None,
        reporter: Optional[FailureReporter] = None,
        image_view: Optional[ImageView] = None,
    ):
        self.config = config
        self.controller = controller or MountLifecycleController.from_config(config)
        self.engine = engine or SyncEngine.from_config(config)
        self.lock = lock or PassLock(config.lock_file)
        self.reporter = reporter or FailureReporter(config.state_dir, config.alarm_threshold)
        self._image_view = image_view or mounted_image

    # ------------------------------------------------------------------
    # Chain operations; all of them exclude passes
    # ------------------------------------------------------------------

    def _reconfigure_timeout(self, timeout: Optional[float]) -> float:
        # A running pass is allowed to finish before reconfiguring
        return timeout if timeout is not None else self.config.sync_interval

    def bring_up(self, lock_timeout: Optional[float] = None) -> ChainState:
        """Bring the mount chain up while holding the pass lock.

        Raises:
            LockContention: If a pass did not finish within lock_timeout
            MountTimeout, MountUnavailable: Naming the failed stage
        """
        with self.lock.hold(self._reconfigure_timeout(lock_timeout)):
            return self.controller.bring_up()

    def tear_down(self, lock_timeout: Optional[float] = None) -> bool:
        """Tear the mount chain down while holding the pass lock."""
        with self.lock.hold(self._reconfigure_timeout(lock_timeout)):
            return self.controller.tear_down()

    def rebind_gadget(self, lock_timeout: Optional[float] = None) -> ChainState:
        """Restart gadget exposure; never concurrent with a pass."""
        with self.lock.hold(self._reconfigure_timeout(lock_timeout)):
            logger.info("Rebinding gadget exposure")
            return self.controller.restart_gadget()

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def run_pass(self) -> Tuple[PassRecord, Report]:
        """One scheduled invocation: exactly one PassRecord, always reported.

        Never waits for the lock: if a previous pass is still running this
        invocation is recorded as skipped.
        """
        try:
            with self.lock.hold():
                record = self._locked_pass()
        except LockContention as e:
            logger.info(f"Skipping pass: {e}")
            record = PassRecord.skipped_pass(str(e))

        report = self.reporter.report(record)
        return record, report

    def _current_state(self) -> ChainState:
        state = self.controller.snapshot()
        if state.is_ready or not self.config.retry_bring_up:
            return state

        logger.info(f"Mount chain not ready ({state.not_ready_reason()}), retrying bring-up")
        try:
            return self.controller.bring_up()
        except (MountTimeout, MountUnavailable) as e:
            logger.warning(f"Bring-up retry failed: {e}")
            return self.controller.snapshot()

    def _locked_pass(self) -> PassRecord:
        """Body of a pass; the caller holds the lock."""
        state = self._current_state()
        volume = self.config.volume
        destination_root = self.config.destination.mount_point

        # Readable while the backing storage is mounted, even when deferring
        if not volume.image_view or state.volume.mount_state == MountState.UNMOUNTED:
            return self._guarded_pass(volume.volume_root, destination_root, state)

        try:
            with self._image_view(
                volume.image_path,
                volume.volume_root,
                volume.filesystem,
                self.config.mount_timeout,
            ) as root:
                return self._guarded_pass(root, destination_root, state)
        except (MountUnavailable, OSError) as e:
            logger.warning(f"Pass deferred: {e}")
            return PassRecord(note=state.not_ready_reason() or str(e)).finalize(PassOutcome.DEFERRED)

    def _guarded_pass(self, volume_root: Path, destination_root: Path, state: ChainState) -> PassRecord:
        try:
            return self.engine.run_pass(
                volume_root,
                destination_root,
                self.config.min_stable_age,
                state=state,
            )
        except OSError as e:
            logger.exception(f"Pass aborted: {e}")
            return PassRecord(note=f"pass aborted: {e}").finalize(PassOutcome.FAILED)

    def daemon(
        self,
        interval: Optional[float] = None,
        stop: Optional[threading.Event] = None,
        max_passes: Optional[int] = None,
    ) -> int:
        """Bring the chain up, then run passes on a fixed interval.

        Args:
            interval: Seconds between pass starts; config default if None
            stop: Event that ends the loop when set
            max_passes: Stop after this many passes (None runs forever)

        Returns:
            Number of passes run
        """
        interval = interval if interval is not None else self.config.sync_interval
        stop = stop or threading.Event()

        try:
            self.bring_up()
        except (MountTimeout, MountUnavailable, LockContention) as e:
            logger.warning(f"Initial bring-up failed, passes will retry: {e}")

        passes = 0
        next_start = time.monotonic()
        while not stop.is_set():
            self.run_pass()
            passes += 1
            if max_passes is not None and passes >= max_passes:
                break
            next_start += interval
            now = time.monotonic()
            if next_start < now:
                # Overran; start the next pass now instead of queueing ticks
                next_start = now
            stop.wait(next_start - now)
        return passes

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def reset_alarm(self) -> bool:
        """Clear the persisted failure streak and alarm."""
        return self.reporter.reset()

    def preflight(self) -> List[str]:
        """Environment checks beyond configuration parsing.

        Loose permissions on the credentials file are logged as a warning
        but do not count as a problem.

        Returns:
            Problems found; an empty list means ready to run
        """
        problems = []
        missing = missing_commands()
        if missing:
            problems.append(f"Missing required commands: {' '.join(missing)}")
        if not is_root():
            problems.append("Not running as root; mount and gadget operations will fail")
        if self.config.destination.transport == Transport.CIFS:
            credentials = CredentialRef(self.config.destination.credentials_file)
            problems.extend(credentials.check())
            warning = credentials.permission_warning()
            if warning:
                logger.warning(warning)
        return problems

    def status(self) -> Dict[str, Any]:
        """Status of the chain, the reporter and the destination."""
        destination_usage = None
        if self.controller.chain.destination.is_active():
            usage = get_disk_usage(self.config.destination.mount_point)
            destination_usage = usage.to_dict() if usage else None

        return {
            "chain": self.controller.status(),
            "reporter": self.reporter.status(),
            "destination_usage": destination_usage,
            "pass_running": self._pass_running(),
            "settings": {
                "sync_interval": self.config.sync_interval,
                "min_stable_age": self.config.min_stable_age,
                "alarm_threshold": self.config.alarm_threshold,
                "mirror_mode": "one-way additive (destination only grows)",
            },
        }

    def _pass_running(self) -> bool:
        if self.lock.acquire():
            self.lock.release()
            return False
        return True
