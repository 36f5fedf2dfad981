"""Pass lock: at most one reconciliation pass or gadget reconfiguration.

The lock has two layers. A per-path ``threading.Lock`` shared by every
``PassLock`` in the process, and a ``fasteners.InterProcessLock`` on the
lock file for other processes (timer-started passes, ``rebind`` from an
operator shell). POSIX record locks are per process, so the thread layer
is what keeps two threads of one process apart.

Scheduled passes never wait: a busy lock means the previous pass is
still running and this invocation is skipped.
"""

import logging
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

import fasteners

from gadget_mirror.errors import LockContention

logger = logging.getLogger(__name__)

T = TypeVar("T")

_thread_locks: Dict[str, threading.Lock] = {}
_registry_lock = threading.Lock()


def _thread_lock_for(path: Path) -> threading.Lock:
    key = str(path.resolve())
    with _registry_lock:
        if key not in _thread_locks:
            _thread_locks[key] = threading.Lock()
        return _thread_locks[key]


class PassLock:
    """Process- and filesystem-wide mutual exclusion for passes.

    Example:
        lock = PassLock(Path("/run/gadget-mirror/pass.lock"))
        try:
            with lock.hold():
                engine.run_pass(...)
        except LockContention:
            ...  # previous pass still running
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._thread_lock = _thread_lock_for(self.path)
        self._process_lock = fasteners.InterProcessLock(str(self.path))
        self._held = False

    @property
    def held(self) -> bool:
        """Whether this instance currently holds the lock."""
        return self._held

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """Try to take the lock.

        Args:
            timeout: None for a single non-blocking attempt, otherwise the
                longest time to wait in seconds

        Returns:
            True if the lock is now held by this instance
        """
        if timeout is None:
            got_thread = self._thread_lock.acquire(blocking=False)
        else:
            deadline = time.monotonic() + timeout
            got_thread = self._thread_lock.acquire(timeout=timeout)
        if not got_thread:
            return False

        try:
            if timeout is None:
                got_process = self._process_lock.acquire(blocking=False)
            else:
                remaining = max(0.0, deadline - time.monotonic())
                got_process = self._process_lock.acquire(blocking=True, timeout=remaining)
        except BaseException:
            self._thread_lock.release()
            raise

        if not got_process:
            self._thread_lock.release()
            return False

        self._held = True
        logger.debug(f"Acquired pass lock {self.path}")
        return True

    def release(self) -> None:
        """Release the lock if held by this instance."""
        if not self._held:
            return
        self._held = False
        try:
            self._process_lock.release()
        finally:
            self._thread_lock.release()
        logger.debug(f"Released pass lock {self.path}")

    @contextmanager
    def hold(self, timeout: Optional[float] = None) -> Iterator["PassLock"]:
        """Hold the lock for a block; released on every exit path.

        Raises:
            LockContention: If the lock could not be taken
        """
        if not self.acquire(timeout):
            raise LockContention(str(self.path))
        try:
            yield self
        finally:
            self.release()


def with_pass_lock(
    lock: PassLock,
    fn: Callable[..., T],
    *args: Any,
    timeout: Optional[float] = None,
    **kwargs: Any,
) -> T:
    """Run ``fn`` while holding the pass lock.

    Raises:
        LockContention: If another pass or reconfiguration holds the lock
    """
    with lock.hold(timeout):
        return fn(*args, **kwargs)
