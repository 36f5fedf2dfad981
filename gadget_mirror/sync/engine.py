"""Sync engine for Gadget Mirror.

Philosophy: THE HOST OWNS THE VOLUME, THE SHARE ONLY GROWS.

One pass is a one-way, additive reconciliation from the volume (the image
filesystem the external host writes through the gadget) to the
destination share:

- enumerate regular files under the volume, sequentially, for a
  consistent snapshot
- leave alone anything modified within the stability window; the host
  sends no "file closed" signal, so quiescence is the only evidence a
  write has finished
- copy when the destination copy is absent, differs in size, or is older
- write to a hidden temporary name and rename into place
- never delete at the destination

Copies run on a bounded worker pool; one failed copy is recorded and the
pass moves on. Any file not confirmed copied stays eligible for the next
pass because the metadata comparison still shows it pending.
"""

import errno
import fnmatch
import logging
import os
import shutil
import stat
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence, Tuple

from gadget_mirror.config import DEFAULT_EXCLUDE, MirrorConfig, Transport
from gadget_mirror.errors import CopyFailure
from gadget_mirror.state import ChainState
from gadget_mirror.sync.record import PassOutcome, PassRecord, SkipReason
from gadget_mirror.utils.hashing import files_match

logger = logging.getLogger(__name__)

PARTIAL_SUFFIX = ".gm-partial"
COPY_BUFFER_SIZE = 1024 * 1024

# Characters SMB refuses in a path component
_CIFS_FORBIDDEN = frozenset('\\:*?"<>|')


@dataclass(frozen=True)
class SyncEntry:
    """A regular file found under the volume during a pass.

    Attributes:
        rel_path: Path relative to the volume root, "/" separated
        size: Size in bytes
        mtime: Last modification time (epoch seconds)
        stable: True if untouched for at least the stability window
    """
    rel_path: str
    size: int
    mtime: float
    stable: bool


class SourceChanged(Exception):
    """The source file changed while it was being copied."""


def is_excluded(rel_path: str, patterns: Sequence[str]) -> bool:
    """Match a relative path, or its last component, against glob patterns."""
    name = rel_path.rsplit("/", 1)[-1]
    return any(
        fnmatch.fnmatch(rel_path, pattern) or fnmatch.fnmatch(name, pattern)
        for pattern in patterns
    )


def scan_volume(
    volume_root: Path,
    now: float,
    min_stable_age: float,
    exclude: Sequence[str] = (),
) -> Iterator[SyncEntry]:
    """Lazily enumerate regular files under the volume.

    Symlinks and special files are ignored, excluded directories are not
    descended into, and files that vanish mid-scan are dropped.

    Args:
        volume_root: Root of the volume filesystem
        now: Reference time for the stability check
        min_stable_age: Seconds a file must be untouched to be stable
        exclude: Glob patterns of paths never mirrored

    Yields:
        SyncEntry for every regular file, in sorted order
    """
    volume_root = Path(volume_root)

    def on_error(error: OSError) -> None:
        logger.warning(f"Cannot read {error.filename}: {error.strerror}")

    for dirpath, dirnames, filenames in os.walk(volume_root, onerror=on_error):
        rel_dir = os.path.relpath(dirpath, volume_root)
        rel_dir = "" if rel_dir == "." else rel_dir.replace(os.sep, "/") + "/"

        dirnames[:] = sorted(
            d for d in dirnames if not is_excluded(rel_dir + d, exclude)
        )

        for name in sorted(filenames):
            rel_path = rel_dir + name
            if is_excluded(rel_path, exclude):
                continue
            try:
                st = os.lstat(os.path.join(dirpath, name))
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Cannot stat {rel_path}: {e}")
                continue
            if not stat.S_ISREG(st.st_mode):
                continue

            yield SyncEntry(
                rel_path=rel_path,
                size=st.st_size,
                mtime=st.st_mtime,
                stable=(now - st.st_mtime) >= min_stable_age,
            )


def unsupported_path_reason(rel_path: str, transport: Transport) -> Optional[str]:
    """Explain why the destination protocol cannot hold this path.

    Returns:
        A reason string, or None if the path is acceptable
    """
    try:
        rel_path.encode("utf-8")
    except UnicodeEncodeError:
        return "name is not valid UTF-8"

    for component in rel_path.split("/"):
        if "\x00" in component:
            return "NUL character in name"
        if transport != Transport.CIFS:
            continue
        bad = sorted({c for c in component if c in _CIFS_FORBIDDEN or ord(c) < 32})
        if bad:
            return f"characters not allowed on cifs: {' '.join(repr(c) for c in bad)}"
        if component.endswith((".", " ")):
            return f"component ends with dot or space: {component!r}"
    return None


def needs_copy(entry: SyncEntry, destination: Path, mtime_tolerance: float = 1.0) -> Optional[str]:
    """Metadata comparison against the destination copy.

    Returns:
        "absent", "size" or "newer" if the entry must be copied, else None

    Raises:
        OSError: If the destination cannot be inspected
    """
    try:
        st = os.stat(destination)
    except FileNotFoundError:
        return "absent"
    if st.st_size != entry.size:
        return "size"
    if entry.mtime - st.st_mtime > mtime_tolerance:
        return "newer"
    return None


def _partial_path(destination: Path) -> Path:
    return destination.parent / f".{destination.name}.{uuid.uuid4().hex[:8]}{PARTIAL_SUFFIX}"


def atomic_copy(
    source: Path,
    destination: Path,
    entry: SyncEntry,
    verify: bool = False,
) -> int:
    """Copy a file so the destination name only ever shows the full content.

    The data goes to a hidden temporary name in the destination directory,
    is flushed to stable storage, and is renamed over the final name.

    Returns:
        Bytes copied

    Raises:
        SourceChanged: If the source moved on while being copied
        CopyFailure: If verification finds the copy differs
        OSError: On any I/O failure; the temporary file is removed
    """
    destination.parent.mkdir(parents=True, exist_ok=True)
    partial = _partial_path(destination)

    try:
        with open(source, "rb") as src, open(partial, "xb") as dst:
            shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
            dst.flush()
            os.fsync(dst.fileno())

        after = os.stat(source)
        if after.st_size != entry.size or after.st_mtime != entry.mtime:
            raise SourceChanged(entry.rel_path)

        try:
            os.utime(partial, (after.st_atime, after.st_mtime))
        except OSError as e:
            # Comparison still holds: the copy is newer than its source
            logger.debug(f"Could not set mtime on {partial}: {e}")

        if verify and not files_match(source, partial):
            raise CopyFailure(entry.rel_path, "verification mismatch")

        os.replace(partial, destination)
    except BaseException:
        try:
            partial.unlink()
        except OSError:
            pass
        raise

    return entry.size


class SyncEngine:
    """Engine for one-way, additive reconciliation passes.

    THE HOST OWNS THE VOLUME, THE SHARE ONLY GROWS.

    Attributes:
        min_stable_age: Default stability window in seconds
        mtime_tolerance: Allowed mtime skew between source and destination
        copy_workers: Size of the copy worker pool
        verify_copies: Hash-compare copies before the final rename
        exclude: Glob patterns never mirrored
        transport: Destination protocol, for path name rules
    """

    def __init__(
        self,
        min_stable_age: float = 10.0,
        mtime_tolerance: float = 1.0,
        copy_workers: int = 4,
        verify_copies: bool = False,
        exclude: Optional[Iterable[str]] = None,
        transport: Transport = Transport.CIFS,
        clock: Callable[[], float] = time.time,
    ):
        self.min_stable_age = min_stable_age
        self.mtime_tolerance = mtime_tolerance
        self.copy_workers = max(1, copy_workers)
        self.verify_copies = verify_copies
        self.exclude = list(DEFAULT_EXCLUDE if exclude is None else exclude)
        self.transport = transport
        self._clock = clock

    @classmethod
    def from_config(cls, config: MirrorConfig) -> "SyncEngine":
        """Create an engine with the configured rules."""
        return cls(
            min_stable_age=config.min_stable_age,
            mtime_tolerance=config.mtime_tolerance,
            copy_workers=config.copy_workers,
            verify_copies=config.verify_copies,
            exclude=config.exclude,
            transport=config.destination.transport,
        )

    def run_pass(
        self,
        volume_root: Path,
        destination_root: Path,
        min_stable_age: Optional[float] = None,
        state: Optional[ChainState] = None,
    ) -> PassRecord:
        """Perform one reconciliation pass.

        Args:
            volume_root: Readable root of the volume filesystem
            destination_root: Root of the mounted destination share
            min_stable_age: Stability window; engine default if None
            state: Mount chain snapshot; the pass defers unless it is ready

        Returns:
            PassRecord for this pass
        """
        record = PassRecord()
        volume_root = Path(volume_root)
        destination_root = Path(destination_root)
        if min_stable_age is None:
            min_stable_age = self.min_stable_age

        deferred_reason = self._deferred_reason(volume_root, destination_root, state)
        if deferred_reason:
            return self._defer(record, volume_root, min_stable_age, deferred_reason)

        pending = self._compare(record, volume_root, destination_root, min_stable_age)
        if pending:
            self._copy_all(record, volume_root, destination_root, pending)

        record.finalize()
        logger.debug(record.summary())
        return record

    def _deferred_reason(
        self,
        volume_root: Path,
        destination_root: Path,
        state: Optional[ChainState],
    ) -> Optional[str]:
        if state is not None and not state.is_ready:
            return state.not_ready_reason()
        if not volume_root.is_dir():
            return f"volume root unreadable: {volume_root}"
        if not destination_root.is_dir():
            return f"destination unreachable: {destination_root}"
        return None

    def _defer(
        self,
        record: PassRecord,
        volume_root: Path,
        min_stable_age: float,
        reason: str,
    ) -> PassRecord:
        """Finish a pass without touching the destination."""
        if volume_root.is_dir():
            for entry in scan_volume(volume_root, self._clock(), min_stable_age, self.exclude):
                record.skip(entry.rel_path, SkipReason.DEFERRED, reason)
        record.note = reason
        logger.warning(f"Pass deferred: {reason}")
        return record.finalize(PassOutcome.DEFERRED)

    def _compare(
        self,
        record: PassRecord,
        volume_root: Path,
        destination_root: Path,
        min_stable_age: float,
    ) -> List[Tuple[SyncEntry, str]]:
        """Sequential enumeration and comparison phase."""
        now = self._clock()
        pending: List[Tuple[SyncEntry, str]] = []

        for entry in scan_volume(volume_root, now, min_stable_age, self.exclude):
            reason = unsupported_path_reason(entry.rel_path, self.transport)
            if reason:
                record.skip(entry.rel_path, SkipReason.UNSUPPORTED_PATH, reason)
                logger.warning(f"Skipping {entry.rel_path!r}: {reason}")
                continue

            if not entry.stable:
                age = max(0.0, now - entry.mtime)
                record.skip(
                    entry.rel_path,
                    SkipReason.UNSTABLE,
                    f"modified {age:.1f}s ago, window {min_stable_age:g}s",
                )
                continue

            try:
                why = needs_copy(entry, destination_root / entry.rel_path, self.mtime_tolerance)
            except OSError as e:
                record.fail(entry.rel_path, f"cannot inspect destination: {e.strerror or e}", e.errno)
                continue

            if why is None:
                record.files_unchanged += 1
            else:
                pending.append((entry, why))

        return pending

    def _copy_one(
        self,
        volume_root: Path,
        destination_root: Path,
        entry: SyncEntry,
        why: str,
    ) -> Tuple[str, str, Optional[int]]:
        """Copy one entry. Runs on a worker thread; never touches the record."""
        try:
            atomic_copy(
                volume_root / entry.rel_path,
                destination_root / entry.rel_path,
                entry,
                verify=self.verify_copies,
            )
        except SourceChanged:
            return "unstable", "changed during copy", None
        except CopyFailure as e:
            return "failed", e.reason, e.errno
        except OSError as e:
            return "failed", e.strerror or str(e), e.errno
        logger.debug(f"Copied {entry.rel_path} ({why}, {entry.size:,} bytes)")
        return "copied", why, None

    def _copy_all(
        self,
        record: PassRecord,
        volume_root: Path,
        destination_root: Path,
        pending: List[Tuple[SyncEntry, str]],
    ) -> None:
        """Parallel copy phase; results are folded into the record in order."""
        with ThreadPoolExecutor(
            max_workers=self.copy_workers, thread_name_prefix="gm-copy"
        ) as pool:
            futures = [
                (entry, pool.submit(self._copy_one, volume_root, destination_root, entry, why))
                for entry, why in pending
            ]
            for entry, future in futures:
                status, detail, err = future.result()
                if status == "copied":
                    record.add_copy(entry.rel_path, entry.size)
                elif status == "unstable":
                    record.skip(entry.rel_path, SkipReason.UNSTABLE, detail)
                else:
                    record.fail(entry.rel_path, detail, err)
                    if err == errno.ENOSPC:
                        logger.warning(f"Destination full while copying {entry.rel_path}")
                    else:
                        logger.warning(f"Failed to copy {entry.rel_path}: {detail}")
