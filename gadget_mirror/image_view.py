"""Read-only view of the image filesystem for a single pass.

The external host writes through the gadget below the page cache, so a
long-lived local mount of the same image would serve stale data. Each
pass mounts the image read-only through a loop device, reads it, and
unmounts it again.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from .errors import MountUnavailable
from .utils.system import is_mountpoint, run_command

logger = logging.getLogger(__name__)


def _unmount(mount_point: Path, timeout: float) -> None:
    code, _, stderr = run_command(["umount", str(mount_point)], timeout=timeout)
    if code != 0:
        logger.warning(f"umount {mount_point} failed, trying lazy unmount: {stderr.strip()}")
        code, _, stderr = run_command(["umount", "-l", str(mount_point)], timeout=timeout)
        if code != 0:
            logger.error(f"Lazy unmount of {mount_point} failed: {stderr.strip()}")


@contextmanager
def mounted_image(
    image_path: Path,
    mount_point: Path,
    filesystem: str = "exfat",
    timeout: float = 30.0,
) -> Iterator[Path]:
    """Mount an image read-only and yield the mount path.

    Args:
        image_path: Image file on the backing storage
        mount_point: Where to mount it
        filesystem: Filesystem type inside the image
        timeout: Bound on each mount/umount command

    Yields:
        The mount point

    Raises:
        MountUnavailable: If the image cannot be mounted

    Example:
        with mounted_image(Path("/mnt/gadget-backing/disk.img"), Path("/mnt/gadget-volume")) as root:
            engine.run_pass(root, destination)
    """
    image_path = Path(image_path)
    mount_point = Path(mount_point)

    if not image_path.is_file():
        raise MountUnavailable("volume image", str(image_path))

    try:
        mount_point.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise MountUnavailable(f"volume mount point ({e.strerror})", str(mount_point)) from e
    if is_mountpoint(mount_point):
        # Left behind by an interrupted pass
        logger.warning(f"Stale mount at {mount_point}, unmounting")
        _unmount(mount_point, timeout)

    code, _, stderr = run_command(
        [
            "mount", "-t", filesystem,
            "-o", "ro,loop,noatime",
            str(image_path), str(mount_point),
        ],
        timeout=timeout,
    )
    if code != 0:
        raise MountUnavailable(
            f"volume image ({stderr.strip() or 'mount failed'})", str(image_path)
        )

    logger.debug(f"Mounted {image_path} read-only at {mount_point}")
    try:
        yield mount_point
    finally:
        _unmount(mount_point, timeout)
        logger.debug(f"Unmounted {mount_point}")
