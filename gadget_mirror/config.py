"""Configuration dataclasses and loader for Gadget Mirror.

The provisioning step writes a shell-style ``KEY=VALUE`` file. This module
parses it into ``MirrorConfig`` and refuses to hand back a partially
configured object: every missing or malformed setting is collected into a
single ``ConfigInvalid``.
"""

import os
import re
import shlex
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Union

from gadget_mirror.errors import ConfigInvalid


DEFAULT_CONFIG_PATH = Path("/etc/gadget-mirror/config")
ENV_PREFIX = "GADGET_MIRROR_"

# Metadata the host operating system drops onto removable media
DEFAULT_EXCLUDE = [
    "System Volume Information",
    "$RECYCLE.BIN",
    ".Trashes",
    ".Spotlight-V100",
    ".fseventsd",
    "._*",
]

# Keys the provisioning file may carry that the core must never keep
SECRET_KEYS = frozenset({"SMB_USERNAME", "SMB_PASSWORD", "SMB_DOMAIN"})


class StorageType(Enum):
    """What backs the image file."""
    NFS = "nfs"
    LOCAL = "local"


class Transport(Enum):
    """Network file protocol of the destination share."""
    CIFS = "cifs"
    NFS = "nfs"


class GadgetBackend(Enum):
    """How the image is presented to the external host."""
    SYSTEMD = "systemd"     # a service unit owns the gadget
    MODPROBE = "modprobe"   # g_mass_storage module loaded directly


_SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMGTP]?)(i?B)?\s*$", re.IGNORECASE)
_SIZE_POWERS = {"": 0, "K": 1, "M": 2, "G": 3, "T": 4, "P": 5}


def parse_size(value: Union[str, int]) -> int:
    """Parse a size such as ``32G`` into bytes.

    Follows coreutils ``truncate -s``: ``K``/``KiB`` are powers of 1024,
    ``KB`` is a power of 1000.

    Raises:
        ValueError: If the value is not a recognizable size
    """
    if isinstance(value, int):
        return value
    match = _SIZE_RE.match(value)
    if not match:
        raise ValueError(f"Unrecognized size: {value!r}")
    number, unit, suffix = match.groups()
    base = 1000 if suffix and suffix.upper() == "B" and unit else 1024
    return int(number) * base ** _SIZE_POWERS[unit.upper()]


def systemd_escape_path(path: Union[str, Path]) -> str:
    """Escape a path the way ``systemd-escape --path`` does."""
    text = str(path).strip("/")
    if not text:
        return "-"
    text = re.sub("/+", "/", text)

    escaped = []
    for index, char in enumerate(text):
        if char == "/":
            escaped.append("-")
        elif char.isascii() and (char.isalnum() or char in ":_.") and not (
            index == 0 and char == "."
        ):
            escaped.append(char)
        else:
            escaped.extend(f"\\x{byte:02x}" for byte in char.encode("utf-8"))
    return "".join(escaped)


def mount_unit_name(mount_point: Union[str, Path]) -> str:
    """Name of the systemd mount unit for a mount point."""
    return systemd_escape_path(mount_point) + ".mount"


@dataclass
class VolumeConfig:
    """Configuration for the exposed image and its backing storage.

    Attributes:
        storage_type: What backs the image file (nfs export or local disk)
        backing_mount: Mount point holding the image file
        image_name: File name of the image inside backing_mount
        disk_size: Declared image size in bytes
        filesystem: Filesystem type inside the image
        volume_root: Directory where the image filesystem is readable
        image_view: Loop-mount the image read-only at volume_root per pass
        nfs_server: Export backing the image (storage_type=nfs)
        local_disk_label: Label of the backing disk (storage_type=local)
        backing_unit: systemd mount unit for backing_mount
    """
    storage_type: StorageType
    disk_size: int
    backing_mount: Path = Path("/mnt/gadget-backing")
    image_name: str = "disk.img"
    filesystem: str = "exfat"
    volume_root: Path = Path("/mnt/gadget-volume")
    image_view: bool = True
    nfs_server: Optional[str] = None
    local_disk_label: Optional[str] = None
    backing_unit: Optional[str] = None

    def __post_init__(self):
        """Ensure paths are Path objects and the unit name is set."""
        if isinstance(self.storage_type, str):
            self.storage_type = StorageType(self.storage_type.lower())
        if isinstance(self.backing_mount, str):
            self.backing_mount = Path(self.backing_mount)
        if isinstance(self.volume_root, str):
            self.volume_root = Path(self.volume_root)
        self.disk_size = parse_size(self.disk_size)
        if not self.backing_unit:
            self.backing_unit = mount_unit_name(self.backing_mount)

    @property
    def image_path(self) -> Path:
        """Full path of the image file."""
        return self.backing_mount / self.image_name


@dataclass
class DestinationConfig:
    """Configuration for the remote share.

    Attributes:
        share: Remote share spec (``//server/share`` or ``host:/export``)
        mount_point: Local mount point of the share
        transport: cifs or nfs
        credentials_file: Reference to the mount credentials; never read
            for its values by the sync path
        unit: systemd mount unit for mount_point
    """
    share: str
    mount_point: Path = Path("/mnt/gadget-share")
    transport: Transport = Transport.CIFS
    credentials_file: Optional[Path] = Path("/root/.mountcreds")
    unit: Optional[str] = None

    def __post_init__(self):
        """Ensure paths are Path objects and the unit name is set."""
        if isinstance(self.transport, str):
            self.transport = Transport(self.transport.lower())
        if isinstance(self.mount_point, str):
            self.mount_point = Path(self.mount_point)
        if isinstance(self.credentials_file, str):
            self.credentials_file = Path(self.credentials_file)
        if not self.unit:
            self.unit = mount_unit_name(self.mount_point)


@dataclass
class MirrorConfig:
    """Global configuration for the mirror service.

    Attributes:
        volume: Image and backing storage settings
        destination: Remote share settings
        gadget_backend: How gadget exposure is driven
        gadget_unit: Service unit for GadgetBackend.SYSTEMD
        sync_interval: Seconds between scheduled passes
        min_stable_age: Seconds a file must be untouched before copying
        mtime_tolerance: Allowed mtime skew between source and destination
        mount_timeout: Bounded wait per mount stage, in seconds
        alarm_threshold: Consecutive failed passes before raising the alarm
        copy_workers: Size of the copy worker pool
        verify_copies: Hash-compare copies before the final rename
        exclude: Glob patterns (relative paths) never mirrored
        retry_bring_up: Try bringing the chain up when a pass finds it down
        state_dir: Where the reporter keeps its state between invocations
        lock_file: Path of the inter-process pass lock
        log_level: Logging level name
        log_format: "text" or "json"
        log_file: Optional log file
    """
    volume: VolumeConfig
    destination: DestinationConfig
    gadget_backend: GadgetBackend = GadgetBackend.SYSTEMD
    gadget_unit: str = "usb-gadget.service"
    sync_interval: float = 60.0
    min_stable_age: float = 10.0
    mtime_tolerance: float = 1.0
    mount_timeout: float = 30.0
    alarm_threshold: int = 3
    copy_workers: int = 4
    verify_copies: bool = False
    exclude: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE))
    retry_bring_up: bool = True
    state_dir: Path = Path("/var/lib/gadget-mirror")
    lock_file: Path = Path("/run/gadget-mirror/pass.lock")
    log_level: str = "INFO"
    log_format: str = "text"
    log_file: Optional[Path] = None

    def __post_init__(self):
        """Ensure paths are Path objects."""
        if isinstance(self.gadget_backend, str):
            self.gadget_backend = GadgetBackend(self.gadget_backend.lower())
        if isinstance(self.state_dir, str):
            self.state_dir = Path(self.state_dir)
        if isinstance(self.lock_file, str):
            self.lock_file = Path(self.lock_file)
        if isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)

    def validate(self) -> List[str]:
        """Check cross-field constraints.

        Returns:
            List of problems, empty if the configuration is usable
        """
        problems = []
        if self.volume.disk_size <= 0:
            problems.append("DISK_SIZE must be positive")
        if self.volume.storage_type == StorageType.NFS and not self.volume.nfs_server:
            problems.append("STORAGE_TYPE=nfs requires NFS_SERVER to be set")
        if self.volume.storage_type == StorageType.LOCAL and not self.volume.local_disk_label:
            problems.append("STORAGE_TYPE=local requires LOCAL_DISK_LABEL to be set")
        if self.destination.transport == Transport.CIFS and not self.destination.credentials_file:
            problems.append("DESTINATION_TRANSPORT=cifs requires CREDENTIALS_FILE")
        if self.sync_interval <= 0:
            problems.append("SYNC_INTERVAL must be positive")
        if self.min_stable_age < 0:
            problems.append("MIN_STABLE_AGE cannot be negative")
        if self.mtime_tolerance < 0:
            problems.append("MTIME_TOLERANCE cannot be negative")
        elif self.min_stable_age and self.mtime_tolerance >= self.min_stable_age:
            problems.append("MTIME_TOLERANCE must be smaller than MIN_STABLE_AGE")
        if self.mount_timeout <= 0:
            problems.append("MOUNT_TIMEOUT must be positive")
        if self.alarm_threshold < 1:
            problems.append("ALARM_THRESHOLD must be at least 1")
        if self.copy_workers < 1:
            problems.append("COPY_WORKERS must be at least 1")
        if self.log_format not in ("text", "json"):
            problems.append(f"LOG_FORMAT must be 'text' or 'json', got: {self.log_format}")
        return problems


def parse_config_text(text: str) -> Dict[str, str]:
    """Parse shell-style ``KEY=VALUE`` lines.

    Comments, blank lines and a leading ``export`` are accepted. Secret
    keys are dropped on the floor.

    Raises:
        ConfigInvalid: On lines that are not assignments
    """
    settings: Dict[str, str] = {}
    problems = []

    for lineno, line in enumerate(text.splitlines(), start=1):
        try:
            tokens = shlex.split(line, comments=True)
        except ValueError as e:
            problems.append(f"line {lineno}: {e}")
            continue
        if not tokens:
            continue
        if tokens[0] == "export":
            tokens = tokens[1:]
        if len(tokens) != 1 or "=" not in tokens[0]:
            problems.append(f"line {lineno}: expected KEY=VALUE")
            continue

        key, value = tokens[0].split("=", 1)
        key = key.strip()
        if key in SECRET_KEYS:
            continue
        settings[key] = value

    if problems:
        raise ConfigInvalid(problems)
    return settings


def _as_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"not a boolean: {value!r}")


def config_from_settings(settings: Dict[str, str]) -> MirrorConfig:
    """Build a MirrorConfig from parsed settings.

    Raises:
        ConfigInvalid: Listing every missing or malformed setting
    """
    problems: List[str] = []

    def take(key: str, convert=str, default=None, required: bool = False):
        raw = settings.get(key, "")
        if raw == "":
            if required:
                problems.append(f"Required variable {key} not set")
            return default
        try:
            return convert(raw)
        except ValueError as e:
            problems.append(f"{key}: {e}")
            return default

    storage_type = take("STORAGE_TYPE", lambda v: StorageType(v.lower()), required=True)
    disk_size = take("DISK_SIZE", parse_size, required=True)
    share = take("DESTINATION_SHARE", required=True)
    transport = take("DESTINATION_TRANSPORT", lambda v: Transport(v.lower()), Transport.CIFS)
    gadget_backend = take("GADGET_BACKEND", lambda v: GadgetBackend(v.lower()), GadgetBackend.SYSTEMD)

    if problems:
        raise ConfigInvalid(problems)

    volume = VolumeConfig(
        storage_type=storage_type,
        disk_size=disk_size,
        backing_mount=take("BACKING_MOUNT", Path, Path("/mnt/gadget-backing")),
        image_name=take("IMAGE_NAME", str, "disk.img"),
        filesystem=take("FILESYSTEM", str, "exfat"),
        volume_root=take("VOLUME_ROOT", Path, Path("/mnt/gadget-volume")),
        image_view=take("IMAGE_VIEW", _as_bool, True),
        nfs_server=take("NFS_SERVER"),
        local_disk_label=take("LOCAL_DISK_LABEL"),
        backing_unit=take("BACKING_UNIT"),
    )
    destination = DestinationConfig(
        share=share,
        mount_point=take("DESTINATION_MOUNT", Path, Path("/mnt/gadget-share")),
        transport=transport,
        credentials_file=take("CREDENTIALS_FILE", Path, Path("/root/.mountcreds")),
        unit=take("DESTINATION_UNIT"),
    )
    exclude = take("EXCLUDE", shlex.split, None)

    config = MirrorConfig(
        volume=volume,
        destination=destination,
        gadget_backend=gadget_backend,
        gadget_unit=take("GADGET_UNIT", str, "usb-gadget.service"),
        sync_interval=take("SYNC_INTERVAL", float, 60.0),
        min_stable_age=take("MIN_STABLE_AGE", float, 10.0),
        mtime_tolerance=take("MTIME_TOLERANCE", float, 1.0),
        mount_timeout=take("MOUNT_TIMEOUT", float, 30.0),
        alarm_threshold=take("ALARM_THRESHOLD", int, 3),
        copy_workers=take("COPY_WORKERS", int, 4),
        verify_copies=take("VERIFY_COPIES", _as_bool, False),
        exclude=exclude if exclude is not None else list(DEFAULT_EXCLUDE),
        retry_bring_up=take("RETRY_BRING_UP", _as_bool, True),
        state_dir=take("STATE_DIR", Path, Path("/var/lib/gadget-mirror")),
        lock_file=take("LOCK_FILE", Path, Path("/run/gadget-mirror/pass.lock")),
        log_level=take("LOG_LEVEL", str, "INFO").upper(),
        log_format=take("LOG_FORMAT", str, "text").lower(),
        log_file=take("LOG_FILE", Path),
    )

    problems.extend(config.validate())
    if problems:
        raise ConfigInvalid(problems)
    return config


def environment_overrides(environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Collect ``GADGET_MIRROR_<KEY>`` variables as setting overrides.

    Secret keys are dropped the same way the config file parser drops them.
    """
    if environ is None:
        environ = os.environ
    overrides = {}
    for name, value in environ.items():
        if not name.startswith(ENV_PREFIX):
            continue
        key = name[len(ENV_PREFIX):]
        if key and key not in SECRET_KEYS:
            overrides[key] = value
    return overrides


def load_config(
    path: Union[str, Path] = DEFAULT_CONFIG_PATH,
    overrides: Optional[Dict[str, str]] = None,
) -> MirrorConfig:
    """Load and validate a configuration file.

    Args:
        path: Config file written by provisioning
        overrides: Settings taking precedence over the file

    Raises:
        ConfigInvalid: If the file is missing or settings are invalid
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigInvalid([f"Config file not found: {path}"])
    except OSError as e:
        raise ConfigInvalid([f"Cannot read config file {path}: {e}"])

    settings = parse_config_text(text)
    if overrides:
        settings.update({k: v for k, v in overrides.items() if v is not None})
    return config_from_settings(settings)
