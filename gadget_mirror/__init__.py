"""Gadget Mirror - USB gadget volume with an additive mirror to a network share.

A single-board computer exposes a disk image to an attached host as a USB
mass-storage device. Whatever the host writes is periodically mirrored,
one way and additively, to a remote share.

Key Features:
    - Ordered mount chain: backing storage, gadget exposure, destination share
    - Bounded waits that name the stage that did not come up
    - Stability window so files still being written are left for a later pass
    - Temp-then-rename copies; a destination file is either absent or complete
    - Nothing is ever deleted at the destination
    - Pass lock shared between passes and gadget reconfiguration
    - Consecutive-failure alarm persisted across invocations

Quick Start:
    from gadget_mirror import MirrorService, load_config

    service = MirrorService(load_config("/etc/gadget-mirror/config"))
    service.bring_up()
    record, report = service.run_pass()
    print(record.summary())

Classes:
    MirrorService: Main interface tying the components together
    MountLifecycleController: Brings the mount chain up and down
    SyncEngine: Runs one additive reconciliation pass
    PassLock: Excludes overlapping passes and reconfiguration
    FailureReporter: Maps pass outcomes to severities and the alarm
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import (
    DestinationConfig,
    GadgetBackend,
    MirrorConfig,
    StorageType,
    Transport,
    VolumeConfig,
    load_config,
)
from .errors import (
    ConfigInvalid,
    CopyFailure,
    LockContention,
    MirrorError,
    MountTimeout,
    MountUnavailable,
)
from .state import ChainState, DestinationMount, MountState, Volume
from .lifecycle import MountLifecycleController
from .sync import PassLock, PassOutcome, PassRecord, SkipReason, SyncEngine
from .reporting import FailureReporter, Report, Severity
from .service import MirrorService

__all__ = [
    "__version__",
    "__license__",
    # Configuration
    "MirrorConfig",
    "VolumeConfig",
    "DestinationConfig",
    "StorageType",
    "Transport",
    "GadgetBackend",
    "load_config",
    # Errors
    "MirrorError",
    "MountTimeout",
    "MountUnavailable",
    "CopyFailure",
    "LockContention",
    "ConfigInvalid",
    # State
    "Volume",
    "DestinationMount",
    "ChainState",
    "MountState",
    # Components
    "MountLifecycleController",
    "SyncEngine",
    "PassLock",
    "PassRecord",
    "PassOutcome",
    "SkipReason",
    "FailureReporter",
    "Report",
    "Severity",
    "MirrorService",
]
