"""Synchronization module for Gadget Mirror.

Philosophy: THE HOST OWNS THE VOLUME, THE SHARE ONLY GROWS.

This module provides:
- SyncEngine: One-way, additive reconciliation passes
- PassRecord: The outcome of one pass
- PassLock: Mutual exclusion between passes and gadget reconfiguration

Copy order: temporary name first, rename into place second.
Nothing is ever deleted at the destination.
"""

from gadget_mirror.sync.engine import SyncEngine, SyncEntry, scan_volume
from gadget_mirror.sync.lock import PassLock, with_pass_lock
from gadget_mirror.sync.record import PassOutcome, PassRecord, SkipReason

__all__ = [
    "SyncEngine",
    "SyncEntry",
    "scan_volume",
    "PassLock",
    "with_pass_lock",
    "PassOutcome",
    "PassRecord",
    "SkipReason",
]
