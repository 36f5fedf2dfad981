"""Utility modules for Gadget Mirror.

This package provides:
- hashing: Fast file hashing for copy verification
- logging: Configured logging with JSON/text output support
- system: Bounded command execution and mount inspection
- credentials: Credential reference handling
"""

from gadget_mirror.utils.hashing import fast_hash_file, files_match
from gadget_mirror.utils.logging import configure_root_logger
from gadget_mirror.utils.system import is_mountpoint, missing_commands, run_command

__all__ = [
    "fast_hash_file",
    "files_match",
    "configure_root_logger",
    "is_mountpoint",
    "missing_commands",
    "run_command",
]
