"""Utility modules for Drive Sync.

This package provides:
- logging: Configured logging with JSON/text output support
- platform: Mount point checks, free space and candidate enumeration
- signals: Cooperative cancellation wired to SIGINT/SIGTERM
"""

from drive_sync.utils.logging import get_logger, configure_root_logger
from drive_sync.utils.platform import (
    format_bytes,
    get_free_bytes,
    is_mountpoint,
    is_readable,
    iter_candidate_paths,
)
from drive_sync.utils.signals import CancellationToken, install_signal_handlers

__all__ = [
    "get_logger",
    "configure_root_logger",
    "format_bytes",
    "get_free_bytes",
    "is_mountpoint",
    "is_readable",
    "iter_candidate_paths",
    "CancellationToken",
    "install_signal_handlers",
]
