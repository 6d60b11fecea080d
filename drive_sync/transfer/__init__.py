"""Transfer backends for Drive Sync.

The sync components never copy bytes themselves. They ask a backend for a
dry-run diff and, once admitted and confirmed, for an execute.

Available backends:
    - RsyncBackend: rsync command line tool

Usage:
    from drive_sync.transfer import get_transfer_backend

    backend = get_transfer_backend()
    if backend.is_available():
        report = backend.dry_run_diff(master, backup, excludes)
"""

from typing import Optional

from .base import DiffReport, TransferBackend, TransferResult
from ..config import DriveSyncConfig


def get_transfer_backend(
    name: str = "rsync",
    config: Optional[DriveSyncConfig] = None,
) -> TransferBackend:
    """Get a transfer backend by name.

    Args:
        name: Backend name (only "rsync" is provided)
        config: Configuration supplying the tool path

    Raises:
        NotImplementedError: If the backend is not supported
    """
    config = config or DriveSyncConfig()

    if name == "rsync":
        from .rsync import RsyncBackend
        return RsyncBackend(rsync_path=config.rsync_path)

    raise NotImplementedError(
        f"Transfer backend '{name}' is not supported. Supported backends: rsync"
    )


__all__ = [
    "DiffReport",
    "TransferBackend",
    "TransferResult",
    "get_transfer_backend",
]
