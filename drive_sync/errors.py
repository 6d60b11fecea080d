"""Exceptions raised by Drive Sync components."""

from enum import Enum
from pathlib import Path
from typing import Optional


class ErrorKind(Enum):
    """Operator-visible failure categories."""
    NOT_MOUNTED = "not_mounted"
    UNREADABLE = "unreadable"
    INVALID_METADATA = "invalid_metadata"
    WRITE_FAILURE = "write_failure"
    INSUFFICIENT_SPACE = "insufficient_space"
    TRANSFER_FAILURE = "transfer_failure"
    ASSOCIATION = "association"
    CANCELLED = "cancelled"


class DriveSyncError(Exception):
    """Base error for drive sync operations."""

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class NotMountedError(DriveSyncError):
    """Path is not (or no longer) a mount point."""
    kind = ErrorKind.NOT_MOUNTED


class UnreadableError(DriveSyncError):
    """Mount point exists but cannot be read."""
    kind = ErrorKind.UNREADABLE


class InvalidMetadataError(DriveSyncError):
    """Metadata record exists but does not validate."""
    kind = ErrorKind.INVALID_METADATA


class MetadataWriteError(DriveSyncError):
    """Metadata record could not be written or removed."""
    kind = ErrorKind.WRITE_FAILURE


class InsufficientSpaceError(DriveSyncError):
    """Backup cannot hold the result of a mirror."""
    kind = ErrorKind.INSUFFICIENT_SPACE


class TransferError(DriveSyncError):
    """Transfer tool missing, failed, or produced an unusable report."""
    kind = ErrorKind.TRANSFER_FAILURE


class AssociationError(DriveSyncError):
    """Association session operation not permitted."""
    kind = ErrorKind.ASSOCIATION


class OperationCancelled(DriveSyncError):
    """Interrupt received; the current operation must stop."""
    kind = ErrorKind.CANCELLED
