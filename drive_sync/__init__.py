"""Drive Sync - one-way mirroring of a master drive onto backup drives.

Drives are associated into sync groups by a small record on each drive's
root. A group has one master and any number of backups. Syncing mirrors
the master onto every backup that has room for the changes, after two
confirmations.

Key Features:
    - Per-drive association records, strictly validated, never executed
    - Toggle/confirm/commit association sessions with one master per session
    - Dry-run space admission with a 10% safety margin per backup
    - Sequential, independently reported transfers per backup
    - rsync as the transfer tool

Quick Start:
    from drive_sync import DriveRegistry, AssociationSession, MetadataStore

    registry = DriveRegistry()
    session = AssociationSession(registry.discover())
    session.toggle(0)   # first drive -> master
    session.toggle(1)   # second drive -> backup
    session.commit(registry.store)

Classes:
    DriveRegistry: Discovers mounted drives and resolves their roles
    AssociationSession: Pending role edits and commit
    MetadataStore: Reads/writes the per-drive record
    SpaceAdmission: Decides whether a backup can take a mirror
    SyncOrchestrator: Runs the sync workflow for every master
    DriveSyncConfig: Global configuration
    Role: Enum for drive roles (UNASSIGNED, MASTER, BACKUP)
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .config import DriveSyncConfig, Role
from .errors import (
    DriveSyncError,
    ErrorKind,
    NotMountedError,
    UnreadableError,
    InvalidMetadataError,
    MetadataWriteError,
    InsufficientSpaceError,
    TransferError,
    AssociationError,
    OperationCancelled,
)
from .metadata import MetadataStore, Record, ReadResult, ReadStatus
from .registry import Drive, DriveRegistry, SyncGroup
from .association import AssociationSession, CommitResult, DriveCommitResult
from .transfer import DiffReport, TransferBackend, TransferResult, get_transfer_backend
from .sync import (
    AdmissionDecision,
    AdmissionStatus,
    SpaceAdmission,
    ConfirmStage,
    PassOutcome,
    SyncOrchestrator,
    SyncPassResult,
    SyncRunResult,
)

__all__ = [
    "__version__",
    "__license__",
    # Configuration
    "DriveSyncConfig",
    "Role",
    # Errors
    "DriveSyncError",
    "ErrorKind",
    "NotMountedError",
    "UnreadableError",
    "InvalidMetadataError",
    "MetadataWriteError",
    "InsufficientSpaceError",
    "TransferError",
    "AssociationError",
    "OperationCancelled",
    # Metadata
    "MetadataStore",
    "Record",
    "ReadResult",
    "ReadStatus",
    # Drives
    "Drive",
    "DriveRegistry",
    "SyncGroup",
    # Association
    "AssociationSession",
    "CommitResult",
    "DriveCommitResult",
    # Transfer
    "DiffReport",
    "TransferBackend",
    "TransferResult",
    "get_transfer_backend",
    # Sync
    "AdmissionDecision",
    "AdmissionStatus",
    "SpaceAdmission",
    "ConfirmStage",
    "PassOutcome",
    "SyncOrchestrator",
    "SyncPassResult",
    "SyncRunResult",
]
