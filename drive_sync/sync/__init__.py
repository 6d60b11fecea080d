"""Synchronization module for Drive Sync.

Philosophy: MASTER IS TRUTH, BACKUPS ARE MIRRORS.

This module provides:
- SpaceAdmission: Dry-run diff plus free-space check per backup
- SyncOrchestrator: Two-confirmation sync workflow per master

Nothing is transferred to a backup that was not admitted and confirmed.
"""

from drive_sync.sync.admission import AdmissionDecision, AdmissionStatus, SpaceAdmission
from drive_sync.sync.orchestrator import (
    ConfirmStage,
    PassOutcome,
    SyncOrchestrator,
    SyncPassResult,
    SyncRunResult,
)

__all__ = [
    "AdmissionDecision",
    "AdmissionStatus",
    "SpaceAdmission",
    "ConfirmStage",
    "PassOutcome",
    "SyncOrchestrator",
    "SyncPassResult",
    "SyncRunResult",
]
