"""Space admission for master -> backup mirrors.

Before anything is written to a backup, the transfer backend produces a
dry-run diff and the backup's free space is compared against the bytes
the mirror would add, plus a safety margin:

    required = floor(total_bytes * (100 + margin) / 100)
    admit    = available >= required

A diff with nothing to add or update needs zero bytes and is always
admitted, even on a full destination; deletions can still proceed.

If the diff has adds or updates but no usable byte total, the on-disk
sizes of the files to add are summed instead. Updated files are not
counted in that fallback.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from drive_sync.config import DriveSyncConfig
from drive_sync.errors import DriveSyncError, InsufficientSpaceError, UnreadableError
from drive_sync.registry import Drive
from drive_sync.transfer.base import DiffReport, TransferBackend
from drive_sync.utils.platform import format_bytes, get_free_bytes

logger = logging.getLogger(__name__)


class AdmissionStatus(Enum):
    """Admission outcome for one backup."""
    ADMIT = "admit"
    DENY = "deny"
    ERROR = "error"  # No usable diff or free-space figure


@dataclass
class AdmissionDecision:
    """Result of estimating one master -> backup mirror."""

    master: Drive
    backup: Drive
    status: AdmissionStatus
    report: Optional[DiffReport] = None
    transfer_bytes: int = 0
    required_bytes: int = 0
    available_bytes: Optional[int] = None
    error: Optional[DriveSyncError] = None

    @property
    def admitted(self) -> bool:
        return self.status is AdmissionStatus.ADMIT

    @property
    def shortfall(self) -> int:
        """Bytes missing on the backup (0 unless denied)."""
        if self.status is not AdmissionStatus.DENY or self.available_bytes is None:
            return 0
        return max(0, self.required_bytes - self.available_bytes)

    def to_dict(self) -> dict:
        return {
            "master": str(self.master.path),
            "backup": str(self.backup.path),
            "status": self.status.value,
            "report": self.report.to_dict() if self.report else None,
            "transfer_bytes": self.transfer_bytes,
            "required_bytes": self.required_bytes,
            "available_bytes": self.available_bytes,
            "shortfall": self.shortfall,
            "error": str(self.error) if self.error else None,
        }


def apply_margin(total_bytes: int, margin_percent: int) -> int:
    """Add a percentage margin, rounding down to whole bytes."""
    return total_bytes * (100 + margin_percent) // 100


def added_files_size(source: Path, report: DiffReport) -> int:
    """Sum the on-disk sizes of the files a diff would add.

    Files that cannot be stat'ed contribute nothing.
    """
    total = 0
    for rel_path in report.added_paths:
        try:
            total += (Path(source) / rel_path).stat().st_size
        except OSError:
            continue
    return total


def transfer_size(source: Path, report: DiffReport) -> int:
    """Bytes a diff would write, using the added-files fallback when needed."""
    if not report.has_transfers:
        return 0
    if report.total_bytes:
        return report.total_bytes
    logger.debug(f"No transfer total reported for {source}, summing added files")
    return added_files_size(source, report)


class SpaceAdmission:
    """Decides whether a backup can safely receive a mirror of its master.

    estimate() never modifies either drive. Each backup is estimated on its
    own, so a denial on one backup has no effect on another.

    Example:
        admission = SpaceAdmission(get_transfer_backend())
        decision = admission.estimate(master, backup)
        if not decision.admitted:
            print(f"need {format_bytes(decision.shortfall)} more")
    """

    def __init__(
        self,
        transfer: TransferBackend,
        config: Optional[DriveSyncConfig] = None,
        free_space: Callable[[Path], int] = get_free_bytes,
    ):
        self.transfer = transfer
        self.config = config or DriveSyncConfig()
        self.free_space = free_space

    def estimate(self, master: Drive, backup: Drive) -> AdmissionDecision:
        decision = AdmissionDecision(master=master, backup=backup, status=AdmissionStatus.ERROR)

        try:
            report = self.transfer.dry_run_diff(master.path, backup.path, self.config.excludes)
        except DriveSyncError as e:
            logger.error(f"Cannot estimate {master.path} -> {backup.path}: {e}")
            decision.error = e
            return decision
        decision.report = report

        decision.transfer_bytes = transfer_size(master.path, report)
        decision.required_bytes = apply_margin(
            decision.transfer_bytes, self.config.safety_margin_percent
        )

        try:
            decision.available_bytes = self.free_space(backup.path)
        except OSError as e:
            if not report.has_transfers:
                decision.status = AdmissionStatus.ADMIT
                logger.warning(f"Cannot query free space on {backup.path}, nothing to write: {e}")
                return decision
            logger.error(f"Cannot query free space on {backup.path}: {e}")
            decision.error = UnreadableError(
                f"Cannot query free space on {backup.path}: {e}", path=backup.path
            )
            return decision

        if decision.available_bytes >= decision.required_bytes:
            decision.status = AdmissionStatus.ADMIT
            logger.info(
                f"{backup.path}: sufficient space "
                f"(need {format_bytes(decision.required_bytes)}, "
                f"available {format_bytes(decision.available_bytes)})"
            )
        else:
            decision.status = AdmissionStatus.DENY
            decision.error = InsufficientSpaceError(
                f"Insufficient space on {backup.path} "
                f"(need {format_bytes(decision.shortfall)} more)",
                path=backup.path,
            )
            logger.warning(str(decision.error))

        return decision
