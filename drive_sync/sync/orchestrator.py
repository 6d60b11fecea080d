"""Sync orchestration across sync groups.

For every master found, in discovery order:

1. Collect the backups sharing its set id
2. Estimate space on every backup (SpaceAdmission)
3. Stop if no backup is admitted
4. Ask to continue with the admitted backups        (first veto point)
5. Ask to execute after the diff summary             (second veto point)
6. Execute the admitted backups one after the other

Declining either confirmation ends the pass for that master without any
transfer. A failed transfer is reported and the next backup still runs.
One master's pass never affects the next one.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from drive_sync.config import DriveSyncConfig
from drive_sync.errors import NotMountedError
from drive_sync.registry import Drive, DriveRegistry
from drive_sync.sync.admission import AdmissionDecision, AdmissionStatus, SpaceAdmission
from drive_sync.transfer.base import TransferBackend, TransferResult
from drive_sync.utils.signals import CancellationToken

logger = logging.getLogger(__name__)


class ConfirmStage(Enum):
    """The two confirmation points of a sync pass."""
    PROCEED = "proceed"  # after the space check, over all decisions
    EXECUTE = "execute"  # after the diff summary, over admitted decisions


class PassOutcome(Enum):
    """How a master's sync pass ended."""
    COMPLETED = "completed"
    MASTER_UNAVAILABLE = "master_unavailable"
    NO_BACKUPS = "no_backups"
    NO_ADMITTED = "no_admitted"
    DECLINED_PROCEED = "declined_proceed"
    DECLINED_EXECUTE = "declined_execute"


# confirm(stage, master, decisions) -> True to go on
ConfirmCallback = Callable[[ConfirmStage, Drive, List[AdmissionDecision]], bool]


@dataclass
class BackupSyncResult:
    """Execution result for one admitted backup."""
    backup: Drive
    result: TransferResult

    @property
    def success(self) -> bool:
        return self.result.success

    def to_dict(self) -> dict:
        return {"backup": str(self.backup.path), **self.result.to_dict()}


@dataclass
class SyncPassResult:
    """Everything that happened for one master."""
    master: Drive
    outcome: PassOutcome = PassOutcome.COMPLETED
    decisions: List[AdmissionDecision] = field(default_factory=list)
    executions: List[BackupSyncResult] = field(default_factory=list)

    @property
    def admitted(self) -> List[AdmissionDecision]:
        return [d for d in self.decisions if d.admitted]

    @property
    def success(self) -> bool:
        """False if the master vanished or a transfer failed. Declining is not a failure."""
        if self.outcome is PassOutcome.MASTER_UNAVAILABLE:
            return False
        return all(e.success for e in self.executions)

    def to_dict(self) -> dict:
        return {
            "master": str(self.master.path),
            "outcome": self.outcome.value,
            "decisions": [d.to_dict() for d in self.decisions],
            "executions": [e.to_dict() for e in self.executions],
        }


@dataclass
class SyncRunResult:
    """Results of all master passes in one run."""
    passes: List[SyncPassResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(p.success for p in self.passes)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "passes": [p.to_dict() for p in self.passes],
        }


class SyncOrchestrator:
    """Runs the estimate / confirm / execute workflow for every master.

    Everything runs sequentially in the calling thread. The cancellation
    token is checked between steps.

    Usage:
        orchestrator = SyncOrchestrator(registry, transfer, confirm=ask_user)
        result = orchestrator.run()
        for sync_pass in result.passes:
            print(sync_pass.master.path, sync_pass.outcome.value)
    """

    def __init__(
        self,
        registry: DriveRegistry,
        transfer: TransferBackend,
        confirm: ConfirmCallback,
        admission: Optional[SpaceAdmission] = None,
        config: Optional[DriveSyncConfig] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.registry = registry
        self.transfer = transfer
        self.confirm = confirm
        self.config = config or registry.config
        self.admission = admission or SpaceAdmission(transfer, self.config)
        self.token = token or CancellationToken()

    def run(self, drives: Optional[Sequence[Drive]] = None) -> SyncRunResult:
        """Sync every master found among drives (discovered if not given)."""
        logger.info("Starting drive sync process")
        self.token.raise_if_cancelled()

        if drives is None:
            drives = self.registry.discover()
        groups = self.registry.group_by_set_id(drives)

        run_result = SyncRunResult()
        # Discovery order, not group order
        masters = [
            d for d in drives
            if d.set_id in groups and groups[d.set_id].master is d
        ]

        if not masters:
            logger.warning("No master drives found")
            return run_result

        for master in masters:
            self.token.raise_if_cancelled()
            run_result.passes.append(self.sync_master(master, groups[master.set_id].backups))

        logger.info("All sync operations completed")
        return run_result

    def estimate_all(self, master: Drive, backups: Sequence[Drive]) -> List[AdmissionDecision]:
        """Run space admission for every backup, in order."""
        decisions = []
        for backup in backups:
            self.token.raise_if_cancelled()
            if not backup.mounted:
                logger.warning(f"Backup {backup.path} is no longer mounted")
                decisions.append(AdmissionDecision(
                    master=master,
                    backup=backup,
                    status=AdmissionStatus.ERROR,
                    error=NotMountedError(f"{backup.path} is not mounted", path=backup.path),
                ))
                continue
            decisions.append(self.admission.estimate(master, backup))
        return decisions

    def sync_master(self, master: Drive, backups: Sequence[Drive]) -> SyncPassResult:
        """Run one master's pass."""
        result = SyncPassResult(master=master)
        logger.info(f"Syncing master: {master.path}")

        if not master.mounted:
            logger.error(f"Master {master.path} is no longer mounted")
            result.outcome = PassOutcome.MASTER_UNAVAILABLE
            return result

        if not backups:
            logger.warning(f"No backup drives found for master {master.path}")
            result.outcome = PassOutcome.NO_BACKUPS
            return result

        result.decisions = self.estimate_all(master, backups)
        admitted = result.admitted

        if not admitted:
            logger.warning(f"No backup drives with sufficient space available for {master.path}")
            result.outcome = PassOutcome.NO_ADMITTED
            return result

        self.token.raise_if_cancelled()
        if not self.confirm(ConfirmStage.PROCEED, master, list(result.decisions)):
            logger.info(f"Sync of {master.path} declined")
            result.outcome = PassOutcome.DECLINED_PROCEED
            return result

        self.token.raise_if_cancelled()
        if not self.confirm(ConfirmStage.EXECUTE, master, list(admitted)):
            logger.info(f"Sync of {master.path} declined after summary")
            result.outcome = PassOutcome.DECLINED_EXECUTE
            return result

        for decision in admitted:
            self.token.raise_if_cancelled()
            result.executions.append(self._execute(master, decision.backup))

        return result

    def _execute(self, master: Drive, backup: Drive) -> BackupSyncResult:
        logger.info(f"Syncing {master.path} -> {backup.path}")

        for drive in (master, backup):
            if not drive.mounted:
                error = NotMountedError(f"{drive.path} is not mounted", path=drive.path)
                logger.error(f"Sync {master.path} -> {backup.path} failed: {error}")
                return BackupSyncResult(
                    backup=backup,
                    result=TransferResult(success=False, message=str(error), error=error),
                )

        transfer_result = self.transfer.execute(master.path, backup.path, self.config.excludes)
        if transfer_result.success:
            logger.info(f"Sync {master.path} -> {backup.path}: {transfer_result.message}")
        else:
            logger.error(f"Sync {master.path} -> {backup.path} failed: {transfer_result.message}")
        return BackupSyncResult(backup=backup, result=transfer_result)
