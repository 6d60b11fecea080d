"""Drive association sessions.

An AssociationSession holds the committed role of every discovered drive
and a parallel list of pending roles. Toggling only touches the pending
list; nothing is written until commit().

Toggle cycle per slot::

    unassigned -> master (no master pending) | backup (master pending)
    master     -> unassigned, and every pending backup -> unassigned
    backup     -> unassigned

At most one slot is pending master at any time. Commit writes one record
per changed drive; there is no multi-drive transaction, so a failure on
one drive leaves earlier writes in place and later drives still attempted.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Set

from .config import Role
from .errors import AssociationError, InvalidMetadataError, MetadataWriteError
from .metadata import MetadataStore
from .registry import Drive


logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of an association session."""
    EDITING = "editing"
    COMMITTED = "committed"
    CANCELLED = "cancelled"


class CommitAction(Enum):
    """What commit() did for one drive."""
    WRITE = "write"
    REMOVE = "remove"


def generate_set_id() -> str:
    return str(uuid.uuid4())


@dataclass
class DriveCommitResult:
    """Outcome of persisting one drive's pending role."""
    drive: Drive
    action: CommitAction
    role: Role
    set_id: Optional[str] = None
    success: bool = True
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "path": str(self.drive.path),
            "action": self.action.value,
            "role": self.role.value,
            "set_id": self.set_id,
            "success": self.success,
            "error": self.error,
        }


@dataclass
class CommitResult:
    """Per-drive results of a commit pass."""
    set_id: Optional[str] = None
    results: List[DriveCommitResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def writes(self) -> int:
        return len(self.results)

    @property
    def failed(self) -> List[DriveCommitResult]:
        return [r for r in self.results if not r.success]

    def to_dict(self) -> dict:
        return {
            "set_id": self.set_id,
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
        }


class AssociationSession:
    """Pending role edits over a fixed list of drives.

    Attributes:
        drives: Discovered drives, in discovery order, with committed roles
        pending: Proposed role per drive (same order as drives)
        state: EDITING until commit() or cancel()

    Example:
        session = AssociationSession(registry.discover())
        session.toggle(0)   # -> master
        session.toggle(1)   # -> backup
        result = session.commit(MetadataStore())
    """

    def __init__(self, drives: List[Drive]):
        self.drives: List[Drive] = list(drives)
        self.pending: List[Role] = [d.role for d in self.drives]
        self.state = SessionState.EDITING
        self._acknowledged: Set[int] = set()

    def __len__(self) -> int:
        return len(self.drives)

    @property
    def has_master(self) -> bool:
        """True while some slot is pending master."""
        return Role.MASTER in self.pending

    def _check_editable(self) -> None:
        if self.state is not SessionState.EDITING:
            raise AssociationError(f"Session is {self.state.value}")

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self.drives):
            raise IndexError(f"No drive at position {index}")

    def acknowledge_invalid(self, index: int) -> None:
        """Allow toggling a drive whose existing record failed validation."""
        self._check_index(index)
        drive = self.drives[index]
        if drive.has_invalid_metadata:
            logger.warning(
                f"Operator acknowledged invalid metadata on {drive.path} ({drive.metadata_error})"
            )
        self._acknowledged.add(index)

    def toggle(self, index: int) -> Role:
        """Advance the pending role of one slot.

        Returns:
            The slot's new pending role

        Raises:
            InvalidMetadataError: If the drive holds an invalid record that
                has not been acknowledged
            AssociationError: If the session is no longer editable
        """
        self._check_editable()
        self._check_index(index)

        drive = self.drives[index]
        if drive.has_invalid_metadata and index not in self._acknowledged:
            raise InvalidMetadataError(
                f"{drive.path} holds an unrecognized metadata record "
                f"({drive.metadata_error}); acknowledge before reassigning",
                path=drive.path,
            )

        current = self.pending[index]
        if current is Role.UNASSIGNED:
            self.pending[index] = Role.BACKUP if self.has_master else Role.MASTER
        else:
            if current is Role.MASTER:
                # A backup has no meaning without its master
                self.pending = [
                    Role.UNASSIGNED if role is Role.BACKUP else role
                    for role in self.pending
                ]
            self.pending[index] = Role.UNASSIGNED

        return self.pending[index]

    def has_changes(self) -> bool:
        return any(d.role is not p for d, p in zip(self.drives, self.pending))

    def changes(self) -> List[int]:
        """Indexes of slots whose pending role differs from the committed one."""
        return [i for i, (d, p) in enumerate(zip(self.drives, self.pending)) if d.role is not p]

    def describe(self, index: int) -> str:
        """Render a slot as ``path (current → pending)``."""
        drive = self.drives[index]
        current = drive.role.value
        if drive.has_invalid_metadata:
            current += ", invalid metadata"
        pending = self.pending[index]
        arrow = f" → {pending.value}" if pending is not drive.role else ""
        return f"{drive.path} ({current}{arrow})"

    def cancel(self) -> None:
        """Discard pending edits without writing anything."""
        self._check_editable()
        self.state = SessionState.CANCELLED
        logger.info("Association cancelled, no changes written")

    def commit(
        self,
        store: MetadataStore,
        id_factory: Callable[[], str] = generate_set_id,
    ) -> CommitResult:
        """Persist pending roles, one metadata write per drive.

        When anything changed and a master is pending, a fresh set id is
        minted and written to the master and to every pending backup, so
        the whole group is re-stamped together. Slots moving to unassigned
        have their record removed. Each drive is attempted independently;
        failures are reported, nothing is rolled back.

        Raises:
            AssociationError: If the session is not editable or more than
                one master is pending
        """
        self._check_editable()

        masters = [i for i, p in enumerate(self.pending) if p is Role.MASTER]
        if len(masters) > 1:
            paths = ", ".join(str(self.drives[i].path) for i in masters)
            raise AssociationError(f"More than one master pending: {paths}")

        result = CommitResult()
        self.state = SessionState.COMMITTED

        if not self.has_changes():
            logger.info("No association changes to commit")
            return result

        logger.info("Committing drive associations")
        previous_id = None
        if masters:
            result.set_id = id_factory()
            master = self.drives[masters[0]]
            if master.role is Role.MASTER:
                previous_id = master.set_id

        for index, (drive, pending) in enumerate(zip(self.drives, self.pending)):
            if pending is Role.UNASSIGNED:
                if drive.role is Role.UNASSIGNED:
                    continue
                result.results.append(self._remove(store, drive))
            elif result.set_id is not None:
                if (
                    pending is Role.BACKUP
                    and drive.role is Role.BACKUP
                    and drive.set_id != previous_id
                ):
                    logger.warning(
                        f"{drive.path} leaves group {drive.set_id} for group {result.set_id}"
                    )
                result.results.append(self._write(store, drive, pending, result.set_id))
            elif pending is not drive.role:
                # Unreachable through toggle(): a new backup always has a master pending
                result.results.append(DriveCommitResult(
                    drive=drive,
                    action=CommitAction.WRITE,
                    role=pending,
                    success=False,
                    error="No master pending for backup",
                ))
                logger.error(f"Cannot assign {drive.path} as backup without a master")

        if result.success:
            logger.info(f"Drive associations committed ({result.writes} drives)")
        else:
            logger.error(
                f"Drive associations partially committed: "
                f"{len(result.failed)} of {result.writes} drives failed"
            )
        return result

    def _write(self, store: MetadataStore, drive: Drive, role: Role, set_id: str) -> DriveCommitResult:
        logger.info(f"Setting {drive.path} as {role.value}")
        outcome = DriveCommitResult(drive=drive, action=CommitAction.WRITE, role=role, set_id=set_id)
        try:
            store.write(drive.path, set_id, role)
        except MetadataWriteError as e:
            outcome.success = False
            outcome.error = str(e)
            logger.error(f"Failed to set {drive.path} as {role.value}: {e}")
        return outcome

    def _remove(self, store: MetadataStore, drive: Drive) -> DriveCommitResult:
        logger.info(f"Removing {store.filename} from {drive.path}")
        outcome = DriveCommitResult(drive=drive, action=CommitAction.REMOVE, role=Role.UNASSIGNED)
        try:
            store.remove(drive.path)
        except MetadataWriteError as e:
            outcome.success = False
            outcome.error = str(e)
            logger.error(f"Failed to unassign {drive.path}: {e}")
        return outcome
