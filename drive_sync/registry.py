"""Drive discovery and role resolution.

The registry turns candidate mount paths into Drive entities. A drive's
role and group are read from its own metadata record only; there is no
central list of associations.

Example:
    registry = DriveRegistry(DriveSyncConfig())
    drives = registry.discover()
    for set_id, group in registry.group_by_set_id(drives).items():
        print(set_id, group.master, group.backups)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from .config import DriveSyncConfig, Role
from .errors import NotMountedError, UnreadableError
from .metadata import MetadataStore, ReadStatus
from .utils.platform import is_mountpoint, is_readable, iter_candidate_paths


logger = logging.getLogger(__name__)

MountCheck = Callable[[Path], bool]


@dataclass
class Drive:
    """A mounted drive and the role resolved from its metadata record.

    Attributes:
        path: Mount point, unique per drive
        role: Committed role (UNASSIGNED when no valid record exists)
        set_id: Sync group identifier (None when unassigned)
        last_modified: Timestamp of the last metadata write
        metadata_error: Validation error if the record exists but is invalid
    """
    path: Path
    role: Role = Role.UNASSIGNED
    set_id: Optional[str] = None
    last_modified: Optional[datetime] = None
    metadata_error: Optional[str] = None
    mount_check: MountCheck = field(default=is_mountpoint, repr=False, compare=False)

    def __post_init__(self):
        if isinstance(self.path, str):
            self.path = Path(self.path)

    @property
    def mounted(self) -> bool:
        """Re-checked on every access."""
        return self.mount_check(self.path)

    @property
    def name(self) -> str:
        return self.path.name or str(self.path)

    @property
    def has_invalid_metadata(self) -> bool:
        return self.metadata_error is not None

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "role": self.role.value,
            "set_id": self.set_id,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
            "invalid_metadata": self.metadata_error,
        }


@dataclass
class SyncGroup:
    """Drives sharing one set id."""
    set_id: str
    master: Optional[Drive] = None
    backups: List[Drive] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "set_id": self.set_id,
            "master": str(self.master.path) if self.master else None,
            "backups": [str(b.path) for b in self.backups],
        }


class DriveRegistry:
    """Enumerates drives and resolves their roles.

    Attributes:
        config: Drive sync configuration (mount roots, metadata filename)
        store: Metadata store used to read each drive's record
        candidates: Callable returning candidate mount paths
        mount_check: Mounted/unmounted predicate
        readable_check: Readability predicate
    """

    def __init__(
        self,
        config: Optional[DriveSyncConfig] = None,
        store: Optional[MetadataStore] = None,
        candidates: Optional[Callable[[], Iterable[Path]]] = None,
        mount_check: MountCheck = is_mountpoint,
        readable_check: Callable[[Path], bool] = is_readable,
    ):
        self.config = config or DriveSyncConfig()
        self.store = store or MetadataStore(self.config.metadata_filename)
        self._candidates = candidates or self._default_candidates
        self.mount_check = mount_check
        self.readable_check = readable_check

    def _default_candidates(self) -> Iterable[Path]:
        for path in iter_candidate_paths(self.config.mount_roots, self.config.max_depth):
            if self.mount_check(path):
                yield path

    def check(self, path: Path) -> None:
        """Confirm a path is a mounted, readable drive.

        Raises:
            NotMountedError: If path is not a mount point
            UnreadableError: If the mount point cannot be read
        """
        if not self.mount_check(path):
            raise NotMountedError(f"{path} is not a valid mount point", path=path)
        if not self.readable_check(path):
            raise UnreadableError(f"Cannot read from {path}", path=path)

    def resolve(self, path: Path) -> Drive:
        """Build a Drive for a checked path from its metadata record."""
        result = self.store.read(path)
        drive = Drive(path=Path(path), mount_check=self.mount_check)

        if result.status is ReadStatus.FOUND:
            drive.role = result.record.role
            drive.set_id = result.record.set_id
            drive.last_modified = result.record.timestamp
            logger.info(f"Found existing {drive.role.value} drive: {path}")
        elif result.status is ReadStatus.INVALID:
            drive.metadata_error = result.error
            logger.warning(
                f"Invalid {self.store.filename} file found on {path}, treating as unassigned"
            )
        return drive

    def discover(self) -> List[Drive]:
        """Return mounted, readable drives in discovery order.

        Candidates failing the mount or readability check are excluded
        with a warning.
        """
        drives: List[Drive] = []
        seen = set()

        for candidate in self._candidates():
            path = Path(candidate)
            if path in seen:
                continue
            seen.add(path)
            try:
                self.check(path)
            except (NotMountedError, UnreadableError) as e:
                logger.warning(f"Skipping {path}: {e}")
                continue
            drives.append(self.resolve(path))

        if not drives:
            logger.warning("No drives found")
        return drives

    def refresh(self, drive: Drive) -> Drive:
        """Re-check and re-read a single drive.

        Raises:
            NotMountedError: If the drive is no longer mounted
            UnreadableError: If it can no longer be read
        """
        self.check(drive.path)
        return self.resolve(drive.path)

    @staticmethod
    def group_by_set_id(drives: Iterable[Drive]) -> Dict[str, SyncGroup]:
        """Group drives with validated records by set id.

        Unassigned drives and drives with invalid metadata are left out.
        If more than one master shares a set id, the first one discovered
        is used and the others are logged and ignored.
        """
        groups: Dict[str, SyncGroup] = {}

        for drive in drives:
            if drive.role is Role.UNASSIGNED or drive.has_invalid_metadata or not drive.set_id:
                continue
            group = groups.setdefault(drive.set_id, SyncGroup(set_id=drive.set_id))
            if drive.role is Role.MASTER:
                if group.master is None:
                    group.master = drive
                else:
                    logger.error(
                        f"Ignoring second master {drive.path} in group {drive.set_id} "
                        f"(master already {group.master.path})"
                    )
            else:
                group.backups.append(drive)

        return groups
