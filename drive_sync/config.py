"""Configuration dataclasses for Drive Sync."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from enum import Enum


class Role(Enum):
    """Role a drive holds inside its sync group."""
    UNASSIGNED = "unassigned"  # No metadata record on the drive
    MASTER = "master"
    BACKUP = "backup"


# Roles that may appear in a persisted metadata record
PERSISTED_ROLES = (Role.MASTER, Role.BACKUP)

DEFAULT_METADATA_FILENAME = ".dsync"

DEFAULT_MOUNT_ROOTS = ["/run/media", "/media", "/mnt"]

# Excluded from every diff and transfer, next to the metadata file itself
# and its in-flight temporary copies
FIXED_EXCLUDES = [".Trash*", ".trash*", "lost+found"]


def metadata_temp_pattern(filename: str) -> str:
    """Glob matching the temporary files written next to a metadata record."""
    return f"{filename}.*.tmp"


@dataclass
class DriveSyncConfig:
    """Global configuration for drive discovery, admission and transfer.

    Attributes:
        metadata_filename: Name of the association record at each drive root
        mount_roots: Conventional removable-media mount roots to scan
        max_depth: How many directory levels below a root may hold a drive
        safety_margin_percent: Extra space required on top of the diff total
        rsync_path: Transfer tool executable
        log_file: Path to log file (None for stderr only)
        json_logs: Emit JSON lines instead of text
    """
    metadata_filename: str = DEFAULT_METADATA_FILENAME
    mount_roots: List[Path] = field(
        default_factory=lambda: [Path(p) for p in DEFAULT_MOUNT_ROOTS]
    )
    max_depth: int = 2
    safety_margin_percent: int = 10
    rsync_path: str = "rsync"
    log_file: Optional[Path] = None
    json_logs: bool = False

    def __post_init__(self):
        """Ensure paths are Path objects."""
        self.mount_roots = [Path(p) for p in self.mount_roots]
        if isinstance(self.log_file, str):
            self.log_file = Path(self.log_file)
        if self.safety_margin_percent < 0:
            raise ValueError("safety_margin_percent cannot be negative")

    @property
    def excludes(self) -> List[str]:
        """Exclusion patterns for the transfer tool. Not user-configurable."""
        return [
            self.metadata_filename,
            metadata_temp_pattern(self.metadata_filename),
        ] + FIXED_EXCLUDES
